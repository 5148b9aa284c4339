import os
import json
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, UploadFile, File, Form, status
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pydantic import ValidationError

from file_detection import TradeImportError
from import_trades import PLATFORMS, default_mapping, extract_raw, run_import
from schemas import ColumnMapping

load_dotenv()

# ─── Config & Logging ────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEFAULT_BROKER_TIMEZONE = os.getenv("DEFAULT_BROKER_TIMEZONE", "UTC")
MAX_UPLOAD_MB = float(os.getenv("MAX_UPLOAD_MB", "20"))
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

# ─── FastAPI Setup ───────────────────────────────────────────────────────────
app = FastAPI()

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Helpers ─────────────────────────────────────────────────────────────────
async def read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if len(content) > MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File is larger than {MAX_UPLOAD_MB:g} MB",
        )
    return content


def check_platform(platform: str) -> str:
    platform = platform.strip().lower()
    if platform not in PLATFORMS:
        raise HTTPException(status_code=400, detail=f"Unsupported platform: {platform}")
    return platform


def parse_mapping(raw: Optional[str]) -> Optional[ColumnMapping]:
    if not raw:
        return None
    try:
        return ColumnMapping(**json.loads(raw))
    except (json.JSONDecodeError, TypeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid column mapping: {e}")


# ─── Routes ──────────────────────────────────────────────────────────────────
@app.post("/import/preview")
async def import_preview(file: UploadFile = File(...), platform: str = Form(...)):
    platform = check_platform(platform)
    content = await read_upload(file)
    try:
        result = extract_raw(content, file.filename, file.content_type, platform)
    except TradeImportError as e:
        logger.warning(f"Preview of '{file.filename}' failed: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "headers": result.headers(),
        "mapping": default_mapping(platform, result),
        "data": result.data,
        "total_pnl": result.total_pnl,
        "total_net_profit": result.total_net_profit,
        "pdf_pass": result.pdf_pass,
    }


@app.post("/import")
async def import_file(
    file: UploadFile = File(...),
    platform: str = Form(...),
    account_id: str = Form(...),
    broker_timezone: Optional[str] = Form(None),
    mapping: Optional[str] = Form(None),
):
    platform = check_platform(platform)
    column_mapping = parse_mapping(mapping)
    content = await read_upload(file)
    try:
        trades, result = run_import(
            content,
            file.filename,
            file.content_type,
            platform,
            account_id,
            broker_timezone or DEFAULT_BROKER_TIMEZONE,
            column_mapping,
        )
    except TradeImportError as e:
        logger.warning(f"Import of '{file.filename}' failed: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "count": len(trades),
        "total_pnl": result.total_pnl,
        "total_net_profit": result.total_net_profit,
        "trades": trades,
    }


# Health check
@app.get("/")
def read_root():
    return {"message": "Trade import service online"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
