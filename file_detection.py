import os
import logging
from typing import Optional

logger = logging.getLogger(__name__)

ZIP_SIGNATURE = b"PK\x03\x04"
PDF_SIGNATURE = b"%PDF"
HTML_MARKERS = ("<html", "<!doctype html")

CSV_EXTENSIONS = (".csv",)
HTML_EXTENSIONS = (".html", ".htm")

NOT_AN_XLSX = (
    "O arquivo não parece ser um Excel válido (.xlsx). Se for um relatório HTML renomeado, "
    "tente salvar como .html ou abrir e salvar novamente no Excel."
)


class TradeImportError(ValueError):
    """Raised when a statement cannot be imported at all."""


def _extension(filename: Optional[str]) -> str:
    return os.path.splitext(filename or "")[1].lower()


def decode_text(data: bytes) -> str:
    """Decode a broker export to text.

    BOM first (UTF-16LE / UTF-16BE), then strict UTF-8, then Windows-1252.
    """
    if not data:
        raise TradeImportError("File is empty")

    if data[:2] == b"\xff\xfe":
        logger.debug("UTF-16LE BOM detected")
        return data[2:].decode("utf-16-le", errors="replace")
    if data[:2] == b"\xfe\xff":
        logger.debug("UTF-16BE BOM detected")
        return data[2:].decode("utf-16-be", errors="replace")

    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("File is not valid UTF-8, falling back to windows-1252")

    # bytes undefined in windows-1252 become U+FFFD
    return data.decode("cp1252", errors="replace")


def is_zip_container(data: bytes) -> bool:
    return data[:4] == ZIP_SIGNATURE


def is_pdf(data: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> bool:
    if _extension(filename) == ".pdf" or content_type == "application/pdf":
        return True
    return data[:4] == PDF_SIGNATURE


def is_csv(filename: Optional[str] = None, content_type: Optional[str] = None) -> bool:
    return _extension(filename) in CSV_EXTENSIONS or content_type == "text/csv"


def is_html(filename: Optional[str] = None, content_type: Optional[str] = None) -> bool:
    return _extension(filename) in HTML_EXTENSIONS or content_type == "text/html"


def looks_like_html(text: str) -> bool:
    head = text.strip()
    lowered = head.lower()
    return head.startswith("<") or any(marker in lowered for marker in HTML_MARKERS)


def sniff_file_type(data: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
    """Return one of "csv", "html", "pdf" or "xlsx" for an uploaded statement.

    Files that claim to be spreadsheets must carry the ZIP local-file header;
    HTML reports saved with an .xlsx name are rerouted to the HTML parser.
    """
    if not data:
        raise TradeImportError("File is empty")

    if is_csv(filename, content_type):
        return "csv"
    if is_html(filename, content_type):
        return "html"
    if is_pdf(data, filename, content_type):
        return "pdf"
    if is_zip_container(data):
        return "xlsx"

    # UTF-16 reports leave NUL bytes between the ASCII markers
    head = data[:512].decode("utf-8", errors="ignore").replace("\x00", "")
    if looks_like_html(head):
        logger.info(f"HTML content found in '{filename}', switching to HTML parser")
        return "html"

    logger.error(f"'{filename}' is neither a ZIP container nor an HTML report")
    raise TradeImportError(NOT_AN_XLSX)
