"""Tradovate Performance report importer.

CSV columns: symbol, qty, buyPrice, sellPrice, pnl, boughtTimestamp,
soldTimestamp, duration (plus optional buyFillId / sellFillId).
The PDF version of the same report is read through pdfplumber.
"""

import io
import re
import logging
from datetime import datetime
from typing import List, Optional, Tuple, Union

import pandas as pd
import pdfplumber

from file_detection import TradeImportError, decode_text
from schemas import ColumnMapping, ImportResult, TradovateRawTrade
from trade_parsing import detect_delimiter, is_blank, is_number, parse_float_prefix, parse_generic_datetime

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['symbol', 'pnl', 'boughttimestamp', 'soldtimestamp']

TRADOVATE_DATE_FORMATS = [
    '%m/%d/%Y %H:%M:%S',
    '%m/%d/%Y %I:%M:%S %p',
]

# F=Jan G=Feb H=Mar J=Apr K=May M=Jun N=Jul Q=Aug U=Sep V=Oct X=Nov Z=Dec
CONTRACT_PATTERN = re.compile(r'^([A-Z]{2,})([FGHJKMNQUVXZ])(\d{1,2})$', re.IGNORECASE)

NO_TRADES_IN_PDF = (
    "Nenhum trade encontrado no PDF. Verifique se o arquivo é um relatório de Performance do Tradovate."
)

# symbol qty buyPrice buyDate buyTime <duration...> sellDate sellTime sellPrice pnl
PRIMARY_PDF_PATTERN = re.compile(
    r'([A-Z]{2,6}\d{0,2})\s+(\d+)\s+([\d.]+)\s+(\d{1,2}/\d{1,2}/\d{4})\s+(\d{1,2}:\d{2}:\d{2})\s+'
    r'.*?(\d{1,2}/\d{1,2}/\d{4})\s+(\d{1,2}:\d{2}:\d{2})\s+([\d.]+)\s+(\$[\d,.]+|\$\([\d,.]+\))',
    re.IGNORECASE,
)

FLEXIBLE_PDF_PATTERN = re.compile(
    r'([A-Z]{2,4}[A-Z]\d{1,2})\s+(\d+)\s+([\d,.]+)\s+(\d{1,2}/\d{1,2}/\d{4}\s+\d{1,2}:\d{2}:\d{2})'
    r'.*?(\d{1,2}/\d{1,2}/\d{4}\s+\d{1,2}:\d{2}:\d{2})\s+([\d,.]+)\s+(\$?[\d,()-]+\.?\d*\)?)',
    re.IGNORECASE,
)


def parse_tradovate_money(value: Union[str, float, None]) -> float:
    """"$255.00" -> 255.0, "$(115.00)" -> -115.0, garbage -> 0."""
    if is_number(value):
        return 0.0 if pd.isna(value) else float(value)
    if is_blank(value) or not isinstance(value, str):
        return 0.0

    text = value.strip()
    is_negative = '(' in text and ')' in text
    text = re.sub(r'[$(),\s]', '', text)

    number = parse_float_prefix(text)
    if number is None:
        return 0.0
    return -abs(number) if is_negative else number


def parse_tradovate_price(value: Union[str, float, None]) -> float:
    if is_number(value):
        return 0.0 if pd.isna(value) else float(value)
    if is_blank(value) or not isinstance(value, str):
        return 0.0
    number = parse_float_prefix(value.replace(',', ''))
    return 0.0 if number is None else number


def parse_tradovate_date(value: Union[str, float, None]) -> Optional[datetime]:
    """Parse "11/30/2025 20:15:41" (or the AM/PM variant). Returns None when nothing fits."""
    if is_blank(value) or is_number(value):
        return None

    text = str(value).strip()
    for fmt in TRADOVATE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return parse_generic_datetime(text)


def determine_tradovate_direction(bought_timestamp: str, sold_timestamp: str) -> str:
    """Bought before sold is a Long; sold first (then bought to cover) is a Short."""
    bought = parse_tradovate_date(bought_timestamp)
    sold = parse_tradovate_date(sold_timestamp)

    if bought is None or sold is None:
        return 'Long'
    return 'Long' if bought < sold else 'Short'


def clean_tradovate_symbol(symbol: Optional[str]) -> str:
    """"NQZ5" -> "NQ", "ESH25" -> "ES". Symbols without a contract code are left alone."""
    if not symbol:
        return ''
    cleaned = symbol.strip()
    match = CONTRACT_PATTERN.match(cleaned)
    if match:
        cleaned = match.group(1)
    return cleaned or symbol.strip()


def _cell(row: dict, key: str) -> str:
    value = row.get(key)
    if is_blank(value):
        return ''
    return str(value).strip()


def parse_tradovate_content(content: str) -> ImportResult:
    if not content or not content.strip():
        raise TradeImportError("File is empty")

    try:
        df = pd.read_csv(
            io.StringIO(content),
            sep=detect_delimiter(content),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            index_col=False,
            on_bad_lines='warn',
        )
    except pd.errors.EmptyDataError:
        logger.error("Tradovate CSV has no rows")
        raise TradeImportError("CSV file must have at least a header and one data row")

    df.columns = [str(col).strip().lower() for col in df.columns]
    if df.empty:
        raise TradeImportError("CSV file must have at least a header and one data row")

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        logger.error(f"Tradovate CSV is missing columns: {missing}")
        raise TradeImportError(f"Missing required columns: {', '.join(missing)}")

    data: List[TradovateRawTrade] = []
    total_pnl = 0.0
    for row in df.to_dict('records'):
        trade = TradovateRawTrade(
            symbol=_cell(row, 'symbol'),
            qty=_cell(row, 'qty') or '1',
            buy_price=_cell(row, 'buyprice'),
            sell_price=_cell(row, 'sellprice'),
            pnl=_cell(row, 'pnl'),
            bought_timestamp=_cell(row, 'boughttimestamp'),
            sold_timestamp=_cell(row, 'soldtimestamp'),
            duration=_cell(row, 'duration'),
            buy_fill_id=_cell(row, 'buyfillid') or None,
            sell_fill_id=_cell(row, 'sellfillid') or None,
        )
        # blank and footer rows carry neither symbol nor timestamps
        if trade.symbol and (trade.bought_timestamp or trade.sold_timestamp):
            data.append(trade)
            total_pnl += parse_tradovate_money(trade.pnl)

    logger.debug(f"Parsed {len(data)} Tradovate trades from CSV")
    return ImportResult(data=data, total_pnl=total_pnl)


def parse_tradovate_csv(data: bytes) -> ImportResult:
    return parse_tradovate_content(decode_text(data))


def match_trade_rows(text: str) -> Tuple[List[TradovateRawTrade], Optional[str]]:
    """Run the primary pattern, then the flexible one. Returns the rows and the pass that matched."""
    if 'TRADES' not in text and 'Symbol' not in text and 'Buy Price' not in text:
        return [], None

    section = text
    index = text.find('TRADES')
    if index != -1:
        section = text[index:]

    trades = []
    for match in PRIMARY_PDF_PATTERN.finditer(section):
        symbol, qty, buy_price, buy_date, buy_time, sell_date, sell_time, sell_price, pnl = match.groups()
        trades.append(TradovateRawTrade(
            symbol=symbol,
            qty=qty,
            buy_price=buy_price,
            sell_price=sell_price,
            pnl=pnl,
            bought_timestamp=f"{buy_date} {buy_time}",
            sold_timestamp=f"{sell_date} {sell_time}",
        ))
    if trades:
        return trades, 'primary'

    for match in FLEXIBLE_PDF_PATTERN.finditer(section):
        symbol, qty, buy_price, bought, sold, sell_price, pnl = match.groups()
        trades.append(TradovateRawTrade(
            symbol=symbol,
            qty=qty,
            buy_price=buy_price.replace(',', ''),
            sell_price=sell_price.replace(',', ''),
            pnl=pnl,
            bought_timestamp=' '.join(bought.split()),
            sold_timestamp=' '.join(sold.split()),
        ))
    if trades:
        return trades, 'flexible'
    return [], None


def extract_trade_rows(text: str) -> List[TradovateRawTrade]:
    rows, _ = match_trade_rows(text)
    return rows


def extract_pdf_text(data: bytes) -> str:
    """All page text in page order; whitespace inside a page is collapsed to single spaces."""
    pages = []
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for page in pdf.pages:
                pages.append(' '.join((page.extract_text() or '').split()))
    except Exception as e:
        logger.error(f"PDF could not be opened: {e}")
        raise TradeImportError(
            "Não foi possível ler o PDF. Verifique se o arquivo não está corrompido ou protegido por senha."
        ) from e
    return '\n'.join(pages)


def parse_tradovate_pdf(data: bytes) -> ImportResult:
    if not data:
        raise TradeImportError("File is empty")

    text = extract_pdf_text(data)
    trades, pdf_pass = match_trade_rows(text)
    if not trades:
        logger.error("No trades matched in Tradovate PDF")
        raise TradeImportError(NO_TRADES_IN_PDF)

    logger.info(f"Extracted {len(trades)} trades from Tradovate PDF ({pdf_pass} pattern)")
    total_pnl = sum(parse_tradovate_money(trade.pnl) for trade in trades)
    return ImportResult(data=trades, total_pnl=total_pnl, pdf_pass=pdf_pass)


def get_tradovate_auto_mapping() -> ColumnMapping:
    # direction comes from the timestamps; the export has no fees or swap
    return ColumnMapping(
        entry_date='bought_timestamp',
        symbol='symbol',
        volume='qty',
        entry_price='buy_price',
        exit_date='sold_timestamp',
        exit_price='sell_price',
        profit='pnl',
    )
