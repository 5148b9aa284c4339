"""Parsing helpers shared by the MetaTrader and NinjaTrader importers."""

import re
import logging
from datetime import datetime, timedelta
from typing import Optional, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

Cell = Union[str, int, float, None]

EXCEL_EPOCH = datetime(1899, 12, 30)

TRADE_DATE_FORMATS = [
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d %H:%M',
    '%d-%m-%Y %H:%M:%S',
    '%d-%m-%Y %H:%M',
]

DELIMITERS = (',', ';', '\t')

RELATIVE_DATE_WORDS = ('now', 'today', 'tomorrow', 'yesterday')

_FLOAT_PREFIX = re.compile(r'^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?')
# NinjaTrader contract suffixes: "MNQ 12-25", "ES 03-2025", "NQ DEC25"
_CONTRACT_SUFFIX = re.compile(r'\s+(\d{1,2}-\d{2,4}|[A-Z]{3}\d{2})$', re.IGNORECASE)


def is_blank(value: Cell) -> bool:
    if value is None or value is pd.NaT:
        return True
    if isinstance(value, float) and np.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def is_number(value) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool)


def parse_float_prefix(text: str) -> Optional[float]:
    """Leading-number parse: "12.5abc" -> 12.5, "abc" -> None."""
    match = _FLOAT_PREFIX.match(text.strip())
    if not match:
        return None
    return float(match.group(0))


def parse_number(value: Cell) -> float:
    """Plain numeric cell (MetaTrader). Anything unparseable becomes 0."""
    if is_blank(value):
        return 0.0
    if is_number(value):
        return float(value) if np.isfinite(value) else 0.0
    text = re.sub(r'\s', '', str(value))
    try:
        number = float(text)
    except ValueError:
        logger.debug(f"Unparseable number '{value}', using 0")
        return 0.0
    return number if np.isfinite(number) else 0.0


def parse_generic_datetime(text: str) -> Optional[datetime]:
    # pandas reads these as the current clock time
    if text.strip().lower() in RELATIVE_DATE_WORDS:
        return None
    try:
        parsed = pd.to_datetime(text, errors='coerce')
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    result = parsed.to_pydatetime()
    if result.tzinfo is not None:
        result = result.replace(tzinfo=None)
    return result


def parse_trade_date(value: Cell) -> Optional[datetime]:
    """Parse "yyyy.MM.dd HH:mm:ss" style report dates or Excel serial numbers."""
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.to_pydatetime() if isinstance(value, pd.Timestamp) else value
    if is_number(value):
        if value == 0:
            return None
        try:
            return EXCEL_EPOCH + timedelta(days=float(value))
        except (OverflowError, ValueError):
            logger.debug(f"Serial date {value} out of range")
            return None

    normalized = str(value).strip().replace('.', '-').replace('/', '-')
    for fmt in TRADE_DATE_FORMATS:
        try:
            return datetime.strptime(normalized, fmt)
        except ValueError:
            continue
    return parse_generic_datetime(normalized)


def normalize_trade_type(value: Cell) -> Optional[str]:
    """Map MetaTrader buy/sell and NinjaTrader Comprada/Venda(ida) to Long/Short."""
    if is_blank(value):
        return None
    lower = str(value).lower().strip()
    if 'buy' in lower:
        return 'Long'
    if 'sell' in lower:
        return 'Short'
    if 'comprada' in lower or lower == 'long':
        return 'Long'
    if 'venda' in lower or 'vendida' in lower or lower == 'short':
        return 'Short'
    return None


def clean_symbol(symbol: Cell) -> str:
    """"EURUSD.cash" -> "EURUSD", "MNQ 12-25" -> "MNQ", "NQ DEC25" -> "NQ"."""
    if is_blank(symbol):
        return ''
    cleaned = str(symbol).strip().split('.')[0]
    cleaned = _CONTRACT_SUFFIX.sub('', cleaned)
    return cleaned.strip()


def detect_delimiter(text: str, sample_lines: int = 10) -> str:
    lines = [line for line in text.splitlines() if line.strip()][:sample_lines]
    counts = {delimiter: sum(line.count(delimiter) for line in lines) for delimiter in DELIMITERS}
    best = max(DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] else ','
