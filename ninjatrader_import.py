"""NinjaTrader trade grid exports (Portuguese ";" and English "," variants)."""

import io
import logging
from datetime import datetime
from typing import List, Optional, Union

import pandas as pd

from file_detection import TradeImportError, decode_text
from schemas import ColumnMapping, ImportResult, RawTradeData
from trade_parsing import detect_delimiter, is_blank, is_number, parse_float_prefix, parse_generic_datetime

logger = logging.getLogger(__name__)

TRADE_NUMBER_COLUMNS = ('Núm. Neg.', 'Trade number')

STRICT_DATE_FORMATS = [
    '%d/%m/%Y %H:%M:%S',
    '%m/%d/%Y %I:%M:%S %p',
    '%m/%d/%Y %I:%M %p',
]
LAST_RESORT_DATE_FORMAT = '%d/%m/%Y %H:%M'


def _is_trade_number(value) -> bool:
    if is_blank(value):
        return False
    try:
        float(str(value).strip())
    except ValueError:
        return False
    return True


def parse_ninjatrader_content(content: str) -> ImportResult:
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
        logger.error("NinjaTrader CSV has no rows")
        raise TradeImportError("CSV file must have at least a header and one data row")

    if df.empty:
        raise TradeImportError("CSV file must have at least a header and one data row")

    # the Portuguese grid ends every line with ";"
    df = df.loc[:, [not str(col).startswith('Unnamed:') for col in df.columns]]

    data: List[RawTradeData] = []
    for row in df.to_dict('records'):
        trade_number = next(
            (row[col] for col in TRADE_NUMBER_COLUMNS if not is_blank(row.get(col))), None
        )
        if not _is_trade_number(trade_number):
            continue
        data.append({
            str(key): '' if is_blank(value) else str(value).strip()
            for key, value in row.items()
            if key
        })

    logger.debug(f"Kept {len(data)} of {len(df)} NinjaTrader rows")
    return ImportResult(data=data)


def parse_ninjatrader_csv(data: bytes) -> ImportResult:
    return parse_ninjatrader_content(decode_text(data))


def parse_ninjatrader_money(value: Union[str, float, None]) -> float:
    """Parse "$ 19,00", "-$ 14,00", "(100.00)" or "1.000,00".

    Separator heuristic: when both "," and "." appear the rightmost one is the
    decimal point; a lone "," is a decimal comma. Best effort, not locale aware.
    """
    if is_number(value):
        return 0.0 if pd.isna(value) else float(value)
    if is_blank(value) or not isinstance(value, str):
        return 0.0

    text = value.strip()
    is_parenthesis = text.startswith('(') and text.endswith(')')
    if is_parenthesis:
        text = text.replace('(', '').replace(')', '')

    text = ''.join(text.replace('$', '').split())

    if ',' in text and '.' in text:
        if text.rfind(',') > text.rfind('.'):
            text = text.replace('.', '').replace(',', '.', 1)
        else:
            text = text.replace(',', '')
    elif ',' in text:
        text = text.replace(',', '.', 1)

    number = parse_float_prefix(text)
    if number is None:
        return 0.0
    return -abs(number) if is_parenthesis else number


def parse_ninjatrader_price(value: Union[str, float, None]) -> float:
    return parse_ninjatrader_money(value)


def parse_ninjatrader_date(value: Union[str, float, None]) -> Optional[datetime]:
    if is_blank(value) or is_number(value):
        return None

    text = str(value).strip()
    for fmt in STRICT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    parsed = parse_generic_datetime(text)
    if parsed is not None:
        return parsed

    try:
        return datetime.strptime(text, LAST_RESORT_DATE_FORMAT)
    except ValueError:
        return None


def get_ninjatrader_auto_mapping() -> ColumnMapping:
    return ColumnMapping(
        entry_date='Hora entrada',
        symbol='Ativo',
        direction='Pos mercado.',
        volume='Qtd',
        entry_price='Preço entrada',
        exit_date='Hora saída',
        exit_price='Preço saída',
        profit='Profit',
        commission='Corretagem',
    )
