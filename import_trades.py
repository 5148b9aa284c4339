import os
import logging
from datetime import datetime
from typing import List, Dict, Optional, Tuple

import pytz
from dotenv import load_dotenv

from file_detection import TradeImportError, is_pdf
from metatrader_import import process_import_file
from ninjatrader_import import (
    get_ninjatrader_auto_mapping,
    parse_ninjatrader_csv,
    parse_ninjatrader_date,
    parse_ninjatrader_money,
    parse_ninjatrader_price,
)
from schemas import ColumnMapping, ImportResult, RawTradeData, Trade, TradovateRawTrade
from trade_parsing import clean_symbol, is_blank, normalize_trade_type, parse_number, parse_trade_date
from tradovate_import import (
    clean_tradovate_symbol,
    determine_tradovate_direction,
    get_tradovate_auto_mapping,
    parse_tradovate_csv,
    parse_tradovate_date,
    parse_tradovate_money,
    parse_tradovate_pdf,
    parse_tradovate_price,
)

load_dotenv()

logger = logging.getLogger(__name__)

TARGET_TIMEZONE = os.getenv("TARGET_TIMEZONE", "America/New_York")

PLATFORMS = ('tradovate', 'metatrader', 'ninjatrader')

# role -> (header taken as-is when present, case-insensitive aliases)
COLUMN_ALIASES: Dict[str, Tuple[Optional[str], List[str]]] = {
    'entry_date': ('Open Time', ['Open Time', 'Time', 'Entry Time', 'Data Abertura', 'Hora Entrada', 'Abertura']),
    'symbol': ('Symbol', ['Symbol', 'Ativo', 'Instrumento', 'Instrument']),
    'direction': ('Type', ['Type', 'Tipo', 'Direção', 'Direcao', 'Market pos.', 'Pos mercado.', 'Side']),
    'volume': ('Volume', ['Volume', 'Size', 'Lote', 'Qtd', 'Quantidade', 'Qty']),
    'entry_price': ('Open Price', ['Open Price', 'Price', 'Entry Price', 'Preço Entrada', 'Preco Entrada']),
    'exit_date': ('Close Time', ['Close Time', 'Exit Time', 'Data Fechamento', 'Hora Saída', 'Hora Saida', 'Fechamento']),
    'exit_price': ('Close Price', ['Close Price', 'Exit Price', 'Preço Saída', 'Preco Saida']),
    'sl': (None, ['S / L', 'SL', 'Stop Loss', 'S/L', 'StopLoss']),
    'tp': (None, ['T / P', 'TP', 'Take Profit', 'T/P', 'TakeProfit']),
    'profit': ('Profit', ['Profit', 'Lucro', 'P/L', 'PnL']),
    'commission': (None, ['Commission', 'Comission', 'Comissao', 'Comissão', 'Fee', 'Fees', 'Corretagem', 'Cost']),
    'swap': (None, ['Swap', 'Swaps', 'Rollover', 'Taxes', 'Taxa', 'Taxas']),
}


def detect_column_mapping(headers: List[str]) -> ColumnMapping:
    """Guess which header plays which role (MetaTrader, NinjaTrader, English or Portuguese).

    An exact preferred header wins; otherwise the first header, in file order,
    matching one of the role's aliases.
    """
    mapping = {}
    used = set()
    for role, (preferred, aliases) in COLUMN_ALIASES.items():
        if preferred and preferred in headers:
            mapping[role] = preferred
        else:
            lower_aliases = {alias.lower() for alias in aliases}
            mapping[role] = next((h for h in headers if str(h).strip().lower() in lower_aliases), '')
        if mapping[role]:
            used.add(mapping[role])
        else:
            logger.debug(f"No column found for '{role}'")

    unmapped = [h for h in headers if h not in used]
    if unmapped:
        logger.info(f"Unmapped columns: {unmapped}")
    return ColumnMapping(**mapping)


def convert_to_target_timezone(value: datetime, source_timezone: str) -> datetime:
    """Read a naive broker time in source_timezone and return the TARGET_TIMEZONE wall time."""
    try:
        source = pytz.timezone(source_timezone)
        target = pytz.timezone(TARGET_TIMEZONE)
    except pytz.UnknownTimeZoneError as e:
        logger.warning(f"Timezone conversion failed ({e}), keeping original time")
        return value

    localized = source.localize(value) if value.tzinfo is None else value
    return localized.astimezone(target).replace(tzinfo=None)


def _outcome(pnl: float) -> str:
    if pnl > 0:
        return 'win'
    if pnl < 0:
        return 'loss'
    return 'breakeven'


def _value(row: RawTradeData, column: str):
    if not column:
        return None
    value = row.get(column)
    return None if is_blank(value) else value


def _transform_row(row: RawTradeData, mapping: ColumnMapping, data_source: str,
                   broker_timezone: Optional[str], account_id: str) -> Optional[Trade]:
    ninja = data_source == 'ninjatrader'
    parse_date = parse_ninjatrader_date if ninja else parse_trade_date
    parse_value = parse_ninjatrader_price if ninja else parse_number

    entry = parse_date(_value(row, mapping.entry_date))
    if entry is None:
        logger.debug(f"Skipping row without entry date: {row}")
        return None
    if broker_timezone:
        entry = convert_to_target_timezone(entry, broker_timezone)

    symbol = clean_symbol(_value(row, mapping.symbol))
    if not symbol:
        logger.debug(f"Skipping row without symbol: {row}")
        return None

    trade = {
        'account_id': account_id,
        'symbol': symbol,
        'type': normalize_trade_type(_value(row, mapping.direction)) or 'Long',
        'entry_date': entry.strftime('%Y-%m-%d'),
        'entry_time': entry.strftime('%H:%M:%S'),
        'entry_price': parse_value(_value(row, mapping.entry_price)),
        'lot': parse_value(_value(row, mapping.volume)),
        'stop_loss': parse_value(_value(row, mapping.sl)),
        'take_profit': parse_value(_value(row, mapping.tp)),
    }

    exit_value = _value(row, mapping.exit_date)
    if exit_value is not None:
        exit_date = parse_date(exit_value)
        if exit_date is not None:
            if broker_timezone:
                exit_date = convert_to_target_timezone(exit_date, broker_timezone)
            trade['exit_date'] = exit_date.strftime('%Y-%m-%d')
            trade['exit_time'] = exit_date.strftime('%H:%M:%S')

    if _value(row, mapping.exit_price) is not None:
        trade['exit_price'] = parse_value(_value(row, mapping.exit_price))

    commission = _value(row, mapping.commission)
    if commission is not None:
        if ninja:
            # NinjaTrader reports fees as positive numbers
            trade['commission'] = -abs(parse_ninjatrader_money(commission))
        else:
            trade['commission'] = parse_number(commission)

    if _value(row, mapping.swap) is not None:
        trade['swap'] = parse_value(_value(row, mapping.swap))

    profit = _value(row, mapping.profit)
    if profit is not None:
        gross = parse_ninjatrader_money(profit) if ninja else parse_number(profit)
        pnl = gross + trade.get('commission', 0.0) + trade.get('swap', 0.0)
        trade['pnl'] = pnl
        trade['outcome'] = _outcome(pnl)

    return Trade(**trade)


def transform_trades(raw_data: List[RawTradeData], mapping: ColumnMapping, data_source: str,
                     broker_timezone: Optional[str], account_id: str) -> List[Trade]:
    """Turn MetaTrader/NinjaTrader rows into trades ready for the trade store.

    Rows that cannot be read are logged and left out; ids are assigned by the store.
    """
    trades = []
    for row in raw_data:
        try:
            trade = _transform_row(row, mapping, data_source, broker_timezone, account_id)
        except (ValueError, TypeError, OverflowError) as e:
            logger.error(f"Error transforming row {row}: {e}")
            continue
        if trade is not None:
            trades.append(trade)

    skipped = len(raw_data) - len(trades)
    if skipped:
        logger.warning(f"Skipped {skipped} of {len(raw_data)} {data_source} rows")
    return trades


def transform_tradovate_trades(raw_trades: List[TradovateRawTrade], broker_timezone: Optional[str],
                               account_id: str) -> List[Trade]:
    trades = []
    for raw in raw_trades:
        direction = determine_tradovate_direction(raw.bought_timestamp, raw.sold_timestamp)
        if direction == 'Long':
            entry_stamp, entry_price, exit_stamp, exit_price = (
                raw.bought_timestamp, raw.buy_price, raw.sold_timestamp, raw.sell_price)
        else:
            entry_stamp, entry_price, exit_stamp, exit_price = (
                raw.sold_timestamp, raw.sell_price, raw.bought_timestamp, raw.buy_price)

        entry = parse_tradovate_date(entry_stamp)
        symbol = clean_tradovate_symbol(raw.symbol)
        if entry is None or not symbol:
            logger.debug(f"Skipping Tradovate row: {raw}")
            continue
        exit_date = parse_tradovate_date(exit_stamp)
        if broker_timezone:
            entry = convert_to_target_timezone(entry, broker_timezone)
            if exit_date is not None:
                exit_date = convert_to_target_timezone(exit_date, broker_timezone)

        pnl = parse_tradovate_money(raw.pnl)
        trades.append(Trade(
            account_id=account_id,
            symbol=symbol,
            type=direction,
            entry_date=entry.strftime('%Y-%m-%d'),
            entry_time=entry.strftime('%H:%M:%S'),
            entry_price=parse_tradovate_price(entry_price),
            lot=parse_tradovate_price(raw.qty),
            exit_date=exit_date.strftime('%Y-%m-%d') if exit_date else None,
            exit_time=exit_date.strftime('%H:%M:%S') if exit_date else None,
            exit_price=parse_tradovate_price(exit_price),
            pnl=pnl,
            outcome=_outcome(pnl),
        ))
    return trades


def extract_raw(data: bytes, filename: Optional[str], content_type: Optional[str], platform: str) -> ImportResult:
    """Run the platform importer on an uploaded file."""
    if platform not in PLATFORMS:
        raise TradeImportError(f"Unsupported platform: {platform}")
    if not data:
        raise TradeImportError("File is empty")

    if platform == 'tradovate':
        if is_pdf(data, filename, content_type):
            return parse_tradovate_pdf(data)
        return parse_tradovate_csv(data)
    if platform == 'ninjatrader':
        return parse_ninjatrader_csv(data)
    return process_import_file(data, filename, content_type)


def default_mapping(platform: str, result: ImportResult) -> ColumnMapping:
    """Fixed mapping for Tradovate and the Portuguese NinjaTrader grid, detection otherwise."""
    if platform == 'tradovate':
        return get_tradovate_auto_mapping()
    headers = result.headers()
    if platform == 'ninjatrader':
        mapping = get_ninjatrader_auto_mapping()
        if mapping.entry_date in headers and mapping.symbol in headers:
            return mapping
    return detect_column_mapping(headers)


def run_import(data: bytes, filename: Optional[str], content_type: Optional[str], platform: str,
               account_id: str, broker_timezone: Optional[str] = None,
               mapping: Optional[ColumnMapping] = None) -> Tuple[List[Trade], ImportResult]:
    """File bytes in, canonical trades out (plus the raw extraction result)."""
    result = extract_raw(data, filename, content_type, platform)

    if platform == 'tradovate':
        trades = transform_tradovate_trades(result.data, broker_timezone, account_id)
    else:
        mapping = mapping or default_mapping(platform, result)
        trades = transform_trades(result.data, mapping, platform, broker_timezone, account_id)

    logger.info(f"Imported {len(trades)} {platform} trades from '{filename}'")
    return trades, result
