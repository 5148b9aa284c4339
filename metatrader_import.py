"""MetaTrader 4/5 statement importer (XLSX, CSV and HTML reports).

The "Positions" table of a MetaTrader report repeats its headers:
Time, Position, Symbol, Type, Volume, Price, S / L, T / P, Time, Price, Commission, Swap, Profit
 0      1        2       3     4       5      6      7     8     9       10         11     12
so the duplicated Time/Price columns are told apart by index.
"""

import io
import re
import csv
import logging
import zipfile
from datetime import datetime
from typing import List, Optional

import pandas as pd
from lxml import etree
from lxml import html as lxml_html
from openpyxl.utils.exceptions import InvalidFileException

from file_detection import NOT_AN_XLSX, TradeImportError, decode_text, is_html, sniff_file_type
from schemas import ImportResult, RawTradeData
from trade_parsing import detect_delimiter, is_blank, is_number, parse_float_prefix

logger = logging.getLogger(__name__)

POSITIONS_SECTIONS = ('positions', 'posições')
END_SECTIONS = ('orders', 'ordens', 'deals', 'ofertas')

# Slot positions of the duplicated columns
ENTRY_TIME_INDEX, EXIT_TIME_INDEX = 0, 8
ENTRY_PRICE_INDEX, EXIT_PRICE_INDEX = 5, 9

PT_TO_EN_HEADERS = {
    'ativo': 'Symbol',
    'tipo': 'Type',
    'volume': 'Volume',
    'comissão': 'Commission',
    'lucro': 'Profit',
    'position': 'Position',
    's / l': 'S/L',
    't / p': 'T/P',
}

RESAVE_IN_EXCEL = (
    "Para sua segurança e dos seus dados, abra o arquivo Excel e salve-o com o mesmo nome novamente. "
    "Isso removerá caracteres inválidos e permitirá a importação correta."
)

UNREADABLE_HTML = "Não foi possível ler o relatório HTML. Exporte o relatório novamente pelo MetaTrader."

REPORT_DATE = re.compile(r'^\d{4}\.\d{2}\.\d{2}')
XML_DECLARATION = re.compile(r'^\s*<\?xml[^>]*\?>')

# HTML report column slots by row width (Profit is always the last cell)
HTML_LAYOUTS = {
    13: dict(volume=4, entry_price=5, sl=6, tp=7, exit_time=8, exit_price=9, commission=10, swap=11),
    # extra column right after Type
    14: dict(volume=5, entry_price=6, sl=7, tp=8, exit_time=9, exit_price=10, commission=11, swap=12),
}


def _html_layout(width: int) -> dict:
    if width in HTML_LAYOUTS:
        return HTML_LAYOUTS[width]
    layout = dict(HTML_LAYOUTS[13])
    if width >= 15:
        layout.update(commission=width - 3, swap=width - 2)
    return layout


def _to_cell(value):
    if is_blank(value):
        return ''
    if isinstance(value, datetime):
        return value.strftime('%Y.%m.%d %H:%M:%S')
    if is_number(value):
        return float(value)
    return str(value)


def _trim_row(cells: list) -> list:
    end = len(cells)
    while end and is_blank(cells[end - 1]):
        end -= 1
    return cells[:end]


def _first_cell(row: list) -> str:
    if not row or is_blank(row[0]):
        return ''
    return str(row[0]).strip().lower()


def read_spreadsheet_rows(data: bytes) -> List[list]:
    """First worksheet as a list of rows, trailing empty cells removed."""
    try:
        df = pd.read_excel(io.BytesIO(data), sheet_name=0, header=None, engine='openpyxl')
    except (zipfile.BadZipFile, KeyError, InvalidFileException) as e:
        # ZIP header present but no readable workbook inside
        logger.error(f"Damaged XLSX container: {e}")
        raise TradeImportError(NOT_AN_XLSX) from e
    except Exception as e:
        message = str(e).lower()
        if any(hint in message for hint in ('disallowed character', 'illegal character', 'invalid')):
            logger.error(f"XLSX rejected by the reader: {e}")
            raise TradeImportError(RESAVE_IN_EXCEL) from e
        raise
    return [_trim_row([_to_cell(value) for value in record]) for record in df.itertuples(index=False)]


def read_csv_rows(text: str) -> List[list]:
    reader = csv.reader(io.StringIO(text), delimiter=detect_delimiter(text))
    return [row for row in reader if any(cell.strip() for cell in row)]


def disambiguate_headers(headers: list) -> List[str]:
    """Rename the duplicated Time/Price columns by slot and translate Portuguese headers."""
    unique_headers = []
    counts = {'Time': 0, 'Price': 0}

    for index, header in enumerate(headers):
        trimmed = '' if is_blank(header) else str(header).strip()
        lower = trimmed.lower()
        new_header = trimmed

        if lower in ('time', 'horário'):
            if index == ENTRY_TIME_INDEX:
                new_header = 'Entry Time'
            elif index == EXIT_TIME_INDEX:
                new_header = 'Exit Time'
            else:
                counts['Time'] += 1
                new_header = f"Time_{counts['Time']}"
        elif lower in ('price', 'preço'):
            if index == ENTRY_PRICE_INDEX:
                new_header = 'Entry Price'
            elif index == EXIT_PRICE_INDEX:
                new_header = 'Exit Price'
            else:
                counts['Price'] += 1
                new_header = f"Price_{counts['Price']}"
        elif lower in PT_TO_EN_HEADERS:
            new_header = PT_TO_EN_HEADERS[lower]

        unique_headers.append(new_header)
    return unique_headers


def extract_positions(rows: List[list]) -> List[RawTradeData]:
    positions_index = next(
        (i for i, row in enumerate(rows) if _first_cell(row) in POSITIONS_SECTIONS), None
    )
    if positions_index is None:
        logger.error("No Positions section in MetaTrader report")
        raise TradeImportError('Section "Positions"/"Posições" not found in the file.')

    header_index = positions_index + 1
    if header_index >= len(rows):
        raise TradeImportError('Header row not found after "Positions" section.')

    headers = disambiguate_headers(rows[header_index])

    data: List[RawTradeData] = []
    for row in rows[header_index + 1:]:
        if not row:
            continue
        if _first_cell(row) in END_SECTIONS:
            break
        # spacers and totals
        if len(row) < 3:
            continue
        data.append({header: row[i] for i, header in enumerate(headers) if i < len(row)})

    logger.debug(f"Extracted {len(data)} MetaTrader positions")
    return data


def find_total_net_profit(rows: List[list]) -> Optional[float]:
    for row in reversed(rows):
        if not row:
            continue
        row_text = ' '.join(str(cell) for cell in row if not is_blank(cell)).lower()
        if 'total net profit' not in row_text:
            continue

        for cell in row:
            if is_number(cell):
                return float(cell)
            if isinstance(cell, str) and re.search(r'[0-9]', cell) and 'total' not in cell.lower():
                value = parse_float_prefix(re.sub(r'[^0-9.-]', '', cell))
                if value is not None:
                    return value
    return None


def parse_trading_file(data: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> ImportResult:
    """Parse an XLSX or CSV MetaTrader export (HTML disguised as .xlsx is rerouted)."""
    if not data:
        raise TradeImportError("File is empty")

    kind = sniff_file_type(data, filename, content_type)
    if kind == 'html':
        return parse_html_report(data)
    if kind == 'csv':
        rows = read_csv_rows(decode_text(data))
    elif kind == 'xlsx':
        rows = read_spreadsheet_rows(data)
    else:
        raise TradeImportError(NOT_AN_XLSX)

    return ImportResult(data=extract_positions(rows), total_net_profit=find_total_net_profit(rows))


def _html_cells(row) -> List[str]:
    return [cell.text_content().replace('\xa0', ' ').strip() for cell in row.xpath('./td')]


def _section_marker(row) -> Optional[str]:
    """"positions" or "end" when the row carries a bold section title."""
    for bold in row.xpath('.//b'):
        title = bold.text_content().strip().lower()
        if title in POSITIONS_SECTIONS:
            return 'positions'
        if title in END_SECTIONS:
            return 'end'
    return None


def _at(cells: List[str], index: int) -> str:
    return cells[index] if 0 <= index < len(cells) else ''


def _html_total_net_profit(root) -> Optional[float]:
    for cell in root.iter('td'):
        if cell.xpath('.//td') or 'total net profit:' not in cell.text_content().lower():
            continue
        value = cell.xpath('following::b[1]')
        if value:
            return parse_float_prefix(re.sub(r'[^0-9.-]', '', value[0].text_content()))
    return None


def parse_html_report(data: bytes) -> ImportResult:
    content = XML_DECLARATION.sub('', decode_text(data), count=1)
    try:
        root = lxml_html.fromstring(content)
    except (etree.ParserError, ValueError) as e:
        logger.error(f"HTML report could not be parsed: {e}")
        raise TradeImportError(UNREADABLE_HTML) from e

    rows: List[RawTradeData] = []
    in_positions = False
    for row in root.xpath('//table//tr'):
        marker = _section_marker(row)
        if marker:
            in_positions = marker == 'positions'
            continue
        if not in_positions:
            continue

        cells = _html_cells(row)
        # header and spacer rows don't start with a report date
        if not cells or not REPORT_DATE.match(cells[0]):
            continue

        trade_type = _at(cells, 3).lower()
        if trade_type not in ('buy', 'sell'):
            continue

        layout = _html_layout(len(cells))
        rows.append({
            'Entry Time': cells[0],
            'Ticket': _at(cells, 1),
            'Symbol': _at(cells, 2),
            'Type': cells[3],
            'Volume': _at(cells, layout['volume']),
            'Entry Price': _at(cells, layout['entry_price']),
            'S/L': _at(cells, layout['sl']),
            'T/P': _at(cells, layout['tp']),
            'Exit Time': _at(cells, layout['exit_time']),
            'Exit Price': _at(cells, layout['exit_price']),
            'Commission': _at(cells, layout['commission']),
            'Swap': _at(cells, layout['swap']),
            'Profit': cells[-1],
        })

    logger.debug(f"Extracted {len(rows)} positions from MetaTrader HTML report")
    return ImportResult(data=rows, total_net_profit=_html_total_net_profit(root))


def process_import_file(data: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> ImportResult:
    if is_html(filename, content_type):
        return parse_html_report(data)
    return parse_trading_file(data, filename, content_type)
