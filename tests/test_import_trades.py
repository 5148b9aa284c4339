from datetime import datetime

import pytest

import import_trades
from file_detection import TradeImportError
from import_trades import (
    convert_to_target_timezone,
    detect_column_mapping,
    default_mapping,
    run_import,
    transform_trades,
    transform_tradovate_trades,
)
from ninjatrader_import import get_ninjatrader_auto_mapping, parse_ninjatrader_content
from trade_parsing import parse_trade_date
from tradovate_import import parse_tradovate_content

MT_HEADERS = ["Entry Time", "Position", "Symbol", "Type", "Volume", "Entry Price", "S/L", "T/P",
              "Exit Time", "Exit Price", "Commission", "Swap", "Profit"]

MT_ROW = {
    "Entry Time": "2023.10.27 10:00:00",
    "Position": "1001",
    "Symbol": "EURUSD.cash",
    "Type": "buy",
    "Volume": "1.00",
    "Entry Price": "1.05000",
    "S/L": "1.04000",
    "T/P": "",
    "Exit Time": "2023.10.27 12:00:00",
    "Exit Price": "1.05500",
    "Commission": "-5.00",
    "Swap": "-2.00",
    "Profit": "500.00",
}

NINJA_ROW = {
    "Núm. Neg.": "1",
    "Ativo": "ES 03-25",
    "Pos mercado.": "Vendida",
    "Qtd": "2",
    "Preço entrada": "4150,25",
    "Preço saída": "4145,25",
    "Hora entrada": "06/12/2024 09:30:00",
    "Hora saída": "06/12/2024 09:45:00",
    "Profit": "500,00",
    "Corretagem": "5,00",
}

TRADOVATE_CSV = (
    "symbol,qty,buyPrice,sellPrice,pnl,boughtTimestamp,soldTimestamp,duration\n"
    "NQZ5,1,25501.00,25513.75,$255.00,11/30/2025 20:15:41,11/30/2025 20:21:56,6min 15sec\n"
    "MNQZ5,2,25520.00,25508.50,$(46.00),11/30/2025 21:05:10,11/30/2025 21:01:02,4min 8sec\n"
)

NINJA_GRID = (
    "Núm. Neg.;Ativo;Conta;Estratégia;Pos mercado.;Qtd;Preço entrada;Preço saída;Hora entrada;"
    "Hora saída;Entrada;Sáída;Profit;Acu lucro líquido;Corretagem;MAE;MFE;ETD;Barras;\n"
    "1;MNQ 12-25;Sim101;;Comprada;1;21160,50;21165,50;06/12/2024 09:30:00;06/12/2024 09:31:00;"
    "Entry;Exit;10,00;10,00;0,00;0;0;0;10;\n"
)

MT_CSV = (
    "Positions\n"
    "Time,Position,Symbol,Type,Volume,Price,S / L,T / P,Time,Price,Commission,Swap,Profit\n"
    "2023.10.27 10:00:00,1001,EURUSD.cash,buy,1.00,1.05000,,,2023.10.27 12:00:00,1.05500,-5.00,-2.00,500.00\n"
    "2023.10.27 13:00:00,1002,GBPUSD,sell,0.50,1.21000,,,2023.10.27 13:30:00,1.21500,-2.50,0.00,-250.00\n"
    "Orders\n"
    "Total Net Profit:,,240.50\n"
)


@pytest.fixture
def new_york(monkeypatch):
    monkeypatch.setattr(import_trades, "TARGET_TIMEZONE", "America/New_York")


def test_detect_metatrader_mapping():
    mapping = detect_column_mapping(MT_HEADERS)

    assert mapping.entry_date == "Entry Time"
    assert mapping.symbol == "Symbol"
    assert mapping.direction == "Type"
    assert mapping.volume == "Volume"
    assert mapping.entry_price == "Entry Price"
    assert mapping.exit_date == "Exit Time"
    assert mapping.exit_price == "Exit Price"
    assert mapping.sl == "S/L"
    assert mapping.tp == "T/P"
    assert mapping.commission == "Commission"
    assert mapping.swap == "Swap"
    assert mapping.profit == "Profit"


def test_detect_mt4_mapping():
    headers = ["Ticket", "Open Time", "Type", "Size", "Item", "Open Price", "S / L", "T / P",
               "Close Time", "Close Price", "Commission", "Taxes", "Profit"]
    mapping = detect_column_mapping(headers)

    assert mapping.entry_date == "Open Time"
    assert mapping.volume == "Size"
    assert mapping.entry_price == "Open Price"
    assert mapping.exit_date == "Close Time"
    assert mapping.exit_price == "Close Price"
    assert mapping.sl == "S / L"
    assert mapping.swap == "Taxes"
    assert mapping.symbol == ""


def test_detect_ninjatrader_mappings():
    portuguese = detect_column_mapping(list(NINJA_ROW))
    assert portuguese.entry_date == "Hora entrada"
    assert portuguese.exit_date == "Hora saída"
    assert portuguese.direction == "Pos mercado."
    assert portuguese.commission == "Corretagem"

    english = detect_column_mapping(["Trade number", "Instrument", "Market pos.", "Qty", "Entry price",
                                     "Exit price", "Entry time", "Exit time", "Profit", "Commission"])
    assert english.symbol == "Instrument"
    assert english.entry_date == "Entry time"
    assert english.entry_price == "Entry price"
    assert english.volume == "Qty"


def test_metatrader_pnl_composition():
    trades = transform_trades([MT_ROW], detect_column_mapping(MT_HEADERS), "metatrader", None, "acc-1")

    assert len(trades) == 1
    trade = trades[0]
    assert trade.account_id == "acc-1"
    assert trade.symbol == "EURUSD"
    assert trade.type == "Long"
    assert trade.entry_date == "2023-10-27"
    assert trade.entry_time == "10:00:00"
    assert trade.exit_time == "12:00:00"
    assert trade.entry_price == 1.05
    assert trade.stop_loss == 1.04
    assert trade.take_profit == 0.0
    assert trade.commission == -5.0
    assert trade.swap == -2.0
    assert trade.pnl == 493.0
    assert trade.outcome == "win"


def test_ninjatrader_pnl_composition():
    trades = transform_trades([NINJA_ROW], get_ninjatrader_auto_mapping(), "ninjatrader", None, "acc-1")

    trade = trades[0]
    assert trade.symbol == "ES"
    assert trade.type == "Short"
    assert trade.lot == 2.0
    assert trade.entry_price == 4150.25
    assert trade.exit_price == 4145.25
    assert trade.commission == -5.0
    assert trade.pnl == 495.0


def test_timezone_conversion(new_york):
    trades = transform_trades([MT_ROW], detect_column_mapping(MT_HEADERS), "metatrader", "UTC", "acc-1")

    assert trades[0].entry_date == "2023-10-27"
    assert trades[0].entry_time == "06:00:00"
    assert trades[0].exit_time == "08:00:00"


def test_unknown_timezone_keeps_time(new_york):
    trades = transform_trades([MT_ROW], detect_column_mapping(MT_HEADERS), "metatrader", "Mars/Olympus", "acc-1")
    assert trades[0].entry_time == "10:00:00"


def test_convert_across_dst(new_york):
    assert convert_to_target_timezone(datetime(2024, 1, 15, 15, 0), "UTC") == datetime(2024, 1, 15, 10, 0)
    assert convert_to_target_timezone(datetime(2024, 7, 15, 15, 0), "UTC") == datetime(2024, 7, 15, 11, 0)


def test_rows_without_date_or_symbol_are_skipped():
    mapping = detect_column_mapping(MT_HEADERS)
    rows = [dict(MT_ROW, **{"Entry Time": ""}), dict(MT_ROW, Symbol=""), MT_ROW]
    assert len(transform_trades(rows, mapping, "metatrader", None, "acc-1")) == 1


def test_unknown_direction_and_bad_numbers():
    row = dict(MT_ROW, Type="balance", Volume="n/a", Profit="0.00", Commission="", Swap="")
    trade = transform_trades([row], detect_column_mapping(MT_HEADERS), "metatrader", None, "acc-1")[0]

    assert trade.type == "Long"
    assert trade.lot == 0.0
    assert trade.commission is None
    assert trade.pnl == 0.0
    assert trade.outcome == "breakeven"


def test_excel_serial_dates():
    row = dict(MT_ROW, **{"Entry Time": 45226.5, "Exit Time": 45226.75})
    trade = transform_trades([row], detect_column_mapping(MT_HEADERS), "metatrader", None, "acc-1")[0]

    assert trade.entry_date == "2023-10-27"
    assert trade.entry_time == "12:00:00"
    assert trade.exit_time == "18:00:00"


def test_transform_tradovate_trades():
    raw = parse_tradovate_content(TRADOVATE_CSV).data
    long_trade, short_trade = transform_tradovate_trades(raw, None, "acc-1")

    assert long_trade.symbol == "NQ"
    assert long_trade.type == "Long"
    assert long_trade.entry_time == "20:15:41"
    assert long_trade.entry_price == 25501.0
    assert long_trade.exit_price == 25513.75
    assert long_trade.pnl == 255.0
    assert long_trade.outcome == "win"

    assert short_trade.symbol == "MNQ"
    assert short_trade.type == "Short"
    assert short_trade.lot == 2.0
    assert short_trade.entry_time == "21:01:02"
    assert short_trade.entry_price == 25508.5
    assert short_trade.exit_time == "21:05:10"
    assert short_trade.exit_price == 25520.0
    assert short_trade.pnl == -46.0
    assert short_trade.outcome == "loss"


def test_run_import_tradovate():
    trades, result = run_import(TRADOVATE_CSV.encode("utf-8"), "Performance.csv", "text/csv", "tradovate", "acc-1")
    assert len(trades) == 2
    assert result.total_pnl == 209.0


def test_run_import_ninjatrader_detects_mapping():
    trades, _ = run_import(NINJA_GRID.encode("utf-8"), "grid.csv", "text/csv", "ninjatrader", "acc-1")

    trade = trades[0]
    assert trade.symbol == "MNQ"
    assert trade.type == "Long"
    assert trade.entry_date == "2024-12-06"
    assert trade.entry_time == "09:30:00"
    assert trade.entry_price == 21160.5
    assert trade.pnl == 10.0
    assert trade.outcome == "win"


def test_run_import_metatrader_csv():
    trades, result = run_import(MT_CSV.encode("utf-8"), "ReportHistory.csv", None, "metatrader", "acc-1")

    assert [t.symbol for t in trades] == ["EURUSD", "GBPUSD"]
    assert [t.type for t in trades] == ["Long", "Short"]
    assert sum(t.pnl for t in trades) == pytest.approx(result.total_net_profit)


def test_run_import_with_explicit_mapping():
    mapping = detect_column_mapping(MT_HEADERS).model_copy(update={"swap": ""})
    trades, _ = run_import(MT_CSV.encode("utf-8"), "ReportHistory.csv", None, "metatrader", "acc-1",
                           mapping=mapping)
    assert trades[0].swap is None
    assert trades[0].pnl == 495.0


def test_unsupported_platform():
    with pytest.raises(TradeImportError, match="Unsupported platform: ctrader"):
        run_import(b"a,b\n1,2\n", "x.csv", None, "ctrader", "acc-1")


def test_out_of_range_serial_date_skips_only_that_row():
    mapping = detect_column_mapping(MT_HEADERS)
    rows = [dict(MT_ROW, **{"Entry Time": 123456789.0}), dict(MT_ROW, **{"Entry Time": 45000.5})]
    trades = transform_trades(rows, mapping, "metatrader", None, "acc-1")

    assert len(trades) == 1
    assert trades[0].entry_date == "2023-03-15"
    assert parse_trade_date(123456789.0) is None


def test_relative_date_words_are_not_dates():
    assert parse_trade_date("now") is None
    assert parse_trade_date("Today") is None


def test_default_mapping_ninjatrader_portuguese():
    result = parse_ninjatrader_content(NINJA_GRID)
    assert default_mapping("ninjatrader", result) == get_ninjatrader_auto_mapping()


def test_default_mapping_ninjatrader_english():
    result = parse_ninjatrader_content(
        "Trade number,Instrument,Market pos.,Qty,Entry price,Exit price,Entry time,Exit time,Profit,Commission\n"
        "1,NQ DEC25,Long,2,21715.25,21718.00,12/19/2024 8:44:03 AM,12/19/2024 8:44:59 AM,110.00,3.10\n"
    )
    mapping = default_mapping("ninjatrader", result)

    assert mapping.symbol == "Instrument"
    assert mapping.entry_date == "Entry time"
    assert mapping.commission == "Commission"
