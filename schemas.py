from pydantic import BaseModel
from typing import Optional, List, Dict, Union, Any, Literal

# One source row keyed by its (normalized) header
RawTradeData = Dict[str, Union[str, float]]

Direction = Literal["Long", "Short"]


class ColumnMapping(BaseModel):
    entry_date: str = ""
    symbol: str = ""
    direction: str = ""
    volume: str = ""
    entry_price: str = ""
    exit_date: str = ""
    exit_price: str = ""
    profit: str = ""
    commission: str = ""
    swap: str = ""
    sl: str = ""
    tp: str = ""


class TradovateRawTrade(BaseModel):
    symbol: str
    qty: str = "1"
    buy_price: str = ""
    sell_price: str = ""
    pnl: str = ""
    bought_timestamp: str = ""
    sold_timestamp: str = ""
    duration: str = ""
    buy_fill_id: Optional[str] = None
    sell_fill_id: Optional[str] = None


class ImportResult(BaseModel):
    # RawTradeData rows, or TradovateRawTrade for the Tradovate importer
    data: List[Any] = []
    total_pnl: Optional[float] = None
    total_net_profit: Optional[float] = None
    # Which PDF pattern matched ("primary" / "flexible")
    pdf_pass: Optional[str] = None

    def headers(self) -> List[str]:
        seen: Dict[str, None] = {}
        for row in self.data:
            keys = row.keys() if isinstance(row, dict) else type(row).model_fields.keys()
            for key in keys:
                seen.setdefault(key, None)
        return list(seen)


class Trade(BaseModel):
    account_id: str
    symbol: str
    type: Direction
    entry_date: str
    entry_time: str
    entry_price: float = 0.0
    lot: float = 0.0
    stop_loss: float = 0.0
    take_profit: float = 0.0
    exit_date: Optional[str] = None
    exit_time: Optional[str] = None
    exit_price: Optional[float] = None
    pnl: Optional[float] = None
    commission: Optional[float] = None
    swap: Optional[float] = None
    outcome: Optional[Literal["win", "loss", "breakeven"]] = None
