"""Trade record model shared by the journal modules.

Trades travel between the backend (plain dict rows with ISO date strings)
and the analytics layer (pandas DataFrames). This module owns both
conversions.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

import pandas as pd


class MarketCategory(str, Enum):
    EQUITIES = "Equities"
    CRYPTO = "Crypto"
    FOREX = "Forex"
    FUTURES = "Futures"
    OTHER = "Other"


class TradeType(str, Enum):
    LONG = "Long"
    SHORT = "Short"


class TradeStatus(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"


FRAME_COLUMNS = [
    "id",
    "symbol",
    "market_category",
    "type",
    "status",
    "entry_date",
    "exit_date",
    "entry_price",
    "exit_price",
    "quantity",
    "pnl",
    "risk",
    "reward",
    "risk_reward",
    "strategy",
]


def parse_datetime(value) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime).

    Args:
        value: String, datetime, or None.

    Returns:
        Naive UTC datetime, or None for empty input.

    Raises:
        ValueError: If the string cannot be parsed as a date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = pd.Timestamp(value)
    else:
        ts = pd.Timestamp(str(value).strip())
    if pd.isna(ts):
        raise ValueError(f"Invalid date: {value}")
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts.to_pydatetime()


def _optional_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class Trade:
    """A single journal trade."""
    symbol: str
    type: TradeType
    entry_price: float
    quantity: float
    entry_date: datetime
    market: str = "Other"
    market_category: MarketCategory = MarketCategory.OTHER
    status: TradeStatus = TradeStatus.OPEN
    id: Optional[str] = None
    user_id: Optional[str] = None
    exit_price: Optional[float] = None
    exit_date: Optional[datetime] = None
    pnl: Optional[float] = None
    pnl_percentage: Optional[float] = None
    risk: Optional[float] = None
    reward: Optional[float] = None
    risk_reward: Optional[float] = None
    strategy: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    notes: Optional[str] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    commission: Optional[float] = None
    fees: Optional[float] = None
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: dict) -> "Trade":
        """Build a Trade from a backend row.

        Unknown keys (created_at, updated_at, ...) are ignored.
        """
        return cls(
            id=record.get("id"),
            user_id=record.get("user_id"),
            symbol=str(record["symbol"]).upper(),
            market=record.get("market") or "Other",
            market_category=MarketCategory(record.get("market_category") or "Other"),
            type=TradeType(record["type"]),
            status=TradeStatus(record.get("status") or "Open"),
            entry_price=float(record["entry_price"]),
            quantity=float(record["quantity"]),
            entry_date=parse_datetime(record["entry_date"]),
            exit_price=_optional_float(record.get("exit_price")),
            exit_date=parse_datetime(record.get("exit_date")),
            pnl=_optional_float(record.get("pnl")),
            pnl_percentage=_optional_float(record.get("pnl_percentage")),
            risk=_optional_float(record.get("risk")),
            reward=_optional_float(record.get("reward")),
            risk_reward=_optional_float(record.get("risk_reward")),
            strategy=record.get("strategy") or None,
            tags=list(record.get("tags") or []),
            notes=record.get("notes") or None,
            stop_loss=_optional_float(record.get("stop_loss")),
            take_profit=_optional_float(record.get("take_profit")),
            commission=_optional_float(record.get("commission")),
            fees=_optional_float(record.get("fees")),
            deleted_at=parse_datetime(record.get("deleted_at")),
        )

    def to_record(self) -> dict:
        """Serialize to a backend row (enums as values, dates as ISO strings)."""
        record = asdict(self)
        record["market_category"] = self.market_category.value
        record["type"] = self.type.value
        record["status"] = self.status.value
        for key in ("entry_date", "exit_date", "deleted_at"):
            if record[key] is not None:
                record[key] = record[key].isoformat()
        if record["id"] is None:
            del record["id"]
        return record

    def computed_pnl(self) -> float:
        """Return stored P&L, or derive it from prices for closed trades."""
        if self.pnl is not None:
            return self.pnl

        if self.status != TradeStatus.CLOSED or self.exit_price is None:
            return 0.0

        direction = 1 if self.type == TradeType.LONG else -1
        gross = direction * (self.exit_price - self.entry_price) * self.quantity
        return gross - (self.commission or 0) - (self.fees or 0)

    def holding_time(self) -> Optional[timedelta]:
        """Time between entry and exit, or None if still open."""
        if self.exit_date is None:
            return None
        return self.exit_date - self.entry_date


def trades_to_frame(trades: list[Trade]) -> pd.DataFrame:
    """Convert trades to an analytics DataFrame sorted by entry date.

    The pnl column always holds computed_pnl(), so open trades count as 0.

    Args:
        trades: List of Trade objects.

    Returns:
        DataFrame with FRAME_COLUMNS.
    """
    if not trades:
        df = pd.DataFrame(columns=FRAME_COLUMNS)
        df["pnl"] = df["pnl"].astype(float)
        df["entry_date"] = pd.to_datetime(df["entry_date"])
        df["exit_date"] = pd.to_datetime(df["exit_date"])
        return df

    rows = []
    for trade in trades:
        rows.append({
            "id": trade.id,
            "symbol": trade.symbol,
            "market_category": trade.market_category.value,
            "type": trade.type.value,
            "status": trade.status.value,
            "entry_date": trade.entry_date,
            "exit_date": trade.exit_date,
            "entry_price": trade.entry_price,
            "exit_price": trade.exit_price,
            "quantity": trade.quantity,
            "pnl": trade.computed_pnl(),
            "risk": trade.risk,
            "reward": trade.reward,
            "risk_reward": trade.risk_reward,
            "strategy": trade.strategy,
        })

    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    df["pnl"] = df["pnl"].astype(float)
    df["entry_date"] = pd.to_datetime(df["entry_date"])
    df["exit_date"] = pd.to_datetime(df["exit_date"])
    return df.sort_values("entry_date", kind="stable").reset_index(drop=True)
