"""Trade log: configuration, logging and trade CRUD.

Trades are stored in the "trades" table of the configured JournalStore.
Deletes are soft by default (deleted_at is set) so history can be restored.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml

from .models import Trade, TradeStatus, parse_datetime
from .storage import JournalStore

logger = logging.getLogger(__name__)

TRADES_TABLE = "trades"

# Changing any of these invalidates stored pnl / risk_reward
PRICE_FIELDS = {
    "type",
    "status",
    "entry_price",
    "exit_price",
    "quantity",
    "commission",
    "fees",
    "risk",
    "reward",
}


class TradeValidationError(Exception):
    """Raised when a trade record fails validation."""


def setup_logging(config: dict) -> None:
    """Configure logging with rotation.

    Args:
        config: Configuration dictionary with logging settings.
    """
    from logging.handlers import RotatingFileHandler

    log_dir = Path(config["paths"]["logs"])
    log_dir.mkdir(parents=True, exist_ok=True)

    log_config = config.get("logging", {})
    level = getattr(logging, log_config.get("level", "INFO"))
    max_bytes = log_config.get("max_bytes", 10485760)
    backup_count = log_config.get("backup_count", 5)

    handler = RotatingFileHandler(
        log_dir / "trade_journal.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
    )
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root_logger.addHandler(console_handler)


def load_config(config_path: str = "config/config.yaml") -> dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file.

    Returns:
        Configuration dictionary.

    Raises:
        FileNotFoundError: If config file doesn't exist.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}. "
            "Copy config/config.example.yaml to config/config.yaml and update settings."
        )

    with open(path) as f:
        return yaml.safe_load(f) or {}


def validate_trade(trade: Trade) -> None:
    """Check a trade for consistency.

    Raises:
        TradeValidationError: On the first failed check.
    """
    if not trade.symbol:
        raise TradeValidationError("Symbol is required")
    if trade.entry_price <= 0:
        raise TradeValidationError("Entry price must be positive")
    if trade.quantity <= 0:
        raise TradeValidationError("Quantity must be positive")
    if trade.exit_price is not None and trade.exit_price <= 0:
        raise TradeValidationError("Exit price must be positive")
    if trade.exit_date is not None and trade.exit_date < trade.entry_date:
        raise TradeValidationError("Exit date cannot be before entry date")
    if trade.status == TradeStatus.CLOSED and trade.exit_price is None:
        raise TradeValidationError("Closed trades require an exit price")


def fill_derived_fields(trade: Trade) -> Trade:
    """Fill derived fields (risk_reward, pnl, pnl_percentage)."""
    if trade.risk_reward is None and trade.risk and trade.reward:
        trade.risk_reward = round(trade.reward / trade.risk, 2)

    if trade.status == TradeStatus.CLOSED:
        if trade.pnl is None:
            trade.pnl = round(trade.computed_pnl(), 2)
        cost = trade.entry_price * trade.quantity
        if trade.pnl_percentage is None and cost:
            trade.pnl_percentage = round(trade.pnl / cost * 100, 2)

    return trade


class TradeLog:
    """CRUD access to a user's trades."""

    def __init__(self, store: JournalStore, user_id: str):
        self.store = store
        self.user_id = user_id

    def _build(self, record: dict) -> Trade:
        try:
            trade = Trade.from_record(record)
        except KeyError as e:
            raise TradeValidationError(f"Missing required field: {e.args[0]}") from e
        except (TypeError, ValueError) as e:
            raise TradeValidationError(str(e)) from e

        validate_trade(trade)
        return fill_derived_fields(trade)

    def create_trade(self, record: dict) -> Trade:
        """Validate and store a new trade.

        Args:
            record: Trade fields (enum values and ISO date strings accepted).

        Returns:
            The stored Trade with its id.

        Raises:
            TradeValidationError: If the record is invalid.
        """
        trade = self._build({**record, "user_id": self.user_id})
        stored = self.store.insert(TRADES_TABLE, [trade.to_record()])[0]
        logger.info(f"Created trade {stored['id']} {trade.type.value} {trade.symbol}")
        return Trade.from_record(stored)

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        rows = self.store.select(TRADES_TABLE, {"id": trade_id, "user_id": self.user_id})
        if not rows or rows[0].get("deleted_at"):
            return None
        return Trade.from_record(rows[0])

    def get_trades(
        self,
        strategy: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[TradeStatus] = None,
    ) -> list[Trade]:
        """List live trades, newest entry first.

        Args:
            strategy: Only trades with this strategy name.
            start: Only trades entered on or after this time.
            end: Only trades entered on or before this time.
            status: Only trades with this status.

        Returns:
            List of Trade objects.
        """
        filters = {"user_id": self.user_id, "deleted_at": None}
        if strategy:
            filters["strategy"] = strategy
        if status:
            filters["status"] = TradeStatus(status).value

        rows = self.store.select(TRADES_TABLE, filters, order_by="entry_date", descending=True)

        trades = []
        for row in rows:
            try:
                trade = Trade.from_record(row)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable trade {row.get('id')}: {e}")
                continue
            if start and trade.entry_date < start:
                continue
            if end and trade.entry_date > end:
                continue
            trades.append(trade)

        return trades

    def update_trade(self, trade_id: str, changes: dict) -> Trade:
        """Apply changes to a trade and re-validate it.

        Raises:
            TradeValidationError: If the trade is missing or the result is invalid.
        """
        current = self.get_trade(trade_id)
        if current is None:
            raise TradeValidationError(f"Trade not found: {trade_id}")

        merged = {**current.to_record(), **changes}
        if PRICE_FIELDS.intersection(changes):
            for derived in ("pnl", "pnl_percentage", "risk_reward"):
                if derived not in changes:
                    merged[derived] = None

        trade = self._build(merged)
        record = trade.to_record()
        record.pop("id", None)
        stored = self.store.update(TRADES_TABLE, trade_id, record)

        logger.info(f"Updated trade {trade_id}")
        return Trade.from_record(stored)

    def close_trade(
        self,
        trade_id: str,
        exit_price: float,
        exit_date: Optional[datetime] = None,
    ) -> Trade:
        """Close an open trade and compute its P&L."""
        exit_date = parse_datetime(exit_date) or datetime.now(timezone.utc).replace(tzinfo=None)
        return self.update_trade(trade_id, {
            "status": TradeStatus.CLOSED.value,
            "exit_price": exit_price,
            "exit_date": exit_date.isoformat(),
        })

    def delete_trade(self, trade_id: str, hard: bool = False) -> bool:
        """Delete a trade.

        Args:
            trade_id: Trade id.
            hard: Remove the row instead of setting deleted_at.

        Returns:
            True if a trade was deleted.
        """
        if hard:
            removed = self.store.delete(TRADES_TABLE, row_id=trade_id, filters={"user_id": self.user_id})
            logger.info(f"Hard-deleted trade {trade_id}")
            return removed > 0

        if self.get_trade(trade_id) is None:
            return False

        self.store.update(TRADES_TABLE, trade_id, {
            "deleted_at": datetime.now(timezone.utc).replace(tzinfo=None).isoformat(),
        })
        logger.info(f"Soft-deleted trade {trade_id}")
        return True
