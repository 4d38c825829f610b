"""Strategy playbook.

A playbook groups strategies by the asset they are traded on. Assets and
strategies share the "strategies" table: an asset row has is_playbook set
and is named after the asset; each strategy row points to it via
parent_id and asset_name. Cached performance figures live in
performance_* columns on each strategy row.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Optional

import pandas as pd

from . import performance
from .models import Trade, trades_to_frame
from .storage import JournalStore

logger = logging.getLogger(__name__)

STRATEGIES_TABLE = "strategies"


class PlaybookError(Exception):
    """Raised for invalid playbook operations."""


@dataclass
class StrategyPerformance:
    total_trades: int = 0
    win_rate: float = 0.0
    average_r: float = 0.0
    profit_factor: float = 0.0
    expectancy: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    net_pl: float = 0.0

    def to_columns(self) -> dict:
        """performance_* columns; non-finite values are stored as null."""
        columns = {}
        for key, value in asdict(self).items():
            if isinstance(value, float) and not math.isfinite(value):
                value = None
            columns[f"performance_{key}"] = value
        return columns

    @classmethod
    def from_row(cls, row: dict) -> "StrategyPerformance":
        """Read cached columns back; a null profit factor on a traded strategy is infinite."""
        values = {}
        for key in cls.__dataclass_fields__:
            value = row.get(f"performance_{key}")
            values[key] = value if value is not None else 0
        values["total_trades"] = int(values["total_trades"])
        if row.get("performance_profit_factor") is None and values["total_trades"] > 0:
            values["profit_factor"] = float("inf")
        return cls(**values)


def average_r_multiple(trades: pd.DataFrame) -> float:
    """Mean of pnl / risk over trades with a positive risk amount."""
    if trades.empty:
        return 0.0

    risk = pd.to_numeric(trades["risk"], errors="coerce")
    with_risk = trades[risk > 0]
    if with_risk.empty:
        return 0.0
    return float((with_risk["pnl"] / risk[risk > 0]).mean())


def strategy_performance(trades: list[Trade]) -> StrategyPerformance:
    """Summarise the trades taken with one strategy.

    Args:
        trades: Trades tagged with the strategy.

    Returns:
        StrategyPerformance (all zero for no trades).
    """
    df = trades_to_frame(trades)
    if df.empty:
        return StrategyPerformance()

    return StrategyPerformance(
        total_trades=len(df),
        win_rate=round(performance.win_rate(df), 2),
        average_r=round(average_r_multiple(df), 2),
        profit_factor=round(performance.profit_factor(df), 2),
        expectancy=round(performance.expectancy(df), 2),
        largest_win=round(performance.largest_win(df), 2),
        largest_loss=round(performance.largest_loss(df), 2),
        average_win=round(performance.average_win(df), 2),
        average_loss=round(performance.average_loss(df), 2),
        net_pl=round(performance.total_pnl(df), 2),
    )


def asset_performance(strategies: list[StrategyPerformance]) -> dict:
    """Roll strategy figures up to the asset.

    Trade counts and P&L are summed; ratios are averaged across strategies
    with a finite value. If every value is infinite the result is too.
    """
    if not strategies:
        return {
            "total_trades": 0,
            "win_rate": 0.0,
            "average_r": 0.0,
            "profit_factor": 0.0,
            "expectancy": 0.0,
            "net_pl": 0.0,
        }

    def mean(attr: str) -> float:
        values = [getattr(s, attr) for s in strategies]
        finite = [v for v in values if math.isfinite(v)]
        if not finite:
            return float("inf")
        return round(sum(finite) / len(finite), 2)

    return {
        "total_trades": sum(s.total_trades for s in strategies),
        "win_rate": mean("win_rate"),
        "average_r": mean("average_r"),
        "profit_factor": mean("profit_factor"),
        "expectancy": mean("expectancy"),
        "net_pl": round(sum(s.net_pl for s in strategies), 2),
    }


class Playbook:
    """Assets and strategies for one user."""

    def __init__(self, store: JournalStore, user_id: str):
        self.store = store
        self.user_id = user_id

    def _find_asset(self, asset_name: str) -> Optional[dict]:
        rows = self.store.select(STRATEGIES_TABLE, {
            "user_id": self.user_id,
            "asset_name": asset_name,
            "is_playbook": True,
        })
        return rows[0] if rows else None

    def create_asset(self, asset_name: str, description: str = "", icon: Optional[str] = None) -> dict:
        """Create a playbook asset.

        Raises:
            PlaybookError: If the name is empty or already used.
        """
        asset_name = asset_name.strip()
        if not asset_name:
            raise PlaybookError("Asset name is required")
        if self._find_asset(asset_name):
            raise PlaybookError("An asset with this name already exists")

        row = {
            "user_id": self.user_id,
            "name": asset_name,
            "description": description,
            "asset_name": asset_name,
            "icon": icon,
            "rules": [],
            "missed_trades": [],
            "is_playbook": True,
            **StrategyPerformance().to_columns(),
        }
        stored = self.store.insert(STRATEGIES_TABLE, [row])[0]
        logger.info(f"Created playbook asset {asset_name}")
        return stored

    def delete_asset(self, asset_name: str) -> int:
        """Delete an asset and every strategy under it."""
        removed = self.store.delete(STRATEGIES_TABLE, filters={
            "user_id": self.user_id,
            "asset_name": asset_name,
        })
        logger.info(f"Deleted asset {asset_name} ({removed} rows)")
        return removed

    def create_strategy(
        self,
        asset_name: str,
        title: str,
        description: str = "",
        strategy_type: str = "",
        rules: Optional[list[str]] = None,
        icon: Optional[str] = None,
    ) -> dict:
        """Add a strategy under an asset.

        Raises:
            PlaybookError: If the title is empty, the asset is missing, or the
                name is already used within the asset.
        """
        title = title.strip()
        if not title:
            raise PlaybookError("Strategy title is required")

        parent = self._find_asset(asset_name)
        if parent is None:
            raise PlaybookError("Parent asset not found")

        duplicates = self.store.select(STRATEGIES_TABLE, {
            "user_id": self.user_id,
            "asset_name": asset_name,
            "name": title,
            "is_playbook": False,
        })
        if duplicates:
            raise PlaybookError("A strategy with this name already exists in this asset")

        row = {
            "user_id": self.user_id,
            "name": title,
            "description": description,
            "type": strategy_type,
            "asset_name": asset_name,
            "parent_id": parent["id"],
            "rules": list(rules or []),
            "icon": icon,
            "is_playbook": False,
            **StrategyPerformance().to_columns(),
        }
        stored = self.store.insert(STRATEGIES_TABLE, [row])[0]
        logger.info(f"Created strategy '{title}' under {asset_name}")
        return stored

    def delete_strategy(self, strategy_id: str) -> bool:
        return self.store.delete(STRATEGIES_TABLE, row_id=strategy_id, filters={"user_id": self.user_id}) > 0

    def _update_strategy(self, strategy_id: str, changes: dict) -> dict:
        """Update one of this user's strategy rows.

        Raises:
            PlaybookError: If the strategy does not exist for this user.
        """
        rows = self.store.select(STRATEGIES_TABLE, {
            "id": strategy_id,
            "user_id": self.user_id,
            "is_playbook": False,
        })
        if not rows:
            raise PlaybookError(f"Strategy not found: {strategy_id}")
        return self.store.update(STRATEGIES_TABLE, strategy_id, changes)

    def update_strategy_rules(self, strategy_id: str, rules: list[str]) -> dict:
        return self._update_strategy(strategy_id, {"rules": list(rules)})

    def update_strategy_icon(self, strategy_id: str, icon: str) -> dict:
        return self._update_strategy(strategy_id, {"icon": icon})

    def update_strategy_performance(self, strategy_id: str, perf: StrategyPerformance) -> dict:
        return self._update_strategy(strategy_id, perf.to_columns())

    def add_missed_trade(self, asset_name: str, trade: dict) -> dict:
        """Record a setup that was seen but not taken.

        Raises:
            PlaybookError: If the asset does not exist.
        """
        asset = self._find_asset(asset_name)
        if asset is None:
            raise PlaybookError("Asset not found")

        missed = list(asset.get("missed_trades") or [])
        missed.append(trade)
        return self.store.update(STRATEGIES_TABLE, asset["id"], {"missed_trades": missed})

    def list_strategies(self, asset_name: Optional[str] = None) -> list[dict]:
        filters = {"user_id": self.user_id, "is_playbook": False}
        if asset_name:
            filters["asset_name"] = asset_name
        return self.store.select(STRATEGIES_TABLE, filters, order_by="created_at", descending=True)

    def list_assets(self) -> list[dict]:
        """Assets with their strategies and rolled-up performance."""
        assets_rows = self.store.select(
            STRATEGIES_TABLE,
            {"user_id": self.user_id, "is_playbook": True},
            order_by="asset_name",
        )
        strategies = self.list_strategies()

        assets = []
        for asset in assets_rows:
            children = [s for s in strategies if s.get("asset_name") == asset["asset_name"]]
            perfs = [StrategyPerformance.from_row(s) for s in children]
            assets.append({
                "id": asset["id"],
                "asset": asset["asset_name"],
                "description": asset.get("description") or f"{asset['asset_name']} trading strategies",
                "icon": asset.get("icon"),
                "missed_trades": asset.get("missed_trades") or [],
                "strategies": [
                    {
                        "id": child["id"],
                        "title": child["name"],
                        "description": child.get("description") or "",
                        "type": child.get("type") or "",
                        "rules": child.get("rules") or [],
                        "icon": child.get("icon"),
                        "performance": asdict(perf),
                    }
                    for child, perf in zip(children, perfs)
                ],
                "performance": asset_performance(perfs),
            })
        return assets

    def refresh_performance(self, trades: list[Trade]) -> int:
        """Recompute each strategy's cached performance from its trades.

        Trades are matched to strategies by the trade's strategy name.

        Returns:
            Number of strategies updated.
        """
        updated = 0
        for strategy in self.list_strategies():
            matching = [t for t in trades if t.strategy == strategy["name"]]
            self.update_strategy_performance(strategy["id"], strategy_performance(matching))
            updated += 1

        logger.info(f"Refreshed performance for {updated} strategies")
        return updated
