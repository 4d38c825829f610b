"""Tests for strategy playbook."""

from datetime import datetime

import pytest

from tradejournal.models import Trade, TradeStatus, TradeType
from tradejournal.playbook import (
    Playbook,
    PlaybookError,
    StrategyPerformance,
    asset_performance,
    strategy_performance,
)
from tradejournal.storage import LocalStore


def closed_trade(pnl, strategy="Breakout", risk=None, day=5):
    return Trade(
        symbol="NQ",
        type=TradeType.LONG,
        entry_price=100.0,
        quantity=1.0,
        entry_date=datetime(2026, 1, day, 10, 0),
        status=TradeStatus.CLOSED,
        exit_price=100.0 + pnl,
        pnl=pnl,
        risk=risk,
        strategy=strategy,
    )


@pytest.fixture
def playbook(tmp_path):
    return Playbook(LocalStore(str(tmp_path / "data")), "user-1")


class TestStrategyPerformance:
    """Tests for strategy performance figures."""

    def test_no_trades(self):
        """Test empty strategies have zero figures."""
        assert strategy_performance([]) == StrategyPerformance()

    def test_performance(self):
        """Test figures for a mix of wins and losses."""
        perf = strategy_performance([
            closed_trade(200, risk=100, day=5),
            closed_trade(-100, risk=100, day=6),
            closed_trade(100, risk=50, day=7),
        ])

        assert perf.total_trades == 3
        assert perf.win_rate == pytest.approx(66.67)
        assert perf.profit_factor == 3.0
        assert perf.net_pl == 200.0
        assert perf.largest_win == 200.0
        assert perf.largest_loss == -100.0
        # R multiples 2, -1, 2
        assert perf.average_r == pytest.approx(1.0)

    def test_average_r_without_risk(self):
        """Test R multiple is zero when no risk was recorded."""
        assert strategy_performance([closed_trade(100)]).average_r == 0.0

    def test_columns_store_infinity_as_null(self):
        """Test non-finite values are stored as null."""
        columns = StrategyPerformance(total_trades=1, profit_factor=float("inf")).to_columns()

        assert columns["performance_profit_factor"] is None
        assert columns["performance_total_trades"] == 1

    def test_from_row(self):
        """Test cached columns are read back, missing values as zero."""
        perf = StrategyPerformance.from_row({
            "performance_total_trades": 4.0,
            "performance_win_rate": 50.0,
            "performance_profit_factor": 1.5,
        })

        assert perf.total_trades == 4
        assert perf.win_rate == 50.0
        assert perf.profit_factor == 1.5
        assert perf.expectancy == 0

    def test_from_row_null_profit_factor_is_infinite(self):
        """Test a stored null profit factor reads back as infinity once traded."""
        columns = StrategyPerformance(total_trades=2, profit_factor=float("inf")).to_columns()

        assert StrategyPerformance.from_row(columns).profit_factor == float("inf")

    def test_from_row_null_profit_factor_without_trades(self):
        """Test a null profit factor on an untraded strategy stays zero."""
        perf = StrategyPerformance.from_row({"performance_profit_factor": None})

        assert perf.total_trades == 0
        assert perf.profit_factor == 0

    def test_asset_rollup(self):
        """Test trades and P&L sum, ratios average."""
        rollup = asset_performance([
            StrategyPerformance(total_trades=2, win_rate=50.0, net_pl=100.0, profit_factor=2.0),
            StrategyPerformance(total_trades=3, win_rate=100.0, net_pl=-20.0, profit_factor=float("inf")),
        ])

        assert rollup["total_trades"] == 5
        assert rollup["net_pl"] == 80.0
        assert rollup["win_rate"] == 75.0
        assert rollup["profit_factor"] == 2.0

    def test_asset_rollup_all_infinite(self):
        """Test an asset whose strategies never lost keeps an infinite profit factor."""
        rollup = asset_performance([
            StrategyPerformance(total_trades=1, profit_factor=float("inf")),
            StrategyPerformance(total_trades=2, profit_factor=float("inf")),
        ])

        assert rollup["profit_factor"] == float("inf")

    def test_asset_rollup_empty(self):
        """Test an asset without strategies."""
        assert asset_performance([])["total_trades"] == 0


class TestPlaybook:
    """Tests for persisted assets and strategies."""

    def test_create_asset(self, playbook):
        """Test creating an asset."""
        asset = playbook.create_asset("NQ", description="Nasdaq futures")

        assert asset["is_playbook"] is True
        assert asset["asset_name"] == "NQ"
        assert playbook.list_assets()[0]["description"] == "Nasdaq futures"

    def test_duplicate_asset(self, playbook):
        """Test asset names are unique."""
        playbook.create_asset("NQ")
        with pytest.raises(PlaybookError, match="already exists"):
            playbook.create_asset("NQ")

    def test_empty_asset_name(self, playbook):
        """Test an asset needs a name."""
        with pytest.raises(PlaybookError, match="required"):
            playbook.create_asset("   ")

    def test_create_strategy(self, playbook):
        """Test strategies are linked to their asset."""
        asset = playbook.create_asset("NQ")
        strategy = playbook.create_strategy("NQ", "Opening range breakout", rules=["Wait 15m"])

        assert strategy["parent_id"] == asset["id"]
        assert strategy["is_playbook"] is False

        listed = playbook.list_assets()[0]["strategies"]
        assert listed[0]["title"] == "Opening range breakout"
        assert listed[0]["rules"] == ["Wait 15m"]

    def test_strategy_requires_asset(self, playbook):
        """Test strategies need an existing asset."""
        with pytest.raises(PlaybookError, match="Parent asset not found"):
            playbook.create_strategy("ES", "Breakout")

    def test_duplicate_strategy(self, playbook):
        """Test strategy names are unique within an asset."""
        playbook.create_asset("NQ")
        playbook.create_strategy("NQ", "Breakout")

        with pytest.raises(PlaybookError, match="already exists in this asset"):
            playbook.create_strategy("NQ", "Breakout")

    def test_update_rules_and_icon(self, playbook):
        """Test rule and icon updates."""
        playbook.create_asset("NQ")
        strategy = playbook.create_strategy("NQ", "Breakout")

        playbook.update_strategy_rules(strategy["id"], ["Rule A", "Rule B"])
        playbook.update_strategy_icon(strategy["id"], "rocket")

        stored = playbook.list_strategies("NQ")[0]
        assert stored["rules"] == ["Rule A", "Rule B"]
        assert stored["icon"] == "rocket"

    def test_update_other_users_strategy(self, tmp_path):
        """Test a user cannot edit a strategy they do not own."""
        store = LocalStore(str(tmp_path / "data"))
        owner = Playbook(store, "user-1")
        owner.create_asset("NQ")
        strategy = owner.create_strategy("NQ", "Breakout", rules=["Wait for close"])

        intruder = Playbook(store, "user-2")
        with pytest.raises(PlaybookError):
            intruder.update_strategy_rules(strategy["id"], ["Anything goes"])
        with pytest.raises(PlaybookError):
            intruder.update_strategy_icon(strategy["id"], "skull")

        stored = owner.list_strategies("NQ")[0]
        assert stored["rules"] == ["Wait for close"]
        assert stored["icon"] != "skull"

    def test_update_unknown_strategy(self, playbook):
        """Test updating a missing strategy raises."""
        with pytest.raises(PlaybookError):
            playbook.update_strategy_performance("missing", StrategyPerformance())

    def test_missed_trades(self, playbook):
        """Test missed setups are appended to the asset."""
        playbook.create_asset("NQ")
        playbook.add_missed_trade("NQ", {"date": "2026-01-05", "note": "Hesitated"})
        playbook.add_missed_trade("NQ", {"date": "2026-01-06", "note": "Away"})

        assert len(playbook.list_assets()[0]["missed_trades"]) == 2

    def test_missed_trade_unknown_asset(self, playbook):
        """Test missed trades need an existing asset."""
        with pytest.raises(PlaybookError):
            playbook.add_missed_trade("ES", {"note": "x"})

    def test_refresh_performance(self, playbook):
        """Test cached performance is recomputed from trades."""
        playbook.create_asset("NQ")
        playbook.create_strategy("NQ", "Breakout")
        playbook.create_strategy("NQ", "Reversal")

        updated = playbook.refresh_performance([
            closed_trade(200, strategy="Breakout", day=5),
            closed_trade(-50, strategy="Breakout", day=6),
            closed_trade(75, strategy="Other", day=7),
        ])

        assert updated == 2
        asset = playbook.list_assets()[0]
        by_title = {s["title"]: s["performance"] for s in asset["strategies"]}
        assert by_title["Breakout"]["net_pl"] == 150.0
        assert by_title["Breakout"]["profit_factor"] == 4.0
        assert by_title["Reversal"]["total_trades"] == 0
        assert asset["performance"]["total_trades"] == 2

    def test_refresh_winners_only_lists_infinite_profit_factor(self, playbook):
        """Test a strategy with no losses lists an infinite profit factor."""
        playbook.create_asset("NQ")
        playbook.create_strategy("NQ", "Breakout")

        playbook.refresh_performance([
            closed_trade(100, day=5),
            closed_trade(50, day=6),
        ])

        asset = playbook.list_assets()[0]
        assert asset["strategies"][0]["performance"]["profit_factor"] == float("inf")
        assert asset["performance"]["profit_factor"] == float("inf")

    def test_delete_asset_removes_strategies(self, playbook):
        """Test deleting an asset removes its strategies."""
        playbook.create_asset("NQ")
        playbook.create_strategy("NQ", "Breakout")

        assert playbook.delete_asset("NQ") == 2
        assert playbook.list_assets() == []
        assert playbook.list_strategies() == []

    def test_delete_strategy(self, playbook):
        """Test deleting a single strategy."""
        playbook.create_asset("NQ")
        strategy = playbook.create_strategy("NQ", "Breakout")

        assert playbook.delete_strategy(strategy["id"]) is True
        assert playbook.list_strategies() == []
