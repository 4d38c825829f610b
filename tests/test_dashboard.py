"""Tests for the Flask dashboard."""

from datetime import date

import pytest

from tradejournal.dashboard import create_app, get_equity_chart_data, json_safe
from tradejournal.discipline import DailyEntry, DisciplineTracker
from tradejournal.models import trades_to_frame
from tradejournal.playbook import Playbook
from tradejournal.storage import LocalStore
from tradejournal.trade_log import TradeLog


@pytest.fixture
def store(tmp_path):
    return LocalStore(str(tmp_path / "data"))


@pytest.fixture
def config(monkeypatch):
    monkeypatch.delenv("JOURNAL_USER_ID", raising=False)
    return {"user": {"id": "user-1"}, "account": {"initial_balance": 10000}}


@pytest.fixture
def trade_log(store):
    log = TradeLog(store, "user-1")
    for day, exit_price in ((5, 160.0), (6, 145.0), (7, 170.0)):
        log.create_trade({
            "symbol": "AAPL",
            "type": "Long",
            "status": "Closed",
            "entry_price": 150.0,
            "exit_price": exit_price,
            "quantity": 10,
            "entry_date": f"2026-01-0{day}T10:00:00",
            "exit_date": f"2026-01-0{day}T14:00:00",
            "strategy": "Breakout",
        })
    return log


@pytest.fixture
def client(config, store):
    app = create_app(config, store=store)
    app.config["TESTING"] = True
    return app.test_client()


class TestJsonSafe:
    """Tests for JSON payload cleaning."""

    def test_replaces_non_finite(self):
        """Test NaN and infinity become None, recursively."""
        payload = {"a": float("inf"), "b": [1.5, float("nan")], "c": {"d": 2}}
        assert json_safe(payload) == {"a": None, "b": [1.5, None], "c": {"d": 2}}


class TestDashboardRoutes:
    """Tests for dashboard pages and API endpoints."""

    def test_index(self, client, trade_log):
        """Test the overview page renders with recent trades."""
        resp = client.get("/")

        assert resp.status_code == 200
        body = resp.get_data(as_text=True)
        assert "Trading Journal" in body
        assert "AAPL" in body

    def test_index_empty(self, client):
        """Test the overview page renders without trades."""
        resp = client.get("/")

        assert resp.status_code == 200
        assert "No trades logged yet." in resp.get_data(as_text=True)

    def test_security_headers(self, client):
        """Test security headers are set on every response."""
        resp = client.get("/api/calendar")

        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "SAMEORIGIN"
        assert "default-src 'self'" in resp.headers["Content-Security-Policy"]

    def test_metrics(self, client, trade_log):
        """Test metrics for all trades."""
        data = client.get("/api/metrics").get_json()

        assert data["trades"]["total_trades"] == 3
        assert data["pnl"]["total_pnl"] == 250.0
        assert data["filters"] == {"strategy": None, "range": "ALL"}

    def test_metrics_strategy_filter(self, client, trade_log):
        """Test metrics filtered to an unknown strategy are empty."""
        data = client.get("/api/metrics?strategy=Reversal").get_json()
        assert data["trades"]["total_trades"] == 0

    def test_metrics_infinite_profit_factor(self, client, store):
        """Test an infinite profit factor is sent as null."""
        TradeLog(store, "user-1").create_trade({
            "symbol": "MSFT",
            "type": "Long",
            "status": "Closed",
            "entry_price": 100.0,
            "exit_price": 110.0,
            "quantity": 1,
            "entry_date": "2026-01-05T10:00:00",
        })

        data = client.get("/api/metrics").get_json()
        assert data["trades"]["profit_factor"] is None

    def test_metrics_invalid_range(self, client):
        """Test an unknown range is a 400 error."""
        resp = client.get("/api/metrics?range=2W")

        assert resp.status_code == 400
        assert "Invalid range" in resp.get_json()["error"]

    def test_calendar(self, client, trade_log):
        """Test calendar days."""
        days = client.get("/api/calendar").get_json()

        assert [d["date"] for d in days] == ["2026-01-05", "2026-01-06", "2026-01-07"]
        assert days[1]["pnl"] == -50.0

    def test_discipline(self, client, store):
        """Test discipline stats endpoint."""
        assert client.get("/api/discipline").get_json() is None

        DisciplineTracker(store, "user-1").add_entry(DailyEntry(date=date(2026, 1, 5), rating=4))

        data = client.get("/api/discipline").get_json()
        assert data["total_entries"] == 1
        assert data["average_rating"] == 4.0

    def test_playbook(self, client, store):
        """Test playbook endpoint lists assets."""
        Playbook(store, "user-1").create_asset("NQ")

        data = client.get("/api/playbook").get_json()
        assert [a["asset"] for a in data] == ["NQ"]

    def test_playbook_without_losses_sends_null_profit_factor(self, client, store):
        """Test an infinite strategy profit factor is sent as null."""
        log = TradeLog(store, "user-1")
        for day in (5, 6):
            log.create_trade({
                "symbol": "NQ",
                "type": "Long",
                "status": "Closed",
                "entry_price": 100.0,
                "exit_price": 110.0,
                "quantity": 1,
                "entry_date": f"2026-01-0{day}T10:00:00",
                "exit_date": f"2026-01-0{day}T11:00:00",
                "strategy": "Scalp",
            })
        playbook = Playbook(store, "user-1")
        playbook.create_asset("NQ")
        playbook.create_strategy("NQ", "Scalp")
        playbook.refresh_performance(log.get_trades())

        data = client.get("/api/playbook").get_json()
        strategy = data[0]["strategies"][0]["performance"]
        assert strategy["total_trades"] == 2
        assert strategy["profit_factor"] is None
        assert data[0]["performance"]["profit_factor"] is None

    def test_user_from_environment(self, monkeypatch, config, store, trade_log):
        """Test JOURNAL_USER_ID selects whose trades are shown."""
        monkeypatch.setenv("JOURNAL_USER_ID", "someone-else")
        client = create_app(config, store=store).test_client()

        assert client.get("/api/metrics").get_json()["trades"]["total_trades"] == 0


class TestChartData:
    """Tests for Chart.js data."""

    def test_equity_chart_data(self, trade_log):
        """Test equity points per trade."""
        data = get_equity_chart_data(trades_to_frame(trade_log.get_trades()), 10000)

        assert data["dates"] == ["2026-01-05", "2026-01-06", "2026-01-07"]
        assert data["values"] == [10100.0, 10050.0, 10250.0]

    def test_equity_chart_data_empty(self):
        """Test empty chart data."""
        assert get_equity_chart_data(trades_to_frame([]), 10000) == {"dates": [], "values": []}
