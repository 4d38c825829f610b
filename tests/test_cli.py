"""Tests for the command-line interface."""

import logging
import sys
from unittest.mock import patch

import pytest
import yaml

import main


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Working directory with a local-store config."""
    config = {
        "user": {"id": "cli-user"},
        "account": {"initial_balance": 10000},
        "storage": {"backend": "local", "data_dir": str(tmp_path / "data")},
        "paths": {"data": str(tmp_path / "data"), "logs": str(tmp_path / "logs"), "reports": str(tmp_path / "reports")},
        "logging": {"level": "WARNING"},
    }
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "config.yaml").write_text(yaml.safe_dump(config))
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("JOURNAL_USER_ID", raising=False)

    root = logging.getLogger()
    handlers = list(root.handlers)
    yield tmp_path
    for handler in root.handlers[len(handlers):]:
        handler.close()
    root.handlers = handlers


def run_cli(*args):
    with patch.object(sys, "argv", ["main.py", *args]):
        main.main()


class TestCLI:
    """Tests for main.py commands."""

    def test_no_command_prints_help(self, capsys):
        """Test running without a command shows usage."""
        with pytest.raises(SystemExit) as exc:
            run_cli()

        assert exc.value.code == 0
        assert "usage" in capsys.readouterr().out

    def test_missing_config(self, tmp_path, monkeypatch, capsys):
        """Test a missing config file exits with a hint."""
        monkeypatch.chdir(tmp_path)

        with pytest.raises(SystemExit) as exc:
            run_cli("trades")

        assert exc.value.code == 1
        assert "config.example.yaml" in capsys.readouterr().out

    def test_size(self, capsys):
        """Test the position size calculator output."""
        run_cli("size", "--account", "10000", "--risk", "1", "--entry", "50", "--stop", "48", "--target", "56")

        out = capsys.readouterr().out
        assert "Position size:  50.0000 units" in out
        assert "Risk/reward:    1:3.00" in out
        assert "Breakeven win rate: 25.0%" in out

    def test_add_list_and_stats(self, workspace, capsys):
        """Test logging a trade, listing it and printing stats."""
        run_cli("add", "AAPL", "--entry", "150", "--qty", "10", "--exit", "160",
                "--date", "2026-01-05T10:00:00", "--exit-date", "2026-01-05T14:00:00")
        run_cli("trades")
        run_cli("stats")

        out = capsys.readouterr().out
        assert "Trade logged:" in out
        assert "2026-01-05  AAPL" in out
        assert "Net P&L: $100.00" in out

    def test_stats_by_year(self, workspace, capsys):
        """Test the yearly P&L breakdown."""
        run_cli("add", "AAPL", "--entry", "150", "--qty", "10", "--exit", "160",
                "--date", "2025-12-30T10:00:00", "--exit-date", "2025-12-30T14:00:00")
        run_cli("add", "AAPL", "--entry", "150", "--qty", "10", "--exit", "145",
                "--date", "2026-01-05T10:00:00", "--exit-date", "2026-01-05T14:00:00")
        run_cli("stats", "--by", "year")

        out = capsys.readouterr().out
        assert "P&L BY YEAR" in out
        assert "2025: $100.00" in out
        assert "2026: $-50.00" in out

    def test_add_invalid_trade(self, workspace, capsys):
        """Test validation errors exit with status 1."""
        with pytest.raises(SystemExit) as exc:
            run_cli("add", "AAPL", "--entry", "-1", "--qty", "10")

        assert exc.value.code == 1
        assert "Entry price must be positive" in capsys.readouterr().out

    def test_template_and_import(self, workspace, capsys):
        """Test the template imports through the CLI."""
        run_cli("template", "template.csv")
        run_cli("import", "template.csv")
        run_cli("trades", "--status", "closed")

        out = capsys.readouterr().out
        assert "Successfully imported 3 trades." in out
        assert "MSFT" in out

    def test_close_and_delete(self, workspace, capsys):
        """Test closing and deleting a trade by id."""
        from tradejournal.storage import LocalStore
        from tradejournal.trade_log import TradeLog

        log = TradeLog(LocalStore(str(workspace / "data")), "cli-user")
        trade = log.create_trade({
            "symbol": "MSFT",
            "type": "Short",
            "entry_price": 400.0,
            "quantity": 5,
            "entry_date": "2026-01-05T10:00:00",
        })

        run_cli("close", trade.id, "--exit", "390", "--date", "2026-01-06T10:00:00")
        run_cli("delete", trade.id)

        out = capsys.readouterr().out
        assert "Closed MSFT: P&L $50.00" in out
        assert f"Deleted trade {trade.id}" in out
        assert log.get_trades() == []

    def test_discipline_checkin(self, workspace, capsys):
        """Test a discipline check-in followed by stats."""
        run_cli("discipline", "--rating", "4", "--date", "2026-01-05", "--followed", "Stop loss", "--broken", "FOMO")
        run_cli("discipline")

        out = capsys.readouterr().out
        assert "Check-in saved for 2026-01-05" in out
        assert "Rule compliance: 50.0%" in out
        assert "Broken: FOMO (1x)" in out

    def test_playbook(self, workspace, capsys):
        """Test creating and listing playbook entries."""
        run_cli("playbook", "add-asset", "--asset", "NQ")
        run_cli("playbook", "add-strategy", "--asset", "NQ", "--name", "Breakout")
        run_cli("playbook")

        out = capsys.readouterr().out
        assert "NQ: 0 trades" in out
        assert "  - Breakout: 0 trades" in out

    def test_playbook_winners_only(self, workspace, capsys):
        """Test a strategy without losses lists an infinite profit factor."""
        run_cli("add", "NQ", "--entry", "100", "--qty", "2", "--exit", "110",
                "--date", "2026-01-05T10:00:00", "--exit-date", "2026-01-05T11:00:00", "--strategy", "Breakout")
        run_cli("playbook", "add-asset", "--asset", "NQ")
        run_cli("playbook", "add-strategy", "--asset", "NQ", "--name", "Breakout")
        run_cli("playbook", "refresh")
        run_cli("playbook")

        assert "  - Breakout: 1 trades, net $20.00, PF ∞" in capsys.readouterr().out

    def test_report(self, workspace, capsys):
        """Test the PDF report command."""
        run_cli("report")

        assert "Report saved to:" in capsys.readouterr().out
        assert (workspace / "reports" / "all-time-journal.pdf").exists()
