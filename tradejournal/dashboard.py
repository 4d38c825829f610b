"""Flask web dashboard for the trading journal.

Serves a single overview page (metric cards, equity curve, recent trades)
and JSON endpoints for metrics, the P&L calendar, discipline stats and the
strategy playbook on localhost:5000.
"""

import json
import logging
import math
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify, render_template, request

from . import performance
from .discipline import DisciplineTracker
from .models import trades_to_frame
from .playbook import Playbook
from .storage import JournalStore, create_store
from .trade_log import TradeLog

logger = logging.getLogger(__name__)

DATE_RANGES = ["1D", "1W", "1M", "3M", "6M", "1Y", "ALL"]
RECENT_TRADES = 10


def json_safe(value):
    """Recursively replace NaN/inf with None so the payload is valid JSON."""
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {key: json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    return value


def get_user_id(config: dict) -> str:
    return os.environ.get("JOURNAL_USER_ID", config.get("user", {}).get("id", "local"))


def create_app(config: dict, store: Optional[JournalStore] = None) -> Flask:
    """Create and configure Flask application.

    Args:
        config: Application configuration dictionary.
        store: Storage backend (built from config when omitted).

    Returns:
        Configured Flask app instance.
    """
    app = Flask(
        __name__,
        template_folder=str(Path(__file__).parent.parent / "templates"),
    )

    # Security configuration
    app.config["SECRET_KEY"] = os.environ.get("FLASK_SECRET_KEY", os.urandom(32).hex())

    store = store if store is not None else create_store(config)
    user_id = get_user_id(config)
    initial_balance = config.get("account", {}).get(
        "initial_balance", performance.DEFAULT_INITIAL_BALANCE
    )

    trade_log = TradeLog(store, user_id)
    tracker = DisciplineTracker(store, user_id)
    playbook = Playbook(store, user_id)

    # Security headers middleware
    @app.after_request
    def add_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
            "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
            "img-src 'self' data:; "
            "font-src 'self' https://cdn.jsdelivr.net;"
        )
        return response

    @app.route("/")
    def dashboard():
        """Main dashboard view."""
        data = get_dashboard_data(trade_log, initial_balance)
        return render_template("dashboard.html", **data)

    @app.route("/api/metrics")
    def api_metrics():
        strategy = request.args.get("strategy") or None
        date_range = request.args.get("range", "ALL").upper()
        if date_range not in DATE_RANGES:
            return jsonify({"error": f"Invalid range: {date_range}. Must be one of {DATE_RANGES}"}), 400

        df = trades_to_frame(trade_log.get_trades(strategy=strategy))
        df = performance.filter_by_range(df, date_range)
        metrics = performance.compute_all_metrics(df, initial_balance)
        metrics["filters"] = {"strategy": strategy, "range": date_range}
        return jsonify(json_safe(metrics))

    @app.route("/api/calendar")
    def api_calendar():
        df = trades_to_frame(trade_log.get_trades())
        return jsonify(performance.calendar_days(df))

    @app.route("/api/discipline")
    def api_discipline():
        stats = tracker.stats()
        return jsonify(stats.to_dict() if stats else None)

    @app.route("/api/playbook")
    def api_playbook():
        return jsonify(json_safe(playbook.list_assets()))

    return app


def get_equity_chart_data(df, initial_balance: float) -> dict:
    """Get equity curve data for Chart.js.

    Returns:
        Dictionary with dates and values lists.
    """
    equity = performance.equity_curve(df, initial_balance)

    if equity.empty:
        return {"dates": [], "values": []}

    return {
        "dates": [d.strftime("%Y-%m-%d") for d in equity.index],
        "values": [round(float(v), 2) for v in equity.values],
    }


def get_dashboard_data(trade_log: TradeLog, initial_balance: float) -> dict:
    """Gather all data for dashboard display.

    Args:
        trade_log: Trade access for the current user.
        initial_balance: Starting balance for equity figures.

    Returns:
        Dictionary of template variables.
    """
    trades = trade_log.get_trades()
    df = trades_to_frame(trades)
    metrics = json_safe(performance.compute_all_metrics(df, initial_balance))

    recent = []
    for trade in trades[:RECENT_TRADES]:
        recent.append({
            "date": trade.entry_date.strftime("%Y-%m-%d"),
            "symbol": trade.symbol,
            "type": trade.type.value,
            "status": trade.status.value,
            "strategy": trade.strategy or "-",
            "pnl": trade.computed_pnl(),
        })

    return {
        "metrics": metrics,
        "equity_data": json.dumps(get_equity_chart_data(df, initial_balance)),
        "recent_trades": recent,
        "date_ranges": DATE_RANGES,
        "last_updated": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    }


def run_dashboard(config: dict, host: str = "127.0.0.1", port: int = 5000) -> None:
    """Run the Flask dashboard server.

    Args:
        config: Application configuration dictionary.
        host: Host to bind to.
        port: Port to listen on.
    """
    app = create_app(config)

    print(f"Starting dashboard at http://{host}:{port}")
    print("Press Ctrl+C to stop")

    app.run(host=host, port=port, debug=False)
