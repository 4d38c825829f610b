#!/usr/bin/env python3
"""CLI entry point for the trading journal.

Commands:
    add         Log a new trade
    close       Close an open trade
    delete      Delete a trade
    trades      List trades
    import      Import trades from CSV
    export      Export trades to CSV
    template    Write the CSV import template
    stats       Print performance summary
    report      Generate PDF journal report
    size        Position size and risk/reward calculator
    journal     Add/list per-trade journal entries
    discipline  Daily discipline check-in and stats
    playbook    Manage playbook assets and strategies
    candles     Fetch price candles for a symbol
    stream      Stream realtime trades for symbols
    dashboard   Start web dashboard on localhost:5000
"""

import argparse
import os
import sys
from datetime import date, datetime
from pathlib import Path

import yaml


def load_config() -> dict:
    """Load configuration from YAML file."""
    config_path = Path("config/config.yaml")

    if not config_path.exists():
        print("Error: config/config.yaml not found.")
        print("Copy config/config.example.yaml to config/config.yaml and update settings.")
        sys.exit(1)

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def open_journal(config: dict):
    """Set up logging and return (store, user_id)."""
    from tradejournal.dashboard import get_user_id
    from tradejournal.storage import create_store
    from tradejournal.trade_log import setup_logging

    setup_logging(config)
    return create_store(config), get_user_id(config)


def parse_date_arg(value):
    return datetime.fromisoformat(value) if value else None


def cmd_add(args: argparse.Namespace) -> None:
    """Log a new trade."""
    from tradejournal.trade_log import TradeLog, TradeValidationError

    config = load_config()
    store, user_id = open_journal(config)

    record = {
        "symbol": args.symbol,
        "type": args.type.capitalize(),
        "market": args.market,
        "market_category": args.category,
        "status": "Closed" if args.exit is not None else "Open",
        "entry_price": args.entry,
        "quantity": args.qty,
        "entry_date": args.date or datetime.now().isoformat(),
        "exit_price": args.exit,
        "exit_date": args.exit_date or (datetime.now().isoformat() if args.exit is not None else None),
        "strategy": args.strategy,
        "stop_loss": args.stop,
        "take_profit": args.target,
        "risk": args.risk,
        "reward": args.reward,
        "commission": args.commission,
        "fees": args.fees,
        "notes": args.notes,
        "tags": [t.strip() for t in args.tags.split(";")] if args.tags else [],
    }

    try:
        trade = TradeLog(store, user_id).create_trade(record)
        print(f"Trade logged: {trade.id} {trade.type.value} {trade.quantity:g} {trade.symbol} @ {trade.entry_price}")
    except TradeValidationError as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_close(args: argparse.Namespace) -> None:
    """Close an open trade."""
    from tradejournal.trade_log import TradeLog

    config = load_config()
    store, user_id = open_journal(config)

    try:
        trade = TradeLog(store, user_id).close_trade(args.trade_id, args.exit, parse_date_arg(args.date))
        print(f"Closed {trade.symbol}: P&L ${trade.pnl:,.2f} ({trade.pnl_percentage or 0:.2f}%)")
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_delete(args: argparse.Namespace) -> None:
    """Delete a trade."""
    from tradejournal.trade_log import TradeLog

    config = load_config()
    store, user_id = open_journal(config)

    if TradeLog(store, user_id).delete_trade(args.trade_id, hard=args.hard):
        print(f"Deleted trade {args.trade_id}")
    else:
        print(f"Error: trade {args.trade_id} not found")
        sys.exit(1)


def cmd_trades(args: argparse.Namespace) -> None:
    """List trades."""
    from tradejournal.trade_log import TradeLog

    config = load_config()
    store, user_id = open_journal(config)

    try:
        trades = TradeLog(store, user_id).get_trades(
            strategy=args.strategy,
            start=parse_date_arg(args.start),
            end=parse_date_arg(args.end),
            status=args.status.capitalize() if args.status else None,
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not trades:
        print("No trades found.")
        return

    print(f"{'Date':<12}{'Symbol':<10}{'Side':<7}{'Status':<8}{'Entry':>12}{'Exit':>12}{'P&L':>12}  ID")
    print("-" * 100)
    for trade in trades[: args.limit]:
        exit_price = f"{trade.exit_price:,.2f}" if trade.exit_price is not None else "-"
        print(
            f"{trade.entry_date:%Y-%m-%d}  {trade.symbol:<10}{trade.type.value:<7}{trade.status.value:<8}"
            f"{trade.entry_price:>12,.2f}{exit_price:>12}{trade.computed_pnl():>12,.2f}  {trade.id}"
        )


def cmd_import(args: argparse.Namespace) -> None:
    """Import trades from CSV."""
    from tradejournal.csv_import import CSVImportError, import_trades

    config = load_config()
    store, user_id = open_journal(config)

    print(f"Importing trades from {args.csv}...")

    try:
        result = import_trades(args.csv, store, user_id)
    except CSVImportError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(result.message())
    if not result.success:
        sys.exit(1)


def cmd_export(args: argparse.Namespace) -> None:
    """Export trades to CSV."""
    from tradejournal.export import export_trades_csv
    from tradejournal.trade_log import TradeLog

    config = load_config()
    store, user_id = open_journal(config)

    try:
        trades = TradeLog(store, user_id).get_trades(strategy=args.strategy)
        path = export_trades_csv(trades, args.output)
        print(f"Exported {len(trades)} trades to: {path}")
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_template(args: argparse.Namespace) -> None:
    """Write CSV import template."""
    from tradejournal.csv_import import write_template

    path = write_template(args.output)
    print(f"Template saved to: {path}")


def cmd_stats(args: argparse.Namespace) -> None:
    """Print performance statistics."""
    from tradejournal import performance
    from tradejournal.models import trades_to_frame
    from tradejournal.trade_log import TradeLog

    config = load_config()
    store, user_id = open_journal(config)
    initial_balance = config.get("account", {}).get(
        "initial_balance", performance.DEFAULT_INITIAL_BALANCE
    )

    try:
        trades = TradeLog(store, user_id).get_trades(
            strategy=args.strategy,
            start=parse_date_arg(args.start),
            end=parse_date_arg(args.end),
        )
        df = trades_to_frame(trades)
        metrics = performance.compute_all_metrics(df, initial_balance)
        print(performance.format_performance_report(metrics))

        if args.by:
            breakdown = performance.yearly_pnl(df) if args.by == "year" else performance.monthly_pnl(df)
            print(f"P&L BY {args.by.upper()}")
            print("-" * 30)
            for period, pnl in breakdown.items():
                print(f"{period}: ${pnl:,.2f}")
            print()

        if args.monte_carlo:
            mc = performance.monte_carlo(df, simulations=args.monte_carlo)
            low, high = mc["confidence_interval"]
            print("MONTE CARLO")
            print("-" * 30)
            print(f"Simulations: {args.monte_carlo}")
            print(f"Average return: {mc['average_return'] * 100:.2f}%")
            print(f"Best return: {mc['best_return'] * 100:.2f}%")
            print(f"Worst return: {mc['worst_drawdown'] * 100:.2f}%")
            print(f"95% interval: {low * 100:.2f}% to {high * 100:.2f}%")
    except Exception as e:
        print(f"Error computing statistics: {e}")
        sys.exit(1)


def cmd_report(args: argparse.Namespace) -> None:
    """Generate PDF journal report."""
    from tradejournal import performance
    from tradejournal.discipline import DisciplineTracker
    from tradejournal.export import generate_journal_report
    from tradejournal.trade_log import TradeLog

    config = load_config()
    store, user_id = open_journal(config)

    print(f"Generating report for {args.month or 'all trades'}...")

    try:
        trades = TradeLog(store, user_id).get_trades()
        path = generate_journal_report(
            trades,
            output_dir=config.get("paths", {}).get("reports", "reports"),
            period=args.month,
            initial_balance=config.get("account", {}).get(
                "initial_balance", performance.DEFAULT_INITIAL_BALANCE
            ),
            discipline_stats=DisciplineTracker(store, user_id).stats(),
        )
        print(f"Report saved to: {path}")
    except Exception as e:
        print(f"Error generating report: {e}")
        sys.exit(1)


def cmd_size(args: argparse.Namespace) -> None:
    """Position size and risk/reward calculator."""
    from tradejournal.position_sizing import calculate_position_size, calculate_risk_metrics

    size = calculate_position_size(args.account, args.risk, args.entry, args.stop)

    print(f"Risk amount:    ${size.risk_amount:,.2f}")
    print(f"Position size:  {size.position_size:,.4f} units")

    if args.target:
        metrics = calculate_risk_metrics(args.account, args.risk, args.entry, args.stop, args.target)
        print(f"Reward amount:  ${metrics.reward_amount:,.2f}")
        print(f"Risk/reward:    1:{metrics.risk_reward_ratio:.2f}")
        print(f"Breakeven win rate: {metrics.breakeven_win_rate * 100:.1f}%")


def cmd_journal(args: argparse.Namespace) -> None:
    """Add or list journal entries."""
    from tradejournal.journal_entries import format_entry_list, interactive_entry, list_entries

    config = load_config()
    store, user_id = open_journal(config)

    if args.list:
        print(format_entry_list(list_entries(store, user_id, trade_id=args.trade_id)))
        return

    interactive_entry(store, user_id, trade_id=args.trade_id)


def cmd_discipline(args: argparse.Namespace) -> None:
    """Daily discipline check-in or stats."""
    from tradejournal.discipline import DailyEntry, DisciplineTracker

    config = load_config()
    store, user_id = open_journal(config)
    tracker = DisciplineTracker(store, user_id)

    if args.rating is None:
        stats = tracker.stats()
        if stats is None:
            print("No discipline entries yet.")
            return
        print(f"Entries: {stats.total_entries}")
        print(f"Average rating: {stats.average_rating:.2f}/5")
        print(f"Rule compliance: {stats.compliance_rate:.1f}%")
        for item in stats.most_broken_rules:
            print(f"  Broken: {item['rule']} ({item['count']}x)")
        for item in stats.weekly_trend:
            print(f"  {item['week']}: {item['average_rating']:.2f}")
        return

    try:
        entry = tracker.add_entry(DailyEntry(
            date=date.fromisoformat(args.date) if args.date else date.today(),
            rating=args.rating,
            rules_followed=[r.strip() for r in args.followed.split(";")] if args.followed else [],
            rules_broken=[r.strip() for r in args.broken.split(";")] if args.broken else [],
            mood=args.mood or "",
            notes=args.notes or "",
        ))
        print(f"Check-in saved for {entry.date}")
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_playbook(args: argparse.Namespace) -> None:
    """Manage playbook assets and strategies."""
    from tradejournal.playbook import Playbook, PlaybookError
    from tradejournal.trade_log import TradeLog

    config = load_config()
    store, user_id = open_journal(config)
    playbook = Playbook(store, user_id)

    try:
        if args.action == "add-asset":
            playbook.create_asset(args.asset, description=args.description or "")
            print(f"Asset created: {args.asset}")
        elif args.action == "add-strategy":
            if not args.name:
                raise PlaybookError("Strategy title is required")
            playbook.create_strategy(args.asset, args.name, description=args.description or "")
            print(f"Strategy created: {args.asset} / {args.name}")
        elif args.action == "refresh":
            count = playbook.refresh_performance(TradeLog(store, user_id).get_trades())
            print(f"Refreshed {count} strategies")
        else:
            for asset in playbook.list_assets():
                perf = asset["performance"]
                print(f"{asset['asset']}: {perf['total_trades']} trades, "
                      f"net ${perf['net_pl']:,.2f}, win rate {perf['win_rate']:.1f}%")
                for strategy in asset["strategies"]:
                    sp = strategy["performance"]
                    pf = "∞" if sp["profit_factor"] == float("inf") else f"{sp['profit_factor']:.2f}"
                    print(f"  - {strategy['title']}: {sp['total_trades']} trades, "
                          f"net ${sp['net_pl']:,.2f}, PF {pf}")
    except PlaybookError as e:
        print(f"Error: {e}")
        sys.exit(1)


def _market_data_service(config: dict):
    from tradejournal.market_data import MarketDataService

    md_config = config.get("market_data", {})
    return MarketDataService(
        api_key=os.environ.get("FINNHUB_API_KEY", md_config.get("api_key")) or None,
        default_timeframe=str(md_config.get("default_timeframe", "15")),
    )


def cmd_candles(args: argparse.Namespace) -> None:
    """Fetch candles for a symbol."""
    from tradejournal.trade_log import setup_logging

    config = load_config()
    setup_logging(config)

    try:
        candles = _market_data_service(config).get_candles(args.symbol, timeframe=args.timeframe)
        print(candles.tail(args.limit).to_string())
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_stream(args: argparse.Namespace) -> None:
    """Stream realtime trades until interrupted."""
    import time

    from tradejournal.trade_log import setup_logging

    config = load_config()
    setup_logging(config)

    service = _market_data_service(config)
    service.on_trade(lambda tick: print(
        f"{tick.timestamp:%H:%M:%S} {tick.symbol} {tick.price} x {tick.volume:g}"
    ))

    try:
        for symbol in args.symbols:
            service.subscribe(symbol)
        print("Streaming trades. Press Ctrl+C to stop")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping stream...")
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        service.disconnect()


def cmd_dashboard(args: argparse.Namespace) -> None:
    """Start web dashboard."""
    from tradejournal.dashboard import run_dashboard
    from tradejournal.trade_log import setup_logging

    config = load_config()
    setup_logging(config)

    run_dashboard(config, host=args.host, port=args.port)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Personal trading journal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Add command
    add_parser = subparsers.add_parser("add", help="Log a new trade")
    add_parser.add_argument("symbol", help="Ticker symbol")
    add_parser.add_argument("--type", choices=["long", "short"], default="long", help="Trade direction")
    add_parser.add_argument("--entry", type=float, required=True, help="Entry price")
    add_parser.add_argument("--qty", type=float, required=True, help="Quantity")
    add_parser.add_argument("--date", help="Entry date (ISO format, default: now)")
    add_parser.add_argument("--exit", type=float, help="Exit price (marks the trade closed)")
    add_parser.add_argument("--exit-date", dest="exit_date", help="Exit date (ISO format)")
    add_parser.add_argument("--market", default="Other", help="Market or exchange")
    add_parser.add_argument(
        "--category",
        choices=["Equities", "Crypto", "Forex", "Futures", "Other"],
        default="Other",
        help="Market category",
    )
    add_parser.add_argument("--strategy", help="Strategy name")
    add_parser.add_argument("--stop", type=float, help="Stop-loss price")
    add_parser.add_argument("--target", type=float, help="Take-profit price")
    add_parser.add_argument("--risk", type=float, help="Amount risked")
    add_parser.add_argument("--reward", type=float, help="Planned reward")
    add_parser.add_argument("--commission", type=float, help="Commission paid")
    add_parser.add_argument("--fees", type=float, help="Fees paid")
    add_parser.add_argument("--tags", help="Tags separated by ';'")
    add_parser.add_argument("--notes", help="Free-text notes")
    add_parser.set_defaults(func=cmd_add)

    # Close command
    close_parser = subparsers.add_parser("close", help="Close an open trade")
    close_parser.add_argument("trade_id", help="Trade ID")
    close_parser.add_argument("--exit", type=float, required=True, help="Exit price")
    close_parser.add_argument("--date", help="Exit date (ISO format, default: now)")
    close_parser.set_defaults(func=cmd_close)

    # Delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a trade")
    delete_parser.add_argument("trade_id", help="Trade ID")
    delete_parser.add_argument("--hard", action="store_true", help="Remove permanently")
    delete_parser.set_defaults(func=cmd_delete)

    # Trades command
    trades_parser = subparsers.add_parser("trades", help="List trades")
    trades_parser.add_argument("--strategy", help="Filter by strategy")
    trades_parser.add_argument("--status", choices=["open", "closed"], help="Filter by status")
    trades_parser.add_argument("--start", help="Start date (YYYY-MM-DD)")
    trades_parser.add_argument("--end", help="End date (YYYY-MM-DD)")
    trades_parser.add_argument("--limit", type=int, default=50, help="Maximum rows (default: 50)")
    trades_parser.set_defaults(func=cmd_trades)

    # Import command
    import_parser = subparsers.add_parser("import", help="Import trades from CSV")
    import_parser.add_argument("csv", help="Path to CSV file")
    import_parser.set_defaults(func=cmd_import)

    # Export command
    export_parser = subparsers.add_parser("export", help="Export trades to CSV")
    export_parser.add_argument("output", help="Output CSV path")
    export_parser.add_argument("--strategy", help="Only trades for this strategy")
    export_parser.set_defaults(func=cmd_export)

    # Template command
    template_parser = subparsers.add_parser("template", help="Write CSV import template")
    template_parser.add_argument(
        "output",
        nargs="?",
        default="trade_template.csv",
        help="Output path (default: trade_template.csv)",
    )
    template_parser.set_defaults(func=cmd_template)

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Print performance summary")
    stats_parser.add_argument("--strategy", help="Only trades for this strategy")
    stats_parser.add_argument("--start", help="Start date (YYYY-MM-DD)")
    stats_parser.add_argument("--end", help="End date (YYYY-MM-DD)")
    stats_parser.add_argument("--by", choices=["month", "year"], help="Also print P&L per month or year")
    stats_parser.add_argument(
        "--monte-carlo",
        type=int,
        nargs="?",
        const=1000,
        default=None,
        dest="monte_carlo",
        help="Run a Monte Carlo simulation (default: 1000 paths)",
    )
    stats_parser.set_defaults(func=cmd_stats)

    # Report command
    report_parser = subparsers.add_parser("report", help="Generate PDF journal report")
    report_parser.add_argument("--month", help="Month in YYYY-MM format (default: all trades)")
    report_parser.set_defaults(func=cmd_report)

    # Size command
    size_parser = subparsers.add_parser("size", help="Position size calculator")
    size_parser.add_argument("--account", type=float, required=True, help="Account size")
    size_parser.add_argument("--risk", type=float, default=1.0, help="Risk per trade in %% (default: 1)")
    size_parser.add_argument("--entry", type=float, required=True, help="Entry price")
    size_parser.add_argument("--stop", type=float, required=True, help="Stop-loss price")
    size_parser.add_argument("--target", type=float, help="Take-profit price")
    size_parser.set_defaults(func=cmd_size)

    # Journal command
    journal_parser = subparsers.add_parser("journal", help="Add/list journal entries")
    journal_parser.add_argument("--trade-id", dest="trade_id", help="Trade to attach the entry to")
    journal_parser.add_argument("--list", action="store_true", help="List entries")
    journal_parser.set_defaults(func=cmd_journal)

    # Discipline command
    discipline_parser = subparsers.add_parser(
        "discipline",
        help="Daily discipline check-in (with --rating) or stats",
    )
    discipline_parser.add_argument("--rating", type=int, help="Self-rating 1-5")
    discipline_parser.add_argument("--date", help="Day (YYYY-MM-DD, default: today)")
    discipline_parser.add_argument("--followed", help="Rules followed, separated by ';'")
    discipline_parser.add_argument("--broken", help="Rules broken, separated by ';'")
    discipline_parser.add_argument("--mood", help="Mood")
    discipline_parser.add_argument("--notes", help="Notes")
    discipline_parser.set_defaults(func=cmd_discipline)

    # Playbook command
    playbook_parser = subparsers.add_parser("playbook", help="Manage playbook")
    playbook_parser.add_argument(
        "action",
        nargs="?",
        choices=["list", "add-asset", "add-strategy", "refresh"],
        default="list",
    )
    playbook_parser.add_argument("--asset", help="Asset name")
    playbook_parser.add_argument("--name", help="Strategy title")
    playbook_parser.add_argument("--description", help="Description")
    playbook_parser.set_defaults(func=cmd_playbook)

    # Candles command
    candles_parser = subparsers.add_parser("candles", help="Fetch price candles")
    candles_parser.add_argument("symbol", help="Ticker symbol")
    candles_parser.add_argument("--timeframe", choices=["5", "15", "60", "D"], help="Resolution")
    candles_parser.add_argument("--limit", type=int, default=20, help="Rows to print (default: 20)")
    candles_parser.set_defaults(func=cmd_candles)

    # Stream command
    stream_parser = subparsers.add_parser("stream", help="Stream realtime trades")
    stream_parser.add_argument("symbols", nargs="+", help="Symbols to subscribe to")
    stream_parser.set_defaults(func=cmd_stream)

    # Dashboard command
    dashboard_parser = subparsers.add_parser(
        "dashboard",
        help="Start web dashboard on localhost:5000",
    )
    dashboard_parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    dashboard_parser.add_argument(
        "--port",
        type=int,
        default=5000,
        help="Port to listen on (default: 5000)",
    )
    dashboard_parser.set_defaults(func=cmd_dashboard)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.func(args)


if __name__ == "__main__":
    main()
