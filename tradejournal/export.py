"""Trade export and PDF journal reports.

CSV export uses the same column layout as the import template, so an
exported file can be re-imported. The PDF report summarises a period with
metrics, an equity curve, per-symbol breakdown and the latest trades.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import matplotlib.dates as mdates
import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    Image,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from . import performance
from .csv_import import TEMPLATE_COLUMNS
from .discipline import DisciplineStats
from .models import Trade, trades_to_frame

logger = logging.getLogger(__name__)

HEADER_COLOR = colors.Color(0.18, 0.53, 0.67)
RECENT_TRADES = 15


def export_trades_csv(trades: list[Trade], output_path: str) -> Path:
    """Write trades to CSV in template column order.

    Args:
        trades: Trades to export.
        output_path: Destination file.

    Returns:
        Path to written file.
    """
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    rows = []
    for trade in trades:
        record = trade.to_record()
        record["tags"] = ";".join(trade.tags)
        rows.append(record)

    df = pd.DataFrame(rows, columns=TEMPLATE_COLUMNS)
    df.to_csv(path, index=False)

    logger.info(f"Exported {len(rows)} trades to {path}")
    return path


def get_month_date_range(year_month: str) -> tuple[str, str]:
    """Get start and end dates for a month.

    Args:
        year_month: Month in YYYY-MM format.

    Returns:
        Tuple of (start_date, end_date) in YYYY-MM-DD format.
    """
    year, month = map(int, year_month.split("-"))

    start_date = f"{year}-{month:02d}-01"

    if month == 12:
        next_year, next_month = year + 1, 1
    else:
        next_year, next_month = year, month + 1

    end = date(next_year, next_month, 1) - timedelta(days=1)
    end_date = end.strftime("%Y-%m-%d")

    return start_date, end_date


def create_equity_chart(
    equity: pd.Series,
    output_path: Path,
    title: str = "Equity Curve",
) -> Path:
    """Create and save equity curve chart.

    Args:
        equity: Series of account balances indexed by date.
        output_path: Path to save PNG file.
        title: Chart title.

    Returns:
        Path to saved chart.
    """
    fig, ax = plt.subplots(figsize=(10, 5))

    ax.plot(equity.index, equity.values, linewidth=2, color="#2E86AB")
    ax.fill_between(equity.index, equity.values, equity.min(), alpha=0.3, color="#2E86AB")

    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.set_ylabel("Account Balance ($)", fontsize=10)
    ax.set_xlabel("Date", fontsize=10)

    ax.xaxis.set_major_formatter(mdates.DateFormatter("%Y-%m-%d"))
    ax.xaxis.set_major_locator(mdates.AutoDateLocator())
    plt.xticks(rotation=45, ha="right")

    ax.yaxis.set_major_formatter(plt.FuncFormatter(lambda x, p: f"${x:,.0f}"))

    ax.grid(True, alpha=0.3)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)

    return output_path


def get_top_winners_losers(
    trades: pd.DataFrame,
    n: int = 5,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Get top winning and losing trades.

    Args:
        trades: DataFrame from trades_to_frame().
        n: Number of top trades to return.

    Returns:
        Tuple of (winners DataFrame, losers DataFrame).
    """
    columns = ["symbol", "type", "pnl", "entry_date"]
    if trades.empty:
        empty = pd.DataFrame(columns=columns)
        return empty, empty

    winners = trades[trades["pnl"] > 0].nlargest(n, "pnl")[columns]
    losers = trades[trades["pnl"] < 0].nsmallest(n, "pnl")[columns]

    return winners, losers


def _table_style(body_color) -> TableStyle:
    return TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_COLOR),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("GRID", (0, 0), (-1, -1), 1, colors.lightgrey),
        ("BACKGROUND", (0, 1), (-1, -1), body_color),
    ])


def _filter_period(df: pd.DataFrame, period: Optional[str]) -> pd.DataFrame:
    if not period or df.empty:
        return df
    start_date, end_date = get_month_date_range(period)
    start = pd.Timestamp(start_date)
    end = pd.Timestamp(end_date) + pd.Timedelta(days=1)
    return df[(df["entry_date"] >= start) & (df["entry_date"] < end)]


def generate_journal_report(
    trades: list[Trade],
    output_dir: str,
    period: Optional[str] = None,
    initial_balance: float = performance.DEFAULT_INITIAL_BALANCE,
    discipline_stats: Optional[DisciplineStats] = None,
) -> Path:
    """Generate PDF journal report.

    Args:
        trades: Trades to report on.
        output_dir: Path to save PDF report.
        period: Month in YYYY-MM format, or None for all trades.
        initial_balance: Starting balance for the equity curve.
        discipline_stats: Optional discipline summary to include.

    Returns:
        Path to generated PDF.
    """
    label = period or "all-time"

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    pdf_path = output_path / f"{label}-journal.pdf"

    df = _filter_period(trades_to_frame(trades), period)
    metrics = performance.compute_all_metrics(df, initial_balance)
    equity = performance.equity_curve(df, initial_balance)
    winners, losers = get_top_winners_losers(df)

    equity_chart = None
    if len(equity) >= 2:
        equity_chart = create_equity_chart(equity, output_path / f"{label}-equity.png")

    doc = SimpleDocTemplate(
        str(pdf_path),
        pagesize=letter,
        rightMargin=0.75 * inch,
        leftMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "CustomTitle",
        parent=styles["Heading1"],
        fontSize=24,
        spaceAfter=20,
        alignment=1,
    )
    heading_style = ParagraphStyle(
        "CustomHeading",
        parent=styles["Heading2"],
        fontSize=14,
        spaceBefore=15,
        spaceAfter=10,
    )
    body_style = styles["BodyText"]

    elements = []

    elements.append(Paragraph("Trading Journal Report", title_style))
    elements.append(Paragraph(period or "All trades", styles["Heading2"]))
    elements.append(Spacer(1, 20))

    elements.append(Paragraph("Performance Summary", heading_style))

    stats = metrics["trades"]
    summary_data = [
        ["Metric", "Value"],
        ["Net P&L", f"${metrics['pnl']['total_pnl']:,.2f}"],
        ["Return", f"{metrics['pnl']['total_return_pct']:.2f}%"],
        ["Total Trades", str(stats["total_trades"])],
        ["Win Rate", f"{stats['win_rate']:.1f}%"],
        ["Profit Factor", "No losses" if stats["profit_factor"] == float("inf") else f"{stats['profit_factor']:.2f}"],
        ["Expectancy", f"${stats['expectancy']:,.2f}"],
        ["Max Drawdown", f"{metrics['risk']['max_drawdown']:.2f}%"],
        ["Sharpe Ratio", f"{metrics['risk']['sharpe_ratio']:.2f}"],
        ["Avg Holding Time", metrics["timing"]["average_holding_time"]],
    ]

    summary_table = Table(summary_data, colWidths=[2.5 * inch, 2 * inch])
    summary_table.setStyle(_table_style(colors.Color(0.95, 0.95, 0.95)))
    elements.append(summary_table)
    elements.append(Spacer(1, 20))

    if equity_chart and equity_chart.exists():
        elements.append(Paragraph("Equity Curve", heading_style))
        elements.append(Image(str(equity_chart), width=6.5 * inch, height=3.25 * inch))
        elements.append(Spacer(1, 10))

    by_symbol = performance.pnl_by_symbol(df)
    if not by_symbol.empty:
        elements.append(Paragraph("P&L by Symbol", heading_style))
        counts = df.groupby("symbol").size()
        symbol_data = [["Symbol", "Trades", "P&L"]]
        for symbol, pnl in by_symbol.items():
            symbol_data.append([symbol, str(counts[symbol]), f"${pnl:,.2f}"])

        symbol_table = Table(symbol_data, colWidths=[2 * inch, 1.5 * inch, 2 * inch])
        symbol_table.setStyle(_table_style(colors.Color(0.95, 0.95, 0.95)))
        elements.append(symbol_table)
        elements.append(Spacer(1, 15))

    for title, rows, color in (
        ("Top 5 Winners", winners, colors.Color(0.9, 1, 0.9)),
        ("Top 5 Losers", losers, colors.Color(1, 0.9, 0.9)),
    ):
        if rows.empty:
            continue
        elements.append(Paragraph(title, heading_style))
        data = [["Symbol", "Side", "P&L", "Date"]]
        for _, row in rows.iterrows():
            data.append([
                row["symbol"],
                row["type"],
                f"${row['pnl']:,.2f}",
                row["entry_date"].strftime("%Y-%m-%d"),
            ])
        table = Table(data, colWidths=[1.5 * inch, 1 * inch, 1.5 * inch, 1.5 * inch])
        table.setStyle(_table_style(color))
        elements.append(table)
        elements.append(Spacer(1, 15))

    elements.append(PageBreak())

    elements.append(Paragraph("Recent Trades", heading_style))
    if df.empty:
        elements.append(Paragraph("No trades in this period.", body_style))
    else:
        recent = df.sort_values("entry_date", ascending=False).head(RECENT_TRADES)
        trade_data = [["Date", "Symbol", "Side", "Status", "Entry", "Exit", "P&L"]]
        for _, row in recent.iterrows():
            exit_price = row["exit_price"]
            trade_data.append([
                row["entry_date"].strftime("%Y-%m-%d"),
                row["symbol"],
                row["type"],
                row["status"],
                f"{row['entry_price']:,.2f}",
                f"{exit_price:,.2f}" if pd.notna(exit_price) else "-",
                f"${row['pnl']:,.2f}",
            ])
        trade_table = Table(trade_data)
        trade_table.setStyle(_table_style(colors.Color(0.95, 0.95, 0.95)))
        elements.append(trade_table)
    elements.append(Spacer(1, 20))

    if discipline_stats is not None:
        elements.append(Paragraph("Discipline", heading_style))
        discipline_data = [
            ["Metric", "Value"],
            ["Check-ins", str(discipline_stats.total_entries)],
            ["Average Rating", f"{discipline_stats.average_rating:.1f} / 5"],
            ["Rule Compliance", f"{discipline_stats.compliance_rate:.1f}%"],
        ]
        if discipline_stats.most_broken_rules:
            top = discipline_stats.most_broken_rules[0]
            discipline_data.append(["Most Broken Rule", f"{top['rule']} ({top['count']}x)"])

        discipline_table = Table(discipline_data, colWidths=[2.5 * inch, 2.5 * inch])
        discipline_table.setStyle(_table_style(colors.Color(0.95, 0.95, 0.95)))
        elements.append(discipline_table)

    elements.append(Spacer(1, 30))
    elements.append(Paragraph(
        f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')} UTC",
        ParagraphStyle("Footer", parent=body_style, fontSize=8, textColor=colors.grey),
    ))

    doc.build(elements)
    logger.info(f"Generated report: {pdf_path}")

    return pdf_path
