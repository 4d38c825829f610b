"""Performance metrics calculation for the trading journal.

Computes aggregate trade statistics (win rate, profit factor, expectancy,
streaks), equity and drawdown figures, Sharpe ratio on daily returns, and
the breakdowns shown on the dashboard. Every function takes the DataFrame
produced by models.trades_to_frame().
"""

import logging
from datetime import timedelta
from typing import Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252
DEFAULT_INITIAL_BALANCE = 100000.0


def _winners(trades: pd.DataFrame) -> pd.Series:
    return trades.loc[trades["pnl"] > 0, "pnl"]


def _losers(trades: pd.DataFrame) -> pd.Series:
    return trades.loc[trades["pnl"] < 0, "pnl"]


def total_pnl(trades: pd.DataFrame) -> float:
    """Sum of P&L across all trades."""
    if trades.empty:
        return 0.0
    return float(trades["pnl"].sum())


def win_rate(trades: pd.DataFrame) -> float:
    """Calculate win rate from trades.

    Break-even trades count towards the total but not as wins.

    Args:
        trades: DataFrame with pnl column.

    Returns:
        Win rate as percentage (55.0 = 55%).
    """
    if trades.empty:
        return 0.0

    return float((trades["pnl"] > 0).mean() * 100)


def profit_factor(trades: pd.DataFrame) -> float:
    """Calculate profit factor (gross profits / gross losses).

    Args:
        trades: DataFrame with pnl column.

    Returns:
        Profit factor (>1 is profitable), inf when there are no losses.
    """
    if trades.empty:
        return 0.0

    profits = _winners(trades).sum()
    losses = abs(_losers(trades).sum())

    if losses == 0:
        return float("inf") if profits > 0 else 0.0

    return float(profits / losses)


def average_win(trades: pd.DataFrame) -> float:
    """Mean P&L of winning trades."""
    wins = _winners(trades)
    if wins.empty:
        return 0.0
    return float(wins.mean())


def average_loss(trades: pd.DataFrame) -> float:
    """Mean absolute P&L of losing trades (positive number)."""
    losses = _losers(trades)
    if losses.empty:
        return 0.0
    return float(abs(losses.mean()))


def risk_reward_ratio(trades: pd.DataFrame) -> float:
    """Realised reward-to-risk: average win over average loss."""
    avg_loss = average_loss(trades)
    if avg_loss == 0:
        return 0.0
    return average_win(trades) / avg_loss


def largest_win(trades: pd.DataFrame) -> float:
    wins = _winners(trades)
    return float(wins.max()) if not wins.empty else 0.0


def largest_loss(trades: pd.DataFrame) -> float:
    losses = _losers(trades)
    return float(losses.min()) if not losses.empty else 0.0


def expectancy(trades: pd.DataFrame) -> float:
    """Expected P&L per trade.

    Args:
        trades: DataFrame with pnl column.

    Returns:
        win_fraction * average_win - loss_fraction * average_loss.
    """
    if trades.empty:
        return 0.0

    win_fraction = win_rate(trades) / 100
    return win_fraction * average_win(trades) - (1 - win_fraction) * average_loss(trades)


def _longest_run(mask: pd.Series) -> int:
    longest = 0
    current = 0
    for hit in mask:
        if hit:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def max_consecutive_wins(trades: pd.DataFrame) -> int:
    """Longest winning streak in entry order."""
    if trades.empty:
        return 0
    return _longest_run(trades.sort_values("entry_date", kind="stable")["pnl"] > 0)


def max_consecutive_losses(trades: pd.DataFrame) -> int:
    """Longest losing streak in entry order."""
    if trades.empty:
        return 0
    return _longest_run(trades.sort_values("entry_date", kind="stable")["pnl"] < 0)


def equity_curve(
    trades: pd.DataFrame,
    initial_balance: float = DEFAULT_INITIAL_BALANCE,
) -> pd.Series:
    """Build account balance after each trade.

    Args:
        trades: DataFrame with entry_date and pnl columns.
        initial_balance: Starting account balance.

    Returns:
        Series of balances indexed by entry date.
    """
    if trades.empty:
        return pd.Series(dtype=float)

    ordered = trades.sort_values("entry_date", kind="stable")
    balance = initial_balance + ordered["pnl"].cumsum()
    balance.index = pd.DatetimeIndex(ordered["entry_date"])
    return balance.astype(float)


def drawdown_series(equity: pd.Series) -> pd.Series:
    """Calculate drawdown series.

    Args:
        equity: Series of equity values.

    Returns:
        Series of drawdown values (negative decimals).
    """
    if len(equity) < 2:
        return pd.Series(dtype=float)

    cummax = equity.cummax()

    # Avoid division by zero - replace zero cummax with NaN
    cummax_safe = cummax.where(cummax > 0, np.nan)
    return (equity - cummax) / cummax_safe


def max_drawdown(equity: pd.Series) -> float:
    """Calculate maximum drawdown.

    Args:
        equity: Series of equity values.

    Returns:
        Maximum drawdown as positive decimal (0.10 = 10% drawdown).
    """
    drawdown = drawdown_series(equity).dropna()

    if drawdown.empty:
        return 0.0

    return float(abs(drawdown.min()))


def account_drawdown(
    trades: pd.DataFrame,
    initial_balance: float = DEFAULT_INITIAL_BALANCE,
) -> float:
    """Maximum drawdown of the account, with the opening balance as first peak.

    Returns:
        Maximum drawdown as positive decimal, so a losing first trade counts.
    """
    equity = equity_curve(trades, initial_balance)
    if equity.empty:
        return 0.0

    return max_drawdown(pd.Series([float(initial_balance), *equity.to_list()]))


def max_drawdown_amount(trades: pd.DataFrame) -> float:
    """Largest peak-to-trough decline of cumulative P&L, in currency.

    Cumulative P&L starts from zero, so an opening loss is a drawdown.
    """
    if trades.empty:
        return 0.0

    cumulative = trades.sort_values("entry_date", kind="stable")["pnl"].cumsum()
    peak = cumulative.cummax().clip(lower=0)
    return float((peak - cumulative).max())


def daily_pnl(trades: pd.DataFrame) -> pd.Series:
    """P&L summed per calendar day of entry."""
    if trades.empty:
        return pd.Series(dtype=float)

    days = trades["entry_date"].dt.normalize()
    return trades.groupby(days)["pnl"].sum().sort_index()


def daily_returns(
    trades: pd.DataFrame,
    initial_balance: float = DEFAULT_INITIAL_BALANCE,
) -> pd.Series:
    """Daily P&L as a fraction of the previous day's closing balance.

    Args:
        trades: DataFrame with entry_date and pnl columns.
        initial_balance: Starting account balance.

    Returns:
        Series of daily returns indexed by date.
    """
    pnl = daily_pnl(trades)
    if pnl.empty:
        return pd.Series(dtype=float)

    closing = initial_balance + pnl.cumsum()
    opening = closing.shift(1).fillna(initial_balance)
    opening = opening.where(opening > 0, np.nan)
    return (pnl / opening).dropna()


def sharpe_ratio(returns: pd.Series, risk_free_rate: float = 0.0) -> float:
    """Calculate Sharpe ratio.

    Args:
        returns: Series of daily returns.
        risk_free_rate: Annual risk-free rate (default 0%).

    Returns:
        Annualized Sharpe ratio.
    """
    if len(returns) < 2:
        return 0.0

    excess_returns = returns - (risk_free_rate / TRADING_DAYS_PER_YEAR)
    std = excess_returns.std()
    if std == 0 or np.isnan(std):
        return 0.0

    return float((excess_returns.mean() / std) * np.sqrt(TRADING_DAYS_PER_YEAR))


def average_risk_reward(trades: pd.DataFrame) -> float:
    """Mean planned risk-reward ratio.

    Uses the risk_reward column, falling back to reward / risk. Only
    positive ratios are averaged.
    """
    if trades.empty:
        return 0.0

    planned = pd.to_numeric(trades["risk_reward"], errors="coerce")
    risk = pd.to_numeric(trades["risk"], errors="coerce")
    reward = pd.to_numeric(trades["reward"], errors="coerce")
    derived = reward / risk.where(risk > 0, np.nan)

    ratios = planned.where(planned > 0, derived)
    ratios = ratios[ratios > 0]
    if ratios.empty:
        return 0.0
    return float(ratios.mean())


def average_holding_time(trades: pd.DataFrame) -> timedelta:
    """Mean time between entry and exit for closed trades."""
    if trades.empty:
        return timedelta(0)

    closed = trades.dropna(subset=["exit_date"])
    if closed.empty:
        return timedelta(0)

    return (closed["exit_date"] - closed["entry_date"]).mean().to_pytimedelta()


def format_duration(duration: timedelta) -> str:
    """Format a duration for display, e.g. '2d 3h', '3h 15m', '45m'."""
    total_minutes = int(duration.total_seconds() // 60)
    days, remainder = divmod(total_minutes, 60 * 24)
    hours, minutes = divmod(remainder, 60)

    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def average_pnl_per_day(trades: pd.DataFrame) -> float:
    """Total P&L divided by the number of distinct trading days."""
    if trades.empty:
        return 0.0

    trading_days = trades["entry_date"].dt.normalize().nunique()
    return total_pnl(trades) / trading_days if trading_days else 0.0


def best_day_of_week(trades: pd.DataFrame) -> tuple[Optional[str], float]:
    """Find the weekday with the highest total P&L.

    Returns:
        Tuple of (weekday name, win rate on that weekday), or (None, 0.0).
    """
    if trades.empty:
        return None, 0.0

    weekdays = trades["entry_date"].dt.day_name()
    by_day = trades.groupby(weekdays)["pnl"].sum()
    best = by_day.idxmax()

    return best, win_rate(trades[weekdays == best])


def pnl_by_symbol(trades: pd.DataFrame) -> pd.Series:
    if trades.empty:
        return pd.Series(dtype=float)
    return trades.groupby("symbol")["pnl"].sum().sort_values(ascending=False)


def pnl_by_type(trades: pd.DataFrame) -> dict:
    """P&L split between Long and Short trades."""
    if trades.empty:
        return {"long": 0.0, "short": 0.0}

    grouped = trades.groupby("type")["pnl"].sum()
    return {
        "long": float(grouped.get("Long", 0.0)),
        "short": float(grouped.get("Short", 0.0)),
    }


def pnl_by_strategy(trades: pd.DataFrame) -> pd.Series:
    if trades.empty:
        return pd.Series(dtype=float)
    strategies = trades["strategy"].fillna("Unassigned")
    return trades.groupby(strategies)["pnl"].sum().sort_values(ascending=False)


def monthly_pnl(trades: pd.DataFrame) -> pd.Series:
    """P&L per month, indexed by 'YYYY-MM'."""
    if trades.empty:
        return pd.Series(dtype=float)
    months = trades["entry_date"].dt.strftime("%Y-%m")
    return trades.groupby(months)["pnl"].sum().sort_index()


def yearly_pnl(trades: pd.DataFrame) -> pd.Series:
    """P&L per calendar year of entry."""
    if trades.empty:
        return pd.Series(dtype=float)
    return trades.groupby(trades["entry_date"].dt.year)["pnl"].sum().sort_index()


def calendar_days(trades: pd.DataFrame) -> list[dict]:
    """Per-day P&L and trade count for the trading calendar."""
    if trades.empty:
        return []

    days = trades["entry_date"].dt.strftime("%Y-%m-%d")
    grouped = trades.groupby(days)["pnl"].agg(pnl="sum", count="count")

    return [
        {"date": date, "pnl": round(float(row["pnl"]), 2), "count": int(row["count"])}
        for date, row in grouped.sort_index().iterrows()
    ]


def monte_carlo(
    trades: pd.DataFrame,
    simulations: int = 1000,
    seed: Optional[int] = None,
) -> dict:
    """Bootstrap per-trade returns to estimate the outcome distribution.

    Each simulation resamples the trade returns (pnl / position cost) with
    replacement and sums them into a final cumulative return.

    Args:
        trades: DataFrame with pnl, entry_price, exit_price and quantity.
        simulations: Number of resampled paths.
        seed: Optional seed for reproducible results.

    Returns:
        Dictionary with worst_drawdown (lowest final return), best_return,
        average_return and confidence_interval (2.5th and 97.5th percentile
        of final returns).
    """
    empty = {
        "worst_drawdown": 0.0,
        "best_return": 0.0,
        "average_return": 0.0,
        "confidence_interval": (0.0, 0.0),
    }
    if trades.empty:
        return empty

    closed = trades.dropna(subset=["exit_price"])
    cost = closed["entry_price"] * closed["quantity"]
    returns = (closed["pnl"] / cost.where(cost > 0, np.nan)).dropna().to_numpy()

    if len(returns) == 0:
        return empty

    rng = np.random.default_rng(seed)
    samples = rng.choice(returns, size=(simulations, len(returns)), replace=True)
    finals = np.sort(samples.sum(axis=1))
    lower = finals[int(len(finals) * 0.025)]
    upper = finals[min(int(len(finals) * 0.975), len(finals) - 1)]

    return {
        "worst_drawdown": float(finals[0]),
        "best_return": float(finals[-1]),
        "average_return": float(finals.mean()),
        "confidence_interval": (float(lower), float(upper)),
    }


def filter_by_range(trades: pd.DataFrame, date_range: str, now=None) -> pd.DataFrame:
    """Restrict trades to a dashboard range ('1D', '1W', '1M', '3M', '6M', '1Y', 'ALL').

    Raises:
        ValueError: For an unknown range code.
    """
    offsets = {
        "1D": pd.Timedelta(days=1),
        "1W": pd.Timedelta(weeks=1),
        "1M": pd.DateOffset(months=1),
        "3M": pd.DateOffset(months=3),
        "6M": pd.DateOffset(months=6),
        "1Y": pd.DateOffset(years=1),
    }
    if date_range == "ALL":
        return trades
    if date_range not in offsets:
        raise ValueError(f"Unknown date range: {date_range}")
    if trades.empty:
        return trades

    now = pd.Timestamp(now) if now is not None else pd.Timestamp.now()
    return trades[trades["entry_date"] >= now - offsets[date_range]]


def _round(value: float, digits: int = 2) -> float:
    if np.isinf(value):
        return value
    return round(value, digits)


def compute_all_metrics(
    trades: pd.DataFrame,
    initial_balance: float = DEFAULT_INITIAL_BALANCE,
    risk_free_rate: float = 0.0,
) -> dict:
    """Compute all performance metrics.

    Args:
        trades: DataFrame from trades_to_frame().
        initial_balance: Starting account balance for equity figures.
        risk_free_rate: Annual risk-free rate for the Sharpe ratio.

    Returns:
        Dictionary of all performance metrics.
    """
    returns = daily_returns(trades, initial_balance)
    best_day, best_day_rate = best_day_of_week(trades)
    net = total_pnl(trades)

    metrics = {
        "period": {
            "start_date": str(trades["entry_date"].min().date()) if not trades.empty else None,
            "end_date": str(trades["entry_date"].max().date()) if not trades.empty else None,
            "trading_days": int(trades["entry_date"].dt.normalize().nunique()) if not trades.empty else 0,
        },
        "pnl": {
            "total_pnl": round(net, 2),
            "total_return_pct": round(net / initial_balance * 100, 2) if initial_balance else 0.0,
            "average_pnl_per_day": round(average_pnl_per_day(trades), 2),
            "starting_balance": initial_balance,
            "ending_balance": round(initial_balance + net, 2),
        },
        "trades": {
            "total_trades": len(trades),
            "winning_trades": int((trades["pnl"] > 0).sum()),
            "losing_trades": int((trades["pnl"] < 0).sum()),
            "win_rate": round(win_rate(trades), 1),
            "profit_factor": _round(profit_factor(trades)),
            "average_win": round(average_win(trades), 2),
            "average_loss": round(average_loss(trades), 2),
            "largest_win": round(largest_win(trades), 2),
            "largest_loss": round(largest_loss(trades), 2),
            "expectancy": round(expectancy(trades), 2),
            "max_consecutive_wins": max_consecutive_wins(trades),
            "max_consecutive_losses": max_consecutive_losses(trades),
        },
        "risk": {
            "max_drawdown": round(account_drawdown(trades, initial_balance) * 100, 2),
            "max_drawdown_amount": round(max_drawdown_amount(trades), 2),
            "sharpe_ratio": round(sharpe_ratio(returns, risk_free_rate), 2),
            "average_risk_reward": round(average_risk_reward(trades), 2),
            "realised_risk_reward": round(risk_reward_ratio(trades), 2),
        },
        "timing": {
            "average_holding_time": format_duration(average_holding_time(trades)),
            "best_day_of_week": best_day,
            "best_day_win_rate": round(best_day_rate, 1),
        },
    }

    return metrics


def format_performance_report(metrics: dict) -> str:
    """Format performance metrics as readable text report.

    Args:
        metrics: Output from compute_all_metrics().

    Returns:
        Formatted text report.
    """
    lines = ["=" * 50, "TRADING JOURNAL PERFORMANCE", "=" * 50, ""]

    period = metrics["period"]
    lines.append("PERIOD")
    lines.append("-" * 30)
    lines.append(f"Start: {period['start_date']}")
    lines.append(f"End: {period['end_date']}")
    lines.append(f"Trading days: {period['trading_days']}")
    lines.append("")

    pnl = metrics["pnl"]
    lines.append("P&L")
    lines.append("-" * 30)
    lines.append(f"Net P&L: ${pnl['total_pnl']:,.2f} ({pnl['total_return_pct']:.2f}%)")
    lines.append(f"Average per day: ${pnl['average_pnl_per_day']:,.2f}")
    lines.append(f"Balance: ${pnl['starting_balance']:,.2f} -> ${pnl['ending_balance']:,.2f}")
    lines.append("")

    trades = metrics["trades"]
    lines.append("TRADE STATISTICS")
    lines.append("-" * 30)
    lines.append(
        f"Total trades: {trades['total_trades']} "
        f"({trades['winning_trades']}W / {trades['losing_trades']}L)"
    )
    lines.append(f"Win rate: {trades['win_rate']:.1f}%")
    pf = trades["profit_factor"]
    lines.append(f"Profit factor: {'∞' if np.isinf(pf) else f'{pf:.2f}'}")
    lines.append(f"Expectancy: ${trades['expectancy']:,.2f}")
    lines.append(f"Average win / loss: ${trades['average_win']:,.2f} / ${trades['average_loss']:,.2f}")
    lines.append(f"Largest win / loss: ${trades['largest_win']:,.2f} / ${trades['largest_loss']:,.2f}")
    lines.append(
        f"Streaks: {trades['max_consecutive_wins']} wins, "
        f"{trades['max_consecutive_losses']} losses"
    )
    lines.append("")

    risk = metrics["risk"]
    lines.append("RISK METRICS")
    lines.append("-" * 30)
    lines.append(f"Max drawdown: {risk['max_drawdown']:.2f}% (${risk['max_drawdown_amount']:,.2f})")
    lines.append(f"Sharpe ratio: {risk['sharpe_ratio']:.2f}")
    lines.append(f"Avg planned R:R: {risk['average_risk_reward']:.2f}R")
    lines.append("")

    timing = metrics["timing"]
    lines.append("TIMING")
    lines.append("-" * 30)
    lines.append(f"Avg holding time: {timing['average_holding_time']}")
    if timing["best_day_of_week"]:
        lines.append(
            f"Best day: {timing['best_day_of_week']} "
            f"({timing['best_day_win_rate']:.1f}% win rate)"
        )
    lines.append("")

    lines.append("=" * 50)
    return "\n".join(lines)
