"""Fixed-fractional position sizing and trade risk metrics."""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class PositionSize:
    """Units to trade for a given account risk."""
    position_size: float
    risk_amount: float


@dataclass
class RiskMetrics:
    """Risk/reward profile of a planned trade."""
    risk_amount: float
    reward_amount: float
    risk_reward_ratio: float
    breakeven_win_rate: float  # fraction, 0.25 = 25%


def _risk_amount(account_size: float, risk_pct: float) -> float:
    return account_size * (risk_pct / 100)


def _units(risk_amount: float, entry: float, stop: float) -> float:
    if entry <= 0 or stop <= 0 or entry == stop:
        return 0.0
    return risk_amount / abs(entry - stop)


def calculate_position_size(
    account_size: float,
    risk_pct: float,
    entry: float,
    stop: float,
) -> PositionSize:
    """Size a position so that hitting the stop loses risk_pct of the account.

    Args:
        account_size: Account balance.
        risk_pct: Percentage of the account to risk (1.0 = 1%).
        entry: Planned entry price.
        stop: Stop-loss price.

    Returns:
        PositionSize with units and the currency amount at risk. Units are 0
        when entry or stop is non-positive or they are equal.
    """
    risk_amount = _risk_amount(account_size, risk_pct)
    size = _units(risk_amount, entry, stop)

    logger.debug(f"Position size: {size:.4f} units risking {risk_amount:,.2f}")
    return PositionSize(position_size=size, risk_amount=risk_amount)


def calculate_risk_metrics(
    account_size: float,
    risk_pct: float,
    entry: float,
    stop: float,
    take_profit: float,
) -> RiskMetrics:
    """Calculate reward, R:R and the win rate needed to break even.

    Args:
        account_size: Account balance.
        risk_pct: Percentage of the account to risk.
        entry: Planned entry price.
        stop: Stop-loss price.
        take_profit: Target price.

    Returns:
        RiskMetrics for a position sized with calculate_position_size().
    """
    risk_amount = _risk_amount(account_size, risk_pct)

    reward_amount = 0.0
    if take_profit > 0 and entry > 0:
        reward_amount = abs(take_profit - entry) * _units(risk_amount, entry, stop)

    rr = reward_amount / risk_amount if risk_amount > 0 else 0.0
    breakeven = 1 / (1 + rr) if rr > 0 else 0.0

    return RiskMetrics(
        risk_amount=risk_amount,
        reward_amount=reward_amount,
        risk_reward_ratio=rr,
        breakeven_win_rate=breakeven,
    )
