from decimal import Decimal
from typing import Union

from finops.schemas.costs import Trend

Number = Union[Decimal, float, int]

# Run-rate change beyond +/-10% counts as a trend
TREND_BAND = 0.10


def share_of(value: Number, total: Number) -> float:
    """Percentage of ``total`` that ``value`` represents; 0 when total is not positive."""
    if total is None or total <= 0:
        return 0.0
    return float(Decimal(str(value)) / Decimal(str(total)) * 100)


def percent_change(current: Number, previous: Number) -> float:
    if not previous:
        return 0.0
    current_d, previous_d = Decimal(str(current)), Decimal(str(previous))
    return float((current_d - previous_d) / previous_d * 100)


def classify_trend(current_rate: Number, prior_rate: Number, band: float = TREND_BAND) -> Trend:
    """Compare two per-day run-rates."""
    if not prior_rate:
        return Trend.INCREASING if current_rate and current_rate > 0 else Trend.STABLE
    change = percent_change(current_rate, prior_rate) / 100
    if change > band:
        return Trend.INCREASING
    if change < -band:
        return Trend.DECREASING
    return Trend.STABLE
