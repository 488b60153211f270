"""
Condition evaluation: decides whether an alert fires against a snapshot.

Pure and deterministic; never performs I/O and never raises. Thresholds are
inclusive in both directions.
"""
from typing import Optional, Tuple

from pricewatch.core.types import (
    ConditionType,
    Direction,
    Snapshot,
    TriggerDecision,
    is_finite_number,
)


def observed_value(condition_type: str, snapshot: Snapshot) -> Tuple[Optional[float], str]:
    """Return the metric an alert compares against, or None with a reason."""
    if condition_type == ConditionType.PRICE.value:
        field, value = "price", snapshot.price
    elif condition_type == ConditionType.VOLUME.value:
        field, value = "volume_24h", snapshot.volume_24h
    elif condition_type == ConditionType.MARKET_CAP.value:
        field, value = "market_cap", snapshot.market_cap
    elif condition_type == ConditionType.PRICE_CHANGE.value:
        # 24h absolute change relative to the current price
        if not is_finite_number(snapshot.change_24h):
            return None, f"snapshot for {snapshot.symbol} has no usable change_24h"
        if not is_finite_number(snapshot.price) or float(snapshot.price) == 0:
            return None, f"snapshot for {snapshot.symbol} has no usable price"
        return float(snapshot.change_24h) / float(snapshot.price) * 100, ""
    else:
        return None, f"unsupported condition type {condition_type!r}"

    if not is_finite_number(value):
        return None, f"snapshot for {snapshot.symbol} has no usable {field}"
    return float(value), ""


def evaluate(alert, snapshot: Snapshot) -> TriggerDecision:
    """Evaluate one alert against the latest snapshot of its symbol."""
    observed, problem = observed_value(alert.condition_type, snapshot)
    if observed is None:
        return TriggerDecision(fire=False, observed=None, reason=problem)

    if not is_finite_number(alert.target_value):
        return TriggerDecision(fire=False, observed=observed, reason=f"target {alert.target_value!r} is not a finite number")
    target = float(alert.target_value)

    if alert.direction == Direction.ABOVE.value:
        fire, operator = observed >= target, ">="
    elif alert.direction == Direction.BELOW.value:
        fire, operator = observed <= target, "<="
    else:
        return TriggerDecision(fire=False, observed=observed, reason=f"unsupported direction {alert.direction!r}")

    if fire:
        reason = f"{alert.condition_type} {observed:g} {operator} {target:g}"
    else:
        reason = f"{alert.condition_type} {observed:g} has not crossed {target:g} ({alert.direction})"
    return TriggerDecision(fire=fire, observed=observed, reason=reason)
