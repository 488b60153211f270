"""
Shared value types and alert invariants
"""
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pricewatch.core.errors import EvaluationError


class ConditionType(str, Enum):
    """Market metric an alert threshold applies to"""
    PRICE = "price"
    VOLUME = "volume"
    PRICE_CHANGE = "price_change"
    MARKET_CAP = "market_cap"


class Direction(str, Enum):
    ABOVE = "above"
    BELOW = "below"


class RecurringInterval(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class AlertPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NotificationMethod(str, Enum):
    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"


CONDITION_TYPES = {item.value for item in ConditionType}
DIRECTIONS = {item.value for item in Direction}
RECURRING_INTERVALS = {item.value for item in RecurringInterval}
PRIORITIES = {item.value for item in AlertPriority}
NOTIFICATION_METHODS = {item.value for item in NotificationMethod}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


@dataclass(frozen=True)
class Snapshot:
    """Most recent market values for one symbol"""
    symbol: str
    price: Optional[float]
    change_24h: Optional[float]
    change_pct_24h: Optional[float]
    volume_24h: Optional[float]
    market_cap: Optional[float]
    observed_at: datetime
    provider_id: str = ""
    name: str = ""
    image: str = ""


@dataclass(frozen=True)
class TriggerDecision:
    fire: bool
    observed: Optional[float]
    reason: str


@dataclass(frozen=True)
class TriggerEvent:
    """Immutable record of one alert firing"""
    alert_id: int
    triggered_at: datetime
    observed_value: float
    condition_met: str
    symbol: str
    name: str
    history_id: Optional[int] = None

    @property
    def dedup_key(self) -> str:
        return notification_dedup_key(self.alert_id, self.triggered_at)


def notification_dedup_key(alert_id: int, triggered_at: datetime) -> str:
    """Key identifying one trigger instance of one alert."""
    return f"{alert_id}:{ensure_utc(triggered_at).isoformat()}"


def check_alert_invariants(alert) -> None:
    """Raise EvaluationError when an alert definition cannot be evaluated."""
    if alert.condition_type not in CONDITION_TYPES:
        raise EvaluationError(f"Alert {alert.id}: unsupported condition type {alert.condition_type!r}")
    if alert.direction not in DIRECTIONS:
        raise EvaluationError(f"Alert {alert.id}: unsupported direction {alert.direction!r}")
    if not is_finite_number(alert.target_value):
        raise EvaluationError(f"Alert {alert.id}: target value {alert.target_value!r} is not a finite number")
    if not alert.symbol:
        raise EvaluationError(f"Alert {alert.id}: symbol is empty")
    if alert.recurring:
        if alert.recurring_interval not in RECURRING_INTERVALS:
            raise EvaluationError(
                f"Alert {alert.id}: recurring alert needs an interval, got {alert.recurring_interval!r}"
            )
    elif alert.recurring_interval:
        raise EvaluationError(f"Alert {alert.id}: one-shot alert must not carry a recurring interval")
