"""
Turns trigger events into persisted, deduplicated notifications
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from pricewatch.core.errors import PersistenceError
from pricewatch.core.types import ConditionType, Direction, TriggerEvent, ensure_utc, utc_now
from pricewatch.models import Notification
from pricewatch.services.notification_service import NotificationService
from pricewatch.services.stores import NotificationStore

logger = logging.getLogger(__name__)

ALERT_TRIGGERED = "alert_triggered"


def format_amount(value: float) -> str:
    """Group thousands; keep sub-unit prices readable (0.00006225)."""
    if abs(value) >= 1:
        text = f"{value:,.2f}"
        return text[:-3] if text.endswith(".00") else text
    text = f"{value:,.8f}".rstrip("0").rstrip(".")
    return text or "0"


def build_message(alert, observed: float) -> Tuple[str, str]:
    """Return (title, message) for a triggered alert."""
    symbol = alert.symbol.upper()
    name = alert.display_name
    target = float(alert.target_value)
    above = alert.direction == Direction.ABOVE.value
    condition = alert.condition_type

    if condition == ConditionType.PRICE.value:
        verb = "reached" if above else "dropped to"
        return (
            f"{symbol} Price Alert",
            f"{name} has {verb} ${format_amount(observed)} (target: ${format_amount(target)})",
        )
    if condition == ConditionType.VOLUME.value:
        verb = "risen to" if above else "fallen to"
        return (
            f"{symbol} Volume Alert",
            f"{name} 24h volume has {verb} ${format_amount(observed)} (target: ${format_amount(target)})",
        )
    if condition == ConditionType.MARKET_CAP.value:
        verb = "reached" if above else "dropped to"
        return (
            f"{symbol} Market Cap Alert",
            f"{name} market cap has {verb} ${format_amount(observed)} (target: ${format_amount(target)})",
        )
    if condition == ConditionType.PRICE_CHANGE.value:
        change_text = "gained" if observed >= 0 else "lost"
        return (
            f"{symbol} Price Change Alert",
            f"{name} has {change_text} {abs(observed):.2f}% in 24h (target: {target:g}%)",
        )
    return f"{symbol} Alert Triggered", f"Your alert for {name} has been triggered"


class NotificationDispatcher:
    """Creates at most one notification per (alert_id, triggered_at)"""

    def __init__(
        self,
        notification_store: NotificationStore,
        delivery: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.notification_store = notification_store
        self.delivery = delivery
        self.clock = clock

    async def dispatch(self, event: TriggerEvent, alert) -> Notification:
        """
        Persist the notification for a trigger event and hand it to delivery

        Args:
            event: Trigger event recorded for the alert
            alert: Alert that fired

        Returns:
            The new notification, or the existing one for the same trigger instance
        """
        key = event.dedup_key
        existing = await self.notification_store.get_by_key(key)
        if existing is not None:
            logger.info(f"Notification for {key} already exists, skipping")
            return existing

        title, message = build_message(alert, event.observed_value)
        notification = Notification(
            user_id=alert.user_id,
            type=ALERT_TRIGGERED,
            title=title,
            message=message,
            read=False,
            payload=self._payload(event, alert),
            dedup_key=key,
            created_at=self.clock(),
        )

        if not await self.notification_store.insert(notification):
            existing = await self.notification_store.get_by_key(key)
            if existing is None:
                raise PersistenceError(f"Notification {key} rejected as duplicate but not found")
            return existing

        logger.info(f"Notification created for alert {alert.id}: {title}")
        if self.delivery is not None:
            methods = alert.notification_methods or []
            results = await self.delivery.deliver(notification, methods, alert.priority or "medium")
            failed = [method for method, ok in results.items() if not ok]
            if failed:
                logger.warning(f"Delivery failed for alert {alert.id} via: {', '.join(failed)}")
        return notification

    @staticmethod
    def _payload(event: TriggerEvent, alert) -> Dict[str, object]:
        return {
            "alert_id": alert.id,
            "symbol": alert.symbol,
            "name": event.name,
            "condition_type": alert.condition_type,
            "direction": alert.direction,
            "observed_value": event.observed_value,
            "target_value": float(alert.target_value),
            "priority": alert.priority or "medium",
            "triggered_at": ensure_utc(event.triggered_at).isoformat(),
        }
