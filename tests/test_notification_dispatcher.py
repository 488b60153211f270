import pytest

from conftest import alert_fields
from pricewatch.core.types import TriggerEvent
from pricewatch.models import Alert
from pricewatch.services.notification_dispatcher import NotificationDispatcher, build_message, format_amount


class RecordingDelivery:
    def __init__(self, results=None):
        self.calls = []
        self.results = results

    async def deliver(self, notification, methods, priority="medium"):
        self.calls.append({"notification": notification, "methods": list(methods), "priority": priority})
        return self.results if self.results is not None else {method: True for method in methods}


def make_event(alert_id, triggered_at, observed=50500.0):
    return TriggerEvent(
        alert_id=alert_id,
        triggered_at=triggered_at,
        observed_value=observed,
        condition_met="price 50500 >= 50000",
        symbol="btc",
        name="Bitcoin",
    )


def test_format_amount_groups_thousands_and_keeps_micro_prices():
    assert format_amount(50500) == "50,500"
    assert format_amount(1234.5) == "1,234.50"
    assert format_amount(0.00006225) == "0.00006225"
    assert format_amount(0) == "0"


@pytest.mark.parametrize(
    "overrides,observed,title,fragments",
    [
        ({}, 50500.0, "BTC Price Alert", ["Bitcoin has reached $50,500", "(target: $50,000)"]),
        ({"direction": "below", "target_value": 30000.0}, 29000.0, "BTC Price Alert", ["dropped to $29,000"]),
        (
            {"condition_type": "volume", "target_value": 1e9},
            1.2e9,
            "BTC Volume Alert",
            ["24h volume has risen to $1,200,000,000"],
        ),
        ({"condition_type": "market_cap", "direction": "below", "target_value": 1e12}, 9e11, "BTC Market Cap Alert", ["dropped to"]),
        ({"condition_type": "price_change", "direction": "below", "target_value": -5.0}, -6.25, "BTC Price Change Alert", ["lost 6.25% in 24h", "(target: -5%)"]),
    ],
)
def test_build_message_per_condition_type(overrides, observed, title, fragments):
    alert = Alert(id=1, **alert_fields(**overrides))

    built_title, message = build_message(alert, observed)

    assert built_title == title
    for fragment in fragments:
        assert fragment in message


@pytest.mark.asyncio
async def test_dispatch_persists_notification_and_delivers(alert_store, notification_store, clock):
    alert = await alert_store.create_alert(**alert_fields(notification_methods=["push", "email"], priority="high"))
    delivery = RecordingDelivery()
    dispatcher = NotificationDispatcher(notification_store, delivery=delivery, clock=clock)

    notification = await dispatcher.dispatch(make_event(alert.id, clock.now), alert)

    assert notification.id is not None
    assert notification.type == "alert_triggered"
    assert "BTC" in notification.title
    assert "50,500" in notification.message and "50,000" in notification.message
    assert notification.payload["alert_id"] == alert.id
    assert notification.payload["observed_value"] == 50500.0
    assert notification.payload["triggered_at"] == clock.now.isoformat()
    assert delivery.calls[0]["methods"] == ["push", "email"]
    assert delivery.calls[0]["priority"] == "high"


@pytest.mark.asyncio
async def test_dispatch_is_idempotent_per_trigger_instance(alert_store, notification_store, clock):
    alert = await alert_store.create_alert(**alert_fields())
    delivery = RecordingDelivery()
    dispatcher = NotificationDispatcher(notification_store, delivery=delivery, clock=clock)

    first = await dispatcher.dispatch(make_event(alert.id, clock.now), alert)
    second = await dispatcher.dispatch(make_event(alert.id, clock.now), alert)

    assert first.id == second.id
    assert len(await notification_store.list_for_user("user-1")) == 1
    assert len(delivery.calls) == 1


@pytest.mark.asyncio
async def test_dispatch_resolves_insert_race_to_existing_row(alert_store, notification_store, clock):
    alert = await alert_store.create_alert(**alert_fields())
    dispatcher = NotificationDispatcher(notification_store, clock=clock)
    winner = await dispatcher.dispatch(make_event(alert.id, clock.now), alert)

    lookups = []
    real_get_by_key = notification_store.get_by_key

    async def miss_first_lookup(key):
        lookups.append(key)
        if len(lookups) == 1:
            return None
        return await real_get_by_key(key)

    notification_store.get_by_key = miss_first_lookup
    loser = await dispatcher.dispatch(make_event(alert.id, clock.now), alert)

    assert loser.id == winner.id
    assert len(lookups) == 2


@pytest.mark.asyncio
async def test_delivery_failure_does_not_fail_dispatch(alert_store, notification_store, clock):
    alert = await alert_store.create_alert(**alert_fields(notification_methods=["sms"]))
    dispatcher = NotificationDispatcher(notification_store, delivery=RecordingDelivery({"sms": False}), clock=clock)

    notification = await dispatcher.dispatch(make_event(alert.id, clock.now), alert)

    assert notification.id is not None
