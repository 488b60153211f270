import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from conftest import alert_fields, make_snapshot
from pricewatch.core.errors import PersistenceError
from pricewatch.core.types import TriggerEvent, ensure_utc
from pricewatch.models import Alert, Notification
from pricewatch.services.stores import AlertStore


@pytest.mark.asyncio
async def test_list_active_untriggered_excludes_inactive_and_triggered(alert_store, clock):
    live = await alert_store.create_alert(**alert_fields())
    await alert_store.create_alert(**alert_fields(active=False))
    await alert_store.create_alert(**alert_fields(active=False, triggered_at=clock.now))

    alerts = await alert_store.list_active_untriggered()

    assert [alert.id for alert in alerts] == [live.id]


@pytest.mark.asyncio
async def test_conditional_update_applies_once(alert_store, clock):
    alert = await alert_store.create_alert(**alert_fields())
    patch = {"active": False, "triggered_at": clock.now, "last_observed_value": 50500.0}
    precondition = {"active": True, "triggered_at": None}

    assert await alert_store.conditional_update(alert.id, patch, precondition)
    assert not await alert_store.conditional_update(alert.id, patch, precondition)

    stored = await alert_store.get_alert(alert.id)
    assert stored.active is False
    assert ensure_utc(stored.triggered_at) == clock.now
    assert stored.last_observed_value == 50500.0


@pytest.mark.asyncio
async def test_conditional_update_guards_on_loaded_next_trigger(alert_store, clock):
    alert = await alert_store.create_alert(
        **alert_fields(recurring=True, recurring_interval="daily", next_trigger=clock.now)
    )
    loaded = (await alert_store.list_active_untriggered())[0]
    precondition = {"active": True, "triggered_at": None, "next_trigger": loaded.next_trigger}

    first = await alert_store.conditional_update(
        alert.id, {"next_trigger": clock.now + timedelta(days=1)}, precondition
    )
    second = await alert_store.conditional_update(
        alert.id, {"next_trigger": clock.now + timedelta(days=2)}, precondition
    )

    assert first and not second
    stored = await alert_store.get_alert(alert.id)
    assert ensure_utc(stored.next_trigger) == clock.now + timedelta(days=1)


@pytest.mark.asyncio
async def test_history_rows_and_notified_flag(alert_store, clock):
    alert = await alert_store.create_alert(**alert_fields())
    event = TriggerEvent(
        alert_id=alert.id,
        triggered_at=clock.now,
        observed_value=50500.0,
        condition_met="price 50500 >= 50000",
        symbol="btc",
        name="Bitcoin",
    )

    history_id = await alert_store.insert_history(event)
    await alert_store.mark_history_notified(history_id)

    rows = await alert_store.list_history(alert.id)
    assert len(rows) == 1
    assert rows[0].notification_sent is True
    assert rows[0].observed_value == 50500.0


@pytest.mark.asyncio
async def test_list_alerts_is_scoped_to_user(alert_store):
    await alert_store.create_alert(**alert_fields(user_id="user-1"))
    await alert_store.create_alert(**alert_fields(user_id="user-2", symbol="eth"))

    alerts = await alert_store.list_alerts("user-2")

    assert [alert.symbol for alert in alerts] == ["eth"]
    assert alerts[0].notification_methods == ["push"]


@pytest.mark.asyncio
async def test_snapshot_upsert_replaces_rows(snapshot_store):
    assert await snapshot_store.upsert_snapshots([make_snapshot(price=49000.0), make_snapshot("eth", 3000.0)]) == 2
    assert await snapshot_store.upsert_snapshots([make_snapshot(price=50500.0)]) == 1

    btc = await snapshot_store.get_snapshot("BTC")
    eth = await snapshot_store.get_snapshot("eth")
    assert btc.price == 50500.0
    assert eth.price == 3000.0
    assert await snapshot_store.get_snapshot("sol") is None


@pytest.mark.asyncio
async def test_notification_insert_rejects_duplicate_key(notification_store, clock):
    def build():
        return Notification(
            user_id="user-1",
            type="alert_triggered",
            title="BTC Price Alert",
            message="Bitcoin has reached $50,500 (target: $50,000)",
            read=False,
            payload={},
            dedup_key=f"1:{clock.now.isoformat()}",
            created_at=clock.now,
        )

    assert await notification_store.insert(build())
    assert not await notification_store.insert(build())
    assert await notification_store.exists_for_key(1, clock.now)
    assert len(await notification_store.list_for_user("user-1")) == 1


@pytest.mark.asyncio
async def test_mark_read_only_touches_owner_rows(notification_store, clock):
    notification = Notification(
        user_id="user-1",
        type="alert_triggered",
        title="t",
        message="m",
        read=False,
        payload={},
        dedup_key="1:x",
        created_at=clock.now,
    )
    await notification_store.insert(notification)

    assert not await notification_store.mark_read(notification.id, "user-2")
    assert await notification_store.mark_read(notification.id, "user-1")
    assert await notification_store.list_for_user("user-1", unread_only=True) == []


class BrokenSession:
    def query(self, *args):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    def close(self):
        pass


@pytest.mark.asyncio
async def test_store_failures_surface_as_persistence_error():
    store = AlertStore(session_factory=BrokenSession)

    with pytest.raises(PersistenceError):
        await store.list_active_untriggered()


@pytest.mark.asyncio
async def test_store_sessions_run_off_the_event_loop_thread(session_factory):
    loop_thread = threading.get_ident()
    session_threads = []

    def recording_factory():
        session_threads.append(threading.get_ident())
        return session_factory()

    store = AlertStore(session_factory=recording_factory)
    await store.create_alert(**alert_fields())
    await store.list_active_untriggered()

    assert len(session_threads) == 2
    assert loop_thread not in session_threads


@pytest.mark.asyncio
async def test_list_unnotified_history_returns_pending_rows_with_alert(alert_store, clock):
    alert = await alert_store.create_alert(**alert_fields())
    old = TriggerEvent(alert.id, clock.now - timedelta(days=3), 50100.0, "price above 50000", "btc", "Bitcoin")
    sent = TriggerEvent(alert.id, clock.now - timedelta(minutes=2), 50200.0, "price above 50000", "btc", "Bitcoin")
    pending = TriggerEvent(alert.id, clock.now - timedelta(minutes=1), 50300.0, "price above 50000", "btc", "Bitcoin")
    await alert_store.insert_history(old)
    await alert_store.mark_history_notified(await alert_store.insert_history(sent))
    pending_id = await alert_store.insert_history(pending)

    rows = await alert_store.list_unnotified_history(since=clock.now - timedelta(days=1))

    assert [history.id for history, _ in rows] == [pending_id]
    history, owner = rows[0]
    assert owner.id == alert.id
    assert history.observed_value == 50300.0
