"""Shared fixtures: temporary SQLite database, stores and a controllable clock."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import pricewatch.models  # noqa: F401
from pricewatch.core.database import Base
from pricewatch.core.types import Snapshot
from pricewatch.services.stores import AlertStore, NotificationStore, SnapshotStore


class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def session_factory(tmp_path):
    # File database so store calls on different worker threads get their own connections.
    engine = create_engine(
        f"sqlite:///{tmp_path / 'pricewatch-test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    engine.dispose()


@pytest.fixture
def alert_store(session_factory):
    return AlertStore(session_factory)


@pytest.fixture
def snapshot_store(session_factory):
    return SnapshotStore(session_factory)


@pytest.fixture
def notification_store(session_factory):
    return NotificationStore(session_factory)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


def make_snapshot(symbol="btc", price=50000.0, **overrides) -> Snapshot:
    values = {
        "symbol": symbol,
        "price": price,
        "change_24h": 1000.0,
        "change_pct_24h": 2.0,
        "volume_24h": 2.5e10,
        "market_cap": 9.8e11,
        "observed_at": datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc),
        "provider_id": "bitcoin",
        "name": "Bitcoin",
    }
    values.update(overrides)
    return Snapshot(**values)


def alert_fields(**overrides):
    values = {
        "user_id": "user-1",
        "symbol": "btc",
        "name": "Bitcoin",
        "condition_type": "price",
        "direction": "above",
        "target_value": 50000.0,
        "active": True,
        "recurring": False,
        "recurring_interval": None,
        "priority": "medium",
        "notification_methods": ["push"],
    }
    values.update(overrides)
    return values
