import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from pricewatch.api import routes, security
from pricewatch.core.errors import ServerError
from pricewatch.core.types import TriggerEvent

from conftest import alert_fields
from test_api_security import StubIdentityClient

AUTH = {"Authorization": "Bearer good"}
OTHER_AUTH = {"Authorization": "Bearer other"}


class StubIngestor:
    def __init__(self, updated=3, error=None):
        self.updated = updated
        self.error = error
        self.calls = 0

    async def refresh_prices(self, symbols=None):
        self.calls += 1
        if self.error:
            raise self.error
        return self.updated


@pytest.fixture
def identity(monkeypatch):
    client = StubIdentityClient({"good": {"id": "user-1"}, "other": {"id": "user-2"}})
    monkeypatch.setattr(security, "identity_client", client)
    return client


@pytest.fixture
def client(monkeypatch, alert_store, notification_store):
    monkeypatch.setattr(routes, "price_ingestor", StubIngestor())
    monkeypatch.setattr(routes, "alert_scheduler", None)
    monkeypatch.setattr(routes, "alert_store", alert_store)
    monkeypatch.setattr(routes, "notification_store", notification_store)
    app = FastAPI()
    app.include_router(routes.api_router)
    return TestClient(app)


def test_refresh_prices_rejects_wrong_method(client, identity):
    response = client.get("/refresh-prices", headers=AUTH)
    assert response.status_code == 405


def test_refresh_prices_requires_bearer_token(client, identity):
    assert client.post("/refresh-prices").status_code == 401
    assert client.post("/refresh-prices", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert routes.price_ingestor.calls == 0


def test_refresh_prices_returns_500_without_identity_provider(client, monkeypatch):
    monkeypatch.setattr(security, "identity_client", None)
    response = client.post("/refresh-prices", headers=AUTH)
    assert response.status_code == 500


def test_refresh_prices_returns_updated_count(client, identity):
    response = client.post("/refresh-prices", headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {"updated": 3}


def test_refresh_prices_maps_fetch_failure_to_500(client, identity, monkeypatch):
    monkeypatch.setattr(routes, "price_ingestor", StubIngestor(error=ServerError("HTTP 503", status=503)))

    response = client.post("/refresh-prices", headers=AUTH)

    assert response.status_code == 500
    assert "503" in response.json()["detail"]


def test_create_and_list_alerts_for_caller(client, identity):
    created = client.post(
        "/alerts",
        headers=AUTH,
        json={"symbol": "BTC", "direction": "above", "target_value": 50000},
    )
    assert created.status_code == 201
    body = created.json()
    assert body["user_id"] == "user-1"
    assert body["symbol"] == "btc"
    assert body["active"] is True
    assert body["notification_methods"] == ["push"]

    assert len(client.get("/alerts", headers=AUTH).json()) == 1
    assert client.get("/alerts", headers=OTHER_AUTH).json() == []


@pytest.mark.parametrize(
    "payload",
    [
        {"symbol": "btc", "direction": "sideways", "target_value": 1},
        {"symbol": "btc", "direction": "above", "target_value": 1, "condition_type": "rsi"},
        {"symbol": "btc", "direction": "above", "target_value": 1, "recurring": True},
        {"symbol": "btc", "direction": "above", "target_value": 1, "recurring_interval": "daily"},
        {"symbol": "btc", "direction": "above", "target_value": 1, "notification_methods": ["pager"]},
    ],
)
def test_create_alert_rejects_invalid_definitions(client, identity, payload):
    assert client.post("/alerts", headers=AUTH, json=payload).status_code == 422


@pytest.mark.asyncio
async def test_alert_history_is_owner_only(client, identity, alert_store, clock):
    alert = await alert_store.create_alert(**alert_fields())
    await alert_store.insert_history(
        TriggerEvent(alert.id, clock.now, 50500.0, "price 50500 >= 50000", "btc", "Bitcoin")
    )

    own = client.get(f"/alerts/{alert.id}/history", headers=AUTH)
    other = client.get(f"/alerts/{alert.id}/history", headers=OTHER_AUTH)

    assert own.status_code == 200
    assert own.json()[0]["observed_value"] == 50500.0
    assert other.status_code == 404


def test_check_alerts_without_scheduler_is_unavailable(client, identity):
    assert client.post("/check-alerts", headers=AUTH).status_code == 503
