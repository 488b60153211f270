import json

import pytest

from conftest import alert_fields, make_snapshot
from pricewatch import monitor


class DummyMarketClient:
    def __init__(self, **kwargs):
        self.closed = False

    async def close(self):
        self.closed = True


def test_interval_must_be_positive():
    with pytest.raises(SystemExit) as excinfo:
        monitor.main(["--interval", "0"])
    assert excinfo.value.code == 2


def test_parser_reads_flags():
    args = monitor.build_parser().parse_args(["--once", "--refresh", "--interval", "5"])

    assert args.once is True
    assert args.refresh is True
    assert args.interval == 5.0


@pytest.mark.asyncio
async def test_single_pass_prints_summary(alert_store, snapshot_store, notification_store, monkeypatch, capsys):
    await alert_store.create_alert(**alert_fields())
    await snapshot_store.upsert_snapshots([make_snapshot("btc", 50500.0)])

    async def no_migrations():
        return None

    monkeypatch.setattr(monitor, "init_db", no_migrations)
    monkeypatch.setattr(monitor, "AlertStore", lambda: alert_store)
    monkeypatch.setattr(monitor, "SnapshotStore", lambda: snapshot_store)
    monkeypatch.setattr(monitor, "NotificationStore", lambda: notification_store)
    monkeypatch.setattr(monitor, "CoinGeckoClient", DummyMarketClient)

    code = await monitor.run(monitor.build_parser().parse_args(["--once"]))

    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["alerts_triggered"] == 1
    assert summary["notifications_created"] == 1
    assert len(await notification_store.list_for_user("user-1")) == 1
