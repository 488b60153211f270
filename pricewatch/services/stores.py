"""
SQLAlchemy-backed stores for alerts, snapshots and notifications

Each public coroutine runs its session work in a worker thread so the event
loop is never blocked on the database.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from pricewatch.core.database import SessionLocal
from pricewatch.core.errors import PersistenceError
from pricewatch.core.types import Snapshot, TriggerEvent, ensure_utc, notification_dedup_key
from pricewatch.models import Alert, AlertHistory, LatestPrice, Notification

logger = logging.getLogger(__name__)


class AlertStore:
    """Alert rows and their trigger history"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    async def list_active_untriggered(self) -> List[Alert]:
        return await asyncio.to_thread(self._list_active_untriggered)

    def _list_active_untriggered(self) -> List[Alert]:
        db = self.session_factory()
        try:
            return (
                db.query(Alert)
                .filter(Alert.active.is_(True), Alert.triggered_at.is_(None))
                .order_by(Alert.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load active alerts: {e}") from e
        finally:
            db.close()

    async def conditional_update(self, alert_id: int, patch: Dict[str, Any], precondition: Dict[str, Any]) -> bool:
        """
        Apply a patch only if the stored row still matches the precondition.

        Args:
            alert_id: Alert primary key
            patch: Column values to write
            precondition: Column values the stored row must hold (None means IS NULL)

        Returns:
            True if exactly this writer updated the row, False if the guard failed
        """
        return await asyncio.to_thread(self._conditional_update, alert_id, patch, precondition)

    def _conditional_update(self, alert_id: int, patch: Dict[str, Any], precondition: Dict[str, Any]) -> bool:
        clauses = [Alert.id == alert_id]
        for column_name, expected in precondition.items():
            column = getattr(Alert, column_name)
            clauses.append(column.is_(None) if expected is None else column == expected)

        stmt = (
            update(Alert)
            .where(*clauses)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        db = self.session_factory()
        try:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to update alert {alert_id}: {e}") from e
        finally:
            db.close()

    async def insert_history(self, event: TriggerEvent) -> int:
        return await asyncio.to_thread(self._insert_history, event)

    def _insert_history(self, event: TriggerEvent) -> int:
        db = self.session_factory()
        try:
            row = AlertHistory(
                alert_id=event.alert_id,
                triggered_at=event.triggered_at,
                observed_value=event.observed_value,
                condition_met=event.condition_met,
                notification_sent=False,
                symbol=event.symbol,
                name=event.name,
            )
            db.add(row)
            db.commit()
            return row.id
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to record trigger for alert {event.alert_id}: {e}") from e
        finally:
            db.close()

    async def mark_history_notified(self, history_id: int) -> None:
        await asyncio.to_thread(self._mark_history_notified, history_id)

    def _mark_history_notified(self, history_id: int) -> None:
        db = self.session_factory()
        try:
            db.execute(
                update(AlertHistory)
                .where(AlertHistory.id == history_id)
                .values(notification_sent=True)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to flag history row {history_id}: {e}") from e
        finally:
            db.close()

    async def list_unnotified_history(self, since: datetime, limit: int = 100) -> List[Tuple[AlertHistory, Alert]]:
        """History rows since a cutoff whose notification was never confirmed, with their alerts."""
        return await asyncio.to_thread(self._list_unnotified_history, since, limit)

    def _list_unnotified_history(self, since: datetime, limit: int) -> List[Tuple[AlertHistory, Alert]]:
        db = self.session_factory()
        try:
            rows = (
                db.query(AlertHistory, Alert)
                .join(Alert, Alert.id == AlertHistory.alert_id)
                .filter(AlertHistory.notification_sent.is_(False), AlertHistory.triggered_at >= since)
                .order_by(AlertHistory.id)
                .limit(limit)
                .all()
            )
            return [(history, alert) for history, alert in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load unnotified history: {e}") from e
        finally:
            db.close()

    async def list_tracked_symbols(self) -> List[str]:
        """Distinct symbols referenced by active alerts."""
        return await asyncio.to_thread(self._list_tracked_symbols)

    def _list_tracked_symbols(self) -> List[str]:
        db = self.session_factory()
        try:
            rows = db.query(Alert.symbol).filter(Alert.active.is_(True)).distinct().all()
            return sorted({row[0].lower() for row in rows if row[0]})
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load tracked symbols: {e}") from e
        finally:
            db.close()

    async def create_alert(self, **fields) -> Alert:
        return await asyncio.to_thread(self._create_alert, fields)

    def _create_alert(self, fields: Dict[str, Any]) -> Alert:
        db = self.session_factory()
        try:
            alert = Alert(**fields)
            db.add(alert)
            db.commit()
            db.refresh(alert)
            return alert
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to create alert: {e}") from e
        finally:
            db.close()

    async def get_alert(self, alert_id: int) -> Optional[Alert]:
        return await asyncio.to_thread(self._get_alert, alert_id)

    def _get_alert(self, alert_id: int) -> Optional[Alert]:
        db = self.session_factory()
        try:
            return db.query(Alert).filter(Alert.id == alert_id).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load alert {alert_id}: {e}") from e
        finally:
            db.close()

    async def list_alerts(self, user_id: str) -> List[Alert]:
        return await asyncio.to_thread(self._list_alerts, user_id)

    def _list_alerts(self, user_id: str) -> List[Alert]:
        db = self.session_factory()
        try:
            return (
                db.query(Alert)
                .filter(Alert.user_id == user_id)
                .order_by(Alert.created_at.desc(), Alert.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list alerts: {e}") from e
        finally:
            db.close()

    async def list_history(self, alert_id: int, limit: int = 100) -> List[AlertHistory]:
        return await asyncio.to_thread(self._list_history, alert_id, limit)

    def _list_history(self, alert_id: int, limit: int) -> List[AlertHistory]:
        db = self.session_factory()
        try:
            return (
                db.query(AlertHistory)
                .filter(AlertHistory.alert_id == alert_id)
                .order_by(AlertHistory.triggered_at.desc(), AlertHistory.id.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load history for alert {alert_id}: {e}") from e
        finally:
            db.close()


class SnapshotStore:
    """Keyed current-value table, one row per symbol"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    async def get_snapshot(self, symbol: str) -> Optional[Snapshot]:
        return await asyncio.to_thread(self._get_snapshot, symbol)

    def _get_snapshot(self, symbol: str) -> Optional[Snapshot]:
        db = self.session_factory()
        try:
            row = db.query(LatestPrice).filter(LatestPrice.symbol == symbol.lower()).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load snapshot for {symbol}: {e}") from e
        finally:
            db.close()

        if row is None:
            return None
        return Snapshot(
            symbol=row.symbol,
            price=row.price,
            change_24h=row.change_24h,
            change_pct_24h=row.change_pct_24h,
            volume_24h=row.volume_24h,
            market_cap=row.market_cap,
            observed_at=ensure_utc(row.observed_at),
            provider_id=row.provider_id,
            name=row.name or "",
            image=row.image or "",
        )

    async def upsert_snapshots(self, snapshots: Iterable[Snapshot]) -> int:
        """Overwrite the rows for a whole ingestion cycle in one transaction."""
        return await asyncio.to_thread(self._upsert_snapshots, list(snapshots))

    def _upsert_snapshots(self, snapshots: List[Snapshot]) -> int:
        db = self.session_factory()
        count = 0
        try:
            for snapshot in snapshots:
                db.merge(LatestPrice(
                    symbol=snapshot.symbol.lower(),
                    provider_id=snapshot.provider_id,
                    name=snapshot.name,
                    image=snapshot.image,
                    price=snapshot.price,
                    change_24h=snapshot.change_24h,
                    change_pct_24h=snapshot.change_pct_24h,
                    volume_24h=snapshot.volume_24h,
                    market_cap=snapshot.market_cap,
                    observed_at=snapshot.observed_at,
                ))
                count += 1
            db.commit()
            return count
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to upsert {count} snapshot rows: {e}") from e
        finally:
            db.close()


class NotificationStore:
    """Persisted notifications, unique per trigger instance"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    async def exists_for_key(self, alert_id: int, triggered_at: datetime) -> bool:
        return await self.get_by_key(notification_dedup_key(alert_id, triggered_at)) is not None

    async def get_by_key(self, dedup_key: str) -> Optional[Notification]:
        return await asyncio.to_thread(self._get_by_key, dedup_key)

    def _get_by_key(self, dedup_key: str) -> Optional[Notification]:
        db = self.session_factory()
        try:
            return db.query(Notification).filter(Notification.dedup_key == dedup_key).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to look up notification {dedup_key}: {e}") from e
        finally:
            db.close()

    async def insert(self, notification: Notification) -> bool:
        """Persist a notification; False when its dedup key is already taken."""
        return await asyncio.to_thread(self._insert, notification)

    def _insert(self, notification: Notification) -> bool:
        db = self.session_factory()
        try:
            db.add(notification)
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            logger.info(f"Notification {notification.dedup_key} already exists")
            return False
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to insert notification: {e}") from e
        finally:
            db.close()

    async def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 100) -> List[Notification]:
        return await asyncio.to_thread(self._list_for_user, user_id, unread_only, limit)

    def _list_for_user(self, user_id: str, unread_only: bool, limit: int) -> List[Notification]:
        db = self.session_factory()
        try:
            query = db.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                query = query.filter(Notification.read.is_(False))
            return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list notifications: {e}") from e
        finally:
            db.close()

    async def mark_read(self, notification_id: int, user_id: str) -> bool:
        return await asyncio.to_thread(self._mark_read, notification_id, user_id)

    def _mark_read(self, notification_id: int, user_id: str) -> bool:
        db = self.session_factory()
        try:
            result = db.execute(
                update(Notification)
                .where(Notification.id == notification_id, Notification.user_id == user_id)
                .values(read=True)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to mark notification {notification_id} read: {e}") from e
        finally:
            db.close()
