"""
Alert scheduler: runs evaluation passes and applies the alert state machine
"""
import asyncio
import calendar
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pricewatch.core.errors import EvaluationError, PersistenceError
from pricewatch.core.types import (
    RECURRING_INTERVALS,
    RecurringInterval,
    TriggerEvent,
    check_alert_invariants,
    ensure_utc,
    utc_now,
)
from pricewatch.services.condition_evaluator import evaluate
from pricewatch.services.notification_dispatcher import NotificationDispatcher
from pricewatch.services.stores import AlertStore, SnapshotStore

logger = logging.getLogger(__name__)

class SchedulerState(Enum):
    """Scheduler lifecycle states"""
    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class AlertOutcome:
    """What one alert did during a pass"""
    status: str  # idle, triggered, superseded
    event: Optional[TriggerEvent] = None
    notification: Any = None


@dataclass
class PassResult:
    """Counters for one evaluation pass"""
    started_at: datetime
    alerts_checked: int = 0
    alerts_triggered: int = 0
    notifications_created: int = 0
    notifications_recovered: int = 0
    skipped: int = 0
    errors: int = 0
    triggered_alerts: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "alerts_checked": self.alerts_checked,
            "alerts_triggered": self.alerts_triggered,
            "notifications_created": self.notifications_created,
            "notifications_recovered": self.notifications_recovered,
            "skipped": self.skipped,
            "errors": self.errors,
            "triggered_alerts": list(self.triggered_alerts),
        }


def next_trigger_after(moment: datetime, interval: str) -> datetime:
    """Add one recurring interval; monthly keeps the day of month where it exists."""
    if interval == RecurringInterval.DAILY.value:
        return moment + timedelta(days=1)
    if interval == RecurringInterval.WEEKLY.value:
        return moment + timedelta(days=7)
    if interval == RecurringInterval.MONTHLY.value:
        year, month = (moment.year + 1, 1) if moment.month == 12 else (moment.year, moment.month + 1)
        day = min(moment.day, calendar.monthrange(year, month)[1])
        return moment.replace(year=year, month=month, day=day)
    raise ValueError(f"Unsupported recurring interval: {interval!r}")


class AlertScheduler:
    """Drives evaluation passes over active, untriggered alerts"""

    def __init__(
        self,
        alert_store: AlertStore,
        snapshot_store: SnapshotStore,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utc_now,
        interval_seconds: float = 60,
        name: str = "alert-scheduler",
        redispatch_window: timedelta = timedelta(days=1),
    ):
        self.alert_store = alert_store
        self.snapshot_store = snapshot_store
        self.dispatcher = dispatcher
        self.clock = clock
        self.interval_seconds = interval_seconds
        self.redispatch_window = redispatch_window
        self.name = name

        self.state = SchedulerState.STOPPED
        self.last_result: Optional[PassResult] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        logger.info(f"Alert scheduler {name} initialized")

    async def start(self):
        """Start periodic evaluation passes"""
        if self.state != SchedulerState.STOPPED:
            logger.warning(f"Alert scheduler {self.name} is already running")
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._monitor_loop())
        self.state = SchedulerState.RUNNING
        logger.info(f"Alert scheduler {self.name} started (every {self.interval_seconds}s)")

    async def stop(self):
        """Stop after the in-flight pass, if any, has completed"""
        if self.state not in (SchedulerState.RUNNING, SchedulerState.ERROR):
            logger.warning(f"Alert scheduler {self.name} is not running")
            return

        self.state = SchedulerState.STOPPING
        self._stop_event.set()
        if self._task:
            await self._task
        self._task = None
        self.state = SchedulerState.STOPPED
        logger.info(f"Alert scheduler {self.name} stopped")

    def is_running(self) -> bool:
        """True while the loop task is alive, including after a failed pass."""
        return self.state in (SchedulerState.RUNNING, SchedulerState.ERROR)

    async def _monitor_loop(self):
        while not self._stop_event.is_set():
            try:
                await self.run_pass()
                if self.state == SchedulerState.ERROR:
                    logger.info(f"Alert scheduler {self.name} recovered")
                    self.state = SchedulerState.RUNNING
            except Exception as e:
                logger.error(f"Error in alert monitoring loop: {e}")
                if self.state == SchedulerState.RUNNING:
                    self.state = SchedulerState.ERROR

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def run_pass(self) -> PassResult:
        """Evaluate every active, untriggered alert once"""
        now = self.clock()
        result = PassResult(started_at=now)

        # Before evaluating, so a recurring alert still carries the next_trigger of its last firing.
        try:
            result.notifications_recovered = await self.redispatch_pending(now)
        except PersistenceError as e:
            logger.error(f"Could not re-dispatch pending notifications: {e}")
            result.errors += 1

        try:
            alerts = await self.alert_store.list_active_untriggered()
        except PersistenceError as e:
            logger.error(f"Evaluation pass aborted, could not load alerts: {e}")
            result.errors += 1
            self.last_result = result
            return result

        logger.info(f"Checking {len(alerts)} active alerts")

        for alert in alerts:
            result.alerts_checked += 1
            try:
                outcome = await self.process_alert(alert, now)
            except EvaluationError as e:
                logger.warning(f"Skipping alert {alert.id} for this pass: {e}")
                result.skipped += 1
                continue
            except PersistenceError as e:
                logger.error(f"Persistence failure on alert {alert.id}: {e}")
                result.errors += 1
                continue
            except Exception as e:
                logger.exception(f"Unexpected error checking alert {alert.id}: {e}")
                result.errors += 1
                continue

            if outcome.status == "triggered":
                result.alerts_triggered += 1
                result.notifications_created += 1
                result.triggered_alerts.append({
                    "alert_id": alert.id,
                    "symbol": alert.symbol,
                    "condition_type": alert.condition_type,
                    "direction": alert.direction,
                    "target_value": alert.target_value,
                    "observed_value": outcome.event.observed_value,
                    "priority": alert.priority,
                })

        if result.alerts_triggered:
            by_priority: Dict[str, int] = {}
            for item in result.triggered_alerts:
                by_priority[item["priority"]] = by_priority.get(item["priority"], 0) + 1
            logger.info(f"Triggered {result.alerts_triggered} alerts by priority: {by_priority}")

        self.last_result = result
        return result

    async def process_alert(self, alert, now: datetime) -> AlertOutcome:
        """
        Evaluate one alert and apply its transition

        Args:
            alert: Alert as loaded at the start of the pass
            now: Pass timestamp

        Returns:
            AlertOutcome describing what happened

        Raises:
            EvaluationError: malformed alert, missing snapshot or unusable snapshot field
            PersistenceError: a store read or write failed
        """
        check_alert_invariants(alert)

        snapshot = await self.snapshot_store.get_snapshot(alert.symbol)
        if snapshot is None:
            raise EvaluationError(f"No snapshot available for {alert.symbol}")

        decision = evaluate(alert, snapshot)
        if not decision.fire:
            if decision.observed is None:
                raise EvaluationError(decision.reason)
            return AlertOutcome(status="idle")

        logger.info(f"TRIGGERED: alert {alert.id} for {alert.symbol} ({decision.reason})")

        event = TriggerEvent(
            alert_id=alert.id,
            triggered_at=now,
            observed_value=decision.observed,
            condition_met=decision.reason,
            symbol=alert.symbol,
            name=alert.name or snapshot.name or alert.symbol.upper(),
        )
        history_id = await self.alert_store.insert_history(event)
        event = replace(event, history_id=history_id)

        patch, precondition = self._transition(alert, now, decision.observed)
        applied = await self.alert_store.conditional_update(alert.id, patch, precondition)
        if not applied:
            logger.info(f"Alert {alert.id} was already transitioned by another pass; skipping")
            return AlertOutcome(status="superseded", event=event)

        notification = await self.dispatcher.dispatch(event, alert)
        await self.alert_store.mark_history_notified(history_id)
        return AlertOutcome(status="triggered", event=event, notification=notification)

    async def redispatch_pending(self, now: datetime) -> int:
        """
        Dispatch notifications for applied triggers whose delivery never completed

        A history row left with notification_sent=false is retried only when the
        alert row shows that trigger won the guarded update; rows from passes that
        lost the race are left alone. Dispatch is deduplicated per trigger instance,
        so a row whose notification was stored but not flagged is only flagged.

        Returns:
            Number of history rows recovered
        """
        pending = await self.alert_store.list_unnotified_history(since=now - self.redispatch_window)
        recovered = 0
        for history, alert in pending:
            triggered_at = ensure_utc(history.triggered_at)
            if not self._trigger_applied(alert, triggered_at):
                continue

            event = TriggerEvent(
                alert_id=history.alert_id,
                triggered_at=triggered_at,
                observed_value=history.observed_value,
                condition_met=history.condition_met,
                symbol=history.symbol,
                name=history.name or alert.symbol.upper(),
                history_id=history.id,
            )
            try:
                await self.dispatcher.dispatch(event, alert)
                await self.alert_store.mark_history_notified(history.id)
            except PersistenceError as e:
                logger.error(f"Re-dispatch failed for alert {alert.id} at {triggered_at.isoformat()}: {e}")
                continue
            except Exception as e:
                logger.exception(f"Unexpected error re-dispatching alert {alert.id}: {e}")
                continue
            logger.info(f"Recovered notification for alert {alert.id} triggered at {triggered_at.isoformat()}")
            recovered += 1
        return recovered

    @staticmethod
    def _trigger_applied(alert, triggered_at: datetime) -> bool:
        """Whether the alert row reflects the transition made at triggered_at."""
        if alert.recurring:
            if alert.recurring_interval not in RECURRING_INTERVALS:
                return False
            return ensure_utc(alert.next_trigger) == next_trigger_after(triggered_at, alert.recurring_interval)
        return not alert.active and ensure_utc(alert.triggered_at) == triggered_at

    @staticmethod
    def _transition(alert, now: datetime, observed: float):
        """Return (patch, precondition) for the guarded alert update."""
        precondition: Dict[str, Any] = {"active": True, "triggered_at": None}
        patch: Dict[str, Any] = {"last_observed_value": observed, "updated_at": now}

        if alert.recurring:
            # Guard on the loaded next_trigger so two passes cannot both reschedule.
            precondition["next_trigger"] = alert.next_trigger
            patch["next_trigger"] = next_trigger_after(now, alert.recurring_interval)
        else:
            patch["active"] = False
            patch["triggered_at"] = now
        return patch, precondition
