"""
OVERDUE SWEEPER

Periodic consistency sweep:
- expiry job: ongoing -> overdue for passed deadlines, then one
  promise_overdue notification per participant and promise
- deadline job: deadline_near reminders for promises due within 24 hours

Runs with no caller identity. Each job catches and logs its own failure so
the next tick runs normally.
"""
import math
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from error_handler import handle_errors
from infrastructure.uow import UnitOfWork
from logging_config import get_logger
from models import NotificationType, Promise, PromiseStatus, utcnow
from notification_service import NotificationEmitter
from promise_lifecycle_service import PromiseLifecycleService

logger = get_logger(__name__)

OVERDUE_SWEEP_MINUTES = int(os.getenv("OVERDUE_SWEEP_MINUTES", "60"))
DEADLINE_SWEEP_HOURS = int(os.getenv("DEADLINE_SWEEP_HOURS", "6"))

# Look-back used for the overdue pass before the first successful run
INITIAL_OVERDUE_WINDOW = timedelta(hours=1)
DEADLINE_HORIZON = timedelta(hours=24)
DEADLINE_REMINDER_WINDOW = timedelta(hours=6)


def overdue_message(title: str) -> str:
    return f'The promise "{title}" is now overdue'


def deadline_message(title: str, deadline: datetime, now: datetime) -> str:
    # Rounded half up to whole hours
    hours = math.floor((deadline - now).total_seconds() / 3600 + 0.5)
    if hours < 1:
        return f'The promise "{title}" deadline is in less than an hour'
    if hours == 1:
        return f'The promise "{title}" deadline is in 1 hour'
    return f'The promise "{title}" deadline is in {hours} hours'


def reminder_bucket(now: datetime) -> int:
    """Index of the 6-hour slot `now` falls in"""
    return int(now.timestamp() // DEADLINE_REMINDER_WINDOW.total_seconds())


class OverdueSweeper:

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        lifecycle: PromiseLifecycleService,
        notifications: NotificationEmitter,
        clock: Callable[[], datetime] = utcnow,
        overdue_interval_minutes: int = OVERDUE_SWEEP_MINUTES,
        deadline_interval_hours: int = DEADLINE_SWEEP_HOURS,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.uow_factory = uow_factory
        self.lifecycle = lifecycle
        self.notifications = notifications
        self.clock = clock
        self.overdue_interval_minutes = overdue_interval_minutes
        self.deadline_interval_hours = deadline_interval_hours
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.last_expiry_run: Optional[datetime] = None
        self._started = False

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> None:
        if self._started:
            return

        self.scheduler.add_job(
            self._expiry_job,
            'interval',
            minutes=self.overdue_interval_minutes,
            id='promise_expiry',
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._deadline_job,
            'interval',
            hours=self.deadline_interval_hours,
            id='deadline_reminders',
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        self._started = True
        logger.info(
            "overdue_sweeper_started",
            overdue_interval_minutes=self.overdue_interval_minutes,
            deadline_interval_hours=self.deadline_interval_hours,
        )

    def stop(self) -> None:
        if not self._started:
            return
        # shutdown completes on a later loop tick; start() needs a fresh scheduler
        self.scheduler.shutdown(wait=False)
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._started = False
        logger.info("overdue_sweeper_stopped")

    @handle_errors(default=None, context={"job": "promise_expiry"})
    async def _expiry_job(self) -> None:
        summary = await self.run_expiry()
        logger.info("expiry_sweep_completed", **summary)

    @handle_errors(default=None, context={"job": "deadline_reminders"})
    async def _deadline_job(self) -> None:
        summary = await self.run_deadline_check()
        logger.info("deadline_sweep_completed", **summary)

    # =========================================================================
    # PASSES
    # =========================================================================

    async def run_once(self) -> Dict[str, int]:
        """Expiry, overdue notifications and deadline reminders in one go"""
        summary = await self.run_expiry()
        summary.update(await self.run_deadline_check())
        return summary

    async def run_expiry(self) -> Dict[str, int]:
        now = self.clock()
        window_start = self.last_expiry_run or now - INITIAL_OVERDUE_WINDOW
        created = 0

        async with self.uow_factory() as uow:
            transitioned = await self.lifecycle.expire_overdue_promises(uow, now)

            targets = {}
            if transitioned:
                for promise in await uow.promises.find(Promise.id.in_(transitioned)):
                    targets[promise.id] = promise
            for promise in await uow.promises.find(
                Promise._status == PromiseStatus.OVERDUE.value,
                Promise.deadline.is_not(None),
                Promise.deadline >= window_start,
                Promise.deadline < now,
            ):
                targets.setdefault(promise.id, promise)

            for promise in targets.values():
                for user_id in promise.participant_ids():
                    if await uow.notifications.exists_since(
                        user_id, promise.id, NotificationType.PROMISE_OVERDUE.value, None
                    ):
                        continue
                    notification = await self.notifications.create(
                        uow,
                        user_id,
                        NotificationType.PROMISE_OVERDUE,
                        overdue_message(promise.title),
                        related_promise_id=promise.id,
                        dedup_key=f"promise_overdue:{user_id}:{promise.id}",
                        created_at=now,
                    )
                    if notification is not None:
                        created += 1

        self.last_expiry_run = now
        return {"expired": len(transitioned), "overdue_notifications": created}

    async def run_deadline_check(self) -> Dict[str, int]:
        now = self.clock()
        since = now - DEADLINE_REMINDER_WINDOW
        bucket = reminder_bucket(now)
        created = 0

        async with self.uow_factory() as uow:
            promises = await uow.promises.find(
                Promise._status == PromiseStatus.ONGOING.value,
                Promise.deadline.is_not(None),
                Promise.deadline > now,
                Promise.deadline <= now + DEADLINE_HORIZON,
            )

            for promise in promises:
                message = deadline_message(promise.title, promise.deadline, now)
                for user_id in promise.participant_ids():
                    if await uow.notifications.exists_since(
                        user_id, promise.id, NotificationType.DEADLINE_NEAR.value, since
                    ):
                        continue
                    notification = await self.notifications.create(
                        uow,
                        user_id,
                        NotificationType.DEADLINE_NEAR,
                        message,
                        related_promise_id=promise.id,
                        dedup_key=f"deadline_near:{user_id}:{promise.id}:{bucket}",
                        created_at=now,
                    )
                    if notification is not None:
                        created += 1

        return {"deadline_notifications": created}
