"""
Milestone Tracker

Ordered milestones per promise. Any participant (owner, promisee, mentor)
may create, update and delete them; everybody else gets NotFoundOrForbidden.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List

from domain.promise_domain_service import PromiseDomainService, promise_domain_service
from exceptions import NotFoundError, NotFoundOrForbidden, ValidationError
from infrastructure.uow import UnitOfWork
from logging_config import get_logger
from models import Milestone, NotificationType, Promise, utcnow
from notification_service import NotificationEmitter
from user_service import UserService

logger = get_logger(__name__)

MILESTONE_FIELDS = frozenset({"title", "description", "completed", "order_index"})


class MilestoneService:

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        user_service: UserService,
        notifications: NotificationEmitter,
        clock: Callable[[], datetime] = utcnow,
        domain: PromiseDomainService = promise_domain_service,
    ):
        self.uow_factory = uow_factory
        self.users = user_service
        self.notifications = notifications
        self.clock = clock
        self._domain = domain

    @staticmethod
    def progress(milestones: Iterable[Milestone]) -> float:
        """Completed fraction in [0, 1]; 0.0 without milestones"""
        milestones = list(milestones)
        if not milestones:
            return 0.0
        done = sum(1 for m in milestones if m.completed)
        return done / len(milestones)

    async def create_milestone(self, promise_id, actor_id, data: Dict[str, Any]) -> Milestone:
        title = self._domain.require_text(data.get("title"), "title", "Milestone title")
        now = self.clock()

        async with self.uow_factory() as uow:
            promise = await self._get_accessible(uow, promise_id, actor_id)
            milestone = await uow.milestones.add(Milestone(
                promise_id=promise.id,
                title=title,
                description=data.get("description") or None,
                completed=bool(data.get("completed", False)),
                order_index=self._order_index(data.get("order_index", 0)),
                created_at=now,
                updated_at=now,
            ))
            await self._notify_others(
                uow, promise, actor_id, NotificationType.NOTE_ADDED, "added a milestone to promise"
            )

        logger.info("milestone_created", promise_id=str(promise.id), milestone_id=str(milestone.id))
        return milestone

    async def update_milestone(self, promise_id, milestone_id, actor_id, patch: Dict[str, Any]) -> Milestone:
        unknown = set(patch) - MILESTONE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])

        async with self.uow_factory() as uow:
            promise = await self._get_accessible(uow, promise_id, actor_id)
            milestone = await self._get_milestone(uow, promise, milestone_id)
            was_completed = milestone.completed

            if "title" in patch:
                milestone.title = self._domain.require_text(patch["title"], "title", "Milestone title")
            if "description" in patch:
                milestone.description = patch["description"] or None
            if "completed" in patch:
                milestone.completed = bool(patch["completed"])
            if "order_index" in patch:
                milestone.order_index = self._order_index(patch["order_index"])
            if patch:
                milestone.updated_at = self.clock()
                await uow.flush()

            if milestone.completed and not was_completed:
                await self._notify_others(
                    uow, promise, actor_id, NotificationType.MILESTONE_COMPLETED, "completed a milestone in promise"
                )
                logger.info("milestone_completed", promise_id=str(promise.id), milestone_id=str(milestone.id))

        return milestone

    async def delete_milestone(self, promise_id, milestone_id, actor_id) -> bool:
        async with self.uow_factory() as uow:
            promise = await self._get_accessible(uow, promise_id, actor_id)
            milestone = await self._get_milestone(uow, promise, milestone_id)
            await uow.milestones.delete(milestone)

        logger.info("milestone_deleted", promise_id=str(promise.id), milestone_id=str(milestone_id))
        return True

    async def list_milestones(self, promise_id, actor_id) -> List[Milestone]:
        async with self.uow_factory() as uow:
            promise = await self._get_accessible(uow, promise_id, actor_id)
            return await uow.milestones.list_for_promise(promise.id)

    async def _get_accessible(self, uow: UnitOfWork, promise_id, actor_id) -> Promise:
        try:
            pid = self._domain.parse_uuid(promise_id, "promise_id")
            uid = self._domain.parse_uuid(actor_id, "user_id")
        except ValidationError:
            raise NotFoundOrForbidden("promise", str(promise_id))

        promise = await uow.promises.get_for_participant(pid, uid)
        if promise is None:
            raise NotFoundOrForbidden("promise", str(promise_id))
        return promise

    async def _get_milestone(self, uow: UnitOfWork, promise: Promise, milestone_id) -> Milestone:
        try:
            mid = self._domain.parse_uuid(milestone_id, "milestone_id")
        except ValidationError:
            raise NotFoundError("milestone", str(milestone_id))

        milestone = await uow.milestones.get(promise.id, mid)
        if milestone is None:
            raise NotFoundError("milestone", str(milestone_id))
        return milestone

    async def _notify_others(self, uow: UnitOfWork, promise: Promise, actor_id, type_, verb: str) -> None:
        actor_id = self._domain.parse_uuid(actor_id, "user_id")
        actor = await self.users.find_by_id(uow, actor_id)
        name = actor.name if actor else "Someone"
        await self.notifications.notify_many(
            uow,
            [uid for uid in promise.participant_ids() if uid != actor_id],
            type_,
            f'{name} {verb}: "{promise.title}"',
            related_promise_id=promise.id,
        )

    @staticmethod
    def _order_index(value) -> int:
        if value is None:
            return 0
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError("order_index must be an integer", field="order_index")
