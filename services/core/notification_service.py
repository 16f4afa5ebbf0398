"""
Notification Emitter
====================
Creates, lists, marks and deletes in-app notifications.

No deduplication here: callers that need it (the overdue sweeper) pass a
dedup_key and check for existing rows themselves.
"""
from datetime import datetime
from typing import Callable, Iterable, Optional

from domain.promise_domain_service import promise_domain_service
from exceptions import ValidationError
from infrastructure.uow import UnitOfWork
from logging_config import get_logger
from models import Notification, NotificationType

logger = get_logger(__name__)


class NotificationEmitter:

    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self.uow_factory = uow_factory

    async def create(
        self,
        uow: UnitOfWork,
        user_id,
        type: NotificationType,
        message: str,
        related_promise_id=None,
        dedup_key: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Optional[Notification]:
        """
        Add a notification inside the caller's unit of work.

        With a dedup_key the insert runs in a savepoint and returns None
        when the key is already taken.
        """
        notification = Notification(
            user_id=user_id,
            type=NotificationType(type).value,
            message=message,
            related_promise_id=related_promise_id,
            read=False,
            dedup_key=dedup_key,
        )
        if created_at is not None:
            notification.created_at = created_at

        if dedup_key is not None:
            if not await uow.notifications.add_unique(notification):
                logger.debug("notification_duplicate_skipped", dedup_key=dedup_key)
                return None
        else:
            await uow.notifications.add(notification)

        logger.debug(
            "notification_created",
            user_id=str(user_id),
            type=notification.type,
            promise_id=str(related_promise_id) if related_promise_id else None,
        )
        return notification

    async def notify_many(
        self,
        uow: UnitOfWork,
        user_ids: Iterable,
        type: NotificationType,
        message: str,
        related_promise_id=None,
    ) -> list[Notification]:
        created = []
        for user_id in user_ids:
            created.append(await self.create(uow, user_id, type, message, related_promise_id))
        return created

    async def find_by_user(self, user_id, unread_only: bool = False) -> list[Notification]:
        user_id = promise_domain_service.parse_uuid(user_id, "user_id")
        async with self.uow_factory() as uow:
            return await uow.notifications.list_for_user(user_id, unread_only=unread_only)

    async def find_by_id(self, notification_id, user_id) -> Optional[Notification]:
        user_id = promise_domain_service.parse_uuid(user_id, "user_id")
        try:
            notification_id = promise_domain_service.parse_uuid(notification_id, "notification_id")
        except ValidationError:
            return None
        async with self.uow_factory() as uow:
            return await uow.notifications.get_for_user(notification_id, user_id)

    async def mark_read(self, notification_id, user_id) -> bool:
        user_id = promise_domain_service.parse_uuid(user_id, "user_id")
        try:
            notification_id = promise_domain_service.parse_uuid(notification_id, "notification_id")
        except ValidationError:
            return False
        async with self.uow_factory() as uow:
            return await uow.notifications.mark_read(notification_id, user_id)

    async def mark_all_read(self, user_id) -> int:
        user_id = promise_domain_service.parse_uuid(user_id, "user_id")
        async with self.uow_factory() as uow:
            count = await uow.notifications.mark_all_read(user_id)
        logger.info("notifications_marked_read", user_id=str(user_id), count=count)
        return count

    async def delete(self, notification_id, user_id) -> bool:
        user_id = promise_domain_service.parse_uuid(user_id, "user_id")
        try:
            notification_id = promise_domain_service.parse_uuid(notification_id, "notification_id")
        except ValidationError:
            return False
        async with self.uow_factory() as uow:
            return await uow.notifications.delete_for_user(notification_id, user_id)

    async def unread_count(self, user_id) -> int:
        user_id = promise_domain_service.parse_uuid(user_id, "user_id")
        async with self.uow_factory() as uow:
            return await uow.notifications.count_unread(user_id)
