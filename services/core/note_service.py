"""
Note Ledger - append-only check-in notes on a promise
"""
from datetime import datetime
from typing import Callable, List, Optional

from domain.promise_domain_service import PromiseDomainService, promise_domain_service
from exceptions import ValidationError
from infrastructure.uow import UnitOfWork
from logging_config import get_logger
from models import NotificationType, PromiseNote, utcnow
from notification_service import NotificationEmitter
from user_service import UserService

logger = get_logger(__name__)


class NoteService:

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

    async def create_note(self, promise_id, user_id, text: str) -> Optional[PromiseNote]:
        """
        Add a note as user_id.

        Returns:
            The note, or None when the user is not a participant of the promise
        """
        text = self._domain.require_text(text, "note_text", "Note text")
        ids = self._parse_ids(promise_id, user_id)
        if ids is None:
            return None
        promise_id, user_id = ids

        async with self.uow_factory() as uow:
            promise = await uow.promises.get_for_participant(promise_id, user_id)
            if promise is None:
                return None

            note = await uow.notes.add(PromiseNote(
                promise_id=promise.id,
                user_id=user_id,
                note_text=text,
                created_at=self.clock(),
            ))

            author = await self.users.find_by_id(uow, user_id)
            await self.notifications.notify_many(
                uow,
                [uid for uid in promise.participant_ids() if uid != user_id],
                NotificationType.NOTE_ADDED,
                f'{author.name if author else "Someone"} added a note to promise: "{promise.title}"',
                related_promise_id=promise.id,
            )

        logger.info("note_added", promise_id=str(promise_id), note_id=str(note.id))
        return note

    async def list_notes(self, promise_id, user_id) -> List[PromiseNote]:
        """Newest first; empty for non-participants"""
        ids = self._parse_ids(promise_id, user_id)
        if ids is None:
            return []
        promise_id, user_id = ids

        async with self.uow_factory() as uow:
            if await uow.promises.get_for_participant(promise_id, user_id) is None:
                return []
            return await uow.notes.list_for_promise(promise_id)

    async def delete_note(self, note_id, user_id, promise_id=None) -> bool:
        """Only the author can delete a note; with promise_id, only a note of that promise"""
        ids = self._parse_ids(note_id, user_id)
        if ids is None:
            return False
        note_id, user_id = ids
        if promise_id is not None:
            try:
                promise_id = self._domain.parse_uuid(promise_id, "promise_id")
            except ValidationError:
                return False

        async with self.uow_factory() as uow:
            deleted = await uow.notes.delete_by_author(note_id, user_id, promise_id)

        if deleted:
            logger.info("note_deleted", note_id=str(note_id), user_id=str(user_id))
        return deleted

    def _parse_ids(self, entity_id, user_id):
        try:
            return self._domain.parse_uuid(entity_id), self._domain.parse_uuid(user_id, "user_id")
        except ValidationError:
            return None
