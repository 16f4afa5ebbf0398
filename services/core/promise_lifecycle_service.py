"""
PROMISE LIFECYCLE SERVICE - Application Layer
=============================================

ARCHITECTURE:
- Domain Layer: domain/promise_domain_service.py - transition table, who may do what
- Application Layer: promise_lifecycle_service.py - orchestration, one UnitOfWork per operation
- Infrastructure: infrastructure/uow.py - transactions and queries

Status is never assigned on the ORM object. Every status change is a
conditional UPDATE carrying the expected prior status, so a request that
lost a race matches zero rows and fails with ConflictError.

Author: Promise Tracker Core Team
Date: 2026-10-17
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from domain.promise_domain_service import (
    PromiseDomainService,
    Role,
    promise_domain_service,
)
from error_handler import ErrorHandler
from exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    NotFoundOrForbidden,
    ValidationError,
)
from infrastructure.uow import UnitOfWork
from logging_config import get_logger, log_promise_transition
from models import Milestone, Promise, PromiseStatus, NotificationType, utcnow
from notification_service import NotificationEmitter
from user_service import UserService

logger = get_logger(__name__)

TITLE_MAX_LENGTH = 500

UPDATABLE_FIELDS = frozenset({
    "title",
    "description",
    "deadline",
    "status",
    "promisee_id",
    "promisee_email",
    "mentor_id",
    "mentor_email",
})


@dataclass
class Participant:
    """Resolved promisee or mentor slot"""
    user_id: Any = None
    email: Optional[str] = None
    address: Optional[str] = None  # where to send the invitation email


@dataclass
class Invitation:
    to_email: str
    role: str


class PromiseLifecycleService:
    """
    Orchestrates create / read / update / delete / decline and the system
    expiry transition for promises.
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        user_service: UserService,
        notifications: NotificationEmitter,
        email_service=None,
        clock: Callable[[], datetime] = utcnow,
        domain: PromiseDomainService = promise_domain_service,
    ):
        self.uow_factory = uow_factory
        self.users = user_service
        self.notifications = notifications
        self.email_service = email_service
        self.clock = clock
        self._domain = domain

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_promise(self, owner_id, data: Dict[str, Any]) -> Promise:
        """
        Create a promise in status 'ongoing'.

        Participants given by email are resolved to user ids when the user
        exists, otherwise the email is kept as a placeholder. Invitation
        emails go out after the transaction commits.
        """
        owner_id = self._domain.parse_uuid(owner_id, "user_id")
        title = self._domain.require_text(data.get("title"), "title", "Title", max_length=TITLE_MAX_LENGTH)
        deadline = self._domain.parse_deadline(data.get("deadline"))
        now = self.clock()

        async with self.uow_factory() as uow:
            owner = await self.users.find_by_id(uow, owner_id)
            if owner is None:
                raise NotFoundError("user", str(owner_id))

            promisee = await self._resolve_participant(
                uow, data.get("promisee_id"), data.get("promisee_email"), "promisee"
            )
            mentor = await self._resolve_participant(
                uow, data.get("mentor_id"), data.get("mentor_email"), "mentor"
            )

            promise = await uow.promises.add(Promise(
                user_id=owner_id,
                promisee_id=promisee.user_id,
                promisee_email=promisee.email,
                mentor_id=mentor.user_id,
                mentor_email=mentor.email,
                title=title,
                description=data.get("description") or None,
                deadline=deadline,
                _status=PromiseStatus.ONGOING.value,
                created_at=now,
                updated_at=now,
            ))

            for index, item in enumerate(data.get("milestones") or []):
                if isinstance(item, str):
                    item = {"title": item}
                await uow.milestones.add(Milestone(
                    promise_id=promise.id,
                    title=self._domain.require_text(item.get("title"), "milestones", "Milestone title"),
                    description=item.get("description") or None,
                    order_index=index if item.get("order_index") is None else item["order_index"],
                    completed=bool(item.get("completed", False)),
                    created_at=now,
                    updated_at=now,
                ))

            invitations = await self._invite(uow, promise, owner, promisee, mentor)
            promise = await uow.promises.get(promise.id, refresh=True)

        logger.info(
            "promise_created",
            promise_id=str(promise.id),
            owner_id=str(owner_id),
            has_promisee=bool(promise.promisee_id or promise.promisee_email),
            has_mentor=bool(promise.mentor_id or promise.mentor_email),
        )
        await self._send_invitations(invitations, owner.name, promise)
        return promise

    # =========================================================================
    # READ
    # =========================================================================

    async def get_promise(self, promise_id, requesting_user_id) -> Optional[Promise]:
        """Promise with milestones and notes, or None for missing / not a participant"""
        try:
            promise_id = self._domain.parse_uuid(promise_id, "promise_id")
            requesting_user_id = self._domain.parse_uuid(requesting_user_id, "user_id")
        except ValidationError:
            return None

        async with self.uow_factory() as uow:
            return await uow.promises.get_for_participant(promise_id, requesting_user_id, refresh=True)

    async def list_promises(self, user_id, role_filter=None, status_filter=None) -> List[Promise]:
        user_id = self._domain.parse_uuid(user_id, "user_id")
        role = self._domain.parse_role_filter(role_filter)
        status = self._domain.parse_status(status_filter).value if status_filter else None

        async with self.uow_factory() as uow:
            return await uow.promises.list_for_user(user_id, role=role.value, status=status)

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_promise(self, promise_id, actor_id, patch: Dict[str, Any]) -> Promise:
        """
        Partial update. Field edits and the status change are authorized
        separately; if either fails nothing is written.

        Raises:
            NotFoundError: unknown promise
            AuthorizationError: actor's role does not allow the change
            ValidationError: bad field value
            ConflictError: status changed concurrently
        """
        promise_id = self._parse_promise_id(promise_id)
        actor_id = self._domain.parse_uuid(actor_id, "user_id")
        patch = dict(patch or {})

        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])

        now = self.clock()
        async with self.uow_factory() as uow:
            promise = await uow.promises.get(promise_id, refresh=True)
            if promise is None:
                raise NotFoundError("promise", str(promise_id))

            event = self._domain.authorize_patch(promise, actor_id, patch)
            if not patch:
                return promise

            values, promisee, mentor = await self._build_values(uow, promise, patch)
            if event is not None:
                values["status"] = event.to_state
            values["updated_at"] = now

            expected = promise.status
            matched = await uow.promises.conditional_update(promise_id, expected, values)
            if not matched:
                raise ConflictError(
                    f"Promise {promise_id} changed while it was being updated",
                    hint="reload the promise and retry",
                )

            promise = await uow.promises.get(promise_id, refresh=True)
            actor = await self.users.find_by_id(uow, actor_id)
            actor_name = actor.name if actor else "Someone"

            if event is not None and event.to_state == PromiseStatus.COMPLETED.value:
                recipients = [uid for uid in promise.participant_ids() if uid != actor_id]
                await self.notifications.notify_many(
                    uow,
                    recipients,
                    NotificationType.PROMISE_COMPLETED,
                    f'{actor_name} completed the promise: "{promise.title}"',
                    related_promise_id=promise.id,
                )

            invitations = await self._invite(uow, promise, actor, promisee, mentor)

        if event is not None:
            log_promise_transition(event.promise_id, event.from_state, event.to_state, event.actor)
        logger.info("promise_updated", promise_id=str(promise_id), fields=sorted(patch))
        await self._send_invitations(invitations, actor_name, promise)
        return promise

    async def decline_promise(self, promise_id, promisee_id) -> Promise:
        """
        Promisee declines an ongoing or overdue promise.

        Raises:
            NotFoundOrForbidden: missing, not addressed to the caller, or no longer open
        """
        try:
            promise_id = self._domain.parse_uuid(promise_id, "promise_id")
            promisee_id = self._domain.parse_uuid(promisee_id, "user_id")
        except ValidationError:
            raise NotFoundOrForbidden("promise", str(promise_id))

        now = self.clock()
        async with self.uow_factory() as uow:
            before = await uow.promises.get(promise_id)
            if before is None or not self._domain.can_decline(before, promisee_id):
                raise NotFoundOrForbidden("promise", str(promise_id))
            from_state = before.status

            # same rule as a predicate: a concurrent transition matches zero rows
            changed = await uow.promises.transition_where(
                PromiseStatus.DECLINED.value,
                Promise.id == promise_id,
                Promise.promisee_id == promisee_id,
                Promise._status.in_([s.value for s in self._domain.OPEN_STATES]),
                now=now,
            )
            if not changed:
                raise NotFoundOrForbidden("promise", str(promise_id))

            promise = await uow.promises.get(promise_id, refresh=True)
            decliner = await self.users.find_by_id(uow, promisee_id)
            await self.notifications.create(
                uow,
                promise.user_id,
                NotificationType.PROMISE_INVITATION,
                f'{decliner.name if decliner else "Someone"} declined your promise: "{promise.title}"',
                related_promise_id=promise.id,
            )

        log_promise_transition(str(promise_id), from_state, PromiseStatus.DECLINED.value, Role.PROMISEE.value)
        return promise

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_promise(self, promise_id, actor_id) -> bool:
        promise_id = self._parse_promise_id(promise_id)
        actor_id = self._domain.parse_uuid(actor_id, "user_id")

        async with self.uow_factory() as uow:
            promise = await uow.promises.get(promise_id)
            if promise is None:
                raise NotFoundError("promise", str(promise_id))
            if self._domain.role_of(promise, actor_id) != Role.OWNER:
                raise AuthorizationError(
                    "Only the owner can delete a promise",
                    rule="delete_requires_owner",
                    promise_id=str(promise_id),
                )
            await uow.promises.delete_cascade(promise_id)

        logger.info("promise_deleted", promise_id=str(promise_id), actor_id=str(actor_id))
        return True

    # =========================================================================
    # SYSTEM TRANSITIONS
    # =========================================================================

    async def expire_overdue_promises(self, uow: UnitOfWork, now: datetime) -> list:
        """
        ongoing -> overdue for every promise whose deadline has passed.

        Runs inside the caller's unit of work. Returns the ids that this call
        actually transitioned; rows another sweep got to first are not returned.
        """
        ids = await uow.promises.transition_where(
            PromiseStatus.OVERDUE.value,
            Promise._status == PromiseStatus.ONGOING.value,
            Promise.deadline.is_not(None),
            Promise.deadline < now,
            now=now,
        )
        for promise_id in ids:
            log_promise_transition(
                str(promise_id), PromiseStatus.ONGOING.value, PromiseStatus.OVERDUE.value, Role.SYSTEM.value
            )
        return ids

    async def attach_pending_invitations(self, user_id) -> list:
        """
        Replace placeholder emails matching the user's address with the user id.

        Registration does not do this on its own; until this runs, existing
        promises keep the placeholder email.
        """
        user_id = self._domain.parse_uuid(user_id, "user_id")
        now = self.clock()
        attached = []

        async with self.uow_factory() as uow:
            user = await self.users.find_by_id(uow, user_id)
            if user is None:
                raise NotFoundError("user", str(user_id))

            for promise in await uow.promises.find_by_placeholder_email(user.email):
                values = {"updated_at": now}
                if promise.promisee_email == user.email:
                    values.update(promisee_id=user.id, promisee_email=None)
                if promise.mentor_email == user.email:
                    values.update(mentor_id=user.id, mentor_email=None)
                if await uow.promises.conditional_update(promise.id, None, values):
                    attached.append(promise.id)

        logger.info("pending_invitations_attached", user_id=str(user_id), count=len(attached))
        return attached

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _parse_promise_id(self, promise_id):
        try:
            return self._domain.parse_uuid(promise_id, "promise_id")
        except ValidationError:
            raise NotFoundError("promise", str(promise_id))

    async def _resolve_participant(self, uow: UnitOfWork, user_id, email, role: str) -> Participant:
        if user_id:
            parsed = self._domain.parse_uuid(user_id, f"{role}_id")
            user = await self.users.find_by_id(uow, parsed)
            if user is None:
                raise ValidationError(f"{role.capitalize()} not found", field=f"{role}_id")
            return Participant(user_id=user.id, address=user.email)

        email = self._domain.normalize_email(email, f"{role}_email")
        if email is None:
            return Participant()

        user = await self.users.find_by_email(uow, email)
        if user is not None:
            return Participant(user_id=user.id, address=user.email)
        return Participant(email=email, address=email)

    async def _build_values(self, uow: UnitOfWork, promise: Promise, patch: Dict[str, Any]):
        """
        Column values for the patch plus the participants that are new to
        the promise (they get invited).
        """
        values: Dict[str, Any] = {}

        if "title" in patch:
            values["title"] = self._domain.require_text(patch["title"], "title", "Title", max_length=TITLE_MAX_LENGTH)
        if "description" in patch:
            values["description"] = patch["description"] or None
        if "deadline" in patch:
            values["deadline"] = self._domain.parse_deadline(patch["deadline"])

        new_participants = {}
        for role in ("promisee", "mentor"):
            id_key, email_key = f"{role}_id", f"{role}_email"
            if id_key not in patch and email_key not in patch:
                new_participants[role] = None
                continue

            if patch.get(id_key) or patch.get(email_key):
                participant = await self._resolve_participant(uow, patch.get(id_key), patch.get(email_key), role)
                values[id_key] = participant.user_id
                values[email_key] = participant.email
                unchanged = (
                    participant.user_id == getattr(promise, id_key)
                    and participant.email == getattr(promise, email_key)
                )
                new_participants[role] = None if unchanged else participant
            else:
                # explicit nulls clear the slot
                for key in (id_key, email_key):
                    if key in patch:
                        values[key] = None
                new_participants[role] = None

        return values, new_participants["promisee"], new_participants["mentor"]

    async def _invite(self, uow: UnitOfWork, promise: Promise, inviter, promisee, mentor) -> List[Invitation]:
        """In-app invitations for resolved users; returns the emails to send after commit"""
        inviter_name = inviter.name if inviter else "Someone"
        invitations = []

        if promisee is not None:
            if promisee.user_id is not None and promisee.user_id != promise.user_id:
                await self.notifications.create(
                    uow,
                    promisee.user_id,
                    NotificationType.PROMISE_INVITATION,
                    f'{inviter_name} made a promise to you: "{promise.title}"',
                    related_promise_id=promise.id,
                )
            if promisee.address:
                invitations.append(Invitation(promisee.address, "promisee"))

        if mentor is not None:
            if mentor.user_id is not None and mentor.user_id != promise.user_id:
                await self.notifications.create(
                    uow,
                    mentor.user_id,
                    NotificationType.MENTORSHIP_INVITATION,
                    f'{inviter_name} invited you to mentor their promise: "{promise.title}"',
                    related_promise_id=promise.id,
                )
            if mentor.address:
                invitations.append(Invitation(mentor.address, "mentor"))

        return invitations

    async def _send_invitations(self, invitations: List[Invitation], from_name: str, promise: Promise) -> None:
        if self.email_service is None:
            return
        for invitation in invitations:
            await ErrorHandler.safe_execute_async(
                self.email_service.send_invitation(
                    invitation.to_email,
                    from_name,
                    promise.title,
                    description=promise.description,
                    promise_id=str(promise.id),
                    role=invitation.role,
                ),
                default=False,
                context={"promise_id": str(promise.id), "role": invitation.role},
                log_level="WARNING",
            )
