"""
Promise Domain Service - pure domain layer
==========================================
No session, commit, logging or side effects.
Only the state machine, the authorization matrix and input validation.
"""
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional

from exceptions import AuthorizationError, ValidationError
from models import PromiseStatus


class Role(Enum):
    """Relationship of an actor to a promise"""
    OWNER = "owner"
    PROMISEE = "promisee"
    MENTOR = "mentor"
    OUTSIDER = "outsider"
    SYSTEM = "system"


class RoleFilter(str, Enum):
    OWNED = "owned"
    PROMISED_TO_ME = "promised-to-me"
    MENTORING = "mentoring"
    ALL = "all"


# Fields only the owner may edit, regardless of status
OWNER_FIELDS = frozenset({
    "title",
    "description",
    "deadline",
    "promisee_id",
    "promisee_email",
    "mentor_id",
    "mentor_email",
})

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass
class PromiseTransitioned:
    """Domain event - a status change that was authorized"""
    promise_id: str
    from_state: str
    to_state: str
    actor: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class PromiseDomainService:
    """
    Pure transition rules for promises.

    Responsibilities:
    - which actor may move a promise from which status to which status
    - which actor may edit which fields
    - parsing and validating user-supplied values

    Does NOT:
    - touch the store
    - log
    - emit notifications
    """

    TERMINAL_STATES = frozenset({
        PromiseStatus.COMPLETED,
        PromiseStatus.DECLINED,
        PromiseStatus.NOT_MADE,
    })

    # States a promise can still be resolved from
    OPEN_STATES = frozenset({PromiseStatus.ONGOING, PromiseStatus.OVERDUE})

    # (from, to) -> roles allowed to request it
    TRANSITIONS = {
        (PromiseStatus.ONGOING, PromiseStatus.OVERDUE): {Role.SYSTEM},
        (PromiseStatus.ONGOING, PromiseStatus.COMPLETED): {Role.OWNER, Role.PROMISEE},
        (PromiseStatus.ONGOING, PromiseStatus.NOT_MADE): {Role.OWNER},
        (PromiseStatus.ONGOING, PromiseStatus.DECLINED): {Role.PROMISEE},
        (PromiseStatus.OVERDUE, PromiseStatus.COMPLETED): {Role.OWNER, Role.PROMISEE},
        (PromiseStatus.OVERDUE, PromiseStatus.NOT_MADE): {Role.OWNER},
        (PromiseStatus.OVERDUE, PromiseStatus.DECLINED): {Role.PROMISEE},
    }

    @staticmethod
    def role_of(promise, actor_id) -> Role:
        if actor_id is None:
            return Role.SYSTEM
        if promise.user_id == actor_id:
            return Role.OWNER
        if promise.promisee_id is not None and promise.promisee_id == actor_id:
            return Role.PROMISEE
        if promise.mentor_id is not None and promise.mentor_id == actor_id:
            return Role.MENTOR
        return Role.OUTSIDER

    def can_transition(self, from_state: PromiseStatus, to_state: PromiseStatus, role: Role) -> bool:
        return role in self.TRANSITIONS.get((from_state, to_state), set())

    def authorize_status_change(self, promise, actor_id, new_status: PromiseStatus) -> PromiseTransitioned:
        """
        Check a user-requested status change against the transition table.

        Raises:
            AuthorizationError: with the violated rule in details["rule"]
        """
        promise_id = str(promise.id)
        role = self.role_of(promise, actor_id)
        current = PromiseStatus(promise.status)

        if role not in (Role.OWNER, Role.PROMISEE):
            raise AuthorizationError(
                "Only the owner or the promisee can change the promise status",
                rule="status_change_requires_owner_or_promisee",
                promise_id=promise_id,
            )

        if new_status == PromiseStatus.DECLINED:
            if role == Role.PROMISEE:
                message = "Use the decline operation to decline a promise"
            else:
                message = "Only the promisee can decline a promise"
            raise AuthorizationError(message, rule="decline_requires_decline_operation", promise_id=promise_id)

        if new_status == PromiseStatus.OVERDUE:
            raise AuthorizationError(
                "Promises are marked overdue by the system only",
                rule="overdue_is_system_only",
                promise_id=promise_id,
            )

        if current in self.TERMINAL_STATES:
            raise AuthorizationError(
                f"Cannot change status of a promise that is already '{current.value}'",
                rule="terminal_state",
                promise_id=promise_id,
            )

        if not self.can_transition(current, new_status, role):
            if new_status == PromiseStatus.NOT_MADE:
                message = "Only the owner can mark a promise as not made"
                rule = "not_made_requires_owner"
            else:
                message = f"Transition '{current.value}' -> '{new_status.value}' is not allowed"
                rule = "transition_not_allowed"
            raise AuthorizationError(message, rule=rule, promise_id=promise_id)

        return PromiseTransitioned(
            promise_id=promise_id,
            from_state=current.value,
            to_state=new_status.value,
            actor=role.value,
        )

    def authorize_field_edit(self, promise, actor_id, fields) -> None:
        """Non-status fields are owner-only"""
        touched = OWNER_FIELDS.intersection(fields)
        if touched and self.role_of(promise, actor_id) != Role.OWNER:
            raise AuthorizationError(
                "Only the owner can update promise details",
                rule="field_edit_requires_owner",
                promise_id=str(promise.id),
            )

    def authorize_patch(self, promise, actor_id, patch: dict) -> Optional[PromiseTransitioned]:
        """
        Authorize a combined update per part. Both parts must pass,
        otherwise nothing is applied.

        Returns the transition event when the patch changes the status.
        """
        role = self.role_of(promise, actor_id)
        if role == Role.OUTSIDER:
            raise AuthorizationError(
                "Only participants of the promise can update it",
                rule="participant_required",
                promise_id=str(promise.id),
            )

        self.authorize_field_edit(promise, actor_id, patch.keys())

        if "status" in patch:
            return self.authorize_status_change(promise, actor_id, self.parse_status(patch["status"]))
        return None

    def can_decline(self, promise, actor_id) -> bool:
        return (
            self.role_of(promise, actor_id) == Role.PROMISEE
            and PromiseStatus(promise.status) in self.OPEN_STATES
        )

    # -------------------------------------------------------------------------
    # Input parsing
    # -------------------------------------------------------------------------

    @staticmethod
    def parse_uuid(value, field_name: str = "id") -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except (TypeError, ValueError, AttributeError):
            raise ValidationError(f"Invalid {field_name.replace('_', ' ')}", field=field_name)

    @staticmethod
    def parse_status(value) -> PromiseStatus:
        try:
            return PromiseStatus(value)
        except ValueError:
            allowed = ", ".join(s.value for s in PromiseStatus)
            raise ValidationError(f"Invalid status '{value}'. Allowed: {allowed}", field="status")

    @staticmethod
    def parse_role_filter(value) -> RoleFilter:
        if value is None:
            return RoleFilter.ALL
        try:
            return RoleFilter(value)
        except ValueError:
            allowed = ", ".join(r.value for r in RoleFilter)
            raise ValidationError(f"Invalid role filter '{value}'. Allowed: {allowed}", field="role")

    @staticmethod
    def parse_deadline(value) -> Optional[datetime]:
        """
        Accepts a datetime, a date or an ISO-8601 string (date or datetime).
        Naive values are taken as UTC. A bare date means midnight UTC.
        """
        if value is None:
            return None

        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime.combine(value, time.min)
        elif isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            if text.endswith(("Z", "z")):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                raise ValidationError(
                    "Invalid deadline date format. Please use YYYY-MM-DD format.",
                    field="deadline",
                )
        else:
            raise ValidationError("Invalid deadline date format", field="deadline")

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    @staticmethod
    def normalize_email(value, field_name: str) -> Optional[str]:
        if value is None:
            return None
        email = value.strip().lower()
        if not email:
            return None
        if not EMAIL_RE.match(email):
            label = field_name.replace("_", " ")
            if not label.endswith("email"):
                label += " email"
            raise ValidationError(f"Invalid {label} format", field=field_name)
        return email

    @staticmethod
    def require_text(value, field_name: str, label: str, max_length: Optional[int] = None) -> str:
        if value is None or not str(value).strip():
            raise ValidationError(f"{label} is required", field=field_name)
        text = str(value).strip()
        if max_length is not None and len(text) > max_length:
            raise ValidationError(f"{label} must be at most {max_length} characters", field=field_name)
        return text


# Global instance for convenience
promise_domain_service = PromiseDomainService()
