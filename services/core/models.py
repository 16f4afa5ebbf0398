from datetime import datetime, timezone
import enum
import uuid

from sqlalchemy import Column, String, Text, Boolean, Integer, ForeignKey, CheckConstraint, Index, Uuid
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship
from sqlalchemy.types import DateTime, TypeDecorator

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamps on every backend.

    SQLite drops tzinfo on the way in; values are normalized to UTC before
    binding and re-tagged as UTC when read back.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


# =============================================================================
# ENUMERATIONS
# =============================================================================

class PromiseStatus(str, enum.Enum):
    """
    Promise lifecycle states

    ongoing: initial state
    overdue: deadline passed while ongoing (set by the sweep only)
    completed / declined / not_made: terminal
    """
    ONGOING = "ongoing"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    DECLINED = "declined"
    NOT_MADE = "not_made"


class NotificationType(str, enum.Enum):
    PROMISE_INVITATION = "promise_invitation"
    MENTORSHIP_INVITATION = "mentorship_invitation"
    MILESTONE_COMPLETED = "milestone_completed"
    NOTE_ADDED = "note_added"
    PROMISE_COMPLETED = "promise_completed"
    PROMISE_OVERDUE = "promise_overdue"
    DEADLINE_NEAR = "deadline_near"


def _sql_in(values) -> str:
    return ", ".join(f"'{v.value}'" for v in values)


# =============================================================================
# TABLES
# =============================================================================

class User(Base):
    __tablename__ = "users"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class Promise(Base):
    __tablename__ = "promises"
    __table_args__ = (
        CheckConstraint(f"status IN ({_sql_in(PromiseStatus)})", name="promises_status_check"),
        CheckConstraint(
            "NOT (promisee_id IS NOT NULL AND promisee_email IS NOT NULL)",
            name="promises_promisee_exclusive_check",
        ),
        CheckConstraint(
            "NOT (mentor_id IS NOT NULL AND mentor_email IS NOT NULL)",
            name="promises_mentor_exclusive_check",
        ),
        Index("idx_promises_status_deadline", "status", "deadline"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Owner - ownership never transfers
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Participants: either a registered user id or a placeholder email, never both
    promisee_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    promisee_email = Column(String(255), nullable=True, index=True)
    mentor_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    mentor_email = Column(String(255), nullable=True, index=True)

    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    deadline = Column(UTCDateTime, nullable=True)
    _status = Column('status', String(20), default=PromiseStatus.ONGOING.value, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    milestones = relationship(
        "Milestone",
        order_by=lambda: [Milestone.order_index, Milestone.created_at],
        lazy="selectin",
        viewonly=True,
    )
    notes = relationship(
        "PromiseNote",
        order_by=lambda: PromiseNote.created_at.desc(),
        lazy="selectin",
        viewonly=True,
    )

    # 🔒 PROTECTION: Direct status assignment is FORBIDDEN
    # Status is written only by conditional UPDATEs in PromiseLifecycleService
    @hybrid_property
    def status(self):
        """Read-only status"""
        return self._status

    @status.setter
    def status(self, value):
        raise RuntimeError(
            f"DIRECT STATUS ASSIGNMENT BLOCKED: attempted promise.status = '{value}'. "
            f"Use PromiseLifecycleService.update_promise / decline_promise instead."
        )

    def participant_ids(self) -> list:
        """Owner, promisee and mentor ids (resolved ones only, no duplicates)"""
        ids = []
        for user_id in (self.user_id, self.promisee_id, self.mentor_id):
            if user_id is not None and user_id not in ids:
                ids.append(user_id)
        return ids


class Milestone(Base):
    __tablename__ = "milestones"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    promise_id = Column(Uuid, ForeignKey("promises.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    completed = Column(Boolean, default=False, nullable=False)
    order_index = Column(Integer, default=0, nullable=False)  # display order, not unique
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class PromiseNote(Base):
    __tablename__ = "promise_notes"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    promise_id = Column(Uuid, ForeignKey("promises.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    note_text = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        CheckConstraint(f"type IN ({_sql_in(NotificationType)})", name="notifications_type_check"),
        Index("idx_notifications_user_promise_type", "user_id", "related_promise_id", "type"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    related_promise_id = Column(Uuid, ForeignKey("promises.id", ondelete="CASCADE"), nullable=True, index=True)
    message = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Set only by the sweeper: "<type>:<user>:<promise>[:<bucket>]"
    # A concurrent duplicate insert is rejected by the unique index
    dedup_key = Column(String(255), nullable=True, unique=True)
