from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Any
from datetime import datetime
from uuid import UUID

# =============================================================================
# Users
# =============================================================================

class UserCreate(BaseModel):
    email: str
    name: str

class UserResponse(BaseModel):
    id: UUID
    email: str
    name: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)

# =============================================================================
# Milestones & Notes
# =============================================================================

class MilestoneCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    completed: bool = False
    order_index: Optional[int] = None

class MilestoneUpdate(BaseModel):
    """Partial update; only the fields sent are applied"""
    title: Optional[str] = None
    description: Optional[str] = None
    completed: Optional[bool] = None
    order_index: Optional[int] = None

class MilestoneResponse(BaseModel):
    id: UUID
    promise_id: UUID
    title: str
    description: Optional[str] = None
    completed: bool
    order_index: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)

class NoteCreate(BaseModel):
    note_text: Optional[str] = None

class NoteResponse(BaseModel):
    id: UUID
    promise_id: UUID
    user_id: UUID
    note_text: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)

# =============================================================================
# Promises
# =============================================================================

class PromiseCreate(BaseModel):
    # Validation of title/deadline/emails happens in the service so the
    # client gets the domain error message, not a schema error
    title: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[str] = None
    promisee_id: Optional[str] = None
    promisee_email: Optional[str] = None
    mentor_id: Optional[str] = None
    mentor_email: Optional[str] = None
    milestones: List[MilestoneCreate] = Field(default_factory=list)

class PromiseUpdate(BaseModel):
    """
    Absent fields are untouched, explicit null clears an optional field.
    Endpoints pass model_dump(exclude_unset=True) to the service.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[str] = None
    status: Optional[str] = None
    promisee_id: Optional[str] = None
    promisee_email: Optional[str] = None
    mentor_id: Optional[str] = None
    mentor_email: Optional[str] = None

class PromiseResponse(BaseModel):
    id: UUID
    user_id: UUID
    promisee_id: Optional[UUID] = None
    promisee_email: Optional[str] = None
    mentor_id: Optional[UUID] = None
    mentor_email: Optional[str] = None
    title: str
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)

class PromiseDetailResponse(PromiseResponse):
    milestones: List[MilestoneResponse] = Field(default_factory=list)
    notes: List[NoteResponse] = Field(default_factory=list)
    milestone_count: int = 0
    completed_milestones: int = 0
    progress: float = 0.0

    @classmethod
    def from_promise(cls, promise: Any, progress: float) -> "PromiseDetailResponse":
        milestones = list(promise.milestones)
        response = cls.model_validate(promise)
        response.milestone_count = len(milestones)
        response.completed_milestones = sum(1 for m in milestones if m.completed)
        response.progress = progress
        return response

# =============================================================================
# Notifications
# =============================================================================

class NotificationResponse(BaseModel):
    id: UUID
    user_id: UUID
    type: str
    related_promise_id: Optional[UUID] = None
    message: str
    read: bool
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)

class UnreadCountResponse(BaseModel):
    count: int

class MarkAllReadResponse(BaseModel):
    updated: int

class MessageResponse(BaseModel):
    message: str
