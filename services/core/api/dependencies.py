"""
API dependencies: caller identity and the services built by create_app()
"""
import uuid
from typing import Optional

from fastapi import Header, HTTPException, Request

from milestone_service import MilestoneService
from note_service import NoteService
from notification_service import NotificationEmitter
from promise_lifecycle_service import PromiseLifecycleService
from user_service import UserService


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> uuid.UUID:
    """
    Identity is set by the authenticating gateway in X-User-Id.
    Missing or malformed -> 401.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user identity")


def get_lifecycle(request: Request) -> PromiseLifecycleService:
    return request.app.state.lifecycle


def get_milestones(request: Request) -> MilestoneService:
    return request.app.state.milestones


def get_notes(request: Request) -> NoteService:
    return request.app.state.notes


def get_notifications(request: Request) -> NotificationEmitter:
    return request.app.state.notifications


def get_users(request: Request) -> UserService:
    return request.app.state.users
