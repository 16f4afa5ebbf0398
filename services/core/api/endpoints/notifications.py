"""
Notifications API Endpoints Module
All operations are scoped to the calling user.
"""
import uuid
from typing import List

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_current_user_id, get_notifications
from exceptions import NotFoundError
from notification_service import NotificationEmitter
from schemas import MarkAllReadResponse, MessageResponse, NotificationResponse, UnreadCountResponse

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    user_id: uuid.UUID = Depends(get_current_user_id),
    notifications: NotificationEmitter = Depends(get_notifications),
):
    return await notifications.find_by_user(user_id, unread_only=unread_only)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    user_id: uuid.UUID = Depends(get_current_user_id),
    notifications: NotificationEmitter = Depends(get_notifications),
):
    return UnreadCountResponse(count=await notifications.unread_count(user_id))


@router.put("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    user_id: uuid.UUID = Depends(get_current_user_id),
    notifications: NotificationEmitter = Depends(get_notifications),
):
    return MarkAllReadResponse(updated=await notifications.mark_all_read(user_id))


@router.get("/{notification_id}", response_model=NotificationResponse)
async def get_notification(
    notification_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    notifications: NotificationEmitter = Depends(get_notifications),
):
    notification = await notifications.find_by_id(notification_id, user_id)
    if notification is None:
        raise NotFoundError("notification", notification_id)
    return notification


@router.put("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    notifications: NotificationEmitter = Depends(get_notifications),
):
    if not await notifications.mark_read(notification_id, user_id):
        raise NotFoundError("notification", notification_id)
    return MessageResponse(message="Notification marked as read")


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    notifications: NotificationEmitter = Depends(get_notifications),
):
    if not await notifications.delete(notification_id, user_id):
        raise NotFoundError("notification", notification_id)
    return MessageResponse(message="Notification deleted successfully")
