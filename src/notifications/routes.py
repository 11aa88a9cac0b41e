"""
Notification API Endpoints

REST API over the notification service:
- In-app list, unread count, stats
- Mark read / mark all read / delete
- Notification preferences
- Expense reminder scheduling and cancellation
- Ad-hoc local notifications
- Change events and refresh from the remote notifications table
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from core.service_registry import services
from realtime.events import EventType, create_ledger_event

from .errors import StorageError
from .models import NotificationPriority, NotificationType
from .service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

_REMOTE_EVENTS = {
    "INSERT": EventType.NOTIFICATION_CREATED,
    "UPDATE": EventType.NOTIFICATION_UPDATED,
    "DELETE": EventType.NOTIFICATION_DELETED,
}


def get_notification_service() -> NotificationService:
    service = services.get("notifications")
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification service not started",
        )
    return service


async def _publish(event_type: EventType, user_id: Optional[str] = None, notification_id: Optional[str] = None):
    connections = services.get("connections")
    if connections is not None:
        await connections.send_event(create_ledger_event(event_type, user_id, notification_id))


# =============================================================================
# SCHEMAS
# =============================================================================

class ExpenseReminderRequest(BaseModel):
    """Schema for scheduling the reminders of an expense."""
    id: str = Field(..., min_length=1, description="Expense id")
    description: str = Field(default="", description="Shown in the reminder body")
    value: Optional[float] = Field(default=None, description="Amount due")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    notification_enabled: bool = Field(default=True, alias="notificationEnabled")
    user_id: str = Field(default="", alias="userId")

    model_config = {"populate_by_name": True}


class LocalNotificationRequest(BaseModel):
    """Schema for an immediate notification."""
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(default="", max_length=2000)
    type: NotificationType = NotificationType.GENERAL
    priority: NotificationPriority = NotificationPriority.MEDIUM
    tag: Optional[str] = None
    user_id: str = Field(default="", alias="userId")
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class RemoteChangeRequest(BaseModel):
    """Schema for a change event of the remote notifications table."""
    event_type: str = Field(..., alias="eventType", description="INSERT, UPDATE or DELETE")
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True}


class ScheduledReminderResponse(BaseModel):
    tag: str
    entity_id: str
    bucket: str
    fire_at: str
    type: str
    priority: str


# =============================================================================
# IN-APP LIST
# =============================================================================

@router.get("")
async def list_notifications(service: NotificationService = Depends(get_notification_service)):
    """In-app notifications, newest first."""
    items = service.get_in_app_notifications()
    return {
        "notifications": [item.to_json_dict() for item in items],
        "unread": service.get_unread_count(),
    }


@router.get("/unread-count")
async def unread_count(service: NotificationService = Depends(get_notification_service)):
    return {"unread": service.get_unread_count()}


@router.get("/stats")
async def notification_stats(service: NotificationService = Depends(get_notification_service)):
    return service.get_stats().to_dict()


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, service: NotificationService = Depends(get_notification_service)):
    record = service.get_in_app_notification(notification_id)
    changed = await service.mark_in_app_notification_as_read(notification_id)
    if changed:
        await _publish(EventType.NOTIFICATION_READ, record.user_id, notification_id)
    return {"success": True, "changed": changed}


@router.post("/read-all")
async def mark_all_read(service: NotificationService = Depends(get_notification_service)):
    owners = {item.user_id for item in service.get_in_app_notifications() if not item.is_read}
    changed = await service.mark_all_in_app_notifications_as_read()
    if changed:
        for user_id in sorted(owners):
            await _publish(EventType.NOTIFICATION_READ, user_id)
    return {"success": True, "changed": changed}


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, service: NotificationService = Depends(get_notification_service)):
    record = service.get_in_app_notification(notification_id)
    deleted = await service.delete_in_app_notification(notification_id)
    if deleted:
        await _publish(EventType.NOTIFICATION_DELETED, record.user_id, notification_id)
    return {"success": True, "deleted": deleted}


# =============================================================================
# REMOTE FEED
# =============================================================================

@router.post("/remote/changes")
async def ingest_remote_change(
    change: RemoteChangeRequest,
    service: NotificationService = Depends(get_notification_service),
):
    """Apply an INSERT / UPDATE / DELETE event from the remote notifications table."""
    await service.apply_remote_change(change.model_dump(by_alias=True))
    row = change.new or change.old or {}
    event_type = _REMOTE_EVENTS.get(change.event_type.upper())
    if event_type is not None:
        await _publish(event_type, str(row.get("user_id") or ""), str(row.get("id") or "") or None)
    return {"success": True}


@router.post("/remote/refresh")
async def refresh_from_remote(
    user_id: str = Query(..., min_length=1, alias="userId"),
    service: NotificationService = Depends(get_notification_service),
):
    """Pull the user's newest remote rows into the in-app list."""
    imported = await service.refresh_from_remote(user_id)
    return {"success": True, "imported": imported}


# =============================================================================
# SETTINGS
# =============================================================================

@router.get("/settings")
async def get_settings(service: NotificationService = Depends(get_notification_service)):
    return service.get_settings().to_json_dict()


@router.patch("/settings")
async def update_settings(
    partial: Dict[str, Any],
    service: NotificationService = Depends(get_notification_service),
):
    """Partially update preferences; nested objects merge one level deep."""
    try:
        updated = await service.update_settings(partial)
    except StorageError as e:
        logger.error(f"Could not save notification settings: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification settings could not be saved",
        )
    # Preferences are process-wide: broadcast.
    await _publish(EventType.SETTINGS_UPDATED)
    return updated.to_json_dict()


# =============================================================================
# SCHEDULING AND DELIVERY
# =============================================================================

@router.post("/expenses/reminders", response_model=List[ScheduledReminderResponse])
async def schedule_expense_reminders(
    request: ExpenseReminderRequest,
    service: NotificationService = Depends(get_notification_service),
):
    """Schedule (or reschedule) the reminders of an expense."""
    reminders = await service.schedule_expense_reminder(request.model_dump())
    return [r.to_dict() for r in reminders]


@router.delete("/expenses/{expense_id}/reminders")
async def cancel_expense_reminders(expense_id: str, service: NotificationService = Depends(get_notification_service)):
    cancelled = service.cancel_expense_notifications(expense_id)
    return {"success": True, "cancelled": cancelled}


@router.get("/reminders")
async def pending_reminders(service: NotificationService = Depends(get_notification_service)):
    return {"reminders": [r.to_dict() for r in service.get_pending_reminders()]}


@router.post("/local")
async def send_local_notification(
    request: LocalNotificationRequest,
    service: NotificationService = Depends(get_notification_service),
):
    """Deliver a notification now on the best available channel."""
    outcome = await service.schedule_local_notification({
        "title": request.title,
        "body": request.body,
        "type": request.type.value,
        "priority": request.priority.value,
        "tag": request.tag,
        "userId": request.user_id,
        "data": request.data,
    })
    return outcome.to_dict()
