"""
WebSocket Routes

Browser clients connect here to receive web notifications and to report
permission changes, clicks and reads back to the server.
"""

import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from core.service_registry import services

from .connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

websocket_router = APIRouter(prefix="/ws", tags=["WebSocket"])


def get_connection_manager() -> ConnectionManager:
    return services.require("connections")


@websocket_router.websocket("/notifications")
async def notifications_socket(
    websocket: WebSocket,
    user_id: str = Query(..., min_length=1, description="Authenticated user id"),
):
    """
    Notification channel for one browser.

    Connect with: ws://host/ws/notifications?user_id=<id>

    Incoming messages:
    - {"type": "ping"}
    - {"type": "permission", "state": "granted"}
    - {"type": "click", "tag": "expense-42-1day", "action": "open"}
    - {"type": "mark_read", "notification_id": "..."}

    Outgoing events:
    - {"id": "...", "type": "notification", "data": {payload}, "timestamp": "..."}
    - {"type": "notification_close", "data": {"tag": "..."}}
    - {"type": "navigate", "data": {"route": "/monthly-costs"}}
    """
    manager = get_connection_manager()
    await manager.connect(websocket, user_id)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except json.JSONDecodeError:
                # Ignore malformed messages
                continue
            if isinstance(message, dict):
                await manager.handle_message(user_id, message)
    except WebSocketDisconnect:
        await manager.disconnect(user_id, websocket)
    except Exception as e:
        logger.error(f"WebSocket error for user {user_id}: {e}")
        await manager.disconnect(user_id, websocket)


@websocket_router.get("/stats")
async def websocket_stats():
    """Connection statistics."""
    return get_connection_manager().get_stats()
