"""
Notification web application.

Builds the FastAPI app, constructs services at startup and tears them down
at shutdown. Services live in the service registry only between those two
points.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from config.settings import Settings, get_settings
from core.service_registry import services
from middleware.correlation import CorrelationIdMiddleware, configure_logging
from notifications.routes import router as notifications_router
from notifications.service import NotificationService, create_notification_service
from realtime.connection_manager import ConnectionManager
from realtime.websocket_routes import websocket_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[NotificationService] = None,
    connections: Optional[ConnectionManager] = None,
) -> FastAPI:
    """
    Create the application.

    Args:
        settings: Runtime settings (environment when omitted)
        service: Pre-built notification service (tests, embedding)
        connections: Pre-built WebSocket connection manager
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)

        manager = connections or ConnectionManager()
        services.register("connections", manager, shutdown=manager.close_all)

        notification_service = service or create_notification_service(settings, connections=manager)
        await notification_service.startup()
        services.register("notifications", notification_service, shutdown=notification_service.shutdown)

        logger.info(f"{settings.name} {settings.version} started ({settings.environment})")
        try:
            yield
        finally:
            await services.shutdown_all()
            services.reset_all()

    app = FastAPI(title=settings.name, version=settings.version, debug=settings.debug, lifespan=lifespan)
    app.add_middleware(CorrelationIdMiddleware)
    app.include_router(notifications_router)
    app.include_router(websocket_router)

    @app.get("/health")
    async def health():
        notification_service = services.get("notifications")
        return {
            "status": "ok" if notification_service and notification_service.started else "starting",
            "sender": notification_service.dispatcher.sender.channel if notification_service else None,
        }

    return app
