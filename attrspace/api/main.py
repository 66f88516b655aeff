"""
FastAPI application for the AttributeSpace notification service.

On startup the application builds (or receives) a NotificationBus, attaches
the WebSocket broadcaster and the audit/performance monitors. On shutdown it
drains the broadcaster and shuts the bus down, flushing pending batches.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from attrspace.api import change_routes
from attrspace.config import Settings, get_settings
from attrspace.events.bus import NotificationBus, get_notification_bus, reset_notification_bus
from attrspace.events.monitors import watch_heavy_changes, watch_sensitive_attributes
from attrspace.logging_config import configure_structured_logging
from attrspace.websockets.broadcaster import ChangeBroadcaster
from attrspace.websockets.manager import ConnectionManager

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def create_app(
    bus: Optional[NotificationBus] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        bus: Bus to serve; the application bus (get_notification_bus) when omitted
        settings: Application settings; the global settings when omitted
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info("AttributeSpace notification service starting")
        logger.info("=" * 60)

        # Without an injected bus the app serves the process-wide one
        owns_bus = bus is None
        app.state.bus = bus or get_notification_bus(settings.bus_config())
        app.state.connection_manager = ConnectionManager()
        app.state.broadcaster = ChangeBroadcaster(
            app.state.bus,
            app.state.connection_manager,
            max_queue=settings.BROADCAST_QUEUE_SIZE,
        )
        await app.state.broadcaster.start()
        logger.info("✓ WebSocket change forwarding enabled")

        watch_sensitive_attributes(app.state.bus, settings.AUDIT_ATTRIBUTE_PATTERN)
        watch_heavy_changes(app.state.bus, settings.HEAVY_BATCH_THRESHOLD)
        logger.info("✓ Audit and performance monitors subscribed")

        yield

        logger.info("AttributeSpace notification service shutting down")
        app.state.bus.flush()
        await app.state.broadcaster.stop()
        if owns_bus:
            reset_notification_bus()
        else:
            app.state.bus.shutdown()
        logger.info("✓ Notification bus shut down")

    app = FastAPI(
        title="AttributeSpace Notification API",
        description="Change notifications for a dynamic entity-attribute-relation model",
        version=API_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.include_router(change_routes.router)
    return app


configure_structured_logging(
    level=get_settings().LOG_LEVEL,
    enable_json=get_settings().LOG_JSON_FORMAT,
)

app = create_app()
