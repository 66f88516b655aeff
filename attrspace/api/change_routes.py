"""
Change notification API endpoints.

Provides endpoints to publish change facts from trusted producers, inspect
bus statistics and subscriptions, and stream changes over WebSocket.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from attrspace.events.bus import DeliveryResult, NotificationBus
from attrspace.events.models import ChangeEvent, EventKind
from attrspace.exceptions import InvalidArgumentError
from attrspace.websockets.manager import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/changes", tags=["changes"])


class PublishResponse(BaseModel):
    """Outcome of publishing one change fact."""

    # False when loop detection dropped the event
    accepted: bool = True
    batched: bool
    deliveries: int
    failed: int = 0


def get_bus(request: Request) -> NotificationBus:
    return request.app.state.bus


def get_manager(request: Request) -> ConnectionManager:
    return request.app.state.connection_manager


def _publish(bus: NotificationBus, body: Dict[str, Any], kind: Optional[EventKind] = None) -> PublishResponse:
    try:
        event = ChangeEvent.coerce(body)
    except InvalidArgumentError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if kind is not None:
        event = event.with_type(kind)

    accepted = not bus.loop_limit_reached
    results: List[DeliveryResult] = bus.publish(event)
    return PublishResponse(
        accepted=accepted,
        batched=accepted and bus.config.enable_batching,
        deliveries=len(results),
        failed=sum(1 for result in results if not result.ok),
    )


@router.post("/publish", response_model=PublishResponse)
async def publish_change(body: Dict[str, Any], bus: NotificationBus = Depends(get_bus)) -> PublishResponse:
    """
    Publish an entity change fact.

    The body uses ChangeEvent fields in camelCase or snake_case. Missing
    ``changeType``, ``type`` and ``timestamp`` are inferred.
    """
    return _publish(bus, body)


@router.post("/relations", response_model=PublishResponse)
async def publish_relation_change(body: Dict[str, Any], bus: NotificationBus = Depends(get_bus)) -> PublishResponse:
    """Publish a relation change fact."""
    return _publish(bus, body, EventKind.RELATION)


@router.post("/schema", response_model=PublishResponse)
async def publish_schema_change(body: Dict[str, Any], bus: NotificationBus = Depends(get_bus)) -> PublishResponse:
    """Publish a schema change fact."""
    return _publish(bus, body, EventKind.SCHEMA)


@router.post("/flush", response_model=Dict[str, int])
async def flush_batches(bus: NotificationBus = Depends(get_bus)) -> Dict[str, int]:
    """Deliver pending batched notifications now."""
    return {"flushed": bus.flush()}


@router.get("/stats", response_model=Dict[str, Any])
async def get_change_stats(
    request: Request,
    bus: NotificationBus = Depends(get_bus),
    manager: ConnectionManager = Depends(get_manager),
) -> Dict[str, Any]:
    """
    Get notification statistics.

    Returns:
        Bus counters plus transport statistics:
        - bus: lifetime and current bus counters, and the bus config
        - connections: WebSocket connection counts
        - broadcaster: queued/sent/dropped message counts
    """
    broadcaster = getattr(request.app.state, "broadcaster", None)
    return {
        "bus": bus.stats().to_dict(),
        "connections": manager.get_stats(),
        "broadcaster": broadcaster.get_stats() if broadcaster is not None else None,
    }


@router.get("/subscriptions", response_model=List[Dict[str, Any]])
async def list_subscriptions(bus: NotificationBus = Depends(get_bus)) -> List[Dict[str, Any]]:
    """List active subscriptions with their match counts."""
    return [info.to_dict() for info in bus.get_active_subscriptions()]


@router.websocket("/ws")
async def change_stream(websocket: WebSocket, entity_id: Optional[str] = Query(None, alias="entityId")):
    """
    Stream change notifications.

    Messages have the shape ``{"type": "attributeChange" | "relationChange" |
    "schemaChange", "data": {...}, "timestamp": "..."}``. Pass ``entityId``
    to receive only changes concerning one entity. Sending ``ping`` returns
    ``pong``.
    """
    manager: ConnectionManager = websocket.app.state.connection_manager
    connection_id = await manager.connect(websocket, entity_id)
    try:
        while True:
            text = await websocket.receive_text()
            if text == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.info(f"Change stream client disconnected: {connection_id}")
    finally:
        await manager.disconnect(connection_id)
