"""
WebSocket connection manager for real-time change streams.

Manages WebSocket connections, optional per-entity filters, and message
broadcasting to remote UI clients.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set
from uuid import uuid4

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def message_entity_ids(message: Dict[str, Any]) -> Set[str]:
    """Entity ids a change message concerns (entity, relation source and target)."""
    data = message.get("data") or {}
    return {
        str(data[key])
        for key in ("entityId", "sourceEntityId", "targetEntityId")
        if data.get(key) is not None
    }


class ConnectionManager:
    """
    Manages WebSocket connections and message routing.

    Features:
    - Connection lifecycle management
    - Optional per-connection entity filter
    - Message broadcasting
    """

    def __init__(self):
        # Active connections by connection_id
        self._connections: Dict[str, WebSocket] = {}

        # Entity filter per connection: None receives every change
        self._entity_filters: Dict[str, Optional[str]] = {}

        logger.info("ConnectionManager initialized")

    async def connect(self, websocket: WebSocket, entity_id: Optional[str] = None) -> str:
        """
        Accept a new WebSocket connection.

        Args:
            websocket: The WebSocket connection
            entity_id: Only forward changes concerning this entity

        Returns:
            connection_id: Unique identifier for this connection
        """
        await websocket.accept()

        connection_id = str(uuid4())
        self._connections[connection_id] = websocket
        self._entity_filters[connection_id] = entity_id

        logger.info(
            f"WebSocket connected: {connection_id} (entity: {entity_id or 'all'}), "
            f"total connections: {len(self._connections)}"
        )

        return connection_id

    async def disconnect(self, connection_id: str):
        """
        Remove a WebSocket connection.

        Args:
            connection_id: Connection to remove
        """
        if connection_id not in self._connections:
            return

        del self._connections[connection_id]
        self._entity_filters.pop(connection_id, None)

        logger.info(
            f"WebSocket disconnected: {connection_id}, "
            f"remaining connections: {len(self._connections)}"
        )

    async def send_message(self, connection_id: str, message: dict):
        """
        Send a message to a specific connection.

        A connection whose send fails is disconnected.

        Args:
            connection_id: Target connection
            message: Message to send
        """
        if connection_id not in self._connections:
            logger.warning(f"Cannot send to unknown connection: {connection_id}")
            return

        websocket = self._connections[connection_id]
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.error(f"Failed to send message to {connection_id}: {e}")
            await self.disconnect(connection_id)

    async def broadcast(self, message: dict) -> int:
        """
        Broadcast a change message to every interested connection.

        Args:
            message: Message to broadcast

        Returns:
            Number of connections targeted
        """
        entity_ids = message_entity_ids(message)
        targets = [
            connection_id
            for connection_id, entity_filter in list(self._entity_filters.items())
            if entity_filter is None or entity_filter in entity_ids
        ]
        if not targets:
            return 0

        logger.debug(f"Broadcasting {message.get('type')} to {len(targets)} connections")

        await asyncio.gather(
            *(self.send_message(connection_id, message) for connection_id in targets),
            return_exceptions=True,
        )
        return len(targets)

    def get_stats(self) -> dict:
        """
        Get connection statistics.

        Returns:
            Statistics dictionary
        """
        filtered = [f for f in self._entity_filters.values() if f is not None]
        return {
            "total_connections": len(self._connections),
            "filtered_connections": len(filtered),
            "watched_entities": len(set(filtered)),
        }
