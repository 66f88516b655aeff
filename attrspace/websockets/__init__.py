"""
WebSocket support for real-time change streams.
"""

from attrspace.websockets.broadcaster import ChangeBroadcaster
from attrspace.websockets.manager import ConnectionManager

__all__ = ["ChangeBroadcaster", "ConnectionManager"]
