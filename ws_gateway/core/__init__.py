"""
WebSocket Gateway Core Module.

- connection/: event fan-out to room members
"""

from ws_gateway.core.connection import Broadcaster

__all__ = ["Broadcaster"]
