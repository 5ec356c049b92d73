"""
Connection Management Module.

- broadcaster.py: best-effort delivery of one event to one room
"""

from ws_gateway.core.connection.broadcaster import Broadcaster

__all__ = ["Broadcaster"]
