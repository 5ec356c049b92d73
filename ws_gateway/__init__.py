"""
WebSocket Gateway: authenticated staff connections, rooms and event fan-out.
"""

__version__ = "1.0.0"
