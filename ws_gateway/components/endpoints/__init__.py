"""
WebSocket endpoint lifecycle.
"""
