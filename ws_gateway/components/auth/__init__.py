"""
Authentication components.

The Connection Gate runs the token verifier during the handshake.
"""

from ws_gateway.components.auth.gate import (
    ConnectionGate,
    GateDecision,
    extract_token,
)

__all__ = [
    "ConnectionGate",
    "GateDecision",
    "extract_token",
]
