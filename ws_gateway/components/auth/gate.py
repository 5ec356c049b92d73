"""
Connection Gate.

Runs once per socket before any application frame is read: extracts the
credential from the handshake, verifies it under a time bound and either
yields an Identity or a rejection carrying the close code and reason the
client uses to tell "log in" from "refresh your token".
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, TYPE_CHECKING

from shared.config.logging import get_logger
from shared.security.auth import AuthErrorKind, AuthResult, Identity, verify_token
from ws_gateway.components.core.constants import WSCloseCode, validate_websocket_origin

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)

# A verifier may be a plain function or a coroutine (e.g. remote key lookup)
Verifier = Callable[[str | None], AuthResult | Awaitable[AuthResult]]

REASON_PREFIX = "Authentication error"


@dataclass(frozen=True, slots=True)
class GateDecision:
    """
    Outcome of the handshake.

    Attributes:
        identity: The verified identity if admitted.
        close_code: WebSocket close code to use if rejected.
        reason: Close reason sent to the client if rejected.
        audit_reason: Short reason code for audit logging.
    """

    identity: Identity | None = None
    close_code: int = WSCloseCode.AUTH_FAILED
    reason: str | None = None
    audit_reason: str | None = None

    @property
    def admitted(self) -> bool:
        return self.identity is not None

    @classmethod
    def admit(cls, identity: Identity) -> "GateDecision":
        return cls(identity=identity)

    @classmethod
    def reject(cls, close_code: int, message: str, audit_reason: str) -> "GateDecision":
        return cls(close_code=close_code, reason=f"{REASON_PREFIX}: {message}", audit_reason=audit_reason)

    @classmethod
    def from_auth_result(cls, result: AuthResult) -> "GateDecision":
        if result.success and result.identity is not None:
            return cls.admit(result.identity)

        kind = result.error_kind or AuthErrorKind.TOKEN_INVALID
        if kind is AuthErrorKind.TOKEN_REQUIRED:
            return cls.reject(WSCloseCode.TOKEN_REQUIRED, "Token required", kind.value)
        if kind is AuthErrorKind.TOKEN_EXPIRED:
            return cls.reject(WSCloseCode.AUTH_FAILED, "Token expired", kind.value)
        return cls.reject(WSCloseCode.AUTH_FAILED, "Invalid token", kind.value)


def extract_token(websocket: "WebSocket") -> str | None:
    """
    Find the credential in the handshake.

    Order: `token` query parameter, then `Authorization: Bearer <token>`.
    """
    token = websocket.query_params.get("token")
    if token:
        return token

    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


class ConnectionGate:
    """
    Per-connection handshake.

    Usage:
        gate = ConnectionGate(timeout=settings.ws_auth_timeout)
        decision = await gate.admit(websocket)
        if not decision.admitted:
            await websocket.close(code=decision.close_code, reason=decision.reason)
    """

    def __init__(
        self,
        verifier: Verifier = verify_token,
        timeout: float = 5.0,
        settings: object | None = None,
    ) -> None:
        """
        Args:
            verifier: Token verifier returning an AuthResult.
            timeout: Seconds allowed for verification.
            settings: Settings used for the origin check (None skips it).
        """
        self._verifier = verifier
        self._timeout = timeout
        self._settings = settings

    @property
    def timeout(self) -> float:
        return self._timeout

    async def admit(self, websocket: "WebSocket") -> GateDecision:
        """Decide whether the socket may join the gateway. Never raises."""
        if self._settings is not None:
            origin = websocket.headers.get("origin")
            if not validate_websocket_origin(origin, self._settings):
                return GateDecision(
                    close_code=WSCloseCode.FORBIDDEN,
                    reason="Origin not allowed",
                    audit_reason="invalid_origin",
                )

        token = extract_token(websocket)

        try:
            result = await asyncio.wait_for(self._verify(token), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Token verification timed out", timeout=self._timeout)
            return GateDecision.reject(WSCloseCode.AUTH_FAILED, "Verification timed out", "auth_timeout")
        except Exception:
            logger.error("Token verifier failed", exc_info=True)
            return GateDecision.reject(WSCloseCode.AUTH_FAILED, "Invalid token", "verifier_error")

        return GateDecision.from_auth_result(result)

    async def _verify(self, token: str | None) -> AuthResult:
        result = self._verifier(token)
        if inspect.isawaitable(result):
            result = await result
        return result
