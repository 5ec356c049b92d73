"""
Token verification for staff connections.

The auth service issues HS256 JWTs carrying `{id, role, branchId}` (and an
optional display `name`). The gateway only verifies them: verify_token() is a
pure function that never raises and returns an AuthResult, so it can be unit
tested without a live connection.

sign_token() exists for development and tests (CLI issue-token, fixtures).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

import jwt

from shared.config.logging import get_logger
from shared.config.settings import settings

logger = get_logger(__name__)


# =============================================================================
# Identity and result types
# =============================================================================


@dataclass(frozen=True, slots=True)
class Identity:
    """
    Who is on the other end of a connection.

    Derived once per connection from a verified credential and immutable
    for the connection's lifetime.
    """

    id: str
    role: str
    branch_id: str | None = None
    name: str | None = None

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "Identity":
        """Build an identity from already validated claims."""
        branch_id = claims.get("branchId")
        return cls(
            id=str(claims["id"]),
            role=str(claims["role"]),
            branch_id=str(branch_id) if branch_id not in (None, "") else None,
            name=claims.get("name") or None,
        )

    def to_claims(self) -> dict[str, Any]:
        """Claims representation used by sign_token()."""
        claims: dict[str, Any] = {"id": self.id, "role": self.role}
        if self.branch_id is not None:
            claims["branchId"] = self.branch_id
        if self.name:
            claims["name"] = self.name
        return claims


class AuthErrorKind(str, Enum):
    """Why a credential was rejected."""

    TOKEN_REQUIRED = "token_required"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    MISSING_CLAIMS = "missing_claims"

    @property
    def requires_new_credential(self) -> bool:
        """A fresh token can fix every kind except a missing one."""
        return self is not AuthErrorKind.TOKEN_REQUIRED


@dataclass(frozen=True, slots=True)
class AuthResult:
    """
    Result of a verification attempt.

    Attributes:
        success: Whether verification succeeded.
        identity: The verified identity if successful.
        error_kind: Why verification failed.
        error_message: Human-readable, client-safe error message.
    """

    success: bool
    identity: Identity | None = None
    error_kind: AuthErrorKind | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, identity: Identity) -> "AuthResult":
        """Create successful verification result."""
        return cls(success=True, identity=identity)

    @classmethod
    def fail(cls, kind: AuthErrorKind, message: str) -> "AuthResult":
        """Create failed verification result."""
        return cls(success=False, error_kind=kind, error_message=message)


REQUIRED_CLAIMS: tuple[str, ...] = ("id", "role")


# =============================================================================
# Verification
# =============================================================================


def verify_token(
    token: str | None,
    *,
    secret: str | None = None,
    algorithms: list[str] | None = None,
    leeway: int | None = None,
) -> AuthResult:
    """
    Verify and decode a staff token.

    Rejects:
    - missing token (TOKEN_REQUIRED)
    - malformed encoding or bad signature (TOKEN_INVALID)
    - expired validity window (TOKEN_EXPIRED)
    - missing or malformed `id` / `role` claims (MISSING_CLAIMS)

    Args:
        token: The raw credential string.
        secret: Signing secret (defaults to settings.jwt_secret).
        algorithms: Accepted algorithms (defaults to [settings.jwt_algorithm]).
        leeway: Clock skew tolerance in seconds for exp/nbf.

    Returns:
        AuthResult with the identity on success. Never raises.
    """
    if token is None or (isinstance(token, str) and not token.strip()):
        return AuthResult.fail(AuthErrorKind.TOKEN_REQUIRED, "Token required")
    if not isinstance(token, str):
        return AuthResult.fail(AuthErrorKind.TOKEN_INVALID, "Invalid token")

    try:
        claims = jwt.decode(
            token.strip(),
            secret if secret is not None else settings.jwt_secret,
            algorithms=algorithms or [settings.jwt_algorithm],
            leeway=leeway if leeway is not None else settings.jwt_leeway_seconds,
            # The auth service does not scope tokens by audience
            options={"verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        return AuthResult.fail(AuthErrorKind.TOKEN_EXPIRED, "Token expired")
    except jwt.InvalidTokenError as e:
        # Log the actual error for debugging, return a generic message to the client
        logger.debug("Token validation failed", error=str(e))
        return AuthResult.fail(AuthErrorKind.TOKEN_INVALID, "Invalid token")

    if not isinstance(claims, dict):
        return AuthResult.fail(AuthErrorKind.TOKEN_INVALID, "Invalid token")

    for claim in REQUIRED_CLAIMS:
        value = claims.get(claim)
        # bool is an int subclass and never a valid id or role
        if isinstance(value, bool) or not isinstance(value, (str, int)) or str(value).strip() == "":
            return AuthResult.fail(
                AuthErrorKind.MISSING_CLAIMS,
                f"Invalid token: missing {claim} claim",
            )

    branch_id = claims.get("branchId")
    if branch_id is not None and (isinstance(branch_id, bool) or not isinstance(branch_id, (str, int))):
        return AuthResult.fail(AuthErrorKind.MISSING_CLAIMS, "Invalid token: malformed branchId claim")

    return AuthResult.ok(Identity.from_claims(claims))


# =============================================================================
# Development signer
# =============================================================================


def sign_token(
    identity: Identity,
    ttl_seconds: int | None = None,
    *,
    secret: str | None = None,
    algorithm: str | None = None,
) -> str:
    """
    Sign a token for the given identity.

    Production tokens come from the auth service; this helper mirrors its
    claim layout for tests, local development and the CLI.

    Args:
        identity: Identity to encode.
        ttl_seconds: Token lifetime. Defaults to settings.jwt_access_token_expire_minutes.
            A negative value produces an already expired token.
        secret: Signing secret (defaults to settings.jwt_secret).
        algorithm: Signing algorithm (defaults to settings.jwt_algorithm).

    Returns:
        Signed JWT string.
    """
    if ttl_seconds is None:
        ttl_seconds = settings.jwt_access_token_expire_minutes * 60

    now = int(time.time())
    data = {
        **identity.to_claims(),
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(
        data,
        secret if secret is not None else settings.jwt_secret,
        algorithm=algorithm or settings.jwt_algorithm,
    )
