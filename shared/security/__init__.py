"""
Security module: token verification.
"""

from shared.security.auth import (
    AuthErrorKind,
    AuthResult,
    Identity,
    sign_token,
    verify_token,
)

__all__ = [
    "AuthErrorKind",
    "AuthResult",
    "Identity",
    "sign_token",
    "verify_token",
]
