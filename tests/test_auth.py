"""
Tests for token verification and the connection gate.

Tests verify:
- Valid tokens yield an identity with branch and name
- Missing, malformed, expired and wrongly signed tokens are rejected
- Gate decisions carry the close code and reason the client sees
- Verification is bounded in time
"""

import asyncio
from unittest.mock import MagicMock

import jwt
import pytest

from shared.security.auth import AuthErrorKind, Identity, sign_token, verify_token
from ws_gateway.components.auth.gate import ConnectionGate, GateDecision, extract_token
from ws_gateway.components.core.constants import WSCloseCode

from tests.conftest import TEST_SECRET


def _verify(token):
    return verify_token(token, secret=TEST_SECRET, algorithms=["HS256"], leeway=0)


def _websocket(query=None, headers=None):
    ws = MagicMock()
    ws.query_params = query or {}
    ws.headers = headers or {}
    return ws


class TestVerifyToken:
    """Tests for verify_token()."""

    def test_valid_token_yields_identity(self, make_token):
        result = _verify(make_token(user_id="u7", role="CHEF", branch_id="b1", name="Ana"))

        assert result.success is True
        assert result.identity == Identity(id="u7", role="CHEF", branch_id="b1", name="Ana")
        assert result.error_kind is None

    def test_token_without_branch(self, make_token):
        result = _verify(make_token(role="ADMIN", branch_id=None))

        assert result.success is True
        assert result.identity.branch_id is None

    def test_numeric_claims_are_normalized_to_strings(self):
        token = jwt.encode({"id": 42, "role": "STAFF", "branchId": 7}, TEST_SECRET, algorithm="HS256")

        result = _verify(token)

        assert result.identity.id == "42"
        assert result.identity.branch_id == "7"

    @pytest.mark.parametrize("token", [None, "", "   "])
    def test_missing_token(self, token):
        result = _verify(token)

        assert result.success is False
        assert result.error_kind is AuthErrorKind.TOKEN_REQUIRED
        assert result.error_message == "Token required"

    def test_garbage_token(self):
        result = _verify("garbage")

        assert result.success is False
        assert result.error_kind is AuthErrorKind.TOKEN_INVALID
        assert result.error_message == "Invalid token"

    def test_wrong_secret(self, make_token):
        result = _verify(make_token(secret="another-secret-entirely-0123456789abcdef"))

        assert result.error_kind is AuthErrorKind.TOKEN_INVALID

    def test_expired_token(self, make_token):
        result = _verify(make_token(ttl=-60))

        assert result.success is False
        assert result.error_kind is AuthErrorKind.TOKEN_EXPIRED
        assert result.error_message == "Token expired"

    def test_leeway_accepts_recently_expired_token(self, make_token):
        token = make_token(ttl=-2)

        result = verify_token(token, secret=TEST_SECRET, algorithms=["HS256"], leeway=30)

        assert result.success is True

    @pytest.mark.parametrize(
        "claims",
        [
            {"role": "STAFF"},
            {"id": "u1"},
            {"id": "", "role": "STAFF"},
            {"id": True, "role": "STAFF"},
            {"id": "u1", "role": ["STAFF"]},
            {"id": "u1", "role": "STAFF", "branchId": {"id": "b1"}},
        ],
    )
    def test_missing_or_malformed_claims(self, claims):
        token = jwt.encode(claims, TEST_SECRET, algorithm="HS256")

        result = _verify(token)

        assert result.success is False
        assert result.error_kind is AuthErrorKind.MISSING_CLAIMS

    def test_only_missing_token_does_not_need_new_credential(self):
        assert AuthErrorKind.TOKEN_REQUIRED.requires_new_credential is False
        assert AuthErrorKind.TOKEN_EXPIRED.requires_new_credential is True

    def test_sign_token_round_trip(self):
        identity = Identity(id="u1", role="MANAGER", branch_id="b3", name="Luis")

        token = sign_token(identity, 60, secret=TEST_SECRET, algorithm="HS256")

        assert _verify(token).identity == identity


class TestExtractToken:
    """Tests for credential extraction from the handshake."""

    def test_query_parameter(self):
        assert extract_token(_websocket(query={"token": "abc"})) == "abc"

    def test_bearer_header(self):
        assert extract_token(_websocket(headers={"authorization": "Bearer xyz"})) == "xyz"

    def test_query_parameter_wins(self):
        ws = _websocket(query={"token": "abc"}, headers={"authorization": "Bearer xyz"})
        assert extract_token(ws) == "abc"

    def test_other_schemes_are_ignored(self):
        assert extract_token(_websocket(headers={"authorization": "Basic dXNlcjpwYXNz"})) is None

    def test_no_credential(self):
        assert extract_token(_websocket()) is None


class TestConnectionGate:
    """Tests for ConnectionGate.admit()."""

    @pytest.mark.asyncio
    async def test_admits_valid_token(self, make_token):
        gate = ConnectionGate(verifier=_verify)

        decision = await gate.admit(_websocket(query={"token": make_token()}))

        assert decision.admitted is True
        assert decision.identity.id == "u1"

    @pytest.mark.asyncio
    async def test_missing_token_closes_with_4000(self):
        gate = ConnectionGate(verifier=_verify)

        decision = await gate.admit(_websocket())

        assert decision.admitted is False
        assert decision.close_code == WSCloseCode.TOKEN_REQUIRED
        assert decision.reason == "Authentication error: Token required"

    @pytest.mark.asyncio
    async def test_invalid_token_closes_with_4001(self):
        gate = ConnectionGate(verifier=_verify)

        decision = await gate.admit(_websocket(query={"token": "garbage"}))

        assert decision.close_code == WSCloseCode.AUTH_FAILED
        assert decision.reason == "Authentication error: Invalid token"
        assert decision.audit_reason == "token_invalid"

    @pytest.mark.asyncio
    async def test_expired_token_reason(self, make_token):
        gate = ConnectionGate(verifier=_verify)

        decision = await gate.admit(_websocket(query={"token": make_token(ttl=-5)}))

        assert decision.close_code == WSCloseCode.AUTH_FAILED
        assert decision.reason == "Authentication error: Token expired"

    @pytest.mark.asyncio
    async def test_slow_verifier_times_out(self, make_token):
        async def slow_verifier(token):
            await asyncio.sleep(1)
            return _verify(token)

        gate = ConnectionGate(verifier=slow_verifier, timeout=0.05)

        decision = await gate.admit(_websocket(query={"token": make_token()}))

        assert decision.admitted is False
        assert decision.reason == "Authentication error: Verification timed out"
        assert decision.audit_reason == "auth_timeout"

    @pytest.mark.asyncio
    async def test_async_verifier(self, make_token):
        async def verifier(token):
            return _verify(token)

        gate = ConnectionGate(verifier=verifier)

        decision = await gate.admit(_websocket(query={"token": make_token()}))

        assert decision.admitted is True

    @pytest.mark.asyncio
    async def test_verifier_exception_rejects(self):
        def broken(token):
            raise RuntimeError("key service down")

        gate = ConnectionGate(verifier=broken)

        decision = await gate.admit(_websocket(query={"token": "abc"}))

        assert decision.admitted is False
        assert decision.close_code == WSCloseCode.AUTH_FAILED

    @pytest.mark.asyncio
    async def test_disallowed_origin_closes_with_4003(self, make_token, test_settings):
        gate = ConnectionGate(verifier=_verify, settings=test_settings)
        ws = _websocket(query={"token": make_token()}, headers={"origin": "https://evil.example"})

        decision = await gate.admit(ws)

        assert decision.close_code == WSCloseCode.FORBIDDEN
        assert decision.reason == "Origin not allowed"

    @pytest.mark.asyncio
    async def test_missing_origin_allowed_outside_production(self, make_token, test_settings):
        gate = ConnectionGate(verifier=_verify, settings=test_settings)

        decision = await gate.admit(_websocket(query={"token": make_token()}))

        assert decision.admitted is True

    @pytest.mark.asyncio
    async def test_missing_origin_rejected_in_production(self, make_token, test_settings):
        prod = test_settings.model_copy(update={"environment": "production"})
        gate = ConnectionGate(verifier=_verify, settings=prod)

        decision = await gate.admit(_websocket(query={"token": make_token()}))

        assert decision.close_code == WSCloseCode.FORBIDDEN


class TestGateDecision:
    def test_admit(self):
        decision = GateDecision.admit(Identity(id="u1", role="STAFF"))
        assert decision.admitted is True
        assert decision.reason is None
