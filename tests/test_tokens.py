"""Unit tests for access token issuance and verification."""

import base64
import json

import pytest

from sessionguard.service.errors import AuthenticationError, InvalidTokenError
from sessionguard.service.tokens import TokenIssuer
from sessionguard.storage.models import User, UserRole

SECRET = "unit-test-signing-secret-0123456789abcdef"


@pytest.fixture
def issuer():
    return TokenIssuer(SECRET, ttl_seconds=3600)


@pytest.fixture
def alice():
    return User(id="7d2c0f3e-1b8a-4a55-9a57-3f0d7e2b1c11", username="alice", password_hash="x")


def _segment(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


class TestIssueAndVerify:
    def test_round_trip_carries_identity(self, issuer, alice):
        token = issuer.issue(alice, now=1_000)
        claims = issuer.verify(token, now=1_001)

        assert claims.sub == alice.id
        assert claims.username == "alice"
        assert claims.role == UserRole.USER
        assert claims.exp == 1_000 + 3600

    def test_valid_until_expiry_and_not_after(self, issuer, alice):
        """Token verifies right up to its expiry second and fails from then on."""
        token = issuer.issue(alice, now=1_000, ttl_seconds=100)

        assert issuer.verify(token, now=1_099).sub == alice.id
        with pytest.raises(InvalidTokenError):
            issuer.verify(token, now=1_100)
        with pytest.raises(InvalidTokenError):
            issuer.verify(token, now=5_000)

    def test_same_instant_tokens_differ_but_both_verify(self, issuer, alice):
        first = issuer.issue(alice, now=1_000)
        second = issuer.issue(alice, now=1_000)

        assert first != second
        assert issuer.verify(first, now=1_000).sub == issuer.verify(second, now=1_000).sub

    def test_admin_role_round_trips(self, issuer, alice):
        alice.role = UserRole.ADMIN
        claims = issuer.verify(issuer.issue(alice, now=1_000), now=1_000)

        assert claims.role == UserRole.ADMIN
        assert claims.allows(UserRole.USER)
        assert claims.allows("admin")


class TestRejection:
    def test_wrong_secret_rejected(self, issuer, alice):
        other = TokenIssuer("another-secret-that-is-long-enough-000000")
        token = other.issue(alice, now=1_000)

        with pytest.raises(InvalidTokenError):
            issuer.verify(token, now=1_000)

    def test_tampered_payload_rejected(self, issuer, alice):
        header, _payload, signature = issuer.issue(alice, now=1_000).split(".")
        forged = _segment(
            {"sub": alice.id, "username": "alice", "role": "admin", "exp": 9_999_999_999}
        )

        with pytest.raises(InvalidTokenError):
            issuer.verify(f"{header}.{forged}.{signature}", now=1_000)

    def test_alg_none_rejected(self, issuer, alice):
        _header, payload, _signature = issuer.issue(alice, now=1_000).split(".")
        header = _segment({"alg": "none", "typ": "JWT"})

        with pytest.raises(InvalidTokenError):
            issuer.verify(f"{header}.{payload}.", now=1_000)

    @pytest.mark.parametrize("raw", ["", "abc", "a.b", "a.b.c.d", "!!!.???.***"])
    def test_malformed_structure_rejected(self, issuer, raw):
        with pytest.raises(InvalidTokenError):
            issuer.verify(raw, now=1_000)

    def test_invalid_token_is_authentication_error(self, issuer):
        """Callers can treat every verification failure as a 401."""
        with pytest.raises(AuthenticationError):
            issuer.verify("not-a-token")


class TestPeekExpiry:
    def test_reads_expiry_of_expired_token(self, issuer, alice):
        token = issuer.issue(alice, now=1_000, ttl_seconds=10)
        assert issuer.peek_expiry(token) == 1_010

    def test_unreadable_token_returns_none(self, issuer):
        assert issuer.peek_expiry("garbage") is None

    def test_foreign_signature_returns_none(self, issuer, alice):
        token = TokenIssuer("another-secret-that-is-long-enough-000000").issue(alice)
        assert issuer.peek_expiry(token) is None


def test_empty_secret_refused():
    with pytest.raises(ValueError):
        TokenIssuer("")
