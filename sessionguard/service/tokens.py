from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Optional

from sessionguard.logging import get_logger
from sessionguard.service.errors import InvalidTokenError
from sessionguard.storage.models import User, UserRole

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass(frozen=True)
class Claims:
    sub: str
    username: str
    role: UserRole
    exp: int
    iat: int
    jti: str

    def allows(self, required: UserRole | str) -> bool:
        required = UserRole(required)
        return self.role == required or self.role == UserRole.ADMIN


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenIssuer:
    """Mints and verifies HS256-signed access tokens.

    The signing secret lives only in process configuration. Verification
    checks structure, algorithm, signature and expiry; revocation is a
    separate step owned by :class:`RevocationRegistry`.
    """

    def __init__(self, secret: str, *, ttl_seconds: int = 3600) -> None:
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self._secret = secret.encode()
        self.ttl_seconds = ttl_seconds

    def _sign(self, signing_input: str) -> str:
        return _encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def issue(
        self,
        user: User,
        *,
        now: Optional[float] = None,
        ttl_seconds: Optional[int] = None,
    ) -> str:
        issued_at = int(now if now is not None else time.time())
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        payload = {
            "sub": user.id,
            "username": user.username,
            "role": UserRole(user.role).value,
            "exp": issued_at + int(ttl),
            "iat": issued_at,
            "jti": secrets.token_hex(8),
        }
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode(self, raw_token: str) -> dict[str, Any]:
        try:
            header_b64, payload_b64, sig_b64 = raw_token.split(".")
        except (AttributeError, ValueError):
            raise InvalidTokenError("token is not a three-segment JWT")

        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError) as exc:
            raise InvalidTokenError(f"token header undecodable: {exc}")
        # Algorithm-confusion guard: only the algorithm we sign with is accepted
        alg = header.get("alg") if isinstance(header, dict) else None
        if alg != "HS256":
            logger.warning("jwt_invalid_algorithm", alg=alg)
            raise InvalidTokenError("unexpected token algorithm")

        if not hmac.compare_digest(self._sign(f"{header_b64}.{payload_b64}"), sig_b64):
            raise InvalidTokenError("token signature mismatch")

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidTokenError("token payload undecodable")
        if not isinstance(payload, dict):
            raise InvalidTokenError("token payload is not an object")
        return payload

    def verify(self, raw_token: str, *, now: Optional[float] = None) -> Claims:
        payload = self._decode(raw_token)
        try:
            claims = Claims(
                sub=str(payload["sub"]),
                username=str(payload["username"]),
                role=UserRole(payload["role"]),
                exp=int(payload["exp"]),
                iat=int(payload.get("iat", 0)),
                jti=str(payload.get("jti", "")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidTokenError(f"token claims malformed: {exc}")
        current = now if now is not None else time.time()
        if claims.exp <= current:
            raise InvalidTokenError("token expired")
        return claims

    def peek_expiry(self, raw_token: str) -> Optional[int]:
        """Expiry of a correctly signed token, expired or not; ``None`` if unreadable."""
        try:
            exp = self._decode(raw_token).get("exp")
            return int(exp) if exp is not None else None
        except (InvalidTokenError, TypeError, ValueError):
            return None


__all__ = ["Claims", "TokenIssuer"]
