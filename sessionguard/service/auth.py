from __future__ import annotations

from typing import Optional, Tuple

from sessionguard.logging import get_logger
from sessionguard.service.directory import UserDirectory, call_directory
from sessionguard.service.errors import (
    AuthenticationError,
    DuplicateIdentityError,
    InactiveAccountError,
    InsufficientRoleError,
    TokenRevokedError,
)
from sessionguard.service.passwords import PasswordVerifier
from sessionguard.service.revocation import RevocationRegistry
from sessionguard.service.rotation import RefreshRotationEngine, TokenPair
from sessionguard.service.tokens import Claims, TokenIssuer
from sessionguard.storage.errors import ConstraintViolation
from sessionguard.storage.models import User, UserRole

logger = get_logger(__name__)


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class AuthService:
    """Credential checks, token pairs and bearer authentication."""

    def __init__(
        self,
        directory: UserDirectory,
        passwords: PasswordVerifier,
        issuer: TokenIssuer,
        rotation: RefreshRotationEngine,
        revocation: RevocationRegistry,
    ) -> None:
        self.directory = directory
        self.passwords = passwords
        self.issuer = issuer
        self.rotation = rotation
        self.revocation = revocation
        self.logger = get_logger(__name__)

    def register(
        self,
        username: str,
        password: str,
        phone: Optional[str] = None,
        *,
        role: UserRole = UserRole.USER,
    ) -> User:
        candidate = User(
            id="",
            username=username,
            password_hash=self.passwords.hash(password),
            phone=phone,
            role=UserRole(role),
            is_active=True,
        )
        try:
            user = call_directory("insert", self.directory.insert, candidate)
        except ConstraintViolation as exc:
            raise DuplicateIdentityError(
                "username or phone already exists", detail=exc.detail
            ) from exc
        self.logger.info("user_registered", user_id=user.id, role=user.role.value)
        return user

    async def login(self, account: str, password: str) -> Tuple[User, TokenPair]:
        user = call_directory(
            "find_by_credential", self.directory.find_by_credential, account
        )
        if user is None:
            # constant-cost path for unknown accounts
            self.passwords.hash(password)
            raise AuthenticationError("login for unknown account")
        if not self.passwords.verify(password, user.password_hash):
            self.logger.info("login_password_mismatch", user_id=user.id)
            raise AuthenticationError("login password mismatch", detail={"user_id": user.id})
        if not user.is_active:
            raise InactiveAccountError("login for disabled account", detail={"user_id": user.id})
        pair = await self.rotation.issue_pair(user)
        self.logger.info("login_succeeded", user_id=user.id)
        return user, pair

    async def refresh(self, refresh_token: str) -> Tuple[User, TokenPair]:
        return await self.rotation.rotate(refresh_token)

    async def logout(self, access_token: Optional[str]) -> None:
        if not access_token:
            return
        await self.revocation.revoke(access_token)

    async def authenticate(
        self,
        authorization: Optional[str],
        *,
        required_role: Optional[UserRole] = None,
    ) -> Tuple[str, Claims]:
        """Resolve a bearer header to ``(raw_token, claims)``.

        Revocation is checked before the signature so a logged-out token is
        rejected even while it is still cryptographically valid.
        """
        token = extract_bearer(authorization)
        if token is None:
            raise AuthenticationError("missing bearer token")
        if await self.revocation.is_revoked(token):
            raise TokenRevokedError("access token revoked")
        claims = self.issuer.verify(token)
        if required_role is not None and not claims.allows(required_role):
            raise InsufficientRoleError(
                "role not permitted",
                detail={"user_id": claims.sub, "required": UserRole(required_role).value},
            )
        return token, claims


__all__ = ["AuthService", "UserDirectory", "extract_bearer"]
