from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Header, status

from sessionguard.api.schemas import (
    Envelope,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    UpdateProfileRequest,
    UserProfileResponse,
)
from sessionguard.logging import get_logger
from sessionguard.service.auth import extract_bearer
from sessionguard.service.rotation import TokenPair
from sessionguard.service.runtime import get_runtime
from sessionguard.service.tokens import Claims
from sessionguard.storage.models import User, UserRole

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


@dataclass(frozen=True)
class Principal:
    token: str
    claims: Claims

    @property
    def user_id(self) -> str:
        return self.claims.sub


async def _enforce_rate_limit(runtime, action: str, subject: str, limit: int) -> int:
    """Count one ``action`` for ``subject``; raises ``RateLimitedError`` (429) when over."""
    return await runtime.rate_limiter.check(
        action, subject, limit, runtime.settings.rate_limit_window_seconds
    )


async def get_user(authorization: Optional[str] = Header(None)) -> Principal:
    runtime = get_runtime()
    token, claims = await runtime.auth.authenticate(authorization)
    return Principal(token=token, claims=claims)


async def get_admin_user(authorization: Optional[str] = Header(None)) -> Principal:
    runtime = get_runtime()
    token, claims = await runtime.auth.authenticate(
        authorization, required_role=UserRole.ADMIN
    )
    return Principal(token=token, claims=claims)


def _token_response(user: User, pair: TokenPair) -> TokenPairResponse:
    return TokenPairResponse(
        user_id=user.id,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
        role=user.role.value,
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Exchange username-or-phone and password for an access/refresh pair.

    Raises:
        401: unknown account or wrong password
        403: account disabled
        429: too many attempts for this account
    """
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime, "login", body.account.strip().lower(), runtime.settings.login_rate_limit
    )
    user, pair = await runtime.auth.login(body.account.strip(), body.password)
    return Envelope(status="ok", data=_token_response(user, pair))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(body: RefreshRequest):
    """Rotate a refresh token. Each refresh token works exactly once."""
    runtime = get_runtime()
    user, pair = await runtime.auth.refresh(body.refresh_token)
    return Envelope(status="ok", data=_token_response(user, pair))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(authorization: Optional[str] = Header(None)):
    runtime = get_runtime()
    await runtime.auth.logout(extract_bearer(authorization))
    return Envelope(status="ok", data={"message": "logged out"})


@router.get("/users/me", response_model=Envelope, tags=["users"])
async def read_me(principal: Principal = Depends(get_user)):
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime, "read_me", principal.user_id, runtime.settings.read_me_rate_limit
    )
    profile = await runtime.users.get_profile(principal.user_id)
    return Envelope(status="ok", data=UserProfileResponse.from_profile(profile))


@router.post("/users/me", response_model=Envelope, tags=["users"])
async def update_me(body: UpdateProfileRequest, principal: Principal = Depends(get_user)):
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime, "update_me", principal.user_id, runtime.settings.update_me_rate_limit
    )
    profile = await runtime.users.update_profile(
        principal.user_id, **body.model_dump(exclude_unset=True)
    )
    return Envelope(status="ok", data=UserProfileResponse.from_profile(profile))


@router.post(
    "/admin/register",
    response_model=Envelope,
    status_code=status.HTTP_201_CREATED,
    tags=["admin"],
)
async def admin_register(
    body: RegisterRequest, principal: Principal = Depends(get_admin_user)
):
    """Create a regular user account. Admin only."""
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime, "register", body.username.lower(), runtime.settings.register_rate_limit
    )
    user = runtime.auth.register(body.username, body.password, body.phone)
    logger.info("admin_registered_user", admin_id=principal.user_id, user_id=user.id)
    return Envelope(status="ok", data={"id": user.id, "username": user.username})
