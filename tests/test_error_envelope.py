"""Error envelope mapping: public messages only, operator detail stays in logs."""
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from sessionguard.api.error_handling import register_exception_handlers
from sessionguard.service import errors
from sessionguard.storage.errors import ConstraintViolation, StoreUnavailable


def _app_raising(exc):
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    async def boom():
        raise exc

    return TestClient(app)


@pytest.mark.parametrize(
    "exc,status,code",
    [
        (errors.InvalidTokenError("signature mismatch"), 401, "unauthorized"),
        (errors.TokenRevokedError("revoked"), 401, "unauthorized"),
        (errors.UnknownSubjectError("subject gone"), 401, "unauthorized"),
        (errors.InactiveAccountError("login while inactive"), 403, "forbidden"),
        (errors.InsufficientRoleError("needs admin"), 403, "forbidden"),
        (errors.NotFoundError("no row"), 404, "not_found"),
        (errors.DuplicateIdentityError("dup"), 409, "conflict"),
        (errors.TokenReusedError("reuse"), 409, "conflict"),
        (errors.ServerError("redis timeout at 10.0.0.5"), 500, "server_error"),
    ],
)
def test_service_errors_map_to_status_and_code(exc, status, code):
    response = _app_raising(exc).get("/boom")

    assert response.status_code == status
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == code
    assert body["error"]["message"] == exc.public_message
    assert exc.message not in body["error"]["message"]


def test_authentication_failures_share_one_message():
    messages = {
        cls.public_message
        for cls in (
            errors.AuthenticationError,
            errors.InvalidTokenError,
            errors.TokenRevokedError,
            errors.UnknownSubjectError,
            errors.TokenReusedError,
        )
    }
    assert messages == {"invalid session, please re-authenticate"}


def test_rate_limited_sets_retry_after():
    exc = errors.RateLimitedError("too many", detail={"retry_after": 60, "action": "login"})
    response = _app_raising(exc).get("/boom")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
    assert response.json()["error"]["details"] == {"retry_after": 60}


def test_reuse_logged_as_distinct_type():
    with patch("sessionguard.api.error_handling.logger") as mock_logger:
        _app_raising(errors.TokenReusedError("reuse", detail={"user_id": "u1"})).get("/boom")

    kwargs = mock_logger.warning.call_args[1]
    assert kwargs["error_type"] == "TokenReusedError"
    assert kwargs["detail"] == {"user_id": "u1"}


def test_storage_errors_are_generic():
    conflict = _app_raising(ConstraintViolation("users_username_key", {"field": "username"}))
    outage = _app_raising(StoreUnavailable("get", ConnectionError("10.0.0.5:6379 refused")))

    conflict_body = conflict.get("/boom").json()
    outage_response = outage.get("/boom")
    assert conflict_body["error"]["code"] == "conflict"
    assert "users_username_key" not in conflict_body["error"]["message"]
    assert outage_response.status_code == 500
    assert "10.0.0.5" not in outage_response.text
