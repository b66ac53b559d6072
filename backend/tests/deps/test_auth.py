from datetime import timedelta
from typing import Any

import jwt
import pytest
from fastapi import HTTPException
from slotshare.config import Settings, get_settings
from slotshare.deps import get_current_admin_id, get_current_user_id
from slotshare.models import UserRole
from slotshare.utils.auth import TokenError, create_access_token, decode_access_token, parse_bearer
from sqlalchemy.exc import ProgrammingError


class DummySession:
    def __init__(self, result: Any) -> None:
        self.result = result
        self.rollbacks = 0

    async def __aenter__(self) -> "DummySession":  # pragma: no cover
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:  # pragma: no cover
        return False

    async def scalar(self, *args: Any, **kwargs: Any) -> Any:
        if isinstance(self.result, Exception):
            raise self.result
        return self.result

    async def rollback(self) -> None:
        self.rollbacks += 1


@pytest.fixture(autouse=True)
def _set_auth_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SECRET", "testsecret")
    get_settings.cache_clear()


def _token(user_id: int = 123, **kwargs: Any) -> str:
    settings = Settings(auth_secret="testsecret")
    return create_access_token(user_id=user_id, secret=settings.auth_secret, algorithm=settings.auth_algorithm, **kwargs)


@pytest.mark.asyncio
async def test_get_current_user_id_accepts_valid_token() -> None:
    session = DummySession(123)
    result = await get_current_user_id(authorization=f"Bearer {_token()}", session=session)  # type: ignore[arg-type]
    assert result == 123
    assert session.rollbacks == 1


@pytest.mark.asyncio
async def test_get_current_user_id_rejects_missing_header() -> None:
    session = DummySession(123)
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(authorization=None, session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_user_id_rejects_expired_token() -> None:
    token = _token(expires_delta=timedelta(seconds=-1))
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(authorization=f"Bearer {token}", session=DummySession(1))  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_user_id_rejects_when_user_missing() -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(authorization=f"Bearer {_token(99)}", session=DummySession(None))  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_user_id_handles_missing_users_table() -> None:
    session = DummySession(ProgrammingError("missing", None, Exception("cause")))
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(authorization=f"Bearer {_token(1)}", session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 500
    assert session.rollbacks == 1


@pytest.mark.asyncio
async def test_get_current_admin_id_checks_role() -> None:
    assert await get_current_admin_id(user_id=5, session=DummySession(UserRole.ADMIN)) == 5  # type: ignore[arg-type]
    with pytest.raises(HTTPException) as excinfo:
        await get_current_admin_id(user_id=5, session=DummySession(UserRole.USER))  # type: ignore[arg-type]
    assert excinfo.value.status_code == 403


def test_decode_rejects_non_numeric_subject() -> None:
    token = jwt.encode({"sub": "alice", "exp": 9999999999}, "testsecret", algorithm="HS256")
    with pytest.raises(TokenError):
        decode_access_token(token, secret="testsecret", algorithms=["HS256"])


def test_decode_rejects_token_without_expiry() -> None:
    token = jwt.encode({"sub": "5"}, "testsecret", algorithm="HS256")
    with pytest.raises(TokenError):
        decode_access_token(token, secret="testsecret", algorithms=["HS256"])


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("Bearer abc", "abc"),
        ("bearer  abc ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_bearer(header: str | None, expected: str | None) -> None:
    assert parse_bearer(header) == expected
