"""Unit tests for token verification and session building."""

from unittest.mock import patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from classpulse.api.deps import get_current_session, get_session_ws, get_staff_session
from classpulse.core.security import (
    ROLE_ADMIN,
    ROLE_INSTRUCTOR,
    ROLE_STUDENT,
    InvalidTokenError,
    Session,
    build_session,
    verify_id_token,
)
from tests.helpers import seed

pytestmark = pytest.mark.unit


@pytest.fixture
def firebase():
    with patch("classpulse.core.security.ensure_firebase_app"), \
            patch("classpulse.core.security.firebase_auth.verify_id_token") as verify:
        yield verify


class TestVerifyIdToken:

    def test_returns_claims(self, firebase):
        firebase.return_value = {"uid": "u1"}

        assert verify_id_token("good-token") == {"uid": "u1"}
        firebase.assert_called_once_with("good-token")

    def test_missing_token(self, firebase):
        with pytest.raises(InvalidTokenError):
            verify_id_token("")
        firebase.assert_not_called()

    def test_rejected_token(self, firebase):
        firebase.side_effect = ValueError("malformed")

        with pytest.raises(InvalidTokenError, match="malformed"):
            verify_id_token("junk")


class TestBuildSession:

    @pytest.mark.asyncio
    async def test_role_from_profile(self, store):
        await seed(store, "users", "t1", role=ROLE_INSTRUCTOR, email="grace@example.edu")

        session = await build_session({"uid": "t1"}, store)

        assert session == Session(user_id="t1", role=ROLE_INSTRUCTOR, email="grace@example.edu")

    @pytest.mark.asyncio
    async def test_claim_role_wins(self, store):
        session = await build_session({"uid": "a1", "role": ROLE_ADMIN}, store)

        assert session.role == ROLE_ADMIN

    @pytest.mark.asyncio
    async def test_missing_profile_defaults_to_student(self, store):
        session = await build_session({"uid": "new-user", "email": "new@example.edu"}, store)

        assert session.role == ROLE_STUDENT
        assert session.email == "new@example.edu"

    @pytest.mark.asyncio
    async def test_claims_without_subject(self, store):
        with pytest.raises(InvalidTokenError):
            await build_session({"email": "x@example.edu"}, store)


class TestDependencies:

    @pytest.mark.asyncio
    async def test_invalid_bearer_is_401(self, store, firebase):
        firebase.side_effect = ValueError("expired")
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="stale")

        with pytest.raises(HTTPException) as exc_info:
            await get_current_session(credentials, store)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_valid_bearer(self, store, firebase):
        firebase.return_value = {"uid": "student-1"}
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="fresh")

        session = await get_current_session(credentials, store)

        assert session.user_id == "student-1"

    @pytest.mark.asyncio
    async def test_staff_check(self, student, instructor):
        assert await get_staff_session(instructor) is instructor

        with pytest.raises(HTTPException) as exc_info:
            await get_staff_session(student)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_websocket_without_token(self, store, firebase):
        assert await get_session_ws(None, store) is None
