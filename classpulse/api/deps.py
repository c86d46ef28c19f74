import asyncio
import logging
from typing import Optional

from fastapi import HTTPException, Depends, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from classpulse.core.security import (
    ROLE_ADMIN,
    ROLE_INSTRUCTOR,
    InvalidTokenError,
    Session,
    build_session,
    verify_id_token,
)
from classpulse.services.live_updates import LiveUpdatePublisher, get_live_update_publisher
from classpulse.services.websocket_manager import ConnectionManager, get_connection_manager
from classpulse.store import RecordStore, get_record_store

logger = logging.getLogger(__name__)

# Security scheme for Swagger UI
security = HTTPBearer()

STAFF_ROLES = {ROLE_INSTRUCTOR, ROLE_ADMIN}


# =====================================================
# Infrastructure
# =====================================================
def get_store() -> RecordStore:
    """Dependency that provides the configured record store."""
    return get_record_store()


def get_publisher() -> LiveUpdatePublisher:
    return get_live_update_publisher()


def get_ws_manager() -> ConnectionManager:
    return get_connection_manager()


# =====================================================
# Get Current Session
# =====================================================
async def authenticate(token: str, store: RecordStore) -> Session:
    """
    Turn a Firebase ID token into a Session.

    Raises:
        InvalidTokenError: If the token can't be verified
    """
    # verify_id_token may fetch Google's public certificates
    claims = await asyncio.to_thread(verify_id_token, token)
    return await build_session(claims, store)


async def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    store: RecordStore = Depends(get_store),
) -> Session:
    """
    Dependency that validates the Bearer ID token and returns the caller's Session.

    Raises:
        HTTPException 401: If token is invalid or missing
    """
    try:
        return await authenticate(credentials.credentials, store)
    except InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"}
        )


async def get_staff_session(
    session: Session = Depends(get_current_session),
) -> Session:
    """
    Dependency that ensures the caller is an instructor or admin.

    Builds on get_current_session, adds role check.
    """
    if session.role not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Instructor access required"
        )
    return session


# =====================================================
# WebSocket Authentication
# =====================================================
async def get_session_ws(
    token: Optional[str] = Query(None),
    store: RecordStore = Depends(get_store),
) -> Optional[Session]:
    """
    Authenticate a WebSocket client from its `token` query parameter.

    Browsers can't set an Authorization header on the WebSocket
    handshake, so the ID token travels in the query string instead.

    Returns:
        Session if valid, None if invalid (the endpoint closes with 1008)
    """
    try:
        return await authenticate(token or "", store)
    except InvalidTokenError as e:
        logger.warning(f"WebSocket auth failed: {e}")
        return None
