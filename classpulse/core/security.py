"""
Session & Token Verification

Authentication is done by Firebase Auth on the client. The API only
verifies the ID token it receives and turns it into an explicit Session
that is passed into every core operation; no service reads ambient
request state.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from firebase_admin import auth as firebase_auth

from classpulse.store import RecordStore, RecordNotFoundError
from classpulse.store.firestore import ensure_firebase_app

logger = logging.getLogger(__name__)


# =====================================================
# Roles
# =====================================================
ROLE_STUDENT = "student"
ROLE_INSTRUCTOR = "instructor"
ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class Session:
    """Authenticated caller of a core operation."""
    user_id: str
    role: str = ROLE_STUDENT
    email: Optional[str] = None


class InvalidTokenError(Exception):
    pass


# =====================================================
# Token Verification
# =====================================================
def verify_id_token(token: str) -> Dict[str, Any]:
    """
    Verify a Firebase ID token and return its decoded claims.

    Raises:
        InvalidTokenError: If the token is missing, malformed, expired or revoked
    """
    if not token:
        raise InvalidTokenError("Missing token")

    ensure_firebase_app()
    try:
        return firebase_auth.verify_id_token(token)
    except (
        firebase_auth.InvalidIdTokenError,
        firebase_auth.ExpiredIdTokenError,
        firebase_auth.RevokedIdTokenError,
        firebase_auth.CertificateFetchError,
        ValueError,
    ) as e:
        raise InvalidTokenError(str(e))


async def build_session(claims: Dict[str, Any], store: RecordStore) -> Session:
    """
    Create a Session from verified token claims.

    The role comes from the user's profile document; users without a
    profile yet are treated as students.
    """
    uid = claims.get("uid") or claims.get("user_id") or claims.get("sub")
    if not uid:
        raise InvalidTokenError("Token has no subject")

    role = claims.get("role")
    email = claims.get("email")
    if not role:
        try:
            profile = await store.get("users", uid)
            role = profile.get("role") or ROLE_STUDENT
            email = email or profile.get("email")
        except RecordNotFoundError:
            logger.debug(f"No profile for user {uid}, defaulting role to student")
            role = ROLE_STUDENT

    return Session(user_id=uid, role=role, email=email)
