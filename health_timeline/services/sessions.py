"""Session cookie and password hashing utilities.

The `__session` cookie holds a JWT whose `sub` claim is the user id. It is
signed with SESSION_SECRET and lives for five days.

Password reset codes are JWTs too, valid for one hour. They carry a
fingerprint of the password hash they were issued against, so a code stops
working once the password changes.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import JWTError, jwt
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "__session"
SESSION_MAX_AGE_SECONDS = 60 * 60 * 24 * 5
RESET_CODE_MAX_AGE_SECONDS = 60 * 60
RESET_PURPOSE = "password_reset"
ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class SessionError(ValueError):
    """Raised when a session token cannot be trusted."""


def create_session_token(user_id: str, secret: str) -> str:
    """Create a signed session token for a user.

    Args:
        user_id: User ID to encode in the `sub` claim
        secret: SESSION_SECRET

    Returns:
        JWT string
    """
    if not user_id:
        raise ValueError("user_id cannot be empty")
    if not secret:
        raise SessionError("SESSION_SECRET not configured")

    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(seconds=SESSION_MAX_AGE_SECONDS),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_session_token(token: str, secret: str) -> str:
    """Verify a session token and return the user id.

    Raises:
        SessionError: If the token is invalid, expired or has no subject
    """
    if not secret:
        raise SessionError("SESSION_SECRET not configured")
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Session token rejected: {e}")
        raise SessionError("Invalid or expired session") from e

    if payload.get("purpose"):
        raise SessionError("Not a session token")
    user_id = payload.get("sub")
    if not user_id:
        raise SessionError("Session token missing user id")
    return str(user_id)


def user_id_from_cookie(cookie_value: Optional[str], secret: str) -> Optional[str]:
    if not cookie_value:
        return None
    try:
        return decode_session_token(cookie_value, secret)
    except SessionError:
        return None


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _password_fingerprint(password_hash: str) -> str:
    return hashlib.sha256(password_hash.encode()).hexdigest()[:16]


def create_password_reset_code(user_id: str, password_hash: str, secret: str) -> str:
    if not secret:
        raise SessionError("SESSION_SECRET not configured")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "purpose": RESET_PURPOSE,
        "pwd": _password_fingerprint(password_hash),
        "iat": now,
        "exp": now + timedelta(seconds=RESET_CODE_MAX_AGE_SECONDS),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_password_reset_code(code: str, secret: str) -> Tuple[str, str]:
    """Return (user_id, password fingerprint) from a reset code.

    Raises:
        SessionError: If the code is invalid, expired or not a reset code
    """
    if not secret:
        raise SessionError("SESSION_SECRET not configured")
    try:
        payload = jwt.decode(code, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Password reset code rejected: {e}")
        raise SessionError("Invalid or expired reset code") from e

    if payload.get("purpose") != RESET_PURPOSE or not payload.get("sub") or not payload.get("pwd"):
        raise SessionError("Not a password reset code")
    return str(payload["sub"]), payload["pwd"]


def reset_code_matches(fingerprint: str, password_hash: str) -> bool:
    return hmac.compare_digest(fingerprint.encode(), _password_fingerprint(password_hash).encode())
