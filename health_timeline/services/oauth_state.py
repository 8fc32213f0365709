"""
OAuth state cookie signing.

The cookie value is a short-lived JWT carrying the random state and the
provider it was issued for, signed with OAUTH_STATE_SECRET. Nothing about a
pending connect lives server-side.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

logger = logging.getLogger(__name__)

STATE_MAX_AGE_SECONDS = 60 * 10
ALGORITHM = "HS256"


def generate_state() -> str:
    return secrets.token_hex(16)


def sign_state(state: str, provider: str, secret: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "state": state,
        "provider": provider,
        "iat": now,
        "exp": now + timedelta(seconds=STATE_MAX_AGE_SECONDS),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def verify_state(
    cookie_value: Optional[str],
    received_state: Optional[str],
    provider: str,
    secret: str,
) -> bool:
    """Check the state echoed back by the provider against the signed cookie."""
    if not cookie_value or not received_state or not secret:
        return False
    try:
        payload = jwt.decode(cookie_value, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"[{provider}] OAuth state cookie rejected: {e}")
        return False

    if payload.get("provider") != provider:
        logger.warning(f"[{provider}] OAuth state cookie was issued for {payload.get('provider')}")
        return False

    stored_state = payload.get("state")
    if not isinstance(stored_state, str):
        return False
    return secrets.compare_digest(stored_state.encode(), received_state.encode())
