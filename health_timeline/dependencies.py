from typing import AsyncIterator, Optional

import httpx
from fastapi import Cookie, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from health_timeline.config import Settings, get_settings
from health_timeline.database import get_db
from health_timeline.models import User
from health_timeline.services.sessions import SESSION_COOKIE_NAME, user_id_from_cookie


async def get_http_client(settings: Settings = Depends(get_settings)) -> AsyncIterator[httpx.AsyncClient]:
    """Outbound client for provider token endpoints."""
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        yield client


def get_optional_user_id(
    session_cookie: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    return user_id_from_cookie(session_cookie, settings.SESSION_SECRET)


def get_current_user_id(user_id: Optional[str] = Depends(get_optional_user_id)) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User profile not found")
    return user
