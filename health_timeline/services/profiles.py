import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from health_timeline.models import User, utcnow
from health_timeline.providers import ProviderConfig
from health_timeline.services.sessions import hash_password

logger = logging.getLogger(__name__)

PASSWORD_MAX_AGE = timedelta(days=90)


class ProfileNotFoundError(LookupError):
    """Raised when a user id has no profile record."""


class EmailAlreadyRegisteredError(ValueError):
    pass


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise ProfileNotFoundError(f"User profile not found: {user_id}")
    return user


async def find_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(func.lower(User.email) == normalize_email(email)))
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession, email: str, password: str, subscription_tier: str = "free"
) -> User:
    if await find_user_by_email(db, email) is not None:
        raise EmailAlreadyRegisteredError(email)

    now = utcnow()
    user = User(
        id=uuid.uuid4().hex,
        email=normalize_email(email),
        password_hash=hash_password(password),
        subscription_tier=subscription_tier,
        last_password_change_date=now,
        accepted_latest_terms=False,
        connected_fitness_apps=[],
        radar_goals={},
        dashboard_radar_metrics=[],
    )
    db.add(user)
    await db.commit()
    logger.info(f"Created profile for user {user.id}")
    return user


def password_expired(user: User, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return now - user.last_password_change_date > PASSWORD_MAX_AGE


async def change_password(db: AsyncSession, user: User, new_password: str) -> None:
    user.password_hash = hash_password(new_password)
    user.last_password_change_date = utcnow()
    await db.commit()
    logger.info(f"Password changed for user {user.id}")


def add_connection(user: User, provider: ProviderConfig) -> None:
    """Record the provider as connected, replacing any earlier entry for it."""
    others = [conn for conn in (user.connected_fitness_apps or []) if conn.get("id") != provider.name]
    others.append({
        "id": provider.name,
        "name": provider.display_name,
        "connected_at": utcnow().isoformat(),
    })
    # reassign so the JSON column is flagged dirty
    user.connected_fitness_apps = others


def remove_connection(user: User, provider: ProviderConfig) -> bool:
    current = user.connected_fitness_apps or []
    remaining = [conn for conn in current if conn.get("id") != provider.name]
    user.connected_fitness_apps = remaining
    return len(remaining) != len(current)


def get_connection(user: User, provider_name: str) -> Optional[Dict[str, Any]]:
    for conn in user.connected_fitness_apps or []:
        if conn.get("id") == provider_name:
            return conn
    return None


async def update_demographics(db: AsyncSession, user: User, values: Dict[str, Any]) -> User:
    for field, value in values.items():
        setattr(user, field, value)
    await db.commit()
    logger.info(f"Demographics updated for user {user.id}")
    return user


async def update_terms_acceptance(db: AsyncSession, user: User, accepted: bool, version: str) -> User:
    user.accepted_latest_terms = accepted
    user.terms_version_accepted = version
    await db.commit()
    return user


async def update_radar_goals(db: AsyncSession, user: User, kind: str, goals: Dict[str, Any]) -> User:
    updated = dict(user.radar_goals or {})
    updated[kind] = {k: v for k, v in goals.items() if v is not None}
    user.radar_goals = updated
    await db.commit()
    logger.info(f"{kind.capitalize()} radar goals updated for user {user.id}")
    return user


async def update_dashboard_metrics(db: AsyncSession, user: User, metric_ids: List[str]) -> User:
    user.dashboard_radar_metrics = list(dict.fromkeys(metric_ids))
    await db.commit()
    return user
