"""
Provider token persistence.

One encrypted record per user per provider. Saving always overwrites, so
simultaneous connects for the same user resolve as last write wins.
"""

import logging
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from health_timeline.encryption import decrypt_token, encrypt_token
from health_timeline.models import ProviderToken, User
from health_timeline.providers import ProviderConfig
from health_timeline.services import profiles
from health_timeline.services.token_service import (
    OAuthTokenService,
    TokenExchangeResult,
    should_refresh_now,
)

logger = logging.getLogger(__name__)


async def get_token_record(db: AsyncSession, user_id: str, provider: ProviderConfig) -> Optional[ProviderToken]:
    result = await db.execute(
        select(ProviderToken).where(
            ProviderToken.user_id == user_id,
            ProviderToken.provider == provider.name,
        )
    )
    return result.scalar_one_or_none()


async def save_tokens(
    db: AsyncSession,
    user_id: str,
    provider: ProviderConfig,
    result: TokenExchangeResult,
    mark_connected: bool = True,
) -> ProviderToken:
    """
    Persist a successful token result and mark the provider connected.

    Raises:
        ProfileNotFoundError: no profile for user_id
        EncryptionError: ENCRYPTION_KEY missing or invalid
    """
    user = await profiles.get_user(db, user_id)
    expires_at = result.expires_at.replace(tzinfo=None) if result.expires_at else None

    token = await get_token_record(db, user_id, provider)
    if token:
        token.access_token_encrypted = encrypt_token(result.access_token)
        if result.refresh_token:
            token.refresh_token_encrypted = encrypt_token(result.refresh_token)
        token.expires_at = expires_at
        if result.provider_user_id:
            token.provider_user_id = result.provider_user_id
        if result.scope:
            token.scope = result.scope
    else:
        token = ProviderToken(
            user_id=user_id,
            provider=provider.name,
            provider_user_id=result.provider_user_id,
            access_token_encrypted=encrypt_token(result.access_token),
            refresh_token_encrypted=encrypt_token(result.refresh_token or ""),
            scope=result.scope,
            expires_at=expires_at,
        )
        db.add(token)

    if mark_connected:
        profiles.add_connection(user, provider)

    await db.commit()
    logger.info(f"[{provider.display_name}] Tokens stored for user {user_id}. Expires at: {expires_at}")
    return token


async def clear_tokens(db: AsyncSession, user_id: str, provider: ProviderConfig) -> bool:
    """Delete the token record and the connection entry. Returns whether anything was removed."""
    removed = False
    token = await get_token_record(db, user_id, provider)
    if token is not None:
        await db.delete(token)
        removed = True

    user = await db.get(User, user_id)
    if user is not None and profiles.remove_connection(user, provider):
        removed = True

    await db.commit()
    if removed:
        logger.info(f"[{provider.display_name}] Disconnected for user {user_id}")
    return removed


async def refresh_stored_token(
    db: AsyncSession,
    user_id: str,
    provider: ProviderConfig,
    client: httpx.AsyncClient,
    token: Optional[ProviderToken] = None,
) -> Optional[TokenExchangeResult]:
    """
    Refresh the stored token now. Returns None when nothing is stored.

    A rejected grant disconnects the provider; the user has to go through
    connect again.
    """
    token = token or await get_token_record(db, user_id, provider)
    if token is None:
        return None

    service = OAuthTokenService(provider, client)
    result = await service.refresh_token(decrypt_token(token.refresh_token_encrypted))

    if result.is_success:
        await save_tokens(db, user_id, provider, result, mark_connected=False)
        logger.info(f"[{provider.display_name}] Token refreshed for user {user_id}")
    elif result.requires_reauthorization:
        logger.warning(
            f"[{provider.display_name}] Refresh token rejected for user {user_id}; clearing connection"
        )
        await clear_tokens(db, user_id, provider)
    else:
        logger.error(f"[{provider.display_name}] Token refresh failed for user {user_id}: {result.error_message}")
    return result


async def get_valid_access_token(
    db: AsyncSession,
    user_id: str,
    provider: ProviderConfig,
    client: httpx.AsyncClient,
) -> Optional[str]:
    """
    Return a usable access token, refreshing first when it is about to expire.

    Returns None when the provider is not connected or the refresh failed.
    """
    token = await get_token_record(db, user_id, provider)
    if token is None:
        logger.info(f"[{provider.display_name}] No tokens stored for user {user_id}")
        return None

    if should_refresh_now(token.expires_at):
        logger.info(f"[{provider.display_name}] Access token expired or nearing expiry for user {user_id}")
        result = await refresh_stored_token(db, user_id, provider, client, token=token)
        if result is None or not result.is_success:
            return None
        return result.access_token

    return decrypt_token(token.access_token_encrypted)
