"""
Connection Routes
=================
Per-user view of provider connections and their tokens.

    GET    /api/connections
    POST   /api/connections/{provider}/refresh
    DELETE /api/connections/{provider}
"""

import logging
from datetime import datetime, timezone
from typing import List

import httpx
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from health_timeline.config import Settings, get_settings
from health_timeline.database import get_db
from health_timeline.dependencies import get_current_user, get_http_client
from health_timeline.models import User
from health_timeline.providers import PROVIDERS, get_provider
from health_timeline.schemas import ConnectionStatus, TokenRefreshResponse
from health_timeline.services import profiles, token_store
from health_timeline.services.token_service import mask_token, should_refresh_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/connections", tags=["connections"])


@router.get("", response_model=List[ConnectionStatus])
async def list_connections(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Connection and token status for every supported provider."""
    statuses = []
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    for provider in PROVIDERS.values():
        token = await token_store.get_token_record(db, user.id, provider)
        connection = profiles.get_connection(user, provider.name)
        status = ConnectionStatus(
            provider=provider.name,
            display_name=provider.display_name,
            configured=provider.is_configured(settings),
            connected=token is not None,
            connected_at=connection.get("connected_at") if connection else None,
            connect_url=provider.connect_path,
        )
        if token is not None:
            status.expires_at = token.expires_at.isoformat()
            status.expires_in_hours = round((token.expires_at - now).total_seconds() / 3600, 2)
            status.should_refresh = should_refresh_now(token.expires_at)
        statuses.append(status)
    return statuses


@router.post("/{provider_name}/refresh", response_model=TokenRefreshResponse)
async def refresh_connection(
    provider_name: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Force a token refresh for one provider."""
    provider = get_provider(provider_name)
    logger.info(f"[{provider.display_name}] Manual token refresh requested by user {user.id}")

    result = await token_store.refresh_stored_token(db, user.id, provider, client)
    if result is None:
        raise HTTPException(status_code=404, detail=f"{provider.display_name} is not connected")

    response = TokenRefreshResponse(
        success=result.is_success,
        status=result.status.value,
        message="",
        requires_reconnect=result.requires_reauthorization,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    if not result.is_success:
        if result.requires_reauthorization:
            response.message = (
                f"{provider.display_name} rejected the refresh token. "
                f"Reconnect at {provider.connect_path}"
            )
        else:
            response.message = f"Token refresh failed: {result.error_message or result.status.value}"
        return response

    response.access_token_masked = mask_token(result.access_token)
    response.refresh_token_masked = mask_token(result.refresh_token)
    response.expires_at = result.expires_at.isoformat() if result.expires_at else None
    response.message = "Token refresh completed successfully"
    return response


@router.delete("/{provider_name}", status_code=204)
async def disconnect(
    provider_name: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    provider = get_provider(provider_name)
    if not await token_store.clear_tokens(db, user.id, provider):
        raise HTTPException(status_code=404, detail=f"{provider.display_name} is not connected")
    return Response(status_code=204)
