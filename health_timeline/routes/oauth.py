"""
Provider OAuth Routes
=====================
A single connect/callback pair serving every provider in the registry.

    GET /api/auth/{provider}/connect
    GET /api/auth/{provider}/callback

Callback failures never surface as error pages: the browser is always
redirected back to the profile page with an error reason.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from health_timeline.config import Settings, get_settings
from health_timeline.database import get_db
from health_timeline.dependencies import get_http_client, get_optional_user_id
from health_timeline.encryption import EncryptionError
from health_timeline.providers import ProviderConfig, get_provider
from health_timeline.services import token_store
from health_timeline.services.oauth_state import (
    STATE_MAX_AGE_SECONDS,
    generate_state,
    sign_state,
    verify_state,
)
from health_timeline.services.profiles import ProfileNotFoundError
from health_timeline.services.token_service import OAuthTokenService, build_authorization_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["oauth"])

PROFILE_PATH = "/profile"


def resolve_app_url(request: Request, settings: Settings) -> Optional[str]:
    """Configured APP_URL, or the public origin seen through the proxy headers."""
    if settings.APP_URL:
        return settings.APP_URL.rstrip("/")
    host = request.headers.get("host")
    if not host:
        return None
    protocol = request.headers.get("x-forwarded-proto") or request.url.scheme
    return f"{protocol}://{host}"


def _profile_redirect(app_url: str, provider: ProviderConfig, **params: str) -> RedirectResponse:
    query = urlencode({"provider": provider.name, **params})
    return RedirectResponse(f"{app_url}{PROFILE_PATH}?{query}", status_code=307)


def _fail(app_url: str, provider: ProviderConfig, reason: str) -> RedirectResponse:
    return _profile_redirect(app_url, provider, error=reason)


@router.get("/{provider_name}/connect")
async def connect(
    provider_name: str,
    request: Request,
    settings: Settings = Depends(get_settings),
):
    """Start the OAuth flow: set the state cookie and send the browser to the provider."""
    provider = get_provider(provider_name)
    client_id = provider.client_id(settings)
    app_url = resolve_app_url(request, settings)

    if not client_id or not settings.OAUTH_STATE_SECRET or not app_url:
        logger.error(
            f"[{provider.display_name} Connect] OAuth configuration is missing. Required: "
            f"{provider.client_id_setting}, OAUTH_STATE_SECRET and APP_URL or a host header."
        )
        return JSONResponse(
            status_code=500,
            content={"error": f"Server configuration error for {provider.display_name} OAuth."},
        )

    state = generate_state()
    redirect_uri = f"{app_url}{provider.callback_path}"
    authorization_url = build_authorization_url(provider, client_id, redirect_uri, state)

    logger.info(f"[{provider.display_name} Connect] Redirecting to provider for authorization")
    response = RedirectResponse(authorization_url, status_code=307)
    response.set_cookie(
        provider.state_cookie_name,
        sign_state(state, provider.name, settings.OAUTH_STATE_SECRET),
        max_age=STATE_MAX_AGE_SECONDS,
        httponly=True,
        secure=not settings.is_development,
        samesite="lax",
        path="/",
    )
    return response


@router.get("/{provider_name}/callback")
async def callback(
    provider_name: str,
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Finish the OAuth flow. The state cookie is consumed whatever the outcome."""
    provider = get_provider(provider_name)
    app_url = resolve_app_url(request, settings) or str(request.base_url).rstrip("/")
    stored_state = request.cookies.get(provider.state_cookie_name)

    try:
        response = await _handle_callback(
            provider, app_url, code, state, error, stored_state, settings, user_id, db, client
        )
    except Exception:
        logger.exception(f"[{provider.display_name} Callback] Unexpected error")
        response = _fail(app_url, provider, "unexpected_error")

    response.delete_cookie(
        provider.state_cookie_name,
        path="/",
        httponly=True,
        secure=not settings.is_development,
        samesite="lax",
    )
    return response


async def _handle_callback(
    provider: ProviderConfig,
    app_url: str,
    code: Optional[str],
    state: Optional[str],
    error: Optional[str],
    stored_state: Optional[str],
    settings: Settings,
    user_id: Optional[str],
    db: AsyncSession,
    client: httpx.AsyncClient,
) -> RedirectResponse:
    tag = f"[{provider.display_name} Callback]"

    if error:
        logger.warning(f"{tag} Error from provider: {error}")
        return _fail(app_url, provider, error)

    if not verify_state(stored_state, state, provider.name, settings.OAUTH_STATE_SECRET):
        logger.warning(f"{tag} Invalid OAuth state (cookie present: {bool(stored_state)})")
        return _fail(app_url, provider, "invalid_state")

    if not code:
        logger.warning(f"{tag} No authorization code received")
        return _fail(app_url, provider, "missing_code")

    if not provider.is_configured(settings):
        logger.error(f"{tag} {provider.client_id_setting} or {provider.client_secret_setting} is not configured")
        return _fail(app_url, provider, "server_config_error")

    if not user_id:
        logger.warning(f"{tag} No authenticated session")
        return _fail(app_url, provider, "auth_required")

    service = OAuthTokenService(provider, client, settings=settings)
    result = await service.exchange_authorization_code(code, f"{app_url}{provider.callback_path}")
    if not result.is_success:
        logger.error(f"{tag} Token exchange failed: {result.to_dict()}")
        return _fail(app_url, provider, result.reason_code)

    try:
        await token_store.save_tokens(db, user_id, provider, result)
    except ProfileNotFoundError:
        logger.error(f"{tag} User profile not found for user {user_id}")
        await db.rollback()
        return _fail(app_url, provider, "profile_not_found")
    except (EncryptionError, SQLAlchemyError) as e:
        logger.error(f"{tag} Failed to store tokens for user {user_id}: {e}")
        await db.rollback()
        return _fail(app_url, provider, "token_storage_failed")

    logger.info(f"{tag} {provider.display_name} connected for user {user_id}")
    return _profile_redirect(app_url, provider, connected="true")
