"""
Provider OAuth Token Service
============================
Authorization-code exchange and token refresh against a provider's token
endpoint, driven by its ProviderConfig.

Key behaviors:
- One POST per call, no retry
- Expiry is taken from an absolute expires_at when the provider sends one
  (Strava), otherwise computed from expires_in
- Withings responses are unwrapped from their {status, body, error} envelope
- Failures are reported through TokenExchangeResult, never raised
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from health_timeline.config import Settings, get_settings
from health_timeline.providers import ProviderConfig

logger = logging.getLogger(__name__)

# Refresh this long before the provider-reported expiry
REFRESH_BUFFER = timedelta(minutes=5)


class TokenExchangeStatus(Enum):
    """Status codes for token endpoint operations."""
    SUCCESS = "success"
    INVALID_GRANT = "invalid_grant"  # code or refresh token rejected, user must reconnect
    INCOMPLETE_TOKEN_DATA = "incomplete_token_data"
    NETWORK_ERROR = "network_error"
    API_ERROR = "api_error"
    CONFIGURATION_ERROR = "configuration_error"


@dataclass
class TokenExchangeResult:
    """Result of a code exchange or a token refresh."""
    provider: str
    status: TokenExchangeStatus
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    provider_user_id: Optional[str] = None
    scope: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

    @property
    def is_success(self) -> bool:
        return self.status == TokenExchangeStatus.SUCCESS

    @property
    def requires_reauthorization(self) -> bool:
        return self.status == TokenExchangeStatus.INVALID_GRANT

    @property
    def reason_code(self) -> str:
        """Short machine-readable reason carried on the callback redirect."""
        if self.status in (TokenExchangeStatus.API_ERROR, TokenExchangeStatus.INVALID_GRANT):
            return self.error_message or "token_exchange_failed"
        return self.status.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with masked tokens for logging."""
        return {
            "provider": self.provider,
            "status": self.status.value,
            "access_token": mask_token(self.access_token),
            "refresh_token": mask_token(self.refresh_token),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "provider_user_id": self.provider_user_id,
            "error_message": self.error_message,
            "timestamp": self.timestamp.isoformat(),
            "requires_reauthorization": self.requires_reauthorization,
        }


def mask_token(token: Optional[str]) -> Optional[str]:
    """Mask token for secure logging: token_*****xyz"""
    if not token or len(token) < 10:
        return "[MASKED]" if token else None
    return f"token_*****{token[-3:]}"


def build_authorization_url(
    provider: ProviderConfig, client_id: str, redirect_uri: str, state: str
) -> str:
    """Build the provider authorization URL the browser is redirected to."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": provider.scope,
        "state": state,
        **provider.extra_authorize_params,
    }
    return f"{provider.authorize_url}?{urlencode(params)}"


def _extract_error_message(data: Any) -> Optional[str]:
    """Pull the human-readable error out of the assorted provider error shapes."""
    if not isinstance(data, dict):
        return None
    errors = data.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        if errors[0].get("message"):
            return str(errors[0]["message"])
    for key in ("error_description", "message", "error"):
        value = data.get(key)
        if value and isinstance(value, str):
            return value
    return None


class OAuthTokenService:
    """
    Talks to one provider's token endpoint.

    The httpx client is injected so the routes can share the app's client
    and tests can swap in a MockTransport.
    """

    # Withings API status codes
    WITHINGS_STATUS_SUCCESS = 0
    WITHINGS_STATUS_INVALID_REFRESH_TOKEN = 26
    WITHINGS_STATUS_INVALID_AUTHORIZATION_CODE = 29

    def __init__(
        self,
        provider: ProviderConfig,
        client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
    ):
        self.provider = provider
        self.client = client
        self.settings = settings or get_settings()

    @property
    def client_id(self) -> str:
        return self.provider.client_id(self.settings)

    @property
    def client_secret(self) -> str:
        return self.provider.client_secret(self.settings)

    def _configuration_error(self) -> Optional[TokenExchangeResult]:
        if not self.client_id:
            missing = self.provider.client_id_setting
        elif not self.client_secret:
            missing = self.provider.client_secret_setting
        else:
            return None
        logger.error(f"[{self.provider.display_name}] {missing} not configured")
        return TokenExchangeResult(
            provider=self.provider.name,
            status=TokenExchangeStatus.CONFIGURATION_ERROR,
            error_message=f"{missing} not configured",
        )

    def get_authorization_url(self, redirect_uri: str, state: str) -> str:
        return build_authorization_url(self.provider, self.client_id, redirect_uri, state)

    async def exchange_authorization_code(
        self, authorization_code: str, redirect_uri: str
    ) -> TokenExchangeResult:
        """
        Exchange an authorization code for access and refresh tokens.

        Args:
            authorization_code: The code received on the callback redirect.
            redirect_uri: Must match the redirect_uri sent on connect.

        Returns:
            TokenExchangeResult with new tokens or error information.
        """
        config_error = self._configuration_error()
        if config_error:
            return config_error

        logger.info(f"[{self.provider.display_name}] Exchanging authorization code for tokens")
        payload = {
            "grant_type": "authorization_code",
            "code": authorization_code,
            "redirect_uri": redirect_uri,
        }
        return await self._post_token_request(payload, require_refresh_token=True)

    async def refresh_token(self, refresh_token: str) -> TokenExchangeResult:
        """
        Refresh an access token.

        Providers that rotate refresh tokens return a new one which must be
        stored; Google usually returns none, in which case the result carries
        the refresh token that was sent.
        """
        config_error = self._configuration_error()
        if config_error:
            return config_error

        logger.info(f"[{self.provider.display_name}] Refreshing access token")
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        result = await self._post_token_request(payload, require_refresh_token=False)
        if result.is_success and not result.refresh_token:
            if self.provider.rotates_refresh_token:
                logger.warning(
                    f"[{self.provider.display_name}] Refresh response carried no new refresh token; keeping the old one"
                )
            result.refresh_token = refresh_token
        return result

    async def _post_token_request(
        self, payload: Dict[str, str], require_refresh_token: bool
    ) -> TokenExchangeResult:
        data = {**self.provider.extra_token_params, **payload, "client_id": self.client_id}
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        auth = None
        if self.provider.token_auth == "basic":
            auth = httpx.BasicAuth(self.client_id, self.client_secret)
        else:
            data["client_secret"] = self.client_secret

        try:
            response = await self.client.post(
                self.provider.token_url, data=data, headers=headers, auth=auth
            )
        except httpx.TimeoutException:
            logger.error(f"[{self.provider.display_name}] Token request timed out")
            return TokenExchangeResult(
                provider=self.provider.name,
                status=TokenExchangeStatus.NETWORK_ERROR,
                error_message="Token request timed out",
            )
        except httpx.HTTPError as e:
            logger.error(f"[{self.provider.display_name}] Network error during token request: {e}")
            return TokenExchangeResult(
                provider=self.provider.name,
                status=TokenExchangeStatus.NETWORK_ERROR,
                error_message=str(e),
            )

        try:
            body = response.json()
        except ValueError:
            logger.error(
                f"[{self.provider.display_name}] Token endpoint returned non-JSON body "
                f"(HTTP {response.status_code})"
            )
            return TokenExchangeResult(
                provider=self.provider.name,
                status=TokenExchangeStatus.API_ERROR,
                error_message=None,
            )

        return self._parse_token_response(response.status_code, body, require_refresh_token)

    def _parse_token_response(
        self, http_status: int, data: Any, require_refresh_token: bool
    ) -> TokenExchangeResult:
        """
        Turn a token endpoint response into a TokenExchangeResult.

        Both HTTP-level and (for Withings) envelope-level failures count.
        """
        name = self.provider.name

        if http_status < 200 or http_status >= 300:
            error_message = _extract_error_message(data)
            logger.error(
                f"[{self.provider.display_name}] Token endpoint returned HTTP {http_status}: {error_message}"
            )
            status = TokenExchangeStatus.API_ERROR
            if isinstance(data, dict) and data.get("error") == "invalid_grant":
                status = TokenExchangeStatus.INVALID_GRANT
            return TokenExchangeResult(provider=name, status=status, error_message=error_message)

        if not isinstance(data, dict):
            return TokenExchangeResult(provider=name, status=TokenExchangeStatus.API_ERROR)

        if self.provider.response_envelope:
            envelope_status = data.get("status", -1)
            if envelope_status in (
                self.WITHINGS_STATUS_INVALID_REFRESH_TOKEN,
                self.WITHINGS_STATUS_INVALID_AUTHORIZATION_CODE,
            ):
                logger.warning(f"[{self.provider.display_name}] Grant rejected (status {envelope_status})")
                return TokenExchangeResult(
                    provider=name,
                    status=TokenExchangeStatus.INVALID_GRANT,
                    error_message=data.get("error") or "invalid_grant",
                )
            if envelope_status != self.WITHINGS_STATUS_SUCCESS or not isinstance(data.get("body"), dict):
                error_message = data.get("error") or f"token_exchange_failed (status {envelope_status})"
                logger.error(f"[{self.provider.display_name}] Token request failed: {error_message}")
                return TokenExchangeResult(
                    provider=name, status=TokenExchangeStatus.API_ERROR, error_message=error_message
                )
            data = data["body"]

        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        expires_at = self._compute_expiry(data)

        if not access_token or expires_at is None or (require_refresh_token and not refresh_token):
            logger.error(
                f"[{self.provider.display_name}] Incomplete token data: "
                f"access_token={bool(access_token)} refresh_token={bool(refresh_token)} "
                f"expiry={expires_at is not None}"
            )
            return TokenExchangeResult(provider=name, status=TokenExchangeStatus.INCOMPLETE_TOKEN_DATA)

        result = TokenExchangeResult(
            provider=name,
            status=TokenExchangeStatus.SUCCESS,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            provider_user_id=self._provider_user_id(data),
            scope=data.get("scope"),
        )
        logger.info(f"[{self.provider.display_name}] Token request successful. Expires at: {expires_at.isoformat()}")
        return result

    @staticmethod
    def _compute_expiry(data: Dict[str, Any]) -> Optional[datetime]:
        expires_at = data.get("expires_at")
        if expires_at:
            try:
                return datetime.fromtimestamp(int(expires_at), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError):
                pass
        expires_in = data.get("expires_in")
        if expires_in:
            try:
                return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
            except (TypeError, ValueError):
                return None
        return None

    @staticmethod
    def _provider_user_id(data: Dict[str, Any]) -> Optional[str]:
        for key in ("user_id", "userid"):
            if data.get(key) not in (None, ""):
                return str(data[key])
        athlete = data.get("athlete")
        if isinstance(athlete, dict) and athlete.get("id") is not None:
            return str(athlete["id"])
        return None


def should_refresh_now(expires_at: datetime, buffer: timedelta = REFRESH_BUFFER) -> bool:
    """True once we are inside the refresh buffer before expiry."""
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) >= expires_at - buffer
