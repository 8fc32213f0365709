"""
Provider Registry
=================
One configuration record per third-party provider. The connect/callback
routes, the token service and the token store are all keyed by these
records instead of carrying per-provider code paths.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from fastapi import HTTPException

from health_timeline.config import Settings


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    display_name: str
    authorize_url: str
    token_url: str
    scopes: Tuple[str, ...]
    client_id_setting: str
    client_secret_setting: str
    scope_separator: str = " "
    extra_authorize_params: Dict[str, str] = field(default_factory=dict)
    # "basic" sends client credentials as an HTTP Basic header, "body" as form fields
    token_auth: str = "body"
    extra_token_params: Dict[str, str] = field(default_factory=dict)
    # Withings wraps every response as {"status": 0, "body": {...}, "error": "..."}
    response_envelope: bool = False
    # Google does not always return a new refresh token on refresh
    rotates_refresh_token: bool = True

    @property
    def state_cookie_name(self) -> str:
        return f"{self.name}_oauth_state"

    @property
    def callback_path(self) -> str:
        return f"/api/auth/{self.name}/callback"

    @property
    def connect_path(self) -> str:
        return f"/api/auth/{self.name}/connect"

    @property
    def scope(self) -> str:
        return self.scope_separator.join(self.scopes)

    def client_id(self, settings: Settings) -> str:
        return getattr(settings, self.client_id_setting, "")

    def client_secret(self, settings: Settings) -> str:
        return getattr(settings, self.client_secret_setting, "")

    def is_configured(self, settings: Settings) -> bool:
        return bool(self.client_id(settings) and self.client_secret(settings))


FITBIT = ProviderConfig(
    name="fitbit",
    display_name="Fitbit",
    authorize_url="https://www.fitbit.com/oauth2/authorize",
    token_url="https://api.fitbit.com/oauth2/token",
    scopes=(
        "activity", "heartrate", "location", "nutrition",
        "profile", "settings", "sleep", "social", "weight",
    ),
    client_id_setting="FITBIT_CLIENT_ID",
    client_secret_setting="FITBIT_CLIENT_SECRET",
    token_auth="basic",
)

STRAVA = ProviderConfig(
    name="strava",
    display_name="Strava",
    authorize_url="https://www.strava.com/oauth/authorize",
    token_url="https://www.strava.com/oauth/token",
    scopes=("read", "activity:read_all"),
    scope_separator=",",
    client_id_setting="STRAVA_CLIENT_ID",
    client_secret_setting="STRAVA_CLIENT_SECRET",
    extra_authorize_params={"approval_prompt": "auto"},
)

GOOGLE_FIT = ProviderConfig(
    name="googlefit",
    display_name="Google Fit",
    authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
    token_url="https://oauth2.googleapis.com/token",
    scopes=(
        "https://www.googleapis.com/auth/fitness.activity.read",
        "https://www.googleapis.com/auth/fitness.location.read",
        "https://www.googleapis.com/auth/fitness.body.read",
        "https://www.googleapis.com/auth/fitness.heart_rate.read",
    ),
    client_id_setting="GOOGLE_FIT_CLIENT_ID",
    client_secret_setting="GOOGLE_FIT_CLIENT_SECRET",
    # offline + consent is what makes Google hand out a refresh token
    extra_authorize_params={"access_type": "offline", "prompt": "consent"},
    rotates_refresh_token=False,
)

WITHINGS = ProviderConfig(
    name="withings",
    display_name="Withings",
    authorize_url="https://account.withings.com/oauth2_user/authorize2",
    token_url="https://wbsapi.withings.net/v2/oauth2",
    scopes=("user.info", "user.metrics", "user.activity"),
    scope_separator=",",
    client_id_setting="WITHINGS_CLIENT_ID",
    client_secret_setting="WITHINGS_CLIENT_SECRET",
    extra_token_params={"action": "requesttoken"},
    response_envelope=True,
)

PROVIDERS: Dict[str, ProviderConfig] = {
    provider.name: provider for provider in (FITBIT, STRAVA, GOOGLE_FIT, WITHINGS)
}


def find_provider(name: str) -> Optional[ProviderConfig]:
    return PROVIDERS.get(name.lower())


def get_provider(name: str) -> ProviderConfig:
    """Route-level lookup: unknown provider names are a 404."""
    provider = find_provider(name)
    if provider is None:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {name}")
    return provider
