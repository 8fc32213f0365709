from functools import lru_cache
from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    FITBIT_CLIENT_ID: str = ""
    FITBIT_CLIENT_SECRET: str = ""
    STRAVA_CLIENT_ID: str = ""
    STRAVA_CLIENT_SECRET: str = ""
    GOOGLE_FIT_CLIENT_ID: str = ""
    GOOGLE_FIT_CLIENT_SECRET: str = ""
    WITHINGS_CLIENT_ID: str = ""
    WITHINGS_CLIENT_SECRET: str = ""

    # Public base URL; derived from the request headers when empty
    APP_URL: str = Field(
        default="",
        validation_alias=AliasChoices("APP_URL", "NEXT_PUBLIC_APP_URL"),
    )
    OAUTH_STATE_SECRET: str = ""
    SESSION_SECRET: str = ""
    ENCRYPTION_KEY: str = ""

    DATABASE_URL: str = "sqlite+aiosqlite:///./health_timeline.db"
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"
    HTTP_TIMEOUT_SECONDS: float = 30.0
    CORS_ORIGINS: List[str] = ["*"]

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
