import re
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

SubscriptionTier = Literal["free", "silver", "gold", "platinum"]

_NAME_PATTERN = re.compile(r"^[a-zA-Z\s'-]+$")
_PHONE_PATTERN = re.compile(r"^$|^\d{3}-\d{3}-\d{4}$")
MINIMUM_AGE_YEARS = 18


class ActivityType(str, Enum):
    WALKING = "walking"
    RUNNING = "running"
    HIKING = "hiking"
    SWIMMING = "swimming"
    CYCLING = "cycling"
    WORKOUT = "workout"
    OTHER = "other"


def validate_password_policy(password: str) -> str:
    if len(password) < 8:
        raise ValueError("Password must be at least 8 characters long.")
    if not re.search(r"[A-Z]", password):
        raise ValueError("Password must contain at least one uppercase letter.")
    if not re.search(r"[0-9]", password):
        raise ValueError("Password must contain at least one number.")
    if not re.search(r"[^A-Za-z0-9]", password):
        raise ValueError("Password must contain at least one special character.")
    return password


# -------------------------------------------------------------------------
# Session
# -------------------------------------------------------------------------
class EmailCheckRequest(BaseModel):
    email: EmailStr


class SignupRequest(BaseModel):
    email: EmailStr
    password: str
    subscription_tier: SubscriptionTier = "free"

    @field_validator("password")
    @classmethod
    def _password_policy(cls, v: str) -> str:
        return validate_password_policy(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _password_policy(cls, v: str) -> str:
        return validate_password_policy(v)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    oob_code: str = Field(..., min_length=1, alias="oobCode")
    new_password: str

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("new_password")
    @classmethod
    def _password_policy(cls, v: str) -> str:
        return validate_password_policy(v)


class SessionResponse(BaseModel):
    status: str = "success"
    user_id: str
    password_expired: bool = False
    terms_not_accepted: bool = False


# -------------------------------------------------------------------------
# Profile
# -------------------------------------------------------------------------
class Connection(BaseModel):
    id: str
    name: str
    connected_at: str


class UserProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    first_name: Optional[str] = None
    middle_initial: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    cell_phone: Optional[str] = None
    is_age_certified: bool = False
    subscription_tier: str
    last_password_change_date: datetime
    accepted_latest_terms: bool
    terms_version_accepted: Optional[str] = None
    connected_fitness_apps: List[Connection] = []
    radar_goals: Dict[str, Dict[str, Any]] = {}
    dashboard_radar_metrics: List[str] = []


class DemographicsUpdate(BaseModel):
    first_name: str = Field(..., min_length=3, max_length=50)
    middle_initial: Optional[str] = Field(default=None, max_length=1)
    last_name: str = Field(..., min_length=3, max_length=50)
    date_of_birth: date
    cell_phone: Optional[str] = None
    is_age_certified: bool = False

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("first_name", "last_name")
    @classmethod
    def _letters_only(cls, v: str) -> str:
        if not _NAME_PATTERN.match(v):
            raise ValueError("Name can only contain letters.")
        return v

    @field_validator("cell_phone")
    @classmethod
    def _phone_format(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _PHONE_PATTERN.match(v):
            raise ValueError("Invalid phone format (e.g., 999-999-9999).")
        return v or None

    @model_validator(mode="after")
    def _age_check(self) -> "DemographicsUpdate":
        today = date.today()
        if self.date_of_birth > today:
            raise ValueError("Date of birth cannot be in the future.")
        if self.is_age_certified:
            age = today.year - self.date_of_birth.year - (
                (today.month, today.day) < (self.date_of_birth.month, self.date_of_birth.day)
            )
            if age < MINIMUM_AGE_YEARS:
                raise ValueError(f"You must be at least {MINIMUM_AGE_YEARS} years old.")
        return self


class TermsUpdate(BaseModel):
    accepted: bool
    version: str = Field(..., min_length=1)


NonNegative = Optional[Annotated[float, Field(ge=0)]]


class _RadarGoals(BaseModel):
    """Goal ranges; every min_x must not exceed its max_x."""

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_ranges(self):
        values = self.model_dump()
        for key, value in values.items():
            if key.startswith("min_"):
                max_key = "max_" + key[len("min_"):]
                max_value = values.get(max_key)
                if value is not None and max_value is not None and value > max_value:
                    raise ValueError(f"{key} cannot be greater than {max_key}.")
        return self


class WalkingGoals(_RadarGoals):
    max_daily_steps: NonNegative = None
    max_daily_distance_meters: NonNegative = None
    max_daily_duration_sec: NonNegative = None
    max_daily_sessions: NonNegative = None
    min_daily_steps: NonNegative = None
    min_daily_distance_meters: NonNegative = None
    min_daily_duration_sec: NonNegative = None
    min_daily_sessions: NonNegative = None


class RunningGoals(_RadarGoals):
    max_daily_distance_meters: NonNegative = None
    max_daily_duration_sec: NonNegative = None
    max_daily_sessions: NonNegative = None
    min_daily_distance_meters: NonNegative = None
    min_daily_duration_sec: NonNegative = None
    min_daily_sessions: NonNegative = None


class HikingGoals(RunningGoals):
    max_daily_elevation_gain_meters: NonNegative = None
    min_daily_elevation_gain_meters: NonNegative = None


class SwimmingGoals(RunningGoals):
    pass


class SleepGoals(_RadarGoals):
    target_sleep_duration_hours: NonNegative = None
    min_sleep_efficiency_percent: NonNegative = None
    min_time_in_deep_sleep_minutes: NonNegative = None
    min_time_in_rem_sleep_minutes: NonNegative = None

    @field_validator("min_sleep_efficiency_percent")
    @classmethod
    def _percent(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not 0 <= v <= 100:
            raise ValueError("Efficiency must be between 0 and 100.")
        return v


GOAL_MODELS = {
    "walking": WalkingGoals,
    "running": RunningGoals,
    "hiking": HikingGoals,
    "swimming": SwimmingGoals,
    "sleep": SleepGoals,
}


class DashboardMetricsUpdate(BaseModel):
    metrics: List[str]


# -------------------------------------------------------------------------
# Activities
# -------------------------------------------------------------------------
class ActivityIn(BaseModel):
    original_id: Optional[str] = None
    type: ActivityType
    name: Optional[str] = None
    start_time_utc: datetime
    start_time_local: Optional[datetime] = None
    timezone: Optional[str] = None
    duration_moving_sec: Optional[float] = Field(default=None, ge=0)
    duration_elapsed_sec: Optional[float] = Field(default=None, ge=0)
    distance_meters: Optional[float] = Field(default=None, ge=0)
    calories: Optional[float] = Field(default=None, ge=0)
    steps: Optional[int] = Field(default=None, ge=0)
    average_heart_rate_bpm: Optional[float] = Field(default=None, gt=0)
    max_heart_rate_bpm: Optional[float] = Field(default=None, gt=0)
    elevation_gain_meters: Optional[float] = None
    map_polyline: Optional[str] = None


class ActivityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    data_source: str
    original_id: str
    type: ActivityType
    name: Optional[str] = None
    start_time_utc: datetime
    start_time_local: Optional[str] = None
    timezone: Optional[str] = None
    duration_moving_sec: Optional[float] = None
    duration_elapsed_sec: Optional[float] = None
    distance_meters: Optional[float] = None
    calories: Optional[float] = None
    steps: Optional[int] = None
    average_heart_rate_bpm: Optional[float] = None
    max_heart_rate_bpm: Optional[float] = None
    elevation_gain_meters: Optional[float] = None
    map_polyline: Optional[str] = None
    date: str
    last_fetched: datetime


class RadarDataPoint(BaseModel):
    metric: str
    value: float
    actual_formatted_value: str
    full_mark: int = 100


# -------------------------------------------------------------------------
# Connections
# -------------------------------------------------------------------------
class ConnectionStatus(BaseModel):
    provider: str
    display_name: str
    configured: bool
    connected: bool
    connected_at: Optional[str] = None
    expires_at: Optional[str] = None
    expires_in_hours: Optional[float] = None
    should_refresh: bool = False
    connect_url: str


class TokenRefreshResponse(BaseModel):
    success: bool
    status: str
    message: str
    access_token_masked: Optional[str] = None
    refresh_token_masked: Optional[str] = None
    expires_at: Optional[str] = None
    requires_reconnect: bool = False
    timestamp: str
