from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from health_timeline.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo so everything is stored naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(Text)

    first_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    middle_initial: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    date_of_birth: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    cell_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_age_certified: Mapped[bool] = mapped_column(Boolean, default=False)

    subscription_tier: Mapped[str] = mapped_column(String(20), default="free")
    last_password_change_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    accepted_latest_terms: Mapped[bool] = mapped_column(Boolean, default=False)
    terms_version_accepted: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    connected_fitness_apps: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    radar_goals: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    dashboard_radar_metrics: Mapped[List[str]] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class ProviderToken(Base):
    __tablename__ = "provider_tokens"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_provider_tokens_user_provider"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    provider: Mapped[str] = mapped_column(String(32))
    provider_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    access_token_encrypted: Mapped[str] = mapped_column(Text)
    refresh_token_encrypted: Mapped[str] = mapped_column(Text)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Activity(Base):
    __tablename__ = "activities"
    __table_args__ = (
        UniqueConstraint("user_id", "data_source", "original_id", name="uq_activities_source_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    data_source: Mapped[str] = mapped_column(String(32))
    original_id: Mapped[str] = mapped_column(String(255))

    type: Mapped[str] = mapped_column(String(20), index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    start_time_utc: Mapped[datetime] = mapped_column(DateTime)
    start_time_local: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    duration_moving_sec: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    duration_elapsed_sec: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    distance_meters: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    calories: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    steps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    average_heart_rate_bpm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_heart_rate_bpm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    elevation_gain_meters: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    map_polyline: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # YYYY-MM-DD, sortable for range queries
    date: Mapped[str] = mapped_column(String(10), index=True)
    last_fetched: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
