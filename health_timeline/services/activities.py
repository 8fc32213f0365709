import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from health_timeline.models import Activity, utcnow
from health_timeline.schemas import ActivityIn, ActivityType, RadarDataPoint

logger = logging.getLogger(__name__)

MANUAL_SOURCE = "manual"

STEP_ACTIVITY_TYPES = (ActivityType.WALKING, ActivityType.RUNNING, ActivityType.HIKING)
WORKOUT_ACTIVITY_TYPES = (
    ActivityType.RUNNING,
    ActivityType.HIKING,
    ActivityType.SWIMMING,
    ActivityType.CYCLING,
    ActivityType.WORKOUT,
)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def activity_date(start_time_utc: datetime, start_time_local: Optional[datetime] = None) -> str:
    """Day the activity belongs to: local calendar day when known, else the UTC day."""
    if start_time_local is not None:
        return start_time_local.date().isoformat()
    return _to_naive_utc(start_time_utc).date().isoformat()


async def upsert_activity(
    db: AsyncSession,
    user_id: str,
    data_source: str,
    activity: ActivityIn,
) -> Activity:
    """Create or overwrite the activity keyed by (user, data_source, original_id)."""
    original_id = activity.original_id or uuid.uuid4().hex
    values = activity.model_dump(exclude={"original_id", "start_time_utc", "start_time_local", "type"})
    values.update(
        type=activity.type.value,
        start_time_utc=_to_naive_utc(activity.start_time_utc),
        start_time_local=activity.start_time_local.isoformat() if activity.start_time_local else None,
        date=activity_date(activity.start_time_utc, activity.start_time_local),
        last_fetched=utcnow(),
    )

    result = await db.execute(
        select(Activity).where(
            Activity.user_id == user_id,
            Activity.data_source == data_source,
            Activity.original_id == original_id,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        record = Activity(user_id=user_id, data_source=data_source, original_id=original_id, **values)
        db.add(record)
    else:
        for field, value in values.items():
            setattr(record, field, value)

    await db.commit()
    await db.refresh(record)
    logger.info(f"Activity {data_source}-{original_id} ({record.type}) stored for user {user_id}")
    return record


async def list_activities(
    db: AsyncSession,
    user_id: str,
    date_from: date,
    date_to: date,
    activity_types: Optional[Sequence[ActivityType]] = None,
) -> List[Activity]:
    """Activities within [date_from, date_to], newest day first, then newest start first."""
    query = select(Activity).where(
        Activity.user_id == user_id,
        Activity.date >= date_from.isoformat(),
        Activity.date <= date_to.isoformat(),
    )
    if activity_types:
        query = query.where(Activity.type.in_([t.value for t in activity_types]))
    query = query.order_by(Activity.date.desc(), Activity.start_time_utc.desc())

    result = await db.execute(query)
    activities = list(result.scalars().all())
    logger.debug(f"Fetched {len(activities)} activities for user {user_id} from {date_from} to {date_to}")
    return activities


# -------------------------------------------------------------------------
# Dashboard radar
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class DashboardMetric:
    id: str
    label: str
    unit: str
    default_max_value: float
    calculate: Callable[[List[Activity], int], Optional[float]]
    decimals: int = 0


def _avg_daily_steps(activities: List[Activity], days: int) -> float:
    steps = sum(a.steps or 0 for a in activities if a.type in {t.value for t in STEP_ACTIVITY_TYPES})
    return steps / days


def _avg_active_minutes(activities: List[Activity], days: int) -> float:
    moving_sec = sum(a.duration_moving_sec or 0 for a in activities)
    return moving_sec / days / 60


def _workouts(activities: List[Activity]) -> List[Activity]:
    workout_types = {t.value for t in WORKOUT_ACTIVITY_TYPES}
    return [a for a in activities if a.type in workout_types]


def _avg_workout_duration(activities: List[Activity], days: int) -> float:
    workouts = _workouts(activities)
    if not workouts:
        return 0
    return sum(a.duration_moving_sec or 0 for a in workouts) / len(workouts) / 60


def _total_workouts(activities: List[Activity], days: int) -> float:
    return len(_workouts(activities))


DASHBOARD_METRICS: Dict[str, DashboardMetric] = {
    metric.id: metric
    for metric in (
        DashboardMetric("avg_daily_steps", "Avg Daily Steps", "steps", 10000, _avg_daily_steps),
        DashboardMetric("avg_active_minutes", "Avg Active Minutes", "min", 60, _avg_active_minutes),
        DashboardMetric("avg_workout_duration", "Avg Workout Duration", "min", 60, _avg_workout_duration),
        DashboardMetric("total_workouts", "Total Workouts", "", 20, _total_workouts),
    )
}


def format_metric_value(metric: DashboardMetric, value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    formatted = f"{value:.{metric.decimals}f}"
    return f"{formatted} {metric.unit}" if metric.unit else formatted


async def dashboard_radar_data(
    db: AsyncSession,
    user_id: str,
    metric_ids: Sequence[str],
    date_from: date,
    date_to: date,
) -> List[RadarDataPoint]:
    """One radar point per selected metric, scaled to 0-100 against the metric's default maximum."""
    if not metric_ids:
        return []

    days = (date_to - date_from).days + 1
    activities = await list_activities(db, user_id, date_from, date_to)

    points = []
    for metric_id in metric_ids:
        metric = DASHBOARD_METRICS.get(metric_id)
        if metric is None:
            logger.warning(f"Unknown dashboard metric: {metric_id}")
            continue
        actual = metric.calculate(activities, days)
        value = actual or 0
        normalized = min(100.0, value / metric.default_max_value * 100) if metric.default_max_value > 0 else 0.0
        points.append(RadarDataPoint(
            metric=metric.label,
            value=round(normalized, 2),
            actual_formatted_value=format_metric_value(metric, actual),
        ))
    return points
