import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from health_timeline.database import get_db
from health_timeline.dependencies import get_current_user, get_current_user_id
from health_timeline.models import User
from health_timeline.schemas import ActivityIn, ActivityOut, ActivityType, RadarDataPoint
from health_timeline.services import activities

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["activities"])


def _check_range(date_from: date, date_to: date) -> None:
    if date_from > date_to:
        raise HTTPException(status_code=422, detail="'from' must not be after 'to'")


@router.get("/activities", response_model=List[ActivityOut])
async def list_activities(
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    activity_type: Optional[ActivityType] = Query(None, alias="type"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Normalized activities in a date range, newest first."""
    _check_range(date_from, date_to)
    types = [activity_type] if activity_type else None
    return await activities.list_activities(db, user_id, date_from, date_to, types)


@router.post("/activities", response_model=ActivityOut, status_code=201)
async def add_manual_activity(
    body: ActivityIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await activities.upsert_activity(db, user.id, activities.MANUAL_SOURCE, body)


@router.get("/dashboard/radar", response_model=List[RadarDataPoint])
async def dashboard_radar(
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    _check_range(date_from, date_to)
    return await activities.dashboard_radar_data(
        db, user.id, user.dashboard_radar_metrics or [], date_from, date_to
    )
