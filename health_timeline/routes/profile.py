import logging

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from health_timeline.database import get_db
from health_timeline.dependencies import get_current_user
from health_timeline.models import User
from health_timeline.schemas import (
    GOAL_MODELS,
    DashboardMetricsUpdate,
    DemographicsUpdate,
    TermsUpdate,
    UserProfileOut,
)
from health_timeline.services import profiles
from health_timeline.services.activities import DASHBOARD_METRICS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["profile"])


@router.get("", response_model=UserProfileOut)
async def get_profile(user: User = Depends(get_current_user)):
    return user


@router.put("/demographics", response_model=UserProfileOut)
async def update_demographics(
    body: DemographicsUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    values = body.model_dump()
    values["date_of_birth"] = body.date_of_birth.isoformat()
    return await profiles.update_demographics(db, user, values)


@router.put("/terms", response_model=UserProfileOut)
async def update_terms(
    body: TermsUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await profiles.update_terms_acceptance(db, user, body.accepted, body.version)


@router.put("/goals/{kind}", response_model=UserProfileOut)
async def update_goals(
    kind: str,
    body: dict = Body(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace the radar goals for one activity kind."""
    model = GOAL_MODELS.get(kind)
    if model is None:
        raise HTTPException(status_code=404, detail=f"Unknown goal kind: {kind}")
    try:
        goals = model.model_validate(body)
    except ValidationError as e:
        logger.info(f"Rejected {kind} goals for user {user.id}: {e.error_count()} errors")
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False, include_input=False),
        )
    return await profiles.update_radar_goals(db, user, kind, goals.model_dump())


@router.put("/dashboard-metrics", response_model=UserProfileOut)
async def update_dashboard_metrics(
    body: DashboardMetricsUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    unknown = [m for m in body.metrics if m not in DASHBOARD_METRICS]
    if unknown:
        raise HTTPException(status_code=422, detail=f"Unknown dashboard metrics: {', '.join(unknown)}")
    return await profiles.update_dashboard_metrics(db, user, body.metrics)


@router.get("/dashboard-metrics/available")
async def available_dashboard_metrics():
    return [
        {"id": m.id, "label": m.label, "unit": m.unit, "default_max_value": m.default_max_value}
        for m in DASHBOARD_METRICS.values()
    ]
