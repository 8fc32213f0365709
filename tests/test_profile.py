from datetime import date, timedelta

import pytest

DEMOGRAPHICS = {
    "first_name": "Jordan",
    "last_name": "Rivers",
    "middle_initial": "Q",
    "date_of_birth": "1990-04-12",
    "cell_phone": "555-123-4567",
    "is_age_certified": True,
}


@pytest.mark.asyncio
async def test_profile_requires_session(client):
    response = await client.get("/api/profile")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_new_profile_defaults(client, user_id):
    profile = (await client.get("/api/profile")).json()

    assert profile["id"] == user_id
    assert profile["accepted_latest_terms"] is False
    assert profile["connected_fitness_apps"] == []
    assert profile["radar_goals"] == {}
    assert profile["dashboard_radar_metrics"] == []


@pytest.mark.asyncio
async def test_update_demographics(client, user_id):
    response = await client.put("/api/profile/demographics", json=DEMOGRAPHICS)

    assert response.status_code == 200
    profile = response.json()
    assert profile["first_name"] == "Jordan"
    assert profile["date_of_birth"] == "1990-04-12"
    assert profile["is_age_certified"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize("changes", [
    {"first_name": "Jo"},
    {"last_name": "R1vers"},
    {"cell_phone": "5551234567"},
    {"date_of_birth": (date.today() + timedelta(days=1)).isoformat()},
    {"date_of_birth": (date.today() - timedelta(days=365 * 10)).isoformat()},
])
async def test_invalid_demographics(client, user_id, changes):
    response = await client.put("/api/profile/demographics", json={**DEMOGRAPHICS, **changes})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_minor_without_age_certification_is_allowed(client, user_id):
    body = {
        **DEMOGRAPHICS,
        "date_of_birth": (date.today() - timedelta(days=365 * 10)).isoformat(),
        "is_age_certified": False,
    }
    response = await client.put("/api/profile/demographics", json=body)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_accept_terms(client, user_id):
    response = await client.put("/api/profile/terms", json={"accepted": True, "version": "2024-06"})

    assert response.json()["accepted_latest_terms"] is True
    assert response.json()["terms_version_accepted"] == "2024-06"

    login = await client.post(
        "/api/auth/login", json={"email": "runner@example.com", "password": "Sup3r$ecret"}
    )
    assert login.json()["terms_not_accepted"] is False


@pytest.mark.asyncio
async def test_update_goals(client, user_id):
    response = await client.put(
        "/api/profile/goals/walking",
        json={"min_daily_steps": 6000, "max_daily_steps": 12000},
    )

    assert response.status_code == 200
    assert response.json()["radar_goals"] == {
        "walking": {"min_daily_steps": 6000, "max_daily_steps": 12000}
    }

    await client.put("/api/profile/goals/sleep", json={"target_sleep_duration_hours": 8})
    goals = (await client.get("/api/profile")).json()["radar_goals"]
    assert set(goals) == {"walking", "sleep"}


@pytest.mark.asyncio
async def test_goals_min_above_max_rejected(client, user_id):
    response = await client.put(
        "/api/profile/goals/running",
        json={"min_daily_distance_meters": 10000, "max_daily_distance_meters": 5000},
    )

    assert response.status_code == 422
    assert (await client.get("/api/profile")).json()["radar_goals"] == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("kind,body", [
    ("walking", {"max_daily_steps": -1}),
    ("hiking", {"unknown_field": 3}),
    ("sleep", {"min_sleep_efficiency_percent": 120}),
])
async def test_invalid_goals(client, user_id, kind, body):
    response = await client.put(f"/api/profile/goals/{kind}", json=body)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_goal_kind(client, user_id):
    response = await client.put("/api/profile/goals/juggling", json={})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_dashboard_metrics(client, user_id):
    available = (await client.get("/api/profile/dashboard-metrics/available")).json()
    assert {m["id"] for m in available} == {
        "avg_daily_steps", "avg_active_minutes", "avg_workout_duration", "total_workouts",
    }

    response = await client.put(
        "/api/profile/dashboard-metrics", json={"metrics": ["total_workouts", "avg_daily_steps", "total_workouts"]}
    )
    assert response.json()["dashboard_radar_metrics"] == ["total_workouts", "avg_daily_steps"]

    bad = await client.put("/api/profile/dashboard-metrics", json={"metrics": ["vo2max"]})
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_negative_goal_reports_each_field(client, user_id):
    response = await client.put(
        "/api/profile/goals/hiking",
        json={"max_daily_sessions": -1, "min_daily_elevation_gain_meters": -20},
    )

    assert response.status_code == 422
    fields = {tuple(err["loc"]) for err in response.json()["detail"]}
    assert fields == {("max_daily_sessions",), ("min_daily_elevation_gain_meters",)}
