from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from health_timeline.encryption import EncryptionError, decrypt_token
from health_timeline.models import utcnow
from health_timeline.providers import FITBIT, GOOGLE_FIT, STRAVA
from health_timeline.services import profiles, token_store
from health_timeline.services.profiles import ProfileNotFoundError
from health_timeline.services.token_service import TokenExchangeResult, TokenExchangeStatus


def _result(provider, access="access-1", refresh="refresh-1", expires_in=timedelta(hours=8)):
    return TokenExchangeResult(
        provider=provider.name,
        status=TokenExchangeStatus.SUCCESS,
        access_token=access,
        refresh_token=refresh,
        expires_at=datetime.now(timezone.utc) + expires_in,
        provider_user_id="p-1",
    )


@pytest_asyncio.fixture
async def user(db):
    return await profiles.create_user(db, "Store@Example.com", "Sup3r$ecret")


@pytest.mark.asyncio
async def test_save_tokens_encrypts_and_marks_connected(db, user):
    token = await token_store.save_tokens(db, user.id, FITBIT, _result(FITBIT))

    assert token.access_token_encrypted != "access-1"
    assert decrypt_token(token.access_token_encrypted) == "access-1"
    assert token.expires_at.tzinfo is None
    assert profiles.get_connection(user, "fitbit")["name"] == "Fitbit"


@pytest.mark.asyncio
async def test_save_tokens_without_profile(db):
    with pytest.raises(ProfileNotFoundError):
        await token_store.save_tokens(db, "nobody", FITBIT, _result(FITBIT))


@pytest.mark.asyncio
async def test_save_tokens_without_encryption_key(db, user, reload_settings):
    reload_settings("ENCRYPTION_KEY", "")

    with pytest.raises(EncryptionError):
        await token_store.save_tokens(db, user.id, FITBIT, _result(FITBIT))


@pytest.mark.asyncio
async def test_valid_token_is_returned_without_refresh(db, user, http_client, provider_api):
    await token_store.save_tokens(db, user.id, STRAVA, _result(STRAVA, access="still-good"))

    access = await token_store.get_valid_access_token(db, user.id, STRAVA, http_client)

    assert access == "still-good"
    assert provider_api.requests == []


@pytest.mark.asyncio
async def test_expiring_token_is_refreshed_on_demand(db, user, http_client, provider_api):
    await token_store.save_tokens(
        db, user.id, STRAVA, _result(STRAVA, access="old", expires_in=timedelta(minutes=2))
    )
    connected_at = profiles.get_connection(user, "strava")["connected_at"]

    access = await token_store.get_valid_access_token(db, user.id, STRAVA, http_client)

    assert access == "strava-access-token"
    form = provider_api.form(provider_api.requests_for("strava")[0])
    assert form["refresh_token"] == "refresh-1"

    token = await token_store.get_token_record(db, user.id, STRAVA)
    assert decrypt_token(token.refresh_token_encrypted) == "strava-refresh-token"
    assert token.expires_at > utcnow()
    # a refresh is not a reconnect
    assert profiles.get_connection(user, "strava")["connected_at"] == connected_at


@pytest.mark.asyncio
async def test_google_refresh_keeps_stored_refresh_token(db, user, http_client, provider_api):
    provider_api.respond("googlefit", json={"access_token": "google-new", "expires_in": 3599})
    await token_store.save_tokens(
        db, user.id, GOOGLE_FIT, _result(GOOGLE_FIT, refresh="google-keep", expires_in=timedelta(0))
    )

    access = await token_store.get_valid_access_token(db, user.id, GOOGLE_FIT, http_client)

    assert access == "google-new"
    token = await token_store.get_token_record(db, user.id, GOOGLE_FIT)
    assert decrypt_token(token.refresh_token_encrypted) == "google-keep"


@pytest.mark.asyncio
async def test_invalid_grant_disconnects(db, user, http_client, provider_api):
    provider_api.respond("fitbit", status_code=400, json={"error": "invalid_grant"})
    await token_store.save_tokens(db, user.id, FITBIT, _result(FITBIT, expires_in=-timedelta(hours=1)))

    access = await token_store.get_valid_access_token(db, user.id, FITBIT, http_client)

    assert access is None
    assert await token_store.get_token_record(db, user.id, FITBIT) is None
    assert profiles.get_connection(user, "fitbit") is None


@pytest.mark.asyncio
async def test_transient_refresh_failure_keeps_tokens(db, user, http_client, provider_api):
    provider_api.respond("fitbit", status_code=503, json={"message": "Service unavailable"})
    await token_store.save_tokens(db, user.id, FITBIT, _result(FITBIT, expires_in=timedelta(0)))

    access = await token_store.get_valid_access_token(db, user.id, FITBIT, http_client)

    assert access is None
    assert await token_store.get_token_record(db, user.id, FITBIT) is not None
    assert profiles.get_connection(user, "fitbit") is not None


@pytest.mark.asyncio
async def test_not_connected(db, user, http_client):
    assert await token_store.get_valid_access_token(db, user.id, FITBIT, http_client) is None
    assert await token_store.refresh_stored_token(db, user.id, FITBIT, http_client) is None


@pytest.mark.asyncio
async def test_clear_tokens(db, user):
    await token_store.save_tokens(db, user.id, STRAVA, _result(STRAVA))

    assert await token_store.clear_tokens(db, user.id, STRAVA) is True
    assert await token_store.clear_tokens(db, user.id, STRAVA) is False
    assert user.connected_fitness_apps == []
