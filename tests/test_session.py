from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from health_timeline.models import User, utcnow
from health_timeline.services.sessions import (
    SessionError,
    create_password_reset_code,
    create_session_token,
    decode_password_reset_code,
    decode_session_token,
    hash_password,
    verify_password,
)

PASSWORD = "Sup3r$ecret"


@pytest.mark.asyncio
async def test_signup_sets_session_cookie(client):
    response = await client.post("/api/auth/signup", json={"email": "New@Example.com", "password": PASSWORD})

    assert response.status_code == 201
    body = response.json()
    assert body["terms_not_accepted"] is True
    assert body["password_expired"] is False
    set_cookie = response.headers["set-cookie"]
    assert set_cookie.startswith("__session=")
    assert "HttpOnly" in set_cookie

    profile = await client.get("/api/profile")
    assert profile.status_code == 200
    assert profile.json()["email"] == "new@example.com"
    assert profile.json()["subscription_tier"] == "free"


@pytest.mark.asyncio
async def test_signup_duplicate_email(client, user_id):
    response = await client.post(
        "/api/auth/signup", json={"email": "RUNNER@example.com", "password": PASSWORD}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
@pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "NoNumbers!!", "NoSpecial123"])
async def test_signup_rejects_weak_password(client, password):
    response = await client.post("/api/auth/signup", json={"email": "a@example.com", "password": password})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_email_availability(client, user_id):
    taken = await client.post("/api/auth/email-availability", json={"email": "runner@example.com"})
    free = await client.post("/api/auth/email-availability", json={"email": "someone@example.com"})

    assert taken.json() == {"available": False}
    assert free.json() == {"available": True}


@pytest.mark.asyncio
async def test_login_and_logout(client, user_id):
    await client.delete("/api/auth/session")
    assert (await client.get("/api/profile")).status_code == 401

    response = await client.post("/api/auth/login", json={"email": "runner@example.com", "password": PASSWORD})

    assert response.status_code == 200
    assert response.json()["user_id"] == user_id
    assert response.json()["terms_not_accepted"] is True
    assert (await client.get("/api/profile")).status_code == 200


@pytest.mark.asyncio
async def test_login_wrong_password(client, user_id):
    response = await client.post("/api/auth/login", json={"email": "runner@example.com", "password": "Wr0ng$pass"})
    assert response.status_code == 401

    unknown = await client.post("/api/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    assert unknown.status_code == 401


@pytest.mark.asyncio
async def test_login_flags_expired_password(client, user_id, session_factory):
    async with session_factory() as session:
        user = await session.get(User, user_id)
        user.last_password_change_date = utcnow() - timedelta(days=91)
        await session.commit()

    response = await client.post("/api/auth/login", json={"email": "runner@example.com", "password": PASSWORD})

    assert response.json()["password_expired"] is True


@pytest.mark.asyncio
async def test_change_password(client, user_id):
    wrong = await client.post(
        "/api/auth/password", json={"current_password": "nope", "new_password": "N3w$ecret"}
    )
    assert wrong.status_code == 400

    ok = await client.post(
        "/api/auth/password", json={"current_password": PASSWORD, "new_password": "N3w$ecret"}
    )
    assert ok.status_code == 200

    login = await client.post("/api/auth/login", json={"email": "runner@example.com", "password": "N3w$ecret"})
    assert login.status_code == 200


@pytest.mark.asyncio
async def test_tampered_session_cookie_is_rejected(client, user_id):
    client.cookies.clear()
    client.cookies.set("__session", create_session_token(user_id, "some-other-secret"))

    assert (await client.get("/api/profile")).status_code == 401


def test_session_token_round_trip():
    token = create_session_token("user-1", "secret")
    assert decode_session_token(token, "secret") == "user-1"

    with pytest.raises(SessionError):
        decode_session_token(token, "different")
    with pytest.raises(SessionError):
        create_session_token("user-1", "")


def test_password_hashing():
    hashed = hash_password(PASSWORD)
    assert hashed != PASSWORD
    assert verify_password(PASSWORD, hashed)
    assert not verify_password("other", hashed)


@pytest.mark.asyncio
async def test_password_reset_request_does_not_reveal_accounts(client, user_id):
    known = await client.post("/api/auth/password-reset", json={"email": "runner@example.com"})
    unknown = await client.post("/api/auth/password-reset", json={"email": "ghost@example.com"})

    assert known.status_code == unknown.status_code == 202
    assert known.json() == unknown.json() == {"status": "accepted"}


@pytest.mark.asyncio
async def test_password_reset_link_flow(client, user_id, reload_settings):
    reload_settings("ENVIRONMENT", "development")

    response = await client.post("/api/auth/password-reset", json={"email": "runner@example.com"})

    reset_url = urlparse(response.json()["reset_url"])
    assert f"{reset_url.scheme}://{reset_url.netloc}{reset_url.path}" == "https://app.example.com/reset-password"
    code = parse_qs(reset_url.query)["oobCode"][0]

    confirm = await client.post(
        "/api/auth/password-reset/confirm", json={"oobCode": code, "new_password": "N3w$ecret"}
    )
    assert confirm.status_code == 200

    login = await client.post("/api/auth/login", json={"email": "runner@example.com", "password": "N3w$ecret"})
    assert login.status_code == 200

    reused = await client.post(
        "/api/auth/password-reset/confirm", json={"oobCode": code, "new_password": "0ther$ecret"}
    )
    assert reused.status_code == 400


@pytest.mark.asyncio
async def test_password_reset_rejects_bad_codes(client, user_id, settings_env, session_factory):
    async with session_factory() as session:
        user = await session.get(User, user_id)
        password_hash = user.password_hash

    forged = create_password_reset_code(user_id, password_hash, "some-other-secret")
    response = await client.post(
        "/api/auth/password-reset/confirm", json={"oobCode": forged, "new_password": "N3w$ecret"}
    )
    assert response.status_code == 400

    session_token = create_session_token(user_id, settings_env.SESSION_SECRET)
    response = await client.post(
        "/api/auth/password-reset/confirm", json={"oobCode": session_token, "new_password": "N3w$ecret"}
    )
    assert response.status_code == 400

    valid = create_password_reset_code(user_id, password_hash, settings_env.SESSION_SECRET)
    weak = await client.post(
        "/api/auth/password-reset/confirm", json={"oobCode": valid, "new_password": "weak"}
    )
    assert weak.status_code == 422


def test_reset_code_is_not_a_session():
    code = create_password_reset_code("user-1", "hash", "secret")

    assert decode_password_reset_code(code, "secret")[0] == "user-1"
    with pytest.raises(SessionError):
        decode_session_token(code, "secret")
