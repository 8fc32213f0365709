from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from health_timeline.config import get_settings
from health_timeline.database import get_db, init_db
from health_timeline.dependencies import get_http_client
from health_timeline.main import app
from health_timeline.providers import PROVIDERS

APP_URL = "https://app.example.com"
PASSWORD = "Sup3r$ecret"

TEST_ENV = {
    "APP_URL": APP_URL,
    "OAUTH_STATE_SECRET": "state-secret-for-tests",
    "SESSION_SECRET": "session-secret-for-tests",
    "ENVIRONMENT": "test",
    "FITBIT_CLIENT_ID": "fitbit-client",
    "FITBIT_CLIENT_SECRET": "fitbit-secret",
    "STRAVA_CLIENT_ID": "strava-client",
    "STRAVA_CLIENT_SECRET": "strava-secret",
    "GOOGLE_FIT_CLIENT_ID": "google-client",
    "GOOGLE_FIT_CLIENT_SECRET": "google-secret",
    "WITHINGS_CLIENT_ID": "withings-client",
    "WITHINGS_CLIENT_SECRET": "withings-secret",
}

# Successful token endpoint bodies, per provider
TOKEN_RESPONSES: Dict[str, Dict[str, Any]] = {
    "fitbit": {
        "access_token": "fitbit-access-token",
        "refresh_token": "fitbit-refresh-token",
        "expires_in": 28800,
        "user_id": "FB123",
        "scope": "activity heartrate sleep",
    },
    "strava": {
        "access_token": "strava-access-token",
        "refresh_token": "strava-refresh-token",
        "expires_at": 4102444800,
        "athlete": {"id": 987},
    },
    "googlefit": {
        "access_token": "google-access-token",
        "refresh_token": "google-refresh-token",
        "expires_in": 3599,
        "scope": "https://www.googleapis.com/auth/fitness.activity.read",
    },
    "withings": {
        "status": 0,
        "body": {
            "userid": 4242,
            "access_token": "withings-access-token",
            "refresh_token": "withings-refresh-token",
            "expires_in": 10800,
            "scope": "user.info,user.metrics",
        },
    },
}


class FakeProviderAPI:
    """MockTransport handler standing in for the providers' token endpoints."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._responses: Dict[str, Dict[str, Any]] = {}
        self._errors: Dict[str, Exception] = {}
        for name, body in TOKEN_RESPONSES.items():
            self.respond(name, json=body)

    def respond(self, provider: str, status_code: int = 200, json: Optional[Any] = None, text: str = ""):
        url = PROVIDERS[provider].token_url
        self._errors.pop(url, None)
        if json is not None:
            self._responses[url] = {"status_code": status_code, "json": json}
        else:
            self._responses[url] = {"status_code": status_code, "text": text}

    def fail(self, provider: str, error: Exception):
        self._errors[PROVIDERS[provider].token_url] = error

    def requests_for(self, provider: str) -> List[httpx.Request]:
        url = PROVIDERS[provider].token_url
        return [r for r in self.requests if str(r.url) == url]

    @staticmethod
    def form(request: httpx.Request) -> Dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self._errors:
            raise self._errors[url]
        if url in self._responses:
            return httpx.Response(**self._responses[url])
        return httpx.Response(404, json={"error": "not_found"})


@pytest.fixture
def settings_env(monkeypatch):
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def reload_settings(monkeypatch):
    """Change an env var mid-test and make get_settings pick it up."""
    def _set(key: str, value: str):
        monkeypatch.setenv(key, value)
        get_settings.cache_clear()
    return _set


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(settings_env, session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def provider_api():
    return FakeProviderAPI()


@pytest_asyncio.fixture
async def http_client(provider_api):
    """Outbound client whose requests all land on provider_api."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_api)) as client:
        yield client


@pytest_asyncio.fixture
async def client(settings_env, session_factory, provider_api):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_http_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(provider_api)) as outbound:
            yield outbound

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = override_get_http_client

    # https so the Secure cookies are sent back
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="https://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def user_id(client):
    """Sign up a user; the session cookie stays in the client's jar."""
    response = await client.post(
        "/api/auth/signup", json={"email": "runner@example.com", "password": PASSWORD}
    )
    assert response.status_code == 201
    return response.json()["user_id"]


def query_params(location: str) -> Dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


@pytest.fixture
def start_connect(client):
    """Hit the connect endpoint and return the state sent to the provider."""
    async def _start(provider: str) -> str:
        response = await client.get(f"/api/auth/{provider}/connect")
        assert response.status_code == 307
        return query_params(response.headers["location"])["state"]
    return _start


@pytest.fixture
def connect_provider(client, start_connect):
    """Run connect and a successful callback; returns the callback response."""
    async def _connect(provider: str, code: str = "auth-code") -> httpx.Response:
        state = await start_connect(provider)
        return await client.get(
            f"/api/auth/{provider}/callback", params={"code": code, "state": state}
        )
    return _connect
