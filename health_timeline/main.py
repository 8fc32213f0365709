"""
Health Timeline API
===================
FastAPI application behind the Health Timeline web app.

Features:
- Email/password accounts with a signed session cookie
- OAuth connect/callback for Fitbit, Strava, Google Fit and Withings
- Encrypted provider token storage with on-demand refresh
- Profile, goals, activities and dashboard radar endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from health_timeline.config import get_settings
from health_timeline.database import dispose_engine, init_db
from health_timeline.providers import PROVIDERS
from health_timeline.routes import activities, connections, health, oauth, profile, session
from health_timeline.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Configures logging and creates missing tables on startup.
    """
    setup_logging()
    settings = get_settings()
    logger.info("Starting Health Timeline API...")

    configured = [p.name for p in PROVIDERS.values() if p.is_configured(settings)]
    logger.info(f"Configured providers: {', '.join(configured) or 'none'}")
    if not settings.OAUTH_STATE_SECRET:
        logger.warning("OAUTH_STATE_SECRET is not set; provider connects will fail")
    if not settings.ENCRYPTION_KEY:
        logger.warning("ENCRYPTION_KEY is not set; provider tokens cannot be stored")

    await init_db()

    yield

    logger.info("Shutting down Health Timeline API...")
    await dispose_engine()


app = FastAPI(
    title="Health Timeline",
    description="Personal health timeline aggregating fitness provider data",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(session.router)
app.include_router(oauth.router)
app.include_router(connections.router)
app.include_router(profile.router)
app.include_router(activities.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/")
async def root():
    """
    Root endpoint.

    Returns:
        Basic API information
    """
    return {
        "name": "Health Timeline",
        "version": VERSION,
        "providers": sorted(PROVIDERS),
        "endpoints": {
            "health": "/health",
            "auth": "/api/auth",
            "connections": "/api/connections",
            "profile": "/api/profile",
            "activities": "/api/activities",
            "dashboard": "/api/dashboard/radar",
        },
    }
