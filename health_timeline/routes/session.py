"""Email/password accounts and the `__session` cookie.

Provides:
- Sign-up (creates the user profile)
- Email availability check
- Login / logout
- Password change for a signed-in user
- Password reset with a signed, single-use code
"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from health_timeline.config import Settings, get_settings
from health_timeline.database import get_db
from health_timeline.dependencies import get_current_user
from health_timeline.models import User
from health_timeline.routes.oauth import resolve_app_url
from health_timeline.schemas import (
    EmailCheckRequest,
    LoginRequest,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    SessionResponse,
    SignupRequest,
)
from health_timeline.services import profiles
from health_timeline.services.sessions import (
    SESSION_COOKIE_NAME,
    SESSION_MAX_AGE_SECONDS,
    SessionError,
    create_password_reset_code,
    create_session_token,
    decode_password_reset_code,
    reset_code_matches,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["session"])


def _set_session_cookie(response: Response, user_id: str, settings: Settings) -> None:
    try:
        token = create_session_token(user_id, settings.SESSION_SECRET)
    except SessionError as e:
        logger.error(f"Cannot issue session: {e}")
        raise HTTPException(status_code=500, detail="Session service is not configured") from e

    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=not settings.is_development,
        samesite="lax",
        path="/",
    )


@router.post("/email-availability")
async def check_email_availability(body: EmailCheckRequest, db: AsyncSession = Depends(get_db)):
    existing = await profiles.find_user_by_email(db, body.email)
    return {"available": existing is None}


@router.post("/signup", response_model=SessionResponse, status_code=201)
async def signup(
    body: SignupRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    try:
        user = await profiles.create_user(db, body.email, body.password, body.subscription_tier)
    except profiles.EmailAlreadyRegisteredError:
        raise HTTPException(
            status_code=409,
            detail="This email address is already in use. Please log in or use a different email.",
        )

    _set_session_cookie(response, user.id, settings)
    return SessionResponse(user_id=user.id, terms_not_accepted=True)


@router.post("/login", response_model=SessionResponse)
async def login(
    body: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = await profiles.find_user_by_email(db, body.email)
    if user is None or not verify_password(body.password, user.password_hash):
        logger.info("Login rejected: invalid credentials")
        raise HTTPException(status_code=401, detail="Invalid email or password.")

    _set_session_cookie(response, user.id, settings)
    logger.info(f"User {user.id} logged in")
    return SessionResponse(
        user_id=user.id,
        password_expired=profiles.password_expired(user),
        terms_not_accepted=not user.accepted_latest_terms,
    )


@router.delete("/session")
async def logout(response: Response, settings: Settings = Depends(get_settings)):
    response.delete_cookie(
        SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=not settings.is_development,
        samesite="lax",
    )
    return {"status": "success"}


@router.post("/password")
async def change_password(
    body: PasswordChangeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not verify_password(body.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect.")
    await profiles.change_password(db, user, body.new_password)
    return {"status": "success"}


@router.post("/password-reset", status_code=202)
async def request_password_reset(
    body: PasswordResetRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Issue a reset code. The answer is the same whether or not the email exists."""
    content = {"status": "accepted"}
    user = await profiles.find_user_by_email(db, body.email)
    if user is None:
        logger.info("Password reset requested for an unknown email")
        return content

    try:
        code = create_password_reset_code(user.id, user.password_hash, settings.SESSION_SECRET)
    except SessionError as e:
        logger.error(f"Cannot issue password reset code: {e}")
        raise HTTPException(status_code=500, detail="Session service is not configured") from e

    logger.info(f"Password reset code issued for user {user.id}")
    # No mail delivery; the link is only handed back in development
    if settings.is_development:
        app_url = resolve_app_url(request, settings) or str(request.base_url).rstrip("/")
        content["reset_url"] = f"{app_url}/reset-password?{urlencode({'oobCode': code})}"
    return content


@router.post("/password-reset/confirm")
async def confirm_password_reset(
    body: PasswordResetConfirm,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    invalid = HTTPException(status_code=400, detail="The reset link is invalid or has expired.")
    try:
        user_id, fingerprint = decode_password_reset_code(body.oob_code, settings.SESSION_SECRET)
    except SessionError:
        raise invalid

    try:
        user = await profiles.get_user(db, user_id)
    except profiles.ProfileNotFoundError:
        raise invalid
    if not reset_code_matches(fingerprint, user.password_hash):
        logger.info(f"Reset code for user {user.id} was already used")
        raise invalid

    await profiles.change_password(db, user, body.new_password)
    logger.info(f"Password reset for user {user.id}")
    return {"status": "success"}
