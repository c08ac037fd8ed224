# src/praxis_bff/main.py

import logging
from contextlib import asynccontextmanager
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import auth_utils
from .auth_utils import (
    CSRFProtectedRoute,
    get_authenticated_session,
    get_csrf_protection,
    get_directory,
    get_session_manager,
    validate_email,
)
from .config import settings
from .csrf import CSRFProtection
from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    DirectoryNotFoundError,
    DirectoryServiceError,
)
from .routes import domains, invitations, members, teams
from .session_data import SessionView, Subject
from .session_manager import SessionManager
from .session_store import SessionCookieMiddleware

logger = logging.getLogger(__name__)

NAME_PATTERN = r"^[a-zA-Z\s\-']+$"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("--- Praxis-BFF (FastAPI) Starting Up ---")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Directory Base URL: {settings.DIRECTORY_BASE_URL}")
    logger.info(f"Session cookie: {settings.SESSION_COOKIE_NAME} (SameSite={settings.SESSION_COOKIE_SAMESITE})")
    try:
        auth_utils.get_codec().ensure_configured()
        auth_utils.get_directory().ensure_configured()
    except ConfigurationError as e:
        logger.critical(f"CRITICAL: {e}. Refusing to start.")
        raise
    yield
    await auth_utils.close_directory()
    logger.info("--- Praxis-BFF shut down ---")


# --- FastAPI App Setup ---
app = FastAPI(
    title="Praxis-BFF API",
    description="Backend-For-Frontend for the Praxis admin UI: sessions, CSRF and team context.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(SessionCookieMiddleware)

# State-changing routes that need a session-bound CSRF token.
protected = APIRouter(route_class=CSRFProtectedRoute)


# --- Error mapping ---

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return _error(status.HTTP_401_UNAUTHORIZED, str(exc))


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError):
    return _error(status.HTTP_403_FORBIDDEN, str(exc))


@app.exception_handler(DirectoryServiceError)
async def directory_error_handler(request: Request, exc: DirectoryServiceError):
    if isinstance(exc, DirectoryNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, exc.message)
    logger.error(f"Directory failure on {request.method} {request.url.path}: {exc}")
    return _error(status.HTTP_502_BAD_GATEWAY, "Directory service unavailable")


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.critical(f"Configuration error on {request.url.path}: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server is misconfigured")


# --- Request bodies ---

class MagicAuthCallback(BaseModel):
    email: str = Field(min_length=3)
    code: str = Field(min_length=1)
    remember_me: bool = False


class MagicLinkRequest(BaseModel):
    email: str = ""


class SignupRequest(BaseModel):
    email: str = ""
    first_name: str = Field(default="", max_length=50)
    last_name: str = Field(default="", max_length=50)


class UpdateProfileRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=50, pattern=NAME_PATTERN)
    last_name: str = Field(min_length=1, max_length=50, pattern=NAME_PATTERN)


def _public_user(user: Subject) -> dict:
    return user.model_dump(include={"id", "email", "first_name", "last_name", "email_verified", "profile_picture_url"})


# --- Authentication Routes ---

@app.post("/api/auth/callback")
async def auth_callback(
        body: MagicAuthCallback,
        sessions: SessionManager = Depends(get_session_manager),
        directory=Depends(get_directory),
):
    try:
        result = await auth_utils.authenticate_magic_code(directory, body.email, body.code)
    except DirectoryServiceError as e:
        logger.warning(f"Magic auth verification failed: {e.message}")
        message = "Invalid verification code. Please try again."
        if "expired" in e.message.lower():
            message = "Verification code has expired. Please request a new one."
        elif "not found" in e.message.lower():
            message = "Account not found. Please sign up first."
        raise AuthenticationError(message)

    token = await sessions.create(result, remember_me=body.remember_me)
    sessions.store.write(token, remember_me=body.remember_me)
    return {"message": "Authentication successful", "user": _public_user(result.user)}


def _verification_url(request: Request, email: str) -> str:
    return f"{str(request.base_url).rstrip('/')}/verify-code?{urlencode({'email': email})}"


async def _send_code(directory, email: str) -> None:
    try:
        await directory.send_magic_auth(email)
    except DirectoryServiceError as e:
        logger.error(f"Sending magic auth code to {email} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send verification code. Please try again.",
        )


@app.post("/api/auth/magic-link")
async def send_magic_link(body: MagicLinkRequest, request: Request, directory=Depends(get_directory)):
    """Emails a sign-in code to an existing account."""
    if not body.email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")
    if not validate_email(body.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please enter a valid email address")
    email = body.email.lower().strip()

    if not await directory.list_users(email=email):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No account found with this email address. Please sign up first.",
        )
    await _send_code(directory, email)
    return {
        "message": "Verification code sent to your email",
        "success": True,
        "verification_url": _verification_url(request, email),
    }


@app.post("/api/auth/signup")
async def signup(body: SignupRequest, request: Request, directory=Depends(get_directory)):
    first_name, last_name = body.first_name.strip(), body.last_name.strip()
    if not body.email or not first_name or not last_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email, first name, and last name are required",
        )
    if not validate_email(body.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please enter a valid email address")
    email = body.email.lower().strip()

    if await directory.list_users(email=email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account with this email already exists. Please sign in instead.",
        )
    user = await directory.create_user(email=email, first_name=first_name, last_name=last_name)
    logger.info(f"Created account {user.id} for {email}")

    try:
        await _send_code(directory, email)
    except HTTPException:
        # Leave no account behind that its owner could never verify.
        await directory.delete_user(user.id)
        raise
    return {
        "message": "Account created! Check your email for a verification code to complete setup.",
        "success": True,
        "verification_url": _verification_url(request, email),
        "user": _public_user(user),
    }


@app.get("/api/auth/session")
async def get_session_info(
        view: SessionView = Depends(get_authenticated_session),
        sessions: SessionManager = Depends(get_session_manager),
):
    return {"user": _public_user(view.user), **sessions.session_info().model_dump()}


@app.get("/api/auth/csrf-token")
async def get_csrf_token(csrf: CSRFProtection = Depends(get_csrf_protection)):
    token = await csrf.issue()
    return {"csrf_token": token, "message": "CSRF token generated successfully"}


@protected.post("/api/auth/activity")
async def track_activity(sessions: SessionManager = Depends(get_session_manager)):
    if not sessions.touch_activity():
        raise AuthenticationError("No active session found")
    return {"success": True, "last_activity": sessions.session_info().last_activity}


@protected.post("/api/auth/refresh")
async def refresh_session(sessions: SessionManager = Depends(get_session_manager)):
    if not sessions.refresh():
        raise AuthenticationError("Session has expired. Please sign in again.")
    return {"success": True, "message": "Session refreshed successfully", **sessions.session_info().model_dump()}


@app.post("/api/auth/logout")
async def logout(sessions: SessionManager = Depends(get_session_manager)):
    sessions.invalidate()
    return {"success": True}


# --- Profile ---

@app.get("/api/user/profile")
async def get_profile(
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    user = await directory.get_user(view.user.id)
    return {"user": _public_user(user)}


@protected.put("/api/user/profile")
async def update_profile(
        body: UpdateProfileRequest,
        view: SessionView = Depends(get_authenticated_session),
        sessions: SessionManager = Depends(get_session_manager),
        directory=Depends(get_directory),
):
    updated = await directory.update_user(
        view.user.id,
        first_name=body.first_name.strip(),
        last_name=body.last_name.strip(),
    )
    if not sessions.merge_subject_data(updated):
        logger.warning(f"Failed to update session with new user data for {view.user.id}")
    return {"user": _public_user(updated), "message": "Profile updated successfully"}


app.include_router(protected)
app.include_router(teams.router)
app.include_router(members.router)
app.include_router(invitations.router)
app.include_router(domains.router)
