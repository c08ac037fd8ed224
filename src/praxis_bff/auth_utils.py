# src/praxis_bff/auth_utils.py

import logging
import re
from typing import Any, Callable, Coroutine, Optional

from fastapi import Depends, Request, Response
from fastapi.routing import APIRoute

from .config import settings
from .csrf import CSRFProtection
from .directory import WorkOSDirectory
from .exceptions import AuthenticationError, AuthorizationError, DirectoryServiceError
from .organizations import OrganizationCache
from .session_codec import SessionCodec
from .session_data import AuthenticationResult, Membership, SessionView
from .session_manager import SessionManager
from .session_store import CookieSessionStore, get_session_store

logger = logging.getLogger(__name__)

ORGANIZATION_SELECTION_REQUIRED = "organization_selection_required"
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Process-wide collaborators, built lazily on first use.
_directory: Optional[WorkOSDirectory] = None
_organization_cache: Optional[OrganizationCache] = None
_codec: Optional[SessionCodec] = None


def get_codec() -> SessionCodec:
    global _codec
    if _codec is None:
        _codec = SessionCodec(settings.SESSION_SECRET_KEY)
    return _codec


def get_directory() -> WorkOSDirectory:
    global _directory
    if _directory is None:
        _directory = WorkOSDirectory(
            api_key=settings.WORKOS_API_KEY,
            client_id=settings.WORKOS_CLIENT_ID,
        )
    return _directory


def get_organization_cache(directory=Depends(get_directory)) -> OrganizationCache:
    global _organization_cache
    if _organization_cache is None or _organization_cache.directory is not directory:
        _organization_cache = OrganizationCache(directory)
    return _organization_cache


async def close_directory() -> None:
    global _directory, _organization_cache
    if _directory is not None:
        await _directory.aclose()
    _directory = None
    _organization_cache = None


# --- Per-request dependencies ---

def get_session_manager(
    store: CookieSessionStore = Depends(get_session_store),
    codec: SessionCodec = Depends(get_codec),
    organizations: OrganizationCache = Depends(get_organization_cache),
) -> SessionManager:
    return SessionManager(store, codec, organizations)


def get_csrf_protection(
    codec: SessionCodec = Depends(get_codec),
    sessions: SessionManager = Depends(get_session_manager),
) -> CSRFProtection:
    return CSRFProtection(codec, sessions)


async def get_authenticated_session(
    sessions: SessionManager = Depends(get_session_manager),
) -> SessionView:
    view = await sessions.validated()
    if not view.is_authenticated:
        raise AuthenticationError()
    return view


# --- CSRF route class ---

def _provided(request: Request, dependency: Callable[[], Any]) -> Any:
    provider = request.app.dependency_overrides.get(dependency, dependency)
    return provider()


def csrf_protection_for(request: Request) -> CSRFProtection:
    """Builds the same CSRFProtection `get_csrf_protection` would, outside the dependency graph."""
    codec = _provided(request, get_codec)
    organizations = get_organization_cache(_provided(request, get_directory))
    sessions = SessionManager(get_session_store(request), codec, organizations)
    return CSRFProtection(codec, sessions)


class CSRFProtectedRoute(APIRoute):
    """
    Route class for state-changing endpoints.

    The token check wraps FastAPI's own request handler, so it runs before
    the body is read, parsed or validated. A forged request is rejected with
    403 whatever its body looks like. Safe methods pass straight through.
    """

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        route_handler = super().get_route_handler()

        async def csrf_guarded_handler(request: Request) -> Response:
            return await csrf_protection_for(request).guard(request, route_handler)

        return csrf_guarded_handler


# --- Input checks ---

def validate_email(email: Optional[str]) -> bool:
    return bool(email) and bool(_EMAIL.match(email.strip()))


# --- Team access ---

def ensure_team_access(view: SessionView, team_id: str, message: str = "Access denied to this team") -> None:
    """The session's organization snapshot is the access list."""
    if team_id not in [org.id for org in view.organizations]:
        logger.warning(f"{view.user.id} denied access to team {team_id}")
        raise AuthorizationError(message)


async def find_membership(directory, user_id: str, team_id: str) -> Optional[Membership]:
    memberships = await directory.list_memberships(user_id=user_id, organization_id=team_id)
    for membership in memberships:
        if membership.organization_id == team_id and membership.user_id == user_id:
            return membership
    return None


async def ensure_team_admin(directory, view: SessionView, team_id: str, message: str) -> Membership:
    membership = await find_membership(directory, view.user.id, team_id)
    if membership is None or membership.role.slug != "admin":
        raise AuthorizationError(message)
    return membership


# --- Authentication flows ---

async def _complete_organization_selection(directory, error: DirectoryServiceError) -> AuthenticationResult:
    pending_token = error.details.get("pending_authentication_token")
    organizations = error.details.get("organizations") or []
    if not pending_token or not organizations:
        raise error
    organization_id = organizations[0]["id"]
    logger.info(f"Directory asked for an organization choice; selecting {organization_id}")
    return await directory.authenticate_with_organization_selection(
        pending_authentication_token=pending_token,
        organization_id=organization_id,
    )


async def authenticate_magic_code(directory, email: str, code: str) -> AuthenticationResult:
    """
    Exchanges a magic-auth code for a subject plus upstream tokens.
    Completing the code proves the email address, so it is marked verified.

    Subjects that belong to several organizations under an SSO policy get an
    `organization_selection_required` answer instead; the first organization
    offered is selected so sign-in completes in one step.
    """
    try:
        result = await directory.authenticate_with_code(email=email, code=code)
    except DirectoryServiceError as e:
        if e.details.get("code") != ORGANIZATION_SELECTION_REQUIRED:
            raise
        result = await _complete_organization_selection(directory, e)
    user = result.user

    try:
        user = await directory.get_user(user.id)
    except DirectoryServiceError as e:
        logger.warning(f"Failed to fetch complete user data for {user.id}: {e}")

    if not user.email_verified:
        try:
            user = await directory.update_user(user.id, email_verified=True)
        except DirectoryServiceError as e:
            logger.warning(f"Failed to mark {user.id} email as verified: {e}")

    return result.model_copy(update={"user": user})
