# src/praxis_bff/session_manager.py

"""
Stateless signed-session management.

The whole session lives in one signed cookie. Every mutation decodes the
current token, derives a new SessionData with `model_copy`, re-signs it and
hands the new token to the cookie store; nothing is mutated in place.

Concurrent requests from the same browser each work from their own decoded
copy, so two mutations racing each other produce two tokens and the last
Set-Cookie applied by the browser wins. There is no server-side session
table to lock.
"""

import logging
import time
from datetime import timedelta
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from .exceptions import InvalidTokenError
from .organizations import OrganizationCache
from .session_codec import SessionCodec
from .session_data import AuthenticationResult, SessionData, SessionInfo, SessionView, Subject
from .session_store import CookieSessionStore

logger = logging.getLogger(__name__)

REMEMBER_ME_LIFETIME = timedelta(days=30)
DEFAULT_LIFETIME = timedelta(days=7)
REMEMBER_ME_INACTIVITY_TIMEOUT = timedelta(days=7)
DEFAULT_INACTIVITY_TIMEOUT = timedelta(hours=2)
NEAR_EXPIRY_THRESHOLD = timedelta(hours=1)

# Subject fields a profile update may change. `id` never changes.
MERGEABLE_SUBJECT_FIELDS = frozenset({
    "email",
    "first_name",
    "last_name",
    "email_verified",
    "profile_picture_url",
})


def _ms(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


def session_lifetime(remember_me: bool) -> timedelta:
    return REMEMBER_ME_LIFETIME if remember_me else DEFAULT_LIFETIME


def inactivity_timeout(remember_me: bool) -> timedelta:
    return REMEMBER_ME_INACTIVITY_TIMEOUT if remember_me else DEFAULT_INACTIVITY_TIMEOUT


class SessionManager:
    def __init__(
        self,
        store: CookieSessionStore,
        codec: SessionCodec,
        organizations: OrganizationCache,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self._codec = codec
        self._organizations = organizations
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # --- token plumbing ---

    def _sign(self, session: SessionData) -> str:
        remaining_ms = max(session.expires_at - self._now_ms(), 0)
        return self._codec.encode(session.to_claims(), timedelta(milliseconds=remaining_ms))

    def _persist(self, session: SessionData) -> None:
        self.store.write(self._sign(session), remember_me=session.remember_me)

    def _load(self) -> Optional[SessionData]:
        token = self.store.read()
        if not token:
            return None
        try:
            session = SessionData.model_validate(self._codec.decode(token))
        except InvalidTokenError as e:
            logger.warning(f"Session token rejected: {e}")
            return None
        except ValidationError as e:
            logger.warning(f"Session payload malformed: {e.error_count()} validation errors")
            return None
        if self._now_ms() > session.expires_at:
            logger.info(f"Session for {session.user.id} past expires_at")
            return None
        return session

    # --- lifecycle ---

    async def create(self, auth_result: AuthenticationResult, remember_me: bool = False) -> str:
        """
        Build and sign a new session for a freshly authenticated subject.

        Organizations are fetched (and a personal organization provisioned if
        the subject has none). The caller persists the returned token.
        """
        organizations = await self._organizations.list_for_subject(auth_result.user)
        org_ids = [org.id for org in organizations]
        if auth_result.organization_id in org_ids:
            current = auth_result.organization_id
        else:
            current = org_ids[0] if org_ids else None

        now = self._now_ms()
        session = SessionData(
            user=auth_result.user,
            access_token=auth_result.access_token,
            refresh_token=auth_result.refresh_token,
            organizations=organizations,
            current_organization_id=current,
            last_activity=now,
            expires_at=now + _ms(session_lifetime(remember_me)),
            remember_me=remember_me,
        )
        logger.info(f"Session created for {session.user.id} (remember_me={remember_me})")
        return self._sign(session)

    async def fetch(self) -> SessionView:
        session = self._load()
        if session is None:
            return SessionView()

        if not session.organizations:
            # Legacy or damaged payload: rebuild the organization snapshot in place.
            organizations = await self._organizations.list_for_subject(session.user)
            session = session.model_copy(update={
                "organizations": organizations,
                "current_organization_id": organizations[0].id if organizations else None,
            })
            self._persist(session)

        return SessionView(
            user=session.user,
            organizations=session.organizations,
            current_organization_id=session.current_organization_id,
            access_token=session.access_token,
        )

    async def validated(self) -> SessionView:
        """`fetch()` plus the inactivity ceiling; clears the cookie on timeout."""
        session = self._load()
        if session is None:
            return SessionView()
        idle_ms = self._now_ms() - session.last_activity
        if idle_ms > _ms(inactivity_timeout(session.remember_me)):
            logger.info(f"Session for {session.user.id} timed out after {idle_ms // 1000}s idle")
            self.store.clear()
            return SessionView()
        return await self.fetch()

    async def is_valid(self) -> bool:
        return (await self.validated()).is_authenticated

    def invalidate(self) -> None:
        self.store.clear()

    # --- mutators ---

    def touch_activity(self) -> bool:
        session = self._load()
        if session is None:
            return False
        self._persist(session.model_copy(update={"last_activity": self._now_ms()}))
        return True

    def refresh(self) -> bool:
        session = self._load()
        if session is None:
            return False
        now = self._now_ms()
        self._persist(session.model_copy(update={
            "last_activity": now,
            "expires_at": now + _ms(session_lifetime(session.remember_me)),
        }))
        return True

    def merge_subject_data(self, updated: Union[Subject, Mapping[str, Any]]) -> bool:
        session = self._load()
        if session is None:
            return False

        changes = updated.model_dump() if isinstance(updated, Subject) else dict(updated)
        if changes.get("id", session.user.id) != session.user.id:
            logger.warning(f"Refusing to merge data for {changes.get('id')} into session of {session.user.id}")
            return False
        patch = {k: v for k, v in changes.items() if k in MERGEABLE_SUBJECT_FIELDS}
        try:
            user = Subject.model_validate({**session.user.model_dump(), **patch})
        except ValidationError:
            return False
        self._persist(session.model_copy(update={"user": user}))
        return True

    def switch_organization(self, target_id: str) -> bool:
        session = self._load()
        if session is None:
            return False
        if target_id not in session.organization_ids():
            logger.warning(f"{session.user.id} attempted to switch into non-member organization {target_id}")
            return False
        self._persist(session.model_copy(update={
            "current_organization_id": target_id,
            "last_activity": self._now_ms(),
        }))
        logger.info(f"{session.user.id} switched to organization {target_id}")
        return True

    async def refresh_organizations(self) -> bool:
        session = self._load()
        if session is None:
            return False
        organizations = await self._organizations.list_for_subject(session.user)
        ids = [org.id for org in organizations]
        current = session.current_organization_id
        if current not in ids:
            current = ids[0] if ids else None
        self._persist(session.model_copy(update={
            "organizations": organizations,
            "current_organization_id": current,
        }))
        return True

    # --- introspection ---

    def session_info(self) -> SessionInfo:
        session = self._load()
        if session is None:
            return SessionInfo(is_active=False)
        time_until_expiry = session.expires_at - self._now_ms()
        return SessionInfo(
            is_active=True,
            expires_at=session.expires_at,
            last_activity=session.last_activity,
            remember_me=session.remember_me,
            time_until_expiry=time_until_expiry,
            is_near_expiry=time_until_expiry < _ms(NEAR_EXPIRY_THRESHOLD),
        )
