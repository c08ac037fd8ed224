"""
Test fixtures for the Praxis BFF session and CSRF layer
"""
import asyncio
import itertools
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

TEST_SECRET = "test-session-secret-that-is-long-enough-0123456789"

# Settings are read at import time, so the environment must be in place first.
os.environ.setdefault("SESSION_SECRET_KEY", TEST_SECRET)
os.environ.setdefault("WORKOS_API_KEY", "sk_test_praxis")
os.environ.setdefault("WORKOS_CLIENT_ID", "client_test_praxis")
os.environ.setdefault("ENVIRONMENT", "test")

from praxis_bff.auth_utils import get_codec, get_directory  # noqa: E402
from praxis_bff.exceptions import (  # noqa: E402
    DirectoryConflictError,
    DirectoryNotFoundError,
    DirectoryServiceError,
)
from praxis_bff.main import app  # noqa: E402
from praxis_bff.organizations import OrganizationCache  # noqa: E402
from praxis_bff.session_codec import SessionCodec  # noqa: E402
from praxis_bff.session_data import (  # noqa: E402
    AuthenticationResult,
    Invitation,
    Membership,
    MembershipRole,
    Organization,
    OrganizationDomain,
    Subject,
)
from praxis_bff.session_manager import SessionManager  # noqa: E402
from praxis_bff.session_store import CookieSessionStore  # noqa: E402


class FakeClock:
    """Manually advanced wall clock, in epoch seconds."""

    def __init__(self, start: Optional[float] = None):
        self.now = float(int(time.time())) if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta).total_seconds()

    def rewind(self, **delta) -> None:
        self.now -= timedelta(**delta).total_seconds()


class FakeDirectory:
    """
    In-memory stand-in for WorkOS. Enforces the same uniqueness rules the
    session layer relies on: one organization per external_id and one
    membership per (user, organization).
    """

    def __init__(self):
        self.users: Dict[str, Subject] = {}
        self.organizations: Dict[str, Organization] = {}
        self.memberships: Dict[str, Membership] = {}
        self.invitations: Dict[str, Invitation] = {}
        self.magic_auth_sent: List[str] = []
        self.fail_magic_auth = False
        # email -> organization ids offered when sign-in needs an organization choice
        self.selection_required: Dict[str, List[str]] = {}
        self.create_organization_calls = 0
        self.codes: Dict[str, str] = {}
        self.fail_with: Optional[DirectoryServiceError] = None
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids):04d}"

    # --- seeding helpers ---

    def add_user(self, **fields) -> Subject:
        fields.setdefault("id", self._next_id("user"))
        fields.setdefault("email", f"{fields['id']}@example.com")
        user = Subject(**fields)
        self.users[user.id] = user
        return user

    def add_organization(
        self, name: str, personal: bool = False, colour: str = "#2563eb", org_id=None, domains=()
    ) -> Organization:
        org = Organization(
            id=org_id or self._next_id("org"),
            name=name,
            metadata={"personal": "true" if personal else "false", "colour": colour},
            domains=self._domains_from([{"domain": d, "state": "pending"} for d in domains], []),
        )
        self.organizations[org.id] = org
        return org

    def add_membership(self, user_id: str, organization_id: str, role: str = "member", status: str = "active"):
        membership = Membership(
            id=self._next_id("om"),
            user_id=user_id,
            organization_id=organization_id,
            role=MembershipRole(slug=role),
            status=status,
        )
        self.memberships[membership.id] = membership
        return membership

    def add_invitation(self, email: str, organization_id: str, state: str = "pending", age=timedelta(0)):
        invitation = Invitation(
            id=self._next_id("invitation"),
            email=email,
            state=state,
            organization_id=organization_id,
            created_at=(datetime.now(timezone.utc) - age).isoformat(),
        )
        self.invitations[invitation.id] = invitation
        return invitation

    def _domains_from(self, domain_data, existing: List[OrganizationDomain]) -> List[OrganizationDomain]:
        known = {d.domain: d for d in existing}
        return [
            known.get(item["domain"]) or OrganizationDomain(
                id=self._next_id("org_domain"), domain=item["domain"], state=item.get("state", "pending")
            )
            for item in domain_data
        ]

    def personal_organizations_of(self, user_id: str) -> List[Organization]:
        org_ids = {m.organization_id for m in self.memberships.values() if m.user_id == user_id}
        return [o for o in self.organizations.values() if o.id in org_ids and o.is_personal]

    # --- directory interface ---

    async def _yield(self):
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with

    async def list_memberships(self, user_id=None, organization_id=None, statuses=None, limit=100):
        await self._yield()
        return [
            m for m in self.memberships.values()
            if (user_id is None or m.user_id == user_id)
            and (organization_id is None or m.organization_id == organization_id)
        ]

    async def get_organization(self, organization_id):
        await self._yield()
        if organization_id not in self.organizations:
            raise DirectoryNotFoundError("Organization not found")
        return self.organizations[organization_id]

    async def get_organization_by_external_id(self, external_id):
        await self._yield()
        for org in self.organizations.values():
            if org.external_id == external_id:
                return org
        raise DirectoryNotFoundError("Organization not found")

    async def create_organization(self, name, metadata=None, domains=None, external_id=None, idempotency_key=None):
        self.create_organization_calls += 1
        await self._yield()
        if external_id and any(o.external_id == external_id for o in self.organizations.values()):
            raise DirectoryConflictError("An organization with this external_id already exists")
        if any(o.name == name for o in self.organizations.values() if not o.is_personal):
            raise DirectoryConflictError("An organization with this name already exists")
        org = Organization(
            id=self._next_id("org"),
            name=name,
            metadata=metadata or {},
            external_id=external_id,
            domains=self._domains_from([{"domain": d} for d in domains or []], []),
        )
        self.organizations[org.id] = org
        return org

    async def create_membership(self, user_id, organization_id, role_slug="member"):
        await self._yield()
        for m in self.memberships.values():
            if m.user_id == user_id and m.organization_id == organization_id:
                raise DirectoryConflictError("Membership already exists")
        return self.add_membership(user_id, organization_id, role=role_slug)

    async def update_organization(self, organization_id, **patch):
        await self._yield()
        org = await self.get_organization(organization_id)
        update = {}
        if patch.get("name") is not None:
            update["name"] = patch["name"]
        if patch.get("metadata") is not None:
            update["metadata"] = patch["metadata"]
        if patch.get("domain_data") is not None:
            update["domains"] = self._domains_from(patch["domain_data"], org.domains)
        org = org.model_copy(update=update)
        self.organizations[organization_id] = org
        return org

    async def delete_organization(self, organization_id):
        await self._yield()
        self.organizations.pop(organization_id, None)
        for membership_id in [m.id for m in self.memberships.values() if m.organization_id == organization_id]:
            del self.memberships[membership_id]

    async def get_membership(self, membership_id):
        await self._yield()
        if membership_id not in self.memberships:
            raise DirectoryNotFoundError("Organization membership not found")
        return self.memberships[membership_id]

    async def update_membership(self, membership_id, role_slug):
        membership = await self.get_membership(membership_id)
        membership = membership.model_copy(update={"role": MembershipRole(slug=role_slug)})
        self.memberships[membership_id] = membership
        return membership

    async def delete_membership(self, membership_id):
        await self.get_membership(membership_id)
        del self.memberships[membership_id]

    async def send_invitation(self, email, organization_id, inviter_user_id=None, role_slug=None, expires_in_days=None):
        await self._yield()
        return self.add_invitation(email, organization_id)

    async def list_invitations(self, organization_id=None, email=None):
        await self._yield()
        return [
            i for i in self.invitations.values()
            if (organization_id is None or i.organization_id == organization_id)
            and (email is None or i.email == email)
        ]

    async def get_invitation(self, invitation_id):
        await self._yield()
        if invitation_id not in self.invitations:
            raise DirectoryNotFoundError("Invitation not found")
        return self.invitations[invitation_id]

    async def revoke_invitation(self, invitation_id):
        invitation = await self.get_invitation(invitation_id)
        invitation = invitation.model_copy(update={"state": "revoked"})
        self.invitations[invitation_id] = invitation
        return invitation

    async def list_users(self, email=None, organization_id=None):
        await self._yield()
        return [u for u in self.users.values() if email is None or u.email == email]

    async def create_user(self, email, first_name=None, last_name=None, email_verified=False):
        await self._yield()
        return self.add_user(email=email, first_name=first_name, last_name=last_name, email_verified=email_verified)

    async def delete_user(self, user_id):
        await self._yield()
        self.users.pop(user_id, None)

    async def send_magic_auth(self, email):
        await self._yield()
        if self.fail_magic_auth:
            raise DirectoryServiceError(500, "Email provider unavailable")
        self.magic_auth_sent.append(email)

    async def get_user(self, user_id):
        await self._yield()
        if user_id not in self.users:
            raise DirectoryNotFoundError("User not found")
        return self.users[user_id]

    async def update_user(self, user_id, **fields):
        await self._yield()
        user = self.users[user_id].model_copy(update={k: v for k, v in fields.items() if v is not None})
        self.users[user_id] = user
        return user

    async def authenticate_with_code(self, email, code):
        await self._yield()
        if self.codes.get(email) != code:
            raise DirectoryServiceError(400, "Invalid one-time code")
        user = next(u for u in self.users.values() if u.email == email)
        if email in self.selection_required:
            raise DirectoryServiceError(403, "User must choose an organization", {
                "code": "organization_selection_required",
                "pending_authentication_token": f"pending-{user.id}",
                "organizations": [{"id": org_id} for org_id in self.selection_required[email]],
            })
        return AuthenticationResult(user=user, access_token="access-token", refresh_token="refresh-token")

    async def authenticate_with_organization_selection(self, pending_authentication_token, organization_id):
        await self._yield()
        user_id = pending_authentication_token.removeprefix("pending-")
        return AuthenticationResult(
            user=self.users[user_id],
            access_token="access-token",
            refresh_token="refresh-token",
            organization_id=organization_id,
        )


async def sign_in(sessions: SessionManager, user: Subject, remember_me: bool = False, organization_id=None) -> str:
    """Create a session for `user` and persist it in the manager's store."""
    token = await sessions.create(
        AuthenticationResult(
            user=user,
            access_token="access-token",
            refresh_token="refresh-token",
            organization_id=organization_id,
        ),
        remember_me=remember_me,
    )
    sessions.store.write(token, remember_me=remember_me)
    return token


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec(clock):
    return SessionCodec(TEST_SECRET, clock=clock)


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def store():
    return CookieSessionStore(None, cookie_name="wos-session", secure=False, samesite="lax")


@pytest.fixture
def sessions(store, codec, directory, clock):
    return SessionManager(store, codec, OrganizationCache(directory), clock=clock)


@pytest.fixture
def alice(directory):
    return directory.add_user(id="user_alice", email="alice@example.com", first_name="Alice", last_name="Liddell")


@pytest.fixture
def bob(directory):
    return directory.add_user(id="user_bob", email="bob@example.com", first_name="Bob", last_name="Builder")


@pytest.fixture
def alice_teams(directory, alice):
    """Alice belongs to a personal team and one shared team."""
    personal = directory.add_organization("Alice's Team", personal=True, org_id="org_alice_personal")
    shared = directory.add_organization("Research", org_id="org_research")
    directory.add_membership(alice.id, personal.id, role="admin")
    directory.add_membership(alice.id, shared.id, role="member")
    return personal, shared


@pytest.fixture
def sign_in_as():
    return sign_in


# --- HTTP-level fixtures ---

def sign_in_client(client, directory, user, code: str = "123456", remember_me: bool = False):
    """Sign `user` in through the magic-auth callback, leaving the cookie on `client`."""
    directory.codes[user.email] = code
    response = client.post(
        "/api/auth/callback",
        json={"email": user.email, "code": code, "remember_me": remember_me},
    )
    assert response.status_code == 200, response.text
    return response


def csrf_token(client) -> str:
    response = client.get("/api/auth/csrf-token")
    assert response.status_code == 200, response.text
    return response.json()["csrf_token"]


@pytest.fixture
def client(directory):
    app.dependency_overrides[get_directory] = lambda: directory
    app.dependency_overrides[get_codec] = lambda: SessionCodec(TEST_SECRET)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def alice_client(client, directory, alice, alice_teams):
    sign_in_client(client, directory, alice)
    return client
