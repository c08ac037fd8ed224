# src/praxis_bff/organizations.py

import asyncio
import logging
import re
import weakref
from typing import List, Optional

from .exceptions import DirectoryConflictError
from .session_data import DEFAULT_TEAM_COLOUR, Organization, Subject

logger = logging.getLogger(__name__)

TEAM_COLOURS = [
    {"name": "Red", "value": "#dc2626"},
    {"name": "Orange", "value": "#ea580c"},
    {"name": "Amber", "value": "#d97706"},
    {"name": "Yellow", "value": "#eab308"},
    {"name": "Lime", "value": "#84cc16"},
    {"name": "Green", "value": "#059669"},
    {"name": "Teal", "value": "#0d9488"},
    {"name": "Cyan", "value": "#0891b2"},
    {"name": "Blue", "value": "#2563eb"},
    {"name": "Indigo", "value": "#4f46e5"},
    {"name": "Purple", "value": "#7c3aed"},
    {"name": "Pink", "value": "#db2777"},
    {"name": "Rose", "value": "#e11d48"},
    {"name": "Slate", "value": "#475569"},
    {"name": "Zinc", "value": "#e1e1e1"},
    {"name": "Stone", "value": "#808000"},
]

_TEAM_ID = re.compile(r"^org_.+")
_DOMAIN_ID = re.compile(r"^org_domain_.+")
_INVITATION_ID = re.compile(r"^invitation_.+")
_MEMBERSHIP_ID = re.compile(r"^om_")
_DOMAIN = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

MAX_DOMAINS = 10


def validate_team_id(team_id: Optional[str]) -> bool:
    return bool(team_id) and bool(_TEAM_ID.match(team_id))


def validate_domain_id(domain_id: Optional[str]) -> bool:
    return bool(domain_id) and bool(_DOMAIN_ID.match(domain_id))


def validate_invitation_id(invitation_id: Optional[str]) -> bool:
    return bool(invitation_id) and bool(_INVITATION_ID.match(invitation_id))


def validate_membership_id(membership_id: Optional[str]) -> bool:
    return bool(membership_id) and bool(_MEMBERSHIP_ID.match(membership_id))


def validate_domain(domain: Optional[str]) -> bool:
    return bool(domain) and bool(_DOMAIN.match(domain))


def personal_external_id(subject_id: str) -> str:
    return f"personal:{subject_id}"


def personal_team_name(subject: Subject) -> str:
    first_name = (subject.first_name or "").strip()
    if first_name:
        return f"{first_name}'s Team"
    return f"Personal Team ({subject.id})"


class OrganizationCache:
    """
    Builds the organization snapshot stored in a session.

    This is the only place organizations are created implicitly: a subject
    with no memberships gets exactly one personal organization. Uniqueness is
    enforced by the directory through the organization's external_id, so
    racing first requests on different workers converge on the same
    organization. Within one worker a per-subject lock keeps concurrent
    callers from racing at all.
    """

    def __init__(self, directory):
        self._directory = directory
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def directory(self):
        return self._directory

    def _lock_for(self, subject_id: str) -> asyncio.Lock:
        lock = self._locks.get(subject_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[subject_id] = lock
        return lock

    async def _fetch(self, subject_id: str) -> List[Organization]:
        memberships = await self._directory.list_memberships(user_id=subject_id)
        active = [m for m in memberships if m.status != "inactive"]
        if not active:
            return []
        return list(await asyncio.gather(
            *(self._directory.get_organization(m.organization_id) for m in active)
        ))

    async def list_for_subject(self, subject: Subject) -> List[Organization]:
        organizations = await self._fetch(subject.id)
        if organizations:
            return organizations

        lock = self._lock_for(subject.id)
        async with lock:
            organizations = await self._fetch(subject.id)
            if organizations:
                return organizations
            return [await self._provision_personal_organization(subject)]

    async def _provision_personal_organization(self, subject: Subject) -> Organization:
        external_id = personal_external_id(subject.id)
        try:
            organization = await self._directory.create_organization(
                name=personal_team_name(subject),
                metadata={
                    "personal": "true",
                    "colour": DEFAULT_TEAM_COLOUR,
                    "createdBy": subject.id,
                },
                external_id=external_id,
                idempotency_key=f"personal-org-{subject.id}",
            )
            logger.info(f"Provisioned personal organization {organization.id} for {subject.id}")
        except DirectoryConflictError:
            organization = await self._directory.get_organization_by_external_id(external_id)
            logger.info(f"Personal organization for {subject.id} already exists: {organization.id}")

        try:
            await self._directory.create_membership(
                user_id=subject.id,
                organization_id=organization.id,
                role_slug="admin",
            )
        except DirectoryConflictError:
            logger.debug(f"{subject.id} is already a member of {organization.id}")
        return organization
