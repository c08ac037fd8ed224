# src/praxis_bff/routes/teams.py

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..auth_utils import (
    CSRFProtectedRoute,
    ensure_team_access,
    ensure_team_admin,
    get_authenticated_session,
    get_directory,
    get_session_manager,
)
from ..exceptions import AuthorizationError, DirectoryConflictError, DirectoryServiceError
from ..organizations import MAX_DOMAINS, validate_domain, validate_team_id
from ..session_data import DEFAULT_TEAM_COLOUR, Organization, SessionView
from ..session_manager import SessionManager
from . import load_team, require_team_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teams", tags=["Teams"], route_class=CSRFProtectedRoute)

TEAM_NAME_PATTERN = r"^[a-zA-Z0-9\s\-_]+$"
# Renames may also use apostrophes, as in the personal team's "Alice's Team".
TEAM_RENAME_PATTERN = r"^[a-zA-Z0-9\s\-_']+$"
COLOUR_PATTERN = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"


class SwitchTeamRequest(BaseModel):
    organization_id: str = ""


class CreateTeamRequest(BaseModel):
    name: str = Field(min_length=1, max_length=50, pattern=TEAM_NAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=200)
    color: str = Field(default=DEFAULT_TEAM_COLOUR, pattern=COLOUR_PATTERN)
    domains: List[str] = Field(default_factory=list, max_length=MAX_DOMAINS)


class UpdateTeamRequest(BaseModel):
    name: str = Field(min_length=1, max_length=50, pattern=TEAM_RENAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=200)
    color: Optional[str] = Field(default=None, pattern=COLOUR_PATTERN)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def team_summary(org: Organization) -> dict:
    return {
        "id": org.id,
        "name": org.name,
        "color": org.colour,
        "domains": [d.model_dump() for d in org.domains],
        "metadata": org.metadata,
    }


async def _refresh_session_teams(sessions: SessionManager) -> None:
    try:
        await sessions.refresh_organizations()
    except DirectoryServiceError as e:
        # The directory change already happened; the snapshot catches up on the next refresh.
        logger.warning(f"Failed to refresh session organizations: {e}")


@router.get("")
async def list_teams(view: SessionView = Depends(get_authenticated_session)):
    return {
        "organizations": [org.model_dump() for org in view.organizations],
        "current_organization_id": view.current_organization_id,
    }


@router.post("")
async def create_team(
        body: CreateTeamRequest,
        view: SessionView = Depends(get_authenticated_session),
        sessions: SessionManager = Depends(get_session_manager),
        directory=Depends(get_directory),
):
    domains = [d.lower().strip() for d in body.domains]
    for domain in domains:
        if not validate_domain(domain):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid domain format: {domain}")
    if len(set(domains)) != len(domains):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Duplicate domains are not allowed")

    try:
        organization = await directory.create_organization(name=body.name.strip(), domains=domains or None)
    except DirectoryConflictError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An organization with this name or domain already exists",
        )
    logger.info(f"{view.user.id} created team {organization.id}")

    metadata = {
        "personal": "false",
        "colour": body.color,
        "createdBy": view.user.id,
        "createdAt": _now_iso(),
    }
    if body.description and body.description.strip():
        metadata["description"] = body.description.strip()

    try:
        organization = await directory.update_organization(organization.id, metadata=metadata)
        await directory.create_membership(user_id=view.user.id, organization_id=organization.id, role_slug="admin")
    except DirectoryServiceError:
        logger.error(f"Setting up team {organization.id} failed; deleting it")
        await directory.delete_organization(organization.id)
        raise

    await _refresh_session_teams(sessions)
    return {"organization": team_summary(organization), "message": "Team created successfully"}


@router.post("/switch")
async def switch_team(
        body: SwitchTeamRequest,
        view: SessionView = Depends(get_authenticated_session),
        sessions: SessionManager = Depends(get_session_manager),
        directory=Depends(get_directory),
):
    if not validate_team_id(body.organization_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Organization ID is required")

    if not sessions.switch_organization(body.organization_id):
        raise AuthorizationError("Access denied to this team")

    user_role = "member"
    try:
        memberships = await directory.list_memberships(user_id=view.user.id, organization_id=body.organization_id)
        for membership in memberships:
            if membership.organization_id == body.organization_id:
                user_role = membership.role.slug
                break
    except DirectoryServiceError as e:
        logger.warning(f"Failed to fetch role of {view.user.id} in {body.organization_id}: {e}")

    current = next(org for org in view.organizations if org.id == body.organization_id)
    return {"success": True, "current_organization": current.model_dump(), "user_role": user_role}


@router.post("/refresh")
async def refresh_teams(
        view: SessionView = Depends(get_authenticated_session),
        sessions: SessionManager = Depends(get_session_manager),
):
    await sessions.refresh_organizations()
    refreshed = await sessions.fetch()
    return {
        "organizations": [org.model_dump() for org in refreshed.organizations],
        "current_organization_id": refreshed.current_organization_id,
    }


@router.put("/{team_id}")
async def update_team(
        team_id: str,
        body: UpdateTeamRequest,
        view: SessionView = Depends(get_authenticated_session),
        sessions: SessionManager = Depends(get_session_manager),
        directory=Depends(get_directory),
):
    require_team_id(team_id)
    ensure_team_access(view, team_id)
    await ensure_team_admin(directory, view, team_id, "Only team admins can update team settings")

    organization = await load_team(directory, team_id)
    name = body.name.strip()
    for other in view.organizations:
        if other.id != team_id and other.name.lower() == name.lower():
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A team with this name already exists")

    metadata = {
        **organization.metadata,
        "colour": body.color or organization.colour,
        "updatedAt": _now_iso(),
        "updatedBy": view.user.id,
    }
    if body.description is not None:
        metadata["description"] = body.description.strip()

    updated = await directory.update_organization(team_id, name=name, metadata=metadata)
    logger.info(f"{view.user.id} updated team {team_id}")
    await _refresh_session_teams(sessions)
    return {"organization": team_summary(updated), "message": "Team settings updated successfully"}


@router.delete("/{team_id}")
async def delete_team(
        team_id: str,
        view: SessionView = Depends(get_authenticated_session),
        sessions: SessionManager = Depends(get_session_manager),
        directory=Depends(get_directory),
):
    require_team_id(team_id)
    ensure_team_access(view, team_id)
    await ensure_team_admin(directory, view, team_id, "Only team admins can delete teams")

    organization = await load_team(directory, team_id)
    if organization.is_personal:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete personal teams")

    members = await directory.list_memberships(organization_id=team_id)
    if len(members) > 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete team with multiple members. Remove all members first.",
        )

    await directory.delete_organization(team_id)
    logger.info(f"{view.user.id} deleted team {team_id}")
    await _refresh_session_teams(sessions)
    return {"success": True, "message": "Team deleted successfully"}
