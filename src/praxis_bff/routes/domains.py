# src/praxis_bff/routes/domains.py

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..auth_utils import (
    CSRFProtectedRoute,
    ensure_team_access,
    ensure_team_admin,
    get_authenticated_session,
    get_directory,
)
from ..organizations import MAX_DOMAINS, validate_domain, validate_domain_id
from ..session_data import Organization, OrganizationDomain, SessionView
from . import load_team, require_team_id
from .teams import team_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teams", tags=["Team domains"], route_class=CSRFProtectedRoute)


class AddDomainRequest(BaseModel):
    domain: str = ""


def _domain_data(domains: List[OrganizationDomain]) -> List[dict]:
    return [{"domain": d.domain, "state": d.state} for d in domains]


def _find_domain(org: Organization, domain_id: str) -> Optional[OrganizationDomain]:
    return next((d for d in org.domains if d.id == domain_id), None)


def _require_domain_id(domain_id: str) -> None:
    if not validate_domain_id(domain_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid domain ID format")


@router.get("/{team_id}/domains")
async def list_domains(
        team_id: str,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    require_team_id(team_id)
    ensure_team_access(view, team_id)
    org = await load_team(directory, team_id)
    return {
        "domains": [d.model_dump() for d in org.domains],
        "total_domains": len(org.domains),
        "max_domains": MAX_DOMAINS,
        "is_personal_team": org.is_personal,
    }


@router.post("/{team_id}/domains")
async def add_domain(
        team_id: str,
        body: AddDomainRequest,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    require_team_id(team_id)
    domain = body.domain.lower().strip()
    if not validate_domain(domain) or "." not in domain:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid domain format")

    ensure_team_access(view, team_id)
    org = await load_team(directory, team_id)
    if org.is_personal:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot add domains to personal teams")
    await ensure_team_admin(directory, view, team_id, "Only organization admins can manage domains")

    if any(d.domain == domain for d in org.domains):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Domain already exists")
    if len(org.domains) >= MAX_DOMAINS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum {MAX_DOMAINS} domains allowed per team",
        )

    updated = await directory.update_organization(
        team_id,
        domain_data=_domain_data(org.domains) + [{"domain": domain, "state": "pending"}],
    )
    added = next((d for d in updated.domains if d.domain == domain), None)
    logger.info(f"{view.user.id} added domain {domain} to {team_id}")
    return {
        "domain": added.model_dump() if added else {"domain": domain, "state": "pending"},
        "organization": team_summary(updated),
        "message": "Domain added successfully",
    }


@router.get("/{team_id}/domains/{domain_id}")
async def get_domain(
        team_id: str,
        domain_id: str,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    require_team_id(team_id)
    _require_domain_id(domain_id)
    ensure_team_access(view, team_id)
    org = await load_team(directory, team_id)
    domain = _find_domain(org, domain_id)
    if domain is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Domain not found")
    return {"domain": {**domain.model_dump(), "organization_id": team_id}, "is_personal_team": org.is_personal}


@router.delete("/{team_id}/domains/{domain_id}")
async def remove_domain(
        team_id: str,
        domain_id: str,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    require_team_id(team_id)
    _require_domain_id(domain_id)
    ensure_team_access(view, team_id)
    org = await load_team(directory, team_id)
    if org.is_personal:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot manage domains on personal teams")
    await ensure_team_admin(directory, view, team_id, "Only organization admins can manage domains")

    domain = _find_domain(org, domain_id)
    if domain is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Domain not found")

    remaining = [d for d in org.domains if d.id != domain_id]
    updated = await directory.update_organization(team_id, domain_data=_domain_data(remaining))
    logger.info(f"{view.user.id} removed domain {domain.domain} from {team_id}")
    return {
        "success": True,
        "message": "Domain removed successfully",
        "removed_domain": domain.model_dump(),
        "organization": team_summary(updated),
    }
