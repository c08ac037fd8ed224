# src/praxis_bff/routes/invitations.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..auth_utils import (
    CSRFProtectedRoute,
    ensure_team_access,
    ensure_team_admin,
    get_authenticated_session,
    get_directory,
    validate_email,
)
from ..exceptions import DirectoryConflictError, DirectoryNotFoundError, DirectoryServiceError
from ..organizations import validate_invitation_id
from ..session_data import Invitation, SessionView
from . import require_team_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teams", tags=["Invitations"], route_class=CSRFProtectedRoute)

RESEND_COOLDOWN = timedelta(minutes=5)


class InviteRequest(BaseModel):
    email: str = ""
    role: Literal["admin", "member"] = "member"


def _invitation_summary(invitation: Invitation) -> dict:
    return {
        "id": invitation.id,
        "email": invitation.email,
        "organization_id": invitation.organization_id,
        "state": invitation.state,
        "created_at": invitation.created_at,
        "expires_at": invitation.expires_at,
    }


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _current_team(view: SessionView) -> str:
    team_id = view.current_organization_id
    if not team_id or view.current_organization is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return team_id


async def _load_team_invitation(directory, team_id: str, invitation_id: str) -> Invitation:
    try:
        invitation = await directory.get_invitation(invitation_id)
    except DirectoryNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found")
    if invitation.organization_id != team_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found in this team")
    return invitation


def _require_ids(team_id: str, invitation_id: str) -> None:
    require_team_id(team_id)
    if not validate_invitation_id(invitation_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid invitation ID format")


# --- Current organization ---

@router.get("/invitations")
async def list_current_invitations(
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    team_id = _current_team(view)
    invitations = await directory.list_invitations(organization_id=team_id)
    return {"invitations": [_invitation_summary(i) for i in invitations]}


@router.post("/invitations")
async def send_invitation(
        body: InviteRequest,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    email = body.email.lower().strip()
    if not validate_email(email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Valid email address is required")

    team_id = _current_team(view)
    await ensure_team_admin(directory, view, team_id, "Only organization admins can send invitations")

    try:
        invitation = await directory.send_invitation(
            email=email,
            organization_id=team_id,
            inviter_user_id=view.user.id,
            role_slug=body.role,
        )
    except DirectoryConflictError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An invitation for this email address already exists",
        )
    logger.info(f"{view.user.id} invited {email} to {team_id} as {body.role}")
    return {"invitation": _invitation_summary(invitation)}


# --- A single invitation ---

@router.get("/{team_id}/invitations/{invitation_id}")
async def get_invitation(
        team_id: str,
        invitation_id: str,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    _require_ids(team_id, invitation_id)
    ensure_team_access(view, team_id)
    invitation = await _load_team_invitation(directory, team_id, invitation_id)
    return {"invitation": _invitation_summary(invitation)}


@router.delete("/{team_id}/invitations/{invitation_id}")
async def revoke_invitation(
        team_id: str,
        invitation_id: str,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    _require_ids(team_id, invitation_id)
    ensure_team_access(view, team_id)
    await ensure_team_admin(directory, view, team_id, "Only team admins can revoke invitations")

    invitation = await _load_team_invitation(directory, team_id, invitation_id)
    if invitation.state == "accepted":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot revoke an already accepted invitation",
        )
    if invitation.state == "expired":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invitation has already expired")

    await directory.revoke_invitation(invitation.id)
    logger.info(f"{view.user.id} revoked invitation {invitation.id} in {team_id}")
    return {
        "success": True,
        "message": "Invitation revoked successfully",
        "revoked_invitation": {"id": invitation.id, "email": invitation.email, "state": "revoked"},
    }


@router.post("/{team_id}/invitations/{invitation_id}")
async def resend_invitation(
        team_id: str,
        invitation_id: str,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    """Sends a fresh invitation to the same address and revokes the old one."""
    _require_ids(team_id, invitation_id)
    ensure_team_access(view, team_id)
    await ensure_team_admin(directory, view, team_id, "Only team admins can resend invitations")

    invitation = await _load_team_invitation(directory, team_id, invitation_id)
    if invitation.state == "accepted":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot resend an already accepted invitation",
        )
    created_at = _parse_timestamp(invitation.created_at)
    if created_at and datetime.now(timezone.utc) - created_at < RESEND_COOLDOWN:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Please wait at least 5 minutes before resending an invitation",
        )

    try:
        resent = await directory.send_invitation(
            email=invitation.email,
            organization_id=team_id,
            inviter_user_id=view.user.id,
            role_slug="member",
        )
    except DirectoryConflictError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An invitation for this email address already exists",
        )

    if invitation.state == "pending":
        try:
            await directory.revoke_invitation(invitation.id)
        except DirectoryServiceError as e:
            logger.warning(f"Old invitation {invitation.id} was not revoked after resend: {e}")
    logger.info(f"{view.user.id} resent invitation {invitation.id} as {resent.id}")
    return {"success": True, "message": "Invitation sent successfully", "invitation": _invitation_summary(resent)}
