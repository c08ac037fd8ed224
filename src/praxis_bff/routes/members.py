# src/praxis_bff/routes/members.py

"""
Team membership routes: listing members, changing roles and removing people.

A team must always keep at least one admin, and nobody may change or remove
their own membership through these routes.
"""

import asyncio
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..auth_utils import (
    CSRFProtectedRoute,
    ensure_team_access,
    ensure_team_admin,
    find_membership,
    get_authenticated_session,
    get_directory,
)
from ..exceptions import DirectoryNotFoundError, DirectoryServiceError
from ..organizations import validate_membership_id
from ..session_data import Membership, SessionView
from . import require_team_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teams", tags=["Team members"], route_class=CSRFProtectedRoute)

MEMBERSHIP_ID_PATTERN = r"^om_"
MAX_BULK_MEMBERS = 20

Role = Literal["admin", "member"]


class UpdateMemberRoleRequest(BaseModel):
    membership_id: str = Field(pattern=MEMBERSHIP_ID_PATTERN)
    role: Role


class BulkMemberRequest(BaseModel):
    action: Literal["remove", "update_role"]
    membership_ids: List[str] = Field(min_length=1, max_length=MAX_BULK_MEMBERS)
    role: Optional[Role] = None


class MemberChangeRejected(Exception):
    """A single membership change that breaks a team rule."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


def _membership_summary(membership: Membership) -> dict:
    return {
        "id": membership.id,
        "user_id": membership.user_id,
        "organization_id": membership.organization_id,
        "role": membership.role.slug,
        "status": membership.status,
    }


async def _get_team_membership(directory, team_id: str, membership_id: str, not_found: str) -> Membership:
    try:
        membership = await directory.get_membership(membership_id)
    except DirectoryNotFoundError:
        raise MemberChangeRejected(status.HTTP_404_NOT_FOUND, "Member not found")
    if membership.organization_id != team_id:
        raise MemberChangeRejected(status.HTTP_404_NOT_FOUND, not_found)
    return membership


def _admin_count(memberships: List[Membership]) -> int:
    return sum(1 for m in memberships if m.role.slug == "admin" and m.status != "inactive")


def _check_role_change(view: SessionView, membership: Membership, role: str, admins: int) -> None:
    if membership.user_id == view.user.id:
        raise MemberChangeRejected(status.HTTP_400_BAD_REQUEST, "You cannot change your own role")
    if membership.role.slug == role:
        raise MemberChangeRejected(status.HTTP_400_BAD_REQUEST, "Member already has the specified role")
    if membership.role.slug == "admin" and role != "admin" and admins <= 1:
        raise MemberChangeRejected(status.HTTP_400_BAD_REQUEST, "Cannot remove the last admin from the team")


def _check_removal(view: SessionView, membership: Membership, admins: int) -> None:
    if membership.user_id == view.user.id:
        raise MemberChangeRejected(status.HTTP_400_BAD_REQUEST, "You cannot remove yourself from the team")
    if membership.role.slug == "admin" and admins <= 1:
        raise MemberChangeRejected(status.HTTP_400_BAD_REQUEST, "Cannot remove the last admin from the team")


async def _user_or_none(directory, user_id: str) -> Optional[dict]:
    try:
        user = await directory.get_user(user_id)
    except DirectoryServiceError as e:
        logger.warning(f"Failed to load user {user_id} for member list: {e}")
        return None
    return user.model_dump(include={"id", "email", "first_name", "last_name", "profile_picture_url"})


def _matches_search(member: dict, search: str) -> bool:
    user = member["user"]
    if user is None:
        return False
    name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".lower()
    return search in name or search in user["email"].lower()


@router.get("/{team_id}/members")
async def list_members(
        team_id: str,
        role: Optional[Role] = None,
        search: Optional[str] = None,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    require_team_id(team_id)
    ensure_team_access(view, team_id)

    memberships = await directory.list_memberships(organization_id=team_id)
    if role:
        memberships = [m for m in memberships if m.role.slug == role]

    users = await asyncio.gather(*(_user_or_none(directory, m.user_id) for m in memberships))
    members = [
        {**_membership_summary(m), "user": user, "is_current_user": m.user_id == view.user.id}
        for m, user in zip(memberships, users)
    ]
    if search and search.strip():
        members = [m for m in members if _matches_search(m, search.strip().lower())]

    try:
        invitations = [i.model_dump() for i in await directory.list_invitations(organization_id=team_id)]
    except DirectoryServiceError as e:
        logger.warning(f"Failed to list invitations for {team_id}: {e}")
        invitations = []

    current = await find_membership(directory, view.user.id, team_id)
    is_admin = current is not None and current.role.slug == "admin"
    return {
        "members": members,
        "invitations": invitations,
        "total": len(members),
        "permissions": {
            "can_manage_members": is_admin,
            "can_invite_members": is_admin,
            "can_update_roles": is_admin,
        },
    }


@router.put("/{team_id}/members")
async def update_member_role(
        team_id: str,
        body: UpdateMemberRoleRequest,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    require_team_id(team_id)
    ensure_team_access(view, team_id, "Access denied to this organization")
    await ensure_team_admin(directory, view, team_id, "Only team admins can update member roles")

    try:
        membership = await _get_team_membership(
            directory, team_id, body.membership_id, "Member not found in this organization"
        )
        admins = _admin_count(await directory.list_memberships(organization_id=team_id))
        _check_role_change(view, membership, body.role, admins)
    except MemberChangeRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    updated = await directory.update_membership(membership.id, role_slug=body.role)
    logger.info(f"{view.user.id} set role of {membership.id} in {team_id} to {body.role}")
    return {
        "success": True,
        "message": "Member role updated successfully",
        "membership": _membership_summary(updated),
    }


@router.post("/{team_id}/members")
async def bulk_update_members(
        team_id: str,
        body: BulkMemberRequest,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    require_team_id(team_id)
    ensure_team_access(view, team_id, "Access denied to this organization")
    await ensure_team_admin(directory, view, team_id, "Only team admins can manage members")

    if body.action == "update_role" and body.role is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Role is required for update_role")
    if not all(validate_membership_id(mid) for mid in body.membership_ids):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid membership ID format")

    # Admin count is tracked across the batch so it cannot demote or remove every admin.
    admins = _admin_count(await directory.list_memberships(organization_id=team_id))
    results = []
    for membership_id in body.membership_ids:
        try:
            membership = await _get_team_membership(
                directory, team_id, membership_id, "Member not found in this organization"
            )
            if body.action == "remove":
                _check_removal(view, membership, admins)
                await directory.delete_membership(membership.id)
                message = "Member removed"
            else:
                _check_role_change(view, membership, body.role, admins)
                await directory.update_membership(membership.id, role_slug=body.role)
                message = f"Role updated to {body.role}"
        except MemberChangeRejected as e:
            results.append({"membership_id": membership_id, "success": False, "error": e.message})
            continue
        except DirectoryServiceError as e:
            logger.warning(f"Bulk {body.action} failed for {membership_id}: {e}")
            results.append({"membership_id": membership_id, "success": False, "error": e.message})
            continue

        if membership.role.slug == "admin":
            admins -= 1
        if body.action == "update_role" and body.role == "admin":
            admins += 1
        results.append({"membership_id": membership_id, "success": True, "message": message})

    successful = sum(1 for r in results if r["success"])
    logger.info(f"{view.user.id} bulk {body.action} in {team_id}: {successful}/{len(results)} succeeded")
    return {
        "results": results,
        "summary": {"total": len(results), "successful": successful, "failed": len(results) - successful},
    }


@router.delete("/members/{membership_id}")
async def remove_member(
        membership_id: str,
        view: SessionView = Depends(get_authenticated_session),
        directory=Depends(get_directory),
):
    """Removes a member from the session's current organization."""
    if not validate_membership_id(membership_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid membership ID format")
    team_id = view.current_organization_id
    if not team_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No current organization selected")

    await ensure_team_admin(directory, view, team_id, "Only organization admins can remove members")

    try:
        membership = await _get_team_membership(
            directory, team_id, membership_id, "Member not found in current organization"
        )
        if membership.user_id == view.user.id:
            raise MemberChangeRejected(
                status.HTTP_400_BAD_REQUEST, "You cannot remove yourself from the organization"
            )
    except MemberChangeRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    await directory.delete_membership(membership.id)
    logger.info(f"{view.user.id} removed membership {membership.id} from {team_id}")
    return {"success": True, "message": "Member removed successfully"}
