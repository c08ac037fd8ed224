# src/praxis_bff/routes/__init__.py

"""Team management routes. Every router here uses CSRFProtectedRoute."""

from fastapi import HTTPException, status

from ..exceptions import DirectoryNotFoundError
from ..organizations import validate_team_id
from ..session_data import Organization


def require_team_id(team_id: str) -> None:
    if not validate_team_id(team_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid team ID format")


async def load_team(directory, team_id: str) -> Organization:
    try:
        return await directory.get_organization(team_id)
    except DirectoryNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
