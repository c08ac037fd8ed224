# src/praxis_bff/session_data.py

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TEAM_COLOUR = "#ff5c4d"


class Subject(BaseModel):
    """Cached copy of the directory user that owns a session."""
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email_verified: bool = False
    profile_picture_url: Optional[str] = None


class OrganizationDomain(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    domain: str
    state: str = "pending"


class Organization(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    domains: List[OrganizationDomain] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)
    external_id: Optional[str] = None

    @property
    def is_personal(self) -> bool:
        return self.metadata.get("personal") == "true"

    @property
    def colour(self) -> str:
        return self.metadata.get("colour") or DEFAULT_TEAM_COLOUR


class MembershipRole(BaseModel):
    model_config = ConfigDict(extra="ignore")

    slug: str = "member"


class Membership(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    organization_id: str
    role: MembershipRole = Field(default_factory=MembershipRole)
    status: str = "active"


class Invitation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str
    state: str = "pending"
    organization_id: Optional[str] = None
    inviter_user_id: Optional[str] = None
    expires_at: Optional[str] = None
    created_at: Optional[str] = None


class AuthenticationResult(BaseModel):
    """What a successful directory authentication hands to the session layer."""
    model_config = ConfigDict(extra="ignore")

    user: Subject
    access_token: str = ""
    refresh_token: str = ""
    organization_id: Optional[str] = None


class SessionData(BaseModel):
    """
    Represents the payload signed into the session cookie.
    Timestamps are epoch milliseconds.
    """
    user: Subject
    access_token: str
    refresh_token: str
    organizations: List[Organization] = Field(default_factory=list)
    current_organization_id: Optional[str] = None
    last_activity: int
    expires_at: int
    remember_me: bool = False

    def organization_ids(self) -> List[str]:
        return [org.id for org in self.organizations]

    def to_claims(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class SessionView(BaseModel):
    """What route handlers see of the current session. `user` is None when signed out."""
    user: Optional[Subject] = None
    organizations: List[Organization] = Field(default_factory=list)
    current_organization_id: Optional[str] = None
    access_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def current_organization(self) -> Optional[Organization]:
        for org in self.organizations:
            if org.id == self.current_organization_id:
                return org
        return None


class SessionInfo(BaseModel):
    is_active: bool
    expires_at: Optional[int] = None
    last_activity: Optional[int] = None
    remember_me: Optional[bool] = None
    time_until_expiry: Optional[int] = None
    is_near_expiry: Optional[bool] = None
