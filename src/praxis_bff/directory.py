# src/praxis_bff/directory.py

"""
Async client for the WorkOS User Management and Organizations APIs.

WorkOS is the system of record for users, organizations, memberships and
invitations; the BFF only ever caches snapshots of them in the session.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import settings
from .exceptions import (
    ConfigurationError,
    DirectoryConflictError,
    DirectoryNotFoundError,
    DirectoryServiceError,
)
from .session_data import AuthenticationResult, Invitation, Membership, Organization, Subject

logger = logging.getLogger(__name__)

MAGIC_AUTH_GRANT = "urn:workos:oauth:grant-type:magic-auth:code"
ORGANIZATION_SELECTION_GRANT = "urn:workos:oauth:grant-type:organization-selection"
DEFAULT_PAGE_SIZE = 100


def _error_details(response: httpx.Response) -> Tuple[str, Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase, {}
    if isinstance(body, dict):
        message = body.get("message") or body.get("error_description") or body.get("error") or response.text
        return message, body
    return response.text, {}


class WorkOSDirectory:
    def __init__(
        self,
        api_key: Optional[str],
        client_id: Optional[str],
        base_url: str = settings.DIRECTORY_BASE_URL,
        timeout: float = settings.DIRECTORY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self._api_key = api_key
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def ensure_configured(self) -> None:
        if not self._api_key:
            raise ConfigurationError("WORKOS_API_KEY environment variable is required")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        # Checked per call, so routes that never reach the directory keep working.
        self.ensure_configured()
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message, details = _error_details(e.response)
            status_code = e.response.status_code
            logger.warning(f"Directory: {method} {path} failed: {status_code} - {message}")
            if status_code == 404:
                raise DirectoryNotFoundError(message, details) from e
            if status_code == 409:
                raise DirectoryConflictError(message, details) from e
            raise DirectoryServiceError(status_code, message, details) from e
        except httpx.RequestError as e:
            logger.error(f"Directory: request error on {method} {path}: {e}")
            raise DirectoryServiceError(503, f"Could not connect to directory service: {e}") from e

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _list_all(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        params = {k: v for k, v in params.items() if v is not None}
        params.setdefault("limit", DEFAULT_PAGE_SIZE)
        while True:
            page = await self._request("GET", path, params=params)
            items.extend(page.get("data", []))
            after = (page.get("list_metadata") or {}).get("after")
            if not after:
                return items
            params = {**params, "after": after}

    # --- Users ---

    async def list_users(self, email: Optional[str] = None, organization_id: Optional[str] = None) -> List[Subject]:
        params = {
            "email": email.lower().strip() if email else None,
            "organization_id": organization_id,
        }
        data = await self._list_all("/user_management/users", params)
        return [Subject.model_validate(item) for item in data]

    async def create_user(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email_verified: bool = False,
    ) -> Subject:
        body = {
            "email": email.lower().strip(),
            "first_name": first_name,
            "last_name": last_name,
            "email_verified": email_verified,
        }
        data = await self._request(
            "POST",
            "/user_management/users",
            json={k: v for k, v in body.items() if v is not None},
        )
        return Subject.model_validate(data)

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/user_management/users/{user_id}")

    async def get_user(self, user_id: str) -> Subject:
        return Subject.model_validate(await self._request("GET", f"/user_management/users/{user_id}"))

    async def update_user(self, user_id: str, **fields: Any) -> Subject:
        body = {k: v for k, v in fields.items() if v is not None}
        data = await self._request("PUT", f"/user_management/users/{user_id}", json=body)
        return Subject.model_validate(data)

    # --- Memberships ---

    async def list_memberships(
        self,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        statuses: Optional[List[str]] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[Membership]:
        if not user_id and not organization_id:
            raise ValueError("list_memberships requires user_id or organization_id")
        params = {
            "user_id": user_id,
            "organization_id": organization_id,
            "statuses": ",".join(statuses) if statuses else None,
            "limit": limit,
        }
        data = await self._list_all("/user_management/organization_memberships", params)
        return [Membership.model_validate(item) for item in data]

    async def get_membership(self, membership_id: str) -> Membership:
        data = await self._request("GET", f"/user_management/organization_memberships/{membership_id}")
        return Membership.model_validate(data)

    async def create_membership(self, user_id: str, organization_id: str, role_slug: str = "member") -> Membership:
        data = await self._request(
            "POST",
            "/user_management/organization_memberships",
            json={"user_id": user_id, "organization_id": organization_id, "role_slug": role_slug},
        )
        return Membership.model_validate(data)

    async def update_membership(self, membership_id: str, role_slug: str) -> Membership:
        data = await self._request(
            "PUT",
            f"/user_management/organization_memberships/{membership_id}",
            json={"role_slug": role_slug},
        )
        return Membership.model_validate(data)

    async def delete_membership(self, membership_id: str) -> None:
        await self._request("DELETE", f"/user_management/organization_memberships/{membership_id}")

    # --- Organizations ---

    async def get_organization(self, organization_id: str) -> Organization:
        return Organization.model_validate(await self._request("GET", f"/organizations/{organization_id}"))

    async def get_organization_by_external_id(self, external_id: str) -> Organization:
        data = await self._request("GET", f"/organizations/external_id/{external_id}")
        return Organization.model_validate(data)

    async def create_organization(
        self,
        name: str,
        metadata: Optional[Dict[str, str]] = None,
        domains: Optional[List[str]] = None,
        external_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Organization:
        body: Dict[str, Any] = {"name": name}
        if metadata:
            body["metadata"] = metadata
        if domains:
            body["domain_data"] = [{"domain": d.lower().strip(), "state": "pending"} for d in domains]
        if external_id:
            body["external_id"] = external_id
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        data = await self._request("POST", "/organizations", json=body, headers=headers)
        return Organization.model_validate(data)

    async def update_organization(self, organization_id: str, **patch: Any) -> Organization:
        body = {k: v for k, v in patch.items() if v is not None}
        data = await self._request("PUT", f"/organizations/{organization_id}", json=body)
        return Organization.model_validate(data)

    async def delete_organization(self, organization_id: str) -> None:
        await self._request("DELETE", f"/organizations/{organization_id}")

    # --- Invitations ---

    async def send_invitation(
        self,
        email: str,
        organization_id: str,
        inviter_user_id: Optional[str] = None,
        role_slug: Optional[str] = None,
        expires_in_days: Optional[int] = None,
    ) -> Invitation:
        body = {
            "email": email,
            "organization_id": organization_id,
            "inviter_user_id": inviter_user_id,
            "role_slug": role_slug,
            "expires_in_days": expires_in_days,
        }
        data = await self._request(
            "POST",
            "/user_management/invitations",
            json={k: v for k, v in body.items() if v is not None},
        )
        return Invitation.model_validate(data)

    async def list_invitations(self, organization_id: Optional[str] = None, email: Optional[str] = None) -> List[Invitation]:
        data = await self._list_all(
            "/user_management/invitations",
            {"organization_id": organization_id, "email": email},
        )
        return [Invitation.model_validate(item) for item in data]

    async def get_invitation(self, invitation_id: str) -> Invitation:
        return Invitation.model_validate(await self._request("GET", f"/user_management/invitations/{invitation_id}"))

    async def revoke_invitation(self, invitation_id: str) -> Invitation:
        data = await self._request("POST", f"/user_management/invitations/{invitation_id}/revoke")
        return Invitation.model_validate(data)

    # --- Authentication ---

    async def send_magic_auth(self, email: str) -> None:
        """Emails a one-time code that `authenticate_with_code` later exchanges."""
        await self._request("POST", "/user_management/magic_auth", json={"email": email.lower().strip()})

    async def _authenticate(self, grant: Dict[str, Any]) -> AuthenticationResult:
        if not self.client_id:
            raise ConfigurationError("WORKOS_CLIENT_ID environment variable is required")
        body = {"client_id": self.client_id, "client_secret": self._api_key, **grant}
        data = await self._request("POST", "/user_management/authenticate", json=body)
        return AuthenticationResult.model_validate(data)

    async def authenticate_with_code(self, email: str, code: str) -> AuthenticationResult:
        return await self._authenticate({
            "grant_type": MAGIC_AUTH_GRANT,
            "code": code,
            "email": email.lower().strip(),
        })

    async def authenticate_with_organization_selection(
        self, pending_authentication_token: str, organization_id: str
    ) -> AuthenticationResult:
        return await self._authenticate({
            "grant_type": ORGANIZATION_SELECTION_GRANT,
            "pending_authentication_token": pending_authentication_token,
            "organization_id": organization_id,
        })
