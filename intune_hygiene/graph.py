"""Microsoft Graph client used by the Intune hygiene workflows.

The client is an explicit handle: callers sign in once, pass the client to
each workflow and close it when the run is over. Tokens come from MSAL,
either with an app registration secret (client credentials) or through an
interactive / device code sign-in for a delegated administrator.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

import msal
import requests

logger = logging.getLogger(__name__)

API_BASE = "https://graph.microsoft.com/v1.0"
BETA_BASE = "https://graph.microsoft.com/beta"
AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant}"

# Public client id of the Microsoft Graph PowerShell application.
DEFAULT_PUBLIC_CLIENT_ID = "14d82eec-204b-4c2f-b7e8-296a70dab67c"
DELEGATED_SCOPES = [
    "https://graph.microsoft.com/DeviceManagementManagedDevices.ReadWrite.All",
]
APPLICATION_SCOPES = ["https://graph.microsoft.com/.default"]
DEFAULT_TIMEOUT = 60.0

MANAGED_DEVICE_SELECT = (
    "id,deviceName,serialNumber,lastSyncDateTime,azureADDeviceId,"
    "userPrincipalName,userId,operatingSystem"
)


class GraphError(Exception):
    """Raised when a Graph request fails or returns a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code is None:
            return message
        return f"{self.status_code} {message}"


class AuthenticationError(GraphError):
    """Raised when no access token could be acquired."""


def _error_from_response(resp: requests.Response) -> GraphError:
    """Build a :class:`GraphError` from a failed Graph response."""

    message = resp.reason or "Request failed"
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            code = error.get("code")
            text = error.get("message")
            message = ": ".join(part for part in (code, text) if part) or message
    return GraphError(message, status_code=resp.status_code)


def acquire_token(
    tenant_id: str,
    client_id: str = DEFAULT_PUBLIC_CLIENT_ID,
    client_secret: Optional[str] = None,
    *,
    device_code: bool = False,
) -> str:
    """Return a Graph access token using MSAL.

    A configured ``client_secret`` selects the client credentials flow.
    Otherwise the operator signs in interactively (browser) or with a device
    code when ``device_code`` is set.
    """

    if not tenant_id:
        raise AuthenticationError(
            "A tenant id is required. Pass --tenant-id or set AZURE_TENANT_ID."
        )
    authority = AUTHORITY_TEMPLATE.format(tenant=tenant_id)

    if client_secret:
        app = msal.ConfidentialClientApplication(
            client_id, authority=authority, client_credential=client_secret
        )
        result = app.acquire_token_for_client(scopes=APPLICATION_SCOPES)
    else:
        app = msal.PublicClientApplication(client_id, authority=authority)
        result = None
        accounts = app.get_accounts()
        if accounts:
            result = app.acquire_token_silent(DELEGATED_SCOPES, account=accounts[0])
        if not result:
            if device_code:
                flow = app.initiate_device_flow(scopes=DELEGATED_SCOPES)
                if "user_code" not in flow:
                    raise AuthenticationError(
                        f"Failed to start device code flow: {flow.get('error_description', flow)}"
                    )
                print(flow["message"])
                result = app.acquire_token_by_device_flow(flow)
            else:
                result = app.acquire_token_interactive(scopes=DELEGATED_SCOPES)

    if not result or "access_token" not in result:
        detail = (result or {}).get("error_description") or (result or {}).get("error")
        raise AuthenticationError(f"Sign-in failed: {detail or 'no token returned'}")
    logger.debug("Acquired Graph token for tenant %s", tenant_id)
    return result["access_token"]


class GraphClient:
    """Thin Microsoft Graph REST client bound to one access token."""

    def __init__(
        self,
        access_token: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            }
        )

    @classmethod
    def sign_in(
        cls,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        *,
        device_code: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "GraphClient":
        """Sign in with MSAL, falling back to environment configuration."""

        token = acquire_token(
            tenant_id or os.getenv("AZURE_TENANT_ID", ""),
            client_id or os.getenv("GRAPH_CLIENT_ID") or DEFAULT_PUBLIC_CLIENT_ID,
            client_secret if client_secret is not None else os.getenv("GRAPH_CLIENT_SECRET"),
            device_code=device_code,
        )
        return cls(token, timeout=timeout)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "GraphClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Core HTTP

    def _request(
        self, method: str, endpoint: str, *, beta: bool = False, **kwargs: Any
    ) -> requests.Response:
        if endpoint.startswith("http"):
            url = endpoint
        else:
            url = f"{BETA_BASE if beta else API_BASE}/{endpoint.lstrip('/')}"
        logger.debug("%s %s", method, url)
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise GraphError(f"{method} {url} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise _error_from_response(resp)
        return resp

    def get(
        self, endpoint: str, params: Optional[Mapping[str, str]] = None, *, beta: bool = False
    ) -> Dict[str, Any]:
        resp = self._request("GET", endpoint, params=params, beta=beta)
        try:
            return resp.json()
        except ValueError as exc:
            raise GraphError(
                f"Unreadable response body: {exc}", status_code=resp.status_code
            ) from exc

    def get_all(
        self,
        endpoint: str,
        params: Optional[Mapping[str, str]] = None,
        *,
        beta: bool = False,
    ) -> Iterator[Dict[str, Any]]:
        """Yield every item of a collection, following ``@odata.nextLink``."""

        data = self.get(endpoint, params=params, beta=beta)
        while True:
            for item in data.get("value", []):
                yield item
            next_link = data.get("@odata.nextLink")
            if not next_link:
                return
            data = self.get(next_link)

    # Managed devices

    def get_managed_device(self, device_id: str) -> Dict[str, Any]:
        """Return the ``managedDevice`` resource for *device_id*."""

        return self.get(
            f"deviceManagement/managedDevices/{device_id}",
            params={"$select": MANAGED_DEVICE_SELECT},
        )

    def delete_managed_device(self, device_id: str) -> None:
        """Delete the managed device *device_id* from Intune."""

        self._request("DELETE", f"deviceManagement/managedDevices/{device_id}")

    def list_managed_devices(
        self, filter_expr: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Return all managed devices, optionally narrowed by an OData filter."""

        params = {"$select": MANAGED_DEVICE_SELECT}
        if filter_expr:
            params["$filter"] = filter_expr
        return list(self.get_all("deviceManagement/managedDevices", params=params))

    def get_logged_on_users(self, device_id: str) -> List[Dict[str, Any]]:
        """Return the ``usersLoggedOn`` entries recorded for *device_id*."""

        data = self.get(
            f"deviceManagement/managedDevices/{device_id}",
            params={"$select": "id,usersLoggedOn"},
            beta=True,
        )
        return list(data.get("usersLoggedOn") or [])

    def get_primary_users(self, device_id: str) -> List[Dict[str, Any]]:
        """Return the users assigned as primary user of *device_id*."""

        return list(
            self.get_all(f"deviceManagement/managedDevices/{device_id}/users", beta=True)
        )

    def set_primary_user(self, device_id: str, user_id: str) -> None:
        """Assign *user_id* as the primary user of *device_id*."""

        self._request(
            "POST",
            f"deviceManagement/managedDevices/{device_id}/users/$ref",
            beta=True,
            json={"@odata.id": f"{BETA_BASE}/users/{user_id}"},
        )


def device_name_prefix_filter(prefixes: Sequence[str]) -> Optional[str]:
    """Return an OData filter matching any of *prefixes* on ``deviceName``."""

    clauses = [
        "startswith(deviceName,'{}')".format(prefix.replace("'", "''"))
        for prefix in prefixes
        if prefix
    ]
    if not clauses:
        return None
    return " or ".join(clauses)


__all__ = [
    "API_BASE",
    "AuthenticationError",
    "BETA_BASE",
    "DEFAULT_PUBLIC_CLIENT_ID",
    "GraphClient",
    "GraphError",
    "acquire_token",
    "device_name_prefix_filter",
]
