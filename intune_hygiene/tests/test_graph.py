"""Tests for the Graph REST client without network access."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest
import requests

from intune_hygiene import graph
from intune_hygiene.graph import (
    API_BASE,
    AuthenticationError,
    BETA_BASE,
    GraphClient,
    GraphError,
    device_name_prefix_filter,
)


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Optional[Any] = None, reason: str = "OK") -> None:
        self.status_code = status_code
        self._body = body
        self.reason = reason

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FakeSession:
    def __init__(self, responses: List[Any]) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self.headers: Dict[str, str] = {}
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


def test_get_managed_device_uses_select_and_timeout() -> None:
    """Device lookups go to the v1.0 endpoint with the configured timeout."""

    session = FakeSession([FakeResponse(body={"id": "abc", "deviceName": "PC"})])
    client = GraphClient("token", timeout=12, session=session)

    device = client.get_managed_device("abc")

    assert device["deviceName"] == "PC"
    call = session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == f"{API_BASE}/deviceManagement/managedDevices/abc"
    assert call["timeout"] == 12
    assert "$select" in call["params"]
    assert session.headers["Authorization"] == "Bearer token"


def test_error_response_raises_graph_error_with_message() -> None:
    """Graph error bodies are turned into readable exceptions."""

    body = {"error": {"code": "ResourceNotFound", "message": "Device not found"}}
    session = FakeSession([FakeResponse(404, body, reason="Not Found")])
    client = GraphClient("token", session=session)

    with pytest.raises(GraphError) as excinfo:
        client.get_managed_device("abc")

    assert excinfo.value.status_code == 404
    assert str(excinfo.value) == "404 ResourceNotFound: Device not found"


def test_error_without_json_body_uses_reason() -> None:
    """Non-JSON error bodies fall back to the HTTP reason phrase."""

    session = FakeSession([FakeResponse(503, None, reason="Service Unavailable")])
    client = GraphClient("token", session=session)

    with pytest.raises(GraphError, match="503 Service Unavailable"):
        client.delete_managed_device("abc")


def test_transport_errors_become_graph_errors() -> None:
    """Connection problems surface as GraphError without a status code."""

    session = FakeSession([requests.ConnectionError("boom")])
    client = GraphClient("token", session=session)

    with pytest.raises(GraphError) as excinfo:
        client.delete_managed_device("abc")

    assert excinfo.value.status_code is None
    assert session.calls[0]["method"] == "DELETE"


def test_list_managed_devices_follows_next_link() -> None:
    """Paged collections are read until no nextLink remains."""

    next_link = f"{API_BASE}/deviceManagement/managedDevices?$skiptoken=abc"
    session = FakeSession(
        [
            FakeResponse(body={"value": [{"id": "1"}], "@odata.nextLink": next_link}),
            FakeResponse(body={"value": [{"id": "2"}]}),
        ]
    )
    client = GraphClient("token", session=session)

    devices = client.list_managed_devices("operatingSystem eq 'Windows'")

    assert [device["id"] for device in devices] == ["1", "2"]
    assert session.calls[0]["params"]["$filter"] == "operatingSystem eq 'Windows'"
    assert session.calls[1]["url"] == next_link
    assert session.calls[1]["params"] is None


def test_set_primary_user_posts_reference_to_beta() -> None:
    """Primary user assignment posts an OData reference on the beta endpoint."""

    session = FakeSession([FakeResponse(204, None)])
    client = GraphClient("token", session=session)

    client.set_primary_user("dev", "user")

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == f"{BETA_BASE}/deviceManagement/managedDevices/dev/users/$ref"
    assert call["json"] == {"@odata.id": f"{BETA_BASE}/users/user"}


def test_client_closes_session_on_exit() -> None:
    """The client is scoped to a with-block."""

    session = FakeSession([])
    with GraphClient("token", session=session):
        pass

    assert session.closed


def test_device_name_prefix_filter_escapes_quotes() -> None:
    """Prefixes are combined with OR and single quotes are doubled."""

    assert device_name_prefix_filter([]) is None
    assert device_name_prefix_filter(["A-", "O'B"]) == (
        "startswith(deviceName,'A-') or startswith(deviceName,'O''B')"
    )


def test_acquire_token_requires_tenant() -> None:
    """Signing in without a tenant fails before contacting Entra ID."""

    with pytest.raises(AuthenticationError):
        graph.acquire_token("")


def test_acquire_token_with_client_secret(monkeypatch) -> None:
    """A client secret selects the confidential client flow."""

    created = {}

    class FakeConfidentialApp:
        def __init__(self, client_id, authority, client_credential):
            created.update(client_id=client_id, authority=authority, secret=client_credential)

        def acquire_token_for_client(self, scopes):
            created["scopes"] = scopes
            return {"access_token": "abc"}

    monkeypatch.setattr(graph.msal, "ConfidentialClientApplication", FakeConfidentialApp)

    token = graph.acquire_token("contoso", "client", "secret")

    assert token == "abc"
    assert created["authority"] == "https://login.microsoftonline.com/contoso"
    assert created["scopes"] == graph.APPLICATION_SCOPES


def test_acquire_token_reports_sign_in_errors(monkeypatch) -> None:
    """MSAL error payloads are raised as AuthenticationError."""

    class FakePublicApp:
        def __init__(self, client_id, authority):
            pass

        def get_accounts(self):
            return []

        def acquire_token_interactive(self, scopes):
            return {"error": "access_denied", "error_description": "User cancelled"}

    monkeypatch.setattr(graph.msal, "PublicClientApplication", FakePublicApp)

    with pytest.raises(AuthenticationError, match="User cancelled"):
        graph.acquire_token("contoso")


def test_non_json_success_body_raises_graph_error() -> None:
    """A 200 response that is not JSON is reported as a Graph failure."""

    session = FakeSession([FakeResponse(200, None)])
    client = GraphClient("token", session=session)

    with pytest.raises(GraphError) as excinfo:
        client.get_managed_device("abc")

    assert excinfo.value.status_code == 200
    assert "Unreadable response body" in str(excinfo.value)
