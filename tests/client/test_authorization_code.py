"""Tests for the interactive authorization-code flow."""

from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from mcp_keycloak_auth.client.authorization_code import (
    AuthorizationCodeFlow,
    AuthorizationRequest,
    generate_state,
    open_user_agent,
)
from mcp_keycloak_auth.exceptions import (
    CallbackError,
    CallbackServerError,
    CallbackTimeoutError,
    TokenRequestError,
)
from mcp_keycloak_auth.settings import KeycloakSettings


def test_generate_state_is_128_bit_hex():
    state = generate_state()
    assert len(state) == 32
    int(state, 16)
    assert generate_state() != state


def test_authorization_url_carries_request_parameters():
    request = AuthorizationRequest(
        client_id="mcp-client",
        redirect_uri="http://localhost:3001/callback",
        scope="openid profile",
        state="abc",
    )
    url = request.authorization_url("http://keycloak.test/realms/demo/protocol/openid-connect/auth")

    parsed = urlparse(url)
    assert parsed.path == "/realms/demo/protocol/openid-connect/auth"
    assert parse_qs(parsed.query) == {
        "client_id": ["mcp-client"],
        "redirect_uri": ["http://localhost:3001/callback"],
        "response_type": ["code"],
        "scope": ["openid profile"],
        "state": ["abc"],
    }


class FakeUserAgent:
    """Plays the browser: follows the authorization URL straight back to the callback."""

    def __init__(self, params: Callable[[dict[str, str]], dict[str, str]] | None = None):
        self.params = params
        self.visited: list[str] = []

    async def __call__(self, authorization_url: str) -> None:
        self.visited.append(authorization_url)
        query = {k: v[0] for k, v in parse_qs(urlparse(authorization_url).query).items()}
        callback = {"code": "abc123", "state": query["state"]}
        if self.params is not None:
            callback = self.params(query)
        async with httpx.AsyncClient(trust_env=False) as client:
            await client.get(query["redirect_uri"], params=callback)


def token_endpoint(requests: list[httpx.Request], status_code: int = 200, body: Any = None):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        payload = body if body is not None else {"access_token": "tok-abc123", "token_type": "Bearer"}
        return httpx.Response(status_code, json=payload)

    return handler


@pytest.fixture
def redirect_uri(free_port: int) -> str:
    return f"http://127.0.0.1:{free_port}/callback"


@pytest.mark.anyio
async def test_flow_exchanges_the_code_received(
    keycloak: KeycloakSettings, redirect_uri: str, client_factory: Any
):
    requests: list[httpx.Request] = []
    user_agent = FakeUserAgent()
    flow = AuthorizationCodeFlow(
        keycloak,
        redirect_uri=redirect_uri,
        timeout=5,
        redirect_handler=user_agent,
        http_client_factory=client_factory(token_endpoint(requests)),
    )

    token = await flow.authenticate()

    assert token.access_token == "tok-abc123"
    assert user_agent.visited[0].startswith(keycloak.authorization_endpoint)

    [request] = requests
    assert str(request.url) == keycloak.token_endpoint
    assert parse_qs(request.content.decode()) == {
        "client_id": ["mcp-client"],
        "client_secret": ["s3cret"],
        "grant_type": ["authorization_code"],
        "code": ["abc123"],
        "redirect_uri": [redirect_uri],
    }


@pytest.mark.anyio
async def test_each_attempt_uses_fresh_state(keycloak: KeycloakSettings, redirect_uri: str, client_factory: Any):
    requests: list[httpx.Request] = []
    user_agent = FakeUserAgent()
    flow = AuthorizationCodeFlow(
        keycloak,
        redirect_uri=redirect_uri,
        timeout=5,
        redirect_handler=user_agent,
        http_client_factory=client_factory(token_endpoint(requests)),
    )

    await flow.authenticate()
    await flow.authenticate()

    first, second = (parse_qs(urlparse(url).query)["state"] for url in user_agent.visited)
    assert first != second


@pytest.mark.anyio
async def test_state_mismatch_is_not_exchanged(keycloak: KeycloakSettings, redirect_uri: str, client_factory: Any):
    requests: list[httpx.Request] = []
    flow = AuthorizationCodeFlow(
        keycloak,
        redirect_uri=redirect_uri,
        timeout=5,
        redirect_handler=FakeUserAgent(lambda query: {"code": "abc123", "state": "def456"}),
        http_client_factory=client_factory(token_endpoint(requests)),
    )

    with pytest.raises(CallbackError) as exc_info:
        await flow.authenticate()

    assert exc_info.value.reason == "state mismatch"
    assert requests == []


@pytest.mark.anyio
async def test_provider_error_is_reported(keycloak: KeycloakSettings, redirect_uri: str, client_factory: Any):
    requests: list[httpx.Request] = []
    flow = AuthorizationCodeFlow(
        keycloak,
        redirect_uri=redirect_uri,
        timeout=5,
        redirect_handler=FakeUserAgent(lambda query: {"error": "access_denied", "state": query["state"]}),
        http_client_factory=client_factory(token_endpoint(requests)),
    )

    with pytest.raises(CallbackError) as exc_info:
        await flow.authenticate()

    assert exc_info.value.reason == "access_denied"
    assert requests == []


@pytest.mark.anyio
async def test_timeout_raises_distinct_error(keycloak: KeycloakSettings, redirect_uri: str, client_factory: Any):
    async def ignore(url: str) -> None:
        pass

    requests: list[httpx.Request] = []
    flow = AuthorizationCodeFlow(
        keycloak,
        redirect_uri=redirect_uri,
        timeout=0.2,
        redirect_handler=ignore,
        http_client_factory=client_factory(token_endpoint(requests)),
    )

    with pytest.raises(CallbackTimeoutError) as exc_info:
        await flow.authenticate()

    assert exc_info.value.reason == "timeout"
    assert requests == []


@pytest.mark.anyio
async def test_rejected_code_raises_token_request_error(
    keycloak: KeycloakSettings, redirect_uri: str, client_factory: Any
):
    requests: list[httpx.Request] = []
    handler = token_endpoint(
        requests,
        status_code=400,
        body={"error": "invalid_grant", "error_description": "Code not valid"},
    )
    flow = AuthorizationCodeFlow(
        keycloak,
        redirect_uri=redirect_uri,
        timeout=5,
        redirect_handler=FakeUserAgent(),
        http_client_factory=client_factory(handler),
    )

    with pytest.raises(TokenRequestError) as exc_info:
        await flow.authenticate()

    assert exc_info.value.reason == "Code not valid"
    assert exc_info.value.error == "invalid_grant"
    assert exc_info.value.status_code == 400


@pytest.mark.anyio
async def test_redirect_handler_failure_propagates(keycloak: KeycloakSettings, redirect_uri: str):
    async def broken(url: str) -> None:
        raise OSError("no display")

    flow = AuthorizationCodeFlow(keycloak, redirect_uri=redirect_uri, timeout=5, redirect_handler=broken)

    with pytest.raises(OSError, match="no display"):
        await flow.authenticate()


@pytest.mark.anyio
async def test_port_in_use_raises_callback_server_error(keycloak: KeycloakSettings, redirect_uri: str):
    async def nested(url: str) -> None:
        # A second flow on the same redirect URI while the first owns the port
        other = AuthorizationCodeFlow(keycloak, redirect_uri=redirect_uri, timeout=5, redirect_handler=nested)
        await other.authenticate()

    flow = AuthorizationCodeFlow(keycloak, redirect_uri=redirect_uri, timeout=5, redirect_handler=nested)

    with pytest.raises(CallbackServerError):
        await flow.authenticate()


@pytest.mark.anyio
async def test_open_user_agent_is_non_fatal(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture):
    def no_browser(url: str) -> bool:
        return False

    monkeypatch.setattr("webbrowser.open", no_browser)

    assert await open_user_agent("http://keycloak.test/auth?state=x") is False
    assert "http://keycloak.test/auth?state=x" in caplog.text
