"""End-to-end: bearer authenticated MCP clients against the protected server over real HTTP."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import anyio
import pytest
import uvicorn
from mcp.server.auth.provider import AccessToken
from mcp.shared.auth import OAuthToken
from pydantic import AnyHttpUrl
from starlette.applications import Starlette

from mcp_keycloak_auth.client.bearer import connect
from mcp_keycloak_auth.client.cli import list_server_tools
from mcp_keycloak_auth.server.app import create_app, create_server
from mcp_keycloak_auth.settings import KeycloakSettings, ResourceServerSettings


class StaticTokenVerifier:
    def __init__(self, *tokens: str):
        self.tokens = set(tokens)
        self.seen: set[str] = set()

    async def verify_token(self, token: str) -> AccessToken | None:
        self.seen.add(token)
        if token not in self.tokens:
            return None
        return AccessToken(token=token, client_id=f"client-for-{token}", scopes=["openid"])


@asynccontextmanager
async def serve(app: Starlette, port: int) -> AsyncGenerator[str, None]:
    config = uvicorn.Config(
        app,
        host="127.0.0.1",
        port=port,
        log_config=None,
        log_level="warning",
        timeout_graceful_shutdown=1,
    )
    server = uvicorn.Server(config)
    async with anyio.create_task_group() as tg:
        tg.start_soon(server.serve)
        with anyio.fail_after(10):
            while not server.started:
                await anyio.sleep(0.05)
        try:
            yield f"http://127.0.0.1:{port}/mcp"
        finally:
            server.should_exit = True


def build_app(port: int, verifier: StaticTokenVerifier) -> Starlette:
    settings = ResourceServerSettings(
        host="127.0.0.1",
        port=port,
        server_url=AnyHttpUrl(f"http://127.0.0.1:{port}"),
        resource_name="keycloak-protected",
    )
    mcp_server = create_server(settings, KeycloakSettings(realm_url="http://keycloak.test/realms/demo"), verifier)
    return create_app(mcp_server)


@pytest.mark.anyio
async def test_session_with_valid_token(free_port: int):
    verifier = StaticTokenVerifier("service-token")

    with anyio.fail_after(30):
        async with serve(build_app(free_port, verifier), free_port) as url:
            async with connect(url, "service-token", client_name="e2e") as (session, result):
                tools = await session.list_tools()

    assert result.serverInfo.name == "keycloak-protected"
    assert tools.tools == []
    assert verifier.seen == {"service-token"}


@pytest.mark.anyio
async def test_two_clients_keep_their_own_tokens(free_port: int):
    verifier = StaticTokenVerifier("alice-token", "service-token")

    with anyio.fail_after(30):
        async with serve(build_app(free_port, verifier), free_port) as url:
            async with (
                connect(url, "alice-token") as (alice, _),
                connect(url, "service-token") as (service, _),
            ):
                await alice.send_ping()
                await service.send_ping()

    assert verifier.seen == {"alice-token", "service-token"}


@pytest.mark.anyio
async def test_list_server_tools_prints_server_info(free_port: int, capsys: pytest.CaptureFixture[str]):
    verifier = StaticTokenVerifier("service-token")
    token = OAuthToken(access_token="service-token", token_type="Bearer")

    with anyio.fail_after(30):
        async with serve(build_app(free_port, verifier), free_port) as url:
            await list_server_tools(url, token, "e2e")

    output = capsys.readouterr().out
    assert "Connected to keycloak-protected" in output
    assert "No tools available" in output
