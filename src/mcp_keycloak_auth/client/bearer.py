"""Bearer token transport for MCP client sessions."""

import logging
from collections.abc import AsyncGenerator, Generator
from contextlib import asynccontextmanager

import httpx
from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import Implementation, InitializeResult

logger = logging.getLogger(__name__)


class BearerAuth(httpx.Auth):
    """Attach ``Authorization: Bearer <token>`` to every request of one client.

    The header is scoped to the httpx client this auth is passed to, so clients
    holding different tokens can coexist in one process.
    """

    def __init__(self, token: str):
        self.token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.token}"
        response = yield request
        if response.status_code == 401:
            logger.warning("Request to %s was rejected with 401, the token may be expired or revoked", request.url)


@asynccontextmanager
async def connect(
    mcp_url: str,
    token: str,
    client_name: str = "keycloak-authenticated-client",
    client_version: str = "1.0.0",
) -> AsyncGenerator[tuple[ClientSession, InitializeResult], None]:
    """
    Open an initialized MCP session authenticated with a bearer token.

    Yields:
        The session and the server's initialize result
    """
    logger.info("Connecting to MCP server at %s", mcp_url)
    async with streamablehttp_client(mcp_url, auth=BearerAuth(token)) as (read_stream, write_stream, _):
        async with ClientSession(
            read_stream,
            write_stream,
            client_info=Implementation(name=client_name, version=client_version),
        ) as session:
            result = await session.initialize()
            logger.info("Connected to %s %s", result.serverInfo.name, result.serverInfo.version)
            yield session, result
