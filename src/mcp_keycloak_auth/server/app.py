"""
MCP Resource Server protected by Keycloak token introspection.

Every request to the MCP endpoint must carry a bearer token issued by the
configured realm. Tokens are checked with RFC 7662 introspection; missing,
invalid, expired or revoked tokens are answered with 401 ``invalid_token``.

Usage:
    mcp-keycloak-server --port=3000 --realm-url=http://localhost:8080/realms/demo
"""

import asyncio
import logging

import click
from mcp.server.auth.handlers.metadata import MetadataHandler
from mcp.server.auth.provider import TokenVerifier
from mcp.server.auth.routes import cors_middleware
from mcp.server.auth.settings import AuthSettings
from mcp.server.fastmcp.server import FastMCP
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from mcp.shared.auth import OAuthMetadata
from pydantic import AnyHttpUrl
from starlette.applications import Starlette
from starlette.datastructures import Headers
from starlette.middleware import Middleware
from starlette.routing import Mount, Route
from starlette.types import ASGIApp, Message, Receive, Scope, Send
from uvicorn import Config, Server

from mcp_keycloak_auth.exceptions import MetadataError
from mcp_keycloak_auth.server.metadata import fetch_oidc_metadata
from mcp_keycloak_auth.server.token_verifier import IntrospectionTokenVerifier
from mcp_keycloak_auth.settings import KeycloakSettings, ResourceServerSettings

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware:
    """Log every HTTP request and the status it was answered with.

    Only the method, path and MCP session id are logged; headers are not, as
    they carry bearer tokens.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        path = scope["path"]
        session_id = Headers(scope=scope).get(MCP_SESSION_ID_HEADER, "None")
        logger.info("%s %s (session: %s)", method, path, session_id)

        status_code = 500

        async def send_with_status(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_with_status)
        finally:
            log = logger.warning if status_code >= 400 else logger.info
            log("Response %s for %s %s", status_code, method, path)


def create_server(
    settings: ResourceServerSettings,
    keycloak: KeycloakSettings,
    token_verifier: TokenVerifier | None = None,
) -> FastMCP:
    """Create the FastMCP server acting as an OAuth Resource Server."""
    return FastMCP(
        name=settings.resource_name,
        host=settings.host,
        port=settings.port,
        token_verifier=token_verifier or IntrospectionTokenVerifier(keycloak),
        auth=AuthSettings(
            issuer_url=AnyHttpUrl(keycloak.realm_url),
            resource_server_url=settings.server_url,
            required_scopes=settings.required_scopes or None,
            resource_name=settings.resource_name,
        ),
    )


def create_app(mcp_server: FastMCP, oauth_metadata: OAuthMetadata | None = None) -> Starlette:
    """
    Wrap the MCP server in a Starlette app.

    When the realm's metadata is given it is also served at
    ``/.well-known/oauth-authorization-server`` so clients that only know the
    MCP server can find the authorization server.
    """
    mcp_app = mcp_server.streamable_http_app()

    routes: list[Route | Mount] = []
    if oauth_metadata is not None:
        routes.append(
            Route(
                "/.well-known/oauth-authorization-server",
                endpoint=cors_middleware(MetadataHandler(metadata=oauth_metadata).handle, ["GET", "OPTIONS"]),
                methods=["GET", "OPTIONS"],
            )
        )
    routes.append(Mount("/", app=mcp_app))

    return Starlette(
        routes=routes,
        middleware=[Middleware(RequestLoggingMiddleware)],
        lifespan=lambda app: mcp_server.session_manager.run(),
    )


async def run_server(settings: ResourceServerSettings, keycloak: KeycloakSettings) -> None:
    # No fallback to an unauthenticated server: discovery must succeed
    logger.info("Fetching OAuth metadata from %s", keycloak.realm_url)
    oauth_metadata = await fetch_oidc_metadata(keycloak.realm_url)
    if oauth_metadata.introspection_endpoint is None:
        raise MetadataError("No introspection endpoint found in OAuth metadata")

    token_verifier = IntrospectionTokenVerifier(keycloak, str(oauth_metadata.introspection_endpoint))
    mcp_server = create_server(settings, keycloak, token_verifier)
    app = create_app(mcp_server, oauth_metadata)

    config = Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )
    server = Server(config)
    logger.info("MCP server listening on %s", settings.server_url)
    await server.serve()


@click.command()
@click.option("--host", default=None, help="Host to bind to [env: MCP_RESOURCE_HOST]")
@click.option("--port", type=int, default=None, help="Port to listen on [env: MCP_RESOURCE_PORT]")
@click.option(
    "--realm-url",
    envvar="KEYCLOAK_REALM_URL",
    default="http://localhost:8080/realms/demo",
    help="Keycloak realm URL",
)
@click.option("--client-id", envvar="KEYCLOAK_CLIENT_ID", default="my-client", help="Client used for introspection")
@click.option(
    "--client-secret",
    envvar="KEYCLOAK_CLIENT_SECRET",
    default=None,
    help="Secret of the introspection client",
)
@click.option("--required-scope", "required_scopes", multiple=True, help="Scope every token must carry")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def main(
    host: str | None,
    port: int | None,
    realm_url: str,
    client_id: str,
    client_secret: str | None,
    required_scopes: tuple[str, ...],
    log_level: str,
) -> int:
    """Run the Keycloak protected MCP server."""
    logging.basicConfig(level=log_level.upper())

    try:
        overrides = {"host": host, "port": port, "required_scopes": list(required_scopes) or None}
        settings = ResourceServerSettings(**{k: v for k, v in overrides.items() if v is not None})
        if "server_url" not in settings.model_fields_set:
            settings = settings.model_copy(
                update={"server_url": AnyHttpUrl(f"http://{settings.host}:{settings.port}")}
            )
        keycloak = KeycloakSettings(realm_url=realm_url, client_id=client_id, client_secret=client_secret)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise SystemExit(1) from e

    try:
        asyncio.run(run_server(settings, keycloak))
    except MetadataError as e:
        logger.error("Failed to initialize OAuth: %s", e)
        raise SystemExit(1) from e
    return 0


if __name__ == "__main__":
    main()  # type: ignore[call-arg]
