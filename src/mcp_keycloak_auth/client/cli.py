"""
Demo clients that authenticate against Keycloak and talk to the MCP server.

Usage:
    mcp-keycloak-client client-credentials
    mcp-keycloak-client login
    mcp-keycloak-client browser --redirect-uri=http://localhost:3001/callback
    mcp-keycloak-client register --client-name="My Dynamic MCP Client"
"""

import logging
from typing import Any

import anyio
import click
from mcp.shared.auth import OAuthToken

from mcp_keycloak_auth.client.authorization_code import AuthorizationCodeFlow
from mcp_keycloak_auth.client.bearer import connect
from mcp_keycloak_auth.client.grants import fetch_client_credentials_token, fetch_password_token
from mcp_keycloak_auth.client.registration import (
    ClientRegistration,
    ClientRegistrationRequest,
    DynamicClientRegistration,
)
from mcp_keycloak_auth.exceptions import AuthFlowError
from mcp_keycloak_auth.settings import ClientSettings, KeycloakSettings

logger = logging.getLogger(__name__)


def _mask(secret: str) -> str:
    return f"{secret[:10]}..." if len(secret) > 10 else "***"


async def list_server_tools(mcp_url: str, token: OAuthToken, client_name: str) -> None:
    """Connect with the token and print the server version and its tools."""
    async with connect(mcp_url, token.access_token, client_name=client_name) as (session, result):
        click.echo(f"Connected to {result.serverInfo.name} {result.serverInfo.version}")
        tools = await session.list_tools()
        if not tools.tools:
            click.echo("No tools available")
        for tool in tools.tools:
            click.echo(f"- {tool.name}" + (f": {tool.description}" if tool.description else ""))


def _run(func: Any, *args: Any) -> None:
    """Run an async command, turning flow failures into a CLI error."""
    try:
        anyio.run(func, *args)
    except AuthFlowError as e:
        raise click.ClickException(e.reason) from e


@click.group()
@click.option("--realm-url", envvar="KEYCLOAK_REALM_URL", default=None, help="Keycloak realm URL")
@click.option("--client-id", envvar="KEYCLOAK_CLIENT_ID", default=None, help="OAuth client id")
@click.option("--client-secret", envvar="KEYCLOAK_CLIENT_SECRET", default=None, help="OAuth client secret")
@click.option("--mcp-url", envvar="MCP_CLIENT_MCP_URL", default=None, help="MCP server endpoint")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.pass_context
def cli(
    ctx: click.Context,
    realm_url: str | None,
    client_id: str | None,
    client_secret: str | None,
    mcp_url: str | None,
    log_level: str,
) -> None:
    """MCP clients authenticated with Keycloak."""
    logging.basicConfig(level=log_level.upper())

    overrides = {"realm_url": realm_url, "client_id": client_id, "client_secret": client_secret}
    keycloak = KeycloakSettings(**{k: v for k, v in overrides.items() if v is not None})
    client_settings = ClientSettings(**({"mcp_url": mcp_url} if mcp_url else {}))
    ctx.obj = {"keycloak": keycloak, "client": client_settings}


@cli.command("client-credentials")
@click.pass_obj
def client_credentials(obj: dict[str, Any]) -> None:
    """Authenticate as the client itself and list the server's tools."""
    keycloak: KeycloakSettings = obj["keycloak"]
    settings: ClientSettings = obj["client"]

    async def run() -> None:
        token = await fetch_client_credentials_token(keycloak)
        await list_server_tools(settings.mcp_url, token, "streamable-http-client")

    _run(run)


@cli.command()
@click.option("--username", prompt=True)
@click.option("--password", prompt=True, hide_input=True)
@click.option("--scope", default=None, help="Scopes to request (default: client settings)")
@click.pass_obj
def login(obj: dict[str, Any], username: str, password: str, scope: str | None) -> None:
    """Authenticate with a username and password and list the server's tools."""
    keycloak: KeycloakSettings = obj["keycloak"]
    settings: ClientSettings = obj["client"]

    async def run() -> None:
        token = await fetch_password_token(keycloak, username, password, scope or settings.scope)
        click.echo(f"Authenticated as {username}")
        await list_server_tools(settings.mcp_url, token, "user-authenticated-client")

    _run(run)


@cli.command()
@click.option("--redirect-uri", default=None, help="Callback URI registered for the client")
@click.option("--scope", default=None, help="Scopes to request (default: client settings)")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the browser login")
@click.pass_obj
def browser(obj: dict[str, Any], redirect_uri: str | None, scope: str | None, timeout: float | None) -> None:
    """Log in through the browser and list the server's tools."""
    keycloak: KeycloakSettings = obj["keycloak"]
    settings: ClientSettings = obj["client"]
    flow = AuthorizationCodeFlow(
        keycloak,
        redirect_uri=redirect_uri or settings.redirect_uri,
        scope=scope or settings.scope,
        timeout=timeout or settings.callback_timeout,
    )

    async def run() -> None:
        token = await flow.authenticate()
        click.echo("Authentication successful")
        await list_server_tools(settings.mcp_url, token, "browser-authenticated-client")

    _run(run)


def _echo_registration(registration: ClientRegistration) -> None:
    click.echo(f"Client ID: {registration.client_id}")
    if registration.client_secret:
        click.echo(f"Client Secret: {_mask(registration.client_secret)}")
    click.echo(f"Redirect URIs: {', '.join(registration.redirect_uris)}")


@cli.command()
@click.option("--client-name", default="My Dynamic MCP Client")
@click.option(
    "--redirect-uri",
    "redirect_uris",
    multiple=True,
    default=["http://localhost:3001/callback"],
    show_default=True,
)
@click.option("--add-redirect-uri", "extra_redirect_uris", multiple=True, help="Redirect URI to add after registering")
@click.option("--initial-access-token", envvar="KEYCLOAK_INITIAL_ACCESS_TOKEN", default=None)
@click.option("--delete/--keep", default=False, help="Delete the client again at the end")
@click.pass_obj
def register(
    obj: dict[str, Any],
    client_name: str,
    redirect_uris: tuple[str, ...],
    extra_redirect_uris: tuple[str, ...],
    initial_access_token: str | None,
    delete: bool,
) -> None:
    """Register a client dynamically, read it back and optionally update or delete it."""
    keycloak: KeycloakSettings = obj["keycloak"]
    settings: ClientSettings = obj["client"]
    dcr = DynamicClientRegistration(keycloak)
    request = ClientRegistrationRequest(
        client_name=client_name,
        redirect_uris=list(redirect_uris),
        grant_types=["authorization_code", "refresh_token", "client_credentials"],
        response_types=["code"],
        scope=settings.scope,
        token_endpoint_auth_method="client_secret_basic",
    )

    async def run() -> None:
        registration = await dcr.register(request, initial_access_token)
        _echo_registration(registration)
        client_id = registration.client_id
        # Keycloak rotates the registration access token on every call
        token = registration.registration_access_token
        if not token:
            raise click.ClickException("Registration response did not include a registration access token")

        registration = await dcr.read(client_id, token)
        token = registration.registration_access_token or token
        click.echo("Client read back successfully")

        if extra_redirect_uris:
            updated = request.model_copy(update={"redirect_uris": [*redirect_uris, *extra_redirect_uris]})
            registration = await dcr.update(client_id, updated, token)
            token = registration.registration_access_token or token
            click.echo(f"Updated redirect URIs: {', '.join(registration.redirect_uris)}")

        if delete:
            await dcr.delete(client_id, token)
            click.echo(f"Deleted client {registration.client_id}")

    _run(run)


if __name__ == "__main__":
    cli()
