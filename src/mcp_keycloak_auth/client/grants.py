"""
Token endpoint grants against a Keycloak realm.

All grants POST an url-encoded form to ``{realm}/protocol/openid-connect/token``
and parse the JSON response into an :class:`~mcp.shared.auth.OAuthToken`.
"""

import logging

import httpx
from mcp.shared.auth import OAuthToken

from mcp_keycloak_auth._httpx_utils import HttpClientFactory, create_http_client, describe_error
from mcp_keycloak_auth.exceptions import TokenRequestError
from mcp_keycloak_auth.settings import KeycloakSettings

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "openid profile email"


async def request_token(
    settings: KeycloakSettings,
    form: dict[str, str],
    http_client_factory: HttpClientFactory = create_http_client,
) -> OAuthToken:
    """
    POST a grant to the realm's token endpoint.

    The client id, and the client secret when one is configured, are added to
    the form.

    Raises:
        TokenRequestError: The endpoint could not be reached, answered with a
            non-success status, or returned a body without an access token
    """
    data = {"client_id": settings.client_id, **form}
    if settings.client_secret:
        data["client_secret"] = settings.client_secret
    grant_type = form.get("grant_type", "unknown")

    async with http_client_factory() as client:
        try:
            response = await client.post(
                settings.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TokenRequestError(f"Token endpoint unreachable: {e}") from e

    if not response.is_success:
        reason, error = describe_error(response)
        logger.error("Token request (%s) failed with %s: %s", grant_type, response.status_code, reason)
        raise TokenRequestError(reason, status_code=response.status_code, error=error)

    try:
        token = OAuthToken.model_validate(response.json())
    except ValueError as e:
        # Covers both an undecodable body and a pydantic ValidationError
        raise TokenRequestError(
            "Token response did not contain an access token", status_code=response.status_code
        ) from e

    logger.info("Obtained access token via %s grant (expires in %s s)", grant_type, token.expires_in)
    return token


async def fetch_client_credentials_token(
    settings: KeycloakSettings,
    http_client_factory: HttpClientFactory = create_http_client,
) -> OAuthToken:
    """Obtain a token for the client itself (machine-to-machine)."""
    return await request_token(settings, {"grant_type": "client_credentials"}, http_client_factory)


async def fetch_password_token(
    settings: KeycloakSettings,
    username: str,
    password: str,
    scope: str = DEFAULT_SCOPE,
    http_client_factory: HttpClientFactory = create_http_client,
) -> OAuthToken:
    """Obtain a token on behalf of a user from their username and password."""
    logger.debug("Requesting password grant for user %s", username)
    return await request_token(
        settings,
        {
            "grant_type": "password",
            "username": username,
            "password": password,
            "scope": scope,
        },
        http_client_factory,
    )
