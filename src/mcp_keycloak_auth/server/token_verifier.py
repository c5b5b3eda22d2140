"""Token verifier using OAuth 2.0 Token Introspection (RFC 7662) against Keycloak."""

import logging

import httpx
from mcp.server.auth.provider import AccessToken, TokenVerifier

from mcp_keycloak_auth._httpx_utils import HttpClientFactory, create_http_client
from mcp_keycloak_auth.exceptions import MetadataError
from mcp_keycloak_auth.server.metadata import fetch_oidc_metadata
from mcp_keycloak_auth.settings import KeycloakSettings

logger = logging.getLogger(__name__)


class IntrospectionTokenVerifier(TokenVerifier):
    """Verifies bearer tokens by asking the realm's introspection endpoint.

    The verifier authenticates to the endpoint as the configured confidential
    client using HTTP Basic. When no endpoint is given it is discovered from
    the realm's OpenID configuration on first use and cached.

    Any failure to verify (unreachable provider, non-200 answer, inactive
    token) yields None, which the MCP auth middleware turns into a 401
    ``invalid_token`` response.
    """

    def __init__(
        self,
        settings: KeycloakSettings,
        introspection_endpoint: str | None = None,
        http_client_factory: HttpClientFactory = create_http_client,
    ):
        self.settings = settings
        self.http_client_factory = http_client_factory
        self._introspection_endpoint = introspection_endpoint

    async def introspection_endpoint(self) -> str:
        """Return the introspection endpoint, discovering it if needed.

        Raises:
            MetadataError: The provider metadata is unavailable or does not
                advertise an introspection endpoint
        """
        if self._introspection_endpoint is None:
            metadata = await fetch_oidc_metadata(self.settings.realm_url, self.http_client_factory)
            if metadata.introspection_endpoint is None:
                raise MetadataError("No introspection endpoint found in OAuth metadata")
            self._introspection_endpoint = str(metadata.introspection_endpoint)
        return self._introspection_endpoint

    async def verify_token(self, token: str) -> AccessToken | None:
        """Verify token via the introspection endpoint."""
        try:
            endpoint = await self.introspection_endpoint()
        except MetadataError:
            logger.exception("Cannot verify token without an introspection endpoint")
            return None

        auth = httpx.BasicAuth(self.settings.client_id, self.settings.client_secret or "")
        async with self.http_client_factory(auth=auth) as client:
            try:
                response = await client.post(
                    endpoint,
                    data={"token": token},
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                logger.warning("Token introspection request failed: %s", e)
                return None

        if response.status_code != 200:
            logger.warning("Token introspection failed: %s %s", response.status_code, response.text)
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning("Token introspection returned a non-JSON body")
            return None

        if not isinstance(data, dict) or not data.get("active"):
            logger.info("Token is inactive or expired")
            return None

        client_id = data.get("client_id") or data.get("azp") or "unknown"
        scope = data.get("scope") or ""
        logger.info("Token verified for client %s with scopes %r", client_id, scope)
        return AccessToken(
            token=token,
            client_id=client_id,
            scopes=scope.split(),
            expires_at=data.get("exp"),
        )
