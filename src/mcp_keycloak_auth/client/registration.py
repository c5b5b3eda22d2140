"""
Dynamic Client Registration (RFC 7591 / RFC 7592) against a Keycloak realm.

Keycloak exposes registration under
``{realm}/clients-registrations/openid-connect``. A client can be registered
anonymously, when the realm's policies allow it, or with an initial access
token. Reading, updating and deleting a registered client require the
registration access token returned with it; Keycloak rotates that token on
every call, so always keep the one from the latest response.
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict

from mcp_keycloak_auth._httpx_utils import HttpClientFactory, create_http_client, describe_error
from mcp_keycloak_auth.exceptions import RegistrationError
from mcp_keycloak_auth.settings import KeycloakSettings

logger = logging.getLogger(__name__)


class ClientRegistrationRequest(BaseModel):
    """Client metadata sent to the registration endpoint.

    See https://datatracker.ietf.org/doc/html/rfc7591#section-2
    """

    client_name: str
    redirect_uris: list[str]
    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    scope: str | None = None
    token_endpoint_auth_method: str | None = None
    client_uri: str | None = None
    logo_uri: str | None = None
    contacts: list[str] | None = None


class ClientRegistration(BaseModel):
    """A registered client as returned by the registration endpoint."""

    # Keycloak returns many provider specific fields; keep them around
    model_config = ConfigDict(extra="allow")

    client_id: str
    client_secret: str | None = None
    registration_access_token: str | None = None
    registration_client_uri: str | None = None
    client_name: str | None = None
    redirect_uris: list[str] = []
    grant_types: list[str] = []
    response_types: list[str] = []
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None


class DynamicClientRegistration:
    """Thin wrapper around the realm's client registration endpoints."""

    def __init__(
        self,
        settings: KeycloakSettings,
        http_client_factory: HttpClientFactory = create_http_client,
    ):
        self.settings = settings
        self.http_client_factory = http_client_factory

    @property
    def endpoint(self) -> str:
        return self.settings.registration_endpoint

    def _client_url(self, client_id: str) -> str:
        return f"{self.endpoint}/{client_id}"

    async def _send(
        self,
        method: str,
        url: str,
        action: str,
        token: str | None = None,
        body: ClientRegistrationRequest | None = None,
    ) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        kwargs: dict[str, Any] = {"headers": headers}
        if body is not None:
            kwargs["json"] = body.model_dump(exclude_none=True)

        async with self.http_client_factory() as client:
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.HTTPError as e:
                raise RegistrationError(f"{action} failed: {e}") from e

        if not response.is_success:
            reason, _ = describe_error(response)
            logger.error("%s failed with %s: %s", action, response.status_code, reason)
            raise RegistrationError(f"{action} failed: {reason}", status_code=response.status_code)

        return response

    async def register(
        self,
        request: ClientRegistrationRequest,
        initial_access_token: str | None = None,
    ) -> ClientRegistration:
        """Register a new client.

        Args:
            request: Metadata of the client to register
            initial_access_token: Token issued by a realm administrator; omit
                to register anonymously
        """
        mode = "with initial access token" if initial_access_token else "anonymously"
        logger.info("Registering client %r %s", request.client_name, mode)
        response = await self._send("POST", self.endpoint, "Registration", initial_access_token, request)
        registration = ClientRegistration.model_validate(response.json())
        logger.info("Registered client %s", registration.client_id)
        return registration

    async def read(self, client_id: str, registration_access_token: str) -> ClientRegistration:
        logger.info("Reading client configuration for %s", client_id)
        response = await self._send("GET", self._client_url(client_id), "Read", registration_access_token)
        return ClientRegistration.model_validate(response.json())

    async def update(
        self,
        client_id: str,
        request: ClientRegistrationRequest,
        registration_access_token: str,
    ) -> ClientRegistration:
        logger.info("Updating client %s", client_id)
        response = await self._send("PUT", self._client_url(client_id), "Update", registration_access_token, request)
        return ClientRegistration.model_validate(response.json())

    async def delete(self, client_id: str, registration_access_token: str) -> None:
        logger.info("Deleting client %s", client_id)
        await self._send("DELETE", self._client_url(client_id), "Delete", registration_access_token)
