"""Configuration for the Keycloak clients and the protected MCP server.

Every setting can be provided through the environment, e.g.
``KEYCLOAK_REALM_URL=http://localhost:8080/realms/demo`` or
``MCP_CLIENT_REDIRECT_URI=http://localhost:3001/callback``.
"""

from urllib.parse import urlparse

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class KeycloakSettings(BaseSettings):
    """Identity provider realm and the confidential client registered in it."""

    model_config = SettingsConfigDict(env_prefix="KEYCLOAK_")

    realm_url: str = "http://localhost:8080/realms/demo"
    client_id: str = "my-client"
    client_secret: str | None = None

    @field_validator("realm_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/auth"

    @property
    def token_endpoint(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/token"

    @property
    def registration_endpoint(self) -> str:
        return f"{self.realm_url}/clients-registrations/openid-connect"


class ClientSettings(BaseSettings):
    """Settings for the demo MCP clients."""

    model_config = SettingsConfigDict(env_prefix="MCP_CLIENT_")

    mcp_url: str = "http://localhost:3000/mcp"
    redirect_uri: str = "http://localhost:3001/callback"
    scope: str = "openid profile email"

    # Seconds the callback listener waits for the browser redirect
    callback_timeout: float = Field(default=300.0, gt=0)

    @field_validator("redirect_uri")
    @classmethod
    def require_local_port(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme != "http" or not parsed.hostname or not parsed.port:
            raise ValueError("redirect_uri must be an http URL with an explicit port, e.g. http://localhost:3001/cb")
        return v


class ResourceServerSettings(BaseSettings):
    """Settings for the token-introspecting MCP server."""

    model_config = SettingsConfigDict(env_prefix="MCP_RESOURCE_")

    host: str = "localhost"
    port: int = 3000
    server_url: AnyHttpUrl = AnyHttpUrl("http://localhost:3000")
    required_scopes: list[str] = []
    resource_name: str = "example-server"
