"""OpenID provider metadata discovery."""

import logging

import httpx
from mcp.shared.auth import OAuthMetadata
from pydantic import ValidationError

from mcp_keycloak_auth._httpx_utils import HttpClientFactory, create_http_client
from mcp_keycloak_auth.exceptions import MetadataError

logger = logging.getLogger(__name__)


def discovery_url(issuer_url: str) -> str:
    return f"{issuer_url.rstrip('/')}/.well-known/openid-configuration"


async def fetch_oidc_metadata(
    issuer_url: str,
    http_client_factory: HttpClientFactory = create_http_client,
) -> OAuthMetadata:
    """
    Fetch and validate ``{issuer}/.well-known/openid-configuration``.

    Raises:
        MetadataError: The document could not be fetched or is not valid
            provider metadata
    """
    url = discovery_url(issuer_url)
    async with http_client_factory() as client:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise MetadataError(f"Failed to fetch OAuth metadata from {url}: {e}") from e

    if not response.is_success:
        raise MetadataError(
            f"Failed to fetch OAuth metadata from {url}: {response.status_code} {response.reason_phrase}"
        )

    try:
        metadata = OAuthMetadata.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        raise MetadataError(f"Invalid OAuth metadata at {url}: {e}") from e

    logger.debug("Discovered OAuth metadata for issuer %s", metadata.issuer)
    return metadata
