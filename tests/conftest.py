import socket
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from mcp_keycloak_auth.settings import KeycloakSettings

REALM_URL = "http://keycloak.test/realms/demo"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def keycloak() -> KeycloakSettings:
    return KeycloakSettings(realm_url=REALM_URL, client_id="mcp-client", client_secret="s3cret")


HandlerFn = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def client_factory() -> Callable[[HandlerFn], Callable[..., httpx.AsyncClient]]:
    """Build http_client_factory callables whose clients are served by a MockTransport handler."""

    def build(handler: HandlerFn) -> Callable[..., httpx.AsyncClient]:
        def factory(**kwargs: Any) -> httpx.AsyncClient:
            return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)

        return factory

    return build
