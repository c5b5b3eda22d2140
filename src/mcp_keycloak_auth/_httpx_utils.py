"""Utilities for creating httpx AsyncClient instances used against Keycloak."""

from typing import Any, Protocol

import httpx

__all__ = ["HttpClientFactory", "create_http_client", "describe_error"]


class HttpClientFactory(Protocol):
    def __call__(self, **kwargs: Any) -> httpx.AsyncClient: ...


def create_http_client(**kwargs: Any) -> httpx.AsyncClient:
    """Create an httpx AsyncClient with the package defaults.

    Defaults are a 30 second timeout and no redirect following, since the
    token and registration endpoints answer directly. Any keyword argument
    accepted by httpx.AsyncClient overrides them.

    The returned client must be used as a context manager.
    """
    default_kwargs: dict[str, Any] = {
        "follow_redirects": False,
        "timeout": httpx.Timeout(30.0),
    }
    default_kwargs.update(kwargs)
    return httpx.AsyncClient(**default_kwargs)


def describe_error(response: httpx.Response) -> tuple[str, str | None]:
    """Extract a readable reason and the OAuth ``error`` code from an error response.

    Keycloak answers OAuth and registration errors with a JSON body holding
    ``error`` and, usually, ``error_description``. Anything else falls back to
    the status line.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        description = body.get("error_description") or error
        if description:
            return str(description), error

    return f"{response.status_code} {response.reason_phrase}".strip(), None
