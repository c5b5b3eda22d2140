"""
Interactive authorization-code login through the user's browser.

The flow generates an anti-forgery ``state``, starts the local callback
listener, directs the browser to the realm's authorization endpoint and
exchanges the returned code for an access token.
"""

import logging
import secrets
import webbrowser
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from urllib.parse import urlencode

import anyio
import anyio.to_thread
from mcp.shared.auth import OAuthToken

from mcp_keycloak_auth._httpx_utils import HttpClientFactory, create_http_client
from mcp_keycloak_auth.client.callback import (
    DEFAULT_CALLBACK_TIMEOUT,
    AuthorizationCode,
    CallbackReceiver,
    CallbackTimeout,
)
from mcp_keycloak_auth.client.grants import DEFAULT_SCOPE, request_token
from mcp_keycloak_auth.exceptions import CallbackError, CallbackTimeoutError
from mcp_keycloak_auth.settings import KeycloakSettings

logger = logging.getLogger(__name__)

RedirectHandler = Callable[[str], Awaitable[object]]


def generate_state() -> str:
    """Generate a random anti-forgery token (128 bits, hex encoded)."""
    return secrets.token_hex(16)


@dataclass(frozen=True)
class AuthorizationRequest:
    """Parameters of one authorization request."""

    client_id: str
    redirect_uri: str
    scope: str = DEFAULT_SCOPE
    state: str = field(default_factory=generate_state)

    def authorization_url(self, authorization_endpoint: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
            "state": self.state,
        }
        return f"{authorization_endpoint}?{urlencode(params)}"


async def open_user_agent(authorization_url: str) -> bool:
    """Open the authorization URL in the default browser.

    Failing to launch a browser is not an error: the URL is logged so the
    user can open it manually. Returns whether a browser was launched.
    """
    logger.info("Opening browser for login. If it does not open, visit:\n%s", authorization_url)
    try:
        opened = await anyio.to_thread.run_sync(webbrowser.open, authorization_url)
    except webbrowser.Error:
        logger.debug("webbrowser raised while opening the authorization URL", exc_info=True)
        opened = False

    if not opened:
        logger.warning("Could not open a browser automatically. Please visit this URL:\n%s", authorization_url)
    return opened


class AuthorizationCodeFlow:
    """
    One interactive login against a Keycloak realm.

    Each call to :meth:`authenticate` is an independent attempt with a fresh
    state value. Nothing is retried; the callback listener is released on every
    exit path.
    """

    def __init__(
        self,
        settings: KeycloakSettings,
        redirect_uri: str,
        scope: str = DEFAULT_SCOPE,
        timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        redirect_handler: RedirectHandler = open_user_agent,
        http_client_factory: HttpClientFactory = create_http_client,
    ):
        """
        Args:
            settings: Realm URL and client credentials
            redirect_uri: Registered redirect URI; its host and port are
                where the callback listener binds
            scope: Space separated scopes to request
            timeout: Seconds to wait for the browser redirect
            redirect_handler: Directs the user agent to the authorization URL
            http_client_factory: Creates the client used for the token exchange
        """
        self.settings = settings
        self.redirect_uri = redirect_uri
        self.scope = scope
        self.timeout = timeout
        self.redirect_handler = redirect_handler
        self.http_client_factory = http_client_factory

    async def authenticate(self) -> OAuthToken:
        """Run the flow and return the access token.

        Raises:
            CallbackServerError: The callback port could not be bound
            CallbackTimeoutError: No callback arrived in time
            CallbackError: The provider reported an error, or the callback
                carried no code or a mismatched state
            TokenRequestError: The code could not be exchanged
        """
        request = AuthorizationRequest(
            client_id=self.settings.client_id,
            redirect_uri=self.redirect_uri,
            scope=self.scope,
        )
        url = request.authorization_url(self.settings.authorization_endpoint)

        receiver = CallbackReceiver(self.redirect_uri, request.state, timeout=self.timeout)
        async with receiver.listen():
            await self.redirect_handler(url)
            logger.info("Waiting for the authorization callback...")
            outcome = await receiver.wait()

        if isinstance(outcome, CallbackTimeout):
            raise CallbackTimeoutError()
        if not isinstance(outcome, AuthorizationCode):
            raise CallbackError(outcome.reason)

        logger.info("Authorization code received, exchanging it for an access token")
        return await self.exchange_code(outcome.code)

    async def exchange_code(self, code: str) -> OAuthToken:
        return await request_token(
            self.settings,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
            self.http_client_factory,
        )
