"""
Local HTTP listener that captures the authorization-code redirect.

The receiver owns the redirect URI's port for the duration of one flow. It
accepts exactly one callback, classifies it, and hands the outcome to whoever
awaits :meth:`CallbackReceiver.wait`. The listener is torn down on the first
terminal transition (success, failure or timeout) and the socket is always
closed when :meth:`CallbackReceiver.listen` exits.
"""

import html
import logging
import secrets
import socket
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from urllib.parse import urlparse

import anyio
import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, Response
from starlette.routing import Route

from mcp_keycloak_auth.exceptions import CallbackServerError

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_TIMEOUT = 300.0


@dataclass(frozen=True)
class AuthorizationCode:
    """The provider redirected back with a code and the expected state."""

    code: str


@dataclass(frozen=True)
class CallbackFailure:
    """The flow did not complete trustworthily."""

    reason: str


@dataclass(frozen=True)
class CallbackTimeout(CallbackFailure):
    """No callback arrived within the receiver's timeout window."""

    reason: str = "timeout"


CallbackOutcome = AuthorizationCode | CallbackFailure


_PAGE = """<html>
<head><title>{title}</title></head>
<body>
    <h1>{title}</h1>
    <p>{message}</p>
    <p>You can close this window and return to the terminal.</p>
    {script}
</body>
</html>
"""


def _page(title: str, message: str, status_code: int, close_window: bool = False) -> HTMLResponse:
    script = "<script>setTimeout(() => window.close(), 2000);</script>" if close_window else ""
    return HTMLResponse(
        _PAGE.format(title=html.escape(title), message=html.escape(message), script=script),
        status_code=status_code,
    )


class CallbackReceiver:
    """One-shot receiver for the OAuth redirect callback.

    Usage:

        receiver = CallbackReceiver("http://localhost:3001/callback", state)
        async with receiver.listen():
            webbrowser.open(authorization_url)
            outcome = await receiver.wait()
    """

    def __init__(
        self,
        redirect_uri: str,
        expected_state: str,
        timeout: float = DEFAULT_CALLBACK_TIMEOUT,
    ):
        parsed = urlparse(redirect_uri)
        if not parsed.hostname or not parsed.port:
            raise ValueError(f"Redirect URI must name a host and port: {redirect_uri}")

        self.host = parsed.hostname
        self.port = parsed.port
        self.path = parsed.path or "/"
        self.expected_state = expected_state
        self.timeout = timeout

        self._outcome: CallbackOutcome | None = None
        self._resolved: anyio.Event | None = None
        self._expiry: anyio.CancelScope | None = None
        self._server: uvicorn.Server | None = None

    @property
    def outcome(self) -> CallbackOutcome | None:
        """The outcome, or None while still listening."""
        return self._outcome

    def _resolve(self, outcome: CallbackOutcome) -> bool:
        """Record the outcome unless one was already recorded.

        Returns True when this call performed the transition.
        """
        if self._outcome is not None:
            return False

        self._outcome = outcome
        if self._resolved is not None:
            self._resolved.set()
        if self._expiry is not None:
            self._expiry.cancel()
        if self._server is not None:
            self._server.should_exit = True
        return True

    async def _handle_callback(self, request: Request) -> Response:
        if request.method != "GET":
            # Starlette also routes HEAD here; only a GET may decide the flow
            return PlainTextResponse("Method Not Allowed", status_code=405, headers={"Allow": "GET"})

        if self._outcome is not None:
            # Duplicate redirect after the flow has been decided
            return PlainTextResponse("Not Found", status_code=404)

        params = request.query_params
        error = params.get("error")
        code = params.get("code")
        state = params.get("state")

        if error is not None:
            error = error or "unspecified error"
            logger.warning("Authorization server returned an error: %s", error)
            self._resolve(CallbackFailure(error))
            return _page("Authentication Failed", f"Error: {error}", 400)

        if not code:
            logger.warning("Callback did not include an authorization code")
            self._resolve(CallbackFailure("no code"))
            return _page("Authentication Failed", "The login did not complete.", 400)

        if state is None or not secrets.compare_digest(state.encode(), self.expected_state.encode()):
            logger.warning("Callback state does not match the state sent with the authorization request")
            self._resolve(CallbackFailure("state mismatch"))
            return _page("Authentication Failed", "The login did not complete.", 400)

        self._resolve(AuthorizationCode(code))
        return _page("Authentication Successful", "You have successfully logged in.", 200, close_window=True)

    def _bind(self) -> socket.socket:
        """Bind the redirect URI's host and port.

        A hostname such as ``localhost`` binds the IPv4 address it resolves to
        (127.0.0.1); a user agent that tries ``::1`` first falls back to IPv4.
        Use an IPv6 literal (``http://[::1]:3001/callback``) to listen on IPv6.
        """
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
            sock.listen()
        except OSError as e:
            sock.close()
            raise CallbackServerError(f"Could not listen on {self.host}:{self.port}: {e.strerror or e}") from e
        return sock

    async def _serve(self, server: uvicorn.Server, sock: socket.socket) -> None:
        await server.serve(sockets=[sock])
        # The listener can also stop on a signal before any callback arrived
        if self._resolve(CallbackFailure("listener stopped")):
            logger.warning("Callback listener stopped before a callback arrived")

    async def _expire(self, expiry: anyio.CancelScope) -> None:
        with expiry:
            await anyio.sleep(self.timeout)
            logger.warning("No callback received within %s seconds", self.timeout)
            self._resolve(CallbackTimeout())

    @asynccontextmanager
    async def listen(self) -> AsyncIterator["CallbackReceiver"]:
        """Bind the callback port and serve until the flow is decided.

        The socket is bound and accepting connections before the body runs, so
        the user agent can be directed to the provider from inside the block.

        Raises:
            CallbackServerError: If the port cannot be bound, e.g. because
                another flow already owns it
        """
        if self._resolved is not None:
            raise RuntimeError("CallbackReceiver can only be used for a single flow")
        self._resolved = anyio.Event()
        self._expiry = anyio.CancelScope()

        sock = self._bind()
        config = uvicorn.Config(
            Starlette(routes=[Route(self.path, self._handle_callback, methods=["GET"])]),
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=5,
        )
        server = uvicorn.Server(config)
        self._server = server
        logger.info("Callback server listening on http://%s:%s%s", self.host, self.port, self.path)

        body_error: Exception | None = None
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._serve, server, sock)
                tg.start_soon(self._expire, self._expiry)
                try:
                    yield self
                except Exception as e:
                    # Raised again below so it does not surface as an ExceptionGroup
                    body_error = e
                finally:
                    self._expiry.cancel()
                    server.should_exit = True
        finally:
            sock.close()
            logger.debug("Callback server on port %s closed", self.port)

        if body_error is not None:
            raise body_error

    async def wait(self) -> CallbackOutcome:
        """Wait for the single outcome of this flow.

        Always returns: the timeout window resolves the flow with
        :class:`CallbackTimeout` if no callback arrives.
        """
        if self._resolved is None:
            raise RuntimeError("wait() called before listen()")
        await self._resolved.wait()
        assert self._outcome is not None
        return self._outcome
