class AuthFlowError(Exception):
    """Raised when an attempt to obtain or use a Keycloak credential fails.

    Every failure terminates the attempt it belongs to. Nothing in this package
    retries; a caller that wants another attempt starts a new flow.

    Attributes:
        reason: Human-readable reason, suitable for showing to the end user
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CallbackError(AuthFlowError):
    """The authorization callback did not carry a trustworthy code.

    Covers an ``error`` parameter reported by the provider, a missing ``code``
    and a ``state`` that does not match the one sent with the request.
    """


class CallbackTimeoutError(CallbackError):
    """No callback arrived within the receiver's timeout window."""

    def __init__(self, reason: str = "timeout"):
        super().__init__(reason)


class CallbackServerError(AuthFlowError):
    """The local callback listener could not be started."""


class TokenRequestError(AuthFlowError):
    """The token endpoint rejected a grant or returned an unusable body.

    Attributes:
        status_code: HTTP status returned by the token endpoint, if any
        error: OAuth ``error`` code from the response body, if any
    """

    def __init__(self, reason: str, status_code: int | None = None, error: str | None = None):
        super().__init__(reason)
        self.status_code = status_code
        self.error = error


class RegistrationError(AuthFlowError):
    """A Dynamic Client Registration request failed."""

    def __init__(self, reason: str, status_code: int | None = None):
        super().__init__(reason)
        self.status_code = status_code


class MetadataError(Exception):
    """OpenID provider metadata could not be fetched or parsed."""
