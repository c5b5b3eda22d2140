from .app import RequestLoggingMiddleware, create_app, create_server, run_server
from .metadata import fetch_oidc_metadata
from .token_verifier import IntrospectionTokenVerifier

__all__ = [
    "IntrospectionTokenVerifier",
    "RequestLoggingMiddleware",
    "create_app",
    "create_server",
    "fetch_oidc_metadata",
    "run_server",
]
