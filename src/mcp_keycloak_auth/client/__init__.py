"""
Keycloak authentication for MCP clients.

Machine-to-machine:

    token = await fetch_client_credentials_token(KeycloakSettings())

Interactive login through the browser:

    flow = AuthorizationCodeFlow(KeycloakSettings(), redirect_uri="http://localhost:3001/callback")
    token = await flow.authenticate()

Either token is then used for one MCP session:

    async with connect("http://localhost:3000/mcp", token.access_token) as (session, _):
        tools = await session.list_tools()
"""

from .authorization_code import AuthorizationCodeFlow, AuthorizationRequest, generate_state, open_user_agent
from .bearer import BearerAuth, connect
from .callback import (
    AuthorizationCode,
    CallbackFailure,
    CallbackOutcome,
    CallbackReceiver,
    CallbackTimeout,
)
from .grants import fetch_client_credentials_token, fetch_password_token, request_token
from .registration import ClientRegistration, ClientRegistrationRequest, DynamicClientRegistration

__all__ = [
    # Flows
    "AuthorizationCodeFlow",
    "AuthorizationRequest",
    "generate_state",
    "open_user_agent",
    "fetch_client_credentials_token",
    "fetch_password_token",
    "request_token",
    # Callback listener
    "CallbackReceiver",
    "CallbackOutcome",
    "AuthorizationCode",
    "CallbackFailure",
    "CallbackTimeout",
    # Transport
    "BearerAuth",
    "connect",
    # Registration
    "DynamicClientRegistration",
    "ClientRegistrationRequest",
    "ClientRegistration",
]
