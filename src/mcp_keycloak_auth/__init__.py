from .exceptions import (
    AuthFlowError,
    CallbackError,
    CallbackServerError,
    CallbackTimeoutError,
    MetadataError,
    RegistrationError,
    TokenRequestError,
)
from .settings import ClientSettings, KeycloakSettings, ResourceServerSettings

__all__ = [
    "AuthFlowError",
    "CallbackError",
    "CallbackServerError",
    "CallbackTimeoutError",
    "ClientSettings",
    "KeycloakSettings",
    "MetadataError",
    "RegistrationError",
    "ResourceServerSettings",
    "TokenRequestError",
]
