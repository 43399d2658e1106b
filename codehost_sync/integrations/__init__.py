"""Remote API clients and integration errors."""

from .base import (
    BaseIntegrationClient,
    IntegrationError,
    ConfigurationError,
    AuthenticationError,
    OAuthNotSupportedError,
    RemoteAPIError,
    NetworkError,
    WebhookVerificationError,
    IntegrationNotFoundError,
)
from .github import GitHubClient

__all__ = [
    "BaseIntegrationClient",
    "IntegrationError",
    "ConfigurationError",
    "AuthenticationError",
    "OAuthNotSupportedError",
    "RemoteAPIError",
    "NetworkError",
    "WebhookVerificationError",
    "IntegrationNotFoundError",
    "GitHubClient",
]
