"""Source, hosting and notification providers."""

from .api_client import (
    ProviderAPIError,
    ProviderNotFoundError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
    RetryingAPIClient,
)
from .cloudflare_pages import CloudflarePagesClient, CloudflarePagesProvisioner
from .github_source import GitHubClient, GitHubSourceProvisioner
from .resend_notifier import NullNotifier, ResendClient, ResendNotifier

__all__ = [
    "CloudflarePagesClient",
    "CloudflarePagesProvisioner",
    "GitHubClient",
    "GitHubSourceProvisioner",
    "NullNotifier",
    "ProviderAPIError",
    "ProviderNotFoundError",
    "ProviderRateLimitedError",
    "ProviderTimeoutError",
    "ResendClient",
    "ResendNotifier",
    "RetryingAPIClient",
]
