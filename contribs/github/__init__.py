"""
contribs.github — GitHub REST API access.

Modules:
    client — GitHubClient: headers, bearer token, 202 backoff, cancellation.
"""

from contribs.github.client import (
    GITHUB_API_BASE,
    GITHUB_BASE_URL,
    GitHubClient,
    github_request_headers,
    profile_url_for_login,
)

__all__ = [
    "GITHUB_API_BASE",
    "GITHUB_BASE_URL",
    "GitHubClient",
    "github_request_headers",
    "profile_url_for_login",
]
