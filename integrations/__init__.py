"""
Integrations module - external services
"""

from .github import GitHubClient, PullRequest

__all__ = [
    "GitHubClient",
    "PullRequest",
]
