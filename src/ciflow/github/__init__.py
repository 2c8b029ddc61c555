"""GitHub API client for git reference and pull request interactions.

Includes rate limiting and retry logic for API resilience.
"""

from src.ciflow.github.client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
)
from src.ciflow.github.models import CollaboratorPermission, GitRef

__all__ = [
    "CollaboratorPermission",
    "GitHubAPIError",
    "GitHubClient",
    "GitRef",
    "RateLimitError",
]
