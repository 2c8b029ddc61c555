"""GitHub webhook handling for the ciflow push trigger.

This module verifies and parses GitHub webhook events, specifically:
- pull_request.opened / reopened / synchronize - Sync all ciflow tags
- pull_request.labeled / unlabeled - Add or remove one ciflow tag
- pull_request.closed - Remove all ciflow tags
- push - Refresh cached repository configuration
"""

from .handler import WebhookHandler
from .models import PullRequestAction, PullRequestEvent, PullRequestState, PushEvent

__all__ = [
    "PullRequestAction",
    "PullRequestEvent",
    "PullRequestState",
    "PushEvent",
    "WebhookHandler",
]
