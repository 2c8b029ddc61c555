"""GitHub webhook event models for the ciflow push trigger.

This module defines the data models for the webhook events the service
reacts to: pull_request lifecycle events, which drive tag
reconciliation, and push events, which refresh cached repository
configuration.

The models use Pydantic for validation, consistent with the service's
configuration approach in config.py.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PullRequestAction(str, Enum):
    """GitHub pull_request event action types handled by the service.

    Attributes:
        OPENED: A pull request was created. Tags are synced for its labels.
        REOPENED: A closed pull request was reopened. Tags are synced again.
        SYNCHRONIZE: The head branch was updated. Tags move to the new head.
        CLOSED: The pull request was closed or merged. Tags are removed.
        LABELED: A label was added. Its tag is created after validation.
        UNLABELED: A label was removed. Its tag is removed.
    """

    OPENED = "opened"
    REOPENED = "reopened"
    SYNCHRONIZE = "synchronize"
    CLOSED = "closed"
    LABELED = "labeled"
    UNLABELED = "unlabeled"


class PullRequestState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class PullRequestEvent(BaseModel):
    """Parsed GitHub pull_request webhook event.

    Attributes:
        action: The type of pull request event.
        pr_number: The pull request number within the repository.
        state: Whether the pull request is open or closed.
        head_sha: The commit at the tip of the pull request's head branch.
        labels: Names of all labels currently on the pull request.
        label: The label added or removed, for labeled/unlabeled events.
        repository: The repository name (without owner prefix).
        owner: The repository owner (user or organization).
        author: The GitHub username who opened the pull request.
    """

    action: PullRequestAction = Field(
        ...,
        description="The type of pull request event that triggered the webhook",
    )

    pr_number: int = Field(
        ...,
        gt=0,
        description="The pull request number within the repository",
    )

    state: PullRequestState = Field(
        ...,
        description="The pull request state at the time of the event",
    )

    head_sha: str = Field(
        ...,
        min_length=1,
        description="The commit SHA at the tip of the head branch",
    )

    labels: list[str] = Field(
        default_factory=list,
        description="List of label names attached to the pull request",
    )

    label: Optional[str] = Field(
        default=None,
        description="The label that was added or removed, if any",
    )

    repository: str = Field(
        ...,
        min_length=1,
        description="The repository name without owner prefix",
    )

    owner: str = Field(
        ...,
        min_length=1,
        description="The repository owner (user or organization)",
    )

    author: str = Field(
        ...,
        min_length=1,
        description="The GitHub username who opened the pull request",
    )

    @property
    def event_name(self) -> str:
        """Event name in format "pull_request.{action}"."""
        return f"pull_request.{self.action.value}"

    @property
    def pr_id(self) -> str:
        """Canonical pull request identifier "{owner}/{repository}#{pr_number}"."""
        return f"{self.owner}/{self.repository}#{self.pr_number}"

    @property
    def is_closed(self) -> bool:
        return self.state == PullRequestState.CLOSED


class PushEvent(BaseModel):
    """Parsed GitHub push webhook event.

    Only the fields needed to detect pushes to the default branch are kept.
    """

    ref: str = Field(..., min_length=1, description="The pushed ref")

    repository: str = Field(..., min_length=1)

    owner: str = Field(..., min_length=1)

    default_branch: str = Field(
        ...,
        min_length=1,
        description="The repository's default branch name",
    )

    @property
    def full_repository(self) -> str:
        return f"{self.owner}/{self.repository}"
