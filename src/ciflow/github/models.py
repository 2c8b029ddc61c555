"""GitHub API data models for git references.

The models use Pydantic for validation, consistent with the webhook
models in webhook/models.py.
"""

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class GitRef(BaseModel):
    """A git reference as returned by the GitHub git refs API.

    Attributes:
        ref: Fully qualified reference path, e.g. "refs/tags/ciflow/trunk/123".
        sha: The commit SHA the reference points at.
    """

    ref: str = Field(
        ...,
        min_length=1,
        description="Fully qualified reference path",
    )

    sha: str = Field(
        ...,
        min_length=1,
        description="Commit SHA the reference points at",
    )

    @classmethod
    def from_github_response(cls, data: Dict[str, Any]) -> "GitRef":
        """Build a GitRef from a GitHub API reference object.

        GitHub returns references as:
        {"ref": "refs/tags/x", "object": {"sha": "abc123", "type": "commit"}}
        """
        return cls(ref=data["ref"], sha=data["object"]["sha"])


class CollaboratorPermission(str, Enum):
    """Permission levels reported by the collaborator permission API."""

    ADMIN = "admin"
    MAINTAIN = "maintain"
    WRITE = "write"
    TRIAGE = "triage"
    READ = "read"
    NONE = "none"

    @classmethod
    def parse(cls, value: Any) -> "CollaboratorPermission":
        """Parse a permission string, treating unknown values as NONE."""
        try:
            return cls(value)
        except ValueError:
            return cls.NONE
