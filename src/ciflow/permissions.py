"""Permission checks for ciflow label validation.

Users with write access to a repository may push ciflow labels that are
not yet listed in the repository's config; everyone else is restricted
to the configured labels.
"""

import logging
from typing import Protocol

from src.ciflow.github.models import CollaboratorPermission


logger = logging.getLogger(__name__)


WORKFLOW_RUNNING_PERMISSIONS = frozenset(
    {
        CollaboratorPermission.ADMIN,
        CollaboratorPermission.MAINTAIN,
        CollaboratorPermission.WRITE,
    }
)


class PermissionSource(Protocol):
    async def get_collaborator_permission(
        self, owner: str, repo: str, username: str
    ) -> CollaboratorPermission:
        ...


class PermissionChecker:
    """Decides whether a user may run workflows on a repository."""

    def __init__(self, source: PermissionSource):
        self.source = source

    async def has_workflow_running_permissions(
        self,
        owner: str,
        repo: str,
        username: str,
    ) -> bool:
        """Check whether `username` has at least write access to the repo.

        Raises:
            GitHubAPIError: If the permission lookup fails.
        """
        permission = await self.source.get_collaborator_permission(
            owner, repo, username
        )
        allowed = permission in WORKFLOW_RUNNING_PERMISSIONS
        logger.debug(
            "Checked workflow running permissions",
            extra={
                "repository": f"{owner}/{repo}",
                "username": username,
                "permission": permission.value,
                "allowed": allowed,
            },
        )
        return allowed
