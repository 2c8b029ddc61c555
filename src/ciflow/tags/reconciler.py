"""Tag reconciliation against the repository's reference store.

The reconciler makes the remote tag state match a freshly computed target:
sync_tag ensures exactly one tag with the given name points at the desired
commit, remove_tag ensures no tag with the given name remains. Both are
idempotent, so concurrent or repeated webhook deliveries converge.

A 422 from the store while deleting means another delivery already removed
the tag, and a 422 while creating is accepted once the tag is seen at the
desired commit. Any other API error propagates to the event handler.
"""

import logging
from typing import List, Optional, Protocol

from src.ciflow.github.client import GitHubAPIError
from src.ciflow.github.models import GitRef
from src.ciflow.metrics import CiflowMetrics


logger = logging.getLogger(__name__)


TAG_REF_PREFIX = "refs/tags/"

# Status GitHub returns for deleting a missing ref or creating an existing one
UNPROCESSABLE_ENTITY = 422


def tag_ref(tag: str) -> str:
    """Fully qualified reference path for a tag, e.g. "refs/tags/ciflow/trunk/1"."""
    return f"{TAG_REF_PREFIX}{tag}"


def short_tag_ref(tag: str) -> str:
    """Reference path without the "refs/" prefix, as the refs API expects it."""
    return f"tags/{tag}"


class RefStore(Protocol):
    """Reference store operations the reconciler depends on.

    GitHubClient implements this protocol.
    """

    async def list_matching_refs(
        self, owner: str, repo: str, ref: str
    ) -> List[GitRef]:
        ...

    async def delete_ref(self, owner: str, repo: str, ref: str) -> None:
        ...

    async def create_ref(
        self, owner: str, repo: str, ref: str, sha: str
    ) -> GitRef:
        ...


class TagReconciler:
    """Creates, moves and deletes ciflow tags.

    Attributes:
        ref_store: The reference store to reconcile against.
        metrics: Optional metrics for counting tag operations.
    """

    def __init__(
        self,
        ref_store: RefStore,
        metrics: Optional[CiflowMetrics] = None,
    ):
        self.ref_store = ref_store
        self.metrics = metrics

    async def _exact_matches(self, owner: str, repo: str, tag: str) -> List[GitRef]:
        # matching-refs is a prefix match: "ciflow/trunk/1" lists ".../12" too
        listed = await self.ref_store.list_matching_refs(
            owner, repo, short_tag_ref(tag)
        )
        full_ref = tag_ref(tag)
        return [match for match in listed if match.ref == full_ref]

    async def _delete(self, owner: str, repo: str, tag: str) -> None:
        try:
            await self.ref_store.delete_ref(owner, repo, short_tag_ref(tag))
        except GitHubAPIError as e:
            if e.status_code != UNPROCESSABLE_ENTITY:
                raise
            logger.info(
                "Tag %s was already removed",
                tag,
                extra={"owner": owner, "repo": repo, "tag": tag},
            )
            return
        self._record("deleted")

    async def _create(self, owner: str, repo: str, tag: str, head_sha: str) -> None:
        try:
            await self.ref_store.create_ref(owner, repo, tag_ref(tag), head_sha)
        except GitHubAPIError as e:
            if e.status_code != UNPROCESSABLE_ENTITY:
                raise
            # Lost a race with another delivery, or a retried POST that landed
            matches = await self._exact_matches(owner, repo, tag)
            if not any(match.sha == head_sha for match in matches):
                raise
            logger.info(
                "Tag %s was already created on %s",
                tag,
                head_sha,
                extra={"owner": owner, "repo": repo, "tag": tag, "sha": head_sha},
            )
            self._record("unchanged")
            return
        self._record("created")

    async def sync_tag(self, owner: str, repo: str, tag: str, head_sha: str) -> None:
        """Make sure `tag` points to `head_sha`, deleting old tags as necessary.

        Args:
            owner: Repository owner.
            repo: Repository name.
            tag: Tag name, e.g. "ciflow/trunk/12345".
            head_sha: The commit the tag should point at.
        """
        logger.info(
            "Synchronizing tag %s to head sha %s",
            tag,
            head_sha,
            extra={"owner": owner, "repo": repo, "tag": tag, "sha": head_sha},
        )

        matches = await self._exact_matches(owner, repo, tag)
        if matches:
            logger.info(
                "Found matching tags for %s",
                tag,
                extra={"tag": tag, "shas": [match.sha for match in matches]},
            )
        else:
            logger.info("No matching tags for %s", tag, extra={"tag": tag})

        if any(match.sha == head_sha for match in matches):
            logger.info(
                "Tag %s already points to %s",
                tag,
                head_sha,
                extra={"tag": tag, "sha": head_sha},
            )
            self._record("unchanged")
            return

        for match in matches:
            logger.info(
                "Deleting out of date tag %s on sha %s",
                tag,
                match.sha,
                extra={"tag": tag, "sha": match.sha},
            )
            await self._delete(owner, repo, tag)

        logger.info(
            "Creating tag %s on head sha %s",
            tag,
            head_sha,
            extra={"tag": tag, "sha": head_sha},
        )
        await self._create(owner, repo, tag, head_sha)

    async def remove_tag(self, owner: str, repo: str, tag: str) -> None:
        """Remove a tag from the repository if it exists.

        Only the first exact match is deleted; a tag name resolves to a
        single reference in the store.

        Args:
            owner: Repository owner.
            repo: Repository name.
            tag: Tag name, e.g. "ciflow/trunk/12345".
        """
        logger.info(
            "Cleaning up tag %s",
            tag,
            extra={"owner": owner, "repo": repo, "tag": tag},
        )

        matches = await self._exact_matches(owner, repo, tag)
        if not matches:
            logger.info("No matching tags for %s", tag, extra={"tag": tag})
            return

        match = matches[0]
        logger.info(
            "Deleting tag %s on sha %s",
            tag,
            match.sha,
            extra={"tag": tag, "sha": match.sha},
        )
        await self._delete(owner, repo, tag)

    def _record(self, operation: str) -> None:
        if self.metrics is not None:
            self.metrics.record_tag_operation(operation)
