"""Pull request event handlers that keep ciflow tags in sync.

Each handler recomputes everything it needs from the event payload; no
state is kept between deliveries. Handlers that touch several tags run
the per-tag operations concurrently and wait for all of them before
returning. One failing operation does not cancel the others.

Source:
- src/ciflow/labels.py (ciflow label classification, tag names)
- src/ciflow/tags/reconciler.py (TagReconciler)
- src/ciflow/repo_config.py (RepoConfigTracker)
- src/ciflow/permissions.py (PermissionChecker)
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Protocol

from src.ciflow.labels import desired_tags, is_ciflow_label, label_to_tag
from src.ciflow.permissions import PermissionChecker
from src.ciflow.repo_config import RepoConfigTracker
from src.ciflow.tags.reconciler import TagReconciler
from src.ciflow.webhook.models import PullRequestAction, PullRequestEvent

logger = logging.getLogger(__name__)


# https://github.com/pytorch/pytorch/pull/26921 must never get ciflow tags
EXCLUDED_PULL_REQUESTS = frozenset({("pytorch", "pytorch", 26921)})

NO_CONFIG_COMMENT = (
    "No ciflow labels are configured for this repo.\n"
    "For information on how to enable CIFlow bot see "
    "this [wiki]( https://github.com/pytorch/test-infra/wiki/PyTorch-bot#ciflow-bot)"
)


class TagOperationsError(Exception):
    """Raised when one or more concurrent tag operations failed.

    The remaining operations ran to completion.

    Attributes:
        failures: The exceptions raised by the failed operations.
    """

    def __init__(self, failures: List[BaseException]):
        self.failures = failures
        super().__init__(
            f"{len(failures)} tag operation(s) failed: "
            + "; ".join(str(failure) for failure in failures)
        )


class Commenter(Protocol):
    """Posts comments on pull requests. GitHubClient implements this."""

    async def create_comment(
        self, owner: str, repo: str, issue_number: int, body: str
    ) -> object:
        ...


def is_excluded_pull_request(owner: str, repo: str, pr_number: int) -> bool:
    return (owner, repo, pr_number) in EXCLUDED_PULL_REQUESTS


def unknown_label_comment(
    label: str,
    valid_labels: Iterable[str],
    has_permissions: bool,
    config_path: str,
) -> str:
    """Build the comment posted when a ciflow label is not configured."""
    body = f"Unknown label `{label}`.\n Currently recognized labels are\n"
    for valid_label in valid_labels:
        body += f" - `{valid_label}`\n"
    if has_permissions:
        body = (
            "Warning: "
            + body
            + f"\n Please add the new label to {config_path}"
        )
    return body


async def run_all(operations: Iterable[Awaitable[None]]) -> None:
    """Run operations concurrently and wait for every one of them.

    Raises:
        TagOperationsError: If any operation failed, after all finished.
    """
    results = await asyncio.gather(*operations, return_exceptions=True)
    failures = [result for result in results if isinstance(result, BaseException)]
    if failures:
        raise TagOperationsError(failures)


class CiflowPushTrigger:
    """Handlers for pull request events that drive ciflow tags.

    Attributes:
        reconciler: Creates, moves and deletes tags.
        config_tracker: Loads the per-repository ciflow configuration.
        permission_checker: Decides who may use unconfigured labels.
        commenter: Posts validation comments on pull requests.
    """

    def __init__(
        self,
        reconciler: TagReconciler,
        config_tracker: RepoConfigTracker,
        permission_checker: PermissionChecker,
        commenter: Commenter,
    ):
        self.reconciler = reconciler
        self.config_tracker = config_tracker
        self.permission_checker = permission_checker
        self.commenter = commenter

    async def handle_labeled(self, event: PullRequestEvent) -> None:
        """Add the tag corresponding to the new label."""
        logger.debug("START Processing label event", extra={"pr_id": event.pr_id})

        if event.is_closed:
            # If the PR is reopened, the tags get pushed by the sync handler
            logger.info("Ignoring label on closed PR", extra={"pr_id": event.pr_id})
            return

        label = event.label
        if label is None or not is_ciflow_label(label):
            return

        config = await self.config_tracker.load_config(event.owner, event.repository)
        if config is None:
            await self._comment(event, NO_CONFIG_COMMENT)
            return

        if not config.recognizes(label):
            has_permissions = (
                await self.permission_checker.has_workflow_running_permissions(
                    event.owner, event.repository, event.author
                )
            )
            await self._comment(
                event,
                unknown_label_comment(
                    label,
                    config.trigger_labels,
                    has_permissions,
                    self.config_tracker.config_path,
                ),
            )
            if not has_permissions:
                logger.info(
                    "Unknown ciflow label from user without permissions",
                    extra={"pr_id": event.pr_id, "label": label},
                )
                return

        if is_excluded_pull_request(event.owner, event.repository, event.pr_number):
            logger.info("PR is excluded from ciflow tags", extra={"pr_id": event.pr_id})
            return

        tag = label_to_tag(label, event.pr_number)
        await self.reconciler.sync_tag(
            event.owner, event.repository, tag, event.head_sha
        )

    async def handle_unlabeled(self, event: PullRequestEvent) -> None:
        """Remove the tag corresponding to the removed label."""
        logger.debug("START Processing unlabeled event", extra={"pr_id": event.pr_id})

        label = event.label
        if label is None or not is_ciflow_label(label):
            return

        tag = label_to_tag(label, event.pr_number)
        await self.reconciler.remove_tag(event.owner, event.repository, tag)

    async def handle_sync(self, event: PullRequestEvent) -> None:
        """Point every ciflow tag of the PR at its head SHA."""
        logger.debug("START Processing sync event", extra={"pr_id": event.pr_id})

        tags = desired_tags(event.labels, event.pr_number)
        await run_all(
            self.reconciler.sync_tag(event.owner, event.repository, tag, event.head_sha)
            for tag in sorted(tags)
        )
        logger.info("END Processing sync event", extra={"pr_id": event.pr_id})

    async def handle_closed(self, event: PullRequestEvent) -> None:
        """Remove all ciflow tags as the PR is closed."""
        logger.debug("START Processing closed event", extra={"pr_id": event.pr_id})

        tags = desired_tags(event.labels, event.pr_number)
        await run_all(
            self.reconciler.remove_tag(event.owner, event.repository, tag)
            for tag in sorted(tags)
        )

    async def _comment(self, event: PullRequestEvent, body: str) -> None:
        await self.commenter.create_comment(
            event.owner, event.repository, event.pr_number, body
        )


EventHandler = Callable[[PullRequestEvent], Awaitable[None]]


def build_dispatch_table(
    trigger: CiflowPushTrigger,
) -> Dict[PullRequestAction, EventHandler]:
    """Map each pull request action to its handler."""
    return {
        PullRequestAction.LABELED: trigger.handle_labeled,
        PullRequestAction.UNLABELED: trigger.handle_unlabeled,
        PullRequestAction.OPENED: trigger.handle_sync,
        PullRequestAction.REOPENED: trigger.handle_sync,
        PullRequestAction.SYNCHRONIZE: trigger.handle_sync,
        PullRequestAction.CLOSED: trigger.handle_closed,
    }


class EventDispatcher:
    """Routes parsed pull request events to their handlers.

    Attributes:
        handlers: Mapping from action to handler.
    """

    def __init__(self, handlers: Dict[PullRequestAction, EventHandler]):
        self.handlers = dict(handlers)

    async def dispatch(self, event: PullRequestEvent) -> bool:
        """Run the handler for an event.

        Returns:
            True if a handler ran, False if the action has none.

        Raises:
            Exception: Whatever the handler raised.
        """
        handler: Optional[EventHandler] = self.handlers.get(event.action)
        if handler is None:
            logger.debug("No handler for %s", event.event_name)
            return False

        await handler(event)
        return True
