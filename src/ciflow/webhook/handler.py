"""GitHub webhook handler for the ciflow push trigger.

This module provides the WebhookHandler class for verifying and parsing
GitHub webhook deliveries. When a webhook secret is configured, each
delivery's X-Hub-Signature-256 header is checked before parsing.

GitHub Webhook Payload Structure (pull_request event):
{
  "action": "labeled",
  "label": {"name": "ciflow/trunk"},
  "pull_request": {
    "number": 123,
    "state": "open",
    "head": {"sha": "abc123..."},
    "labels": [{"name": "ciflow/trunk"}, {"name": "module: ci"}],
    "user": {"login": "username"}
  },
  "repository": {
    "name": "repo-name",
    "owner": {"login": "owner-name"}
  }
}
"""

import hashlib
import hmac
import logging
from typing import Any, Dict, List, Optional

from .models import PullRequestAction, PullRequestEvent, PullRequestState, PushEvent

logger = logging.getLogger(__name__)


SIGNATURE_PREFIX = "sha256="


class WebhookHandler:
    """Handler for verifying and parsing GitHub webhook events.

    Parsing never raises: payloads that are malformed or carry an
    unsupported action produce None and are logged.

    Attributes:
        secret: The webhook secret. Empty disables signature validation.
    """

    def __init__(self, secret: str = "") -> None:
        self.secret = secret

    def verify_signature(self, body: bytes, signature_header: Optional[str]) -> bool:
        """Verify the HMAC-SHA256 signature of a webhook delivery.

        Args:
            body: The raw request body.
            signature_header: Value of the X-Hub-Signature-256 header.

        Returns:
            True if the signature matches, or if no secret is configured.
        """
        if not self.secret:
            return True

        if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
            logger.warning("Missing or malformed webhook signature header")
            return False

        expected = SIGNATURE_PREFIX + hmac.new(
            self.secret.encode("utf-8"), body, hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature_header)

    def parse_pull_request_event(
        self, payload: Dict[str, Any]
    ) -> Optional[PullRequestEvent]:
        """Parse a GitHub pull_request event from a webhook payload.

        Args:
            payload: The raw webhook payload as a dictionary.

        Returns:
            PullRequestEvent if parsing succeeds, None otherwise.
            Returns None for:
            - Missing required fields
            - Unsupported action types
            - labeled/unlabeled events without a label name
        """
        if not isinstance(payload, dict):
            logger.warning("Invalid payload: expected dict, got %s", type(payload))
            return None

        action = self._parse_action(payload.get("action"))
        if action is None:
            logger.debug(
                "Ignoring unsupported pull_request action: %s",
                payload.get("action"),
            )
            return None

        pr_data = payload.get("pull_request")
        if not isinstance(pr_data, dict):
            logger.warning(
                "Missing or invalid 'pull_request' field in payload: %s",
                type(pr_data),
            )
            return None

        repo_data = payload.get("repository")
        if not isinstance(repo_data, dict):
            logger.warning(
                "Missing or invalid 'repository' field in payload: %s",
                type(repo_data),
            )
            return None

        pr_number = pr_data.get("number")
        if not isinstance(pr_number, int) or isinstance(pr_number, bool) or pr_number <= 0:
            logger.warning("Invalid pull request number: %s", pr_number)
            return None

        try:
            state = PullRequestState(pr_data.get("state"))
        except ValueError:
            logger.warning("Invalid pull request state: %s", pr_data.get("state"))
            return None

        head_data = pr_data.get("head")
        head_sha = head_data.get("sha") if isinstance(head_data, dict) else None
        if not isinstance(head_sha, str) or not head_sha:
            logger.warning("Missing head sha for pull request %s", pr_number)
            return None

        label = None
        if action in (PullRequestAction.LABELED, PullRequestAction.UNLABELED):
            label = self._extract_label_name(payload.get("label"))
            if label is None:
                logger.warning(
                    "Missing label for %s event on pull request %s",
                    action.value,
                    pr_number,
                )
                return None

        author = self._extract_user_login(pr_data.get("user"), "pull request author")
        if author is None:
            return None

        repo_name = repo_data.get("name")
        if not isinstance(repo_name, str) or not repo_name.strip():
            logger.warning("Invalid or empty repository name: %s", repo_name)
            return None

        owner = self._extract_user_login(repo_data.get("owner"), "repository owner")
        if owner is None:
            return None

        event = PullRequestEvent(
            action=action,
            pr_number=pr_number,
            state=state,
            head_sha=head_sha,
            labels=self._extract_labels(pr_data.get("labels", [])),
            label=label,
            repository=repo_name.strip(),
            owner=owner,
            author=author,
        )

        logger.info(
            "Parsed pull request event: action=%s, pr=%s",
            action.value,
            event.pr_id,
        )
        return event

    def parse_push_event(self, payload: Dict[str, Any]) -> Optional[PushEvent]:
        """Parse a GitHub push event from a webhook payload.

        Returns:
            PushEvent if parsing succeeds, None otherwise.
        """
        if not isinstance(payload, dict):
            logger.warning("Invalid payload: expected dict, got %s", type(payload))
            return None

        ref = payload.get("ref")
        repo_data = payload.get("repository")
        if not isinstance(ref, str) or not isinstance(repo_data, dict):
            logger.warning("Missing ref or repository in push payload")
            return None

        repo_name = repo_data.get("name")
        default_branch = repo_data.get("default_branch")
        owner = self._extract_user_login(repo_data.get("owner"), "repository owner")
        if (
            owner is None
            or not isinstance(repo_name, str)
            or not repo_name.strip()
            or not isinstance(default_branch, str)
            or not default_branch
        ):
            logger.warning("Incomplete repository data in push payload")
            return None

        return PushEvent(
            ref=ref,
            repository=repo_name.strip(),
            owner=owner,
            default_branch=default_branch,
        )

    def _parse_action(self, action_str: Any) -> Optional[PullRequestAction]:
        if not isinstance(action_str, str):
            return None

        try:
            return PullRequestAction(action_str)
        except ValueError:
            return None

    def _extract_label_name(self, label_data: Any) -> Optional[str]:
        if isinstance(label_data, dict):
            name = label_data.get("name")
            if isinstance(name, str) and name:
                return name
        return None

    def _extract_labels(self, labels_data: Any) -> List[str]:
        """Extract label names from the labels array.

        GitHub sends labels as an array of objects with 'name' field:
        [{"name": "ciflow/trunk"}, {"name": "module: ci"}]

        Label names are kept verbatim; ciflow matching is exact.

        Returns:
            List of label name strings. Invalid entries are skipped.
        """
        if not isinstance(labels_data, list):
            logger.debug("Labels is not a list: %s", type(labels_data))
            return []

        labels = []
        for label in labels_data:
            name = self._extract_label_name(label)
            if name is not None:
                labels.append(name)
        return labels

    def _extract_user_login(
        self, user_data: Any, context: str
    ) -> Optional[str]:
        """Extract the login field from a user object.

        Args:
            user_data: The user object containing a 'login' field.
            context: Description of the user for logging purposes.

        Returns:
            The login string if valid, None otherwise.
        """
        if not isinstance(user_data, dict):
            logger.warning(
                "Missing or invalid %s data: %s",
                context,
                type(user_data),
            )
            return None

        login = user_data.get("login")
        if not isinstance(login, str) or not login.strip():
            logger.warning("Invalid or empty %s login: %s", context, login)
            return None

        return login.strip()
