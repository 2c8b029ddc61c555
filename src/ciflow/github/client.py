"""GitHub API client for git reference and pull request interactions.

This module provides an async wrapper around the GitHub REST API for:
- Listing, creating and deleting git references (tags)
- Creating comments on pull requests
- Reading collaborator permission levels
- Reading repository file contents (per-repo configuration)

Includes rate limiting and retry logic for transient transport failures.
Anything that still fails after the retries is raised as GitHubAPIError
for the caller to handle.
"""

import asyncio
import base64
import logging
import random
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from src.ciflow.github.models import CollaboratorPermission, GitRef


logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class GitHubClient:
    """Async GitHub API client with rate limiting and retry logic.

    The client implements:

    - Automatic retry with exponential backoff for transient failures
    - Rate limit detection from X-RateLimit-* headers
    - Support for both github.com and GitHub Enterprise Server

    Attributes:
        token: GitHub API token (PAT or GitHub App installation token).
        base_url: Base URL for GitHub API (default: https://api.github.com).
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient(token="ghp_xxx") as client:
        ...     refs = await client.list_matching_refs(
        ...         "pytorch", "pytorch", "tags/ciflow/trunk/123"
        ...     )
    """

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the GitHub client.

        Args:
            token: GitHub API token for authentication.
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            max_retries: Maximum number of retry attempts.
            base_delay: Base delay in seconds for exponential backoff.
            max_delay: Maximum delay in seconds between retries.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, mainly for tests.
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "ciflow-push-trigger/1.0",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(
        self,
        exc_type: Any,
        exc_val: Any,
        exc_tb: Any,
    ) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate backoff delay with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    def _parse_int_header(
        self,
        headers: httpx.Headers,
        name: str,
    ) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _raise_rate_limit(self, response: httpx.Response) -> None:
        """Raise RateLimitError with information about when to retry.

        Raises:
            RateLimitError: Always.
        """
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        # Retry-After takes precedence over the reset timestamp
        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            extra={
                "reset_at": reset_at,
                "retry_after": retry_after,
                "limit": self._parse_int_header(response.headers, "x-ratelimit-limit"),
                "used": self._parse_int_header(response.headers, "x-ratelimit-used"),
            },
        )

        raise RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, DELETE, ...).
            path: API path (e.g., /repos/owner/repo/git/refs).
            json_data: Optional JSON body for the request.

        Returns:
            The HTTP response from GitHub.

        Raises:
            GitHubAPIError: If the request fails after all retries.
            RateLimitError: If rate limit is exceeded.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    json=json_data,
                )
            except httpx.TimeoutException as e:
                last_exception = e
                reason = "Request timeout, retrying"
            except httpx.RequestError as e:
                last_exception = e
                reason = "Request error, retrying"
            else:
                if response.status_code == 403:
                    remaining = self._parse_int_header(
                        response.headers,
                        "x-ratelimit-remaining",
                    )
                    if remaining == 0:
                        self._raise_rate_limit(response)

                if response.status_code == 429:
                    self._raise_rate_limit(response)

                if (
                    response.status_code in self.RETRYABLE_STATUS_CODES
                    and attempt < self.max_retries
                ):
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Retryable error from GitHub API",
                        extra={
                            "status_code": response.status_code,
                            "attempt": attempt + 1,
                            "max_retries": self.max_retries,
                            "delay": delay,
                            "path": path,
                        },
                    )
                    await asyncio.sleep(delay)
                    continue

                if response.status_code >= 400:
                    error_body = response.text
                    logger.error(
                        "GitHub API error",
                        extra={
                            "status_code": response.status_code,
                            "path": path,
                            "method": method,
                            "response_body": error_body[:500],
                        },
                    )
                    raise GitHubAPIError(
                        message=f"GitHub API error: {response.status_code}",
                        status_code=response.status_code,
                        response_body=error_body,
                        request_url=str(response.url),
                    )

                return response

            if attempt < self.max_retries:
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    reason,
                    extra={
                        "error": str(last_exception),
                        "attempt": attempt + 1,
                        "max_retries": self.max_retries,
                        "delay": delay,
                        "path": path,
                    },
                )
                await asyncio.sleep(delay)

        logger.error(
            "GitHub API request failed after all retries",
            extra={
                "path": path,
                "method": method,
                "max_retries": self.max_retries,
                "last_error": str(last_exception),
            },
        )
        raise GitHubAPIError(
            message=f"Request failed after {self.max_retries} retries: {last_exception}",
            request_url=f"{self.base_url}{path}",
        )

    # -------------------------------------------------------------------------
    # Git references
    # -------------------------------------------------------------------------

    async def list_matching_refs(
        self,
        owner: str,
        repo: str,
        ref: str,
    ) -> List[GitRef]:
        """List references whose name starts with the given ref.

        GitHub matches by prefix, so "tags/ciflow/trunk/1" also returns
        "refs/tags/ciflow/trunk/12". Callers must compare full paths.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            ref: Reference without the "refs/" prefix, e.g. "tags/ciflow/trunk/123".

        Returns:
            The matching references, possibly empty.

        Raises:
            GitHubAPIError: If the request fails.
        """
        path = f"/repos/{owner}/{repo}/git/matching-refs/{quote(ref, safe='/')}"

        response = await self._request(method="GET", path=path)
        refs = [GitRef.from_github_response(item) for item in response.json()]

        logger.debug(
            "Listed matching refs",
            extra={
                "owner": owner,
                "repo": repo,
                "ref": ref,
                "count": len(refs),
            },
        )
        return refs

    async def delete_ref(
        self,
        owner: str,
        repo: str,
        ref: str,
    ) -> None:
        """Delete a reference.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            ref: Reference without the "refs/" prefix, e.g. "tags/ciflow/trunk/123".

        Raises:
            GitHubAPIError: If the request fails, including when the ref
                does not exist (422).
        """
        path = f"/repos/{owner}/{repo}/git/refs/{quote(ref, safe='/')}"

        logger.info(
            "Deleting ref",
            extra={"owner": owner, "repo": repo, "ref": ref},
        )
        await self._request(method="DELETE", path=path)

    async def create_ref(
        self,
        owner: str,
        repo: str,
        ref: str,
        sha: str,
    ) -> GitRef:
        """Create a reference pointing at a commit.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            ref: Fully qualified reference, e.g. "refs/tags/ciflow/trunk/123".
            sha: Commit SHA for the new reference.

        Returns:
            The created reference.

        Raises:
            GitHubAPIError: If the request fails, including when the ref
                already exists (422).
        """
        path = f"/repos/{owner}/{repo}/git/refs"

        logger.info(
            "Creating ref",
            extra={"owner": owner, "repo": repo, "ref": ref, "sha": sha},
        )
        response = await self._request(
            method="POST",
            path=path,
            json_data={"ref": ref, "sha": sha},
        )
        return GitRef.from_github_response(response.json())

    # -------------------------------------------------------------------------
    # Issues, collaborators and contents
    # -------------------------------------------------------------------------

    async def create_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
    ) -> Dict[str, Any]:
        """Create a comment on an issue or pull request.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            issue_number: Issue or pull request number to comment on.
            body: Comment body in markdown format.

        Returns:
            The created comment data from GitHub API.

        Raises:
            GitHubAPIError: If the request fails.
        """
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/comments"

        logger.info(
            "Creating comment on pull request",
            extra={
                "owner": owner,
                "repo": repo,
                "issue_number": issue_number,
                "body_length": len(body),
            },
        )

        response = await self._request(
            method="POST",
            path=path,
            json_data={"body": body},
        )

        result = response.json()
        logger.info(
            "Comment created successfully",
            extra={
                "owner": owner,
                "repo": repo,
                "issue_number": issue_number,
                "comment_id": result.get("id"),
            },
        )
        return result

    async def get_collaborator_permission(
        self,
        owner: str,
        repo: str,
        username: str,
    ) -> CollaboratorPermission:
        """Get a user's permission level on a repository.

        Returns:
            The permission level. Users that are not collaborators (404)
            get CollaboratorPermission.NONE.

        Raises:
            GitHubAPIError: If the request fails for any other reason.
        """
        path = f"/repos/{owner}/{repo}/collaborators/{quote(username, safe='')}/permission"

        try:
            response = await self._request(method="GET", path=path)
        except GitHubAPIError as e:
            if e.status_code == 404:
                logger.debug(
                    "User is not a collaborator",
                    extra={"owner": owner, "repo": repo, "username": username},
                )
                return CollaboratorPermission.NONE
            raise

        return CollaboratorPermission.parse(response.json().get("permission"))

    async def get_file_content(
        self,
        owner: str,
        repo: str,
        file_path: str,
        ref: Optional[str] = None,
    ) -> Optional[str]:
        """Read a file from the repository.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            file_path: Path of the file relative to the repository root.
            ref: Optional branch, tag or SHA. Defaults to the default branch.

        Returns:
            The decoded file contents, or None if the file does not exist.

        Raises:
            GitHubAPIError: If the request fails for any other reason.
        """
        path = f"/repos/{owner}/{repo}/contents/{quote(file_path, safe='/')}"
        if ref is not None:
            path = f"{path}?ref={quote(ref, safe='')}"

        try:
            response = await self._request(method="GET", path=path)
        except GitHubAPIError as e:
            if e.status_code == 404:
                logger.debug(
                    "File not found in repository",
                    extra={"owner": owner, "repo": repo, "file_path": file_path},
                )
                return None
            raise

        data = response.json()
        if not isinstance(data, dict) or data.get("type") != "file":
            logger.warning(
                "Path is not a file",
                extra={"owner": owner, "repo": repo, "file_path": file_path},
            )
            return None

        return base64.b64decode(data.get("content", "")).decode("utf-8")

    async def health_check(self) -> bool:
        """Check if the GitHub API is accessible.

        Returns:
            True if healthy, False otherwise.
        """
        try:
            response = await self.client.get("/rate_limit")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(
                "GitHub API health check failed",
                extra={"error": str(e)},
            )
            return False
