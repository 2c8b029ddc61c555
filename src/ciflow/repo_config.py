"""Per-repository ciflow configuration loading and caching.

Repositories opt in to ciflow tags by listing the labels they recognize
in a YAML config file on their default branch:

    ciflow_push_tags:
      - ciflow/trunk
      - ciflow/periodic

The parsed configuration is cached per repository and refreshed when a
push lands on the repository's default branch.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import yaml
from pydantic import BaseModel, Field

from src.ciflow.config import DEFAULT_CONFIG_FILE_PATH


logger = logging.getLogger(__name__)


CIFLOW_PUSH_TAGS_KEY = "ciflow_push_tags"


class RepoConfigError(Exception):
    """Raised when a repository's config file cannot be interpreted.

    Attributes:
        repository: The repository in format "{owner}/{repo}".
        message: Human-readable error message.
    """

    def __init__(self, repository: str, message: str):
        self.repository = repository
        self.message = message
        super().__init__(f"Invalid ciflow config for {repository}: {message}")


class RepoCiflowConfig(BaseModel):
    """Ciflow configuration of a repository that has opted in.

    Attributes:
        trigger_labels: The recognized ciflow labels, in config file order.
    """

    trigger_labels: List[str] = Field(
        default_factory=list,
        description="Labels listed under ciflow_push_tags",
    )

    def recognizes(self, label: str) -> bool:
        """Check whether a label is on the repository's allow-list."""
        return label in self.trigger_labels

    @classmethod
    def from_mapping(
        cls, data: Any, repository: str
    ) -> Optional["RepoCiflowConfig"]:
        """Build a config from a parsed config file.

        Returns None when the repository has not opted in, i.e. the file
        is empty or has no ciflow_push_tags entry.

        Raises:
            RepoConfigError: If the file is not a mapping or the entry is
                not a list of strings.
        """
        if data is None:
            return None
        if not isinstance(data, dict):
            raise RepoConfigError(repository, "config file must be a mapping")

        labels = data.get(CIFLOW_PUSH_TAGS_KEY)
        if labels is None:
            return None
        if not isinstance(labels, list) or not all(
            isinstance(label, str) for label in labels
        ):
            raise RepoConfigError(
                repository, f"{CIFLOW_PUSH_TAGS_KEY} must be a list of strings"
            )
        return cls(trigger_labels=labels)


class ConfigSource(Protocol):
    """Reads raw files from a repository. GitHubClient implements this."""

    async def get_file_content(
        self,
        owner: str,
        repo: str,
        file_path: str,
        ref: Optional[str] = None,
    ) -> Optional[str]:
        ...


class RepoConfigTracker:
    """Loads and caches ciflow configuration per repository.

    Cached entries (including "not configured") live until a push to the
    repository's default branch forces a reload.

    Attributes:
        source: Where config files are read from.
        config_path: Path of the config file in each repository.
    """

    def __init__(
        self,
        source: ConfigSource,
        config_path: str = DEFAULT_CONFIG_FILE_PATH,
    ):
        self.source = source
        self.config_path = config_path
        self._configs: Dict[str, Optional[RepoCiflowConfig]] = {}

    async def load_config(
        self,
        owner: str,
        repo: str,
        force: bool = False,
    ) -> Optional[RepoCiflowConfig]:
        """Return the repository's ciflow config, or None if not configured.

        Args:
            owner: Repository owner.
            repo: Repository name.
            force: Reload from the repository even if cached.

        Raises:
            RepoConfigError: If the config file is malformed.
            GitHubAPIError: If the file cannot be fetched.
        """
        key = f"{owner}/{repo}"
        if key in self._configs and not force:
            return self._configs[key]

        content = await self.source.get_file_content(owner, repo, self.config_path)
        if content is None:
            config = None
        else:
            try:
                data = yaml.safe_load(content)
            except yaml.YAMLError as e:
                raise RepoConfigError(key, f"invalid YAML: {e}") from e
            config = RepoCiflowConfig.from_mapping(data, key)

        logger.info(
            "Loaded ciflow config",
            extra={
                "repository": key,
                "configured": config is not None,
                "trigger_labels": config.trigger_labels if config else None,
            },
        )
        self._configs[key] = config
        return config

    async def handle_push(
        self,
        owner: str,
        repo: str,
        ref: str,
        default_branch: str,
    ) -> bool:
        """Reload the config when a push lands on the default branch.

        Returns:
            True if the config was reloaded.
        """
        if ref != f"refs/heads/{default_branch}":
            return False

        logger.info(
            "Push to default branch, reloading ciflow config",
            extra={"repository": f"{owner}/{repo}", "ref": ref},
        )
        await self.load_config(owner, repo, force=True)
        return True
