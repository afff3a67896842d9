"""Repository synchronization engine for Git-backed headless CMS content."""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .meta_consts import BACKEND_SERVICE, DEFAULT_PAGE_SIZE


class CmsRepoSyncSettings(BaseSettings):
    """Settings for the repository synchronization engine."""

    model_config = SettingsConfigDict(
        env_prefix="CMS_REPO_SYNC_",
        use_attribute_docstrings=True,
    )

    backend_service: BACKEND_SERVICE = BACKEND_SERVICE.github
    """The repository hosting service to use (github, gitlab, gitea or local)."""

    repo: str = ""
    """The repository in 'owner/name' format. GitLab subgroups are allowed in the owner part."""

    branch: str | None = None
    """The branch to read from and commit to. If None, the repository's default branch is resolved."""

    api_root: str | None = None
    """REST API root. If None, the public service default is used (e.g. https://api.github.com)."""

    graphql_api_root: str | None = None
    """GraphQL API root. GitHub Enterprise Server only; defaults to the REST root."""

    token: str | None = None
    """Access token used for the Authorization header."""

    request_timeout: float = 30.0
    """Timeout in seconds for HTTP requests to the hosting service."""

    default_page_size: int = DEFAULT_PAGE_SIZE
    """Bulk content page size used when the service does not advertise one."""

    cache_dir: Path = Path.home().joinpath(".cache", "cms_repo_sync")
    """Directory for the local backend's remembered directory handles."""

    skip_ci: bool = False
    """Prefix commit messages with `[skip ci]` to disable automatic deployments."""

    user_name: str = ""
    """Name of the signed-in user, used as commit author and committer."""

    user_email: str = ""
    """Email of the signed-in user, used as commit author and committer."""

    user_login: str = ""
    """Login of the signed-in user. GitHub uses it for the collaborator check."""

    user_id: int | None = None
    """Numeric id of the signed-in user. GitLab uses it for the membership check."""

    @model_validator(mode="after")
    def validate_backend_configuration(self) -> CmsRepoSyncSettings:
        """Validate settings for the configured backend and warn about inconsistencies."""
        if self.repo and "/" not in self.repo:
            raise ValueError(f"repo must be in 'owner/name' format, got {self.repo!r}")

        if self.backend_service == BACKEND_SERVICE.local:
            if self.token:
                logger.warning("A token is configured but the local backend never sends requests. Ignoring it.")
            return self

        if not self.token:
            logger.warning(
                f"No token configured for {self.backend_service}. "
                "Requests will fail for private repositories. Set CMS_REPO_SYNC_TOKEN."
            )

        if self.graphql_api_root and self.backend_service != BACKEND_SERVICE.github:
            logger.warning(
                f"graphql_api_root is only used by the GitHub backend, not {self.backend_service}. Ignoring it."
            )
            self.graphql_api_root = None

        if self.default_page_size < 1:
            logger.warning(f"default_page_size is {self.default_page_size}, but must be >= 1. Setting to 1.")
            self.default_page_size = 1

        return self


cms_repo_sync_settings: CmsRepoSyncSettings = CmsRepoSyncSettings()
"""Global instance of the synchronization settings."""

if cms_repo_sync_settings.repo:
    logger.debug(f"Configured repository: {cms_repo_sync_settings.backend_service}:{cms_repo_sync_settings.repo}")


from .exceptions import (  # noqa: E402
    NotFoundError,
    PickerAbortedError,
    RepositoryAccessError,
    RepositoryError,
    UnsupportedBackendError,
    UnsupportedVersionError,
)
from .records import (  # noqa: E402
    BaseFileListItem,
    CommitOptions,
    CommitResults,
    FileChange,
    LastCommit,
    RepositoryContentsEntry,
    RepositoryContentsMap,
    RepositoryContext,
    User,
)

__all__ = [
    "BACKEND_SERVICE",
    "BaseFileListItem",
    "CmsRepoSyncSettings",
    "CommitOptions",
    "CommitResults",
    "FileChange",
    "LastCommit",
    "NotFoundError",
    "PickerAbortedError",
    "RepositoryAccessError",
    "RepositoryContentsEntry",
    "RepositoryContentsMap",
    "RepositoryContext",
    "RepositoryError",
    "UnsupportedBackendError",
    "UnsupportedVersionError",
    "User",
    "cms_repo_sync_settings",
]
