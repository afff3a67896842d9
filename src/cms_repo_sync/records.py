"""Records exchanged between the backends, the sync pipeline and the caller."""

from __future__ import annotations

from datetime import datetime
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cms_repo_sync.meta_consts import (
    BACKEND_LABELS,
    BACKEND_SERVICE,
    COMMIT_ACTION,
    COMMIT_TYPE,
    DEFAULT_API_ROOTS,
    FILE_TYPE,
)

if TYPE_CHECKING:
    from cms_repo_sync import CmsRepoSyncSettings


def get_basename(path: str) -> str:
    """Return the final segment of a repository path."""
    return PurePosixPath(path).name


class RepositoryContext(BaseModel):
    """Immutable description of the repository being edited.

    Created once at sign-in; a copy is produced with `with_branch()` when the default branch is
    resolved later.
    """

    model_config = ConfigDict(frozen=True)

    service: BACKEND_SERVICE
    """The hosting service."""

    owner: str
    """Owner (user, organization or GitLab namespace) of the repository."""

    repo: str
    """Repository name."""

    branch: str | None = None
    """Branch name. None until resolved from the repository's default branch."""

    base_url: str = ""
    """REST API root used for requests."""

    database_name: str | None = None
    """Key for local persistent stores, e.g. `github:owner/repo`."""

    is_self_hosted: bool = False
    """Whether the repository lives on an enterprise or self-hosted instance."""

    @property
    def label(self) -> str:
        """Human-readable service label."""
        return BACKEND_LABELS[self.service]

    @property
    def repo_path(self) -> str:
        """The repository in 'owner/name' format."""
        return f"{self.owner}/{self.repo}"

    def with_branch(self, branch: str) -> RepositoryContext:
        """Return a copy of this context pointing at `branch`."""
        return self.model_copy(update={"branch": branch})

    @classmethod
    def from_settings(cls, settings: CmsRepoSyncSettings) -> RepositoryContext:
        """Build a context from the configured settings."""
        owner, _, repo = settings.repo.rpartition("/")
        default_root = DEFAULT_API_ROOTS.get(settings.backend_service, "")
        base_url = (settings.api_root or default_root).rstrip("/")

        return cls(
            service=settings.backend_service,
            owner=owner,
            repo=repo,
            branch=settings.branch,
            base_url=base_url,
            database_name=f"{settings.backend_service}:{settings.repo}" if settings.repo else None,
            is_self_hosted=bool(settings.api_root) and base_url != default_root,
        )


class BaseFileListItem(BaseModel):
    """One tracked file in the repository."""

    path: str
    sha: str = ""
    """Content-addressed blob identity."""
    size: int = 0
    name: str = ""
    type: FILE_TYPE | None = None
    """Assigned by the file classifier; None on raw listings."""
    folder: str | None = None
    """The configured entry/asset folder the file was matched against."""
    text: str | None = None
    meta: dict[str, Any] | None = None

    @model_validator(mode="after")
    def fill_name(self) -> BaseFileListItem:
        if not self.name:
            self.name = get_basename(self.path)
        return self


class FileChange(BaseModel):
    """One item of a change-set submitted to `commit_changes`."""

    action: COMMIT_ACTION
    path: str
    previous_path: str | None = None
    """Original path of a file being moved. Required for `move`."""
    previous_sha: str | None = None
    """Blob sha the change was based on, for conflict detection."""
    slug: str | None = None
    data: str | bytes | None = None

    @model_validator(mode="after")
    def check_move_has_previous_path(self) -> FileChange:
        if self.action == COMMIT_ACTION.move and not self.previous_path:
            raise ValueError(f"A move of {self.path!r} requires previous_path")
        return self


class CommitOptions(BaseModel):
    """Options passed to the commit message templater."""

    commit_type: COMMIT_TYPE = COMMIT_TYPE.update
    collection_label: str | None = None
    skip_ci: bool | None = None
    """Overrides the configured `skip_ci` setting for this commit."""


class CommittedFile(BaseModel):
    sha: str = ""


class CommitResults(BaseModel):
    """Result of one commit: the commit sha and the new blob sha per requested path."""

    sha: str
    date: datetime | None = None
    files: dict[str, CommittedFile] = Field(default_factory=dict)


class RepositoryContentsEntry(BaseModel):
    """Fetched content of one file."""

    sha: str = ""
    size: int = 0
    text: str = ""
    meta: dict[str, Any] = Field(default_factory=dict)


RepositoryContentsMap = dict[str, RepositoryContentsEntry]


class LastCommit(BaseModel):
    """Tip commit of a branch."""

    hash: str
    message: str = ""


class User(BaseModel):
    """The signed-in user, used as commit author and for access checks."""

    name: str = ""
    email: str = ""
    login: str | None = None
    id: int | None = None
    backend_name: str | None = None

    @classmethod
    def from_settings(cls, settings: CmsRepoSyncSettings) -> User:
        return cls(
            name=settings.user_name,
            email=settings.user_email,
            login=settings.user_login or None,
            id=settings.user_id,
            backend_name=str(settings.backend_service),
        )
