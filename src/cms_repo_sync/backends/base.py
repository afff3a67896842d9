"""Abstract base class for repository backends."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING, Any, ClassVar

from loguru import logger

from cms_repo_sync.backends.api_client import APIClient
from cms_repo_sync.commit_messages import create_commit_message
from cms_repo_sync.exceptions import NotFoundError
from cms_repo_sync.i18n import translate
from cms_repo_sync.meta_consts import BACKEND_SERVICE, FILE_TYPE
from cms_repo_sync.records import (
    BaseFileListItem,
    CommitOptions,
    CommitResults,
    FileChange,
    LastCommit,
    RepositoryContentsMap,
    RepositoryContext,
    User,
)

if TYPE_CHECKING:
    from cms_repo_sync.sync.fetch import FileClassifier, SyncResult, SyncSinks

ProgressCallback = Callable[[int | None], None]
"""Receives 0..100 while contents are fetched, then None once the fetch is complete."""

LAST_COMMIT_ERROR_MESSAGE = "Failed to retrieve the last commit hash."
DEFAULT_BRANCH_ERROR_MESSAGE = "Failed to retrieve the default branch name."


def report_progress(progress: ProgressCallback | None, value: int | None) -> None:
    """Send a progress value to the callback, if there is one."""
    if progress is not None:
        progress(value)


def percent_done(processed: int, total: int) -> int:
    """Return `ceil(processed / total * 100)`."""
    return math.ceil(processed / total * 100)


def chunked(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    """Yield consecutive slices of at most `size` items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


def blobs_to_file_list(entries: Iterable[dict[str, Any]]) -> list[BaseFileListItem]:
    """Keep blob entries of a git tree listing and project them to file list items."""
    return [
        BaseFileListItem(path=entry["path"], sha=entry.get("sha") or "", size=entry.get("size") or 0)
        for entry in entries
        if entry.get("type") == "blob"
    ]


def text_items(items: Iterable[BaseFileListItem]) -> list[BaseFileListItem]:
    """Drop asset items; binary assets are only ever read through `fetch_blob`."""
    return [item for item in items if item.type != FILE_TYPE.asset]


class RepositoryBackend(ABC):
    """Provider-agnostic interface to a content repository.

    Every hosting service (and the local filesystem) implements the same operations, and one
    instance is chosen at start-up and injected wherever the engine needs it.

    Implementation Requirements:
        - Network requests are awaited one after another; pagination and chunking never pipeline.
        - Request errors propagate unchanged, except where an operation documents a
          `RepositoryError` with a localized cause.
        - `commit_changes` issues exactly one commit request.
    """

    service: ClassVar[BACKEND_SERVICE]

    def __init__(self, *, repository: RepositoryContext, user: User | None = None) -> None:
        self._repository = repository
        self.user = user or User()
        self.log = logger.bind(repository=f"{repository.service}:{repository.repo_path}")

    @property
    def repository(self) -> RepositoryContext:
        """The repository this backend operates on."""
        return self._repository

    def set_branch(self, branch: str) -> None:
        """Point the backend at `branch`, typically after resolving the default branch."""
        self._repository = self._repository.with_branch(branch)

    @property
    def branch(self) -> str:
        """The current branch name, or an empty string while it is unresolved."""
        return self._repository.branch or ""

    def not_found(self, message: str, key: str, **values: Any) -> NotFoundError:
        """Build a `NotFoundError` whose cause is the localized message for `key`."""
        values.setdefault("repo", self._repository.repo)
        values.setdefault("branch", self.branch)
        return NotFoundError(message, cause=translate(key, values))

    async def check_instance_version(self) -> None:
        """Verify the remote service version is supported. A no-op unless overridden."""

    @abstractmethod
    async def check_repository_access(self) -> None:
        """Verify the signed-in user can read the repository.

        Raises:
            RepositoryAccessError: When the user has no access.
        """

    @abstractmethod
    async def fetch_default_branch_name(self) -> str:
        """Fetch the repository's default branch name and point the backend at it.

        Raises:
            NotFoundError: When the repository is missing or has no branches.
        """

    @abstractmethod
    async def fetch_last_commit(self) -> LastCommit:
        """Fetch the tip commit of the current branch.

        Raises:
            NotFoundError: `Failed to retrieve the last commit hash.` with a localized cause.
        """

    @abstractmethod
    async def fetch_file_list(self, last_hash: str | None = None) -> list[BaseFileListItem]:
        """Fetch the complete list of blobs at `last_hash` (default: the branch tip).

        Returns:
            list[BaseFileListItem]: Blob entries only, with `name` set to the final path segment.
        """

    @abstractmethod
    async def fetch_file_contents(
        self,
        items: Sequence[BaseFileListItem],
        progress: ProgressCallback | None = None,
    ) -> RepositoryContentsMap:
        """Fetch text contents and metadata for the non-asset `items`.

        Returns:
            RepositoryContentsMap: Keyed by exactly the non-asset paths, in input order.
        """

    @abstractmethod
    async def fetch_blob(self, asset: BaseFileListItem) -> bytes:
        """Fetch the raw bytes of one asset."""

    @abstractmethod
    async def commit_changes(self, changes: Sequence[FileChange], options: CommitOptions) -> CommitResults:
        """Commit a change-set atomically and return the new commit and blob SHAs."""

    async def fetch_files(
        self,
        *,
        classifier: FileClassifier | None = None,
        sinks: SyncSinks | None = None,
        progress: ProgressCallback | None = None,
    ) -> SyncResult:
        """Run a full sync with this backend. See `SyncOrchestrator.fetch_files()`."""
        from cms_repo_sync.sync.orchestrator import SyncOrchestrator

        return await SyncOrchestrator(self, classifier=classifier, sinks=sinks).fetch_files(progress=progress)


class GitRepositoryBackend(RepositoryBackend):
    """Base for backends that talk to a hosting service through an `APIClient`."""

    def __init__(self, *, repository: RepositoryContext, api_client: APIClient, user: User | None = None) -> None:
        super().__init__(repository=repository, user=user)
        self.api = api_client

    def create_commit_message(self, changes: Sequence[FileChange], options: CommitOptions) -> str:
        return create_commit_message(changes, options, user=self.user)
