"""Local repository backend.

Works on a clone of the remote repository on this machine instead of talking to a hosting
service. The user picks the clone's root directory once; it is remembered in a small JSON handle
store and re-validated on every sign-in. Commits only write to the working tree: pushing is left
to the user's own Git tooling.
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, ClassVar

import aiofiles
import ujson
from dulwich.errors import NotGitRepository
from dulwich.refs import LOCAL_BRANCH_PREFIX, SYMREF
from dulwich.repo import Repo
from loguru import logger
from typing_extensions import override

from cms_repo_sync import cms_repo_sync_settings
from cms_repo_sync.backends.base import (
    DEFAULT_BRANCH_ERROR_MESSAGE,
    ProgressCallback,
    RepositoryBackend,
    percent_done,
    report_progress,
    text_items,
)
from cms_repo_sync.codec import get_git_hash
from cms_repo_sync.exceptions import PickerAbortedError, RepositoryAccessError, RepositoryError
from cms_repo_sync.i18n import translate
from cms_repo_sync.meta_consts import BACKEND_SERVICE, COMMIT_ACTION, GIT_CONFIG_FILE_REGEX
from cms_repo_sync.records import (
    BaseFileListItem,
    CommitOptions,
    CommitResults,
    CommittedFile,
    FileChange,
    LastCommit,
    RepositoryContentsEntry,
    RepositoryContentsMap,
    RepositoryContext,
    User,
)

ROOT_DIR_HANDLE_KEY = "root_dir_handle"

DirectoryPicker = Callable[[], Awaitable[Path | str | None]]
"""Asks the user for a directory. Returning None, or raising `PickerAbortedError`, means dismissed."""

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.-]+")


class HandleStore:
    """A keyed JSON file remembering directory handles between sessions.

    One file per repository, named after its `database_name`, so switching between sites keeps
    each site's directory.
    """

    def __init__(self, database_name: str, *, cache_dir: str | Path = cms_repo_sync_settings.cache_dir) -> None:
        self.path = Path(cache_dir).joinpath(f"{_UNSAFE_FILENAME_CHARS.sub('_', database_name)}.json")

    async def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        async with aiofiles.open(self.path, encoding="utf-8") as f:
            content = await f.read()

        try:
            data = ujson.loads(content)
        except ujson.JSONDecodeError:
            logger.warning(f"Ignoring corrupt handle store {self.path}")
            return {}

        return data if isinstance(data, dict) else {}

    async def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
            await f.write(ujson.dumps(data, escape_forward_slashes=False, indent=4))

    async def get(self, key: str) -> Any:
        return (await self._load()).get(key)

    async def set(self, key: str, value: Any) -> None:
        data = await self._load()
        data[key] = value
        await self._save(data)

    async def delete(self, key: str) -> None:
        data = await self._load()
        if data.pop(key, None) is not None:
            await self._save(data)


def is_repository_root(path: Path) -> bool:
    """Whether `path` is the root of a non-bare Git repository or of a linked worktree."""
    try:
        with Repo(str(path)) as repo:
            return not repo.bare
    except NotGitRepository:
        return False


def _is_usable_directory(path: Path) -> bool:
    if not os.access(path, os.R_OK | os.W_OK):
        return False

    try:
        # The directory may have been moved or removed since it was picked
        with os.scandir(path) as entries:
            next(entries, None)
    except OSError as e:
        logger.warning(f"Cached directory {path} is no longer readable: {e}")
        return False

    return True


class LocalBackend(RepositoryBackend):
    """Backend reading and writing a local working tree."""

    service: ClassVar[BACKEND_SERVICE] = BACKEND_SERVICE.local

    def __init__(
        self,
        *,
        repository: RepositoryContext,
        user: User | None = None,
        picker: DirectoryPicker | None = None,
        cache_dir: str | Path = cms_repo_sync_settings.cache_dir,
        scan_paths: Iterable[str] = (),
    ) -> None:
        """Initialize the local backend.

        Args:
            repository: The remote repository the working tree is a clone of. Its `database_name`
                keys the handle store.
            user: The signed-in user.
            picker: Asks the user for the repository root. Without one, only a remembered
                directory can be used.
            cache_dir: Where the handle store lives.
            scan_paths: Folders `fetch_file_list` descends into, usually the entry and asset
                folders. Empty means the whole working tree.
        """
        super().__init__(repository=repository, user=user)
        self.picker = picker
        self.cache_dir = Path(cache_dir)
        self.scan_paths = scan_paths
        self.handle_store: HandleStore | None = None
        self.root_dir: Path | None = None

    @property
    def scan_paths(self) -> list[str]:
        return self._scan_paths

    @scan_paths.setter
    def scan_paths(self, paths: Iterable[str]) -> None:
        self._scan_paths = list(dict.fromkeys(path.strip().strip("/") for path in paths))

    def init(self) -> RepositoryContext:
        """Open the handle store for this repository and return the repository context."""
        database_name = self.repository.database_name
        self.handle_store = HandleStore(database_name, cache_dir=self.cache_dir) if database_name else None
        return self.repository

    async def get_root_dir_handle(self, *, force_reload: bool = False, show_picker: bool = True) -> Path | None:
        """Return the repository root, asking the user for it if needed.

        Args:
            force_reload: Ignore the remembered directory.
            show_picker: Whether the picker may be shown. If False and no usable directory is
                remembered, None is returned.

        Raises:
            PickerAbortedError: When the user dismissed the picker.
            RepositoryError: When the picked directory is not a repository root.
        """
        handle: Path | None = None

        if not force_reload and self.handle_store is not None:
            cached = await self.handle_store.get(ROOT_DIR_HANDLE_KEY)
            handle = Path(cached) if cached else None

        if handle is not None and self.handle_store is not None and not _is_usable_directory(handle):
            await self.handle_store.delete(ROOT_DIR_HANDLE_KEY)
            handle = None

        if handle is None and show_picker:
            if self.picker is None:
                raise PickerAbortedError("No directory picker is available")

            picked = await self.picker()
            if not picked:
                raise PickerAbortedError("The directory picker was dismissed")

            handle = Path(picked).expanduser().resolve()

            if not is_repository_root(handle):
                raise RepositoryError(
                    "Not a Git repository",
                    cause=translate("directory_not_repository", {"name": handle.name}),
                )

            if self.handle_store is not None:
                await self.handle_store.set(ROOT_DIR_HANDLE_KEY, str(handle))

        return handle

    async def sign_in(self, *, auto: bool = False) -> str:
        """Acquire the repository root. With `auto`, only a remembered directory is used.

        Returns:
            str: The backend name.

        Raises:
            RepositoryError: When no directory could be acquired.
        """
        handle = await self.get_root_dir_handle(show_picker=not auto)
        if handle is None:
            raise RepositoryError("Directory handle could not be acquired")

        self.root_dir = handle
        self.log.info(f"Using local repository at {handle}")
        return str(self.service)

    async def sign_out(self) -> None:
        """Forget the remembered directory."""
        if self.handle_store is not None:
            await self.handle_store.delete(ROOT_DIR_HANDLE_KEY)
        self.root_dir = None

    def _require_root(self) -> Path:
        if self.root_dir is None:
            raise RepositoryAccessError(
                "Not signed in to the local repository",
                cause=translate("repository_no_access", {"repo": self.repository.repo}),
            )
        return self.root_dir

    def resolve_path(self, path: str) -> Path:
        """Map a repository path to the file system, refusing paths outside the root."""
        root = self._require_root().resolve()
        target = root.joinpath(path.strip("/")).resolve()
        if target != root and root not in target.parents:
            raise ValueError(f"{path!r} is outside the repository root")
        return target

    def _open_repository(self) -> Repo:
        root = self._require_root()
        try:
            return Repo(str(root))
        except NotGitRepository as e:
            raise RepositoryError(
                "Not a Git repository",
                cause=translate("directory_not_repository", {"name": root.name}),
            ) from e

    @override
    async def check_repository_access(self) -> None:
        root = self._require_root()
        if not _is_usable_directory(root):
            raise RepositoryAccessError(
                "The local repository is not accessible",
                cause=translate("repository_no_access", {"repo": self.repository.repo}),
            )

    @override
    async def fetch_default_branch_name(self) -> str:
        """Return the branch checked out in the working tree, or "HEAD" when it is detached."""
        with self._open_repository() as repo:
            head = repo.refs.read_ref(b"HEAD")

        if not head:
            raise self.not_found(DEFAULT_BRANCH_ERROR_MESSAGE, "repository_empty")

        branch_prefix = SYMREF + LOCAL_BRANCH_PREFIX
        branch = head.removeprefix(branch_prefix).decode() if head.startswith(branch_prefix) else "HEAD"

        self.set_branch(branch)
        return branch

    @override
    async def fetch_last_commit(self) -> LastCommit:
        """Return the checked-out commit, or an empty hash for a repository without commits.

        The working tree is listed directly, so the hash only serves as information here.
        """
        branch = self.branch or "HEAD"
        ref = b"HEAD" if branch == "HEAD" else LOCAL_BRANCH_PREFIX + branch.encode()

        with self._open_repository() as repo:
            try:
                sha = repo.refs[ref]
                commit = repo[sha]
            except KeyError:
                self.log.debug(f"No commit found for {branch!r}")
                return LastCommit(hash="")

            message = commit.message.decode("utf-8", errors="replace").strip()

        return LastCommit(hash=sha.decode("ascii"), message=message)

    def _is_scanned(self, path: str) -> bool:
        return any(
            not scan_path or path == scan_path or path.startswith(f"{scan_path}/") for scan_path in self.scan_paths
        )

    def _leads_to_scan_path(self, path: str) -> bool:
        return any(scan_path.startswith(f"{path}/") for scan_path in self.scan_paths)

    def _collect_paths(self, root: Path) -> list[str]:
        paths: list[str] = []

        for dir_path, dir_names, file_names in os.walk(root):
            relative_dir = Path(dir_path).relative_to(root).as_posix()
            prefix = "" if relative_dir == "." else f"{relative_dir}/"

            if self.scan_paths:
                dir_names[:] = [
                    name
                    for name in dir_names
                    if self._is_scanned(prefix + name) or self._leads_to_scan_path(prefix + name)
                ]
            dir_names[:] = sorted(name for name in dir_names if not name.startswith("."))

            for name in sorted(file_names):
                if name.startswith(".") and not GIT_CONFIG_FILE_REGEX.match(name):
                    continue

                path = prefix + name
                # Root-level Git config files such as `.gitattributes` are always listed
                if not self.scan_paths or self._is_scanned(path) or (not prefix and name.startswith(".")):
                    paths.append(path)

        return paths

    async def _read_file_item(self, root: Path, path: str) -> BaseFileListItem:
        async with aiofiles.open(root.joinpath(path), "rb") as f:
            data = await f.read()
        return BaseFileListItem(path=path, sha=get_git_hash(data), size=len(data))

    @override
    async def fetch_file_list(self, last_hash: str | None = None) -> list[BaseFileListItem]:
        """List the files of the working tree under `scan_paths`. `last_hash` is ignored.

        Directories outside the scan paths are never entered. Dot-files and dot-directories are
        skipped, except for Git config files.
        """
        root = self._require_root()
        paths = await asyncio.to_thread(self._collect_paths, root)
        items = [await self._read_file_item(root, path) for path in paths]

        self.log.debug(f"Found {len(items)} files under {root}")
        return items

    @override
    async def fetch_file_contents(
        self,
        items: Sequence[BaseFileListItem],
        progress: ProgressCallback | None = None,
    ) -> RepositoryContentsMap:
        fetching = text_items(items)
        if not fetching:
            return {}

        contents: RepositoryContentsMap = {}
        report_progress(progress, 0)

        # Files are read one by one to keep memory flat on large sites
        for index, item in enumerate(fetching, start=1):
            text = ""
            if item.name != ".gitkeep":
                async with aiofiles.open(self.resolve_path(item.path), encoding="utf-8", errors="replace") as f:
                    text = await f.read()

            contents[item.path] = RepositoryContentsEntry(sha=item.sha, size=item.size, text=text)
            report_progress(progress, percent_done(index, len(fetching)))

        report_progress(progress, None)
        return contents

    @override
    async def fetch_blob(self, asset: BaseFileListItem) -> bytes:
        async with aiofiles.open(self.resolve_path(asset.path), "rb") as f:
            return await f.read()

    def _remove_empty_parents(self, path: Path) -> None:
        root = self._require_root().resolve()
        parent = path.parent
        while parent != root and root in parent.parents and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent

    async def _write(self, target: Path, data: str | bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, str):
            async with aiofiles.open(target, "w", encoding="utf-8", newline="") as f:
                await f.write(data)
        else:
            async with aiofiles.open(target, "wb") as f:
                await f.write(data)

    @override
    async def commit_changes(self, changes: Sequence[FileChange], options: CommitOptions) -> CommitResults:
        """Apply the changes to the working tree.

        The returned commit sha is a pseudo sha derived from the current time; file shas are the
        git blob hashes of the written data. Deletions are not part of `files`.
        """
        files: dict[str, CommittedFile] = {}

        for change in changes:
            target = self.resolve_path(change.path)

            if change.action == COMMIT_ACTION.move and change.previous_path:
                source = self.resolve_path(change.previous_path)
                target.parent.mkdir(parents=True, exist_ok=True)
                source.replace(target)
                self._remove_empty_parents(source)

            if change.action == COMMIT_ACTION.delete:
                target.unlink()
                self._remove_empty_parents(target)
                continue

            if change.data is not None:
                await self._write(target, change.data)
                files[change.path] = CommittedFile(sha=get_git_hash(change.data))
            elif target.is_file():
                files[change.path] = CommittedFile(sha=get_git_hash(target.read_bytes()))

        now = datetime.now(timezone.utc)
        sha = get_git_hash(now.isoformat(timespec="milliseconds").replace("+00:00", "Z"))
        self.log.info(f"Saved {len(changes)} change(s) to {self.root_dir}")
        return CommitResults(sha=sha, date=now, files=files)
