"""The fetch-and-parse pipeline shared by every backend."""

from __future__ import annotations

import inspect
import re
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger

from cms_repo_sync.backends.base import ProgressCallback
from cms_repo_sync.meta_consts import FILE_TYPE, GIT_CONFIG_FILE_REGEX, SKIP_CI_PREFIX
from cms_repo_sync.records import (
    BaseFileListItem,
    LastCommit,
    RepositoryContentsEntry,
    RepositoryContentsMap,
    RepositoryContext,
)

FileSink = Callable[[list[BaseFileListItem]], Any]

_INDEX_FILE_PATTERN = re.compile(r"^_index(?:\.[\w-]+)+$")


class FileClassifier(Protocol):
    """Maps repository paths to the configured entry and asset folders."""

    def get_entry_folder(self, path: str) -> str | None:
        """Return the entry folder `path` belongs to, or None."""
        ...

    def get_asset_folder(self, path: str) -> str | None:
        """Return the asset folder `path` belongs to, or None."""
        ...


def _normalize_folder(folder: str) -> str:
    return folder.strip().strip("/")


def _match_folder(path: str, folders: Iterable[str]) -> str | None:
    matches = [folder for folder in folders if not folder or path.startswith(f"{folder}/")]
    return max(matches, key=len) if matches else None


class FolderClassifier:
    """A `FileClassifier` matching plain folder prefixes, including subfolders.

    An empty folder name matches every path. When several folders match, the deepest one wins.
    """

    def __init__(self, *, entry_folders: Iterable[str] = (), asset_folders: Iterable[str] = ()) -> None:
        self.entry_folders = [_normalize_folder(folder) for folder in entry_folders]
        self.asset_folders = [_normalize_folder(folder) for folder in asset_folders]

    def get_entry_folder(self, path: str) -> str | None:
        return _match_folder(path, self.entry_folders)

    def get_asset_folder(self, path: str) -> str | None:
        return _match_folder(path, self.asset_folders)

    @property
    def scan_paths(self) -> list[str]:
        """Every configured folder once, entry folders first."""
        return list(dict.fromkeys([*self.entry_folders, *self.asset_folders]))


def is_index_file(path: str) -> bool:
    """Whether `path` is a Hugo branch bundle index such as `_index.md`."""
    return bool(_INDEX_FILE_PATTERN.match(path.rsplit("/", 1)[-1]))


@dataclass
class FileList:
    """A raw file listing split by how the CMS handles each file."""

    entry_files: list[BaseFileListItem] = field(default_factory=list)
    asset_files: list[BaseFileListItem] = field(default_factory=list)
    config_files: list[BaseFileListItem] = field(default_factory=list)

    @property
    def all_files(self) -> list[BaseFileListItem]:
        return [*self.entry_files, *self.asset_files, *self.config_files]

    @property
    def count(self) -> int:
        return len(self.entry_files) + len(self.asset_files) + len(self.config_files)


def create_file_list(files: Iterable[BaseFileListItem], classifier: FileClassifier | None = None) -> FileList:
    """Classify a raw listing into entry, asset and Git config files.

    Dot-files are skipped, except for Git config files such as `.gitattributes` (needed for LFS
    tracking) and `.gitkeep` (needed for empty asset folders). A file that is both an entry and an
    asset is kept as an entry only, and Hugo index files are never assets. Without a classifier,
    every other file is an entry.
    """
    file_list = FileList()

    for file in files:
        if file.name.startswith("."):
            if GIT_CONFIG_FILE_REGEX.match(file.name):
                file_list.config_files.append(file.model_copy(update={"type": FILE_TYPE.config}))
            continue

        if classifier is None:
            file_list.entry_files.append(file.model_copy(update={"type": FILE_TYPE.entry}))
            continue

        entry_folder = classifier.get_entry_folder(file.path)
        if entry_folder is not None:
            file_list.entry_files.append(file.model_copy(update={"type": FILE_TYPE.entry, "folder": entry_folder}))
            continue

        asset_folder = classifier.get_asset_folder(file.path)
        if asset_folder is not None and not is_index_file(file.path):
            file_list.asset_files.append(file.model_copy(update={"type": FILE_TYPE.asset, "folder": asset_folder}))

    return file_list


def parse_file(file: BaseFileListItem, fetched: RepositoryContentsMap) -> BaseFileListItem:
    """Merge fetched size, text and meta into `file`, keeping values the listing already had."""
    entry = fetched.get(file.path)
    if entry is None:
        return file

    return file.model_copy(
        update={
            "size": file.size or entry.size,
            "text": file.text if file.text is not None else entry.text,
            "meta": file.meta if file.meta is not None else entry.meta,
        }
    )


@dataclass
class SyncSinks:
    """Receivers for the parsed files. Each may be a plain function or a coroutine function."""

    on_entries: FileSink | None = None
    on_assets: FileSink | None = None
    on_config_files: FileSink | None = None


@dataclass
class SyncResult:
    """Summary of a completed sync."""

    branch: str
    last_commit: LastCommit
    is_last_commit_published: bool
    entry_files: list[BaseFileListItem] = field(default_factory=list)
    asset_files: list[BaseFileListItem] = field(default_factory=list)
    config_files: list[BaseFileListItem] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.entry_files) + len(self.asset_files) + len(self.config_files)


async def _deliver(sink: FileSink | None, files: list[BaseFileListItem]) -> None:
    if sink is None:
        return
    result = sink(files)
    if inspect.isawaitable(result):
        await result


async def fetch_and_parse_files(
    repository: RepositoryContext,
    fetch_default_branch_name: Callable[[], Awaitable[str]],
    fetch_last_commit: Callable[[], Awaitable[LastCommit]],
    fetch_file_list: Callable[[str | None], Awaitable[list[BaseFileListItem]]],
    fetch_file_contents: Callable[
        [Sequence[BaseFileListItem], ProgressCallback | None],
        Awaitable[dict[str, RepositoryContentsEntry]],
    ],
    *,
    classifier: FileClassifier | None = None,
    sinks: SyncSinks | None = None,
    progress: ProgressCallback | None = None,
) -> SyncResult:
    """Fetch the file list at the branch tip, download text contents and deliver the files.

    Args:
        repository: The repository being synced. Its default branch is resolved if unset.
        fetch_default_branch_name: Resolves the default branch.
        fetch_last_commit: Returns the tip commit; must be called after the branch is known.
        fetch_file_list: Lists every blob at a commit.
        fetch_file_contents: Fetches text contents and metadata for a list of files.
        classifier: Decides which files are entries and assets.
        sinks: Receivers for the entry, asset and config file lists.
        progress: Receives content download progress.

    Returns:
        SyncResult: The branch, tip commit and classified files.
    """
    sinks = sinks or SyncSinks()
    branch = repository.branch or await fetch_default_branch_name()

    last_commit = await fetch_last_commit()
    # TODO: Check the deployment workflow run of the commit instead of its message
    is_last_commit_published = not last_commit.message.startswith(SKIP_CI_PREFIX)

    file_list = create_file_list(await fetch_file_list(last_commit.hash or None), classifier)
    logger.debug(
        f"{file_list.count} managed files on {branch!r}: {len(file_list.entry_files)} entries, "
        f"{len(file_list.asset_files)} assets, {len(file_list.config_files)} config files"
    )

    result = SyncResult(branch=branch, last_commit=last_commit, is_last_commit_published=is_last_commit_published)

    if not file_list.count:
        await _deliver(sinks.on_entries, [])
        await _deliver(sinks.on_assets, [])
        await _deliver(sinks.on_config_files, [])
        return result

    fetched = await fetch_file_contents(file_list.all_files, progress)

    result.entry_files = [parse_file(file, fetched) for file in file_list.entry_files]
    result.asset_files = [parse_file(file, fetched) for file in file_list.asset_files]
    result.config_files = [parse_file(file, fetched) for file in file_list.config_files]

    await _deliver(sinks.on_entries, result.entry_files)
    await _deliver(sinks.on_assets, result.asset_files)
    await _deliver(sinks.on_config_files, result.config_files)

    return result
