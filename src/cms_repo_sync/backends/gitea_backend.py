"""Gitea and Forgejo backend.

Both services share most of their REST API but differ in the bulk content endpoint: Gitea 1.24+
serves `POST /repos/{owner}/{repo}/file-contents` keyed by path, while Forgejo 12+ serves
`GET /repos/{owner}/{repo}/git/blobs?shas=` keyed by blob sha. `check_instance_version()` decides
which one is used, so it must run before `fetch_file_contents()`.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, ClassVar
from urllib.parse import quote

import httpx
from typing_extensions import override

from cms_repo_sync import cms_repo_sync_settings
from cms_repo_sync.backends.api_client import APIClient
from cms_repo_sync.backends.base import (
    DEFAULT_BRANCH_ERROR_MESSAGE,
    LAST_COMMIT_ERROR_MESSAGE,
    GitRepositoryBackend,
    ProgressCallback,
    blobs_to_file_list,
    chunked,
    percent_done,
    report_progress,
    text_items,
)
from cms_repo_sync.codec import decode_base64, encode_base64
from cms_repo_sync.exceptions import NotFoundError, RepositoryAccessError, UnsupportedVersionError
from cms_repo_sync.i18n import translate
from cms_repo_sync.meta_consts import (
    BACKEND_SERVICE,
    COMMIT_ACTION,
    MIN_FORGEJO_VERSION,
    MIN_GITEA_VERSION,
)
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

_VERSION_PATTERN = re.compile(r"^v?(\d+)\.(\d+)")


def parse_version(version: str) -> tuple[int, int] | None:
    """Return the `(major, minor)` of a version string such as `13.0.3+gitea-1.22.0`."""
    match = _VERSION_PATTERN.match(version.strip())
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def is_forgejo_version(version: str) -> bool:
    """Whether a `/version` string belongs to Forgejo.

    Forgejo may report `13.0.3+gitea-1.22.0`, but some installs drop the fork suffix. Forgejo
    releases are numbered above 10 while Gitea is still 1.x, so the major version decides then.
    """
    if "+gitea-" in version:
        return True
    parsed = parse_version(version)
    return parsed is not None and parsed[0] > 10


def _commit_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GiteaBackend(GitRepositoryBackend):
    """Backend for Gitea 1.24+ and Forgejo 12+ instances."""

    service: ClassVar[BACKEND_SERVICE] = BACKEND_SERVICE.gitea

    def __init__(
        self,
        *,
        repository: RepositoryContext,
        api_client: APIClient,
        user: User | None = None,
        default_page_size: int = cms_repo_sync_settings.default_page_size,
    ) -> None:
        """Initialize the Gitea/Forgejo backend.

        Args:
            repository: The repository to operate on.
            api_client: Client authenticated against the instance's `/api/v1` root.
            user: The signed-in user, used as commit author.
            default_page_size: Bulk content page size when `/settings/api` has no `default_paging_num`.
        """
        super().__init__(repository=repository, api_client=api_client, user=user)
        self.default_page_size = default_page_size
        self.is_forgejo = False
        self._repository_info: dict[str, Any] | None = None

    @property
    def instance_name(self) -> str:
        return "Forgejo" if self.is_forgejo else "Gitea"

    async def get_repository_info(self) -> dict[str, Any]:
        """Return `GET /repos/{owner}/{repo}`, requested once per backend."""
        if self._repository_info is None:
            self._repository_info = await self.api.request(f"/repos/{self.repository.repo_path}")
        return self._repository_info

    @override
    async def check_instance_version(self) -> None:
        """Detect Gitea or Forgejo and check the instance is recent enough.

        Raises:
            UnsupportedVersionError: When the version is below the minimum or cannot be parsed.
        """
        result: dict[str, Any] = await self.api.request("/version")
        version = str(result.get("version") or "")

        self.is_forgejo = is_forgejo_version(version)
        minimum = MIN_FORGEJO_VERSION if self.is_forgejo else MIN_GITEA_VERSION
        parsed = parse_version(version)

        self.log.debug(f"{self.instance_name} version {version!r}")

        if parsed is None or parsed < minimum:
            self.log.error(f"Unsupported {self.instance_name} version {version!r}")
            raise UnsupportedVersionError(
                f"Unsupported {self.instance_name} version",
                cause=translate(
                    "backend_unsupported_version",
                    {"name": self.instance_name, "version": ".".join(str(part) for part in minimum)},
                ),
            )

    @override
    async def check_repository_access(self) -> None:
        repo = self.repository.repo

        try:
            info = await self.get_repository_info()
        except httpx.HTTPError as e:
            self.log.error(f"Failed to check repository access: {e}")
            raise NotFoundError(
                "Failed to check repository access",
                cause=translate("repository_not_found", {"repo": repo}),
            )

        if not (info.get("permissions") or {}).get("pull"):
            raise RepositoryAccessError(
                "Not a collaborator of the repository",
                cause=translate("repository_no_access", {"repo": repo}),
            )

    @override
    async def fetch_default_branch_name(self) -> str:
        try:
            info = await self.get_repository_info()
        except httpx.HTTPError:
            raise self.not_found(DEFAULT_BRANCH_ERROR_MESSAGE, "repository_not_found")

        branch = info.get("default_branch")
        if not branch:
            raise self.not_found(DEFAULT_BRANCH_ERROR_MESSAGE, "repository_empty")

        self.set_branch(branch)
        return branch

    @override
    async def fetch_last_commit(self) -> LastCommit:
        try:
            result = await self.api.request(f"/repos/{self.repository.repo_path}/branches/{self.branch}")
            commit = result["commit"]
            return LastCommit(hash=commit["id"], message=commit.get("message") or "")
        except (httpx.HTTPError, KeyError, TypeError) as e:
            self.log.error(f"Failed to fetch the last commit of {self.branch!r}: {e!r}")
            raise self.not_found(LAST_COMMIT_ERROR_MESSAGE, "branch_not_found")

    @override
    async def fetch_file_list(self, last_hash: str | None = None) -> list[BaseFileListItem]:
        request_path = f"/repos/{self.repository.repo_path}/git/trees/{last_hash or self.branch}?recursive=1"
        entries: list[dict[str, Any]] = []
        page = 1

        while True:
            result = await self.api.request(f"{request_path}&page={page}")
            tree = result.get("tree")
            self.log.debug(f"Tree page {page}: {len(tree or [])} entries, truncated={result.get('truncated')}")

            if tree:
                entries.extend(tree)

            if tree and result.get("truncated"):
                page += 1
            else:
                break

        return blobs_to_file_list(entries)

    @override
    async def fetch_file_contents(
        self,
        items: Sequence[BaseFileListItem],
        progress: ProgressCallback | None = None,
    ) -> RepositoryContentsMap:
        fetching = text_items(items)
        if self.is_forgejo:
            ids = [item.sha for item in fetching]
        else:
            ids = [item.path for item in fetching]

        if not ids:
            return {}

        report_progress(progress, 0)

        api_settings: dict[str, Any] = await self.api.request("/settings/api")
        page_size = max(1, int(api_settings.get("default_paging_num") or self.default_page_size))

        repo_path = self.repository.repo_path
        results: list[dict[str, Any] | None] = []
        processed = 0

        for chunk in chunked(ids, page_size):
            if self.is_forgejo:
                response = await self.api.request(f"/repos/{repo_path}/git/blobs?shas={','.join(chunk)}")
            else:
                response = await self.api.request(
                    f"/repos/{repo_path}/file-contents?ref={self.branch}",
                    method="POST",
                    body={"files": list(chunk)},
                )

            results.extend(response or [])
            processed += len(chunk)
            self.log.debug(f"Fetched {processed}/{len(ids)} file contents")
            report_progress(progress, percent_done(processed, len(ids)))

        report_progress(progress, None)

        contents: RepositoryContentsMap = {}
        for index, item in enumerate(fetching):
            file_data = results[index] if index < len(results) else None
            content = (file_data or {}).get("content")
            encoding = (file_data or {}).get("encoding")
            contents[item.path] = RepositoryContentsEntry(
                sha=item.sha,
                size=item.size or 0,
                text=decode_base64(content) if content and encoding == "base64" else "",
            )
        return contents

    @override
    async def fetch_blob(self, asset: BaseFileListItem) -> bytes:
        path = "/".join(quote(part, safe="") for part in asset.path.split("/"))
        return await self.api.request(
            f"/repos/{self.repository.repo_path}/media/{self.branch}/{path}",
            response_type="blob",
        )

    @override
    async def commit_changes(self, changes: Sequence[FileChange], options: CommitOptions) -> CommitResults:
        date = _commit_timestamp()
        author = {"name": self.user.name, "email": self.user.email}
        files = [
            {
                "operation": str(COMMIT_ACTION.update if change.action == COMMIT_ACTION.move else change.action),
                "path": change.path,
                "content": encode_base64(change.data or ""),
                "from_path": change.previous_path,
                "sha": change.previous_sha,
            }
            for change in changes
        ]

        result = await self.api.request(
            f"/repos/{self.repository.repo_path}/contents",
            method="POST",
            body={
                "branch": self.branch,
                "author": author,
                "committer": author,
                "dates": {"author": date, "committer": date},
                "message": self.create_commit_message(changes, options),
                "files": files,
            },
        )

        commit = result.get("commit") or {}
        saved_files: list[dict[str, Any] | None] = result.get("files") or []

        if len(saved_files) != len(files):
            self.log.debug(f"Commit returned {len(saved_files)} file entries for {len(files)} changes")

        # Paths missing from the response, such as deletions, still get an entry
        committed: dict[str, CommittedFile] = {}
        for index, request_file in enumerate(files):
            saved = saved_files[index] if index < len(saved_files) else None
            committed[request_file["path"]] = CommittedFile(sha=(saved or {}).get("sha") or "")

        self.log.info(f"Committed {len(files)} file(s) as {commit.get('sha')}")
        return CommitResults(sha=commit.get("sha") or "", date=_parse_timestamp(commit.get("created")), files=committed)
