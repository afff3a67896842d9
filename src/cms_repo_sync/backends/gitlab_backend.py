"""GitLab backend (gitlab.com and self-managed instances)."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, ClassVar
from urllib.parse import quote

import httpx
from typing_extensions import override

from cms_repo_sync.backends.base import (
    DEFAULT_BRANCH_ERROR_MESSAGE,
    LAST_COMMIT_ERROR_MESSAGE,
    GitRepositoryBackend,
    ProgressCallback,
    chunked,
    percent_done,
    report_progress,
    text_items,
)
from cms_repo_sync.codec import encode_base64, get_git_hash
from cms_repo_sync.exceptions import RepositoryAccessError
from cms_repo_sync.i18n import translate
from cms_repo_sync.meta_consts import (
    BACKEND_SERVICE,
    COMMIT_ACTION,
    GITLAB_BLOBS_CHUNK_SIZE,
    GITLAB_SELF_HOSTED_BLOBS_CHUNK_SIZE,
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
)

FETCH_FILE_LIST_QUERY = """
query($fullPath: ID!, $branch: String!, $cursor: String!) {
  project(fullPath: $fullPath) {
    repository {
      tree(ref: $branch, recursive: true) {
        blobs(after: $cursor) {
          nodes {
            type
            path
            sha
          }
          pageInfo {
            endCursor
            hasNextPage
          }
        }
      }
    }
  }
}
"""

# Query complexity is 15 + 2 per node, which keeps 100 paths under GitLab's limit of 250
FETCH_BLOBS_QUERY = """
query($fullPath: ID!, $branch: String!, $paths: [String!]!) {
  project(fullPath: $fullPath) {
    repository {
      blobs(ref: $branch, paths: $paths) {
        nodes {
          size
          rawTextBlob
        }
      }
    }
  }
}
"""

FETCH_LAST_COMMIT_QUERY = """
query($fullPath: ID!, $branch: String!) {
  project(fullPath: $fullPath) {
    repository {
      tree(ref: $branch) {
        lastCommit {
          sha
          message
        }
      }
    }
  }
}
"""

FETCH_DEFAULT_BRANCH_NAME_QUERY = """
query($fullPath: ID!) {
  project(fullPath: $fullPath) {
    repository {
      rootRef
    }
  }
}
"""


class GitLabBackend(GitRepositoryBackend):
    """Backend for GitLab projects, addressed by their full path (`group/subgroup/project`)."""

    service: ClassVar[BACKEND_SERVICE] = BACKEND_SERVICE.gitlab

    @property
    def project_id(self) -> str:
        """The URL-encoded full path, accepted by the REST API in place of the numeric id."""
        return quote(self.repository.repo_path, safe="")

    @property
    def blobs_chunk_size(self) -> int:
        # Self-managed instances tend to run on smaller hardware and time out on large batches
        return GITLAB_SELF_HOSTED_BLOBS_CHUNK_SIZE if self.repository.is_self_hosted else GITLAB_BLOBS_CHUNK_SIZE

    async def _graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.api.graphql(
            query,
            {"fullPath": self.repository.repo_path, "branch": self.branch, **(variables or {})},
        )

    @override
    async def check_repository_access(self) -> None:
        repo = self.repository.repo

        if self.user.id is None:
            raise RepositoryAccessError(
                "Not a collaborator of the repository",
                cause=translate("repository_no_access", {"repo": repo}),
            )

        response: httpx.Response = await self.api.request(
            f"/projects/{self.project_id}/members/all/{self.user.id}",
            response_type="raw",
        )

        if not response.is_success:
            self.log.warning(f"User {self.user.id} is not a project member ({response.status_code})")
            raise RepositoryAccessError(
                "Not a collaborator of the repository",
                cause=translate("repository_no_access", {"repo": repo}),
            )

    @override
    async def fetch_default_branch_name(self) -> str:
        result = await self._graphql(FETCH_DEFAULT_BRANCH_NAME_QUERY)
        project = result.get("project")

        if not project:
            raise self.not_found(DEFAULT_BRANCH_ERROR_MESSAGE, "repository_not_found")

        branch = (project.get("repository") or {}).get("rootRef")
        if not branch:
            raise self.not_found(DEFAULT_BRANCH_ERROR_MESSAGE, "repository_empty")

        self.set_branch(branch)
        return branch

    @override
    async def fetch_last_commit(self) -> LastCommit:
        result = await self._graphql(FETCH_LAST_COMMIT_QUERY)
        project = result.get("project")

        if not project:
            raise self.not_found(LAST_COMMIT_ERROR_MESSAGE, "repository_not_found")

        last_commit = ((project.get("repository") or {}).get("tree") or {}).get("lastCommit")
        if not last_commit:
            raise self.not_found(LAST_COMMIT_ERROR_MESSAGE, "branch_not_found")

        return LastCommit(hash=last_commit["sha"], message=last_commit.get("message") or "")

    @override
    async def fetch_file_list(self, last_hash: str | None = None) -> list[BaseFileListItem]:
        """Follow the blob cursor until `hasNextPage` is false.

        The tree is read at `last_hash` when given. Sizes are filled in by `fetch_file_contents()`
        because the tree query does not expose them.
        """
        nodes: list[dict[str, Any]] = []
        cursor = ""
        page = 1

        while True:
            result = await self._graphql(
                FETCH_FILE_LIST_QUERY,
                {"cursor": cursor, "branch": last_hash or self.branch},
            )
            blobs = result["project"]["repository"]["tree"]["blobs"]
            nodes.extend(blobs.get("nodes") or [])

            page_info = blobs.get("pageInfo") or {}
            self.log.debug(f"Tree page {page}: {len(nodes)} entries so far")

            if not page_info.get("hasNextPage"):
                break

            cursor = page_info.get("endCursor") or ""
            page += 1

        return [BaseFileListItem(path=node["path"], sha=node["sha"], size=0) for node in nodes if node["type"] == "blob"]

    @override
    async def fetch_file_contents(
        self,
        items: Sequence[BaseFileListItem],
        progress: ProgressCallback | None = None,
    ) -> RepositoryContentsMap:
        fetching = text_items(items)
        if not fetching:
            return {}

        paths = [item.path for item in fetching]
        nodes: list[dict[str, Any] | None] = []
        processed = 0

        report_progress(progress, 0)

        for chunk in chunked(paths, self.blobs_chunk_size):
            result = await self._graphql(FETCH_BLOBS_QUERY, {"paths": list(chunk)})
            nodes.extend(result["project"]["repository"]["blobs"]["nodes"])
            processed += len(chunk)
            self.log.debug(f"Fetched {processed}/{len(paths)} blobs")
            report_progress(progress, percent_done(processed, len(paths)))

        report_progress(progress, None)

        contents: RepositoryContentsMap = {}
        for index, item in enumerate(fetching):
            node = (nodes[index] if index < len(nodes) else None) or {}
            contents[item.path] = RepositoryContentsEntry(
                sha=item.sha,
                size=int(node.get("size") or 0),
                text=node.get("rawTextBlob") or "",
            )
        return contents

    @override
    async def fetch_blob(self, asset: BaseFileListItem) -> bytes:
        # `lfs=true` returns the real content of files tracked by Git LFS
        return await self.api.request(
            f"/projects/{self.project_id}/repository/files/{quote(asset.path, safe='')}/raw"
            f"?lfs=true&ref={quote(self.branch, safe='')}",
            response_type="blob",
        )

    @override
    async def commit_changes(self, changes: Sequence[FileChange], options: CommitOptions) -> CommitResults:
        actions: list[dict[str, Any]] = []

        for change in changes:
            data = change.data or ""
            action: dict[str, Any] = {
                "action": str(change.action),
                "file_path": change.path,
                "content": data if isinstance(data, str) else encode_base64(data),
                "encoding": "text" if isinstance(data, str) else "base64",
            }
            if change.previous_path:
                action["previous_path"] = change.previous_path
            actions.append(action)

        result = await self.api.request(
            f"/projects/{self.project_id}/repository/commits",
            method="POST",
            body={
                "branch": self.branch,
                "commit_message": self.create_commit_message(changes, options),
                "actions": actions,
            },
        )

        # The REST API does not return blob shas, so they are computed from the committed data
        files = {
            change.path: CommittedFile(
                sha="" if change.action == COMMIT_ACTION.delete else get_git_hash(change.data or ""),
            )
            for change in changes
        }

        committed_date = result.get("committed_date")
        self.log.info(f"Committed {len(changes)} change(s) as {result['id']}")
        return CommitResults(
            sha=result["id"],
            date=datetime.fromisoformat(committed_date.replace("Z", "+00:00")) if committed_date else None,
            files=files,
        )
