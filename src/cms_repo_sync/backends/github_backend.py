"""GitHub backend.

Reads go through the REST tree endpoint and batched GraphQL blob queries; writes use the
`createCommitOnBranch` mutation so a change-set lands as one commit guarded by the expected head.
"""

from __future__ import annotations

import json
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
    blobs_to_file_list,
    chunked,
    percent_done,
    report_progress,
)
from cms_repo_sync.codec import encode_base64
from cms_repo_sync.exceptions import RepositoryAccessError
from cms_repo_sync.i18n import translate
from cms_repo_sync.meta_consts import BACKEND_SERVICE, COMMIT_ACTION, FILE_TYPE, GITHUB_CONTENTS_CHUNK_SIZE
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

FETCH_LAST_COMMIT_QUERY = """
query($owner: String!, $repo: String!, $branch: String!) {
  repository(owner: $owner, name: $repo) {
    ref(qualifiedName: $branch) {
      target {
        ... on Commit {
          history(first: 1) {
            nodes {
              oid
              message
            }
          }
        }
      }
    }
  }
}
"""

FETCH_DEFAULT_BRANCH_NAME_QUERY = """
query($owner: String!, $repo: String!) {
  repository(owner: $owner, name: $repo) {
    defaultBranchRef {
      name
    }
  }
}
"""

COMMIT_MUTATION = """
mutation($input: CreateCommitOnBranchInput!) {
  createCommitOnBranch(input: $input) {
    commit {
      oid
      committedDate
      {file_sha_query}
    }
  }
}
"""

_ADDITION_ACTIONS = {COMMIT_ACTION.create, COMMIT_ACTION.update, COMMIT_ACTION.move}
_DELETION_ACTIONS = {COMMIT_ACTION.move, COMMIT_ACTION.delete}


def get_file_contents_query(chunk: Sequence[BaseFileListItem], start_index: int) -> str:
    """Build one GraphQL query for the blob text and last commit of every file in `chunk`.

    Fields are aliased `content_{n}` and `commit_{n}` with `n` counted from `start_index`, so the
    results of several chunks can be merged into one mapping. Assets only get the commit part.
    """
    fields: list[str] = []

    for offset, item in enumerate(chunk):
        index = start_index + offset
        if item.type != FILE_TYPE.asset:
            fields.append(f"content_{index}: object(oid: {json.dumps(item.sha)}) {{ ... on Blob {{ text }} }}")
        fields.append(
            f"commit_{index}: ref(qualifiedName: $branch) {{ target {{ ... on Commit {{ "
            f"history(first: 1, path: {json.dumps(item.path)}) {{ nodes {{ "
            "author { name email user { id: databaseId login } } committedDate "
            "} } } } }"
        )

    inner = "\n".join(fields)
    return (
        "query($owner: String!, $repo: String!, $branch: String!) {\n"
        "  repository(owner: $owner, name: $repo) {\n"
        f"{inner}\n"
        "  }\n"
        "}"
    )


def _parse_commit_meta(commit_ref: dict[str, Any] | None) -> dict[str, Any]:
    nodes = (((commit_ref or {}).get("target") or {}).get("history") or {}).get("nodes") or []
    if not nodes:
        return {}

    node = nodes[0]
    author = node.get("author") or {}
    author_user = author.get("user") or {}
    committed_date = node.get("committedDate")

    return {
        "commit_author": {
            "name": author.get("name"),
            "email": author.get("email"),
            "id": author_user.get("id"),
            "login": author_user.get("login"),
        },
        "commit_date": datetime.fromisoformat(committed_date.replace("Z", "+00:00")) if committed_date else None,
    }


class GitHubBackend(GitRepositoryBackend):
    """Backend for github.com and GitHub Enterprise Server."""

    service: ClassVar[BACKEND_SERVICE] = BACKEND_SERVICE.github

    def _graphql_variables(self) -> dict[str, Any]:
        return {"owner": self.repository.owner, "repo": self.repository.repo, "branch": self.branch}

    async def _graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.api.graphql(query, {**self._graphql_variables(), **(variables or {})})

    @override
    async def check_repository_access(self) -> None:
        repo = self.repository.repo
        login = self.user.login

        if not login:
            raise RepositoryAccessError(
                "Not a collaborator of the repository",
                cause=translate("repository_no_access", {"repo": repo}),
            )

        response: httpx.Response = await self.api.request(
            f"/repos/{self.repository.repo_path}/collaborators/{quote(login, safe='')}",
            response_type="raw",
        )

        if not response.is_success:
            self.log.warning(f"{login} is not a collaborator ({response.status_code})")
            raise RepositoryAccessError(
                "Not a collaborator of the repository",
                cause=translate("repository_no_access", {"repo": repo}),
            )

    @override
    async def fetch_default_branch_name(self) -> str:
        result = await self._graphql(FETCH_DEFAULT_BRANCH_NAME_QUERY)
        repository = result.get("repository")

        if not repository:
            raise self.not_found(DEFAULT_BRANCH_ERROR_MESSAGE, "repository_not_found")

        branch = (repository.get("defaultBranchRef") or {}).get("name")
        if not branch:
            raise self.not_found(DEFAULT_BRANCH_ERROR_MESSAGE, "repository_empty")

        self.set_branch(branch)
        return branch

    @override
    async def fetch_last_commit(self) -> LastCommit:
        result = await self._graphql(FETCH_LAST_COMMIT_QUERY)
        repository = result.get("repository")

        if not repository:
            raise self.not_found(LAST_COMMIT_ERROR_MESSAGE, "repository_not_found")

        ref = repository.get("ref")
        if not ref:
            raise self.not_found(LAST_COMMIT_ERROR_MESSAGE, "branch_not_found")

        node = ref["target"]["history"]["nodes"][0]
        return LastCommit(hash=node["oid"], message=node.get("message") or "")

    @override
    async def fetch_file_list(self, last_hash: str | None = None) -> list[BaseFileListItem]:
        result = await self.api.request(
            f"/repos/{self.repository.repo_path}/git/trees/{last_hash or self.branch}?recursive=1"
        )
        if result.get("truncated"):
            self.log.warning("GitHub truncated the tree listing; some files will be missing")
        return blobs_to_file_list(result.get("tree") or [])

    @override
    async def fetch_file_contents(
        self,
        items: Sequence[BaseFileListItem],
        progress: ProgressCallback | None = None,
    ) -> RepositoryContentsMap:
        """Fetch blob text and the last commit of every item.

        Unlike the other backends, assets are included in the result: their text stays empty but
        their `meta` carries the commit author and date.
        """
        if not items:
            return {}

        results: dict[str, Any] = {}
        processed = 0

        report_progress(progress, 0)

        for start, chunk in enumerate(chunked(items, GITHUB_CONTENTS_CHUNK_SIZE)):
            data = await self._graphql(get_file_contents_query(chunk, start * GITHUB_CONTENTS_CHUNK_SIZE))
            results.update(data.get("repository") or {})
            processed += len(chunk)
            self.log.debug(f"Fetched {processed}/{len(items)} file contents")
            report_progress(progress, percent_done(processed, len(items)))

        report_progress(progress, None)

        return {
            item.path: RepositoryContentsEntry(
                sha=item.sha,
                size=item.size or 0,
                text=(results.get(f"content_{index}") or {}).get("text") or "",
                meta=_parse_commit_meta(results.get(f"commit_{index}")),
            )
            for index, item in enumerate(items)
        }

    @override
    async def fetch_blob(self, asset: BaseFileListItem) -> bytes:
        return await self.api.request(
            f"/repos/{self.repository.repo_path}/git/blobs/{asset.sha}",
            headers={"Accept": "application/vnd.github.raw"},
            response_type="blob",
        )

    @override
    async def commit_changes(self, changes: Sequence[FileChange], options: CommitOptions) -> CommitResults:
        additions = [
            {"path": change.path, "contents": encode_base64(change.data or "")}
            for change in changes
            if change.action in _ADDITION_ACTIONS
        ]
        deletions = [
            {"path": change.previous_path or change.path} for change in changes if change.action in _DELETION_ACTIONS
        ]

        file_sha_query = " ".join(
            f"file_{index}: file(path: {json.dumps(addition['path'])}) {{ oid }}"
            for index, addition in enumerate(additions)
        )
        query = COMMIT_MUTATION.replace("{file_sha_query}", file_sha_query)

        commit_input = {
            "branch": {
                "repositoryNameWithOwner": self.repository.repo_path,
                "branchName": self.branch,
            },
            "expectedHeadOid": (await self.fetch_last_commit()).hash,
            "fileChanges": {"additions": additions, "deletions": deletions},
            "message": {"headline": self.create_commit_message(changes, options)},
        }

        result = await self.api.graphql(query, {"input": commit_input})
        commit = result["createCommitOnBranch"]["commit"]

        self.log.info(f"Committed {len(changes)} change(s) as {commit['oid']}")
        return CommitResults(
            sha=commit["oid"],
            date=datetime.fromisoformat(commit["committedDate"].replace("Z", "+00:00")),
            files={
                addition["path"]: CommittedFile(sha=(commit.get(f"file_{index}") or {}).get("oid") or "")
                for index, addition in enumerate(additions)
            },
        )
