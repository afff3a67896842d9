import json
from datetime import datetime, timezone

import pytest
from pytest_httpx import HTTPXMock

from cms_repo_sync.backends.api_client import APIClient
from cms_repo_sync.backends.github_backend import GitHubBackend, get_file_contents_query
from cms_repo_sync.codec import encode_base64
from cms_repo_sync.exceptions import NotFoundError, RepositoryAccessError
from cms_repo_sync.meta_consts import COMMIT_ACTION, COMMIT_TYPE, FILE_TYPE
from cms_repo_sync.records import BaseFileListItem, CommitOptions, FileChange, RepositoryContext, User
from tests.helpers import GITHUB_API, make_entries

GRAPHQL_URL = f"{GITHUB_API}/graphql"


@pytest.fixture
def backend(github_context: RepositoryContext, github_api: APIClient, user: User) -> GitHubBackend:
    return GitHubBackend(repository=github_context, api_client=github_api, user=user)


def _graphql_bodies(httpx_mock: HTTPXMock) -> list[dict]:
    return [json.loads(request.content) for request in httpx_mock.get_requests() if request.url == GRAPHQL_URL]


def test_file_contents_query_aliases() -> None:
    """Aliases continue from the start index and assets only get the commit alias."""
    chunk = [
        BaseFileListItem(path="content/a.md", sha="s1", type=FILE_TYPE.entry),
        BaseFileListItem(path="static/b c.png", sha="s2", type=FILE_TYPE.asset),
    ]

    query = get_file_contents_query(chunk, 250)

    assert 'content_250: object(oid: "s1")' in query
    assert "content_251" not in query
    assert 'history(first: 1, path: "static/b c.png")' in query
    assert "commit_250:" in query
    assert "commit_251:" in query


@pytest.mark.asyncio
async def test_fetch_file_list(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(
        url=f"{GITHUB_API}/repos/octo/site/git/trees/main?recursive=1",
        json={
            "tree": [
                {"type": "tree", "path": "content", "sha": "t"},
                {"type": "blob", "path": "content/a.md", "sha": "1", "size": 10},
                {"type": "blob", "path": ".gitignore", "sha": "2", "size": 4},
            ],
            "truncated": False,
        },
    )

    items = await backend.fetch_file_list()

    assert [(item.path, item.name, item.sha, item.size) for item in items] == [
        ("content/a.md", "a.md", "1", 10),
        (".gitignore", ".gitignore", "2", 4),
    ]


@pytest.mark.asyncio
async def test_fetch_file_list_truncated_warns(
    backend: GitHubBackend,
    httpx_mock: HTTPXMock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    httpx_mock.add_response(
        url=f"{GITHUB_API}/repos/octo/site/git/trees/abc?recursive=1",
        json={"tree": [{"type": "blob", "path": "a.md", "sha": "1"}], "truncated": True},
    )

    items = await backend.fetch_file_list("abc")

    assert [item.path for item in items] == ["a.md"]
    assert "truncated" in caplog.text


@pytest.mark.asyncio
async def test_fetch_file_contents_in_chunks(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    """Items are queried 250 at a time, and the aliases of later chunks keep counting."""
    items = make_entries(251)
    httpx_mock.add_response(
        url=GRAPHQL_URL,
        method="POST",
        json={
            "data": {
                "repository": {
                    "content_0": {"text": "first"},
                    "commit_0": {
                        "target": {
                            "history": {
                                "nodes": [
                                    {
                                        "author": {
                                            "name": "Jane Doe",
                                            "email": "jane@example.com",
                                            "user": {"id": 42, "login": "jane"},
                                        },
                                        "committedDate": "2024-03-01T12:00:00Z",
                                    }
                                ]
                            }
                        }
                    },
                }
            }
        },
    )
    httpx_mock.add_response(
        url=GRAPHQL_URL,
        method="POST",
        json={"data": {"repository": {"content_250": {"text": "last"}, "commit_250": None}}},
    )
    progress: list[int | None] = []

    contents = await backend.fetch_file_contents(items, progress.append)

    bodies = _graphql_bodies(httpx_mock)
    assert len(bodies) == 2
    assert "content_249:" in bodies[0]["query"]
    assert "content_250:" in bodies[1]["query"]
    assert bodies[1]["variables"] == {"owner": "octo", "repo": "site", "branch": "main"}

    assert len(contents) == 251
    assert contents["content/post-0.md"].text == "first"
    assert contents["content/post-0.md"].meta == {
        "commit_author": {"name": "Jane Doe", "email": "jane@example.com", "id": 42, "login": "jane"},
        "commit_date": datetime(2024, 3, 1, 12, tzinfo=timezone.utc),
    }
    assert contents["content/post-1.md"].text == ""
    assert contents["content/post-250.md"].text == "last"
    assert contents["content/post-250.md"].meta == {}
    assert progress == [0, 100, 100, None]


@pytest.mark.asyncio
async def test_fetch_file_contents_includes_assets(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    asset = BaseFileListItem(path="static/a.png", sha="s1", size=5, type=FILE_TYPE.asset)
    httpx_mock.add_response(url=GRAPHQL_URL, method="POST", json={"data": {"repository": {"commit_0": None}}})

    contents = await backend.fetch_file_contents([asset])

    assert contents["static/a.png"].text == ""
    assert contents["static/a.png"].size == 5
    assert "content_0" not in _graphql_bodies(httpx_mock)[0]["query"]


@pytest.mark.asyncio
async def test_fetch_file_contents_empty(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    assert await backend.fetch_file_contents([]) == {}
    assert httpx_mock.get_requests() == []


@pytest.mark.asyncio
async def test_commit_changes(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    """A move becomes an addition at the new path plus a deletion of the old one."""
    httpx_mock.add_response(
        url=GRAPHQL_URL,
        method="POST",
        json={"data": {"repository": {"ref": {"target": {"history": {"nodes": [{"oid": "head1", "message": ""}]}}}}}},
    )
    httpx_mock.add_response(
        url=GRAPHQL_URL,
        method="POST",
        json={
            "data": {
                "createCommitOnBranch": {
                    "commit": {
                        "oid": "c1",
                        "committedDate": "2024-01-01T00:00:00Z",
                        "file_0": {"oid": "n1"},
                        "file_1": {"oid": "i1"},
                    }
                }
            }
        },
    )

    results = await backend.commit_changes(
        [
            FileChange(action=COMMIT_ACTION.move, path="new.md", previous_path="old.md", slug="new", data="# New"),
            FileChange(action=COMMIT_ACTION.create, path="img.png", data=b"\x89PNG"),
            FileChange(action=COMMIT_ACTION.delete, path="gone.md"),
        ],
        CommitOptions(commit_type=COMMIT_TYPE.update, collection_label="Posts"),
    )

    mutation = _graphql_bodies(httpx_mock)[1]
    commit_input = mutation["variables"]["input"]

    assert 'file_0: file(path: "new.md") { oid }' in mutation["query"]
    assert commit_input["branch"] == {"repositoryNameWithOwner": "octo/site", "branchName": "main"}
    assert commit_input["expectedHeadOid"] == "head1"
    assert commit_input["fileChanges"] == {
        "additions": [
            {"path": "new.md", "contents": encode_base64("# New")},
            {"path": "img.png", "contents": encode_base64(b"\x89PNG")},
        ],
        "deletions": [{"path": "old.md"}, {"path": "gone.md"}],
    }
    assert commit_input["message"] == {"headline": "Update Posts “new”"}

    assert results.sha == "c1"
    assert results.date == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert {path: file.sha for path, file in results.files.items()} == {"new.md": "n1", "img.png": "i1"}


@pytest.mark.asyncio
async def test_last_commit(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(
        url=GRAPHQL_URL,
        method="POST",
        json={
            "data": {
                "repository": {
                    "ref": {"target": {"history": {"nodes": [{"oid": "abc", "message": "[skip ci] Update"}]}}}
                }
            }
        },
    )

    last_commit = await backend.fetch_last_commit()

    assert last_commit.hash == "abc"
    assert last_commit.message == "[skip ci] Update"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("repository", "detail"),
    [
        (None, "The “site” repository doesn’t exist."),
        ({"ref": None}, "The “site” repository doesn’t have the “main” branch."),
    ],
)
async def test_last_commit_errors(
    backend: GitHubBackend,
    httpx_mock: HTTPXMock,
    repository: dict | None,
    detail: str,
) -> None:
    httpx_mock.add_response(url=GRAPHQL_URL, method="POST", json={"data": {"repository": repository}})

    with pytest.raises(NotFoundError) as exc_info:
        await backend.fetch_last_commit()

    assert exc_info.value.message == "Failed to retrieve the last commit hash."
    assert exc_info.value.detail == detail


@pytest.mark.asyncio
async def test_default_branch(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(
        url=GRAPHQL_URL,
        method="POST",
        json={"data": {"repository": {"defaultBranchRef": {"name": "trunk"}}}},
    )

    assert await backend.fetch_default_branch_name() == "trunk"
    assert backend.branch == "trunk"


@pytest.mark.asyncio
async def test_default_branch_of_empty_repository(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(url=GRAPHQL_URL, method="POST", json={"data": {"repository": {"defaultBranchRef": None}}})

    with pytest.raises(NotFoundError) as exc_info:
        await backend.fetch_default_branch_name()

    assert exc_info.value.detail == "The “site” repository has no branches."


@pytest.mark.asyncio
async def test_repository_access(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(url=f"{GITHUB_API}/repos/octo/site/collaborators/jane", status_code=204)

    await backend.check_repository_access()


@pytest.mark.asyncio
async def test_repository_access_denied(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(url=f"{GITHUB_API}/repos/octo/site/collaborators/jane", status_code=404)

    with pytest.raises(RepositoryAccessError) as exc_info:
        await backend.check_repository_access()

    assert exc_info.value.detail == "You don’t have access to the “site” repository."


@pytest.mark.asyncio
async def test_repository_access_without_login(
    github_context: RepositoryContext,
    github_api: APIClient,
    httpx_mock: HTTPXMock,
) -> None:
    backend = GitHubBackend(repository=github_context, api_client=github_api, user=User(name="Anonymous"))

    with pytest.raises(RepositoryAccessError):
        await backend.check_repository_access()

    assert httpx_mock.get_requests() == []


@pytest.mark.asyncio
async def test_fetch_blob(backend: GitHubBackend, httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(
        url=f"{GITHUB_API}/repos/octo/site/git/blobs/s1",
        match_headers={"Accept": "application/vnd.github.raw"},
        content=b"PNG",
    )

    assert await backend.fetch_blob(BaseFileListItem(path="a.png", sha="s1")) == b"PNG"
