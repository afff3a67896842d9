import os
from collections.abc import Generator
from pathlib import Path

# Set environment variables BEFORE importing any package modules so the settings singleton is
# initialized with test values and never picks up a developer's real configuration
for _var_name in [name for name in os.environ if name.startswith("CMS_REPO_SYNC_")]:
    del os.environ[_var_name]

os.environ["CMS_REPO_SYNC_TOKEN"] = "test-token"
os.environ["CMS_REPO_SYNC_LOG_LEVEL"] = "DEBUG"

import pytest
from dulwich.repo import Repo
from loguru import logger
from pytest import LogCaptureFixture

from cms_repo_sync.backends.api_client import APIClient
from cms_repo_sync.meta_consts import BACKEND_SERVICE
from cms_repo_sync.records import RepositoryContext, User
from tests.helpers import GITEA_API, GITHUB_API, GITLAB_API, GITLAB_GRAPHQL, add_commit


@pytest.fixture
def caplog(caplog: LogCaptureFixture) -> Generator[LogCaptureFixture, None, None]:
    """Route loguru records into pytest's caplog.

    See https://loguru.readthedocs.io/en/stable/resources/migration.html#migration-caplog for more information.
    """
    handler_id = logger.add(caplog.handler, format="{message}", level=0)
    yield caplog
    logger.remove(handler_id)


@pytest.fixture
def user() -> User:
    return User(name="Jane Doe", email="jane@example.com", login="jane", id=42)


@pytest.fixture
def gitea_context() -> RepositoryContext:
    return RepositoryContext(
        service=BACKEND_SERVICE.gitea,
        owner="o",
        repo="r",
        branch="main",
        base_url=GITEA_API,
        database_name="gitea:o/r",
    )


@pytest.fixture
def github_context() -> RepositoryContext:
    return RepositoryContext(
        service=BACKEND_SERVICE.github,
        owner="octo",
        repo="site",
        branch="main",
        base_url=GITHUB_API,
        database_name="github:octo/site",
    )


@pytest.fixture
def gitlab_context() -> RepositoryContext:
    return RepositoryContext(
        service=BACKEND_SERVICE.gitlab,
        owner="group/sub",
        repo="site",
        branch="main",
        base_url=GITLAB_API,
        database_name="gitlab:group/sub/site",
    )


@pytest.fixture
def gitea_api() -> APIClient:
    return APIClient(base_url=GITEA_API, token="test-token")


@pytest.fixture
def github_api() -> APIClient:
    return APIClient(base_url=GITHUB_API, token="test-token", graphql_url=f"{GITHUB_API}/graphql")


@pytest.fixture
def gitlab_api() -> APIClient:
    return APIClient(
        base_url=GITLAB_API,
        token="test-token",
        auth_scheme="Bearer",
        graphql_url=GITLAB_GRAPHQL,
    )


@pytest.fixture
def local_repo(tmp_path: Path) -> Path:
    """A working tree checked out on `main`, with a single commit."""
    root = tmp_path.joinpath("site").resolve()
    with Repo.init(str(root), mkdir=True) as repo:
        repo.refs.set_symbolic_ref(b"HEAD", b"refs/heads/main")
    add_commit(root, "Initial commit")
    return root
