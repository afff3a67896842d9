"""Repository backends.

One backend per hosting service, all implementing `RepositoryBackend`:

- GitHubBackend: github.com and GitHub Enterprise Server (REST + GraphQL)
- GitLabBackend: gitlab.com and self-managed GitLab (GraphQL + REST commits)
- GiteaBackend: Gitea 1.24+ and Forgejo 12+ (REST)
- LocalBackend: a clone of the repository on this machine

`create_backend()` picks the implementation for the configured service at start-up.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

import httpx
from loguru import logger

from cms_repo_sync import CmsRepoSyncSettings, cms_repo_sync_settings
from cms_repo_sync.exceptions import UnsupportedBackendError
from cms_repo_sync.meta_consts import BACKEND_SERVICE
from cms_repo_sync.records import RepositoryContext, User

from .api_client import APIClient
from .base import GitRepositoryBackend, ProgressCallback, RepositoryBackend
from .gitea_backend import GiteaBackend
from .github_backend import GitHubBackend
from .gitlab_backend import GitLabBackend
from .local_backend import DirectoryPicker, HandleStore, LocalBackend

GIT_BACKENDS: dict[BACKEND_SERVICE, type[GitRepositoryBackend]] = {
    BACKEND_SERVICE.github: GitHubBackend,
    BACKEND_SERVICE.gitlab: GitLabBackend,
    BACKEND_SERVICE.gitea: GiteaBackend,
}


def default_graphql_url(base_url: str) -> str:
    """Derive the GraphQL endpoint from a REST root.

    `https://api.github.com` becomes `https://api.github.com/graphql`, while versioned roots such as
    `https://ghe.example.com/api/v3` or `https://gitlab.com/api/v4` drop the version segment.
    """
    return re.sub(r"/v\d+$", "", base_url.rstrip("/")) + "/graphql"


def create_api_client(
    context: RepositoryContext,
    *,
    settings: CmsRepoSyncSettings = cms_repo_sync_settings,
    httpx_client: httpx.AsyncClient | None = None,
) -> APIClient:
    """Create an `APIClient` authenticated the way the context's service expects."""
    return APIClient(
        base_url=context.base_url,
        token=settings.token,
        auth_scheme="Bearer" if context.service == BACKEND_SERVICE.gitlab else "token",
        graphql_url=settings.graphql_api_root or default_graphql_url(context.base_url),
        timeout=settings.request_timeout,
        httpx_client=httpx_client,
    )


def create_backend(
    context: RepositoryContext | None = None,
    *,
    api_client: APIClient | None = None,
    user: User | None = None,
    settings: CmsRepoSyncSettings = cms_repo_sync_settings,
    picker: DirectoryPicker | None = None,
    scan_paths: Iterable[str] = (),
    httpx_client: httpx.AsyncClient | None = None,
) -> RepositoryBackend:
    """Create the backend for the configured service.

    Args:
        context: The repository to operate on. Built from `settings` if None.
        api_client: Client for git backends. Created from `settings` if None.
        user: The signed-in user. Built from `settings` if None.
        settings: Settings used for anything not passed explicitly.
        picker: Directory picker for the local backend.
        scan_paths: Folders the local backend lists files from.
        httpx_client: Shared `httpx.AsyncClient` for a created `APIClient`.

    Returns:
        RepositoryBackend: The backend instance.

    Raises:
        UnsupportedBackendError: If the service has no backend.
    """
    context = context or RepositoryContext.from_settings(settings)
    user = user or User.from_settings(settings)

    logger.debug(f"Creating backend for {context.service}:{context.repo_path}")

    if context.service == BACKEND_SERVICE.local:
        backend = LocalBackend(
            repository=context,
            user=user,
            picker=picker,
            cache_dir=settings.cache_dir,
            scan_paths=scan_paths,
        )
        backend.init()
        return backend

    backend_class = GIT_BACKENDS.get(context.service)
    if backend_class is None:
        raise UnsupportedBackendError(f"No backend for service {context.service!r}")

    if api_client is None:
        api_client = create_api_client(context, settings=settings, httpx_client=httpx_client)

    logger.info(f"Using {backend_class.__name__} for {context.repo_path} at {context.base_url}")

    if backend_class is GiteaBackend:
        return GiteaBackend(
            repository=context,
            api_client=api_client,
            user=user,
            default_page_size=settings.default_page_size,
        )

    return backend_class(repository=context, api_client=api_client, user=user)


__all__ = [
    "APIClient",
    "DirectoryPicker",
    "GIT_BACKENDS",
    "GitHubBackend",
    "GitLabBackend",
    "GitRepositoryBackend",
    "GiteaBackend",
    "HandleStore",
    "LocalBackend",
    "ProgressCallback",
    "RepositoryBackend",
    "create_api_client",
    "create_backend",
    "default_graphql_url",
]
