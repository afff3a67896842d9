"""Authenticated HTTP client shared by the git hosting backends."""

from __future__ import annotations

import re
from types import TracebackType
from typing import Any, Literal

import httpx
from loguru import logger

from cms_repo_sync import cms_repo_sync_settings
from cms_repo_sync.exceptions import RepositoryError

ResponseType = Literal["json", "text", "blob", "raw"]


class APIClient:
    """Thin wrapper around `httpx.AsyncClient` for one hosting service.

    Non-2xx responses raise `httpx.HTTPStatusError`, which callers let propagate, except for the
    `raw` response type where the caller inspects the response itself.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str | None = None,
        auth_scheme: str = "token",
        graphql_url: str | None = None,
        graphql_variables: dict[str, Any] | None = None,
        timeout: float = cms_repo_sync_settings.request_timeout,
        httpx_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: REST API root, e.g. `https://api.github.com`.
            token: Access token sent as `Authorization: {auth_scheme} {token}`.
            auth_scheme: `token` for GitHub and Gitea, `Bearer` for GitLab.
            graphql_url: GraphQL endpoint. Defaults to `{base_url}/graphql`.
            graphql_variables: Variables applied to every GraphQL query that declares them.
            timeout: Transport timeout in seconds.
            httpx_client: An optional shared client for connection pooling. Not closed by `aclose()`.
        """
        self.base_url = base_url.rstrip("/")
        self.graphql_url = graphql_url or f"{self.base_url}/graphql"
        self.graphql_variables: dict[str, Any] = dict(graphql_variables or {})
        self._token = token
        self._auth_scheme = auth_scheme
        self._owns_client = httpx_client is None
        self._client = httpx_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> APIClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    def _build_headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        merged = {"Accept": "application/json"}
        if self._token:
            merged["Authorization"] = f"{self._auth_scheme} {self._token}"
        merged.update(headers or {})
        return merged

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        body: Any = None,
        headers: dict[str, str] | None = None,
        response_type: ResponseType = "json",
        url: str | None = None,
    ) -> Any:
        """Send a request to the service.

        Args:
            path: Endpoint path appended to the REST root, including any query string.
            method: HTTP method.
            body: JSON-serializable request body.
            headers: Extra headers, overriding the defaults.
            response_type: `json` (parsed), `text`, `blob` (bytes) or `raw` (the `httpx.Response`).
            url: Absolute URL to use instead of `base_url + path`.

        Returns:
            The parsed response according to `response_type`.

        Raises:
            httpx.HTTPStatusError: For non-2xx responses, unless `response_type` is `raw`.
            httpx.TransportError: When the request could not be sent.
        """
        target = url or f"{self.base_url}{path}"
        logger.trace(f"{method} {target}")

        response = await self._client.request(
            method,
            target,
            headers=self._build_headers(headers),
            json=body,
        )

        if response_type == "raw":
            return response

        response.raise_for_status()

        if response_type == "blob":
            return response.content
        if response_type == "text":
            return response.text
        return response.json()

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a GraphQL query and return its `data`.

        Common variables from `graphql_variables` are applied when the query declares them and the
        caller did not pass its own value.

        Raises:
            RepositoryError: When the response carries errors and no data.
        """
        # File paths may contain spaces, so only collapse line breaks and their indentation
        query = re.sub(r"\n\s*", " ", query).strip()
        merged = dict(variables or {})
        for key, value in self.graphql_variables.items():
            if f"${key}" in query:
                merged.setdefault(key, value)

        result: dict[str, Any] = await self.request(
            "/graphql",
            method="POST",
            body={"query": query, "variables": merged},
            url=self.graphql_url,
        )

        errors = result.get("errors") or []
        data = result.get("data")

        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            if data is None:
                logger.error(f"GraphQL request failed: {messages}")
                raise RepositoryError("GraphQL request failed", cause=messages)
            logger.warning(f"GraphQL response contained errors: {messages}")

        return data or {}
