"""Runs a full repository sync against one backend."""

from __future__ import annotations

from loguru import logger

from cms_repo_sync.backends.base import ProgressCallback, RepositoryBackend
from cms_repo_sync.meta_consts import SYNC_STATE
from cms_repo_sync.sync.fetch import FileClassifier, SyncResult, SyncSinks, fetch_and_parse_files


class SyncOrchestrator:
    """Checks the preconditions of a sync, then runs the shared fetch-and-parse pipeline.

    The steps run strictly in order:

        INIT -> VERSION_CHECKED -> ACCESS_CHECKED -> FILES_FETCHED

    Any failure moves the orchestrator to the terminal FAILED state and is re-raised unchanged.
    Nothing is retried; start a new orchestrator for another attempt.
    """

    def __init__(
        self,
        backend: RepositoryBackend,
        *,
        classifier: FileClassifier | None = None,
        sinks: SyncSinks | None = None,
    ) -> None:
        self.backend = backend
        self.classifier = classifier
        self.sinks = sinks
        self.state = SYNC_STATE.INIT
        self.result: SyncResult | None = None

    def _advance(self, state: SYNC_STATE) -> None:
        logger.debug(f"Sync state {self.state} -> {state}")
        self.state = state

    async def fetch_files(self, *, progress: ProgressCallback | None = None) -> SyncResult:
        """Run the sync.

        Args:
            progress: Receives content download progress, then None when the download is done.

        Returns:
            SyncResult: The branch, tip commit and classified files.

        Raises:
            RuntimeError: If this orchestrator already ran.
        """
        if self.state != SYNC_STATE.INIT:
            raise RuntimeError(f"A sync can only run once, but the orchestrator is in state {self.state}")

        backend = self.backend

        try:
            await backend.check_instance_version()
            self._advance(SYNC_STATE.VERSION_CHECKED)

            await backend.check_repository_access()
            self._advance(SYNC_STATE.ACCESS_CHECKED)

            self.result = await fetch_and_parse_files(
                backend.repository,
                backend.fetch_default_branch_name,
                backend.fetch_last_commit,
                backend.fetch_file_list,
                backend.fetch_file_contents,
                classifier=self.classifier,
                sinks=self.sinks,
                progress=progress,
            )
            self._advance(SYNC_STATE.FILES_FETCHED)
        except Exception as e:
            logger.error(f"Sync of {backend.repository.repo_path} failed in state {self.state}: {e!r}")
            self._advance(SYNC_STATE.FAILED)
            raise

        logger.info(
            f"Synced {self.result.count} files from {backend.repository.repo_path}@{self.result.branch} "
            f"({self.result.last_commit.hash[:7] or 'no commit'})"
        )
        return self.result
