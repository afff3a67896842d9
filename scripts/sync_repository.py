#!/usr/bin/env python3
r"""CLI script for inspecting and syncing a CMS content repository.

Subcommands:
- **list**: Print every file tracked at the tip of the branch
- **sync**: Run a full sync and print a summary of entries, assets and Git config files

Usage:
    python scripts/sync_repository.py [--repo OWNER/NAME] [--service SERVICE] {list,sync} [OPTIONS]

Environment variables:
    CMS_REPO_SYNC_BACKEND_SERVICE - github, gitlab, gitea or local (default: github)
    CMS_REPO_SYNC_REPO - Repository in 'owner/name' format
    CMS_REPO_SYNC_BRANCH - Branch to read (default: the repository's default branch)
    CMS_REPO_SYNC_API_ROOT - REST API root for self-hosted instances
    CMS_REPO_SYNC_TOKEN - Access token
    CMS_REPO_SYNC_USER_LOGIN / CMS_REPO_SYNC_USER_ID - Identity used for the access check
    CMS_REPO_SYNC_LOG_LEVEL - Log level (default: WARNING)

Examples:
    # List files of a public GitHub repository
    CMS_REPO_SYNC_TOKEN=ghp_... python scripts/sync_repository.py --repo octocat/hello-world list

    # Sync a Forgejo repository with blog posts and uploads
    python scripts/sync_repository.py --service gitea --api-root https://codeberg.org/api/v1 \\
        --repo me/site sync --entry-folder content/posts --asset-folder static/uploads

    # Sync a local clone
    python scripts/sync_repository.py --service local --repo me/site sync --directory ~/src/site
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger

from cms_repo_sync import CmsRepoSyncSettings, RepositoryError
from cms_repo_sync.backends import LocalBackend, RepositoryBackend, create_backend
from cms_repo_sync.logging_config import configure_logger
from cms_repo_sync.meta_consts import BACKEND_SERVICE
from cms_repo_sync.sync import FolderClassifier, SyncOrchestrator


def print_progress(value: int | None) -> None:
    """Draw a single-line progress indicator on stderr."""
    if value is None:
        sys.stderr.write("\r" + " " * 40 + "\r")
    else:
        sys.stderr.write(f"\rFetching contents: {value:3d}%")
    sys.stderr.flush()


def build_settings(args: argparse.Namespace) -> CmsRepoSyncSettings:
    """Apply command line overrides on top of the environment settings."""
    overrides = {
        "backend_service": args.service,
        "repo": args.repo,
        "branch": args.branch,
        "api_root": args.api_root,
    }
    return CmsRepoSyncSettings(**{key: value for key, value in overrides.items() if value is not None})


async def prepare_backend(backend: RepositoryBackend, directory: str | None) -> None:
    """Sign in to the local backend. Git backends only need the token from the settings."""
    if not isinstance(backend, LocalBackend):
        return

    async def pick_directory() -> Path | None:
        return Path(directory) if directory else None

    backend.picker = pick_directory
    await backend.sign_in(auto=directory is None)


async def run_list(backend: RepositoryBackend) -> int:
    if not backend.repository.branch:
        await backend.fetch_default_branch_name()

    last_commit = await backend.fetch_last_commit()
    files = await backend.fetch_file_list(last_commit.hash or None)

    for item in files:
        print(f"{item.sha[:7] or '-------'}  {item.size:>10}  {item.path}")

    logger.info(f"{len(files)} files at {backend.branch}@{last_commit.hash[:7]}")
    return 0


async def run_sync(backend: RepositoryBackend, args: argparse.Namespace) -> int:
    classifier = None
    if args.entry_folder or args.asset_folder:
        classifier = FolderClassifier(entry_folders=args.entry_folder, asset_folders=args.asset_folder)
        if isinstance(backend, LocalBackend):
            backend.scan_paths = classifier.scan_paths

    orchestrator = SyncOrchestrator(backend, classifier=classifier)
    result = await orchestrator.fetch_files(progress=None if args.quiet else print_progress)

    print(f"Branch:       {result.branch}")
    print(f"Last commit:  {result.last_commit.hash or '(none)'}")
    print(f"Published:    {'yes' if result.is_last_commit_published else 'no ([skip ci])'}")
    print(f"Entries:      {len(result.entry_files)}")
    print(f"Assets:       {len(result.asset_files)}")
    print(f"Config files: {len(result.config_files)}")

    if args.verbose_files:
        for item in result.entry_files + result.asset_files + result.config_files:
            print(f"  [{item.type}] {item.path} ({item.size} bytes)")

    return 0


async def run(args: argparse.Namespace) -> int:
    settings = build_settings(args)
    if not settings.repo:
        logger.error("A repository is required. Set via --repo or CMS_REPO_SYNC_REPO.")
        return 1

    backend = create_backend(settings=settings)

    try:
        await prepare_backend(backend, getattr(args, "directory", None))
        if args.command == "list":
            return await run_list(backend)
        return await run_sync(backend, args)
    except RepositoryError as e:
        logger.error(f"{e.message}: {e.detail}" if e.detail else e.message)
        return 1
    finally:
        api = getattr(backend, "api", None)
        if api is not None:
            await api.aclose()


def main() -> int:
    """Enter the repository sync CLI.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    parser = argparse.ArgumentParser(
        description="Inspect and sync a Git-backed CMS content repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--service",
        choices=[str(service) for service in BACKEND_SERVICE],
        default=None,
        help="Hosting service (default: from env CMS_REPO_SYNC_BACKEND_SERVICE)",
    )
    parser.add_argument("--repo", default=None, help="Repository in 'owner/name' format")
    parser.add_argument("--branch", default=None, help="Branch to read (default: the default branch)")
    parser.add_argument("--api-root", default=None, help="REST API root for self-hosted instances")
    parser.add_argument("--log-level", default=None, help="Log level (default: from env CMS_REPO_SYNC_LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="Print the file list at the tip of the branch")
    list_parser.add_argument("--directory", default=None, help="Local repository root (local service only)")

    sync_parser = subparsers.add_parser("sync", help="Run a full sync and print a summary")
    sync_parser.add_argument(
        "--entry-folder",
        action="append",
        default=[],
        help="Folder holding entries; may be repeated. Without any folder, every file is an entry.",
    )
    sync_parser.add_argument(
        "--asset-folder",
        action="append",
        default=[],
        help="Folder holding media assets; may be repeated",
    )
    sync_parser.add_argument("--directory", default=None, help="Local repository root (local service only)")
    sync_parser.add_argument("--quiet", action="store_true", help="Hide the progress indicator")
    sync_parser.add_argument("--verbose-files", action="store_true", help="Print every synced file")

    args = parser.parse_args()
    configure_logger(args.log_level.upper() if args.log_level else None)

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
