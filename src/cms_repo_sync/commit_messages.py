"""Commit message templates.

The default templates follow the Decap CMS `commit_messages` option; custom templates can be
passed per call with the same keys.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from cms_repo_sync import cms_repo_sync_settings
from cms_repo_sync.meta_consts import COMMIT_TYPE, SKIP_CI_PREFIX
from cms_repo_sync.records import CommitOptions, FileChange, User

DEFAULT_COMMIT_MESSAGES: dict[COMMIT_TYPE, str] = {
    COMMIT_TYPE.create: "Create {{collection}} “{{slug}}”",
    COMMIT_TYPE.update: "Update {{collection}} “{{slug}}”",
    COMMIT_TYPE.delete: "Delete {{collection}} “{{slug}}”",
    COMMIT_TYPE.uploadMedia: "Upload “{{path}}”",
    COMMIT_TYPE.deleteMedia: "Delete “{{path}}”",
    COMMIT_TYPE.openAuthoring: "{{message}}",
}

_ENTRY_COMMIT_TYPES = {COMMIT_TYPE.create, COMMIT_TYPE.update, COMMIT_TYPE.delete}
_MEDIA_COMMIT_TYPES = {COMMIT_TYPE.uploadMedia, COMMIT_TYPE.deleteMedia}
_DELETION_COMMIT_TYPES = {COMMIT_TYPE.delete, COMMIT_TYPE.deleteMedia}


def _fill(message: str, replacements: Mapping[str, str]) -> str:
    for name, value in replacements.items():
        message = message.replace("{{" + name + "}}", value)
    return message


def create_commit_message(
    changes: Sequence[FileChange],
    options: CommitOptions,
    *,
    user: User | None = None,
    templates: Mapping[str, str] | None = None,
    skip_ci: bool | None = None,
) -> str:
    """Create a commit message for a change-set.

    Args:
        changes: The change-set being committed.
        options: Commit type, collection label and per-commit `skip_ci` override.
        user: The author, for the `{{author-*}}` placeholders.
        templates: Custom templates keyed by commit type. Missing keys use the defaults.
        skip_ci: Site-wide `skip_ci` default. Falls back to the configured setting.

    Returns:
        str: The formatted message, prefixed with `[skip ci]` when deployments are skipped.
    """
    commit_type = options.commit_type
    user = user or User()
    first_slug = next((change.slug for change in changes if change.slug), "")
    paths = [change.path for change in changes]
    first_path = paths[0] if paths else ""

    message = (templates or {}).get(commit_type) or DEFAULT_COMMIT_MESSAGES.get(commit_type, "")
    author = {
        "author-email": user.email,
        "author-login": user.login or "",
        "author-name": user.name,
    }

    if commit_type in _ENTRY_COMMIT_TYPES:
        message = _fill(
            message,
            {
                "slug": first_slug,
                "collection": options.collection_label or "",
                "path": first_path,
                **author,
            },
        )
    elif commit_type in _MEDIA_COMMIT_TYPES:
        message = _fill(message, {"path": first_path, **author})
        if len(paths) > 1:
            message += f" +{len(paths) - 1}"
    elif commit_type == COMMIT_TYPE.openAuthoring:
        message = _fill(message, {"message": str(commit_type), **author})

    if skip_ci is None:
        skip_ci = cms_repo_sync_settings.skip_ci

    # Deletions always deploy so removed content does not linger on the site
    if commit_type not in _DELETION_COMMIT_TYPES and (options.skip_ci if options.skip_ci is not None else skip_ci):
        message = f"{SKIP_CI_PREFIX} {message}"

    return message
