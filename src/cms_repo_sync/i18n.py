"""Localized messages used as the human-readable cause of repository errors."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from loguru import logger

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "repository_no_access": "You don’t have access to the “{repo}” repository.",
        "repository_not_found": "The “{repo}” repository doesn’t exist.",
        "repository_empty": "The “{repo}” repository has no branches.",
        "branch_not_found": "The “{repo}” repository doesn’t have the “{branch}” branch.",
        "backend_unsupported_version": "{name} version {version} or later is required.",
        "directory_not_repository": "The selected folder “{name}” is not a Git repository root.",
    },
}

current_locale = "en"


def translate(key: str, values: Mapping[str, Any] | None = None, *, locale: str | None = None) -> str:
    """Look up `key` in the message catalog and fill in its placeholders.

    Unknown keys fall back to English, then to the key itself.
    """
    catalog = MESSAGES.get(locale or current_locale, MESSAGES["en"])
    template = catalog.get(key) or MESSAGES["en"].get(key)

    if template is None:
        logger.warning(f"Missing translation for {key!r}")
        return key

    try:
        return template.format(**(values or {}))
    except KeyError as e:
        logger.warning(f"Missing value {e} for translation {key!r}")
        return template
