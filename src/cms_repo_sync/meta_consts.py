from __future__ import annotations

import re
from enum import auto

from strenum import StrEnum


class BACKEND_SERVICE(StrEnum):
    """The repository hosting services a backend exists for."""

    github = auto()
    gitlab = auto()
    gitea = auto()
    local = auto()


BACKEND_LABELS: dict[BACKEND_SERVICE, str] = {
    BACKEND_SERVICE.github: "GitHub",
    BACKEND_SERVICE.gitlab: "GitLab",
    BACKEND_SERVICE.gitea: "Gitea / Forgejo",
    BACKEND_SERVICE.local: "Local Repository",
}

DEFAULT_API_ROOTS: dict[BACKEND_SERVICE, str] = {
    BACKEND_SERVICE.github: "https://api.github.com",
    BACKEND_SERVICE.gitlab: "https://gitlab.com/api/v4",
    BACKEND_SERVICE.gitea: "https://gitea.com/api/v1",
}


class FILE_TYPE(StrEnum):
    """How a tracked file is handled by the CMS."""

    entry = auto()
    asset = auto()
    config = auto()


class COMMIT_ACTION(StrEnum):
    """Abstract change-set actions, translated per provider by the commit builders."""

    create = auto()
    update = auto()
    delete = auto()
    move = auto()


class COMMIT_TYPE(StrEnum):
    """Commit message template keys."""

    create = "create"
    update = "update"
    delete = "delete"
    uploadMedia = "uploadMedia"
    deleteMedia = "deleteMedia"
    openAuthoring = "openAuthoring"


class SYNC_STATE(StrEnum):
    """States of a sync run. FAILED is terminal."""

    INIT = "INIT"
    VERSION_CHECKED = "VERSION_CHECKED"
    ACCESS_CHECKED = "ACCESS_CHECKED"
    FILES_FETCHED = "FILES_FETCHED"
    FAILED = "FAILED"


DEFAULT_PAGE_SIZE = 30
"""Bulk content page size when the service does not report `default_paging_num`."""

GITHUB_CONTENTS_CHUNK_SIZE = 250
GITLAB_BLOBS_CHUNK_SIZE = 100
GITLAB_SELF_HOSTED_BLOBS_CHUNK_SIZE = 20

MIN_GITEA_VERSION = (1, 24)
"""The bulk `file-contents` endpoint first shipped in Gitea 1.24."""

MIN_FORGEJO_VERSION = (12, 0)
"""The bulk `git/blobs?shas=` endpoint first shipped in Forgejo 12."""

SKIP_CI_PREFIX = "[skip ci]"

GIT_CONFIG_FILE_REGEX = re.compile(r"^\.git(?:attributes|ignore|keep)$")
"""Git config files tracked alongside content; any other dot-file is ignored."""
