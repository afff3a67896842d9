"""Exception types raised by the synchronization engine.

UI layers show `str(error)` as a generic headline and `error.detail` as the localized explanation.
"""

from __future__ import annotations


class RepositoryError(Exception):
    """An error with a generic message and an optional, human-readable cause."""

    def __init__(self, message: str, *, cause: BaseException | str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause: BaseException | None = Exception(cause) if isinstance(cause, str) else cause
        self.__cause__ = self.cause

    @property
    def detail(self) -> str | None:
        """The cause's message, if any."""
        return str(self.cause) if self.cause is not None else None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, cause={self.detail!r})"


class NotFoundError(RepositoryError):
    """A referenced repository, branch or commit does not exist."""


class RepositoryAccessError(RepositoryError):
    """The signed-in user cannot read the repository."""


class UnsupportedVersionError(RepositoryError):
    """The remote service is too old to provide the endpoints the engine relies on."""


class UnsupportedBackendError(ValueError):
    """The configured service has no backend implementation."""


class PickerAbortedError(Exception):
    """The user dismissed the local directory picker."""
