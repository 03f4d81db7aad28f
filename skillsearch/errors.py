"""Exception hierarchy for skillsearch.

    SkillSearchError (base)
    ├── ConfigurationError
    ├── SyncTransportError
    ├── ParseError
    ├── IndexCorruption
    ├── NotFoundError
    └── StoreTransactionError
"""

from __future__ import annotations

from typing import Any


class SkillSearchError(Exception):
    """Base class for every error raised by skillsearch.

    Attributes:
        message: Human-readable message.
        details: Identifying context (registry id, slug, query, path).
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r})"


class ConfigurationError(SkillSearchError):
    """Registry configuration is invalid or cannot be loaded."""


class SyncTransportError(SkillSearchError):
    """Clone, fetch or revision resolution failed for a registry."""

    def __init__(self, registry_id: str, message: str, *, attempts: int = 1) -> None:
        super().__init__(
            f"{registry_id}: {message}",
            details={"registry": registry_id, "attempts": attempts},
        )
        self.registry_id = registry_id
        self.attempts = attempts


class ParseError(SkillSearchError):
    """A skill definition has a malformed header block."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}", details={"path": path})
        self.path = path
        self.reason = reason


class IndexCorruption(SkillSearchError):
    """The on-disk index is unreadable, incompatible or stale."""


class NotFoundError(SkillSearchError):
    """An unknown slug or registry was requested."""


class StoreTransactionError(SkillSearchError):
    """A store read or write failed; a failed write persisted nothing."""
