"""Error types shared by the provider client and the synchronization engines.

Convention:
- ``ProviderError``: any transport or envelope failure talking to the
  translation management service. Never swallowed by the client itself.
- ``FilesError``: aggregate of per-item failures from a batch operation.
  Batches keep going past individual failures and return this alongside
  whatever succeeded.
- ``ArgumentError``: a single-shot operation was called without the
  identifiers it needs.
- ``EntityNotFoundError``: storage could not find the application record.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class ProviderError(Exception):
    """Raised for any failure reported by, or while talking to, the provider."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(code, message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProviderError):
            return NotImplemented
        return (self.code, self.message) == (other.code, other.message)

    def __hash__(self) -> int:
        return hash((self.code, self.message))


class FilesError(Exception):
    """Per-item failures collected from a batch, keyed by file id (or item key)."""

    def __init__(self, errors_by_file: dict[str, str]) -> None:
        super().__init__(errors_by_file)
        self.errors_by_file = dict(errors_by_file)

    def __str__(self) -> str:
        return f"Failed files: {self.errors_by_file}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FilesError):
            return NotImplemented
        return self.errors_by_file == other.errors_by_file

    def __hash__(self) -> int:
        return hash(tuple(sorted(self.errors_by_file.items())))

    def merge(self, other: FilesError | None) -> FilesError:
        """Return a new aggregate holding the failures of both."""
        if other is None:
            return FilesError(self.errors_by_file)
        return FilesError({**self.errors_by_file, **other.errors_by_file})


class ArgumentError(ValueError):
    """Raised when required identifiers are missing."""


class EntityNotFoundError(LookupError):
    """Raised by storage when an entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(f"Could not find {entity_type} {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id


@dataclass
class OperationResult:
    """Outcome of a batch-shaped operation.

    ``failure`` is ``None`` on full success; otherwise an exception, usually
    a ``FilesError`` naming the items that failed.
    """

    success: Any = None
    failure: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None
