"""Base protocol and data classes for translation management providers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass
class FileMeta:
    """A source file stored on the provider."""

    id: str
    name: str
    directory_id: str | None = None
    updated_at: str | None = None


@dataclass
class ApprovalInfo:
    """Per-file, per-locale translation and approval progress (0-100)."""

    language_id: str
    approval_progress: int
    translation_progress: int = 0
    file_id: str | None = None

    @property
    def fully_approved(self) -> bool:
        return self.approval_progress >= 100


@dataclass
class SourceString:
    """A single source string with the key path it was uploaded under."""

    id: str
    text: str
    context: str


@runtime_checkable
class TranslationProvider(Protocol):
    """Narrow interface the synchronization engines need from a provider.

    Every method raises ``ProviderError`` on failure.
    """

    def clear_cache(self) -> None:
        """Forget any file listing cached for the current operation."""
        ...

    async def list_files(self) -> list[FileMeta]:
        """List every source file in the project."""
        ...

    async def file_approval_status(
        self, file_id: str, locale: str | None = None
    ) -> ApprovalInfo | list[ApprovalInfo] | None:
        """Progress for one locale, or for all locales when none is given."""
        ...

    async def language_status(self, locale: str) -> list[ApprovalInfo]:
        """Progress of every file in one locale."""
        ...

    async def export_translated_content(self, file_id: str, locale: str) -> dict[str, Any]:
        """Translated content of a file in a locale."""
        ...

    async def download_source_content(self, file_id: str) -> dict[str, Any]:
        """Source content of a file as last uploaded."""
        ...

    async def create_file(
        self, name: str, content: str, directory_id: str | None = None
    ) -> FileMeta:
        """Create a file, optionally inside a directory."""
        ...

    async def update_file(self, file_id: str, content: str) -> FileMeta:
        """Replace a file's content, keeping existing translations and approvals."""
        ...

    async def delete_file(self, file_id: str) -> None:
        """Delete a file."""
        ...

    async def find_file_by_base_name(self, base_name: str) -> str | None:
        """Id of the file whose name without extension is ``base_name``."""
        ...

    async def find_directory_by_name(
        self, name: str, parent_id: str | None = None
    ) -> str | None:
        """Id of the directory called ``name`` under ``parent_id``."""
        ...

    async def create_directory(self, name: str, parent_id: str | None = None) -> str:
        """Create a directory and return its id."""
        ...

    async def source_string(self, source_string_id: str) -> SourceString:
        """Fetch one source string."""
        ...

    async def translation_text(self, translation_id: str) -> str:
        """Fetch the text of one translation."""
        ...
