"""Collecting per-item failures from batch operations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from tms_sync.exceptions import FilesError, ProviderError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def safe_file_iteration(
    items: Iterable[T],
    action: Callable[[T], Awaitable[object]],
) -> FilesError | None:
    """Run ``action`` for every item, collecting provider failures instead of raising.

    Returns ``None`` when every item succeeded, otherwise a ``FilesError``
    mapping each failed item to its error message.
    """
    failed: dict[str, str] = {}
    for item in items:
        try:
            await action(item)
        except ProviderError as exc:
            logger.warning("Provider call failed for %s: %s", item, exc)
            failed[str(item)] = str(exc)
    return FilesError(failed) if failed else None

