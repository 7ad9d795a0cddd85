"""Revision snapshots of an entity's uploaded attributes.

Remote content is shaped ``{type: {id: payload}}``. For entities that track a
modification time the payload maps revision keys (unix seconds as strings)
to attribute maps; otherwise the payload is the attribute map itself.
Attribute values are strings or lists of sentences, never mappings, so a
mapping value marks a revision snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from tms_sync.services.sentence_service import join_attributes

logger = logging.getLogger(__name__)


def has_revisions(payload: Mapping[str, Any]) -> bool:
    """Return True when the payload holds revision snapshots."""
    return any(isinstance(value, Mapping) for value in payload.values())


def revision_keys(payload: Mapping[str, Any]) -> list[int]:
    """Integer revision keys present in a payload, ascending."""
    keys: list[int] = []
    for key, value in payload.items():
        if not isinstance(value, Mapping):
            continue
        try:
            keys.append(int(key))
        except ValueError:
            logger.warning("Ignoring snapshot with non-numeric revision key %r", key)
    return sorted(keys)


def wrap_snapshot(revision: int | None, values: Mapping[str, Any]) -> dict[str, Any]:
    """Nest attribute values under their revision key when there is one."""
    if revision is None:
        return dict(values)
    return {str(revision): dict(values)}


def resolve_revisions(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Collapse a payload to one value per attribute, latest revision winning.

    Snapshots are applied in ascending revision order, each attribute taken
    independently, so an attribute missing from a newer snapshot keeps its
    older value. Sentence lists are joined back into strings.
    """
    if not has_revisions(payload):
        return join_attributes(payload)

    snapshots: list[tuple[int, Mapping[str, Any]]] = []
    for key, value in payload.items():
        if not isinstance(value, Mapping):
            logger.warning("Ignoring attribute %r outside any revision snapshot", key)
            continue
        try:
            snapshots.append((int(key), value))
        except ValueError:
            logger.warning("Ignoring snapshot with non-numeric revision key %r", key)

    resolved: dict[str, Any] = {}
    # sorted() is stable: equal revisions keep document order, so the last one wins
    for _, snapshot in sorted(snapshots, key=lambda item: item[0]):
        resolved.update(snapshot)
    return join_attributes(resolved)
