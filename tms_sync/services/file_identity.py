"""Mapping between application entities and provider file names."""

from __future__ import annotations

from dataclasses import dataclass

FILE_EXTENSION = ".json"
_SEPARATOR = "-"


@dataclass(frozen=True)
class EntityRef:
    """Identifies one application record: its qualified type name and id."""

    entity_type: str
    entity_id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "entity_id", str(self.entity_id))
        _validate(self.entity_type, self.entity_id)

    def __str__(self) -> str:
        return f"{self.entity_type} {self.entity_id}"


def _validate(entity_type: str, entity_id: str) -> None:
    if not entity_type or _SEPARATOR in entity_type or "/" in entity_type:
        msg = f"Invalid entity type for a file name: {entity_type!r}"
        raise ValueError(msg)
    if not entity_id or "/" in entity_id:
        msg = f"Invalid entity id for a file name: {entity_id!r}"
        raise ValueError(msg)


def file_base_name(entity_type: str, entity_id: str | int) -> str:
    """Name of an entity's file without extension, e.g. ``blog.Post-1``.

    The type may not contain ``-``, so the first ``-`` always separates
    type from id and no two entities share a name.
    """
    entity_id = str(entity_id)
    _validate(entity_type, entity_id)
    return f"{entity_type}{_SEPARATOR}{entity_id}"


def file_name(entity_type: str, entity_id: str | int) -> str:
    """Full file name of an entity, e.g. ``blog.Post-1.json``."""
    return file_base_name(entity_type, entity_id) + FILE_EXTENSION


def parse_file_name(name: str) -> EntityRef:
    """Inverse of ``file_name`` (the extension is optional)."""
    base = name.removesuffix(FILE_EXTENSION)
    entity_type, sep, entity_id = base.partition(_SEPARATOR)
    if not sep:
        msg = f"Not an entity file name: {name!r}"
        raise ValueError(msg)
    return EntityRef(entity_type, entity_id)
