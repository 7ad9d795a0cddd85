"""Sentence splitting for upload and rejoining for download.

Long attributes are uploaded as lists of sentences so identical sentences in
different records are stored (and paid for) once on the provider side. The
split is deliberately crude: it breaks after ``.``, ``?`` or ``!`` followed by
a space and never on a newline.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_SENTENCE_END_RE = re.compile(r"(?<=[.?!] )")


def split_sentences(text: str) -> list[str]:
    """Split text after sentence-ending punctuation followed by a space.

    The punctuation stays with its sentence and one trailing space is dropped.
    """
    fragments = [fragment for fragment in _SENTENCE_END_RE.split(text) if fragment]
    return [fragment.removesuffix(" ") for fragment in fragments]


def join_sentences(fragments: list[str]) -> str:
    """Join sentence fragments with single spaces."""
    return " ".join(fragments)


def split_attributes(
    values: Mapping[str, str | None], split: Mapping[str, bool]
) -> dict[str, str | list[str] | None]:
    """Split the values whose attribute is marked for splitting; pass others through."""
    result: dict[str, str | list[str] | None] = {}
    for attribute, value in values.items():
        if value is not None and split.get(attribute, False):
            result[attribute] = split_sentences(value)
        else:
            result[attribute] = value
    return result


def join_attributes(values: Mapping[str, Any]) -> dict[str, Any]:
    """Rejoin every list value into a single string."""
    return {
        attribute: join_sentences([str(v) for v in value]) if isinstance(value, list) else value
        for attribute, value in values.items()
    }
