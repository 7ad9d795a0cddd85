"""Unwrapping of ``{"data": ...}`` response envelopes."""

from __future__ import annotations

from typing import Any


def flatten_envelope(value: Any) -> Any:
    """Recursively replace every ``{"data": x}`` envelope with ``x``.

    A mapping is an envelope only when ``data`` is its single key; anything
    else is rebuilt with its values flattened. Lists are flattened item by
    item. Scalars are returned as-is.

    >>> flatten_envelope({"data": [{"data": {"id": 1}}]})
    [{'id': 1}]
    """
    if isinstance(value, dict):
        if len(value) == 1 and "data" in value:
            return flatten_envelope(value["data"])
        return {key: flatten_envelope(item) for key, item in value.items()}
    if isinstance(value, list):
        return [flatten_envelope(item) for item in value]
    return value
