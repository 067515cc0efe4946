"""Helpers for compact debug logging of deltas.

Deltas can carry whole subtrees of state. This module renders them into a
bounded, readable form before they are emitted in DEBUG logs.
"""

from __future__ import annotations

import itertools
from collections.abc import Mapping, Sequence
from typing import Any

from pylayers.delta import TOMBSTONE


def summarize_for_log(
    value: Any,
    *,
    max_string: int = 120,
    max_items: int = 20,
    _depth: int = 0,
) -> Any:
    """Return a bounded copy of *value* suitable for debug logs."""
    if _depth > 8:
        return "<max-depth>"

    if value is TOMBSTONE:
        return "<tombstone>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, bytes):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        summary: dict[str, Any] = {}
        for index, (key, item) in enumerate(value.items()):
            if index >= max_items:
                summary["…"] = f"<{len(value) - max_items} more keys>"
                break
            summary[str(key)] = summarize_for_log(
                item, max_string=max_string, max_items=max_items, _depth=_depth + 1
            )
        return summary

    if isinstance(value, Sequence):
        items = [
            summarize_for_log(item, max_string=max_string, max_items=max_items, _depth=_depth + 1)
            for item in itertools.islice(value, max_items)
        ]
        if len(value) > max_items:
            items.append(f"<{len(value) - max_items} more items>")
        return items

    return repr(value)
