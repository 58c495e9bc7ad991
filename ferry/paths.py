"""Dotted property paths into nested mappings.

A path such as ``"result.items"`` steps into ``data["result"]["items"]``.
A literal dot inside a key is written ``\\.``, so ``"a\\.b"`` addresses
the single key ``"a.b"``. The path ``"."`` addresses the root itself.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, MutableMapping, Sequence

from ferry.errors import ConfigurationError

ROOT_PATH = "."

_UNESCAPED_DOT = re.compile(r"(?<!\\)\.")

# Returned by find_property_value when a path does not resolve.
MISSING = object()


def parse_path_string(path: str) -> list[str]:
    """Split a dotted path into keys, unescaping ``\\.`` to ``.``.

    Returns an empty list for the root path.

    Raises:
        ConfigurationError: Path is empty or contains an empty segment.
    """
    if path == ROOT_PATH:
        return []
    if not path:
        raise ConfigurationError(["property path must not be empty"])

    segments = [s.replace("\\.", ".") for s in _UNESCAPED_DOT.split(path)]
    if any(s == "" for s in segments):
        raise ConfigurationError([f"malformed property path: {path!r}"])
    return segments


def find_property_value(data: Any, segments: Sequence[str]) -> Any:
    """Walk segments into data. Returns MISSING if any step is absent."""
    value = data
    for key in segments:
        if not isinstance(value, Mapping) or key not in value:
            return MISSING
        value = value[key]
    return value


def delete_property(data: MutableMapping, segments: Sequence[str]) -> bool:
    """Remove the value at segments from its parent mapping.

    Returns True if something was removed.
    """
    if not segments:
        return False
    parent = find_property_value(data, segments[:-1])
    if not isinstance(parent, MutableMapping) or segments[-1] not in parent:
        return False
    del parent[segments[-1]]
    return True
