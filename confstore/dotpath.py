from __future__ import annotations

from typing import Any

_MISSING = object()


def split_path(path: str) -> list[str]:
    """Split `a.b\\.c` into ["a", "b.c"]. A backslash escapes the next dot."""
    parts: list[str] = []
    current = ""
    i = 0
    while i < len(path):
        ch = path[i]
        if ch == "\\" and i + 1 < len(path) and path[i + 1] == ".":
            current += "."
            i += 2
            continue
        if ch == ".":
            parts.append(current)
            current = ""
        else:
            current += ch
        i += 1
    parts.append(current)
    return parts


def get_path(document: dict[str, Any], path: str, default: Any = None) -> Any:
    node: Any = document
    for part in split_path(path):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def has_path(document: dict[str, Any], path: str) -> bool:
    return get_path(document, path, _MISSING) is not _MISSING


def set_path(document: dict[str, Any], path: str, value: Any) -> None:
    # Intermediate non-object values are replaced by objects.
    parts = split_path(path)
    node = document
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def delete_path(document: dict[str, Any], path: str) -> bool:
    parts = split_path(path)
    node: Any = document
    for part in parts[:-1]:
        if not isinstance(node, dict) or not isinstance(node.get(part), dict):
            return False
        node = node[part]
    if isinstance(node, dict) and parts[-1] in node:
        del node[parts[-1]]
        return True
    return False
