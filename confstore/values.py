from __future__ import annotations

import copy
import math
from typing import Any

from .errors import InputTypeError

_SCALARS = (str, int, float, bool, type(None))


def ensure_json_value(key: str, value: Any) -> None:
    """
    Reject anything that would not survive a JSON round-trip unchanged.

    Checked at the mutation boundary so a bad value never reaches the cache.
    """
    if isinstance(value, float) and not math.isfinite(value):
        raise InputTypeError(
            f"Setting `{value}` for key `{key}` is not allowed as JSON has no representation for it"
        )
    if isinstance(value, _SCALARS):
        return
    if isinstance(value, list):
        for item in value:
            ensure_json_value(key, item)
        return
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise InputTypeError(
                    f"Object keys must be strings, got `{type(k).__name__}` under key `{key}`"
                )
            ensure_json_value(key, v)
        return
    raise InputTypeError(
        f"Setting a value of type `{type(value).__name__}` for key `{key}` is not allowed "
        "as it's not supported by JSON"
    )


def clone(value: Any) -> Any:
    return copy.deepcopy(value)


def strict_equal(a: Any, b: Any) -> bool:
    """Deep equality that, unlike ==, tells 1, 1.0 and True apart."""
    if type(a) is not type(b):
        return False
    if isinstance(a, dict):
        return a.keys() == b.keys() and all(strict_equal(a[k], b[k]) for k in a)
    if isinstance(a, list):
        return len(a) == len(b) and all(strict_equal(x, y) for x, y in zip(a, b))
    return a == b
