"""
Semantic-version helpers for migration descriptors.

A descriptor is either an exact semver version ("1.2.0", "2.0.0-beta.3",
"v1.0.0+build.7") or an npm-style range (">=1.0.0 <2.0.0", "^1.4.0",
"~1.0.0", "1.0.x", "1.0"). Anything that does not clean to an exact version
is treated as a range. Build metadata never affects ordering.
"""

from __future__ import annotations

import re

from semantic_version import NpmSpec, Version

from .errors import InputTypeError

_LEADING_NOISE = re.compile(r"^[=v]+")
_VERSION_TOKEN = re.compile(r"\d+(?:\.\d+){0,2}(?:-[0-9A-Za-z.-]+)?")


def clean(text: str) -> Version | None:
    """Parse an exact version, tolerating whitespace and a leading `=` or `v`."""
    try:
        version = Version(_LEADING_NOISE.sub("", text.strip()))
    except ValueError:
        return None
    return version.truncate("prerelease")


def is_range(descriptor: str) -> bool:
    return clean(descriptor) is None


def parse(text: str) -> Version:
    version = clean(text)
    if version is None:
        raise InputTypeError(f"`{text}` is not a valid semantic version")
    return version


def range_spec(descriptor: str) -> NpmSpec:
    try:
        return NpmSpec(descriptor)
    except ValueError as e:
        raise InputTypeError(f"Invalid migration version or range: `{descriptor}`") from e


def satisfies(version: str, descriptor: str) -> bool:
    parsed = clean(version)
    if parsed is None:
        return False
    return parsed in range_spec(descriptor)


def lowest_mentioned(descriptor: str) -> Version:
    """The lowest version written in a range, with missing parts read as 0."""
    bounds = [Version.coerce(token) for token in _VERSION_TOKEN.findall(descriptor)]
    return min(bounds, default=Version("0.0.0"))
