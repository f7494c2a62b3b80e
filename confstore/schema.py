from __future__ import annotations

import copy
from typing import Any, Mapping

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from .errors import InputTypeError, SchemaViolationError


def capture_defaults(schema: Mapping[str, Any] | None) -> dict[str, Any]:
    """Collect the `default` of every top-level property that declares one."""
    defaults: dict[str, Any] = {}
    for key, definition in (schema or {}).items():
        if isinstance(definition, Mapping) and "default" in definition:
            defaults[key] = copy.deepcopy(definition["default"])
    return defaults


class SchemaGate:
    """
    Validates whole documents against an object schema built from per-property
    schemas plus optional root keywords. With neither, every document passes.
    """

    def __init__(
        self,
        schema: Mapping[str, Any] | None = None,
        root_schema: Mapping[str, Any] | None = None,
    ):
        self._validator: Draft202012Validator | None = None
        self.defaults = capture_defaults(schema)
        if schema is None and root_schema is None:
            return

        full_schema = {**(root_schema or {}), "type": "object", "properties": dict(schema or {})}
        try:
            Draft202012Validator.check_schema(full_schema)
        except SchemaError as e:
            raise InputTypeError(f"Invalid schema: {e.message}") from e
        self._validator = Draft202012Validator(
            full_schema,
            format_checker=Draft202012Validator.FORMAT_CHECKER,
        )

    @property
    def enabled(self) -> bool:
        return self._validator is not None

    def violations(self, document: Any) -> list[tuple[str, str]]:
        if self._validator is None:
            return []
        found = [
            ("/".join(str(part) for part in error.absolute_path), error.message)
            for error in self._validator.iter_errors(document)
        ]
        return sorted(found)

    def validate(self, document: Any) -> None:
        found = self.violations(document)
        if found:
            raise SchemaViolationError(found)
