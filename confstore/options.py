from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .values import ensure_json_value
from .versions import is_range

Migration = Callable[[Any], Any]


class BeforeEachMigrationContext(BaseModel):
    """Passed to the before-each-migration hook."""

    model_config = ConfigDict(frozen=True)

    from_version: str
    to_version: str
    final_version: str
    versions: list[str] = Field(default_factory=list)


class StoreOptions(BaseModel):
    """
    Constructor options for ConfigStore.

    `schema` maps each top-level key to its JSON Schema; `root_schema` adds
    keywords to the enclosing object schema (e.g. additionalProperties).
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    cwd: Path
    config_name: str = "config"
    file_extension: str = "json"

    defaults: dict[str, Any] | None = None
    schema_: dict[str, Any] | None = Field(default=None, alias="schema")
    root_schema: dict[str, Any] | None = None

    project_version: str | None = None
    migrations: dict[str, Migration] | None = None
    before_each_migration: Callable[[Any, BeforeEachMigrationContext], Any] | None = None

    encryption_key: str | bytes | None = None
    serialize: Callable[[dict[str, Any]], str] | None = None
    deserialize: Callable[[str], Any] | None = None

    clear_invalid_config: bool = True
    access_properties_by_dot_notation: bool = True

    watch: bool = False
    watch_mode: Literal["auto", "events", "poll"] = "auto"

    config_file_mode: int = 0o666
    write_timeout: float = Field(default=0, ge=0)

    @field_validator("file_extension")
    @classmethod
    def _strip_leading_dots(cls, v: str) -> str:
        return v.lstrip(".")

    @field_validator("defaults")
    @classmethod
    def _defaults_are_json(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        if v is not None:
            for key, value in v.items():
                ensure_json_value(key, value)
        return v

    @model_validator(mode="after")
    def _migrations_need_version(self) -> "StoreOptions":
        if self.migrations is not None and not self.project_version:
            raise ValueError("Please specify the `project_version` option.")
        if self.project_version and is_range(self.project_version):
            raise ValueError(f"`project_version` is not a valid semantic version: {self.project_version}")
        return self

    @property
    def path(self) -> Path:
        suffix = f".{self.file_extension}" if self.file_extension else ""
        return self.cwd.resolve() / f"{self.config_name}{suffix}"
