from __future__ import annotations

from .codec import Codec, decrypt, encrypt
from .errors import (
    ConfStoreError,
    DecodeError,
    InputTypeError,
    MigrationError,
    ReservedKeyError,
    SchemaViolationError,
)
from .options import BeforeEachMigrationContext, StoreOptions
from .store import ConfigStore

__all__ = [
    "ConfigStore",
    "StoreOptions",
    "BeforeEachMigrationContext",
    "Codec",
    "encrypt",
    "decrypt",
    "ConfStoreError",
    "InputTypeError",
    "ReservedKeyError",
    "DecodeError",
    "SchemaViolationError",
    "MigrationError",
]
