from __future__ import annotations


class ConfStoreError(Exception):
    """Base class for every error raised by confstore."""


class InputTypeError(ConfStoreError, TypeError):
    """
    A caller handed the store something it cannot persist: a value that is not
    JSON-compatible, a key of the wrong type, or an invalid option.
    """


class ReservedKeyError(InputTypeError):
    """A write touched the internal namespace used for migration bookkeeping."""


class DecodeError(ConfStoreError, ValueError):
    """Stored bytes could not be turned back into a document."""


class SchemaViolationError(ConfStoreError, ValueError):
    """
    The document failed schema validation.

    The message aggregates every violation; `violations` keeps them as
    (path, message) pairs.
    """

    def __init__(self, violations: list[tuple[str, str]]):
        self.violations = list(violations)
        details = "; ".join(f"`{path}` {message}" for path, message in self.violations)
        super().__init__(f"Config schema violation: {details}")


class MigrationError(ConfStoreError):
    """
    A migration (or its before-each hook) failed. The store has already been
    rolled back to the state after the last successful migration.
    """

    def __init__(self, version: str, cause: BaseException):
        self.version = version
        super().__init__(
            f"Something went wrong during the migration to {version}! Changes applied by "
            f"previous successful migrations were preserved; this one was rolled back. {cause}"
        )
