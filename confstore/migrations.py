"""
Versioned migrations.

A migration set maps a version descriptor to a procedure taking the store.
A descriptor is either an exact semantic version ("1.2.0", "2.0.0-beta.1")
or an npm-style range (">=1.0.0 <2.0.0", "^1.0.0", "~1.0.0"). The last
applied descriptor is recorded under the internal namespace; each run applies
the descriptors that lie between it and the target version, in ascending
version order.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Mapping

from semantic_version import Version

from .disk_store import MIGRATION_KEY
from .errors import ConfStoreError, MigrationError
from .options import BeforeEachMigrationContext
from .versions import is_range, lowest_mentioned, parse, range_spec, satisfies

if TYPE_CHECKING:
    from .store import ConfigStore

logger = logging.getLogger(__name__)

INITIAL_VERSION = "0.0.0"

Migration = Callable[["ConfigStore"], Any]
BeforeEachMigration = Callable[["ConfigStore", BeforeEachMigrationContext], Any]


def should_migrate(candidate: str, previous: str, target: str) -> bool:
    if is_range(candidate):
        range_spec(candidate)
        if previous != INITIAL_VERSION and satisfies(previous, candidate):
            return False
        return satisfies(target, candidate)

    version = parse(candidate)
    if not is_range(previous) and version <= parse(previous):
        return False
    if version > parse(target):
        return False
    return True


def sort_key(descriptor: str) -> tuple[Version, int]:
    """
    Exact versions sort by themselves. Ranges sort by the lowest version they
    mention, after an exact version equal to it.
    """
    if not is_range(descriptor):
        return (parse(descriptor), 0)
    return (lowest_mentioned(descriptor), 1)


class MigrationEngine:
    def __init__(
        self,
        store: "ConfigStore",
        migrations: Mapping[str, Migration],
        target_version: str,
        *,
        before_each: BeforeEachMigration | None = None,
    ):
        self._store = store
        self._migrations = dict(migrations)
        self._target = target_version
        self._before_each = before_each

    def select(self, previous: str) -> list[str]:
        candidates = [v for v in self._migrations if should_migrate(v, previous, self._target)]
        return sorted(candidates, key=sort_key)

    def run(self) -> list[str]:
        """
        Apply every selected migration. Returns the descriptors applied.

        On the first failure the store is rolled back to the snapshot taken
        after the last successful migration and MigrationError is raised.
        """
        store = self._store
        had_version = store._internal_has(MIGRATION_KEY)
        previous = store._internal_get(MIGRATION_KEY, INITIAL_VERSION)
        selected = self.select(previous)

        snapshot = store.store
        applied: list[str] = []
        for version in selected:
            try:
                if self._before_each is not None:
                    self._before_each(
                        store,
                        BeforeEachMigrationContext(
                            from_version=previous,
                            to_version=version,
                            final_version=self._target,
                            versions=list(selected),
                        ),
                    )
                self._migrations[version](store)
                store._internal_set(MIGRATION_KEY, version)
            except Exception as e:
                self._rollback(snapshot, version)
                raise MigrationError(version, e) from e

            logger.info("applied migration %s", version)
            previous = version
            snapshot = store.store
            applied.append(version)

        if (applied or had_version) and (is_range(previous) or parse(previous) != parse(self._target)):
            store._internal_set(MIGRATION_KEY, self._target)

        logger.info("migrations complete at %s (%d applied)", self._target, len(applied))
        return applied

    def _rollback(self, snapshot: dict[str, Any], failed_version: str) -> None:
        logger.warning("migration %s failed, rolling back", failed_version)
        try:
            self._store.store = snapshot
        except (OSError, ConfStoreError) as e:
            # The in-memory state is restored even if the disk write fails.
            logger.warning("could not persist rollback of migration %s: %r", failed_version, e)
