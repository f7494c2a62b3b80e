from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Any, Callable, TypeVar

from pydantic import ValidationError

from .codec import Codec
from .disk_store import INTERNAL_KEY, DiskDocumentStore
from .dotpath import delete_path, get_path, has_path, set_path
from .errors import DecodeError, InputTypeError, ReservedKeyError, SchemaViolationError
from .migrations import MigrationEngine
from .notifier import ChangeNotifier, FileWatcher, Unsubscribe
from .options import StoreOptions
from .schema import SchemaGate
from .values import clone, ensure_json_value, strict_equal

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NOT_SET: Any = object()


def _is_reserved_key(key: str) -> bool:
    return key == INTERNAL_KEY or key.startswith(f"{INTERNAL_KEY}.")


def _contains_reserved_key(value: Any) -> bool:
    if isinstance(value, Mapping):
        return any(
            (isinstance(k, str) and _is_reserved_key(k)) or _contains_reserved_key(v)
            for k, v in value.items()
        )
    if isinstance(value, list):
        return any(_contains_reserved_key(item) for item in value)
    return False


def _reserved_key_error() -> ReservedKeyError:
    return ReservedKeyError(
        f"Please don't use the {INTERNAL_KEY} key, as it's used to manage this module internal operations."
    )


def _check_key(key: Any) -> None:
    if not isinstance(key, str):
        raise InputTypeError(f"Expected `key` to be of type `str`, got {type(key).__name__}")


class ConfigStore:
    """
    A persistent key/value configuration store backed by a single file.

        store = ConfigStore(cwd="/path/to/dir", defaults={"theme": "dark"})
        store.set("window.width", 800)
        store.get("window")          # {"width": 800}

    Keys use dot notation for nested access unless
    `access_properties_by_dot_notation=False`. Every mutation rewrites the
    whole document (subject to the `write_timeout` coalescing window) and
    signals change listeners.
    """

    def __init__(self, options: StoreOptions | None = None, **kwargs: Any):
        if options is None:
            try:
                options = StoreOptions.model_validate(kwargs)
            except ValidationError as e:
                raise InputTypeError(str(e)) from e
        elif kwargs:
            raise InputTypeError("Pass either a StoreOptions instance or keyword options, not both")

        self._options = options
        self._dot = options.access_properties_by_dot_notation
        self._schema = SchemaGate(options.schema_, options.root_schema)
        # Caller defaults win over schema defaults.
        self._defaults: dict[str, Any] = {**self._schema.defaults, **clone(options.defaults or {})}

        self.path = options.path
        self._disk = DiskDocumentStore(
            self.path,
            codec=Codec(
                serialize=options.serialize,
                deserialize=options.deserialize,
                encryption_key=options.encryption_key,
            ),
            schema=self._schema,
            clear_invalid=options.clear_invalid_config,
            file_mode=options.config_file_mode,
            write_timeout=options.write_timeout,
        )
        self._lock = self._disk.lock
        self._notifier = ChangeNotifier()
        self._watcher: FileWatcher | None = None
        self._batch_depth = 0
        self.ignore_change_events = False

        self._initialize()
        if options.watch:
            self._watch()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def _with_defaults(self, document: dict[str, Any]) -> dict[str, Any]:
        return {**clone(self._defaults), **document}

    def _initialize(self) -> None:
        if self._options.migrations is not None:
            self._run_migrations()
            self._disk.validate(self.store)
            return

        file_store = self.store
        with_defaults = self._with_defaults(file_store)
        self._disk.validate(with_defaults)
        if not strict_equal(file_store, with_defaults):
            self.store = with_defaults

    def _run_migrations(self) -> None:
        options = self._options
        self._disk.migrating = True
        try:
            file_store = self.store
            with_defaults = self._with_defaults(file_store)
            if not strict_equal(file_store, with_defaults):
                self._disk.write(with_defaults)

            engine = MigrationEngine(
                self,
                options.migrations,
                options.project_version,
                before_each=options.before_each_migration,
            )
            engine.run()
        finally:
            self._disk.migrating = False

    # ------------------------------------------------------------------
    # Whole document
    # ------------------------------------------------------------------

    @property
    def store(self) -> dict[str, Any]:
        """An independent copy of the whole document."""
        return self._disk.read()

    @store.setter
    def store(self, value: Mapping[str, Any]) -> None:
        if not isinstance(value, Mapping):
            raise InputTypeError(f"Expected the store to be an object, got {type(value).__name__}")
        document = dict(value)
        for key, item in document.items():
            _check_key(key)
            ensure_json_value(key, item)
        with self._lock:
            self._disk.commit(document)
            self._emit()

    @property
    def size(self) -> int:
        return sum(1 for key in self.store if not _is_reserved_key(key))

    def __len__(self) -> int:
        return self.size

    def __iter__(self) -> Iterator[tuple[str, Any]]:
        """Yield (key, value) pairs, leaving out the internal namespace."""
        for key, value in self.store.items():
            if not _is_reserved_key(key):
                yield key, value

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        _check_key(key)
        document = self.store
        if self._dot:
            return get_path(document, key, default)
        return document.get(key, default)

    def has(self, key: str) -> bool:
        _check_key(key)
        document = self.store
        if self._dot:
            return has_path(document, key)
        return key in document

    def set(self, key: str | Mapping[str, Any], value: Any = _NOT_SET) -> None:
        """
        Set one item, or several when `key` is a mapping.

        Values must be JSON-compatible. `None` is stored as null; use
        `delete()` to remove an item.
        """
        if isinstance(key, Mapping):
            if value is not _NOT_SET:
                raise InputTypeError("Pass either a mapping of items or a key and a value, not both")
            self.set_many(key)
            return
        _check_key(key)
        if value is _NOT_SET:
            raise InputTypeError("Use `delete()` to clear values")
        self.set_many({key: value})

    def set_many(self, items: Mapping[str, Any]) -> None:
        if not isinstance(items, Mapping):
            raise InputTypeError(f"Expected a mapping of items, got {type(items).__name__}")
        if _contains_reserved_key(items):
            raise _reserved_key_error()
        with self._lock:
            document = self.store
            for key, value in items.items():
                _check_key(key)
                ensure_json_value(key, value)
                self._assign(document, key, clone(value))
            self.store = document

    def _assign(self, document: dict[str, Any], key: str, value: Any) -> None:
        if self._dot:
            set_path(document, key, value)
        else:
            document[key] = value

    def delete(self, key: str) -> None:
        _check_key(key)
        if _is_reserved_key(key):
            raise _reserved_key_error()
        with self._lock:
            document = self.store
            if self._dot:
                delete_path(document, key)
            else:
                document.pop(key, None)
            self.store = document

    def append_to_array(self, key: str, value: Any) -> None:
        """Append `value` to the list at `key`, creating the list if needed."""
        ensure_json_value(key, value)
        with self._lock:
            current = self.get(key, [])
            if not isinstance(current, list):
                raise InputTypeError(f"The key `{key}` is already set to a non-array value")
            self.set(key, [*current, value])

    def mutate(self, key: str, mutation: Callable[[Any], T]) -> T:
        """Replace the item at `key` with `mutation(current)` and return it."""
        if not callable(mutation):
            raise InputTypeError(
                f"Expected type of mutation to be of type `function`, is {type(mutation).__name__}"
            )
        with self._lock:
            new_value = mutation(self.get(key))
            self.set(key, new_value)
            return new_value

    def merge(self, key: str, value: Mapping[str, Any]) -> None:
        """Shallow-merge `value` into the object stored at `key`."""
        with self._lock:
            current = self.get(key)
            if not isinstance(current, dict):
                raise InputTypeError(f"Cannot merge into non-object value at key `{key}`")
            if not isinstance(value, Mapping):
                raise InputTypeError(f"Cannot merge non-object value into key `{key}`")
            self.set(key, {**current, **value})

    def reset(self, *keys: str) -> None:
        """Reset the given items to their declared defaults. Keys without one are left alone."""
        for key in keys:
            if key in self._defaults:
                self.set(key, self._defaults[key])

    def clear(self) -> None:
        """Delete every item, then restore the declared defaults."""
        document: dict[str, Any] = {}
        for key, value in self._defaults.items():
            self._assign(document, key, clone(value))
        self.store = document

    # ------------------------------------------------------------------
    # Internal namespace (migration bookkeeping)
    # ------------------------------------------------------------------

    def _internal_get(self, path: str, default: Any = None) -> Any:
        return get_path(self.store, path, default)

    def _internal_has(self, path: str) -> bool:
        return has_path(self.store, path)

    def _internal_set(self, path: str, value: Any) -> None:
        with self._lock:
            document = self.store
            set_path(document, path, value)
            self.store = document

    # ------------------------------------------------------------------
    # Change events
    # ------------------------------------------------------------------

    def _emit(self) -> None:
        if not self.ignore_change_events and self._batch_depth == 0:
            self._notifier.emit()

    def on_did_change(self, key: str, callback: Callable[[Any, Any], None]) -> Unsubscribe:
        """
        Call `callback(new_value, old_value)` whenever the item at `key` changes.
        A missing item is reported as None. Returns a function that unsubscribes.
        """
        _check_key(key)
        if not callable(callback):
            raise InputTypeError(f"Expected `callback` to be callable, got {type(callback).__name__}")
        return self._notifier.watch_value(lambda: self.get(key), callback)

    def on_did_any_change(self, callback: Callable[[dict[str, Any], dict[str, Any]], None]) -> Unsubscribe:
        if not callable(callback):
            raise InputTypeError(f"Expected `callback` to be callable, got {type(callback).__name__}")
        return self._notifier.watch_value(lambda: self.store, callback)

    def run_without_change_events(self, handler: Callable[[], T]) -> T:
        """Run `handler` with change events held back, then signal once."""
        self._batch_depth += 1
        try:
            return handler()
        finally:
            self._batch_depth -= 1
            self._emit()

    def _watch(self) -> None:
        self._disk.ensure_directory()
        if not self.path.exists():
            self._disk.write(self.store)
        self._watcher = FileWatcher(self.path, self._on_external_change, mode=self._options.watch_mode)
        self._watcher.start()

    def _on_external_change(self) -> None:
        with self._lock:
            try:
                self.clear_cache()
            except (DecodeError, SchemaViolationError) as e:
                logger.warning("ignoring invalid external change to %s: %s", self.path, e)
                return
            self._emit()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self._disk.clear_cache()

    def flush(self) -> None:
        """Write any coalesced change to disk now."""
        self._disk.flush()

    def close(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        self._disk.close()

    def __enter__(self) -> "ConfigStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
