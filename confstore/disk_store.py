from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from .codec import Codec
from .errors import DecodeError, SchemaViolationError
from .interfaces import DocumentStore
from .json_store import commit_bytes, ensure_dir, read_bytes
from .locks import FLUSH_LOCKS
from .schema import SchemaGate
from .settings import get_settings
from .values import clone

logger = logging.getLogger(__name__)

INTERNAL_KEY = "__internal__"
MIGRATION_KEY = f"{INTERNAL_KEY}.migrations.version"


class DiskDocumentStore(DocumentStore):
    """
    Stores a single document on disk at a fixed path, fronted by an in-memory
    cache owned by this instance alone.

    - A missing file reads as an empty document.
    - Undecodable or schema-invalid files either read as empty (when
      `clear_invalid` is set) or raise.
    - Writes update the cache immediately. With a coalescing window, writes
      arriving while the window is open are folded into a single flush when
      it closes.
    - Flushes are atomic (temp file + replace) unless the process-wide
      override says otherwise.
    """

    def __init__(
        self,
        path: Path,
        *,
        codec: Codec | None = None,
        schema: SchemaGate | None = None,
        clear_invalid: bool = True,
        file_mode: int = 0o666,
        write_timeout: float = 0,
    ):
        self._path = path
        self._codec = codec or Codec()
        self._schema = schema or SchemaGate()
        self._clear_invalid = clear_invalid
        self._file_mode = file_mode
        self._write_timeout = write_timeout
        self._atomic = not get_settings().force_non_atomic_write

        self._lock = threading.RLock()
        self._cache: dict[str, Any] | None = None
        self._write_pending = False
        self._write_timer: threading.Timer | None = None

        # Set by the migration engine; suppresses validation on read and commit.
        self.migrating = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def write_pending(self) -> bool:
        return self._write_pending

    def ensure_directory(self) -> None:
        # The directory may have been removed since the last write.
        ensure_dir(self._path.parent)

    def read(self) -> dict[str, Any]:
        with self._lock:
            if self._cache is None:
                self._load()
            return clone(self._cache)

    def _load(self) -> None:
        try:
            raw = read_bytes(self._path)
        except FileNotFoundError:
            logger.debug("no config file at %s, starting empty", self._path)
            self.ensure_directory()
            self._cache = {}
            return

        try:
            document = self._codec.decode(raw)
            self.validate(document)
        except (DecodeError, SchemaViolationError) as e:
            if not self._clear_invalid:
                raise
            logger.warning("config file %s is invalid, resetting it: %s", self._path, e)
            self._cache = {}
            return

        self._cache = document

    def read_persisted(self) -> dict[str, Any]:
        """Decode the file as it is on disk, bypassing the cache and validation."""
        return self._codec.decode(read_bytes(self._path))

    def clear_cache(self) -> None:
        """Drop the cache and re-read the file, unless a coalesced write is pending."""
        with self._lock:
            if self._write_pending:
                return
            previous = self._cache
            self._cache = None
            try:
                self._load()
            except (DecodeError, SchemaViolationError):
                self._cache = previous
                raise

    def validate(self, doc: dict[str, Any]) -> None:
        # Bookkeeping under the internal namespace is not user data.
        if not self.migrating:
            self._schema.validate({k: v for k, v in doc.items() if k != INTERNAL_KEY})

    def commit(self, doc: dict[str, Any]) -> None:
        """
        Replace the whole document.

        When `doc` does not carry the internal namespace, the one currently on
        disk is carried over so that bulk overwrites keep migration bookkeeping.
        """
        with self._lock:
            self.ensure_directory()
            if INTERNAL_KEY not in doc:
                try:
                    current = self.read_persisted()
                except (OSError, DecodeError) as e:
                    logger.debug("no internal data to preserve from %s: %r", self._path, e)
                else:
                    if INTERNAL_KEY in current:
                        doc = {**doc, INTERNAL_KEY: current[INTERNAL_KEY]}
            self.validate(doc)
            self.write(doc)

    def write(self, doc: dict[str, Any]) -> None:
        with self._lock:
            self._cache = clone(doc)
            if self._write_timer is not None:
                self._write_pending = True
                logger.debug("write to %s coalesced", self._path)
                return
            self.flush()
            self._start_write_timer()

    def flush(self) -> None:
        with self._lock:
            self._cancel_write_timer()
            if self._cache is None:
                return
            data = self._codec.encode(self._cache)
            self.ensure_directory()
            with FLUSH_LOCKS.holding(self._path):
                commit_bytes(self._path, data, mode=self._file_mode, atomic=self._atomic)
            logger.debug("flushed %d bytes to %s", len(data), self._path)

    def close(self) -> None:
        with self._lock:
            if self._write_pending:
                self.flush()
            self._cancel_write_timer()

    def _start_write_timer(self) -> None:
        self._cancel_write_timer()
        if self._write_timeout > 0:
            timer = threading.Timer(self._write_timeout, self._on_write_timer)
            timer.daemon = True
            self._write_timer = timer
            timer.start()

    def _cancel_write_timer(self) -> None:
        if self._write_timer is not None:
            self._write_timer.cancel()
            self._write_timer = None
            self._write_pending = False

    def _on_write_timer(self) -> None:
        with self._lock:
            # A timer cancelled while waiting for the lock must not touch its successor.
            if threading.current_thread() is not self._write_timer:
                return
            self._write_timer = None
            if self._write_pending:
                self._write_pending = False
                try:
                    self.flush()
                except OSError:
                    logger.exception("coalesced write to %s failed", self._path)
