from __future__ import annotations

import errno
import json
import os
import sys
from pathlib import Path

import pytest

import confstore.json_store as json_store
from confstore.codec import Codec
from confstore.disk_store import DiskDocumentStore
from confstore.errors import DecodeError, SchemaViolationError
from confstore.schema import SchemaGate
from conftest import wait_for


def _on_disk(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


def test_missing_file_reads_empty_and_creates_directory(store_dir: Path):
    store = DiskDocumentStore(store_dir / "config.json")

    assert store.read() == {}
    assert store_dir.is_dir()
    assert not (store_dir / "config.json").exists()


def test_read_returns_independent_copies(store_dir: Path):
    store = DiskDocumentStore(store_dir / "config.json")
    store.write({"a": {"b": [1]}})

    first = store.read()
    first["a"]["b"].append(2)

    assert store.read() == {"a": {"b": [1]}}


def test_write_flushes_readable_json(store_dir: Path):
    path = store_dir / "config.json"
    store = DiskDocumentStore(path)
    store.write({"b": 2, "a": 1})

    assert _on_disk(path) == {"a": 1, "b": 2}
    assert list(store_dir.glob("*.tmp")) == []


def test_write_keeps_its_own_copy(store_dir: Path):
    store = DiskDocumentStore(store_dir / "config.json")
    doc = {"list": [1]}
    store.write(doc)
    doc["list"].append(2)

    assert store.read() == {"list": [1]}


def test_corrupt_file_resets_when_tolerated(store_dir: Path):
    store_dir.mkdir()
    path = store_dir / "config.json"
    path.write_text("{oops", encoding="utf-8")

    assert DiskDocumentStore(path, clear_invalid=True).read() == {}

    with pytest.raises(DecodeError):
        DiskDocumentStore(path, clear_invalid=False).read()


def test_schema_invalid_file_is_raised_or_reset(store_dir: Path):
    store_dir.mkdir()
    path = store_dir / "config.json"
    path.write_text(json.dumps({"foo": "not a number"}), encoding="utf-8")
    schema = SchemaGate({"foo": {"type": "number"}})

    with pytest.raises(SchemaViolationError):
        DiskDocumentStore(path, schema=schema, clear_invalid=False).read()

    assert DiskDocumentStore(path, schema=schema, clear_invalid=True).read() == {}

    migrating = DiskDocumentStore(path, schema=schema, clear_invalid=False)
    migrating.migrating = True
    assert migrating.read() == {"foo": "not a number"}


def test_commit_preserves_internal_namespace(store_dir: Path):
    store_dir.mkdir()
    path = store_dir / "config.json"
    internal = {"migrations": {"version": "1.2.0"}}
    path.write_text(json.dumps({"__internal__": internal, "x": 1}), encoding="utf-8")

    store = DiskDocumentStore(path)
    store.commit({})

    assert store.read() == {"__internal__": internal}
    assert _on_disk(path) == {"__internal__": internal}


def test_commit_keeps_explicit_internal_namespace(store_dir: Path):
    store_dir.mkdir()
    path = store_dir / "config.json"
    path.write_text(json.dumps({"__internal__": {"migrations": {"version": "1.0.0"}}}), encoding="utf-8")

    store = DiskDocumentStore(path)
    store.commit({"__internal__": {"migrations": {"version": "2.0.0"}}})

    assert _on_disk(path)["__internal__"]["migrations"]["version"] == "2.0.0"


def test_commit_validates_unless_migrating(store_dir: Path):
    store = DiskDocumentStore(store_dir / "config.json", schema=SchemaGate({"n": {"type": "number"}}))

    with pytest.raises(SchemaViolationError):
        store.commit({"n": "x"})
    assert store.read() == {}

    store.migrating = True
    store.commit({"n": "x"})
    assert store.read() == {"n": "x"}


def test_coalescing_window_folds_writes(store_dir: Path):
    path = store_dir / "config.json"
    store = DiskDocumentStore(path, write_timeout=0.3)
    try:
        store.write({"n": 1})
        assert _on_disk(path) == {"n": 1}

        store.write({"n": 2})
        store.write({"n": 3})
        assert store.write_pending
        assert store.read() == {"n": 3}
        assert _on_disk(path) == {"n": 1}

        assert wait_for(lambda: _on_disk(path) == {"n": 3})
        assert not store.write_pending
    finally:
        store.close()


def test_close_flushes_pending_write(store_dir: Path):
    path = store_dir / "config.json"
    store = DiskDocumentStore(path, write_timeout=10)
    store.write({"n": 1})
    store.write({"n": 2})

    store.close()

    assert _on_disk(path) == {"n": 2}


def test_clear_cache_is_skipped_while_write_pending(store_dir: Path):
    path = store_dir / "config.json"
    store = DiskDocumentStore(path, write_timeout=10)
    try:
        store.write({"n": 1})
        store.write({"n": 2})
        path.write_text(json.dumps({"n": 99}), encoding="utf-8")

        store.clear_cache()
        assert store.read() == {"n": 2}
    finally:
        store.close()


def test_clear_cache_rereads_file(store_dir: Path):
    path = store_dir / "config.json"
    store = DiskDocumentStore(path)
    store.write({"n": 1})
    path.write_text(json.dumps({"n": 99}), encoding="utf-8")

    assert store.read() == {"n": 1}
    store.clear_cache()
    assert store.read() == {"n": 99}


def test_failed_reload_keeps_cached_document(store_dir: Path):
    path = store_dir / "config.json"
    store = DiskDocumentStore(path, clear_invalid=False)
    store.write({"n": 1})
    path.write_text("{broken", encoding="utf-8")

    with pytest.raises(DecodeError):
        store.clear_cache()
    assert store.read() == {"n": 1}


def test_directory_recreated_on_write(store_dir: Path):
    path = store_dir / "config.json"
    store = DiskDocumentStore(path)
    store.write({"n": 1})
    path.unlink()
    store_dir.rmdir()

    store.write({"n": 2})

    assert _on_disk(path) == {"n": 2}


def test_cross_device_rename_falls_back_to_direct_write(store_dir: Path, monkeypatch: pytest.MonkeyPatch):
    def _exdev(*args, **kwargs):
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(json_store, "atomic_write_bytes", _exdev)
    path = store_dir / "config.json"

    DiskDocumentStore(path).write({"n": 1})

    assert _on_disk(path) == {"n": 1}


def test_other_write_errors_propagate(store_dir: Path, monkeypatch: pytest.MonkeyPatch):
    def _denied(*args, **kwargs):
        raise PermissionError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(json_store, "atomic_write_bytes", _denied)

    with pytest.raises(PermissionError):
        DiskDocumentStore(store_dir / "config.json").write({"n": 1})


def test_process_override_forces_direct_write(store_dir: Path, monkeypatch: pytest.MonkeyPatch):
    def _fail(*args, **kwargs):
        raise AssertionError("atomic write should not be used")

    monkeypatch.setenv("CONFSTORE_NON_ATOMIC_WRITE", "1")
    monkeypatch.setattr(json_store, "atomic_write_bytes", _fail)
    path = store_dir / "config.json"

    DiskDocumentStore(path).write({"n": 1})

    assert _on_disk(path) == {"n": 1}


def test_failed_commit_leaves_previous_file_intact(store_dir: Path, monkeypatch: pytest.MonkeyPatch):
    path = store_dir / "config.json"
    store = DiskDocumentStore(path)
    store.write({"n": 1})

    def _crash(fd):
        raise OSError(errno.EIO, "I/O error")

    monkeypatch.setattr(json_store.os, "fsync", _crash)
    with pytest.raises(OSError):
        store.write({"n": 2})

    assert _on_disk(path) == {"n": 1}
    assert list(store_dir.glob("*.tmp")) == []


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permission bits")
def test_file_mode_applies_at_creation(store_dir: Path):
    path = store_dir / "config.json"
    DiskDocumentStore(path, file_mode=0o600).write({"secret": True})

    assert (os.stat(path).st_mode & 0o777) == 0o600


def test_encrypted_file_roundtrip(store_dir: Path):
    path = store_dir / "config.json"
    DiskDocumentStore(path, codec=Codec(encryption_key="k")).write({"token": "abc"})

    assert b"token" not in path.read_bytes()
    assert DiskDocumentStore(path, codec=Codec(encryption_key="k")).read() == {"token": "abc"}
