from __future__ import annotations

import time
from pathlib import Path
import sys
from typing import Any, Callable


import pytest


# Ensure the repository root (parent of ./tests) is importable during pytest collection.
# This avoids ModuleNotFoundError for `import confstore` under pytest import modes
# that don't automatically prepend the cwd/rootdir to sys.path.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from confstore import ConfigStore  # noqa: E402


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    """
    A not-yet-existing directory for the store file, so tests also cover
    directory creation.
    """
    return tmp_path / "config"


@pytest.fixture
def make_store(store_dir: Path) -> Callable[..., ConfigStore]:
    """
    Build stores against `store_dir` (unless `cwd` is given) and close them
    when the test ends, so no timer or watcher thread outlives it.
    """
    created: list[ConfigStore] = []

    def _make(**options: Any) -> ConfigStore:
        options.setdefault("cwd", store_dir)
        store = ConfigStore(**options)
        created.append(store)
        return store

    yield _make

    for store in created:
        store.close()


@pytest.fixture
def fast_watch(monkeypatch: pytest.MonkeyPatch) -> None:
    """Shrink watcher debounce and poll intervals so tests don't wait seconds."""
    monkeypatch.setenv("CONFSTORE_WATCH_DEBOUNCE_EVENTS", "0.05")
    monkeypatch.setenv("CONFSTORE_WATCH_DEBOUNCE_POLL", "0.05")
    monkeypatch.setenv("CONFSTORE_WATCH_POLL_INTERVAL", "0.05")


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
