from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    # Writes
    force_non_atomic_write: bool

    # External change detection
    watch_debounce_events: float
    watch_debounce_poll: float
    watch_poll_interval: float


def get_settings() -> Settings:
    # Snap confinement does not allow the rename used by atomic writes.
    force_non_atomic_write = _env_bool("CONFSTORE_NON_ATOMIC_WRITE", "SNAP" in os.environ)

    watch_debounce_events = _env_float("CONFSTORE_WATCH_DEBOUNCE_EVENTS", 0.1)
    watch_debounce_poll = _env_float("CONFSTORE_WATCH_DEBOUNCE_POLL", 1.0)
    watch_poll_interval = _env_float("CONFSTORE_WATCH_POLL_INTERVAL", 1.0)

    return Settings(
        force_non_atomic_write=force_non_atomic_write,
        watch_debounce_events=watch_debounce_events,
        watch_debounce_poll=watch_debounce_poll,
        watch_poll_interval=watch_poll_interval,
    )
