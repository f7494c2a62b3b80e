"""
Change notification.

ChangeNotifier fans a single "change" signal out to listeners. Value watchers
built on it re-read their value on every signal and only call back on a real
transition.

FileWatcher turns modifications of the store file made by someone else into
the same signal, either from directory events (watchdog) or by polling the
file's metadata, debounced through a Debouncer.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable, Literal

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .settings import get_settings
from .values import strict_equal

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]
WatchMode = Literal["auto", "events", "poll"]


class _Listener:
    __slots__ = ("fn", "active")

    def __init__(self, fn: Callable[[], None]):
        self.fn = fn
        self.active = True


class ChangeNotifier:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._listeners: list[_Listener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, fn: Callable[[], None]) -> Unsubscribe:
        listener = _Listener(fn)
        with self._guard:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            listener.active = False
            with self._guard:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self) -> None:
        with self._guard:
            listeners = list(self._listeners)
        for listener in listeners:
            # Unsubscribed mid-dispatch: skip.
            if listener.active:
                listener.fn()

    def watch_value(
        self,
        getter: Callable[[], Any],
        callback: Callable[[Any, Any], None],
    ) -> Unsubscribe:
        """
        Call `callback(new, old)` whenever the value returned by `getter`
        changes between two signals.
        """
        current = [getter()]

        def on_change() -> None:
            old = current[0]
            new = getter()
            current[0] = new
            if not strict_equal(new, old):
                callback(new, old)

        return self.subscribe(on_change)


class Debouncer:
    """
    Trailing-edge debounce: idle -> pending(deadline) -> fire -> idle.

    Every trigger while pending pushes the deadline back; `fn` runs once,
    `wait` seconds after the last trigger, on a timer thread.
    """

    def __init__(self, wait: float, fn: Callable[[], None]):
        self._wait = wait
        self._fn = fn
        self._lock = threading.Lock()
        self._deadline: float | None = None
        self._timer: threading.Timer | None = None

    @property
    def state(self) -> str:
        return "idle" if self._deadline is None else "pending"

    def trigger(self) -> None:
        with self._lock:
            self._deadline = time.monotonic() + self._wait
            if self._timer is None:
                self._schedule(self._wait)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._deadline = None

    def _schedule(self, delay: float) -> None:
        timer = threading.Timer(delay, self._expire)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _expire(self) -> None:
        with self._lock:
            if self._deadline is None or threading.current_thread() is not self._timer:
                return
            remaining = self._deadline - time.monotonic()
            if remaining > 0:
                self._schedule(remaining)
                return
            self._timer = None
            self._deadline = None
        try:
            self._fn()
        except Exception:
            logger.exception("debounced change handler failed")


class _StoreFileEventHandler(FileSystemEventHandler):
    def __init__(self, file_name: str, on_event: Callable[[], None]):
        super().__init__()
        self._file_name = file_name
        self._on_event = on_event

    def on_any_event(self, event: FileSystemEvent) -> None:
        paths = (event.src_path, getattr(event, "dest_path", "") or "")
        if any(p and os.path.basename(os.fsdecode(p)) == self._file_name for p in paths):
            self._on_event()


def _resolve_mode(mode: WatchMode) -> Literal["events", "poll"]:
    if mode != "auto":
        return mode
    # Directory events are reliable on Windows and macOS; elsewhere poll.
    return "events" if sys.platform in ("win32", "darwin") else "poll"


class FileWatcher:
    """
    Reports modifications of one file.

    In "events" mode the parent directory is watched rather than the file, so
    replacement by rename is still seen. In "poll" mode the file's metadata is
    compared every `poll_interval` seconds.
    """

    def __init__(
        self,
        path: Path,
        on_change: Callable[[], None],
        *,
        mode: WatchMode = "auto",
        debounce: float | None = None,
        poll_interval: float | None = None,
    ):
        settings = get_settings()
        self._path = path
        self.mode = _resolve_mode(mode)
        if debounce is None:
            debounce = settings.watch_debounce_events if self.mode == "events" else settings.watch_debounce_poll
        self._poll_interval = settings.watch_poll_interval if poll_interval is None else poll_interval
        self._debouncer = Debouncer(debounce, on_change)
        self._observer: Any = None
        self._poll_thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return self._observer is not None or self._poll_thread is not None

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        if self.mode == "events":
            observer = Observer()
            observer.daemon = True
            handler = _StoreFileEventHandler(self._path.name, self._debouncer.trigger)
            observer.schedule(handler, str(self._path.parent), recursive=False)
            observer.start()
            self._observer = observer
        else:
            thread = threading.Thread(target=self._poll_loop, name=f"confstore-poll:{self._path.name}", daemon=True)
            self._poll_thread = thread
            thread.start()
        logger.info("watching %s for changes (%s)", self._path, self.mode)

    def stop(self) -> None:
        self._stop.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=1.0)
            self._observer = None
        if self._poll_thread is not None:
            if self._poll_thread is not threading.current_thread():
                self._poll_thread.join(timeout=1.0)
            self._poll_thread = None
        self._debouncer.cancel()
        logger.info("stopped watching %s", self._path)

    def _signature(self) -> tuple[int, int, int] | None:
        try:
            st = self._path.stat()
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_size, st.st_ino)

    def _poll_loop(self) -> None:
        seen = self._signature()
        while not self._stop.wait(self._poll_interval):
            current = self._signature()
            if current != seen:
                seen = current
                logger.debug("poll detected change in %s", self._path)
                self._debouncer.trigger()
