"""Directory watcher: keeps the in-memory cache in step with group files.

Lifecycle of a DirectoryWatcher:

    INITIALIZING  create the tags directory (failure is fatal)
    SCANNING      reload every tags_<id>.txt concurrently
    WATCHING      react to filesystem events until close()
    CLOSED

A watcher started with watch=False ends in LOADED after the scan. close()
during startup wins: the reconciler is never started and the state stays
CLOSED.

Events come from inotify (inotify_simple, Linux) or, when that is
unavailable, from an mtime poll. Either source only puts events on a queue;
one reconciler thread drains it, so reloads of a directory never overlap.

On a create/modify for tags_<id>.txt:
    - the path is scheduled, and reloaded once its (size, mtime) has not
      changed for `stability_threshold` seconds
    - reload = take the file lock, decode the whole file, replace the group
      (lock contended: skipped; the backstop rescan picks it up)

On a delete/move-away:
    - the group is dropped from the cache

Every `rescan_interval` seconds the reconciler also lists the directory and
schedules any file whose signature differs from its last successful reload,
as a safety net for skipped reloads and missed events.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

from tagstore.codec import read_group_file
from tagstore.config import WatcherConfig
from tagstore.errors import CorruptRead, LockContended
from tagstore.lock import LOCK_SUFFIX, LockPolicy, locked
from tagstore.models import group_id_from_name

if TYPE_CHECKING:
    from collections.abc import Callable

    from tagstore.cache import TagCache

logger = logging.getLogger("tagstore.watcher")

_INOTIFY_TIMEOUT_MS = 200
_STOP = object()

Signature = tuple[int, int]   # (st_size, st_mtime_ns)


class WatchState(enum.Enum):
    INITIALIZING = "initializing"
    SCANNING = "scanning"
    WATCHING = "watching"
    LOADED = "loaded"         # scan done, started with watch=False
    CLOSED = "closed"


class ReloadOutcome(enum.Enum):
    RELOADED = "reloaded"
    REMOVED = "removed"       # file was gone; group dropped
    SKIPPED = "skipped"       # lock contended
    FAILED = "failed"         # read error; cache left as it was


class FileEvent(NamedTuple):
    kind: str                 # "changed" | "deleted" | "rescan"
    path: Path


def group_id_for(path: Path) -> str | None:
    """Group id of a storage file, or None for hidden files, locks and strays."""
    name = path.name
    if name.startswith(".") or name.endswith(LOCK_SUFFIX):
        return None
    return group_id_from_name(name)


def file_signature(path: Path) -> Signature | None:
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    return (st.st_size, st.st_mtime_ns)


def list_group_files(tags_dir: Path) -> dict[str, Path]:
    """{group_id: path} for every storage file in tags_dir."""
    found: dict[str, Path] = {}
    try:
        entries = list(tags_dir.iterdir())
    except FileNotFoundError:
        return found
    for path in entries:
        group_id = group_id_for(path)
        if group_id and path.is_file():
            found[group_id] = path
    return found


# ---------------------------------------------------------------------------
# Full reload
# ---------------------------------------------------------------------------

def reload_group(cache: TagCache, group_id: str, path: Path, policy: LockPolicy) -> ReloadOutcome:
    """Replace a group's tags with the file content, under the file lock."""
    try:
        with locked(path, policy):
            tags = read_group_file(path)
            if tags is None:
                cache.remove(group_id)
                logger.info("group file gone, dropped group: %s", group_id)
                return ReloadOutcome.REMOVED
            cache.replace(group_id, tags)
    except LockContended:
        logger.warning("lock conflict for %s, skipping reload", path)
        return ReloadOutcome.SKIPPED
    except CorruptRead:
        logger.exception("failed to reload group: %s", group_id)
        return ReloadOutcome.FAILED
    logger.info("group reloaded: %s (%d tags)", group_id, len(tags))
    return ReloadOutcome.RELOADED


def scan_directory(
    cache: TagCache,
    tags_dir: Path,
    policy: LockPolicy,
    workers: int = 8,
) -> dict[Path, Signature]:
    """Reload every group file concurrently. Returns signatures of the reloaded ones."""
    files = list_group_files(tags_dir)
    if not files:
        return {}
    signatures = {path: file_signature(path) for path in files.values()}
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tagstore-scan") as pool:
        futures = {
            path: pool.submit(reload_group, cache, gid, path, policy)
            for gid, path in files.items()
        }
    loaded: dict[Path, Signature] = {}
    for path, fut in futures.items():
        try:
            outcome = fut.result()
        except Exception:
            logger.exception("scan failed for %s", path)
            continue
        sig = signatures.get(path)
        if outcome is ReloadOutcome.RELOADED and sig is not None:
            loaded[path] = sig
    logger.info("scan: %d of %d group files loaded", len(loaded), len(files))
    return loaded


# ---------------------------------------------------------------------------
# Event sources
# ---------------------------------------------------------------------------

class _InotifySource(threading.Thread):
    """Watch tags_dir with inotify. Raises ImportError/OSError from __init__ if unavailable."""

    def __init__(self, tags_dir: Path, emit: Callable[[FileEvent], None], stop: threading.Event) -> None:
        super().__init__(name="tagstore-inotify", daemon=True)
        from inotify_simple import INotify, flags  # type: ignore[import-untyped]

        self._flags = flags
        self._inotify = INotify()
        self._changed = flags.CREATE | flags.MODIFY | flags.CLOSE_WRITE | flags.MOVED_TO
        self._deleted = flags.DELETE | flags.MOVED_FROM
        try:
            self._inotify.add_watch(str(tags_dir), self._changed | self._deleted)
        except OSError:
            self._inotify.close()
            raise
        self._tags_dir = tags_dir
        self._emit = emit
        self._stop_event = stop

    def run(self) -> None:
        try:
            while not self._stop_event.is_set():
                for event in self._inotify.read(timeout=_INOTIFY_TIMEOUT_MS):
                    if event.mask & self._flags.Q_OVERFLOW:
                        logger.warning("inotify queue overflow, requesting rescan")
                        self._emit(FileEvent("rescan", self._tags_dir))
                        continue
                    if not event.name:
                        continue
                    path = self._tags_dir / event.name
                    if event.mask & self._deleted:
                        self._emit(FileEvent("deleted", path))
                    elif event.mask & self._changed:
                        self._emit(FileEvent("changed", path))
        except Exception:
            logger.exception("inotify watcher stopped unexpectedly")
        finally:
            self._inotify.close()


class _PollSource(threading.Thread):
    """Polling fallback for macOS/Docker. Compares signatures every interval seconds."""

    def __init__(
        self,
        tags_dir: Path,
        emit: Callable[[FileEvent], None],
        stop: threading.Event,
        interval: float,
    ) -> None:
        super().__init__(name="tagstore-poll", daemon=True)
        self._tags_dir = tags_dir
        self._emit = emit
        self._stop_event = stop
        self._interval = interval
        # Snapshot now so files that already exist are left to the initial scan.
        self._seen = self._snapshot()

    def _snapshot(self) -> dict[Path, Signature]:
        snap: dict[Path, Signature] = {}
        for path in list_group_files(self._tags_dir).values():
            sig = file_signature(path)
            if sig is not None:
                snap[path] = sig
        return snap

    def run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                current = self._snapshot()
                for path, sig in current.items():
                    if self._seen.get(path) != sig:
                        self._emit(FileEvent("changed", path))
                for path in self._seen.keys() - current.keys():
                    self._emit(FileEvent("deleted", path))
                self._seen = current
            except Exception:
                logger.exception("poll failed for %s", self._tags_dir)


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

@dataclass
class _Pending:
    group_id: str
    deadline: float
    signature: Signature | None


class DirectoryWatcher:
    """Scan a tags directory, then keep the cache reconciled with it."""

    def __init__(
        self,
        tags_dir: Path,
        cache: TagCache,
        config: WatcherConfig | None = None,
        lock_policy: LockPolicy | None = None,
    ) -> None:
        self.tags_dir = Path(tags_dir)
        self.cache = cache
        self.config = config or WatcherConfig()
        self.lock_policy = lock_policy or LockPolicy()
        self.state = WatchState.INITIALIZING
        self.backend: str | None = None
        self._queue: queue.Queue[object] = queue.Queue()
        self._closing = threading.Event()
        self._state_lock = threading.Lock()
        self._source: threading.Thread | None = None
        self._worker: threading.Thread | None = None
        self._pending: dict[Path, _Pending] = {}
        self._signatures: dict[Path, Signature] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, *, watch: bool = True) -> None:
        """Run the startup sequence. Returns once the cache is fully loaded.

        With watch=False only the directory check and the scan run.
        """
        self.tags_dir.mkdir(parents=True, exist_ok=True)
        logger.info("tags directory ensured: %s", self.tags_dir)

        if watch:
            # Start listening before the scan so edits made during it are queued.
            source = self._make_source()
            with self._state_lock:
                # A source started after close() sees the stop flag and exits.
                self._source = source
                source.start()
                if self._closing.is_set():
                    return

        if not self._advance(WatchState.SCANNING):
            return
        self._signatures = scan_directory(
            self.cache, self.tags_dir, self.lock_policy, self.config.scan_workers,
        )

        with self._state_lock:
            if self._closing.is_set():
                logger.info("watcher closed during startup: %s", self.tags_dir)
                return
            if not watch:
                self.state = WatchState.LOADED
                return
            self._worker = threading.Thread(target=self._run, name="tagstore-reconciler", daemon=True)
            self._worker.start()
            self.state = WatchState.WATCHING
        logger.info("watching %s (backend=%s)", self.tags_dir, self.backend)

    def _advance(self, state: WatchState) -> bool:
        with self._state_lock:
            if self._closing.is_set():
                return False
            self.state = state
            return True

    def close(self, timeout: float = 5.0) -> None:
        with self._state_lock:
            if self.state is WatchState.CLOSED:
                return
            self._closing.set()
            self.state = WatchState.CLOSED
            threads = (self._source, self._worker)
        self._queue.put(_STOP)
        for thread in threads:
            if thread is not None and thread.is_alive():
                thread.join(timeout)
        logger.info("watcher closed: %s", self.tags_dir)

    def _make_source(self) -> threading.Thread:
        backend = self.config.backend
        if backend in ("auto", "inotify"):
            try:
                source = _InotifySource(self.tags_dir, self._emit, self._closing)
            except (ImportError, OSError, AttributeError):
                if backend == "inotify":
                    raise
                logger.warning("inotify not available, falling back to polling")
            else:
                self.backend = "inotify"
                return source
        self.backend = "poll"
        logger.info("polling %s interval=%.1fs", self.tags_dir, self.config.poll_interval)
        return _PollSource(self.tags_dir, self._emit, self._closing, self.config.poll_interval)

    def _emit(self, event: FileEvent) -> None:
        if event.kind == "rescan" or group_id_for(event.path) is not None:
            self._queue.put(event)

    # ------------------------------------------------------------------
    # Reconciler loop
    # ------------------------------------------------------------------

    def _run(self) -> None:
        interval = self.config.rescan_interval
        next_rescan = time.monotonic() + interval if interval > 0 else None
        while True:
            try:
                item = self._queue.get(timeout=self._wait_time(next_rescan))
            except queue.Empty:
                item = None
            if item is _STOP:
                break
            try:
                if isinstance(item, FileEvent):
                    self._handle(item)
                self._flush_due()
                if next_rescan is not None and time.monotonic() >= next_rescan:
                    self._rescan()
                    next_rescan = time.monotonic() + interval
            except Exception:
                logger.exception("reconciliation failed in %s", self.tags_dir)

    def _wait_time(self, next_rescan: float | None) -> float | None:
        deadlines = [p.deadline for p in self._pending.values()]
        if next_rescan is not None:
            deadlines.append(next_rescan)
        if not deadlines:
            return None
        return max(0.0, min(deadlines) - time.monotonic())

    def _handle(self, event: FileEvent) -> None:
        if event.kind == "rescan":
            self._rescan()
            return
        group_id = group_id_for(event.path)
        if group_id is None:
            return
        if event.kind == "deleted":
            self._pending.pop(event.path, None)
            self._drop(group_id, event.path)
            return
        self._schedule(group_id, event.path)

    def _schedule(self, group_id: str, path: Path) -> None:
        deadline = time.monotonic() + self.config.stability_threshold
        pending = self._pending.get(path)
        if pending is None:
            self._pending[path] = _Pending(group_id, deadline, file_signature(path))
        else:
            pending.deadline = deadline
            pending.signature = file_signature(path)

    def _drop(self, group_id: str, path: Path) -> None:
        self._signatures.pop(path, None)
        if self.cache.remove(group_id):
            logger.info("group file deleted, dropped group: %s", group_id)

    def _flush_due(self) -> None:
        now = time.monotonic()
        for path, pending in list(self._pending.items()):
            if pending.deadline > now:
                continue
            sig = file_signature(path)
            if sig != pending.signature:
                # Still being written; wait for another quiet period.
                pending.signature = sig
                pending.deadline = now + self.config.stability_threshold
                continue
            del self._pending[path]
            if sig is None:
                self._drop(pending.group_id, path)
                continue
            outcome = reload_group(self.cache, pending.group_id, path, self.lock_policy)
            if outcome is ReloadOutcome.RELOADED:
                self._signatures[path] = sig
            else:
                self._signatures.pop(path, None)

    def _rescan(self) -> None:
        on_disk = list_group_files(self.tags_dir)
        paths = set(on_disk.values())
        for gid, path in on_disk.items():
            if path in self._pending:
                continue
            if self._signatures.get(path) != file_signature(path):
                logger.debug("rescan: %s out of date", path)
                self._schedule(gid, path)
        for path in list(self._signatures):
            if path not in paths:
                gid = group_id_for(path)
                if gid is not None:
                    self._drop(gid, path)
