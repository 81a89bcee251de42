"""TagStore: the public API over cache, lock, codec and watcher.

    store, ready = open_store("/srv/tag_files")
    ready.result(timeout=10)              # wait for the initial scan
    store.add_tags("team1", ["ops", "dev", "OPS"])   # -> added ["ops", "dev"]
    store.get("team1")                    # -> ["dev", "ops"]
    store.close()

Reads are served from memory only. Writes update memory first, then append
the new tags to tags_<group>.txt under the group's file lock.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tagstore.cache import TagCache
from tagstore.codec import append_tags
from tagstore.config import TagStoreConfig
from tagstore.errors import DurabilityWarning, LockContended, StoreNotReady
from tagstore.lock import locked
from tagstore.models import AddResult, normalize_tags, tag_file_name, validate_group_id
from tagstore.watcher import DirectoryWatcher, WatchState

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger("tagstore.store")


class TagStore:
    """Tag groups backed by one text file per group."""

    def __init__(self, config: TagStoreConfig) -> None:
        self.config = config
        self.tags_dir = config.tags_dir
        self.cache = TagCache()
        self.watcher = DirectoryWatcher(
            self.tags_dir, self.cache, config=config.watcher, lock_policy=config.lock,
        )
        self._ready = threading.Event()

    @classmethod
    def for_dir(cls, tags_dir: Path | str) -> TagStore:
        return cls(TagStoreConfig.for_dir(tags_dir))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, *, watch: bool = True) -> TagStore:
        """Create the directory, load every group and (optionally) start watching."""
        self.watcher.start(watch=watch)
        if self.watcher.state is WatchState.CLOSED:
            msg = f"tag store for {self.tags_dir} was closed during startup"
            raise StoreNotReady(msg)
        self._ready.set()
        logger.info("tag store ready: %s (%d groups)", self.tags_dir, len(self.cache))
        return self

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    @property
    def state(self) -> WatchState:
        return self.watcher.state

    def close(self) -> None:
        self._ready.clear()
        self.watcher.close()

    def __enter__(self) -> TagStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _check_ready(self) -> None:
        if not self._ready.is_set():
            msg = f"tag store for {self.tags_dir} is not ready"
            raise StoreNotReady(msg)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def file_path(self, group_id: str) -> Path:
        return self.tags_dir / tag_file_name(validate_group_id(group_id))

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def find(self, group_id: str) -> list[str] | None:
        """Sorted tags of a group, None if the group is unknown."""
        validate_group_id(group_id)
        self._check_ready()
        return self.cache.get(group_id)

    def get(self, group_id: str) -> list[str]:
        """Sorted tags of a group (empty for an unknown group)."""
        return self.find(group_id) or []

    def group_ids(self) -> list[str]:
        self._check_ready()
        return self.cache.group_ids()

    def counts(self) -> dict[str, int]:
        self._check_ready()
        return self.cache.counts()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def add_tags(self, group_id: str, tags: Iterable[Any]) -> AddResult:
        """Add tags not already in the group (case-insensitive).

        Tags are visible to readers before the disk write starts. When the
        write cannot happen (lock contended, I/O error) the result carries a
        DurabilityWarning instead of raising.
        """
        validate_group_id(group_id)
        self._check_ready()
        candidates = normalize_tags(tags)
        if not candidates:
            return AddResult(group_id)

        group, added = self.cache.add(group_id, candidates)
        if not added:
            return AddResult(group_id)

        path = self.file_path(group_id)
        warning: DurabilityWarning | None = None
        try:
            with locked(path, self.config.lock):
                append_tags(path, added)
        except (LockContended, OSError) as exc:
            warning = DurabilityWarning(group_id, path, exc)
            logger.warning("tags for %s kept in memory only: %s", group_id, exc)
        finally:
            group.settle(added)
        logger.debug("added %d tags to %s", len(added), group_id)
        return AddResult(group_id, added, warning)


def open_store(
    tags_dir: Path | str | None = None,
    config: TagStoreConfig | None = None,
    *,
    watch: bool = True,
) -> tuple[TagStore, Future[TagStore]]:
    """Create a store and start it in the background.

    The future resolves to the store once the initial scan is complete and
    the watcher is running, or raises the startup error (e.g. the tags
    directory cannot be created).
    """
    if config is None:
        if tags_dir is None:
            msg = "open_store needs tags_dir or config"
            raise ValueError(msg)
        config = TagStoreConfig.for_dir(tags_dir)
    store = TagStore(config)
    ready: Future[TagStore] = Future()
    ready.set_running_or_notify_cancel()

    def _startup() -> None:
        try:
            store.start(watch=watch)
        except Exception as exc:
            logger.exception("failed to start tag store: %s", store.tags_dir)
            ready.set_exception(exc)
        else:
            ready.set_result(store)

    threading.Thread(target=_startup, name="tagstore-startup", daemon=True).start()
    return store, ready
