"""Shared pytest fixtures."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from tagstore.config import TagStoreConfig, WatcherConfig
from tagstore.lock import LockPolicy
from tagstore.store import TagStore

FAST_LOCK = LockPolicy(retries=20, factor=1.2, min_timeout=0.01, max_timeout=0.05, stale=10.0)
# Gives up after ~30ms; used where a test holds the lock itself.
IMPATIENT_LOCK = LockPolicy(retries=2, factor=1.0, min_timeout=0.01, max_timeout=0.01, stale=10.0)


def make_config(
    tags_dir: Path,
    *,
    backend: str = "auto",
    lock: LockPolicy = FAST_LOCK,
    rescan_interval: float = 0.0,
) -> TagStoreConfig:
    return TagStoreConfig.for_dir(
        tags_dir,
        lock=lock,
        watcher=WatcherConfig(
            backend=backend,
            stability_threshold=0.05,
            poll_interval=0.05,
            rescan_interval=rescan_interval,
            scan_workers=4,
        ),
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def tags_dir(tmp_path: Path) -> Path:
    """A not-yet-existing tags directory inside tmp_path."""
    return tmp_path / "tag_files"


@pytest.fixture
def store(tags_dir: Path) -> Iterator[TagStore]:
    """A started store with a running watcher."""
    s = TagStore(make_config(tags_dir)).start()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def static_store(tags_dir: Path) -> Iterator[TagStore]:
    """A started store without a watcher."""
    s = TagStore(make_config(tags_dir)).start(watch=False)
    try:
        yield s
    finally:
        s.close()
