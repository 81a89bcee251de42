"""Advisory sidecar locks for group files.

The lock for ``tags_<id>.txt`` is the file ``tags_<id>.txt.lock``. Whoever
creates it (``O_CREAT | O_EXCL``) owns the group file until it is removed.
The artifact holds one line identifying the owner:

    <pid> <hostname> <nonce>

A lock is abandoned, and may be reclaimed by the next acquirer, when it is
older than ``LockPolicy.stale`` seconds or when its owner is a process on this
host that no longer exists. Nothing is enforced by the OS: tools that edit
group files without taking the lock are handled by watcher reconciliation.
"""

from __future__ import annotations

import contextlib
import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from tagstore.errors import LockContended

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger("tagstore.lock")

LOCK_SUFFIX = ".lock"
# Immediate retries after reclaiming a stale lock, per acquire() call.
_MAX_RECLAIMS = 3


@dataclass(frozen=True)
class LockPolicy:
    """Retry and staleness settings (seconds)."""

    retries: int = 5
    factor: float = 1.2
    min_timeout: float = 0.1
    max_timeout: float = 1.0
    stale: float = 10.0

    def delays(self) -> list[float]:
        """Sleep before each retry. ``sum()`` is the worst-case wait."""
        return [
            min(self.min_timeout * self.factor**n, self.max_timeout)
            for n in range(self.retries)
        ]


@dataclass
class LockHandle:
    """An acquired lock. ``release()`` may be called any number of times."""

    path: Path
    lock_path: Path
    token: str
    released: bool = field(default=False)

    def release(self) -> None:
        release(self)


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + LOCK_SUFFIX)


def _new_token() -> str:
    return f"{os.getpid()} {socket.gethostname()} {uuid.uuid4().hex}"


def _try_create(lock_path: Path, token: str) -> bool:
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False
    try:
        os.write(fd, (token + "\n").encode())
    finally:
        os.close(fd)
    return True


def _read_token(lock_path: Path) -> str | None:
    try:
        return lock_path.read_text().strip()
    except OSError:
        return None


def _owner_dead(token: str | None) -> bool:
    """True when the token names a process on this host that has exited."""
    if not token:
        return False
    parts = token.split()
    if len(parts) < 2:
        return False
    try:
        pid = int(parts[0])
    except ValueError:
        return False
    if parts[1] != socket.gethostname() or pid == os.getpid():
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    except (PermissionError, OverflowError):
        return False
    return False


def _reclaim_if_stale(lock_path: Path, stale: float) -> bool:
    """Remove an abandoned lock. True if the caller should retry right away."""
    try:
        st = lock_path.stat()
    except FileNotFoundError:
        return True
    age = time.time() - st.st_mtime
    dead = _owner_dead(_read_token(lock_path))
    if age <= stale and not dead:
        return False
    try:
        current = lock_path.stat()
    except FileNotFoundError:
        return True
    if (current.st_ino, current.st_mtime_ns) != (st.st_ino, st.st_mtime_ns):
        # Replaced by another acquirer in the meantime.
        return True
    with contextlib.suppress(FileNotFoundError):
        lock_path.unlink()
    logger.warning(
        "reclaimed %s lock %s (age %.1fs)", "orphaned" if dead else "stale", lock_path, age,
    )
    return True


def acquire(path: Path | str, policy: LockPolicy | None = None) -> LockHandle:
    """Take the lock for *path*, retrying with backoff.

    Raises ``LockContended`` once ``policy.retries`` retries are exhausted.
    """
    policy = policy or LockPolicy()
    path = Path(path)
    lock_path = lock_path_for(path)
    token = _new_token()
    delays = policy.delays()
    reclaims = 0
    attempt = 0
    while True:
        if _try_create(lock_path, token):
            logger.debug("lock acquired: %s", lock_path)
            return LockHandle(path=path, lock_path=lock_path, token=token)
        if reclaims < _MAX_RECLAIMS and _reclaim_if_stale(lock_path, policy.stale):
            reclaims += 1
            continue
        if attempt >= len(delays):
            raise LockContended(path, attempt + 1)
        time.sleep(delays[attempt])
        attempt += 1


def release(handle: LockHandle) -> None:
    """Remove the lock artifact if this handle still owns it."""
    if handle.released:
        return
    handle.released = True
    current = _read_token(handle.lock_path)
    if current is None:
        logger.warning("lock already gone on release: %s", handle.lock_path)
        return
    if current != handle.token:
        logger.warning("lock %s was reclaimed by another owner; leaving it", handle.lock_path)
        return
    with contextlib.suppress(FileNotFoundError):
        handle.lock_path.unlink()
    logger.debug("lock released: %s", handle.lock_path)


@contextlib.contextmanager
def locked(path: Path | str, policy: LockPolicy | None = None) -> Iterator[LockHandle]:
    """Hold the lock for *path* for the duration of the block."""
    handle = acquire(path, policy)
    try:
        yield handle
    finally:
        release(handle)
