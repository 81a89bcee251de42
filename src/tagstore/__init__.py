"""File-based tag groups: flat text files as source of truth, memory as read cache.

Layout:
    <tags_dir>/
        tags_<group>.txt        # one tag per line, unordered, no metadata
        tags_<group>.txt.lock   # advisory lock, present only while held

Writes append only the newly added tags, under the sidecar lock. External
edits (any tool, with or without the lock) are picked up by the directory
watcher, which reloads the edited file wholesale once it stops changing.
Locks older than 10 s, or held by a dead process on this host, are reclaimed.
"""

from tagstore.config import TagStoreConfig, init_config, load_config
from tagstore.errors import (
    CorruptRead,
    DurabilityWarning,
    InvalidGroupId,
    LockContended,
    StoreNotReady,
    TagStoreError,
)
from tagstore.models import AddResult
from tagstore.store import TagStore, open_store

__all__ = [
    "AddResult",
    "CorruptRead",
    "DurabilityWarning",
    "InvalidGroupId",
    "LockContended",
    "StoreNotReady",
    "TagStore",
    "TagStoreConfig",
    "TagStoreError",
    "init_config",
    "load_config",
    "open_store",
]
