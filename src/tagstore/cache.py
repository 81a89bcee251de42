"""In-memory tag groups: the read path of the store.

Each group has its own lock; the map lock is only held to insert or drop a
group, so writers to different groups never wait on each other.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from tagstore.models import tag_key

if TYPE_CHECKING:
    from collections.abc import Iterable


class TagGroup:
    """Case-insensitively unique tags of one group.

    Tags added through ``add`` stay *in flight* until ``settle`` is called for
    them, i.e. until their append to disk was attempted. ``replace`` keeps
    in-flight tags, because the file it was read from cannot contain them yet.

    A group removed from its cache with nothing in flight is *detached*: it
    accepts no more tags, and writers holding it must look the group up again.
    """

    def __init__(self, tags: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._members: dict[str, str] = {}
        self._in_flight: dict[str, str] = {}
        self.detached = False
        for tag in tags:
            self._members.setdefault(tag_key(tag), tag)

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def __contains__(self, tag: object) -> bool:
        if not isinstance(tag, str):
            return False
        with self._lock:
            return tag_key(tag) in self._members

    def add(self, tags: Iterable[str]) -> list[str]:
        """Insert tags not already present. Returns the ones actually added."""
        added: list[str] = []
        with self._lock:
            if self.detached:
                return added
            for tag in tags:
                key = tag_key(tag)
                if key in self._members:
                    continue
                self._members[key] = tag
                self._in_flight[key] = tag
                added.append(tag)
        return added

    def settle(self, tags: Iterable[str]) -> None:
        """Mark tags as no longer in flight (their write finished or failed)."""
        with self._lock:
            for tag in tags:
                self._in_flight.pop(tag_key(tag), None)

    def replace(self, tags: Iterable[str]) -> None:
        """Swap in a freshly decoded tag list, keeping in-flight tags."""
        members: dict[str, str] = {}
        for tag in tags:
            members.setdefault(tag_key(tag), tag)
        with self._lock:
            for key, tag in self._in_flight.items():
                members.setdefault(key, tag)
            self._members = members

    def detach(self) -> bool:
        """Forget every settled tag. True if nothing was in flight and the group is now detached."""
        with self._lock:
            self._members = dict(self._in_flight)
            if not self._in_flight:
                self.detached = True
            return self.detached

    def sorted(self) -> list[str]:
        with self._lock:
            return sorted(self._members.values())


class TagCache:
    """groupId -> TagGroup map shared by request threads and the watcher."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._groups: dict[str, TagGroup] = {}

    def __contains__(self, group_id: object) -> bool:
        with self._lock:
            return group_id in self._groups

    def __len__(self) -> int:
        with self._lock:
            return len(self._groups)

    def group(self, group_id: str) -> TagGroup | None:
        with self._lock:
            return self._groups.get(group_id)

    def get_or_create(self, group_id: str) -> TagGroup:
        with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                group = self._groups[group_id] = TagGroup()
            return group

    def get(self, group_id: str) -> list[str] | None:
        """Sorted tags of a group, or None if the group is unknown."""
        group = self.group(group_id)
        return None if group is None else group.sorted()

    def add(self, group_id: str, tags: list[str]) -> tuple[TagGroup, list[str]]:
        """Add tags to a group, creating it if needed. Returns (group, added)."""
        while True:
            group = self.get_or_create(group_id)
            added = group.add(tags)
            if not group.detached:
                return group, added

    def replace(self, group_id: str, tags: Iterable[str]) -> None:
        tags = list(tags)
        while True:
            group = self.get_or_create(group_id)
            group.replace(tags)
            if not group.detached:
                return

    def remove(self, group_id: str) -> bool:
        """Drop a group. Tags still in flight are kept in a group of their own."""
        with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return False
            if group.detach():
                del self._groups[group_id]
            return True

    def group_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._groups)

    def counts(self) -> dict[str, int]:
        """Tag count per group, keyed by sorted group id."""
        with self._lock:
            groups = list(self._groups.items())
        return {gid: len(g) for gid, g in sorted(groups)}
