"""Value types and validation: group ids, tag normalization, add results."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tagstore.errors import InvalidGroupId

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tagstore.errors import DurabilityWarning

GROUP_ID_RE = re.compile(r"^[A-Za-z0-9]+$")
# Storage file name for a group; group 1 is the group id.
TAG_FILE_RE = re.compile(r"^tags_([A-Za-z0-9]+)\.txt$")


def validate_group_id(group_id: object) -> str:
    """Return *group_id* unchanged, or raise ``InvalidGroupId``."""
    if not isinstance(group_id, str) or not GROUP_ID_RE.match(group_id):
        raise InvalidGroupId(group_id)
    return group_id


def tag_file_name(group_id: str) -> str:
    return f"tags_{group_id}.txt"


def group_id_from_name(name: str) -> str | None:
    """Group id encoded in a storage file name, or None for any other file."""
    m = TAG_FILE_RE.match(name)
    return m.group(1) if m else None


def tag_key(tag: str) -> str:
    """Case-insensitive identity of a tag."""
    return tag.casefold()


def _stringify(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    return str(value)


def normalize_tags(candidates: Iterable[Any]) -> list[str]:
    """Stringify, trim and drop empty candidates. Order is preserved."""
    out: list[str] = []
    for raw in candidates:
        text = _stringify(raw)
        if text is None:
            continue
        text = text.strip()
        if text:
            out.append(text)
    return out


def dedupe_tags(tags: Iterable[str]) -> list[str]:
    """Drop case-insensitive duplicates, keeping the first spelling."""
    seen: dict[str, str] = {}
    for tag in tags:
        seen.setdefault(tag_key(tag), tag)
    return list(seen.values())


@dataclass
class AddResult:
    """Outcome of ``TagStore.add_tags``."""

    group_id: str
    added_tags: list[str] = field(default_factory=list)
    warning: DurabilityWarning | None = None

    @property
    def added_count(self) -> int:
        return len(self.added_tags)

    @property
    def durable(self) -> bool:
        """True when every added tag reached disk."""
        return self.warning is None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "addedCount": self.added_count,
            "addedTags": list(self.added_tags),
        }
        if self.warning is not None:
            d["warning"] = str(self.warning)
        return d
