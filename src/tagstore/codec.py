"""Read and write group files.

A group file is plain text, one tag per line:

    ops
    dev
    Release Notes

No header, no trailing metadata, no ordering guarantee. Writers only ever
append (see ``append_tags``); a full rewrite is something an external editor
may do, and the watcher picks it up as a reload.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from tagstore.errors import CorruptRead
from tagstore.models import dedupe_tags

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

_ENCODING = "utf-8"
_LINE_RE = re.compile(r"\r?\n")


def decode(data: bytes | str) -> list[str]:
    """Parse file content into tags (first-seen order, case-insensitively unique)."""
    text = data.decode(_ENCODING, errors="replace") if isinstance(data, bytes) else data
    lines = (line.strip() for line in _LINE_RE.split(text))
    return dedupe_tags(line for line in lines if line)


def encode(tags: Iterable[str], *, file_nonempty: bool = False) -> bytes:
    """Encode tags for appending to a file.

    A leading newline is added when the file already has content, so the
    last existing line is never glued to the first new tag.
    """
    body = "\n".join(tags)
    if file_nonempty and body:
        body = "\n" + body
    return body.encode(_ENCODING)


def read_group_file(path: Path) -> list[str] | None:
    """Decode a group file. None if it does not exist."""
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise CorruptRead(path, exc) from exc
    return decode(data)


def append_tags(path: Path, tags: list[str]) -> int:
    """Append *tags* to the group file. Caller must hold the file lock.

    Returns the number of bytes written.
    """
    if not tags:
        return 0
    try:
        nonempty = path.stat().st_size > 0
    except FileNotFoundError:
        nonempty = False
    payload = encode(tags, file_nonempty=nonempty)
    with path.open("ab") as f:
        f.write(payload)
    return len(payload)
