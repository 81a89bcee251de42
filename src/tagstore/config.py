"""TagStoreConfig: project-local config for the tag store.

Default layout (relative to the directory holding tagstore.toml):

    tagstore.toml         # config (optional; defaults apply without it)
    .env                  # optional: TAGSTORE_DIR, PORT
    tag_files/
        tags_<group>.txt        # one group per file, one tag per line
        tags_<group>.txt.lock   # present only while a writer holds the group

tagstore.toml example:

    [tags]
    dir = "tag_files"       # relative to the config root, or absolute

    [lock]
    retries = 5
    factor = 1.2
    min_timeout = 0.1
    max_timeout = 1.0
    stale = 10.0

    [watcher]
    backend = "auto"        # auto | inotify | poll
    stability_threshold = 0.5
    poll_interval = 1.0
    rescan_interval = 60.0
    scan_workers = 8

    [server]
    host = "127.0.0.1"
    port = 3000
    prefix = "/tags"

Environment variables win over the file: TAGSTORE_DIR replaces [tags].dir
and PORT replaces [server].port. They are read from the process environment
first, then from .env.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tagstore.lock import LockPolicy

_CONFIG_FILENAME = "tagstore.toml"
_DEFAULT_TAGS_DIR = "tag_files"
_BACKENDS = ("auto", "inotify", "poll")


@dataclass
class WatcherConfig:
    backend: str = "auto"
    stability_threshold: float = 0.5   # seconds a file must be unchanged before reload
    poll_interval: float = 1.0         # poll backend only
    rescan_interval: float = 60.0      # backstop full rescan; 0 disables
    scan_workers: int = 8


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3000
    prefix: str = "/tags"


@dataclass
class TagStoreConfig:
    """Resolved configuration."""

    root: Path                      # directory that contains tagstore.toml
    tags_dir: Path = field(default_factory=Path)
    lock: LockPolicy = field(default_factory=LockPolicy)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def for_dir(cls, tags_dir: Path | str, **overrides: Any) -> TagStoreConfig:
        """Defaults for a tags directory, without reading any file."""
        path = Path(tags_dir).resolve()
        return cls(root=path.parent, tags_dir=path, **overrides)

    @property
    def config_path(self) -> Path:
        return self.root / _CONFIG_FILENAME


def _load_env(root: Path) -> dict[str, str]:
    """Parse a simple KEY=VALUE .env file (no external dependency)."""
    env_file = root / ".env"
    if not env_file.exists():
        return {}
    env: dict[str, str] = {}
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def _env(name: str, dotenv: dict[str, str]) -> str | None:
    return os.environ.get(name) or dotenv.get(name) or None


def _normalize_prefix(prefix: str) -> str:
    prefix = "/" + prefix.strip("/")
    return "" if prefix == "/" else prefix


def load_config(root: Path | str | None = None) -> TagStoreConfig:
    """Load tagstore.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd()).resolve()
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    dotenv = _load_env(root_path)

    tags_section = raw.get("tags", {})
    lock_section = raw.get("lock", {})
    watch_section = raw.get("watcher", {})
    srv_section = raw.get("server", {})

    tags_dir = Path(_env("TAGSTORE_DIR", dotenv) or tags_section.get("dir", _DEFAULT_TAGS_DIR))
    if not tags_dir.is_absolute():
        tags_dir = root_path / tags_dir

    backend = str(watch_section.get("backend", "auto"))
    if backend not in _BACKENDS:
        msg = f"[watcher].backend must be one of {', '.join(_BACKENDS)}, got {backend!r}"
        raise ValueError(msg)

    port = _env("PORT", dotenv) or srv_section.get("port", 3000)

    return TagStoreConfig(
        root=root_path,
        tags_dir=tags_dir.resolve(),
        lock=LockPolicy(
            retries=int(lock_section.get("retries", 5)),
            factor=float(lock_section.get("factor", 1.2)),
            min_timeout=float(lock_section.get("min_timeout", 0.1)),
            max_timeout=float(lock_section.get("max_timeout", 1.0)),
            stale=float(lock_section.get("stale", 10.0)),
        ),
        watcher=WatcherConfig(
            backend=backend,
            stability_threshold=float(watch_section.get("stability_threshold", 0.5)),
            poll_interval=float(watch_section.get("poll_interval", 1.0)),
            rescan_interval=float(watch_section.get("rescan_interval", 60.0)),
            scan_workers=max(1, int(watch_section.get("scan_workers", 8))),
        ),
        server=ServerConfig(
            host=str(srv_section.get("host", "127.0.0.1")),
            port=int(port),
            prefix=_normalize_prefix(str(srv_section.get("prefix", "/tags"))),
        ),
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for tagstore.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, tags_dir: str | None = None) -> Path:
    """Write a default tagstore.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"tagstore.toml already exists at {config_path}"
        raise FileExistsError(msg)

    content = f"""\
[tags]
dir = "{tags_dir or _DEFAULT_TAGS_DIR}"   # relative to this file, or absolute; TAGSTORE_DIR overrides

# [lock]
# retries = 5          # retries after the first attempt
# factor = 1.2         # backoff multiplier
# min_timeout = 0.1    # first wait, seconds
# max_timeout = 1.0    # cap per wait, seconds
# stale = 10.0         # locks older than this are reclaimed

# [watcher]
# backend = "auto"             # auto | inotify | poll
# stability_threshold = 0.5    # quiet period before reloading a changed file
# poll_interval = 1.0          # poll backend only
# rescan_interval = 60.0       # backstop rescan of the whole directory; 0 disables
# scan_workers = 8

# [server]
# host = "127.0.0.1"
# port = 3000                  # PORT overrides
# prefix = "/tags"
"""
    config_path.write_text(content)
    return config_path
