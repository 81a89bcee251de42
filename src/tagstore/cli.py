"""tagstore CLI — tag groups backed by flat text files.

Commands:
    tagstore init [DIR]          create tagstore.toml + the tags directory
    tagstore get GROUP           print a group's tags, sorted
    tagstore add GROUP TAG...    add tags to a group
    tagstore groups              table of groups and tag counts
    tagstore serve               start the JSON HTTP API
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from tagstore.config import TagStoreConfig, init_config, load_config
from tagstore.errors import InvalidGroupId
from tagstore.store import TagStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg(root: str | None) -> TagStoreConfig:
    try:
        return load_config(root)
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _open(cfg: TagStoreConfig) -> TagStore:
    """One-shot store: scan only, no watcher thread."""
    try:
        return TagStore(cfg).start(watch=False)
    except OSError as exc:
        raise click.ClickException(f"cannot open {cfg.tags_dir}: {exc}") from exc


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="tagstore")
@click.option("--root", default=None, help="Config root (default: search upward from cwd)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, root: str | None, verbose: bool) -> None:
    """tagstore — shared tag groups on disk."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(message)s",
    )
    ctx.obj = {"root": root}


def _cfg(ctx: click.Context) -> TagStoreConfig:
    return _load_cfg(ctx.obj.get("root"))


# ---------------------------------------------------------------------------
# tagstore init
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("tags_dir", required=False)
@click.option("--dir", "root", default=".", show_default=True, help="Project root")
def init(tags_dir: str | None, root: str) -> None:
    """Create tagstore.toml and the tags directory."""
    root_path = Path(root).resolve()
    try:
        config_path = init_config(root_path, tags_dir=tags_dir)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("tagstore.toml already exists — skipping init")

    cfg = _load_cfg(str(root_path))
    cfg.tags_dir.mkdir(parents=True, exist_ok=True)
    click.echo(f"Tags dir : {cfg.tags_dir}")


# ---------------------------------------------------------------------------
# tagstore get / add
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("group")
@click.pass_context
def get(ctx: click.Context, group: str) -> None:
    """Print the tags of GROUP, one per line."""
    cfg = _cfg(ctx)
    with _open(cfg) as store:
        try:
            tags = store.find(group)
        except InvalidGroupId as exc:
            raise click.BadParameter(str(exc), param_hint="GROUP") from exc
    if tags is None:
        raise click.ClickException(f"Unknown group: {group}")
    for tag in tags:
        click.echo(tag)


@cli.command()
@click.argument("group")
@click.argument("tags", nargs=-1, required=True)
@click.pass_context
def add(ctx: click.Context, group: str, tags: tuple[str, ...]) -> None:
    """Add TAGS to GROUP (existing tags are ignored, case-insensitively)."""
    cfg = _cfg(ctx)
    with _open(cfg) as store:
        try:
            result = store.add_tags(group, tags)
        except InvalidGroupId as exc:
            raise click.BadParameter(str(exc), param_hint="GROUP") from exc
    click.echo(f"Added {result.added_count} to {group}")
    for tag in result.added_tags:
        click.echo(f"  + {tag}")
    if result.warning is not None:
        raise click.ClickException(f"not saved to disk: {result.warning.cause}")


# ---------------------------------------------------------------------------
# tagstore groups
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def groups(ctx: click.Context) -> None:
    """List groups with their tag counts."""
    from rich.console import Console
    from rich.table import Table

    cfg = _cfg(ctx)
    with _open(cfg) as store:
        counts = store.counts()

    table = Table(title=f"tagstore — {cfg.tags_dir}", show_header=True, header_style="bold")
    table.add_column("Group", no_wrap=True)
    table.add_column("Tags", justify="right")
    for group_id, n in counts.items():
        table.add_row(group_id, str(n))
    if not counts:
        table.add_row("[dim]no groups[/dim]", "")
    Console().print(table)


# ---------------------------------------------------------------------------
# tagstore serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", "-b", default=None, help="Bind address (default: [server].host)")
@click.option("--port", "-p", default=None, type=int, help="Port (default: [server].port or $PORT)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the JSON HTTP API.

    \b
    tagstore serve                  # http://127.0.0.1:3000/tags/<group>
    tagstore serve --port 8080
    """
    from tagstore.web import serve as _web_serve

    cfg = _cfg(ctx)
    pkg_logger = logging.getLogger("tagstore")
    if pkg_logger.getEffectiveLevel() > logging.INFO:
        pkg_logger.setLevel(logging.INFO)
    _web_serve(cfg, host=host, port=port)


if __name__ == "__main__":
    cli()
