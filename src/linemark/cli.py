"""linemark CLI: line bookmarks that survive edits, renames and windows.

Commands:
    linemark init [NAME]             create linemark.toml + .linemark/
    linemark add FILE LINE           bookmark a line (1-based)
    linemark rm ID                   remove a bookmark (id or unique prefix)
    linemark clear                   remove every bookmark
    linemark rename ID LABEL         change a label
    linemark ls [--filter TEXT]      list bookmarks, optionally grouped
    linemark show ID                 details of one bookmark
    linemark next|prev [FILE LINE]   navigate from a cursor, wrapping around
    linemark check                   re-fingerprint every bookmarked line
    linemark fix ID LINE             re-anchor a drifted bookmark
    linemark touch FILE              report a changed file
    linemark mv OLD NEW              report a renamed file
    linemark graph                   relatedness graph as JSON
    linemark export / import         markdown, json, csv or txt
    linemark migrate --to SCOPE      move the store between global/per-workspace
    linemark key show|rotate|reset   encryption secret
    linemark config get|set|reset    runtime settings
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from linemark.config import DEFAULTS, STORAGE_SCOPES, LinemarkConfig, init_config, load_config
from linemark.errors import LinemarkError
from linemark.interchange import FORMATS, format_for
from linemark.session import BookmarkSession

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from linemark.models import Bookmark
    from linemark.query import Direction
    from linemark.staleness import CheckReport

_ID_WIDTH = 8

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg() -> LinemarkConfig:
    try:
        return load_config()
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _run(body: Callable[[BookmarkSession], Awaitable[Any]]) -> Any:
    """Open a session on the current project, run body, flush on the way out."""
    cfg = _load_cfg()

    async def runner() -> Any:
        async with BookmarkSession.from_config(cfg) as session:
            return await body(session)

    try:
        return asyncio.run(runner())
    except (LinemarkError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


def _where(b: Bookmark) -> str:
    return f"{b.file_path}:{b.line + 1}"


def _print_table(bookmarks: list[Bookmark], title: str | None = None) -> None:
    from rich.console import Console
    from rich.markup import escape
    from rich.table import Table

    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Label")
    table.add_column("Location")
    table.add_column("Hits", justify="right")
    table.add_column("", no_wrap=True)
    for b in bookmarks:
        table.add_row(
            b.id[:_ID_WIDTH],
            escape(b.label),
            escape(_where(b)),
            str(b.access_count),
            "[yellow]stale[/yellow]" if b.stale else "",
        )
    Console().print(table)


def _echo_report(report: CheckReport) -> None:
    click.echo(f"Checked {report.checked} bookmark(s)")
    if report.drifted:
        click.echo(f"  drifted     : {len(report.drifted)}")
    if report.unreachable:
        click.echo(f"  unreachable : {len(report.unreachable)}")


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="linemark")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
def cli(verbose: bool) -> None:
    """linemark: persistent, drift-aware line bookmarks."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("name", required=False)
@click.option("--dir", "root", default=".", show_default=True, help="Project root")
def init(name: str | None, root: str) -> None:
    """Create linemark.toml and the .linemark/ state directory."""
    root_path = Path(root).resolve()
    try:
        config_path = init_config(root_path, name=name)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("linemark.toml already exists, skipping init")

    cfg = load_config(root_path)
    cfg.ensure_dirs()
    click.echo(f"Store dir : {cfg.store_dir}")
    for ws in cfg.workspaces:
        click.echo(f"Workspace : {ws}")


# ---------------------------------------------------------------------------
# Editing
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.argument("line", type=click.IntRange(min=1))
@click.option("--label", "-l", default=None, help="Display name (default: Bookmark N)")
def add(file: str, line: int, label: str | None) -> None:
    """Bookmark LINE (1-based) of FILE."""

    async def body(session: BookmarkSession) -> Bookmark:
        return session.add(file, line - 1, label=label)

    b = _run(body)
    click.echo(f"Added {b.id[:_ID_WIDTH]}  {b.label}  {_where(b)}")


@cli.command()
@click.argument("bookmark_id")
def rm(bookmark_id: str) -> None:
    """Remove a bookmark."""

    async def body(session: BookmarkSession) -> str:
        full = session.resolve_id(bookmark_id)
        session.remove(full)
        return full

    click.echo(f"Removed {_run(body)[:_ID_WIDTH]}")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def clear(yes: bool) -> None:
    """Remove every bookmark in the current store."""
    if not yes:
        click.confirm("Remove all bookmarks?", abort=True)

    async def body(session: BookmarkSession) -> int:
        n = len(session.store)
        session.clear_all()
        return n

    click.echo(f"Removed {_run(body)} bookmark(s)")


@cli.command()
@click.argument("bookmark_id")
@click.argument("label")
def rename(bookmark_id: str, label: str) -> None:
    """Change a bookmark's label."""

    async def body(session: BookmarkSession) -> Bookmark:
        full = session.resolve_id(bookmark_id)
        session.rename(full, label)
        return session.get(full)

    b = _run(body)
    click.echo(f"Renamed {b.id[:_ID_WIDTH]} to {b.label}")


@cli.command()
@click.argument("bookmark_id")
@click.argument("line", type=click.IntRange(min=1))
def fix(bookmark_id: str, line: int) -> None:
    """Re-anchor a bookmark on LINE of its file and clear its stale flag."""

    async def body(session: BookmarkSession) -> Bookmark:
        return session.fix_position(session.resolve_id(bookmark_id), line - 1)

    b = _run(body)
    click.echo(f"Fixed {b.id[:_ID_WIDTH]} at {_where(b)}")


# ---------------------------------------------------------------------------
# Viewing and navigation
# ---------------------------------------------------------------------------


@cli.command("ls")
@click.option("--filter", "-f", "text", default="", help="Substring of label or file name")
@click.option("--groups", "-g", is_flag=True, help="Group by workspace root")
def ls_cmd(text: str, groups: bool) -> None:
    """List bookmarks in file+line order."""

    async def body(session: BookmarkSession) -> Any:
        return session.tree(text) if groups else session.bookmarks(text)

    result = _run(body)
    if not result:
        click.echo("No bookmarks")
        return
    if not groups:
        _print_table(result)
        return
    from linemark.query import node_label

    for node in result:
        _print_table([child.bookmark for child in node.children], title=node_label(node))


@cli.command()
@click.argument("bookmark_id")
def show(bookmark_id: str) -> None:
    """Show every field of one bookmark."""

    async def body(session: BookmarkSession) -> Bookmark:
        return session.get(session.resolve_id(bookmark_id))

    b = _run(body)
    for key, value in b.to_dict().items():
        click.echo(f"{key:<20}: {value}")
    click.echo(f"{'abs_path':<20}: {b.abs_path}")


def _navigate(file: str | None, line: int | None, direction: Direction) -> None:
    if (file is None) != (line is None):
        raise click.UsageError("give both FILE and LINE, or neither")

    async def body(session: BookmarkSession) -> Bookmark | None:
        return session.navigate(file, (line or 1) - 1, direction)

    b = _run(body)
    if b is None:
        click.echo("No reachable bookmarks")
        return
    click.echo(f"{b.label}\t{b.abs_path}:{b.line + 1}")


@cli.command("next")
@click.argument("file", required=False)
@click.argument("line", required=False, type=click.IntRange(min=1))
def next_cmd(file: str | None, line: int | None) -> None:
    """Go to the first bookmark after FILE:LINE (wraps around)."""
    _navigate(file, line, "next")


@cli.command("prev")
@click.argument("file", required=False)
@click.argument("line", required=False, type=click.IntRange(min=1))
def prev_cmd(file: str | None, line: int | None) -> None:
    """Go to the last bookmark before FILE:LINE (wraps around)."""
    _navigate(file, line, "previous")


@cli.command()
def graph() -> None:
    """Print the file relatedness graph as JSON."""

    async def body(session: BookmarkSession) -> dict[str, Any]:
        return session.graph().to_dict()

    click.echo(json.dumps(_run(body), indent=2))


# ---------------------------------------------------------------------------
# Change notifications
# ---------------------------------------------------------------------------


@cli.command()
def check() -> None:
    """Compare every bookmarked line with its fingerprint."""

    async def body(session: BookmarkSession) -> tuple[CheckReport, list[Bookmark]]:
        report = session.check_all()
        return report, [b for b in session.bookmarks() if b.stale]

    report, stale = _run(body)
    _echo_report(report)
    if stale:
        _print_table(stale, title="Stale bookmarks")


@cli.command()
@click.argument("file")
def touch(file: str) -> None:
    """Tell linemark FILE has changed; its bookmarks are re-checked."""

    async def body(session: BookmarkSession) -> CheckReport:
        return session.file_changed(file)

    _echo_report(_run(body))


@cli.command()
@click.argument("old")
@click.argument("new")
def mv(old: str, new: str) -> None:
    """Tell linemark OLD was renamed to NEW; bookmarks follow the file."""

    async def body(session: BookmarkSession) -> int:
        return session.file_renamed(old, new)

    click.echo(f"Moved {_run(body)} bookmark(s)")


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--format", "fmt", type=click.Choice(FORMATS), default=None, help="Default: from -o suffix, else markdown")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Write to file instead of stdout")
@click.option("--filter", "-f", "text", default="", help="Only bookmarks matching this text")
def export(fmt: str | None, output: str | None, text: str) -> None:
    """Export bookmarks."""
    if fmt is None:
        try:
            fmt = format_for(output) if output else "markdown"
        except ValueError as exc:
            raise click.UsageError(str(exc)) from exc

    async def body(session: BookmarkSession) -> str:
        return session.export(fmt, text)

    content = _run(body)
    if output is None:
        click.echo(content, nl=False)
        return
    Path(output).write_text(content)
    click.echo(f"Wrote {output}")


@cli.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--format", "fmt", type=click.Choice(FORMATS), default=None, help="Default: from the file suffix")
def import_cmd(file: str, fmt: str | None) -> None:
    """Import bookmarks; entries at an already-bookmarked line are skipped."""
    if fmt is None:
        try:
            fmt = format_for(file)
        except ValueError as exc:
            raise click.UsageError(str(exc)) from exc
    text = Path(file).read_text()

    async def body(session: BookmarkSession) -> int:
        return session.import_text(text, fmt)

    click.echo(f"Imported {_run(body)} bookmark(s)")


# ---------------------------------------------------------------------------
# Storage, keys and settings
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--to", "scope", type=click.Choice(STORAGE_SCOPES), required=True)
def migrate(scope: str) -> None:
    """Move stored bookmarks to another storage scope and switch to it."""

    async def body(session: BookmarkSession) -> tuple[int, str]:
        moved = await session.migrate(scope)
        return moved, session.key

    moved, key = _run(body)
    click.echo(f"Moved {moved} bookmark(s); now using {key}")


@cli.group()
def key() -> None:
    """Manage the encryption secret."""


@key.command("show")
def key_show() -> None:
    """Print the current secret."""

    async def body(session: BookmarkSession) -> str:
        return str(session.settings.get("encryption_secret"))

    secret = _run(body)
    click.echo(secret or "(no secret yet; one is generated on the first encrypted save)")


@key.command("rotate")
def key_rotate() -> None:
    """Generate a new secret and re-encrypt the store with it."""

    async def body(session: BookmarkSession) -> bool:
        await session.rotate_secret()
        return session.codec.enabled

    enabled = _run(body)
    click.echo("Rotated secret" + ("; store re-encrypted" if enabled else " (encryption is off)"))


@key.command("reset")
def key_reset() -> None:
    """Drop the runtime secret override, falling back to .env / linemark.toml."""

    async def body(session: BookmarkSession) -> None:
        session.settings.reset("encryption_secret")
        await session.flush()

    _run(body)
    click.echo("Secret override removed")


@cli.group()
def config() -> None:
    """Read or change runtime settings."""


def _display(option: str, value: Any) -> str:
    if option == "encryption_secret":
        return "****" if value else ""
    return json.dumps(value)


@config.command("get")
@click.argument("option", required=False, type=click.Choice(sorted(DEFAULTS)))
def config_get(option: str | None) -> None:
    """Show one option, or all of them."""
    values = _load_cfg().settings().as_dict()
    for name in [option] if option else sorted(values):
        click.echo(f"{name:<20} = {_display(name, values[name])}")


@config.command("set")
@click.argument("option", type=click.Choice(sorted(DEFAULTS)))
@click.argument("value")
def config_set(option: str, value: str) -> None:
    """Change an option; the store is re-saved or reloaded as needed."""

    async def body(session: BookmarkSession) -> Any:
        session.settings.set(option, value)
        await session.flush()
        return session.settings.get(option)

    click.echo(f"{option} = {_display(option, _run(body))}")


@config.command("reset")
@click.argument("option", type=click.Choice(sorted(DEFAULTS)))
def config_reset(option: str) -> None:
    """Drop a runtime override."""

    async def body(session: BookmarkSession) -> Any:
        session.settings.reset(option)
        await session.flush()
        return session.settings.get(option)

    click.echo(f"{option} = {_display(option, _run(body))}")
