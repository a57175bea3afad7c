"""Command-line inspection of persisted shared sessions.

Usage:
    layoutsync-inspect [APP_ID] [--json]
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from layoutsync.models.base import parse_wire
from layoutsync.models.session import PipelineStatus, SessionSnapshot
from layoutsync.persistence.files import FileKeyValueStore
from layoutsync.persistence.paths import global_session_path

if TYPE_CHECKING:
    from datetime import datetime

console = Console()

_STATUS_STYLES = {
    PipelineStatus.IDLE: "dim",
    PipelineStatus.COMPILING: "yellow",
    PipelineStatus.SUCCESS: "green",
    PipelineStatus.ERROR: "red",
}


def _fmt(value: datetime | str | None) -> str:
    if value is None:
        return "-"
    if isinstance(value, str):
        return value
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="layoutsync-inspect",
        description="Show the persisted shared session of an app.",
    )
    parser.add_argument(
        "app_id", nargs="?", default=None, help="App id (default: STORAGE__APP_ID)"
    )
    parser.add_argument(
        "--json", action="store_true", dest="as_json", help="Dump the raw payload"
    )
    return parser


def render_session(snapshot: SessionSnapshot, con: Console | None = None) -> None:
    """Print session, pipeline, lock and presence tables."""
    con = con or console

    header = Text()
    header.append(f"Revision {snapshot.revision}", style="bold")
    header.append(f"  by {snapshot.session_id}  at {_fmt(snapshot.updated_at)}")
    con.print(Panel(header, title="Session", border_style="blue"))

    view = Table(title="View")
    view.add_column("Field", style="cyan")
    view.add_column("Value")
    view.add_row("Frame", snapshot.active_frame)
    view.add_row("Surface", snapshot.active_surface)
    view.add_row("Selection", snapshot.selection_path or "-")
    view.add_row("Scale", f"{snapshot.scale:g}")
    view.add_row("Draft", snapshot.draft_id or "-")
    view.add_row("Compiled", snapshot.compiled_id or "-")
    con.print(view)

    pipeline = snapshot.pipeline
    style = _STATUS_STYLES.get(pipeline.status, "")
    status = Table(title="Pipeline")
    status.add_column("Status")
    status.add_column("Draft")
    status.add_column("Compiled")
    status.add_column("Published")
    status.add_column("Error")
    status.add_column("Lock")
    status.add_row(
        f"[{style}]{pipeline.status}[/]" if style else str(pipeline.status),
        pipeline.draft_id or "-",
        pipeline.compiled_id or "-",
        _fmt(pipeline.published_at),
        f"{pipeline.error.code}: {pipeline.error.message}" if pipeline.error else "-",
        "[red]locked[/]" if snapshot.draft_lock.locked else "free",
    )
    con.print(status)

    presence = Table(title="Presence")
    presence.add_column("Session", style="cyan")
    presence.add_column("Frame")
    presence.add_column("Surface")
    presence.add_column("Last Seen")
    for session_id, entry in sorted(snapshot.presence.items()):
        presence.add_row(
            session_id,
            entry.active_frame,
            entry.active_surface,
            _fmt(entry.last_seen_at),
        )
    con.print(presence)


def inspect() -> None:
    """Show the session persisted in STORAGE__LOCAL_DIR.

    Usage:
        layoutsync-inspect [APP_ID] [--json]
    """
    from layoutsync.config import get_settings

    args = _build_parser().parse_args(sys.argv[1:])
    settings = get_settings()
    if settings.storage.local_dir is None:
        console.print("[red]Error:[/] STORAGE__LOCAL_DIR not set")
        sys.exit(1)

    app_id = args.app_id or settings.storage.app_id
    store = FileKeyValueStore(settings.storage.local_dir)
    raw = store.get(global_session_path(app_id))
    if raw is None:
        console.print(f"[yellow]No session persisted for app '{app_id}'.[/]")
        sys.exit(1)

    if args.as_json:
        console.print_json(json.dumps(raw))
        return

    snapshot = parse_wire(SessionSnapshot, raw)
    version = raw.get("schemaVersion") if isinstance(raw, dict) else None
    if snapshot is None:
        console.print(
            f"[red]Incompatible session payload[/] for app '{app_id}' "
            f"(schemaVersion={version!r})"
        )
        sys.exit(1)
    render_session(snapshot)
