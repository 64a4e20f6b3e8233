"""Command-line interface for Woof.

Provides commands for configuration validation, offline ingestion,
reporting, the mailbox listener and the query API server.

Usage:
    python -m woof validate-config
    python -m woof ingest archive.mbox patch.eml
    python -m woof report
    python -m woof listen
    python -m woof serve
"""

from __future__ import annotations

import mailbox
import signal
import sys
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.table import Table

from woof.config import validate_config_file
from woof.core.logging import configure_logging

if TYPE_CHECKING:
    from woof.config_schema import WoofConfig
    from woof.db.records import Record
    from woof.db.store import RecordStore
    from woof.engine.ingest import IngestEngine

console = Console()


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: WoofConfig
    store: RecordStore
    engine: IngestEngine


def _init_cli_deps() -> CLIDeps:
    """Load config, open the store and build the ingest engine.

    Prints actionable error messages and calls sys.exit(1) on failure.
    """
    from woof.config import get_config
    from woof.core.errors import ConfigLoadError, ConfigValidationError, PersistenceError
    from woof.db.store import RecordStore
    from woof.engine.ingest import IngestEngine

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Create config/config.yaml with at least [cyan]mailing_list[/cyan] and "
            "[cyan]release_manager[/cyan], or point WOOF_CONFIG_PATH at one."
        )
        sys.exit(1)

    try:
        store = RecordStore.open(config.storage.db_path)
    except PersistenceError as e:
        console.print(
            f"[red]Store error:[/red] {e}\n\n"
            "Fix or move the file aside; Woof will not overwrite an unreadable store."
        )
        sys.exit(1)

    return CLIDeps(config=config, store=store, engine=IngestEngine.from_config(store, config))


def _iter_raw_messages(path: Path) -> Iterator[dict[str, Any]]:
    """Yield raw envelopes from an .eml file or an mbox archive."""
    from woof.mail.parser import parse_message

    if path.suffix.lower() == ".eml":
        yield parse_message(path.read_bytes())
        return

    box = mailbox.mbox(path, create=False)
    try:
        for key in box.iterkeys():
            yield parse_message(box.get_bytes(key))
    finally:
        box.close()


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Woof - track bugs, changes, releases, help requests and patches from a mailing list."""
    log_level = "DEBUG" if debug else "INFO"
    # Use human-readable output for CLI, JSON for server
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file."""
    if config_path:
        console.print(f"Validating config: [cyan]{config_path}[/cyan]")
    else:
        console.print("Validating config: [cyan]config/config.yaml[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("ingest")
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
def ingest(paths: tuple[Path, ...]) -> None:
    """Ingest .eml files or mbox archives, in order, into the store."""
    deps = _init_cli_deps()

    for path in paths:
        summary = deps.engine.process_messages(_iter_raw_messages(path))
        for result in summary.results:
            if result.outcome is None:
                continue
            color = "red" if result.status == "rejected" else "green"
            console.print(f"[{color}]{result.status:>8}[/{color}] {result.outcome}")
        console.print(
            f"[bold]{path.name}[/bold]: {summary.received} messages, "
            f"{summary.applied} applied, {summary.rejected} rejected, "
            f"{summary.duplicates} duplicates, {summary.not_list} not from the list"
        )

    if deps.store.last_persist_error is not None:
        console.print(f"[red]Store was not saved:[/red] {deps.store.last_persist_error}")
        sys.exit(1)


def _records_table(title: str, records: list[Record], extra: str | None = None) -> Table:
    table = Table(title=f"{title} ({len(records)})", title_justify="left")
    table.add_column("Date", style="dim")
    table.add_column("From")
    table.add_column("Subject")
    if extra:
        table.add_column(extra.capitalize())
    for record in sorted(records, key=lambda r: r.date.timestamp() if r.date else 0.0):
        row = [
            record.date.strftime("%Y-%m-%d") if record.date else "",
            record.sender,
            record.subject,
        ]
        if extra:
            value = getattr(record, extra)
            row.append(", ".join(sorted(value)) if isinstance(value, frozenset) else str(value))
        table.add_row(*row)
    return table


@cli.command("report")
def report() -> None:
    """Print unfixed bugs, unreleased changes, releases, pending help and patches."""
    deps = _init_cli_deps()
    store = deps.store

    console.print(_records_table("Unfixed bugs", store.unfixed_bugs()))
    console.print(_records_table("Unreleased changes", store.unreleased_changes(), "versions"))
    console.print(_records_table("Releases", store.releases(), "version"))
    console.print(_records_table("Pending help", store.pending_help()))
    console.print(_records_table("Unapplied patches", store.unapplied_patches()))


@cli.command("listen")
def listen() -> None:
    """Watch the configured IMAP folder and ingest list traffic until stopped."""
    from woof.mail.imap import ImapMailSource, MailboxMonitor

    configure_logging(log_level="INFO", json_output=True)
    deps = _init_cli_deps()

    if deps.config.imap is None:
        console.print("[red]No imap section in config;[/red] nothing to listen to.")
        sys.exit(1)

    monitor = MailboxMonitor(
        ImapMailSource.from_config(deps.config.imap),
        deps.engine,
        poll_seconds=deps.config.imap.poll_seconds,
        recycle_minutes=deps.config.imap.recycle_minutes,
    )

    stop_event = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop_event.set())
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())

    monitor.start()
    console.print(
        f"Listening on [cyan]{deps.config.imap.folder}[/cyan] every "
        f"{deps.config.imap.poll_seconds}s. Press Ctrl+C to stop."
    )
    stop_event.wait()
    monitor.stop()
    console.print("\n[yellow]Stopped.[/yellow]")


@cli.command("serve")
@click.option("--host", default=None, help="Host to bind to (default: web.host from config)")
@click.option("--port", default=None, type=int, help="Port to bind to (default: web.port)")
def serve(host: str | None, port: int | None) -> None:
    """Start the query API and, when configured, the mailbox listener."""
    import uvicorn

    from woof.config import get_config
    from woof.core.errors import ConfigLoadError, ConfigValidationError
    from woof.web.app import create_app

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)

    host = host or config.web.host
    port = port or config.web.port

    if host == "0.0.0.0":  # noqa: S104
        console.print(
            "[yellow]Warning:[/yellow] Binding to 0.0.0.0 exposes the API to the network."
        )

    configure_logging(log_level="INFO", json_output=True)

    app = create_app()
    console.print(f"Starting server on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run(app, host=host, port=port, log_level="info")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
