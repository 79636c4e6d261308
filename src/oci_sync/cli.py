"""
oci-sync CLI - Command-line interface.

Run the sync engine from a YAML config, pull a single artifact once, or
check how an artifact URL resolves.
"""

import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from oci_sync.config import get_settings, load_descriptors, parse_descriptor
from oci_sync.core.context import SyncContext
from oci_sync.core.exceptions import CancellationError, OciSyncError, format_exception
from oci_sync.core.models import DEFAULT_TAG
from oci_sync.registry.reference import parse_reference
from oci_sync.sync.artifact import prepare
from oci_sync.sync.controller import SyncController
from oci_sync.sync.puller import Puller

app = typer.Typer(
    name="oci-sync",
    help="oci-sync - Keep local directories in sync with OCI artifacts",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@app.command()
def run(
    config: Path = typer.Argument(..., help="YAML file listing the artifacts to sync"),
):
    """Sync every configured artifact until interrupted."""
    try:
        descriptors = load_descriptors(config)
    except OciSyncError as e:
        console.print(f"[red]{format_exception(e)}[/red]")
        raise typer.Exit(1)

    if not descriptors:
        console.print(f"[yellow]No artifacts configured in {config}[/yellow]")
        raise typer.Exit(0)

    root = SyncContext.background()

    def _shutdown(signum, frame):
        console.print(f"\n[yellow]Received {signal.Signals(signum).name}, stopping[/yellow]")
        root.cancel()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    controller = SyncController()
    handles = controller.start_all(root, descriptors)
    console.print(f"[green]Syncing {len(handles)} of {len(descriptors)} artifact(s)[/green]")
    if not handles:
        raise typer.Exit(1)

    while not root.wait(1.0):
        pass

    for handle in handles:
        handle.join(timeout=5.0)
    console.print("[green]Stopped[/green]")


@app.command()
def pull(
    url: str = typer.Argument(..., help="Artifact URL, e.g. ghcr.io/acme/zones:1.2.0"),
    path: Path = typer.Argument(..., help="Destination directory"),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Registry username"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Registry password"),
    insecure: bool = typer.Option(False, "--insecure", help="Use plain HTTP"),
):
    """Pull an artifact once, with retries, and print its digest."""
    settings = get_settings()
    artifact = None
    try:
        descriptor = parse_descriptor(
            {
                "url": url,
                "path": str(path),
                "username": username,
                "password": password,
                "insecure": insecure,
            },
            root=Path.cwd(),
            settings=settings,
        )
        artifact = prepare(descriptor, settings=settings)
        desc = Puller(settings).pull_with_retry(SyncContext.background(), artifact)
    except CancellationError as e:
        console.print(f"[red]Pull cancelled: {e}[/red]")
        raise typer.Exit(1)
    except OciSyncError as e:
        console.print(f"[red]{format_exception(e)}[/red]")
        raise typer.Exit(1)
    finally:
        if artifact is not None and artifact.client is not None:
            artifact.client.close()

    console.print(f"[green]Pulled[/green] {artifact} -> {descriptor.path}")
    console.print(f"Digest: {desc.digest}")


@app.command()
def resolve(
    url: str = typer.Argument(..., help="Artifact URL to resolve"),
):
    """Show how an artifact URL resolves, without contacting the registry."""
    try:
        coords = parse_reference(url)
    except OciSyncError as e:
        console.print(f"[red]{format_exception(e)}[/red]")
        raise typer.Exit(1)

    implicit = not coords.reference
    if implicit:
        coords = parse_reference(f"{url}:{DEFAULT_TAG}")

    table = Table(title="Resolved Artifact")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Registry", coords.registry)
    table.add_row("Repository", coords.repository)
    table.add_row("Reference", coords.reference + (" (default)" if implicit else ""))
    table.add_row("Artifact", str(coords))
    console.print(table)


@app.command()
def version():
    """Show version information."""
    from oci_sync import __version__

    console.print(f"oci-sync v{__version__}")


if __name__ == "__main__":
    app()
