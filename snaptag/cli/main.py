"""
Command-line interface for snaptag.

Examples:
    snaptag tag photo.jpg --text "#東京 ラーメン"
    snaptag backends
    snaptag models status
    snaptag models download --family vision
    snaptag preference local
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from ..analysis.quality_gate import assess_text
from ..container import Container
from ..core.errors import DownloadFailedError, InsufficientStorageError
from ..core.types import ArtifactState, EnginePreference, InputKind
from ..models.artifacts import ModelArtifactManager
from ..shared.media_utils import format_bytes
from ..version import get_version_string

console = Console()
logger = logging.getLogger(__name__)

PREFERENCE_CHOICES = [p.value for p in EnginePreference]
FAMILY_CHOICES = ["text", "vision"]

STATE_STYLES = {
    ArtifactState.NOT_DOWNLOADED: "dim",
    ArtifactState.DOWNLOADING: "cyan",
    ArtifactState.DOWNLOADED: "green",
    ArtifactState.FAILED: "red",
    ArtifactState.CANCELLED: "yellow",
}


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Setup logging with rich handler."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def get_container(ctx: click.Context) -> Container:
    """Build the container on first use and keep it on the context."""
    obj = ctx.ensure_object(dict)
    if "container" not in obj:
        obj["container"] = Container.from_settings()
    return obj["container"]


def get_manager(ctx: click.Context, family: str) -> ModelArtifactManager:
    return get_container(ctx).artifacts[family]


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Only show warnings and errors")
@click.version_option(version=get_version_string(), prog_name="snaptag")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool) -> None:
    """Automatic photo tagging with cloud, on-device and local models."""
    setup_logging(verbose, quiet)
    ctx.ensure_object(dict)


@cli.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False))
@click.option("--text", "-t", default=None, help="Text already recognized in the photo")
@click.option(
    "--preference",
    "-p",
    type=click.Choice(PREFERENCE_CHOICES),
    default=None,
    help="Override the saved engine preference",
)
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def tag(
    ctx: click.Context,
    image: str,
    text: Optional[str],
    preference: Optional[str],
    as_json: bool,
) -> None:
    """Tag a single photo."""
    container = get_container(ctx)
    coordinator = container.coordinator
    if preference is not None:
        chosen = EnginePreference.parse(preference)
        coordinator.preference_provider = lambda: chosen

    image_path = Path(image)
    image_bytes = image_path.read_bytes()
    result = asyncio.run(
        coordinator.extract_tags_best_effort(image_path.name, image_bytes, text)
    )

    if as_json:
        click.echo(json.dumps(result.model_dump(), ensure_ascii=False, indent=2))
        return

    if not result.tags and not result.description:
        console.print("[yellow]No tags found.[/yellow]")
        return

    table = Table(title=f"Tags for {image_path.name}")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Tag", style="bold cyan")
    for i, tag_name in enumerate(result.tags, 1):
        table.add_row(str(i), tag_name)
    console.print(table)

    if result.description:
        console.print(f"\n[bold]Description:[/bold] {result.description}")
    console.print(f"[dim]Confidence: {result.confidence:.2f}[/dim]")


@cli.command("check-text")
@click.argument("text")
def check_text(text: str) -> None:
    """Check whether recognized text is worth sending to a model."""
    verdict = assess_text(text)
    if verdict.usable:
        console.print(f"[green]✓ Usable[/green] (letter ratio {verdict.letter_ratio:.2f})")
    else:
        console.print(f"[yellow]✗ Rejected:[/yellow] {verdict.reason}")


@cli.command()
@click.option(
    "--preference",
    "-p",
    type=click.Choice(PREFERENCE_CHOICES),
    default=None,
    help="Preference to evaluate (default: saved preference)",
)
@click.pass_context
def backends(ctx: click.Context, preference: Optional[str]) -> None:
    """Show inference backends and their availability."""
    container = get_container(ctx)
    chosen = EnginePreference.parse(preference) if preference else container.preference

    async def probe():
        rows = []
        for kind, backend in container.backends.items():
            rows.append((kind, backend, await backend.is_available()))
        first_text = await container.orchestrator.available_backend_name(chosen, InputKind.TEXT)
        first_image = await container.orchestrator.available_backend_name(chosen, InputKind.IMAGE)
        return rows, first_text, first_image

    rows, first_text, first_image = asyncio.run(probe())

    table = Table(title="Inference Backends")
    table.add_column("Slot", style="bold")
    table.add_column("Backend")
    table.add_column("Text", justify="center")
    table.add_column("Image", justify="center")
    table.add_column("Available", justify="center")
    for kind, backend, available in rows:
        table.add_row(
            kind.value,
            backend.name,
            "✓" if backend.supports_text else "",
            "✓" if backend.supports_image else "",
            "[green]yes[/green]" if available else "[red]no[/red]",
        )
    console.print(table)

    console.print(f"\nPreference: [bold]{chosen.display_name}[/bold]")
    console.print(f"  Image input → {first_image or '[yellow]none[/yellow]'}")
    console.print(f"  Text input  → {first_text or '[yellow]none[/yellow]'}")


@cli.command()
@click.argument("value", type=click.Choice(PREFERENCE_CHOICES), required=False)
@click.pass_context
def preference(ctx: click.Context, value: Optional[str]) -> None:
    """Show or set the engine preference."""
    container = get_container(ctx)
    if value is None:
        current = container.preference
        for pref in EnginePreference:
            marker = "[green]●[/green]" if pref == current else " "
            console.print(f"{marker} {pref.value:<10} {pref.display_name}")
        return

    chosen = EnginePreference.parse(value)
    container.preferences.save(chosen)
    console.print(f"[green]✓ Engine preference set to {chosen.display_name}[/green]")


@cli.group()
def models() -> None:
    """Manage local model files."""


@models.command("status")
@click.pass_context
def models_status(ctx: click.Context) -> None:
    """Show download state of the local models."""
    container = get_container(ctx)

    table = Table(title="Local Models")
    table.add_column("Family", style="bold")
    table.add_column("Model")
    table.add_column("State")
    table.add_column("Size", justify="right")
    table.add_column("On disk", justify="right")
    table.add_column("Free space", justify="right")
    for family, manager in container.artifacts.items():
        state = manager.state
        style = STATE_STYLES.get(state, "")
        try:
            free = format_bytes(manager.available_bytes())
        except OSError:
            free = "?"
        table.add_row(
            family,
            manager.spec.name,
            f"[{style}]{state.value}[/{style}]" if style else state.value,
            manager.display_size(),
            format_bytes(manager.downloaded_size_bytes()),
            free,
        )
    console.print(table)


@models.command("download")
@click.option("--family", "-f", type=click.Choice(FAMILY_CHOICES), required=True)
@click.pass_context
def models_download(ctx: click.Context, family: str) -> None:
    """Download a local model (Ctrl-C cancels)."""
    manager = get_manager(ctx, family)

    if manager.is_complete():
        console.print(f"[green]✓ {manager.spec.name} is already downloaded[/green]")
        return

    if not manager.has_enough_storage():
        console.print(
            f"[red]Not enough free space: {manager.display_required_size()} required[/red]"
        )
        sys.exit(1)

    console.print(f"Downloading [bold]{manager.spec.name}[/bold] ({manager.display_size()})")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(manager.spec.name, total=1.0)

        def on_progress(value: float) -> None:
            description = manager.current_file or manager.spec.name
            progress.update(task, completed=value, description=description)

        manager.add_progress_listener(on_progress)
        try:
            asyncio.run(manager.start_download())
        except KeyboardInterrupt:
            manager.cancel_download()
            console.print("[yellow]Download cancelled[/yellow]")
            sys.exit(130)
        except InsufficientStorageError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)
        except DownloadFailedError as e:
            console.print(f"[red]Download failed: {e.reason}[/red]")
            sys.exit(1)
        finally:
            manager.remove_progress_listener(on_progress)

    console.print(f"[green]✓ {manager.spec.name} is ready[/green]")


@models.command("delete")
@click.option("--family", "-f", type=click.Choice(FAMILY_CHOICES), required=True)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def models_delete(ctx: click.Context, family: str, yes: bool) -> None:
    """Delete a local model's files."""
    manager = get_manager(ctx, family)
    if not yes and not click.confirm(f"Delete {manager.spec.name} from {manager.directory}?"):
        return
    manager.delete_model()
    console.print(f"[green]✓ Deleted {manager.spec.name}[/green]")


@models.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--family", "-f", type=click.Choice(FAMILY_CHOICES), required=True)
@click.pass_context
def models_import(ctx: click.Context, path: str, family: str) -> None:
    """Import a model file downloaded by hand."""
    manager = get_manager(ctx, family)
    try:
        result = manager.import_model(Path(path))
    except DownloadFailedError as e:
        console.print(f"[red]Import failed: {e.reason}[/red]")
        sys.exit(1)

    style = "green" if result.is_complete else "yellow"
    console.print(f"[{style}]{result.message}[/{style}]")


def main() -> None:
    """Entry point for the snaptag command."""
    cli(obj={})


if __name__ == "__main__":
    main()
