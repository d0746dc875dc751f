"""CLI commands for dramaforge using Typer and Rich.

Implements:
- generate: Create a project from a text file or a premise and run every
  stage to completion in auto mode
- serve: Run the HTTP API with uvicorn
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from dramaforge import validate_dependencies
from dramaforge.config import ConfigurationError, settings
from dramaforge.engine import DramaEngine
from dramaforge.orchestrator.state import COMPLETED, STAGE_LABELS
from dramaforge.schemas.project import ArtStyle, Project

app = typer.Typer(name="dramaforge", help="AI short-drama generation pipeline")
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # Request lines from httpx are only interesting when debugging
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.command()
def generate(
    source: Optional[Path] = typer.Argument(None, help="Text file with the story to adapt"),
    premise: Optional[str] = typer.Option(None, "--premise", "-p", help="Short premise to expand into a story"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Project name"),
    style: str = typer.Option(ArtStyle.ANIMATION.value, "--style", "-s", help="Visual style"),
    language: str = typer.Option("zh", "--language", "-l", help="Output language (en, zh, ja, ko)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Generate a short drama from a story file or a premise.

    Creates a project in auto mode and runs all six stages: preprocessing,
    script synthesis, character design, storyboarding, prompt optimization
    and video generation.
    """
    _configure_logging(verbose)

    if (source is None) == (premise is None):
        console.print("[red]Error:[/red] Pass either a story file or --premise")
        raise typer.Exit(code=1)
    if language not in ("en", "zh", "ja", "ko"):
        console.print(f"[red]Error:[/red] Unsupported language: {language}")
        raise typer.Exit(code=1)

    # Fail-fast credential validation
    try:
        validate_dependencies()
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    if source is not None:
        if not source.is_file():
            console.print(f"[red]Error:[/red] File not found: {source}")
            raise typer.Exit(code=1)
        content = source.read_text(encoding="utf-8")
        source_kind = "full_text"
        project_name = name or source.stem
    else:
        content = premise
        source_kind = "premise"
        project_name = name or premise[:40]

    try:
        project = asyncio.run(_generate_async(project_name, content, style, language, source_kind))
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Pipeline interrupted.[/yellow]")
        raise typer.Exit(code=130)

    if project.status == COMPLETED:
        console.print("[green]✓[/green] Drama generation complete!")
        _print_sequences(project)
        return

    console.print()
    stage = STAGE_LABELS.get(project.failed_stage or "", project.status)
    console.print(f"[red]✗ Pipeline stopped at {stage}:[/red] {project.error or project.status}")
    raise typer.Exit(code=1)


async def _generate_async(
    name: str, content: str, style: str, language: str, source_kind: str
) -> Project:
    """Async implementation of generate command."""
    engine = DramaEngine()
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[bold green]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            bar = progress.add_task("Starting pipeline...", total=100)
            project = engine.create_project(
                name, content, style=style, language=language,
                mode="auto", source_kind=source_kind,
            )
            console.print(f"[green]Created project:[/green] {project.id}")

            def _on_change(snapshot: list[dict]) -> None:
                for item in snapshot:
                    if item["id"] == project.id:
                        label = STAGE_LABELS.get(item["status"], item["status"].capitalize())
                        progress.update(bar, completed=item["progress"], description=label)
                        return

            unsubscribe = engine.subscribe(_on_change)
            try:
                await engine.wait_idle()
            finally:
                unsubscribe()

        return engine.get_project(project.id)
    finally:
        await engine.close()


def _print_sequences(project: Project) -> None:
    table = Table(title=project.name)
    table.add_column("#", justify="right")
    table.add_column("Characters")
    table.add_column("Status")
    table.add_column("Video")

    for index, sequence in enumerate(project.sequences, start=1):
        table.add_row(
            str(index),
            ", ".join(sequence.characters_involved),
            sequence.generation_status or "",
            sequence.video_url or "[dim]-[/dim]",
        )
    console.print(table)
    missing = sum(1 for s in project.sequences if not s.video_url)
    if missing:
        console.print(
            f"[yellow]{missing} sequence(s) have no video; regenerate them from the API.[/yellow]"
        )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run(
        "dramaforge.api.app:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        reload=False,
    )


if __name__ == "__main__":
    app()
