"""CLI commands for capturing full-page screenshots."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

capture_app = typer.Typer(help="Capture full-page screenshots of web pages.")
console = Console()


@capture_app.command("url")
def capture_url_cmd(
    url: str = typer.Argument(..., help="The page to capture."),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Directory for the image and metadata."),
    format: Optional[str] = typer.Option(None, "--format", "-f", help="Output format: png, jpeg or webp."),
    quality: Optional[float] = typer.Option(None, "--quality", "-q", min=0.0, max=1.0, help="Lossy encoding quality (0-1)."),
    delay: Optional[int] = typer.Option(None, "--delay", min=0, help="Settle delay after each scroll, in ms."),
    frames: Optional[bool] = typer.Option(None, "--frames/--no-frames", help="Capture accessible embedded frames."),
    width: Optional[int] = typer.Option(None, "--width", min=1, help="Viewport width in CSS pixels."),
    height: Optional[int] = typer.Option(None, "--height", min=1, help="Viewport height in CSS pixels."),
    template: Optional[str] = typer.Option(None, "--name", help="Filename template, e.g. '{domain}-{timestamp}'."),
    debug: bool = typer.Option(False, "--debug", help="Log every capture step."),
    events: bool = typer.Option(False, "--events", help="Emit JSONL events to stderr."),
) -> None:
    """Capture one URL and save the stitched image plus a JSON metadata sidecar."""
    from pagestitch.settings import get_settings

    settings = get_settings()
    options = _build_options(settings, format=format, quality=quality, delay=delay, frames=frames, debug=debug)
    browser_settings = _browser_settings(settings, width=width, height=height)
    effective_output = output_dir or Path(settings.output.output_dir)

    result = _run_capture(url, options, browser_settings, events=events)
    if result is None:
        raise typer.Exit(code=1)

    saved = _save(result, effective_output, settings, template)
    meta = result.metadata
    console.print(f"\n[green]✓[/green] Captured {url}")
    console.print(f"  Type: {meta.capture_type.value} ({meta.strategy}, {meta.section_count} section(s))")
    console.print(f"  Size: {meta.analysis.page.width}x{meta.analysis.page.height}")
    console.print(f"  Image: {saved.image_path}")
    if saved.metadata_path:
        console.print(f"  Metadata: {saved.metadata_path}")
    if saved.sub_capture_paths:
        console.print(f"  Sub-captures: {len(saved.sub_capture_paths)} file(s)")


@capture_app.command("batch")
def capture_batch_cmd(
    file: Path = typer.Argument(..., help="File with one URL per line ('#' starts a comment)."),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Directory for images and metadata."),
    format: Optional[str] = typer.Option(None, "--format", "-f", help="Output format: png, jpeg or webp."),
    template: Optional[str] = typer.Option(
        "{domain}-{timestamp}", "--name", help="Filename template for each capture."
    ),
    events: bool = typer.Option(False, "--events", help="Emit JSONL events to stderr."),
) -> None:
    """Capture several URLs one after another.

    A failed URL is reported and the batch continues; the exit code is 1 if
    any capture failed.
    """
    from pagestitch.settings import get_settings

    if not file.exists():
        console.print(f"[red]File not found:[/red] {file}")
        raise typer.Exit(code=1)

    urls = _load_urls(file)
    if not urls:
        console.print("[yellow]No URLs to process.[/yellow]")
        raise typer.Exit(code=0)

    settings = get_settings()
    options = _build_options(settings, format=format)
    browser_settings = _browser_settings(settings)
    effective_output = output_dir or Path(settings.output.output_dir)

    console.print(f"Loaded {len(urls)} URL(s) from {file}")
    table = Table(title="Batch results")
    table.add_column("URL")
    table.add_column("Status")
    table.add_column("Sections", justify="right")
    table.add_column("Image")

    failed = 0
    for url in urls:
        result = _run_capture(url, options, browser_settings, events=events)
        if result is None:
            failed += 1
            table.add_row(url, "[red]failed[/red]", "-", "")
            continue
        saved = _save(result, effective_output, settings, template)
        table.add_row(url, "[green]ok[/green]", str(result.metadata.section_count), str(saved.image_path))

    console.print(table)
    console.print(f"\n[bold]Batch complete:[/bold] {len(urls) - failed} succeeded, {failed} failed")
    if failed:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_options(
    settings: Any,
    *,
    debug: bool = False,
    format: str | None = None,
    quality: float | None = None,
    delay: int | None = None,
    frames: bool | None = None,
):
    try:
        return settings.capture.to_options(
            debug=debug or settings.debug,
            output_format=format,
            quality=quality,
            scroll_delay_ms=delay,
            include_frames=frames,
        )
    except ValueError as e:
        console.print(f"[red]Invalid capture options:[/red] {e}")
        raise typer.Exit(code=2)


def _browser_settings(settings: Any, *, width: int | None = None, height: int | None = None):
    updates = {}
    if width:
        updates["viewport_width"] = width
    if height:
        updates["viewport_height"] = height
    return settings.browser.model_copy(update=updates)


def _run_capture(url: str, options: Any, browser_settings: Any, *, events: bool = False):
    """Run one capture with a progress bar; return ``None`` on failure."""
    from playwright.async_api import Error as PlaywrightError

    from pagestitch.browser.capture import capture_url
    from pagestitch.exceptions import PageStitchError
    from pagestitch.monitoring import CallbackSink, EventBus, EventType, JsonlSink, LoggingSink

    bus = EventBus()
    bus.add_sink(LoggingSink())
    if events:
        bus.add_sink(JsonlSink(sys.stderr))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(f"Capturing {url}", total=1.0)

        def on_event(event) -> None:
            if event.event_type == EventType.PROGRESS:
                progress.update(task, completed=event.data.get("progress", 0.0))

        bus.add_sink(CallbackSink(on_event))
        try:
            return asyncio.run(capture_url(url, options, browser_settings=browser_settings, events=bus))
        except (PageStitchError, PlaywrightError) as e:
            console.print(f"[red]✗[/red] Capture failed for {url}: {e}")
            return None


def _save(result: Any, output_dir: Path, settings: Any, template: str | None):
    from pagestitch.export.writer import save_result

    return save_result(
        result,
        output_dir,
        template=template or settings.output.filename_template,
        timestamp_format=settings.output.timestamp_format,
        write_metadata=settings.output.write_metadata,
    )


def _load_urls(file: Path) -> list[str]:
    urls: list[str] = []
    for line in file.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            urls.append(line)
    return urls
