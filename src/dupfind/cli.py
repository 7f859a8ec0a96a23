from pathlib import Path
from typing import Optional

import typer

from .config import ConfigError, Settings
from .logging import get_logger
from .walk import SUPPORTED_EXTENSIONS, iter_candidates, parse_extensions
from .dedup.pipeline import ScanPipeline
from .dedup.events import EventStream
from .dedup.index import IndexExhaustionError
from .output.report import build_report, display_path, format_groups, write_report_json

app = typer.Typer(help="dupfind – find visually duplicate images", no_args_is_help=True)

_WAIT_SECONDS = 0.5


@app.callback()
def main() -> None:
    """Find visually duplicate images in a directory tree."""


@app.command()
def scan(
    root: Path = typer.Argument(..., exists=True, file_okay=False, readable=True, help="Directory to search"),
    threshold: int = typer.Option(6, "--threshold", "-t", help="Maximum fingerprint distance for duplicates"),
    grid_size: int = typer.Option(32, help="Side of the normalized grayscale grid"),
    hash_size: int = typer.Option(8, help="Fingerprint side; the fingerprint has hash_size^2 bits"),
    workers: int = typer.Option(0, "--workers", "-w", help="Decode workers (0 = one per CPU)"),
    queue_size: int = typer.Option(64, help="Finished fingerprints buffered ahead of grouping"),
    index: str = typer.Option("bktree", help="Similarity index: 'bktree' or 'linear'"),
    min_dimension: int = typer.Option(16, help="Smallest accepted image width/height in pixels"),
    follow_symlinks: bool = typer.Option(False, "--follow-symlinks/--no-follow-symlinks", help="Follow symbolic links"),
    max_depth: Optional[int] = typer.Option(None, help="Directory depth limit (1 = only ROOT itself)"),
    ext: str = typer.Option(",".join(sorted(SUPPORTED_EXTENSIONS)), help="Comma separated extensions to consider"),
    json_out: Optional[Path] = typer.Option(None, "--json-out", help="Directory to write dupfind_report.json"),
    show_errors: bool = typer.Option(False, "--show-errors/--hide-errors", help="List every file that failed"),
) -> None:
    """
    Scan ROOT for images and print sets of near-duplicates.

    Images are matched by perceptual fingerprint, so resized or recompressed
    copies are found as well as exact ones. Press Ctrl-C to stop early and
    print what was found so far.
    """
    logger = get_logger(__name__)

    try:
        settings = Settings(
            grid_size=grid_size,
            hash_size=hash_size,
            distance_threshold=threshold,
            worker_count=workers,
            queue_size=queue_size,
            min_dimension=min_dimension,
            index_kind=index,
        )
        extensions = parse_extensions(ext)
        if max_depth is not None and max_depth < 1:
            raise ConfigError("a depth limit below 1 doesn't search at all")
    except ConfigError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2)

    candidates = iter_candidates(
        root,
        follow_symlinks=follow_symlinks,
        max_depth=max_depth,
        extensions=extensions,
    )
    pipeline = ScanPipeline(settings=settings, events=EventStream(buffered=False))

    logger.info(f"Searching {root} with {settings.worker_count} workers, threshold {settings.distance_threshold}")
    pipeline.start(candidates)
    try:
        summary = _wait_interruptible(pipeline)
    except IndexExhaustionError as exc:
        logger.error(f"Scan stopped early: {exc}")
        summary = exc.summary

    groups = pipeline.engine.groups()
    if groups:
        typer.echo(format_groups(groups))
        typer.echo("")
    else:
        typer.echo("No duplicates found")

    status = "Scan cancelled" if summary.cancelled else "Scan complete"
    typer.echo(
        f"{status}: {summary.scanned} images scanned, {summary.group_count} duplicate sets "
        f"({summary.grouped} images), {summary.failed} failed"
    )

    if show_errors and summary.failures:
        typer.echo("")
        typer.echo("Errors:")
        for failure in summary.failures:
            typer.echo(f"  {display_path(failure.path)}: {failure.reason}")

    if json_out is not None:
        report_path = write_report_json(build_report(summary, groups, root=root), json_out)
        typer.echo(f"Report written to {display_path(report_path)}")


def _wait_interruptible(pipeline: ScanPipeline):
    # Poll so Ctrl-C lands in the main thread instead of inside a join
    while True:
        try:
            summary = pipeline.wait(timeout=_WAIT_SECONDS)
        except KeyboardInterrupt:
            typer.echo("Cancelling scan...", err=True)
            pipeline.cancel()
            return pipeline.wait()
        if summary is not None:
            return summary


if __name__ == "__main__":
    app()
