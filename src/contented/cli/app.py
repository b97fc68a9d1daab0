"""
Root Typer application for the contented CLI.

    contented build            full build of every pipeline
    contented watch            build, then rebuild on file changes
    contented path FILE -p T   canonical path of FILE in pipeline T
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from typer import Typer

from contented.core.errors import ConfigError, ProcessorResolutionError
from contented.core.logging import configure_logging
from contented.core.settings import ContentedSettings, get_settings
from contented.execution.runner import ContentRunner, RunReport
from contented.framework.config import ContentedConfig, load_config

app = Typer(
    name="contented",
    help="contented: build a structured content index from source files.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)

ConfigOption = typer.Option(None, "--config", "-c", help="Pipeline config file (YAML).")
OutDirOption = typer.Option(None, "--out-dir", "-o", help="Override the output directory.")
ConcurrencyOption = typer.Option(None, "--concurrency", help="Files processed at once.")
LogLevelOption = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR.")


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("contented")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"contented {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """contented CLI, build and watch content pipelines."""


def _setup(
    config: Path | None,
    out_dir: Path | None,
    concurrency: int | None,
    log_level: str | None,
) -> tuple[ContentedSettings, ContentedConfig]:
    settings = get_settings(
        config_file=config,
        out_dir=out_dir,
        max_concurrency=concurrency,
        log_level=log_level,
    )
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    try:
        loaded = load_config(settings.config_file)
    except ConfigError as e:
        err_console.print(f"[bold red]Configuration error:[/bold red] {e.message}")
        raise typer.Exit(2) from None
    if settings.root_dir is not None:
        loaded.root_dir = settings.root_dir.resolve()
    if settings.out_dir is not None:
        loaded.out_dir = settings.out_dir.resolve()
    return settings, loaded


def _print_report(report: RunReport) -> None:
    table = Table(title="Content pipelines")
    table.add_column("Pipeline", style="cyan")
    table.add_column("Records", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Status", justify="center")

    for type_name, result in report.results.items():
        status = "✅" if result.ok else "⚠️"
        table.add_row(type_name, str(result.records), str(len(result.errors)), status)
    for type_name in report.failures:
        table.add_row(type_name, "-", "-", "❌")
    console.print(table)

    for result in report.results.values():
        for error in result.errors:
            console.print(f"  [yellow]{result.pipeline}[/yellow] {error.file}: {error.error.message}")
    for type_name, failure in report.failures.items():
        console.print(f"  [red]{type_name}[/red] {failure.message}")


@app.command()
def build(
    config: Path | None = ConfigOption,
    out_dir: Path | None = OutDirOption,
    concurrency: int | None = ConcurrencyOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Run a full build of every pipeline and write the content index."""
    settings, loaded = _setup(config, out_dir, concurrency, log_level)
    report = asyncio.run(ContentRunner(loaded, settings).build())
    _print_report(report)
    if report.failures:
        raise typer.Exit(1)


@app.command()
def watch(
    config: Path | None = ConfigOption,
    out_dir: Path | None = OutDirOption,
    concurrency: int | None = ConcurrencyOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Build, then rebuild incrementally whenever source files change."""
    settings, loaded = _setup(config, out_dir, concurrency, log_level)
    runner = ContentRunner(loaded, settings)
    try:
        asyncio.run(runner.watch())
    except KeyboardInterrupt:
        runner.stop()
        console.print("[dim]Stopped watching.[/dim]")


@app.command()
def path(
    file: str = typer.Argument(..., help="File path relative to the pipeline root."),
    pipeline: str = typer.Option(..., "--pipeline", "-p", help="Pipeline type."),
    config: Path | None = ConfigOption,
) -> None:
    """Print the canonical path a file maps to."""
    _, loaded = _setup(config, None, None, "WARNING")
    try:
        declared = loaded.get_pipeline(pipeline)
    except KeyError as e:
        err_console.print(f"[red]{e.args[0]}[/red]")
        raise typer.Exit(2) from None
    try:
        processor = loaded.registry.create(
            declared.processor, declared.root_path(loaded.root_dir), declared
        )
    except ProcessorResolutionError as e:
        err_console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from None
    typer.echo("/" + processor.get_sanitized_path(file))
