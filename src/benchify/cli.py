"""Command-line interface for benchify.

Subcommands:
    benchify run        Execute a benchmark session from a config file
    benchify template   Write a documented template config
    benchify show       Display the report of a previous session
"""

from __future__ import annotations

from pathlib import Path

import click

from benchify import __version__
from benchify.logging import setup_logging


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """benchify: benchmark command-line tools against each other."""


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@main.command("run")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--results-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for result files (default: from config, else benchify-results).",
)
@click.option("--main-tool", type=str, default=None, help="Tool every other tool is compared to.")
@click.option(
    "--workers",
    type=int,
    default=None,
    help="Pairs sampled concurrently (default: number of CPUs).",
)
@click.option(
    "--parallel-prep/--no-parallel-prep",
    default=None,
    help="Run the initial preparation phases in parallel.",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Default per-command timeout in seconds.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show every phase command.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write a DEBUG log to this file.",
)
def run_cmd(
    config_path: Path,
    results_dir: Path | None,
    main_tool: str | None,
    workers: int | None,
    parallel_prep: bool | None,
    timeout: float | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Run the benchmark described by CONFIG_PATH.

    \b
    Examples:
        # Sample every (test, tool) pair with the config's settings
        benchify run benchify.yaml

        # Compare everything against one tool, four pairs at a time
        benchify run benchify.yaml --main-tool cpython --workers 4
    """
    from benchify.config import load_config
    from benchify.display import format_report
    from benchify.errors import ConfigError
    from benchify.runner import BenchSession

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    cli_overrides: dict[str, object] = {
        "results_dir": results_dir,
        "main_tool": main_tool,
        "workers": workers,
        "parallel_prep": parallel_prep,
        "timeout": timeout,
    }
    try:
        config = load_config(config_path, cli_overrides=cli_overrides)
    except (ConfigError, OSError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    session = BenchSession(config)
    try:
        report = session.run()
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        session.cancel()
        click.echo("\nBenchmark interrupted.", err=True)
        raise SystemExit(130)  # noqa: B904

    click.echo(format_report(report))
    click.echo(f"Results saved to: {config.results_dir}")
    if report.cancelled:
        raise SystemExit(130)


# ---------------------------------------------------------------------------
# template
# ---------------------------------------------------------------------------


@main.command("template")
@click.argument(
    "path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("benchify.yaml"),
)
def template_cmd(path: Path) -> None:
    """Write a documented template config to PATH (default: benchify.yaml)."""
    from benchify.config import write_template

    try:
        write_template(path)
    except FileExistsError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    click.echo(f"Template written to {path}")


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@main.command("show")
@click.argument("result_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
def show_cmd(result_dir: Path) -> None:
    """Display the report of a previous session.

    RESULT_DIR is a results directory containing report.json.
    """
    from benchify.display import format_report
    from benchify.results import load_report

    try:
        report = load_report(result_dir)
    except FileNotFoundError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    click.echo(format_report(report))
