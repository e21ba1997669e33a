"""Typer CLI entry point for ledger-resilience."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ledger_resilience import __version__
from ledger_resilience.config import Settings, format_validation_error
from ledger_resilience.exceptions import ConfigurationError
from ledger_resilience.executor import LedgerExecutor
from ledger_resilience.logging import configure_logging, generate_session_id
from ledger_resilience.report import load_report, write_report
from ledger_resilience.simulator import (
    PROBE_NAMES,
    SimulatedLedgerClient,
    run_simulation,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="ledger-resilience",
    help="Resilient transaction and query execution for ledger networks.",
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(
    config_path: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Load settings with error handling and user-friendly messages."""
    from pydantic import ValidationError

    try:
        return Settings.load(config_path=config_path, **overrides)
    except ValidationError as exc:
        err_console.print(
            Panel(
                format_validation_error(exc),
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(code=1) from exc


def _display_health(health: dict[str, Any]) -> None:
    """Print the probe results of a health check."""
    table = Table(title="Network Health", show_lines=True)
    table.add_column("Probe", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Detail")

    errors: dict[str, str] = health.get("errors", {})
    for name, passed in health.get("checks", {}).items():
        status = "[green]OK[/green]" if passed else "[red]FAIL[/red]"
        table.add_row(name, status, errors.get(name, ""))
    console.print(table)

    verdict = "[green]healthy[/green]" if health["healthy"] else "[red]unhealthy[/red]"
    console.print(
        f"Score {health['score']} (threshold {health.get('threshold', '?')}): {verdict}"
    )


def _display_report(report: dict[str, Any]) -> None:
    """Print the summary and per-kind counts of an error report."""
    summary = report.get("summary", {})
    statistics = report.get("statistics", {})

    table = Table(title="Error Report", show_lines=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total errors", str(report.get("total_errors", 0)))
    table.add_row("Most common error", str(summary.get("most_common_error") or "-"))
    table.add_row("Successful retries", str(summary.get("successful_retries", 0)))
    table.add_row("Total retries", str(summary.get("total_retries", 0)))
    for key in ("total_operations", "successful_operations", "failed_operations"):
        if key in statistics:
            table.add_row(key.replace("_", " ").capitalize(), str(statistics[key]))
    rate = statistics.get("success_rate_percent")
    if rate is not None:
        table.add_row("Success rate", f"{rate}%")
    console.print(table)

    counts: dict[str, int] = report.get("error_counts", {})
    if counts:
        kinds = Table(title="Errors by Kind")
        kinds.add_column("Kind", style="magenta")
        kinds.add_column("Count", justify="right")
        for label, count in sorted(counts.items(), key=lambda item: -item[1]):
            kinds.add_row(label, str(count))
        console.print(kinds)


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]ledger-resilience[/bold] {__version__}")
        raise typer.Exit


@app.callback()
def common(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Ledger-resilience global options."""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def simulate(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
    transactions: Annotated[
        int,
        typer.Option("--transactions", "-t", min=0, help="Transactions to submit."),
    ] = 10,
    queries: Annotated[
        int,
        typer.Option("--queries", "-q", min=0, help="Queries to run."),
    ] = 5,
    seed: Annotated[
        int | None,
        typer.Option("--seed", help="Random seed for repeatable runs."),
    ] = None,
    transient_rate: Annotated[
        float,
        typer.Option("--transient-rate", min=0.0, max=1.0),
    ] = 0.2,
    fatal_rate: Annotated[
        float,
        typer.Option("--fatal-rate", min=0.0, max=1.0),
    ] = 0.0,
    receipt_delay_rate: Annotated[
        float,
        typer.Option("--receipt-delay-rate", min=0.0, max=1.0),
    ] = 0.2,
    failing_probe: Annotated[
        list[str] | None,
        typer.Option(
            "--failing-probe",
            help=f"Probe to take offline; one of {', '.join(PROBE_NAMES)}.",
        ),
    ] = None,
    max_retries: Annotated[
        int | None,
        typer.Option("--max-retries", help="Retries after the initial attempt."),
    ] = None,
    base_delay_ms: Annotated[
        int | None,
        typer.Option("--base-delay-ms", help="Backoff base delay in milliseconds."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Output directory for the report."),
    ] = None,
    no_report: Annotated[
        bool,
        typer.Option("--no-report", help="Do not write report files."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Run a health-checked session against a simulated ledger."""
    overrides: dict[str, Any] = {}
    retry: dict[str, Any] = {}
    if max_retries is not None:
        retry["max_retries"] = max_retries
    if base_delay_ms is not None:
        retry["base_delay_ms"] = base_delay_ms
    if retry:
        overrides["retry"] = retry
    if verbose:
        overrides["logging"] = {"level": "DEBUG"}

    settings = _load_settings(config, **overrides)
    configure_logging(
        level=settings.logging.level,
        fmt=settings.logging.format,
        log_file=settings.logging.file,
        session_id=generate_session_id(),
    )
    logger.info(
        "simulation_started", seed=seed, transactions=transactions, queries=queries
    )

    try:
        client = SimulatedLedgerClient(
            seed,
            transient_rate=transient_rate,
            fatal_rate=fatal_rate,
            receipt_delay_rate=receipt_delay_rate,
            failing_probes=failing_probe or (),
        )
        executor = LedgerExecutor.from_settings(settings)
    except (ValueError, ConfigurationError) as exc:
        err_console.print(f"[red]Invalid simulation options:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    result = asyncio.run(
        run_simulation(executor, client, transactions=transactions, queries=queries)
    )
    _display_health(result.health)

    if result.aborted:
        err_console.print(
            "[red]Network unhealthy; no transactions were submitted.[/red]"
        )
        raise typer.Exit(code=2)

    console.print(
        f"[green]Completed:[/green] {result.completed}  "
        f"[red]Failed:[/red] {result.failed}  "
        f"[dim]Submissions: {client.counters.submissions}[/dim]"
    )
    report = executor.generate_error_report()
    _display_report(report)

    if not no_report:
        paths = write_report(
            report,
            output or settings.report.output_dir,
            settings.report.stem,
            markdown=settings.report.markdown,
        )
        for path in paths:
            console.print(f"[green]Report saved:[/green] {path}")


@app.command()
def report(
    path: Annotated[Path, typer.Argument(help="JSON report written by simulate.")],
) -> None:
    """Render a saved JSON error report."""
    if not path.exists():
        err_console.print(f"[red]Report not found:[/red] {path}")
        raise typer.Exit(code=1)
    try:
        data = load_report(path)
    except json.JSONDecodeError as exc:
        err_console.print(f"[red]Report is not valid JSON:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    console.print(f"[dim]Generated: {data.get('timestamp', 'unknown')}[/dim]")
    _display_report(data)


@app.command(name="config")
def config_cmd(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
) -> None:
    """Print the resolved configuration."""
    settings = _load_settings(config)
    console.print_json(settings.model_dump_json())


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
