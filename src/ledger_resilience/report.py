"""Error report generation and file output.

``ReportGenerator.summarize`` is a pure read over an ``ErrorLedger``.
``build_report`` turns the ledger into a JSON-ready dict and
``write_report`` persists it as ``<stem>.json`` plus a Markdown
rendering ``<stem>.md``.
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from ledger_resilience.classifier import REMEDIATION_HINTS
from ledger_resilience.ledger import ErrorLedger
from ledger_resilience.models import ErrorKind, ErrorRecord, ReportSummary

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


def most_common_kind(records: list[ErrorRecord]) -> ErrorKind | None:
    """Most frequent kind; ties go to the kind that reached the maximum first.

    Args:
        records: Records in ledger order.

    Returns:
        The winning ``ErrorKind``, or ``None`` for an empty list.
    """
    counts: Counter[str] = Counter()
    best: ErrorKind | None = None
    best_count = 0
    for record in records:
        label = record.kind.label
        counts[label] += 1
        if counts[label] > best_count:
            best_count = counts[label]
            best = record.kind
    return best


class ReportGenerator:
    """Derives read-only summaries from an error ledger."""

    @staticmethod
    def summarize(ledger: ErrorLedger) -> ReportSummary:
        """Group the ledger's records by kind and category.

        ``successful_retries`` comes from the ledger's recovery counter,
        never from the failure records.
        """
        records = ledger.records()
        stats = ledger.stats()
        by_kind = Counter(record.kind.label for record in records)
        by_category = Counter(record.kind.category.value for record in records)
        return ReportSummary(
            total_errors=len(records),
            count_by_kind=dict(by_kind),
            count_by_category=dict(by_category),
            most_common_kind=most_common_kind(records),
            successful_retries=stats.recovered_operations,
            stats=stats,
        )


# ---------------------------------------------------------------------------
# JSON report
# ---------------------------------------------------------------------------


def build_report(
    ledger: ErrorLedger,
    *,
    health: dict[str, Any] | None = None,
    circuits: dict[str, dict[str, object]] | None = None,
) -> dict[str, Any]:
    """Build the JSON-ready error report for a session.

    Args:
        ledger: The session's error ledger.
        health: Optional last health check, included verbatim.
        circuits: Optional circuit breaker snapshot.

    Returns:
        A dict with ``timestamp``, ``total_errors``, ``error_counts``,
        ``records``, ``summary`` and ``statistics``.
    """
    records = ledger.records()
    summary = ReportGenerator.summarize(ledger)
    stats = summary.stats

    finished = stats.successful_operations + stats.failed_operations
    success_rate = (
        round(stats.successful_operations / finished * 100, 2) if finished else None
    )

    report: dict[str, Any] = {
        "timestamp": datetime.now(tz=UTC).isoformat(),
        "total_errors": summary.total_errors,
        "error_counts": summary.count_by_kind,
        "error_categories": summary.count_by_category,
        "records": [record.model_dump(mode="json") for record in records],
        "summary": {
            "most_common_error": (
                summary.most_common_kind.label if summary.most_common_kind else None
            ),
            "successful_retries": summary.successful_retries,
            "total_retries": stats.retries_attempted,
        },
        "statistics": {
            **stats.model_dump(),
            "success_rate_percent": success_rate,
        },
    }
    if health is not None:
        report["health"] = health
    if circuits:
        report["circuit_breakers"] = circuits
    return report


# ---------------------------------------------------------------------------
# Markdown rendering
# ---------------------------------------------------------------------------


def render_markdown(report: dict[str, Any]) -> str:
    """Render a report dict produced by ``build_report`` as Markdown."""
    summary = report.get("summary", {})
    statistics = report.get("statistics", {})

    lines = [
        "# Ledger Error Report",
        "",
        f"Generated: {report.get('timestamp', 'unknown')}",
        "",
        "## Summary",
        "",
        f"- **Total errors:** {report.get('total_errors', 0)}",
        f"- **Most common error:** {summary.get('most_common_error') or 'none'}",
        f"- **Successful retries:** {summary.get('successful_retries', 0)}",
        f"- **Total retries:** {summary.get('total_retries', 0)}",
        "",
    ]

    if statistics:
        lines += ["## Statistics", "", "| Metric | Value |", "| --- | --- |"]
        for key, value in statistics.items():
            shown = "n/a" if value is None else value
            lines.append(f"| {key.replace('_', ' ')} | {shown} |")
        lines.append("")

    counts: dict[str, int] = report.get("error_counts", {})
    if counts:
        lines += [
            "## Errors by kind",
            "",
            "| Kind | Count | Hint |",
            "| --- | --- | --- |",
        ]
        for label, count in sorted(counts.items(), key=lambda item: -item[1]):
            category, _, reason = label.partition(":")
            hint = REMEDIATION_HINTS.get(reason) if category == "fatal" else None
            lines.append(f"| `{label}` | {count} | {hint or ''} |")
        lines.append("")

    records: list[dict[str, Any]] = report.get("records", [])
    if records:
        lines += ["## Failed operations", ""]
        for record in records:
            kind = record.get("kind", {})
            label = f"{kind.get('category')}:{kind.get('reason')}"
            lines.append(
                f"- `{record.get('operation_name')}` ({label}, "
                f"{record.get('attempts_made')} attempt(s)): {record.get('message')}"
            )
        lines.append("")

    health = report.get("health")
    if health:
        state = "healthy" if health.get("healthy") else "unhealthy"
        lines += [
            "## Network health",
            "",
            f"- **Status:** {state} (score {health.get('score')})",
            "",
        ]

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# File output
# ---------------------------------------------------------------------------


def write_report(
    report: dict[str, Any],
    output_dir: Path | str,
    stem: str = "error-report",
    *,
    markdown: bool = True,
) -> list[Path]:
    """Write the report as JSON and, optionally, Markdown.

    Creates the output directory if it doesn't exist.

    Args:
        report: Dict produced by ``build_report``.
        output_dir: Directory to write into.
        stem: File name without extension.
        markdown: Also write ``<stem>.md``.

    Returns:
        The paths written, JSON first.
    """
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    json_path = out_dir / f"{stem}.json"
    json_path.write_text(json.dumps(report, indent=2, default=str), encoding="utf-8")
    written = [json_path]

    if markdown:
        md_path = out_dir / f"{stem}.md"
        md_path.write_text(render_markdown(report), encoding="utf-8")
        written.append(md_path)

    logger.info(
        "report_written",
        paths=[str(path) for path in written],
        total_errors=report.get("total_errors", 0),
    )
    return written


def load_report(path: Path | str) -> dict[str, Any]:
    """Read a JSON report written by ``write_report``."""
    return json.loads(Path(path).read_text(encoding="utf-8"))
