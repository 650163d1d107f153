"""Report generator — markdown summary and JSON dump of a migration run."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.console import Console

from dxmigrate.models.transfer import MigrationRun, TransferStatus

console = Console()


def generate_markdown_report(run: MigrationRun, output_dir: Path) -> Path:
    """Generate a markdown report for a run."""
    output_dir.mkdir(parents=True, exist_ok=True)
    report_path = output_dir / "report.md"

    lines = [
        "# Migration Report",
        "",
        f"- **Source:** {run.source_url}",
        f"- **Target:** {run.target_url}",
        f"- **Started:** {run.started_at.isoformat()}",
        f"- **Duration:** {run.duration_seconds:.1f}s",
        f"- **Order:** {' → '.join(run.order) or 'n/a'}",
        "",
        "---",
        "",
    ]

    status = "COMPLETED" if run.succeeded else "COMPLETED WITH ERRORS"
    if run.cancelled:
        status = "CANCELLED"
    if run.error:
        status = "FAILED"
    lines.extend([f"## Overall: {status}", ""])

    lines.extend(["## Entity Types", ""])
    if run.per_type:
        lines.append("| Type | Batch | Success | Error | Skipped |")
        lines.append("|---|---|---|---|---|")
        for name, result in run.per_type.items():
            batch = result.batch if result.batch is not None else ""
            lines.append(
                f"| {name} | {batch} | {result.success_count} | {result.error_count} | {result.skipped_count} |"
            )
        total = run.summary["total"]
        lines.append(f"| **Total** | | **{total.success}** | **{total.error}** | **{total.skipped}** |")
    else:
        lines.append("*Nothing was migrated.*")
    lines.append("")

    problems = [
        (name, item)
        for name, result in run.per_type.items()
        for item in result.items
        if item.status != TransferStatus.SUCCESS
    ]
    if problems:
        lines.extend(["## Errors and Skips", ""])
        lines.append("| Type | Source ID | Record | Status | Details |")
        lines.append("|---|---|---|---|---|")
        for name, item in problems:
            detail = item.detail or ""
            if item.http_status:
                detail = f"HTTP {item.http_status}: {detail}"
            lines.append(
                f"| {name} | {item.source_id} | {_truncate(item.label, 40)} | "
                f"{item.status.value} | {_truncate(detail, 80)} |"
            )
        lines.append("")

    if run.warnings:
        lines.extend(["## Warnings", ""])
        lines.extend(f"- {w}" for w in run.warnings)
        lines.append("")

    if run.error:
        lines.extend(["## Errors", "", f"```\n{run.error}\n```", ""])

    report_path.write_text("\n".join(lines))
    console.print(f"  [dim]Report written: {report_path}[/dim]")
    return report_path


def save_run(run: MigrationRun, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / "run_result.json"
    path.write_text(run.model_dump_json(indent=2))
    return path


def load_run(path: Path) -> MigrationRun:
    if path.is_dir():
        path = path / "run_result.json"
    return MigrationRun.model_validate_json(path.read_text())


def find_previous_run(results_dir: Path, source_url: str, target_url: str) -> Optional[MigrationRun]:
    """Latest saved run between the same source and target, if any."""
    if not results_dir.is_dir():
        return None
    wanted = (source_url.rstrip("/"), target_url.rstrip("/"))
    for path in sorted(results_dir.glob("*/run_result.json"), reverse=True):
        run = load_run(path)
        if (run.source_url.rstrip("/"), run.target_url.rstrip("/")) == wanted:
            return run
    return None


def _truncate(text: str, max_len: int) -> str:
    text = str(text).replace("\n", " ").replace("|", "\\|")
    if len(text) > max_len:
        return text[:max_len - 3] + "..."
    return text
