# src/report/exporter.py — v1
"""Run report export to JSON, CSV, and summary text."""

from __future__ import annotations

import csv
import logging
from pathlib import Path

from shipline.core.models import RunResult

logger = logging.getLogger(__name__)

_STATUS_MARKS = {"passed": "ok", "cached": "cached", "failed": "FAIL", "skipped": "-"}


def export_run_json(result: RunResult, path: Path) -> None:
    """Export the full run result as formatted JSON.

    Args:
        result: Completed run.
        path: Output file path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
    logger.info("Run report written to %s", path)


def export_run_csv(result: RunResult, path: Path) -> None:
    """Export one row per stage result for spreadsheet analysis."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fieldnames = [
        "run_id", "service_id", "stage_name", "kind", "status",
        "duration_ms", "fingerprint", "artifact", "error_type", "error",
    ]
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for pipeline in result.pipeline_results:
            for stage in pipeline.stage_results:
                writer.writerow({
                    "run_id": result.run_id,
                    "service_id": pipeline.service_id,
                    "stage_name": stage.stage_name,
                    "kind": stage.kind,
                    "status": stage.status,
                    "duration_ms": stage.duration_ms,
                    "fingerprint": stage.fingerprint or "",
                    "artifact": stage.output.reference if stage.output else "",
                    "error_type": stage.error_type or "",
                    "error": stage.error or "",
                })


def export_run_summary(result: RunResult) -> str:
    """Generate a human-readable summary of a run.

    Args:
        result: Completed run.

    Returns:
        Formatted summary string.
    """
    trigger = result.trigger
    lines: list[str] = [
        f"=== Run Summary: {result.run_id} ===",
        f"Trigger  : {trigger.event} on {trigger.branch} @ {trigger.commit[:12]}",
        f"Verdict  : {result.verdict.upper()}",
        f"Duration : {result.duration_seconds:.1f}s",
        f"Deploys  : {'enabled' if result.deploy_enabled else 'disabled'}",
    ]
    if result.cancelled:
        lines.append("Cancelled: yes")
    if result.fatal_error:
        lines.append(f"Fatal    : {result.fatal_error}")

    for pipeline in result.pipeline_results:
        lines.append("")
        lines.append(f"[{pipeline.service_id}] {pipeline.final_status}")
        if pipeline.error:
            lines.append(f"  error: {pipeline.error}")
        for stage in pipeline.stage_results:
            mark = _STATUS_MARKS.get(stage.status, stage.status)
            line = f"  {mark:<6} {stage.stage_name} ({stage.kind}, {stage.duration_ms}ms)"
            if stage.error:
                line += f": {stage.error}"
            lines.append(line)
            if stage.deployment is not None and stage.deployment.rolled_back:
                lines.append(f"         rolled back to {stage.deployment.previous_image}")

    return "\n".join(lines)
