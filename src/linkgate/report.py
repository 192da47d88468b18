"""Link-check job reports (JSON + Markdown)."""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TextIO

from linkgate.schemas import validate_data
from linkgate.types import JobResult, JobState

REPORT_JSON_FILENAME = "LINKCHECK_REPORT.json"
REPORT_MD_FILENAME = "LINKCHECK_REPORT.md"
SERVICE_LOG_FILENAME = "SERVICE.log"
VERIFIER_LOG_FILENAME = "VERIFIER.log"

TIMESTAMP_MODES: tuple[str, ...] = ("deterministic", "wallclock")


def _get_deterministic_timestamp() -> str:
    """Get deterministic timestamp for testing."""
    return "1970-01-01T00:00:00Z"


def _get_wallclock_timestamp() -> str:
    """Get current wallclock timestamp."""
    return datetime.now(UTC).isoformat()


def report_dict(result: JobResult, timestamp_mode: str = "deterministic") -> dict[str, Any]:
    """Project a job result onto the ``job_report`` schema."""
    if timestamp_mode not in TIMESTAMP_MODES:
        raise ValueError(f"Invalid timestamp_mode: {timestamp_mode}")
    if not result.state.terminal:
        raise ValueError(f"job is not finished (state={result.state.value})")

    generated_at = (
        _get_deterministic_timestamp() if timestamp_mode == "deterministic" else _get_wallclock_timestamp()
    )
    return {
        "schema_version": "1.0",
        "generated_at": generated_at,
        "timestamp_mode": timestamp_mode,
        "state": result.state.value,
        "exit_code": result.exit_code,
        "event": result.event_kind,
        "concurrency_key": result.concurrency_key,
        "target": result.target,
        "failed_step": result.failed_step,
        "reason_code": result.reason_code,
        "message": result.message,
        "steps": [asdict(step) for step in result.steps],
    }


def write_job_report(result: JobResult, out_dir: Path, timestamp_mode: str = "deterministic") -> dict[str, Path]:
    """Write the JSON/Markdown report pair plus captured logs.

    Returns:
        Mapping of artifact name to written path
    """
    data = report_dict(result, timestamp_mode)
    validate_data(data, "job_report", strict=True)

    out_dir.mkdir(parents=True, exist_ok=True)
    written: dict[str, Path] = {}

    json_path = out_dir / REPORT_JSON_FILENAME
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)
        f.write("\n")
    written["json"] = json_path

    md_path = out_dir / REPORT_MD_FILENAME
    with open(md_path, "w", encoding="utf-8") as f:
        _write_markdown_report(f, data)
    written["markdown"] = md_path

    if result.service_logs:
        log_path = out_dir / SERVICE_LOG_FILENAME
        log_path.write_text(result.service_logs, encoding="utf-8")
        written["service_log"] = log_path

    if result.verifier_output:
        log_path = out_dir / VERIFIER_LOG_FILENAME
        log_path.write_text(result.verifier_output, encoding="utf-8")
        written["verifier_log"] = log_path

    return written


def _write_markdown_report(f: TextIO, data: dict[str, Any]) -> None:
    """Write human-readable markdown report."""
    f.write("# Link Check Report\n\n")

    state = data["state"]
    emoji = {
        JobState.SUCCESS.value: "✅",
        JobState.SKIPPED.value: "⏭️",
        JobState.CANCELLED.value: "⚠️",
    }.get(state, "❌")
    f.write(f"**Status**: {emoji} {state.upper()}\n\n")
    f.write(f"**Generated**: {data['generated_at']} ({data['timestamp_mode']})\n\n")
    f.write(f"**Event**: {data['event']}\n\n")
    f.write(f"**Concurrency key**: `{data['concurrency_key']}`\n\n")

    if data["target"]:
        f.write(f"**Target**: `{data['target']}`\n\n")
    if data["message"]:
        f.write(f"{data['message']}\n\n")

    if data["steps"]:
        f.write("## Steps\n\n")
        for step in data["steps"]:
            symbol = {"ok": "✅", "failed": "❌", "cancelled": "⚠️"}[step["status"]]
            line = f"- {symbol} `{step['name']}`"
            if step["detail"]:
                line += f": {step['detail'].splitlines()[0]}"
            f.write(line + "\n")
        f.write("\n")

    if data["failed_step"]:
        f.write("## Failure\n\n")
        f.write(f"**Step**: `{data['failed_step']}`\n")
        if data["reason_code"]:
            f.write(f"**Reason**: {data['reason_code']}\n")
        f.write("\n")

    f.write("## Exit Code\n\n")
    f.write(f"{data['exit_code']}\n")
