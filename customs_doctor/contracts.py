"""
Versioned JSON shapes emitted by customs-doctor.

The merge summary (merge --json, --json-summary) and the family dump
(families --show) each carry {"name", "version"} so that downstream jobs can
refuse a shape they were not written for.  Bump the version whenever a key
is renamed or removed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

CONTRACT_VERSIONS = {
    "customs_doctor.merge_summary": "1.0.0",
    "customs_doctor.family": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    tool: str,
    command: str,
    input_paths: list[Path],
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": tool,
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_files": [str(path) for path in input_paths],
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }
