from __future__ import annotations

from pathlib import Path

from customs_doctor import __version__ as TOOL_VERSION
from customs_doctor.contracts import build_contract, build_run_summary
from customs_doctor.heal_modules.pipeline import MergeResult


def run_status(result: MergeResult, skipped: list[dict]) -> str:
    if not result.header_rows and not result.rows:
        return "failed"
    if skipped:
        return "partial"
    if result.report.warnings:
        return "warnings"
    return "ok"


def build_structured_summary(
    result: MergeResult,
    *,
    family_id: str,
    input_paths: list[Path],
    output_path: Path | None,
    skipped: list[dict] | None = None,
    issue_limit: int = 50,
) -> dict:
    contract = build_contract("customs_doctor.merge_summary")
    skipped = list(skipped or [])
    report = result.report
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "family": family_id,
        "input_files": [str(path) for path in input_paths],
        "output_file": str(output_path) if output_path else None,
        "rows": {
            "merged": len(result.rows),
            "per_file": list(result.stats.get("rows_per_file", [])),
            "side_channel": sum(1 for row in result.side_channel_rows if row is not None),
        },
        "columns": {
            "width": result.stats.get("width", 0),
            "aligned": bool(result.stats.get("aligned")),
            "side_channel_header": list(result.side_channel_header),
        },
        "skipped_files": skipped,
        "validation": report.to_dict(),
        "itemized": report.itemized(issue_limit),
        "run_summary": build_run_summary(
            tool="customs-doctor",
            command="merge",
            input_paths=input_paths,
            status=run_status(result, skipped),
            output_path=output_path,
            metrics={
                "files": result.stats.get("files", 0),
                "files_skipped": len(skipped),
                "rows_merged": len(result.rows),
                "shift_fixes": report.shift_fixes,
                "numeric_fixes": report.numeric_fixes,
                "cleanup_fixes": report.cleanup_fixes,
                "warnings": len(report.warnings),
            },
            warnings=[f"Row {issue.row}: {issue.detail}" for issue in report.warnings[:issue_limit]],
        ),
    }
