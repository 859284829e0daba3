from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from customs_doctor import __version__ as TOOL_VERSION
from customs_doctor.contracts import build_contract
from customs_doctor.families import FAMILIES, family_to_dict, get_family, load_family
from customs_doctor.heal_modules.pipeline import merge_extracts
from customs_doctor.heal_modules.shared import CustomsDoctorError
from customs_doctor.heal_modules.summary import build_structured_summary
from customs_doctor.loader import ALL_FORMATS, load_extracts
from customs_doctor.workbook import write_consolidated_workbook

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_MERGE_WARNINGS = 3
EXIT_PARTIAL = 6

STAMP_ENV = "CUSTOMS_DOCTOR_OUTPUT_STAMP"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class CustomsDoctorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def timestamp_token() -> str:
    override = os.environ.get(STAMP_ENV)
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_path(family_id: str) -> Path:
    return Path.cwd() / "customs-doctor-output" / f"{family_id.lower()}-consolidated-{timestamp_token()}.xlsx"


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_json(path: Path, payload: Any) -> None:
    ensure_parent(path)
    path.write_text(json_dumps(payload), encoding="utf-8")


def remove_generated_at(value: Any) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if key == "generated_at":
                result[key] = "1970-01-01T00:00:00Z"
            else:
                result[key] = remove_generated_at(item)
        return result
    if isinstance(value, list):
        return [remove_generated_at(item) for item in value]
    return value


def configure_logging(verbose: int = 0, quiet: bool = False) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s", force=True)


def build_parser() -> argparse.ArgumentParser:
    parser = CustomsDoctorArgumentParser(
        prog="customs-doctor",
        description="Merge and repair customs declaration exports from freight forwarders.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    merge = subparsers.add_parser("merge", help="Merge exports of one source family into a consolidated workbook.")
    merge.add_argument("inputs", nargs="+", help="Input files (.csv/.tsv/.txt/.xlsx/.xlsm/.xls/.ods)")
    merge.add_argument("--family", help=f"Source family: {', '.join(FAMILIES)}")
    merge.add_argument("--family-config", dest="family_config", help="JSON family definition (overrides --family)")
    merge.add_argument("-o", "--output", help="Output .xlsx path")
    merge.add_argument("--force", action="store_true", help="Overwrite an existing output file")
    merge.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    merge.add_argument("--json-summary", dest="json_summary", help="Explicit JSON summary output path")
    merge.add_argument("--dry-run", action="store_true", help="Merge and report without writing the workbook")
    merge.add_argument("--max-issues", dest="max_issues", type=int, default=50, help="Issues listed in summaries")
    merge.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    merge.add_argument("-v", "--verbose", action="count", default=0, help="More human logs (-vv for debug)")

    families = subparsers.add_parser("families", help="List built-in source families.")
    families.add_argument("--show", dest="show", help="Print one family definition as JSON")
    families.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def resolve_family(args: argparse.Namespace):
    try:
        if args.family_config:
            return load_family(args.family_config)
        if not args.family:
            raise CliError("merge needs --family or --family-config", EXIT_COMMAND_ERROR)
        return get_family(args.family)
    except CustomsDoctorError as exc:
        raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc


def resolve_inputs(raw_inputs: list[str]) -> list[Path]:
    paths = [Path(value) for value in raw_inputs]
    missing = [str(path) for path in paths if not path.exists()]
    if missing:
        raise CliError(f"File not found: {', '.join(missing)}", EXIT_COMMAND_ERROR)
    unsupported = [str(path) for path in paths if path.suffix.lower() not in ALL_FORMATS]
    if unsupported:
        raise CliError(
            f"Unsupported file type: {', '.join(unsupported)}. Supported: {', '.join(sorted(ALL_FORMATS))}",
            EXIT_COMMAND_ERROR,
        )
    return paths


def exit_code_for_merge(summary: dict[str, Any]) -> int:
    status = summary.get("run_summary", {}).get("status")
    if status == "failed":
        return EXIT_PARSE_FAILED
    if status == "partial":
        return EXIT_PARTIAL
    if status == "warnings":
        return EXIT_MERGE_WARNINGS
    return EXIT_SUCCESS


def render_merge_text(summary: dict[str, Any], *, verbose: bool = False) -> str:
    rows = summary.get("rows", {})
    columns = summary.get("columns", {})
    validation = summary.get("validation", {})
    lines = [
        "customs-doctor merge",
        f"Family: {summary.get('family', '[unknown]')}",
        f"Files: {len(summary.get('input_files', []))} (skipped {len(summary.get('skipped_files', []))})",
        f"Rows merged: {rows.get('merged', 0)}",
        f"Columns: {columns.get('width', 0)}{' (aligned)' if columns.get('aligned') else ''}",
        f"Output: {summary.get('output_file') or '[dry run]'}",
        f"Result: {validation.get('summary', '')}",
    ]
    if columns.get("side_channel_header"):
        lines.append(f"Side-channel columns: {len(columns['side_channel_header'])}")
    for item in summary.get("skipped_files", []):
        lines.append(f"Skipped {item['source']}: {item['error']}")
    if verbose and summary.get("itemized"):
        lines.append("Issues:")
        lines.extend(f"- {line}" for line in summary["itemized"])
    return "\n".join(lines) + "\n"


def run_merge(args: argparse.Namespace) -> int:
    configure_logging(args.verbose, args.quiet)
    family = resolve_family(args)
    input_paths = resolve_inputs(args.inputs)

    output_path = None
    if not args.dry_run:
        output_path = Path(args.output) if args.output else default_output_path(family.id)
        if output_path.exists() and not args.force:
            raise CliError(f"Refusing to overwrite existing output: {output_path}", EXIT_COMMAND_ERROR)

    def progress(message: str) -> None:
        emit_human(message, quiet=args.quiet or args.json)

    extracts, skipped = load_extracts(input_paths, family, on_progress=progress)
    if not extracts:
        eprint("No input file could be parsed.")
        for item in skipped:
            eprint(f"- {item['source']}: {item['error']}")
        return EXIT_PARSE_FAILED

    result = merge_extracts(extracts, family, on_progress=progress)
    if output_path is not None:
        try:
            write_consolidated_workbook(result, output_path)
        except OSError as exc:
            raise CliError(f"Could not write {output_path}: {exc}", EXIT_COMMAND_ERROR) from exc

    summary = build_structured_summary(
        result,
        family_id=family.id,
        input_paths=input_paths,
        output_path=output_path,
        skipped=skipped,
        issue_limit=args.max_issues,
    )
    summary = remove_generated_at(summary)
    if args.json_summary:
        write_json(Path(args.json_summary), summary)
    if args.json:
        print(json_dumps(summary))
    else:
        emit_human(render_merge_text(summary, verbose=bool(args.verbose)).rstrip("\n"), quiet=args.quiet)
    return exit_code_for_merge(summary)


def run_families(args: argparse.Namespace) -> int:
    if args.show:
        try:
            family = get_family(args.show)
        except CustomsDoctorError as exc:
            raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc
        payload = {"contract": build_contract("customs_doctor.family"), **family_to_dict(family)}
        print(json_dumps(payload))
        return EXIT_SUCCESS
    if args.json:
        print(json_dumps({"families": [family_to_dict(family) for family in FAMILIES.values()]}))
        return EXIT_SUCCESS
    for family in FAMILIES.values():
        named = sum(
            len(names)
            for names in (family.numeric_headers, family.date_headers, family.datetime_headers, family.time_headers)
        )
        print(
            f"{family.id:<9} {family.label:<16} zones={len(family.zones)} "
            f"numeric_columns={len(family.numeric_columns)} named_columns={named} "
            f"numbers={family.numeric_mode}"
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "merge":
            return run_merge(args)
        if args.command == "families":
            return run_families(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
