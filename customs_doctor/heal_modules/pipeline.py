"""
Merge orchestration: align files, then run every row through the family's stages.

    FileExtract[] -> unified header -> remap / side channel
                  -> text cleanup -> zone repairs (left to right)
                  -> numeral normalisation -> numeric coercion
                  -> Excel serial dates and times
                  -> post-repair checks -> trailing-column trim

Every stage takes a row and returns a new row; problems go into the shared
ValidationReport and are never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from customs_doctor.heal_modules.numeric import (
    coerce_numeric_columns,
    excel_fraction_to_time,
    excel_serial_to_date,
    excel_serial_to_datetime,
    fix_leading_separator,
    fix_numeric_value,
)
from customs_doctor.heal_modules.report import ValidationReport
from customs_doctor.heal_modules.schema import (
    build_column_mapping,
    build_unified_header,
    extract_side_channel,
    headers_differ,
    normalise_synonyms,
    overflow_cells,
    remap_row,
)
from customs_doctor.heal_modules.shared import (
    LEADING_NEWLINES_RE,
    TRAILING_NEWLINES_RE,
    FileExtract,
    cell_at,
    cell_text,
    clean_header,
    clean_header_name,
    is_empty,
    pad_row,
    truncate,
)
from customs_doctor.heal_modules.zones import repair_zones

if TYPE_CHECKING:
    from customs_doctor.families import SourceFamily

logger = logging.getLogger(__name__)

NUMERIC_MODES = ("full", "leading", "none")

ProgressCallback = Callable[[str], Any]


@dataclass
class MergeResult:
    header_rows: list[list]
    rows: list[list]
    side_channel_header: list[str] = field(default_factory=list)
    side_channel_rows: list[list | None] = field(default_factory=list)
    report: ValidationReport = field(default_factory=ValidationReport)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def header(self) -> list:
        return self.header_rows[0] if self.header_rows else []

    @property
    def has_side_channel(self) -> bool:
        return bool(self.side_channel_header) and any(row is not None for row in self.side_channel_rows)


@dataclass(frozen=True)
class NamedColumns:
    """Column indices found by header name; positions differ between report layouts."""

    numeric: tuple[int, ...] = ()
    dates: tuple[int, ...] = ()
    datetimes: tuple[int, ...] = ()
    times: tuple[int, ...] = ()


def resolve_named_columns(header: list | None, family: "SourceFamily") -> NamedColumns:
    """
    Find the family's numeric/date/datetime/time columns in a header.

    Names compare case-insensitively, and a historical name counts as its
    current name through the family synonyms.
    """
    synonyms = {old.casefold(): new.casefold() for old, new in normalise_synonyms(family.synonyms).items()}
    names = [name.casefold() for name in clean_header(header)]

    def lookup(wanted_names) -> tuple[int, ...]:
        wanted = {clean_header_name(name).casefold() for name in wanted_names}
        return tuple(
            idx for idx, name in enumerate(names)
            if name and (name in wanted or synonyms.get(name) in wanted)
        )

    return NamedColumns(
        numeric=lookup(family.numeric_headers),
        dates=lookup(family.date_headers),
        datetimes=lookup(family.datetime_headers),
        times=lookup(family.time_headers),
    )


def notify_progress(on_progress: ProgressCallback | None, message: str) -> None:
    logger.debug(message)
    if on_progress is None:
        return
    try:
        on_progress(message)
    except Exception as exc:
        logger.warning("Progress callback failed on %r: %s", message, exc)


def strip_newlines(row: list, report: ValidationReport, row_number: int) -> list:
    cleaned = list(row)
    for col, value in enumerate(cleaned):
        if not isinstance(value, str):
            continue
        stripped = TRAILING_NEWLINES_RE.sub("", LEADING_NEWLINES_RE.sub("", value))
        if stripped != value:
            cleaned[col] = stripped
            report.add_cleanup(row_number, col, "stripped leading/trailing newlines")
    return cleaned


def normalise_numbers(row: list, mode: str, report: ValidationReport, row_number: int) -> list:
    if mode == "none":
        return list(row)
    fixer = fix_numeric_value if mode == "full" else fix_leading_separator
    fixed = list(row)
    for col, value in enumerate(fixed):
        new_value, changed = fixer(value)
        if changed:
            fixed[col] = new_value
            report.add_numeric(row_number, col, f'"{cell_text(value).strip()}" -> "{new_value}"')
    return fixed


def coerce_numbers(row: list, columns, report: ValidationReport, row_number: int) -> list:
    coerced, changes = coerce_numeric_columns(row, columns)
    for col, before, after in changes:
        report.add_numeric(row_number, col, f'string to number "{cell_text(before).strip()}" -> {after}')
    return coerced


SERIAL_STAGES = (
    ("dates", excel_serial_to_date, "serial date"),
    ("datetimes", excel_serial_to_datetime, "serial datetime"),
    ("times", excel_fraction_to_time, "time fraction"),
)


def convert_serials(row: list, named: NamedColumns, report: ValidationReport, row_number: int) -> list:
    converted = list(row)
    for attr, converter, label in SERIAL_STAGES:
        for col in getattr(named, attr):
            if col >= len(converted):
                continue
            before = converted[col]
            after, changed = converter(before)
            if changed:
                converted[col] = after
                report.add_numeric(row_number, col, f'{label} {cell_text(before)} -> "{after}"')
    return converted


def run_post_checks(row: list, checks, report: ValidationReport, row_number: int) -> None:
    for check in checks:
        value = cell_at(row, check.column)
        text = cell_text(value).strip()
        if is_empty(value) or not text or check.predicate(value):
            continue
        if report.has_warning(row_number, check.column):
            continue
        note = f", {check.note}" if check.note else ""
        report.add_warning(
            row_number,
            f'{check.label} (col {check.column}) invalid: "{truncate(text)}"{note}',
            zone=check.zone,
            column=check.column,
        )


def trim_trailing(row: list, max_width: int | None) -> list:
    if not max_width or len(row) <= max_width:
        return row
    if any(not is_empty(value) for value in row[max_width:]):
        return row
    return row[:max_width]


def validate_row(
    row: list | None,
    family: "SourceFamily",
    report: ValidationReport,
    row_number: int,
    named: NamedColumns | None = None,
) -> list:
    """Run one row through every family stage; `row_number` is 1-based within the merged data."""
    named = named or NamedColumns()
    row = list(row or [])
    if family.strip_newlines:
        row = strip_newlines(row, report, row_number)
    row = repair_zones(row, family.zones, report, row_number)
    row = normalise_numbers(row, family.numeric_mode, report, row_number)
    numeric_columns = sorted(set(family.numeric_columns) | set(named.numeric))
    row = coerce_numbers(row, numeric_columns, report, row_number)
    row = convert_serials(row, named, report, row_number)
    run_post_checks(row, family.post_checks, report, row_number)
    return trim_trailing(row, family.max_width)


def _concatenate(extracts: list[FileExtract]) -> tuple[list[list], list[list]]:
    header = extracts[0].header or []
    header_rows = [list(header)] + [list(band or []) for band in extracts[0].header_band]
    width = len(header)
    rows = []
    for extract in extracts:
        rows.extend(pad_row(row, width) for row in (extract.rows or []))
    return header_rows, rows


def merge_extracts(
    extracts: list[FileExtract],
    family: "SourceFamily",
    on_progress: ProgressCallback | None = None,
) -> MergeResult:
    """
    Merge a batch of extracts of one source family into a single repaired table.

    Files with identical headers are concatenated and keep their full header
    band.  Otherwise every file is remapped onto a unified header; columns the
    family routes to the side channel land in a parallel table whose rows
    line up one-to-one with the merged rows.
    """
    report = ValidationReport()
    stats: dict[str, Any] = {
        "files": len(extracts),
        "rows_per_file": [{"source": extract.source_id, "rows": len(extract.rows or [])} for extract in extracts],
        "total_rows": sum(len(extract.rows or []) for extract in extracts),
        "aligned": False,
    }
    if not extracts:
        stats["width"] = 0
        return MergeResult(header_rows=[], rows=[], report=report, stats=stats)

    side_channel_header: list[str] = []
    side_channel_rows: list[list | None] = []

    if headers_differ(extracts):
        notify_progress(on_progress, "Aligning columns across files...")
        unified, side_channel_header = build_unified_header(
            extracts, family.synonyms, family.side_channel_columns
        )
        header_rows = [unified]
        rows = []
        for extract in extracts:
            mapping = build_column_mapping(extract.header, unified, family.synonyms, side_channel_header)
            header_width = len(extract.header or [])
            for raw in extract.rows or []:
                dropped = overflow_cells(raw, header_width)
                if dropped:
                    report.add_warning(
                        len(rows) + 1,
                        f"{dropped} cell(s) beyond the {header_width}-column header of {extract.source_id} could not be placed",
                        zone="Schema",
                    )
                rows.append(remap_row(raw, mapping.unified, len(unified)))
                side_channel_rows.append(
                    extract_side_channel(raw, mapping.side_channel, len(side_channel_header))
                )
        stats["aligned"] = True
        logger.info(
            "Aligned %d file(s) onto a %d-column header (%d side-channel column(s))",
            len(extracts),
            len(unified),
            len(side_channel_header),
        )
    else:
        header_rows, rows = _concatenate(extracts)
        side_channel_rows = [None] * len(rows)
        logger.info("Concatenated %d file(s) with identical headers", len(extracts))

    stats["width"] = len(header_rows[0]) if header_rows else 0

    notify_progress(on_progress, "Validating and correcting data...")
    named = resolve_named_columns(header_rows[0] if header_rows else [], family)
    repaired = [validate_row(row, family, report, idx + 1, named) for idx, row in enumerate(rows)]

    summary = report.summary()
    stats["validation_summary"] = summary
    logger.info("%s: %d row(s) merged; %s", family.id, len(repaired), summary)
    return MergeResult(
        header_rows=header_rows,
        rows=repaired,
        side_channel_header=side_channel_header,
        side_channel_rows=side_channel_rows,
        report=report,
        stats=stats,
    )

