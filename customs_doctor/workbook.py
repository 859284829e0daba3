from __future__ import annotations

import os
import tempfile
from pathlib import Path

import openpyxl
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from customs_doctor.heal_modules.pipeline import MergeResult

CONSOLIDATED_SHEET = "Consolidated"
SIDE_CHANNEL_SHEET = "Side-Channel Fields"
ISSUES_SHEET = "Issues"
ISSUE_HEADERS = ["row", "kind", "severity", "zone", "column", "confidence", "detail"]

FILL_WARNING = PatternFill("solid", fgColor="FCE4D6")   # soft orange
FILL_LOW_CONFIDENCE = PatternFill("solid", fgColor="FFF2CC")   # soft yellow


def _header_font() -> Font:
    return Font(bold=True, color="FFFFFF")


def _header_fill(hex_color: str) -> PatternFill:
    return PatternFill("solid", fgColor=hex_color)


def _style_sheet(ws, col_widths: list[int], header_color: str, header_rows: int = 1):
    """Apply bold header, color, frozen rows, and column widths."""
    fill = _header_fill(header_color)
    font = _header_font()
    for row in ws.iter_rows(min_row=1, max_row=header_rows):
        for cell in row:
            cell.font = font
            cell.fill = fill
            cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = f"A{header_rows + 1}"
    for i, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def _infer_col_widths(rows: list[list], min_width: int = 8, max_width: int = 40, sample: int = 50) -> list[int]:
    widths: list[int] = []
    for row in rows[:sample]:
        for i, val in enumerate(row or []):
            length = len(str(val)) if val is not None else 0
            if i >= len(widths):
                widths.append(min_width)
            widths[i] = max(widths[i], min(max_width, length + 2))
    return widths


def _sanitise(row) -> list:
    return [ILLEGAL_CHARACTERS_RE.sub("", value) if isinstance(value, str) else value for value in row or []]


def _write_consolidated(wb, result: MergeResult) -> None:
    ws = wb.active
    ws.title = CONSOLIDATED_SHEET
    for header in result.header_rows:
        ws.append(_sanitise(header))
    for row in result.rows:
        ws.append(_sanitise(row))
    _style_sheet(
        ws,
        _infer_col_widths(list(result.header_rows) + list(result.rows)),
        "1565C0",   # blue
        header_rows=max(1, len(result.header_rows)),
    )


def _write_side_channel(wb, result: MergeResult) -> None:
    ws = wb.create_sheet(SIDE_CHANNEL_SHEET)
    ws.append(list(result.side_channel_header))
    for row in result.side_channel_rows:
        # Blank rows keep the sheet aligned row-for-row with Consolidated.
        ws.append(_sanitise(row) if row is not None else [None])
    _style_sheet(ws, _infer_col_widths([result.side_channel_header] + [r for r in result.side_channel_rows if r]), "6A1B9A")


def _write_issues(wb, result: MergeResult) -> None:
    ws = wb.create_sheet(ISSUES_SHEET)
    ws.append(ISSUE_HEADERS)
    rows_for_width = [ISSUE_HEADERS]
    for issue in result.report.issues:
        row_out = [issue.row, issue.kind, issue.severity, issue.zone, issue.column, issue.confidence, issue.detail]
        ws.append(row_out)
        rows_for_width.append(row_out)
        if issue.kind == "warning":
            ws.cell(ws.max_row, 2).fill = FILL_WARNING
        elif issue.confidence != "high":
            ws.cell(ws.max_row, 6).fill = FILL_LOW_CONFIDENCE
    _style_sheet(ws, _infer_col_widths(rows_for_width, max_width=80), "E53935")   # red
    for cell in ws["G"][1:]:
        cell.alignment = Alignment(wrap_text=True, vertical="top")


def build_workbook(result: MergeResult):
    wb = openpyxl.Workbook()
    _write_consolidated(wb, result)
    if result.has_side_channel:
        _write_side_channel(wb, result)
    _write_issues(wb, result)
    return wb


def write_consolidated_workbook(result: MergeResult, output_path: Path | str) -> Path:
    """Save the merge as .xlsx; the file appears atomically or not at all."""
    output_path = Path(output_path)
    workbook = build_workbook(result)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{output_path.stem}.", suffix=output_path.suffix, dir=str(output_path.parent))
    os.close(fd)
    temp_path = Path(tmp_name)
    try:
        workbook.save(temp_path)
        os.replace(temp_path, output_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()
    return output_path
