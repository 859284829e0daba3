"""
loader.py — turn exporter files into FileExtracts

Supports: .csv .tsv .txt .xlsx .xlsm (.xls / .ods through pandas)

Public API:
    rows     = read_rows(path, family)
    extract  = extract_parts(rows, family, source_id)
    extracts, skipped = load_extracts(paths, family)

CSV text is decoded line by line with chardet's guess as a fallback, so a
file that mixes UTF-8 and Windows-1252 lines still loads.  Cells are passed
through as the source delivered them; no value is repaired here.
"""

from __future__ import annotations

import csv
import io
import logging
from collections import Counter
from pathlib import Path

import chardet
import openpyxl
import pandas as pd

from customs_doctor.families import SourceFamily
from customs_doctor.heal_modules.pipeline import ProgressCallback, notify_progress
from customs_doctor.heal_modules.shared import FileExtract, UnsupportedFileError

logger = logging.getLogger(__name__)

TEXT_FORMATS = {".csv", ".tsv", ".txt"}
WORKBOOK_FORMATS = {".xlsx", ".xlsm"}
LEGACY_WORKBOOK_FORMATS = {".xls", ".ods"}
ALL_FORMATS = TEXT_FORMATS | WORKBOOK_FORMATS | LEGACY_WORKBOOK_FORMATS

BOM = "\ufeff"


def detect_encoding(raw: bytes) -> str:
    result = chardet.detect(raw[:200_000])
    return result.get("encoding") or "utf-8"


def read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Strategy per line:
      1. Try UTF-8
      2. Try preferred_encoding (chardet result)
      3. Try latin-1
      4. CP1252 with replace (never crashes)
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc:
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines)


def detect_delimiter(text: str) -> str:
    """csv.Sniffer first; otherwise the candidate giving the most consistent, widest rows."""
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])
    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim, best_score = ",", float("-inf")
    for delim in (",", ";", "\t", "|"):
        rows = [row for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim) if row]
        if len(rows) < 2:
            continue
        mode_width, mode_count = Counter(len(row) for row in rows).most_common(1)[0]
        score = mode_width * (2.0 + mode_count / len(rows))
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_delim, best_score = delim, score
    return best_delim


def _read_text_rows(path: Path, family: SourceFamily) -> list[list]:
    raw = path.read_bytes()
    encoding = detect_encoding(raw)
    text = read_text_safely(raw, encoding)
    if text.startswith(BOM):
        text = text[len(BOM):]

    if path.suffix.lower() == ".tsv":
        delimiter = "\t"
    else:
        delimiter = family.csv_delimiter or detect_delimiter(text)
    logger.debug("%s: encoding=%s delimiter=%r", path.name, encoding, delimiter)
    return [list(row) for row in csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)]


def _read_workbook_rows(path: Path, family: SourceFamily) -> list[list]:
    workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        sheet_name = family.select_sheet(list(workbook.sheetnames), path.name)
        if sheet_name is None:
            return []
        logger.debug("%s: using sheet %r of %s", path.name, sheet_name, workbook.sheetnames)
        return [list(row) for row in workbook[sheet_name].iter_rows(values_only=True)]
    finally:
        workbook.close()


def _read_legacy_workbook_rows(path: Path, family: SourceFamily) -> list[list]:
    engine = "odf" if path.suffix.lower() == ".ods" else None
    with pd.ExcelFile(path, engine=engine) as workbook:
        sheet_name = family.select_sheet(list(workbook.sheet_names), path.name)
        if sheet_name is None:
            return []
        frame = workbook.parse(sheet_name=sheet_name, header=None, dtype=object)
    frame = frame.astype(object).where(pd.notna(frame), None)
    return frame.values.tolist()


def read_rows(path: Path | str, family: SourceFamily) -> list[list]:
    """Read the raw grid of one file, choosing the sheet the family asks for."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in ALL_FORMATS:
        raise UnsupportedFileError(
            f"Unsupported file type '{suffix or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(ALL_FORMATS))}"
        )
    if suffix in TEXT_FORMATS:
        return _read_text_rows(path, family)
    if suffix in WORKBOOK_FORMATS:
        return _read_workbook_rows(path, family)
    return _read_legacy_workbook_rows(path, family)


def extract_parts(rows: list[list], family: SourceFamily, source_id: str) -> FileExtract:
    start = family.header_start_row
    band = [list(row or []) for row in rows[start : start + family.header_rows]]
    data = [list(row) for row in rows[family.data_start_row :] if not family.is_footer_row(row)]
    return FileExtract(
        source_id=source_id,
        header=band[0] if band else [],
        rows=data,
        header_band=band[1:],
    )


def load_extracts(
    paths, family: SourceFamily, on_progress: ProgressCallback | None = None
) -> tuple[list[FileExtract], list[dict]]:
    """
    Load every path; a file that cannot be read is logged and reported in `skipped`.

    Returns (extracts, skipped) where skipped holds {"source", "error"} dicts.
    """
    extracts: list[FileExtract] = []
    skipped: list[dict] = []
    paths = [Path(path) for path in paths]
    for idx, path in enumerate(paths, start=1):
        notify_progress(on_progress, f"Parsing {path.name}... ({idx}/{len(paths)})")
        try:
            rows = read_rows(path, family)
        except Exception as exc:
            logger.warning("Skipping %s: %s", path, exc)
            skipped.append({"source": path.name, "error": str(exc)})
            continue
        extract = extract_parts(rows, family, path.name)
        logger.info("%s: %d data row(s), %d header column(s)", path.name, len(extract.rows), len(extract.header))
        extracts.append(extract)
    return extracts, skipped
