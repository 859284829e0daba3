from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

Cell = Optional[Union[str, int, float]]
Row = list

DATE_PLACEHOLDER_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
LEADING_NEWLINES_RE = re.compile(r"^[\r\n]+")
TRAILING_NEWLINES_RE = re.compile(r"[\r\n]+$")

MAX_DETAIL_TEXT = 30


class CustomsDoctorError(Exception):
    """Base error for problems at the adapter edges (config, files)."""


class FamilyConfigError(CustomsDoctorError):
    pass


class UnsupportedFileError(CustomsDoctorError):
    pass


@dataclass
class FileExtract:
    source_id: str
    header: list
    rows: list
    header_band: list = field(default_factory=list)


@dataclass
class ColumnMapping:
    unified: list[int | None]
    side_channel: list[int | None]

    @property
    def unmapped(self) -> list[int]:
        return [
            idx for idx, (u, s) in enumerate(zip(self.unified, self.side_channel))
            if u is None and s is None
        ]


def is_empty(value: Any) -> bool:
    return value is None or value == ""


def cell_text(value: Any) -> str:
    """Render a cell the way a spreadsheet shows it: integral floats lose their '.0'."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def cell_at(row: list, index: int) -> Any:
    if 0 <= index < len(row):
        return row[index]
    return None


def clean_header_name(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def clean_header(header: list | None) -> list[str]:
    return [clean_header_name(value) for value in (header or [])]


def pad_row(row: list | None, width: int) -> list:
    padded = list(row or [])
    if len(padded) < width:
        padded.extend([None] * (width - len(padded)))
    return padded


def truncate(value: Any, limit: int = MAX_DETAIL_TEXT) -> str:
    return cell_text(value)[:limit]
