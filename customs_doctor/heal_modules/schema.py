"""
Cross-file header unification and column remapping.

Some exporters changed their layout mid-year (92 -> 138 -> 158 columns) and
renamed many columns on the way.  Every file is aligned to one unified header
so that a value lands in the same column regardless of which file it came
from.  Header names can repeat ("Verfahren", "Währung" appear several times
at unrelated offsets), so the unified header is an ordered list and matching
always consumes the first unused occurrence.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable

from customs_doctor.heal_modules.shared import (
    ColumnMapping,
    FileExtract,
    clean_header,
    clean_header_name,
    is_empty,
)

logger = logging.getLogger(__name__)


def normalise_synonyms(synonyms: dict | None) -> dict[str, str]:
    return {
        clean_header_name(old): clean_header_name(new)
        for old, new in (synonyms or {}).items()
        if clean_header_name(old)
    }


def _first_unused(target: list[str], name: str, used: set[int]) -> int | None:
    for idx, candidate in enumerate(target):
        if idx not in used and candidate == name:
            return idx
    return None


def build_column_mapping(
    file_header: list,
    unified: list[str],
    synonyms: dict | None = None,
    side_channel_header: list[str] | None = None,
) -> ColumnMapping:
    """
    Map each local column index to a unified index (and a side-channel index).

    Pass 0 binds side-channel names, pass 1 binds exact names, pass 2 binds
    known historical renames.  Every pass walks left to right and takes the
    first unused target slot, so the leftmost local column wins a contested
    duplicate slot.  Anything still unbound stays None.
    """
    header = clean_header(file_header)
    synonyms = normalise_synonyms(synonyms)
    side_header = list(side_channel_header or [])
    side_names = set(side_header)

    mapping: list[int | None] = [None] * len(header)
    side_mapping: list[int | None] = [None] * len(header)
    used: set[int] = set()
    used_side: set[int] = set()

    for idx, name in enumerate(header):
        if name and name in side_names:
            slot = _first_unused(side_header, name, used_side)
            if slot is not None:
                side_mapping[idx] = slot
                used_side.add(slot)

    for idx, name in enumerate(header):
        if name and name in side_names:
            continue
        slot = _first_unused(unified, name, used)
        if slot is not None:
            mapping[idx] = slot
            used.add(slot)

    for idx, name in enumerate(header):
        if mapping[idx] is not None or (name and name in side_names):
            continue
        canonical = synonyms.get(name)
        if not canonical:
            continue
        slot = _first_unused(unified, canonical, used)
        if slot is not None:
            mapping[idx] = slot
            used.add(slot)

    return ColumnMapping(unified=mapping, side_channel=side_mapping)


def _column_has_data(rows: list, index: int) -> bool:
    for row in rows:
        if row is not None and index < len(row) and not is_empty(row[index]):
            return True
    return False


def _grow_side_channel_header(side_header: list[str], header: list[str], side_names: set[str]) -> None:
    wanted = Counter(name for name in header if name in side_names)
    have = Counter(side_header)
    for name in header:
        if name in wanted and have[name] < wanted[name]:
            side_header.append(name)
            have[name] += 1


def widest_extract_index(extracts: list[FileExtract]) -> int:
    widest = 0
    for idx, extract in enumerate(extracts):
        if len(extract.header or []) > len(extracts[widest].header or []):
            widest = idx
    return widest


def build_unified_header(
    extracts: list[FileExtract],
    synonyms: dict | None = None,
    side_channel_names: Iterable[str] = (),
) -> tuple[list[str], list[str]]:
    """
    Return (unified_header, side_channel_header) for a batch of extracts.

    The widest header is the base and keeps its order.  Columns of the other
    files either resolve (directly or via a synonym) onto a free slot of the
    base, or are appended at the end; nothing is inserted, so positions stay
    stable across repeated merges.
    """
    if not extracts:
        return [], []

    synonyms = normalise_synonyms(synonyms)
    side_names = {clean_header_name(name) for name in side_channel_names if clean_header_name(name)}

    base_idx = widest_extract_index(extracts)
    base_header = clean_header(extracts[base_idx].header)
    unified = [name for name in base_header if name not in side_names]
    side_header: list[str] = []
    _grow_side_channel_header(side_header, base_header, side_names)

    for idx, extract in enumerate(extracts):
        if idx == base_idx:
            continue
        header = clean_header(extract.header)
        _grow_side_channel_header(side_header, header, side_names)

        mapping = build_column_mapping(header, unified, synonyms)
        for col, name in enumerate(header):
            if name in side_names or mapping.unified[col] is not None:
                continue
            if not name and not _column_has_data(extract.rows or [], col):
                continue
            unified.append(name)
            logger.debug("Appended column %r from %s at unified position %d", name, extract.source_id, len(unified) - 1)

    return unified, side_header


def remap_row(row: list | None, mapping: list[int | None], width: int) -> list:
    """Place row[i] at mapping[i] in a fresh row of `width` cells; everything else stays None."""
    out: list = [None] * width
    for idx, value in enumerate((row or [])[: len(mapping)]):
        target = mapping[idx]
        if target is not None and target < width:
            out[target] = value
    return out


def extract_side_channel(row: list | None, side_mapping: list[int | None], width: int) -> list | None:
    """Side-channel cells for one row, or None when the row contributed nothing there."""
    if width <= 0:
        return None
    out: list = [None] * width
    contributed = False
    for idx, value in enumerate((row or [])[: len(side_mapping)]):
        target = side_mapping[idx]
        if target is None or target >= width:
            continue
        out[target] = value
        if not is_empty(value):
            contributed = True
    return out if contributed else None


def overflow_cells(row: list | None, header_width: int) -> int:
    """Count non-empty cells sitting beyond a file's header width (they cannot be remapped)."""
    return sum(1 for value in (row or [])[header_width:] if not is_empty(value))


def headers_differ(extracts: list[FileExtract]) -> bool:
    if not extracts:
        return False
    first = clean_header(extracts[0].header)
    return any(clean_header(extract.header) != first for extract in extracts[1:])
