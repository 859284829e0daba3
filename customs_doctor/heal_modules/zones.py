"""
Zone-based positional shift detection and repair.

A zone is a short run of adjacent columns with known content shapes, e.g.
[Name, Address, Town, Postcode, Country].  When a free-text cell in the zone
overflowed in the source export, every later cell of the row sits k columns
too far right.  Detection looks for the zone's anchor value (country code,
HS code, freight amount) at anchor+k and confirms with neighbouring slots;
repair merges the k overflow fragments back into the overflow slot and
shifts the rest of the row left, keeping the row length.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from customs_doctor.heal_modules.predicates import Predicate
from customs_doctor.heal_modules.report import ValidationReport
from customs_doctor.heal_modules.shared import (
    DATE_PLACEHOLDER_RE,
    FamilyConfigError,
    cell_at,
    cell_text,
    is_empty,
    truncate,
)

logger = logging.getLogger(__name__)

ABSENT = "absent"
ALIGNED = "aligned"
SHIFTED = "shifted"
GAP = "gap"
UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class Slot:
    name: str
    predicate: Predicate | None = None


@dataclass(frozen=True)
class Check:
    """
    One slot test.  Its position moves with the candidate shift k unless
    `fixed` is set; `only_at_shift` limits the test to a single k.
    """

    slot: str
    predicate: Predicate
    allow_empty: bool = False
    negate: bool = False
    fixed: bool = False
    only_at_shift: int | None = None


@dataclass(frozen=True)
class GapRule:
    span: int = 1
    require_overflow_text: bool = False


@dataclass(frozen=True)
class Detection:
    shift: int
    status: str


@dataclass(frozen=True)
class Zone:
    name: str
    start: int
    slots: tuple[Slot, ...]
    overflow_slot: str
    anchor: str
    max_shift: int
    aligned_checks: tuple[tuple[Check, ...], ...] = ()
    shift_checks: tuple[tuple[Check, ...], ...] = ()
    exceptions: tuple[tuple[Check, ...], ...] = ()
    presence_slots: tuple[str, ...] = ()
    empty_anchor_means_gap: bool = False
    scan_requires_text: bool = False
    anchor_scan_allows_empty: bool = False
    gap: GapRule | None = None
    fallback_window: int = 0
    join_separator: str = ", "
    strip_fragments: bool = False
    skip_date_placeholders: bool = False
    _positions: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        names = [slot.name for slot in self.slots]
        if len(set(names)) != len(names):
            raise FamilyConfigError(f"Zone '{self.name}' has duplicate slot names")
        positions = {name: self.start + idx for idx, name in enumerate(names)}
        referenced = [self.overflow_slot, self.anchor, *self.presence_slots]
        for check_sets in (self.aligned_checks, self.shift_checks, self.exceptions):
            referenced.extend(check.slot for checks in check_sets for check in checks)
        for name in referenced:
            if name not in positions:
                raise FamilyConfigError(f"Zone '{self.name}' references unknown slot '{name}'")
        if positions[self.overflow_slot] >= positions[self.anchor]:
            raise FamilyConfigError(f"Zone '{self.name}': overflow slot must sit left of the anchor")
        if self.max_shift < 1:
            raise FamilyConfigError(f"Zone '{self.name}': max_shift must be at least 1")
        if self._slot(self.anchor).predicate is None:
            raise FamilyConfigError(f"Zone '{self.name}': anchor slot needs a predicate")
        object.__setattr__(self, "_positions", positions)

    def _slot(self, name: str) -> Slot:
        for slot in self.slots:
            if slot.name == name:
                return slot
        raise KeyError(name)

    def position(self, slot_name: str) -> int:
        return self._positions[slot_name]

    @property
    def anchor_position(self) -> int:
        return self._positions[self.anchor]

    @property
    def overflow_position(self) -> int:
        return self._positions[self.overflow_slot]

    @property
    def anchor_predicate(self) -> Predicate:
        return self._slot(self.anchor).predicate

    def to_dict(self) -> dict[str, Any]:
        def dump_sets(check_sets):
            return [
                [
                    {
                        "slot": check.slot,
                        "predicate": check.predicate.to_dict(),
                        "allow_empty": check.allow_empty,
                        "negate": check.negate,
                        "fixed": check.fixed,
                        "only_at_shift": check.only_at_shift,
                    }
                    for check in checks
                ]
                for checks in check_sets
            ]

        return {
            "name": self.name,
            "start": self.start,
            "slots": [
                {"name": slot.name, "predicate": slot.predicate.to_dict() if slot.predicate else None}
                for slot in self.slots
            ],
            "overflow_slot": self.overflow_slot,
            "anchor": self.anchor,
            "max_shift": self.max_shift,
            "aligned_checks": dump_sets(self.aligned_checks),
            "shift_checks": dump_sets(self.shift_checks),
            "exceptions": dump_sets(self.exceptions),
            "presence_slots": list(self.presence_slots),
            "empty_anchor_means_gap": self.empty_anchor_means_gap,
            "scan_requires_text": self.scan_requires_text,
            "anchor_scan_allows_empty": self.anchor_scan_allows_empty,
            "gap": (
                {"span": self.gap.span, "require_overflow_text": self.gap.require_overflow_text}
                if self.gap
                else None
            ),
            "fallback_window": self.fallback_window,
            "join_separator": self.join_separator,
            "strip_fragments": self.strip_fragments,
            "skip_date_placeholders": self.skip_date_placeholders,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Zone":
        if not isinstance(payload, dict):
            raise FamilyConfigError(f"Zone must be an object, got {payload!r}")

        def load_sets(raw) -> tuple[tuple[Check, ...], ...]:
            return tuple(
                tuple(
                    Check(
                        slot=str(item["slot"]),
                        predicate=Predicate.from_dict(item["predicate"]),
                        allow_empty=bool(item.get("allow_empty", False)),
                        negate=bool(item.get("negate", False)),
                        fixed=bool(item.get("fixed", False)),
                        only_at_shift=(
                            int(item["only_at_shift"]) if item.get("only_at_shift") is not None else None
                        ),
                    )
                    for item in checks
                )
                for checks in (raw or [])
            )

        try:
            gap = payload.get("gap")
            return cls(
                name=str(payload["name"]),
                start=int(payload["start"]),
                slots=tuple(
                    Slot(
                        name=str(item["name"]),
                        predicate=Predicate.from_dict(item["predicate"]) if item.get("predicate") else None,
                    )
                    for item in payload["slots"]
                ),
                overflow_slot=str(payload["overflow_slot"]),
                anchor=str(payload["anchor"]),
                max_shift=int(payload["max_shift"]),
                aligned_checks=load_sets(payload.get("aligned_checks")),
                shift_checks=load_sets(payload.get("shift_checks")),
                exceptions=load_sets(payload.get("exceptions")),
                presence_slots=tuple(payload.get("presence_slots") or ()),
                empty_anchor_means_gap=bool(payload.get("empty_anchor_means_gap", False)),
                scan_requires_text=bool(payload.get("scan_requires_text", False)),
                anchor_scan_allows_empty=bool(payload.get("anchor_scan_allows_empty", False)),
                gap=(
                    GapRule(
                        span=int(gap.get("span", 1)),
                        require_overflow_text=bool(gap.get("require_overflow_text", False)),
                    )
                    if gap
                    else None
                ),
                fallback_window=int(payload.get("fallback_window", 0)),
                join_separator=str(payload.get("join_separator", ", ")),
                strip_fragments=bool(payload.get("strip_fragments", False)),
                skip_date_placeholders=bool(payload.get("skip_date_placeholders", False)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise FamilyConfigError(f"Malformed zone definition: {exc}") from exc


def _check_passes(row: list, zone: Zone, check: Check, k: int) -> bool:
    if check.only_at_shift is not None and check.only_at_shift != k:
        return True
    value = cell_at(row, zone.position(check.slot) + (0 if check.fixed else k))
    ok = (check.allow_empty and is_empty(value)) or check.predicate(value)
    return not ok if check.negate else ok


def _any_set_passes(row: list, zone: Zone, check_sets, k: int) -> bool:
    return any(all(_check_passes(row, zone, check, k) for check in checks) for checks in check_sets)


def _gap_matches(row: list, zone: Zone) -> bool:
    if zone.gap is None:
        return False
    if zone.gap.require_overflow_text and is_empty(cell_at(row, zone.overflow_position)):
        return False
    anchor_pos = zone.anchor_position
    return all(
        zone.anchor_predicate(cell_at(row, anchor_pos + offset))
        for offset in range(1, zone.gap.span + 1)
    )


def detect_shift(row: list, zone: Zone) -> Detection:
    """
    Work out how far right the zone's anchor has been pushed.

    Returns a Detection whose status is one of absent / aligned / shifted /
    gap / unresolved.  Only shifted and gap carry k > 0.  The scan is bounded
    by zone.max_shift and the first confirmed k wins.
    """
    row = row or []
    if zone.presence_slots and all(is_empty(cell_at(row, zone.position(name))) for name in zone.presence_slots):
        return Detection(0, ABSENT)

    predicate = zone.anchor_predicate
    anchor_pos = zone.anchor_position
    anchor_value = cell_at(row, anchor_pos)
    anchor_empty = is_empty(anchor_value)

    if predicate(anchor_value):
        if not zone.aligned_checks or _any_set_passes(row, zone, zone.aligned_checks + zone.exceptions, 0):
            return Detection(0, ALIGNED)

    scan = not (anchor_empty and zone.empty_anchor_means_gap)
    if scan and zone.scan_requires_text:
        scan = not is_empty(cell_at(row, zone.overflow_position)) and isinstance(anchor_value, str)

    if scan:
        confirmations = zone.shift_checks + zone.exceptions
        for k in range(1, zone.max_shift + 1):
            candidate = cell_at(row, anchor_pos + k)
            if not (predicate(candidate) or (zone.anchor_scan_allows_empty and is_empty(candidate))):
                continue
            if not confirmations or _any_set_passes(row, zone, confirmations, k):
                return Detection(k, SHIFTED)

    if anchor_empty and _gap_matches(row, zone):
        return Detection(1, GAP)

    return Detection(0, UNRESOLVED)


def merge_and_shift(
    row: list,
    start: int,
    k: int,
    separator: str = ", ",
    strip: bool = False,
    skip_dates: bool = False,
) -> list:
    """
    Join row[start..start+k] into row[start] and pull everything after left by k.

    The returned row has the input's length: the tail is padded with None.
    Cells left of `start` are never touched.
    """
    row = list(row or [])
    if k <= 0:
        return row
    width = len(row)

    fragments: list[str] = []
    for value in row[start : start + k + 1]:
        if is_empty(value):
            continue
        text = cell_text(value)
        if skip_dates and DATE_PLACEHOLDER_RE.match(text.strip()):
            continue
        if strip:
            text = text.strip()
            if not text:
                continue
        fragments.append(text)

    repaired = row[:start] + [separator.join(fragments)] + row[start + k + 1 :]
    if len(repaired) < width:
        repaired.extend([None] * (width - len(repaired)))
    return repaired[:width]


def repair_shift(row: list, zone: Zone, k: int) -> list:
    return merge_and_shift(
        row,
        zone.overflow_position,
        k,
        separator=zone.join_separator,
        strip=zone.strip_fragments,
        skip_dates=zone.skip_date_placeholders,
    )


def _shift_detail(zone: Zone, repaired: list, k: int, status: str) -> str:
    kind = "gap" if status == GAP else f"{zone.overflow_slot} overflow"
    anchor_text = truncate(cell_at(repaired, zone.anchor_position), 11)
    return f"{zone.name}: +{k} {kind} merged and realigned ({zone.anchor}={anchor_text})"


def repair_zone(row: list, zone: Zone, report: ValidationReport, row_number: int) -> list:
    """Detect and repair one zone of one row, recording what happened; returns the (new) row."""
    row = list(row or [])
    detection = detect_shift(row, zone)

    if detection.shift > 0:
        repaired = repair_shift(row, zone, detection.shift)
        report.add_shift(row_number, zone.name, _shift_detail(zone, repaired, detection.shift, detection.status))
        logger.debug("Row %d: %s shifted +%d (%s)", row_number, zone.name, detection.shift, detection.status)
        return repaired

    anchor_pos = zone.anchor_position
    anchor_value = cell_at(row, anchor_pos)
    if detection.status in (ABSENT, ALIGNED) or is_empty(anchor_value) or zone.anchor_predicate(anchor_value):
        return row

    for k in range(1, zone.fallback_window + 1):
        if zone.anchor_predicate(cell_at(row, anchor_pos + k)):
            repaired = repair_shift(row, zone, k)
            detail = _shift_detail(zone, repaired, k, SHIFTED)
            report.add_shift(row_number, zone.name, f"Inferred shift +{k}: {detail}", confidence="low")
            logger.debug("Row %d: %s inferred shift +%d", row_number, zone.name, k)
            return repaired

    report.add_warning(
        row_number,
        f'{zone.name} {zone.anchor} (col {anchor_pos}) invalid: "{truncate(anchor_value)}", no shift found, manual review',
        zone=zone.name,
        column=anchor_pos,
    )
    return row


def repair_zones(row: list, zones, report: ValidationReport, row_number: int) -> list:
    for zone in zones:
        row = repair_zone(row, zone, report, row_number)
    return row
