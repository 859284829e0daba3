"""
Content predicates for zone slots and column checks.

A predicate is plain data (a kind plus parameters) so zone definitions can be
written in Python, loaded from JSON, and tested without any repair logic.
Patterns are compiled once and cached.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from customs_doctor.heal_modules.shared import FamilyConfigError, cell_text, is_empty

PREDICATE_KINDS = ("pattern", "numeric", "text_length", "empty")

_NUMERIC_PREFIX_RE = re.compile(r"^-?[.,]?\d")


@dataclass(frozen=True)
class Predicate:
    kind: str
    pattern: str | None = None
    ignore_case: bool = False
    text_only: bool = False
    full_match: bool = True
    min_length: int | None = None
    max_length: int | None = None

    def __call__(self, value: Any) -> bool:
        return matches(self, value)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind}
        if self.pattern is not None:
            payload["pattern"] = self.pattern
            payload["full_match"] = self.full_match
        if self.ignore_case:
            payload["ignore_case"] = True
        if self.text_only:
            payload["text_only"] = True
        if self.min_length is not None:
            payload["min_length"] = self.min_length
        if self.max_length is not None:
            payload["max_length"] = self.max_length
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> "Predicate":
        if isinstance(payload, str):
            if payload not in NAMED_PREDICATES:
                raise FamilyConfigError(f"Unknown named predicate '{payload}'")
            return NAMED_PREDICATES[payload]
        if not isinstance(payload, dict):
            raise FamilyConfigError(f"Predicate must be a name or an object, got {payload!r}")
        kind = payload.get("kind")
        if kind not in PREDICATE_KINDS:
            raise FamilyConfigError(
                f"Invalid predicate kind '{kind}'. Expected one of: {', '.join(PREDICATE_KINDS)}"
            )
        if kind == "pattern" and not payload.get("pattern"):
            raise FamilyConfigError("Pattern predicates need a 'pattern'")
        predicate = cls(
            kind=kind,
            pattern=payload.get("pattern"),
            ignore_case=bool(payload.get("ignore_case", False)),
            text_only=bool(payload.get("text_only", False)),
            full_match=bool(payload.get("full_match", True)),
            min_length=payload.get("min_length"),
            max_length=payload.get("max_length"),
        )
        if predicate.pattern is not None:
            try:
                _compiled(predicate.pattern, predicate.ignore_case)
            except re.error as exc:
                raise FamilyConfigError(f"Invalid pattern '{predicate.pattern}': {exc}") from exc
        return predicate


@lru_cache(maxsize=None)
def _compiled(pattern: str, ignore_case: bool) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE if ignore_case else 0)


def matches(predicate: Predicate, value: Any) -> bool:
    if predicate.kind == "empty":
        return is_empty(value)
    if is_empty(value):
        return False
    if predicate.text_only and not isinstance(value, str):
        return False

    if predicate.kind == "numeric":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return True
        return bool(_NUMERIC_PREFIX_RE.match(cell_text(value).strip()))

    text = cell_text(value).strip()
    if predicate.kind == "text_length":
        if predicate.min_length is not None and len(text) < predicate.min_length:
            return False
        if predicate.max_length is not None and len(text) > predicate.max_length:
            return False
        return True

    if predicate.kind == "pattern":
        regex = _compiled(predicate.pattern or "", predicate.ignore_case)
        if predicate.full_match:
            return regex.fullmatch(text) is not None
        return regex.match(text) is not None

    return False


def pattern(expr: str, *, ignore_case: bool = False, text_only: bool = False, full_match: bool = True) -> Predicate:
    return Predicate("pattern", pattern=expr, ignore_case=ignore_case, text_only=text_only, full_match=full_match)


def text_length(*, min_length: int | None = None, max_length: int | None = None) -> Predicate:
    return Predicate("text_length", text_only=True, min_length=min_length, max_length=max_length)


HS_CODE = pattern(r"\d{8,11}")
COUNTRY_CODE = pattern(r"[A-Z]{2}", ignore_case=True, text_only=True)
CURRENCY_CODE = pattern(r"[A-Z]{3}", text_only=True)
INCOTERM = pattern(r"[A-Z]{3}", text_only=True)
POSTCODE = pattern(r"[\dA-Z][\dA-Z \-.]{0,9}", ignore_case=True)
NUMERIC = Predicate("numeric")
DATE = pattern(r"\d{2}\.\d{2}\.\d{4}$|\d{4}-\d{2}-\d{2}", full_match=False)
PROCEDURE_CODE = pattern(r"\d{3,4}")
MEASURE_UNIT = pattern(r"[A-Z]{2,3}", text_only=True)
LONG_TEXT = text_length(min_length=11)
SHORT_TEXT = text_length(min_length=1, max_length=10)
EORI = pattern(r"[A-Z]{2}\d+", text_only=True, full_match=False)
EMPTY = Predicate("empty")

NAMED_PREDICATES = {
    "hs_code": HS_CODE,
    "country_code": COUNTRY_CODE,
    "currency_code": CURRENCY_CODE,
    "incoterm": INCOTERM,
    "postcode": POSTCODE,
    "numeric": NUMERIC,
    "date": DATE,
    "procedure_code": PROCEDURE_CODE,
    "measure_unit": MEASURE_UNIT,
    "long_text": LONG_TEXT,
    "short_text": SHORT_TEXT,
    "eori": EORI,
    "empty": EMPTY,
}
