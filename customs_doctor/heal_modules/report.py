"""
Append-only validation report shared by every stage of a merge.

Issue kinds carry a severity from ISSUE_DEFINITIONS so the CLI, the workbook
writer and the JSON summary rank them the same way.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any

SHIFT = "shift"
NUMERIC = "numeric"
CLEANUP = "cleanup"
WARNING = "warning"

ISSUE_DEFINITIONS = {
    SHIFT: {"severity": "info", "label": "shifted row corrected"},
    NUMERIC: {"severity": "info", "label": "number format fixed"},
    CLEANUP: {"severity": "info", "label": "text cleaned"},
    WARNING: {"severity": "warning", "label": "needs manual review"},
}

CLEAN_SUMMARY = "No issues found — data looks clean"
SUMMARY_SEPARATOR = " · "


def severity_for(kind: str) -> str:
    return ISSUE_DEFINITIONS.get(kind, {}).get("severity", "info")


@dataclass
class Issue:
    row: int
    kind: str
    detail: str
    zone: str | None = None
    column: int | None = None
    confidence: str = "high"

    @property
    def severity(self) -> str:
        return severity_for(self.kind)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["severity"] = self.severity
        return payload


@dataclass
class ValidationReport:
    shift_fixes: int = 0
    numeric_fixes: int = 0
    cleanup_fixes: int = 0
    issues: list[Issue] = field(default_factory=list)

    def add_shift(self, row: int, zone: str, detail: str, confidence: str = "high") -> None:
        self.shift_fixes += 1
        self.issues.append(Issue(row=row, kind=SHIFT, detail=detail, zone=zone, confidence=confidence))

    def add_numeric(self, row: int, column: int, detail: str) -> None:
        self.numeric_fixes += 1
        self.issues.append(Issue(row=row, kind=NUMERIC, detail=f"Col {column}: {detail}", column=column))

    def add_cleanup(self, row: int, column: int, detail: str) -> None:
        self.cleanup_fixes += 1
        self.issues.append(Issue(row=row, kind=CLEANUP, detail=f"Col {column}: {detail}", column=column))

    def add_warning(self, row: int, detail: str, zone: str | None = None, column: int | None = None) -> None:
        self.issues.append(Issue(row=row, kind=WARNING, detail=detail, zone=zone, column=column))

    def has_warning(self, row: int, column: int) -> bool:
        return any(
            issue.kind == WARNING and issue.row == row and issue.column == column
            for issue in self.issues
        )

    @property
    def warnings(self) -> list[Issue]:
        return [issue for issue in self.issues if issue.kind == WARNING]

    @property
    def total_issues(self) -> int:
        return self.shift_fixes + self.numeric_fixes + self.cleanup_fixes + len(self.warnings)

    def summary(self) -> str:
        parts = []
        if self.shift_fixes:
            parts.append(f"{self.shift_fixes} shifted row(s) corrected")
        if self.numeric_fixes:
            parts.append(f"{self.numeric_fixes} number format(s) fixed")
        if self.cleanup_fixes:
            parts.append(f"{self.cleanup_fixes} text cleanup(s)")
        warning_count = len(self.warnings)
        if warning_count:
            parts.append(f"{warning_count} warning(s)")
        if not parts:
            return CLEAN_SUMMARY
        return SUMMARY_SEPARATOR.join(parts)

    def itemized(self, limit: int = 50) -> list[str]:
        """Display lines for the first `limit` issues, warnings first, plus a '+N more' tail."""
        ordered = self.warnings + [issue for issue in self.issues if issue.kind != WARNING]
        lines = []
        for issue in ordered[:limit]:
            zone = f"[{issue.zone}] " if issue.zone else ""
            lines.append(f"Row {issue.row}: {zone}{issue.detail}")
        if len(ordered) > limit:
            lines.append(f"+{len(ordered) - limit} more")
        return lines

    def kind_counts(self) -> dict[str, int]:
        return dict(Counter(issue.kind for issue in self.issues))

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary(),
            "shift_fixes": self.shift_fixes,
            "numeric_fixes": self.numeric_fixes,
            "cleanup_fixes": self.cleanup_fixes,
            "warnings": len(self.warnings),
            "total_issues": self.total_issues,
            "kind_counts": self.kind_counts(),
            "issues": [issue.to_dict() for issue in self.issues],
        }
