from __future__ import annotations

import unittest

from customs_doctor.heal_modules.report import CLEAN_SUMMARY, ValidationReport


class ValidationReportTests(unittest.TestCase):
    def test_empty_report_is_clean(self):
        report = ValidationReport()
        self.assertEqual(report.summary(), CLEAN_SUMMARY)
        self.assertEqual(report.total_issues, 0)
        self.assertEqual(report.itemized(), [])

    def test_counters_and_summary(self):
        report = ValidationReport()
        report.add_shift(1, "Shipper", "Shipper: +1 address overflow merged and realigned (country=DE)")
        report.add_shift(4, "Goods", "Inferred shift +2: ...", confidence="low")
        report.add_numeric(2, 117, '"1.234,56" -> "1234.56"')
        report.add_cleanup(3, 5, "stripped leading/trailing newlines")
        report.add_warning(5, 'HS Code (col 110) invalid: "N/A"', zone="Goods", column=110)

        self.assertEqual(
            report.summary(),
            "2 shifted row(s) corrected · 1 number format(s) fixed · 1 text cleanup(s) · 1 warning(s)",
        )
        self.assertEqual(report.total_issues, 5)
        self.assertEqual(report.kind_counts(), {"shift": 2, "numeric": 1, "cleanup": 1, "warning": 1})
        self.assertEqual(report.issues[2].detail, 'Col 117: "1.234,56" -> "1234.56"')

    def test_has_warning_matches_row_and_column(self):
        report = ValidationReport()
        report.add_warning(5, "bad", zone="Goods", column=110)
        self.assertTrue(report.has_warning(5, 110))
        self.assertFalse(report.has_warning(5, 24))
        self.assertFalse(report.has_warning(6, 110))

    def test_itemized_lists_warnings_first_and_caps(self):
        report = ValidationReport()
        for row in range(1, 5):
            report.add_numeric(row, 3, f'"{row},5" -> "{row}.5"')
        report.add_warning(9, "needs a look", zone="Country", column=21)

        lines = report.itemized(limit=3)
        self.assertEqual(lines[0], "Row 9: [Country] needs a look")
        self.assertEqual(lines[1], 'Row 1: Col 3: "1,5" -> "1.5"')
        self.assertEqual(lines[-1], "+2 more")
        self.assertEqual(len(lines), 4)

    def test_to_dict_carries_severity(self):
        report = ValidationReport()
        report.add_shift(1, "Mid-row", "Mid-row: +1 gap merged and realigned (freight=12.50)")
        report.add_warning(2, "bad", column=56)
        payload = report.to_dict()
        self.assertEqual(payload["warnings"], 1)
        self.assertEqual([issue["severity"] for issue in payload["issues"]], ["info", "warning"])
        self.assertEqual(payload["issues"][0]["zone"], "Mid-row")
        self.assertEqual(payload["issues"][0]["confidence"], "high")


if __name__ == "__main__":
    unittest.main()
