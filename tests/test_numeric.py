from __future__ import annotations

import unittest

from customs_doctor.heal_modules.numeric import (
    coerce_numeric,
    coerce_numeric_columns,
    excel_fraction_to_time,
    excel_serial_to_date,
    excel_serial_to_datetime,
    fix_leading_separator,
    fix_numeric_value,
)


def normalise_numeral(value):
    fixed, _ = fix_numeric_value(value)
    coerced, _ = coerce_numeric(fixed)
    return coerced


class FixNumericValueTests(unittest.TestCase):
    def test_documented_numeral_examples(self):
        self.assertEqual(normalise_numeral("1.234,56"), 1234.56)
        self.assertEqual(normalise_numeral("200,000"), 200000)
        self.assertEqual(normalise_numeral("123,45"), 123.45)
        self.assertEqual(normalise_numeral(",7"), 0.7)

    def test_rules_report_changes(self):
        self.assertEqual(fix_numeric_value("12.345.678,90"), ("12345678.90", True))
        self.assertEqual(fix_numeric_value(".5"), ("0.5", True))
        self.assertEqual(fix_numeric_value("-,5"), ("-0.5", True))
        self.assertEqual(fix_numeric_value("-1.234,5"), ("-1234.5", True))
        self.assertEqual(fix_numeric_value(" 12,5 "), ("12.5", True))

    def test_zero_group_is_a_decimal_not_thousands(self):
        self.assertEqual(fix_numeric_value(",500"), ("0.500", True))
        self.assertEqual(fix_numeric_value("0,500"), ("0.500", True))
        self.assertEqual(fix_numeric_value("-,500"), ("-0.500", True))
        self.assertEqual(normalise_numeral(",500"), 0.5)
        self.assertEqual(normalise_numeral("0,500"), 0.5)
        self.assertEqual(fix_numeric_value("0.500"), ("0.500", False))
        self.assertEqual(fix_numeric_value("1,500"), ("1500", True))

    def test_non_numerals_are_left_alone(self):
        for value in ["Frankfurt am Main", "01.02.2025", "2025-01-31", "1,2,3", "1,234.56", "DE123456789"]:
            with self.subTest(value=value):
                self.assertEqual(fix_numeric_value(value), (value, False))

    def test_numbers_none_and_blank_are_unchanged(self):
        for value in [None, "", 12, 3.5]:
            with self.subTest(value=value):
                result, changed = fix_numeric_value(value)
                self.assertIs(result, value)
                self.assertFalse(changed)

    def test_idempotent(self):
        samples = [
            "1.234,56", "200,000", "123,45", ",7", ".5", "-,25", "1.234", "12.345.678,90",
            "0.5", "1234.56", "text, more text", "  8,0 ", "1,000,000", "-1.000.000",
            ",500", "0,500", "0.500", None, "", 7,
        ]
        for value in samples:
            with self.subTest(value=value):
                once, _ = fix_numeric_value(value)
                twice, changed = fix_numeric_value(once)
                self.assertEqual(twice, once)
                self.assertFalse(changed)


class LeadingSeparatorTests(unittest.TestCase):
    def test_only_bare_fractions_are_fixed(self):
        self.assertEqual(fix_leading_separator(",5"), ("0.5", True))
        self.assertEqual(fix_leading_separator(" .75"), ("0.75", True))
        self.assertEqual(fix_leading_separator("1.234,56"), ("1.234,56", False))
        self.assertEqual(fix_leading_separator("-,5"), ("-,5", False))
        self.assertEqual(fix_leading_separator(0.5), (0.5, False))


class CoerceNumericTests(unittest.TestCase):
    def test_integers_and_floats(self):
        self.assertEqual(coerce_numeric("200000"), (200000, True))
        self.assertIsInstance(coerce_numeric("200000")[0], int)
        self.assertEqual(coerce_numeric("1234.56"), (1234.56, True))
        self.assertEqual(coerce_numeric("1e3"), (1000.0, True))
        self.assertEqual(coerce_numeric(" -4 "), (-4, True))

    def test_non_numerals_stay_strings(self):
        for value in ["nan", "inf", "12 kg", "1,5", "", "0x10"]:
            with self.subTest(value=value):
                self.assertEqual(coerce_numeric(value), (value, False))
        self.assertEqual(coerce_numeric(None), (None, False))
        self.assertEqual(coerce_numeric(4.5), (4.5, False))

    def test_only_declared_columns_are_coerced(self):
        row = ["12", "3.5", "Invoice 42", "7"]
        coerced, changes = coerce_numeric_columns(row, [1, 2, 3, 9])
        self.assertEqual(coerced, ["12", 3.5, "Invoice 42", 7])
        self.assertEqual(changes, [(1, "3.5", 3.5), (3, "7", 7)])
        self.assertEqual(row, ["12", "3.5", "Invoice 42", "7"])


class ExcelSerialTests(unittest.TestCase):
    def test_serial_dates(self):
        self.assertEqual(excel_serial_to_date(45950), ("20.10.2025", True))
        self.assertEqual(excel_serial_to_date(45658), ("01.01.2025", True))
        self.assertEqual(excel_serial_to_date(45950.7), ("20.10.2025", True))

    def test_values_outside_the_date_range_are_kept(self):
        for value in [100, 39999, 60000, "45950", "27.10.2025", None, "", True]:
            with self.subTest(value=value):
                self.assertEqual(excel_serial_to_date(value), (value, False))
                self.assertEqual(excel_serial_to_datetime(value), (value, False))

    def test_serial_datetimes(self):
        self.assertEqual(excel_serial_to_datetime(45950.658333), ("20.10.2025 15:48", True))
        self.assertEqual(excel_serial_to_datetime(45950.0), ("20.10.2025 00:00", True))

    def test_time_fractions(self):
        cases = [
            (0.658333, "15:48"),
            (0.0, "00:00"),
            (0, "00:00"),
            (0.5, "12:00"),
            (0.25, "06:00"),
            (0.999306, "23:59"),
            (0.99999, "23:59"),
        ]
        for value, expected in cases:
            with self.subTest(value=value):
                self.assertEqual(excel_fraction_to_time(value), (expected, True))
        for value in [1, 1.5, -0.1, "15:48", None]:
            with self.subTest(value=value):
                self.assertEqual(excel_fraction_to_time(value), (value, False))


if __name__ == "__main__":
    unittest.main()
