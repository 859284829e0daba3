from __future__ import annotations

import unittest

from customs_doctor.heal_modules.predicates import (
    COUNTRY_CODE,
    CURRENCY_CODE,
    DATE,
    EMPTY,
    EORI,
    HS_CODE,
    LONG_TEXT,
    NAMED_PREDICATES,
    NUMERIC,
    POSTCODE,
    PROCEDURE_CODE,
    SHORT_TEXT,
    Predicate,
)
from customs_doctor.heal_modules.shared import FamilyConfigError


class PredicateTests(unittest.TestCase):
    def test_hs_code_accepts_text_and_numbers(self):
        self.assertTrue(HS_CODE("73181595"))
        self.assertTrue(HS_CODE(84713000))
        self.assertTrue(HS_CODE(" 8471300000 "))
        self.assertFalse(HS_CODE("7318159"))
        self.assertFalse(HS_CODE("7318.15.95"))
        self.assertFalse(HS_CODE(None))

    def test_country_code_is_text_only_and_case_insensitive(self):
        self.assertTrue(COUNTRY_CODE("DE"))
        self.assertTrue(COUNTRY_CODE("de "))
        self.assertFalse(COUNTRY_CODE("DEU"))
        self.assertFalse(COUNTRY_CODE(12))
        self.assertFalse(COUNTRY_CODE(""))

    def test_currency_is_upper_case(self):
        self.assertTrue(CURRENCY_CODE("EUR"))
        self.assertFalse(CURRENCY_CODE("eur"))

    def test_postcode(self):
        self.assertTrue(POSTCODE("10115"))
        self.assertTrue(POSTCODE(10115))
        self.assertTrue(POSTCODE("SW1A 1AA"))
        self.assertTrue(POSTCODE("D-12345"))
        self.assertFalse(POSTCODE("12345678901"))
        self.assertFalse(POSTCODE("-12345"))

    def test_numeric_prefix(self):
        for value in [3.2, 0, "12,5", "-,5", ".75", "12 kg"]:
            with self.subTest(value=value):
                self.assertTrue(NUMERIC(value))
        for value in ["am Main", "", None, "-x"]:
            with self.subTest(value=value):
                self.assertFalse(NUMERIC(value))

    def test_date_shapes(self):
        self.assertTrue(DATE("01.02.2025"))
        self.assertTrue(DATE("2025-02-01"))
        self.assertTrue(DATE("2025-02-01T10:00:00"))
        self.assertFalse(DATE("01.02.20256"))
        self.assertFalse(DATE("2025/02/01"))

    def test_text_lengths(self):
        self.assertTrue(LONG_TEXT("Stainless steel screws"))
        self.assertFalse(LONG_TEXT("Screws"))
        self.assertFalse(LONG_TEXT(12345678901234))
        self.assertTrue(SHORT_TEXT("Berlin"))
        self.assertFalse(SHORT_TEXT("   "))
        self.assertFalse(SHORT_TEXT("Frankfurt am Main"))

    def test_codes(self):
        self.assertTrue(PROCEDURE_CODE("4000"))
        self.assertTrue(PROCEDURE_CODE(300))
        self.assertFalse(PROCEDURE_CODE("40000"))
        self.assertTrue(EORI("DE123456789012345"))
        self.assertFalse(EORI("123"))
        self.assertTrue(EMPTY(None))
        self.assertTrue(EMPTY(""))
        self.assertFalse(EMPTY(0))


class PredicateConfigTests(unittest.TestCase):
    def test_named_predicates_resolve(self):
        self.assertIs(Predicate.from_dict("hs_code"), HS_CODE)
        self.assertEqual(set(NAMED_PREDICATES), {
            "hs_code", "country_code", "currency_code", "incoterm", "postcode", "numeric", "date",
            "procedure_code", "measure_unit", "long_text", "short_text", "eori", "empty",
        })

    def test_dict_form_matches_builtin(self):
        self.assertEqual(Predicate.from_dict(COUNTRY_CODE.to_dict()), COUNTRY_CODE)
        custom = Predicate.from_dict({"kind": "pattern", "pattern": r"[A-Z]{4}\d{7}"})
        self.assertTrue(custom("MSCU1234567"))
        self.assertFalse(custom("MSCU123"))

    def test_bad_definitions_raise(self):
        with self.assertRaises(FamilyConfigError):
            Predicate.from_dict("not_a_predicate")
        with self.assertRaises(FamilyConfigError):
            Predicate.from_dict({"kind": "regex", "pattern": "x"})
        with self.assertRaises(FamilyConfigError):
            Predicate.from_dict({"kind": "pattern", "pattern": "(unclosed"})
        with self.assertRaises(FamilyConfigError):
            Predicate.from_dict({"kind": "pattern"})
        with self.assertRaises(FamilyConfigError):
            Predicate.from_dict(42)


if __name__ == "__main__":
    unittest.main()
