"""
Lab Pool — Result Validator Tests
"""

import os
import sys
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from workpool.errors import ValidationError
from workpool.results import validate_results
from workpool.types import ResultEntry, ResultFlag


class TestValidateResults(unittest.TestCase):

    def assertFieldErrors(self, entries, *expected):
        with self.assertRaises(ValidationError) as ctx:
            validate_results(entries)
        for msg in expected:
            self.assertIn(msg, ctx.exception.field_errors)
        return ctx.exception

    def test_single_entry(self):
        [entry] = validate_results([{"label": "Glucose", "value": "95", "unit": "mg/dL"}])
        self.assertEqual(entry.label, "Glucose")
        self.assertEqual(entry.value, "95")
        self.assertEqual(entry.unit, "mg/dL")
        self.assertEqual(entry.flag, ResultFlag.NORMAL)
        self.assertEqual(entry.reference_range, "")

    def test_strips_and_normalizes(self):
        [entry] = validate_results([{
            "label": "  Hb ", "value": " 13.2 ", "reference_range": "12-16 ",
            "flag": "critical", "note": None,
        }])
        self.assertEqual((entry.label, entry.value), ("Hb", "13.2"))
        self.assertEqual(entry.reference_range, "12-16")
        self.assertEqual(entry.flag, ResultFlag.CRITICAL)
        self.assertEqual(entry.note, "")

    def test_numeric_values_become_text(self):
        [entry] = validate_results([{"label": "Platelets", "value": 250}])
        self.assertEqual(entry.value, "250")

    def test_accepts_result_entries(self):
        given = ResultEntry(label="HIV", value="negative", flag=ResultFlag.NORMAL)
        self.assertEqual(validate_results([given]), [given])

    def test_empty_list(self):
        self.assertFieldErrors([], "results: at least one entry is required")

    def test_not_a_list(self):
        for bad in (None, "Glucose=95", {"label": "Glucose", "value": "95"}):
            with self.assertRaises(ValidationError):
                validate_results(bad)

    def test_missing_fields_per_index(self):
        self.assertFieldErrors(
            [{"label": "Glucose", "value": "95"}, {"label": "Na"}, {"value": "4"}],
            "results[1].value: required",
            "results[2].label: required",
        )

    def test_whitespace_only_is_missing(self):
        self.assertFieldErrors([{"label": "   ", "value": "1"}], "results[0].label: required")

    def test_unknown_flag(self):
        err = self.assertFieldErrors([{"label": "Na", "value": "140", "flag": "HIGH"}])
        self.assertTrue(any(f.startswith("results[0].flag:") for f in err.field_errors))

    def test_entry_must_be_object(self):
        self.assertFieldErrors(["Glucose"], "results[0]: must be an object")

    def test_error_details(self):
        err = self.assertFieldErrors([{"label": "", "value": ""}])
        self.assertEqual(err.code, "validation_error")
        self.assertEqual(err.to_dict()["details"]["fields"], err.field_errors)


if __name__ == "__main__":
    unittest.main()
