import os
import sys
import unittest
from unittest.mock import patch


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from structbi.conditions import PARAM_INVALID, PARAM_REQUIRED, PARAM_TYPE_MISMATCH, condition
from structbi.messages import t
from structbi.parameters import Parameter, ParamSource
from structbi.values import Value, ValueKind


def _check(name, raw, **options):
    param = Parameter("field")
    param.set_value(raw)
    ok = condition(name, **options).check(param)
    return ok, param


class TestValidators(unittest.TestCase):
    CASES = [
        ("not-empty", "", {}, False, PARAM_REQUIRED),
        ("not-empty", "x", {}, True, None),
        ("is-string", 5, {}, False, PARAM_TYPE_MISMATCH),
        ("is-string", "abc", {}, True, None),
        ("is-string", None, {}, True, None),
        ("min-length", "ab", {"length": 3}, False, PARAM_INVALID),
        ("min-length", "abc", {"length": 3}, True, None),
        ("max-length", "abcd", {"length": 3}, False, PARAM_INVALID),
        ("max-length", "abc", {"length": 3}, True, None),
        ("charset", "bad name", {}, False, PARAM_INVALID),
        ("charset", "x'; DROP TABLE forms; --", {}, False, PARAM_INVALID),
        ("charset", "good_name-1", {}, True, None),
        ("one-of", "text", {"choices": ("text", "link")}, True, None),
        ("one-of", "blob", {"choices": ("text", "link")}, False, PARAM_INVALID),
        ("not-in", "id", {"choices": ("id",)}, False, PARAM_INVALID),
        ("not-in", "total", {"choices": ("id",)}, True, None),
        ("integer", "42", {}, True, None),
        ("integer", "4.2", {}, False, PARAM_TYPE_MISMATCH),
        ("integer", True, {}, False, PARAM_TYPE_MISMATCH),
        ("min-value", 0, {"minimum": 1}, False, PARAM_INVALID),
        ("min-value", 3, {"minimum": 1}, True, None),
        ("column-type", "abc", {"column_type": "text", "length": 2}, False, PARAM_INVALID),
        ("column-type", "ab", {"column_type": "text", "length": 2}, True, None),
        ("column-type", "2024-01-31", {"column_type": "date"}, True, None),
        ("column-type", "31/01/2024", {"column_type": "date"}, False, PARAM_TYPE_MISMATCH),
        ("column-type", "2024-01-31T10:00:00Z", {"column_type": "datetime"}, True, None),
        ("column-type", "yes", {"column_type": "boolean"}, True, None),
        ("column-type", "maybe", {"column_type": "boolean"}, False, PARAM_TYPE_MISMATCH),
        ("column-type", "1.5", {"column_type": "decimal"}, True, None),
        ("column-type", "inf", {"column_type": "decimal"}, False, PARAM_TYPE_MISMATCH),
        ("column-type", "nan", {"column_type": "decimal"}, False, PARAM_TYPE_MISMATCH),
        ("column-type", float("inf"), {"column_type": "decimal"}, False, PARAM_TYPE_MISMATCH),
        ("column-type", "seven", {"column_type": "integer"}, False, PARAM_TYPE_MISMATCH),
        ("column-type", "12", {"column_type": "link"}, True, None),
    ]

    def test_table(self) -> None:
        for name, raw, options, expected_ok, expected_code in self.CASES:
            with self.subTest(validator=name, raw=raw):
                ok, param = _check(name, raw, **options)
                self.assertEqual(ok, expected_ok)
                self.assertEqual(param.error_code, expected_code)
                if not ok:
                    self.assertTrue(param.error)

    def test_coercion_replaces_bound_value(self) -> None:
        _, param = _check("integer", "42")
        self.assertEqual(param.value, Value.of(42))
        _, param = _check("column-type", "yes", column_type="boolean")
        self.assertEqual(param.value, Value.of(True))
        _, param = _check("column-type", "1.5", column_type="decimal")
        self.assertEqual(param.value.kind, ValueKind.DECIMAL)

    def test_unknown_validator_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            condition("no-such-validator")

    def test_message_key_overrides_default_text(self) -> None:
        _, param = _check("min-length", "ab", length=3, message_key="form.identifier_short")
        self.assertEqual(param.error, t("form.identifier_short"))


class TestParameterEvaluate(unittest.TestCase):
    def test_default_replaces_empty_value(self) -> None:
        param = Parameter("state", default="active", required=True)
        param.set_value("")
        self.assertTrue(param.evaluate())
        self.assertEqual(param.value.to_string(), "active")

    def test_required_without_default_uses_required_key(self) -> None:
        param = Parameter("identifier", required=True, required_key="form.identifier_empty")
        self.assertFalse(param.evaluate())
        self.assertEqual(param.error_code, PARAM_REQUIRED)
        self.assertEqual(param.error, t("form.identifier_empty"))

    def test_optional_empty_binds_null(self) -> None:
        param = Parameter("description")
        param.set_value("")
        self.assertTrue(param.evaluate())
        self.assertIsNone(param.bound())

    def test_first_failing_condition_wins(self) -> None:
        param = Parameter("identifier").add_condition("min-length", "form.identifier_short", length=3)
        param.add_condition("charset", "form.identifier_charset")
        param.set_value("a!")
        self.assertFalse(param.evaluate())
        self.assertEqual(param.error, t("form.identifier_short"))

    def test_clone_drops_bound_state(self) -> None:
        param = Parameter("id").add_condition("integer")
        param.set_value("x")
        param.evaluate()
        copy = param.clone()
        self.assertTrue(copy.value.is_null())
        self.assertIsNone(copy.error)
        self.assertEqual(len(copy.conditions), 1)

    def test_static_parameter_keeps_its_value(self) -> None:
        param = Parameter.static("id_form", 9)
        self.assertEqual(param.source, ParamSource.STATIC)
        param.reset()
        self.assertEqual(param.value.to_python(), 9)
        param.fix(10)
        param.reset()
        self.assertEqual(param.value.to_python(), 10)

    def test_structured_values_bind_as_json(self) -> None:
        param = Parameter("meta")
        param.set_value({"a": 1})
        self.assertEqual(param.bound(), '{"a": 1}')


class TestMessages(unittest.TestCase):
    def test_spanish_catalog(self) -> None:
        with patch.dict(os.environ, {"STRUCTBI_LOCALE": "es"}):
            self.assertEqual(t("form.not_found"), "Formulario no encontrado")

    def test_unknown_locale_falls_back_to_english(self) -> None:
        with patch.dict(os.environ, {"STRUCTBI_LOCALE": "xx"}):
            self.assertEqual(t("form.not_found"), "Form not found")

    def test_unknown_key_returns_key(self) -> None:
        self.assertEqual(t("no.such.key"), "no.such.key")


if __name__ == "__main__":
    unittest.main()
