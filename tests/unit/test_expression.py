"""
Tests for the expression parser and evaluator.
"""

import math

import pytest

from sheetphrase.core.errors import EvaluationError, UncomputableError
from sheetphrase.core.expression import (
    ExpressionEvaluator,
    evaluate_expression,
    format_node,
    format_value,
    parse_expression,
    parse_number,
    to_number,
    truthy,
)


class TestArithmetic:
    """Operators, precedence and number normalization."""

    @pytest.mark.parametrize("text,expected", [
        ("2+3", 5),
        ("2 + 3 * 4", 14),
        ("(2 + 3) * 4", 20),
        ("6 / 2", 3),
        ("7 / 2", 3.5),
        ("7 % 3", 1),
        ("7 mod 3", 1),
        ("2 ^ 3 ^ 2", 512),
        ("-2 ^ 2", -4),
        ("--3", 3),
        ("1.5e2", 150),
    ])
    def test_operators(self, text, expected):
        assert evaluate_expression(text) == expected

    def test_integral_float_becomes_int(self):
        """6/2 displays as 3, not 3.0."""
        result = evaluate_expression("6 / 2")
        assert isinstance(result, int)

    def test_numeric_strings_are_coerced(self):
        assert evaluate_expression("speed + 5", {"speed": "30"}) == 35

    def test_null_counts_as_zero(self):
        assert evaluate_expression("null + 4") == 4

    def test_non_numeric_operand_fails(self):
        with pytest.raises(EvaluationError):
            evaluate_expression("name + 1", {"name": "Aria"})

    def test_division_by_zero_fails(self):
        with pytest.raises(EvaluationError):
            evaluate_expression("1 / 0")

    def test_power_overflow_fails(self):
        """Tower exponents overflow instead of building a huge integer."""
        with pytest.raises(EvaluationError):
            evaluate_expression("9 ^ 9 ^ 9")
        with pytest.raises(EvaluationError):
            evaluate_expression("pow(10, 400)")

    def test_power_of_negative_base_to_fraction_fails(self):
        with pytest.raises(EvaluationError):
            evaluate_expression("(-8) ^ 0.5")

    def test_large_power_is_a_float(self):
        assert evaluate_expression("2 ^ 100") == 2.0 ** 100


class TestComparisonAndLogic:
    """Comparisons, boolean operators and the conditional."""

    @pytest.mark.parametrize("text,expected", [
        ("1 < 2", True),
        ("1 < 2 < 3", True),
        ("3 > 2 > 2", False),
        ("'3' == 3", True),
        ("'abc' == 'abc'", True),
        ("'abc' != 'abd'", True),
        ("'abc' < 'abd'", True),
        ("true and false", False),
        ("true or false", True),
        ("true xor true", False),
        ("not 0", True),
        ("str > 10 ? 'strong' : 'weak'", "strong"),
    ])
    def test_expressions(self, text, expected):
        assert evaluate_expression(text, {"str": 16}) == expected

    def test_conditional_short_circuits(self):
        """The branch not taken is never evaluated."""
        assert evaluate_expression("true ? 1 : missing") == 1

    def test_ordering_mixed_types_fails(self):
        with pytest.raises(EvaluationError):
            evaluate_expression("'abc' < 3")


class TestValues:
    """Strings, lists, property access and indexing."""

    def test_double_quoted_escapes(self):
        assert evaluate_expression(r'"say \"hi\""') == 'say "hi"'

    def test_single_quoted_string(self):
        assert evaluate_expression("'Fighter'") == "Fighter"

    def test_list_literal(self):
        assert evaluate_expression("[1, 2, 1 + 2]") == [1, 2, 3]

    def test_dotted_access(self):
        assert evaluate_expression("stats.hp", {"stats": {"hp": 24}}) == 24

    def test_list_index_is_one_based(self):
        assert evaluate_expression("[10, 20, 30][2]") == 20

    def test_mapping_index(self):
        assert evaluate_expression("stats['hp']", {"stats": {"hp": 24}}) == 24

    def test_index_out_of_range(self):
        with pytest.raises(EvaluationError):
            evaluate_expression("[1, 2][3]")

    def test_missing_property_fails(self):
        with pytest.raises(EvaluationError):
            evaluate_expression("stats.mp", {"stats": {"hp": 24}})

    def test_constants(self):
        assert evaluate_expression("pi") == math.pi


class TestBuiltinFunctions:
    """Built-in math and text functions."""

    @pytest.mark.parametrize("text,expected", [
        ("floor(7 / 2)", 3),
        ("ceil(7 / 2)", 4),
        ("round(2.5)", 3),
        ("round(-2.5)", -3),
        ("round(3.14159, 2)", 3.14),
        ("fix(-3.7)", -3),
        ("max(1, 5, 3)", 5),
        ("min([4, 2, 8])", 2),
        ("sum([1, 2], 3)", 6),
        ("mean(2, 4)", 3),
        ("sqrt(16)", 4),
        ("abs(-3)", 3),
        ("sign(-7)", -1),
        ("mod(10, 4)", 2),
        ("concat('a', 1, true)", "a1true"),
        ("count([1, 2, 3])", 3),
        ("equalText(3, '3')", True),
        ("isNumeric(3)", True),
        ("isNumeric('3')", False),
        ("number('42')", 42),
        ("string(1.5)", "1.5"),
    ])
    def test_builtins(self, text, expected):
        assert evaluate_expression(text) == expected

    def test_round_digits_bounded(self):
        with pytest.raises(EvaluationError):
            evaluate_expression("round(1, 999999999)")

    def test_unknown_function(self):
        with pytest.raises(EvaluationError):
            evaluate_expression("explode(1)")

    def test_domain_function_overrides_builtin(self):
        evaluator = ExpressionEvaluator(functions={"max": lambda *args: "custom"})
        assert evaluator.evaluate(parse_expression("max(1, 2)")) == "custom"

    def test_unexpected_function_error_is_wrapped(self):
        def broken():
            raise RuntimeError("boom")

        evaluator = ExpressionEvaluator(functions={"broken": broken})
        with pytest.raises(EvaluationError):
            evaluator.evaluate(parse_expression("broken()"))


class TestUndefinedSymbols:
    """Unknown names go to the per-evaluator callback."""

    def test_without_callback_fails(self):
        with pytest.raises(EvaluationError):
            evaluate_expression("missing + 1")

    def test_callback_supplies_value(self):
        evaluator = ExpressionEvaluator(on_undefined=lambda name: 10)
        assert evaluator.evaluate(parse_expression("missing + 1")) == 11

    def test_uncomputable_from_callback_propagates(self):
        def handler(name):
            raise UncomputableError(f"Uncomputable token {name}", name)

        evaluator = ExpressionEvaluator(on_undefined=handler)
        with pytest.raises(UncomputableError):
            evaluator.evaluate(parse_expression("missing"))

    def test_scope_wins_over_text_vars(self):
        evaluator = ExpressionEvaluator(scope={"x": 1}, text_vars={"x": "text", "y": "it's"})
        assert evaluator.evaluate(parse_expression("x")) == 1
        assert evaluator.evaluate(parse_expression("y")) == "it's"

    def test_evaluators_do_not_share_state(self):
        """Each evaluator keeps its own callback."""
        first = ExpressionEvaluator(on_undefined=lambda name: 1)
        second = ExpressionEvaluator(on_undefined=lambda name: 2)
        tree = parse_expression("missing")
        assert first.evaluate(tree) == 1
        assert second.evaluate(tree) == 2


class TestComputedTokens:
    """Calls to cached functions are recorded by their normalized text."""

    def test_cached_call_recorded(self):
        evaluator = ExpressionEvaluator(
            functions={"ref": lambda key: 7},
            cached_functions=["ref"]
        )
        evaluator.evaluate(parse_expression("ref('str') + 1"))
        assert evaluator.computed_tokens == {'ref("str")': 7}

    def test_other_calls_not_recorded(self):
        evaluator = ExpressionEvaluator(cached_functions=["ref"])
        evaluator.evaluate(parse_expression("max(1, 2)"))
        assert evaluator.computed_tokens == {}


class TestParsing:
    """Syntax errors and normalized node text."""

    def test_syntax_error(self):
        with pytest.raises(EvaluationError):
            parse_expression("1 +")

    def test_format_node_normalizes_spacing_and_quotes(self):
        tree = parse_expression("ref('str',1)+max( 1,2 )")
        assert format_node(tree) == 'ref("str", 1) + max(1, 2)'


class TestValueHelpers:
    """Number parsing, truthiness and display."""

    def test_parse_number(self):
        assert parse_number("3") == 3
        assert parse_number("+5") == 5
        assert parse_number("-2.5") == -2.5
        assert parse_number("") == 0
        assert parse_number("abc") is None

    def test_to_number(self):
        assert to_number(True) == 1
        assert to_number(None) == 0
        with pytest.raises(EvaluationError):
            to_number("abc")

    def test_truthy(self):
        assert truthy("0") is False
        assert truthy("abc") is True
        assert truthy([]) is False
        assert truthy(1) is True

    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        (True, "true"),
        (3.0, "3"),
        (2.5, "2.5"),
        ([1, "a"], "1,a"),
        (float("inf"), "Infinity"),
        ("text", "text"),
    ])
    def test_format_value(self, value, expected):
        assert format_value(value) == expected
