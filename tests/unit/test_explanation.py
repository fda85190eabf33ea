"""
Tests for explanation trees.
"""

from sheetphrase.core.context import ComputeOptions
from sheetphrase.core.explanation import ExplanationNode, build_explanation
from sheetphrase.core.expression import ExpressionEvaluator, parse_expression
from sheetphrase.core.formula import Formula
from sheetphrase.core.functions import EXPLAINABLE_FUNCTIONS


def _explain(text: str, scope: dict, functions: dict = None) -> ExplanationNode:
    evaluator = ExpressionEvaluator(
        scope=scope,
        functions=functions,
        cached_functions=EXPLAINABLE_FUNCTIONS
    )
    tree = parse_expression(text)
    value = evaluator.evaluate(tree)
    return build_explanation(tree, evaluator, text, value)


class TestTreeShape:
    """Variables and lookup calls become records."""

    def test_root_holds_formula_and_result(self):
        root = _explain("str + dex", {"str": 16, "dex": 14})
        assert root.display == "str + dex"
        assert root.value == 30

    def test_variables_are_children(self):
        root = _explain("str + dex", {"str": 16, "dex": 14})
        assert [(c.display, c.value) for c in root.children] == [("str", 16), ("dex", 14)]

    def test_builtins_and_constants_are_transparent(self):
        """max() is not recorded, its arguments attach to the root."""
        root = _explain("max(str, 1) * pi", {"str": 2})
        assert [c.display for c in root.children] == ["str"]

    def test_duplicate_siblings_kept_once(self):
        root = _explain("str + str", {"str": 16})
        assert len(root.children) == 1

    def test_lookup_call_record(self):
        root = _explain("ref(key, 0) + 1", {"key": "stats.hp"}, {"ref": lambda k, d=None: 24})
        call = root.children[0]
        assert call.display == 'ref(key, Default: 0)'
        assert call.handle == "ref(key, 0)"
        assert call.value == 24
        assert [c.display for c in call.children] == ["key"]

    def test_fetch_arguments_are_labelled(self):
        fetch = lambda *args: [1, 2]
        root = _explain(
            'sum(fetchFromDynamicTable("weapons", "bonus", "name", "Dagger"))',
            {},
            {"fetchFromDynamicTable": fetch}
        )
        assert root.children[0].display == (
            'fetchFromDynamicTable("weapons", Target: "bonus", Where: "name", Is: "Dagger")'
        )

    def test_to_dict(self):
        root = _explain("str + 1", {"str": 16})
        assert root.to_dict() == {
            "display": "str + 1",
            "handle": "str + 1",
            "value": 17,
            "children": [{"display": "str", "handle": "str", "value": 16, "children": []}]
        }


class TestFormulaExplanation:
    """Formulas build explanations only when asked to."""

    def test_requested_by_options(self, sheet_props, context):
        formula = Formula("str + ref('stats.hp')").compute_static(
            sheet_props, ComputeOptions(compute_explanation=True), context
        )
        assert formula.result == 40
        tree = formula.tokens[0]
        assert tree["display"] == "str + ref('stats.hp')"
        assert [c["display"] for c in tree["children"]] == ["str", 'ref("stats.hp")']
        assert tree["children"][1]["value"] == 24

    def test_requested_by_config(self, sheet_props, context):
        context.config.compute_explanation = True
        formula = Formula("str").compute_static(sheet_props, ComputeOptions(), context)
        assert len(formula.tokens) == 1

    def test_not_requested(self, sheet_props, context):
        formula = Formula("str").compute_static(sheet_props, ComputeOptions(), context)
        assert formula.tokens == []

    def test_suppressed_by_sigil(self, sheet_props, context):
        formula = Formula("!str").compute_static(
            sheet_props, ComputeOptions(compute_explanation=True), context
        )
        assert formula.result == 16
        assert formula.explanation is False
        assert formula.tokens == []
