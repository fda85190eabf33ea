"""
Tests for sandboxed script blocks.
"""

import pytest

from sheetphrase.core.errors import EvaluationError, UnsafeScriptError
from sheetphrase.core.script import compile_script, run_script, script_functions, script_literal
from tests.fixtures import make_character, make_item


class TestRunScript:
    """Scripts read entity data when enabled."""

    def test_disabled_by_default(self, config):
        with pytest.raises(EvaluationError):
            run_script("1 + 1", config=config)

    def test_no_config(self):
        with pytest.raises(EvaluationError):
            run_script("1 + 1")

    def test_arithmetic(self, script_config):
        assert run_script("2 * 21", config=script_config) == 42

    def test_entity_access(self, script_config):
        aria = make_character("Aria")
        assert run_script("entity.props.str", aria, config=script_config) == 16
        assert run_script("entity.props['stats']['hp']", aria, config=script_config) == 24
        assert run_script("entity.name", aria, config=script_config) == "Aria"

    def test_linked_entity(self, script_config):
        aria = make_character("Aria")
        sword = make_item("Longsword", parent=aria)
        assert run_script("linked_entity.parent", aria, sword, config=script_config) == "Aria"

    def test_no_entity(self, script_config):
        assert run_script("entity is None", config=script_config) is True

    def test_return_and_semicolon_stripped(self, script_config):
        assert run_script("return 1 + 1;", config=script_config) == 2

    def test_allowed_functions(self, script_config):
        assert run_script("max(1, 3) + len('abc')", config=script_config) == 6

    def test_configured_builtin(self, script_config):
        script_config.scripts.allowed_functions = ["sign"]
        assert run_script("sign(-4)", config=script_config) == -1

    def test_power(self, script_config):
        assert run_script("2 ** 10", config=script_config) == 1024

    def test_power_overflow(self, script_config):
        with pytest.raises(EvaluationError):
            run_script("9 ** 9 ** 9", config=script_config)

    def test_runtime_error(self, script_config):
        with pytest.raises(EvaluationError):
            run_script("1 / 0", config=script_config)

    def test_missing_key(self, script_config):
        with pytest.raises(EvaluationError):
            run_script("entity.props.mana", make_character(), config=script_config)

    def test_entity_data_is_read_only(self, script_config):
        aria = make_character("Aria")
        run_script("entity.props.str", aria, config=script_config)
        assert aria.props["str"] == 16


class TestSandbox:
    """Unsafe syntax is rejected before anything runs."""

    @pytest.mark.parametrize("source", [
        "__import__('os')",
        "open('/etc/passwd')",
        "entity.__class__",
        "_secret",
        "(lambda: 1)()",
        "[x for x in range(3)]",
        "entity.props.get('str')",
        "(x := 1)",
    ])
    def test_rejected(self, source):
        with pytest.raises(UnsafeScriptError):
            compile_script(source, script_functions())

    def test_statements_rejected(self):
        with pytest.raises(EvaluationError):
            compile_script("import os", script_functions())

    def test_no_builtins(self, script_config):
        script_config.scripts.allowed_functions = []
        with pytest.raises(UnsafeScriptError):
            run_script("print(1)", config=script_config)

    def test_unknown_configured_function_ignored(self):
        assert "eval" not in script_functions(["eval"])


class TestScriptLiteral:
    """Script results become formula text."""

    @pytest.mark.parametrize("value,expected", [
        (3, "3"),
        (2.5, "2.5"),
        (True, "true"),
        ("Aria", "'Aria'"),
        ("it's", r"'it\'s'"),
        (None, "'null'"),
        ({"a": 1}, "'object'"),
        ([1, 2], "'1,2'"),
    ])
    def test_literal(self, value, expected):
        assert script_literal(value) == expected
