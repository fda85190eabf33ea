"""
Script blocks.

``%{...}%`` blocks hold a single Python expression evaluated with two bound
names, ``entity`` (the triggering entity) and ``linked_entity``. The source is
parsed with ``ast`` and every node is checked against an allow-list before it
is compiled, so scripts can read entity data and call a handful of math
helpers but cannot reach builtins, imports or dunder attributes.

Scripts are author code: they only run when ``scripts.enabled`` is set in the
engine configuration.
"""

import ast
import logging
import math
from collections.abc import Mapping
from typing import Any, Callable, Optional

from .errors import EvaluationError, UnsafeScriptError
from .expression import BUILTIN_FUNCTIONS, power

logger = logging.getLogger(__name__)

ALLOWED_FUNCTIONS: dict[str, Callable] = {
    "abs": abs,
    "ceil": math.ceil,
    "floor": math.floor,
    "max": max,
    "min": min,
    "round": round,
    "sqrt": math.sqrt,
    "len": len,
    "str": str,
    "int": int,
    "float": float,
}

ALLOWED_NODES = (
    ast.Expression,
    ast.BoolOp,
    ast.BinOp,
    ast.UnaryOp,
    ast.Compare,
    ast.IfExp,
    ast.Name,
    ast.Load,
    ast.Constant,
    ast.Attribute,
    ast.Subscript,
    ast.Slice,
    ast.List,
    ast.Tuple,
    ast.And,
    ast.Or,
    ast.Not,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.FloorDiv,
    ast.Mod,
    ast.Pow,
    ast.USub,
    ast.UAdd,
    ast.Eq,
    ast.NotEq,
    ast.Gt,
    ast.GtE,
    ast.Lt,
    ast.LtE,
    ast.In,
    ast.NotIn,
    ast.Is,
    ast.IsNot,
    ast.Call,
)

BOUND_NAMES = ("entity", "linked_entity")
POWER_FUNCTION = "_power"


class ScriptView(Mapping):
    """Read-only view of entity data, with attribute access to keys."""

    def __init__(self, data: Mapping):
        self._data = data

    def __getitem__(self, key):
        return wrap_value(self._data[key])

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def __iter__(self):
        return iter(self._data)

    def __len__(self):
        return len(self._data)


def wrap_value(value):
    if isinstance(value, Mapping):
        return ScriptView(value)
    if isinstance(value, list):
        return [wrap_value(item) for item in value]
    return value


def entity_view(entity) -> Optional[ScriptView]:
    """Expose an entity's name, type and props to scripts."""
    if entity is None:
        return None
    return ScriptView({
        "name": entity.name,
        "type": entity.entity_type,
        "props": entity.props,
        "parent": entity.parent.name if entity.parent else None,
    })


class _PowerCalls(ast.NodeTransformer):
    """Rewrites ``a ** b`` as a call to the float power function."""

    def visit_BinOp(self, node):
        self.generic_visit(node)
        if isinstance(node.op, ast.Pow):
            call = ast.Call(
                func=ast.Name(id=POWER_FUNCTION, ctx=ast.Load()),
                args=[node.left, node.right],
                keywords=[]
            )
            return ast.copy_location(call, node)
        return node


def _validate_ast(tree: ast.AST, allowed_function_names: set[str]) -> None:
    for node in ast.walk(tree):
        if not isinstance(node, ALLOWED_NODES):
            raise UnsafeScriptError(f"Unsupported script syntax: {type(node).__name__}")
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise UnsafeScriptError(f"Private attribute access: {node.attr}")
        if isinstance(node, ast.Name) and node.id.startswith("_"):
            raise UnsafeScriptError(f"Private name: {node.id}")
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in allowed_function_names:
                raise UnsafeScriptError("Unsupported function call")


def script_functions(extra_names: Optional[list[str]] = None) -> dict[str, Callable]:
    """Allowed script functions, plus any formula built-ins named in config."""
    functions = dict(ALLOWED_FUNCTIONS)
    for name in extra_names or []:
        if name in BUILTIN_FUNCTIONS:
            functions[name] = BUILTIN_FUNCTIONS[name]
        else:
            logger.warning(f"Unknown script function {name} in configuration, ignoring")
    return functions


def compile_script(source: str, functions: dict[str, Callable]):
    """Parse and validate script source, returning a code object."""
    text = source.strip()
    if text.startswith("return "):
        text = text[len("return "):]
    text = text.rstrip(";").strip()

    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as e:
        raise EvaluationError(f"Invalid script: {e.msg}") from e

    _validate_ast(tree, set(functions) | set(BOUND_NAMES))
    tree = ast.fix_missing_locations(_PowerCalls().visit(tree))
    return compile(tree, "<script>", "eval")


def run_script(
    source: str,
    trigger_entity=None,
    linked_entity=None,
    config=None
) -> Any:
    """
    Evaluate a script block.

    Raises:
        EvaluationError: Scripts disabled, invalid source or runtime fault
        UnsafeScriptError: Source uses syntax outside the allowed dialect
    """
    if config is None or not config.scripts.enabled:
        raise EvaluationError("Script blocks are disabled")

    functions = script_functions(config.scripts.allowed_functions)
    code = compile_script(source, functions)
    scope = {
        "entity": entity_view(trigger_entity),
        "linked_entity": entity_view(linked_entity),
    }

    try:
        return eval(code, {"__builtins__": {}, **functions, POWER_FUNCTION: power}, scope)
    except (ArithmeticError, AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
        raise EvaluationError(f"Script failed: {e}") from e


def script_literal(value) -> str:
    """
    Turn a script result into formula text.

    Numbers and booleans stay as they are; None, mappings and everything
    else become quoted text.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if value is None:
        text = "null"
    elif isinstance(value, Mapping):
        text = "object"
    elif isinstance(value, (list, tuple)):
        text = ",".join(str(item) for item in value)
    else:
        text = str(value)
    return "'" + text.replace("'", "\\'") + "'"
