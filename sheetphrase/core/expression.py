"""
Expression parser and evaluator.

The math-expression language formulas are written in: arithmetic, comparisons,
boolean logic, the conditional operator, lists, property access and function
calls. Parsing is done with a Lark LALR grammar; evaluation walks the tree with
an evaluator that is created per call, with its own scope, function table and
undefined-symbol callback.
"""

import math
import operator
import re
from functools import lru_cache
from typing import Any, Callable, Iterable, Optional

from lark import Lark, Token, Tree
from lark.exceptions import LarkError
from lark.visitors import Interpreter

from .errors import EvaluationError, UncomputableError


GRAMMAR = r"""
?start: expr

?expr: or_expr
     | or_expr "?" expr ":" expr          -> conditional

?or_expr: xor_expr
        | or_expr "or" xor_expr           -> or_op

?xor_expr: and_expr
         | xor_expr "xor" and_expr        -> xor_op

?and_expr: comparison
         | and_expr "and" comparison      -> and_op

?comparison: sum
           | sum (COMP_OP sum)+           -> compare

?sum: product
    | sum "+" product                     -> add
    | sum "-" product                     -> sub

?product: unary
        | product "*" unary               -> mul
        | product "/" unary               -> div
        | product "%" unary               -> mod
        | product "mod" unary             -> mod

?unary: power
      | "-" unary                         -> neg
      | "+" unary                         -> pos
      | "not" unary                       -> not_op

?power: postfix
      | postfix "^" unary                 -> pow

?postfix: atom
        | postfix "." NAME                -> getattr
        | postfix "[" expr "]"            -> getitem

?atom: NUMBER                             -> number
     | STRING                             -> string
     | NAME                               -> var
     | NAME "(" [arguments] ")"           -> call
     | "[" [arguments] "]"                -> array
     | "(" expr ")"                       -> paren

arguments: expr ("," expr)*

COMP_OP: "==" | "!=" | "<=" | ">=" | "<" | ">"
NUMBER: /(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?/
STRING: /"(?:[^"\\]|\\.)*"/ | /'[^']*'/
NAME: /[A-Za-z_][A-Za-z0-9_]*/

%import common.WS
%ignore WS
"""

NUMBER_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_ESCAPE_PATTERN = re.compile(r"\\(.)")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}

LITERALS = {"true": True, "false": False, "null": None}
CONSTANTS = {"pi": math.pi, "e": math.e}

BINARY_OPERATORS = {
    "add": "+",
    "sub": "-",
    "mul": "*",
    "div": "/",
    "mod": "%",
    "pow": "^",
    "and_op": "and",
    "or_op": "or",
    "xor_op": "xor",
}

COMPARATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@lru_cache(maxsize=1)
def get_parser() -> Lark:
    """Build the shared (stateless) expression parser."""
    return Lark(GRAMMAR, parser="lalr", maybe_placeholders=False)


def parse_expression(text: str) -> Tree:
    """Parse expression text, raising EvaluationError on syntax errors."""
    try:
        return get_parser().parse(text)
    except LarkError as err:
        raise EvaluationError(f"Could not parse '{text}': {err}") from err


# --- Values ---

def normalize_number(value):
    """Turn integral floats into ints so 6/2 displays as 3."""
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e16:
        return int(value)
    return value


def parse_number(text: str):
    """Parse a string that is entirely a number. Returns None otherwise.

    Blank text counts as zero.
    """
    text = text.strip()
    if not text:
        return 0
    if not NUMBER_PATTERN.match(text):
        return None
    if text.lstrip("+-").isdigit():
        return int(text)
    return normalize_number(float(text))


def to_number(value):
    """Convert an operand to a number, the way arithmetic operators do."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        number = parse_number(value)
        if number is not None:
            return number
    raise EvaluationError(f'Cannot convert "{format_value(value)}" to a number')


def is_numeric(value) -> bool:
    if isinstance(value, (bool, int, float)):
        return True
    return isinstance(value, str) and parse_number(value) is not None


def truthy(value) -> bool:
    if isinstance(value, str):
        number = parse_number(value)
        return number != 0 if number is not None else True
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return bool(value)


def format_value(value) -> str:
    """Display form of a computed value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        return str(normalize_number(value))
    if isinstance(value, (list, tuple)):
        return ",".join(format_value(v) for v in value)
    return str(value)


def _unquote(token: Token) -> str:
    text = str(token)
    if text.startswith("'"):
        return text[1:-1]
    return _ESCAPE_PATTERN.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), text[1:-1])


def _quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def format_node(node) -> str:
    """Normalized source text of a parse tree node."""
    if isinstance(node, Token):
        return str(node)

    kind = node.data
    children = node.children

    if kind == "number":
        return str(children[0])
    if kind == "string":
        return _quote(_unquote(children[0]))
    if kind == "var":
        return str(children[0])
    if kind == "call":
        args = children[1].children if len(children) > 1 else []
        return f"{children[0]}({', '.join(format_node(a) for a in args)})"
    if kind == "array":
        args = children[0].children if children else []
        return "[" + ", ".join(format_node(a) for a in args) + "]"
    if kind == "paren":
        return "(" + format_node(children[0]) + ")"
    if kind in BINARY_OPERATORS:
        return f"{format_node(children[0])} {BINARY_OPERATORS[kind]} {format_node(children[1])}"
    if kind == "compare":
        return " ".join(format_node(c) for c in children)
    if kind == "neg":
        return "-" + format_node(children[0])
    if kind == "pos":
        return "+" + format_node(children[0])
    if kind == "not_op":
        return "not " + format_node(children[0])
    if kind == "conditional":
        return " ? ".join([format_node(children[0]), format_node(children[1])]) + " : " + format_node(children[2])
    if kind == "getattr":
        return f"{format_node(children[0])}.{children[1]}"
    if kind == "getitem":
        return f"{format_node(children[0])}[{format_node(children[1])}]"
    if kind == "arguments":
        return ", ".join(format_node(c) for c in children)
    return str(node)


# --- Built-in functions ---

def _flatten(args: Iterable) -> list:
    flat = []
    for arg in args:
        if isinstance(arg, (list, tuple)):
            flat.extend(_flatten(arg))
        else:
            flat.append(arg)
    return flat


def _numbers(args) -> list:
    values = [to_number(v) for v in _flatten(args)]
    if not values:
        raise EvaluationError("Function requires at least one value")
    return values


def _round(value, digits=0):
    number = to_number(value)
    digits = int(to_number(digits))
    if not 0 <= digits <= 15:
        raise EvaluationError("round() digits must be between 0 and 15")
    factor = 10 ** digits
    rounded = math.floor(abs(number) * factor + 0.5) / factor
    return normalize_number(math.copysign(rounded, number))


def _log(value, base=None):
    if base is None:
        return normalize_number(math.log(to_number(value)))
    return normalize_number(math.log(to_number(value), to_number(base)))


def _sign(value):
    number = to_number(value)
    return (number > 0) - (number < 0)


def _concat(*args):
    if args and all(isinstance(a, list) for a in args):
        return [item for a in args for item in a]
    return "".join(format_value(a) for a in args)


def _count(value):
    if isinstance(value, (list, str, dict)):
        return len(value)
    raise EvaluationError(f"Cannot count {format_value(value)}")


def power(base, exponent):
    """Raise base to exponent in floating point.

    Results too large for a float raise EvaluationError.
    """
    try:
        result = float(to_number(base)) ** float(to_number(exponent))
    except ArithmeticError as err:
        raise EvaluationError(str(err)) from err
    if isinstance(result, complex):
        raise EvaluationError("Result is not a real number")
    return normalize_number(result)


BUILTIN_FUNCTIONS: dict[str, Callable] = {
    "abs": lambda x: abs(to_number(x)),
    "ceil": lambda x: math.ceil(to_number(x)),
    "floor": lambda x: math.floor(to_number(x)),
    "fix": lambda x: math.trunc(to_number(x)),
    "round": _round,
    "min": lambda *args: min(_numbers(args)),
    "max": lambda *args: max(_numbers(args)),
    "sum": lambda *args: normalize_number(sum(_numbers(args))),
    "mean": lambda *args: normalize_number(sum(_numbers(args)) / len(_numbers(args))),
    "sqrt": lambda x: normalize_number(math.sqrt(to_number(x))),
    "pow": power,
    "exp": lambda x: math.exp(to_number(x)),
    "log": _log,
    "log10": lambda x: normalize_number(math.log10(to_number(x))),
    "sign": _sign,
    "mod": lambda x, y: normalize_number(to_number(x) % to_number(y)),
    "concat": _concat,
    "string": format_value,
    "number": to_number,
    "count": _count,
    "equalText": lambda a, b: format_value(a) == format_value(b),
    "isNumeric": lambda x: isinstance(x, (int, float)),
}

BUILTIN_NAMES = frozenset(BUILTIN_FUNCTIONS) | frozenset(CONSTANTS) | frozenset(LITERALS)


# --- Evaluation ---

def loose_equal(left, right) -> bool:
    if is_numeric(left) and is_numeric(right):
        return to_number(left) == to_number(right)
    return left == right


def compare_values(op: str, left, right) -> bool:
    if op == "==":
        return loose_equal(left, right)
    if op == "!=":
        return not loose_equal(left, right)

    if is_numeric(left) and is_numeric(right):
        return COMPARATORS[op](to_number(left), to_number(right))
    if isinstance(left, str) and isinstance(right, str):
        return COMPARATORS[op](left, right)
    raise EvaluationError(
        f'Cannot compare "{format_value(left)}" and "{format_value(right)}"'
    )


def _arithmetic(func: Callable, left, right):
    try:
        result = func(to_number(left), to_number(right))
    except ArithmeticError as err:
        raise EvaluationError(str(err)) from err
    if isinstance(result, complex):
        raise EvaluationError("Result is not a real number")
    return normalize_number(result)


class ExpressionEvaluator(Interpreter):
    """
    Evaluates one parsed expression.

    Symbols resolve against the scope, then text literal placeholders, then
    constants; anything else goes to the on_undefined callback. Results of
    calls to functions named in cached_functions are stored in
    computed_tokens, keyed by the call's normalized text.
    """

    def __init__(
        self,
        scope: Optional[dict] = None,
        functions: Optional[dict] = None,
        on_undefined: Optional[Callable[[str], Any]] = None,
        text_vars: Optional[dict] = None,
        cached_functions: Iterable[str] = ()
    ):
        self.scope = scope or {}
        self.text_vars = text_vars or {}
        self.functions = {**BUILTIN_FUNCTIONS, **(functions or {})}
        self.on_undefined = on_undefined
        self.cached_functions = set(cached_functions)
        self.computed_tokens: dict[str, Any] = {}

    def evaluate(self, tree: Tree):
        """Evaluate a tree, turning stray Python faults into EvaluationError."""
        try:
            return self.visit(tree)
        except (UncomputableError, EvaluationError):
            raise
        except (ArithmeticError, TypeError, ValueError, KeyError, IndexError, RecursionError) as err:
            raise EvaluationError(str(err)) from err

    def value_of(self, node: Tree):
        """Value of a sub-node, reusing cached call results when available."""
        if node.data == "call":
            handle = format_node(node)
            if handle in self.computed_tokens:
                return self.computed_tokens[handle]
        return self.evaluate(node)

    def _arguments(self, node) -> list:
        return [self.visit(child) for child in node.children]

    # Literals

    def number(self, tree):
        text = str(tree.children[0])
        if text.isdigit():
            return int(text)
        return normalize_number(float(text))

    def string(self, tree):
        return _unquote(tree.children[0])

    def array(self, tree):
        if not tree.children:
            return []
        return self._arguments(tree.children[0])

    def paren(self, tree):
        return self.visit(tree.children[0])

    def var(self, tree):
        name = str(tree.children[0])
        if name in LITERALS:
            return LITERALS[name]
        if name in self.scope:
            return self.scope[name]
        if name in self.text_vars:
            return self.text_vars[name]
        if name in CONSTANTS:
            return CONSTANTS[name]
        if self.on_undefined is not None:
            return self.on_undefined(name)
        raise EvaluationError(f"Undefined symbol {name}")

    def call(self, tree):
        name = str(tree.children[0])
        args = self._arguments(tree.children[1]) if len(tree.children) > 1 else []

        function = self.functions.get(name)
        if function is None:
            raise EvaluationError(f"Undefined function {name}")

        try:
            result = function(*args)
        except (UncomputableError, EvaluationError):
            raise
        except Exception as err:
            raise EvaluationError(f"Error in {name}(): {err}") from err

        if name in self.cached_functions:
            self.computed_tokens[format_node(tree)] = result
        return result

    # Access

    def getattr(self, tree):
        target = self.visit(tree.children[0])
        name = str(tree.children[1])
        if isinstance(target, dict) and name in target:
            return target[name]
        raise EvaluationError(f'No property "{name}" in {format_node(tree.children[0])}')

    def getitem(self, tree):
        target = self.visit(tree.children[0])
        index = self.visit(tree.children[1])

        if isinstance(target, dict):
            if index in target:
                return target[index]
            if str(index) in target:
                return target[str(index)]
            raise EvaluationError(f'No property "{format_value(index)}"')

        if isinstance(target, (list, str)):
            # One-based, like the rest of the formula language
            position = int(to_number(index))
            if position < 1 or position > len(target):
                raise EvaluationError(f"Index {position} out of range")
            return target[position - 1]

        raise EvaluationError(f"Cannot index {format_value(target)}")

    # Operators

    def add(self, tree):
        return _arithmetic(operator.add, *self._arguments(tree))

    def sub(self, tree):
        return _arithmetic(operator.sub, *self._arguments(tree))

    def mul(self, tree):
        return _arithmetic(operator.mul, *self._arguments(tree))

    def div(self, tree):
        return _arithmetic(operator.truediv, *self._arguments(tree))

    def mod(self, tree):
        return _arithmetic(operator.mod, *self._arguments(tree))

    def pow(self, tree):
        return power(*self._arguments(tree))

    def neg(self, tree):
        return normalize_number(-to_number(self.visit(tree.children[0])))

    def pos(self, tree):
        return to_number(self.visit(tree.children[0]))

    def not_op(self, tree):
        return not truthy(self.visit(tree.children[0]))

    def and_op(self, tree):
        if not truthy(self.visit(tree.children[0])):
            return False
        return truthy(self.visit(tree.children[1]))

    def or_op(self, tree):
        if truthy(self.visit(tree.children[0])):
            return True
        return truthy(self.visit(tree.children[1]))

    def xor_op(self, tree):
        left, right = self._arguments(tree)
        return truthy(left) != truthy(right)

    def compare(self, tree):
        children = tree.children
        left = self.visit(children[0])
        for i in range(1, len(children), 2):
            right = self.visit(children[i + 1])
            if not compare_values(str(children[i]), left, right):
                return False
            left = right
        return True

    def conditional(self, tree):
        condition, when_true, when_false = tree.children
        if truthy(self.visit(condition)):
            return self.visit(when_true)
        return self.visit(when_false)


def evaluate_expression(text: str, scope: Optional[dict] = None):
    """Parse and evaluate a self-contained expression."""
    return ExpressionEvaluator(scope).evaluate(parse_expression(text))
