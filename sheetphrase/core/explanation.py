"""
Explanation trees.

Walks a parsed expression and records every variable and lookup call that
contributed to the result, for audit and tooltip display.
"""

from dataclasses import dataclass, field
from typing import Any

from lark import Tree

from .expression import BUILTIN_NAMES, ExpressionEvaluator, format_node
from .functions import EXPLAINABLE_FUNCTIONS

ARGUMENT_LABELS = {
    "fetchFromDynamicTable": ["", "Target", "Where", "Is"],
    "ref": ["", "Default"],
}


@dataclass
class ExplanationNode:
    """One evaluated symbol or lookup in an explanation tree."""
    display: str
    handle: str
    value: Any = None
    children: list["ExplanationNode"] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "display": self.display,
            "handle": self.handle,
            "value": self.value,
            "children": [child.to_dict() for child in self.children]
        }


def _call_display(node: Tree) -> str:
    name = str(node.children[0])
    args = node.children[1].children if len(node.children) > 1 else []
    labels = ARGUMENT_LABELS.get(name, [])

    parts = []
    for index, arg in enumerate(args):
        label = labels[index] if index < len(labels) else ""
        parts.append(f"{label}: {format_node(arg)}" if label else format_node(arg))
    return f"{name}({', '.join(parts)})"


def _record_for(node: Tree, evaluator: ExpressionEvaluator):
    if node.data == "var":
        name = str(node.children[0])
        if name in BUILTIN_NAMES or name.startswith("_"):
            return None
        return ExplanationNode(display=name, handle=name, value=evaluator.value_of(node))

    if node.data == "call" and str(node.children[0]) in EXPLAINABLE_FUNCTIONS:
        return ExplanationNode(
            display=_call_display(node),
            handle=format_node(node),
            value=evaluator.value_of(node)
        )

    return None


def _walk(node: Tree, current: ExplanationNode, evaluator: ExpressionEvaluator) -> None:
    record = _record_for(node, evaluator)
    parent = record if record is not None else current

    for child in node.children:
        if isinstance(child, Tree):
            _walk(child, parent, evaluator)

    if record is None or record.display == current.display:
        return
    if not any(existing.display == record.display for existing in current.children):
        current.children.append(record)


def build_explanation(
    tree: Tree,
    evaluator: ExpressionEvaluator,
    display: str,
    value: Any = None
) -> ExplanationNode:
    """
    Build the explanation tree of an evaluated expression.

    Nodes that are neither variables nor explainable calls are transparent:
    their own explainable descendants attach to the nearest explainable
    ancestor. Siblings with the same display text are kept once.

    Args:
        tree: Parsed expression
        evaluator: The evaluator that computed it (its scope and cached calls
            are reused to get each node's value)
        display: Text of the root record, usually the formula itself
        value: Value of the root record
    """
    root = ExplanationNode(display=display, handle=display, value=value)
    _walk(tree, root, evaluator)
    return root
