"""
Default roll primitive.

Rolls dice expressions such as ``2d6 + 3``, ``4d6kh3`` or ``1d%`` and draws
from roll tables. Dice terms are rolled first; the arithmetic left around
them is evaluated with the formula expression evaluator.
"""

import logging
import random
import re
from dataclasses import dataclass, field
from typing import Optional

from ..core.errors import EvaluationError
from ..core.expression import evaluate_expression, format_value
from .tables import RollTable, TableDraw, find_table

logger = logging.getLogger(__name__)

DICE_PATTERN = re.compile(
    r"(?<![\w.])(?P<count>\d*)d(?P<sides>\d+|%)(?:(?P<keep>kh|kl|k)(?P<keep_count>\d+))?(?!\w)"
)
FLAVOR_PATTERN = re.compile(r"\[[^\[\]]*\]")
BINARY_OPERATOR_PATTERN = re.compile(r"(?<=[\w)\]%])\s*([+\-*/])\s*")


@dataclass
class DiceTerm:
    """One rolled NdM term."""
    expression: str
    count: int
    sides: int
    raw_values: list[int] = field(default_factory=list)
    kept: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.kept)

    def to_dict(self) -> dict:
        return {
            "expression": self.expression,
            "count": self.count,
            "sides": self.sides,
            "raw_values": self.raw_values,
            "kept": self.kept,
            "total": self.total
        }


@dataclass
class RollResult:
    """Result of a dice roll."""
    formula: str
    total: int | float
    terms: list[DiceTerm] = field(default_factory=list)

    @property
    def raw_values(self) -> list[int]:
        return [value for term in self.terms for value in term.raw_values]

    def to_dict(self) -> dict:
        return {
            "formula": self.formula,
            "total": self.total,
            "terms": [term.to_dict() for term in self.terms]
        }


def canonical_formula(expression: str) -> str:
    """Normalize spacing: ``1d20+5`` -> ``1d20 + 5``."""
    text = " ".join(expression.split())
    return BINARY_OPERATOR_PATTERN.sub(r" \1 ", text).strip()


class DiceRoller:
    """
    Rolls dice expressions and draws from roll tables.

    Pass a seeded ``random.Random`` (or any object with ``randint``) for
    reproducible rolls.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        max_dice: int = 1000,
        tables: Optional[dict[str, RollTable]] = None
    ):
        self.rng = rng or random.Random()
        self.max_dice = max_dice
        self.tables = tables or {}

    @classmethod
    def from_config(cls, dice_config, tables: Optional[dict[str, RollTable]] = None) -> "DiceRoller":
        return cls(
            rng=random.Random(dice_config.seed),
            max_dice=dice_config.max_dice,
            tables=tables
        )

    def _roll_term(self, match: re.Match) -> DiceTerm:
        count = int(match.group("count") or 1)
        sides_text = match.group("sides")
        sides = 100 if sides_text == "%" else int(sides_text)
        if sides < 1:
            raise EvaluationError(f"Invalid die size in {match.group(0)}")

        raw_values = [self.rng.randint(1, sides) for _ in range(count)]

        keep = match.group("keep")
        if keep:
            keep_count = int(match.group("keep_count"))
            ordered = sorted(raw_values, reverse=(keep != "kl"))
            kept = ordered[:keep_count]
        else:
            kept = list(raw_values)

        return DiceTerm(
            expression=match.group(0),
            count=count,
            sides=sides,
            raw_values=raw_values,
            kept=kept
        )

    def roll(self, expression) -> RollResult:
        """
        Roll a dice expression.

        Raises:
            EvaluationError: Malformed expression or too many dice
        """
        text = format_value(expression).strip()
        if not text:
            raise EvaluationError("Empty roll expression")

        arithmetic = FLAVOR_PATTERN.sub("", text)

        n_dice = sum(int(m.group("count") or 1) for m in DICE_PATTERN.finditer(arithmetic))
        if n_dice > self.max_dice:
            raise EvaluationError(f"Too many dice in {text} ({n_dice} > {self.max_dice})")

        terms = []

        def _replace(match: re.Match) -> str:
            term = self._roll_term(match)
            terms.append(term)
            return f"({term.total})"

        arithmetic = DICE_PATTERN.sub(_replace, arithmetic)
        total = evaluate_expression(arithmetic)
        if isinstance(total, bool) or not isinstance(total, (int, float)):
            raise EvaluationError(f"Roll {text} did not produce a number")

        result = RollResult(formula=canonical_formula(text), total=total, terms=terms)
        logger.debug(f"Rolled {result.formula}: {[t.raw_values for t in terms]} = {total}")
        return result

    def draw(self, table_name: str, roll: Optional[RollResult] = None) -> TableDraw:
        """Draw from a roll table, with a given roll or the table's own formula."""
        table = find_table(self.tables, format_value(table_name))
        if table is None:
            raise EvaluationError(f"Roll table {table_name} not found")

        roll = roll or self.roll(table.formula)
        draw = TableDraw(table=table.name, roll=roll, results=table.results_for(roll.total))
        logger.debug(f"Drew {draw.texts} from {table.name} with {roll.total}")
        return draw
