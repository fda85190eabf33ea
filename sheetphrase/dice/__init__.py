"""Dice rolling and roll tables."""

from .roller import DiceRoller, DiceTerm, RollResult, canonical_formula
from .tables import RollTable, TableDraw, TableEntry, load_roll_tables

__all__ = [
    "DiceRoller",
    "DiceTerm",
    "RollResult",
    "canonical_formula",
    "RollTable",
    "TableDraw",
    "TableEntry",
    "load_roll_tables",
]
