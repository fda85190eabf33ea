"""Test fixtures for sheetphrase tests."""

from .sheets import make_sheet_props, make_weapon_row
from .entities import make_character, make_item, make_registry
from .engine import (
    FixedRandom,
    make_attack_template,
    make_context,
    make_roller,
    make_treasure_table,
)

__all__ = [
    "make_sheet_props",
    "make_weapon_row",
    "make_character",
    "make_item",
    "make_registry",
    "FixedRandom",
    "make_attack_template",
    "make_context",
    "make_roller",
    "make_treasure_table",
]
