"""
Block extraction.

Carves the top-level formula (${...}$) and script (%{...}%) blocks out of a
phrase. Nested blocks stay inside their outer block; callers re-run the
extraction on a block's inner text to reach them.
"""

from typing import Optional

FORMULA = "formula"
SCRIPT = "script"

FORMULA_BRACKETS = ("${", "}$")
SCRIPT_BRACKETS = ("%{", "}%")


def extract_blocks(expression: str) -> list[str]:
    """
    Return the top-level blocks of a phrase, in order of appearance.

    One nesting counter is kept per delimiter family. A block opens when its
    opening pair is seen while no other block is being extracted and closes
    when its own counter returns to zero. Unbalanced input yields whatever
    blocks were closed before the scan ended.
    """
    n_formula = 0
    n_script = 0

    extracted = []
    current = []
    extracting: Optional[str] = None

    for i, char in enumerate(expression):
        pair = expression[i:i + 2]

        if pair == FORMULA_BRACKETS[0]:
            n_formula += 1
            if not extracting:
                extracting = FORMULA
        elif pair == SCRIPT_BRACKETS[0]:
            n_script += 1
            if not extracting:
                extracting = SCRIPT
        elif pair == FORMULA_BRACKETS[1]:
            n_formula -= 1
            if n_formula == 0 and extracting == FORMULA:
                extracting = None
                extracted.append("".join(current) + pair)
                current = []
        elif pair == SCRIPT_BRACKETS[1]:
            n_script -= 1
            if n_script == 0 and extracting == SCRIPT:
                extracting = None
                extracted.append("".join(current) + pair)
                current = []

        if extracting:
            current.append(char)

    return extracted


def block_kind(block: str) -> Optional[str]:
    """Get the kind of an extracted block, or None for plain text."""
    if block.startswith(FORMULA_BRACKETS[0]) and block.endswith(FORMULA_BRACKETS[1]):
        return FORMULA
    if block.startswith(SCRIPT_BRACKETS[0]) and block.endswith(SCRIPT_BRACKETS[1]):
        return SCRIPT
    return None


def inner_text(block: str) -> str:
    """Strip the two-character delimiters around a block."""
    return block[2:-2]
