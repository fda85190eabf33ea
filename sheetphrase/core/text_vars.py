"""
Text literal isolation.

Single-quoted literals that contain an escaped quote (\\') cannot be parsed by
the expression grammar, so they are swapped for placeholder names before
evaluation. The placeholder -> text mapping is then added to the scope.
"""

import re
from typing import Optional

# Quotes not preceded by a backslash delimit a literal
TEXT_TOKEN_PATTERN = re.compile(r"(?<!\\)'.*?(?<!\\)'", re.DOTALL)

TEXT_VAR_PREFIX = "_computedText_"


def _next_text_ref(text_vars: dict) -> str:
    index = len(text_vars) + 1
    while f"{TEXT_VAR_PREFIX}{index}" in text_vars:
        index += 1
    return f"{TEXT_VAR_PREFIX}{index}"


def isolate_text_literals(
    formula: str,
    text_vars: Optional[dict] = None
) -> tuple[str, dict]:
    """
    Replace quoted literals holding an inner quote with placeholder names.

    Args:
        formula: Formula text
        text_vars: Existing placeholder mapping to extend (never overwritten)

    Returns:
        (formula with placeholders, placeholder -> unquoted text mapping)
    """
    text_vars = text_vars if text_vars is not None else {}

    def _isolate(match: re.Match) -> str:
        content = match.group(0)[1:-1]
        if "'" not in content:
            return match.group(0)

        ref = _next_text_ref(text_vars)
        text_vars[ref] = content.replace("\\'", "'")
        return ref

    return TEXT_TOKEN_PATTERN.sub(_isolate, str(formula)), text_vars
