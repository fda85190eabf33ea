"""
ComputablePhrase - free text with embedded formula and script blocks.

Blocks are extracted outermost first and replaced in the build phrase by
placeholder ids (form0, form1, ...). Nested blocks are computed before the
block that contains them, and their results are substituted into its text.
Local variables flow from each block to every later block of the phrase.
"""

import logging
import re
from dataclasses import replace
from typing import Optional

from .blocks import FORMULA, block_kind, extract_blocks, inner_text
from .context import ComputeOptions, EngineContext
from .errors import EvaluationError
from .expression import format_value
from .formula import Formula
from .script import run_script, script_literal

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\bform\d+\b")


class ComputablePhrase:
    """A phrase and the formulas computed from it."""

    def __init__(self, raw_phrase: str):
        self.raw_phrase = raw_phrase
        self.build_phrase: Optional[str] = None
        self.computed_formulas: dict[str, Formula] = {}

    def __str__(self) -> str:
        return self.result

    def __repr__(self) -> str:
        return f"ComputablePhrase({self.raw_phrase!r})"

    @property
    def values(self) -> dict[str, Formula]:
        return self.computed_formulas

    def _substitute(self, render) -> str:
        formulas = self.computed_formulas

        def _replace(match: re.Match) -> str:
            formula = formulas.get(match.group(0))
            if formula is None:
                return match.group(0)
            return render(formula)

        return PLACEHOLDER_PATTERN.sub(_replace, self.build_phrase or "")

    @property
    def formula(self) -> str:
        """The phrase with each block shown as its raw formula."""
        return self._substitute(lambda f: f.raw)

    @property
    def parsed(self) -> str:
        """The phrase with each block shown as the text that was evaluated."""
        return self._substitute(lambda f: f.parsed or "")

    @property
    def result(self) -> str:
        """The phrase with each block replaced by its result."""
        return self._substitute(lambda f: format_value(f.result))

    def to_dict(self) -> dict:
        return {
            "raw": self.raw_phrase,
            "buildPhrase": self.build_phrase,
            "formula": self.formula,
            "parsed": self.parsed,
            "result": self.result,
            "values": {key: formula.to_dict() for key, formula in self.computed_formulas.items()}
        }

    def compute(
        self,
        props: dict,
        options: Optional[ComputeOptions] = None,
        context: Optional[EngineContext] = None
    ) -> "ComputablePhrase":
        """Compute every block, asking for prompts and rolling dice as needed.

        Raises:
            UncomputableError: If a block references something unresolvable
        """
        return self._process(props, options, context, static=False)

    def compute_static(
        self,
        props: dict,
        options: Optional[ComputeOptions] = None,
        context: Optional[EngineContext] = None
    ) -> "ComputablePhrase":
        """Compute every block without prompts or rolls."""
        return self._process(props, options, context, static=True)

    @classmethod
    def compute_message(cls, phrase: str, props: dict, options=None, context=None) -> "ComputablePhrase":
        return cls(phrase).compute(props, options, context)

    @classmethod
    def compute_message_static(cls, phrase: str, props: dict, options=None, context=None) -> "ComputablePhrase":
        return cls(phrase).compute_static(props, options, context)

    def _process(
        self,
        props: dict,
        options: Optional[ComputeOptions],
        context: Optional[EngineContext],
        static: bool
    ) -> "ComputablePhrase":
        options = options or ComputeOptions()
        context = context or EngineContext()

        logger.debug(f"Computing {self.raw_phrase}")

        computed_formulas: dict[str, Formula] = {}
        local_vars = dict(options.local_vars)
        n_computed = 0

        def _compute(formula: Formula) -> Formula:
            block_options = replace(options, local_vars=local_vars)
            if static:
                return formula.compute_static(props, block_options, context)
            return formula.compute(props, block_options, context)

        def _process_blocks(build_phrase: str, expression: str) -> tuple[str, str]:
            nonlocal local_vars, n_computed

            for block in extract_blocks(expression):
                # Outer block takes its id before any nested block
                computed_id = f"form{n_computed}"
                n_computed += 1

                _, processed = _process_blocks(inner_text(block), inner_text(block))

                if block_kind(block) == FORMULA:
                    formula = _compute(Formula(processed))
                    local_vars = {**local_vars, **formula.local_vars}
                    replacement = format_value(formula.result)
                else:
                    replacement = self._run_script(processed, options, context)
                    formula = _compute(Formula(replacement))

                computed_formulas[computed_id] = formula
                build_phrase = build_phrase.replace(block, computed_id, 1)
                expression = expression.replace(block, replacement, 1)

            return build_phrase, expression

        build_phrase, _ = _process_blocks(self.raw_phrase, self.raw_phrase)

        self.build_phrase = build_phrase
        self.computed_formulas = computed_formulas
        return self

    def _run_script(self, source: str, options: ComputeOptions, context: EngineContext) -> str:
        """Run a script block and return its result as formula text."""
        try:
            value = run_script(source, options.trigger_entity, options.linked_entity, context.config)
        except EvaluationError as e:
            if options.default_value is not None:
                logger.error(f"Script %{{{source}}}% failed, using default value: {e}")
                value = options.default_value
            else:
                logger.error(f"Script %{{{source}}}% failed: {e}")
                value = context.config.error_sentinel
        return script_literal(value)
