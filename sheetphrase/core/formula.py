"""
Formula - one evaluable unit of a phrase.

A Formula is built from the raw text of one ``${...}$`` block. ``compute``
resolves prompts and rolls through the engine context before evaluating;
``compute_static`` evaluates directly and never asks for input.

Unresolvable references raise UncomputableError. Any other fault turns the
result into the configured error sentinel ("ERROR") and is logged.
"""

import logging
import re
from dataclasses import replace
from typing import Any, Optional

from .context import ComputeOptions, EngineContext
from .errors import EvaluationError, UncomputableError
from .explanation import build_explanation
from .expression import ExpressionEvaluator, parse_expression
from .functions import EXPLAINABLE_FUNCTIONS, FormulaFunctions, undefined_symbol_handler
from .preprocess import (
    evaluate_roll,
    request_user_inputs,
    resolve_input_templates,
    resolve_rolls,
    strip_sigils,
)
from .text_vars import isolate_text_literals

logger = logging.getLogger(__name__)

LOCAL_VAR_PATTERN = re.compile(r"^([a-zA-Z0-9_-]+):=(.*)$", re.DOTALL)


class Formula:
    """
    One computed formula.

    Attributes:
        raw: Source text, never modified
        parsed: Text actually evaluated, after every substitution
        result: Computed value, None until computed
        local_vars: Variables visible after this formula (assignments and
            prompt answers included)
        has_dice: Whether a dice roll was made
        tokens: Explanation trees (empty unless requested)
        rolls: ``{"formula", "roll"}`` records of the dice rolled
        hidden: Set by a leading ``#`` or by a prompt template
        explanation: Cleared by a leading ``!``
        fault_log_level: Level used to log faults turned into the sentinel
    """

    def __init__(self, raw: str):
        self.raw = raw
        self.fault_log_level = logging.ERROR
        self.parsed: Optional[str] = None
        self.result: Any = None
        self.local_vars: dict = {}
        self.has_dice = False
        self.tokens: list[dict] = []
        self.rolls: list[dict] = []
        self.hidden = False
        self.explanation = True
        self._sigils_read = False

    def __repr__(self) -> str:
        return f"Formula({self.raw!r}, result={self.result!r})"

    def to_dict(self) -> dict:
        return {
            "raw": self.raw,
            "result": self.result,
            "parsed": self.parsed,
            "hasDice": self.has_dice,
            "tokens": self.tokens,
            "rolls": self.rolls,
            "hidden": self.hidden,
            "explanation": self.explanation
        }

    def _read_sigils(self, formula: str) -> str:
        formula, hidden, suppress_explanation = strip_sigils(formula)
        # Flags come from the first computation only
        if not self._sigils_read:
            self.hidden = hidden
            self.explanation = not suppress_explanation
            self._sigils_read = True
        return formula

    def compute(
        self,
        props: dict,
        options: Optional[ComputeOptions] = None,
        context: Optional[EngineContext] = None
    ) -> "Formula":
        """
        Compute this formula, resolving prompts and dice rolls first.

        Args:
            props: Property bag the formula reads from
            options: Computation options
            context: Engine collaborators

        Returns:
            This formula

        Raises:
            UncomputableError: If a reference cannot be resolved
        """
        options = options or ComputeOptions()
        context = context or EngineContext()

        logger.debug(f"Computing rolls & user inputs in ${{{self.raw}}}$")

        formula, text_vars = isolate_text_literals(self.raw)
        formula = self._read_sigils(formula)
        local_vars = dict(options.local_vars)

        def _compute_label(text: str):
            try:
                # Labels are often plain text that fails to parse
                label_formula = Formula(text)
                label_formula.fault_log_level = logging.DEBUG
                label = label_formula.compute(props, options, context).result
            except UncomputableError:
                return text
            if label is None or label == context.config.error_sentinel:
                return text
            return label

        def _compute_roll_phrase(text: str):
            # Imported here, phrases are built from formulas
            from .phrase import ComputablePhrase

            return ComputablePhrase(text).compute(
                props, replace(options, local_vars=local_vars), context
            )

        rolls = []
        try:
            formula, template_values, used_template = resolve_input_templates(
                formula, context, options.trigger_entity, options.reference
            )
            if used_template:
                self.hidden = True
            local_vars.update(template_values)

            formula, answers = request_user_inputs(formula, _compute_label, context.dialog)
            local_vars.update(answers)

            formula, rolls = resolve_rolls(
                formula,
                lambda text: evaluate_roll(text, _compute_roll_phrase, context.roller)
            )
        except EvaluationError as e:
            logger.log(self.fault_log_level, f"Error preparing ${{{self.raw}}}$: {e}")
            return self._store(
                context.config.error_sentinel, formula.strip(), local_vars, [], rolls
            )

        trigger_props = options.trigger_entity.props if options.trigger_entity else {}
        return self._evaluate(
            formula,
            {**props, **trigger_props},
            replace(options, local_vars=local_vars),
            context,
            text_vars,
            rolls
        )

    def compute_static(
        self,
        props: dict,
        options: Optional[ComputeOptions] = None,
        context: Optional[EngineContext] = None
    ) -> "Formula":
        """Compute this formula without prompts or rolls.

        Prompt and roll syntax is left in place, so the parser rejects it
        and the result is the error sentinel.
        """
        options = options or ComputeOptions()
        context = context or EngineContext()

        formula, text_vars = isolate_text_literals(self.raw)
        formula = self._read_sigils(formula)
        return self._evaluate(formula, props, options, context, text_vars, [])

    def _evaluate(
        self,
        formula: str,
        props: dict,
        options: ComputeOptions,
        context: EngineContext,
        text_vars: dict,
        rolls: list[dict]
    ) -> "Formula":
        logger.debug(f"Computing ${{{formula}}}$")

        local_vars = dict(options.local_vars)
        all_values = {**props, **local_vars}

        local_var_name = None
        assignment = LOCAL_VAR_PATTERN.match(formula)
        if assignment:
            local_var_name, formula = assignment.group(1), assignment.group(2)

        # Literals isolated before preprocessing keep their placeholders
        formula, text_vars = isolate_text_literals(formula, text_vars)
        stripped = formula.strip()

        functions = FormulaFunctions(all_values, props, options, stripped, context)
        evaluator = ExpressionEvaluator(
            scope=all_values,
            functions=functions.as_dict(),
            on_undefined=undefined_symbol_handler(options.default_value, stripped, props),
            text_vars=text_vars,
            cached_functions=EXPLAINABLE_FUNCTIONS
        )

        explain = (options.compute_explanation or context.config.compute_explanation) and self.explanation
        explanation = []

        try:
            if stripped:
                tree = parse_expression(stripped)
                result = evaluator.evaluate(tree)

                if explain:
                    logger.debug(f"Parse tree of {stripped}:\n{tree.pretty()}")
                    explanation = [build_explanation(tree, evaluator, stripped, result).to_dict()]
            else:
                result = None
        except EvaluationError as e:
            result = context.config.error_sentinel
            logger.log(self.fault_log_level, f"Error computing ${{{stripped}}}$: {e}")

        if local_var_name:
            local_vars[local_var_name] = result

        return self._store(result, stripped, local_vars, explanation, rolls)

    def _store(self, result, parsed: str, local_vars: dict, tokens: list, rolls: list) -> "Formula":
        self.result = result
        self.parsed = parsed
        self.local_vars = local_vars
        self.tokens = tokens
        self.rolls = rolls
        self.has_dice = len(rolls) > 0
        return self
