"""
Formula preprocessing.

Runs before a formula reaches the expression parser: strips the leading
sigils, resolves prompt templates (``?#{Name}``), inline prompts
(``?{name:Label[type]|key,label|...}``) and dice rolls (``[...]``).
Prompts and rolls go through the collaborators of the engine context; the
callbacks that compute nested formulas are supplied by the caller.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..dice.tables import TableDraw
from .errors import EvaluationError
from .expression import format_value, parse_number

logger = logging.getLogger(__name__)

HIDDEN_SIGIL = "#"
NO_EXPLANATION_SIGIL = "!"

TEMPLATE_PATTERN = re.compile(r"\?#\{.*?\}")
PROMPT_PATTERN = re.compile(r"\?\{.*?\}")
ROLL_PATTERN = re.compile(r"\[(:?\[[^\[\]]+\]|.)+?\]")
ROLL_PARAM_PATTERN = re.compile(r":(.*?):")

PROMPT_DISPLAY_PATTERN = re.compile(r"^(?P<name>.+?)(:(?P<display_name>.+?))?(\[(?P<type>.+?)\])?$")
PROMPT_CHOICE_PATTERN = re.compile(r'^(?P<key>".+?"|.+?)(,(?P<value>".+?"|.+?))?$')


@dataclass
class UserInputChoice:
    """One selectable value of an inline prompt."""
    name: Any
    display_value: Any

    def to_dict(self) -> dict:
        return {"name": self.name, "displayValue": self.display_value}


@dataclass
class UserInputSpec:
    """A single field of a prompt dialog."""
    name: str
    display_name: Any
    input_type: str = "text"
    default_value: Any = None
    values: list[UserInputChoice] = field(default_factory=list)

    @property
    def has_choices(self) -> bool:
        return len(self.values) > 1

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "displayName": self.display_name,
            "type": self.input_type,
            "choices": self.has_choices,
        }
        if self.has_choices:
            data["values"] = [v.to_dict() for v in self.values]
        else:
            data["defaultValue"] = self.default_value
        return data


def strip_sigils(formula: str) -> tuple[str, bool, bool]:
    """
    Remove the leading hidden (#) and no-explanation (!) sigils.

    Either order is accepted, each at most once.

    Returns:
        (formula, hidden, suppress_explanation)
    """
    hidden = False
    suppress_explanation = False

    while True:
        if formula.startswith(HIDDEN_SIGIL) and not hidden:
            hidden = True
            formula = formula[1:]
        elif formula.startswith(NO_EXPLANATION_SIGIL) and not suppress_explanation:
            suppress_explanation = True
            formula = formula[1:]
        else:
            return formula, hidden, suppress_explanation


def resolve_input_templates(
    formula: str,
    context,
    trigger_entity=None,
    reference: Optional[str] = None
) -> tuple[str, dict, bool]:
    """
    Render every ``?#{Name}`` template and collect its field values.

    Each reference is replaced by the quoted template name, found or not.
    A missing template is sent to the notifier as a warning. Before a found
    template is shown, the trigger entity's conditional modifier values are
    collected; the dialog's values take precedence over them.

    Returns:
        (formula, collected values, whether any template reference was seen)
    """
    values = {}
    tokens = TEMPLATE_PATTERN.findall(formula)

    for token in tokens:
        name = token[3:-1]
        template = context.templates.get(name)

        if template is None:
            context.notifier.notify("warn", f"User Input Template {name} was not found.")
        else:
            if trigger_entity is not None:
                values.update(trigger_entity.conditional_modifier_values())
            values.update(context.dialog.prompt_template(template, trigger_entity, reference) or {})

        formula = formula.replace(token, f'"{name}"', 1)

    return formula, values, bool(tokens)


def parse_prompt(token: str, compute_label: Callable[[str], Any]) -> UserInputSpec:
    """Build the input spec for one ``?{...}`` occurrence."""
    data = token[2:-1]
    parts = data.split("|")

    settings = PROMPT_DISPLAY_PATTERN.match(parts[0])
    if settings is None:
        raise EvaluationError(f"Invalid prompt {token}")

    name = settings.group("name")
    display_name = settings.group("display_name")

    values = []
    for choice in parts[1:]:
        parsed_choice = PROMPT_CHOICE_PATTERN.match(choice)
        if parsed_choice is None:
            raise EvaluationError(f"Invalid prompt choice '{choice}' in {token}")

        key = parsed_choice.group("key")
        # Number keys are submitted as written, so +5 stays "+5"
        choice_name = key if parse_number(key) is not None else compute_label(key)
        choice_label = parsed_choice.group("value")
        values.append(UserInputChoice(
            name=choice_name,
            display_value=compute_label(choice_label) if choice_label else choice_name
        ))

    spec = UserInputSpec(
        name=name,
        display_name=compute_label(display_name) if display_name else name,
        input_type=settings.group("type") or "text",
    )
    if len(values) > 1:
        spec.values = values
    elif values:
        spec.default_value = values[0].name
    return spec


def request_user_inputs(
    formula: str,
    compute_label: Callable[[str], Any],
    dialog
) -> tuple[str, dict]:
    """
    Replace every inline prompt with its variable name and ask for values.

    All prompts of the formula are sent to the dialog in one request. A
    dismissed dialog returns no values.

    Returns:
        (formula, answers by variable name)
    """
    specs = []
    for token in PROMPT_PATTERN.findall(formula):
        spec = parse_prompt(token, compute_label)
        specs.append(spec)
        formula = formula.replace(token, spec.name, 1)

    if not specs:
        return formula, {}

    answers = dialog.prompt(specs) or {}
    logger.debug(f"Prompt answers: {answers}")
    return formula, answers


def _compute_roll_text(text: str, compute_phrase: Callable[[str], Any]) -> str:
    # [1d100 + :STR:] is computed as the phrase 1d100 + ${STR}$
    text = ROLL_PARAM_PATTERN.sub(lambda m: "${" + m.group(1) + "}$", text)
    return compute_phrase(text).result


def evaluate_roll(roll_text: str, compute_phrase: Callable[[str], Any], roller):
    """
    Roll the inside of one roll block.

    ``#Table|selector`` draws from a roll table, using the selector roll when
    given. Anything else is rolled as a dice expression.

    Returns:
        RollResult or TableDraw
    """
    if roll_text.startswith("#"):
        table_spec = roll_text[1:].split("|")
        table_name = _compute_roll_text(table_spec[0], compute_phrase)

        selector_roll = None
        if len(table_spec) > 1 and table_spec[1]:
            selector_roll = roller.roll(_compute_roll_text(table_spec[1], compute_phrase))

        return roller.draw(table_name, selector_roll)

    return roller.roll(_compute_roll_text(roll_text, compute_phrase))


def resolve_rolls(
    formula: str,
    roll: Callable[[str], Any]
) -> tuple[str, list[dict]]:
    """
    Replace every roll block with its outcome.

    Dice totals replace the bracket; table draws are replaced with the drawn
    texts as a quoted literal. Dice rolls are recorded as
    ``{"formula", "roll"}``, the formula annotated ``[x] → [canonical]`` when
    the roller normalized it.

    Returns:
        (formula, rolls)
    """
    rolls = []

    for match in ROLL_PATTERN.finditer(formula):
        roll_text = match.group(0)
        logger.debug(f"Rolling {roll_text}")

        outcome = roll(roll_text[1:-1])

        if isinstance(outcome, TableDraw):
            text = ", ".join(outcome.texts).replace("'", "\\'")
            formula = formula.replace(roll_text, f"'{text}'", 1)
            continue

        formula = formula.replace(roll_text, format_value(outcome.total), 1)

        recorded = roll_text
        if roll_text != f"[{outcome.formula}]":
            recorded = f"{roll_text} → [{outcome.formula}]"
        rolls.append({"formula": recorded, "roll": outcome.to_dict()})

    return formula, rolls
