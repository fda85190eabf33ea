"""
Domain functions injected into formula evaluation.

Lookups into the property bag (ref, sameRow, dynamic tables), cross-entity
reads and writes, branching and text helpers. Every externally sourced value
goes through coerce_number before it reaches an operator.
"""

import copy
import logging
import re
from dataclasses import replace
from typing import Any, Callable, Optional

from .errors import EvaluationError, UncomputableError
from .expression import (
    compare_values,
    format_value,
    loose_equal,
    normalize_number,
    parse_number,
)

logger = logging.getLogger(__name__)

# Functions whose calls appear as records in explanation trees
EXPLAINABLE_FUNCTIONS = ("fetchFromDynamicTable", "ref", "sameRow")

COMPARISON_OPERATORS = ("===", "==", ">", ">=", "<", "<=", "!==", "!=", "~")


def coerce_number(value, default=None):
    """
    Numeric coercion applied to values read from props.

    Booleans pass through, numbers and numeric strings become numbers,
    missing values become the default, anything else is returned unchanged.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return normalize_number(value)
    if value is None:
        return default
    if isinstance(value, str):
        number = parse_number(value)
        if number is not None:
            return number
    return value


# --- Property bag helpers ---

def get_property(data, path: Optional[str]):
    """Read a dotted path (``table.0.name``) from nested dicts and lists."""
    if path is None:
        return None

    current = data
    for part in str(path).split("."):
        if isinstance(current, dict):
            if part in current:
                current = current[part]
            else:
                return None
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def set_property(data: dict, path: str, value) -> None:
    """Write a dotted path, creating intermediate dicts as needed."""
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def delete_property(data: dict, path: str) -> None:
    """Remove a dotted path if present."""
    parts = path.split(".")
    parent = get_property(data, ".".join(parts[:-1])) if len(parts) > 1 else data
    if isinstance(parent, dict):
        parent.pop(parts[-1], None)


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base. Override values win."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def iter_rows(table):
    """Yield (row key, row) for the live rows of a dynamic table."""
    if isinstance(table, dict):
        items = table.items()
    elif isinstance(table, list):
        items = ((str(i), row) for i, row in enumerate(table))
    else:
        return

    for key, row in items:
        if isinstance(row, dict) and not row.get("deleted"):
            yield key, row


def _strict_equal(left, right) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    return type(left) is type(right) and left == right


def _matches(operator: str, cell, value) -> bool:
    if operator == "===":
        return _strict_equal(cell, value)
    if operator == "!==":
        return not _strict_equal(cell, value)
    if operator == "==":
        return loose_equal(cell, value)
    if operator == "!=":
        return not loose_equal(cell, value)
    if operator == "~":
        return re.search(format_value(value), format_value(cell)) is not None
    try:
        return compare_values(operator, cell, value)
    except EvaluationError:
        return False


class FormulaFunctions:
    """
    The function table for one formula evaluation.

    Bound to the formula's scope, options and engine context, so every
    lookup uses the same default value, row reference and available keys.
    """

    def __init__(
        self,
        all_values: dict,
        props: dict,
        options,
        formula: str,
        context
    ):
        self.all_values = all_values
        self.props = props
        self.options = options
        self.formula = formula
        self.context = context

    @property
    def default_value(self):
        return self.options.default_value

    def _uncomputable(self, message: str, token: str, props: Optional[dict] = None):
        return UncomputableError(
            message, token, self.formula,
            props if props is not None else self.all_values
        )

    def _compute_phrase(self, text: str, props: dict, **changes):
        # Imported here, phrases are built from formulas
        from .phrase import ComputablePhrase

        options = replace(self.options, **changes) if changes else self.options
        return ComputablePhrase.compute_message_static(text, props, options, self.context)

    def as_dict(self) -> dict[str, Callable]:
        return {
            "sameRow": self.same_row,
            "sameRowRef": self.same_row_ref,
            "getRefFromDynamicTable": self.get_ref_from_dynamic_table,
            "fetchFromDynamicTable": self.fetch_from_dynamic_table,
            "first": self.first,
            "consoleLog": self.console_log,
            "consoleTable": self.console_table,
            "ref": self.ref,
            "replace": self.replace,
            "replaceAll": self.replace_all,
            "recalculate": self.recalculate,
            "fetchFromActor": self.fetch_from_actor,
            "switchCase": self.switch_case,
            "setPropertyInEntity": self.set_property_in_entity,
            "notify": self.notify,
        }

    # Lookups

    def same_row(self, column_name, fallback_value=None):
        """Value of a column in the current dynamic table row."""
        full_reference = f"{self.options.reference}.{column_name}"
        value = coerce_number(get_property(self.all_values, full_reference))
        if value is None:
            value = fallback_value if fallback_value is not None else self.default_value

        if value is None:
            token = f"sameRow({column_name})"
            raise self._uncomputable(f"Uncomputable token {token}", token)
        return value

    def same_row_ref(self, column_name) -> str:
        """Dotted path of a column in the current row, without resolving it."""
        return f"{self.options.reference}.{column_name}"

    def get_ref_from_dynamic_table(self, table_key, target_column, filter_column, filter_value) -> str:
        """Dotted path to target_column of the first live row matching the filter."""
        table = get_property(self.all_values, table_key)
        if table is None:
            token = (
                f'getRefFromDynamicTable("{table_key}", "{target_column}", '
                f'"{filter_column}", "{format_value(filter_value)}")'
            )
            raise self._uncomputable(f"Uncomputable token {token}", token)

        for row_key, row in iter_rows(table):
            if _strict_equal(row.get(filter_column), filter_value):
                return f"{table_key}.{row_key}.{target_column}"
        return ""

    def fetch_from_dynamic_table(
        self,
        table_key,
        target_column,
        filter_column=None,
        filter_value=None,
        comparison_operator="==="
    ) -> list:
        """Coerced target_column values of every live row matching the filter."""
        if filter_column and comparison_operator not in COMPARISON_OPERATORS:
            logger.error(f'"{comparison_operator}" is not a valid comparison operator.')

        values = []
        for row_key, row in iter_rows(get_property(self.all_values, table_key)):
            if filter_column:
                if comparison_operator not in COMPARISON_OPERATORS:
                    continue
                if not _matches(comparison_operator, row.get(filter_column), filter_value):
                    continue

            if row.get(target_column) is None:
                token = (
                    f'fetchFromDynamicTable("{table_key}", "{target_column}", '
                    f'"{filter_column}", "{format_value(filter_value)}", "{comparison_operator}")'
                )
                raise self._uncomputable(f"Uncomputable token {token}", token)

            values.append(coerce_number(row[target_column], self.default_value))
        return values

    def ref(self, value_ref, fallback_value=None):
        """
        Value at a dotted path, with an optional per-call fallback.

        A path listed in available_keys that has no value yet is always
        uncomputable, so the convergence loop retries it later instead of
        settling for the fallback.
        """
        real_value = get_property(self.all_values, value_ref) if value_ref else None
        value = coerce_number(real_value)
        if value is None:
            value = fallback_value if fallback_value is not None else self.default_value

        if value is None or (real_value is None and value_ref in self.options.available_keys):
            token = f"ref({value_ref})"
            raise self._uncomputable(f"Uncomputable token {token}", token)
        return value

    def first(self, values=None, fallback_value=None):
        if values:
            return coerce_number(values[0], self.default_value)
        return fallback_value if fallback_value is not None else self.default_value

    # Text

    def replace(self, text, pattern, replacement):
        return coerce_number(format_value(text).replace(format_value(pattern), format_value(replacement), 1))

    def replace_all(self, text, pattern, replacement):
        return coerce_number(format_value(text).replace(format_value(pattern), format_value(replacement)))

    def switch_case(self, expression, *args):
        """switchCase(x, key1, value1, key2, value2, ..., fallback)"""
        remaining = list(args)
        while len(remaining) > 1:
            key = remaining.pop(0)
            value = remaining.pop(0)
            if _strict_equal(key, expression):
                return value
        return remaining[0] if remaining else None

    # Recomputation and other entities

    def recalculate(self, text):
        """Recompute a phrase statically with the current props and options."""
        return coerce_number(self._compute_phrase(format_value(text), self.props).result)

    def fetch_from_actor(self, actor_name, formula, fallback_value=None):
        """Evaluate a formula against another entity's props."""
        fallback = fallback_value if fallback_value is not None else self.default_value
        entity = self.context.entities.resolve(
            actor_name, self.options.trigger_entity, self.options.linked_entity
        )
        if entity is None:
            return fallback

        text = "${" + format_value(formula).replace('"', " ") + "}$"
        phrase = self._compute_phrase(text, entity.props, default_value=fallback)
        return coerce_number(phrase.result)

    def set_property_in_entity(self, entity_name, property_name, formula, fallback_value=None):
        """
        Evaluate a formula and write the result into another entity's props.

        This has an effect beyond its return value: the resolved entity is
        updated. The current entity's props are in scope, the resolved
        entity's props are available as ``target``.
        """
        text = "${" + format_value(formula).replace('"', " ") + "}$"
        entity = self.context.entities.resolve(
            entity_name, self.options.trigger_entity, self.options.linked_entity
        )
        if entity is None:
            raise UncomputableError(f"Entity {entity_name} not found", entity_name, text, self.props)

        fallback = fallback_value if fallback_value is not None else self.default_value
        phrase = self._compute_phrase(
            text, {**self.props, "target": entity.props}, default_value=fallback
        )
        value = coerce_number(phrase.result)

        entity.update({property_name: value})
        return value

    # Output

    def notify(self, message_type, message):
        levels = self.context.config.notification_levels
        if message_type not in levels:
            raise UncomputableError(
                f"Message-Type {message_type} is not valid", format_value(message_type),
                self.formula, self.props
            )
        self.context.notifier.notify(message_type, message)
        return message

    def console_log(self, data):
        logger.info(format_value(data))

    def console_table(self, data):
        if isinstance(data, dict):
            for key, value in data.items():
                logger.info(f"{key}\t{format_value(value)}")
        elif isinstance(data, list):
            for index, value in enumerate(data):
                logger.info(f"{index}\t{format_value(value)}")
        else:
            logger.info(format_value(data))


def undefined_symbol_handler(
    default_value,
    formula: str,
    props: dict
) -> Callable[[str], Any]:
    """Build the undefined-symbol callback for one evaluation."""

    def _handle(name: str):
        if default_value is not None:
            return default_value
        raise UncomputableError(f"Uncomputable token {name}", name, formula, props)

    return _handle
