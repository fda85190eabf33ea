"""
Fixed-point resolution of computed properties.

Computed properties may reference each other in any order. Each pass
computes every property that is still missing; those whose formulas hit an
unresolvable reference are retried on the next pass, once the values they
depend on exist. The loop stops when everything is computed or a pass makes
no progress (usually a circular definition).

Keys of the form ``table.column`` are dynamic table columns: the phrase is
computed once per live row, with the row as reference for sameRow().
"""

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from .context import ComputeOptions, EngineContext
from .errors import UncomputableError
from .functions import deep_merge, delete_property, get_property, iter_rows
from .phrase import ComputablePhrase

logger = logging.getLogger(__name__)


@dataclass
class ConvergenceResult:
    """Outcome of compute_properties."""
    props: dict
    computed: dict = field(default_factory=dict)
    uncomputed: dict = field(default_factory=dict)
    passes: int = 0

    @property
    def converged(self) -> bool:
        return not self.uncomputed

    def to_dict(self) -> dict:
        return {
            "props": self.props,
            "computed": self.computed,
            "uncomputed": self.uncomputed,
            "passes": self.passes
        }


def _split_column_key(key: str) -> tuple[str, str]:
    table_key, column = key.split(".", 1)
    return table_key, column


def clear_computed_values(computable: dict, props: dict) -> dict:
    """Copy of props without any value that is about to be recomputed."""
    props = copy.deepcopy(props)
    for key in computable:
        if "." in key:
            table_key, column = _split_column_key(key)
            for row_key, _ in iter_rows(get_property(props, table_key)):
                delete_property(props, f"{table_key}.{row_key}.{column}")
        else:
            props.pop(key, None)
    return props


def _assign_cell(props: dict, table_key: str, row_key: str, column: str, value) -> None:
    table = get_property(props, table_key)
    row = table[int(row_key)] if isinstance(table, list) else table[row_key]
    row[column] = value


def compute_properties(
    computable: dict[str, str],
    props: dict,
    options: Optional[ComputeOptions] = None,
    context: Optional[EngineContext] = None
) -> ConvergenceResult:
    """
    Compute every property of ``computable`` (key -> phrase) against props.

    Args:
        computable: Phrases by property key
        props: Current property bag (not modified)
        options: Base options (trigger entity, default value)
        context: Engine collaborators

    Returns:
        ConvergenceResult with the updated props, the computed values by
        dotted path and the properties left uncomputed
    """
    options = options or ComputeOptions()
    context = context or EngineContext()

    props = clear_computed_values(computable, props)
    uncomputed = dict(computable)
    computed_values = {}
    base_options = replace(options, available_keys=list(computable))

    passes = 0
    while uncomputed and passes < context.config.max_passes:
        passes += 1
        plain_values = {}
        cell_values = []

        for key, phrase in list(uncomputed.items()):
            try:
                if "." in key:
                    table_key, column = _split_column_key(key)
                    rows = []
                    for row_key, _ in iter_rows(get_property(props, table_key)):
                        row_options = replace(base_options, reference=f"{table_key}.{row_key}")
                        value = ComputablePhrase.compute_message_static(
                            phrase, props, row_options, context
                        ).result
                        rows.append((table_key, row_key, column, value))
                    cell_values.extend(rows)
                else:
                    plain_values[key] = ComputablePhrase.compute_message_static(
                        phrase, props, base_options, context
                    ).result
            except UncomputableError as e:
                logger.debug(f"Passing prop {key} ({phrase}) to next round of computation: {e}")
                continue

            logger.debug(f"Computed {key} successfully")
            del uncomputed[key]

        # Values computed in this pass become visible on the next one
        props = deep_merge(props, plain_values)
        computed_values.update(plain_values)
        for table_key, row_key, column, value in cell_values:
            _assign_cell(props, table_key, row_key, column, value)
            computed_values[f"{table_key}.{row_key}.{column}"] = value

        resolved = len(plain_values) + len(cell_values)
        logger.debug(f"Pass {passes}: {resolved} computed, {len(uncomputed)} left")

        if not plain_values and not cell_values:
            break

    if uncomputed:
        context.notifier.notify("warn", f"Some props were not computed: {', '.join(uncomputed)}")

    return ConvergenceResult(
        props=props,
        computed=computed_values,
        uncomputed=uncomputed,
        passes=passes
    )
