"""Sheet Phrase - computes character-sheet text with embedded formulas."""

from .core import (
    ComputablePhrase,
    ComputeOptions,
    EngineContext,
    EvaluationError,
    Formula,
    ScriptedDialog,
    UncomputableError,
    compute_properties,
)

__version__ = "0.1.0"

__all__ = [
    "ComputablePhrase",
    "ComputeOptions",
    "EngineContext",
    "EvaluationError",
    "Formula",
    "ScriptedDialog",
    "UncomputableError",
    "compute_properties",
]
