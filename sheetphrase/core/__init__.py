"""Core computation engine: formulas, phrases and their evaluation."""

from .errors import ConfigError, EvaluationError, UncomputableError, UnsafeScriptError
from .context import (
    ComputeOptions,
    Dialog,
    EngineContext,
    LoggingNotifier,
    NotificationSink,
    NullDialog,
    ScriptedDialog,
)
from .formula import Formula
from .phrase import ComputablePhrase
from .convergence import ConvergenceResult, compute_properties

__all__ = [
    "ConfigError",
    "EvaluationError",
    "UncomputableError",
    "UnsafeScriptError",
    "ComputeOptions",
    "Dialog",
    "EngineContext",
    "LoggingNotifier",
    "NotificationSink",
    "NullDialog",
    "ScriptedDialog",
    "Formula",
    "ComputablePhrase",
    "ConvergenceResult",
    "compute_properties",
]
