"""
Failure kinds raised by the computation engine.

Only UncomputableError escapes formula evaluation. Everything else is an
EvaluationError, which formulas convert to the error sentinel.
"""

from typing import Optional


class UncomputableError(Exception):
    """A reference could not be resolved and no default applies.

    Carries the offending token, the formula text and the scope that was
    searched, so callers can report what is missing. The property
    convergence loop treats this as retryable.
    """

    def __init__(
        self,
        message: str,
        token: str,
        formula: str = "",
        props: Optional[dict] = None
    ):
        super().__init__(message)
        self.token = token
        self.formula = formula
        self.props = props if props is not None else {}


class EvaluationError(Exception):
    """Parse or runtime fault of an expression, roll or script."""


class UnsafeScriptError(EvaluationError):
    """Script source uses syntax outside the sandboxed dialect."""


class ConfigError(ValueError):
    """Configuration, template or roll table document is invalid."""
