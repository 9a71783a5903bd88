"""Exception hierarchy for confidence band construction.

Input and parameter problems are reported eagerly as ``ValueError``
subclasses so callers that already catch ``ValueError`` keep working.
Numerical failures inside a quantile strategy carry the method and stage
at which they happened.
"""


class SCBError(Exception):
    """Base class for all errors raised by scbfda."""


class InputShapeError(SCBError, ValueError):
    """Sample is not array-like or its dimensions are incompatible."""


class ParameterRangeError(SCBError, ValueError):
    """A configuration value is outside its documented range."""


class UnsupportedMethodError(SCBError, ValueError):
    """The quantile method tag is not one of the supported strategies."""


class NumericalError(SCBError, ArithmeticError):
    """A numerical step failed (root bracketing, degenerate curvatures, ...).

    Args:
        message: Description of the failure.
        method: Quantile method or component in which the failure happened.
        stage: Pipeline stage, e.g. ``"lkc"``, ``"root_find"``, ``"bootstrap"``.
    """

    def __init__(self, message: str, method: str | None = None, stage: str | None = None):
        self.method = method
        self.stage = stage
        context = ", ".join(
            f"{key}={value}"
            for key, value in (("method", method), ("stage", stage))
            if value is not None
        )
        super().__init__(f"{message} [{context}]" if context else message)


class BootstrapCancelledError(NumericalError):
    """A bootstrap run was cancelled or timed out; partial results are discarded."""
