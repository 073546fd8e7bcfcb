"""
Exception types for the margins package.

Every exception carries a machine-readable code plus the name that
triggered it (predictor, term) and the operation that was requested,
so callers can handle specific failure modes programmatically.
"""


class MarginsError(Exception):
    """Base exception for all margins errors."""

    def __init__(self, message, code="MARGINS_ERROR", operation=""):
        self.code = code
        self.operation = operation
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)


class UnknownPredictorError(MarginsError):
    """Raised when a predictor name is not known to the dataset or model."""

    def __init__(self, name, operation="", available=None, message=None,
                 code="UNKNOWN_PREDICTOR"):
        self.name = name
        if message is None:
            message = f"unknown predictor '{name}'"
            if available:
                message += f" (available: {', '.join(map(str, available))})"
        super().__init__(message, code=code, operation=operation)


class MissingPredictorError(UnknownPredictorError):
    """Raised when a model predictor is present but holds missing values."""

    def __init__(self, name, operation="", n_missing=0):
        self.n_missing = n_missing
        super().__init__(
            name,
            operation=operation,
            message=f"predictor '{name}' has {n_missing} missing value(s)",
            code="MISSING_PREDICTOR",
        )


class EmptyGridError(MarginsError):
    """Raised when a grid would contain no rows."""

    def __init__(self, message="grid has no rows", operation="", name=""):
        self.name = name
        super().__init__(message, code="EMPTY_GRID", operation=operation)


class InvalidStepError(MarginsError):
    """Raised when a finite-difference step is not strictly positive."""

    def __init__(self, step, name="", operation=""):
        self.step = step
        self.name = name
        msg = f"finite-difference step must be > 0, got {step!r}"
        if name:
            msg += f" for predictor '{name}'"
        super().__init__(msg, code="INVALID_STEP", operation=operation)


class UnknownTermError(MarginsError):
    """Raised when a contrast expression references an absent estimate."""

    def __init__(self, name, operation="", available=None):
        self.name = name
        msg = f"unknown term '{name}'"
        if available:
            msg += f" (available: {', '.join(available)})"
        super().__init__(msg, code="UNKNOWN_TERM", operation=operation)


class UnsupportedExpressionError(MarginsError):
    """Raised when a contrast expression is not a linear combination."""

    def __init__(self, expression, reason="", operation=""):
        self.expression = expression
        msg = f"only linear contrasts are supported: '{expression}'"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg, code="UNSUPPORTED_EXPRESSION", operation=operation)


class IncompatibleEstimatesError(MarginsError):
    """Raised when estimates from different models are combined."""

    def __init__(self, operation=""):
        super().__init__(
            "estimates do not share a covariance matrix",
            code="INCOMPATIBLE_ESTIMATES",
            operation=operation,
        )


class IllConditionedCovarianceError(MarginsError):
    """
    Raised when the parameter covariance matrix cannot be used for
    delta-method inference (singular, asymmetric, non-finite or not
    positive semi-definite).

    Recoverable: effect and contrast engines catch it and report the
    point estimate with missing standard error.
    """

    def __init__(self, reason="", operation=""):
        self.reason = reason
        msg = "covariance matrix is ill-conditioned"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, code="ILL_CONDITIONED_COVARIANCE",
                         operation=operation)


class UnsupportedPredictorError(MarginsError):
    """Raised when a predictor's dtype has no typical value (e.g. dates)."""

    def __init__(self, name, dtype="", operation=""):
        self.name = name
        self.dtype = dtype
        super().__init__(
            f"cannot summarise predictor '{name}' of dtype {dtype}",
            code="UNSUPPORTED_PREDICTOR",
            operation=operation,
        )
