"""
Error taxonomy for the service flow engine.

Structural errors (missing data, dimension mismatch, invalid parameters) abort
a run before any computation. Validation failures abort before flow
computation and carry the full diagnostic report. Unreachable targets are a
warning, not an error: the affected cells keep +inf cost and zero accessibility.
"""

VALIDATION_CATEGORIES = (
    "completeness",
    "type",
    "range",
    "spatial-consistency",
    "physical-constraint",
    "model-specific",
)


class ServiceFlowError(Exception):
    """Base class for all engine errors."""

    pass


class MissingDataError(ServiceFlowError):
    """Raised when a required data layer is absent."""

    def __init__(self, layer: str, message: str | None = None):
        self.layer = layer
        super().__init__(message or f"Required layer '{layer}' is missing")


class DimensionMismatchError(ServiceFlowError):
    """Raised when grids in one analysis are not co-registered."""

    pass


class InvalidParameterError(ServiceFlowError, ValueError):
    """Raised for an out-of-range parameter value or an unrecognized key."""

    pass


class UnsupportedModelError(ServiceFlowError, ValueError):
    """Raised when a flow model key is not one of the supported domains."""

    def __init__(self, key, supported):
        self.key = key
        self.supported = tuple(supported)
        super().__init__(f"Unsupported flow model '{key}'. Available: {list(self.supported)}")


class StateTransitionError(ServiceFlowError):
    """Raised when a pipeline stage is requested out of order."""

    pass


class ValidationFailure(ServiceFlowError):
    """
    Raised when a staged validation check fails.

    Attributes:
        category: First failing category (see VALIDATION_CATEGORIES)
        stage: Pipeline state that could not be reached
        report: Complete ValidationReport with every check that ran
    """

    def __init__(self, category: str, stage: str, report=None, message: str | None = None):
        self.category = category
        self.stage = stage
        self.report = report
        if message is None:
            failed = []
            if report is not None:
                failed = [c.name for c in report.failures if c.category == category]
            message = f"Validation failed at stage '{stage}' ({category}): {', '.join(failed) or 'see report'}"
        super().__init__(message)


class UnreachableTargetWarning(UserWarning):
    """Cost-distance search could not connect a source to a sink."""

    pass
