"""Error taxonomy for the analysis run.

Input problems and write failures abort the run. An
:class:`InsufficientDataError` only removes one subgroup from a figure;
a :class:`ModelFitError` always names the subset whose fit failed.
"""

from typing import Optional


class BivalveMetaError(Exception):
    """Base class for all analysis errors."""


class DataLoadError(BivalveMetaError):
    """Malformed or missing input data (experiment table or tree file)."""


class InsufficientDataError(BivalveMetaError):
    """Too few usable observations to estimate a model for a subset."""

    def __init__(self, label: str, reason: str):
        self.label = label
        self.reason = reason
        super().__init__(f"{label}: {reason}")


class ModelFitError(BivalveMetaError):
    """Numerical failure while fitting a model to a named subset."""

    def __init__(self, label: str, reason: str, cause: Optional[BaseException] = None):
        self.label = label
        self.reason = reason
        self.cause = cause
        super().__init__(f"Model fit failed for {label!r}: {reason}")


class OutputError(BivalveMetaError):
    """A figure or results table could not be written."""
