"""
Error and warning taxonomy for the harmonization engine.

Fatal errors abort one comparison call or one dataset pipeline; they never
abort independent datasets. Non-fatal data quality events are reported as
warnings (and logged) and propagate downstream as missing values.
"""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    'MarkerHarmonyError',
    'ConfigurationError',
    'InsufficientSamplesError',
    'DataQualityWarning',
    'LookupMiss',
]


class MarkerHarmonyError(Exception):
    """Base class for fatal errors raised by markerharmony."""
    pass


class ConfigurationError(MarkerHarmonyError, ValueError):
    """Raised when a group assignment, contrast or parameter is invalid."""
    pass


class InsufficientSamplesError(MarkerHarmonyError):
    """Raised when a group has too few samples for the statistical model."""

    def __init__(self, group: str, n_samples: int, required: int = 2):
        self.group = group
        self.n_samples = n_samples
        self.required = required
        super().__init__(
            f"Group '{group}' has {n_samples} sample(s); "
            f"at least {required} are required"
        )


class DataQualityWarning(UserWarning):
    """A marker was dropped or produced missing values for data quality reasons."""
    pass


@dataclass(frozen=True)
class LookupMiss:
    """A panel marker that is absent from a dataset.

    Attributes:
        marker: Canonical marker identifier from the panel.
        dataset: Name of the dataset it was looked up in (None if unnamed).
    """

    marker: str
    dataset: str | None = None

    def __str__(self) -> str:
        where = f" in {self.dataset}" if self.dataset else ""
        return f"{self.marker} not measured{where}"
