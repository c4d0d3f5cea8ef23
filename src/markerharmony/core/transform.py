"""
Base transformation framework for immutable matrix operations.

Every stage of the marker pipeline (panel subset, deduplication, missingness
filter, z-scoring) is a Transform: a pure function from one BioMatrix to a new
BioMatrix. Stages are chained by explicit value passing, so a caller can keep
any intermediate matrix, inspect it, and re-run a later stage with different
parameters without hidden order-of-operations effects.

Engineering Design:
    Pure Functions:
        - No side effects (don't modify inputs)
        - Deterministic (same input + params → same output)
        - Composable (chain transformations)

Examples:
    >>> from markerharmony.core.transform import Transform
    >>>
    >>> class Center(Transform):
    ...     def __init__(self):
    ...         super().__init__(name="Center", params={})
    ...
    ...     def apply(self, matrix):
    ...         import numpy as np
    ...         centred = matrix.data - np.nanmean(matrix.data, axis=1, keepdims=True)
    ...         return matrix.with_values(centred)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence, TYPE_CHECKING
from datetime import datetime

from markerharmony.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from markerharmony.core.biomatrix import BioMatrix

__all__ = ['Transform', 'apply_chain']


class Transform(ABC):
    """
    Abstract base class for all matrix transformations.

    Attributes:
        name: Human-readable transformation name (e.g., "ZScoreTransform")
        params: Dictionary of parameters used for this transformation
        timestamp: When this transform instance was created (for audit trail)
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        """
        Initialize transformation with name and parameters.

        Args:
            name: Human-readable transformation name
            params: Parameters; JSON-serializable where possible so they can be
                written next to results for provenance.
        """
        self.name = name
        self.params = params
        self.timestamp = datetime.now()

    @abstractmethod
    def apply(self, matrix: BioMatrix) -> BioMatrix:
        """
        Execute transformation and return a new matrix.

        Must never modify the input matrix.

        Args:
            matrix: Input BioMatrix to transform

        Returns:
            New BioMatrix with transformation applied (input unchanged)
        """
        pass

    def validate(self, matrix: BioMatrix) -> list[str]:
        """
        Check preconditions before applying transformation.

        Subclasses should override and call super().validate() first.

        Returns:
            List of error messages (empty list = valid)
        """
        errors: list[str] = []

        if matrix.n_samples == 0:
            errors.append("Cannot process matrix without samples")

        return errors

    def __repr__(self) -> str:
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"


def apply_chain(matrix: BioMatrix, transforms: Sequence[Transform]) -> BioMatrix:
    """
    Apply transforms in order, validating each one first.

    Raises:
        ConfigurationError: If a transform reports validation errors
    """
    result = matrix
    for transform in transforms:
        errors = transform.validate(result)
        if errors:
            raise ConfigurationError(f"{transform.name} cannot be applied: " + "; ".join(errors))
        result = transform.apply(result)
    return result
