"""
Quality flag system for tracking per-value provenance through the harmonization pipeline.

Each value of an expression matrix carries a small bitwise flag recording what
happened to it on the way from the loader to the ranked output. This answers
questions like "was this marker missing in the raw data, or did it become
missing because its row was constant?" without carrying extra tables around.

Biological Context:
    The three source studies disagree on what "missing" means:
    - Microarray: practically never missing after RMA summarization
    - Single-nucleus RNA: sparse, but already aggregated upstream
    - Proteomics (bulk brain, CSF): missing-not-at-random below detection limit

    A constant marker row (e.g. a protein quantified at the same imputed floor
    in every sample) cannot be standardized. Its z-scores are missing by
    construction, and downstream consumers must be able to tell that apart from
    a missing measurement.

Engineering Design:
    IntFlag enables efficient bitwise operations:
    - Multiple flags per value: MISSING_ORIGINAL | ZERO_VARIANCE
    - Fast bitwise checks: if flags & QualityFlag.ZERO_VARIANCE
    - Memory efficient: single int per value

Examples:
    >>> import numpy as np
    >>> from markerharmony.core.quality import QualityFlag
    >>>
    >>> flags = np.array([0, 1, 2, 3], dtype=int)
    >>> n_constant = np.sum((flags & QualityFlag.ZERO_VARIANCE) != 0)
"""

from __future__ import annotations

from enum import IntFlag

__all__ = ['QualityFlag']


class QualityFlag(IntFlag):
    """
    Bitwise flags for per-value quality tracking in expression matrices.

    Attributes:
        ORIGINAL: Untouched value from the loading collaborator (0)
        MISSING_ORIGINAL: Missing (NaN) in the loaded data (1)
        ZERO_VARIANCE: Row had zero (or undefined) variance; z-score is missing (2)
        DEDUPLICATED: Row survived IQR deduplication over a repeated identifier (4)
    """

    ORIGINAL = 0
    """Untouched original value."""

    MISSING_ORIGINAL = 1
    """
    Missing (NaN) in the input matrix.
    In proteomics this is usually below the limit of detection (MNAR).
    """

    ZERO_VARIANCE = 2
    """
    Value belongs to a constant row; standardization is undefined and the
    z-score is stored as NaN instead of being coerced to zero.
    """

    DEDUPLICATED = 4
    """
    Row was chosen among several rows mapping to the same canonical marker
    identifier (highest interquartile range wins).
    """
