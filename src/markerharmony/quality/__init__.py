"""
Quality control for marker-by-sample matrices.

Panel subsetting, duplicate-identifier collapsing and missingness filtering,
each as a composable Transform.
"""

from markerharmony.quality.filtering import (
    DedupKey,
    IQRDeduplicator,
    MissingnessFilter,
    PanelCoverage,
    PanelFilter,
    canonical_ids,
    interquartile_range,
)

__all__ = [
    'DedupKey',
    'IQRDeduplicator',
    'MissingnessFilter',
    'PanelCoverage',
    'PanelFilter',
    'canonical_ids',
    'interquartile_range',
]
