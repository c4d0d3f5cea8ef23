"""
Core data structures shared by every stage of the harmonization engine.

1. BioMatrix: Expression matrix with sample metadata and quality tracking
2. QualityFlag: Bitwise flags for per-value provenance
3. Transform: Abstract base class for immutable matrix transformations
4. MarkerPanel: Ordered, duplicate-free marker identifier set
5. Error taxonomy: ConfigurationError, InsufficientSamplesError,
   DataQualityWarning, LookupMiss

Design Philosophy:
    - Immutability: All operations return new instances (functional style)
    - Composability: Small operations chain into dataset pipelines
"""

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.core.exceptions import (
    ConfigurationError,
    DataQualityWarning,
    InsufficientSamplesError,
    LookupMiss,
    MarkerHarmonyError,
)
from markerharmony.core.panel import MarkerPanel
from markerharmony.core.quality import QualityFlag
from markerharmony.core.transform import Transform, apply_chain

__all__ = [
    'BioMatrix',
    'QualityFlag',
    'Transform',
    'apply_chain',
    'MarkerPanel',
    'MarkerHarmonyError',
    'ConfigurationError',
    'InsufficientSamplesError',
    'DataQualityWarning',
    'LookupMiss',
]
