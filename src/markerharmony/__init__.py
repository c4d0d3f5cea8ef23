"""
markerharmony - Cross-platform marker panel harmonization

Brings one marker panel onto a common footing across microarray,
single-nucleus transcriptomics and bulk/CSF proteomics datasets: panel
subsetting and deduplication, per-marker z-scores, moderated two-group
comparison, heatmap ranking, and hypergeometric enrichment against each
study's differentially expressed genes.
"""

__version__ = "0.1.0"

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.core.panel import MarkerPanel
from markerharmony.core.quality import QualityFlag
from markerharmony.core.transform import Transform
from markerharmony.stats.differential import compare_two_groups
from markerharmony.stats.normalization import normalize
from markerharmony.stats.ranking import rank
from markerharmony.validation.enrichment_tests import enrich, enrich_many

__all__ = [
    "BioMatrix",
    "MarkerPanel",
    "QualityFlag",
    "Transform",
    "normalize",
    "compare_two_groups",
    "rank",
    "enrich",
    "enrich_many",
]
