"""
Final statistical verdict: is the marker panel enriched among each study's
differentially expressed genes/proteins?

Modules:
    enrichment_tests: Hypergeometric enrichment against a fixed population size
"""

from markerharmony.validation.enrichment_tests import (
    DEFAULT_POPULATION_SIZE,
    EnrichmentReport,
    EnrichmentResult,
    HypergeometricTest,
    apply_fdr_correction,
    enrich,
    enrich_many,
    significant_ids,
)

__all__ = [
    'DEFAULT_POPULATION_SIZE',
    'EnrichmentReport',
    'EnrichmentResult',
    'HypergeometricTest',
    'apply_fdr_correction',
    'enrich',
    'enrich_many',
    'significant_ids',
]
