"""
Statistical engine: standardization, moderated two-group comparison, ranking.

Modules:
    normalization: Row z-scores and the composed normalize() stage
    empirical_bayes: limma-style prior fit and variance shrinkage
    design_matrix: Sample group resolution and unshrunk group means
    differential: Two-group moderated t-tests with BH correction
    ranking: Group aggregation, row/column permutations, heatmap layout
"""

from markerharmony.stats.design_matrix import SampleGroups, group_means, resolve_sample_groups
from markerharmony.stats.differential import (
    DifferentialResult,
    DifferentialTable,
    compare_two_groups,
    fdr_correction,
)
from markerharmony.stats.empirical_bayes import fit_f_dist, squeeze_var, trigamma_inverse
from markerharmony.stats.normalization import ZScoreTransform, filter_markers, normalize, row_zscores
from markerharmony.stats.ranking import (
    EXTREME_VS_REFERENCE,
    MISSING_RANK_KEY,
    HeatmapLayout,
    RankedOrder,
    bin_by_quantile,
    order_columns,
    rank,
    rank_markers,
    summarize_groups,
)

__all__ = [
    'SampleGroups',
    'group_means',
    'resolve_sample_groups',
    'DifferentialResult',
    'DifferentialTable',
    'compare_two_groups',
    'fdr_correction',
    'fit_f_dist',
    'squeeze_var',
    'trigamma_inverse',
    'ZScoreTransform',
    'filter_markers',
    'normalize',
    'row_zscores',
    'EXTREME_VS_REFERENCE',
    'MISSING_RANK_KEY',
    'HeatmapLayout',
    'RankedOrder',
    'bin_by_quantile',
    'order_columns',
    'rank',
    'rank_markers',
    'summarize_groups',
]
