"""
Group aggregation and ranking of standardized marker matrices.

Turns a ZScoreMatrix plus a sample grouping into an explicit permutation of
rows (markers) and columns (samples), returned as a RankedOrder value that the
caller applies. Nothing here reorders a matrix as a side effect.

Row ranking:
    key(marker) = mean_z(extreme group) − mean_z(reference group)

    Markers are sorted by descending key with a stable sort, so markers with
    identical keys keep their input order. With more than two ordinal groups
    (Braak stages, CSF deciles) only the extreme and reference groups enter the
    key; intermediate groups are shown but do not influence the order
    (EXTREME_VS_REFERENCE). No significance is claimed for these designs.

    A key that cannot be computed (a group with no observed value, or a
    constant marker whose z-scores are all missing) is replaced by
    MISSING_RANK_KEY, which sorts after every real key.

Column ordering:
    Groups are laid out left to right in group order. Within a group, samples
    are sorted ascending by a secondary key: a metadata covariate (e.g. disease
    stage, age) or, by default, the sample's mean z-score over the retained
    markers. Ties keep input order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np
import pandas as pd

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.core.exceptions import ConfigurationError
from markerharmony.stats.design_matrix import (
    GroupSpec,
    SampleGroups,
    group_means,
    resolve_sample_groups,
)

logger = logging.getLogger(__name__)

__all__ = [
    'MISSING_RANK_KEY',
    'EXTREME_VS_REFERENCE',
    'RankedOrder',
    'HeatmapLayout',
    'summarize_groups',
    'rank_markers',
    'order_columns',
    'rank',
    'bin_by_quantile',
]

MISSING_RANK_KEY = -1e300
"""Sort key for markers whose extreme-vs-reference difference is undefined."""

EXTREME_VS_REFERENCE = "extreme_minus_reference"
"""Name of the row ranking rule; intermediate groups do not affect the order."""

ColumnKey = Union[str, pd.Series, None]


@dataclass(frozen=True)
class RankedOrder:
    """Row and column permutation plus the sort keys that produced it.

    Attributes:
        row_order: Marker ids, most up-regulated in the extreme group first
        row_keys: Sort key per entry of row_order
        column_order: Sample ids, grouped and ordered within group
        column_keys: Secondary sort key per entry of column_order
        column_groups: Group label per entry of column_order
        reference_group: Group used as the baseline
        extreme_group: Group compared against the baseline
        rule: Row ranking rule name
    """

    row_order: tuple[str, ...]
    row_keys: tuple[float, ...]
    column_order: tuple[str, ...]
    column_keys: tuple[float, ...]
    column_groups: tuple[str, ...]
    reference_group: str
    extreme_group: str
    rule: str = EXTREME_VS_REFERENCE

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        """Return a new matrix in this order (input unchanged)."""
        return matrix.reorder(feature_order=self.row_order, sample_order=self.column_order)

    def row_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'rank': np.arange(1, len(self.row_order) + 1),
            'feature_id': list(self.row_order),
            'rank_key': list(self.row_keys),
        })

    def column_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'position': np.arange(1, len(self.column_order) + 1),
            'sample_id': list(self.column_order),
            'group': list(self.column_groups),
            'column_key': list(self.column_keys),
        })


@dataclass(frozen=True)
class HeatmapLayout:
    """Everything a heatmap renderer needs, without rendering anything.

    Attributes:
        values: Ordered z-score DataFrame (markers × samples)
        column_groups: Group label per column, in column order
        gaps: Column positions after which a visual gap separates two groups
        legend: Group labels in layout order (one color each)
        row_keys: Rank key per row, in row order
    """

    values: pd.DataFrame
    column_groups: pd.Series
    gaps: tuple[int, ...]
    legend: tuple[str, ...]
    row_keys: pd.Series

    @classmethod
    def from_ranked(cls, zscores: BioMatrix, ranked: RankedOrder) -> HeatmapLayout:
        ordered = ranked.apply(zscores)
        groups = list(ranked.column_groups)
        gaps = tuple(i for i in range(1, len(groups)) if groups[i] != groups[i - 1])
        legend = tuple(dict.fromkeys(groups))
        return cls(
            values=ordered.to_frame(),
            column_groups=pd.Series(groups, index=list(ranked.column_order), name='group'),
            gaps=gaps,
            legend=legend,
            row_keys=pd.Series(list(ranked.row_keys), index=list(ranked.row_order), name='rank_key'),
        )


def summarize_groups(
    zscores: BioMatrix,
    sample_groups: GroupSpec | SampleGroups,
    group_order: Sequence[str] | None = None,
) -> pd.DataFrame:
    """Mean standardized value per (marker, group); missing values excluded."""
    return group_means(zscores, sample_groups, group_order)


def rank_markers(
    summary: pd.DataFrame,
    reference_group: str,
    extreme_group: str,
) -> tuple[tuple[str, ...], tuple[float, ...]]:
    """
    Order markers by descending extreme − reference mean difference.

    Args:
        summary: Group summary (markers × groups) from summarize_groups
        reference_group: Baseline group column
        extreme_group: Compared group column

    Returns:
        (row_order, row_keys)

    Raises:
        ConfigurationError: If either group is absent from the summary
    """
    for group in (reference_group, extreme_group):
        if group not in summary.columns:
            raise ConfigurationError(
                f"Group '{group}' not found; available groups: {list(summary.columns)}"
            )
    if reference_group == extreme_group:
        raise ConfigurationError("reference_group and extreme_group must differ")

    keys = (summary[extreme_group] - summary[reference_group]).to_numpy(dtype=np.float64)
    undefined = ~np.isfinite(keys)
    if undefined.any():
        logger.debug(
            f"{int(undefined.sum())} marker(s) without a rank key placed last: "
            f"{list(summary.index[undefined])}"
        )
    keys = np.where(undefined, MISSING_RANK_KEY, keys)

    order = np.argsort(-keys, kind="stable")
    return (
        tuple(str(summary.index[i]) for i in order),
        tuple(float(keys[i]) for i in order),
    )


def order_columns(
    zscores: BioMatrix,
    sample_groups: GroupSpec | SampleGroups,
    column_key: ColumnKey = None,
    group_order: Sequence[str] | None = None,
) -> tuple[tuple[str, ...], tuple[float, ...], tuple[str, ...]]:
    """
    Lay out sample columns by group, then by a secondary key within each group.

    Args:
        zscores: Standardized matrix
        sample_groups: Group assignment
        column_key: Metadata column name or Series indexed by sample id used
            as the within-group key. None uses the sample mean z-score.
            Samples with a missing key go last within their group.
        group_order: Optional explicit group order

    Returns:
        (column_order, column_keys, column_groups). Unassigned samples are
        left out of the layout.
    """
    groups = (
        sample_groups
        if isinstance(sample_groups, SampleGroups)
        else resolve_sample_groups(zscores, sample_groups, group_order)
    )

    if column_key is None:
        observed = np.sum(~np.isnan(zscores.data), axis=0)
        totals = np.nansum(zscores.data, axis=0)
        with np.errstate(invalid="ignore", divide="ignore"):
            key_values = np.where(observed > 0, totals / np.maximum(observed, 1), np.nan)
    elif isinstance(column_key, str):
        if column_key not in zscores.sample_metadata.columns:
            raise ConfigurationError(
                f"Column key '{column_key}' not found in sample metadata"
            )
        key_values = pd.to_numeric(
            zscores.sample_metadata[column_key], errors="coerce"
        ).to_numpy(dtype=np.float64)
    else:
        key_series = column_key.copy()
        key_series.index = key_series.index.astype(str)
        key_values = pd.to_numeric(
            key_series.reindex(zscores.sample_ids), errors="coerce"
        ).to_numpy(dtype=np.float64)

    column_order: list[str] = []
    column_keys: list[float] = []
    column_groups: list[str] = []

    for level in groups.levels:
        positions = np.flatnonzero(groups.mask(level))
        level_keys = key_values[positions]
        # NaN keys sort last; argsort on +inf keeps them stable among themselves
        sortable = np.where(np.isnan(level_keys), np.inf, level_keys)
        within = positions[np.argsort(sortable, kind="stable")]
        column_order.extend(str(zscores.sample_ids[i]) for i in within)
        column_keys.extend(float(key_values[i]) for i in within)
        column_groups.extend([level] * len(within))

    n_unassigned = int(np.sum(~groups.assigned))
    if n_unassigned:
        logger.info(f"{n_unassigned} sample(s) without a group left out of the column layout")

    return tuple(column_order), tuple(column_keys), tuple(column_groups)


def rank(
    zscores: BioMatrix,
    sample_groups: GroupSpec,
    reference_group: str,
    extreme_group: str,
    column_key: ColumnKey = None,
    group_order: Sequence[str] | None = None,
) -> RankedOrder:
    """
    Group Aggregator & Ranker: compute row and column permutations.

    Args:
        zscores: ZScoreMatrix (markers × samples)
        sample_groups: Metadata column, Series or sequence of group labels
        reference_group: Baseline group (e.g. "low", "Braak 0-II", decile 1)
        extreme_group: Group compared against the baseline
        column_key: Within-group column sort key (see order_columns)
        group_order: Optional explicit group order for the column layout

    Returns:
        RankedOrder; apply it with ``ranked.apply(zscores)``

    Examples:
        >>> ranked = rank(zscores, "braak_group", reference_group="0-II",
        ...               extreme_group="V-VI", column_key="braak_stage")
        >>> ordered = ranked.apply(zscores)
    """
    groups = resolve_sample_groups(zscores, sample_groups, group_order)
    summary = summarize_groups(zscores, groups)

    row_order, row_keys = rank_markers(summary, str(reference_group), str(extreme_group))
    column_order, column_keys, column_groups = order_columns(zscores, groups, column_key)

    if len(groups.levels) > 2:
        logger.info(
            f"Ranking {len(groups.levels)} groups by {extreme_group} − {reference_group} only; "
            f"intermediate groups {[g for g in groups.levels if g not in (reference_group, extreme_group)]} "
            f"do not affect row order"
        )

    return RankedOrder(
        row_order=row_order,
        row_keys=row_keys,
        column_order=column_order,
        column_keys=column_keys,
        column_groups=column_groups,
        reference_group=str(reference_group),
        extreme_group=str(extreme_group),
    )


def bin_by_quantile(
    values: pd.Series,
    n_bins: int = 10,
    labels: Sequence[str] | None = None,
) -> pd.Series:
    """
    Bucket a continuous covariate into ordered quantile bins.

    Used to turn e.g. CSF p-tau levels into deciles so that the first and last
    decile can serve as reference and extreme groups.

    Args:
        values: Numeric Series indexed by sample id
        n_bins: Number of quantile bins
        labels: Optional bin labels (default "Q1".."Qn")

    Returns:
        Ordered categorical Series; missing values stay missing. Fewer bins
        are returned when repeated values make quantile edges coincide.
    """
    if n_bins < 2:
        raise ConfigurationError(f"n_bins must be at least 2, got {n_bins}")

    numeric = pd.to_numeric(values, errors="coerce")
    binned = pd.qcut(numeric, q=n_bins, duplicates="drop")
    n_actual = len(binned.cat.categories)

    if labels is not None:
        if len(labels) != n_actual:
            raise ConfigurationError(
                f"Got {len(labels)} labels for {n_actual} quantile bins"
            )
        names = [str(label) for label in labels]
    else:
        names = [f"Q{i}" for i in range(1, n_actual + 1)]

    if n_actual < n_bins:
        logger.warning(f"Only {n_actual} distinct quantile bins could be formed (asked for {n_bins})")

    return binned.cat.rename_categories(names)
