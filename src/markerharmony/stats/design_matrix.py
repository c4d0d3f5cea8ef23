"""
Sample group assignment shared by the differential engine and the ranker.

A group assignment can come from a metadata column name, a Series keyed by
sample id, or a plain sequence aligned with the matrix columns. All three are
resolved to one SampleGroups value so that both the two-group engine and the
multi-group ranker see identical labels and the same group order.

Group order:
    1. An explicit ``group_order`` (e.g. Braak stage 0-II, III-IV, V-VI)
    2. Category order for pandas Categorical labels
    3. Order of first appearance across the matrix columns

Samples with a missing label are excluded from every group.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.core.exceptions import ConfigurationError

__all__ = [
    'GroupSpec',
    'SampleGroups',
    'resolve_sample_groups',
    'group_means',
]

GroupSpec = Union[str, pd.Series, Sequence]
"""Metadata column name, Series indexed by sample id, or column-aligned sequence."""


@dataclass(frozen=True)
class SampleGroups:
    """Resolved group labels for the columns of one matrix.

    Attributes:
        labels: Group label per sample, indexed by sample id (NaN = unassigned).
        levels: Ordered distinct labels that have at least one sample.
    """

    labels: pd.Series
    levels: tuple[str, ...]

    def mask(self, level: str) -> NDArray[np.bool_]:
        """Boolean column mask for one group."""
        return (self.labels == level).to_numpy(dtype=bool)

    def sizes(self) -> dict[str, int]:
        return {level: int(self.mask(level).sum()) for level in self.levels}

    @property
    def assigned(self) -> NDArray[np.bool_]:
        return self.labels.notna().to_numpy(dtype=bool)


def resolve_sample_groups(
    matrix: BioMatrix,
    sample_groups: GroupSpec,
    group_order: Sequence[str] | None = None,
) -> SampleGroups:
    """
    Align a group assignment with the matrix columns.

    Args:
        matrix: Matrix whose columns are being grouped
        sample_groups: Metadata column name, Series indexed by sample id,
            or sequence with one label per column
        group_order: Optional explicit level order. Levels not present in the
            data are skipped; present levels missing from the order raise.

    Returns:
        SampleGroups with labels indexed by matrix.sample_ids

    Raises:
        ConfigurationError: Unknown metadata column, misaligned sequence, or
            a group_order that omits observed labels
    """
    if isinstance(sample_groups, str):
        if sample_groups not in matrix.sample_metadata.columns:
            raise ConfigurationError(
                f"Group column '{sample_groups}' not found in sample metadata. "
                f"Available: {list(matrix.sample_metadata.columns)}"
            )
        labels = matrix.sample_metadata[sample_groups]
    elif isinstance(sample_groups, pd.Series):
        labels = sample_groups.copy()
        labels.index = labels.index.astype(str)
        missing = matrix.sample_ids.difference(labels.index)
        if len(missing) == len(matrix.sample_ids) and len(labels) == matrix.n_samples:
            raise ConfigurationError(
                "Group Series index does not match any sample id; "
                "pass a list to assign labels by position"
            )
        labels = labels.reindex(matrix.sample_ids)
    else:
        values = list(sample_groups)
        if len(values) != matrix.n_samples:
            raise ConfigurationError(
                f"Got {len(values)} group labels for {matrix.n_samples} samples"
            )
        labels = pd.Series(values, index=matrix.sample_ids)

    labels = labels.copy()
    labels.index = matrix.sample_ids

    if isinstance(labels.dtype, pd.CategoricalDtype):
        categories = [str(c) for c in labels.cat.categories]
        labels = labels.astype(object)
    else:
        categories = None

    labels = labels.where(labels.isna(), labels.astype(str))
    observed = list(dict.fromkeys(labels.dropna()))

    if group_order is not None:
        order = [str(g) for g in group_order]
        unknown = [g for g in observed if g not in order]
        if unknown:
            raise ConfigurationError(
                f"Groups {unknown} are not listed in group_order {order}"
            )
        levels = tuple(g for g in order if g in observed)
    elif categories is not None:
        levels = tuple(c for c in categories if c in observed)
    else:
        levels = tuple(observed)

    return SampleGroups(labels=labels, levels=levels)


def group_means(
    matrix: BioMatrix,
    sample_groups: GroupSpec | SampleGroups,
    group_order: Sequence[str] | None = None,
) -> pd.DataFrame:
    """
    Unshrunk per-group mean of each marker, ignoring missing values.

    Used for multi-group designs (Braak stages, covariate deciles) where only
    a ranking signal is needed and no significance is claimed.

    Returns:
        DataFrame markers × groups (columns in group order). A group with no
        observed value for a marker yields NaN.
    """
    groups = (
        sample_groups
        if isinstance(sample_groups, SampleGroups)
        else resolve_sample_groups(matrix, sample_groups, group_order)
    )

    means = {}
    for level in groups.levels:
        block = matrix.data[:, groups.mask(level)]
        n_obs = np.sum(~np.isnan(block), axis=1)
        totals = np.nansum(block, axis=1)
        with np.errstate(invalid="ignore", divide="ignore"):
            means[level] = np.where(n_obs > 0, totals / np.maximum(n_obs, 1), np.nan)

    return pd.DataFrame(means, index=matrix.feature_ids.copy(), columns=list(groups.levels))
