"""
Marker filtering transformations for expression matrices.

Provides the first three steps of the Marker Filter & Normalizer:

1. PanelFilter: keep only rows whose (canonical) identifier is in the marker panel
2. IQRDeduplicator: collapse rows that map to the same canonical identifier,
   keeping the row with the greatest interquartile range
3. MissingnessFilter: drop rows whose missing fraction exceeds a threshold

Biological Context:
    Microarray platforms carry several probesets per gene, and proteomics
    search engines can report isoforms or protein groups that collapse onto the
    same gene symbol. The most variable representative is kept, measured by
    IQR so that a single outlying sample does not decide the choice.

    Missingness thresholds are dataset specific: bulk brain proteomics tolerates
    up to half the samples missing, CSF proteomics a third. Transcriptomic
    datasets are loaded complete and skip the filter.

Engineering Design:
    - Pure functions (Transform): input matrix -> output matrix
    - Canonical identifier mapping is shared by the panel filter and the
      deduplicator so both agree on what "the same marker" means
    - Dropped markers are reported through DataQualityWarning and logging,
      never silently
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Union
import numpy as np
import pandas as pd

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.core.exceptions import ConfigurationError, DataQualityWarning, LookupMiss
from markerharmony.core.panel import MarkerPanel
from markerharmony.core.quality import QualityFlag
from markerharmony.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = [
    'DedupKey',
    'canonical_ids',
    'interquartile_range',
    'PanelCoverage',
    'PanelFilter',
    'IQRDeduplicator',
    'MissingnessFilter',
]

DedupKey = Union[Callable[[str], str], Mapping[str, str], None]
"""Maps a raw row identifier to its canonical marker identifier."""


def canonical_ids(feature_ids: pd.Index, dedup_key: DedupKey = None) -> pd.Index:
    """
    Map raw row identifiers to canonical marker identifiers.

    Args:
        feature_ids: Raw row identifiers
        dedup_key: None (identity), a callable, or a mapping. Identifiers
            missing from a mapping keep their raw value.

    Returns:
        Index of canonical identifiers, same length and order as feature_ids
    """
    if dedup_key is None:
        return pd.Index([str(f) for f in feature_ids])
    if callable(dedup_key):
        return pd.Index([str(dedup_key(str(f))) for f in feature_ids])
    return pd.Index([str(dedup_key.get(str(f), f)) for f in feature_ids])


def interquartile_range(data: np.ndarray) -> np.ndarray:
    """
    Per-row IQR over non-missing values (linear interpolation).

    Rows with no observed values get -inf so they lose every comparison.
    """
    iqr = np.full(data.shape[0], -np.inf)
    observed = (~np.isnan(data)).any(axis=1)
    if observed.any():
        q75, q25 = np.nanpercentile(data[observed], [75, 25], axis=1)
        iqr[observed] = q75 - q25
    return iqr


@dataclass
class PanelCoverage:
    """Which panel markers a dataset measures."""
    present: tuple[str, ...]
    missing: tuple[str, ...]
    lookup_misses: list[LookupMiss] = field(default_factory=list)

    @property
    def effective_size(self) -> int:
        """Panel size actually usable downstream (``s``)."""
        return len(self.present)


class PanelFilter(Transform):
    """
    Subset rows to the marker panel.

    Panel markers absent from the matrix are excluded without error; they are
    reported by ``coverage()`` as LookupMiss records and logged at INFO.

    Params:
        panel: MarkerPanel to keep
        dedup_key: Canonical identifier mapping (see canonical_ids)
        dataset: Optional dataset name used in LookupMiss records

    Examples:
        >>> panel_filter = PanelFilter(MarkerPanel(["GFAP", "VIM"]))
        >>> subset = panel_filter.apply(matrix)
        >>> panel_filter.coverage(matrix).missing
        ()
    """

    def __init__(
        self,
        panel: MarkerPanel,
        dedup_key: DedupKey = None,
        dataset: Optional[str] = None,
    ):
        super().__init__(
            name="PanelFilter",
            params={"panel_size": len(panel), "dataset": dataset},
        )
        self.panel = panel
        self.dedup_key = dedup_key
        self.dataset = dataset

    def _keep_mask(self, matrix: BioMatrix) -> np.ndarray:
        canonical = canonical_ids(matrix.feature_ids, self.dedup_key)
        return np.array([c in self.panel for c in canonical], dtype=bool)

    def coverage(self, matrix: BioMatrix) -> PanelCoverage:
        """Report which panel markers the matrix contains, without transforming it."""
        canonical = canonical_ids(matrix.feature_ids, self.dedup_key)
        present = self.panel.intersect(canonical)
        missing = self.panel.missing_from(canonical)
        return PanelCoverage(
            present=present,
            missing=missing,
            lookup_misses=[LookupMiss(marker=m, dataset=self.dataset) for m in missing],
        )

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        keep_mask = self._keep_mask(matrix)
        coverage = self.coverage(matrix)

        if coverage.missing:
            logger.info(
                f"{len(coverage.missing)}/{len(self.panel)} panel markers not measured"
                f"{' in ' + self.dataset if self.dataset else ''}: {list(coverage.missing)}"
            )
        logger.info(
            f"Panel subset: kept {int(keep_mask.sum())}/{matrix.n_features} rows "
            f"covering {coverage.effective_size} panel markers"
        )

        return matrix.select_features(keep_mask)


class IQRDeduplicator(Transform):
    """
    Keep one row per canonical marker identifier.

    Among rows that share a canonical identifier the row with the greatest
    IQR over its non-missing values is kept; ties go to the earliest row.
    Retained rows keep their original relative order and are relabelled with
    the canonical identifier. Rows chosen out of a duplicate group are flagged
    DEDUPLICATED.

    Params:
        dedup_key: Canonical identifier mapping (see canonical_ids)
    """

    def __init__(self, dedup_key: DedupKey = None):
        super().__init__(
            name="IQRDeduplicator",
            params={"dedup_key": type(dedup_key).__name__ if dedup_key is not None else None},
        )
        self.dedup_key = dedup_key

    def select_rows(self, matrix: BioMatrix) -> tuple[np.ndarray, pd.Index]:
        """
        Compute which rows survive deduplication.

        Returns:
            keep_rows: Sorted positional indices of retained rows
            canonical: Canonical identifiers for every input row
        """
        canonical = canonical_ids(matrix.feature_ids, self.dedup_key)
        iqr = interquartile_range(matrix.data)

        groups: dict[str, list[int]] = {}
        for row, key in enumerate(canonical):
            groups.setdefault(key, []).append(row)

        keep_rows = []
        for rows in groups.values():
            # np.argmax returns the first maximum: earliest row wins ties
            best = rows[int(np.argmax(iqr[rows]))]
            keep_rows.append(best)

        return np.array(sorted(keep_rows), dtype=int), canonical

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        keep_rows, canonical = self.select_rows(matrix)

        counts = pd.Series(canonical).value_counts()
        duplicated = set(counts[counts > 1].index)
        if duplicated:
            logger.info(
                f"Deduplicated {len(duplicated)} markers with repeated rows "
                f"({matrix.n_features - len(keep_rows)} rows removed)"
            )

        flags = matrix.quality_flags[keep_rows, :].copy()
        new_ids = canonical[keep_rows]
        for i, marker in enumerate(new_ids):
            if marker in duplicated:
                flags[i, :] |= int(QualityFlag.DEDUPLICATED)

        return BioMatrix(
            data=matrix.data[keep_rows, :].copy(),
            feature_ids=pd.Index(new_ids, name=matrix.feature_ids.name),
            sample_ids=matrix.sample_ids.copy(),
            sample_metadata=matrix.sample_metadata.copy(),
            quality_flags=flags,
        )


class MissingnessFilter(Transform):
    """
    Drop markers whose fraction of missing values exceeds a threshold.

    A marker is kept when ``missing_fraction <= threshold``: with 12 samples
    and a threshold of 0.5, six missing values are tolerated and seven are not.

    Params:
        threshold: Maximum tolerated missing fraction in [0, 1]
        dataset: Optional dataset name for log messages
    """

    def __init__(self, threshold: float, dataset: Optional[str] = None):
        if not 0.0 <= threshold <= 1.0:
            raise ConfigurationError(
                f"missingness threshold must be in [0, 1], got {threshold}"
            )
        super().__init__(
            name="MissingnessFilter",
            params={"threshold": threshold, "dataset": dataset},
        )
        self.threshold = threshold
        self.dataset = dataset

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        fraction = matrix.missing_fraction()
        keep_mask = fraction <= self.threshold
        dropped = list(matrix.feature_ids[~keep_mask])

        if dropped:
            message = (
                f"Dropped {len(dropped)} marker(s) with more than "
                f"{self.threshold:.0%} missing values"
                f"{' in ' + self.dataset if self.dataset else ''}: {dropped}"
            )
            logger.info(message)
            warnings.warn(message, DataQualityWarning, stacklevel=2)

        return matrix.select_features(keep_mask)
