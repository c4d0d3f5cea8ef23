"""
Per-marker standardization (z-scores) and the composed normalize() stage.

Z-scoring each marker row independently removes platform and scale so that a
microarray log-intensity, a single-nucleus pseudo-bulk log-count and a CSF
protein abundance can share one heatmap and one ranking rule.

Definition:
    z_ij = (x_ij - mean_j(x_i)) / sd_j(x_i)

computed over the non-missing entries of row i only. The standard deviation
uses ddof=1, matching R's scale(). Missing inputs stay missing.

A row whose standard deviation is zero (or undefined because fewer than two
values are observed) has no meaningful standardization. Its z-scores are all
missing and flagged ZERO_VARIANCE; they are never coerced to zero, which would
falsely place the marker at the population mean in every sample.
"""

from __future__ import annotations

import logging
import warnings
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.core.exceptions import DataQualityWarning
from markerharmony.core.panel import MarkerPanel
from markerharmony.core.quality import QualityFlag
from markerharmony.core.transform import Transform, apply_chain
from markerharmony.quality.filtering import (
    DedupKey,
    IQRDeduplicator,
    MissingnessFilter,
    PanelFilter,
)

logger = logging.getLogger(__name__)

__all__ = ['row_zscores', 'ZScoreTransform', 'filter_markers', 'normalize']


def row_zscores(data: NDArray[np.float64]) -> tuple[NDArray[np.float64], NDArray[np.bool_]]:
    """
    Standardize each row over its non-missing values.

    Args:
        data: Matrix (n_features, n_samples), NaN = missing

    Returns:
        Tuple (zscores, undefined):
        - zscores: Standardized matrix, NaN where input is missing or the
          row is constant
        - undefined: Boolean mask (n_features,) of rows whose standard
          deviation is zero or undefined
    """
    n_obs = np.sum(~np.isnan(data), axis=1)
    zscores = np.full(data.shape, np.nan)
    undefined = np.ones(data.shape[0], dtype=bool)

    usable = n_obs >= 2
    if usable.any():
        rows = data[usable]
        mean = np.nanmean(rows, axis=1, keepdims=True)
        sd = np.nanstd(rows, axis=1, ddof=1, keepdims=True)
        # range, not sd, decides constancy: sd of identical floats can be 1e-17
        spread = np.nanmax(rows, axis=1) - np.nanmin(rows, axis=1)
        valid_sd = np.isfinite(sd[:, 0]) & (sd[:, 0] > 0) & (spread > 0)

        scaled = np.full(rows.shape, np.nan)
        scaled[valid_sd] = (rows[valid_sd] - mean[valid_sd]) / sd[valid_sd]
        zscores[usable] = scaled

        usable_idx = np.flatnonzero(usable)
        undefined[usable_idx[valid_sd]] = False

    return zscores, undefined


class ZScoreTransform(Transform):
    """
    Standardize every marker row to mean 0 and unit variance.

    Constant rows become all-missing and flagged ZERO_VARIANCE; one
    DataQualityWarning lists them.
    """

    def __init__(self):
        super().__init__(name="ZScoreTransform", params={"ddof": 1})

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        zscores, undefined = row_zscores(matrix.data)

        flags = matrix.quality_flags.copy()
        if undefined.any():
            flags[undefined, :] |= int(QualityFlag.ZERO_VARIANCE)
            constant = list(matrix.feature_ids[undefined])
            message = (
                f"{len(constant)} marker(s) have zero or undefined variance; "
                f"their z-scores are missing: {constant}"
            )
            logger.warning(message)
            warnings.warn(message, DataQualityWarning, stacklevel=2)

        return matrix.with_values(zscores, quality_flags=flags)


def filter_markers(
    matrix: BioMatrix,
    panel: MarkerPanel,
    dedup_key: DedupKey = None,
    missingness_threshold: Optional[float] = None,
    dataset: Optional[str] = None,
) -> BioMatrix:
    """Panel subset, IQR deduplication and optional missingness filter, on the original scale.

    This is normalize() without the final standardization; the differential
    engine runs on its output so that per-marker variances are preserved.
    """
    transforms: list[Transform] = [
        PanelFilter(panel, dedup_key=dedup_key, dataset=dataset),
        IQRDeduplicator(dedup_key),
    ]
    if missingness_threshold is not None:
        transforms.append(MissingnessFilter(missingness_threshold, dataset=dataset))

    logger.debug("Filtering with " + " -> ".join(str(t) for t in transforms))
    return apply_chain(matrix, transforms)


def normalize(
    matrix: BioMatrix,
    panel: MarkerPanel,
    dedup_key: DedupKey = None,
    missingness_threshold: Optional[float] = None,
    dataset: Optional[str] = None,
) -> BioMatrix:
    """
    Marker Filter & Normalizer: panel subset → dedupe → missingness → z-score.

    Args:
        matrix: Platform-normalized expression matrix (not modified)
        panel: Marker panel; markers absent from the matrix are skipped
        dedup_key: Canonical identifier mapping for repeated rows
        missingness_threshold: Maximum tolerated missing fraction per marker,
            or None to skip the missingness filter
        dataset: Optional dataset name for log messages

    Returns:
        ZScoreMatrix (a new BioMatrix) with one row per retained panel marker

    Examples:
        >>> zscores = normalize(matrix, MarkerPanel(["GFAP", "S100B", "VIM"]),
        ...                     missingness_threshold=0.5)
        >>> zscores.n_features  # effective panel size after filtering
        3
    """
    filtered = filter_markers(
        matrix,
        panel,
        dedup_key=dedup_key,
        missingness_threshold=missingness_threshold,
        dataset=dataset,
    )
    return apply_chain(filtered, [ZScoreTransform()])
