"""
Per-dataset orchestration: filter → normalize → compare → rank, for each study.

Each dataset (microarray, single-nucleus, bulk or CSF proteomics) runs the
same parameterized pipeline; only its DatasetConfig differs. Pipelines share
no mutable state, so several can run on a thread pool. A dataset that fails
with a MarkerHarmonyError is recorded on its DatasetResult and does not stop
the others.

Examples:
    >>> from markerharmony.pipeline import DatasetConfig, run_datasets
    >>>
    >>> configs = [
    ...     DatasetConfig.from_preset("microarray", name="GSE5281",
    ...                               group_column="pathology",
    ...                               reference_group="low", extreme_group="high"),
    ...     DatasetConfig.from_preset("csf_proteomics", name="CSF",
    ...                               group_column="ptau_decile", bin_column="ptau",
    ...                               reference_group="Q1", extreme_group="Q10"),
    ... ]
    >>> results = run_datasets([(array_matrix, configs[0]), (csf_matrix, configs[1])],
    ...                        panel, max_workers=2)
    >>> [r.name for r in results if r.ok]
    ['GSE5281', 'CSF']
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.core.exceptions import ConfigurationError, LookupMiss, MarkerHarmonyError
from markerharmony.core.panel import MarkerPanel
from markerharmony.core.transform import apply_chain
from markerharmony.quality.filtering import DedupKey, PanelCoverage, PanelFilter
from markerharmony.stats.differential import DifferentialTable, compare_two_groups
from markerharmony.stats.normalization import ZScoreTransform, filter_markers
from markerharmony.stats.ranking import HeatmapLayout, RankedOrder, bin_by_quantile, rank
from markerharmony.validation.enrichment_tests import DEFAULT_POPULATION_SIZE

logger = logging.getLogger(__name__)

__all__ = [
    'DEFAULT_POPULATION_SIZE',
    'DATASET_PRESETS',
    'DatasetConfig',
    'DatasetResult',
    'run_dataset',
    'run_datasets',
]

DATASET_PRESETS: Dict[str, Dict[str, Any]] = {
    'microarray': {
        'missingness_threshold': None,
    },
    'single_cell': {
        'missingness_threshold': None,
    },
    'bulk_proteomics': {
        'missingness_threshold': 0.5,
    },
    'csf_proteomics': {
        'missingness_threshold': 0.33,
        'n_bins': 10,
        'compare': False,
    },
}
"""Platform defaults; any field can be overridden per dataset."""


@dataclass
class DatasetConfig:
    """
    Everything that distinguishes one dataset's pipeline from another's.

    Attributes:
        name: Dataset label used in logs, lookup misses and output files
        group_column: Sample metadata column holding the group labels
        reference_group: Baseline group for ranking and comparison
        extreme_group: Group compared against the baseline
        missingness_threshold: Maximum missing fraction per marker, or None
        dedup_key: Canonical id mapping for repeated rows (probes, isoforms)
        column_key: Metadata column ordering samples within a group
        group_order: Explicit left-to-right group order
        compare: Run the moderated two-group comparison of extreme vs reference
        bin_column: Continuous metadata column to bin into group_column
        n_bins: Number of quantile bins when bin_column is set
    """
    name: str
    group_column: str
    reference_group: str
    extreme_group: str
    missingness_threshold: Optional[float] = None
    dedup_key: DedupKey = None
    column_key: Optional[str] = None
    group_order: Optional[List[str]] = None
    compare: bool = True
    bin_column: Optional[str] = None
    n_bins: int = 10

    def __post_init__(self):
        self.reference_group = str(self.reference_group)
        self.extreme_group = str(self.extreme_group)
        if self.reference_group == self.extreme_group:
            raise ConfigurationError(
                f"[{self.name}] reference_group and extreme_group must differ"
            )
        if self.missingness_threshold is not None and not 0.0 <= self.missingness_threshold <= 1.0:
            raise ConfigurationError(
                f"[{self.name}] missingness_threshold must be in [0, 1], "
                f"got {self.missingness_threshold}"
            )
        if self.bin_column is not None and self.n_bins < 2:
            raise ConfigurationError(f"[{self.name}] n_bins must be at least 2, got {self.n_bins}")

    @classmethod
    def from_preset(cls, preset: str, **overrides: Any) -> DatasetConfig:
        """Build a config from a platform preset, overriding any field."""
        if preset not in DATASET_PRESETS:
            raise ConfigurationError(
                f"Unknown dataset preset '{preset}'. Available: {sorted(DATASET_PRESETS)}"
            )
        values = dict(DATASET_PRESETS[preset])
        values.update(overrides)
        return cls(**values)


@dataclass
class DatasetResult:
    """Outcome of one dataset pipeline; ``error`` is set when it failed."""
    name: str
    config: DatasetConfig
    coverage: Optional[PanelCoverage] = None
    zscores: Optional[BioMatrix] = None
    ranked: Optional[RankedOrder] = None
    layout: Optional[HeatmapLayout] = None
    differential: Optional[DifferentialTable] = None
    error: Optional[MarkerHarmonyError] = None
    lookup_misses: List[LookupMiss] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def effective_panel(self) -> Tuple[str, ...]:
        """Panel markers retained after filtering, in panel order."""
        if self.zscores is None:
            return ()
        return tuple(self.zscores.feature_ids)


def _with_binned_groups(matrix: BioMatrix, config: DatasetConfig) -> BioMatrix:
    metadata = matrix.sample_metadata
    if config.bin_column not in metadata.columns:
        raise ConfigurationError(
            f"[{config.name}] bin column '{config.bin_column}' not found in sample metadata"
        )
    binned = bin_by_quantile(metadata[config.bin_column], n_bins=config.n_bins)
    metadata = metadata.copy()
    metadata[config.group_column] = binned
    logger.info(
        f"[{config.name}] Binned '{config.bin_column}' into {len(binned.cat.categories)} "
        f"quantile groups stored as '{config.group_column}'"
    )
    return BioMatrix(
        data=matrix.data,
        feature_ids=matrix.feature_ids,
        sample_ids=matrix.sample_ids,
        sample_metadata=metadata,
        quality_flags=matrix.quality_flags,
    )


def run_dataset(
    matrix: BioMatrix,
    panel: MarkerPanel,
    config: DatasetConfig,
) -> DatasetResult:
    """
    Run one dataset through the full pipeline.

    Args:
        matrix: Platform-normalized expression matrix with sample metadata
        panel: Marker panel shared by all datasets
        config: This dataset's configuration

    Returns:
        DatasetResult with coverage, z-scores, ranking, heatmap layout and,
        when ``config.compare`` is set, the differential table

    Raises:
        MarkerHarmonyError: Any configuration or sample-size problem
    """
    logger.info(f"[{config.name}] {matrix.n_features} features × {matrix.n_samples} samples")

    if config.bin_column is not None:
        matrix = _with_binned_groups(matrix, config)

    coverage = PanelFilter(panel, dedup_key=config.dedup_key, dataset=config.name).coverage(matrix)

    filtered = filter_markers(
        matrix,
        panel,
        dedup_key=config.dedup_key,
        missingness_threshold=config.missingness_threshold,
        dataset=config.name,
    )
    zscores = apply_chain(filtered, [ZScoreTransform()])

    ranked = rank(
        zscores,
        config.group_column,
        reference_group=config.reference_group,
        extreme_group=config.extreme_group,
        column_key=config.column_key,
        group_order=config.group_order,
    )
    layout = HeatmapLayout.from_ranked(zscores, ranked)

    differential = None
    if config.compare:
        labels = filtered.sample_metadata[config.group_column].astype(object)
        in_contrast = labels.astype(str).isin([config.extreme_group, config.reference_group])
        two_groups = labels.where(labels.notna() & in_contrast)
        differential = compare_two_groups(
            filtered,
            pd.Series(two_groups.to_numpy(), index=filtered.sample_ids),
            contrast=(config.extreme_group, config.reference_group),
        )
        logger.info(
            f"[{config.name}] {len(differential.significant_features())}/{len(differential)} "
            f"markers significant for {differential.contrast_name} (adj p < 0.05)"
        )

    return DatasetResult(
        name=config.name,
        config=config,
        coverage=coverage,
        zscores=zscores,
        ranked=ranked,
        layout=layout,
        differential=differential,
        lookup_misses=list(coverage.lookup_misses),
    )


def _run_isolated(matrix: BioMatrix, panel: MarkerPanel, config: DatasetConfig) -> DatasetResult:
    try:
        return run_dataset(matrix, panel, config)
    except MarkerHarmonyError as e:
        logger.error(f"[{config.name}] Dataset pipeline failed: {e}")
        return DatasetResult(name=config.name, config=config, error=e)


def run_datasets(
    datasets: Sequence[Tuple[BioMatrix, DatasetConfig]],
    panel: MarkerPanel,
    max_workers: Optional[int] = None,
) -> List[DatasetResult]:
    """
    Run independent dataset pipelines, optionally in parallel.

    Args:
        datasets: (matrix, config) pairs, one per dataset
        panel: Marker panel shared by all datasets
        max_workers: Thread pool size; 1 runs sequentially, None lets the
            executor choose

    Returns:
        One DatasetResult per input, in input order. Datasets that raised a
        MarkerHarmonyError carry it in ``error``; other exceptions propagate.
    """
    names = [config.name for _, config in datasets]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Dataset names must be unique, got duplicates: {duplicates}")

    if max_workers == 1 or len(datasets) <= 1:
        results = [_run_isolated(matrix, panel, config) for matrix, config in datasets]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(_run_isolated, matrix, panel, config)
                for matrix, config in datasets
            ]
            results = [future.result() for future in futures]

    n_failed = sum(1 for r in results if not r.ok)
    if n_failed:
        logger.warning(f"{n_failed}/{len(results)} dataset pipeline(s) failed: "
                       f"{[r.name for r in results if not r.ok]}")
    else:
        logger.info(f"All {len(results)} dataset pipeline(s) completed")

    return results

