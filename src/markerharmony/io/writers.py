"""
CSV writers for pipeline results.

Every writer takes a result value and a path, creates missing parent
directories and overwrites existing files. Values are written as-is; missing
numbers become empty cells.

Output tables:
    write_zscores       markers × samples z-scores (+ optional .flags.csv)
    write_differential  one row per marker: effect, se, t, df, p, adj p, CI
    write_enrichment    one row per target list: overlap, expected, fold, p
    write_ranked_order  row ranking and column layout, two files

Examples:
    >>> from markerharmony.io.writers import write_zscores, write_differential
    >>> write_zscores(result.zscores, Path("out/gse5281"))
    >>> write_differential(result.differential, Path("out/gse5281.differential.csv"))
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.stats.differential import DifferentialTable
from markerharmony.stats.ranking import RankedOrder
from markerharmony.validation.enrichment_tests import EnrichmentReport, EnrichmentResult

logger = logging.getLogger(__name__)

__all__ = ['write_zscores', 'write_differential', 'write_enrichment', 'write_ranked_order']


def _prepare(path: Path) -> Path:
    if not isinstance(path, Path):
        path = Path(path)
    if path.parent != Path('.') and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _to_csv(df: pd.DataFrame, path: Path, index: bool) -> None:
    try:
        df.to_csv(path, index=index)
    except OSError as e:
        raise OSError(f"Failed to write {path}: {e}") from e
    logger.info(f"Wrote {path}")


def write_zscores(matrix: BioMatrix, path: Path, write_quality_flags: bool = True) -> None:
    """
    Write a z-score matrix as ``{path}.zscores.csv`` and ``{path}.flags.csv``.

    The flags file holds QualityFlag bit combinations (0 = original,
    1 = missing in input, 2 = zero variance, 4 = deduplicated row).
    """
    if not isinstance(matrix, BioMatrix):
        raise TypeError(f"matrix must be BioMatrix, got {type(matrix)}")
    path = _prepare(path)

    _to_csv(matrix.to_frame(), Path(str(path) + ".zscores.csv"), index=True)

    if write_quality_flags:
        flags = pd.DataFrame(
            matrix.quality_flags,
            index=matrix.feature_ids,
            columns=matrix.sample_ids,
        )
        _to_csv(flags, Path(str(path) + ".flags.csv"), index=True)


def write_differential(table: DifferentialTable, path: Path) -> None:
    """Write a DifferentialTable, one row per marker in table order."""
    path = _prepare(path)
    _to_csv(table.to_dataframe(), path, index=False)


def write_enrichment(report: EnrichmentReport | EnrichmentResult, path: Path) -> None:
    """Write an EnrichmentReport (or a single EnrichmentResult) as one row per test."""
    path = _prepare(path)
    if isinstance(report, EnrichmentResult):
        df = pd.DataFrame([report.to_dict()])
    else:
        df = report.to_dataframe()
    _to_csv(df, path, index=False)


def write_ranked_order(ranked: RankedOrder, path: Path) -> None:
    """Write ``{path}.rows.csv`` (marker ranking) and ``{path}.columns.csv`` (sample layout)."""
    path = _prepare(path)
    _to_csv(ranked.row_frame(), Path(str(path) + ".rows.csv"), index=False)
    _to_csv(ranked.column_frame(), Path(str(path) + ".columns.csv"), index=False)
