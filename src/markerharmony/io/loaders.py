"""
Loaders for platform-normalized expression tables, marker panels and gene lists.

All platform-specific signal processing (RMA, pseudo-bulk aggregation,
intensity normalization) happens upstream. These loaders only turn the
resulting delimited text files into in-memory values.

Expected matrix layout:
    First column: feature ids (gene symbols, probe ids, protein accessions)
    Remaining columns: sample ids with numerical values; blank = missing

Examples:
    >>> from pathlib import Path
    >>> from markerharmony.io.loaders import load_expression_csv, load_marker_panel
    >>>
    >>> matrix = load_expression_csv(Path("gse5281.csv"), Path("gse5281_samples.csv"))
    >>> panel = load_marker_panel(Path("astrocyte_markers.csv"), column="symbol")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import pandas as pd

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.core.panel import MarkerPanel

logger = logging.getLogger(__name__)

__all__ = [
    'load_expression_csv',
    'load_sample_metadata',
    'load_marker_panel',
    'load_gene_list',
    'load_id_map',
]

_TAB_SUFFIXES = {'.tsv', '.tab'}
_LIST_SUFFIXES = {'.txt', '.list', ''}


def _check_file(path: Path) -> Path:
    if not isinstance(path, Path):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")
    return path


def _delimiter(path: Path) -> str:
    return '\t' if path.suffix.lower() in _TAB_SUFFIXES else ','


def load_sample_metadata(path: Path) -> pd.DataFrame:
    """Read a sample annotation table indexed by its first column (sample id)."""
    path = _check_file(path)
    try:
        metadata = pd.read_csv(path, sep=_delimiter(path), index_col=0)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"Metadata file is empty: {path}") from e
    metadata.index = metadata.index.astype(str)
    metadata.index.name = 'sample_id'
    if metadata.index.duplicated().any():
        raise ValueError(
            f"Duplicate sample ids in metadata {path}: "
            f"{list(metadata.index[metadata.index.duplicated()][:5])}"
        )
    return metadata


def load_expression_csv(path: Path, metadata_path: Optional[Path] = None) -> BioMatrix:
    """
    Load a markers × samples table (CSV or TSV) into a BioMatrix.

    Args:
        path: Expression table; first column holds feature ids
        metadata_path: Optional sample annotation table, reindexed to the
            expression columns. Samples absent from it get missing attributes.

    Returns:
        BioMatrix with missing cells flagged MISSING_ORIGINAL. Repeated
        feature ids are kept; IQR deduplication resolves them downstream.

    Raises:
        FileNotFoundError: If a path does not exist
        ValueError: Empty table, non-numeric or infinite values
    """
    path = _check_file(path)

    try:
        df = pd.read_csv(path, sep=_delimiter(path), index_col=0)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"Expression file is empty: {path}") from e

    if df.shape[0] == 0:
        raise ValueError(f"Expression file contains no features (rows): {path}")
    if df.shape[1] == 0:
        raise ValueError(f"Expression file contains no samples (columns): {path}")

    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ValueError(
            f"Expression file {path} has non-numeric sample columns: {non_numeric[:5]}"
        )

    if np.isinf(df.to_numpy(dtype=np.float64)).any():
        raise ValueError(f"Expression file {path} contains infinite values")

    metadata = load_sample_metadata(metadata_path) if metadata_path is not None else None
    if metadata is not None:
        unannotated = pd.Index(df.columns.astype(str)).difference(metadata.index)
        if len(unannotated):
            logger.warning(
                f"{len(unannotated)} sample(s) in {path.name} have no metadata row: "
                f"{list(unannotated[:5])}"
            )

    matrix = BioMatrix.from_frame(df, sample_metadata=metadata)
    n_missing = int(np.isnan(matrix.data).sum())
    logger.info(
        f"Loaded {matrix.n_features} features × {matrix.n_samples} samples from {path.name}"
        f"{f' ({n_missing:,} missing values)' if n_missing else ''}"
    )
    return matrix


def _read_identifiers(path: Path, column: Optional[str]) -> list[str]:
    if path.suffix.lower() in _LIST_SUFFIXES and column is None:
        with open(path, 'r', encoding='utf-8') as f:
            values = [line.strip() for line in f]
        return [v for v in values if v and not v.startswith('#')]

    df = pd.read_csv(path, sep=_delimiter(path), dtype=str)
    if df.shape[1] == 0:
        raise ValueError(f"No columns in {path}")
    if column is None:
        series = df.iloc[:, 0]
    elif column in df.columns:
        series = df[column]
    else:
        raise ValueError(f"Column '{column}' not found in {path}. Available: {list(df.columns)}")
    return [v.strip() for v in series.dropna() if v.strip()]


def load_marker_panel(path: Path, column: Optional[str] = None) -> MarkerPanel:
    """
    Load the marker panel from a CSV/TSV table or a one-per-line text file.

    Args:
        path: Panel definition file
        column: Column holding the identifiers (default: first column)

    Returns:
        MarkerPanel in file order, first occurrence of repeated ids kept
    """
    path = _check_file(path)
    identifiers = _read_identifiers(path, column)
    panel = MarkerPanel(identifiers, name=path.stem)
    if len(panel) < len(identifiers):
        logger.info(f"Panel {path.name}: dropped {len(identifiers) - len(panel)} repeated id(s)")
    logger.info(f"Loaded marker panel '{panel.name}' with {len(panel)} markers")
    return panel


def load_gene_list(path: Path, column: Optional[str] = None) -> frozenset[str]:
    """Load a target gene/protein list (e.g. one study's DE genes) as a set."""
    path = _check_file(path)
    genes = frozenset(_read_identifiers(path, column))
    logger.info(f"Loaded {len(genes)} identifiers from {path.name}")
    return genes


def load_id_map(path: Path) -> Dict[str, str]:
    """
    Load a raw id → canonical id table (e.g. probe set → gene symbol).

    The first two columns are used. Rows with a blank canonical id are
    skipped, so those raw ids keep their own identity during deduplication.
    """
    path = _check_file(path)
    df = pd.read_csv(path, sep=_delimiter(path), dtype=str)
    if df.shape[1] < 2:
        raise ValueError(f"Identifier map {path} needs two columns (raw id, canonical id)")
    pairs = df.iloc[:, :2].dropna()
    mapping = {raw.strip(): canonical.strip() for raw, canonical in pairs.itertuples(index=False)}
    logger.info(f"Loaded {len(mapping)} identifier mappings from {path.name}")
    return mapping
