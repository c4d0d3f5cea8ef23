"""
Core data structure for marker-by-sample expression matrices.

BioMatrix unifies numerical data (intensities, log expression, z-scores) with
sample metadata (group labels, batch, covariates) and per-value quality flags.
It is the ExpressionMatrix handed over by the loading collaborator and, after
standardization, the ZScoreMatrix handed to the ranker and the visualization
collaborator.

Biological Context:
    Expression matrices are the common currency of all three source studies:
    - Rows = markers (gene or protein symbols)
    - Columns = samples (donors, cells aggregated to pseudo-bulk, CSF draws)
    - Values = platform-normalized measurements; NaN means "no data", never zero

    The studies differ in platform and scale, but once reduced to a matrix plus
    sample metadata the same filter, normalize, compare and rank steps apply.

Engineering Design:
    - Immutable: operations return new instances (functional style)
    - Type-safe: NumPy float arrays for data, Pandas for identifiers and metadata
    - Validated: constructor checks shape and index consistency

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from markerharmony.core.biomatrix import BioMatrix
    >>>
    >>> frame = pd.DataFrame(
    ...     [[1.0, 2.0], [3.0, np.nan]],
    ...     index=["GFAP", "VIM"],
    ...     columns=["S1", "S2"],
    ... )
    >>> metadata = pd.DataFrame({"group": ["low", "high"]}, index=["S1", "S2"])
    >>> matrix = BioMatrix.from_frame(frame, metadata)
    >>> high = matrix.select_samples(matrix.sample_metadata["group"] == "high")
"""

from __future__ import annotations

from typing import Sequence
import numpy as np
import pandas as pd
from markerharmony.core.quality import QualityFlag

__all__ = ['BioMatrix']


class BioMatrix:
    """
    Immutable container for expression matrix + sample metadata + quality flags.

    Attributes:
        data: Numerical matrix (markers × samples), float, NaN = missing
        feature_ids: Row identifiers (marker symbols)
        sample_ids: Column identifiers
        sample_metadata: Sample annotations indexed by sample_ids
        quality_flags: Per-value QualityFlag bits (same shape as data)

    Shape Invariants:
        - data.shape[0] == len(feature_ids)
        - data.shape[1] == len(sample_ids)
        - quality_flags.shape == data.shape
        - sample_metadata.index equals sample_ids
    """

    def __init__(
        self,
        data: np.ndarray,
        feature_ids: pd.Index,
        sample_ids: pd.Index,
        sample_metadata: pd.DataFrame,
        quality_flags: np.ndarray,
    ):
        """
        Initialize BioMatrix with validation.

        Args:
            data: Expression matrix (markers × samples)
            feature_ids: Row identifiers
            sample_ids: Column identifiers
            sample_metadata: DataFrame with index matching sample_ids
            quality_flags: QualityFlag matrix (same shape as data)

        Raises:
            ValueError: If shapes are inconsistent or indices don't match
            TypeError: If argument types are incorrect
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if not isinstance(feature_ids, pd.Index):
            raise TypeError(f"feature_ids must be pd.Index, got {type(feature_ids)}")
        if not isinstance(sample_ids, pd.Index):
            raise TypeError(f"sample_ids must be pd.Index, got {type(sample_ids)}")
        if not isinstance(sample_metadata, pd.DataFrame):
            raise TypeError(f"sample_metadata must be pd.DataFrame, got {type(sample_metadata)}")
        if not isinstance(quality_flags, np.ndarray):
            raise TypeError(f"quality_flags must be np.ndarray, got {type(quality_flags)}")

        if data.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {data.shape}")
        if quality_flags.shape != data.shape:
            raise ValueError(
                f"quality_flags shape {quality_flags.shape} must match data shape {data.shape}"
            )

        n_features, n_samples = data.shape

        if len(feature_ids) != n_features:
            raise ValueError(
                f"feature_ids length ({len(feature_ids)}) must match data rows ({n_features})"
            )
        if len(sample_ids) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_ids)}) must match data columns ({n_samples})"
            )
        if not sample_metadata.index.equals(sample_ids):
            raise ValueError(
                "sample_metadata.index must match sample_ids exactly. "
                f"Got {len(sample_metadata.index)} metadata rows for {len(sample_ids)} samples."
            )
        if sample_ids.has_duplicates:
            raise ValueError("sample_ids must be unique")

        self._data = data.astype(np.float64, copy=False)
        self._feature_ids = feature_ids
        self._sample_ids = sample_ids
        self._sample_metadata = sample_metadata
        self._quality_flags = quality_flags

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        sample_metadata: pd.DataFrame | None = None,
    ) -> BioMatrix:
        """
        Build a BioMatrix from a markers × samples DataFrame.

        Missing cells are flagged MISSING_ORIGINAL. Metadata is reindexed to
        the frame's columns; samples without metadata get NaN attributes.

        Args:
            frame: Numeric DataFrame, index = marker ids, columns = sample ids
            sample_metadata: Optional DataFrame indexed by sample id

        Returns:
            New BioMatrix
        """
        data = frame.to_numpy(dtype=np.float64, copy=True)
        sample_ids = pd.Index(frame.columns.astype(str), name="sample_id")
        feature_ids = pd.Index(frame.index.astype(str), name="feature_id")

        if sample_metadata is None:
            metadata = pd.DataFrame(index=sample_ids)
        else:
            metadata = sample_metadata.copy()
            metadata.index = metadata.index.astype(str)
            metadata = metadata.reindex(sample_ids)
            metadata.index = sample_ids

        flags = np.where(np.isnan(data), int(QualityFlag.MISSING_ORIGINAL), int(QualityFlag.ORIGINAL))

        return cls(
            data=data,
            feature_ids=feature_ids,
            sample_ids=sample_ids,
            sample_metadata=metadata,
            quality_flags=flags.astype(int),
        )

    @property
    def data(self) -> np.ndarray:
        """Expression matrix (markers × samples)."""
        return self._data

    @property
    def feature_ids(self) -> pd.Index:
        """Row identifiers (marker symbols)."""
        return self._feature_ids

    @property
    def sample_ids(self) -> pd.Index:
        """Column identifiers."""
        return self._sample_ids

    @property
    def sample_metadata(self) -> pd.DataFrame:
        """Sample annotations."""
        return self._sample_metadata

    @property
    def quality_flags(self) -> np.ndarray:
        """Quality tracking matrix (same shape as data)."""
        return self._quality_flags

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_features, n_samples)."""
        return self._data.shape

    @property
    def n_features(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    def missing_fraction(self) -> np.ndarray:
        """Fraction of missing values per row (n_features,)."""
        if self.n_samples == 0:
            return np.zeros(self.n_features)
        return np.isnan(self._data).mean(axis=1)

    def select_samples(self, mask: np.ndarray | pd.Series) -> BioMatrix:
        """
        Subset matrix by samples (columns).

        Args:
            mask: Boolean array/Series indicating which samples to keep
                If Series, uses values and ignores index

        Returns:
            New BioMatrix with selected samples

        Raises:
            ValueError: If mask length doesn't match n_samples
        """
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)

        if len(mask) != self.n_samples:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_samples ({self.n_samples})"
            )

        return BioMatrix(
            data=self._data[:, mask].copy(),
            feature_ids=self._feature_ids,
            sample_ids=self._sample_ids[mask],
            sample_metadata=self._sample_metadata.loc[self._sample_ids[mask]].copy(),
            quality_flags=self._quality_flags[:, mask].copy(),
        )

    def select_features(self, mask: np.ndarray | pd.Series) -> BioMatrix:
        """
        Subset matrix by features (rows).

        Args:
            mask: Boolean array/Series indicating which markers to keep

        Returns:
            New BioMatrix with selected markers

        Raises:
            ValueError: If mask length doesn't match n_features
        """
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)

        if len(mask) != self.n_features:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_features ({self.n_features})"
            )

        return BioMatrix(
            data=self._data[mask, :].copy(),
            feature_ids=self._feature_ids[mask],
            sample_ids=self._sample_ids,
            sample_metadata=self._sample_metadata.copy(),
            quality_flags=self._quality_flags[mask, :].copy(),
        )

    def reorder(
        self,
        feature_order: Sequence[str] | None = None,
        sample_order: Sequence[str] | None = None,
    ) -> BioMatrix:
        """
        Return a new matrix with rows and/or columns permuted.

        Identifiers not listed in an order are dropped from the result, so an
        order may also act as a subset. Unknown identifiers raise KeyError.

        Args:
            feature_order: Marker ids in the desired row order
            sample_order: Sample ids in the desired column order
        """
        rows = (
            np.arange(self.n_features)
            if feature_order is None
            else self._positions(self._feature_ids, feature_order, "feature")
        )
        cols = (
            np.arange(self.n_samples)
            if sample_order is None
            else self._positions(self._sample_ids, sample_order, "sample")
        )
        sample_ids = self._sample_ids[cols]
        return BioMatrix(
            data=self._data[np.ix_(rows, cols)].copy(),
            feature_ids=self._feature_ids[rows],
            sample_ids=sample_ids,
            sample_metadata=self._sample_metadata.loc[sample_ids].copy(),
            quality_flags=self._quality_flags[np.ix_(rows, cols)].copy(),
        )

    def with_values(
        self,
        data: np.ndarray,
        quality_flags: np.ndarray | None = None,
        feature_ids: pd.Index | None = None,
    ) -> BioMatrix:
        """
        New matrix sharing this matrix's samples, with replaced values.

        Used by transforms that compute a fresh data array (e.g. z-scores).
        """
        return BioMatrix(
            data=data,
            feature_ids=self._feature_ids.copy() if feature_ids is None else feature_ids,
            sample_ids=self._sample_ids.copy(),
            sample_metadata=self._sample_metadata.copy(),
            quality_flags=(
                self._quality_flags.copy() if quality_flags is None else quality_flags
            ),
        )

    def to_frame(self) -> pd.DataFrame:
        """Markers × samples DataFrame copy of the data."""
        return pd.DataFrame(
            self._data.copy(),
            index=self._feature_ids.copy(),
            columns=self._sample_ids.copy(),
        )

    @staticmethod
    def _positions(index: pd.Index, order: Sequence[str], kind: str) -> np.ndarray:
        lookup = {key: i for i, key in enumerate(index)}
        try:
            return np.array([lookup[key] for key in order], dtype=int)
        except KeyError as e:
            raise KeyError(f"Unknown {kind} id in order: {e.args[0]!r}") from None

    def __repr__(self) -> str:
        if self.n_features == 0 or self.n_samples == 0:
            return f"BioMatrix({self.n_features} features × {self.n_samples} samples)"
        return (
            f"BioMatrix({self.n_features} features × {self.n_samples} samples)\n"
            f"  Features: {self.feature_ids[0]}...{self.feature_ids[-1]}\n"
            f"  Samples: {self.sample_ids[0]}...{self.sample_ids[-1]}\n"
            f"  Metadata columns: {list(self.sample_metadata.columns)}"
        )

    def __str__(self) -> str:
        return self.__repr__()
