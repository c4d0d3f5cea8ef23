"""
Pytest configuration and shared fixtures.

Builds small synthetic BioMatrix objects whose statistics are known in
advance: group shifts are exact, so effect sizes can be checked to floating
tolerance rather than statistically.
"""

from typing import Optional, Sequence

import numpy as np
import pandas as pd
import pytest

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.core.panel import MarkerPanel


def make_matrix(
    feature_ids: Sequence[str],
    values,
    sample_ids: Optional[Sequence[str]] = None,
    metadata: Optional[pd.DataFrame] = None,
) -> BioMatrix:
    """BioMatrix from a list of rows; repeated feature ids are allowed."""
    data = np.asarray(values, dtype=np.float64)
    if sample_ids is None:
        sample_ids = [f"S{i:02d}" for i in range(data.shape[1])]
    frame = pd.DataFrame(data, index=list(feature_ids), columns=list(sample_ids))
    return BioMatrix.from_frame(frame, sample_metadata=metadata)


def shifted_two_group_matrix(
    shifts: dict,
    n_per_group: int = 6,
    noise_sd: float = 0.3,
    seed: int = 7,
    base: float = 8.0,
) -> BioMatrix:
    """
    Markers measured in ``n_per_group`` "low" then ``n_per_group`` "high" samples.

    Each marker gets its own noise pattern; the high group repeats the low
    group's values plus the marker's shift, so mean(high) − mean(low) equals
    the shift exactly and both groups share the same variance.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for shift in shifts.values():
        low = base + rng.normal(0.0, noise_sd, n_per_group)
        rows.append(np.concatenate([low, low + shift]))

    sample_ids = [f"L{i + 1}" for i in range(n_per_group)] + [f"H{i + 1}" for i in range(n_per_group)]
    metadata = pd.DataFrame(
        {
            "pathology": ["low"] * n_per_group + ["high"] * n_per_group,
            "age": np.linspace(60, 90, 2 * n_per_group),
        },
        index=sample_ids,
    )
    return make_matrix(list(shifts), rows, sample_ids=sample_ids, metadata=metadata)


@pytest.fixture
def astro_panel():
    return MarkerPanel(["GFAP", "S100B", "VIM", "AQP4"], name="astrocyte")


@pytest.fixture
def astro_matrix():
    """GFAP/S100B/VIM up by 2 in "high"; housekeeping genes unchanged; AQP4 not measured."""
    return shifted_two_group_matrix(
        {"GFAP": 2.0, "S100B": 2.0, "VIM": 2.0, "ACTB": 0.0, "GAPDH": 0.0, "B2M": 0.0}
    )


@pytest.fixture
def braak_matrix():
    """Four ordinal stage groups of three samples each."""
    stages = ["0-II"] * 3 + ["III"] * 3 + ["IV"] * 3 + ["V-VI"] * 3
    sample_ids = [f"B{i + 1}" for i in range(12)]
    metadata = pd.DataFrame(
        {"braak": stages, "braak_score": [1, 2, 0, 3, 3, 4, 4, 4, 5, 6, 5, 6]},
        index=sample_ids,
    )
    rows = [
        # UP: rises with stage
        [1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12],
        # DOWN: falls with stage
        [12, 11, 10, 9, 8, 7, 6, 5, 4, 3, 2, 1],
        # FLAT: same group means at both ends
        [5, 6, 7, 1, 2, 3, 9, 9, 9, 7, 6, 5],
    ]
    return make_matrix(["UP", "DOWN", "FLAT"], rows, sample_ids=sample_ids, metadata=metadata)
