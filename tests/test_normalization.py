"""Tests for row z-scores and the composed normalize() stage."""

import numpy as np
import pytest

from markerharmony.core.exceptions import DataQualityWarning
from markerharmony.core.panel import MarkerPanel
from markerharmony.core.quality import QualityFlag
from markerharmony.stats.normalization import ZScoreTransform, filter_markers, normalize, row_zscores

from conftest import make_matrix


class TestRowZscores:

    def test_mean_zero_sd_one(self):
        rng = np.random.default_rng(0)
        data = rng.normal(5.0, 2.0, size=(20, 12))
        z, undefined = row_zscores(data)

        assert not undefined.any()
        np.testing.assert_allclose(z.mean(axis=1), 0.0, atol=1e-12)
        np.testing.assert_allclose(z.std(axis=1, ddof=1), 1.0, rtol=1e-12)

    def test_missing_values_stay_missing(self):
        data = np.array([[1.0, np.nan, 3.0, 5.0]])
        z, undefined = row_zscores(data)

        assert np.isnan(z[0, 1])
        observed = z[0, ~np.isnan(z[0])]
        assert observed.mean() == pytest.approx(0.0, abs=1e-12)
        assert observed.std(ddof=1) == pytest.approx(1.0)
        assert not undefined[0]

    @pytest.mark.parametrize("row", [
        [4.0, 4.0, 4.0, 4.0],
        [0.1] * 12,
        [np.nan, 7.0, np.nan, np.nan],
        [np.nan] * 4,
    ])
    def test_constant_or_single_value_rows_are_all_missing(self, row):
        z, undefined = row_zscores(np.array([row]))
        assert undefined[0]
        assert np.all(np.isnan(z[0]))


class TestZScoreTransform:

    def test_constant_row_flagged_and_warned(self):
        matrix = make_matrix(["GFAP", "FLAT"], [[1.0, 2.0, 3.0, 4.0], [2.0, 2.0, 2.0, 2.0]])

        with pytest.warns(DataQualityWarning, match="FLAT"):
            z = ZScoreTransform().apply(matrix)

        assert np.all(np.isnan(z.data[1]))
        assert np.all(z.quality_flags[1] & int(QualityFlag.ZERO_VARIANCE))
        assert np.all(z.quality_flags[0] == int(QualityFlag.ORIGINAL))
        # input untouched
        np.testing.assert_array_equal(matrix.data[1], [2.0, 2.0, 2.0, 2.0])


class TestNormalize:

    def test_full_chain(self):
        matrix = make_matrix(
            ["GFAP_1", "GFAP_2", "VIM", "ACTB", "SPARSE"],
            [
                [1, 2, 3, 4, 5, 6],
                [1, 1, 1, 2, 2, 2],
                [6, 5, 4, 3, 2, 1],
                [1, 2, 3, 4, 5, 6],
                [np.nan, np.nan, np.nan, np.nan, 1, 2],
            ],
        )
        panel = MarkerPanel(["GFAP", "VIM", "SPARSE", "AQP4"])

        with pytest.warns(DataQualityWarning, match="SPARSE"):
            z = normalize(
                matrix,
                panel,
                dedup_key=lambda f: f.split("_")[0],
                missingness_threshold=0.5,
                dataset="test",
            )

        assert list(z.feature_ids) == ["GFAP", "VIM"]
        np.testing.assert_allclose(np.nanmean(z.data, axis=1), 0.0, atol=1e-12)
        # GFAP_1 (wider IQR) survived deduplication
        assert z.data[0, 0] < z.data[0, 5]
        assert np.all(z.quality_flags[0] & int(QualityFlag.DEDUPLICATED))
        assert matrix.n_features == 5

    def test_without_missingness_filter(self):
        matrix = make_matrix(["SPARSE"], [[np.nan, np.nan, np.nan, 1.0, 3.0]])
        z = normalize(matrix, MarkerPanel(["SPARSE"]))
        assert z.n_features == 1
        assert np.sum(~np.isnan(z.data)) == 2

    def test_filter_markers_keeps_scale(self):
        matrix = make_matrix(["GFAP"], [[10.0, 20.0, 30.0]])
        filtered = filter_markers(matrix, MarkerPanel(["GFAP"]))
        np.testing.assert_array_equal(filtered.data, [[10.0, 20.0, 30.0]])
