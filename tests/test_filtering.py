"""Tests for panel subsetting, IQR deduplication and the missingness filter."""

import numpy as np
import pytest

from markerharmony.core.exceptions import ConfigurationError, DataQualityWarning, LookupMiss
from markerharmony.core.panel import MarkerPanel
from markerharmony.core.quality import QualityFlag
from markerharmony.quality.filtering import (
    IQRDeduplicator,
    MissingnessFilter,
    PanelFilter,
    canonical_ids,
    interquartile_range,
)

from conftest import make_matrix

# IQR (linear interpolation) of [0, 1.6, 3.2, 4.8, 6.4] is 3.2, of [0, .55, 1.1, 1.65, 2.2] is 1.1
WIDE = [0.0, 1.6, 3.2, 4.8, 6.4]
NARROW = [0.0, 0.55, 1.1, 1.65, 2.2]


class TestPanelFilter:

    def test_subsets_and_reports_misses(self, astro_matrix, astro_panel):
        panel_filter = PanelFilter(astro_panel, dataset="GSE5281")
        subset = panel_filter.apply(astro_matrix)

        assert list(subset.feature_ids) == ["GFAP", "S100B", "VIM"]
        coverage = panel_filter.coverage(astro_matrix)
        assert coverage.present == ("GFAP", "S100B", "VIM")
        assert coverage.missing == ("AQP4",)
        assert coverage.effective_size == 3
        assert coverage.lookup_misses == [LookupMiss("AQP4", "GSE5281")]

    def test_absent_markers_are_not_errors(self):
        matrix = make_matrix(["ACTB"], [[1.0, 2.0]])
        subset = PanelFilter(MarkerPanel(["GFAP"])).apply(matrix)
        assert subset.n_features == 0

    def test_dedup_key_mapping_used_for_membership(self):
        matrix = make_matrix(["203540_at", "201667_at"], [[1, 2], [3, 4]])
        probe_map = {"203540_at": "GFAP", "201667_at": "GJA1"}
        subset = PanelFilter(MarkerPanel(["GFAP"]), dedup_key=probe_map).apply(matrix)
        assert list(subset.feature_ids) == ["203540_at"]


class TestCanonicalIds:

    def test_identity_callable_mapping(self):
        ids = ["GFAP.1", "GFAP.2", "VIM"]
        assert list(canonical_ids(ids)) == ids
        assert list(canonical_ids(ids, lambda f: f.split(".")[0])) == ["GFAP", "GFAP", "VIM"]
        assert list(canonical_ids(ids, {"GFAP.1": "GFAP"})) == ["GFAP", "GFAP.2", "VIM"]


class TestIQRDeduplicator:

    def test_interquartile_range(self):
        iqr = interquartile_range(np.array([WIDE, NARROW, [np.nan] * 5]))
        assert iqr[0] == pytest.approx(3.2)
        assert iqr[1] == pytest.approx(1.1)
        assert iqr[2] == -np.inf

    @pytest.mark.parametrize("rows", [[WIDE, NARROW], [NARROW, WIDE]])
    def test_keeps_widest_row_regardless_of_order(self, rows):
        matrix = make_matrix(["GFAP", "GFAP"], rows)
        deduped = IQRDeduplicator().apply(matrix)

        assert list(deduped.feature_ids) == ["GFAP"]
        np.testing.assert_allclose(deduped.data[0], WIDE)
        assert np.all(deduped.quality_flags[0] & int(QualityFlag.DEDUPLICATED))

    def test_tie_goes_to_earliest_row(self):
        first = [0.0, 1.0, 2.0, 3.0, 4.0]
        second = [10.0, 11.0, 12.0, 13.0, 14.0]
        matrix = make_matrix(["p1", "p2"], [first, second])
        deduped = IQRDeduplicator(lambda f: "GFAP").apply(matrix)
        np.testing.assert_allclose(deduped.data[0], first)

    def test_relabels_and_preserves_order(self):
        matrix = make_matrix(
            ["VIM_a", "GFAP_a", "GFAP_b", "S100B_a"],
            [NARROW, NARROW, WIDE, WIDE],
        )
        deduped = IQRDeduplicator(lambda f: f.split("_")[0]).apply(matrix)

        assert list(deduped.feature_ids) == ["VIM", "GFAP", "S100B"]
        np.testing.assert_allclose(deduped.data[1], WIDE)
        # unique markers are not flagged
        assert np.all(deduped.quality_flags[0] == int(QualityFlag.ORIGINAL))

    def test_missing_values_ignored_in_iqr(self):
        sparse_wide = [0.0, np.nan, 50.0, np.nan, 100.0]
        matrix = make_matrix(["GFAP", "GFAP"], [WIDE, sparse_wide])
        deduped = IQRDeduplicator().apply(matrix)
        np.testing.assert_allclose(deduped.data[0], sparse_wide)

    def test_input_unchanged(self):
        matrix = make_matrix(["GFAP", "GFAP"], [NARROW, WIDE])
        IQRDeduplicator().apply(matrix)
        assert list(matrix.feature_ids) == ["GFAP", "GFAP"]
        assert matrix.n_features == 2


class TestMissingnessFilter:

    @staticmethod
    def _row(n_missing, n_samples=12):
        return [np.nan] * n_missing + list(np.arange(n_samples - n_missing, dtype=float))

    def test_boundary_is_inclusive(self):
        matrix = make_matrix(
            ["five", "six", "seven"],
            [self._row(5), self._row(6), self._row(7)],
        )
        with pytest.warns(DataQualityWarning, match="seven"):
            kept = MissingnessFilter(0.5).apply(matrix)
        assert list(kept.feature_ids) == ["five", "six"]

    def test_no_warning_when_nothing_dropped(self, recwarn):
        matrix = make_matrix(["complete"], [self._row(0)])
        kept = MissingnessFilter(0.33).apply(matrix)
        assert kept.n_features == 1
        assert not [w for w in recwarn if issubclass(w.category, DataQualityWarning)]

    def test_threshold_zero_drops_any_missing(self):
        matrix = make_matrix(["one", "none"], [self._row(1), self._row(0)])
        with pytest.warns(DataQualityWarning):
            kept = MissingnessFilter(0.0).apply(matrix)
        assert list(kept.feature_ids) == ["none"]

    @pytest.mark.parametrize("threshold", [-0.1, 1.5])
    def test_invalid_threshold(self, threshold):
        with pytest.raises(ConfigurationError):
            MissingnessFilter(threshold)
