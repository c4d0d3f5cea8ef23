"""
Tests for the moderated two-group comparison.

Validates that:
1. Exact group shifts are recovered as effect sizes
2. BH-adjusted p-values never fall below raw p-values and stay monotone
3. Confidence intervals contain the estimate
4. Group/contrast validation raises the right taxonomy errors
5. Markers without enough observations are reported untestable, not dropped
"""

import numpy as np
import pytest

from markerharmony.core.exceptions import ConfigurationError, InsufficientSamplesError
from markerharmony.core.panel import MarkerPanel
from markerharmony.stats.differential import compare_two_groups, fdr_correction
from markerharmony.stats.normalization import filter_markers

from conftest import make_matrix, shifted_two_group_matrix


class TestCompareTwoGroups:

    def test_end_to_end_astrocyte_markers(self):
        matrix = shifted_two_group_matrix({"GFAP": 2.0, "S100B": 2.0, "VIM": 2.0})
        filtered = filter_markers(matrix, MarkerPanel(["GFAP", "S100B", "VIM"]))

        table = compare_two_groups(filtered, "pathology", contrast=("high", "low"))

        for marker in ("GFAP", "S100B", "VIM"):
            result = table[marker]
            assert result.effect_size == pytest.approx(2.0, abs=1e-9)
            assert result.p_value < 0.05
            assert result.n_group1 == 6 and result.n_group2 == 6

    def test_default_contrast_is_second_minus_first(self, astro_matrix):
        table = compare_two_groups(astro_matrix, "pathology")
        assert table.contrast == ("high", "low")
        assert table.contrast_name == "high_vs_low"
        assert table["GFAP"].effect_size == pytest.approx(2.0)

    def test_reversed_contrast_flips_sign(self, astro_matrix):
        table = compare_two_groups(astro_matrix, "pathology", contrast=("low", "high"))
        assert table["GFAP"].effect_size == pytest.approx(-2.0)
        assert table.significant_features(direction="down") == ["GFAP", "S100B", "VIM"]
        assert table.significant_features(direction="up") == []

    def test_unchanged_markers(self, astro_matrix):
        table = compare_two_groups(astro_matrix, "pathology")
        for marker in ("ACTB", "GAPDH", "B2M"):
            assert table[marker].effect_size == pytest.approx(0.0, abs=1e-9)
            assert table[marker].p_value == pytest.approx(1.0)
        assert table.significant_features() == ["GFAP", "S100B", "VIM"]

    def test_results_in_input_order(self, astro_matrix):
        table = compare_two_groups(astro_matrix, "pathology")
        assert [r.feature_id for r in table] == list(astro_matrix.feature_ids)
        assert len(table) == astro_matrix.n_features

    def test_simulated_shift_recovery(self):
        rng = np.random.default_rng(11)
        n_markers, n_shifted, n_per_group = 200, 10, 6
        low = rng.normal(10.0, 0.5, size=(n_markers, n_per_group))
        high = rng.normal(10.0, 0.5, size=(n_markers, n_per_group))
        high[:n_shifted] += 1.5
        ids = [f"M{i:03d}" for i in range(n_markers)]
        groups = ["low"] * n_per_group + ["high"] * n_per_group

        matrix = make_matrix(ids, np.hstack([low, high]))
        table = compare_two_groups(matrix, groups)
        df = table.to_dataframe()

        true_diff = high.mean(axis=1) - low.mean(axis=1)
        np.testing.assert_allclose(df["effect_size"], true_diff, atol=1e-9)
        # shifted markers recovered close to the simulated difference
        assert np.abs(df["effect_size"][:n_shifted] - 1.5).max() < 1.0
        found = set(table.significant_features())
        assert len(found & set(ids[:n_shifted])) >= 8
        assert len(found - set(ids[:n_shifted])) <= 3

        # BH: adjusted >= raw, monotone in raw p order
        assert np.all(df["adj_p_value"] >= df["p_value"] - 1e-15)
        ordered = df.sort_values("p_value")["adj_p_value"].to_numpy()
        assert np.all(np.diff(ordered) >= -1e-15)

    def test_confidence_interval_contains_effect(self, astro_matrix):
        table = compare_two_groups(astro_matrix, "pathology", coverage=0.9)
        for result in table:
            assert result.ci_lower <= result.effect_size <= result.ci_upper
        wide = compare_two_groups(astro_matrix, "pathology", coverage=0.99)
        narrow_width = table["GFAP"].ci_upper - table["GFAP"].ci_lower
        wide_width = wide["GFAP"].ci_upper - wide["GFAP"].ci_lower
        assert wide_width > narrow_width

    def test_moderation_disabled(self, astro_matrix):
        table = compare_two_groups(astro_matrix, "pathology", eb_moderation=False)
        assert np.isnan(table.prior_df)
        for result in table:
            assert result.sigma2_post == pytest.approx(result.sigma2)
            assert result.df == 10

    def test_moderation_records_prior(self, astro_matrix):
        table = compare_two_groups(astro_matrix, "pathology")
        assert table.prior_df > 0
        assert table.prior_var > 0
        assert all(r.df >= 10 for r in table)

    def test_untestable_marker(self):
        matrix = make_matrix(
            ["GFAP", "SPARSE", "VIM", "ACTB"],
            [
                [1.0, 1.2, 0.9, 3.0, 3.1, 2.8],
                [1.0, 1.1, 0.8, np.nan, np.nan, 2.0],
                [2.0, 2.3, 2.1, 2.2, 2.0, 2.4],
                [5.0, 5.5, 4.5, 5.2, 4.9, 5.1],
            ],
        )
        table = compare_two_groups(matrix, ["a", "a", "a", "b", "b", "b"])

        sparse = table["SPARSE"]
        assert not sparse.testable
        assert np.isnan(sparse.p_value) and np.isnan(sparse.adj_p_value)
        assert sparse.n_group1 == 1
        assert table["GFAP"].testable

    def test_constant_groups_separate_perfectly(self):
        matrix = make_matrix(
            ["GFAP", "S100B", "VIM", "ACTB"],
            [
                [1.0] * 6 + [3.0] * 6,
                [5.0] * 6 + [7.0] * 6,
                [2.0] * 6 + [4.0] * 6,
                [4.0] * 12,
            ],
        )
        table = compare_two_groups(matrix, ["low"] * 6 + ["high"] * 6)

        for marker in ("GFAP", "S100B", "VIM"):
            result = table[marker]
            assert result.effect_size == pytest.approx(2.0)
            assert result.t_statistic == np.inf
            assert result.p_value == 0.0
            assert result.adj_p_value < 0.05
            assert result.ci_lower == result.ci_upper == pytest.approx(2.0)
        assert table.significant_features() == ["GFAP", "S100B", "VIM"]

        # no shift and no spread: nothing to test
        assert not table["ACTB"].testable

    def test_input_not_mutated(self, astro_matrix):
        before = astro_matrix.data.copy()
        compare_two_groups(astro_matrix, "pathology")
        np.testing.assert_array_equal(astro_matrix.data, before)

    def test_samples_without_label_ignored(self, astro_matrix):
        labels = astro_matrix.sample_metadata["pathology"].copy()
        labels.iloc[0] = np.nan
        table = compare_two_groups(astro_matrix, labels)
        assert table["GFAP"].n_group2 == 5

    def test_series_groups_aligned_by_sample_id(self, astro_matrix):
        labels = astro_matrix.sample_metadata["pathology"].iloc[::-1]
        table = compare_two_groups(astro_matrix, labels)
        assert table["GFAP"].effect_size == pytest.approx(2.0)


class TestValidation:

    def test_three_groups_rejected(self, astro_matrix):
        groups = ["a"] * 4 + ["b"] * 4 + ["c"] * 4
        with pytest.raises(ConfigurationError, match="exactly 2"):
            compare_two_groups(astro_matrix, groups)

    def test_unknown_contrast(self, astro_matrix):
        with pytest.raises(ConfigurationError):
            compare_two_groups(astro_matrix, "pathology", contrast=("high", "medium"))

    def test_unknown_group_column(self, astro_matrix):
        with pytest.raises(ConfigurationError, match="not found"):
            compare_two_groups(astro_matrix, "diagnosis")

    def test_single_sample_group(self, astro_matrix):
        groups = ["low"] * 11 + ["high"]
        with pytest.raises(InsufficientSamplesError) as excinfo:
            compare_two_groups(astro_matrix, groups)
        assert excinfo.value.group == "high"
        assert excinfo.value.n_samples == 1

    @pytest.mark.parametrize("coverage", [0.0, 1.0, 1.5])
    def test_invalid_coverage(self, astro_matrix, coverage):
        with pytest.raises(ConfigurationError):
            compare_two_groups(astro_matrix, "pathology", coverage=coverage)


class TestFdrCorrection:

    def test_nan_passthrough(self):
        adj = fdr_correction(np.array([0.01, np.nan, 0.04, 0.03]))
        assert np.isnan(adj[1])
        np.testing.assert_allclose(adj[[0, 2, 3]], [0.03, 0.04, 0.04])

    def test_all_nan(self):
        assert np.all(np.isnan(fdr_correction(np.array([np.nan, np.nan]))))

    def test_matches_statsmodels(self):
        from statsmodels.stats.multitest import multipletests

        p = np.array([0.001, 0.2, 0.03, 0.5, 0.04])
        np.testing.assert_allclose(fdr_correction(p), multipletests(p, method="fdr_bh")[1])
