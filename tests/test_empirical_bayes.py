"""Tests for limma-style prior estimation and variance shrinkage."""

import numpy as np
import pytest
from scipy.special import digamma, polygamma

from markerharmony.stats.empirical_bayes import fit_f_dist, squeeze_var, trigamma_inverse


class TestTrigammaInverse:

    @pytest.mark.parametrize("y", [0.05, 0.7, 2.5, 40.0])
    def test_inverts_trigamma(self, y):
        x = float(polygamma(1, y))
        assert trigamma_inverse(x) == pytest.approx(y, rel=1e-6)

    @pytest.mark.parametrize("x", [0.0, -1.0])
    def test_non_positive_is_infinite(self, x):
        assert trigamma_inverse(x) == np.inf


class TestFitFDist:

    def test_recovers_simulated_prior(self):
        rng = np.random.default_rng(2004)
        n, d, d0, s0_sq = 5000, 4, 10.0, 0.5
        true_var = d0 * s0_sq / rng.chisquare(d0, size=n)
        sigma2 = true_var * rng.chisquare(d, size=n) / d

        d0_hat, s0_sq_hat = fit_f_dist(sigma2, d)

        assert 6.0 < d0_hat < 16.0
        assert s0_sq_hat == pytest.approx(s0_sq, rel=0.1)

    def test_equal_variances_give_infinite_prior_df(self):
        df = 4.0
        d0, s0_sq = fit_f_dist(np.ones(10), df)
        assert d0 == np.inf
        assert s0_sq == pytest.approx(np.exp(-digamma(df / 2) + np.log(df / 2)))

    def test_too_few_variances(self):
        d0, s0_sq = fit_f_dist(np.array([1.0, 3.0, np.nan, 0.0]), 4.0)
        assert d0 == np.inf
        assert s0_sq == pytest.approx(2.0)


class TestSqueezeVar:

    def test_posterior_is_weighted_average(self):
        sigma2 = np.array([0.2, 1.0, 5.0])
        s2_post, df_total = squeeze_var(sigma2, 4.0, d0=6.0, s0_sq=1.0)

        np.testing.assert_allclose(s2_post, (6.0 * 1.0 + 4.0 * sigma2) / 10.0)
        assert df_total == 10.0
        # shrinkage pulls toward the prior
        assert s2_post[0] > sigma2[0]
        assert s2_post[2] < sigma2[2]

    def test_per_feature_df(self):
        s2_post, df_total = squeeze_var(np.array([1.0, 2.0]), np.array([4.0, 2.0]), 2.0, 1.0)
        np.testing.assert_allclose(df_total, [6.0, 4.0])
        np.testing.assert_allclose(s2_post, [1.0, 1.5])

    def test_infinite_prior_df(self):
        s2_post, df_total = squeeze_var(np.array([0.5, np.nan, 3.0]), np.array([4.0, 4.0, 4.0]),
                                        np.inf, 1.2)
        np.testing.assert_allclose(s2_post[[0, 2]], [1.2, 1.2])
        assert np.isnan(s2_post[1])
        assert np.all(np.isinf(df_total))
