"""
Empirical Bayes variance moderation (limma-style).

With 6–12 samples per marker, a per-marker residual variance is a noisy
estimate; a marker that happens to look very quiet produces an inflated
t-statistic. limma's remedy is to assume the true variances follow a scaled
inverse-chi-square prior, estimate that prior from all markers at once, and
replace each marker's variance by its posterior mean.

Model:
    s²_i | σ²_i ~ σ²_i χ²_d / d
    1/σ²_i      ~ χ²_{d0} / (d0 s0²)

Posterior variance:
    s²_post,i = (d0 s0² + d s²_i) / (d0 + d)

The moderated t-statistic then has d0 + d degrees of freedom.

References:
    Smyth (2004) "Linear models and empirical Bayes methods for assessing
    differential expression in microarray experiments"
    Statistical Applications in Genetics and Molecular Biology 3(1):3
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.special import digamma, polygamma

__all__ = ['trigamma_inverse', 'fit_f_dist', 'squeeze_var']


def trigamma_inverse(x: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """
    Compute the inverse of the trigamma function using Newton's method.

    Solves for y where trigamma(y) = x, following limma's trigammaInverse:
    - Initial guess: y = 0.5 + 1/x (valid since 1/trigamma(y) > y - 0.5)
    - Newton iteration on 1/trigamma(y), which is convex and nearly linear

    Args:
        x: Target trigamma value (must be positive)
        tol: Convergence tolerance (relative)
        max_iter: Maximum Newton iterations

    Returns:
        y such that trigamma(y) ≈ x; np.inf for non-positive x
    """
    if x <= 0:
        return np.inf

    # Asymptotes: trigamma(y) ≈ 1/y² as y → 0 and ≈ 1/y as y → ∞
    if x > 1e7:
        return 1.0 / np.sqrt(x)
    if x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x
    for _ in range(max_iter):
        tri = float(polygamma(1, y))
        dif = tri * (1.0 - tri / x) / float(polygamma(2, y))
        y += dif
        if -dif / y < tol:
            break

    return float(y)


def fit_f_dist(
    sigma2: NDArray[np.float64],
    df: float | NDArray[np.float64],
) -> tuple[float, float]:
    """
    Estimate prior d0 and s0² via method of moments (limma fitFDist).

    Algorithm:
        1. e = log(s²) - digamma(df/2) + log(df/2)
        2. evar = var(e) - mean(trigamma(df/2))
        3. d0 = 2 × trigamma⁻¹(evar)            (d0 = ∞ if evar <= 0)
        4. s0² = exp(mean(e) + digamma(d0/2) - log(d0/2))   (exp(mean(e)) if d0 = ∞)

    Args:
        sigma2: Sample variances (n_features,)
        df: Residual degrees of freedom (scalar or per-feature array)

    Returns:
        Tuple (d0, s0_sq). d0 may be np.inf, meaning the variances are no more
        dispersed than sampling error alone explains.
    """
    sigma2 = np.asarray(sigma2, dtype=np.float64)
    df_arr = np.broadcast_to(np.asarray(df, dtype=np.float64), sigma2.shape)

    valid = (sigma2 > 0) & np.isfinite(sigma2) & (df_arr > 0) & np.isfinite(df_arr)
    sigma2_valid = sigma2[valid]
    df_valid = df_arr[valid]

    if len(sigma2_valid) < 3:
        return np.inf, float(np.median(sigma2_valid)) if len(sigma2_valid) > 0 else 1.0

    df_half = df_valid / 2.0
    e = np.log(sigma2_valid) - digamma(df_half) + np.log(df_half)
    emean = float(np.mean(e))
    evar = float(np.var(e, ddof=1)) - float(np.mean(polygamma(1, df_half)))

    if evar <= 0:
        return np.inf, float(np.exp(emean))

    d0 = 2.0 * trigamma_inverse(evar)
    if not np.isfinite(d0) or d0 > 1e10:
        return np.inf, float(np.exp(emean))

    s0_sq = float(np.exp(emean + digamma(d0 / 2.0) - np.log(d0 / 2.0)))
    return float(d0), s0_sq


def squeeze_var(
    sigma2: NDArray[np.float64],
    df: float | NDArray[np.float64],
    d0: float,
    s0_sq: float,
) -> tuple[NDArray[np.float64], float | NDArray[np.float64]]:
    """
    Apply Empirical Bayes variance shrinkage (limma squeezeVar).

    Formula:
        s²_post = (d₀ × s₀² + df × s²) / (d₀ + df)

    When d₀ is infinite every posterior variance equals the prior s₀² and the
    total degrees of freedom are infinite, as in limma.

    Args:
        sigma2: Sample variances (n_features,)
        df: Residual degrees of freedom, scalar or per-feature array
        d0: Prior degrees of freedom (from fit_f_dist)
        s0_sq: Prior scale (from fit_f_dist)

    Returns:
        Tuple (s2_post, df_total). df_total is an array when df is an array.
    """
    sigma2 = np.asarray(sigma2, dtype=np.float64)
    df_is_array = isinstance(df, np.ndarray)

    if np.isinf(d0):
        s2_post = np.where(np.isnan(sigma2), np.nan, s0_sq)
        if df_is_array:
            return s2_post, np.full(df.shape, np.inf)
        return s2_post, np.inf

    s2_post = (d0 * s0_sq + df * sigma2) / (d0 + df)
    df_total = d0 + df

    if df_is_array:
        return s2_post, df_total.astype(np.float64)
    return s2_post, float(df_total)
