"""
Two-group differential expression with empirical Bayes moderated t-statistics.

Implements the limma-style comparison used for every two-group design in the
harmonization pipeline (e.g. low vs high pathology microarray samples):

    For each marker i (using only its non-missing samples):
    1. OLS: y_i ~ β₀ + β₁ × group               (group as sole predictor)
    2. Effect: β₁ = mean(group1) − mean(group2)
    3. Sample variance: s²_i = RSS_i / (n1 + n2 − 2)
    4. EB shrinkage: s²_post,i = (d₀ s₀² + d_i s²_i) / (d₀ + d_i)
    5. Moderated t: t_i = β₁ / sqrt(s²_post,i × (1/n1 + 1/n2))
    6. P-value: two-sided, t-distribution with d₀ + d_i degrees of freedom
    7. Benjamini–Hochberg across all markers tested in the same call
    8. Confidence interval: β₁ ± t_{1−α/2, d₀+d_i} × SE

The engine does not log-transform: intensities must already be on a log or
otherwise normalized scale.

Designs with more than two groups are deliberately not tested here. Ordinal
multi-group designs (Braak stages, covariate deciles) use the unshrunk group
means of design_matrix.group_means purely as a ranking signal.

References:
    - Smyth (2004) Statistical Applications in Genetics and Molecular Biology 3(1):3
    - Ritchie et al. (2015) Nucleic Acids Research 43(7):e47 (limma)
    - Benjamini & Hochberg (1995) JRSS B 57(1):289-300
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Iterator, Literal, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats as scipy_stats

from markerharmony.core.biomatrix import BioMatrix
from markerharmony.core.exceptions import ConfigurationError, InsufficientSamplesError
from markerharmony.stats.design_matrix import GroupSpec, resolve_sample_groups
from markerharmony.stats.empirical_bayes import fit_f_dist, squeeze_var

logger = logging.getLogger(__name__)

__all__ = [
    'DifferentialResult',
    'DifferentialTable',
    'fdr_correction',
    'compare_two_groups',
    'MIN_SAMPLES_PER_GROUP',
]

MIN_SAMPLES_PER_GROUP = 2
MIN_FEATURES_FOR_PRIOR = 3


@dataclass(frozen=True)
class DifferentialResult:
    """Moderated two-group comparison for one marker.

    Attributes:
        feature_id: Marker identifier
        effect_size: mean(group1) − mean(group2)
        se: Standard error of the effect (moderated)
        t_statistic: Moderated t-statistic
        df: Total degrees of freedom (prior + residual); inf if prior df is inf
        p_value: Two-sided p-value
        adj_p_value: Benjamini–Hochberg adjusted p-value
        ci_lower: Lower confidence bound for the effect
        ci_upper: Upper confidence bound for the effect
        n_group1: Non-missing samples in group1
        n_group2: Non-missing samples in group2
        sigma2: Residual variance before shrinkage
        sigma2_post: Posterior variance after shrinkage

    Untestable markers (fewer than two observations in a group) carry NaN
    statistics and are excluded from the FDR correction.
    A marker with zero within-group variance and a nonzero effect separates
    the groups perfectly. It is reported with an infinite t and p = 0; its
    interval collapses to the effect.
    """

    feature_id: str
    effect_size: float
    se: float
    t_statistic: float
    df: float
    p_value: float
    adj_p_value: float
    ci_lower: float
    ci_upper: float
    n_group1: int
    n_group2: int
    sigma2: float
    sigma2_post: float

    @property
    def testable(self) -> bool:
        return not np.isnan(self.p_value)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DifferentialTable:
    """Complete result of one two-group comparison.

    Attributes:
        results: One DifferentialResult per marker, in input marker order
        contrast: (group1, group2); effects are group1 − group2
        prior_df: Fitted prior degrees of freedom d₀ (inf = full shrinkage,
            nan = moderation not applied)
        prior_var: Fitted prior variance s₀²
        coverage: Nominal confidence interval coverage
        fdr_method: Multiple testing correction used
    """

    results: tuple[DifferentialResult, ...]
    contrast: tuple[str, str]
    prior_df: float
    prior_var: float
    coverage: float = 0.95
    fdr_method: str = "BH"

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[DifferentialResult]:
        return iter(self.results)

    def __getitem__(self, feature_id: str) -> DifferentialResult:
        for result in self.results:
            if result.feature_id == feature_id:
                return result
        raise KeyError(feature_id)

    @property
    def contrast_name(self) -> str:
        return f"{self.contrast[0]}_vs_{self.contrast[1]}"

    def to_dataframe(self) -> pd.DataFrame:
        """Tabular form for report export, one row per marker."""
        columns = list(DifferentialResult.__dataclass_fields__)
        df = pd.DataFrame([r.to_dict() for r in self.results], columns=columns)
        df['contrast'] = self.contrast_name
        return df

    def significant_features(
        self,
        alpha: float = 0.05,
        direction: Literal["up", "down"] | None = None,
    ) -> list[str]:
        """Markers with adjusted p-value below alpha, optionally by sign of effect."""
        selected = []
        for r in self.results:
            if not (r.adj_p_value < alpha):
                continue
            if direction == "up" and not r.effect_size > 0:
                continue
            if direction == "down" and not r.effect_size < 0:
                continue
            selected.append(r.feature_id)
        return selected


def fdr_correction(
    pvalues: NDArray[np.float64],
    method: Literal["BH", "BY", "bonferroni"] = "BH",
    alpha: float = 0.05,
) -> NDArray[np.float64]:
    """
    Apply multiple testing correction, ignoring NaN p-values.

    Args:
        pvalues: Array of raw p-values (NaN = not tested)
        method: "BH" (Benjamini-Hochberg), "BY" (Benjamini-Yekutieli) or
            "bonferroni"
        alpha: Significance threshold passed to statsmodels

    Returns:
        Array of adjusted p-values, NaN where the input was NaN
    """
    from statsmodels.stats.multitest import multipletests

    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid_mask = ~np.isnan(pvalues)
    adj_pvals = np.full_like(pvalues, np.nan)

    if not np.any(valid_mask):
        return adj_pvals

    method_map = {"BH": "fdr_bh", "BY": "fdr_by", "bonferroni": "bonferroni"}
    _, adj_pvals[valid_mask], _, _ = multipletests(
        pvalues[valid_mask],
        alpha=alpha,
        method=method_map.get(method, method),
    )

    return adj_pvals


def _t_sf(t_abs: NDArray[np.float64], df: NDArray[np.float64]) -> NDArray[np.float64]:
    """Upper tail of the t-distribution, using the normal limit for infinite df."""
    out = np.full(t_abs.shape, np.nan)
    finite = np.isfinite(df)
    out[finite] = scipy_stats.t.sf(t_abs[finite], df[finite])
    out[~finite] = scipy_stats.norm.sf(t_abs[~finite])
    return out


def _t_quantile(q: float, df: NDArray[np.float64]) -> NDArray[np.float64]:
    out = np.full(df.shape, np.nan)
    finite = np.isfinite(df)
    out[finite] = scipy_stats.t.ppf(q, df[finite])
    out[~finite] = scipy_stats.norm.ppf(q)
    return out


def _group_moments(block: NDArray[np.float64]) -> tuple[NDArray, NDArray, NDArray]:
    """Per-row count, mean and residual sum of squares over non-missing values."""
    n_obs = np.sum(~np.isnan(block), axis=1)
    with np.errstate(invalid="ignore", divide="ignore"):
        mean = np.where(n_obs > 0, np.nansum(block, axis=1) / np.maximum(n_obs, 1), np.nan)
    rss = np.nansum((block - mean[:, None]) ** 2, axis=1)
    return n_obs, mean, rss


def compare_two_groups(
    matrix: BioMatrix,
    sample_groups: GroupSpec,
    contrast: tuple[str, str] | None = None,
    coverage: float = 0.95,
    eb_moderation: bool = True,
    fdr_method: Literal["BH", "BY", "bonferroni"] = "BH",
) -> DifferentialTable:
    """
    Moderated two-group comparison of every marker in the matrix.

    Args:
        matrix: Log-scale or normalized expression (markers × samples)
        sample_groups: Metadata column name, Series indexed by sample id, or
            sequence aligned with the columns. Exactly two distinct labels;
            samples with a missing label are ignored.
        contrast: (group1, group2) so that effect = group1 − group2. Defaults
            to (second label, first label) in group order.
        coverage: Confidence interval coverage, in (0, 1)
        eb_moderation: Apply empirical Bayes variance shrinkage
        fdr_method: Multiple testing correction across markers in this call

    Returns:
        DifferentialTable with one result per marker, in input order

    Raises:
        ConfigurationError: Not exactly two groups, unknown contrast labels,
            or invalid coverage
        InsufficientSamplesError: A group has fewer than two samples

    Example:
        >>> table = compare_two_groups(matrix, "pathology", contrast=("high", "low"))
        >>> table.to_dataframe().sort_values("p_value").head()
    """
    if not 0.0 < coverage < 1.0:
        raise ConfigurationError(f"coverage must be in (0, 1), got {coverage}")

    groups = resolve_sample_groups(matrix, sample_groups)

    if len(groups.levels) != 2:
        raise ConfigurationError(
            f"Two-group comparison needs exactly 2 groups, got {len(groups.levels)}: "
            f"{list(groups.levels)}"
        )

    if contrast is None:
        contrast = (groups.levels[1], groups.levels[0])
    contrast = (str(contrast[0]), str(contrast[1]))
    if contrast[0] == contrast[1] or set(contrast) != set(groups.levels):
        raise ConfigurationError(
            f"Contrast {contrast} does not match groups {list(groups.levels)}"
        )

    sizes = groups.sizes()
    for level in contrast:
        if sizes[level] < MIN_SAMPLES_PER_GROUP:
            raise InsufficientSamplesError(level, sizes[level], MIN_SAMPLES_PER_GROUP)

    logger.info(
        f"Two-group comparison {contrast[0]} vs {contrast[1]}: "
        f"{matrix.n_features} markers, n={sizes[contrast[0]]}/{sizes[contrast[1]]}"
    )

    n1, mean1, rss1 = _group_moments(matrix.data[:, groups.mask(contrast[0])])
    n2, mean2, rss2 = _group_moments(matrix.data[:, groups.mask(contrast[1])])

    effect = mean1 - mean2
    df_resid = (n1 + n2 - 2).astype(np.float64)
    testable = (n1 >= MIN_SAMPLES_PER_GROUP) & (n2 >= MIN_SAMPLES_PER_GROUP)

    sigma2 = np.full(matrix.n_features, np.nan)
    sigma2[testable] = (rss1[testable] + rss2[testable]) / df_resid[testable]

    n_untestable = int(np.sum(~testable))
    if n_untestable:
        logger.info(f"{n_untestable} marker(s) have fewer than {MIN_SAMPLES_PER_GROUP} "
                    f"observations in a group and are not tested")

    # Empirical Bayes prior from markers with a usable variance
    prior_mask = testable & np.isfinite(sigma2) & (sigma2 > 0)
    sigma2_post = sigma2.copy()
    df_total = df_resid.copy()
    d0, s0_sq = np.nan, np.nan

    if eb_moderation and np.sum(prior_mask) >= MIN_FEATURES_FOR_PRIOR:
        d0, s0_sq = fit_f_dist(sigma2[prior_mask], df_resid[prior_mask])
        sigma2_post[testable], df_total[testable] = squeeze_var(
            sigma2[testable], df_resid[testable], d0, s0_sq
        )
        if np.isinf(d0):
            logger.info(f"EB prior: d0=Inf, s0²={s0_sq:.4g} (variances fully pooled)")
        else:
            logger.info(f"EB prior: d0={d0:.2f}, s0²={s0_sq:.4g}")
    elif eb_moderation:
        logger.warning(
            f"Only {int(np.sum(prior_mask))} marker(s) with usable variance; "
            f"need {MIN_FEATURES_FOR_PRIOR} for the EB prior, using unmoderated t"
        )

    with np.errstate(invalid="ignore", divide="ignore"):
        se = np.sqrt(sigma2_post * (1.0 / n1 + 1.0 / n2))
    valid = testable & np.isfinite(se) & (se > 0)
    # Zero residual variance with a nonzero shift: |t| = inf, p = 0
    separated = testable & (se == 0) & (effect != 0)
    reported = valid | separated

    t_stat = np.full(matrix.n_features, np.nan)
    p_value = np.full(matrix.n_features, np.nan)
    ci_lower = np.full(matrix.n_features, np.nan)
    ci_upper = np.full(matrix.n_features, np.nan)

    t_stat[valid] = effect[valid] / se[valid]
    p_value[valid] = np.minimum(2.0 * _t_sf(np.abs(t_stat[valid]), df_total[valid]), 1.0)

    half_width = _t_quantile(0.5 + coverage / 2.0, df_total[valid]) * se[valid]
    ci_lower[valid] = effect[valid] - half_width
    ci_upper[valid] = effect[valid] + half_width

    if np.any(separated):
        logger.info(f"{int(np.sum(separated))} marker(s) separate the groups perfectly "
                    f"(zero within-group variance)")
        t_stat[separated] = np.sign(effect[separated]) * np.inf
        p_value[separated] = 0.0
        ci_lower[separated] = effect[separated]
        ci_upper[separated] = effect[separated]

    adj_p = fdr_correction(p_value, method=fdr_method)

    results = tuple(
        DifferentialResult(
            feature_id=str(matrix.feature_ids[i]),
            effect_size=float(effect[i]),
            se=float(se[i]) if reported[i] else np.nan,
            t_statistic=float(t_stat[i]),
            df=float(df_total[i]) if reported[i] else np.nan,
            p_value=float(p_value[i]),
            adj_p_value=float(adj_p[i]),
            ci_lower=float(ci_lower[i]),
            ci_upper=float(ci_upper[i]),
            n_group1=int(n1[i]),
            n_group2=int(n2[i]),
            sigma2=float(sigma2[i]),
            sigma2_post=float(sigma2_post[i]),
        )
        for i in range(matrix.n_features)
    )

    logger.info(
        f"Tested {int(np.sum(reported))} markers; "
        f"{int(np.sum(adj_p[reported] < 0.05))} with adjusted p < 0.05"
    )

    return DifferentialTable(
        results=results,
        contrast=contrast,
        prior_df=float(d0),
        prior_var=float(s0_sq),
        coverage=coverage,
        fdr_method=fdr_method,
    )
