"""
Statistical Methods for DRPA
============================
FDR correction and limma-style empirical Bayes variance moderation.
"""

import numpy as np
from typing import List, Tuple, Sequence, Union
from scipy import special, stats
from statsmodels.stats.multitest import multipletests


ArrayLike = Union[Sequence[float], np.ndarray]


def apply_fdr_correction(p_values: ArrayLike,
                         method: str = 'fdr_bh',
                         alpha: float = 0.05) -> Tuple[List[float], List[bool]]:
    """
    Apply False Discovery Rate (FDR) correction for multiple hypothesis testing.

    NaN p-values are left as NaN and excluded from the number of tests.

    Args:
        p_values: Raw p-values from statistical tests
        method: Correction method ('fdr_bh' for Benjamini-Hochberg,
                'bonferroni', 'holm', 'fdr_by')
        alpha: Significance level (default 0.05)

    Returns:
        Tuple of (adjusted_pvalues, reject_null_hypothesis)

    Example:
        >>> adj_p, significant = apply_fdr_correction([0.001, 0.01, 0.04, 0.05, 0.1])
    """
    pvals = np.asarray(p_values, dtype=float)
    if pvals.size == 0:
        return [], []

    adjusted = np.full(pvals.shape, np.nan)
    reject = np.zeros(pvals.shape, dtype=bool)
    finite = ~np.isnan(pvals)
    if finite.any():
        rej, corrected, _, _ = multipletests(pvals[finite], alpha=alpha, method=method)
        adjusted[finite] = corrected
        reject[finite] = rej
    return list(adjusted), list(reject)


def trigamma_inverse(x: ArrayLike, tol: float = 1e-8, max_iter: int = 50) -> np.ndarray:
    """
    Solve trigamma(y) = x for y using Newton's method (Smyth 2004, limma).
    """
    x = np.atleast_1d(np.asarray(x, dtype=float))
    y = np.empty_like(x)

    large = x > 1e7
    small = x < 1e-6
    y[large] = 1.0 / np.sqrt(x[large])
    y[small] = 1.0 / x[small]

    mid = ~(large | small)
    if mid.any():
        xm = x[mid]
        ym = 0.5 + 1.0 / xm
        for _ in range(max_iter):
            tri = special.polygamma(1, ym)
            dif = tri * (1 - tri / xm) / special.polygamma(2, ym)
            ym = ym + dif
            if np.max(-dif / ym) < tol:
                break
        y[mid] = ym
    return y


def fit_f_dist(variances: ArrayLike, df: float) -> Tuple[float, float]:
    """
    Estimate the scaled inverse chi-square prior for gene-wise variances.

    Moment estimation on the log scale following Smyth (2004). Zero and
    non-finite variances are ignored.

    Args:
        variances: Residual variances, one per gene
        df: Residual degrees of freedom shared by all genes

    Returns:
        Tuple of (d0, s0_sq): prior degrees of freedom (may be inf) and prior variance
    """
    s2 = np.asarray(variances, dtype=float)
    s2 = s2[np.isfinite(s2) & (s2 > 0)]
    if s2.size == 0:
        return np.inf, np.nan

    z = np.log(s2)
    e = z - special.digamma(df / 2) + np.log(df / 2)
    emean = float(np.mean(e))
    if s2.size < 2:
        return np.inf, float(np.exp(emean))

    evar = float(np.var(e, ddof=1)) - float(special.polygamma(1, df / 2))
    if evar > 0:
        d0 = 2 * float(trigamma_inverse(evar)[0])
        s0_sq = float(np.exp(emean + special.digamma(d0 / 2) - np.log(d0 / 2)))
    else:
        d0 = np.inf
        s0_sq = float(np.exp(emean))
    return d0, s0_sq


def squeeze_var(variances: ArrayLike, df: float, d0: float,
                s0_sq: float) -> Tuple[np.ndarray, float]:
    """
    Shrink gene-wise variances toward the prior.

    s2_post = (d0 * s0^2 + df * s2) / (d0 + df)

    Returns:
        Tuple of (posterior variances, total degrees of freedom)
    """
    s2 = np.asarray(variances, dtype=float)
    if np.isnan(s0_sq):
        return s2.copy(), float(df)
    if np.isinf(d0):
        return np.full(s2.shape, s0_sq), np.inf
    return (d0 * s0_sq + df * s2) / (d0 + df), float(d0 + df)


def moderated_t_pvalues(t_statistics: ArrayLike, df_total: float) -> np.ndarray:
    """Two-sided p-values for moderated t-statistics."""
    t = np.abs(np.asarray(t_statistics, dtype=float))
    if np.isinf(df_total):
        return 2 * stats.norm.sf(t)
    return 2 * stats.t.sf(t, df_total)


def average_ranks(values: ArrayLike) -> np.ndarray:
    """
    Rank values ascending (1 = smallest); ties share the averaged rank.

    NaN values are not ranked and come back as NaN.
    """
    arr = np.asarray(values, dtype=float)
    ranks = np.full(arr.shape, np.nan)
    finite = ~np.isnan(arr)
    if finite.any():
        ranks[finite] = stats.rankdata(arr[finite], method='average')
    return ranks


def overlap_coefficient(a: set, b: set) -> float:
    """Szymkiewicz-Simpson overlap: |A & B| / min(|A|, |B|); 0 when either is empty."""
    if not a or not b:
        return 0.0
    return len(a & b) / min(len(a), len(b))
