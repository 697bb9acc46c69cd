#!/usr/bin/env python3
"""
Differential Expression Engine
==============================
High vs Low responder contrast per gene with limma-style empirical Bayes
variance moderation.

Statistical model, for each gene g:
    1. OLS: y_g ~ b0 + b1 * high     (high = metric strictly above the cohort median)
    2. Residual variance: s2_g = RSS_g / (n - 2)
    3. Prior (d0, s0^2) fitted across genes (Smyth 2004)
    4. Posterior variance: (d0 * s0^2 + df * s2_g) / (d0 + df)
    5. Moderated t = b1 / sqrt(s2_post * (1/n_high + 1/n_low)), df_total = d0 + df
    6. Two-sided p-value, Benjamini-Hochberg adjustment
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd

from core.data_structures import Cohort
from core.statistics import apply_fdr_correction, fit_f_dist, squeeze_var, moderated_t_pvalues
from drpa.cohort import verify_alignment
from drpa.constants import FDR_ALPHA

logger = logging.getLogger(__name__)

DE_COLUMNS = ['gene_id', 'logFC', 'AveExpr', 't', 'P.Value', 'adj.P.Val', 'sigma2', 'sigma2_post', 'df_total']


def assign_response_groups(values: pd.Series) -> pd.Series:
    """True for samples strictly above the median (High); ties with the median are Low."""
    median = float(np.median(values.to_numpy(dtype=float)))
    return values > median


def moderated_contrast(expression: pd.DataFrame, high: pd.Series,
                       eb_moderation: bool = True) -> pd.DataFrame:
    """
    Fit the two-group contrast for every gene.

    Args:
        expression: genes x samples log expression
        high: boolean per sample (index must equal expression columns), True = High group
        eb_moderation: shrink gene-wise variances toward a common prior

    Returns:
        DataFrame with DE_COLUMNS, in expression row order
    """
    if list(high.index) != list(expression.columns):
        raise ValueError("Group labels are not aligned with expression columns")

    y = expression.to_numpy(dtype=float)
    is_high = high.to_numpy(dtype=bool)
    n_high = int(is_high.sum())
    n_low = int((~is_high).sum())
    if n_high < 1 or n_low < 1:
        raise ValueError(f"Both groups need samples (high={n_high}, low={n_low})")

    df_residual = n_high + n_low - 2
    if df_residual < 1:
        raise ValueError("At least three samples are needed to estimate residual variance")

    mean_high = y[:, is_high].mean(axis=1)
    mean_low = y[:, ~is_high].mean(axis=1)
    log_fc = mean_high - mean_low

    rss = ((y[:, is_high] - mean_high[:, None]) ** 2).sum(axis=1) \
        + ((y[:, ~is_high] - mean_low[:, None]) ** 2).sum(axis=1)
    sigma2 = rss / df_residual

    if eb_moderation:
        d0, s0_sq = fit_f_dist(sigma2, df_residual)
        sigma2_post, df_total = squeeze_var(sigma2, df_residual, d0, s0_sq)
        logger.info(f"EB prior: d0={d0:.2f}, s0²={s0_sq:.4g} (df_residual={df_residual})")
    else:
        sigma2_post, df_total = sigma2.copy(), float(df_residual)

    c_var = 1.0 / n_high + 1.0 / n_low
    se = np.sqrt(sigma2_post * c_var)
    with np.errstate(divide='ignore', invalid='ignore'):
        t_stat = np.where(se > 0, log_fc / se, 0.0)
    p_values = moderated_t_pvalues(t_stat, df_total)

    # Degenerate genes (no variance left after moderation) fall back to p = 1
    degenerate = ~(se > 0) | ~np.isfinite(t_stat)
    if degenerate.any():
        logger.debug(f"{int(degenerate.sum())} genes with zero variance; p-value set to 1")
        t_stat = np.where(degenerate, 0.0, t_stat)
        p_values = np.where(degenerate, 1.0, p_values)

    adj, _ = apply_fdr_correction(p_values)

    return pd.DataFrame({
        'gene_id': expression.index.astype(str),
        'logFC': log_fc,
        'AveExpr': y.mean(axis=1),
        't': t_stat,
        'P.Value': p_values,
        'adj.P.Val': adj,
        'sigma2': sigma2,
        'sigma2_post': sigma2_post,
        'df_total': df_total,
    }, columns=DE_COLUMNS)


def run_differential_expression(cohort: Cohort, metric: str,
                                eb_moderation: bool = True) -> pd.DataFrame:
    """
    Differential expression between High and Low responders for one metric.

    Returns:
        Gene statistic table sorted by P.Value (ties keep expression order),
        with a 'metric' column
    """
    verify_alignment(cohort.expression, cohort.responses, stage=f"differential:{metric}")
    high = assign_response_groups(cohort.metric(metric))
    logger.info(f"{metric}: {int(high.sum())} High vs {int((~high).sum())} Low samples")

    table = moderated_contrast(cohort.expression, high, eb_moderation=eb_moderation)
    table['metric'] = metric
    table = table.sort_values('P.Value', kind='mergesort').reset_index(drop=True)

    n_sig = int((table['adj.P.Val'] < FDR_ALPHA).sum())
    logger.info(f"{metric}: {n_sig} genes with adj.P.Val < {FDR_ALPHA}")
    return table


def significant_genes(table: pd.DataFrame, alpha: float = FDR_ALPHA,
                      min_abs_logfc: Optional[float] = None) -> pd.DataFrame:
    """
    Genes passing adj.P.Val < alpha; with min_abs_logfc also |logFC| > min_abs_logfc
    (the "strong" convention uses 1, i.e. two-fold).
    """
    mask = table['adj.P.Val'] < alpha
    if min_abs_logfc is not None:
        mask &= table['logFC'].abs() > min_abs_logfc
    return table[mask]
