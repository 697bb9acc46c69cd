#!/usr/bin/env python3
"""
Rank Aggregator
===============
Merges the per-metric differential expression tables into one combined gene
table with an explicit direction-concordance field and a combined rank.

Conventions:
- Effects are oriented toward resistance using the configured direction of
  each metric: resistance_logFC = logFC if high values mean resistant,
  -logFC if low values do.
- concordance = sign(resistance_logFC_1) * sign(resistance_logFC_2);
  +1 = both metrics associate the gene with the same phenotype.
- Ranks by adj.P.Val within a metric; tied values share the averaged rank.
  A gene absent from a metric takes rank n_ranked + 1 there.
- Combined order: avg_rank ascending, gene_id ascending on ties.
"""

import logging
from typing import Dict, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from core.statistics import average_ranks
from drpa.config import ConfigurationError
from drpa.constants import HIGH_IS_RESISTANT, MIN_ABS_LOGFC, VALID_DIRECTIONS

logger = logging.getLogger(__name__)

MERGED_FIELDS = ['logFC', 'AveExpr', 't', 'P.Value', 'adj.P.Val']


def direction_sign(direction: str) -> int:
    if direction not in VALID_DIRECTIONS:
        raise ConfigurationError(f"Unknown direction '{direction}'; expected one of {VALID_DIRECTIONS}")
    return 1 if direction == HIGH_IS_RESISTANT else -1


def combine_gene_tables(tables: Dict[str, pd.DataFrame],
                        directions: Dict[str, str]) -> pd.DataFrame:
    """
    Outer-join two per-metric DE tables on gene_id.

    Args:
        tables: {metric: DE table}, exactly two metrics, in analysis order
        directions: {metric: 'high_is_resistant' | 'low_is_resistant'}

    Returns:
        Combined gene table sorted by combined_rank (1 = most jointly significant)
    """
    if len(tables) != 2:
        raise ValueError(f"Expected two metric tables, got {len(tables)}")
    metrics = list(tables)

    merged = None
    for metric in metrics:
        table = tables[metric]
        if table['gene_id'].duplicated().any():
            raise ValueError(f"DE table for {metric} has duplicate gene ids")
        part = table[['gene_id'] + MERGED_FIELDS].rename(
            columns={c: f"{c}_{metric}" for c in MERGED_FIELDS}
        )
        merged = part if merged is None else merged.merge(part, on='gene_id', how='outer')

    signs = []
    for metric in metrics:
        oriented = merged[f"logFC_{metric}"] * direction_sign(directions[metric])
        merged[f"resistance_logFC_{metric}"] = oriented
        signs.append(np.sign(oriented))
    merged['concordance'] = signs[0] * signs[1]

    rank_cols = []
    for metric in metrics:
        ranks = average_ranks(merged[f"adj.P.Val_{metric}"])
        n_ranked = int(np.sum(~np.isnan(ranks)))
        ranks = np.where(np.isnan(ranks), n_ranked + 1, ranks)
        merged[f"rank_{metric}"] = ranks
        rank_cols.append(f"rank_{metric}")
    merged['avg_rank'] = merged[rank_cols].mean(axis=1)

    merged = merged.sort_values('gene_id', kind='mergesort')
    merged = merged.sort_values('avg_rank', kind='mergesort').reset_index(drop=True)
    merged['combined_rank'] = np.arange(1, len(merged) + 1)

    n_both = int(merged[[f"logFC_{m}" for m in metrics]].notna().all(axis=1).sum())
    logger.info(
        f"Combined {len(merged)} genes ({n_both} in both tables); "
        f"{int((merged['concordance'] == 1).sum())} concordant, "
        f"{int((merged['concordance'] == -1).sum())} discordant"
    )
    return merged


def select_significant_genes(combined: pd.DataFrame, metrics: Sequence[str],
                             min_abs_logfc: float = MIN_ABS_LOGFC) -> pd.DataFrame:
    """
    Genes for pathway analysis: concordant direction AND |logFC| > min_abs_logfc
    for BOTH metrics.
    """
    mask = combined['concordance'] == 1
    for metric in metrics:
        mask &= combined[f"logFC_{metric}"].abs() > min_abs_logfc
    selected = combined[mask]
    logger.info(f"{len(selected)} concordant genes with |logFC| > {min_abs_logfc:.3g} in both metrics")
    return selected


def validate_direction_convention(responses: pd.DataFrame, metrics: Sequence[str],
                                  directions: Dict[str, str], alpha: float = 0.05) -> float:
    """
    Check the configured directions against the data.

    If both metrics measure resistance the same way round, they should correlate
    positively (negatively when one is inverted). A significant correlation of
    the opposite sign means the configuration is wrong.

    Returns:
        Spearman rho between the two metrics

    Raises:
        ConfigurationError: when the observed association contradicts the configuration
    """
    first, second = metrics
    expected = direction_sign(directions[first]) * direction_sign(directions[second])
    rho, p_value = stats.spearmanr(responses[first], responses[second])
    if np.isnan(rho):
        logger.warning("Cannot check metric directions: correlation undefined")
        return float(rho)
    if np.sign(rho) == -expected and p_value < alpha:
        raise ConfigurationError(
            f"{first} and {second} correlate with rho={rho:.2f} (p={p_value:.2g}), "
            f"contradicting the configured directions {directions[first]} / {directions[second]}"
        )
    logger.info(f"Direction check: Spearman rho({first}, {second}) = {rho:.2f}")
    return float(rho)
