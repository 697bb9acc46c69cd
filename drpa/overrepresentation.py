#!/usr/bin/env python3
"""
Overrepresentation Pathway Engine
=================================
Length-bias-corrected pathway overrepresentation (goseq-style, Young et al. 2010).

1. Universe: combined-table genes with an Entrez id that belongs to >= 1 pathway
2. Labels: 1 for genes in the significant subset
3. Probability weighting function: monotone (isotonic) fit of label on gene length
4. Per pathway: Wallenius non-central hypergeometric test with
   odds = mean weight inside the pathway / mean weight outside it
5. Benjamini-Hochberg across pathways with at least one universe gene
"""

import logging
from typing import Iterable, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.isotonic import IsotonicRegression

from core.data_structures import IdentifierReport
from core.statistics import apply_fdr_correction
from drpa.constants import PWF_EPSILON
from drpa.pathway_db import PathwayDatabase
from drpa.utils import join_gene_list

logger = logging.getLogger(__name__)

ORA_COLUMNS = [
    'pathway_id', 'pathway_name', 'numDEInCat', 'numInCat', 'expected',
    'over_represented_pvalue', 'under_represented_pvalue', 'padj', 'tested',
    'de_genes', 'all_genes',
]


def build_gene_universe(combined: pd.DataFrame, annotation: pd.DataFrame,
                        db: PathwayDatabase,
                        report: IdentifierReport = None) -> pd.DataFrame:
    """
    Resolve combined-table genes to pathway-database ids.

    Args:
        combined: combined gene table (gene_id column, in combined-rank order)
        annotation: indexed by gene_id with entrez_id, symbol, length
        db: pathway database keyed by Entrez id
        report: optional IdentifierReport updated with the drop counts

    Returns:
        DataFrame indexed by entrez_id with gene_id, symbol and length;
        Entrez ids hit by several genes keep the best-ranked gene
    """
    genes = combined[['gene_id']].copy()
    genes['entrez_id'] = genes['gene_id'].map(annotation['entrez_id'])
    genes['symbol'] = genes['gene_id'].map(annotation['symbol'])
    genes['length'] = genes['gene_id'].map(annotation['length'])

    unmapped = genes['entrez_id'].isna()
    in_db = genes['entrez_id'].isin(db.all_genes())
    dropped = int((~in_db).sum())
    if dropped:
        logger.warning(
            f"{int(unmapped.sum())} genes without an Entrez id and "
            f"{int((~unmapped & ~in_db).sum())} without pathway membership excluded from the universe"
        )

    genes = genes[in_db]
    dup = genes['entrez_id'].duplicated(keep='first')
    if dup.any():
        logger.warning(f"{int(dup.sum())} genes share an Entrez id with a better-ranked gene; dropped")
    genes = genes[~dup].set_index('entrez_id')

    if report is not None:
        report.ora_unmapped_genes += dropped
        report.ora_duplicate_genes += int(dup.sum())

    genes['symbol'] = genes['symbol'].fillna(genes['gene_id'])
    logger.info(f"Gene universe: {len(genes)} genes with pathway annotation")
    return genes


def probability_weighting(labels: np.ndarray, bias: np.ndarray,
                          epsilon: float = PWF_EPSILON) -> np.ndarray:
    """
    Probability that a gene is labeled significant as a monotone function of its
    bias covariate (gene length).

    The direction of the fit (more or less likely with length) is chosen from
    the data. Missing covariates are imputed with the median. Weights are
    floored at ``epsilon`` so no gene gets zero weight.
    """
    y = np.asarray(labels, dtype=float)
    x = np.asarray(bias, dtype=float)
    if y.size == 0:
        return y

    finite = np.isfinite(x)
    if not finite.any():
        return np.full(y.shape, max(y.mean(), epsilon))
    if not finite.all():
        logger.info(f"Imputing median length for {int((~finite).sum())} genes")
        x = np.where(finite, x, np.median(x[finite]))

    model = IsotonicRegression(increasing='auto', out_of_bounds='clip')
    weights = model.fit_transform(x, y)
    logger.info(
        f"Length bias: significance {'increases' if model.increasing_ else 'decreases'} with gene length"
    )
    return np.clip(weights, epsilon, 1.0)


def wallenius_pvalues(n_de_in_cat: int, n_in_cat: int, n_de: int, n_total: int,
                      odds: float) -> Tuple[float, float]:
    """
    Over- and under-representation p-values under the Wallenius distribution.

    Returns:
        Tuple of (P(X >= k), P(X <= k))
    """
    if n_in_cat == 0 or n_de == 0:
        return 1.0, 1.0
    if n_in_cat == n_total or not np.isfinite(odds) or odds <= 0:
        odds = 1.0
    dist = stats.nchypergeom_wallenius(n_total, n_in_cat, n_de, odds)
    over = float(dist.sf(n_de_in_cat - 1))
    under = float(dist.cdf(n_de_in_cat))
    return min(max(over, 0.0), 1.0), min(max(under, 0.0), 1.0)


def hypergeometric_pvalues(n_de_in_cat: int, n_in_cat: int, n_de: int,
                           n_total: int) -> Tuple[float, float]:
    """Unweighted hypergeometric over/under p-values"""
    if n_in_cat == 0 or n_de == 0:
        return 1.0, 1.0
    dist = stats.hypergeom(n_total, n_in_cat, n_de)
    return float(dist.sf(n_de_in_cat - 1)), float(dist.cdf(n_de_in_cat))


def run_overrepresentation(universe: pd.DataFrame, significant_gene_ids: Iterable[str],
                           db: PathwayDatabase, method: str = 'wallenius') -> pd.DataFrame:
    """
    Pathway overrepresentation of the significant genes within the universe.

    Args:
        universe: output of build_gene_universe
        significant_gene_ids: gene_ids of the significant subset
        db: pathway database
        method: 'wallenius' (length-bias corrected) or 'hypergeometric'

    Returns:
        One row per pathway (ORA_COLUMNS), sorted by over_represented_pvalue.
        Pathways with no significant genes keep an empty de_genes string.
    """
    if method not in ('wallenius', 'hypergeometric'):
        raise ValueError(f"Unknown overrepresentation method: {method}")

    sig = set(significant_gene_ids)
    entrez = universe.index.to_numpy()
    labels = universe['gene_id'].isin(sig).to_numpy()
    weights = probability_weighting(labels.astype(float), universe['length'].to_numpy(dtype=float))
    symbols = universe['symbol'].astype(str).to_numpy()

    position = {g: i for i, g in enumerate(entrez)}
    n_total = len(entrez)
    n_de = int(labels.sum())
    total_weight = weights.sum()
    logger.info(f"Overrepresentation ({method}): {n_de} significant genes in a universe of {n_total}")

    rows = []
    for record in db.list_pathways():
        idx = np.array(sorted(position[g] for g in record.genes if g in position), dtype=int)
        n_in = len(idx)
        n_de_in = int(labels[idx].sum()) if n_in else 0

        if method == 'wallenius' and 0 < n_in < n_total:
            mean_in = weights[idx].mean()
            mean_out = (total_weight - weights[idx].sum()) / (n_total - n_in)
            odds = mean_in / mean_out if mean_out > 0 else 1.0
            over, under = wallenius_pvalues(n_de_in, n_in, n_de, n_total, odds)
        else:
            over, under = hypergeometric_pvalues(n_de_in, n_in, n_de, n_total)

        rows.append({
            'pathway_id': record.pathway_id,
            'pathway_name': record.name,
            'numDEInCat': n_de_in,
            'numInCat': n_in,
            'expected': n_de * n_in / n_total if n_total else 0.0,
            'over_represented_pvalue': over,
            'under_represented_pvalue': under,
            'tested': n_in > 0,
            'de_genes': join_gene_list(symbols[idx][labels[idx]]) if n_in else '',
            'all_genes': join_gene_list(symbols[idx]) if n_in else '',
        })

    result = pd.DataFrame(rows, columns=[c for c in ORA_COLUMNS if c != 'padj'])
    result['padj'] = 1.0
    tested = result['tested'].to_numpy(dtype=bool)
    if tested.any():
        adj, _ = apply_fdr_correction(result.loc[tested, 'over_represented_pvalue'].to_numpy())
        result.loc[tested, 'padj'] = adj

    result = result.sort_values(['over_represented_pvalue', 'pathway_id'], kind='mergesort')
    result = result.reset_index(drop=True)[ORA_COLUMNS]
    logger.info(f"{int((result['padj'] < 0.05).sum())} pathways overrepresented at padj < 0.05")
    return result
