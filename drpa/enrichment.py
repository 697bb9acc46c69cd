#!/usr/bin/env python3
"""
Rank-Based Enrichment Engine
============================
Preranked gene-set enrichment analysis (Subramanian et al. 2005) over the
moderated t-statistic of one response metric, plus redundancy collapse of the
significant pathways by leading-edge overlap.

Null distribution: random gene sets of the same size drawn from the ranked
list, nperm per distinct pathway size, from one generator seeded once per call.
"""

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm

from core.data_structures import IdentifierReport
from core.statistics import apply_fdr_correction, overlap_coefficient
from drpa.constants import (
    SEED, N_PERMUTATIONS, GSEA_MIN_SIZE, GSEA_MAX_SIZE, GSEA_WEIGHT,
    FDR_ALPHA, COLLAPSE_OVERLAP_THRESHOLD,
)
from drpa.pathway_db import PathwayDatabase
from drpa.utils import join_gene_list, split_gene_list

logger = logging.getLogger(__name__)

GSEA_COLUMNS = [
    'pathway_id', 'pathway_name', 'size', 'ES', 'NES', 'pval', 'padj', 'tested',
    'leading_edge_size', 'leading_edge', 'leading_edge_ids',
]


def prepare_ranking(de_table: pd.DataFrame, annotation: pd.DataFrame,
                    stat_column: str = 't',
                    report: Optional[IdentifierReport] = None) -> pd.DataFrame:
    """
    Build the ranked gene list for enrichment.

    Genes are mapped to Entrez ids; unmapped genes are dropped and counted.
    When several genes share an Entrez id the first one in ``de_table`` order
    is kept. Ties in the statistic keep that same order.

    Returns:
        DataFrame with entrez_id, gene_id, symbol, stat sorted by stat descending
    """
    ranked = pd.DataFrame({
        'gene_id': de_table['gene_id'].astype(str).values,
        'stat': de_table[stat_column].to_numpy(dtype=float),
    })
    ranked['entrez_id'] = ranked['gene_id'].map(annotation['entrez_id'])
    ranked['symbol'] = ranked['gene_id'].map(annotation['symbol']).fillna(ranked['gene_id'])

    unmapped = ranked['entrez_id'].isna() | ranked['stat'].isna()
    if unmapped.any():
        logger.warning(f"{int(unmapped.sum())} genes without an Entrez id or statistic dropped from ranking")
    ranked = ranked[~unmapped]

    dup = ranked['entrez_id'].duplicated(keep='first')
    if dup.any():
        logger.warning(f"{int(dup.sum())} duplicate Entrez ids in ranking; first occurrence kept")
    ranked = ranked[~dup]

    if report is not None:
        report.gsea_unmapped_genes += int(unmapped.sum())
        report.gsea_duplicate_genes += int(dup.sum())

    ranked = ranked.sort_values('stat', ascending=False, kind='mergesort').reset_index(drop=True)
    return ranked[['entrez_id', 'gene_id', 'symbol', 'stat']]


def enrichment_score(stats: np.ndarray, hits: np.ndarray,
                     weight: float = GSEA_WEIGHT) -> Tuple[float, int]:
    """
    Weighted running-sum enrichment score.

    Args:
        stats: ranking statistic, sorted descending
        hits: sorted positions (0-based) of the gene set members in ``stats``
        weight: exponent on |stat| for hit increments (0 = classic KS)

    Returns:
        Tuple of (ES, index into ``hits`` of the peak). For ES > 0 the leading
        edge is hits[:peak + 1], for ES < 0 it is hits[peak:].
    """
    n = len(stats)
    n_hits = len(hits)
    n_miss = n - n_hits
    if n_hits == 0 or n_miss == 0:
        return float('nan'), -1

    w = np.abs(stats[hits]) ** weight
    total = w.sum()
    if total == 0:
        w = np.ones(n_hits)
        total = float(n_hits)

    cum_hits = np.cumsum(w) / total
    misses_before = (hits - np.arange(n_hits)) / n_miss
    after = cum_hits - misses_before
    before = cum_hits - w / total - misses_before

    i_max = int(np.argmax(after))
    i_min = int(np.argmin(before))
    if after[i_max] >= -before[i_min]:
        return float(after[i_max]), i_max
    return float(before[i_min]), i_min


def _null_distribution(stats: np.ndarray, size: int, n_permutations: int,
                       rng: np.random.Generator, weight: float) -> np.ndarray:
    n = len(stats)
    null = np.empty(n_permutations)
    for j in range(n_permutations):
        hits = np.sort(rng.choice(n, size=size, replace=False))
        null[j] = enrichment_score(stats, hits, weight)[0]
    return null


def _normalize(es: float, null: np.ndarray) -> float:
    if np.isnan(es):
        return float('nan')
    same_sign = null[null >= 0] if es >= 0 else np.abs(null[null < 0])
    if same_sign.size == 0 or same_sign.mean() == 0:
        return float('nan')
    return es / same_sign.mean()


def run_gsea(ranking: pd.DataFrame, db: PathwayDatabase,
             n_permutations: int = N_PERMUTATIONS, seed: int = SEED,
             min_size: int = GSEA_MIN_SIZE, max_size: int = GSEA_MAX_SIZE,
             weight: float = GSEA_WEIGHT, show_progress: bool = False) -> pd.DataFrame:
    """
    Permutation-based enrichment of every pathway against a ranked gene list.

    Args:
        ranking: output of prepare_ranking
        db: pathway database keyed by Entrez id
        n_permutations: random gene sets per pathway size
        seed: random seed; identical inputs and seed give identical results
        min_size, max_size: bounds on pathway size within the ranking
        weight: running-sum weight exponent

    Returns:
        One row per pathway (GSEA_COLUMNS) sorted by pval then pathway_id.
        Pathways outside the size bounds have tested=False, NaN ES/NES,
        pval = padj = 1 and an empty leading edge.
    """
    stats = ranking['stat'].to_numpy(dtype=float)
    entrez = ranking['entrez_id'].to_numpy()
    symbols = ranking['symbol'].astype(str).to_numpy()
    position = {g: i for i, g in enumerate(entrez)}
    n_genes = len(stats)

    members: Dict[str, np.ndarray] = {}
    for record in db.list_pathways():
        members[record.pathway_id] = np.array(
            sorted(position[g] for g in record.genes if g in position), dtype=int
        )

    testable = {
        pid: hits for pid, hits in members.items()
        if min_size <= len(hits) <= max_size and len(hits) < n_genes
    }
    sizes = sorted({len(h) for h in testable.values()})
    logger.info(
        f"GSEA: {len(testable)}/{len(members)} pathways within size [{min_size}, {max_size}], "
        f"{len(sizes)} distinct sizes × {n_permutations} permutations, seed={seed}"
    )

    rng = np.random.default_rng(seed)
    nulls = {}
    for size in tqdm(sizes, desc="Permutations", unit="size", disable=not show_progress):
        nulls[size] = _null_distribution(stats, size, n_permutations, rng, weight)

    rows = []
    for record in db.list_pathways():
        hits = members[record.pathway_id]
        row = {
            'pathway_id': record.pathway_id,
            'pathway_name': record.name,
            'size': len(hits),
            'ES': float('nan'),
            'NES': float('nan'),
            'pval': 1.0,
            'tested': record.pathway_id in testable,
            'leading_edge_size': 0,
            'leading_edge': '',
            'leading_edge_ids': '',
        }
        if row['tested']:
            es, peak = enrichment_score(stats, hits, weight)
            null = nulls[len(hits)]
            leading = hits[:peak + 1] if es > 0 else hits[peak:]
            row.update({
                'ES': es,
                'NES': _normalize(es, null),
                'pval': (1 + int(np.sum(np.abs(null) >= abs(es)))) / (1 + n_permutations),
                'leading_edge_size': len(leading),
                'leading_edge': join_gene_list(symbols[leading]),
                'leading_edge_ids': join_gene_list(entrez[leading]),
            })
        rows.append(row)

    result = pd.DataFrame(rows, columns=[c for c in GSEA_COLUMNS if c != 'padj'])
    result['padj'] = 1.0
    tested = result['tested'].to_numpy(dtype=bool)
    if tested.any():
        adj, _ = apply_fdr_correction(result.loc[tested, 'pval'].to_numpy())
        result.loc[tested, 'padj'] = adj

    result = result.sort_values(['pval', 'pathway_id'], kind='mergesort').reset_index(drop=True)
    logger.info(f"{int((result['padj'] < FDR_ALPHA).sum())} pathways enriched at padj < {FDR_ALPHA}")
    return result[GSEA_COLUMNS]


def collapse_pathways(results: pd.DataFrame, alpha: float = FDR_ALPHA,
                      overlap_threshold: float = COLLAPSE_OVERLAP_THRESHOLD) -> pd.DataFrame:
    """
    Collapse redundant significant pathways into main pathways.

    Significant pathways (padj < alpha) are visited by padj ascending, then
    |NES| descending, then pathway_id. Each one joins the existing main pathway
    of the same NES sign whose leading edge it overlaps most, provided the
    overlap coefficient |A & B| / min(|A|, |B|) is strictly above
    ``overlap_threshold``; otherwise it becomes a new main pathway.

    Returns:
        Main pathways ordered by NES descending, with 'collapsed_pathways'
        (';'-joined ids absorbed into each) and 'n_collapsed'
    """
    sig = results[results['tested'] & (results['padj'] < alpha)].copy()
    sig['_abs_nes'] = sig['NES'].abs()
    sig = sig.sort_values(['padj', '_abs_nes', 'pathway_id'], ascending=[True, False, True],
                          kind='mergesort')

    mains: List[Tuple[str, float, set]] = []
    children: Dict[str, List[str]] = {}
    for _, row in sig.iterrows():
        edge = set(split_gene_list(row['leading_edge_ids']))
        sign = np.sign(row['NES'])
        best_id, best_overlap = None, 0.0
        for main_id, main_sign, main_edge in mains:
            if main_sign != sign:
                continue
            overlap = overlap_coefficient(edge, main_edge)
            if overlap > best_overlap:
                best_id, best_overlap = main_id, overlap
        if best_id is not None and best_overlap > overlap_threshold:
            children[best_id].append(row['pathway_id'])
        else:
            mains.append((row['pathway_id'], sign, edge))
            children[row['pathway_id']] = []

    main_ids = [m[0] for m in mains]
    main = sig[sig['pathway_id'].isin(main_ids)].drop(columns='_abs_nes')
    main['collapsed_pathways'] = main['pathway_id'].map(lambda p: ';'.join(children[p]))
    main['n_collapsed'] = main['pathway_id'].map(lambda p: len(children[p]))
    main = main.sort_values(['NES', 'pathway_id'], ascending=[False, True], kind='mergesort')
    logger.info(f"Collapsed {len(sig)} significant pathways into {len(main)} main pathways")
    return main.reset_index(drop=True)
