"""
Concordance between the overrepresentation and rank-enrichment results.

Read-only: summarizes how many significant pathways the two methods share,
both among their top-K and across the full significant sets.
"""

import logging
from typing import List

import pandas as pd
from scipy import stats

from core.data_structures import ConcordanceSummary
from drpa.constants import CONCORDANCE_TOP_K, FDR_ALPHA

logger = logging.getLogger(__name__)


def significant_pathways(results: pd.DataFrame, alpha: float = FDR_ALPHA) -> List[str]:
    """Significant pathway ids ordered by padj ascending, pathway_id on ties"""
    sig = results[results['tested'] & (results['padj'] < alpha)]
    sig = sig.sort_values(['padj', 'pathway_id'], kind='mergesort')
    return list(sig['pathway_id'])


def compare_enrichments(ora: pd.DataFrame, gsea: pd.DataFrame,
                        top_k: int = CONCORDANCE_TOP_K,
                        alpha: float = FDR_ALPHA) -> ConcordanceSummary:
    """
    Compare the significant pathway sets of both methods.

    The overlap p-value is hypergeometric over pathways tested by both methods.
    """
    ora_sig = significant_pathways(ora, alpha)
    gsea_sig = significant_pathways(gsea, alpha)

    shared = sorted(set(ora_sig) & set(gsea_sig))
    top_shared = sorted(set(ora_sig[:top_k]) & set(gsea_sig[:top_k]))
    union = set(ora_sig) | set(gsea_sig)

    common = set(ora.loc[ora['tested'], 'pathway_id']) & set(gsea.loc[gsea['tested'], 'pathway_id'])
    n_ora_common = len(set(ora_sig) & common)
    n_gsea_common = len(set(gsea_sig) & common)
    if common and n_ora_common and n_gsea_common:
        overlap_pvalue = float(stats.hypergeom.sf(len(shared) - 1, len(common), n_ora_common, n_gsea_common))
    else:
        overlap_pvalue = 1.0

    summary = ConcordanceSummary(
        n_ora_significant=len(ora_sig),
        n_gsea_significant=len(gsea_sig),
        top_k=top_k,
        top_k_overlap=len(top_shared),
        full_overlap=len(shared),
        jaccard=len(shared) / len(union) if union else 0.0,
        overlap_pvalue=min(max(overlap_pvalue, 0.0), 1.0),
        shared_pathways=shared,
        top_k_shared_pathways=top_shared,
        n_tested_common=len(common),
    )
    logger.info(
        f"Concordance: ORA {summary.n_ora_significant} vs GSEA {summary.n_gsea_significant} significant; "
        f"top-{top_k} overlap {summary.top_k_overlap}, full overlap {summary.full_overlap} "
        f"(p={summary.overlap_pvalue:.2g})"
    )
    return summary
