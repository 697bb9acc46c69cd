#!/usr/bin/env python3
"""
Cohort Builder
==============
Matches expression columns to drug-response records and narrows them to the
analysis cohort:

1. Normalize sample identifiers in both sources
2. Keyed intersection join
3. Tissue allow-list
4. Extreme responders by the AUC metric (middle band excluded)
5. Known-bad sample denylist
6. Marker gene expression attached as a covariate

The cohort's expression columns and response rows are verified to be in the
same order before anything downstream sees them.
"""

import logging
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from core.data_structures import Cohort, IdentifierReport
from drpa.config import PipelineConfig
from drpa.utils import normalize_sample_id, dedupe_index

logger = logging.getLogger(__name__)


class CohortJoinError(ValueError):
    """Structural failure joining expression and response data"""


def verify_alignment(expression: pd.DataFrame, responses: pd.DataFrame,
                     stage: str = "alignment") -> None:
    """Raise CohortJoinError unless expression columns and response rows match one-to-one, in order."""
    expr_ids = list(expression.columns)
    resp_ids = list(responses.index)
    if len(expr_ids) != len(resp_ids):
        raise CohortJoinError(
            f"[{stage}] expression has {len(expr_ids)} samples but responses have {len(resp_ids)}"
        )
    mismatches = [i for i, (a, b) in enumerate(zip(expr_ids, resp_ids)) if a != b]
    if mismatches:
        i = mismatches[0]
        raise CohortJoinError(
            f"[{stage}] sample order differs at {len(mismatches)} positions "
            f"(first at {i}: '{expr_ids[i]}' vs '{resp_ids[i]}')"
        )


def normalize_expression_columns(expression: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
    """Rename expression columns to normalized ids; duplicates keep the first column."""
    renamed = expression.copy()
    renamed.columns = [normalize_sample_id(c) for c in expression.columns]
    dup = renamed.columns.duplicated(keep='first')
    n_dup = int(dup.sum())
    if n_dup:
        logger.warning(f"{n_dup} expression samples share a normalized id with an earlier column; dropped")
    return renamed.loc[:, ~dup], n_dup


def normalize_response_index(responses: pd.DataFrame,
                             name_column: str = 'cell_line_name') -> Tuple[pd.DataFrame, int]:
    """Index response records by normalized id; duplicates keep the first record."""
    indexed = responses.copy()
    indexed.index = pd.Index([normalize_sample_id(n) for n in responses[name_column]], name='sample_id')
    indexed, n_dup = dedupe_index(indexed)
    if n_dup:
        logger.warning(f"{n_dup} response records share a normalized id with an earlier record; dropped")
    return indexed, n_dup


def match_samples(expression: pd.DataFrame, responses: pd.DataFrame,
                  report: IdentifierReport) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Keyed intersection of normalized expression columns and response records.

    Ordering follows the expression matrix.

    Raises:
        CohortJoinError: if no sample is present in both sources
    """
    shared = [s for s in expression.columns if s in responses.index]
    report.unmatched_expression_samples = len(expression.columns) - len(shared)
    report.unmatched_response_samples = len(responses) - len(shared)

    if not shared:
        raise CohortJoinError(
            f"[expression ∩ response] no shared samples between {len(expression.columns)} "
            f"expression columns and {len(responses)} response records"
        )
    logger.info(
        f"Matched {len(shared)} samples "
        f"({report.unmatched_expression_samples} expression-only, "
        f"{report.unmatched_response_samples} response-only)"
    )
    return expression[shared], responses.loc[shared]


def filter_tissues(responses: pd.DataFrame, tissues: Sequence[str]) -> pd.DataFrame:
    allowed = set(tissues)
    kept = responses[responses['tissue'].isin(allowed)]
    if kept.empty:
        raise CohortJoinError(f"[tissue filter] no matched samples with tissue in {sorted(allowed)}")
    logger.info(f"Tissue filter {sorted(allowed)}: {len(kept)}/{len(responses)} samples")
    return kept


def extreme_responders(values: pd.Series,
                       quantiles: Tuple[float, float] = (33.0, 66.0)) -> Tuple[pd.Series, float, float]:
    """
    Flag samples strictly below the low percentile or strictly above the high one.

    Percentiles are computed on ``values`` itself, i.e. on the already
    filtered population.

    Returns:
        Tuple of (boolean mask aligned to values, low_cut, high_cut)
    """
    low_cut, high_cut = np.percentile(values.to_numpy(dtype=float), list(quantiles))
    mask = (values < low_cut) | (values > high_cut)
    return mask, float(low_cut), float(high_cut)


def exclude_samples(responses: pd.DataFrame, denylist: Iterable[str]) -> Tuple[pd.DataFrame, int]:
    bad = {normalize_sample_id(s) for s in denylist}
    keep = ~responses.index.isin(bad)
    n_removed = int((~keep).sum())
    if n_removed:
        logger.info(f"Excluded {n_removed} known-bad samples: {sorted(set(responses.index[~keep]))}")
    return responses[keep], n_removed


def attach_marker(responses: pd.DataFrame, expression: pd.DataFrame,
                  marker_gene_id: Optional[str]) -> pd.DataFrame:
    """Add the marker gene's expression per sample as 'marker_expression' (keyed by sample id)."""
    out = responses.copy()
    if marker_gene_id is None:
        return out
    if marker_gene_id not in expression.index:
        logger.warning(f"Marker gene {marker_gene_id} not in expression matrix; covariate left empty")
        out['marker_expression'] = np.nan
        return out
    out['marker_expression'] = expression.loc[marker_gene_id].reindex(out.index)
    return out


def build_cohort(expression: pd.DataFrame, responses: pd.DataFrame,
                 config: PipelineConfig) -> Cohort:
    """
    Build the matched, filtered analysis cohort.

    Args:
        expression: genes x samples normalized log expression (original sample names)
        responses: response records with cell_line_name, tissue and both metric columns
        config: pipeline configuration

    Returns:
        Cohort with aligned expression and response tables

    Raises:
        CohortJoinError: empty intersection, empty tissue filter, empty cohort
            or misaligned output
    """
    report = IdentifierReport()

    expr, report.duplicate_expression_samples = normalize_expression_columns(expression)
    resp, report.duplicate_response_samples = normalize_response_index(responses)

    expr, resp = match_samples(expr, resp, report)
    resp = filter_tissues(resp, config.tissues)

    mask, low_cut, high_cut = extreme_responders(resp[config.auc_metric], config.extreme_quantiles)
    logger.info(
        f"Extreme responders by {config.auc_metric} (< {low_cut:.4g} or > {high_cut:.4g}): "
        f"{int(mask.sum())}/{len(resp)} samples"
    )
    resp = resp[mask]

    resp, report.excluded_samples = exclude_samples(resp, config.excluded_samples)
    if resp.empty:
        raise CohortJoinError("[cohort] no samples left after extremity and denylist filters")

    # Keyed re-selection: expression follows the response index, never position
    expr = expr.loc[:, list(resp.index)]
    resp = attach_marker(resp, expr, config.marker_gene_id)

    verify_alignment(expr, resp, stage="cohort")
    logger.info(f"Cohort: {len(resp)} samples × {len(expr)} genes")
    return Cohort(expression=expr, responses=resp, low_cut=low_cut, high_cut=high_cut, report=report)
