#!/usr/bin/env python3
"""
Input loading, expression normalization and artifact writing
=============================================================
Thin glue around the statistical pipeline:

- Expression matrix (genes x cell lines, counts or normalized intensities)
- GDSC-style drug response table filtered to one drug
- Gene annotation (Ensembl -> Entrez / symbol / length)
- Output tables and the pathway -> genes mapping
"""

import json
import logging
from collections import Counter
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from core.data_structures import IdentifierReport
from drpa.constants import RESPONSE_COLUMNS, ARTIFACTS
from drpa.pathway_db import PathwayDatabase
from drpa.utils import strip_gene_version, dedupe_index

logger = logging.getLogger(__name__)


def _read_table(path: Path, **kwargs) -> pd.DataFrame:
    """Read CSV or TSV depending on the suffix"""
    sep = '\t' if path.suffix.lower() in ('.tsv', '.txt') else ','
    return pd.read_csv(path, sep=sep, **kwargs)


# ============================================================================
# LOADERS
# ============================================================================

def load_expression_matrix(path: str) -> pd.DataFrame:
    """
    Load an expression matrix with genes as rows and cell lines as columns.

    The first column holds versioned gene ids; versions are stripped and
    repeated genes keep their first row.

    Returns:
        DataFrame: rows=gene_id, cols=cell line names (as in the file)
    """
    expr_path = Path(path)
    if not expr_path.exists():
        raise FileNotFoundError(f"Expression matrix not found: {expr_path}")

    logger.info(f"Loading expression matrix from {expr_path.name}")
    df = _read_table(expr_path, index_col=0)
    df.index = [strip_gene_version(g) for g in df.index]
    df.index.name = 'gene_id'
    df, n_dup = dedupe_index(df)
    if n_dup:
        logger.warning(f"Dropped {n_dup} duplicate gene rows after stripping versions")
    logger.info(f"Loaded {len(df)} genes × {len(df.columns)} samples")
    return df


def load_drug_response(path: str, drug: str, metrics: Tuple[str, str],
                       columns: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """
    Load a GDSC-style fitted dose-response table restricted to one drug.

    Returns:
        DataFrame with columns cell_line_name, tissue and the two metric columns,
        one row per (drug, cell line) record of the requested drug
    """
    columns = columns or RESPONSE_COLUMNS
    resp_path = Path(path)
    if not resp_path.exists():
        raise FileNotFoundError(f"Drug response table not found: {resp_path}")

    logger.info(f"Loading drug response from {resp_path.name}")
    df = _read_table(resp_path)

    required = [columns['drug'], columns['cell_line'], columns['tissue'], *metrics]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Drug response table is missing columns: {missing}")

    df = df[df[columns['drug']].astype(str).str.lower() == drug.lower()]
    if df.empty:
        raise ValueError(f"No response records for drug '{drug}' in {resp_path.name}")

    out = pd.DataFrame({
        'cell_line_name': df[columns['cell_line']].astype(str).values,
        'tissue': df[columns['tissue']].astype(str).values,
        metrics[0]: pd.to_numeric(df[metrics[0]], errors='coerce').values,
        metrics[1]: pd.to_numeric(df[metrics[1]], errors='coerce').values,
    })
    n_missing = int(out[list(metrics)].isna().any(axis=1).sum())
    if n_missing:
        logger.warning(f"Dropped {n_missing} response records with missing metric values")
        out = out.dropna(subset=list(metrics))
    logger.info(f"Loaded {len(out)} response records for {drug}")
    return out.reset_index(drop=True)


def load_gene_annotation(path: str) -> pd.DataFrame:
    """
    Load the gene annotation table.

    Expected columns: gene_id, entrez_id, symbol, length.

    Returns:
        DataFrame indexed by version-stripped gene_id; entrez_id as string (NaN if unmapped)
    """
    ann_path = Path(path)
    if not ann_path.exists():
        raise FileNotFoundError(f"Gene annotation not found: {ann_path}")

    df = _read_table(ann_path, dtype={'entrez_id': str})
    missing = [c for c in ('gene_id', 'entrez_id', 'symbol') if c not in df.columns]
    if missing:
        raise ValueError(f"Gene annotation is missing columns: {missing}")
    return prepare_annotation(df)


def prepare_annotation(df: pd.DataFrame) -> pd.DataFrame:
    """Normalize an annotation frame: stripped ids, string Entrez ids, one row per gene"""
    df = df.copy()
    df['gene_id'] = df['gene_id'].map(strip_gene_version)
    df['entrez_id'] = df['entrez_id'].map(
        lambda x: str(x).split('.')[0] if pd.notna(x) and str(x) not in ('', 'nan') else np.nan
    )
    if 'length' not in df.columns:
        df['length'] = np.nan
    df = df.set_index('gene_id')
    df, n_dup = dedupe_index(df)
    if n_dup:
        logger.warning(f"Annotation has {n_dup} duplicate gene ids; kept first occurrence")
    return df[['entrez_id', 'symbol', 'length']]


# ============================================================================
# NORMALIZATION
# ============================================================================

def median_ratio_size_factors(counts: pd.DataFrame) -> pd.Series:
    """
    DESeq-style size factors: per-sample median ratio to the gene-wise geometric mean.

    Only genes expressed in every sample contribute.
    """
    values = counts.to_numpy(dtype=float)
    expressed = np.all(values > 0, axis=1)
    if not expressed.any():
        raise ValueError("No gene is expressed in every sample; cannot compute size factors")
    log_values = np.log(values[expressed])
    log_geo_means = log_values.mean(axis=1, keepdims=True)
    factors = np.exp(np.median(log_values - log_geo_means, axis=0))
    return pd.Series(factors, index=counts.columns, name='size_factor')


def normalize_counts(counts: pd.DataFrame, method: str = 'median_ratio_log2') -> pd.DataFrame:
    """
    Normalize an expression matrix into log2 space.

    Args:
        counts: genes x samples raw counts (or already-normalized values for 'none')
        method: 'median_ratio_log2' (size-factor scaling then log2(x + 1)) or 'none'

    Returns:
        New DataFrame; all-zero genes are removed for count input
    """
    if method == 'none':
        return counts.astype(float).copy()
    if method != 'median_ratio_log2':
        raise ValueError(f"Unknown normalization method: {method}")

    nonzero = (counts > 0).any(axis=1)
    n_zero = int((~nonzero).sum())
    if n_zero:
        logger.info(f"Removing {n_zero} genes with zero counts in every sample")
    counts = counts.loc[nonzero].astype(float)

    factors = median_ratio_size_factors(counts)
    normalized = np.log2(counts.div(factors, axis=1) + 1.0)
    logger.info(f"Normalized {len(normalized)} genes (size factors {factors.min():.2f}-{factors.max():.2f})")
    return normalized


# ============================================================================
# WRITERS
# ============================================================================

def write_table(df: pd.DataFrame, output_dir: str, name: str) -> Path:
    out_dir = Path(output_dir)
    out_dir.mkdir(exist_ok=True, parents=True)
    path = out_dir / name
    df.to_csv(path, index=False)
    logger.info(f"Saved {len(df)} rows to {path}")
    return path


def write_pathway_gene_map(db: PathwayDatabase, output_dir: str,
                           universe: Optional[set] = None) -> Path:
    """
    Serialize pathway name -> sorted member gene ids as JSON.

    Members are restricted to ``universe`` when given. Names shared by several
    pathways are written as ``"name (id)"``.
    """
    records = db.list_pathways()
    name_counts = Counter(record.name for record in records)
    mapping = {}
    for record in records:
        genes = record.genes if universe is None else record.restrict(frozenset(universe)).genes
        key = record.name if name_counts[record.name] == 1 else f"{record.name} ({record.pathway_id})"
        mapping[key] = sorted(genes)

    out_dir = Path(output_dir)
    out_dir.mkdir(exist_ok=True, parents=True)
    path = out_dir / ARTIFACTS['pathway_genes']
    with open(path, 'w') as f:
        json.dump(mapping, f, indent=2, sort_keys=True)
    logger.info(f"Saved gene lists for {len(mapping)} pathways to {path}")
    return path


def write_summary(payload: Dict, output_dir: str, name: str) -> Path:
    out_dir = Path(output_dir)
    out_dir.mkdir(exist_ok=True, parents=True)
    path = out_dir / name
    with open(path, 'w') as f:
        json.dump(payload, f, indent=2, default=_json_default)
    return path


def _json_default(o):
    if isinstance(o, IdentifierReport):
        return asdict(o)
    if isinstance(o, np.integer):
        return int(o)
    if isinstance(o, np.floating):
        return float(o)
    if isinstance(o, (set, frozenset)):
        return sorted(o)
    raise TypeError(f"Cannot serialize {type(o)}")
