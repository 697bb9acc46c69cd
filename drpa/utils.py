#!/usr/bin/env python3
"""
Shared utilities for DRPA (Drug Response Pathway Analysis).
Keeps identifier handling DRY across modules.
"""

import re
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from drpa.constants import GENE_LIST_SEP


def normalize_sample_id(name: str) -> str:
    """
    Normalize a cell-line identifier so both datasets spell it the same way.

    Uppercases, strips every non-alphanumeric character and removes the 'X'
    that R's make.names() prepends to names starting with a digit.

    >>> normalize_sample_id('NCI-H1975')
    'NCIH1975'
    >>> normalize_sample_id('X22Rv1')
    '22RV1'
    """
    safe = re.sub(r'[^0-9A-Za-z]', '', str(name)).upper()
    return re.sub(r'^X(?=\d)', '', safe)


def strip_gene_version(gene_id: str) -> str:
    """'ENSG00000142627.13' -> 'ENSG00000142627'"""
    return str(gene_id).split('.')[0]


def dedupe_index(df: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
    """Drop rows whose index repeats an earlier one; returns (frame, n_dropped)."""
    dup = df.index.duplicated(keep='first')
    return df.loc[~dup], int(dup.sum())


def join_gene_list(genes: Iterable[str], sep: str = GENE_LIST_SEP) -> str:
    """Sorted, delimited gene list; empty string when there are no genes."""
    return sep.join(sorted(str(g) for g in genes))


def split_gene_list(value: Optional[str], sep: str = GENE_LIST_SEP) -> List[str]:
    if value is None or (isinstance(value, float) and pd.isna(value)) or value == '':
        return []
    return str(value).split(sep)


def _progress(msg: str, step: str = "") -> None:
    """Print progress message so user always sees what's happening (flush immediately)."""
    if step:
        print(f"    -> {msg} [{step}]", flush=True)
    else:
        print(f"    -> {msg}...", flush=True)
