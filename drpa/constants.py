#!/usr/bin/env python3
"""
Canonical constants for DRPA
============================
Single source of truth for default drug, response metrics, cohort filters,
statistical thresholds and artifact names. All other modules should import
from here instead of maintaining their own copies.
"""

import math
from typing import Dict, Tuple

# ---------------------------------------------------------------------------
# DRUG & RESPONSE METRICS
# GDSC fitted dose-response column names.
# ---------------------------------------------------------------------------

DRUG = 'Dasatinib'

POTENCY_METRIC = 'LN_IC50'
AUC_METRIC = 'AUC'

HIGH_IS_RESISTANT = 'high_is_resistant'
LOW_IS_RESISTANT = 'low_is_resistant'
VALID_DIRECTIONS = (HIGH_IS_RESISTANT, LOW_IS_RESISTANT)

# Higher IC50 and higher viability AUC both mean the line survives more drug.
METRIC_DIRECTIONS: Dict[str, str] = {
    POTENCY_METRIC: HIGH_IS_RESISTANT,
    AUC_METRIC: HIGH_IS_RESISTANT,
}

RESPONSE_COLUMNS: Dict[str, str] = {
    'drug': 'DRUG_NAME',
    'cell_line': 'CELL_LINE_NAME',
    'tissue': 'TCGA_DESC',
}

# ---------------------------------------------------------------------------
# COHORT
# ---------------------------------------------------------------------------

TISSUES: Tuple[str, ...] = ('BRCA', 'LUAD')

# Percentiles of the AUC metric bounding the excluded middle band
EXTREME_QUANTILES: Tuple[float, float] = (33.0, 66.0)

# Cell lines flagged as technical outliers (normalized ids)
EXCLUDED_SAMPLES: Tuple[str, ...] = ()

# EPHA2, a reported dasatinib response marker
MARKER_GENE_ID = 'ENSG00000142627'

# ---------------------------------------------------------------------------
# STATISTICAL THRESHOLDS
# ---------------------------------------------------------------------------

FDR_ALPHA = 0.05
MIN_ABS_LOGFC = math.log2(2)

SEED = 42
N_PERMUTATIONS = 1000
GSEA_MIN_SIZE = 15
GSEA_MAX_SIZE = 500
GSEA_WEIGHT = 1.0
COLLAPSE_OVERLAP_THRESHOLD = 0.5

CONCORDANCE_TOP_K = 100

# Lower bound on the probability weighting function
PWF_EPSILON = 1e-4

ORA_METHODS = ('wallenius', 'hypergeometric')
NORMALIZATION_METHODS = ('median_ratio_log2', 'none')

# ---------------------------------------------------------------------------
# PATHWAY DATABASE
# ---------------------------------------------------------------------------

KEGG_REST_URL = 'https://rest.kegg.jp'
ORGANISM = 'hsa'

# ---------------------------------------------------------------------------
# OUTPUT
# ---------------------------------------------------------------------------

GENE_LIST_SEP = '/'

ARTIFACTS: Dict[str, str] = {
    'combined': 'combined_gene_table.csv',
    'ora': 'ora_pathways.csv',
    'gsea': 'gsea_pathways.csv',
    'gsea_main': 'gsea_main_pathways.csv',
    'pathway_genes': 'pathway_genes.json',
    'concordance': 'concordance.json',
}
