"""
DRPA Core Modules
=================
Shared components for the Drug Response Pathway Analysis pipeline.

This package contains:
- data_structures: Core data classes (Cohort, PathwayRecord, IdentifierReport, ConcordanceSummary)
- statistics: FDR correction, empirical Bayes variance moderation, tie-aware ranking
"""

from .data_structures import (
    Cohort,
    PathwayRecord,
    IdentifierReport,
    ConcordanceSummary,
)

from .statistics import (
    apply_fdr_correction,
    fit_f_dist,
    squeeze_var,
    moderated_t_pvalues,
    average_ranks,
    overlap_coefficient,
)

__all__ = [
    # Data structures
    'Cohort',
    'PathwayRecord',
    'IdentifierReport',
    'ConcordanceSummary',
    # Statistics
    'apply_fdr_correction',
    'fit_f_dist',
    'squeeze_var',
    'moderated_t_pvalues',
    'average_ranks',
    'overlap_coefficient',
]

__version__ = '1.0.0'
