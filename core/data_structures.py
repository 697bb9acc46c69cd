"""
Core Data Structures for DRPA
=============================
Dataclasses representing cohorts, pathways, identifier bookkeeping and
cross-method concordance.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, FrozenSet

import pandas as pd


@dataclass
class IdentifierReport:
    """
    Counts of rows dropped because an identifier could not be resolved.

    Attributes:
        duplicate_expression_samples: Expression columns collapsing onto an existing id
        duplicate_response_samples: Response rows collapsing onto an existing id
        unmatched_expression_samples: Expression samples with no response record
        unmatched_response_samples: Response records with no expression column
        excluded_samples: Denylisted samples removed from the cohort
        ora_unmapped_genes: Genes left out of the overrepresentation universe
            (no Entrez id or no pathway membership)
        ora_duplicate_genes: Universe genes sharing an Entrez id with a better-ranked gene
        gsea_unmapped_genes: Genes left out of the enrichment ranking (no Entrez id)
        gsea_duplicate_genes: Ranked genes sharing an Entrez id with an earlier gene
    """
    duplicate_expression_samples: int = 0
    duplicate_response_samples: int = 0
    unmatched_expression_samples: int = 0
    unmatched_response_samples: int = 0
    excluded_samples: int = 0
    ora_unmapped_genes: int = 0
    ora_duplicate_genes: int = 0
    gsea_unmapped_genes: int = 0
    gsea_duplicate_genes: int = 0

    def as_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class Cohort:
    """
    Matched expression and response data for the active set of cell lines.

    Attributes:
        expression: genes x samples, normalized log2 expression
        responses: one row per sample, indexed by the same normalized ids
        low_cut: AUC value of the lower extremity percentile
        high_cut: AUC value of the upper extremity percentile
        report: Identifier-resolution bookkeeping
    """
    expression: pd.DataFrame
    responses: pd.DataFrame
    low_cut: float = float('nan')
    high_cut: float = float('nan')
    report: IdentifierReport = field(default_factory=IdentifierReport)

    def __post_init__(self):
        if list(self.expression.columns) != list(self.responses.index):
            raise ValueError("Cohort expression columns and response index are not aligned")

    def __len__(self):
        return len(self.responses)

    @property
    def sample_ids(self) -> List[str]:
        return list(self.responses.index)

    def metric(self, column: str) -> pd.Series:
        """Response values for one metric, in cohort order."""
        return self.responses[column]


@dataclass(frozen=True)
class PathwayRecord:
    """Single pathway with its member genes (Entrez ids as strings)"""
    pathway_id: str
    name: str
    genes: FrozenSet[str]

    def __len__(self):
        return len(self.genes)

    def __contains__(self, gene: str) -> bool:
        return gene in self.genes

    def restrict(self, universe: FrozenSet[str]) -> 'PathwayRecord':
        """Copy of this pathway with membership restricted to a gene universe"""
        return PathwayRecord(self.pathway_id, self.name, self.genes & universe)


@dataclass
class ConcordanceSummary:
    """
    Agreement between the overrepresentation and rank-enrichment results.

    Attributes:
        n_ora_significant: Significant pathways from the overrepresentation test
        n_gsea_significant: Significant pathways from the rank-enrichment test
        top_k: Number of top pathways compared per method
        top_k_overlap: Shared pathways among the top-K of each method
        full_overlap: Shared pathways across both full significant sets
        jaccard: |shared| / |union| of the full significant sets
        overlap_pvalue: Hypergeometric p-value of the full overlap
        shared_pathways: Ids of the shared significant pathways
    """
    n_ora_significant: int
    n_gsea_significant: int
    top_k: int
    top_k_overlap: int
    full_overlap: int
    jaccard: float
    overlap_pvalue: float
    shared_pathways: List[str] = field(default_factory=list)
    top_k_shared_pathways: List[str] = field(default_factory=list)
    n_tested_common: Optional[int] = None

    @property
    def has_overlap(self) -> bool:
        return self.full_overlap > 0
