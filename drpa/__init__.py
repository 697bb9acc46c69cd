"""
DRPA: Drug Response Pathway Analysis
====================================
Genes and pathways associated with resistance to one drug across cancer cell
lines, via differential expression + length-bias-corrected overrepresentation
and preranked gene set enrichment, cross-checked for concordance.
"""

from drpa.utils import normalize_sample_id, strip_gene_version

__all__ = [
    "normalize_sample_id",
    "strip_gene_version",
]

# Submodules
# - drpa.cohort: build_cohort, CohortJoinError
# - drpa.differential: run_differential_expression
# - drpa.ranking: combine_gene_tables, select_significant_genes
# - drpa.overrepresentation: run_overrepresentation
# - drpa.enrichment: run_gsea, collapse_pathways
# - drpa.concordance: compare_enrichments
# - drpa.pipeline: DrugResponsePathwayAnalyzer, run_full_pipeline
