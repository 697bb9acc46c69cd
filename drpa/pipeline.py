#!/usr/bin/env python3
"""
DRPA: Drug Response Pathway Analysis
====================================
Which genes and pathways separate dasatinib-resistant from dasatinib-sensitive
cancer cell lines, found two independent ways and cross-checked:

    Cohort Builder -> Differential Expression (per metric) -> Rank Aggregator
        -> Overrepresentation (length-bias corrected)
        -> Preranked GSEA (+ redundancy collapse)
        -> Concordance

Usage:
    python run_pipeline.py
    python run_pipeline.py --config config.json
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, Optional

import pandas as pd

from core.data_structures import Cohort, ConcordanceSummary, IdentifierReport
from drpa.cohort import build_cohort
from drpa.concordance import compare_enrichments
from drpa.config import PipelineConfig
from drpa.constants import ARTIFACTS
from drpa.differential import run_differential_expression
from drpa.enrichment import prepare_ranking, run_gsea, collapse_pathways
from drpa.io import (
    load_expression_matrix, load_drug_response, load_gene_annotation,
    normalize_counts, write_table, write_pathway_gene_map, write_summary,
)
from drpa.overrepresentation import build_gene_universe, run_overrepresentation
from drpa.pathway_db import PathwayDatabase, InMemoryPathwayDatabase, KEGGPathwayDatabase
from drpa.ranking import combine_gene_tables, select_significant_genes, validate_direction_convention
from drpa.utils import _progress

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Every derived table of one run"""
    cohort: Cohort
    de_tables: Dict[str, pd.DataFrame]
    combined: pd.DataFrame
    significant: pd.DataFrame
    universe: pd.DataFrame
    ora: pd.DataFrame
    ranking: pd.DataFrame
    gsea: pd.DataFrame
    gsea_main: pd.DataFrame
    concordance: ConcordanceSummary
    direction_rho: float = float('nan')
    report: IdentifierReport = field(default_factory=IdentifierReport)


class DrugResponsePathwayAnalyzer:
    """
    Runs the full analysis for one drug on in-memory inputs.

    Args:
        config: pipeline configuration (validated on construction)
        pathway_db: pathway membership lookups keyed by Entrez id
        annotation: gene annotation indexed by gene_id (entrez_id, symbol, length)
    """

    def __init__(self, config: PipelineConfig, pathway_db: PathwayDatabase,
                 annotation: pd.DataFrame):
        self.config = config.validate()
        self.pathway_db = pathway_db
        self.annotation = annotation

    def run(self, expression: pd.DataFrame, responses: pd.DataFrame) -> PipelineResult:
        """
        Args:
            expression: genes x cell lines (counts, or normalized when config.normalization == 'none')
            responses: response records (cell_line_name, tissue, both metrics)
        """
        cfg = self.config

        _progress("Normalizing expression", cfg.normalization)
        normalized = normalize_counts(expression, cfg.normalization)

        _progress("Building cohort")
        cohort = build_cohort(normalized, responses, cfg)
        report = cohort.report
        rho = validate_direction_convention(cohort.responses, cfg.metrics, cfg.metric_directions)

        de_tables = {}
        for metric in cfg.metrics:
            _progress("Differential expression", metric)
            de_tables[metric] = run_differential_expression(cohort, metric)

        _progress("Combining gene rankings")
        combined = combine_gene_tables(de_tables, cfg.metric_directions)
        significant = select_significant_genes(combined, cfg.metrics, cfg.min_abs_logfc)

        _progress("Overrepresentation analysis", cfg.ora_method)
        universe = build_gene_universe(combined, self.annotation, self.pathway_db, report)
        ora = run_overrepresentation(universe, significant['gene_id'], self.pathway_db, cfg.ora_method)

        _progress("Gene set enrichment", cfg.ranking_metric)
        ranking = prepare_ranking(de_tables[cfg.ranking_metric], self.annotation, report=report)
        gsea = run_gsea(
            ranking, self.pathway_db,
            n_permutations=cfg.n_permutations, seed=cfg.seed,
            min_size=cfg.gsea_min_size, max_size=cfg.gsea_max_size,
            show_progress=True,
        )
        gsea_main = collapse_pathways(gsea, cfg.fdr_alpha, cfg.collapse_overlap_threshold)

        _progress("Comparing pathway results")
        concordance = compare_enrichments(ora, gsea, cfg.concordance_top_k, cfg.fdr_alpha)

        logger.info(f"Identifier bookkeeping: {report.as_dict()}")
        return PipelineResult(
            cohort=cohort, de_tables=de_tables, combined=combined, significant=significant,
            universe=universe, ora=ora, ranking=ranking, gsea=gsea, gsea_main=gsea_main,
            concordance=concordance, direction_rho=rho, report=report,
        )

    def write_outputs(self, result: PipelineResult, output_dir: Optional[str] = None) -> Dict[str, str]:
        """Write every artifact, overwriting previous runs. Returns {artifact: path}."""
        out = output_dir or self.config.output_dir
        paths = {}
        for metric, table in result.de_tables.items():
            paths[f"de_{metric}"] = str(write_table(table, out, f"de_{metric}.csv"))
        paths['combined'] = str(write_table(result.combined, out, ARTIFACTS['combined']))
        paths['ora'] = str(write_table(result.ora, out, ARTIFACTS['ora']))
        paths['gsea'] = str(write_table(result.gsea, out, ARTIFACTS['gsea']))
        paths['gsea_main'] = str(write_table(result.gsea_main, out, ARTIFACTS['gsea_main']))
        paths['pathway_genes'] = str(
            write_pathway_gene_map(self.pathway_db, out, universe=set(result.universe.index))
        )
        paths['concordance'] = str(write_summary({
            'concordance': asdict(result.concordance),
            'identifiers': result.report.as_dict(),
            'cohort_size': len(result.cohort),
            'auc_cuts': [result.cohort.low_cut, result.cohort.high_cut],
            'direction_rho': result.direction_rho,
            'n_significant_genes': len(result.significant),
        }, out, ARTIFACTS['concordance']))
        return paths


def load_pathway_database(config: PipelineConfig) -> PathwayDatabase:
    """GMT file when configured, otherwise KEGG REST"""
    if config.pathway_gmt_path:
        return InMemoryPathwayDatabase.from_gmt(config.pathway_gmt_path)
    return KEGGPathwayDatabase(cache_dir=config.kegg_cache_dir)


def run_full_pipeline(config: PipelineConfig) -> PipelineResult:
    """Load inputs from the configured paths, run every stage and write the artifacts."""
    config.validate()
    for name in ('expression_path', 'response_path', 'annotation_path'):
        if not getattr(config, name):
            raise FileNotFoundError(f"Required input '{name}' is not configured")

    expression = load_expression_matrix(config.expression_path)
    responses = load_drug_response(config.response_path, config.drug, config.metrics,
                                   config.response_columns)
    annotation = load_gene_annotation(config.annotation_path)
    db = load_pathway_database(config)

    analyzer = DrugResponsePathwayAnalyzer(config, db, annotation)
    result = analyzer.run(expression, responses)
    analyzer.write_outputs(result)
    return result
