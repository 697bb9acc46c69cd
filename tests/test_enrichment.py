"""
Unit Tests for the Rank-Based Enrichment Engine
===============================================
Ranking preparation, running-sum enrichment scores, seeded permutation
p-values, leading edges and redundancy collapse.
"""

import pytest
import numpy as np
import pandas as pd

from core.data_structures import IdentifierReport
from core.statistics import overlap_coefficient
from drpa.enrichment import (
    GSEA_COLUMNS,
    collapse_pathways,
    enrichment_score,
    prepare_ranking,
    run_gsea,
)
from drpa.pathway_db import InMemoryPathwayDatabase
from drpa.utils import split_gene_list

N_GENES = 200


def make_ranking() -> pd.DataFrame:
    """200 genes with a strictly decreasing statistic; Entrez ids '1'..'200' in rank order"""
    return pd.DataFrame({
        'entrez_id': [str(i) for i in range(1, N_GENES + 1)],
        'gene_id': [f"ENSG{i}" for i in range(1, N_GENES + 1)],
        'symbol': [f"GENE{i}" for i in range(1, N_GENES + 1)],
        'stat': np.linspace(5, -5, N_GENES),
    })


def make_db() -> InMemoryPathwayDatabase:
    top = [str(i) for i in range(1, 21)]
    return InMemoryPathwayDatabase.from_dict({
        'p_top_a': top,
        'p_top_b': top,
        'p_bottom': [str(i) for i in range(181, 201)],
        'p_spread': [str(i) for i in range(5, 201, 10)],
        'p_tiny': ['50', '51', '52'],
    })


def gsea(seed=7, n_permutations=200):
    return run_gsea(make_ranking(), make_db(), n_permutations=n_permutations, seed=seed,
                    min_size=5, max_size=100)


class TestPrepareRanking:

    def test_dedup_keeps_first_occurrence(self):
        de = pd.DataFrame({
            'gene_id': ['ENSG_A', 'ENSG_B', 'ENSG_C', 'ENSG_D'],
            't': [1.0, 3.0, -2.0, 0.5],
        })
        annotation = pd.DataFrame({
            'entrez_id': ['10', '20', '10', np.nan],
            'symbol': ['A', 'B', 'C', 'D'],
        }, index=['ENSG_A', 'ENSG_B', 'ENSG_C', 'ENSG_D'])
        report = IdentifierReport()

        ranked = prepare_ranking(de, annotation, report=report)

        assert list(ranked['entrez_id']) == ['20', '10']
        assert ranked.set_index('entrez_id').loc['10', 'gene_id'] == 'ENSG_A'
        assert report.gsea_duplicate_genes == 1
        assert report.gsea_unmapped_genes == 1

    def test_sorted_descending(self):
        de = pd.DataFrame({'gene_id': ['A', 'B', 'C'], 't': [-1.0, 2.0, 0.0]})
        annotation = pd.DataFrame({'entrez_id': ['1', '2', '3'], 'symbol': ['a', 'b', 'c']},
                                  index=['A', 'B', 'C'])
        ranked = prepare_ranking(de, annotation)
        assert list(ranked['stat']) == [2.0, 0.0, -1.0]


class TestEnrichmentScore:

    def test_top_set_positive(self):
        stats = np.linspace(5, -5, 100)
        es, peak = enrichment_score(stats, np.arange(10))
        assert es == pytest.approx(1.0)
        assert peak == 9

    def test_bottom_set_negative(self):
        stats = np.linspace(5, -5, 100)
        hits = np.arange(90, 100)
        es, peak = enrichment_score(stats, hits)
        assert es == pytest.approx(-1.0)
        assert peak == 0

    def test_classic_ks_with_zero_weight(self):
        stats = np.linspace(5, -5, 10)
        es, _ = enrichment_score(stats, np.array([0, 2]), weight=0.0)
        # +0.5, -0.125, +0.5 -> peak 0.875
        assert es == pytest.approx(0.875)

    def test_degenerate_sets(self):
        stats = np.linspace(1, -1, 5)
        assert np.isnan(enrichment_score(stats, np.array([], dtype=int))[0])
        assert np.isnan(enrichment_score(stats, np.arange(5))[0])


class TestRunGSEA:

    def test_columns(self):
        assert list(gsea().columns) == GSEA_COLUMNS

    def test_top_and_bottom_sets_significant(self):
        result = gsea().set_index('pathway_id')
        assert result.loc['p_top_a', 'NES'] > 0
        assert result.loc['p_bottom', 'NES'] < 0
        for pid in ('p_top_a', 'p_top_b', 'p_bottom'):
            assert result.loc[pid, 'padj'] < 0.05

    def test_leading_edge(self):
        result = gsea().set_index('pathway_id')
        edge = set(split_gene_list(result.loc['p_top_a', 'leading_edge_ids']))
        assert edge == {str(i) for i in range(1, 21)}
        assert result.loc['p_top_a', 'leading_edge_size'] == 20

    def test_small_pathway_fallback(self):
        result = gsea().set_index('pathway_id')
        row = result.loc['p_tiny']
        assert not row['tested']
        assert np.isnan(row['ES'])
        assert row['pval'] == 1.0
        assert row['padj'] == 1.0
        assert row['leading_edge'] == ''

    def test_reproducible_with_seed(self):
        first = gsea(seed=11)
        second = gsea(seed=11)
        pd.testing.assert_frame_equal(first, second)

    def test_pvalues_bounded(self):
        result = gsea()
        assert result['pval'].between(1 / 201, 1).all()
        assert (result['padj'] >= result['pval'] - 1e-12).all()


class TestCollapse:

    def test_identical_pathways_collapse_to_one(self):
        main = collapse_pathways(gsea())
        top_mains = [p for p in main['pathway_id'] if p.startswith('p_top')]
        assert top_mains == ['p_top_a']
        collapsed = main.set_index('pathway_id').loc['p_top_a', 'collapsed_pathways']
        assert 'p_top_b' in collapsed.split(';')

    def test_opposite_signs_not_merged(self):
        main = collapse_pathways(gsea())
        assert 'p_bottom' in set(main['pathway_id'])

    def test_ordered_by_nes(self):
        main = collapse_pathways(gsea())
        assert main['NES'].is_monotonic_decreasing

    def test_never_grows_and_respects_threshold(self):
        results = pd.DataFrame({
            'pathway_id': ['a', 'b', 'c', 'd', 'e'],
            'NES': [2.5, 2.2, 2.0, 1.8, -2.0],
            'padj': [0.001, 0.002, 0.003, 0.004, 0.001],
            'tested': True,
            'leading_edge_ids': ['1/2/3/4', '1/2/3', '3/4/5/6/7/8', '10/11', '1/2/3/4'],
        })
        threshold = 0.5
        main = collapse_pathways(results, overlap_threshold=threshold)
        edges = {r['pathway_id']: set(split_gene_list(r['leading_edge_ids'])) for _, r in results.iterrows()}

        assert len(main) <= len(results)
        assert set(main['pathway_id']) == {'a', 'c', 'd', 'e'}
        for _, row in main.iterrows():
            for child in [c for c in row['collapsed_pathways'].split(';') if c]:
                assert overlap_coefficient(edges[child], edges[row['pathway_id']]) > threshold

    def test_non_significant_ignored(self):
        results = pd.DataFrame({
            'pathway_id': ['a', 'b'],
            'NES': [2.0, 1.5],
            'padj': [0.01, 0.2],
            'tested': True,
            'leading_edge_ids': ['1/2', '1/2'],
        })
        main = collapse_pathways(results)
        assert list(main['pathway_id']) == ['a']
        assert main.iloc[0]['n_collapsed'] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
