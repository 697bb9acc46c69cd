"""
Unit Tests for the Overrepresentation Pathway Engine
====================================================
Gene universe resolution, the length-bias weighting function and the
Wallenius / hypergeometric pathway tests.
"""

import pytest
import numpy as np
import pandas as pd
from scipy import stats

from core.data_structures import IdentifierReport
from drpa.overrepresentation import (
    ORA_COLUMNS,
    build_gene_universe,
    probability_weighting,
    run_overrepresentation,
)
from drpa.pathway_db import InMemoryPathwayDatabase


def make_universe(lengths=None) -> pd.DataFrame:
    """100 genes, Entrez '1'..'100', gene ids ENSG1..ENSG100"""
    entrez = [str(i) for i in range(1, 101)]
    if lengths is None:
        lengths = [1000.0 * i for i in range(1, 101)]
    return pd.DataFrame({
        'gene_id': [f"ENSG{i}" for i in range(1, 101)],
        'symbol': [f"GENE{i}" for i in range(1, 101)],
        'length': lengths,
    }, index=pd.Index(entrez, name='entrez_id'))


def make_db() -> InMemoryPathwayDatabase:
    return InMemoryPathwayDatabase.from_dict(
        {
            'hsa_long': [str(i) for i in range(71, 101)],
            'hsa_short': [str(i) for i in range(1, 21)],
            'hsa_mixed': [str(i) for i in range(41, 61)],
            'hsa_everything': [str(i) for i in range(1, 101)],
        },
        names={'hsa_long': 'Long genes', 'hsa_short': 'Short genes'},
    )


SIGNIFICANT = [f"ENSG{i}" for i in range(81, 101)]


class TestGeneUniverse:

    def test_unresolvable_genes_dropped_and_counted(self):
        combined = pd.DataFrame({'gene_id': ['ENSG1', 'ENSG2', 'ENSG3', 'ENSG4', 'ENSG5']})
        annotation = pd.DataFrame({
            'entrez_id': ['1', '2', np.nan, '999', '1'],
            'symbol': ['A', 'B', 'C', 'D', 'E'],
            'length': [100.0, 200.0, 300.0, 400.0, 500.0],
        }, index=pd.Index(['ENSG1', 'ENSG2', 'ENSG3', 'ENSG4', 'ENSG5'], name='gene_id'))
        db = InMemoryPathwayDatabase.from_dict({'p1': ['1', '2']})
        report = IdentifierReport()

        universe = build_gene_universe(combined, annotation, db, report)

        assert list(universe.index) == ['1', '2']
        # ENSG5 maps to an Entrez id already taken by the better-ranked ENSG1
        assert universe.loc['1', 'gene_id'] == 'ENSG1'
        assert report.ora_unmapped_genes == 2
        assert report.ora_duplicate_genes == 1


class TestProbabilityWeighting:

    def test_monotone_in_length(self):
        rng = np.random.RandomState(1)
        lengths = np.sort(rng.uniform(100, 10000, 300))
        labels = (rng.uniform(0, 1, 300) < lengths / 12000).astype(float)

        weights = probability_weighting(labels, lengths)

        assert np.all(np.diff(weights) >= -1e-12)
        assert weights.min() > 0

    def test_decreasing_in_length(self):
        labels = np.r_[np.ones(20), np.zeros(80)]
        lengths = 1000.0 * np.arange(1, 101)

        weights = probability_weighting(labels, lengths)

        assert np.all(np.diff(weights) <= 1e-12)
        assert weights[0] > weights[-1]
        assert len(set(weights)) > 1

    def test_floor_applied(self):
        weights = probability_weighting(np.array([0, 0, 1, 1.0]), np.array([1, 2, 3, 4.0]), epsilon=0.01)
        assert weights[0] == pytest.approx(0.01)
        assert weights[-1] == pytest.approx(1.0)

    def test_missing_lengths_imputed(self):
        weights = probability_weighting(np.array([0, 1, 0, 1.0]), np.array([1.0, np.nan, 3.0, 4.0]))
        assert np.all(np.isfinite(weights))

    def test_no_lengths_gives_constant_weights(self):
        weights = probability_weighting(np.array([0, 1, 0, 1.0]), np.full(4, np.nan))
        assert len(set(weights)) == 1


class TestOverrepresentation:

    def test_columns_and_all_pathways_present(self):
        result = run_overrepresentation(make_universe(), SIGNIFICANT, make_db())
        assert list(result.columns) == ORA_COLUMNS
        assert set(result['pathway_id']) == {'hsa_long', 'hsa_short', 'hsa_mixed', 'hsa_everything'}

    def test_zero_overlap_pathway_kept(self):
        result = run_overrepresentation(make_universe(), SIGNIFICANT, make_db()).set_index('pathway_id')
        row = result.loc['hsa_short']
        assert row['numDEInCat'] == 0
        assert row['de_genes'] == ''
        assert row['over_represented_pvalue'] == 1.0
        assert row['numInCat'] == 20
        assert len(row['all_genes'].split('/')) == 20

    def test_gene_lists(self):
        result = run_overrepresentation(make_universe(), SIGNIFICANT, make_db()).set_index('pathway_id')
        de = result.loc['hsa_long', 'de_genes'].split('/')
        assert set(de) == {f"GENE{i}" for i in range(81, 101)}
        assert result.loc['hsa_long', 'numDEInCat'] == 20
        assert result.loc['hsa_long', 'numInCat'] == 30

    def test_hypergeometric_matches_scipy(self):
        result = run_overrepresentation(make_universe(), SIGNIFICANT, make_db(),
                                        method='hypergeometric').set_index('pathway_id')
        expected = stats.hypergeom(100, 30, 20).sf(19)
        assert result.loc['hsa_long', 'over_represented_pvalue'] == pytest.approx(expected)

    def test_uniform_length_reduces_to_hypergeometric(self):
        universe = make_universe(lengths=[5000.0] * 100)
        wallenius = run_overrepresentation(universe, SIGNIFICANT, make_db()).set_index('pathway_id')
        hyper = run_overrepresentation(universe, SIGNIFICANT, make_db(),
                                       method='hypergeometric').set_index('pathway_id')
        for pid in ('hsa_long', 'hsa_mixed'):
            assert wallenius.loc[pid, 'over_represented_pvalue'] == \
                pytest.approx(hyper.loc[pid, 'over_represented_pvalue'], rel=1e-4, abs=1e-12)

    def test_length_bias_correction_weakens_long_gene_pathway(self):
        """All significant genes are the longest ones; a long-gene pathway is explained by length"""
        universe = make_universe()
        wallenius = run_overrepresentation(universe, SIGNIFICANT, make_db()).set_index('pathway_id')
        hyper = run_overrepresentation(universe, SIGNIFICANT, make_db(),
                                       method='hypergeometric').set_index('pathway_id')
        assert wallenius.loc['hsa_long', 'over_represented_pvalue'] > \
            hyper.loc['hsa_long', 'over_represented_pvalue']

    def test_length_bias_correction_weakens_short_gene_pathway(self):
        """All significant genes are the shortest ones; a short-gene pathway is explained by length"""
        universe = make_universe()
        short = [f"ENSG{i}" for i in range(1, 21)]
        wallenius = run_overrepresentation(universe, short, make_db()).set_index('pathway_id')
        hyper = run_overrepresentation(universe, short, make_db(),
                                       method='hypergeometric').set_index('pathway_id')
        assert wallenius.loc['hsa_short', 'over_represented_pvalue'] > \
            10 * hyper.loc['hsa_short', 'over_represented_pvalue']

    def test_fdr_not_below_raw_and_bounded(self):
        result = run_overrepresentation(make_universe(), SIGNIFICANT, make_db(), method='hypergeometric')
        assert (result['padj'] >= result['over_represented_pvalue'] - 1e-12).all()
        assert result['padj'].between(0, 1).all()

    def test_no_significant_genes(self):
        result = run_overrepresentation(make_universe(), [], make_db())
        assert (result['over_represented_pvalue'] == 1.0).all()
        assert (result['de_genes'] == '').all()

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            run_overrepresentation(make_universe(), SIGNIFICANT, make_db(), method='fisher')


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
