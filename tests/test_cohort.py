"""
Unit Tests for the Cohort Builder
=================================
Identifier normalization, keyed joins, tissue / extremity / denylist filters
and the alignment post-condition.
"""

import pytest
import numpy as np
import pandas as pd

from core.data_structures import Cohort
from drpa.cohort import (
    CohortJoinError,
    build_cohort,
    extreme_responders,
    verify_alignment,
)
from drpa.config import PipelineConfig
from drpa.utils import normalize_sample_id

MARKER = 'ENSG00000142627'


def make_inputs():
    """
    12 cell lines in two tissues plus one skin line; expression columns use a
    different spelling from the response names and come in a different order.
    """
    names = ['NCI-H1975', 'A549', 'HCC827', 'PC-9', 'Calu-3', 'H460',
             'MCF7', 'T-47D', 'MDA-MB-231', 'BT-549', 'HCC1937', '22Rv1', 'A375']
    tissues = ['LUAD'] * 6 + ['BRCA'] * 6 + ['SKCM']
    auc = [0.10, 0.95, 0.20, 0.85, 0.50, 0.55, 0.15, 0.90, 0.52, 0.80, 0.05, 0.97, 0.99]
    responses = pd.DataFrame({
        'cell_line_name': names,
        'tissue': tissues,
        'LN_IC50': np.array(auc) * 4 - 1,
        'AUC': auc,
    })

    expr_cols = ['X22RV1', 'a375'] + [n.lower().replace('-', '.') for n in reversed(names[:11])]
    rng = np.random.RandomState(0)
    expression = pd.DataFrame(
        rng.normal(5, 1, (4, len(expr_cols))),
        index=[MARKER, 'ENSG01', 'ENSG02', 'ENSG03'],
        columns=expr_cols,
    )
    return expression, responses


class TestIdentifierNormalization:

    def test_punctuation_and_case(self):
        assert normalize_sample_id('NCI-H1975') == normalize_sample_id('nci.h1975') == 'NCIH1975'

    def test_leading_digit_escape(self):
        assert normalize_sample_id('X22Rv1') == normalize_sample_id('22Rv1') == '22RV1'

    def test_x_prefix_kept_before_letters(self):
        assert normalize_sample_id('XLA-1') == 'XLA1'


class TestExtremeResponders:

    def test_middle_band_excluded_strictly(self):
        values = pd.Series(np.arange(1.0, 10.0))
        mask, low, high = extreme_responders(values, (33.0, 66.0))
        kept = values[mask]

        assert (kept < low).sum() + (kept > high).sum() == len(kept)
        assert not ((values >= low) & (values <= high) & mask).any()

    def test_percentiles_on_given_population(self):
        values = pd.Series([1.0, 2.0, 3.0, 100.0, 200.0, 300.0])
        _, low, high = extreme_responders(values)
        assert low == pytest.approx(np.percentile(values, 33))
        assert high == pytest.approx(np.percentile(values, 66))


class TestBuildCohort:

    def test_cohort_aligned_and_filtered(self):
        expression, responses = make_inputs()
        config = PipelineConfig(tissues=('LUAD', 'BRCA'), marker_gene_id=MARKER)

        cohort = build_cohort(expression, responses, config)

        assert list(cohort.expression.columns) == list(cohort.responses.index)
        assert set(cohort.responses['tissue']) <= {'LUAD', 'BRCA'}
        assert 'A375' not in cohort.sample_ids

        auc = cohort.responses['AUC']
        assert ((auc < cohort.low_cut) | (auc > cohort.high_cut)).all()

    def test_percentiles_use_tissue_filtered_population(self):
        expression, responses = make_inputs()
        config = PipelineConfig(tissues=('LUAD', 'BRCA'))
        cohort = build_cohort(expression, responses, config)

        in_tissue = responses[responses['tissue'].isin(['LUAD', 'BRCA'])]['AUC']
        assert cohort.low_cut == pytest.approx(np.percentile(in_tissue, 33))
        assert cohort.high_cut == pytest.approx(np.percentile(in_tissue, 66))

    def test_marker_covariate_keyed_by_sample(self):
        expression, responses = make_inputs()
        config = PipelineConfig(marker_gene_id=MARKER)
        cohort = build_cohort(expression, responses, config)

        for sample in cohort.sample_ids:
            assert cohort.responses.loc[sample, 'marker_expression'] == \
                cohort.expression.loc[MARKER, sample]

    def test_missing_marker_leaves_nan(self):
        expression, responses = make_inputs()
        cohort = build_cohort(expression, responses, PipelineConfig(marker_gene_id='ENSG_MISSING'))
        assert cohort.responses['marker_expression'].isna().all()

    def test_denylist_removes_samples(self):
        expression, responses = make_inputs()
        base = build_cohort(expression, responses, PipelineConfig())
        victim = base.sample_ids[0]

        cohort = build_cohort(expression, responses, PipelineConfig(excluded_samples=(victim.lower(),)))

        assert victim not in cohort.sample_ids
        assert cohort.report.excluded_samples == 1
        assert len(cohort) == len(base) - 1

    def test_idempotent(self):
        expression, responses = make_inputs()
        config = PipelineConfig()
        first = build_cohort(expression, responses, config)
        second = build_cohort(expression, responses, config)

        assert first.sample_ids == second.sample_ids
        pd.testing.assert_frame_equal(first.expression, second.expression)
        pd.testing.assert_frame_equal(first.responses, second.responses)

    def test_duplicates_counted(self):
        expression, responses = make_inputs()
        responses = pd.concat([responses, responses.iloc[[0]]], ignore_index=True)
        cohort = build_cohort(expression, responses, PipelineConfig())
        assert cohort.report.duplicate_response_samples == 1

    def test_empty_intersection_is_fatal(self):
        expression, responses = make_inputs()
        expression.columns = [f"OTHER{i}" for i in range(len(expression.columns))]
        with pytest.raises(CohortJoinError, match="expression ∩ response"):
            build_cohort(expression, responses, PipelineConfig())

    def test_empty_tissue_filter_is_fatal(self):
        expression, responses = make_inputs()
        with pytest.raises(CohortJoinError, match="tissue filter"):
            build_cohort(expression, responses, PipelineConfig(tissues=('PAAD',)))


class TestAlignment:

    def test_order_mismatch_detected(self):
        expression = pd.DataFrame([[1.0, 2.0]], columns=['A', 'B'])
        responses = pd.DataFrame({'AUC': [0.1, 0.2]}, index=['B', 'A'])
        with pytest.raises(CohortJoinError, match="order differs"):
            verify_alignment(expression, responses)

    def test_cohort_rejects_misaligned_tables(self):
        expression = pd.DataFrame([[1.0, 2.0]], columns=['A', 'B'])
        responses = pd.DataFrame({'AUC': [0.1, 0.2]}, index=['B', 'A'])
        with pytest.raises(ValueError):
            Cohort(expression=expression, responses=responses)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
