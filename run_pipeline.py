#!/usr/bin/env python3
"""
Run the full DRPA pipeline.

Inputs, thresholds and the random seed come from the defaults in
drpa/constants.py, overridden by an optional JSON config file.

Saves all tables to the configured output directory (default results/).
"""
import sys
import time
import logging
import argparse

logging.basicConfig(level=logging.INFO, format='%(levelname)s:%(name)s:%(message)s')


def main():
    parser = argparse.ArgumentParser(description='Run the drug response pathway analysis')
    parser.add_argument('--config', default=None,
                        help='JSON file overriding PipelineConfig defaults')
    args = parser.parse_args()

    from drpa.config import PipelineConfig
    from drpa.pipeline import run_full_pipeline

    config = PipelineConfig.from_json(args.config) if args.config else PipelineConfig().validate()

    print(f"Running DRPA for {config.drug} ({', '.join(config.tissues)})...", flush=True)
    t0 = time.time()
    result = run_full_pipeline(config)

    c = result.concordance
    print(f"\n{'='*70}")
    print(f"Cohort: {len(result.cohort)} cell lines; {len(result.significant)} concordant genes")
    print(f"ORA significant: {c.n_ora_significant}  GSEA significant: {c.n_gsea_significant} "
          f"({len(result.gsea_main)} main)")
    print(f"Top-{c.top_k} overlap: {c.top_k_overlap}  Full overlap: {c.full_overlap}")
    print(f"Saved outputs to {config.output_dir}/")
    print(f"{'='*70}")
    print(f"\nTotal time: {time.time()-t0:.1f}s")
    return 0


if __name__ == '__main__':
    sys.exit(main())
