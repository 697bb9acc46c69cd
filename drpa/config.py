"""
Pipeline configuration.

Every tunable of the analysis is a named field on ``PipelineConfig``; defaults
come from ``drpa.constants``. Overrides can be loaded from a JSON file.
"""

import json
import logging
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Dict, Optional, Tuple, Any

from drpa import constants as C

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Invalid or internally inconsistent configuration"""


@dataclass
class PipelineConfig:
    # Inputs
    expression_path: Optional[str] = None
    response_path: Optional[str] = None
    annotation_path: Optional[str] = None
    pathway_gmt_path: Optional[str] = None
    kegg_cache_dir: str = './api_cache'
    output_dir: str = 'results'

    # Drug & metrics
    drug: str = C.DRUG
    potency_metric: str = C.POTENCY_METRIC
    auc_metric: str = C.AUC_METRIC
    metric_directions: Dict[str, str] = field(default_factory=lambda: dict(C.METRIC_DIRECTIONS))
    response_columns: Dict[str, str] = field(default_factory=lambda: dict(C.RESPONSE_COLUMNS))

    # Cohort
    tissues: Tuple[str, ...] = C.TISSUES
    extreme_quantiles: Tuple[float, float] = C.EXTREME_QUANTILES
    excluded_samples: Tuple[str, ...] = C.EXCLUDED_SAMPLES
    marker_gene_id: Optional[str] = C.MARKER_GENE_ID
    normalization: str = 'median_ratio_log2'

    # Statistics
    fdr_alpha: float = C.FDR_ALPHA
    min_abs_logfc: float = C.MIN_ABS_LOGFC
    ora_method: str = 'wallenius'
    gsea_metric: Optional[str] = None  # defaults to the AUC metric
    n_permutations: int = C.N_PERMUTATIONS
    seed: int = C.SEED
    gsea_min_size: int = C.GSEA_MIN_SIZE
    gsea_max_size: int = C.GSEA_MAX_SIZE
    collapse_overlap_threshold: float = C.COLLAPSE_OVERLAP_THRESHOLD
    concordance_top_k: int = C.CONCORDANCE_TOP_K

    @property
    def metrics(self) -> Tuple[str, str]:
        return (self.potency_metric, self.auc_metric)

    @property
    def ranking_metric(self) -> str:
        return self.gsea_metric or self.auc_metric

    def validate(self) -> 'PipelineConfig':
        """Check the configuration and return it; raises ConfigurationError."""
        for metric in self.metrics:
            direction = self.metric_directions.get(metric)
            if direction is None:
                raise ConfigurationError(f"No direction configured for metric '{metric}'")
            if direction not in C.VALID_DIRECTIONS:
                raise ConfigurationError(
                    f"Direction for '{metric}' must be one of {C.VALID_DIRECTIONS}, got '{direction}'"
                )
        if self.potency_metric == self.auc_metric:
            raise ConfigurationError("Potency and AUC metrics must be different columns")
        if self.ranking_metric not in self.metrics:
            raise ConfigurationError(f"gsea_metric '{self.gsea_metric}' is not one of {self.metrics}")
        if len(self.tissues) == 0:
            raise ConfigurationError("At least one tissue label is required")
        low, high = self.extreme_quantiles
        if not 0 <= low <= high <= 100:
            raise ConfigurationError(f"Invalid extremity percentiles: {self.extreme_quantiles}")
        if not 0 < self.fdr_alpha < 1:
            raise ConfigurationError(f"fdr_alpha must be in (0, 1), got {self.fdr_alpha}")
        if self.ora_method not in C.ORA_METHODS:
            raise ConfigurationError(f"ora_method must be one of {C.ORA_METHODS}")
        if self.normalization not in C.NORMALIZATION_METHODS:
            raise ConfigurationError(f"normalization must be one of {C.NORMALIZATION_METHODS}")
        if self.n_permutations < 1:
            raise ConfigurationError("n_permutations must be positive")
        if self.seed is None:
            raise ConfigurationError("A fixed random seed is required")
        if self.gsea_min_size < 1 or self.gsea_max_size < self.gsea_min_size:
            raise ConfigurationError(
                f"Invalid gene set size bounds: [{self.gsea_min_size}, {self.gsea_max_size}]"
            )
        if not 0 <= self.collapse_overlap_threshold < 1:
            raise ConfigurationError("collapse_overlap_threshold must be in [0, 1)")
        if self.concordance_top_k < 1:
            raise ConfigurationError("concordance_top_k must be positive")
        return self

    @classmethod
    def from_json(cls, path: str) -> 'PipelineConfig':
        """Load a configuration, overriding defaults with the keys present in a JSON file."""
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(config_path, 'r') as f:
            overrides = json.load(f)

        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        for key in ('tissues', 'excluded_samples', 'extreme_quantiles'):
            if key in overrides:
                overrides[key] = tuple(overrides[key])
        logger.info(f"Loaded configuration overrides from {config_path}: {sorted(overrides)}")
        return cls(**overrides).validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
