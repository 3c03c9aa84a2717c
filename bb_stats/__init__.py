"""
bb_stats
========

Statistics for the β-blockade interval-exercise reproducibility study.

Modules:
    - metabolic: treadmill METs equation
    - prepare: loading, joining and deriving normalised fields
    - reshape: long <-> wide pivoting
    - paired: paired t-tests between conditions
    - lmm: mixed-model design, LRT, marginal means and contrasts
    - backend: statsmodels fitting behind a narrow interface
    - reliability: ICC(2,1) and Fisher z comparison
    - variability: coefficient of variation and RM-ANOVA
    - reporting, plotting: hand-off to the report
"""

from .errors import (
    BBStatsError,
    MissingReferenceError,
    IncompleteCellError,
    DegenerateICCError,
    UndefinedCVError,
    MissingReferenceWarning,
    ModelFitWarning,
)
from .metabolic import treadmill_mets, treadmill_vo2, speed_to_mpm
from .registry import OUTCOMES, get_outcome_info, list_outcomes
from .prepare import (
    AnalysisDataset,
    CONDITIONS,
    INTENSITIES,
    BOUTS,
    create_analysis_dataset,
    validate_dataset,
    subset_dataset,
    describe_dataset,
    check_design,
    get_n_subjects,
    get_n_observations,
    get_obs_per_cell,
    load_study_data,
    prepare_interval_data,
    load_and_prepare,
)
from .reshape import pivot_wide, pivot_long, wide_column, cell_matrix
from .paired import paired_ttest, paired_comparisons, subject_means
from .backend import fit_mixedlm, create_fitted_model
from .lmm import (
    build_design,
    design_matrices,
    fit_outcome_models,
    likelihood_ratio_test,
    coefficient_table,
    compute_emmeans,
    pairwise_contrasts,
    simple_condition_contrasts,
    residual_diagnostics,
    summarize_lmm_result,
)
from .reliability import (
    anova_mean_squares,
    icc_agreement,
    icc_by_cell,
    fisher_z,
    compare_icc,
    compare_conditions,
)
from .variability import (
    coefficient_of_variation,
    cv_by_cell,
    summarize_cv,
    cv_rm_anova,
)
from .reporting import results_to_tables, export_to_csv

__version__ = "0.1.0"

__all__ = [
    "BBStatsError",
    "MissingReferenceError",
    "IncompleteCellError",
    "DegenerateICCError",
    "UndefinedCVError",
    "MissingReferenceWarning",
    "ModelFitWarning",
    "treadmill_mets",
    "treadmill_vo2",
    "speed_to_mpm",
    "OUTCOMES",
    "get_outcome_info",
    "list_outcomes",
    "AnalysisDataset",
    "CONDITIONS",
    "INTENSITIES",
    "BOUTS",
    "create_analysis_dataset",
    "validate_dataset",
    "subset_dataset",
    "describe_dataset",
    "check_design",
    "get_n_subjects",
    "get_n_observations",
    "get_obs_per_cell",
    "load_study_data",
    "prepare_interval_data",
    "load_and_prepare",
    "pivot_wide",
    "pivot_long",
    "wide_column",
    "cell_matrix",
    "paired_ttest",
    "paired_comparisons",
    "subject_means",
    "fit_mixedlm",
    "create_fitted_model",
    "build_design",
    "design_matrices",
    "fit_outcome_models",
    "likelihood_ratio_test",
    "coefficient_table",
    "compute_emmeans",
    "pairwise_contrasts",
    "simple_condition_contrasts",
    "residual_diagnostics",
    "summarize_lmm_result",
    "anova_mean_squares",
    "icc_agreement",
    "icc_by_cell",
    "fisher_z",
    "compare_icc",
    "compare_conditions",
    "coefficient_of_variation",
    "cv_by_cell",
    "summarize_cv",
    "cv_rm_anova",
    "results_to_tables",
    "export_to_csv",
]
