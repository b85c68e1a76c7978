# Author: Emrullah Erce Dutkan
"""
Latent EM Engine

A library for fitting latent-variable models with the
Expectation-Maximization algorithm:
- Full-covariance Gaussian mixtures
- Probabilistic PCA (PPCA)
- PPCA with missing entries, imputed from the current model

This package provides the estimators, a shared convergence monitor, the
linear algebra they rely on, and tools for running and evaluating
experiments on synthetic data.
"""

from .gmm import (
    GaussianMixtureEM,
    MixtureParameters,
    MixtureResult,
    estimate_mixture,
)
from .ppca import PPCA, PPCAResult, estimate_ppca, rotate_to_principal_axes
from .missing import MissingDataPPCA, MissingPPCAResult, estimate_ppca_missing
from .convergence import ConvergenceMonitor, ConvergenceState
from .errors import (
    LatentEMError,
    InvalidConfigurationError,
    SingularMatrixError,
    DegenerateClusterError,
    NonConvergenceWarning,
)
from .metrics import (
    principal_angles,
    subspace_distance,
    match_cluster_means,
    imputation_rmse,
)
from .datasets import (
    make_gaussian_clusters,
    make_low_rank_data,
    mask_missing_at_random,
    initial_mixture_parameters,
)
from .experiment import RunSummary, run_experiment
from .config import ExperimentConfig, get_default_config

__version__ = "0.1.0"
__author__ = "Emrullah Erce Dutkan"

__all__ = [
    # Estimators
    "GaussianMixtureEM",
    "PPCA",
    "MissingDataPPCA",
    # Convenience functions
    "estimate_mixture",
    "estimate_ppca",
    "estimate_ppca_missing",
    "rotate_to_principal_axes",
    # Results
    "MixtureParameters",
    "MixtureResult",
    "PPCAResult",
    "MissingPPCAResult",
    # Convergence
    "ConvergenceMonitor",
    "ConvergenceState",
    # Errors
    "LatentEMError",
    "InvalidConfigurationError",
    "SingularMatrixError",
    "DegenerateClusterError",
    "NonConvergenceWarning",
    # Metrics
    "principal_angles",
    "subspace_distance",
    "match_cluster_means",
    "imputation_rmse",
    # Datasets
    "make_gaussian_clusters",
    "make_low_rank_data",
    "mask_missing_at_random",
    "initial_mixture_parameters",
    # Experiments
    "RunSummary",
    "run_experiment",
    # Configuration
    "ExperimentConfig",
    "get_default_config",
]
