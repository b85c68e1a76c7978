# Author: Emrullah Erce Dutkan
"""
Gaussian mixture estimation with the EM algorithm.

The model is

    p(x) = sum_k w_k N(x | mu_k, Sigma_k)

with K full-covariance clusters. Each iteration runs

    M-step: N_k = sum_i r_ik, w_k = N_k / N,
            mu_k = sum_i r_ik x_i / N_k,
            Sigma_k = sum_i r_ik x_i x_i^T / N_k - mu_k mu_k^T
    E-step: r_ik = w_k N(x_i | mu_k, Sigma_k) / sum_j w_j N(x_i | mu_j, Sigma_j)

starting from caller-supplied parameters. Responsibilities are normalised in
log space, so far outliers do not underflow to 0/0. The progress signature
tracked by the ConvergenceMonitor is the per-cluster weighted negative
log-density concatenated with the mixing weights.

No implicit regularisation is applied: a collapsing cluster raises
DegenerateClusterError. Adding a ridge to the covariances (reg_covar) or
restarting from another initialization is left to the caller.
"""

from typing import Optional, Tuple
from dataclasses import dataclass, field
import logging
import numpy as np
from scipy.special import logsumexp

from .linalg import gaussian_log_density
from .errors import (
    InvalidConfigurationError,
    SingularMatrixError,
    DegenerateClusterError,
)
from .convergence import ConvergenceMonitor, log_progress, warn_if_not_converged


logger = logging.getLogger(__name__)

WEIGHT_SUM_ATOL = 1e-8


@dataclass
class MixtureParameters:
    """
    Parameters of a K-cluster Gaussian mixture.

    Attributes:
        means: Cluster means, shape (K, d).
        covariances: Cluster covariance matrices, shape (K, d, d).
        weights: Mixing weights, shape (K,), non-negative and summing to 1.
    """
    means: np.ndarray
    covariances: np.ndarray
    weights: np.ndarray

    @property
    def n_clusters(self) -> int:
        return self.weights.shape[0]

    @property
    def n_features(self) -> int:
        return self.means.shape[1]

    def copy(self) -> "MixtureParameters":
        return MixtureParameters(
            means=self.means.copy(),
            covariances=self.covariances.copy(),
            weights=self.weights.copy()
        )


@dataclass
class MixtureResult:
    """Outcome of a Gaussian mixture EM run."""
    parameters: MixtureParameters
    responsibilities: np.ndarray
    labels: np.ndarray
    log_likelihood: float
    log_likelihood_trace: np.ndarray
    signature: np.ndarray
    converged: bool
    n_iter: int
    distances: list = field(default_factory=list)


def check_data(X: np.ndarray) -> np.ndarray:
    """Validate a complete observation matrix and return a float64 copy."""
    X = np.array(X, dtype=np.float64)
    if X.ndim != 2 or X.shape[0] == 0 or X.shape[1] == 0:
        raise InvalidConfigurationError(
            f"X must be a non-empty 2D array, got shape {X.shape}"
        )
    if not np.all(np.isfinite(X)):
        raise InvalidConfigurationError("X contains non-finite values")
    return X


def check_parameters(
    means: np.ndarray,
    covariances: np.ndarray,
    weights: np.ndarray,
    n_features: int,
    n_clusters: Optional[int] = None
) -> MixtureParameters:
    """
    Validate initial mixture parameters.

    Args:
        means: Shape (K, d).
        covariances: Shape (K, d, d).
        weights: Shape (K,).
        n_features: Expected d.
        n_clusters: Expected K, if the caller fixed it separately.

    Returns:
        MixtureParameters holding float64 copies, with covariances
        symmetrised and weights renormalised to sum exactly to 1.

    Raises:
        InvalidConfigurationError: On any shape or value violation.
    """
    means = np.array(means, dtype=np.float64)
    covariances = np.array(covariances, dtype=np.float64)
    weights = np.array(weights, dtype=np.float64).ravel()

    K = weights.shape[0]
    if K < 2:
        raise InvalidConfigurationError(f"A mixture needs at least 2 clusters, got {K}")
    if n_clusters is not None and n_clusters != K:
        raise InvalidConfigurationError(
            f"n_clusters={n_clusters} does not match {K} initial weights"
        )
    if means.shape != (K, n_features):
        raise InvalidConfigurationError(
            f"means must have shape {(K, n_features)}, got {means.shape}"
        )
    if covariances.shape != (K, n_features, n_features):
        raise InvalidConfigurationError(
            f"covariances must have shape {(K, n_features, n_features)}, "
            f"got {covariances.shape}"
        )
    for name, value in (("means", means), ("covariances", covariances), ("weights", weights)):
        if not np.all(np.isfinite(value)):
            raise InvalidConfigurationError(f"{name} contain non-finite values")
    if np.any(weights < 0):
        raise InvalidConfigurationError("weights must be non-negative")
    if abs(weights.sum() - 1.0) > WEIGHT_SUM_ATOL:
        raise InvalidConfigurationError(
            f"weights must sum to 1, got {weights.sum():.10g}"
        )

    covariances = 0.5 * (covariances + np.transpose(covariances, (0, 2, 1)))
    return MixtureParameters(means=means, covariances=covariances, weights=weights / weights.sum())


def component_log_densities(
    X: np.ndarray,
    params: MixtureParameters,
    iteration: Optional[int] = None
) -> np.ndarray:
    """
    Log density of every row under every cluster.

    Returns:
        Array of shape (n_samples, K).

    Raises:
        DegenerateClusterError: If a cluster covariance is singular.
    """
    n = X.shape[0]
    log_dens = np.empty((n, params.n_clusters))
    # Clusters are independent of each other here
    for k in range(params.n_clusters):
        try:
            log_dens[:, k] = gaussian_log_density(X, params.means[k], params.covariances[k])
        except SingularMatrixError as exc:
            raise DegenerateClusterError(
                f"Covariance of cluster {k} is singular: {exc.message}",
                cluster=k,
                iteration=iteration
            ) from exc
    return log_dens


def normalize_responsibilities(log_weighted: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Normalise log weighted densities into responsibilities.

    Rows whose weighted densities are all zero (log total of -inf) fall
    back to the uniform distribution instead of producing NaN.

    Args:
        log_weighted: log w_k + log N(x_i | k), shape (n_samples, K).

    Returns:
        Tuple (responsibilities, log_normalizer) with shapes (n_samples, K)
        and (n_samples,).
    """
    n, K = log_weighted.shape
    with np.errstate(divide="ignore", invalid="ignore"):
        log_norm = logsumexp(log_weighted, axis=1)
    ok = np.isfinite(log_norm)

    resp = np.full((n, K), 1.0 / K)
    if np.any(ok):
        resp[ok] = np.exp(log_weighted[ok] - log_norm[ok, None])
        # Remove residual rounding so every row sums to 1
        resp[ok] /= resp[ok].sum(axis=1, keepdims=True)
    if not np.all(ok):
        logger.debug("%d rows with zero total density use uniform responsibilities",
                     int(np.sum(~ok)))
    return resp, log_norm


def e_step(
    X: np.ndarray,
    params: MixtureParameters,
    iteration: Optional[int] = None
) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Expectation step.

    Returns:
        Tuple (responsibilities, component log densities, log-likelihood).
    """
    log_dens = component_log_densities(X, params, iteration=iteration)
    with np.errstate(divide="ignore"):
        log_weights = np.log(params.weights)
    resp, log_norm = normalize_responsibilities(log_dens + log_weights)
    return resp, log_dens, float(np.sum(log_norm))


def m_step(
    X: np.ndarray,
    resp: np.ndarray,
    reg_covar: float = 0.0,
    iteration: Optional[int] = None
) -> MixtureParameters:
    """
    Maximization step: weighted weights, means and covariances.

    Raises:
        DegenerateClusterError: If a cluster's effective size is zero.
    """
    n, d = X.shape
    K = resp.shape[1]
    nk = resp.sum(axis=0)

    min_size = 10 * np.finfo(np.float64).eps * n
    collapsed = np.flatnonzero(nk <= min_size)
    if collapsed.size:
        k = int(collapsed[0])
        raise DegenerateClusterError(
            f"Cluster {k} has collapsed (effective size {nk[k]:.3e})",
            cluster=k,
            iteration=iteration
        )

    weights = nk / n
    weights /= weights.sum()
    means = (resp.T @ X) / nk[:, None]

    covariances = np.empty((K, d, d))
    for k in range(K):
        # Centred form of sum_i r_ik x_i x_i^T / N_k - mu_k mu_k^T
        diff = X - means[k]
        cov = (resp[:, k, None] * diff).T @ diff / nk[k]
        cov = 0.5 * (cov + cov.T)
        if reg_covar > 0:
            cov[np.diag_indices(d)] += reg_covar
        covariances[k] = cov

    return MixtureParameters(means=means, covariances=covariances, weights=weights)


def progress_signature(
    resp: np.ndarray,
    log_dens: np.ndarray,
    weights: np.ndarray
) -> np.ndarray:
    """Per-cluster weighted negative log-density followed by the weights."""
    weighted = np.where(resp > 0, resp * log_dens, 0.0)
    return np.concatenate([-weighted.sum(axis=0), weights])


class GaussianMixtureEM:
    """
    Full-covariance Gaussian mixture fitted by EM.

    Attributes (after fit):
        parameters_: Final MixtureParameters.
        means_, covariances_, weights_: Shortcuts into parameters_.
        responsibilities_: Posterior cluster probabilities, (n_samples, K).
        labels_: Arg-max cluster per row, ties resolved to the lowest index.
        log_likelihood_: Final total log-likelihood.
        log_likelihood_trace_: Log-likelihood after every E-step.
        converged_: Whether the tolerance criterion was met.
        n_iter_: Number of completed EM iterations.
        result_: The full MixtureResult.
    """

    def __init__(
        self,
        n_clusters: Optional[int] = None,
        tolerance: float = 1e-8,
        max_iterations: int = 500,
        reg_covar: float = 0.0,
        verbose: bool = False
    ):
        """
        Args:
            n_clusters: Expected number of clusters. If None, taken from
                the initial parameters passed to fit().
            tolerance: Convergence threshold on the progress signature.
            max_iterations: Iteration cap.
            reg_covar: Non-negative ridge added to every covariance
                diagonal after each M-step. 0 disables regularisation.
            verbose: Log every iteration at INFO instead of DEBUG.
        """
        if n_clusters is not None and n_clusters < 2:
            raise InvalidConfigurationError(f"n_clusters must be >= 2, got {n_clusters}")
        if reg_covar < 0:
            raise InvalidConfigurationError(f"reg_covar must be non-negative, got {reg_covar}")
        self.n_clusters = n_clusters
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.reg_covar = reg_covar
        self.verbose = verbose

    def fit(
        self,
        X: np.ndarray,
        means: np.ndarray,
        covariances: np.ndarray,
        weights: np.ndarray
    ) -> "GaussianMixtureEM":
        """
        Run EM from the given initial parameters.

        Args:
            X: Data matrix of shape (n_samples, d).
            means: Initial means, shape (K, d).
            covariances: Initial covariances, shape (K, d, d).
            weights: Initial mixing weights, shape (K,).

        Returns:
            self, for method chaining.
        """
        monitor = ConvergenceMonitor(self.tolerance, self.max_iterations, name="gmm")
        X = check_data(X)
        params = check_parameters(means, covariances, weights, X.shape[1], self.n_clusters)

        resp, log_dens, ll = e_step(X, params, iteration=0)
        trace = [ll]
        monitor.start(progress_signature(resp, log_dens, params.weights))

        while monitor.running:
            iteration = monitor.iteration + 1
            params = m_step(X, resp, reg_covar=self.reg_covar, iteration=iteration)
            resp, log_dens, ll = e_step(X, params, iteration=iteration)
            trace.append(ll)
            monitor.step(progress_signature(resp, log_dens, params.weights))
            log_progress(monitor, ll, self.verbose)

        warn_if_not_converged(monitor)

        self.result_ = MixtureResult(
            parameters=params,
            responsibilities=resp,
            labels=np.argmax(resp, axis=1),
            log_likelihood=ll,
            log_likelihood_trace=np.asarray(trace),
            signature=monitor.current.copy(),
            converged=monitor.converged,
            n_iter=monitor.iteration,
            distances=list(monitor.distances)
        )
        self.parameters_ = params
        self.responsibilities_ = resp
        self.labels_ = self.result_.labels
        self.log_likelihood_ = ll
        self.log_likelihood_trace_ = self.result_.log_likelihood_trace
        self.converged_ = monitor.converged
        self.n_iter_ = monitor.iteration
        return self

    def _check_fitted(self) -> None:
        if not hasattr(self, "parameters_"):
            raise RuntimeError("GaussianMixtureEM is not fitted yet; call fit() first")

    @property
    def means_(self) -> np.ndarray:
        self._check_fitted()
        return self.parameters_.means

    @property
    def covariances_(self) -> np.ndarray:
        self._check_fitted()
        return self.parameters_.covariances

    @property
    def weights_(self) -> np.ndarray:
        self._check_fitted()
        return self.parameters_.weights

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """Responsibilities of new data under the fitted parameters."""
        self._check_fitted()
        resp, _, _ = e_step(check_data(X), self.parameters_)
        return resp

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Hard cluster assignment, ties resolved to the lowest index."""
        return np.argmax(self.predict_proba(X), axis=1)

    def score_samples(self, X: np.ndarray) -> np.ndarray:
        """Per-row mixture log-likelihood."""
        self._check_fitted()
        X = check_data(X)
        log_dens = component_log_densities(X, self.parameters_)
        with np.errstate(divide="ignore"):
            log_weighted = log_dens + np.log(self.parameters_.weights)
        return logsumexp(log_weighted, axis=1)

    def score(self, X: np.ndarray) -> float:
        """Mean per-row log-likelihood."""
        return float(np.mean(self.score_samples(X)))


def estimate_mixture(
    X: np.ndarray,
    means: np.ndarray,
    covariances: np.ndarray,
    weights: np.ndarray,
    n_clusters: Optional[int] = None,
    tolerance: float = 1e-8,
    max_iterations: int = 500,
    reg_covar: float = 0.0,
    verbose: bool = False
) -> MixtureResult:
    """
    Convenience function to fit a Gaussian mixture by EM.

    Args:
        X: Data matrix of shape (n_samples, d).
        means: Initial means, shape (K, d).
        covariances: Initial covariances, shape (K, d, d).
        weights: Initial mixing weights, shape (K,).
        n_clusters: Optional expected K, checked against the parameters.
        tolerance: Convergence threshold.
        max_iterations: Iteration cap.
        reg_covar: Optional covariance ridge (0 = none).
        verbose: Log progress at INFO level.

    Returns:
        MixtureResult.
    """
    model = GaussianMixtureEM(
        n_clusters=n_clusters,
        tolerance=tolerance,
        max_iterations=max_iterations,
        reg_covar=reg_covar,
        verbose=verbose
    )
    model.fit(X, means, covariances, weights)
    return model.result_
