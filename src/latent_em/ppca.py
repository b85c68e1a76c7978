# Author: Emrullah Erce Dutkan
"""
Probabilistic PCA fitted with the EM algorithm.

The model is

    p(z) = N(0, I_L)
    p(x | z) = N(W z, sigma2 I_D)

with a loading matrix W of shape (D, L) and isotropic noise variance sigma2.
Starting from the second-moment matrix S = X^T X / N, each iteration runs

    E-step: M = W^T W + sigma2 I,  Z = M^{-1} W^T X^T
    M-step: W_new = S W (sigma2 I + M^{-1} W^T S W)^{-1}
            sigma2_new = tr(S - S W M^{-1} W_new^T) / D

Initialization is the maximum-likelihood solution for S (Tipping & Bishop,
1999): sigma2 is the mean of the discarded eigenvalues and W the top-L
eigenvectors scaled by sqrt(lambda - sigma2). The run therefore starts at,
or very near, a stationary point.

After the loop the loadings are orthonormalized and rotated onto the
eigenbasis of the score covariance so that outputs are axis-aligned and
comparable across runs up to sign.

References:
    Tipping, M. E. and Bishop, C. M. (1999). Probabilistic Principal
    Component Analysis. JRSS Series B, 61(3).
"""

from typing import Optional, Tuple
from dataclasses import dataclass, field
import logging
import numpy as np

from .linalg import (
    LOG_2PI,
    covariance,
    eigen_decompose,
    orthonormalize,
    second_moment,
    symmetric_solve,
    trace,
)
from .errors import InvalidConfigurationError, SingularMatrixError
from .convergence import ConvergenceMonitor, log_progress, warn_if_not_converged


logger = logging.getLogger(__name__)


@dataclass
class PPCAResult:
    """
    Outcome of a PPCA EM run.

    Attributes:
        loadings: Orthonormal, axis-aligned loadings, shape (D, L).
        raw_loadings: Maximum-likelihood W before post-processing, (D, L).
        scores: Projections onto the loadings, shape (N, L).
        reconstruction: scores @ loadings.T (+ mean), shape (N, D).
        reconstruction_error: Total squared reconstruction error over the
            observed entries.
        noise_variance: Final sigma2.
        explained_variance: Variance of the scores along each axis,
            descending.
        mean: Column means removed before fitting (zeros if not centred).
        signature: Final progress signature (negative log density).
        signature_trace: Signature after start() and every iteration.
        log_likelihood_trace: Marginal log-likelihood per iteration.
        converged: Whether the tolerance criterion was met.
        n_iter: Number of completed iterations.
    """
    loadings: np.ndarray
    raw_loadings: np.ndarray
    scores: np.ndarray
    reconstruction: np.ndarray
    reconstruction_error: float
    noise_variance: float
    explained_variance: np.ndarray
    mean: np.ndarray
    signature: float
    signature_trace: np.ndarray
    log_likelihood_trace: np.ndarray
    converged: bool
    n_iter: int
    distances: list = field(default_factory=list)


def check_n_components(n_components: int, d: int) -> int:
    """Validate the latent dimensionality L, requiring 1 <= L < d."""
    if int(n_components) != n_components or not 1 <= n_components < d:
        raise InvalidConfigurationError(
            f"n_components must be an integer in [1, {d - 1}], got {n_components}"
        )
    return int(n_components)


def initialize_ppca(
    S: np.ndarray,
    n_components: int,
    noise_floor: float = 1e-12
) -> Tuple[np.ndarray, float, float]:
    """
    Maximum-likelihood starting point from the second-moment matrix.

    Args:
        S: Second-moment matrix, shape (D, D).
        n_components: Latent dimensionality L.
        noise_floor: Lower bound on sigma2, relative to the mean eigenvalue
            of S.

    Returns:
        Tuple (W, sigma2, floor) where floor is the absolute lower bound
        applied to sigma2 for the rest of the run.
    """
    eigvals, eigvecs = eigen_decompose(S)
    scale = float(np.mean(eigvals))
    floor = noise_floor * scale if scale > 0 else noise_floor

    sigma2 = max(float(np.mean(eigvals[n_components:])), floor)
    gains = np.sqrt(np.maximum(eigvals[:n_components] - sigma2, 0.0))
    W = eigvecs[:, :n_components] * gains
    return W, sigma2, floor


def ppca_e_step(
    X: np.ndarray,
    W: np.ndarray,
    sigma2: float
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Posterior mean of the latent coordinates.

    Returns:
        Tuple (Z, M): scores of shape (N, L) and M = W^T W + sigma2 I.
    """
    L = W.shape[1]
    M = W.T @ W + sigma2 * np.eye(L)
    Z = symmetric_solve(M, W.T @ X.T).T
    return Z, M


def ppca_m_step(
    S: np.ndarray,
    W: np.ndarray,
    sigma2: float,
    M: np.ndarray,
    floor: float
) -> Tuple[np.ndarray, float]:
    """
    Update W and sigma2 from the second-moment matrix.

    Returns:
        Tuple (W_new, sigma2_new).
    """
    D = S.shape[0]
    SW = S @ W
    # sigma2 I + M^{-1} W^T S W = M^{-1} (sigma2 M + W^T S W); the bracket
    # is symmetric PSD, so its inverse goes through a Cholesky solve.
    A = sigma2 * M + W.T @ SW
    W_new = SW @ symmetric_solve(A, M)

    sigma2_new = trace(S - SW @ symmetric_solve(M, W_new.T)) / D
    return W_new, max(sigma2_new, floor)


def reconstruction_nll(
    X: np.ndarray,
    Z: np.ndarray,
    W: np.ndarray,
    sigma2: float,
    mask: Optional[np.ndarray] = None
) -> float:
    """
    Negative log density of X under N(Z W^T, sigma2), entrywise.

    Entries flagged in mask (missing) are excluded.
    """
    resid = X - Z @ W.T
    if mask is not None:
        resid = resid[~mask]
    n_obs = resid.size
    return float(0.5 * (n_obs * (LOG_2PI + np.log(sigma2)) + np.sum(resid ** 2) / sigma2))


def marginal_log_likelihood(
    S: np.ndarray,
    W: np.ndarray,
    sigma2: float,
    n_samples: int
) -> float:
    """
    Log-likelihood of N samples with second moment S under C = W W^T + sigma2 I.

    Uses the determinant lemma and Woodbury identity, so only the L x L
    matrix M = W^T W + sigma2 I is factorized.
    """
    D, L = W.shape
    M = W.T @ W + sigma2 * np.eye(L)
    _, logdet_M = np.linalg.slogdet(M)
    log_det_C = (D - L) * np.log(sigma2) + logdet_M
    trace_Cinv_S = (trace(S) - trace(symmetric_solve(M, W.T @ S @ W))) / sigma2
    return float(-0.5 * n_samples * (D * LOG_2PI + log_det_C + trace_Cinv_S))


def _fix_signs(Q: np.ndarray) -> np.ndarray:
    # Largest-magnitude entry of each column positive
    idx = np.argmax(np.abs(Q), axis=0)
    signs = np.sign(Q[idx, np.arange(Q.shape[1])])
    signs[signs == 0] = 1
    return Q * signs


def rotate_to_principal_axes(
    X: np.ndarray,
    W: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Orthonormalize W and align it with the principal axes of the scores.

    Args:
        X: Data matrix of shape (N, D), already centred if applicable.
        W: Loadings of shape (D, L).

    Returns:
        Tuple (loadings, scores, explained_variance) where loadings has
        orthonormal columns ordered by descending score variance.
    """
    Q = orthonormalize(W)
    eigvals, V = eigen_decompose(covariance(X @ Q))
    Q = _fix_signs(Q @ V)
    return Q, X @ Q, np.maximum(eigvals, 0.0)


class PPCA:
    """
    Probabilistic PCA estimated by EM.

    Attributes (after fit):
        loadings_: Orthonormal, axis-aligned loadings, shape (D, L).
        components_: loadings_.T, shape (L, D).
        W_: Maximum-likelihood loading matrix, shape (D, L).
        noise_variance_: Final sigma2.
        mean_: Column means removed before fitting.
        converged_: Whether the tolerance criterion was met.
        n_iter_: Number of completed iterations.
        result_: The full PPCAResult.
    """

    name = "ppca"

    def __init__(
        self,
        n_components: int,
        tolerance: float = 1e-8,
        max_iterations: int = 500,
        center: bool = False,
        noise_floor: float = 1e-12,
        verbose: bool = False
    ):
        """
        Args:
            n_components: Latent dimensionality L (1 <= L < D).
            tolerance: Convergence threshold on the negative log density.
            max_iterations: Iteration cap.
            center: Subtract column means before fitting. The model itself
                has no mean term, so by default the data are used as given.
            noise_floor: Lower bound on sigma2 relative to the mean
                eigenvalue of S. Keeps sigma2 positive on noise-free data.
            verbose: Log every iteration at INFO instead of DEBUG.
        """
        if n_components < 1:
            raise InvalidConfigurationError(
                f"n_components must be >= 1, got {n_components}"
            )
        if not noise_floor > 0:
            raise InvalidConfigurationError(
                f"noise_floor must be positive, got {noise_floor}"
            )
        self.n_components = n_components
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.center = center
        self.noise_floor = noise_floor
        self.verbose = verbose

    def _check_data(self, X: np.ndarray) -> np.ndarray:
        X = np.array(X, dtype=np.float64)
        if X.ndim != 2 or X.shape[0] == 0:
            raise InvalidConfigurationError(
                f"X must be a non-empty 2D array, got shape {X.shape}"
            )
        if not np.all(np.isfinite(X)):
            raise InvalidConfigurationError(
                "X contains non-finite values; use MissingDataPPCA for missing entries"
            )
        return X

    def _before_m_step(
        self,
        X: np.ndarray,
        Z: np.ndarray,
        W: np.ndarray,
        S: np.ndarray,
        mask: Optional[np.ndarray]
    ) -> np.ndarray:
        """Hook run between the E-step and the M-step; returns S."""
        return S

    def _after_loop(
        self,
        X: np.ndarray,
        Z: np.ndarray,
        W: np.ndarray,
        mask: Optional[np.ndarray]
    ) -> None:
        """Hook run once the monitor has stopped."""

    def _run(self, X: np.ndarray, mask: Optional[np.ndarray] = None) -> dict:
        """
        EM loop and post-processing on a complete working matrix.

        Args:
            X: Working matrix (N, D). Missing entries, if any, must already
                be filled; it is modified in place by the hooks.
            mask: Optional missing-entry mask excluded from the signature
                and the reconstruction error.
        """
        monitor = ConvergenceMonitor(self.tolerance, self.max_iterations, name=self.name)
        n, d = X.shape
        L = check_n_components(self.n_components, d)

        if self.center:
            if mask is None:
                mean = X.mean(axis=0)
            else:
                observed = np.where(mask, 0.0, X)
                counts = np.maximum((~mask).sum(axis=0), 1)
                mean = observed.sum(axis=0) / counts
            X -= mean
        else:
            mean = np.zeros(d)

        S = second_moment(X)
        W, sigma2, floor = initialize_ppca(S, L, self.noise_floor)
        iteration = 0

        try:
            Z, M = ppca_e_step(X, W, sigma2)
            nll = reconstruction_nll(X, Z, W, sigma2, mask)
            signature_trace = [nll]
            ll_trace = [marginal_log_likelihood(S, W, sigma2, n)]
            monitor.start(nll)

            while monitor.running:
                iteration = monitor.iteration + 1
                S = self._before_m_step(X, Z, W, S, mask)
                W, sigma2 = ppca_m_step(S, W, sigma2, M, floor)
                Z, M = ppca_e_step(X, W, sigma2)
                nll = reconstruction_nll(X, Z, W, sigma2, mask)
                signature_trace.append(nll)
                ll_trace.append(marginal_log_likelihood(S, W, sigma2, n))
                monitor.step(nll)
                log_progress(monitor, nll, self.verbose)
        except SingularMatrixError as exc:
            if exc.iteration is None:
                exc.iteration = iteration
            raise

        warn_if_not_converged(monitor)
        self._after_loop(X, Z, W, mask)

        loadings, scores, explained = rotate_to_principal_axes(X, W)
        reconstruction = scores @ loadings.T
        resid = X - reconstruction
        if mask is not None:
            resid = resid[~mask]

        return {
            "working": X + mean,
            "loadings": loadings,
            "raw_loadings": W,
            "scores": scores,
            "reconstruction": reconstruction + mean,
            "reconstruction_error": float(np.sum(resid ** 2)),
            "noise_variance": float(sigma2),
            "explained_variance": explained,
            "mean": mean,
            "signature": nll,
            "signature_trace": np.asarray(signature_trace),
            "log_likelihood_trace": np.asarray(ll_trace),
            "converged": monitor.converged,
            "n_iter": monitor.iteration,
            "distances": list(monitor.distances),
        }

    def _store(self, result: PPCAResult) -> None:
        self.result_ = result
        self.loadings_ = result.loadings
        self.W_ = result.raw_loadings
        self.noise_variance_ = result.noise_variance
        self.mean_ = result.mean
        self.converged_ = result.converged
        self.n_iter_ = result.n_iter

    def fit(self, X: np.ndarray) -> "PPCA":
        """
        Fit the model to a complete data matrix.

        Args:
            X: Data matrix of shape (n_samples, d).

        Returns:
            self, for method chaining.
        """
        X = self._check_data(X)
        out = self._run(X)
        out.pop("working")
        self._store(PPCAResult(**out))
        return self

    def _check_fitted(self) -> None:
        if not hasattr(self, "result_"):
            raise RuntimeError(f"{type(self).__name__} is not fitted yet; call fit() first")

    @property
    def components_(self) -> np.ndarray:
        """Return the loadings as row vectors, shape (L, D)."""
        self._check_fitted()
        return self.loadings_.T.copy()

    def transform(self, X: np.ndarray) -> np.ndarray:
        """
        Project data onto the fitted loadings.

        Args:
            X: Data matrix of shape (n_samples, d) or (d,).

        Returns:
            Scores of shape (n_samples, L) or (L,).
        """
        self._check_fitted()
        X = np.asarray(X, dtype=np.float64)
        single = X.ndim == 1
        if single:
            X = X.reshape(1, -1)

        result = (X - self.mean_) @ self.loadings_

        if single:
            return result.ravel()
        return result

    def inverse_transform(self, Y: np.ndarray) -> np.ndarray:
        """Map scores back to data space."""
        self._check_fitted()
        Y = np.asarray(Y, dtype=np.float64)
        single = Y.ndim == 1
        if single:
            Y = Y.reshape(1, -1)

        result = Y @ self.loadings_.T + self.mean_

        if single:
            return result.ravel()
        return result

    def fit_transform(self, X: np.ndarray) -> np.ndarray:
        """Fit and return the scores of the training data."""
        return self.fit(X).result_.scores

    def log_likelihood(self, X: np.ndarray) -> float:
        """Marginal log-likelihood of complete data under the fitted model."""
        self._check_fitted()
        X = self._check_data(X) - self.mean_
        return marginal_log_likelihood(second_moment(X), self.W_, self.noise_variance_, X.shape[0])


def estimate_ppca(
    X: np.ndarray,
    n_components: int,
    tolerance: float = 1e-8,
    max_iterations: int = 500,
    center: bool = False,
    noise_floor: float = 1e-12,
    verbose: bool = False
) -> PPCAResult:
    """
    Convenience function to run PPCA on a complete dataset.

    Args:
        X: Data matrix of shape (n_samples, d).
        n_components: Latent dimensionality L.
        tolerance: Convergence threshold.
        max_iterations: Iteration cap.
        center: Subtract column means first.
        noise_floor: Relative lower bound on the noise variance.
        verbose: Log progress at INFO level.

    Returns:
        PPCAResult.
    """
    model = PPCA(
        n_components,
        tolerance=tolerance,
        max_iterations=max_iterations,
        center=center,
        noise_floor=noise_floor,
        verbose=verbose
    )
    model.fit(X)
    return model.result_
