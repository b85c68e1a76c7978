# Author: Emrullah Erce Dutkan
"""
Linear algebra utilities shared by the EM estimators.

All functions are pure: inputs are never modified. Symmetric positive
(semi-)definite systems are solved through a Cholesky factorization when
the matrix is well-conditioned. A numerically singular matrix raises
SingularMatrixError unless the caller explicitly asks for a pseudo-inverse.

Eigendecompositions are returned in descending eigenvalue order.
"""

from typing import Tuple
import numpy as np
from scipy import linalg as sla

from .errors import SingularMatrixError


LOG_2PI = np.log(2 * np.pi)


def _as_square(A: np.ndarray, name: str = "matrix") -> np.ndarray:
    A = np.asarray(A, dtype=np.float64)
    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise ValueError(f"{name} must be square, got shape {A.shape}")
    return A


def _symmetrize(A: np.ndarray) -> np.ndarray:
    return 0.5 * (A + A.T)


def _singularity_threshold(n: int) -> float:
    return n * np.finfo(np.float64).eps


def trace(M: np.ndarray) -> float:
    """
    Sum of the diagonal of a square matrix.

    Non-finite diagonal entries are skipped.
    """
    M = _as_square(M)
    diag = np.diag(M)
    return float(np.sum(diag[np.isfinite(diag)]))


def covariance(X: np.ndarray) -> np.ndarray:
    """
    Maximum-likelihood covariance estimate (divides by N, not N - 1).

    Args:
        X: Data matrix of shape (n_samples, d).

    Returns:
        Covariance matrix of shape (d, d).
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2 or X.shape[0] == 0:
        raise ValueError(f"X must be a non-empty 2D array, got shape {X.shape}")
    X_centered = X - np.mean(X, axis=0)
    return _symmetrize(X_centered.T @ X_centered / X.shape[0])


def second_moment(X: np.ndarray) -> np.ndarray:
    """Uncentered second-moment matrix X^T X / N."""
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2 or X.shape[0] == 0:
        raise ValueError(f"X must be a non-empty 2D array, got shape {X.shape}")
    return _symmetrize(X.T @ X / X.shape[0])


def cholesky_factor(A: np.ndarray) -> np.ndarray:
    """
    Lower-triangular Cholesky factor of a symmetric positive definite matrix.

    Args:
        A: Symmetric matrix of shape (d, d).

    Returns:
        Lower-triangular L with A = L L^T.

    Raises:
        SingularMatrixError: If A is not positive definite or its
            reciprocal condition number is below working precision.
    """
    A = _symmetrize(_as_square(A))
    if not np.all(np.isfinite(A)):
        raise SingularMatrixError("Matrix contains non-finite entries")
    try:
        L = sla.cholesky(A, lower=True, check_finite=False)
    except np.linalg.LinAlgError as exc:
        raise SingularMatrixError(f"Cholesky factorization failed: {exc}") from exc

    diag = np.diag(L)
    # cond(A) ~ (max diag(L) / min diag(L))^2
    rcond = (np.min(diag) / np.max(diag)) ** 2
    if not rcond > _singularity_threshold(A.shape[0]):
        raise SingularMatrixError(
            f"Matrix is numerically singular (rcond estimate {rcond:.2e})"
        )
    return L


def log_det_from_cholesky(L: np.ndarray) -> float:
    """log|A| given the Cholesky factor L of A."""
    return float(2.0 * np.sum(np.log(np.diag(L))))


def gaussian_log_density(
    X: np.ndarray,
    mean: np.ndarray,
    cov: np.ndarray
) -> np.ndarray:
    """
    Multivariate normal log density of each row of X.

    Args:
        X: Data matrix of shape (n_samples, d).
        mean: Mean vector of shape (d,).
        cov: Covariance matrix of shape (d, d).

    Returns:
        Log densities of shape (n_samples,).

    Raises:
        SingularMatrixError: If cov is not positive definite.
    """
    X = np.asarray(X, dtype=np.float64)
    L = cholesky_factor(cov)
    diff = X - np.asarray(mean, dtype=np.float64)
    # Solve L y = (x - mu)^T so that ||y||^2 is the Mahalanobis distance
    y = sla.solve_triangular(L, diff.T, lower=True, check_finite=False)
    maha = np.sum(y ** 2, axis=0)
    d = X.shape[1]
    return -0.5 * (d * LOG_2PI + log_det_from_cholesky(L) + maha)


def symmetric_solve(
    A: np.ndarray,
    B: np.ndarray,
    allow_pinv: bool = False
) -> np.ndarray:
    """
    Solve A x = B for a symmetric positive semi-definite A.

    A Cholesky factorization is used when A is positive definite and
    well-conditioned. Otherwise the eigenvalues of A decide: an
    indefinite but invertible A is solved as a general symmetric system,
    a numerically singular A raises (or uses the pseudo-inverse when
    allow_pinv is set).

    Args:
        A: Symmetric matrix of shape (d, d).
        B: Right-hand side of shape (d,) or (d, m).
        allow_pinv: Fall back to the Moore-Penrose pseudo-inverse instead
            of raising when A is singular.

    Returns:
        Solution with the same shape as B.

    Raises:
        SingularMatrixError: If A is numerically singular and allow_pinv
            is False.
    """
    A = _symmetrize(_as_square(A))
    B = np.asarray(B, dtype=np.float64)
    if not np.all(np.isfinite(A)):
        raise SingularMatrixError("Matrix contains non-finite entries")

    try:
        L = cholesky_factor(A)
    except SingularMatrixError:
        L = None

    if L is not None:
        return sla.cho_solve((L, True), B, check_finite=False)

    eigvals = np.linalg.eigvalsh(A)
    scale = np.max(np.abs(eigvals)) if eigvals.size else 0.0
    if scale == 0.0 or np.min(np.abs(eigvals)) <= _singularity_threshold(A.shape[0]) * scale:
        if allow_pinv:
            return sla.pinvh(A) @ B
        raise SingularMatrixError(
            f"Matrix of shape {A.shape} is numerically singular"
        )
    return sla.solve(A, B, assume_a="sym", check_finite=False)


def invert(A: np.ndarray, allow_pinv: bool = False) -> np.ndarray:
    """
    Inverse of a symmetric positive semi-definite matrix.

    See symmetric_solve for the factorization strategy and failure modes.
    """
    A = _as_square(A)
    return _symmetrize(symmetric_solve(A, np.eye(A.shape[0]), allow_pinv=allow_pinv))


def orthonormalize(W: np.ndarray) -> np.ndarray:
    """
    Orthonormal basis for the column space of W via QR decomposition.

    Signs are fixed so that R has a non-negative diagonal, making the
    result deterministic for a given input.

    Args:
        W: Matrix of shape (d, k) with k <= d.

    Returns:
        Matrix of shape (d, k) with orthonormal columns.
    """
    W = np.asarray(W, dtype=np.float64)
    if W.ndim == 1:
        W = W.reshape(-1, 1)
    Q, R = np.linalg.qr(W)
    signs = np.sign(np.diag(R))
    signs[signs == 0] = 1
    return Q * signs


def eigen_decompose(S: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Eigendecomposition of a symmetric matrix.

    Args:
        S: Symmetric matrix of shape (d, d).

    Returns:
        Tuple (eigenvalues, eigenvectors): eigenvalues of shape (d,) in
        descending order, eigenvectors of shape (d, d) with matching
        columns.
    """
    S = _symmetrize(_as_square(S))
    eigvals, eigvecs = sla.eigh(S)
    idx = np.argsort(eigvals)[::-1]
    return eigvals[idx], eigvecs[:, idx]
