# Author: Emrullah Erce Dutkan
"""
Evaluation metrics for EM estimates.

Mixture cluster labels and PPCA loading signs/axis order are not
identifiable, so estimates are compared with permutation- and
sign-invariant measures:

1. Principal angles and subspace distance between loading matrices
2. Best label permutation when matching estimated to reference means
3. Column sign alignment against a reference basis
4. Imputation error on held-out (masked) entries
"""

from typing import Optional, Tuple
import numpy as np
from scipy.optimize import linear_sum_assignment


def principal_angles(
    W1: np.ndarray,
    W2: np.ndarray
) -> np.ndarray:
    """
    Compute principal angles between two subspaces.

    The principal angles theta_1, ..., theta_k between subspaces spanned
    by columns of W1 and W2 are defined via:
        cos(theta_i) = sigma_i(Q1^T Q2)

    where Q1, Q2 are orthonormal bases and sigma_i the singular values.

    Args:
        W1: Matrix of shape (d, k1).
        W2: Matrix of shape (d, k2).

    Returns:
        Array of principal angles in radians, length min(k1, k2).
    """
    # Ensure column matrices
    if W1.ndim == 1:
        W1 = W1.reshape(-1, 1)
    if W2.ndim == 1:
        W2 = W2.reshape(-1, 1)

    Q1, _ = np.linalg.qr(W1)
    Q2, _ = np.linalg.qr(W2)

    s = np.linalg.svd(Q1.T @ Q2, compute_uv=False)

    # Clip to [0, 1] for numerical stability
    s = np.clip(s, 0, 1)
    return np.arccos(s)


def subspace_distance(
    W_est: np.ndarray,
    W_ref: np.ndarray,
    method: str = "sin_max"
) -> float:
    """
    Compute distance between estimated and reference column spaces.

    Args:
        W_est: Estimated loadings, shape (d, k).
        W_ref: Reference loadings, shape (d, k).
        method: Distance measure:
            - "sin_max": Maximum sin(theta) (default)
            - "sin": Mean of sin(theta) for principal angles
            - "grassmann": Grassmann distance sqrt(sum(theta^2))

    Returns:
        Subspace distance (0 = identical, larger = more different).
    """
    angles = principal_angles(np.asarray(W_est, dtype=np.float64),
                              np.asarray(W_ref, dtype=np.float64))

    if method == "sin_max":
        return float(np.max(np.sin(angles)))
    elif method == "sin":
        return float(np.mean(np.sin(angles)))
    elif method == "grassmann":
        return float(np.sqrt(np.sum(angles ** 2)))
    else:
        raise ValueError(f"Unknown method: {method}")


def match_cluster_means(
    means_est: np.ndarray,
    means_ref: np.ndarray
) -> Tuple[np.ndarray, float]:
    """
    Match estimated cluster means to reference means up to relabelling.

    Uses the Hungarian algorithm on the pairwise Euclidean distances.

    Args:
        means_est: Estimated means, shape (K, d).
        means_ref: Reference means, shape (K, d).

    Returns:
        Tuple (perm, max_abs_error) where means_est[perm[j]] is matched to
        means_ref[j] and max_abs_error is the largest coordinate-wise
        deviation after matching.
    """
    means_est = np.asarray(means_est, dtype=np.float64)
    means_ref = np.asarray(means_ref, dtype=np.float64)
    if means_est.shape != means_ref.shape:
        raise ValueError(
            f"Shape mismatch: {means_est.shape} vs {means_ref.shape}"
        )

    cost = np.linalg.norm(means_ref[:, None, :] - means_est[None, :, :], axis=2)
    _, perm = linear_sum_assignment(cost)
    error = np.max(np.abs(means_est[perm] - means_ref))
    return perm, float(error)


def best_label_accuracy(labels: np.ndarray, labels_ref: np.ndarray) -> float:
    """
    Fraction of rows whose cluster label agrees with the reference, under
    the best relabelling.

    The relabelling maximises the matched counts of the K x K contingency
    table with the Hungarian algorithm.
    """
    labels = np.asarray(labels, dtype=np.intp)
    labels_ref = np.asarray(labels_ref, dtype=np.intp)
    if labels.size == 0:
        return 0.0
    K = int(max(labels.max(), labels_ref.max())) + 1
    counts = np.zeros((K, K))
    np.add.at(counts, (labels, labels_ref), 1)
    rows, cols = linear_sum_assignment(-counts)
    return float(counts[rows, cols].sum() / labels.size)


def sign_align(W: np.ndarray, W_ref: np.ndarray) -> np.ndarray:
    """
    Flip columns of W so that each has a non-negative inner product with
    the matching column of W_ref.
    """
    W = np.asarray(W, dtype=np.float64)
    signs = np.sign(np.sum(W * W_ref, axis=0))
    signs[signs == 0] = 1
    return W * signs


def max_abs_error_up_to_sign(W: np.ndarray, W_ref: np.ndarray) -> float:
    """Largest entrywise deviation after per-column sign alignment."""
    return float(np.max(np.abs(sign_align(W, W_ref) - W_ref)))


def imputation_rmse(
    X_imputed: np.ndarray,
    X_true: np.ndarray,
    mask: Optional[np.ndarray] = None
) -> float:
    """
    Root mean squared error of imputed entries.

    Args:
        X_imputed: Matrix with imputed values.
        X_true: Ground-truth matrix.
        mask: Entries to evaluate (True = was missing). All entries if None.

    Returns:
        RMSE over the selected entries (0.0 if none are selected).
    """
    diff = np.asarray(X_imputed, dtype=np.float64) - np.asarray(X_true, dtype=np.float64)
    if mask is not None:
        diff = diff[np.asarray(mask, dtype=bool)]
    if diff.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(diff ** 2)))


def relative_reconstruction_error(X: np.ndarray, reconstruction: np.ndarray) -> float:
    """Squared reconstruction error normalised by the squared norm of X."""
    X = np.asarray(X, dtype=np.float64)
    total = np.sum(X ** 2)
    if total < 1e-300:
        return 0.0
    return float(np.sum((X - reconstruction) ** 2) / total)
