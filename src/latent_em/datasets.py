# Author: Emrullah Erce Dutkan
"""
Dataset utilities for EM experiments.

This module provides synthetic data with known generating parameters, so
that estimates can be checked against the truth:
- Gaussian clusters with given means and covariances
- Low-rank linear-Gaussian data (the PPCA generative model)
- Missing-at-random masks
- A simple, data-driven mixture initialization

It also wraps the sklearn digits dataset for convenience but keeps the
dependency optional.
"""

from typing import List, Optional, Sequence, Tuple
import numpy as np

from .gmm import MixtureParameters
from .linalg import covariance


def random_orthonormal(d: int, k: int, rng: np.random.Generator) -> np.ndarray:
    """Random (d, k) matrix with orthonormal columns."""
    Q, _ = np.linalg.qr(rng.standard_normal((d, k)))
    return Q


def _whiten(Z: np.ndarray) -> np.ndarray:
    # Zero sample mean and identity ML sample covariance
    Z = Z - Z.mean(axis=0)
    L = np.linalg.cholesky(covariance(Z))
    return np.linalg.solve(L, Z.T).T


def make_gaussian_clusters(
    means: Sequence[Sequence[float]],
    n_per_cluster: int = 200,
    covariances: Optional[np.ndarray] = None,
    exact_moments: bool = False,
    shuffle: bool = True,
    seed: Optional[int] = 42
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sample from a mixture of Gaussian clusters of equal size.

    Args:
        means: Cluster means, shape (K, d).
        n_per_cluster: Samples drawn from each cluster.
        covariances: Cluster covariances, shape (K, d, d). Identity if None.
        exact_moments: If True, each cluster's sample mean and ML sample
            covariance equal the requested ones exactly.
        shuffle: Shuffle the rows.
        seed: Random seed.

    Returns:
        Tuple (X, labels) with X of shape (K * n_per_cluster, d).
    """
    rng = np.random.default_rng(seed)
    means = np.asarray(means, dtype=np.float64)
    K, d = means.shape
    if covariances is None:
        covariances = np.tile(np.eye(d), (K, 1, 1))
    covariances = np.asarray(covariances, dtype=np.float64)

    blocks: List[np.ndarray] = []
    for k in range(K):
        Z = rng.standard_normal((n_per_cluster, d))
        if exact_moments:
            Z = _whiten(Z)
        L = np.linalg.cholesky(covariances[k])
        blocks.append(means[k] + Z @ L.T)

    X = np.vstack(blocks)
    labels = np.repeat(np.arange(K), n_per_cluster)

    if shuffle:
        order = rng.permutation(X.shape[0])
        X, labels = X[order], labels[order]
    return X, labels


def make_low_rank_data(
    n: int = 500,
    d: int = 10,
    rank: int = 2,
    noise_std: float = 0.0,
    scales: Optional[Sequence[float]] = None,
    seed: Optional[int] = 42
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate X = Z W^T + noise with Z ~ N(0, I_rank).

    Args:
        n: Number of samples.
        d: Dimensionality.
        rank: Latent dimensionality.
        noise_std: Standard deviation of isotropic Gaussian noise.
        scales: Column norms of W. Defaults to rank, rank - 1, ..., 1 so
            that the principal axes are well separated.
        seed: Random seed.

    Returns:
        Tuple (X, W) with X of shape (n, d) and true loadings W (d, rank).
    """
    rng = np.random.default_rng(seed)
    if scales is None:
        scales = np.arange(rank, 0, -1, dtype=np.float64)
    W = random_orthonormal(d, rank, rng) * np.asarray(scales, dtype=np.float64)
    Z = rng.standard_normal((n, rank))
    X = Z @ W.T
    if noise_std > 0:
        X = X + noise_std * rng.standard_normal((n, d))
    return X, W


def mask_missing_at_random(
    X: np.ndarray,
    fraction: float = 0.1,
    seed: Optional[int] = 42
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Hide a random fraction of entries.

    Each row keeps at least one observed entry.

    Args:
        X: Complete data matrix, shape (n, d).
        fraction: Probability that an entry is hidden.
        seed: Random seed.

    Returns:
        Tuple (X_missing, mask): a copy of X with NaN at hidden entries,
        and the boolean mask (True = missing).
    """
    if not 0 <= fraction < 1:
        raise ValueError(f"fraction must be in [0, 1), got {fraction}")
    rng = np.random.default_rng(seed)
    X = np.asarray(X, dtype=np.float64)
    mask = rng.random(X.shape) < fraction

    full_rows = np.flatnonzero(mask.all(axis=1))
    if full_rows.size:
        keep = rng.integers(0, X.shape[1], size=full_rows.size)
        mask[full_rows, keep] = False

    X_missing = X.copy()
    X_missing[mask] = np.nan
    return X_missing, mask


def initial_mixture_parameters(
    X: np.ndarray,
    n_clusters: int,
    seed: Optional[int] = 42
) -> MixtureParameters:
    """
    A simple starting point for mixture EM.

    Means are rows of X picked by farthest-point traversal from a random
    first row, every covariance is the pooled data covariance and the
    weights are uniform. The estimator itself does not prescribe an
    initialization; poor starts can reach degenerate or non-global optima.
    """
    rng = np.random.default_rng(seed)
    X = np.asarray(X, dtype=np.float64)
    if not 1 <= n_clusters <= X.shape[0]:
        raise ValueError(f"n_clusters must be in [1, {X.shape[0]}], got {n_clusters}")

    idx = [int(rng.integers(X.shape[0]))]
    dist = np.sum((X - X[idx[0]]) ** 2, axis=1)
    for _ in range(1, n_clusters):
        nxt = int(np.argmax(dist))
        idx.append(nxt)
        dist = np.minimum(dist, np.sum((X - X[nxt]) ** 2, axis=1))

    pooled = covariance(X)
    return MixtureParameters(
        means=X[idx].copy(),
        covariances=np.tile(pooled, (n_clusters, 1, 1)),
        weights=np.full(n_clusters, 1.0 / n_clusters)
    )


def load_digits() -> Tuple[np.ndarray, np.ndarray]:
    """
    Load the digits dataset from sklearn.

    Returns:
        Tuple of (X, y) where:
        - X: Feature matrix of shape (1797, 64)
        - y: Labels of shape (1797,)

    Raises:
        ImportError: If sklearn is not available.
    """
    try:
        from sklearn.datasets import load_digits as sklearn_load_digits
    except ImportError:
        raise ImportError(
            "sklearn is required for loading the digits dataset. "
            "Install with: pip install scikit-learn"
        )

    data = sklearn_load_digits()
    return data.data.astype(np.float64), data.target
