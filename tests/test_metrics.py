import time

import numpy as np
import pytest

from latent_em.metrics import (
    best_label_accuracy,
    imputation_rmse,
    match_cluster_means,
    subspace_distance,
)


def test_label_accuracy_small_example():
    labels = np.array([0, 0, 1, 1, 2])
    labels_ref = np.array([1, 1, 0, 0, 0])
    assert best_label_accuracy(labels, labels_ref) == pytest.approx(0.8)


def test_label_accuracy_many_clusters_is_fast():
    K, per_cluster = 12, 200
    rng = np.random.default_rng(0)
    perm = rng.permutation(K)
    labels_ref = np.repeat(np.arange(K), per_cluster)
    labels = perm[labels_ref]
    # Ten rows of cluster 0 pushed into the next cluster's relabelled index
    labels[:10] = perm[1]

    start = time.perf_counter()
    accuracy = best_label_accuracy(labels, labels_ref)
    elapsed = time.perf_counter() - start

    assert accuracy == pytest.approx((K * per_cluster - 10) / (K * per_cluster))
    assert elapsed < 1.0


def test_match_cluster_means_reports_permutation():
    ref = np.array([[0.0, 0.0], [5.0, 5.0], [-5.0, 5.0]])
    est = ref[[2, 0, 1]] + 0.01
    perm, err = match_cluster_means(est, ref)

    np.testing.assert_array_equal(est[perm], ref + 0.01)
    assert err == pytest.approx(0.01)


def test_subspace_distance_ignores_basis_choice():
    rng = np.random.default_rng(1)
    W = rng.standard_normal((6, 2))
    R = np.array([[0.0, -2.0], [3.0, 1.0]])

    assert subspace_distance(W @ R, W) < 1e-7
    assert subspace_distance(np.eye(6)[:, :2], np.eye(6)[:, 2:4]) == pytest.approx(1.0)


def test_imputation_rmse_on_masked_entries():
    X = np.zeros((2, 2))
    X_hat = np.array([[3.0, 100.0], [4.0, -100.0]])
    mask = np.array([[True, False], [True, False]])

    assert imputation_rmse(X_hat, X, mask) == pytest.approx(np.sqrt(12.5))
    assert imputation_rmse(X_hat, X, np.zeros((2, 2), dtype=bool)) == 0.0
