import numpy as np
import pytest

from latent_em.datasets import make_gaussian_clusters
from latent_em.errors import (
    DegenerateClusterError,
    InvalidConfigurationError,
    NonConvergenceWarning,
    SingularMatrixError,
)
from latent_em.gmm import (
    GaussianMixtureEM,
    MixtureParameters,
    e_step,
    estimate_mixture,
    m_step,
    normalize_responsibilities,
)
from latent_em.metrics import best_label_accuracy, match_cluster_means


TRUE_MEANS = np.array([[0.0, 0.0], [10.0, 10.0]])


def _two_clusters():
    return make_gaussian_clusters(TRUE_MEANS, n_per_cluster=200, exact_moments=True, seed=0)


def _start(means):
    means = np.asarray(means, dtype=float)
    K, d = means.shape
    return means, np.tile(np.eye(d), (K, 1, 1)), np.full(K, 1.0 / K)


def test_recovers_well_separated_means():
    X, labels = _two_clusters()
    result = estimate_mixture(X, *_start([[1.0, -1.0], [8.0, 9.0]]))

    assert result.converged
    _, err = match_cluster_means(result.parameters.means, TRUE_MEANS)
    assert err < 0.1
    np.testing.assert_allclose(result.parameters.weights, [0.5, 0.5], atol=1e-3)
    assert best_label_accuracy(result.labels, labels) == 1.0


def test_recovery_is_invariant_to_initial_labelling():
    X, _ = _two_clusters()
    forward = estimate_mixture(X, *_start([[1.0, -1.0], [8.0, 9.0]]))
    reverse = estimate_mixture(X, *_start([[8.0, 9.0], [1.0, -1.0]]))

    perm, err = match_cluster_means(reverse.parameters.means, forward.parameters.means)
    assert err < 1e-6
    assert list(perm) == [1, 0]


def test_log_likelihood_never_decreases():
    # Heavily overlapping clusters make EM crawl, so the cap is reached
    X, _ = make_gaussian_clusters([[0.0, 0.0], [1.5, 0.5]], n_per_cluster=200, seed=3)
    with pytest.warns(NonConvergenceWarning):
        result = estimate_mixture(
            X, *_start([[-1.0, 1.0], [2.0, -1.0]]),
            tolerance=1e-14, max_iterations=60
        )

    trace = result.log_likelihood_trace
    assert result.n_iter >= 50
    assert len(trace) == result.n_iter + 1
    diffs = np.diff(trace)
    assert np.all(diffs >= -1e-8 * np.abs(trace[1:]))


def test_responsibility_rows_sum_to_one_every_iteration():
    X, _ = make_gaussian_clusters([[0.0, 0.0], [3.0, 0.0], [0.0, 3.0]], n_per_cluster=50, seed=4)
    means, covs, weights = _start([[1.0, 1.0], [2.0, 0.0], [0.0, 2.0]])
    params = MixtureParameters(means, covs, weights)

    for iteration in range(20):
        resp, _, _ = e_step(X, params, iteration=iteration)
        assert resp.shape == (X.shape[0], 3)
        assert np.all(resp >= 0)
        np.testing.assert_allclose(resp.sum(axis=1), 1.0, atol=1e-12)
        params = m_step(X, resp, iteration=iteration + 1)


def test_far_outlier_gets_finite_responsibilities():
    X, _ = _two_clusters()
    X = np.vstack([X, [1e6, -1e6]])
    params = MixtureParameters(*_start(TRUE_MEANS))

    resp, _, ll = e_step(X, params)
    assert np.all(np.isfinite(resp))
    np.testing.assert_allclose(resp.sum(axis=1), 1.0, atol=1e-12)
    assert np.isfinite(ll)


def test_zero_density_rows_fall_back_to_uniform():
    log_weighted = np.array([
        [-np.inf, -np.inf, -np.inf],
        [0.0, -np.inf, np.log(3.0)],
    ])
    resp, log_norm = normalize_responsibilities(log_weighted)

    np.testing.assert_allclose(resp[0], [1 / 3, 1 / 3, 1 / 3])
    np.testing.assert_allclose(resp[1], [0.25, 0.0, 0.75])
    assert log_norm[0] == -np.inf


def test_ties_resolve_to_lowest_index():
    X, _ = _two_clusters()
    result = estimate_mixture(X, *_start([[5.0, 5.0], [5.0, 5.0]]))

    np.testing.assert_allclose(result.responsibilities, 0.5)
    assert np.all(result.labels == 0)


def test_iteration_cap_reports_nonconvergence():
    X, _ = _two_clusters()
    with pytest.warns(NonConvergenceWarning):
        result = estimate_mixture(
            X, *_start([[3.0, 3.0], [6.0, 6.0]]),
            tolerance=1e-10, max_iterations=1
        )

    assert not result.converged
    assert result.n_iter == 1
    assert len(result.log_likelihood_trace) == 2


def test_estimator_interface():
    X, labels = _two_clusters()
    model = GaussianMixtureEM(n_clusters=2).fit(X, *_start([[1.0, -1.0], [8.0, 9.0]]))

    assert model.converged_
    assert model.means_.shape == (2, 2)
    assert model.covariances_.shape == (2, 2, 2)
    np.testing.assert_array_equal(model.predict(X), model.labels_)
    np.testing.assert_allclose(model.predict_proba(X), model.responsibilities_)
    assert model.score(X) == pytest.approx(model.log_likelihood_ / X.shape[0])


def test_unfitted_estimator_raises():
    with pytest.raises(RuntimeError):
        GaussianMixtureEM().predict(np.zeros((3, 2)))


@pytest.mark.parametrize("means, covs, weights", [
    # Single cluster
    ([[0.0, 0.0]], [np.eye(2)], [1.0]),
    # Weights do not sum to one
    ([[0.0, 0.0], [1.0, 1.0]], [np.eye(2), np.eye(2)], [0.5, 0.6]),
    # Negative weight
    ([[0.0, 0.0], [1.0, 1.0]], [np.eye(2), np.eye(2)], [1.5, -0.5]),
    # Wrong mean dimensionality
    ([[0.0, 0.0, 0.0], [1.0, 1.0, 1.0]], [np.eye(2), np.eye(2)], [0.5, 0.5]),
    # Non-finite covariance
    ([[0.0, 0.0], [1.0, 1.0]], [np.eye(2), np.full((2, 2), np.nan)], [0.5, 0.5]),
])
def test_invalid_initial_parameters(means, covs, weights):
    X, _ = _two_clusters()
    with pytest.raises(InvalidConfigurationError):
        estimate_mixture(X, means, covs, weights)


@pytest.mark.parametrize("kwargs", [
    {"tolerance": 0.0},
    {"tolerance": -1.0},
    {"max_iterations": 0},
    {"n_clusters": 3},
    {"reg_covar": -1.0},
])
def test_invalid_options(kwargs):
    X, _ = _two_clusters()
    with pytest.raises(InvalidConfigurationError):
        estimate_mixture(X, *_start([[1.0, -1.0], [8.0, 9.0]]), **kwargs)


def test_non_finite_data_rejected():
    X, _ = _two_clusters()
    X[3, 1] = np.nan
    with pytest.raises(InvalidConfigurationError):
        estimate_mixture(X, *_start(TRUE_MEANS))


def test_singular_initial_covariance_is_degenerate():
    X, _ = _two_clusters()
    means, covs, weights = _start(TRUE_MEANS)
    covs[1] = np.zeros((2, 2))

    with pytest.raises(DegenerateClusterError) as info:
        estimate_mixture(X, means, covs, weights)
    assert info.value.cluster == 1
    assert info.value.iteration == 0
    assert isinstance(info.value, SingularMatrixError)


def test_empty_cluster_is_degenerate():
    X, _ = _two_clusters()
    means, covs, _ = _start(TRUE_MEANS)

    with pytest.raises(DegenerateClusterError) as info:
        estimate_mixture(X, means, covs, [1.0, 0.0])
    assert info.value.cluster == 1
    assert info.value.iteration == 1


def _with_repeated_point():
    rng = np.random.default_rng(5)
    X = np.vstack([rng.standard_normal((200, 2)), np.tile([100.0, 100.0], (5, 1))])
    return X, _start([[0.0, 0.0], [100.0, 100.0]])


def test_collapsed_covariance_raises_without_regularization():
    X, start = _with_repeated_point()
    with pytest.raises(DegenerateClusterError) as info:
        estimate_mixture(X, *start)
    assert info.value.cluster == 1
    assert info.value.iteration == 1


def test_reg_covar_keeps_collapsed_cluster_usable():
    X, start = _with_repeated_point()
    result = estimate_mixture(X, *start, reg_covar=1e-2)

    assert result.converged
    np.testing.assert_allclose(result.parameters.means[1], [100.0, 100.0])
    np.testing.assert_allclose(result.parameters.covariances[1], 1e-2 * np.eye(2), atol=1e-12)
    assert result.parameters.weights[1] == pytest.approx(5 / 205)
