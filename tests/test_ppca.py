import numpy as np
import pytest

from latent_em.datasets import make_low_rank_data
from latent_em.errors import InvalidConfigurationError
from latent_em.linalg import eigen_decompose, second_moment
from latent_em.metrics import max_abs_error_up_to_sign, subspace_distance
from latent_em.ppca import (
    PPCA,
    estimate_ppca,
    marginal_log_likelihood,
    ppca_e_step,
    ppca_m_step,
    rotate_to_principal_axes,
)


def test_noise_free_data_is_recovered_exactly():
    X, W_true = make_low_rank_data(n=300, d=8, rank=3, noise_std=0.0, seed=1)
    result = estimate_ppca(X, 3)

    assert result.converged
    assert result.reconstruction_error <= 1e-10 * np.sum(X ** 2)
    assert subspace_distance(result.loadings, W_true) < 1e-6
    assert 0 < result.noise_variance < 1e-8


def test_loadings_are_orthonormal_and_ordered():
    X, _ = make_low_rank_data(n=500, d=10, rank=3, noise_std=0.05, seed=2)
    result = estimate_ppca(X, 3)

    Q = result.loadings
    np.testing.assert_allclose(Q.T @ Q, np.eye(3), atol=1e-10)
    assert np.all(np.diff(result.explained_variance) <= 0)
    # Largest-magnitude entry of each column is positive
    idx = np.argmax(np.abs(Q), axis=0)
    assert np.all(Q[idx, np.arange(3)] > 0)
    np.testing.assert_allclose(result.scores, X @ Q)


def test_noisy_data_recovers_subspace_and_noise_level():
    X, W_true = make_low_rank_data(n=500, d=10, rank=2, noise_std=0.05, seed=3)
    result = estimate_ppca(X, 2)

    assert result.converged
    assert subspace_distance(result.loadings, W_true) < 0.05
    assert result.noise_variance == pytest.approx(0.05 ** 2, rel=0.2)


def test_principal_axes_pass_is_idempotent():
    X, _ = make_low_rank_data(n=400, d=6, rank=3, noise_std=0.02, seed=4)
    result = estimate_ppca(X, 3)

    loadings, scores, explained = rotate_to_principal_axes(X, result.loadings)
    assert max_abs_error_up_to_sign(loadings, result.loadings) < 1e-8
    np.testing.assert_allclose(explained, result.explained_variance, rtol=1e-10)


def test_m_step_increases_marginal_likelihood():
    X, _ = make_low_rank_data(n=400, d=6, rank=2, noise_std=0.1, seed=5)
    S = second_moment(X)
    rng = np.random.default_rng(0)
    W = rng.standard_normal((6, 2))
    sigma2 = 1.0

    lls = [marginal_log_likelihood(S, W, sigma2, X.shape[0])]
    for _ in range(300):
        _, M = ppca_e_step(X, W, sigma2)
        W, sigma2 = ppca_m_step(S, W, sigma2, M, floor=1e-12)
        lls.append(marginal_log_likelihood(S, W, sigma2, X.shape[0]))

    lls = np.asarray(lls)
    assert np.all(np.diff(lls) >= -1e-8 * np.abs(lls[1:]))

    _, eigvecs = eigen_decompose(S)
    assert subspace_distance(W, eigvecs[:, :2]) < 1e-4


def test_log_likelihood_trace_matches_fitted_model():
    X, _ = make_low_rank_data(n=300, d=7, rank=2, noise_std=0.1, seed=6)
    model = PPCA(2).fit(X)

    trace = model.result_.log_likelihood_trace
    assert len(trace) == model.n_iter_ + 1
    assert model.log_likelihood(X) == pytest.approx(trace[-1], rel=1e-10)


def test_transform_round_trip():
    X, _ = make_low_rank_data(n=200, d=5, rank=2, noise_std=0.01, seed=7)
    model = PPCA(2)
    scores = model.fit_transform(X)

    np.testing.assert_allclose(model.transform(X), scores)
    np.testing.assert_allclose(model.inverse_transform(scores), model.result_.reconstruction)
    np.testing.assert_allclose(model.transform(X[0]), scores[0])
    assert model.components_.shape == (2, 5)


def test_centering_removes_offset():
    X, W_true = make_low_rank_data(n=500, d=8, rank=2, noise_std=0.05, seed=8)
    offset = np.linspace(3.0, 10.0, 8)
    model = PPCA(2, center=True).fit(X + offset)

    np.testing.assert_allclose(model.mean_, X.mean(axis=0) + offset)
    assert subspace_distance(model.loadings_, W_true) < 0.05
    np.testing.assert_allclose(model.transform(X + offset), model.result_.scores, atol=1e-10)


@pytest.mark.parametrize("n_components", [0, 5, 6])
def test_n_components_out_of_range(n_components):
    X, _ = make_low_rank_data(n=50, d=5, rank=2, seed=9)
    with pytest.raises(InvalidConfigurationError):
        estimate_ppca(X, n_components)


def test_non_finite_data_rejected():
    X, _ = make_low_rank_data(n=50, d=5, rank=2, seed=10)
    X[0, 0] = np.nan
    with pytest.raises(InvalidConfigurationError):
        estimate_ppca(X, 2)


def test_invalid_tolerance():
    X, _ = make_low_rank_data(n=50, d=5, rank=2, seed=11)
    with pytest.raises(InvalidConfigurationError):
        estimate_ppca(X, 2, tolerance=0.0)


def test_unfitted_model_raises():
    with pytest.raises(RuntimeError):
        PPCA(2).transform(np.zeros((3, 5)))
