import numpy as np
import pytest
from scipy.stats import multivariate_normal

from latent_em.errors import SingularMatrixError
from latent_em.linalg import (
    cholesky_factor,
    covariance,
    eigen_decompose,
    gaussian_log_density,
    invert,
    orthonormalize,
    second_moment,
    symmetric_solve,
    trace,
)
from latent_em.metrics import principal_angles


def _spd(d: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    B = rng.normal(size=(d, d))
    return B @ B.T + np.eye(d)


def test_trace_skips_non_finite_diagonal():
    assert trace(np.array([[2.0, 1.0], [1.0, 3.0]])) == 5.0
    assert trace(np.array([[1.0, 0.0], [0.0, np.nan]])) == 1.0
    assert trace(np.diag([np.inf, 4.0, 1.0])) == 5.0


def test_covariance_divides_by_n():
    X = np.array([[0.0], [2.0]])
    assert covariance(X)[0, 0] == pytest.approx(1.0)

    rng = np.random.default_rng(1)
    X = rng.normal(size=(50, 4))
    np.testing.assert_allclose(covariance(X), np.cov(X.T, bias=True), atol=1e-12)


def test_second_moment_is_uncentred():
    X = np.array([[1.0, 2.0], [3.0, 4.0]])
    np.testing.assert_allclose(second_moment(X), X.T @ X / 2)


def test_symmetric_solve_spd_system():
    A = _spd(5)
    b = np.arange(5, dtype=float)
    x = symmetric_solve(A, b)
    np.testing.assert_allclose(A @ x, b, atol=1e-10)


def test_symmetric_solve_indefinite_but_invertible():
    A = np.array([[0.0, 1.0], [1.0, 0.0]])
    x = symmetric_solve(A, np.array([3.0, 7.0]))
    np.testing.assert_allclose(x, [7.0, 3.0])


def test_symmetric_solve_singular_raises():
    A = np.array([[1.0, 1.0], [1.0, 1.0]])
    with pytest.raises(SingularMatrixError):
        symmetric_solve(A, np.array([2.0, 2.0]))


def test_symmetric_solve_pseudo_inverse_is_opt_in():
    A = np.array([[1.0, 1.0], [1.0, 1.0]])
    x = symmetric_solve(A, np.array([2.0, 2.0]), allow_pinv=True)
    np.testing.assert_allclose(x, [1.0, 1.0], atol=1e-12)


def test_invert_spd():
    A = _spd(4, seed=3)
    np.testing.assert_allclose(invert(A) @ A, np.eye(4), atol=1e-10)


def test_invert_singular_raises():
    with pytest.raises(SingularMatrixError):
        invert(np.zeros((3, 3)))


def test_singular_matrix_error_is_linalg_error():
    with pytest.raises(np.linalg.LinAlgError):
        cholesky_factor(np.array([[1.0, 2.0], [2.0, 1.0]]))


def test_cholesky_factor_reconstructs():
    A = _spd(3, seed=5)
    L = cholesky_factor(A)
    np.testing.assert_allclose(L @ L.T, A, atol=1e-10)
    assert np.allclose(L, np.tril(L))


def test_gaussian_log_density_matches_scipy():
    rng = np.random.default_rng(7)
    cov = _spd(3, seed=7)
    mean = rng.normal(size=3)
    X = rng.normal(size=(20, 3))
    expected = multivariate_normal(mean, cov).logpdf(X)
    np.testing.assert_allclose(gaussian_log_density(X, mean, cov), expected, rtol=1e-10)


def test_orthonormalize_spans_same_space():
    rng = np.random.default_rng(2)
    W = rng.normal(size=(6, 3))
    Q = orthonormalize(W)
    np.testing.assert_allclose(Q.T @ Q, np.eye(3), atol=1e-12)
    assert np.max(principal_angles(Q, W)) < 1e-7


def test_orthonormalize_sign_convention():
    rng = np.random.default_rng(4)
    W = rng.normal(size=(5, 2))
    Q = orthonormalize(W)
    np.testing.assert_allclose(orthonormalize(-W), -Q, atol=1e-12)
    np.testing.assert_allclose(orthonormalize(Q), Q, atol=1e-12)


def test_eigen_decompose_descending():
    S = np.diag([1.0, 3.0, 2.0])
    vals, vecs = eigen_decompose(S)
    np.testing.assert_allclose(vals, [3.0, 2.0, 1.0])
    np.testing.assert_allclose(S @ vecs, vecs * vals, atol=1e-12)


def test_non_square_input_rejected():
    with pytest.raises(ValueError):
        trace(np.ones((2, 3)))
