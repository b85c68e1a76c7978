import warnings

import numpy as np
import pytest

from latent_em.convergence import (
    ConvergenceMonitor,
    ConvergenceState,
    signature_distance,
    warn_if_not_converged,
)
from latent_em.errors import InvalidConfigurationError, NonConvergenceWarning


def test_scalar_signature_converges():
    monitor = ConvergenceMonitor(tolerance=1e-3, max_iterations=10)
    assert monitor.state is ConvergenceState.INITIALIZED

    monitor.start(1.0)
    assert monitor.state is ConvergenceState.ITERATING
    assert monitor.iteration == 0

    assert monitor.step(0.5) is ConvergenceState.ITERATING
    assert monitor.step(0.4995) is ConvergenceState.CONVERGED
    assert monitor.converged
    assert monitor.iteration == 2
    assert monitor.distances == pytest.approx([0.5, 0.0005])


def test_vector_distance_is_max_abs_difference():
    assert signature_distance(np.array([1.0, 2.0, 3.0]), np.array([1.5, 1.0, 3.0])) == 1.0

    monitor = ConvergenceMonitor(tolerance=0.1, max_iterations=10)
    monitor.start([0.0, 0.0])
    assert monitor.step([0.05, -0.2]) is ConvergenceState.ITERATING
    assert monitor.step([0.0, -0.25]) is ConvergenceState.CONVERGED


def test_max_iterations_reached():
    monitor = ConvergenceMonitor(tolerance=1e-6, max_iterations=2)
    monitor.start(0.0)
    monitor.step(1.0)
    assert monitor.step(2.0) is ConvergenceState.MAX_ITERS_REACHED
    assert not monitor.converged
    assert monitor.finished
    assert monitor.iteration == 2


def test_convergence_takes_priority_over_cap():
    monitor = ConvergenceMonitor(tolerance=1e-6, max_iterations=1)
    monitor.start(3.0)
    assert monitor.step(3.0) is ConvergenceState.CONVERGED


def test_non_finite_signature_never_converges():
    monitor = ConvergenceMonitor(tolerance=1.0, max_iterations=5)
    monitor.start(1.0)
    assert monitor.step(np.nan) is ConvergenceState.ITERATING


def test_step_misuse():
    monitor = ConvergenceMonitor(tolerance=1e-3, max_iterations=3)
    with pytest.raises(RuntimeError):
        monitor.step(1.0)

    monitor.start([1.0, 2.0])
    with pytest.raises(ValueError):
        monitor.step([1.0, 2.0, 3.0])

    monitor.step([1.0, 2.0])
    assert monitor.converged
    with pytest.raises(RuntimeError):
        monitor.step([1.0, 2.0])
    with pytest.raises(RuntimeError):
        monitor.start([1.0, 2.0])


@pytest.mark.parametrize("tolerance, max_iterations", [
    (0.0, 10),
    (-1e-6, 10),
    (1e-6, 0),
    (1e-6, -3),
    (1e-6, 2.5),
])
def test_invalid_options(tolerance, max_iterations):
    with pytest.raises(InvalidConfigurationError):
        ConvergenceMonitor(tolerance=tolerance, max_iterations=max_iterations)


def test_invalid_configuration_is_value_error():
    with pytest.raises(ValueError):
        ConvergenceMonitor(tolerance=0.0, max_iterations=10)


def test_warning_only_on_iteration_cap():
    monitor = ConvergenceMonitor(tolerance=1e-9, max_iterations=1, name="test")
    monitor.start(0.0)
    monitor.step(1.0)
    with pytest.warns(NonConvergenceWarning, match="test"):
        warn_if_not_converged(monitor)

    converged = ConvergenceMonitor(tolerance=1.0, max_iterations=5)
    converged.start(0.0)
    converged.step(0.5)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        warn_if_not_converged(converged)
