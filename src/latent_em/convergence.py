# Author: Emrullah Erce Dutkan
"""
Convergence monitoring for iterative EM estimators.

A ConvergenceMonitor owns the previous and current progress signature of a
single estimation run together with the iteration counter. Estimators call
start() once with the signature of their initial parameters and step()
after every complete iteration. The monitor moves through:

    INITIALIZED -> ITERATING -> CONVERGED
                             -> MAX_ITERS_REACHED

Both terminal states are regular outcomes. MAX_ITERS_REACHED is surfaced to
callers as a NonConvergenceWarning, never as an exception.
"""

from enum import Enum
from typing import List, Optional, Union
import logging
import warnings
import numpy as np

from .errors import InvalidConfigurationError, NonConvergenceWarning


logger = logging.getLogger(__name__)

Signature = Union[float, np.ndarray]


class ConvergenceState(Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERS_REACHED = "max_iters_reached"


def signature_distance(previous: np.ndarray, current: np.ndarray) -> float:
    """
    Distance between two progress signatures.

    Maximum absolute component difference; for scalars this is the
    absolute difference.
    """
    return float(np.max(np.abs(current - previous)))


class ConvergenceMonitor:
    """
    Iteration driver deciding whether an EM run continues or stops.

    Attributes:
        tolerance: Stop once the signature distance is <= tolerance.
        max_iterations: Stop once this many iterations have completed.
        iteration: Number of completed iterations (0 after start()).
        state: Current ConvergenceState.
        distances: Signature distance recorded at every step.
    """

    def __init__(self, tolerance: float, max_iterations: int, name: str = "em"):
        """
        Args:
            tolerance: Convergence threshold, must be > 0.
            max_iterations: Iteration cap, must be > 0.
            name: Label used in log records and warnings.
        """
        if not tolerance > 0:
            raise InvalidConfigurationError(
                f"tolerance must be positive, got {tolerance}"
            )
        if int(max_iterations) != max_iterations or max_iterations <= 0:
            raise InvalidConfigurationError(
                f"max_iterations must be a positive integer, got {max_iterations}"
            )
        self.tolerance = float(tolerance)
        self.max_iterations = int(max_iterations)
        self.name = name

        self.state = ConvergenceState.INITIALIZED
        self.iteration = 0
        self.previous: Optional[np.ndarray] = None
        self.current: Optional[np.ndarray] = None
        self.distances: List[float] = []

    @staticmethod
    def _as_signature(signature: Signature) -> np.ndarray:
        return np.atleast_1d(np.asarray(signature, dtype=np.float64)).ravel().copy()

    def start(self, initial_signature: Signature) -> ConvergenceState:
        """Record the signature of the starting parameters."""
        if self.state is not ConvergenceState.INITIALIZED:
            raise RuntimeError(f"Monitor already started (state={self.state.value})")
        self.current = self._as_signature(initial_signature)
        self.iteration = 0
        self.state = ConvergenceState.ITERATING
        return self.state

    def step(self, new_signature: Signature) -> ConvergenceState:
        """
        Register one completed iteration.

        Args:
            new_signature: Progress signature after the iteration.

        Returns:
            The new state.
        """
        if self.state is ConvergenceState.INITIALIZED:
            raise RuntimeError("step() called before start()")
        if self.finished:
            raise RuntimeError(f"Monitor already finished (state={self.state.value})")

        signature = self._as_signature(new_signature)
        if signature.shape != self.current.shape:
            raise ValueError(
                f"Signature shape changed from {self.current.shape} to {signature.shape}"
            )

        self.iteration += 1
        self.previous = self.current
        self.current = signature

        distance = signature_distance(self.previous, self.current)
        self.distances.append(distance)

        # NaN compares False, so a non-finite distance never converges
        if distance <= self.tolerance:
            self.state = ConvergenceState.CONVERGED
        elif self.iteration >= self.max_iterations:
            self.state = ConvergenceState.MAX_ITERS_REACHED

        return self.state

    @property
    def running(self) -> bool:
        return self.state is ConvergenceState.ITERATING

    @property
    def finished(self) -> bool:
        return self.state in (
            ConvergenceState.CONVERGED,
            ConvergenceState.MAX_ITERS_REACHED
        )

    @property
    def converged(self) -> bool:
        return self.state is ConvergenceState.CONVERGED

    @property
    def last_distance(self) -> float:
        return self.distances[-1] if self.distances else float("nan")


def warn_if_not_converged(monitor: ConvergenceMonitor) -> None:
    """Emit a NonConvergenceWarning if the run stopped at the iteration cap."""
    if monitor.state is ConvergenceState.MAX_ITERS_REACHED:
        warnings.warn(
            f"{monitor.name}: maximum number of iterations ({monitor.max_iterations}) "
            f"reached without convergence (last change {monitor.last_distance:.3e}, "
            f"tolerance {monitor.tolerance:.1e})",
            NonConvergenceWarning,
            stacklevel=3
        )


def log_progress(
    monitor: ConvergenceMonitor,
    objective: float,
    verbose: bool = False
) -> None:
    """Per-iteration log record; INFO when verbose, DEBUG otherwise."""
    level = logging.INFO if verbose else logging.DEBUG
    if logger.isEnabledFor(level):
        logger.log(
            level,
            "%s iteration %d: objective=%.10g change=%.3e",
            monitor.name, monitor.iteration, objective, monitor.last_distance
        )
