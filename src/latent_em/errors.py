# Author: Emrullah Erce Dutkan
"""
Exceptions and warnings raised by the EM estimators.

Configuration problems are detected before any iteration runs. Numerical
failures carry the iteration at which they happened and are never retried
or silently recovered inside the engine.
"""

from typing import Optional
import numpy as np


class LatentEMError(Exception):
    """Base class for all errors raised by latent_em."""


class InvalidConfigurationError(LatentEMError, ValueError):
    """Invalid estimator options or input shapes."""


class SingularMatrixError(LatentEMError, np.linalg.LinAlgError):
    """
    A required solve or inverse hit a numerically singular matrix.

    Attributes:
        iteration: EM iteration at which the failure occurred, if known.
    """

    def __init__(self, message: str, iteration: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.iteration = iteration

    def __str__(self) -> str:
        if self.iteration is None:
            return self.message
        return f"{self.message} (iteration {self.iteration})"


class DegenerateClusterError(SingularMatrixError):
    """
    A mixture cluster collapsed, leaving a non-invertible covariance.

    Attributes:
        cluster: Index of the offending cluster.
        iteration: EM iteration at which the failure occurred.
    """

    def __init__(
        self,
        message: str,
        cluster: Optional[int] = None,
        iteration: Optional[int] = None
    ):
        super().__init__(message, iteration=iteration)
        self.cluster = cluster


class NonConvergenceWarning(UserWarning):
    """Maximum number of iterations reached before the tolerance was met."""
