# Author: Emrullah Erce Dutkan
"""
PPCA with missing entries.

Missing entries are marked by NaN in the data and/or by an explicit boolean
mask (True = missing); both forms are merged. The mask is fixed for the
whole run. The estimator fills missing entries once (zero or observed
column mean), computes the second-moment matrix S from the filled matrix,
and then, before every M-step, replaces each missing entry with the
matching entry of Z W^T from the latest E-step. Observed entries are never
overwritten.

By default S keeps its initial value for the whole run; the imputations
then only affect the scores and the reconstruction. Setting
refresh_second_moment=True recomputes S from the re-imputed matrix at
every iteration instead.
"""

from typing import Optional
from dataclasses import dataclass
import numpy as np

from .config import FillStrategy
from .errors import InvalidConfigurationError
from .linalg import second_moment
from .ppca import PPCA, PPCAResult


@dataclass
class MissingPPCAResult(PPCAResult):
    """
    PPCAResult plus the imputed data.

    Attributes:
        imputed: Input matrix with missing entries replaced by their
            final conditional expectation, shape (N, D).
        mask: Missing-entry mask used for the run, shape (N, D).
    """
    imputed: np.ndarray = None
    mask: np.ndarray = None


def build_missing_mask(X: np.ndarray, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Union of NaN positions in X and an optional explicit mask.

    Raises:
        InvalidConfigurationError: If the mask shape does not match X, an
            observed entry is infinite, or a row is entirely missing.
    """
    missing = np.isnan(X)
    if mask is not None:
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != X.shape:
            raise InvalidConfigurationError(
                f"mask shape {mask.shape} does not match data shape {X.shape}"
            )
        missing = missing | mask

    if np.any(np.isinf(X[~missing])):
        raise InvalidConfigurationError("X contains infinite observed values")
    empty_rows = np.flatnonzero(np.all(missing, axis=1))
    if empty_rows.size:
        raise InvalidConfigurationError(
            f"{empty_rows.size} rows are entirely missing (first: {empty_rows[0]})"
        )
    return missing


def fill_missing(
    X: np.ndarray,
    mask: np.ndarray,
    fill: FillStrategy = "zero"
) -> np.ndarray:
    """
    Initial values for missing entries.

    Args:
        X: Data matrix, shape (N, D); missing values may be NaN.
        mask: Missing-entry mask.
        fill: "zero" or "mean" (mean of the observed values per column;
            0 for a column with no observed values).

    Returns:
        Filled copy of X.
    """
    X_filled = np.where(mask, 0.0, X)
    if fill == "mean":
        counts = (~mask).sum(axis=0)
        col_means = np.divide(
            X_filled.sum(axis=0), counts,
            out=np.zeros(X.shape[1]), where=counts > 0
        )
        X_filled = np.where(mask, col_means, X_filled)
    elif fill != "zero":
        raise InvalidConfigurationError(f"Unknown fill strategy: {fill}")
    return X_filled


def impute(X: np.ndarray, Z: np.ndarray, W: np.ndarray, mask: np.ndarray) -> None:
    """Overwrite the missing entries of X in place with those of Z W^T."""
    rows, cols = np.nonzero(mask)
    X[rows, cols] = np.sum(Z[rows] * W[cols], axis=1)


class MissingDataPPCA(PPCA):
    """
    PPCA tolerating missing entries.

    Extends PPCA with per-iteration imputation of the missing entries from
    the current model. On a fully observed matrix it reproduces PPCA.

    Attributes (after fit, in addition to PPCA's):
        imputed_: Data with missing entries imputed.
        mask_: Missing-entry mask used for the run.
    """

    name = "ppca_missing"

    def __init__(
        self,
        n_components: int,
        tolerance: float = 1e-8,
        max_iterations: int = 500,
        center: bool = False,
        noise_floor: float = 1e-12,
        fill: FillStrategy = "zero",
        refresh_second_moment: bool = False,
        verbose: bool = False
    ):
        """
        Args:
            n_components: Latent dimensionality L (1 <= L < D).
            tolerance: Convergence threshold on the observed-entry negative
                log density.
            max_iterations: Iteration cap.
            center: Subtract observed column means before fitting.
            noise_floor: Relative lower bound on sigma2.
            fill: Initial fill for missing entries, "zero" or "mean".
            refresh_second_moment: Recompute S from the imputed matrix at
                every iteration instead of keeping the initial S.
            verbose: Log every iteration at INFO instead of DEBUG.
        """
        super().__init__(
            n_components,
            tolerance=tolerance,
            max_iterations=max_iterations,
            center=center,
            noise_floor=noise_floor,
            verbose=verbose
        )
        if fill not in ("zero", "mean"):
            raise InvalidConfigurationError(f"Unknown fill strategy: {fill}")
        self.fill = fill
        self.refresh_second_moment = refresh_second_moment

    def _before_m_step(self, X, Z, W, S, mask):
        if mask is None or not mask.any():
            return S
        impute(X, Z, W, mask)
        if self.refresh_second_moment:
            return second_moment(X)
        return S

    def _after_loop(self, X, Z, W, mask):
        if mask is not None and mask.any():
            impute(X, Z, W, mask)

    def fit(self, X: np.ndarray, mask: Optional[np.ndarray] = None) -> "MissingDataPPCA":
        """
        Fit the model to data with missing entries.

        Args:
            X: Data matrix of shape (n_samples, d); NaN marks missing.
            mask: Optional boolean mask of the same shape, True = missing.

        Returns:
            self, for method chaining.
        """
        X = np.array(X, dtype=np.float64)
        if X.ndim != 2 or X.shape[0] == 0:
            raise InvalidConfigurationError(
                f"X must be a non-empty 2D array, got shape {X.shape}"
            )
        missing = build_missing_mask(X, mask)
        X_work = fill_missing(X, missing, self.fill)

        out = self._run(X_work, missing)
        imputed = out.pop("working")
        # Observed entries are returned exactly as given
        imputed[~missing] = X[~missing]

        self._store(MissingPPCAResult(imputed=imputed, mask=missing, **out))
        self.imputed_ = imputed
        self.mask_ = missing
        return self

    def fit_transform(self, X: np.ndarray, mask: Optional[np.ndarray] = None) -> np.ndarray:
        """Fit and return the scores of the training data."""
        return self.fit(X, mask=mask).result_.scores


def estimate_ppca_missing(
    X: np.ndarray,
    n_components: int,
    mask: Optional[np.ndarray] = None,
    tolerance: float = 1e-8,
    max_iterations: int = 500,
    center: bool = False,
    noise_floor: float = 1e-12,
    fill: FillStrategy = "zero",
    refresh_second_moment: bool = False,
    verbose: bool = False
) -> MissingPPCAResult:
    """
    Convenience function to run PPCA on data with missing entries.

    Args:
        X: Data matrix of shape (n_samples, d); NaN marks missing.
        n_components: Latent dimensionality L.
        mask: Optional boolean mask, True = missing.
        tolerance: Convergence threshold.
        max_iterations: Iteration cap.
        center: Subtract observed column means first.
        noise_floor: Relative lower bound on the noise variance.
        fill: Initial fill, "zero" or "mean".
        refresh_second_moment: Recompute S from the imputed data each
            iteration.
        verbose: Log progress at INFO level.

    Returns:
        MissingPPCAResult.
    """
    model = MissingDataPPCA(
        n_components,
        tolerance=tolerance,
        max_iterations=max_iterations,
        center=center,
        noise_floor=noise_floor,
        fill=fill,
        refresh_second_moment=refresh_second_moment,
        verbose=verbose
    )
    model.fit(X, mask=mask)
    return model.result_
