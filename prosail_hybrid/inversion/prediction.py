"""
Ensemble prediction with uncertainty.

Each member predicts the whole batch; the estimate is the mean over members
and the uncertainty their sample standard deviation (ddof=1, 0 for a
single-member ensemble). The std measures ensemble spread, it is not a
calibrated confidence interval.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Callable, Optional

from prosail_hybrid.errors import ShapeMismatchError
from prosail_hybrid.inversion.models import EnsembleModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredictionResult:
    """Per-sample ensemble mean and std."""
    mean: np.ndarray = field(repr=False)
    std: np.ndarray = field(repr=False)

    def __len__(self) -> int:
        return self.mean.shape[0]


def as_feature_matrix(features, n_features: int) -> np.ndarray:
    """
    Orient a batch as (n_samples, n_features).

    A 1D vector is one sample. A feature-major batch is transposed once;
    if neither orientation matches, ShapeMismatchError is raised.
    """
    X = np.asarray(features, dtype=float)
    if X.ndim == 1:
        X = X[np.newaxis, :]
    if X.ndim != 2:
        raise ShapeMismatchError(f"Features must be 1D or 2D, got shape {X.shape}")
    if X.shape[1] == n_features:
        return X
    if X.shape[0] == n_features:
        return X.T
    raise ShapeMismatchError(
        f"Features of shape {X.shape} do not match the {n_features} features the ensemble was trained on")


def predict_ensemble(ensemble: EnsembleModel, features,
                     on_member: Optional[Callable[[int], None]] = None) -> PredictionResult:
    """
    Apply every member of an ensemble to a batch.

    Args:
        ensemble: Trained ensemble
        features: (n_samples, n_features), (n_features, n_samples) or (n_features,)
        on_member: Called with the member index after each member prediction

    Returns:
        PredictionResult with mean and std per sample
    """
    X = as_feature_matrix(features, ensemble.n_features)
    n_models = len(ensemble)

    estimates = np.empty((X.shape[0], n_models), dtype=float)
    for i, model in enumerate(ensemble.models):
        estimates[:, i] = np.asarray(model.predict(X), dtype=float).ravel()
        if on_member is not None:
            on_member(i)

    mean = estimates.mean(axis=1)
    if n_models > 1:
        std = estimates.std(axis=1, ddof=1)
    else:
        std = np.zeros(X.shape[0])
    return PredictionResult(mean=mean, std=std)
