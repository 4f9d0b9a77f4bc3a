"""
Shared fixtures: a cheap linear forward model, instrumented regressors and
a small ENVI reflectance raster.
"""

import warnings

import numpy as np
import pytest
from sklearn.base import BaseEstimator, RegressorMixin

from prosail_hybrid.errors import HyperparameterBoundaryWarning


class AffineSimulator:
    """Three-band linear forward model of parameters 'a' and 'b'."""

    band_names = ['b1', 'b2', 'b3']

    def __call__(self, params):
        a, b = params['a'], params['b']
        return np.array([a + 0.5 * b, 2.0 * a - b + 2.0, 0.3 * a + 0.2 * b + 0.1])


class CountingRegressor(RegressorMixin, BaseEstimator):
    """Predicts the feature sum plus the training target mean; counts predict calls."""

    predict_calls = 0

    def fit(self, X, y):
        self.offset_ = float(np.mean(y))
        self.n_features_in_ = np.asarray(X).shape[1]
        return self

    def predict(self, X):
        type(self).predict_calls += 1
        return np.asarray(X, dtype=float).sum(axis=1) + self.offset_


class FailingRegressor(RegressorMixin, BaseEstimator):
    """Fits fine, fails on predict."""

    def fit(self, X, y):
        return self

    def predict(self, X):
        raise RuntimeError("prediction exploded")


class BoundaryRegressor(RegressorMixin, BaseEstimator):
    """Warns that gamma hit its lower bound until min_gamma is small enough."""

    fitted_min_gammas = []

    def __init__(self, min_gamma=1e-3, suggestion='0.0001', threshold=1e-4):
        self.min_gamma = min_gamma
        self.suggestion = suggestion
        self.threshold = threshold

    def fit(self, X, y):
        type(self).fitted_min_gammas.append(self.min_gamma)
        if self.min_gamma > self.threshold:
            warnings.warn(
                f"Solution may not be optimal: try training again using min_gamma={self.suggestion}",
                HyperparameterBoundaryWarning)
        self.mean_ = float(np.mean(y))
        return self

    def predict(self, X):
        return np.full(np.asarray(X).shape[0], self.mean_)


@pytest.fixture
def affine_simulator():
    return AffineSimulator()


@pytest.fixture
def counting_regressor():
    CountingRegressor.predict_calls = 0
    yield CountingRegressor
    CountingRegressor.predict_calls = 0


@pytest.fixture
def failing_regressor():
    return FailingRegressor


@pytest.fixture
def boundary_regressor():
    BoundaryRegressor.fitted_min_gammas = []
    yield BoundaryRegressor
    BoundaryRegressor.fitted_min_gammas = []


@pytest.fixture
def reflectance_cube():
    """7 lines x 5 samples x 3 bands, scaled by 10000, with a few no-data pixels."""
    rng = np.random.default_rng(0)
    cube = rng.integers(500, 5000, size=(7, 5, 3)).astype(np.int16)
    cube[0, 0, 0] = 0
    cube[3, 2, 0] = 0
    cube[6, 4, 0] = -1
    return cube


@pytest.fixture
def envi_raster(tmp_path, reflectance_cube):
    """Write the reflectance cube as a BIL ENVI raster; returns its path."""
    from prosail_hybrid.utils.envi_io import write_envi

    return write_envi(tmp_path / 'scene', reflectance_cube,
                      band_names=['b1', 'b2', 'b3'], interleave='bil')
