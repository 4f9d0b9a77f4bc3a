"""
Support vector regression with built-in hyperparameter tuning.

TunedSVR grid-searches the RBF kernel width (gamma) and the regularization
strength (lambda) of an epsilon-SVR by cross-validation. Lambda maps to the
usual SVR cost as

    C = 1 / (2 * lambda * n_samples)

When the selected value lies on the edge of its search grid a
HyperparameterBoundaryWarning is emitted whose message ends with a suggested
bound one decade further out, e.g. ``min_gamma=0.0001``. The ensemble trainer
parses it and refits once with the widened grid.
"""

import logging
import warnings
import numpy as np

from sklearn.base import BaseEstimator, RegressorMixin
from sklearn.model_selection import GridSearchCV, KFold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVR
from sklearn.utils.validation import check_array, check_is_fitted, check_X_y

from prosail_hybrid.errors import HyperparameterBoundaryWarning

logger = logging.getLogger(__name__)


def lambda_to_c(lam, n_samples: int):
    return 1.0 / (2.0 * np.asarray(lam, dtype=float) * n_samples)


class TunedSVR(RegressorMixin, BaseEstimator):
    """
    RBF epsilon-SVR tuned over (gamma, lambda) by k-fold cross-validation.

    Features are standardized before the kernel is applied.
    """

    def __init__(self,
                 min_gamma: float = 1e-3,
                 max_gamma: float = 1e1,
                 min_lambda: float = 1e-7,
                 max_lambda: float = 1e-1,
                 n_gamma: int = 8,
                 n_lambda: int = 8,
                 epsilon: float = 0.01,
                 cv: int = 5):
        self.min_gamma = min_gamma
        self.max_gamma = max_gamma
        self.min_lambda = min_lambda
        self.max_lambda = max_lambda
        self.n_gamma = n_gamma
        self.n_lambda = n_lambda
        self.epsilon = epsilon
        self.cv = cv

    def _grids(self):
        if not 0 < self.min_gamma <= self.max_gamma:
            raise ValueError(f"Invalid gamma range [{self.min_gamma}, {self.max_gamma}]")
        if not 0 < self.min_lambda <= self.max_lambda:
            raise ValueError(f"Invalid lambda range [{self.min_lambda}, {self.max_lambda}]")
        gammas = np.geomspace(self.min_gamma, self.max_gamma, max(1, int(self.n_gamma)))
        lambdas = np.geomspace(self.min_lambda, self.max_lambda, max(1, int(self.n_lambda)))
        return gammas, lambdas

    def fit(self, X, y):
        X, y = check_X_y(X, y, y_numeric=True)
        n_samples = X.shape[0]
        gammas, lambdas = self._grids()

        pipeline = Pipeline([
            ('scale', StandardScaler()),
            ('svr', SVR(kernel='rbf', epsilon=self.epsilon)),
        ])

        n_splits = min(int(self.cv), n_samples)
        if n_splits < 2:
            # Too few samples to cross-validate: geometric middle of the grid
            gamma = float(gammas[len(gammas) // 2])
            lam = float(lambdas[len(lambdas) // 2])
            pipeline.set_params(svr__gamma=gamma, svr__C=float(lambda_to_c(lam, n_samples)))
            self.best_estimator_ = pipeline.fit(X, y)
            self.gamma_, self.lambda_ = gamma, lam
        else:
            search = GridSearchCV(
                pipeline,
                {'svr__gamma': list(gammas), 'svr__C': list(lambda_to_c(lambdas, n_samples))},
                cv=KFold(n_splits=n_splits),
                scoring='neg_mean_squared_error',
                error_score='raise',
            )
            search.fit(X, y)
            self.best_estimator_ = search.best_estimator_
            self.gamma_ = float(search.best_params_['svr__gamma'])
            self.lambda_ = float(1.0 / (2.0 * search.best_params_['svr__C'] * n_samples))
            self._warn_on_boundary(gammas, lambdas)

        self.n_features_in_ = X.shape[1]
        return self

    def _warn_on_boundary(self, gammas: np.ndarray, lambdas: np.ndarray):
        checks = (('gamma', self.gamma_, gammas), ('lambda', self.lambda_, lambdas))
        for name, value, grid in checks:
            if len(grid) < 2:
                continue
            if np.isclose(value, grid[0], rtol=1e-9, atol=0):
                warnings.warn(
                    f"Solution may not be optimal: {name} hit the lower search bound "
                    f"{grid[0]:g}, try training again using min_{name}={grid[0] / 10:g}",
                    HyperparameterBoundaryWarning)
            elif np.isclose(value, grid[-1], rtol=1e-9, atol=0):
                warnings.warn(
                    f"Solution may not be optimal: {name} hit the upper search bound "
                    f"{grid[-1]:g}, try training again using max_{name}={grid[-1] * 10:g}",
                    HyperparameterBoundaryWarning)

    def predict(self, X):
        check_is_fitted(self, 'best_estimator_')
        X = check_array(X)
        return self.best_estimator_.predict(X)
