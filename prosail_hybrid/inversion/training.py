"""
Bagged ensemble training.

The LUT is split into M subsets, one regressor is fitted per subset:

    with_replacement=True   round(N/M) indices per member, drawn with
                            replacement (members may overlap, samples may
                            repeat within a member)
    with_replacement=False  a random permutation of the N indices is dealt
                            round-robin into M disjoint groups; when N % M != 0
                            the first N % M groups get one extra sample

A fit that ends with a HyperparameterBoundaryWarning is refitted once with
the bound suggested in the warning text. Any exception raised by ``fit``
aborts the whole ensemble as FitFailure.
"""

import logging
import re
import warnings
import numpy as np
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from joblib import Parallel, delayed
from sklearn.base import clone

from prosail_hybrid.errors import (
    ConfigurationError, FitFailure, HyperparameterBoundaryWarning, ShapeMismatchError)
from prosail_hybrid.inversion.models import EnsembleModel
from prosail_hybrid.inversion.regression import TunedSVR
from prosail_hybrid.inversion.sampling import RandomState

logger = logging.getLogger(__name__)

BOUND_PATTERN = re.compile(
    r'\b((?:min|max)_(?:gamma|lambda))\s*=\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)')

# Parsed suggestions outside this range are ignored
VALID_BOUND_RANGE = (1e-12, 1e12)


def make_subsets(n_samples: int, n_models: int, with_replacement: bool = False,
                 random_state: RandomState = None) -> List[np.ndarray]:
    """
    Draw the training indices of each ensemble member.

    Args:
        n_samples: LUT size N
        n_models: Ensemble size M
        with_replacement: Bootstrap subsets instead of a disjoint split
        random_state: Seed or numpy Generator

    Returns:
        List of M index arrays
    """
    if n_models < 1:
        raise ConfigurationError(f"Ensemble size must be >= 1, got {n_models}")
    rng = np.random.default_rng(random_state)

    if with_replacement:
        per_member = int(round(n_samples / n_models))
        if per_member < 1:
            raise ConfigurationError(
                f"{n_samples} samples are too few for {n_models} bootstrap members")
        return [rng.integers(0, n_samples, size=per_member) for _ in range(n_models)]

    if n_models > n_samples:
        raise ConfigurationError(
            f"Cannot split {n_samples} samples into {n_models} disjoint subsets")
    order = rng.permutation(n_samples)
    return [order[k::n_models] for k in range(n_models)]


def parse_bound_corrections(messages: Iterable[str],
                            valid_range: Tuple[float, float] = VALID_BOUND_RANGE) -> Dict[str, float]:
    """
    Extract ``min_gamma=``/``max_lambda=``... suggestions from warning text.

    Non-finite values and values outside valid_range are dropped.

    Returns:
        Hyperparameter name -> suggested value
    """
    corrections = {}
    for message in messages:
        for name, text in BOUND_PATTERN.findall(str(message)):
            try:
                value = float(text)
            except ValueError:
                continue
            if not np.isfinite(value) or not valid_range[0] <= value <= valid_range[1]:
                logger.warning(f"Ignoring out-of-range suggestion {name}={text}")
                continue
            corrections[name] = value
    return corrections


def _fit_recording(model, X: np.ndarray, y: np.ndarray):
    """Fit, returning the boundary warning messages; other warnings pass through."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always', HyperparameterBoundaryWarning)
        model.fit(X, y)

    messages = []
    for w in caught:
        if issubclass(w.category, HyperparameterBoundaryWarning):
            messages.append(str(w.message))
        else:
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)
    return model, messages


def fit_member(estimator, X: np.ndarray, y: np.ndarray,
               member: Optional[int] = None, target: Optional[str] = None):
    """
    Fit one ensemble member, retrying once on a tuning boundary warning.

    Args:
        estimator: Unfitted scikit-learn regressor (cloned, never modified)
        X: Training features (n, bands)
        y: Training target (n,)
        member: Member index, for messages
        target: Target name, for messages

    Returns:
        Fitted regressor (the retried one if a retry was made)
    """
    label = f"'{target}' member {member}"
    try:
        model, messages = _fit_recording(clone(estimator), X, y)
    except Exception as exc:
        raise FitFailure(f"Fit failed for {label}: {exc}", member=member, target=target) from exc

    if not messages:
        return model

    for message in messages:
        logger.warning(f"{label}: {message}")

    params = model.get_params()
    corrections = {k: v for k, v in parse_bound_corrections(messages).items() if k in params}
    if not corrections:
        logger.warning(f"{label}: no usable hyperparameter correction, keeping first fit")
        return model

    logger.info(f"{label}: adjusting {', '.join(f'{k}={v:g}' for k, v in corrections.items())}")
    try:
        retried, retry_messages = _fit_recording(clone(estimator).set_params(**corrections), X, y)
    except Exception as exc:
        raise FitFailure(f"Refit failed for {label}: {exc}", member=member, target=target) from exc

    if retry_messages:
        logger.warning(f"{label}: refit still on a search bound, keeping refitted model")
    return retried


def _as_sample_major(features, n_samples: int) -> np.ndarray:
    X = np.asarray(features, dtype=float)
    if X.ndim != 2:
        raise ShapeMismatchError(f"Features must be 2D, got shape {X.shape}")
    if X.shape[0] != n_samples and X.shape[1] == n_samples:
        X = X.T
    if X.shape[0] != n_samples:
        raise ShapeMismatchError(
            f"Features of shape {X.shape} do not match {n_samples} target values")
    return X


def train_ensemble(features,
                   targets,
                   n_models: int = 20,
                   with_replacement: bool = False,
                   estimator=None,
                   random_state: RandomState = None,
                   n_jobs: int = 1,
                   band_names: Optional[Sequence[str]] = None,
                   target_name: Optional[str] = None) -> EnsembleModel:
    """
    Train an ensemble of regressors for one target variable.

    Args:
        features: Reflectance (N, bands); (bands, N) is transposed
        targets: Target values (N,)
        n_models: Ensemble size M
        with_replacement: Bootstrap subsets instead of a disjoint split
        estimator: scikit-learn regressor prototype (default TunedSVR())
        random_state: Seed or numpy Generator for the subsets
        n_jobs: joblib workers for member fits
        band_names: Names of the feature bands
        target_name: Target variable name

    Returns:
        EnsembleModel with M fitted members in subset order
    """
    y = np.asarray(targets, dtype=float).ravel()
    X = _as_sample_major(features, y.size)
    if estimator is None:
        estimator = TunedSVR()
    target_name = target_name or 'target'

    subsets = make_subsets(y.size, n_models, with_replacement, random_state)
    logger.info(f"Training {n_models} models for '{target_name}' on {y.size} samples "
                f"({'with' if with_replacement else 'without'} replacement)")

    if n_jobs == 1:
        models = [fit_member(estimator, X[idx], y[idx], member=i, target=target_name)
                  for i, idx in enumerate(subsets)]
    else:
        models = Parallel(n_jobs=n_jobs)(
            delayed(fit_member)(estimator, X[idx], y[idx], member=i, target=target_name)
            for i, idx in enumerate(subsets))

    return EnsembleModel(
        target=target_name,
        models=tuple(models),
        n_features=X.shape[1],
        band_names=tuple(band_names) if band_names is not None else None,
        subset_sizes=tuple(len(idx) for idx in subsets),
    )
