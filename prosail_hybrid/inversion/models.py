"""
Trained ensemble containers.

An EnsembleModel holds the M regressors trained for one target variable; a
HybridModelBundle maps target names to ensembles and is the unit saved after
training and loaded for raster application.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple, Union

import joblib

from prosail_hybrid.errors import ConfigurationError, MissingResourceError

logger = logging.getLogger(__name__)

BUNDLE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class EnsembleModel:
    """
    Regressors trained on subsets of one noisy LUT.

    Attributes:
        target: Target variable name
        models: Fitted scikit-learn regressors, in training order
        n_features: Input dimensionality every model was trained with
        band_names: Band names of the features, if known
        subset_sizes: Number of training samples per member
    """
    target: str
    models: Tuple[Any, ...] = field(repr=False)
    n_features: int
    band_names: Optional[Tuple[str, ...]] = None
    subset_sizes: Tuple[int, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'models', tuple(self.models))
        if not self.models:
            raise ConfigurationError(f"Ensemble for '{self.target}' has no models")
        if self.band_names is not None:
            object.__setattr__(self, 'band_names', tuple(str(b) for b in self.band_names))
            if len(self.band_names) != self.n_features:
                raise ConfigurationError(
                    f"Ensemble for '{self.target}' has {self.n_features} features "
                    f"but {len(self.band_names)} band names")

    def __len__(self) -> int:
        return len(self.models)

    @property
    def n_models(self) -> int:
        return len(self.models)


class HybridModelBundle(Mapping):
    """Target variable name -> EnsembleModel."""

    def __init__(self, ensembles: Optional[Mapping[str, EnsembleModel]] = None,
                 metadata: Optional[Dict[str, Any]] = None):
        self._ensembles: Dict[str, EnsembleModel] = dict(ensembles or {})
        self.metadata: Dict[str, Any] = dict(metadata or {})

    def __getitem__(self, target: str) -> EnsembleModel:
        return self._ensembles[target]

    def __iter__(self) -> Iterator[str]:
        return iter(self._ensembles)

    def __len__(self) -> int:
        return len(self._ensembles)

    def add(self, ensemble: EnsembleModel):
        self._ensembles[ensemble.target] = ensemble

    @property
    def targets(self) -> Tuple[str, ...]:
        return tuple(self._ensembles)

    def save(self, path: Union[str, Path]) -> Path:
        """Persist with joblib."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump({
            'format_version': BUNDLE_FORMAT_VERSION,
            'ensembles': self._ensembles,
            'metadata': self.metadata,
        }, path)
        logger.info(f"Saved hybrid models for {list(self.targets)} to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'HybridModelBundle':
        path = Path(path)
        if not path.exists():
            raise MissingResourceError(f"Model bundle not found: {path}")
        obj = joblib.load(path)
        if not isinstance(obj, dict) or obj.get('format_version') != BUNDLE_FORMAT_VERSION:
            raise ConfigurationError(f"Unrecognized model bundle format: {path}")
        bundle = cls(obj['ensembles'], obj.get('metadata'))
        logger.info(f"Loaded hybrid models for {list(bundle.targets)} from {path}")
        return bundle

    def __repr__(self):
        sizes = {t: len(e) for t, e in self._ensembles.items()}
        return f"HybridModelBundle({sizes})"
