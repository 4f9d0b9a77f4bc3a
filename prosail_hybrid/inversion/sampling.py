"""
Parameter sampling for LUT generation.

Draws PROSAIL input parameter vectors from uniform or Gaussian
distributions, with fixed-value overrides.

4SAIL2 coupling:
    Two-layer SAIL adds a vertical crown cover fraction Cv derived from LAI:

        MaxLAI = min(max(lai), 4)
        Cv = 1                           lai >  MaxLAI
        Cv = 1/MaxLAI + lai/(MaxLAI+1)   lai <= MaxLAI
        Cv = clip(Cv * N(1, 0.1), 0, 1)
        lai = lai * Cv

    Cv is clamped before LAI is rescaled.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple, Union

from prosail_hybrid.errors import ConfigurationError

logger = logging.getLogger(__name__)

UNIFORM = 'Uniform'
GAUSSIAN = 'Gaussian'
DISTRIBUTIONS = (UNIFORM, GAUSSIAN)
SAIL_VERSIONS = ('4SAIL', '4SAIL2')

RandomState = Union[None, int, np.random.Generator]

# Default sampling ranges
DEFAULT_MIN = {'CHL': 10, 'CAR': 0, 'EWT': 0.01, 'ANT': 0, 'LMA': 0.005, 'N': 1.0,
               'psoil': 0.0, 'BROWN': 0.0, 'LIDFa': 20, 'lai': 0.5, 'q': 0.1,
               'tto': 0, 'tts': 20, 'psi': 80}
DEFAULT_MAX = {'CHL': 75, 'CAR': 15, 'EWT': 0.03, 'ANT': 2, 'LMA': 0.03, 'N': 2.0,
               'psoil': 1.0, 'BROWN': 0.5, 'LIDFa': 70, 'lai': 7, 'q': 0.2,
               'tto': 5, 'tts': 30, 'psi': 110}
DEFAULT_FIXED = {'TypeLidf': 2, 'alpha': 40}

# Cv model constants for 4SAIL2
SAIL2_MAX_LAI_CAP = 4.0
SAIL2_CV_NOISE_STD = 0.1
SAIL2_ZETA = 0.2


def _normalize_kind(kind: str) -> str:
    for known in DISTRIBUTIONS:
        if str(kind).lower() == known.lower():
            return known
    raise ConfigurationError(f"Unknown distribution type: {kind}. Use 'Uniform' or 'Gaussian'")


@dataclass(frozen=True)
class ParameterSpec:
    """Sampling specification for one parameter."""
    name: str
    distribution: str = UNIFORM
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None
    std: Optional[float] = None
    fixed: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, 'distribution', _normalize_kind(self.distribution))

    @property
    def is_fixed(self) -> bool:
        return self.fixed is not None

    def validate(self):
        if self.is_fixed:
            return
        if self.min is None or self.max is None:
            raise ConfigurationError(f"Missing min/max bound for parameter '{self.name}'")
        if self.distribution == UNIFORM and not self.min < self.max:
            raise ConfigurationError(
                f"Uniform parameter '{self.name}' needs min < max, got {self.min} >= {self.max}")
        if self.distribution == GAUSSIAN:
            if self.mean is None or self.std is None:
                raise ConfigurationError(f"Gaussian parameter '{self.name}' needs mean and std")
            if self.std < 0:
                raise ConfigurationError(f"Gaussian parameter '{self.name}' has negative std")

    def sample(self, n_samples: int, rng: np.random.Generator,
               clip_gaussian: bool = False) -> np.ndarray:
        """
        Draw values for this parameter.

        Args:
            n_samples: Number of values
            rng: Random generator
            clip_gaussian: Clip Gaussian draws to [min, max]

        Returns:
            1D array of length n_samples
        """
        self.validate()
        if self.is_fixed:
            return np.full(n_samples, float(self.fixed))
        if self.distribution == UNIFORM:
            return rng.uniform(self.min, self.max, size=n_samples)
        values = rng.normal(self.mean, self.std, size=n_samples)
        if clip_gaussian:
            values = np.clip(values, self.min, self.max)
        return values


class ParameterDistribution:
    """
    Ordered collection of ParameterSpec, one per simulator input.
    """

    def __init__(self, specs: Iterable[ParameterSpec] = ()):
        self._specs: Dict[str, ParameterSpec] = {}
        for spec in specs:
            self._specs[spec.name] = spec

    @classmethod
    def from_tables(cls,
                    minval: Mapping[str, float],
                    maxval: Mapping[str, float],
                    distributions: Optional[Mapping[str, str]] = None,
                    gaussian: Optional[Mapping[str, Mapping[str, float]]] = None,
                    fixed: Optional[Mapping[str, float]] = None) -> 'ParameterDistribution':
        """
        Build from per-parameter tables.

        Args:
            minval: Parameter -> lower bound
            maxval: Parameter -> upper bound
            distributions: Parameter -> 'Uniform' | 'Gaussian' (Uniform if absent)
            gaussian: {'mean': {param: value}, 'std': {param: value}}
            fixed: Parameter -> fixed value (overrides bounds)

        Returns:
            ParameterDistribution
        """
        distributions = distributions or {}
        gaussian = gaussian or {}
        means = gaussian.get('mean') or gaussian.get('Mean') or {}
        stds = gaussian.get('std') or gaussian.get('Std') or {}
        fixed = fixed or {}

        missing = set(minval) ^ set(maxval)
        if missing:
            raise ConfigurationError(f"Parameters need both min and max: {sorted(missing)}")
        unknown = set(distributions) - set(minval) - set(fixed)
        if unknown:
            raise ConfigurationError(f"Distribution given for parameters without bounds: {sorted(unknown)}")

        specs = []
        for name in minval:
            specs.append(ParameterSpec(
                name=name,
                distribution=distributions.get(name, UNIFORM),
                min=float(minval[name]),
                max=float(maxval[name]),
                mean=means.get(name),
                std=stds.get(name),
                fixed=fixed.get(name),
            ))
        for name, value in fixed.items():
            if name not in minval:
                specs.append(ParameterSpec(name=name, fixed=value))
        return cls(specs)

    def with_fixed(self, **values: float) -> 'ParameterDistribution':
        """Return a copy with some parameters set to fixed values."""
        specs = dict(self._specs)
        for name, value in values.items():
            base = specs.get(name, ParameterSpec(name=name))
            specs[name] = ParameterSpec(base.name, base.distribution, base.min, base.max,
                                        base.mean, base.std, fixed=value)
        return ParameterDistribution(specs.values())

    def validate(self):
        for spec in self._specs.values():
            spec.validate()

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._specs)

    def __getitem__(self, name: str) -> ParameterSpec:
        return self._specs[name]

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[ParameterSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def __repr__(self):
        return f"ParameterDistribution({list(self._specs.values())})"


def default_parameter_distribution() -> ParameterDistribution:
    """Default PROSAIL sampling ranges, all uniform, TypeLidf/alpha fixed."""
    return ParameterDistribution.from_tables(DEFAULT_MIN, DEFAULT_MAX, fixed=DEFAULT_FIXED)


@dataclass(frozen=True)
class ParameterSampleSet:
    """
    N sampled parameter vectors, one column per parameter.

    Values are stored read-only; row i matches row i of the LUT.
    """
    names: Tuple[str, ...]
    values: np.ndarray = field(repr=False)

    def __post_init__(self):
        values = np.array(self.values, dtype=float)
        if values.ndim != 2 or values.shape[1] != len(self.names):
            raise ConfigurationError(
                f"Sample values shape {values.shape} does not match {len(self.names)} parameters")
        if len(set(self.names)) != len(self.names):
            raise ConfigurationError(f"Duplicate parameter names: {self.names}")
        values.flags.writeable = False
        object.__setattr__(self, 'names', tuple(self.names))
        object.__setattr__(self, 'values', values)

    @classmethod
    def from_columns(cls, columns: Mapping[str, np.ndarray]) -> 'ParameterSampleSet':
        names = tuple(columns)
        return cls(names, np.column_stack([np.asarray(columns[n], dtype=float) for n in names]))

    def __len__(self) -> int:
        return self.values.shape[0]

    @property
    def n_samples(self) -> int:
        return len(self)

    def column(self, name: str) -> np.ndarray:
        try:
            return self.values[:, self.names.index(name)]
        except ValueError:
            raise KeyError(f"No sampled parameter named '{name}'") from None

    def row(self, index: int) -> Dict[str, float]:
        return dict(zip(self.names, self.values[index].tolist()))

    def rows(self) -> Iterator[Dict[str, float]]:
        for i in range(len(self)):
            yield self.row(i)


def _couple_sail2(columns: Dict[str, np.ndarray], max_lai: float,
                  rng: np.random.Generator) -> Dict[str, np.ndarray]:
    """Add Cv and the other 4SAIL2 inputs, rescale lai by Cv."""
    lai = columns['lai']
    cap = min(max_lai, SAIL2_MAX_LAI_CAP)
    dense = lai > cap

    cv = np.where(dense, 1.0, 1.0 / cap + lai / (cap + 1))
    cv = cv * rng.normal(1.0, SAIL2_CV_NOISE_STD, size=lai.shape)
    cv = np.clip(cv, 0.0, 1.0)
    cv[dense] = 1.0

    columns['Cv'] = cv
    columns['fraction_brown'] = np.zeros_like(lai)
    columns['diss'] = np.zeros_like(lai)
    columns['Zeta'] = np.full_like(lai, SAIL2_ZETA)
    columns['lai'] = lai * cv
    return columns


def sample_parameters(distribution: ParameterDistribution,
                      n_samples: int,
                      sail_version: str = '4SAIL',
                      random_state: RandomState = None,
                      clip_gaussian: bool = False) -> ParameterSampleSet:
    """
    Sample simulator input parameters.

    Args:
        distribution: Per-parameter sampling specs
        n_samples: Number of parameter vectors
        sail_version: '4SAIL' or '4SAIL2' (adds Cv coupling)
        random_state: Seed or numpy Generator
        clip_gaussian: Clip Gaussian draws to [min, max] (off by default)

    Returns:
        ParameterSampleSet with one column per parameter
    """
    if sail_version not in SAIL_VERSIONS:
        raise ConfigurationError(f"Unknown SAIL version: {sail_version}. Use one of {SAIL_VERSIONS}")
    if int(n_samples) < 1:
        raise ConfigurationError(f"n_samples must be >= 1, got {n_samples}")
    n_samples = int(n_samples)

    # Fail before drawing anything
    distribution.validate()
    rng = np.random.default_rng(random_state)

    columns = {}
    for spec in distribution:
        columns[spec.name] = spec.sample(n_samples, rng, clip_gaussian=clip_gaussian)

    if sail_version == '4SAIL2':
        if 'lai' not in columns:
            raise ConfigurationError("4SAIL2 sampling requires a 'lai' parameter")
        lai_spec = distribution['lai']
        # The upper bound drives MaxLAI even when lai is held fixed
        max_lai = lai_spec.max if lai_spec.max is not None else lai_spec.fixed
        columns = _couple_sail2(columns, float(max_lai), rng)

    logger.info(f"Sampled {n_samples} parameter vectors ({len(columns)} parameters, {sail_version})")
    return ParameterSampleSet.from_columns(columns)
