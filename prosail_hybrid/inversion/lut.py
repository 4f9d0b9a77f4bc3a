"""
Reflectance look-up table (LUT) construction.

Runs the forward simulator once per sampled parameter vector, writes the
parameter and reflectance tables, and derives one noisy LUT per target
variable (each with its own band subset and noise level).
"""

import csv
import logging
import numpy as np
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from joblib import Parallel, delayed

from prosail_hybrid.errors import ConfigurationError
from prosail_hybrid.inversion.sampling import ParameterSampleSet, RandomState

logger = logging.getLogger(__name__)

PARAMETER_TABLE = 'PROSAIL_LUT_InputParms.txt'
REFLECTANCE_TABLE = 'PROSAIL_LUT_Reflectance.txt'

NOISE_TYPES = ('relative', 'absolute')
DEFAULT_NOISE_LEVEL = 0.01

BandSelection = Sequence[Union[int, str]]


@dataclass(frozen=True)
class ReflectanceLUT:
    """Simulated reflectance, one row per sample, one column per band."""
    reflectance: np.ndarray = field(repr=False)
    band_names: Tuple[str, ...]

    def __post_init__(self):
        reflectance = np.array(self.reflectance, dtype=float)
        if reflectance.ndim != 2:
            raise ConfigurationError(f"LUT must be 2D (samples, bands), got {reflectance.shape}")
        if reflectance.shape[1] != len(self.band_names):
            raise ConfigurationError(
                f"LUT has {reflectance.shape[1]} bands but {len(self.band_names)} band names")
        reflectance.flags.writeable = False
        object.__setattr__(self, 'reflectance', reflectance)
        object.__setattr__(self, 'band_names', tuple(str(b) for b in self.band_names))

    @property
    def n_samples(self) -> int:
        return self.reflectance.shape[0]

    @property
    def n_bands(self) -> int:
        return self.reflectance.shape[1]


@dataclass(frozen=True)
class NoisyLUT:
    """Band subset of a LUT with noise applied, for one target variable."""
    reflectance: np.ndarray = field(repr=False)
    band_indices: Tuple[int, ...]
    band_names: Tuple[str, ...]
    noise_level: float
    noise_type: str


def resolve_band_indices(selection: Optional[BandSelection],
                         band_names: Sequence[str]) -> List[int]:
    """
    Turn a band selection into column indices.

    Args:
        selection: Band names and/or 0-based indices; None selects all bands
        band_names: Available band names

    Returns:
        List of indices into band_names, in selection order
    """
    band_names = [str(b) for b in band_names]
    if selection is None:
        return list(range(len(band_names)))
    if len(selection) == 0:
        raise ConfigurationError("Band selection is empty")

    indices = []
    lookup = {name: i for i, name in enumerate(band_names)}
    for band in selection:
        if isinstance(band, (int, np.integer)) and not isinstance(band, bool):
            if not 0 <= band < len(band_names):
                raise ConfigurationError(
                    f"Band index {band} out of range for {len(band_names)} bands")
            indices.append(int(band))
        elif str(band) in lookup:
            indices.append(lookup[str(band)])
        else:
            raise ConfigurationError(f"Band '{band}' not found in available bands")
    return indices


def build_lut(sample_set: ParameterSampleSet,
              simulator,
              band_names: Optional[Sequence[str]] = None,
              n_jobs: int = 1) -> ReflectanceLUT:
    """
    Simulate one spectrum per sampled parameter vector.

    Args:
        sample_set: Sampled parameters
        simulator: Callable params dict -> spectrum
        band_names: Names of the simulated bands; taken from
            ``simulator.band_names`` or numbered if omitted
        n_jobs: joblib workers for simulation (rows are independent)

    Returns:
        ReflectanceLUT aligned row-by-row with sample_set
    """
    logger.info(f"Simulating {len(sample_set)} spectra (n_jobs={n_jobs})")

    if n_jobs == 1:
        spectra = [np.asarray(simulator(params), dtype=float) for params in sample_set.rows()]
    else:
        spectra = Parallel(n_jobs=n_jobs)(
            delayed(simulator)(params) for params in sample_set.rows())
        spectra = [np.asarray(s, dtype=float) for s in spectra]

    lengths = {s.shape for s in spectra}
    if len(lengths) != 1 or spectra[0].ndim != 1:
        raise ConfigurationError(f"Simulator returned inconsistent spectrum shapes: {sorted(lengths)}")

    if band_names is None:
        band_names = getattr(simulator, 'band_names', None)
    if band_names is None:
        band_names = [f"band_{i + 1}" for i in range(spectra[0].size)]

    lut = ReflectanceLUT(np.vstack(spectra), tuple(band_names))
    logger.info(f"LUT built: {lut.n_samples} samples x {lut.n_bands} bands")
    return lut


def save_lut_tables(sample_set: ParameterSampleSet, lut: ReflectanceLUT,
                    output_dir: Union[str, Path]) -> Tuple[Path, Path]:
    """
    Write parameter and reflectance tables as tab-separated text.

    Returns:
        (parameter table path, reflectance table path)
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    if len(sample_set) != lut.n_samples:
        raise ConfigurationError(
            f"{len(sample_set)} parameter rows but {lut.n_samples} LUT rows")

    parms_path = output_dir / PARAMETER_TABLE
    with open(parms_path, 'w', newline='') as f:
        writer = csv.writer(f, delimiter='\t')
        writer.writerow(sample_set.names)
        for row in sample_set.values:
            writer.writerow([f"{v:.3g}" for v in row])

    refl_path = output_dir / REFLECTANCE_TABLE
    with open(refl_path, 'w', newline='') as f:
        writer = csv.writer(f, delimiter='\t')
        writer.writerow(lut.band_names)
        for row in lut.reflectance:
            writer.writerow([f"{v:.5g}" for v in row])

    logger.info(f"Wrote LUT tables: {parms_path.name}, {refl_path.name} in {output_dir}")
    return parms_path, refl_path


def _read_table(path: Path) -> Tuple[List[str], np.ndarray]:
    with open(path, newline='') as f:
        reader = csv.reader(f, delimiter='\t')
        names = next(reader)
        rows = [[float(v) for v in row] for row in reader if row]
    return names, np.array(rows, dtype=float).reshape(len(rows), len(names))


def load_lut_tables(output_dir: Union[str, Path]) -> Tuple[ParameterSampleSet, ReflectanceLUT]:
    """Read tables written by :func:`save_lut_tables`."""
    output_dir = Path(output_dir)
    names, values = _read_table(output_dir / PARAMETER_TABLE)
    bands, reflectance = _read_table(output_dir / REFLECTANCE_TABLE)
    return ParameterSampleSet(tuple(names), values), ReflectanceLUT(reflectance, tuple(bands))


def apply_noise(lut: ReflectanceLUT,
                band_selection: Optional[BandSelection] = None,
                noise_level: float = DEFAULT_NOISE_LEVEL,
                noise_type: str = 'relative',
                random_state: RandomState = None) -> NoisyLUT:
    """
    Copy a band subset of the LUT and add Gaussian noise.

    relative: x * (1 + N(0, noise_level))
    absolute: x + N(0, noise_level)

    Args:
        lut: Base LUT (left untouched)
        band_selection: Band names/indices; None for all bands
        noise_level: Noise standard deviation
        noise_type: 'relative' or 'absolute'
        random_state: Seed or numpy Generator

    Returns:
        NoisyLUT
    """
    if noise_type not in NOISE_TYPES:
        raise ConfigurationError(f"Unknown noise type: {noise_type}. Use one of {NOISE_TYPES}")
    if noise_level < 0:
        raise ConfigurationError(f"Noise level must be >= 0, got {noise_level}")

    indices = resolve_band_indices(band_selection, lut.band_names)
    subset = lut.reflectance[:, indices].copy()

    if noise_level > 0:
        rng = np.random.default_rng(random_state)
        noise = rng.normal(0.0, noise_level, size=subset.shape)
        if noise_type == 'relative':
            subset = subset + subset * noise
        else:
            subset = subset + noise

    return NoisyLUT(
        reflectance=subset,
        band_indices=tuple(indices),
        band_names=tuple(lut.band_names[i] for i in indices),
        noise_level=float(noise_level),
        noise_type=noise_type,
    )


def make_noisy_luts(lut: ReflectanceLUT,
                    targets: Sequence[str],
                    band_selection: Optional[Mapping[str, BandSelection]] = None,
                    noise_levels: Optional[Mapping[str, float]] = None,
                    noise_type: str = 'relative',
                    random_state: RandomState = None) -> Dict[str, NoisyLUT]:
    """
    Build one noisy LUT per target variable.

    Band selections and noise levels are looked up per target; targets
    without an entry use all bands and a 1% noise level.
    """
    band_selection = band_selection or {}
    noise_levels = noise_levels or {}
    rng = np.random.default_rng(random_state)

    # Resolve every selection before any noise is drawn
    for target in targets:
        resolve_band_indices(band_selection.get(target), lut.band_names)

    noisy = {}
    for target in targets:
        noisy[target] = apply_noise(lut,
                                    band_selection.get(target),
                                    noise_levels.get(target, DEFAULT_NOISE_LEVEL),
                                    noise_type=noise_type,
                                    random_state=rng)
        logger.debug(f"Noisy LUT for {target}: {len(noisy[target].band_indices)} bands, "
                     f"{noise_type} noise {noisy[target].noise_level}")
    return noisy
