"""
Forward simulators for LUT generation.

A forward simulator is any callable mapping a parameter dict to a
reflectance spectrum:

    simulator(params: Dict[str, float]) -> np.ndarray  # (n_bands,)

It must be pure: the same parameters always give the same spectrum.

ProsailSimulator wraps the ``prosail`` package (PROSPECT-D + 4SAIL) and
resamples its 400-2500 nm output to sensor bands.
"""

import logging
import numpy as np
from typing import Callable, Dict, List, Optional, Sequence

from prosail_hybrid.errors import ConfigurationError
from prosail_hybrid.forward.spectral_response import (
    PROSAIL_WAVELENGTHS, gaussian_srf_matrix, resample_spectrum)

logger = logging.getLogger(__name__)

ForwardSimulator = Callable[[Dict[str, float]], np.ndarray]

# Sampled parameter name -> prosail.run_prosail keyword
PROSAIL_ARGUMENTS = {
    'N': 'n',
    'CHL': 'cab',
    'CAR': 'car',
    'BROWN': 'cbrown',
    'EWT': 'cw',
    'LMA': 'cm',
    'lai': 'lai',
    'LIDFa': 'lidfa',
    'q': 'hspot',
    'tts': 'tts',
    'tto': 'tto',
    'psi': 'psi',
    'ANT': 'ant',
    'alpha': 'alpha',
    'TypeLidf': 'typelidf',
    'LIDFb': 'lidfb',
    'psoil': 'psoil',
}

REQUIRED_PARAMETERS = ('N', 'CHL', 'CAR', 'BROWN', 'EWT', 'LMA', 'lai',
                       'LIDFa', 'q', 'tts', 'tto', 'psi')


class ProsailSimulator:
    """
    PROSPECT-D + 4SAIL canopy reflectance simulator.

    Returns the bidirectional reflectance factor resampled to the sensor
    bands given at construction (1 nm output if none).
    """

    def __init__(self,
                 wavelengths: Optional[Sequence[float]] = None,
                 fwhm: Optional[Sequence[float]] = None,
                 sail_version: str = '4SAIL',
                 factor: str = 'SDR',
                 prospect_version: str = 'D'):
        """
        Initialize simulator.

        Args:
            wavelengths: Sensor band centers (nm); None keeps the 1 nm grid
            fwhm: Sensor band FWHM (nm)
            sail_version: Only '4SAIL' is available through the prosail package
            factor: prosail reflectance factor ('SDR', 'BHR', 'DHR', 'HDR')
            prospect_version: PROSPECT version ('5' or 'D')
        """
        if sail_version != '4SAIL':
            raise ConfigurationError(
                f"{sail_version} is not provided by the prosail package; "
                "pass a custom simulator to build_lut")
        import prosail  # noqa: F401  fail early if not installed

        self.factor = factor
        self.prospect_version = prospect_version
        if wavelengths is None:
            self.wavelengths = PROSAIL_WAVELENGTHS
            self._srf = None
        else:
            self.wavelengths = np.asarray(wavelengths, dtype=float)
            self._srf = gaussian_srf_matrix(self.wavelengths, fwhm)

    @property
    def band_names(self) -> List[str]:
        return [f"{w:g}" for w in self.wavelengths]

    def _arguments(self, params: Dict[str, float]) -> Dict[str, float]:
        missing = [p for p in REQUIRED_PARAMETERS if p not in params]
        if missing:
            raise ConfigurationError(f"Missing PROSAIL parameters: {missing}")
        kwargs = {PROSAIL_ARGUMENTS[k]: v for k, v in params.items() if k in PROSAIL_ARGUMENTS}
        if 'typelidf' in kwargs:
            kwargs['typelidf'] = int(kwargs['typelidf'])
        if 'psoil' in kwargs:
            # psoil mixes the dry/wet soil spectra bundled with prosail
            kwargs.setdefault('rsoil', 1.0)
        return kwargs

    def __call__(self, params: Dict[str, float]) -> np.ndarray:
        import prosail

        spectrum = prosail.run_prosail(prospect_version=self.prospect_version,
                                       factor=self.factor,
                                       **self._arguments(params))
        spectrum = np.asarray(spectrum, dtype=float)
        if self._srf is not None:
            spectrum = resample_spectrum(spectrum, self._srf)
        return spectrum
