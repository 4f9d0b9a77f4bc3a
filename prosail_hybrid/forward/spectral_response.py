"""
Sensor spectral response resampling.

Converts 1 nm PROSAIL spectra to sensor bands by weighting with a Gaussian
spectral response function (SRF) per band:

    SRF_b(λ) = exp(-0.5 * ((λ - c_b) / σ_b)²),   σ_b = FWHM_b / 2.355

normalized to unit sum over the simulation grid.
"""

import numpy as np
from typing import Optional, Sequence

from prosail_hybrid.errors import ConfigurationError

FWHM_TO_SIGMA = 1.0 / 2.355

# PROSAIL output grid (nm)
PROSAIL_WAVELENGTHS = np.arange(400, 2501, dtype=float)


def gaussian_srf_matrix(centers: Sequence[float],
                        fwhm: Optional[Sequence[float]] = None,
                        grid: np.ndarray = PROSAIL_WAVELENGTHS) -> np.ndarray:
    """
    Build a resampling matrix from the simulation grid to sensor bands.

    Args:
        centers: Band center wavelengths (nm)
        fwhm: Band FWHM (nm); defaults to the spacing between centers
        grid: Simulation wavelength grid (nm)

    Returns:
        Matrix (n_bands, len(grid)); rows sum to 1
    """
    centers = np.asarray(centers, dtype=float)
    if centers.ndim != 1 or centers.size == 0:
        raise ConfigurationError("Band centers must be a non-empty 1D sequence")
    if np.any(centers < grid[0]) or np.any(centers > grid[-1]):
        raise ConfigurationError(
            f"Band centers must lie within {grid[0]:.0f}-{grid[-1]:.0f} nm")

    if fwhm is None:
        if centers.size > 1:
            fwhm = np.gradient(centers)
        else:
            fwhm = np.array([10.0])
    fwhm = np.broadcast_to(np.asarray(fwhm, dtype=float), centers.shape)
    if np.any(fwhm <= 0):
        raise ConfigurationError("FWHM values must be positive")

    sigma = fwhm * FWHM_TO_SIGMA
    srf = np.exp(-0.5 * ((grid[np.newaxis, :] - centers[:, np.newaxis]) / sigma[:, np.newaxis]) ** 2)

    # Narrow bands may fall between grid points: use nearest sample
    empty = srf.sum(axis=1) < 1e-12
    if np.any(empty):
        nearest = np.abs(grid[np.newaxis, :] - centers[empty, np.newaxis]).argmin(axis=1)
        srf[empty] = 0.0
        srf[np.flatnonzero(empty), nearest] = 1.0

    return srf / srf.sum(axis=1, keepdims=True)


def resample_spectrum(spectrum: np.ndarray, srf: np.ndarray) -> np.ndarray:
    """Apply an SRF matrix to a spectrum (or to rows of spectra)."""
    return np.asarray(spectrum, dtype=float) @ srf.T
