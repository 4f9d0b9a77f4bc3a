"""
Forward Model Module

Simulators mapping a PROSAIL parameter vector to a reflectance spectrum,
and sensor spectral response resampling.
"""

from .simulator import ForwardSimulator, ProsailSimulator
from .spectral_response import gaussian_srf_matrix, resample_spectrum

__all__ = ['ForwardSimulator', 'ProsailSimulator', 'gaussian_srf_matrix', 'resample_spectrum']
