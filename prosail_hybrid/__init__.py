"""
PROSAIL Hybrid Inversion
========================

Estimate vegetation biophysical variables (chlorophyll, water content,
leaf mass, LAI) from reflectance with ensembles of regression models trained
on PROSAIL simulations.

Modules:
    inversion: Sampling, LUT, ensemble training/prediction, raster application
    forward: Forward simulators and spectral response resampling
    utils: ENVI I/O, memory management, configuration

Usage:
    from prosail_hybrid import train_hybrid_inversion, apply_to_raster
    from prosail_hybrid.forward import ProsailSimulator

    simulator = ProsailSimulator(wavelengths=[490, 560, 665, 705, 740, 783, 842, 865, 1610, 2190])
    bundle = train_hybrid_inversion(simulator, band_names=simulator.band_names)
    apply_to_raster('s2_reflectance', bundle, 'results/')
"""

__version__ = '0.1.0'

from prosail_hybrid.inversion import (
    sample_parameters,
    build_lut,
    train_ensemble,
    predict_ensemble,
    apply_to_raster,
    train_hybrid_inversion,
    HybridModelBundle,
)
from prosail_hybrid.utils.config import HybridConfig, load_config
