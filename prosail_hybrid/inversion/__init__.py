"""
Hybrid Inversion Module

Parameter sampling, LUT generation, bagged ensemble training and
block-wise raster application.
"""

from .sampling import (
    ParameterSpec,
    ParameterDistribution,
    ParameterSampleSet,
    default_parameter_distribution,
    sample_parameters
)
from .lut import (
    ReflectanceLUT,
    NoisyLUT,
    build_lut,
    apply_noise,
    make_noisy_luts,
    save_lut_tables,
    load_lut_tables
)
from .models import EnsembleModel, HybridModelBundle
from .regression import TunedSVR
from .training import make_subsets, train_ensemble
from .prediction import PredictionResult, predict_ensemble
from .raster import RasterInversionResult, apply_to_raster
from .pipeline import TrainingOptions, default_training_options, train_hybrid_inversion

__all__ = [
    # Sampling
    'ParameterSpec',
    'ParameterDistribution',
    'ParameterSampleSet',
    'default_parameter_distribution',
    'sample_parameters',
    # LUT
    'ReflectanceLUT',
    'NoisyLUT',
    'build_lut',
    'apply_noise',
    'make_noisy_luts',
    'save_lut_tables',
    'load_lut_tables',
    # Models
    'EnsembleModel',
    'HybridModelBundle',
    'TunedSVR',
    'make_subsets',
    'train_ensemble',
    'PredictionResult',
    'predict_ensemble',
    # Raster
    'RasterInversionResult',
    'apply_to_raster',
    # Pipeline
    'TrainingOptions',
    'default_training_options',
    'train_hybrid_inversion'
]
