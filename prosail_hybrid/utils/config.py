"""
Configuration management for PROSAIL hybrid inversion.

Supports:
    - YAML configuration files
    - Environment variable overrides
    - Auto-detection of memory and CPU resources
    - Parameter sampling ranges and per-target training options

Each call to load_config() builds an independent HybridConfig; the structs
used by the inversion code (ParameterDistribution, TrainingOptions) are
derived from it and passed explicitly.
"""

import copy
import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Union

import psutil

from prosail_hybrid.errors import ConfigurationError
from prosail_hybrid.inversion.pipeline import TrainingOptions
from prosail_hybrid.inversion.sampling import (
    DEFAULT_FIXED, DEFAULT_MAX, DEFAULT_MIN, ParameterDistribution)

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CONFIG = {
    # Paths
    'paths': {
        'output_dir': None,       # Current directory
    },

    # LUT sampling
    'sampling': {
        'n_samples': 2000,
        'sail_version': '4SAIL',
        'clip_gaussian': False,
        'random_seed': None,
    },

    # Parameter distributions; 'distribution' entries default to Uniform
    'parameters': {
        'min': dict(DEFAULT_MIN),
        'max': dict(DEFAULT_MAX),
        'distribution': {},
        'gaussian': {'mean': {}, 'std': {}},
        'fixed': dict(DEFAULT_FIXED),
    },

    # Ensemble training
    'training': {
        'targets': ['lai'],
        'n_models': 20,
        'with_replacement': True,
        'noise_type': 'relative',
        'noise_level': 0.01,     # Default for targets without an entry below
        'noise_levels': {},
        'band_selection': {},
        'n_jobs': None,           # Auto-detect
    },

    # Raster application
    'raster': {
        'scale_factor': 10000,
        'block_rows': None,       # From memory limit
    },

    # Memory management
    'memory': {
        'limit_gb': None,         # Auto-detect (use 80% of available)
        'safety_factor': 0.8,
    },
}

ENV_MAPPING = {
    'PROSAIL_HYBRID_MEMORY_LIMIT': ('memory', 'limit_gb', float),
    'PROSAIL_HYBRID_N_JOBS': ('training', 'n_jobs', int),
    'PROSAIL_HYBRID_N_SAMPLES': ('sampling', 'n_samples', int),
    'PROSAIL_HYBRID_SCALE_FACTOR': ('raster', 'scale_factor', float),
}


def default_config_paths():
    return [
        Path.home() / '.prosail_hybrid' / 'config.yaml',
        Path.home() / '.config' / 'prosail_hybrid' / 'config.yaml',
        Path.cwd() / 'prosail_hybrid.yaml',
    ]


class HybridConfig:
    """Configuration with YAML loading, env overrides and auto-detection."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None,
                 use_env: bool = True, search_default_paths: bool = True):
        """
        Build a configuration.

        Args:
            config_path: YAML file to load (must exist)
            use_env: Apply PROSAIL_HYBRID_* environment overrides
            search_default_paths: Load the first existing default config file
                when config_path is None
        """
        self._config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        self.source: Optional[Path] = None
        if config_path is not None:
            self._load_config_file(Path(config_path))
        elif search_default_paths:
            for path in default_config_paths():
                if path.exists():
                    self._load_config_file(path)
                    break
        if use_env:
            self._apply_env_overrides()
        self._auto_detect_resources()

    def _load_config_file(self, config_path: Path):
        """Load configuration from a YAML file."""
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            with open(config_path) as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Config file must hold a mapping: {config_path}")
        self._merge_config(user_config)
        self.source = config_path
        logger.info(f"Loaded config from: {config_path}")

    def _merge_config(self, user_config: Dict):
        """Deep merge user config into default config."""
        def merge(base, override):
            for key, value in override.items():
                if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                    merge(base[key], value)
                else:
                    base[key] = value
        merge(self._config, user_config)

    def _apply_env_overrides(self):
        """Apply environment variable overrides."""
        for env_var, (section, key, convert) in ENV_MAPPING.items():
            if env_var in os.environ:
                raw = os.environ[env_var]
                try:
                    value = convert(raw)
                except ValueError as e:
                    raise ConfigurationError(f"Invalid value for {env_var}: {raw!r}") from e
                self._config[section][key] = value
                logger.debug(f"Config override from {env_var}: {section}.{key} = {value}")

    def _auto_detect_resources(self):
        """Auto-detect system resources."""
        memory = self._config['memory']
        if not memory['limit_gb']:
            total_gb = psutil.virtual_memory().total / (1024**3)
            memory['limit_gb'] = round(total_gb * memory['safety_factor'], 1)
            logger.debug(f"Auto-detected memory limit: {memory['limit_gb']} GB")

        if not self._config['training']['n_jobs']:
            self._config['training']['n_jobs'] = 1

    def get(self, *keys, default=None):
        """Get nested config value."""
        value = self._config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, *keys_and_value):
        """Set nested config value."""
        *keys, value = keys_and_value
        target = self._config
        for key in keys[:-1]:
            target = target.setdefault(key, {})
        target[keys[-1]] = value

    def save(self, path: Optional[Path] = None) -> Path:
        """Save current config to YAML file."""
        if path is None:
            path = default_config_paths()[0]
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self._config, f, default_flow_style=False, sort_keys=False)
        logger.info(f"Saved config to: {path}")
        return path

    def as_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)

    def parameter_distribution(self) -> ParameterDistribution:
        """Sampling specs from the 'parameters' section."""
        params = self._config['parameters']
        return ParameterDistribution.from_tables(
            params.get('min') or {},
            params.get('max') or {},
            distributions=params.get('distribution'),
            gaussian=params.get('gaussian'),
            fixed=params.get('fixed'),
        )

    def training_options(self) -> TrainingOptions:
        """TrainingOptions from the 'sampling' and 'training' sections."""
        sampling = self._config['sampling']
        training = self._config['training']
        targets = tuple(training['targets'])
        noise_levels = {t: float(training['noise_level']) for t in targets}
        noise_levels.update({k: float(v) for k, v in (training.get('noise_levels') or {}).items()})
        return TrainingOptions(
            targets=targets,
            n_samples=int(sampling['n_samples']),
            n_models=int(training['n_models']),
            with_replacement=bool(training['with_replacement']),
            sail_version=str(sampling['sail_version']),
            noise_type=str(training['noise_type']),
            noise_levels=noise_levels,
            band_selection=dict(training.get('band_selection') or {}),
            clip_gaussian=bool(sampling['clip_gaussian']),
            n_jobs=int(training['n_jobs']),
            random_seed=sampling['random_seed'],
        )

    @property
    def memory_limit_gb(self) -> float:
        return self._config['memory']['limit_gb']

    @property
    def n_jobs(self) -> int:
        return self._config['training']['n_jobs']

    @property
    def scale_factor(self) -> float:
        return self._config['raster']['scale_factor']

    def __repr__(self):
        return f"HybridConfig({self._config})"


def load_config(config_path: Optional[Union[str, Path]] = None, **kwargs) -> HybridConfig:
    """Build a configuration (defaults, then YAML file, then environment)."""
    return HybridConfig(config_path, **kwargs)
