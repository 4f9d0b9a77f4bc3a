"""
Memory-bounded block sizing for raster inversion.

A raster pass holds, per block of lines:
    - the raw input block (lines x samples x bands, raster dtype)
    - the scaled float64 feature copy of the selected pixels
    - the (pixels, members) float64 matrix of member predictions
    - two float32 output lines (mean, std)

MemoryManager picks the number of lines so that this working set stays under
a limit derived from psutil's available memory.
"""

import gc
import logging
import numpy as np
from typing import Tuple, Optional, Generator
from contextlib import contextmanager

import psutil

logger = logging.getLogger(__name__)

GB = 1024 ** 3


def get_available_memory() -> float:
    """Available system memory in GB."""
    available_gb = psutil.virtual_memory().available / GB
    logger.debug(f"Available memory: {available_gb:.1f} GB")
    return available_gb


def get_total_memory() -> float:
    return psutil.virtual_memory().total / GB


def estimate_array_memory(shape: Tuple[int, ...], dtype=np.float64) -> float:
    """
    Size of an array in GB.

    Args:
        shape: Array dimensions
        dtype: Numpy dtype

    Returns:
        Memory in GB
    """
    return float(np.prod(shape, dtype=np.float64)) * np.dtype(dtype).itemsize / GB


def line_working_set(samples: int, bands: int, n_models: int = 1,
                     raster_dtype=np.float32) -> float:
    """GB needed to invert one image line with an ensemble of n_models members."""
    raw = estimate_array_memory((samples, bands), raster_dtype)
    features = estimate_array_memory((samples, bands), np.float64)
    estimates = estimate_array_memory((samples, max(1, n_models)), np.float64)
    outputs = 2 * estimate_array_memory((samples,), np.float32)
    return raw + features + estimates + outputs


class MemoryManager:
    """
    Chooses how many raster lines to process per block.

    The block size is bounded by the memory limit and by max_block_mb,
    never by the image size, so large rasters stream in constant memory.
    """

    def __init__(self, limit_gb: Optional[float] = None, safety_factor: float = 0.8,
                 max_block_mb: float = 512):
        """
        Args:
            limit_gb: Memory limit in GB (safety_factor x available if None)
            safety_factor: Fraction of available memory that may be used
            max_block_mb: Upper bound on one block's working set, in MB
        """
        if limit_gb is None:
            limit_gb = get_available_memory() * safety_factor
        if limit_gb <= 0:
            raise ValueError(f"Memory limit must be positive, got {limit_gb}")

        self.limit_gb = limit_gb
        self.safety_factor = safety_factor
        self.max_block_mb = max_block_mb
        logger.debug(f"MemoryManager: {limit_gb:.1f} GB limit, blocks <= {max_block_mb} MB")

    def budget_gb(self) -> float:
        """Memory one block may use right now."""
        return min(self.limit_gb,
                   get_available_memory() * self.safety_factor,
                   self.max_block_mb / 1024)

    def calculate_chunk_size(self, shape: Tuple[int, ...], dtype=np.float64,
                             chunk_dim: int = 0, n_models: int = 1) -> int:
        """
        Number of lines per block for a (lines, samples, bands) raster.

        Args:
            shape: Raster shape (lines, samples, bands)
            dtype: Raster dtype
            chunk_dim: Dimension split into blocks (lines)
            n_models: Ensemble size, for the prediction matrix

        Returns:
            Lines per block, at least 1
        """
        other = [n for i, n in enumerate(shape) if i != chunk_dim]
        samples = other[0] if other else 1
        bands = int(np.prod(other[1:])) if len(other) > 1 else 1

        per_line = line_working_set(samples, bands, n_models, raster_dtype=dtype)
        if per_line == 0:
            return shape[chunk_dim]

        lines = max(1, min(int(self.budget_gb() / per_line), shape[chunk_dim]))
        logger.debug(f"Block size for raster {shape}, {n_models} models: {lines} lines")
        return lines

    def iterate_chunks(self, shape: Tuple[int, ...], chunk_dim: int = 0,
                       chunk_size: Optional[int] = None) -> Generator[Tuple[int, int], None, None]:
        """
        Yield (start, end) line ranges covering the raster once, in order.

        Args:
            shape: Raster shape
            chunk_dim: Dimension split into blocks
            chunk_size: Lines per block (computed if None)
        """
        if chunk_size is None:
            chunk_size = self.calculate_chunk_size(shape, chunk_dim=chunk_dim)

        total = shape[chunk_dim]
        for start in range(0, total, chunk_size):
            yield start, min(start + chunk_size, total)

    @contextmanager
    def processing_context(self, description: str = "processing"):
        """Collect garbage around a memory-heavy step and log available memory."""
        gc.collect()
        logger.debug(f"Starting {description}, available: {get_available_memory():.1f} GB")
        try:
            yield
        finally:
            gc.collect()
            logger.debug(f"Finished {description}, available: {get_available_memory():.1f} GB")
