"""Utility modules: ENVI raster I/O, memory-bounded blocks, configuration."""

from prosail_hybrid.utils.memory import get_available_memory, MemoryManager
from prosail_hybrid.utils.envi_io import (
    ENVIBlockReader, ENVIBlockWriter, read_envi_header, write_envi_header, write_envi)

__all__ = [
    'get_available_memory', 'MemoryManager',
    'ENVIBlockReader', 'ENVIBlockWriter',
    'read_envi_header', 'write_envi_header', 'write_envi',
]
