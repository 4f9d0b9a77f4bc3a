"""
ENVI format I/O utilities.

Handles ENVI header parsing/writing and row-block streaming of ENVI binary
rasters, so that images larger than memory can be read and written one block
of lines at a time.
"""

import re
import numpy as np
from pathlib import Path
from typing import Dict, Any, Tuple, Optional, List, Sequence, Union
import logging

from prosail_hybrid.errors import ConfigurationError, MissingResourceError

logger = logging.getLogger(__name__)


# ENVI data type mapping
ENVI_DTYPE_MAP = {
    1: np.uint8,
    2: np.int16,
    3: np.int32,
    4: np.float32,
    5: np.float64,
    6: np.complex64,
    9: np.complex128,
    12: np.uint16,
    13: np.uint32,
    14: np.int64,
    15: np.uint64,
}

DTYPE_TO_ENVI = {v: k for k, v in ENVI_DTYPE_MAP.items()}

# Header fields holding numbers (possibly lists of numbers)
NUMERIC_KEYS = {
    'samples', 'lines', 'bands', 'header offset', 'data type',
    'byte order', 'default bands', 'data ignore value',
    'wavelength', 'fwhm', 'data gain values',
}

# Fields always written and read back as lists
LIST_KEYS = {'band names', 'wavelength', 'fwhm', 'default bands',
             'data gain values', 'map info'}

# Free text fields, braced but never split on commas
TEXT_KEYS = {'description', 'coordinate system string'}

PathLike = Union[str, Path]


def find_header_path(raster_path: PathLike) -> Path:
    """
    Get the header path for a raster file.

    ``image`` -> ``image.hdr``, ``image.bil`` -> ``image.hdr``,
    ``image.hdr`` -> itself.

    Args:
        raster_path: Path to the binary raster (or to its header)

    Returns:
        Header path (not guaranteed to exist)
    """
    raster_path = Path(raster_path)
    if raster_path.suffix == '.hdr':
        return raster_path
    # Only alphanumeric extensions count: image_lai.hdr, image.bil_lai.hdr
    if not raster_path.suffix[1:].isalnum():
        return Path(str(raster_path) + '.hdr')
    candidate = raster_path.with_suffix('.hdr')
    if candidate.exists():
        return candidate
    # image.dat.hdr style
    appended = Path(str(raster_path) + '.hdr')
    if appended.exists():
        return appended
    return candidate


def _parse_number(text: str) -> Union[int, float]:
    value = float(text)
    if value.is_integer() and not re.search(r'[.eE]', text):
        return int(value)
    return value


def _split_list(text: str) -> List[str]:
    return [item.strip() for item in text.replace('\n', ' ').split(',') if item.strip()]


def read_envi_header(header_path: PathLike) -> Dict[str, Any]:
    """
    Parse an ENVI header file.

    Braced values may span several lines. Numeric fields are converted to
    int/float (lists for braced values), other braced fields become lists of
    strings, except free-text fields such as ``description``.

    Args:
        header_path: Path to the ``.hdr`` file

    Returns:
        Ordered dict of lower-case keys to values
    """
    header_path = Path(header_path)
    if header_path.suffix != '.hdr':
        raise ConfigurationError(f"File extension should be .hdr: {header_path}")
    if not header_path.exists():
        raise MissingResourceError(f"ENVI header not found: {header_path}")

    with open(header_path, 'r') as f:
        lines = f.read().splitlines()

    if not lines or 'ENVI' not in lines[0]:
        raise ConfigurationError(f"Not an ENVI header (ENVI keyword missing): {header_path}")

    # Join brace-delimited values spanning several lines
    entries = []
    pending = None
    for line in lines[1:]:
        if pending is not None:
            pending += '\n' + line
            if '}' in line:
                entries.append(pending)
                pending = None
            continue
        if not line.strip():
            continue
        if '{' in line and '}' not in line:
            pending = line
        else:
            entries.append(line)
    if pending is not None:
        raise ConfigurationError(f"Error matching curly braces in header: {header_path}")

    header = {}
    for entry in entries:
        if '=' not in entry:
            logger.debug(f"Skipping header line without '=': {entry!r}")
            continue
        key, value = entry.split('=', 1)
        key = key.strip().lower()
        value = value.strip()

        braced = value.startswith('{') and value.endswith('}')
        if braced:
            value = value[1:-1].strip()

        if key in NUMERIC_KEYS:
            numbers = [_parse_number(v) for v in _split_list(value)]
            if braced or key in LIST_KEYS:
                header[key] = numbers
            else:
                header[key] = numbers[0] if len(numbers) == 1 else numbers
        elif key in TEXT_KEYS:
            header[key] = value
        elif braced or key in LIST_KEYS:
            header[key] = _split_list(value)
        else:
            header[key] = value

    return header


def _format_value(key: str, value: Any) -> str:
    if isinstance(value, (list, tuple, np.ndarray)):
        return '{' + ', '.join(str(v) for v in value) + '}'
    if key in TEXT_KEYS or key in LIST_KEYS:
        return '{' + str(value) + '}'
    return str(value)


def write_envi_header(header: Dict[str, Any], header_path: PathLike):
    """
    Write an ENVI header.

    Lists are written brace-delimited and comma-separated, in the given
    order, so :func:`read_envi_header` returns them unchanged.
    """
    header_path = Path(header_path)
    header_lines = ["ENVI"]
    for key, value in header.items():
        header_lines.append(f"{key} = {_format_value(key, value)}")
    with open(header_path, 'w') as f:
        f.write('\n'.join(header_lines) + '\n')


def _binary_path(raster_path: Path) -> Path:
    if raster_path.suffix == '.hdr':
        return raster_path.with_suffix('')
    return raster_path


def _header_dtype(header: Dict[str, Any]) -> np.dtype:
    dtype_code = int(header.get('data type', 4))
    dtype = np.dtype(ENVI_DTYPE_MAP.get(dtype_code, np.float32))
    if int(header.get('byte order', 0)) == 1:
        dtype = dtype.newbyteorder('>')
    else:
        dtype = dtype.newbyteorder('<')
    return dtype


class ENVIBlockReader:
    """
    Stream an ENVI raster in blocks of lines.

    The binary file is memory-mapped; only the requested lines are copied
    into memory by :meth:`read_block`.
    """

    def __init__(self, filepath: PathLike):
        """
        Initialize reader.

        Args:
            filepath: Path to ENVI binary file (or its .hdr)
        """
        self.filepath = Path(filepath)
        self.binary_path = _binary_path(self.filepath)
        if not self.binary_path.exists():
            raise MissingResourceError(f"Raster not found: {self.binary_path}")
        self.header_path = find_header_path(self.binary_path)
        if not self.header_path.exists():
            raise MissingResourceError(f"Cannot find header for {self.binary_path}")
        self.header = read_envi_header(self.header_path)
        self._data = None

    @property
    def shape(self) -> Tuple[int, int, int]:
        """Return (lines, samples, bands) shape."""
        return (
            int(self.header.get('lines', 0)),
            int(self.header.get('samples', 0)),
            int(self.header.get('bands', 1))
        )

    @property
    def dtype(self) -> np.dtype:
        """Return numpy dtype (with byte order)."""
        return _header_dtype(self.header)

    @property
    def interleave(self) -> str:
        """Return interleave type (bil, bip, bsq)."""
        return str(self.header.get('interleave', 'bsq')).lower()

    @property
    def band_names(self) -> Optional[List[str]]:
        names = self.header.get('band names')
        return list(names) if names else None

    @property
    def wavelengths(self) -> Optional[np.ndarray]:
        wl = self.header.get('wavelength')
        if wl:
            return np.asarray(wl, dtype=float)
        return None

    def _mapped(self) -> np.ndarray:
        if self._data is None:
            lines, samples, bands = self.shape
            if self.interleave == 'bil':
                layout = (lines, bands, samples)
            elif self.interleave == 'bip':
                layout = (lines, samples, bands)
            else:
                layout = (bands, lines, samples)
            self._data = np.memmap(str(self.binary_path), dtype=self.dtype, mode='r',
                                   offset=int(self.header.get('header offset', 0)),
                                   shape=layout)
        return self._data

    def read_block(self, row_start: int, row_count: int) -> np.ndarray:
        """
        Read a block of lines.

        Args:
            row_start: First line (0-based)
            row_count: Number of lines

        Returns:
            Array (row_count * samples, bands), pixels in row-major order
        """
        lines, samples, bands = self.shape
        row_end = min(row_start + row_count, lines)
        data = self._mapped()

        if self.interleave == 'bil':
            block = data[row_start:row_end].transpose(0, 2, 1)
        elif self.interleave == 'bip':
            block = data[row_start:row_end]
        else:
            block = data[:, row_start:row_end, :].transpose(1, 2, 0)

        return np.array(block, dtype=self.dtype.newbyteorder('=')).reshape(-1, bands)

    def read(self) -> np.ndarray:
        """
        Read entire file into memory.

        Returns:
            Array with shape (lines, samples, bands)
        """
        lines, samples, bands = self.shape
        return self.read_block(0, lines).reshape(lines, samples, bands)

    def close(self):
        self._data = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


# Template keys carried over from the input raster to derived outputs
GEOMETRY_KEYS = ('map info', 'coordinate system string', 'projection info',
                 'x start', 'y start', 'pixel size')


class ENVIBlockWriter:
    """
    Write an ENVI raster block by block.

    The binary file is allocated at its full size on open, so blocks are
    written positionally at their line offset.
    """

    def __init__(self, filepath: PathLike,
                 template_header: Optional[Dict[str, Any]] = None,
                 lines: Optional[int] = None,
                 samples: Optional[int] = None,
                 bands: int = 1,
                 dtype=np.float32,
                 description: str = ""):
        """
        Initialize writer.

        Args:
            filepath: Output binary path (header written next to it)
            template_header: Header of the raster the output is derived from;
                dimensions and geometry are copied from it
            lines: Number of lines (overrides template)
            samples: Number of samples (overrides template)
            bands: Number of output bands
            dtype: Output dtype
            description: Header description
        """
        template_header = template_header or {}
        self.filepath = _binary_path(Path(filepath))
        self.header_path = find_header_path(self.filepath)
        self.lines = int(lines if lines is not None else template_header['lines'])
        self.samples = int(samples if samples is not None else template_header['samples'])
        self.bands = int(bands)
        self.dtype = np.dtype(dtype)
        if self.dtype.type not in DTYPE_TO_ENVI:
            raise ConfigurationError(f"Unsupported ENVI dtype: {self.dtype}")

        self.header = {
            'description': description,
            'samples': self.samples,
            'lines': self.lines,
            'bands': self.bands,
            'header offset': 0,
            'file type': 'ENVI Standard',
            'data type': DTYPE_TO_ENVI[self.dtype.type],
            'interleave': 'bip',
            'byte order': 0,
        }
        for key in GEOMETRY_KEYS:
            if key in template_header:
                self.header[key] = template_header[key]

        self._row_bytes = self.samples * self.bands * self.dtype.itemsize
        self._file = open(self.filepath, 'w+b')
        self._file.truncate(self.lines * self._row_bytes)
        write_envi_header(self.header, self.header_path)

    @property
    def closed(self) -> bool:
        return self._file is None

    def write_block(self, data: np.ndarray, row_start: int):
        """
        Write a block of lines.

        Args:
            data: Pixel values for whole lines, (n_pixels,), (n_pixels, bands)
                or (rows, samples[, bands])
            row_start: Line offset of the block (0-based)
        """
        if self._file is None:
            raise ValueError(f"Writer already closed: {self.filepath}")
        data = np.asarray(data, dtype=self.dtype.newbyteorder('<'))
        values_per_row = self.samples * self.bands
        if data.size % values_per_row:
            raise ValueError(
                f"Block of {data.size} values is not a whole number of lines "
                f"({values_per_row} values per line)")
        n_rows = data.size // values_per_row
        if row_start < 0 or row_start + n_rows > self.lines:
            raise ValueError(f"Block rows {row_start}:{row_start + n_rows} outside 0:{self.lines}")

        self._file.seek(row_start * self._row_bytes)
        self._file.write(np.ascontiguousarray(data).tobytes())

    def set_descriptive_field(self, name: str, value: Any):
        """Set a header field, written on close (or immediately if closed)."""
        self.header[name] = value
        if self._file is None:
            write_envi_header(self.header, self.header_path)

    def close(self):
        if self._file is None:
            return
        self._file.close()
        self._file = None
        write_envi_header(self.header, self.header_path)
        logger.debug(f"Closed ENVI writer: {self.filepath} ({self.lines}x{self.samples}x{self.bands})")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def write_envi(filepath: PathLike, data: np.ndarray,
               wavelengths: Optional[Sequence[float]] = None,
               band_names: Optional[Sequence[str]] = None,
               description: str = "",
               interleave: str = "bil") -> Path:
    """
    Write a whole array to ENVI format.

    Args:
        filepath: Output path (without extension)
        data: 3D array (lines, samples, bands) or 2D (lines, samples)
        wavelengths: Band wavelengths in nm
        band_names: Band names
        description: File description
        interleave: Data interleave (bil, bip, bsq)

    Returns:
        Path to written binary file
    """
    filepath = Path(filepath)

    # Ensure 3D
    if data.ndim == 2:
        data = data[:, :, np.newaxis]

    lines, samples, bands = data.shape
    if data.dtype.type not in DTYPE_TO_ENVI:
        data = data.astype(np.float32)
    dtype_code = DTYPE_TO_ENVI[data.dtype.type]

    binary_path = _binary_path(filepath)
    data = data.astype(data.dtype.newbyteorder('<'), copy=False)

    if interleave == 'bil':
        out_data = np.ascontiguousarray(data.transpose(0, 2, 1))
    elif interleave == 'bip':
        out_data = np.ascontiguousarray(data)
    elif interleave == 'bsq':
        out_data = np.ascontiguousarray(data.transpose(2, 0, 1))
    else:
        raise ConfigurationError(f"Unknown interleave: {interleave}")

    out_data.tofile(str(binary_path))

    header = {
        'description': description,
        'samples': samples,
        'lines': lines,
        'bands': bands,
        'header offset': 0,
        'file type': 'ENVI Standard',
        'data type': dtype_code,
        'interleave': interleave,
        'byte order': 0,
    }
    if band_names is not None and len(band_names) == bands:
        header['band names'] = [str(b) for b in band_names]
    if wavelengths is not None and len(wavelengths) == bands:
        header['wavelength'] = [float(f"{w:.4f}") for w in wavelengths]
        header['wavelength units'] = 'Nanometers'

    write_envi_header(header, find_header_path(binary_path))

    logger.info(f"Wrote ENVI: {binary_path} ({lines}x{samples}x{bands})")
    return binary_path
