"""
Apply hybrid models to ENVI rasters block by block.

For each target variable, in turn:

    1. open the reflectance raster (and the mask, if any) for block reading
    2. open two ENVI writers: <raster>_<target> (mean) and
       <raster>_<target>_STD (ensemble std)
    3. for each block of lines:
         - select pixels: mask == 1, or first selected band > 0 without mask
         - keep the target's bands, divide by the reflectance scale factor
         - predict selected pixels, NaN elsewhere (all NaN, no prediction,
           when nothing is selected)
         - write mean and std at the block's line offset
    4. close the writers and set ``band names = {<target>}`` in both headers

Only one block of pixels is held in memory at a time.
"""

import logging
import math
import numpy as np
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from prosail_hybrid.errors import ConfigurationError, MissingResourceError
from prosail_hybrid.inversion.lut import BandSelection, resolve_band_indices
from prosail_hybrid.inversion.models import HybridModelBundle
from prosail_hybrid.inversion.prediction import predict_ensemble
from prosail_hybrid.utils.envi_io import ENVIBlockReader, ENVIBlockWriter
from prosail_hybrid.utils.memory import MemoryManager

logger = logging.getLogger(__name__)

DEFAULT_SCALE_FACTOR = 10000
STD_SUFFIX = 'STD'

ProgressCallback = Callable[[int, int, str], None]


class ProgressCounter:
    """
    Monotonic step counter for a raster pass.

    One step per ensemble member per block, whether or not the block had
    selected pixels.
    """

    def __init__(self, total: int, callback: Optional[ProgressCallback] = None):
        self.total = int(total)
        self.step = 0
        self.callback = callback
        self._next_log = 0.1

    def tick(self, target: str, n: int = 1):
        for _ in range(n):
            self.step += 1
            if self.callback is not None:
                self.callback(self.step, self.total, target)
        if self.total and self.step / self.total >= self._next_log:
            logger.debug(f"Hybrid inversion on raster: {100 * self.step / self.total:.0f}% ({target})")
            while self._next_log <= self.step / self.total:
                self._next_log += 0.1


@dataclass
class RasterInversionResult:
    """Output (mean, std) paths per target, and failures in best-effort mode."""
    outputs: Dict[str, Tuple[Path, Path]] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed


def wavelength_names(wavelengths: Sequence[float]) -> List[str]:
    """Band names as written by ProsailSimulator, e.g. 560.0 -> '560'."""
    return [f"{float(w):g}" for w in wavelengths]


def output_paths(raster_path: Path, output_dir: Path, target: str) -> Tuple[Path, Path]:
    base = f"{raster_path.name}_{target}"
    return output_dir / base, output_dir / f"{base}_{STD_SUFFIX}"


def _open_mask(mask_path, lines: int, samples: int) -> Optional[ENVIBlockReader]:
    if mask_path is None:
        return None
    try:
        mask = ENVIBlockReader(mask_path)
    except MissingResourceError as exc:
        logger.warning(f"Mask file does not exist: {mask_path} ({exc}). "
                       "Processing all image with automatic mask")
        return None
    m_lines, m_samples, _ = mask.shape
    if (m_lines, m_samples) != (lines, samples):
        mask.close()
        raise ConfigurationError(
            f"Mask is {m_lines}x{m_samples}, raster is {lines}x{samples}")
    return mask


def _resolve_selections(bundle: HybridModelBundle,
                        band_selection: Mapping[str, BandSelection],
                        raster_band_names: Sequence[str]) -> Dict[str, List[int]]:
    selections = {}
    for target in bundle:
        ensemble = bundle[target]
        selection = band_selection.get(target, ensemble.band_names)
        indices = resolve_band_indices(selection, raster_band_names)
        if len(indices) != ensemble.n_features:
            raise ConfigurationError(
                f"'{target}' selects {len(indices)} raster bands but its models "
                f"were trained on {ensemble.n_features}")
        selections[target] = indices
    return selections


def _invert_target(raster_path: Path, target: str, ensemble, band_indices: List[int],
                   output_dir: Path, mask_path, scale_factor: float,
                   memory: MemoryManager, block_rows: int,
                   progress: ProgressCounter) -> Tuple[Path, Path]:
    logger.info(f"Computing {target}")
    mean_path, std_path = output_paths(raster_path, output_dir, target)

    reader = ENVIBlockReader(raster_path)
    lines, samples, bands = reader.shape
    mask = None
    mean_writer = std_writer = None
    try:
        mask = _open_mask(mask_path, lines, samples)
        mean_writer = ENVIBlockWriter(mean_path, reader.header,
                                      description=f"Hybrid inversion of {target}: ensemble mean")
        std_writer = ENVIBlockWriter(std_path, reader.header,
                                     description=f"Hybrid inversion of {target}: ensemble std")

        for row_start, row_end in memory.iterate_chunks((lines, samples, bands),
                                                        chunk_size=block_rows):
            n_rows = row_end - row_start
            block = reader.read_block(row_start, n_rows)

            if mask is not None:
                selected = mask.read_block(row_start, n_rows)[:, 0] == 1
            else:
                # Non-positive reflectance in the first selected band is no-data
                selected = block[:, band_indices[0]] > 0

            mean_full = np.full(block.shape[0], np.nan, dtype=np.float32)
            std_full = np.full(block.shape[0], np.nan, dtype=np.float32)

            if np.any(selected):
                values = block[selected][:, band_indices].astype(float) / scale_factor
                result = predict_ensemble(ensemble, values,
                                          on_member=lambda i: progress.tick(target))
                mean_full[selected] = result.mean
                std_full[selected] = result.std
            else:
                progress.tick(target, len(ensemble))

            mean_writer.write_block(mean_full, row_start)
            std_writer.write_block(std_full, row_start)
    finally:
        reader.close()
        if mask is not None:
            mask.close()
        for writer in (mean_writer, std_writer):
            if writer is not None:
                writer.close()

    mean_writer.set_descriptive_field('band names', [target])
    std_writer.set_descriptive_field('band names', [target])
    logger.info(f"Wrote {mean_path.name} and {std_path.name}")
    return mean_path, std_path


def apply_to_raster(raster_path: Union[str, Path],
                    bundle: HybridModelBundle,
                    output_dir: Union[str, Path],
                    band_selection: Optional[Mapping[str, BandSelection]] = None,
                    raster_band_names: Optional[Sequence[str]] = None,
                    mask_path: Optional[Union[str, Path]] = None,
                    scale_factor: float = DEFAULT_SCALE_FACTOR,
                    block_rows: Optional[int] = None,
                    progress: Optional[ProgressCallback] = None,
                    fail_fast: bool = True,
                    memory_limit_gb: Optional[float] = None,
                    wavelength_band_names: bool = False) -> RasterInversionResult:
    """
    Estimate every target of a model bundle over a reflectance raster.

    Args:
        raster_path: ENVI reflectance raster
        bundle: Trained hybrid models
        output_dir: Directory for the mean/std ENVI outputs
        band_selection: Target -> raster band names/indices; defaults to the
            band names each ensemble was trained on
        raster_band_names: Names of the raster bands; defaults to the
            header 'band names' (or wavelengths)
        mask_path: ENVI mask, 1 = process; missing file falls back to the
            automatic mask with a warning
        scale_factor: Raster value of reflectance 1.0
        block_rows: Lines per block; computed from available memory if None
        progress: Called as progress(step, total, target)
        fail_fast: Stop at the first failing target; otherwise log it,
            continue and report it in the result
        memory_limit_gb: Memory limit used to size blocks
        wavelength_band_names: Name raster bands by their header wavelengths
            (e.g. '560') instead of the header 'band names'

    Returns:
        RasterInversionResult
    """
    raster_path = Path(raster_path)
    if not raster_path.exists():
        raise MissingResourceError(f"Raster not found: {raster_path}")
    if scale_factor <= 0:
        raise ConfigurationError(f"Scale factor must be positive, got {scale_factor}")
    if len(bundle) == 0:
        raise ConfigurationError("Model bundle is empty")

    with ENVIBlockReader(raster_path) as probe:
        lines, samples, bands = probe.shape
        raster_dtype = probe.dtype
        if wavelength_band_names and raster_band_names is None:
            if probe.wavelengths is None:
                raise ConfigurationError(f"No wavelengths in the header of {raster_path.name}")
            raster_band_names = wavelength_names(probe.wavelengths)
        if raster_band_names is None:
            raster_band_names = probe.band_names
        if raster_band_names is None and probe.wavelengths is not None:
            raster_band_names = wavelength_names(probe.wavelengths)
    if raster_band_names is None:
        raster_band_names = [f"band_{i + 1}" for i in range(bands)]
    if len(raster_band_names) != bands:
        raise ConfigurationError(
            f"{len(raster_band_names)} band names given for a {bands}-band raster")

    selections = _resolve_selections(bundle, band_selection or {}, raster_band_names)

    memory = MemoryManager(limit_gb=memory_limit_gb)
    if block_rows is None:
        block_rows = memory.calculate_chunk_size((lines, samples, bands), dtype=raster_dtype,
                                                 n_models=max(len(bundle[t]) for t in bundle))
    block_rows = int(block_rows)
    if block_rows < 1:
        raise ConfigurationError(f"block_rows must be >= 1, got {block_rows}")
    n_blocks = math.ceil(lines / block_rows)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    logger.info(f"The following biophysical variables will be computed: {list(bundle.targets)}")
    logger.info(f"  Raster: {raster_path.name} ({lines}x{samples}x{bands}), "
                f"{n_blocks} blocks of {block_rows} lines")

    counter = ProgressCounter(sum(n_blocks * len(bundle[t]) for t in bundle), progress)
    result = RasterInversionResult()

    for target in bundle:
        try:
            with memory.processing_context(f"inversion of {target}"):
                result.outputs[target] = _invert_target(
                    raster_path, target, bundle[target], selections[target], output_dir,
                    mask_path, scale_factor, memory, block_rows, counter)
        except Exception as exc:
            if fail_fast:
                raise
            logger.error(f"Failed to compute {target}: {exc}")
            result.failed[target] = str(exc)

    logger.info("Processing completed")
    return result
