"""
Steps shared by the archive regridders: filter scale, the per-field
filter-then-decimate pass, and output files that only appear on success.
"""

import logging
import os
import stat
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Sequence, Union

import numpy as np

from regrider.grid import Grid
from regrider.kernels import FilterType

if TYPE_CHECKING:
    from regrider.config import RegridConfig

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_FACTOR = 0.5


def smoothing_radius(
    box_size: Sequence[float], new_dim: int, factor: float = DEFAULT_RADIUS_FACTOR
) -> float:
    """
    Filter scale for a target resolution: a fraction of the new cell size.

    Example:
        >>> smoothing_radius((100.0, 100.0, 100.0), 50)
        1.0
    """
    return float(box_size[0]) / float(new_dim) * factor


def regrid_field(
    grid: Grid,
    values: np.ndarray,
    n_cell: Sequence[int],
    new_n_cell: Sequence[int],
    filter_type: Union[FilterType, str] = FilterType.REAL_TOP_HAT,
    radius: float = 0.0,
) -> np.ndarray:
    """
    Smooth one field and decimate it to the new dimensions.

    The grid is reset to n_cell first, since a previous field may have left
    it decimated.

    Args:
        grid: Grid allocated for at least n_cell
        values: Real-space samples at n_cell
        n_cell: Input cells per axis
        new_n_cell: Output cells per axis
        filter_type: Smoothing kernel
        radius: Filter scale

    Returns:
        Copy of the decimated samples (shape: new_n_cell, float32)
    """
    grid.update_properties(n_cell)
    grid.load(values)
    _log_first_elements(grid)

    grid.filter(filter_type, radius)
    _log_first_elements(grid)

    return grid.decimate(new_n_cell).data.copy()


def run(config: "RegridConfig") -> None:
    """Regrid the archive described by a config."""
    from regrider.config import InputFormat
    from regrider.gbptrees import regrid_gbptrees
    from regrider.velociraptor import regrid_velociraptor

    regrid = {
        InputFormat.GBPTREES: regrid_gbptrees,
        InputFormat.VELOCIRAPTOR: regrid_velociraptor,
    }[config.input_format]

    regrid(
        config.input_path,
        config.output_path,
        config.new_dim,
        filter_type=config.filter_type,
        radius_factor=config.radius_factor,
        n_threads=config.n_threads,
    )


@contextmanager
def atomic_output(path: Union[str, Path]) -> Iterator[Path]:
    """
    Yield a temporary path that replaces `path` only if the block succeeds.

    On any exception the temporary file is removed and `path` is untouched.
    The replacement keeps the mode of an existing `path`; a new file gets
    the usual 0o666 masked by the process umask.
    """
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        yield tmp_path
        os.chmod(tmp_path, _output_mode(path))
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def _output_mode(path: Path) -> int:
    if path.exists():
        return stat.S_IMODE(path.stat().st_mode)
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def _log_first_elements(grid: Grid) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("First 10 elements = %s", grid.real_view().data.reshape(-1)[:10])
