"""
VELOCIraptor grid archives (HDF5).

Relevant structure:

    /Header                attrs: BoxSize (3 floats)
    /Parameters            attrs: DensityGrids:grid_dim (text), Snapshots:grid_dim
    /PartType1/Grids/Vx    float[n, n, n]
    /PartType1/Grids/Vy
    /PartType1/Grids/Vz
    /PartType1/Grids/Density

Everything else in the input file is copied to the output unchanged.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import h5py
import numpy as np

from regrider.errors import ArchiveError, NotFoundError
from regrider.grid import Grid, decimation_stride
from regrider.kernels import FilterType
from regrider.regrid import (
    DEFAULT_RADIUS_FACTOR,
    atomic_output,
    regrid_field,
    smoothing_radius,
)

logger = logging.getLogger(__name__)

HEADER_GROUP = "Header"
PARAMETERS_GROUP = "Parameters"
PARTICLE_GROUP = "PartType1"
GRIDS_GROUP = "Grids"
GRID_DIM_ATTRS = ("DensityGrids:grid_dim", "Snapshots:grid_dim")
DATASET_NAMES = ("Vx", "Vy", "Vz", "Density")

PathLike = Union[str, Path]


def read_grid_dim(f: h5py.File) -> int:
    """
    Grid dimension from /Parameters DensityGrids:grid_dim (stored as text).

    Raises:
        NotFoundError: If the group or attribute is missing
        ArchiveError: If the value is not a positive integer
    """
    value = _get_attr(f, PARAMETERS_GROUP, GRID_DIM_ATTRS[0])
    if isinstance(value, np.ndarray):
        value = value.reshape(-1)[0]
    if isinstance(value, (bytes, np.bytes_)):
        value = value.decode("ascii")
    try:
        dim = int(str(value).strip())
    except ValueError:
        raise ArchiveError(f"{GRID_DIM_ATTRS[0]} is not an integer: {value!r}") from None
    if dim <= 0:
        raise ArchiveError(f"{GRID_DIM_ATTRS[0]} must be positive, got {dim}")
    return dim


def read_box_size(f: h5py.File) -> Tuple[float, float, float]:
    """
    Box size from /Header BoxSize; a scalar applies to all three axes.

    Raises:
        NotFoundError: If the group or attribute is missing
        ArchiveError: If fewer than 3 sizes are given or any is not positive
    """
    value = np.atleast_1d(np.asarray(_get_attr(f, HEADER_GROUP, "BoxSize"), dtype=np.float64))
    if value.size == 1:
        value = np.repeat(value, 3)
    if value.size < 3 or not np.all(np.isfinite(value[:3]) & (value[:3] > 0)):
        raise ArchiveError(f"Invalid BoxSize: {value.tolist()}")
    return tuple(float(L) for L in value[:3])


def read_dataset(f: h5py.File, name: str) -> np.ndarray:
    """
    Load one grid from /PartType1/Grids.

    Raises:
        NotFoundError: If the dataset is missing
    """
    path = f"/{PARTICLE_GROUP}/{GRIDS_GROUP}/{name}"
    if path not in f:
        raise NotFoundError(f"Dataset {path} not found in {f.filename}")
    return f[path][()]


def regrid_velociraptor(
    path_in: PathLike,
    path_out: PathLike,
    new_dim: int,
    filter_type: FilterType = FilterType.REAL_TOP_HAT,
    radius_factor: float = DEFAULT_RADIUS_FACTOR,
    n_threads: Optional[int] = None,
) -> None:
    """
    Filter and decimate Vx, Vy, Vz and Density to new_dim³ cells.

    Every other group, dataset and attribute is copied. No output is written
    if any exception is raised.

    Args:
        path_in: VELOCIraptor file to read
        path_out: File to create; holds a copy of the input with the grids replaced
        new_dim: Target cells per axis
        filter_type: Smoothing kernel applied before decimation
        radius_factor: Filter scale as a fraction of the new cell size
        n_threads: Worker threads (default: all)

    Raises:
        NotFoundError: If a required group, attribute or dataset is missing
        ArchiveError: If grid_dim, BoxSize or a dataset shape is invalid
        DecimationError: If new_dim does not divide the input dimension
    """
    logger.info("Regridding VELOCIraptor file %s", path_in)
    new_n_cell = (new_dim, new_dim, new_dim)

    with h5py.File(path_in, "r") as fin, atomic_output(path_out) as tmp_path:
        dim = read_grid_dim(fin)
        n_cell = (dim, dim, dim)
        decimation_stride(n_cell, new_n_cell)
        box_size = read_box_size(fin)
        logger.info("n_cell = %s --> %s", list(n_cell), list(new_n_cell))
        logger.info("box_size = %s", ", ".join(f"{L:.2f}" for L in box_size))

        missing = [
            name for name in DATASET_NAMES
            if f"/{PARTICLE_GROUP}/{GRIDS_GROUP}/{name}" not in fin
        ]
        if missing:
            raise NotFoundError(f"Datasets {missing} not found in {path_in}")
        for name in DATASET_NAMES:
            shape = fin[f"/{PARTICLE_GROUP}/{GRIDS_GROUP}/{name}"].shape
            if shape != n_cell:
                raise ArchiveError(f"Dataset {name} has shape {shape}, expected {n_cell}")

        grid = Grid(n_cell, box_size, n_threads=n_threads)
        radius = smoothing_radius(box_size, new_dim, radius_factor)

        with h5py.File(tmp_path, "w") as fout:
            _copy_everything_but_grids(fin, fout)
            grids_out = fout.require_group(f"/{PARTICLE_GROUP}/{GRIDS_GROUP}")

            for name in DATASET_NAMES:
                logger.info("Reading grid %s...", name)
                values = read_dataset(fin, name)
                sampled = regrid_field(grid, values, n_cell, new_n_cell, filter_type, radius)
                logger.info("Writing subsampled grid %s...", name)
                grids_out.create_dataset(name, data=sampled.astype(np.float32))

            params_out = fout.require_group(PARAMETERS_GROUP)
            for attr in GRID_DIM_ATTRS:
                _write_grid_dim(params_out, attr, new_dim)

    logger.info("Wrote %s", path_out)


def _get_attr(f: h5py.File, group: str, attr: str):
    if group not in f:
        raise NotFoundError(f"Group /{group} not found in {f.filename}")
    attrs = f[group].attrs
    if attr not in attrs:
        raise NotFoundError(f"Attribute {attr} not found in /{group} of {f.filename}")
    return attrs[attr]


def _copy_attrs(src, dst) -> None:
    for key, value in src.attrs.items():
        dst.attrs[key] = value


def _copy_everything_but_grids(fin: h5py.File, fout: h5py.File) -> None:
    """Copy the input file, skipping the datasets that will be regridded."""
    _copy_attrs(fin, fout)
    for name in fin:
        if name != PARTICLE_GROUP:
            fin.copy(fin[name], fout, name=name)

    if PARTICLE_GROUP not in fin:
        return
    particles_in = fin[PARTICLE_GROUP]
    particles_out = fout.create_group(PARTICLE_GROUP)
    _copy_attrs(particles_in, particles_out)
    for name in particles_in:
        if name != GRIDS_GROUP:
            fin.copy(particles_in[name], particles_out, name=name)

    if GRIDS_GROUP not in particles_in:
        return
    grids_in = particles_in[GRIDS_GROUP]
    grids_out = particles_out.create_group(GRIDS_GROUP)
    _copy_attrs(grids_in, grids_out)
    for name in grids_in:
        if name not in DATASET_NAMES:
            fin.copy(grids_in[name], grids_out, name=name)


def _write_grid_dim(group: h5py.Group, attr: str, new_dim: int) -> None:
    """Set a grid_dim attribute, keeping text attributes as text."""
    existing = group.attrs.get(attr)
    if isinstance(existing, np.ndarray):
        existing = existing.reshape(-1)[0] if existing.size else None

    if isinstance(existing, (bytes, np.bytes_)):
        group.attrs[attr] = np.bytes_(str(new_dim))
    elif isinstance(existing, str):
        group.attrs[attr] = str(new_dim)
    else:
        group.attrs[attr] = np.int32(new_dim)
