"""
gbpTrees grid archives.

Binary layout (little-endian, no padding):

    int32[3]    n_cell
    float64[3]  box_size
    int32       n_grids
    int32       ma_scheme
    n_grids × {
        char[32]              name (NUL padded ASCII)
        float32[n_logical]    values, row-major (k fastest)
    }
"""

import logging
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Optional, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

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

HEADER_DTYPE = np.dtype(
    [
        ("n_cell", "<i4", (3,)),
        ("box_size", "<f8", (3,)),
        ("n_grids", "<i4"),
        ("ma_scheme", "<i4"),
    ]
)
NAME_LENGTH = 32
VALUE_DTYPE = np.dtype("<f4")

PathLike = Union[str, Path]
Record = Tuple[str, np.ndarray]


class GbpTreesHeader(BaseModel):
    """Header shared by every grid in a gbpTrees archive."""

    model_config = ConfigDict(frozen=True)

    n_cell: Tuple[int, int, int]
    box_size: Tuple[float, float, float]
    n_grids: int = Field(ge=0)
    ma_scheme: int

    @field_validator("n_cell")
    @classmethod
    def validate_n_cell(cls, v: Tuple[int, int, int]) -> Tuple[int, int, int]:
        if any(n <= 0 for n in v):
            raise ValueError(f"n_cell must be positive, got {v}")
        return v

    @field_validator("box_size")
    @classmethod
    def validate_box_size(cls, v: Tuple[float, float, float]) -> Tuple[float, float, float]:
        if any(not np.isfinite(L) or L <= 0 for L in v):
            raise ValueError(f"box_size must be positive, got {v}")
        return v

    @property
    def n_logical(self) -> int:
        n0, n1, n2 = self.n_cell
        return n0 * n1 * n2

    @classmethod
    def from_bytes(cls, data: bytes) -> "GbpTreesHeader":
        """
        Parse a header.

        Raises:
            NotFoundError: If fewer than HEADER_DTYPE.itemsize bytes are given
            ArchiveError: If the header holds invalid values
        """
        if len(data) < HEADER_DTYPE.itemsize:
            raise NotFoundError(
                f"Truncated gbpTrees header: {len(data)} of {HEADER_DTYPE.itemsize} bytes"
            )
        raw = np.frombuffer(data[: HEADER_DTYPE.itemsize], dtype=HEADER_DTYPE)[0]
        try:
            return cls(
                n_cell=tuple(int(n) for n in raw["n_cell"]),
                box_size=tuple(float(L) for L in raw["box_size"]),
                n_grids=int(raw["n_grids"]),
                ma_scheme=int(raw["ma_scheme"]),
            )
        except ValidationError as e:
            errors = "; ".join(err["msg"] for err in e.errors())
            raise ArchiveError(f"Invalid gbpTrees header: {errors}") from e

    def to_bytes(self) -> bytes:
        raw = np.zeros(1, dtype=HEADER_DTYPE)
        raw["n_cell"] = self.n_cell
        raw["box_size"] = self.box_size
        raw["n_grids"] = self.n_grids
        raw["ma_scheme"] = self.ma_scheme
        return raw.tobytes()

    def with_n_cell(self, n_cell: Tuple[int, int, int]) -> "GbpTreesHeader":
        return self.model_copy(update={"n_cell": tuple(n_cell)})


def encode_name(name: str) -> bytes:
    encoded = name.encode("ascii")
    if len(encoded) >= NAME_LENGTH:
        raise ValueError(f"Grid name {name!r} longer than {NAME_LENGTH - 1} characters")
    return encoded.ljust(NAME_LENGTH, b"\0")


def decode_name(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("ascii")


def read_header(fh: BinaryIO) -> GbpTreesHeader:
    return GbpTreesHeader.from_bytes(fh.read(HEADER_DTYPE.itemsize))


def read_record(fh: BinaryIO, header: GbpTreesHeader) -> Record:
    """
    Read the next name + payload pair.

    Raises:
        NotFoundError: If the file ends before the record is complete
    """
    raw_name = fh.read(NAME_LENGTH)
    if len(raw_name) < NAME_LENGTH:
        raise NotFoundError("gbpTrees archive ended before the next grid name")
    name = decode_name(raw_name)

    n_bytes = header.n_logical * VALUE_DTYPE.itemsize
    data = fh.read(n_bytes)
    if len(data) < n_bytes:
        raise NotFoundError(
            f"gbpTrees grid {name!r} is truncated: {len(data) // VALUE_DTYPE.itemsize} "
            f"of {header.n_logical} values"
        )
    return name, np.frombuffer(data, dtype=VALUE_DTYPE).reshape(header.n_cell)


def iter_records(fh: BinaryIO, header: GbpTreesHeader) -> Iterator[Record]:
    """Yield (name, values) for every grid following the header."""
    for _ in range(header.n_grids):
        yield read_record(fh, header)


def read_grid(path: PathLike, name: str) -> Tuple[GbpTreesHeader, np.ndarray]:
    """
    Load one named grid from an archive.

    Raises:
        NotFoundError: If no grid has that name
    """
    with open(path, "rb") as fh:
        header = read_header(fh)
        for record_name, values in iter_records(fh, header):
            if record_name == name:
                return header, values
    raise NotFoundError(f"Grid {name!r} not found in {path}")


def write_gbptrees(path: PathLike, header: GbpTreesHeader, records: Iterable[Record]) -> None:
    """
    Write a complete archive.

    The number of records must match header.n_grids and each payload must
    have header.n_logical values.
    """
    n_written = 0
    with open(path, "wb") as fh:
        fh.write(header.to_bytes())
        for name, values in records:
            _write_record(fh, header, name, values)
            n_written += 1

    if n_written != header.n_grids:
        raise ValueError(f"Header declares {header.n_grids} grids, wrote {n_written}")


def _write_record(fh: BinaryIO, header: GbpTreesHeader, name: str, values: np.ndarray) -> None:
    values = np.asarray(values, dtype=VALUE_DTYPE)
    if values.size != header.n_logical:
        raise ValueError(
            f"Grid {name!r} has {values.size} values, header expects {header.n_logical}"
        )
    fh.write(encode_name(name))
    fh.write(values.tobytes(order="C"))


def regrid_gbptrees(
    path_in: PathLike,
    path_out: PathLike,
    new_dim: int,
    filter_type: FilterType = FilterType.REAL_TOP_HAT,
    radius_factor: float = DEFAULT_RADIUS_FACTOR,
    n_threads: Optional[int] = None,
) -> GbpTreesHeader:
    """
    Filter and decimate every grid of an archive to new_dim³ cells.

    box_size, n_grids, ma_scheme, grid names and grid order are preserved.
    The output file only appears once every grid has been written.

    Args:
        path_in: Archive to read
        path_out: Archive to create
        new_dim: Target cells per axis
        filter_type: Smoothing kernel applied before decimation
        radius_factor: Filter scale as a fraction of the new cell size
        n_threads: Worker threads (default: all)

    Returns:
        Header of the written archive

    Raises:
        NotFoundError: If the input archive is truncated
        ArchiveError: If the input header is invalid
        DecimationError: If new_dim does not divide the input dimensions;
            raised before any grid is read
    """
    logger.info("Regridding gbpTrees file %s", path_in)
    new_n_cell = (new_dim, new_dim, new_dim)

    with open(path_in, "rb") as fin, atomic_output(path_out) as tmp_path:
        header = read_header(fin)
        decimation_stride(header.n_cell, new_n_cell)
        logger.info("n_cell = %s --> %s", list(header.n_cell), list(new_n_cell))
        logger.info("box_size = %s", list(header.box_size))
        logger.info("n_grids = %d", header.n_grids)
        logger.info("ma_scheme = %d", header.ma_scheme)

        new_header = header.with_n_cell(new_n_cell)
        grid = Grid(header.n_cell, header.box_size, n_threads=n_threads)
        radius = smoothing_radius(header.box_size, new_dim, radius_factor)

        with open(tmp_path, "wb") as fout:
            fout.write(new_header.to_bytes())
            for name, values in iter_records(fin, header):
                logger.info("Grid %s", name)
                sampled = regrid_field(
                    grid, values, header.n_cell, new_n_cell, filter_type, radius
                )
                logger.info("Writing subsampled grid %s...", name)
                _write_record(fout, new_header, name, sampled)

    logger.info("Wrote %s", path_out)
    return new_header
