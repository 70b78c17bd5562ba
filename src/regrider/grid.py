"""
3D scalar grid engine: buffer ownership, layout bookkeeping, FFTs, filtering
and decimation.

This module provides:
- GridGeometry: Pydantic model of grid dimensions, physical size and derived counts
- Grid: owns a single float32 allocation sized for the padded layout and moves
  it between real, padded and half-spectrum representations
- RealView / ComplexView: layout-tagged handles returned by each operation

Typical use:

    >>> grid = Grid((64, 64, 64), (100.0, 100.0, 100.0))
    >>> grid.load(density)
    >>> grid.filter(FilterType.REAL_TOP_HAT, R=0.78)
    >>> coarse = grid.decimate((32, 32, 32)).data
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from regrider.errors import DecimationError, FilterError, LayoutError
from regrider.kernels import FilterType, Kernel, select_kernel, wavenumber_magnitude
from regrider.layout import (
    Layout,
    compact_to_real,
    expand_to_padded,
    hermitian_row_length,
    offset as layout_offset,
    padded_row_length,
)
from regrider.transform import (
    Dimensions,
    PlanFactory,
    TransformPlans,
    build_transform_plans,
    default_thread_count,
)

logger = logging.getLogger(__name__)


class GridGeometry(BaseModel):
    """
    Immutable shape of a grid and the sizes derived from it.

    Attributes:
        dimensions: Number of cells along each axis (n0, n1, n2), all > 0
        physical_size: Extent of the domain along each axis, all > 0

    Example:
        >>> geometry = GridGeometry(dimensions=(8, 8, 8), physical_size=(10.0, 10.0, 10.0))
        >>> geometry.padded_count
        640
    """

    model_config = ConfigDict(frozen=True)

    dimensions: Tuple[int, int, int] = Field(description="Cells per axis")
    physical_size: Tuple[float, float, float] = Field(description="Domain extent per axis")

    @field_validator("dimensions")
    @classmethod
    def validate_dimensions(cls, v: Tuple[int, int, int]) -> Tuple[int, int, int]:
        if any(n <= 0 for n in v):
            raise ValueError(f"Grid dimensions must be positive, got {v}")
        return v

    @field_validator("physical_size")
    @classmethod
    def validate_physical_size(cls, v: Tuple[float, float, float]) -> Tuple[float, float, float]:
        if any(not np.isfinite(L) or L <= 0 for L in v):
            raise ValueError(f"Physical size must be positive, got {v}")
        return v

    @property
    def logical_count(self) -> int:
        n0, n1, n2 = self.dimensions
        return n0 * n1 * n2

    @property
    def padded_count(self) -> int:
        n0, n1, n2 = self.dimensions
        return n0 * n1 * padded_row_length(n2)

    @property
    def complex_count(self) -> int:
        n0, n1, n2 = self.dimensions
        return n0 * n1 * hermitian_row_length(n2)

    @property
    def padded_shape(self) -> Dimensions:
        n0, n1, n2 = self.dimensions
        return (n0, n1, padded_row_length(n2))

    @property
    def complex_shape(self) -> Dimensions:
        n0, n1, n2 = self.dimensions
        return (n0, n1, hermitian_row_length(n2))


@dataclass(frozen=True)
class RealView:
    """
    Real-space samples of a grid, valid until the grid's layout or shape changes.

    Warning:
        `data` aliases the grid buffer. Copy it before the next grid operation
        if the values are needed afterwards.
    """

    grid: "Grid"
    generation: int

    @property
    def data(self) -> np.ndarray:
        """Real samples (shape: grid.dimensions, float32)."""
        self.grid._check_view(self.generation, Layout.REAL)
        return self.grid._real_array()


@dataclass(frozen=True)
class ComplexView:
    """
    Half spectrum of a grid, valid until reverse() or any other grid change.
    """

    grid: "Grid"
    generation: int

    @property
    def data(self) -> np.ndarray:
        """Hermitian half spectrum (shape: [n0, n1, n2//2+1], complex64)."""
        self.grid._check_view(self.generation, Layout.COMPLEX_HERMITIAN)
        return self.grid._complex_array()


class Grid:
    """
    A 3D scalar field stored in one reusable allocation.

    The allocation is sized for the padded layout of the construction
    dimensions and is never resized. `update_properties` and `decimate`
    repurpose it for smaller grids and rebuild the transform plans, which are
    only valid for the dimensions they were created with.

    Args:
        dimensions: Cells per axis (n0, n1, n2)
        physical_size: Domain extent per axis
        n_threads: Threads for transforms and kernel loops (default: all)
        plan_factory: Builds TransformPlans for a (dimensions, n_threads) pair
    """

    def __init__(
        self,
        dimensions: Sequence[int],
        physical_size: Sequence[float],
        n_threads: Optional[int] = None,
        plan_factory: PlanFactory = build_transform_plans,
    ):
        self.geometry = GridGeometry(
            dimensions=tuple(int(n) for n in dimensions),
            physical_size=tuple(float(L) for L in physical_size),
        )
        self.n_threads = default_thread_count() if n_threads is None else int(n_threads)
        if self.n_threads < 1:
            raise ValueError(f"Thread count must be positive, got {self.n_threads}")
        self._plan_factory = plan_factory
        self._buffer: Optional[np.ndarray] = np.zeros(
            self.geometry.padded_count, dtype=np.float32
        )
        self._capacity = self.geometry.padded_count
        self._layout = Layout.REAL
        self._generation = 0
        self._plans: Optional[TransformPlans] = None
        self._regenerate_plans()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def dimensions(self) -> Dimensions:
        return self.geometry.dimensions

    @property
    def physical_size(self) -> Tuple[float, float, float]:
        return self.geometry.physical_size

    @property
    def logical_count(self) -> int:
        return self.geometry.logical_count

    @property
    def padded_count(self) -> int:
        return self.geometry.padded_count

    @property
    def complex_count(self) -> int:
        return self.geometry.complex_count

    @property
    def capacity(self) -> int:
        """Number of float32 slots in the allocation."""
        return self._capacity

    @property
    def layout(self) -> Layout:
        return self._layout

    @property
    def plans(self) -> TransformPlans:
        self._check_open()
        return self._plans

    @property
    def buffer(self) -> np.ndarray:
        """The raw flat allocation (all `capacity` slots)."""
        self._check_open()
        return self._buffer

    # -------------------------------------------------------------------------
    # Buffer lifecycle
    # -------------------------------------------------------------------------

    def update_properties(self, dimensions: Sequence[int]) -> None:
        """
        Reinterpret the allocation as a grid of new dimensions.

        The allocation is not resized, so the padded layout of the new
        dimensions must fit in it. Plans are rebuilt whenever the dimensions
        differ. Padded samples are compacted under the old dimensions first,
        so the grid is left in real layout.

        Args:
            dimensions: New cells per axis

        Raises:
            ValueError: If the dimensions are not positive or do not fit
            LayoutError: If the buffer holds a spectrum
        """
        self._check_open()
        geometry = GridGeometry(
            dimensions=tuple(int(n) for n in dimensions), physical_size=self.physical_size
        )
        if geometry.padded_count > self._capacity:
            raise ValueError(
                f"Dimensions {geometry.dimensions} need {geometry.padded_count} values, "
                f"allocation holds {self._capacity}"
            )
        if self._layout is Layout.COMPLEX_HERMITIAN:
            raise LayoutError("update_properties() called on a grid that holds a spectrum")
        self.compact_to_real()

        changed = geometry.dimensions != self.dimensions
        self.geometry = geometry
        if changed:
            self._regenerate_plans()
        self._set_layout(Layout.REAL)

    def close(self) -> None:
        """Release the buffer and plans. Further use raises LayoutError."""
        self._buffer = None
        self._plans = None
        self._generation += 1

    def copy(self) -> "Grid":
        """Deep copy with its own buffer and its own transform plans."""
        self._check_open()
        other = Grid.__new__(Grid)
        other.geometry = self.geometry
        other.n_threads = self.n_threads
        other._plan_factory = self._plan_factory
        other._buffer = self._buffer.copy()
        other._capacity = self._capacity
        other._layout = self._layout
        other._generation = 0
        other._plans = None
        other._regenerate_plans()
        return other

    def __copy__(self) -> "Grid":
        return self.copy()

    def __deepcopy__(self, memo) -> "Grid":
        return self.copy()

    def __repr__(self) -> str:
        return (
            f"Grid(dimensions={self.dimensions}, physical_size={self.physical_size}, "
            f"layout={self._layout.value})"
        )

    # -------------------------------------------------------------------------
    # Data access
    # -------------------------------------------------------------------------

    def offset(self, i: int, j: int, k: int, layout: Union[Layout, str]) -> int:
        """Buffer offset of cell (i, j, k) for the current dimensions."""
        return layout_offset(i, j, k, layout, self.dimensions)

    def load(self, values: np.ndarray) -> RealView:
        """
        Fill the grid with real-space samples.

        Args:
            values: Array of shape `dimensions` or flat of length `logical_count`

        Returns:
            RealView of the loaded samples
        """
        self._check_open()
        values = np.asarray(values)
        if values.shape not in (self.dimensions, (self.logical_count,)):
            raise ValueError(
                f"Values of shape {values.shape} do not match grid dimensions {self.dimensions}"
            )
        self._buffer[: self.logical_count] = values.reshape(-1)
        self._set_layout(Layout.REAL)
        return self.real_view()

    def values(self) -> np.ndarray:
        """Copy of the real-space samples (shape: dimensions)."""
        return self.real_view().data.copy()

    def real_view(self) -> RealView:
        """
        Raises:
            LayoutError: If the buffer is not in real layout
        """
        self._require(Layout.REAL)
        return RealView(self, self._generation)

    def complex_view(self) -> ComplexView:
        """
        Raises:
            LayoutError: If the buffer does not hold a spectrum
        """
        self._require(Layout.COMPLEX_HERMITIAN)
        return ComplexView(self, self._generation)

    def wavenumber_magnitude(self) -> np.ndarray:
        """|k| of every half-spectrum cell (shape: [n0, n1, n2//2+1])."""
        return wavenumber_magnitude(self.dimensions, self.physical_size)

    # -------------------------------------------------------------------------
    # Layout conversion
    # -------------------------------------------------------------------------

    def expand_to_padded(self) -> None:
        """Reorder real samples into padded order (no-op if already padded)."""
        self._check_open()
        if self._layout is Layout.PADDED:
            return
        self._require(Layout.REAL)
        expand_to_padded(self._buffer, self.dimensions)
        self._set_layout(Layout.PADDED)

    def compact_to_real(self) -> None:
        """Reorder padded samples into real order (no-op if already real)."""
        self._check_open()
        if self._layout is Layout.REAL:
            return
        self._require(Layout.PADDED)
        compact_to_real(self._buffer, self.dimensions)
        self._set_layout(Layout.REAL)

    # -------------------------------------------------------------------------
    # Transforms
    # -------------------------------------------------------------------------

    def forward(self) -> ComplexView:
        """
        Real-to-complex FFT in place, scaled by 1/logical_count.

        The physical volume factor is not applied; the inverse
        transform is unnormalised, so forward() followed by reverse() returns
        the original samples.

        Returns:
            ComplexView of the half spectrum

        Raises:
            LayoutError: If the buffer already holds a spectrum
        """
        self._check_open()
        if self._layout is Layout.COMPLEX_HERMITIAN:
            raise LayoutError("forward() called on a grid that already holds a spectrum")
        self.expand_to_padded()
        self._plans.forward(self._buffer)

        spectrum = self._complex_array()
        n_logical = np.float32(self.logical_count)
        self._for_each_slab(lambda a, b: np.divide(spectrum[a:b], n_logical, out=spectrum[a:b]))

        self._set_layout(Layout.COMPLEX_HERMITIAN)
        return self.complex_view()

    def reverse(self) -> RealView:
        """
        Complex-to-real FFT in place, then compact back to real order.

        Returns:
            RealView of the real-space samples

        Raises:
            LayoutError: If the buffer does not hold a spectrum
        """
        self._require(Layout.COMPLEX_HERMITIAN)
        self._plans.inverse(self._buffer)
        self._set_layout(Layout.PADDED)
        self.compact_to_real()
        return self.real_view()

    # -------------------------------------------------------------------------
    # Filtering
    # -------------------------------------------------------------------------

    def apply_kernel(self, filter_type: Union[FilterType, str], R: float) -> ComplexView:
        """
        Multiply the current half spectrum by a smoothing kernel of scale R.

        Args:
            filter_type: Kernel to apply
            R: Filter scale in the units of physical_size

        Returns:
            ComplexView of the filtered spectrum

        Raises:
            FilterError: If the filter type is undefined or R is invalid
            LayoutError: If the buffer does not hold a spectrum
        """
        kernel = select_kernel(filter_type)
        _check_radius(R)
        self._require(Layout.COMPLEX_HERMITIAN)
        self._convolve(kernel, R)
        return self.complex_view()

    def filter(self, filter_type: Union[FilterType, str], R: float) -> RealView:
        """
        Smooth the grid: forward FFT, kernel multiplication, inverse FFT.

        The kernel is resolved before anything is transformed, so an unknown
        filter type leaves the grid untouched.

        Args:
            filter_type: Kernel to apply
            R: Filter scale in the units of physical_size

        Returns:
            RealView of the smoothed samples

        Raises:
            FilterError: If the filter type is undefined or R is invalid
            LayoutError: If the buffer holds a spectrum
        """
        kernel = select_kernel(filter_type)
        _check_radius(R)
        self._check_open()
        if self._layout is Layout.COMPLEX_HERMITIAN:
            raise LayoutError("filter() called on a grid that already holds a spectrum")

        logger.info("Filtering grid: doing forward fft...")
        self.forward()
        logger.info("Filtering grid: applying convolution...")
        self._convolve(kernel, R)
        logger.info("Filtering grid: doing inverse fft...")
        return self.reverse()

    def _convolve(self, kernel: Kernel, R: float) -> None:
        spectrum = self._complex_array()
        k_mag = self.wavenumber_magnitude()

        def apply(a: int, b: int) -> None:
            kR = np.broadcast_to(k_mag[a:b] * R, spectrum[a:b].shape)
            kernel(spectrum[a:b], kR)

        self._for_each_slab(apply)

    # -------------------------------------------------------------------------
    # Decimation
    # -------------------------------------------------------------------------

    def decimate(self, new_dimensions: Sequence[int]) -> RealView:
        """
        Keep every n-th sample along each axis (point decimation).

        Filter first: decimation does no averaging and aliases anything above
        the new Nyquist frequency.

        Args:
            new_dimensions: Target cells per axis; each must divide the current one

        Returns:
            RealView of the decimated grid

        Raises:
            DecimationError: If a target dimension is not a positive divisor
            LayoutError: If the buffer holds a spectrum
        """
        self._check_open()
        new_dimensions = tuple(int(n) for n in new_dimensions)
        stride = decimation_stride(self.dimensions, new_dimensions)
        if self._layout is Layout.COMPLEX_HERMITIAN:
            raise LayoutError("decimate() called on a grid that holds a spectrum")
        self.compact_to_real()

        logger.info("Subsampling grid %s -> %s...", self.dimensions, new_dimensions)
        s0, s1, s2 = stride
        sampled = self._real_array()[::s0, ::s1, ::s2].copy()
        self._buffer[: sampled.size] = sampled.reshape(-1)

        self.update_properties(new_dimensions)
        return self.real_view()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _regenerate_plans(self) -> None:
        self._plans = self._plan_factory(self.dimensions, self.n_threads)
        logger.debug("Built transform plans for %s with %d threads", *self._plans.key)

    def _set_layout(self, layout: Layout) -> None:
        self._layout = layout
        self._generation += 1

    def _check_open(self) -> None:
        if self._buffer is None:
            raise LayoutError("Grid has been closed")

    def _require(self, layout: Layout) -> None:
        self._check_open()
        if self._layout is not layout:
            raise LayoutError(
                f"Operation requires {layout.value} layout, grid is {self._layout.value}"
            )

    def _check_view(self, generation: int, layout: Layout) -> None:
        self._require(layout)
        if generation != self._generation:
            raise LayoutError("View is stale: the grid has changed since it was issued")

    def _real_array(self) -> np.ndarray:
        return self._buffer[: self.logical_count].reshape(self.dimensions)

    def _complex_array(self) -> np.ndarray:
        return (
            self._buffer[: self.padded_count]
            .view(np.complex64)
            .reshape(self.geometry.complex_shape)
        )

    def _for_each_slab(self, fn: Callable[[int, int], object]) -> None:
        """Run fn(start, stop) over disjoint slabs of the outer axis."""
        n0 = self.dimensions[0]
        n_workers = min(self.n_threads, n0)
        if n_workers <= 1:
            fn(0, n0)
            return

        bounds = np.linspace(0, n0, n_workers + 1).astype(int)
        with ThreadPoolExecutor(max_workers=n_workers) as ex:
            futures = [ex.submit(fn, a, b) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]
            for future in futures:
                future.result()


def _check_radius(R: float) -> None:
    if not np.isfinite(R) or R < 0:
        raise FilterError(f"Filter scale must be a non-negative number, got {R}")


def decimation_stride(old: Sequence[int], new: Sequence[int]) -> Dimensions:
    """
    Per-axis stride that point-decimates `old` to `new`.

    Raises:
        DecimationError: If a target dimension is not a positive divisor
    """
    old, new = tuple(old), tuple(new)
    if len(new) != 3:
        raise DecimationError(f"Expected 3 target dimensions, got {new}")
    for n_old, n_new in zip(old, new):
        if n_new <= 0 or n_new > n_old or n_old % n_new != 0:
            raise DecimationError(
                f"Cannot decimate {old} to {new}: each target dimension must evenly divide "
                f"the current one"
            )
    return tuple(n_old // n_new for n_old, n_new in zip(old, new))
