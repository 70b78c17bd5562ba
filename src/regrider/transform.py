"""
In-place real-to-complex transform plans bound to a fixed grid shape.

A 3D r2c transform is a real transform along the fastest axis followed by
complex transforms along the other two. Each pass is run slab by slab over
the grid's padded storage: a slab of the outer axis only ever overwrites the
padded rows it has just read, so the half spectrum lands on the same memory
as the real samples and the only temporaries are one slab in size.

A plan records the slab partition for each pass and is only valid for the
dimensions it was built for; the owning Grid rebuilds its plans whenever its
dimensions change. Plans are built through a plan factory so that a
different backend can be swapped in without touching the grid engine.
"""

import os
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
import scipy.fft

Dimensions = Tuple[int, int, int]
Slabs = Tuple[Tuple[int, int], ...]

# Upper bound on slabs per pass; temporaries are at most 1/SLAB_COUNT of the grid
SLAB_COUNT = 8


def default_thread_count() -> int:
    """Number of hardware threads available to this process."""
    try:
        return max(1, len(os.sched_getaffinity(0)))
    except AttributeError:
        return max(1, os.cpu_count() or 1)


def partition(n: int, parts: int) -> Slabs:
    """
    Split range(n) into at most `parts` contiguous, non-empty (start, stop) pairs.

    Example:
        >>> partition(5, 2)
        ((0, 2), (2, 5))
    """
    parts = max(1, min(n, parts))
    bounds = np.linspace(0, n, parts + 1).astype(int)
    return tuple((int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b > a)


@dataclass(frozen=True)
class TransformPlans:
    """
    Forward (r2c) and inverse (c2r) 3D transforms for one grid shape.

    Both run in place on a flat float32 buffer holding at least the padded
    layout of `dimensions`. Neither direction normalises: the grid divides by
    the number of cells after the forward transform, so forward followed by
    inverse reproduces the input.

    Attributes:
        dimensions: Logical grid shape (n0, n1, n2) the plans are bound to
        n_threads: Worker threads used by each 1D pass
        outer_slabs: Partition of axis 0 for the fastest- and middle-axis passes
        middle_slabs: Partition of axis 1 for the outer-axis pass
    """

    dimensions: Dimensions
    n_threads: int
    outer_slabs: Slabs
    middle_slabs: Slabs

    @property
    def key(self) -> Tuple[Dimensions, int]:
        return (self.dimensions, self.n_threads)

    @property
    def padded_shape(self) -> Dimensions:
        n0, n1, n2 = self.dimensions
        return (n0, n1, 2 * (n2 // 2 + 1))

    @property
    def complex_shape(self) -> Dimensions:
        n0, n1, n2 = self.dimensions
        return (n0, n1, n2 // 2 + 1)

    def forward(self, buffer: np.ndarray) -> None:
        """
        Unnormalised real-to-complex transform, in place.

        Args:
            buffer: Flat float32 buffer with samples in padded order; holds the
                half spectrum (complex64, shape complex_shape) on return
        """
        padded, spectrum = self._views(buffer)
        n2 = self.dimensions[2]

        for a, b in self.outer_slabs:
            block = scipy.fft.rfft(padded[a:b, :, :n2], axis=2, workers=self.n_threads)
            spectrum[a:b] = scipy.fft.fft(block, axis=1, workers=self.n_threads)

        for c, d in self.middle_slabs:
            spectrum[:, c:d] = scipy.fft.fft(spectrum[:, c:d], axis=0, workers=self.n_threads)

    def inverse(self, buffer: np.ndarray) -> None:
        """
        Unnormalised complex-to-real transform, in place.

        Args:
            buffer: Flat float32 buffer holding the half spectrum; holds the
                real samples in padded order on return
        """
        padded, spectrum = self._views(buffer)
        n2 = self.dimensions[2]

        # norm="forward" leaves the inverse passes unscaled
        for c, d in self.middle_slabs:
            spectrum[:, c:d] = scipy.fft.ifft(
                spectrum[:, c:d], axis=0, norm="forward", workers=self.n_threads
            )

        for a, b in self.outer_slabs:
            block = scipy.fft.ifft(spectrum[a:b], axis=1, norm="forward", workers=self.n_threads)
            padded[a:b, :, :n2] = scipy.fft.irfft(
                block, n=n2, axis=2, norm="forward", workers=self.n_threads
            )

    def _views(self, buffer: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        n0, n1, row = self.padded_shape
        n_padded = n0 * n1 * row
        if buffer.ndim != 1 or buffer.dtype != np.float32 or buffer.size < n_padded:
            raise ValueError(
                f"Plan for {self.dimensions} needs a flat float32 buffer of at least "
                f"{n_padded} values, got {buffer.dtype} {buffer.shape}"
            )
        padded = buffer[:n_padded].reshape(self.padded_shape)
        return padded, padded.view(np.complex64)


PlanFactory = Callable[[Dimensions, int], TransformPlans]


def build_transform_plans(
    dimensions: Dimensions, n_threads: Optional[int] = None
) -> TransformPlans:
    """
    Build forward and inverse plans for a grid shape.

    Args:
        dimensions: Logical grid shape (n0, n1, n2)
        n_threads: Worker threads (default: all hardware threads)

    Returns:
        TransformPlans bound to the given shape and thread count
    """
    if n_threads is None:
        n_threads = default_thread_count()
    if n_threads < 1:
        raise ValueError(f"Thread count must be positive, got {n_threads}")
    n0, n1, n2 = (int(n) for n in dimensions)
    return TransformPlans(
        dimensions=(n0, n1, n2),
        n_threads=n_threads,
        outer_slabs=partition(n0, SLAB_COUNT),
        middle_slabs=partition(n1, SLAB_COUNT),
    )
