"""
Memory layouts of a 3D grid buffer and the in-place permutations between them.

A grid of shape (n0, n1, n2) can be stored three ways in one flat buffer:

- real: plain row-major order, n0*n1*n2 values
- padded: row-major with each fastest-axis row widened to 2*(n2//2+1) values,
  so an in-place real-to-complex FFT can write its output over the same storage
- complex_herm: the Hermitian half spectrum, n0*n1*(n2//2+1) complex values

All offsets are row-major; for cubic grids they agree with the historical
gbpTrees indexing.
"""

from enum import Enum
from typing import Sequence, Union

import numpy as np

from regrider.errors import LayoutError


class Layout(str, Enum):
    """Indexing convention of a grid buffer."""

    REAL = "real"
    PADDED = "padded"
    COMPLEX_HERMITIAN = "complex_herm"


def padded_row_length(n_last: int) -> int:
    """Number of real slots per fastest-axis row in the padded layout."""
    return 2 * (n_last // 2 + 1)


def hermitian_row_length(n_last: int) -> int:
    """Number of complex values per fastest-axis row of the half spectrum."""
    return n_last // 2 + 1


def as_layout(layout: Union[Layout, str]) -> Layout:
    """
    Coerce a layout tag to a Layout member.

    Raises:
        LayoutError: If the tag names no known layout
    """
    try:
        return Layout(layout)
    except ValueError:
        raise LayoutError(f"Unrecognised layout: {layout!r}") from None


def offset(
    i: int,
    j: int,
    k: int,
    layout: Union[Layout, str],
    shape: Sequence[int],
) -> int:
    """
    Linear buffer offset of cell (i, j, k) in a given layout.

    Args:
        i: Index along the slowest axis
        j: Index along the middle axis
        k: Index along the fastest axis
        layout: Target indexing convention
        shape: Logical grid shape (n0, n1, n2)

    Returns:
        Offset into the flat buffer (in complex units for COMPLEX_HERMITIAN)

    Raises:
        LayoutError: If the layout tag is not recognised

    Example:
        >>> offset(1, 2, 3, Layout.PADDED, (4, 4, 4))
        39
    """
    layout = as_layout(layout)
    _, n1, n2 = shape

    if layout is Layout.REAL:
        row = n2
    elif layout is Layout.PADDED:
        row = padded_row_length(n2)
    else:
        row = hermitian_row_length(n2)

    return k + row * (j + n1 * i)


def expand_to_padded(buffer: np.ndarray, shape: Sequence[int]) -> None:
    """
    Permute real-ordered samples into padded order, in place.

    The padded offset of a cell is never smaller than its real offset, so
    walking rows from last to first never overwrites a row that has not
    been read yet.

    Args:
        buffer: Flat float buffer with room for the padded layout
        shape: Logical grid shape (n0, n1, n2)
    """
    n0, n1, n2 = shape
    row = padded_row_length(n2)
    _check_capacity(buffer, n0 * n1 * row)

    for r in range(n0 * n1 - 1, -1, -1):
        buffer[r * row : r * row + n2] = buffer[r * n2 : (r + 1) * n2]


def compact_to_real(buffer: np.ndarray, shape: Sequence[int]) -> None:
    """
    Permute padded-ordered samples back into real order, in place.

    Inverse of expand_to_padded; rows are walked first to last.

    Args:
        buffer: Flat float buffer holding padded-ordered samples
        shape: Logical grid shape (n0, n1, n2)
    """
    n0, n1, n2 = shape
    row = padded_row_length(n2)
    _check_capacity(buffer, n0 * n1 * row)

    for r in range(n0 * n1):
        buffer[r * n2 : (r + 1) * n2] = buffer[r * row : r * row + n2]


def _check_capacity(buffer: np.ndarray, required: int) -> None:
    if buffer.ndim != 1 or buffer.size < required:
        raise LayoutError(
            f"Buffer of shape {buffer.shape} cannot hold {required} padded values"
        )
