"""
Frequency-domain smoothing kernels.

Each kernel is a stateless function acting in place on a block of half-spectrum
coefficients, given the matching block of kR = |k|·R values. The kernel is
selected once per filter call; the per-coefficient loop never branches on the
filter type.

Kernels:
- real_top_hat: Fourier transform of a uniform ball of radius R
- k_top_hat: sharp cut-off sphere in k-space, volume-matched to the ball
- gaussian: Gaussian window, volume-matched to the ball
"""

import logging
from enum import Enum
from typing import Callable, Dict, Sequence, Union

import numpy as np

from regrider.errors import FilterError

logger = logging.getLogger(__name__)

# Below this kR the real-space top-hat window is left at its limit of 1
REAL_TOP_HAT_MIN_KR = 1e-4
# (9π/2)^(-1/3): equates the k-space top-hat volume with the real-space ball
K_TOP_HAT_SCALE = 0.413566994
# Equates the Gaussian volume with the real-space ball
GAUSSIAN_SCALE = 0.643


class FilterType(str, Enum):
    """Smoothing kernel applied before decimation."""

    REAL_TOP_HAT = "real_top_hat"
    K_TOP_HAT = "k_top_hat"
    GAUSSIAN = "gaussian"


Kernel = Callable[[np.ndarray, np.ndarray], None]


def real_top_hat(coefficients: np.ndarray, kR: np.ndarray) -> None:
    """
    Multiply by W(kR) = 3·(sin(kR)/kR³ − cos(kR)/kR²).

    Coefficients with kR ≤ 1e-4, including the mean mode, are not touched.
    """
    mask = kR > REAL_TOP_HAT_MIN_KR
    x = kR[mask]
    window = 3.0 * (np.sin(x) / x**3 - np.cos(x) / x**2)
    coefficients[mask] = coefficients[mask] * window


def k_top_hat(coefficients: np.ndarray, kR: np.ndarray) -> None:
    """Zero every coefficient with 0.413566994·kR > 1."""
    coefficients[kR * K_TOP_HAT_SCALE > 1.0] = 0.0


def gaussian(coefficients: np.ndarray, kR: np.ndarray) -> None:
    """Multiply by exp(−(0.643·kR)²/2)."""
    scaled = kR * GAUSSIAN_SCALE
    coefficients *= np.exp(-scaled * scaled / 2.0)


KERNELS: Dict[FilterType, Kernel] = {
    FilterType.REAL_TOP_HAT: real_top_hat,
    FilterType.K_TOP_HAT: k_top_hat,
    FilterType.GAUSSIAN: gaussian,
}


def select_kernel(filter_type: Union[FilterType, str]) -> Kernel:
    """
    Look up the kernel function for a filter type.

    Args:
        filter_type: FilterType member or its string value

    Returns:
        In-place kernel function (coefficients, kR) -> None

    Raises:
        FilterError: If the filter type is not defined
    """
    try:
        return KERNELS[FilterType(filter_type)]
    except (ValueError, KeyError):
        logger.error("Filter type %r is undefined", filter_type)
        raise FilterError(f"Filter type {filter_type!r} is undefined") from None


def wavenumbers(n: int, length: float, fold: bool = True) -> np.ndarray:
    """
    Angular wavenumbers of the FFT bins along one axis.

    Bins above n//2 are folded back to negative frequencies. The fastest axis
    of a half spectrum is not folded (fold=False) and only runs 0..n//2.

    Args:
        n: Number of cells along the axis
        length: Physical extent of the axis
        fold: Fold the upper half of the bins to negative frequencies

    Returns:
        float64 array of length n (fold=True) or n//2+1 (fold=False)
    """
    delta_k = 2.0 * np.pi / length
    middle = n // 2
    if not fold:
        return np.arange(middle + 1, dtype=np.float64) * delta_k

    bins = np.arange(n)
    return np.where(bins > middle, bins - n, bins).astype(np.float64) * delta_k


def wavenumber_magnitude(
    dimensions: Sequence[int], physical_size: Sequence[float]
) -> np.ndarray:
    """
    |k| for every cell of the half spectrum (shape: [n0, n1, n2//2+1]).
    """
    n0, n1, n2 = dimensions
    L0, L1, L2 = physical_size
    k0 = wavenumbers(n0, L0)[:, np.newaxis, np.newaxis]
    k1 = wavenumbers(n1, L1)[np.newaxis, :, np.newaxis]
    k2 = wavenumbers(n2, L2, fold=False)[np.newaxis, np.newaxis, :]
    return np.sqrt(k0**2 + k1**2 + k2**2)
