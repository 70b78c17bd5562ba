"""
regrider: Downsample gbpTrees and VELOCIraptor grids using FFT filtering

Cosmological density and velocity grids are smoothed with a frequency-domain
low-pass filter and then point-decimated to a lower, cubic resolution.
Filtering first suppresses the aliasing that plain decimation would cause.

Key features:
- A 3D grid engine that keeps one float32 allocation and moves it between
  real, FFT-padded and Hermitian half-spectrum layouts in place
- Real-to-complex FFTs via scipy.fft with a configurable thread count
- Real-space top-hat, k-space top-hat and Gaussian smoothing kernels
- Readers/writers for gbpTrees binary archives and VELOCIraptor HDF5 files
- A command line front end: python -m regrider
"""

__version__ = "0.1.0"

from regrider.errors import (
    RegridError,
    ConfigurationError,
    NotFoundError,
    ArchiveError,
    LayoutError,
    FilterError,
    DecimationError,
)

from regrider.layout import (
    Layout,
    offset,
    expand_to_padded,
    compact_to_real,
)

from regrider.transform import (
    TransformPlans,
    build_transform_plans,
)

from regrider.kernels import (
    FilterType,
    select_kernel,
    wavenumber_magnitude,
)

from regrider.grid import (
    Grid,
    GridGeometry,
    RealView,
    ComplexView,
)

from regrider.config import (
    InputFormat,
    RegridConfig,
)

from regrider.regrid import (
    smoothing_radius,
    regrid_field,
    run,
)

__all__ = [
    "__version__",
    # Errors
    "RegridError",
    "ConfigurationError",
    "NotFoundError",
    "ArchiveError",
    "LayoutError",
    "FilterError",
    "DecimationError",
    # Layouts
    "Layout",
    "offset",
    "expand_to_padded",
    "compact_to_real",
    # Transforms
    "TransformPlans",
    "build_transform_plans",
    # Filtering
    "FilterType",
    "select_kernel",
    "wavenumber_magnitude",
    # Grid engine
    "Grid",
    "GridGeometry",
    "RealView",
    "ComplexView",
    # Pipeline
    "InputFormat",
    "RegridConfig",
    "smoothing_radius",
    "regrid_field",
    "run",
]
