"""fftdeconv - FFT-based convolution operators and costs for image restoration.

A library for modelling the blur of 1D, 2D and 3D images by cyclic
convolution with a point spread function (PSF) and for restoring them by
minimizing weighted least-squares costs.

The library is organized into four modules:

- **conv**: the convolution operator ``H`` (direct and adjoint) and the
  weighted convolution cost ``alpha * sum w (Hx - y)^2``
- **cost**: differentiable cost functions (weighted data, hyperbolic total
  variation, weighted sums) and a finite-difference gradient checker
- **deconvolution**: edge-preserving deconvolution driven by L-BFGS
- **utils**: padding, FFT-friendly sizes and timers

Example:
    >>> import torch
    >>> from fftdeconv import ShapedSpace, Convolution
    >>>
    >>> obj = ShapedSpace((64, 64), torch.float64)
    >>> dat = ShapedSpace((48, 48), torch.float64)
    >>> H = Convolution(obj, dat)
    >>> H.set_psf(psf, normalize=True)     # small, centered PSF
    >>> y = H(x)                           # blurred data region
    >>> z = H.adjoint(y)                   # back to the object space
"""

__version__ = "0.1.0"

# =============================================================================
# Spaces and errors
# =============================================================================
from .exceptions import (
    ConfigurationError,
    IncorrectSpaceError,
    InvalidWeightError,
    UninitializedOperatorError,
)
from .spaces import ShapedSpace

# =============================================================================
# Convolution
# =============================================================================
from .conv import (
    Convolution,
    FFTEngine,
    Job,
    State,
    WeightedConvolutionCost,
    build_convolution,
    make_fft_convolver,
    output_offset,
)

# =============================================================================
# Cost functions
# =============================================================================
from .cost import (
    CompositeCost,
    DifferentiableCostFunction,
    GradientChecker,
    HyperbolicTotalVariation,
    WeightedData,
)

# =============================================================================
# Restoration
# =============================================================================
from .deconvolution import (
    DeconvolutionResult,
    EdgePreservingConfig,
    solve_edge_preserving,
)

# =============================================================================
# Utilities
# =============================================================================
from .utils import best_dimension, pad_to_shape

__all__ = [
    # Version
    "__version__",
    # Spaces and errors
    "ShapedSpace",
    "ConfigurationError",
    "IncorrectSpaceError",
    "InvalidWeightError",
    "UninitializedOperatorError",
    # Convolution
    "Convolution",
    "FFTEngine",
    "Job",
    "State",
    "WeightedConvolutionCost",
    "build_convolution",
    "make_fft_convolver",
    "output_offset",
    # Cost functions
    "DifferentiableCostFunction",
    "CompositeCost",
    "WeightedData",
    "HyperbolicTotalVariation",
    "GradientChecker",
    # Restoration
    "DeconvolutionResult",
    "EdgePreservingConfig",
    "solve_edge_preserving",
    # Utilities
    "best_dimension",
    "pad_to_shape",
]
