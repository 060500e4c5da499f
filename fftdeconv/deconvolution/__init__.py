"""Image restoration built on the convolution cost.

The restoration problem is formulated as:
    y = H(x) + noise

where:
    - y: observed image (data space)
    - x: unknown object (object space, possibly larger than the data)
    - H: convolution with the PSF restricted to the data region

Example:
    >>> from fftdeconv.deconvolution import EdgePreservingConfig, solve_edge_preserving
    >>> config = EdgePreservingConfig(mu=0.02, epsilon=0.01, num_iter=100)
    >>> result = solve_edge_preserving(blurred, psf, config)
    >>> restored = result.restored[result.metadata["region"]]
"""

from .base import DeconvolutionResult
from .edge_preserving import EdgePreservingConfig, default_object_shape, solve_edge_preserving

__all__ = [
    "DeconvolutionResult",
    "EdgePreservingConfig",
    "default_object_shape",
    "solve_edge_preserving",
]
