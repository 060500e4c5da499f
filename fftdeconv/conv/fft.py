"""In-place complex FFT on a convolution workspace.

The engine contract is:

- ``forward(z)``: ``z <- F z``, unnormalized (``torch.fft.fftn`` default);
- ``inverse(z, scale=True)``: ``z <- F^-1 z``; with ``scale=True`` the
  1/N factor is applied so that ``inverse(forward(z)) == z``, with
  ``scale=False`` the result is ``F* z`` (N times larger).

Convolution operators rely on the scaled inverse: the cyclic convolution
``F^-1 diag(F h) F x`` then needs no extra normalization when pulling
results out of the workspace.
"""

import math
from typing import Tuple

import torch

from ..exceptions import ConfigurationError

__all__ = ["FFTEngine"]


class FFTEngine:
    """FFT over all axes of complex tensors of a fixed shape and type.

    An engine belongs to a single operator. Like the workspace it
    transforms, it is not meant to be shared between threads.

    Args:
        shape: Dimensions of the transformed arrays.
        dtype: Complex element type (``torch.complex64`` or
            ``torch.complex128``).
    """

    def __init__(self, shape: Tuple[int, ...], dtype: torch.dtype):
        if dtype not in (torch.complex64, torch.complex128):
            raise ConfigurationError(f"FFT engine needs a complex type, got {dtype}")
        self.shape = tuple(int(n) for n in shape)
        self.dtype = dtype
        self.number = math.prod(self.shape)
        self._dims = tuple(range(len(self.shape)))

    def _check(self, z: torch.Tensor) -> None:
        if tuple(z.shape) != self.shape or z.dtype != self.dtype:
            raise ConfigurationError(
                f"FFT engine for {self.shape} {self.dtype} cannot transform "
                f"{tuple(z.shape)} {z.dtype}"
            )

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        """In-place forward transform."""
        self._check(z)
        z.copy_(torch.fft.fftn(z, dim=self._dims))
        return z

    def inverse(self, z: torch.Tensor, scale: bool = True) -> torch.Tensor:
        """In-place inverse transform, scaled by 1/N if ``scale``."""
        self._check(z)
        norm = "backward" if scale else "forward"
        z.copy_(torch.fft.ifftn(z, dim=self._dims, norm=norm))
        return z
