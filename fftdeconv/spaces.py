"""Shaped vector spaces.

A vector of the toolkit is a plain ``torch.Tensor``. A :class:`ShapedSpace`
describes the set such tensors must belong to (shape, element type and
device) so that operators and cost functions can check their arguments
once, at their public entry points.
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np
import torch

from .exceptions import ConfigurationError, IncorrectSpaceError

__all__ = ["ShapedSpace", "PRECISIONS", "SUPPORTED_RANKS", "as_dtype"]

# Real working type -> complex type of the FFT workspace.
PRECISIONS = {
    torch.float32: torch.complex64,
    torch.float64: torch.complex128,
}

SUPPORTED_RANKS = (1, 2, 3)

_NUMPY_TO_TORCH = {
    np.dtype(np.float32): torch.float32,
    np.dtype(np.float64): torch.float64,
}


def as_dtype(dtype: Union[torch.dtype, np.dtype, type, str]) -> torch.dtype:
    """Convert a NumPy/torch dtype specification into a ``torch.dtype``."""
    if isinstance(dtype, torch.dtype):
        return dtype
    try:
        npdtype = np.dtype(dtype)
    except TypeError as exc:
        raise ConfigurationError(f"Unknown element type: {dtype!r}") from exc
    if npdtype not in _NUMPY_TO_TORCH:
        raise ConfigurationError(
            f"Only float32 and float64 element types are supported, got {npdtype}"
        )
    return _NUMPY_TO_TORCH[npdtype]


@dataclass(frozen=True)
class ShapedSpace:
    """Space of real tensors with a given shape, element type and device.

    Attributes:
        shape: Dimensions of the tensors of the space.
        dtype: Element type (``torch.float32`` or ``torch.float64`` for
            spaces used by convolution operators).
        device: PyTorch device of the tensors.

    Example:
        ```python
        space = ShapedSpace((64, 64), torch.float64)
        x = space.create()          # zeros
        y = space.wrap(np_image)    # converted copy/view of a NumPy array
        space.check(y, "data")      # raises IncorrectSpaceError if wrong
        ```
    """

    shape: Tuple[int, ...]
    dtype: torch.dtype = torch.float64
    device: Union[str, torch.device] = "cpu"

    def __post_init__(self) -> None:
        """Normalize and validate fields."""
        if isinstance(self.shape, int):
            shape = (self.shape,)
        else:
            shape = tuple(int(n) for n in self.shape)
        if len(shape) == 0:
            raise ConfigurationError("A shaped space must have at least one dimension")
        if any(n < 1 for n in shape):
            raise ConfigurationError(f"Dimensions must be positive, got {shape}")
        object.__setattr__(self, "shape", shape)
        object.__setattr__(self, "dtype", as_dtype(self.dtype))
        object.__setattr__(self, "device", torch.device(self.device))

    @property
    def rank(self) -> int:
        """Number of dimensions."""
        return len(self.shape)

    @property
    def number(self) -> int:
        """Number of elements."""
        return math.prod(self.shape)

    def dimension(self, k: int) -> int:
        """Length of the k-th dimension."""
        return self.shape[k]

    def create(self, fill: float = 0.0) -> torch.Tensor:
        """Create a new vector of the space filled with ``fill``."""
        return torch.full(self.shape, fill, dtype=self.dtype, device=self.device)

    def wrap(self, arr: Union[np.ndarray, torch.Tensor, Sequence]) -> torch.Tensor:
        """Convert an array to a vector of the space.

        No copy is made when ``arr`` already belongs to the space.

        Raises:
            ConfigurationError: If the shape of ``arr`` is not that of the space.
        """
        if isinstance(arr, torch.Tensor):
            tensor = arr
        else:
            tensor = torch.as_tensor(np.asarray(arr))
        if tuple(tensor.shape) != self.shape:
            raise ConfigurationError(
                f"Array of shape {tuple(tensor.shape)} does not conform to "
                f"space shape {self.shape}"
            )
        return tensor.to(device=self.device, dtype=self.dtype)

    def belongs_to(self, x) -> bool:
        """Whether ``x`` is a vector of this space."""
        return (
            isinstance(x, torch.Tensor)
            and tuple(x.shape) == self.shape
            and x.dtype == self.dtype
            and x.device == self.device
        )

    def check(self, x, name: str = "vector") -> None:
        """Raise :class:`IncorrectSpaceError` unless ``x`` belongs to the space."""
        if not self.belongs_to(x):
            if isinstance(x, torch.Tensor):
                found = f"tensor {tuple(x.shape)} {x.dtype} on {x.device}"
            else:
                found = type(x).__name__
            raise IncorrectSpaceError(
                f"{name} does not belong to the space {self.shape} {self.dtype} "
                f"on {self.device} (got {found})"
            )
