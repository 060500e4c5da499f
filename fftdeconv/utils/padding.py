"""Array padding utilities for Fourier-based operations."""

from typing import Sequence, Tuple, Union

import numpy as np
import torch

__all__ = ["pad_to_shape", "center", "region_slices"]

ArrayLike = Union[np.ndarray, torch.Tensor]


def center(shape: Sequence[int]) -> Tuple[int, ...]:
    """Index of the geometric center of an array: ``dim // 2`` per axis."""
    return tuple(int(n) // 2 for n in shape)


def region_slices(offsets: Sequence[int], shape: Sequence[int]) -> Tuple[slice, ...]:
    """Slices selecting a box of ``shape`` starting at ``offsets``."""
    return tuple(slice(off, off + n) for off, n in zip(offsets, shape))


def pad_to_shape(
    img: ArrayLike,
    output_shape: Tuple[int, ...],
    mode: str = "center",
) -> ArrayLike:
    """Zero-pad an array to a larger shape.

    Supports two padding modes:
    - "center": the input is placed so that its geometric center
      (``dim // 2``) lands on the geometric center of the output, that is
      at offset ``out // 2 - in // 2`` along each axis.
    - "corner": the input starts at index (0, 0, ...), padding adds zeros
      at the high-index end of each dimension.

    Works on NumPy arrays and PyTorch tensors; the result has the same
    kind, dtype (and device) as the input.

    Args:
        img: N-dimensional input array.
        output_shape: Desired output shape (must be >= input shape in all dims).
        mode: Either "center" or "corner".

    Returns:
        Zero-padded array of the specified output shape.

    Raises:
        ValueError: If output_shape is smaller than input in any dimension.

    Example:
        >>> psf = np.ones((3, 3)) / 9
        >>> padded = pad_to_shape(psf, (8, 8))  # psf occupies [3:6, 3:6]
    """
    input_shape = tuple(img.shape)
    output_shape = tuple(int(n) for n in output_shape)
    ndim = len(input_shape)

    if len(output_shape) != ndim:
        raise ValueError(
            f"Output shape dimensions ({len(output_shape)}) must match "
            f"input dimensions ({ndim})"
        )

    for i, (in_s, out_s) in enumerate(zip(input_shape, output_shape)):
        if out_s < in_s:
            raise ValueError(
                f"Output size ({out_s}) cannot be smaller than input size "
                f"({in_s}) in dimension {i}"
            )

    if mode == "corner":
        offsets = (0,) * ndim
    elif mode == "center":
        offsets = tuple(out_s // 2 - in_s // 2 for in_s, out_s in zip(input_shape, output_shape))
    else:
        raise ValueError(f"Unknown padding mode: {mode}. Use 'center' or 'corner'.")

    if isinstance(img, torch.Tensor):
        result = torch.zeros(output_shape, dtype=img.dtype, device=img.device)
    else:
        result = np.zeros(output_shape, dtype=img.dtype)
    result[region_slices(offsets, input_shape)] = img
    return result
