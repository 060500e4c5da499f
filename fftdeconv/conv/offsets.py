"""Offset and centering arithmetic for convolution operators.

The result of a cyclic convolution has the shape of the object space. The
data space selects a box of that result; the position of its first sample
is the *offset*. All functions here work per axis and raise
:class:`~fftdeconv.exceptions.ConfigurationError` on inconsistent input.
"""

from typing import Optional, Sequence, Tuple

from ..exceptions import ConfigurationError
from ..utils.padding import center

__all__ = ["check_offsets", "output_offset", "psf_shifts"]


def _check_ranks(object_shape: Sequence[int], data_shape: Sequence[int]) -> int:
    rank = len(object_shape)
    if len(data_shape) != rank:
        raise ConfigurationError(
            f"Object and data spaces must have the same rank, got "
            f"{rank} and {len(data_shape)}"
        )
    return rank


def check_offsets(
    object_shape: Sequence[int],
    data_shape: Sequence[int],
    offset: Optional[Sequence[int]] = None,
) -> Tuple[int, ...]:
    """Validate (or compute) the per-axis offsets of the data region.

    Args:
        object_shape: Shape of the object space (convolution result).
        data_shape: Shape of the data space, at most ``object_shape``.
        offset: Position of the first data sample. If None, the data
            region is centered: ``object_dim // 2 - data_dim // 2``.

    Returns:
        Tuple of offsets, one per axis, with
        ``0 <= offset[k] <= object_shape[k] - data_shape[k]``.
    """
    rank = _check_ranks(object_shape, data_shape)
    if offset is not None and len(offset) != rank:
        raise ConfigurationError(
            f"Offset must have {rank} coordinate(s), got {len(offset)}"
        )
    offsets = []
    for k in range(rank):
        obj_dim = int(object_shape[k])
        dat_dim = int(data_shape[k])
        if dat_dim > obj_dim:
            raise ConfigurationError(
                f"Data dimension ({dat_dim}) larger than object dimension "
                f"({obj_dim}) along axis {k}"
            )
        if offset is None:
            off = obj_dim // 2 - dat_dim // 2
        else:
            off = int(offset[k])
            if off < 0 or off > obj_dim - dat_dim:
                raise ConfigurationError(
                    f"Offset {off} out of range [0, {obj_dim - dat_dim}] along axis {k}"
                )
        offsets.append(off)
    return tuple(offsets)


def output_offset(
    object_shape: Sequence[int],
    data_shape: Sequence[int],
    offset: Optional[Sequence[int]] = None,
) -> int:
    """Flat index of the first data sample in the object-space workspace.

    The workspace is stored in row-major (C) order, the last axis varying
    fastest, so the flat offset is ``sum(offset[k] * stride[k])`` with
    ``stride[k] = prod(object_shape[k+1:])``.

    Example:
        ```python
        output_offset((8, 10), (4, 4))          # centered: 2*10 + 3 = 23
        output_offset((8, 10), (4, 4), (0, 6))  # 6
        ```
    """
    offsets = check_offsets(object_shape, data_shape, offset)
    total = 0
    stride = 1
    for k in reversed(range(len(offsets))):
        total += stride * offsets[k]
        stride *= int(object_shape[k])
    return total


def psf_shifts(
    object_shape: Sequence[int],
    psf_shape: Sequence[int],
    psf_center: Optional[Sequence[int]] = None,
) -> Tuple[int, ...]:
    """Cyclic shifts moving the PSF center to index 0 after centered padding.

    Padding places the PSF at ``margin = object_dim // 2 - psf_dim // 2``;
    its center sample then sits at ``margin + psf_center[k]`` and rolling
    by ``-(margin + psf_center[k])`` brings it to the origin.

    Args:
        object_shape: Shape the PSF is padded to.
        psf_shape: Shape of the PSF.
        psf_center: Index of the central PSF sample. Defaults to the
            geometric center ``psf_dim // 2``.

    Raises:
        ConfigurationError: On rank mismatch, wrong number of center
            coordinates or a PSF larger than the object space.
    """
    rank = len(object_shape)
    if len(psf_shape) != rank:
        raise ConfigurationError(
            f"PSF rank ({len(psf_shape)}) does not match object rank ({rank})"
        )
    if psf_center is None:
        psf_center = center(psf_shape)
    elif len(psf_center) != rank:
        raise ConfigurationError(
            f"PSF center must have {rank} coordinate(s), got {len(psf_center)}"
        )
    shifts = []
    for k in range(rank):
        psf_dim = int(psf_shape[k])
        obj_dim = int(object_shape[k])
        if psf_dim > obj_dim:
            raise ConfigurationError(
                f"PSF too large: dimension {psf_dim} exceeds object dimension "
                f"{obj_dim} along axis {k}"
            )
        margin = obj_dim // 2 - psf_dim // 2
        shifts.append(-(margin + int(psf_center[k])))
    return tuple(shifts)
