"""Shared utilities: padding, FFT-friendly sizes and timers."""

from .fourier import best_dimension
from .padding import center, pad_to_shape, region_slices
from .timer import Timer

__all__ = [
    # Fourier utilities
    "best_dimension",
    # Padding
    "center",
    "pad_to_shape",
    "region_slices",
    # Timing
    "Timer",
]
