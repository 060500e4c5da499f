"""FFT-based convolution operators and the weighted convolution cost."""

from .convolution import (
    Convolution,
    Job,
    State,
    build_convolution,
    check_configuration,
    make_fft_convolver,
)
from .fft import FFTEngine
from .offsets import check_offsets, output_offset, psf_shifts
from .weighted import WeightedConvolutionCost

__all__ = [
    "Convolution",
    "Job",
    "State",
    "build_convolution",
    "check_configuration",
    "make_fft_convolver",
    "FFTEngine",
    "check_offsets",
    "output_offset",
    "psf_shifts",
    "WeightedConvolutionCost",
]
