"""FFT-based cyclic convolution operator.

The convolution operator writes

    H = R . F^-1 . diag(F h) . F . S

with F the discrete Fourier transform, h the point spread function (PSF)
zero-padded and rolled so that its center is at index 0, S the operator
which copies an object-space vector into the complex workspace and R the
operator which selects the data-space region of the result. The adjoint is

    H* = S* . F^-1 . diag(conj(F h)) . F . R*

where R* writes a data-space vector at the data region of an otherwise
zero workspace and S* takes the real part of the whole workspace.

The work is split into ``push`` (S or R*), ``convolve`` (the Fourier
part) and ``pull`` (R or S*) so that other components, such as the
weighted convolution cost, can operate on the workspace between the
steps.
"""

import enum
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np
import torch

from ..exceptions import ConfigurationError, UninitializedOperatorError
from ..spaces import PRECISIONS, SUPPORTED_RANKS, ShapedSpace
from ..utils.padding import pad_to_shape, region_slices
from ..utils.timer import Timer
from .fft import FFTEngine
from .offsets import check_offsets, psf_shifts

__all__ = [
    "Job",
    "State",
    "Convolution",
    "build_convolution",
    "check_configuration",
    "make_fft_convolver",
]

ArrayLike = Union[np.ndarray, torch.Tensor]


class Job(enum.Enum):
    """How to apply a linear operator."""

    DIRECT = "direct"
    ADJOINT = "adjoint"
    INVERSE = "inverse"
    INVERSE_ADJOINT = "inverse_adjoint"


class State(enum.Enum):
    """Life cycle of a convolution operator."""

    UNINITIALIZED = "uninitialized"  # no PSF yet
    READY = "ready"


def check_configuration(object_space: ShapedSpace, data_space: ShapedSpace) -> None:
    """Check that a pair of spaces can be used by a convolution operator.

    Raises:
        ConfigurationError: Unsupported element type or rank, or object and
            data spaces with different element types, ranks or devices.
    """
    if object_space.dtype not in PRECISIONS:
        raise ConfigurationError(
            f"Only float32 and float64 element types are implemented, got {object_space.dtype}"
        )
    if object_space.rank not in SUPPORTED_RANKS:
        raise ConfigurationError(
            f"Only 1D, 2D and 3D convolution are implemented, got {object_space.rank}D"
        )
    if data_space.dtype != object_space.dtype:
        raise ConfigurationError(
            f"Object and data spaces must have the same element type, got "
            f"{object_space.dtype} and {data_space.dtype}"
        )
    if data_space.rank != object_space.rank:
        raise ConfigurationError(
            f"Object and data spaces must have the same rank, got "
            f"{object_space.rank} and {data_space.rank}"
        )
    if data_space.device != object_space.device:
        raise ConfigurationError(
            f"Object and data spaces must live on the same device, got "
            f"{object_space.device} and {data_space.device}"
        )


class Convolution:
    """Cyclic convolution of object-space vectors, restricted to a data region.

    The operator owns a complex workspace with the shape of the object
    space (its ``torch.view_as_real`` view is the interleaved buffer of
    2 x N reals), the modulation transfer function (MTF) and an FFT
    engine. None of them is shared: the same instance must not be used
    from several threads at once, but independent instances can run
    concurrently.

    The operator is not usable until a PSF (or an MTF) has been set with
    :meth:`set_psf` (or :meth:`set_mtf`).

    Args:
        object_space: Space of the convolved vectors (1D to 3D, float32 or
            float64).
        data_space: Space of the results, same rank and type and no larger
            than the object space along any axis. Defaults to the object
            space.
        offset: Position of the first data sample in the object-space
            result. Defaults to a centered data region.

    Example:
        ```python
        obj = ShapedSpace((64, 64), torch.float64)
        dat = ShapedSpace((48, 48), torch.float64)
        H = Convolution(obj, dat)
        H.set_psf(psf, normalize=True)   # psf: small centered array
        y = H(x)                         # direct
        z = H.adjoint(y)                 # adjoint
        ```
    """

    def __init__(
        self,
        object_space: ShapedSpace,
        data_space: Optional[ShapedSpace] = None,
        offset: Optional[Sequence[int]] = None,
    ):
        if data_space is None:
            data_space = object_space
        check_configuration(object_space, data_space)
        self.object_space = object_space
        self.data_space = data_space
        self.offsets = check_offsets(object_space.shape, data_space.shape, offset)
        self.complex_dtype = PRECISIONS[object_space.dtype]

        self._region = region_slices(self.offsets, data_space.shape)
        self._whole = data_space.shape == object_space.shape
        self._work = torch.zeros(
            object_space.shape, dtype=self.complex_dtype, device=object_space.device
        )
        self._engine = None

        # FFT-centered PSF and its transform; the MTF is valid iff a PSF (or
        # an MTF) has been installed since the last change.
        self._psf = None
        self._mtf = None
        self._mtf_valid = False

        self.timer = Timer()
        self.timer_fft = Timer()

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def rank(self) -> int:
        return self.object_space.rank

    @property
    def dtype(self) -> torch.dtype:
        return self.object_space.dtype

    @property
    def number(self) -> int:
        """Number of frequencies (elements of the workspace)."""
        return self.object_space.number

    @property
    def state(self) -> State:
        if self._mtf_valid or self._psf is not None:
            return State.READY
        return State.UNINITIALIZED

    @property
    def psf(self) -> Optional[torch.Tensor]:
        """The installed FFT-centered PSF (None if only an MTF was given)."""
        return self._psf

    def _require_ready(self) -> None:
        if self.state is not State.READY:
            raise UninitializedOperatorError(
                "The PSF (or the MTF) must be set before applying the convolution"
            )

    # ------------------------------------------------------------------ #
    # PSF / MTF
    # ------------------------------------------------------------------ #

    def set_psf(
        self,
        psf: ArrayLike,
        center: Optional[Sequence[int]] = None,
        normalize: bool = False,
        fft_centered: bool = False,
    ) -> None:
        """Install the point spread function.

        Args:
            psf: The PSF. Unless ``fft_centered`` is True it may be smaller
                than the object space; it is then zero-padded to the object
                shape and rolled so that its central sample is at index 0.
            center: Index of the central PSF sample (one per axis). Defaults
                to the geometric center ``dim // 2``.
            normalize: Divide the PSF by the sum of its values.
            fft_centered: The PSF already belongs to the object space and is
                centered in the FFT sense (center at index 0); it is
                installed as is.

        Raises:
            IncorrectSpaceError: ``fft_centered`` PSF not in the object space.
            ConfigurationError: PSF rank mismatch, wrong number of center
                coordinates or PSF larger than the object space.
            ValueError: ``normalize`` with a PSF summing to zero.
        """
        space = self.object_space
        if fft_centered:
            if center is not None:
                raise ConfigurationError("No center can be given for an FFT-centered PSF")
            space.check(psf, "PSF")
            kernel = psf.detach().clone()
            if normalize:
                kernel = kernel / _psf_sum(kernel)
        else:
            if isinstance(psf, torch.Tensor):
                arr = psf.detach()
            else:
                arr = torch.as_tensor(np.asarray(psf))
            if arr.is_complex():
                raise ConfigurationError("The PSF must be real-valued")
            shifts = psf_shifts(space.shape, tuple(arr.shape), center)
            arr = arr.to(device=space.device, dtype=torch.float64)
            if normalize:
                arr = arr / _psf_sum(arr)
            arr = arr.to(dtype=space.dtype)
            kernel = torch.roll(
                pad_to_shape(arr, space.shape, mode="center"),
                shifts=shifts,
                dims=tuple(range(space.rank)),
            )
        self._psf = kernel
        self._mtf_valid = False

    def set_mtf(self, mtf: torch.Tensor) -> None:
        """Install a precomputed modulation transfer function.

        The MTF is the forward FFT (unnormalized) of the FFT-centered PSF.
        When it already has the complex type and device of the workspace
        it is kept by reference and must not be modified while the
        operator is in use.
        """
        if tuple(mtf.shape) != self.object_space.shape:
            raise ConfigurationError(
                f"MTF shape {tuple(mtf.shape)} does not match object shape "
                f"{self.object_space.shape}"
            )
        self._mtf = mtf.to(device=self.object_space.device, dtype=self.complex_dtype)
        self._psf = None
        self._mtf_valid = True

    def _get_mtf(self) -> torch.Tensor:
        if not self._mtf_valid:
            if self._psf is None:
                self._require_ready()
            mtf = torch.empty_like(self._work)
            mtf.copy_(self._psf)
            with self.timer_fft:
                self._get_engine().forward(mtf)
            self._mtf = mtf
            self._mtf_valid = True
        return self._mtf

    @property
    def mtf(self) -> torch.Tensor:
        """The modulation transfer function (computed on demand)."""
        return self._get_mtf()

    # ------------------------------------------------------------------ #
    # FFT
    # ------------------------------------------------------------------ #

    def _get_engine(self) -> FFTEngine:
        if self._engine is None:
            self._engine = FFTEngine(self.object_space.shape, self.complex_dtype)
        return self._engine

    def forward_fft(self) -> None:
        """In-place forward FFT of the workspace."""
        with self.timer_fft:
            self._get_engine().forward(self._work)

    def backward_fft(self) -> None:
        """In-place inverse FFT of the workspace (scaled by 1/N)."""
        with self.timer_fft:
            self._get_engine().inverse(self._work)

    # ------------------------------------------------------------------ #
    # Push / convolve / pull
    # ------------------------------------------------------------------ #

    def push(self, src: torch.Tensor, adjoint: bool = False) -> None:
        """Copy a vector into the workspace (operator S, or R* if adjoint).

        Args:
            src: Object-space vector (direct) or data-space vector (adjoint).
            adjoint: Prepare for the adjoint operator.
        """
        space = self.data_space if adjoint else self.object_space
        space.check(src, "Source")
        self._push(src, adjoint)

    def _push(self, src: torch.Tensor, adjoint: bool) -> None:
        z = self._work
        if adjoint and not self._whole:
            z.zero_()
            z[self._region].copy_(src)
        else:
            # Real to complex copy clears the imaginary parts.
            z.copy_(src)

    def convolve(self, adjoint: bool = False) -> None:
        """Convolve the workspace in place by the PSF (or its adjoint)."""
        self._require_ready()
        self._convolve(adjoint)

    def _convolve(self, adjoint: bool) -> None:
        h = self._get_mtf()
        z = self._work
        self.forward_fft()
        if adjoint:
            z.mul_(h.conj())
        else:
            z.mul_(h)
        self.backward_fft()

    def pull(self, dst: Optional[torch.Tensor] = None, adjoint: bool = False) -> torch.Tensor:
        """Extract the real part of the workspace (operator R, or S* if adjoint).

        Args:
            dst: Data-space (direct) or object-space (adjoint) destination.
                Allocated if None.
            adjoint: Extract the result of the adjoint operator.

        Returns:
            The destination vector.
        """
        space = self.object_space if adjoint else self.data_space
        if dst is None:
            dst = space.create()
        else:
            space.check(dst, "Destination")
        self._pull(dst, adjoint)
        return dst

    def _pull(self, dst: torch.Tensor, adjoint: bool) -> None:
        z = self._work
        if adjoint or self._whole:
            dst.copy_(z.real)
        else:
            dst.copy_(z[self._region].real)

    # ------------------------------------------------------------------ #
    # Linear operator interface
    # ------------------------------------------------------------------ #

    def apply(
        self,
        src: torch.Tensor,
        dst: Optional[torch.Tensor] = None,
        job: Union[Job, str] = Job.DIRECT,
    ) -> torch.Tensor:
        """Apply the operator: ``push(src); convolve(); pull(dst)``.

        Args:
            src: Object-space vector (direct) or data-space vector (adjoint).
            dst: Destination, allocated if None.
            job: ``Job.DIRECT`` or ``Job.ADJOINT``.

        Returns:
            The destination vector.

        Raises:
            NotImplementedError: For inverse jobs. Deconvolution by direct
                inversion of the MTF is numerically unsound and is left to
                regularized iterative methods.
        """
        job = Job(job)
        if job is not Job.DIRECT and job is not Job.ADJOINT:
            raise NotImplementedError(
                f"Job {job.value!r} is not implemented: only direct and adjoint "
                f"convolutions are available"
            )
        adjoint = job is Job.ADJOINT
        inp = self.data_space if adjoint else self.object_space
        out = self.object_space if adjoint else self.data_space
        inp.check(src, "Source")
        if dst is None:
            dst = out.create()
        else:
            out.check(dst, "Destination")
        self._require_ready()
        with self.timer:
            self._push(src, adjoint)
            self._convolve(adjoint)
            self._pull(dst, adjoint)
        return dst

    def __call__(self, x: torch.Tensor) -> torch.Tensor:
        """Direct operator: ``H(x)``."""
        return self.apply(x, job=Job.DIRECT)

    def adjoint(self, y: torch.Tensor) -> torch.Tensor:
        """Adjoint operator: ``H*(y)``."""
        return self.apply(y, job=Job.ADJOINT)

    # ------------------------------------------------------------------ #
    # Timers
    # ------------------------------------------------------------------ #

    def reset_timers(self) -> None:
        for timer in (self.timer, self.timer_fft):
            timer.stop()
            timer.reset()

    @property
    def elapsed_time(self) -> float:
        return self.timer.elapsed

    @property
    def elapsed_time_in_fft(self) -> float:
        return self.timer_fft.elapsed

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(object={self.object_space.shape}, "
            f"data={self.data_space.shape}, offsets={self.offsets}, "
            f"dtype={self.dtype}, state={self.state.value})"
        )


def _psf_sum(psf: torch.Tensor) -> torch.Tensor:
    total = psf.sum()
    if total == 0 or not torch.isfinite(total):
        raise ValueError(f"Cannot normalize a PSF whose sum is {float(total)}")
    return total


def build_convolution(
    object_space: ShapedSpace,
    data_space: Optional[ShapedSpace] = None,
    offset: Optional[Sequence[int]] = None,
) -> Convolution:
    """Build a convolution operator for the given spaces.

    The element type and rank of the object space select the working
    precision (float32 with a complex64 workspace, or float64 with a
    complex128 workspace) and the number of transformed axes.

    Returns:
        A new operator; it is not usable until its PSF is set.

    Raises:
        ConfigurationError: See :func:`check_configuration` and
            :func:`~fftdeconv.conv.offsets.check_offsets`.
    """
    if data_space is None:
        data_space = object_space
    check_configuration(object_space, data_space)
    return Convolution(object_space, data_space, offset)


def make_fft_convolver(
    psf: ArrayLike,
    object_shape: Optional[Tuple[int, ...]] = None,
    data_shape: Optional[Tuple[int, ...]] = None,
    offset: Optional[Sequence[int]] = None,
    center: Optional[Sequence[int]] = None,
    device: str = "cpu",
    dtype: torch.dtype = torch.float32,
    normalize: bool = True,
    verbose: bool = False,
) -> Tuple[Callable[[torch.Tensor], torch.Tensor], Callable[[torch.Tensor], torch.Tensor]]:
    """Create FFT-based forward and adjoint convolution operators.

    Convenience wrapper around :class:`Convolution` for code which only
    needs the ``(C, C_adj)`` pair of callables.

    Args:
        psf: PSF array (NumPy or PyTorch), geometrically centered unless
            ``center`` says otherwise.
        object_shape: Shape of the object space. Defaults to ``psf.shape``.
        data_shape: Shape of the data space. Defaults to ``object_shape``.
        offset: Position of the data region (centered by default).
        center: Index of the central PSF sample.
        device: PyTorch device ("cpu", "cuda", ...).
        dtype: Working precision, ``torch.float32`` or ``torch.float64``.
        normalize: If True, normalize the PSF to sum to 1. Default True.
        verbose: If True, print operator info. Default False.

    Returns:
        Tuple (C, C_adj) where:
            - C(x): Forward operator, object space -> data space
            - C_adj(y): Adjoint operator, data space -> object space

    Example:
        >>> C, C_adj = make_fft_convolver(psf, object_shape=(256, 256))
        >>> blurred = C(image)
        >>> correlated = C_adj(blurred)
    """
    if object_shape is None:
        object_shape = tuple(psf.shape)
    if data_shape is None:
        data_shape = object_shape
    obj = ShapedSpace(object_shape, dtype, device)
    dat = ShapedSpace(data_shape, dtype, device)
    conv = build_convolution(obj, dat, offset)
    conv.set_psf(psf, center=center, normalize=normalize)

    if verbose:
        print(
            f"{conv.rank}D convolver: PSF {tuple(psf.shape)}, object {obj.shape}, "
            f"data {dat.shape}, offsets {conv.offsets}, device={device}, dtype={dtype}"
        )

    return conv, conv.adjoint
