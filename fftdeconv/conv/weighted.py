"""Weighted quadratic misfit of a convolution model.

The cost is

    f(x) = alpha * sum_i w_i ((H x)_i - y_i)^2

with H the convolution operator restricted to the data region, y the data
and w the weights (all ones by default). Its gradient is

    grad f(x) = 2 * alpha * H* (W (H x - y))

and is computed without leaving the operator workspace: after the direct
convolution, the weighted residuals are written back at the data region,
everything else is zeroed and the adjoint convolution is applied in place.
"""

from typing import Optional, Sequence, Union

import numpy as np
import torch

from ..cost.base import DifferentiableCostFunction
from ..cost.weighted_data import check_weights_and_data
from ..exceptions import UninitializedOperatorError
from ..spaces import ShapedSpace
from .convolution import Convolution, build_convolution
from .offsets import output_offset

__all__ = ["WeightedConvolutionCost"]

ArrayLike = Union[np.ndarray, torch.Tensor]


class WeightedConvolutionCost(DifferentiableCostFunction):
    """Weighted least-squares misfit between data and a convolution model.

    The object space (the variables) and the data space follow the rules
    of :class:`~fftdeconv.conv.convolution.Convolution`. The instance is
    not usable until the PSF and the data are set with :meth:`set_psf` and
    :meth:`set_weights_and_data`.

    Like the underlying operator, an instance keeps its state in a private
    workspace and must not be used by several threads at once.

    Args:
        object_space: Space of the variables.
        data_space: Space of the data. Defaults to the object space.
        offset: Position of the data region in the result of the cyclic
            convolution. Defaults to a centered region.

    Example:
        ```python
        f = WeightedConvolutionCost(ShapedSpace((64, 64)), ShapedSpace((56, 56)))
        f.set_psf(psf, normalize=True)
        f.set_weights_and_data(weights, data)
        g = torch.empty_like(x)
        fx = f.compute_cost_and_gradient(1.0, x, g)
        ```
    """

    def __init__(
        self,
        object_space: ShapedSpace,
        data_space: Optional[ShapedSpace] = None,
        offset: Optional[Sequence[int]] = None,
    ):
        self._attach(build_convolution(object_space, data_space, offset))

    def _attach(self, convolution: Convolution) -> None:
        self.convolution = convolution
        self.object_space = convolution.object_space
        self.data_space = convolution.data_space
        # Flat (C order) index of the first data sample in the workspace.
        self.data_offset = output_offset(
            convolution.object_space.shape,
            convolution.data_space.shape,
            convolution.offsets,
        )
        self._region = convolution._region
        self._weights = None
        self._data = None

    @classmethod
    def from_convolution(cls, convolution: Convolution) -> "WeightedConvolutionCost":
        """Build a cost sharing an existing operator (and its PSF)."""
        cost = cls.__new__(cls)
        cost._attach(convolution)
        return cost

    @property
    def input_space(self) -> ShapedSpace:
        return self.object_space

    @property
    def offsets(self):
        return self.convolution.offsets

    @property
    def weights(self) -> Optional[torch.Tensor]:
        """Installed weights (None for uniform weights)."""
        return self._weights

    @property
    def data(self) -> Optional[torch.Tensor]:
        return self._data

    # ------------------------------------------------------------------ #
    # Setup
    # ------------------------------------------------------------------ #

    def set_psf(
        self,
        psf: ArrayLike,
        center: Optional[Sequence[int]] = None,
        normalize: bool = False,
        fft_centered: bool = False,
    ) -> None:
        """Set the PSF, see :meth:`Convolution.set_psf`."""
        self.convolution.set_psf(psf, center=center, normalize=normalize, fft_centered=fft_centered)

    def set_mtf(self, mtf: torch.Tensor) -> None:
        self.convolution.set_mtf(mtf)

    def set_weights_and_data(self, weight: Optional[ArrayLike], data: ArrayLike) -> None:
        """Set the data and their weights.

        Args:
            weight: Weights, finite and nonnegative, or None for uniform
                weights. Non-finite data must have a zero weight.
            data: Measurements (data space shape).

        Raises:
            InvalidWeightError: Invalid weights; the previous weights and
                data are left untouched.
        """
        wgt, dat = check_weights_and_data(self.data_space, weight, data)
        self._weights = wgt
        self._data = dat

    def _require_data(self) -> None:
        if self._data is None:
            raise UninitializedOperatorError("The data must be set before computing the cost")

    # ------------------------------------------------------------------ #
    # Cost and gradient
    # ------------------------------------------------------------------ #

    def _residuals(self, x: torch.Tensor) -> torch.Tensor:
        """Convolve ``x`` in the workspace and return ``Hx - y`` (a copy)."""
        self._require_data()
        cnvl = self.convolution
        cnvl._require_ready()
        cnvl._push(x, False)
        cnvl._convolve(False)
        return cnvl._work[self._region].real - self._data

    def _cost(self, alpha: float, x: torch.Tensor) -> float:
        with self.convolution.timer:
            r = self._residuals(x)
            if self._weights is None:
                total = (r * r).sum()
            else:
                total = (self._weights * r * r).sum()
        return alpha * float(total)

    def _cost_and_gradient(
        self, alpha: float, x: torch.Tensor, gx: torch.Tensor, clear: bool
    ) -> float:
        cnvl = self.convolution
        with cnvl.timer:
            r = self._residuals(x)
            wr = r if self._weights is None else self._weights * r
            total = (wr * r).sum()

            # Weighted residuals at the data region, zero elsewhere.
            z = cnvl._work
            z.zero_()
            z[self._region].copy_(wr.mul(2 * alpha))
            cnvl._convolve(True)

            if clear:
                gx.copy_(z.real)
            else:
                gx.add_(z.real)
        return alpha * float(total)

    # ------------------------------------------------------------------ #
    # Timers
    # ------------------------------------------------------------------ #

    def reset_timers(self) -> None:
        self.convolution.reset_timers()

    @property
    def elapsed_time(self) -> float:
        return self.convolution.elapsed_time

    @property
    def elapsed_time_in_fft(self) -> float:
        return self.convolution.elapsed_time_in_fft
