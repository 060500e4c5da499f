"""Weighted data: measurements with their statistical weights.

The data are assumed to be uncorrelated. The weights are nonnegative and
should be the inverse of the variance of the corresponding data, or zero
for invalid data (an infinite variance). Non-finite data values are
invalid data: they get a zero weight and are replaced by zero so that
iterative methods never see them.

Example:
    ```python
    wd = WeightedData(ShapedSpace(image.shape), data=image)
    wd.compute_weights_from_data(alpha=1/gain, beta=(sigma/gain)**2)
    wd.mark_bad_data(saturated)
    w, y = wd.weights, wd.data
    ```
"""

from typing import Optional, Tuple, Union

import numpy as np
import torch

from ..exceptions import InvalidWeightError, UninitializedOperatorError
from ..spaces import ShapedSpace
from .base import DifferentiableCostFunction

__all__ = ["WeightedData", "check_weights_and_data", "weights_from_noise_model"]

ArrayLike = Union[np.ndarray, torch.Tensor]


def check_weights_and_data(
    space: ShapedSpace,
    weight: Optional[ArrayLike],
    data: ArrayLike,
) -> Tuple[Optional[torch.Tensor], torch.Tensor]:
    """Validate weights and data and return private copies of them.

    Args:
        space: The data space.
        weight: Weights (None for uniform weights).
        data: Measurements.

    Returns:
        ``(weight, data)`` as new vectors of ``space``. Non-finite data are
        set to zero. ``weight`` stays None when it was None and all data
        are finite; otherwise non-finite data get a zero weight.

    Raises:
        InvalidWeightError: A weight is NaN, infinite or negative, or a
            non-finite datum has a positive weight. Nothing is returned in
            that case, so callers can install the result atomically.
    """
    dat = space.wrap(data).clone()
    bad = ~torch.isfinite(dat)
    any_bad = bool(bad.any())
    if weight is None:
        wgt = None
        if any_bad:
            wgt = (~bad).to(dtype=space.dtype)
    else:
        wgt = space.wrap(weight).clone()
        if not bool(torch.isfinite(wgt).all()) or bool((wgt < 0).any()):
            raise InvalidWeightError("Weights must be finite and nonnegative")
        if any_bad and bool((wgt[bad] > 0).any()):
            raise InvalidWeightError("Non-finite data must have zero weight")
    if any_bad:
        dat[bad] = 0
    return wgt, dat


def weights_from_noise_model(data: torch.Tensor, alpha: float, beta: float) -> torch.Tensor:
    """Weights for an affine variance model.

    The variance of a datum ``y`` is assumed to be
    ``alpha * max(y, 0) + beta`` (Poisson-like photon noise plus
    Gaussian detector noise). Weights are the inverse variances, zero
    where the data are not finite or the variance is not positive.

    Args:
        data: Measurements.
        alpha: Inverse of the detector gain (0 for purely Gaussian noise).
        beta: Variance of the detector noise divided by the squared gain.
    """
    if not (np.isfinite(alpha) and np.isfinite(beta)) or alpha < 0 or beta < 0:
        raise ValueError(
            f"Noise model parameters must be finite and nonnegative, got "
            f"alpha={alpha}, beta={beta}"
        )
    if alpha == 0 and beta == 0:
        raise ValueError("Noise model parameters cannot be both zero")
    finite = torch.isfinite(data)
    var = alpha * torch.clamp(torch.where(finite, data, torch.zeros_like(data)), min=0) + beta
    ok = finite & (var > 0)
    return torch.where(ok, 1.0 / torch.where(ok, var, torch.ones_like(var)), torch.zeros_like(var))


class WeightedData(DifferentiableCostFunction):
    """Association of measurements and their weights.

    The data must be set exactly once; the weights can be set at most once
    (or computed from the data). If no weights are given, uniform weights
    are assumed. Additional invalid data can be marked any number of times
    with :meth:`mark_bad_data`; this cannot be undone.

    A weighted data instance is also a cost function of a vector ``x`` of
    the data space (useful for denoising):

        f(x) = sum_i w_i (x_i - y_i)^2

    Args:
        data_space: The data space.
        data: Optional measurements.
        weights: Optional weights (requires ``data``).
    """

    def __init__(
        self,
        data_space: ShapedSpace,
        data: Optional[ArrayLike] = None,
        weights: Optional[ArrayLike] = None,
    ):
        self.data_space = data_space
        self._data = None
        self._weights = None
        self._checked = None
        if data is not None:
            self.set_data(data)
        if weights is not None:
            self.set_weights(weights)

    @property
    def input_space(self) -> ShapedSpace:
        return self.data_space

    # ------------------------------------------------------------------ #
    # Setters
    # ------------------------------------------------------------------ #

    def set_data(self, data: ArrayLike) -> None:
        if self._data is not None:
            raise ValueError("Data can only be set once")
        self._data = self.data_space.wrap(data).clone()
        self._checked = None

    def set_weights(self, weights: ArrayLike) -> None:
        """Set the weights (finite and nonnegative)."""
        if self._weights is not None:
            raise ValueError("Weights can only be set or computed once")
        wgt = self.data_space.wrap(weights).clone()
        if not bool(torch.isfinite(wgt).all()) or bool((wgt < 0).any()):
            raise InvalidWeightError("Weights must be finite and nonnegative")
        self._weights = wgt
        self._checked = None

    def compute_weights_from_data(self, alpha: float, beta: float) -> None:
        """Compute the weights from the data, see :func:`weights_from_noise_model`."""
        if self._data is None:
            raise UninitializedOperatorError("No data has been set")
        if self._weights is not None:
            raise ValueError("Weights can only be set or computed once")
        self._weights = weights_from_noise_model(self._data, alpha, beta)
        self._checked = None

    def mark_bad_data(self, bad: ArrayLike) -> None:
        """Give a zero weight to the data where ``bad`` is true."""
        if self._data is None:
            raise UninitializedOperatorError("No data has been set")
        if isinstance(bad, torch.Tensor):
            mask = bad
        else:
            mask = torch.as_tensor(np.asarray(bad))
        if tuple(mask.shape) != self.data_space.shape:
            raise ValueError(
                f"Mask of bad data must have the shape of the data "
                f"{self.data_space.shape}, got {tuple(mask.shape)}"
            )
        mask = mask.to(device=self.data_space.device, dtype=torch.bool)
        if self._weights is None:
            self._weights = self.data_space.create(1.0)
        self._weights[mask] = 0
        self._checked = None

    # ------------------------------------------------------------------ #
    # Checked values
    # ------------------------------------------------------------------ #

    def _update(self) -> Tuple[torch.Tensor, torch.Tensor]:
        if self._checked is None:
            if self._data is None:
                raise UninitializedOperatorError("No data has been set")
            wgt, dat = check_weights_and_data(self.data_space, self._weights, self._data)
            if wgt is None:
                wgt = self.data_space.create(1.0)
            self._checked = (wgt, dat)
        return self._checked

    @property
    def weights(self) -> torch.Tensor:
        """Weights, all finite and nonnegative."""
        return self._update()[0]

    @property
    def data(self) -> torch.Tensor:
        """Data, all finite."""
        return self._update()[1]

    @property
    def valid_count(self) -> int:
        """Number of data with a positive weight."""
        return int((self.weights > 0).sum())

    @property
    def weighted_mean(self) -> float:
        """Weighted mean of the data (0 if no valid data)."""
        wgt, dat = self._update()
        total = float(wgt.sum())
        if total <= 0:
            return 0.0
        return float((wgt * dat).sum()) / total

    # ------------------------------------------------------------------ #
    # Cost function
    # ------------------------------------------------------------------ #

    def _cost(self, alpha: float, x: torch.Tensor) -> float:
        wgt, dat = self._update()
        r = x - dat
        return alpha * float((wgt * r * r).sum())

    def _cost_and_gradient(
        self, alpha: float, x: torch.Tensor, gx: torch.Tensor, clear: bool
    ) -> float:
        wgt, dat = self._update()
        wr = wgt * (x - dat)
        cost = alpha * float((wr * (x - dat)).sum())
        if clear:
            gx.copy_(2 * alpha * wr)
        else:
            gx.add_(wr, alpha=2 * alpha)
        return cost
