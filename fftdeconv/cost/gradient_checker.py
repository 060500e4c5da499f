"""Finite-difference check of the gradient of a cost function."""

import enum
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

import numpy as np
import torch

from ..exceptions import UninitializedOperatorError
from .base import DifferentiableCostFunction

__all__ = ["Difference", "GradientCheck", "GradientChecker", "relative_difference"]

MINIMAL_EPSILON = float(np.finfo(np.float64).eps)
DEFAULT_EPSILON = max(MINIMAL_EPSILON, 1e-3)


class Difference(enum.Enum):
    """Finite-difference scheme."""

    FORWARD = 1
    BACKWARD = -1
    CENTERED = 0


@dataclass(frozen=True)
class GradientCheck:
    """Result of the check of one gradient component.

    Attributes:
        index: Flat (C order) index of the component.
        analytic: Value given by the cost function.
        numeric: Finite-difference approximation.
        step: Step used for the finite difference.
        relative_error: ``|analytic - numeric| / max(|analytic|, |numeric|)``.
    """

    index: int
    analytic: float
    numeric: float
    step: float
    relative_error: float


def relative_difference(a: float, b: float) -> float:
    """``(a - b) / max(|a|, |b|)``, or 0 when ``a == b``."""
    if a == b:
        return 0.0
    return (a - b) / max(abs(a), abs(b))


class GradientChecker:
    """Compare the gradient of a cost function with finite differences.

    Args:
        cost: The differentiable cost function to check.
        method: Finite-difference scheme (forward by default).
        step_scale: Relative size of the finite-difference step. Values
            smaller than the machine epsilon select the default (1e-3).
        min_step: Minimal size of the step.

    Example:
        ```python
        checker = GradientChecker(cost, method="centered")
        checker.set_variables(x)
        records = checker.check(range(10), verbose=True)
        assert max(r.relative_error for r in records) < 1e-6
        ```
    """

    def __init__(
        self,
        cost: DifferentiableCostFunction,
        method: Union[Difference, str, int] = Difference.FORWARD,
        step_scale: float = DEFAULT_EPSILON,
        min_step: float = float(np.finfo(np.float64).tiny),
    ):
        self.cost = cost
        self.space = cost.input_space
        self.method = method
        self.step_scale = step_scale
        self.min_step = min_step
        self._x = None
        self._gx = None
        self._fx = None

    @property
    def method(self) -> Difference:
        return self._method

    @method.setter
    def method(self, value: Union[Difference, str, int]) -> None:
        if isinstance(value, str):
            value = Difference[value.upper()]
        elif isinstance(value, int):
            value = Difference(int(np.sign(value)))
        self._method = Difference(value)

    @property
    def step_scale(self) -> float:
        return self._step_scale

    @step_scale.setter
    def step_scale(self, value: float) -> None:
        self._step_scale = DEFAULT_EPSILON if value < MINIMAL_EPSILON else float(value)

    @property
    def min_step(self) -> float:
        return self._min_step

    @min_step.setter
    def min_step(self, value: float) -> None:
        self._min_step = max(float(value), 0.0)

    def set_variables(self, x: torch.Tensor) -> None:
        """Set the variables and compute the cost and gradient there."""
        self.space.check(x, "Variables X")
        self._x = x.detach().clone(memory_format=torch.contiguous_format)
        self._gx = self.space.create()
        self._fx = self.cost.compute_cost_and_gradient(1.0, self._x, self._gx, clear=True)

    @property
    def cost_value(self) -> Optional[float]:
        return self._fx

    @property
    def gradient(self) -> Optional[torch.Tensor]:
        return self._gx

    def step_size(self, x: float) -> float:
        """Small but non-negligible step to perturb a value ``x``."""
        h = max(self._step_scale * abs(x), self._min_step)
        if h <= 0.0:
            h = self._step_scale
        # The step must change x in the working precision.
        dtype = self.space.dtype
        xt = torch.tensor(x, dtype=dtype)
        while bool(xt + h == xt):
            h += h
        return h

    def check(self, indices: Union[int, Iterable[int]], verbose: bool = False) -> List[GradientCheck]:
        """Check some gradient components.

        Args:
            indices: Flat (C order) index or indices of the components.
            verbose: Print one line per component.

        Returns:
            One :class:`GradientCheck` per index.

        Raises:
            UninitializedOperatorError: If :meth:`set_variables` was not called.
        """
        if self._gx is None:
            raise UninitializedOperatorError("Variables must be set before checking the gradient")
        if isinstance(indices, (int, np.integer)):
            indices = [int(indices)]
        f = self.cost
        fx = self._fx
        y = self._x.clone()
        yflat = y.view(-1)
        gflat = self._gx.view(-1)
        records = []
        for j in indices:
            j = int(j)
            xj = float(yflat[j])
            h = self.step_size(xj)
            if self._method is Difference.BACKWARD:
                yflat[j] = xj - h
                approx = (fx - f.evaluate(1.0, y)) / h
            elif self._method is Difference.CENTERED:
                yflat[j] = xj - h
                f1 = f.evaluate(1.0, y)
                yflat[j] = xj + h
                f2 = f.evaluate(1.0, y)
                approx = (f2 - f1) / (h + h)
            else:
                yflat[j] = xj + h
                approx = (f.evaluate(1.0, y) - fx) / h
            yflat[j] = xj
            gj = float(gflat[j])
            rec = GradientCheck(
                index=j,
                analytic=gj,
                numeric=approx,
                step=h,
                relative_error=abs(relative_difference(gj, approx)),
            )
            records.append(rec)
            if verbose:
                print(
                    f"gx[{j:6d}] = {gj:20.12E}  approx = {approx:20.12E}  "
                    f"rel. error = {rec.relative_error:8.1E}"
                )
        return records
