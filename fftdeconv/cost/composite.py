"""Weighted sum of cost functions sharing the same variables."""

from typing import List, Tuple

import numpy as np
import torch

from ..exceptions import IncorrectSpaceError
from ..spaces import ShapedSpace
from .base import DifferentiableCostFunction

__all__ = ["CompositeCost"]


class CompositeCost(DifferentiableCostFunction):
    """Cost function ``f(x) = sum_k w_k f_k(x)``.

    Typical use is a data-fidelity term plus a regularization:

        ```python
        cost = CompositeCost((1.0, fidelity), (mu, tv))
        fx = cost.compute_cost_and_gradient(1.0, x, gx)
        ```

    Terms with a zero weight are skipped altogether. The number of calls
    to the cost alone and to the cost with its gradient are counted.

    Args:
        *terms: ``(weight, cost)`` pairs. Weights must be finite and
            nonnegative; all costs must share the same input space.
    """

    def __init__(self, *terms: Tuple[float, DifferentiableCostFunction]):
        if len(terms) == 0:
            raise ValueError("A composite cost needs at least one term")
        space = terms[0][1].input_space
        self._terms: List[Tuple[float, DifferentiableCostFunction]] = []
        for weight, func in terms:
            weight = float(weight)
            if not np.isfinite(weight) or weight < 0:
                raise ValueError(f"Term weights must be finite and nonnegative, got {weight}")
            if func.input_space != space:
                raise IncorrectSpaceError(
                    "All terms of a composite cost must have the same input space"
                )
            self._terms.append((weight, func))
        self._space = space
        self.number_of_function_calls = 0
        self.number_of_gradient_calls = 0

    @property
    def input_space(self) -> ShapedSpace:
        return self._space

    @property
    def terms(self) -> Tuple[Tuple[float, DifferentiableCostFunction], ...]:
        return tuple(self._terms)

    def set_weight(self, index: int, weight: float) -> None:
        """Change the weight of the ``index``-th term."""
        weight = float(weight)
        if not np.isfinite(weight) or weight < 0:
            raise ValueError(f"Term weights must be finite and nonnegative, got {weight}")
        self._terms[index] = (weight, self._terms[index][1])

    def reset_counters(self) -> None:
        self.number_of_function_calls = 0
        self.number_of_gradient_calls = 0

    def _cost(self, alpha: float, x: torch.Tensor) -> float:
        self.number_of_function_calls += 1
        total = 0.0
        for weight, func in self._terms:
            if weight != 0:
                total += func._cost(alpha * weight, x)
        return total

    def _cost_and_gradient(
        self, alpha: float, x: torch.Tensor, gx: torch.Tensor, clear: bool
    ) -> float:
        self.number_of_gradient_calls += 1
        total = 0.0
        for weight, func in self._terms:
            if weight != 0:
                total += func._cost_and_gradient(alpha * weight, x, gx, clear)
                clear = False
        if clear:
            # All weights are zero.
            gx.zero_()
        return total
