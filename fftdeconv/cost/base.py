"""Base class for differentiable cost functions.

A cost function ``f`` is evaluated with a multiplier ``alpha``: callers get
``alpha * f(x)`` and, optionally, ``alpha * grad f(x)`` stored into (or
added to) a caller-provided gradient vector. Public methods check their
arguments and short-circuit a zero multiplier; subclasses implement the
unchecked ``_cost`` and ``_cost_and_gradient`` kernels.
"""

from abc import ABC, abstractmethod

import torch

from ..spaces import ShapedSpace

__all__ = ["DifferentiableCostFunction"]


class DifferentiableCostFunction(ABC):
    """Cost function with gradient, defined on a shaped space."""

    @property
    @abstractmethod
    def input_space(self) -> ShapedSpace:
        """Space of the variables."""

    def evaluate(self, alpha: float, x: torch.Tensor) -> float:
        """Return ``alpha * f(x)``.

        A zero multiplier returns 0 without computing anything.
        """
        self.input_space.check(x, "Variables X")
        if alpha == 0:
            return 0.0
        return self._cost(alpha, x)

    def compute_cost_and_gradient(
        self,
        alpha: float,
        x: torch.Tensor,
        gx: torch.Tensor,
        clear: bool = True,
    ) -> float:
        """Return ``alpha * f(x)`` and store ``alpha * grad f(x)`` in ``gx``.

        Args:
            alpha: Multiplier of the cost.
            x: Variables.
            gx: Gradient, overwritten if ``clear`` is True, incremented
                otherwise.
            clear: Overwrite (True) or accumulate into (False) ``gx``.

        Returns:
            The cost ``alpha * f(x)``.
        """
        space = self.input_space
        space.check(x, "Variables X")
        space.check(gx, "Gradient GX")
        if alpha == 0:
            if clear:
                gx.zero_()
            return 0.0
        return self._cost_and_gradient(alpha, x, gx, clear)

    def __call__(self, x: torch.Tensor) -> float:
        return self.evaluate(1.0, x)

    @abstractmethod
    def _cost(self, alpha: float, x: torch.Tensor) -> float:
        """Unchecked cost; ``alpha`` is nonzero."""

    @abstractmethod
    def _cost_and_gradient(
        self, alpha: float, x: torch.Tensor, gx: torch.Tensor, clear: bool
    ) -> float:
        """Unchecked cost and gradient; ``alpha`` is nonzero."""
