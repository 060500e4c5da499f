"""Result type shared by the deconvolution drivers."""

from dataclasses import dataclass, field
from typing import List, Optional

import torch

__all__ = ["DeconvolutionResult"]


@dataclass
class DeconvolutionResult:
    """Outcome of an iterative restoration.

    Attributes:
        restored: The restored object (object-space tensor, detached).
        iterations: Number of optimizer iterations performed.
        loss_history: Objective value after each iteration.
        converged: Whether the relative change of the objective fell
            below the tolerance before the iteration limit.
        metadata: Driver-specific details (parameters, shapes, timings).
    """

    restored: torch.Tensor
    iterations: int
    loss_history: List[float] = field(default_factory=list)
    converged: bool = False
    metadata: dict = field(default_factory=dict)

    @property
    def final_loss(self) -> Optional[float]:
        """Last recorded objective value (None if nothing was recorded)."""
        return self.loss_history[-1] if self.loss_history else None
