"""Differentiable cost functions.

Cost functions are evaluated with a multiplier ``alpha`` and can store
or accumulate their gradient into a caller-provided vector, which makes
them easy to combine (see :class:`CompositeCost`).
"""

from .base import DifferentiableCostFunction
from .composite import CompositeCost
from .gradient_checker import Difference, GradientCheck, GradientChecker, relative_difference
from .tv import HyperbolicTotalVariation, hyperbolic_tv
from .weighted_data import WeightedData, check_weights_and_data, weights_from_noise_model

__all__ = [
    "DifferentiableCostFunction",
    "CompositeCost",
    "WeightedData",
    "check_weights_and_data",
    "weights_from_noise_model",
    "HyperbolicTotalVariation",
    "hyperbolic_tv",
    "GradientChecker",
    "GradientCheck",
    "Difference",
    "relative_difference",
]
