"""Base types for total-variation regularizers."""

import math
import numbers
from dataclasses import dataclass, field
from typing import List, Literal

import torch

__all__ = ["TVMethod", "FGPTVConfig", "RegularizationResult"]

TVMethod = Literal["iso", "l1"]

TV_METHODS = ("iso", "l1")


@dataclass(frozen=True)
class FGPTVConfig:
    """Immutable FGP-TV solver parameters.

    Attributes:
        lambda_reg: Regularization strength. Must be strictly positive, since
            the dual step is scaled by 1 / (8 * lambda_reg).
        num_iter: Iteration cap (>= 1).
        epsilon: Tolerance on the relative residual between consecutive
            estimates. 0 disables early stopping.
        method: "iso" for isotropic TV (joint Euclidean projection of the
            dual components) or "l1" for anisotropic TV (each component
            clipped independently).
        nonneg: Clamp the estimate to >= 0 every iteration.
        verbose: Print the stopping iteration.

    Example:
        >>> config = FGPTVConfig(lambda_reg=0.05, num_iter=300, epsilon=1e-4)
        >>> config.method
        'iso'
    """

    lambda_reg: float
    num_iter: int = 100
    epsilon: float = 1e-4
    method: TVMethod = "iso"
    nonneg: bool = False
    verbose: bool = False

    def __post_init__(self) -> None:
        """Validate solver parameters."""
        if not (self.lambda_reg > 0 and math.isfinite(self.lambda_reg)):
            raise ValueError(
                f"lambda_reg must be a positive finite number, got {self.lambda_reg}"
            )
        if not isinstance(self.num_iter, numbers.Integral) or self.num_iter < 1:
            raise ValueError(f"num_iter must be a positive integer, got {self.num_iter}")
        if not (self.epsilon >= 0 and math.isfinite(self.epsilon)):
            raise ValueError(
                f"epsilon must be a non-negative finite number, got {self.epsilon}"
            )
        if self.method not in TV_METHODS:
            raise ValueError(f"Unknown TV method: {self.method!r}. Use 'iso' or 'l1'.")


@dataclass
class RegularizationResult:
    """Result from a regularization solver.

    Attributes:
        restored: The denoised image/volume tensor.
        iterations: Number of iterations actually executed.
        loss_history: Relative residual at each executed iteration (NaN
            where the estimate had zero norm).
        converged: Whether the early-stopping criterion fired.
        metadata: Algorithm-specific metadata.
    """

    restored: torch.Tensor
    iterations: int
    loss_history: List[float] = field(default_factory=list)
    converged: bool = False
    metadata: dict = field(default_factory=dict)
