"""Primal objective of TV denoising, for diagnostics."""

import torch

from .base import TV_METHODS, TVMethod
from .operators import _neg_forward_diff

__all__ = ["tv_norm", "rof_objective"]


def tv_norm(x: torch.Tensor, method: TVMethod = "iso") -> float:
    """Discrete total variation of an image or volume.

    Uses the same zero-boundary forward differences as the FGP-TV dual step.
        iso: sum over positions of sqrt(sum_d (D_d x)^2)
        l1:  sum over positions and axes of |D_d x|

    Args:
        x: Image (H, W) or volume (D, H, W).
        method: "iso" or "l1".

    Returns:
        TV semi-norm as a Python float.
    """
    grads = torch.stack([_neg_forward_diff(x, dim) for dim in range(x.ndim)])
    if method == "iso":
        return float(torch.sum(torch.sqrt(torch.sum(grads * grads, dim=0))))
    elif method == "l1":
        return float(torch.sum(torch.abs(grads)))
    raise ValueError(f"Unknown TV method: {method!r}. Use one of {TV_METHODS}.")


def rof_objective(
    x: torch.Tensor,
    observed: torch.Tensor,
    lambda_reg: float,
    method: TVMethod = "iso",
) -> float:
    """ROF energy 0.5 * ||x - f||^2 + lambda * TV(x)."""
    fidelity = 0.5 * float(torch.sum((x - observed) ** 2))
    return fidelity + lambda_reg * tv_norm(x, method)
