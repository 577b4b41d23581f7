"""Per-iteration operators of the FGP-TV scheme.

The dual variables are stored stacked, shape (ndim, *grid), with component
``d`` holding the dual for tensor axis ``d``. Every operator is a whole-grid
tensor expression, so each grid position is computed independently and
PyTorch is free to split the work across its intra-op threads.

One FGP-TV iteration applies, in this order:
    u  <- f - lambda * div(R)                    [objective_gradient]
    P  <- R + grad(u) / (8 * lambda)             [dual_step]
    P  <- proj(P)                                [project_dual]
    R  <- P + ((t_k - 1) / t_{k+1}) (P - P_old)  [momentum_update]

Reference:
    Beck, A. and Teboulle, M. (2009). "Fast Gradient-Based Algorithms for
    Constrained Total Variation Image Denoising and Deblurring Problems".
    IEEE Transactions on Image Processing 18(11): 2419-2434.
"""

import math
from typing import Optional

import torch

from .base import TV_METHODS, TVMethod

__all__ = [
    "objective_gradient",
    "dual_step",
    "project_dual",
    "momentum_update",
    "next_momentum",
]


# =============================================================================
# Finite Difference Operators (Zero Boundary)
# =============================================================================
# Unlike the circular differences used elsewhere, these never wrap: the
# gradient vanishes at the last index of an axis and the divergence treats the
# value before the first index as zero. On dual fields whose last slice along
# each axis is zero (always the case for the iterates), divergence is the
# exact adjoint of the gradient.
#
# Every helper takes an optional ``out`` and, when given one, works only
# in place, so the driver loop allocates nothing after its workspace.


def _neg_forward_diff(
    x: torch.Tensor, dim: int, out: Optional[torch.Tensor] = None
) -> torch.Tensor:
    """Negated forward difference: D[i] = x[i] - x[i+1], D[n-1] = 0."""
    n = x.shape[dim]
    if out is None:
        out = torch.empty_like(x)
    out.narrow(dim, n - 1, 1).zero_()
    if n > 1:
        out.narrow(dim, 0, n - 1).copy_(x.narrow(dim, 0, n - 1)).sub_(x.narrow(dim, 1, n - 1))
    return out


def _backward_diff(
    x: torch.Tensor, dim: int, out: Optional[torch.Tensor] = None
) -> torch.Tensor:
    """Backward difference: D[i] = x[i] - x[i-1], with x[-1] taken as 0."""
    n = x.shape[dim]
    if out is None:
        out = torch.empty_like(x)
    out.copy_(x)
    if n > 1:
        out.narrow(dim, 1, n - 1).sub_(x.narrow(dim, 0, n - 1))
    return out


def _divergence(
    duals: torch.Tensor,
    out: Optional[torch.Tensor] = None,
    scratch: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """Sum of backward differences of each dual component along its axis."""
    out = _backward_diff(duals[0], 0, out=out)
    if duals.shape[0] > 1 and scratch is None:
        scratch = torch.empty_like(out)
    for dim in range(1, duals.shape[0]):
        out.add_(_backward_diff(duals[dim], dim, out=scratch))
    return out


def _check_duals(duals: torch.Tensor, grid_shape: torch.Size) -> None:
    expected = (len(grid_shape), *grid_shape)
    if tuple(duals.shape) != expected:
        raise ValueError(
            f"Dual variables must have shape {expected} for a grid of shape "
            f"{tuple(grid_shape)}, got {tuple(duals.shape)}"
        )


# =============================================================================
# FGP-TV Operators
# =============================================================================


def objective_gradient(
    observed: torch.Tensor,
    duals: torch.Tensor,
    lambda_reg: float,
    out: Optional[torch.Tensor] = None,
    scratch: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """Reconstruct the estimate from the extrapolated duals.

    Computes u = f - lambda * div(R), where div uses backward differences
    with a zero lower boundary along every axis.

    Args:
        observed: Input image f, shape (H, W) or (D, H, W).
        duals: Extrapolated duals R, shape (ndim, *observed.shape).
        lambda_reg: Regularization strength.
        out: Optional buffer of observed.shape to write into.
        scratch: Optional buffer of observed.shape used while summing the
            divergence. With both ``out`` and ``scratch`` nothing is
            allocated.

    Returns:
        The estimate u (``out`` when given).
    """
    _check_duals(duals, observed.shape)
    out = _divergence(duals, out=out, scratch=scratch)
    return out.mul_(-lambda_reg).add_(observed)


def dual_step(
    estimate: torch.Tensor,
    duals: torch.Tensor,
    lambda_reg: float,
    out: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """Take a gradient step on the dual variables.

    P_d = R_d + (u[i] - u[i+1]) / (8 * lambda) along axis d, with the
    difference set to zero at the last index. 8 bounds the squared norm of
    the discrete gradient in up to 3D, so 1 / (8 * lambda) is a safe step.

    Args:
        estimate: Current estimate u.
        duals: Extrapolated duals R, shape (ndim, *estimate.shape).
        lambda_reg: Regularization strength (> 0).
        out: Optional buffer of duals.shape to write into. Must not alias
            ``duals``.

    Returns:
        Updated (not yet projected) duals P.
    """
    _check_duals(duals, estimate.shape)
    step = 1.0 / (8.0 * lambda_reg)
    if out is None:
        out = torch.empty_like(duals)
    for dim in range(duals.shape[0]):
        _neg_forward_diff(estimate, dim, out=out[dim]).mul_(step).add_(duals[dim])
    return out


def project_dual(
    duals: torch.Tensor,
    method: TVMethod = "iso",
    scratch: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """Project the dual variables onto the unit ball, in place.

    - "iso": per grid position, components are rescaled jointly so that
      their Euclidean norm is at most 1 (left untouched when already inside).
    - "l1": each component is divided by max(|P_d|, 1), clipping its
      magnitude to 1 independently per axis.

    Args:
        duals: Stacked duals P, shape (ndim, *grid). Modified in place.
        method: "iso" or "l1".
        scratch: Optional buffer of the grid shape for the per-position
            divisor.

    Returns:
        ``duals``, projected.
    """
    if method not in TV_METHODS:
        raise ValueError(f"Unknown TV method: {method!r}. Use one of {TV_METHODS}.")
    if scratch is None:
        scratch = torch.empty_like(duals[0])

    if method == "iso":
        torch.mul(duals[0], duals[0], out=scratch)
        for dim in range(1, duals.shape[0]):
            scratch.addcmul_(duals[dim], duals[dim])
        scratch.sqrt_().clamp_(min=1.0)
        return duals.div_(scratch)

    for dim in range(duals.shape[0]):
        torch.abs(duals[dim], out=scratch).clamp_(min=1.0)
        duals[dim].div_(scratch)
    return duals


def next_momentum(tk: float) -> float:
    """FISTA schedule: t_{k+1} = (1 + sqrt(1 + 4 t_k^2)) / 2."""
    return 0.5 * (1.0 + math.sqrt(1.0 + 4.0 * tk * tk))


def momentum_update(
    duals: torch.Tensor,
    duals_prev: torch.Tensor,
    tk: float,
    tk_next: float,
    out: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """Nesterov extrapolation R = P + ((t_k - 1) / t_{k+1}) * (P - P_old).

    Args:
        duals: Projected duals P from this iteration.
        duals_prev: Projected duals from the previous iteration.
        tk: Current momentum coefficient.
        tk_next: Next momentum coefficient (see next_momentum).
        out: Optional buffer to write into. Must not alias the inputs.

    Returns:
        Extrapolated duals R.
    """
    beta = (tk - 1.0) / tk_next
    if out is None:
        out = torch.empty_like(duals)
    torch.sub(duals, duals_prev, out=out)
    return out.mul_(beta).add_(duals)
