"""Total-variation regularizers using PyTorch.

This module provides the Fast Gradient Projection (FGP) solver for
total-variation denoising of 2D images and 3D volumes:

    min_u  0.5 * ||u - f||^2 + lambda * TV(u)

TV is either isotropic ("iso") or anisotropic ("l1"). All iteration
arithmetic is expressed as whole-array tensor operations, so it runs
data-parallel across PyTorch's CPU threads.

Example:
    >>> import torch
    >>> from fgptv.regularizers import solve_fgp_tv
    >>>
    >>> noisy = torch.rand(128, 128)
    >>> result = solve_fgp_tv(noisy, lambda_reg=0.05, num_iter=200, epsilon=1e-5)
    >>> denoised = result.restored
    >>> result.iterations <= 200
    True
"""

from .base import (
    FGPTVConfig,
    RegularizationResult,
    TVMethod,
)
from .operators import (
    objective_gradient,
    dual_step,
    project_dual,
    momentum_update,
    next_momentum,
)
from .workspace import (
    FGPWorkspace,
    allocate_workspace,
)
from .objective import (
    tv_norm,
    rof_objective,
)
from .fgp_tv import (
    solve_fgp_tv,
    fgp_tv_denoise,
)

__all__ = [
    # Base types
    "FGPTVConfig",
    "RegularizationResult",
    "TVMethod",
    # Operators
    "objective_gradient",
    "dual_step",
    "project_dual",
    "momentum_update",
    "next_momentum",
    # Buffers
    "FGPWorkspace",
    "allocate_workspace",
    # Diagnostics
    "tv_norm",
    "rof_objective",
    # FGP-TV
    "solve_fgp_tv",
    "fgp_tv_denoise",
]
