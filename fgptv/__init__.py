"""fgptv - Fast Gradient Projection total-variation denoising.

A small library implementing the FGP-TV algorithm of Beck and Teboulle for
denoising 2D images and 3D volumes, with isotropic or anisotropic TV and
optional non-negativity.

The library is organized into one module:

- **regularizers**: PyTorch-based FGP-TV solver, its per-iteration
  operators, and ROF objective diagnostics

Example:
    >>> import numpy as np
    >>> from fgptv import fgp_tv_denoise
    >>>
    >>> # Raw single-precision samples, x fastest
    >>> flat = np.random.rand(256 * 256).astype(np.float32)
    >>> denoised = fgp_tv_denoise(
    ...     flat,
    ...     lambda_reg=0.04,
    ...     num_iter=300,
    ...     epsilon=1e-4,
    ...     method="iso",
    ...     nonneg=True,
    ...     verbose=False,
    ...     dim_x=256,
    ...     dim_y=256,
    ... )

Reference:
    Beck, A. and Teboulle, M. (2009). "Fast Gradient-Based Algorithms for
    Constrained Total Variation Image Denoising and Deblurring Problems".
    IEEE Transactions on Image Processing 18(11): 2419-2434.
"""

__version__ = "0.1.0"

from .regularizers import (
    FGPTVConfig,
    RegularizationResult,
    solve_fgp_tv,
    fgp_tv_denoise,
    tv_norm,
    rof_objective,
)

__all__ = [
    "__version__",
    "FGPTVConfig",
    "RegularizationResult",
    "solve_fgp_tv",
    "fgp_tv_denoise",
    "tv_norm",
    "rof_objective",
]
