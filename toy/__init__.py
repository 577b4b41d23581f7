"""Synthetic phantoms for denoising experiments.

Example:
    >>> import numpy as np
    >>> from toy import piecewise_constant_2d, add_gaussian_noise
    >>> from fgptv import solve_fgp_tv
    >>>
    >>> clean = piecewise_constant_2d((128, 128))
    >>> noisy = add_gaussian_noise(clean, noise_level=0.1, rng=np.random.default_rng(1))
    >>> result = solve_fgp_tv(noisy, lambda_reg=0.08, num_iter=200)
"""

from .problems import (
    piecewise_constant_2d,
    piecewise_constant_3d,
    add_gaussian_noise,
)

__all__ = [
    "piecewise_constant_2d",
    "piecewise_constant_3d",
    "add_gaussian_noise",
]
