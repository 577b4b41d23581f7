"""Synthetic test images for total-variation denoising.

TV regularization favours piecewise-constant images, so the phantoms here are
built from flat rectangles and discs on a zero background. Ground truth is
returned alongside so restoration error can be measured.
"""

from typing import Tuple

import numpy as np


def piecewise_constant_2d(shape: Tuple[int, int] = (64, 64)) -> np.ndarray:
    """Generate a 2D piecewise-constant phantom.

    Contains a bright rectangle, a dimmer disc, and a thin bar, all with
    sharp edges, on a zero background. Values lie in [0, 1].

    Args:
        shape: Image shape (H, W). Both sides should be at least 16.

    Returns:
        (H, W) float32 image.

    Example:
        >>> img = piecewise_constant_2d((64, 64))
        >>> float(img.max())
        1.0
    """
    ny, nx = shape
    y, x = np.mgrid[0:ny, 0:nx]
    img = np.zeros(shape, dtype=np.float32)

    # Rectangle in the upper-left quadrant
    img[ny // 8 : ny // 2, nx // 8 : nx // 2] = 1.0

    # Disc in the lower-right quadrant
    cy, cx = 0.7 * ny, 0.7 * nx
    radius = 0.18 * min(ny, nx)
    img[(y - cy) ** 2 + (x - cx) ** 2 <= radius**2] = 0.5

    # Thin horizontal bar
    img[(3 * ny) // 4 : (3 * ny) // 4 + 2, nx // 8 : nx // 2] = 0.75

    return img


def piecewise_constant_3d(shape: Tuple[int, int, int] = (16, 64, 64)) -> np.ndarray:
    """Generate a 3D phantom: a cuboid and a ball on a zero background.

    Args:
        shape: Volume shape (D, H, W).

    Returns:
        (D, H, W) float32 volume with values in [0, 1].
    """
    nz, ny, nx = shape
    z, y, x = np.mgrid[0:nz, 0:ny, 0:nx]
    vol = np.zeros(shape, dtype=np.float32)

    vol[nz // 4 : (3 * nz) // 4, ny // 8 : ny // 2, nx // 8 : nx // 2] = 1.0

    radius = 0.3 * min(nz, ny, nx)
    ball = (
        ((z - nz / 2) / radius) ** 2
        + ((y - 0.7 * ny) / radius) ** 2
        + ((x - 0.7 * nx) / radius) ** 2
    ) <= 1.0
    vol[ball] = 0.5

    return vol


def add_gaussian_noise(
    image: np.ndarray,
    noise_level: float = 0.1,
    rng: np.random.Generator = None,
) -> np.ndarray:
    """Add Gaussian white noise to an image or volume.

    Args:
        image: Clean image.
        noise_level: Standard deviation of the noise relative to the image's
            dynamic range (max - min). E.g., 0.1 means 10% noise.
        rng: NumPy random generator. If None, uses default.

    Returns:
        Noisy float32 image of the same shape.

    Example:
        >>> img = piecewise_constant_2d((32, 32))
        >>> noisy = add_gaussian_noise(img, noise_level=0.05,
        ...                            rng=np.random.default_rng(0))
    """
    if rng is None:
        rng = np.random.default_rng()

    # Flat images have no range to scale by
    dynamic_range = float(np.max(image) - np.min(image))
    if dynamic_range <= 0:
        return image.astype(np.float32, copy=True)

    noise = rng.standard_normal(image.shape).astype(np.float32)
    return (image + noise * (noise_level * dynamic_range)).astype(np.float32)
