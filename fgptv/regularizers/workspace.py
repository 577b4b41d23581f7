"""Call-scoped buffers for the FGP-TV driver."""

from contextlib import contextmanager
from typing import Iterator, Optional, Tuple, Union

import torch

__all__ = ["FGPWorkspace", "allocate_workspace", "allocation_guard"]


class FGPWorkspace:
    """Intermediate arrays owned by a single FGP-TV call.

    Attributes:
        estimate_prev: Previous estimate, shape of the grid. Also holds the
            estimate difference while the residual is measured.
        duals: Projected duals P, shape (ndim, *grid).
        duals_prev: Projected duals from the previous iteration.
        extrapolated: Momentum-carried duals R used for the next gradient.
        scratch: Grid-shaped buffer for divergence terms and projection
            divisors.
    """

    _fields = ("estimate_prev", "duals", "duals_prev", "extrapolated", "scratch")

    def __init__(self) -> None:
        self.estimate_prev: Optional[torch.Tensor] = None
        self.duals: Optional[torch.Tensor] = None
        self.duals_prev: Optional[torch.Tensor] = None
        self.extrapolated: Optional[torch.Tensor] = None
        self.scratch: Optional[torch.Tensor] = None

    @property
    def allocated(self) -> bool:
        """True while every buffer is held."""
        return all(getattr(self, name) is not None for name in self._fields)

    def release(self) -> None:
        """Drop every buffer reference."""
        for name in self._fields:
            setattr(self, name, None)


@contextmanager
def allocation_guard(what: str) -> Iterator[None]:
    """Re-raise allocator failures inside the block as MemoryError.

    PyTorch reports an exhausted CPU allocator as RuntimeError (and CUDA as
    its OutOfMemoryError subclass). Both, and a plain MemoryError, come out
    as MemoryError chained to the original.
    """
    try:
        yield
    except (RuntimeError, MemoryError) as exc:
        raise MemoryError(f"Could not allocate {what}") from exc


@contextmanager
def allocate_workspace(
    grid_shape: Tuple[int, ...],
    dtype: torch.dtype = torch.float32,
    device: Union[str, torch.device] = "cpu",
) -> Iterator[FGPWorkspace]:
    """Allocate zero-initialized FGP-TV buffers for the duration of a block.

    The buffers are released when the block exits, whichever way it exits.
    If any allocation fails, the buffers allocated so far are released and
    MemoryError is raised before the block runs.

    Args:
        grid_shape: Shape of the image/volume, (H, W) or (D, H, W).
        dtype: Buffer dtype.
        device: Buffer device.

    Yields:
        The populated FGPWorkspace.

    Example:
        >>> with allocate_workspace((64, 64)) as ws:
        ...     ws.duals.shape
        torch.Size([2, 64, 64])
    """
    grid_shape = tuple(grid_shape)
    dual_shape = (len(grid_shape), *grid_shape)

    workspace = FGPWorkspace()
    try:
        with allocation_guard(f"FGP-TV buffers for grid {grid_shape} ({dtype}, {device})"):
            workspace.estimate_prev = torch.zeros(grid_shape, dtype=dtype, device=device)
            workspace.duals = torch.zeros(dual_shape, dtype=dtype, device=device)
            workspace.duals_prev = torch.zeros(dual_shape, dtype=dtype, device=device)
            workspace.extrapolated = torch.zeros(dual_shape, dtype=dtype, device=device)
            workspace.scratch = torch.zeros(grid_shape, dtype=dtype, device=device)
    except MemoryError:
        workspace.release()
        raise

    try:
        yield workspace
    finally:
        workspace.release()
