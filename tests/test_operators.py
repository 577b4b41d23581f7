"""Tests for the FGP-TV per-iteration operators.

Uses the dot-product test to verify that the zero-boundary divergence is the
adjoint of the zero-boundary gradient:
    ⟨grad(x), y⟩ = ⟨x, div(y)⟩

which holds for dual fields whose last slice along each axis is zero, as the
FGP-TV iterates always are.
"""

import math

import pytest
import torch

from fgptv.regularizers.operators import (
    _backward_diff,
    _divergence,
    _neg_forward_diff,
    dual_step,
    momentum_update,
    next_momentum,
    objective_gradient,
    project_dual,
)


def _zero_last_slices(y: torch.Tensor) -> torch.Tensor:
    """Zero component d of a stacked dual field at the last index of axis d."""
    y = y.clone()
    for dim in range(y.shape[0]):
        n = y.shape[dim + 1]
        y[dim].narrow(dim, n - 1, 1).zero_()
    return y


def dot_product_test(
    shape: tuple,
    dtype: torch.dtype = torch.float64,
    rtol: float = 1e-10,
) -> tuple:
    """Verify ⟨grad(x), y⟩ = ⟨x, div(y)⟩ for random x and admissible y.

    Returns:
        Tuple of (lhs, rhs, relative_error)
    """
    torch.manual_seed(42)
    x = torch.randn(shape, dtype=dtype)
    y = _zero_last_slices(torch.randn((len(shape), *shape), dtype=dtype))

    grad = torch.stack([_neg_forward_diff(x, dim) for dim in range(len(shape))])
    lhs = torch.sum(grad * y).item()
    rhs = torch.sum(x * _divergence(y)).item()

    rel_error = abs(lhs - rhs) / (0.5 * (abs(lhs) + abs(rhs)) + 1e-12)

    assert rel_error < rtol, (
        f"Dot-product test failed: ⟨grad x, y⟩ = {lhs:.12e}, ⟨x, div y⟩ = {rhs:.12e}, "
        f"relative error = {rel_error:.2e} (tolerance = {rtol:.2e})"
    )
    return lhs, rhs, rel_error


class TestFiniteDifferences:
    """Zero-boundary finite differences."""

    def test_adjoint_2d(self):
        lhs, rhs, err = dot_product_test((32, 24))
        print(f"2D: ⟨grad x, y⟩={lhs:.10e}, ⟨x, div y⟩={rhs:.10e}, err={err:.2e}")

    def test_adjoint_3d(self):
        lhs, rhs, err = dot_product_test((8, 16, 12))
        print(f"3D: ⟨grad x, y⟩={lhs:.10e}, ⟨x, div y⟩={rhs:.10e}, err={err:.2e}")

    def test_neg_forward_diff_boundary(self):
        """D[i] = x[i] - x[i+1] and zero at the last index, no wraparound."""
        x = torch.tensor([[1.0, 4.0, 9.0], [2.0, 2.0, 0.0]])

        along_cols = _neg_forward_diff(x, dim=1)
        expected_cols = torch.tensor([[-3.0, -5.0, 0.0], [0.0, 2.0, 0.0]])
        assert torch.equal(along_cols, expected_cols)

        along_rows = _neg_forward_diff(x, dim=0)
        expected_rows = torch.tensor([[-1.0, 2.0, 9.0], [0.0, 0.0, 0.0]])
        assert torch.equal(along_rows, expected_rows)

    def test_backward_diff_boundary(self):
        """D[0] = x[0]: the value before the first index is zero."""
        x = torch.tensor([[1.0, 4.0, 9.0], [2.0, 2.0, 0.0]])

        along_cols = _backward_diff(x, dim=1)
        expected = torch.tensor([[1.0, 3.0, 5.0], [2.0, 0.0, -2.0]])
        assert torch.equal(along_cols, expected)

    def test_single_sample_axis(self):
        """An axis of length 1 has zero gradient and identity backward difference."""
        x = torch.randn(1, 5)
        assert torch.equal(_neg_forward_diff(x, dim=0), torch.zeros_like(x))
        assert torch.equal(_backward_diff(x, dim=0), x)

    def test_inputs_not_modified(self):
        x = torch.randn(6, 7)
        x_copy = x.clone()
        _neg_forward_diff(x, dim=1)
        _backward_diff(x, dim=0)
        assert torch.equal(x, x_copy)


class TestObjectiveGradient:
    """u = f - lambda * div(R)."""

    def test_zero_duals_return_observed(self):
        f = torch.randn(10, 12)
        duals = torch.zeros(2, 10, 12)
        u = objective_gradient(f, duals, lambda_reg=0.3)
        assert torch.equal(u, f)

    def test_matches_divergence(self):
        torch.manual_seed(0)
        f = torch.randn(4, 9, 7, dtype=torch.float64)
        duals = torch.randn(3, 4, 9, 7, dtype=torch.float64)
        u = objective_gradient(f, duals, lambda_reg=0.25)
        assert torch.allclose(u, f - 0.25 * _divergence(duals))

    def test_writes_into_out(self):
        f = torch.randn(5, 5)
        duals = torch.randn(2, 5, 5)
        out = torch.empty(5, 5)
        result = objective_gradient(f, duals, 0.1, out=out)
        assert result is out
        assert torch.allclose(out, objective_gradient(f, duals, 0.1))

    def test_shape_mismatch_raises(self):
        with pytest.raises(ValueError, match="Dual variables must have shape"):
            objective_gradient(torch.zeros(4, 4), torch.zeros(3, 4, 4), 0.1)


class TestDualStep:
    """P = R + grad(u) / (8 lambda)."""

    def test_constant_estimate_keeps_duals(self):
        u = torch.full((6, 6), 3.0)
        duals = torch.randn(2, 6, 6)
        assert torch.equal(dual_step(u, duals, lambda_reg=0.5), duals)

    def test_scaling(self):
        u = torch.tensor([[0.0, 8.0], [4.0, 4.0]])
        duals = torch.zeros(2, 2, 2)
        p = dual_step(u, duals, lambda_reg=0.5)  # step = 1/4

        expected_rows = torch.tensor([[-1.0, 1.0], [0.0, 0.0]])
        expected_cols = torch.tensor([[-2.0, 0.0], [0.0, 0.0]])
        assert torch.equal(p[0], expected_rows)
        assert torch.equal(p[1], expected_cols)

    @pytest.mark.parametrize("lambda_reg", [1e-3, 1e-1, 1.0, 1e1, 1e3])
    def test_finite_for_representative_lambda(self, lambda_reg):
        torch.manual_seed(1)
        u = 1000.0 * torch.rand(3, 16, 16)
        p = dual_step(u, torch.zeros(3, 3, 16, 16), lambda_reg)
        assert torch.isfinite(p).all()
        assert math.isfinite(1.0 / (8.0 * lambda_reg))

    def test_writes_into_out(self):
        u = torch.randn(4, 5)
        duals = torch.randn(2, 4, 5)
        out = torch.empty(2, 4, 5)
        result = dual_step(u, duals, 0.2, out=out)
        assert result is out
        assert torch.allclose(out, dual_step(u, duals, 0.2))


class TestProjection:
    """Projection onto the unit ball, isotropic and anisotropic."""

    def test_isotropic_bound(self):
        torch.manual_seed(3)
        p = 10.0 * torch.randn(3, 8, 8, 8)
        project_dual(p, "iso")
        norms = torch.sqrt(torch.sum(p**2, dim=0))
        assert torch.all(norms <= 1.0 + 1e-6), f"max norm {norms.max().item()}"

    def test_isotropic_preserves_direction(self):
        p = torch.tensor([[[3.0]], [[4.0]]])
        project_dual(p, "iso")
        assert torch.allclose(p.flatten(), torch.tensor([0.6, 0.8]))

    def test_isotropic_leaves_interior_points(self):
        p = torch.tensor([[[0.3, -0.5]], [[0.4, 0.5]]])
        expected = p.clone()
        project_dual(p, "iso")
        assert torch.equal(p, expected)

    def test_anisotropic_bound(self):
        torch.manual_seed(4)
        p = 10.0 * torch.randn(2, 16, 16)
        project_dual(p, "l1")
        assert torch.all(torch.abs(p) <= 1.0 + 1e-6)

    def test_anisotropic_is_componentwise_clip(self):
        torch.manual_seed(5)
        p = 3.0 * torch.randn(3, 4, 5, 6, dtype=torch.float64)
        expected = torch.clamp(p, min=-1.0, max=1.0)
        project_dual(p, "l1")
        assert torch.allclose(p, expected)

    def test_in_place(self):
        p = 5.0 * torch.ones(2, 3, 3)
        result = project_dual(p, "iso")
        assert result is p

    def test_unknown_method_raises(self):
        with pytest.raises(ValueError, match="Unknown TV method"):
            project_dual(torch.zeros(2, 3, 3), "tv2")


class TestMomentum:
    """FISTA coefficient and extrapolation."""

    def test_first_coefficient(self):
        assert next_momentum(1.0) == pytest.approx((1.0 + math.sqrt(5.0)) / 2.0)

    def test_coefficient_monotone(self):
        tk = 1.0
        for _ in range(500):
            tk_next = next_momentum(tk)
            assert tk_next > tk
            assert tk_next >= 1.0
            tk = tk_next

    def test_no_extrapolation_on_first_step(self):
        """With t_k = 1 the extrapolation weight is zero, so R = P."""
        torch.manual_seed(6)
        p = torch.randn(2, 4, 4)
        p_prev = torch.randn(2, 4, 4)
        r = momentum_update(p, p_prev, 1.0, next_momentum(1.0))
        assert torch.equal(r, p)

    def test_extrapolation_formula(self):
        torch.manual_seed(7)
        p = torch.randn(3, 2, 3, 4, dtype=torch.float64)
        p_prev = torch.randn(3, 2, 3, 4, dtype=torch.float64)
        tk = 2.5
        tk_next = next_momentum(tk)
        expected = p + ((tk - 1.0) / tk_next) * (p - p_prev)

        assert torch.allclose(momentum_update(p, p_prev, tk, tk_next), expected)

        out = torch.empty_like(p)
        result = momentum_update(p, p_prev, tk, tk_next, out=out)
        assert result is out
        assert torch.allclose(out, expected)


class TestPreallocatedBuffers:
    """With out/scratch supplied, no operator asks for a new tensor."""

    @pytest.mark.parametrize("shape", [(6, 7), (3, 4, 5)])
    @pytest.mark.parametrize("method", ["iso", "l1"])
    def test_one_iteration_in_place(self, monkeypatch, shape, method):
        torch.manual_seed(8)
        ndim = len(shape)
        observed = torch.rand(shape)
        extrapolated = _zero_last_slices(0.5 * torch.randn(ndim, *shape))
        duals_prev = torch.zeros(ndim, *shape)
        estimate = torch.empty(shape)
        duals = torch.empty(ndim, *shape)
        scratch = torch.empty(shape)
        expected_estimate = objective_gradient(observed, extrapolated, 0.3)
        expected_duals = project_dual(dual_step(expected_estimate, extrapolated, 0.3), method)

        def refuse(*args, **kwargs):
            raise RuntimeError("allocation while buffers were supplied")

        for name in ("zeros_like", "empty_like"):
            monkeypatch.setattr(torch, name, refuse)

        objective_gradient(observed, extrapolated, 0.3, out=estimate, scratch=scratch)
        dual_step(estimate, extrapolated, 0.3, out=duals)
        project_dual(duals, method, scratch=scratch)
        momentum_update(duals, duals_prev, 1.0, next_momentum(1.0), out=extrapolated)

        monkeypatch.undo()
        assert torch.allclose(estimate, expected_estimate)
        assert torch.allclose(duals, expected_duals)
        assert torch.equal(extrapolated, duals)


if __name__ == "__main__":
    print("=" * 60)
    print("Testing zero-boundary gradient/divergence adjoint")
    print("=" * 60)
    test_fd = TestFiniteDifferences()
    test_fd.test_adjoint_2d()
    test_fd.test_adjoint_3d()

    print("\n" + "=" * 60)
    print("All tests passed!")
    print("=" * 60)
