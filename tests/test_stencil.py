"""Tests for gradient kernels and the stencil derivator."""

import numpy as np
import pytest

from OpenBC import (
    ConfigurationError,
    ContractViolation,
    Decomposition,
    Field,
    Geometry,
    NumbaGradientKernel,
    NumPyGradientKernel,
    StencilDerivator,
    WorkerContext,
    create_kernel,
    make_vector_field,
)


@pytest.fixture(scope="module")
def numba_kernel():
    kernel = NumbaGradientKernel(specified_numba_threads=1)
    kernel.warmup()
    return kernel


def linear_potential(a, b, c=0.0):
    def phi(*coords):
        value = a * coords[0] + b * coords[1]
        if len(coords) == 3:
            value = value + c * coords[2]
        return value

    return phi


def build(n_cells, n_workers=1, prob_hi=None):
    geometry = Geometry.from_extent(n_cells, prob_hi=prob_hi)
    nodes = Decomposition.from_domain(geometry, n_workers, max_grid_size=4).surrounding_nodes()
    return geometry, nodes, WorkerContext(n_workers, 0, geometry.periodicity)


class TestKernels:
    """NumPy and Numba kernels on raw arrays."""

    def test_kernels_produce_identical_results(self, numba_kernel):
        rng = np.random.default_rng(0)
        phi = rng.random((9, 8, 7))
        for axis in range(3):
            out_numpy = np.zeros((7, 6, 5))
            out_numba = np.zeros((7, 6, 5))
            NumPyGradientKernel().gradient(phi, out_numpy, axis, 0.5, -1.0)
            numba_kernel.gradient(phi, out_numba, axis, 0.5, -1.0)
            assert np.allclose(out_numpy, out_numba, atol=1e-14)

    def test_non_contiguous_views(self, numba_kernel):
        phi = np.arange(100.0).reshape(10, 10)[::2, ::2]  # strided view
        out = np.zeros((3, 3))
        numba_kernel.gradient(phi, out, 1, 1.0)
        assert np.allclose(out, 2.0)

    @pytest.mark.parametrize("kind", ["numpy", "numba"])
    def test_shape_contract(self, kind):
        kernel = create_kernel(kind)
        with pytest.raises(ContractViolation):
            kernel.gradient(np.zeros((6, 6)), np.zeros((5, 4)), 0, 1.0)

    def test_unknown_kernel(self):
        with pytest.raises(ConfigurationError):
            create_kernel("fortran")


class TestStencilDerivator:
    """Gradient of fields with a one-layer halo."""

    @pytest.mark.parametrize("kind", ["numpy", "numba"])
    @pytest.mark.parametrize("n_cells", [(8, 6), (6, 5, 7)])
    def test_linear_potential_gives_constant_gradient(self, kind, n_cells, numba_kernel):
        a, b, c = 2.0, -3.0, 0.5
        geometry, nodes, ctx = build(n_cells, prob_hi=tuple(0.5 * n for n in n_cells))
        kernel = numba_kernel if kind == "numba" else NumPyGradientKernel()

        phi = Field(nodes, ctx, ngrow=1, name="phi")
        phi.fill(linear_potential(a, b, c), include_ghosts=True)
        out = make_vector_field(nodes, ctx)

        StencilDerivator(kernel).apply(phi, out, ctx)

        expected = (a, b, c)[: geometry.ndim]
        for component, value in zip(out, expected):
            for i in component.local_indices():
                assert np.allclose(component.valid_view(i), value, atol=1e-12)

    @pytest.mark.parametrize("kind", ["numpy", "numba"])
    def test_domain_faces_use_one_sided_difference(self, kind, numba_kernel):
        """The outer halo is never read on non-periodic faces; quadratics stay exact."""
        geometry, nodes, ctx = build((8, 6), prob_hi=(2.0, 1.5))
        domain = geometry.node_domain()
        kernel = numba_kernel if kind == "numba" else NumPyGradientKernel()

        def quadratic(x, y):
            return x**2 - 3.0 * y**2 + x * y

        phi = Field(nodes, ctx, ngrow=1, name="phi")
        phi.set_val(1e6)
        for i in phi.local_indices():
            inside = phi.box(i).intersect(domain)
            phi.view(i, inside)[...] = quadratic(*geometry.meshgrid(inside))
        out = make_vector_field(nodes, ctx)

        StencilDerivator(kernel, negate=True).apply(phi, out, ctx)

        for i in out[0].local_indices():
            x, y = geometry.meshgrid(out[0].valid_region(i))
            assert np.allclose(out[0].valid_view(i), -(2.0 * x + y), atol=1e-10)
            assert np.allclose(out[1].valid_view(i), -(-6.0 * y + x), atol=1e-10)

    def test_periodic_axis_reads_halo(self):
        geometry = Geometry.from_extent((4, 4), periodic=(True, False))
        nodes = Decomposition.from_domain(geometry, 1).surrounding_nodes()
        ctx = WorkerContext(1, 0, geometry.periodicity)
        phi = Field(nodes, ctx, ngrow=1)
        phi.fill(linear_potential(1.0, 0.0), include_ghosts=True)
        # x=0 must use the halo node x=-1, not a one-sided difference
        phi.view(0, phi.box(0))[0, :] = 0.0
        out = make_vector_field(nodes, ctx)

        StencilDerivator().apply(phi, out, ctx)
        assert np.allclose(out[0].valid_view(0)[0, :], 0.5)
        assert np.allclose(out[0].valid_view(0)[1:, :], 1.0)

    def test_negate_gives_field(self):
        geometry, nodes, ctx = build((4, 4))
        phi = Field(nodes, ctx, ngrow=1)
        phi.fill(linear_potential(1.0, 4.0), include_ghosts=True)
        out = make_vector_field(nodes, ctx)

        StencilDerivator(negate=True).apply(phi, out, ctx)

        for i in out[0].local_indices():
            assert np.allclose(out[0].valid_view(i), -1.0)
            assert np.allclose(out[1].valid_view(i), -4.0)

    def test_missing_halo_is_contract_violation(self):
        _, nodes, ctx = build((4, 4))
        phi = Field(nodes, ctx, ngrow=0)
        out = make_vector_field(nodes, ctx)

        with pytest.raises(ContractViolation):
            StencilDerivator().apply(phi, out, ctx)

    def test_component_count(self):
        geometry, nodes, ctx = build((4, 4, 4))
        phi = Field(nodes, ctx, ngrow=1)
        out = make_vector_field(nodes, ctx)[:2]

        with pytest.raises(ConfigurationError):
            StencilDerivator().apply(phi, out, ctx)

    def test_mismatched_decompositions(self):
        geometry, nodes, ctx = build((8, 8))
        other = Decomposition.from_domain(geometry, 1).surrounding_nodes()
        phi = Field(nodes, ctx, ngrow=1)
        out = make_vector_field(other, ctx)

        with pytest.raises(ConfigurationError):
            StencilDerivator().apply(phi, out, ctx)
