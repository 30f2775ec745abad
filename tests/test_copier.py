"""Tests for the reduction and scatter copy engines."""

import numpy as np
import pytest

from OpenBC import (
    ConfigurationError,
    ContractViolation,
    Decomposition,
    Field,
    Geometry,
    GlobalLayoutBuilder,
    RealRegion,
    ReductionCopyEngine,
    Region,
    ScatterCopyEngine,
    WorkerContext,
)
from OpenBC.copier import build_copy_plan
from OpenBC.decomposition import slab_region
from OpenBC.helpers.test_components_helper import run_workers
from OpenBC.mpi import SerialCommunicator
from OpenBC.problems import fill_density


def x_split_primary(periodic_x):
    """Two workers on [0,8)x[0,8): worker 0 owns x in [0,4), worker 1 x in [4,8)."""
    geometry = Geometry.from_extent((8, 8), periodic=(periodic_x, False))
    entries = [
        RealRegion(Region((0, 0), (3, 7)), 0),
        RealRegion(Region((4, 0), (7, 7)), 1),
    ]
    return geometry, Decomposition(geometry, entries, n_workers=2)


def reduce_to_secondary(comm, geometry, primary, fill, ngrow=0):
    """Build the secondary layout and reduction-copy a nodal source into it."""
    ctx = WorkerContext.from_comm(comm, geometry.periodicity)
    nodal = primary.surrounding_nodes()

    src = Field(nodal, ctx, ngrow=ngrow, name="src")
    fill(src)

    local = slab_region(geometry.node_domain(), ctx)
    secondary = GlobalLayoutBuilder(comm).build(local, ctx, geometry)
    dst = Field(secondary, ctx, name="dst")
    dst.set_val(0.0)
    ReductionCopyEngine(comm).copy(dst, src, ctx)
    return ctx, nodal, src, dst


def unit_value_at_origin(field):
    for i in field.local_indices():
        box = field.box(i)
        origin = Region((0, 0), (0, 0), box.index_type)
        if box.contains(origin):
            field.view(i, origin)[...] = 1.0


class TestReductionCopy:
    """Additive copy onto the secondary layout."""

    @pytest.mark.parametrize("periodic_x,expected", [(True, 2.0), (False, 1.0)])
    def test_periodic_image_doubles_mass(self, periodic_x, expected):
        """A unit value at x=0 also lands on the periodic image node x=8."""
        geometry, primary = x_split_primary(periodic_x)

        def run(comm):
            _, _, _, dst = reduce_to_secondary(comm, geometry, primary, unit_value_at_origin)
            return dst.global_sum(comm)

        totals = run_workers(2, run)
        assert totals == [pytest.approx(expected), pytest.approx(expected)]

    def test_periodic_image_lands_on_last_node(self):
        geometry, primary = x_split_primary(True)

        def run(comm):
            ctx, _, _, dst = reduce_to_secondary(comm, geometry, primary, unit_value_at_origin)
            values = {}
            for i in dst.local_indices():
                box = dst.box(i)
                for x in (0, 8):
                    node = Region((x, 0), (x, 0), box.index_type)
                    if box.contains(node):
                        values[x] = float(dst.view(i, node)[0, 0])
            return values

        results = run_workers(2, run)
        merged = {k: v for r in results for k, v in r.items()}
        assert merged == {0: 1.0, 8: 1.0}

    @pytest.mark.parametrize("size,strategy", [(1, "sliced"), (2, "sliced"), (3, "sliced"), (4, "cubic")])
    def test_conserves_total(self, size, strategy):
        """Without periodicity every stored source value lands exactly once."""
        geometry = Geometry.from_extent((6, 6, 6))
        primary = Decomposition.from_domain(geometry, size, strategy=strategy)
        rng = np.random.default_rng(7)
        values = rng.random(geometry.node_domain().shape)

        def fill(field):
            for i in field.local_indices():
                region = field.valid_region(i)
                field.view(i, region)[...] = values[region.slices(geometry.node_domain())]

        def run(comm):
            _, _, src, dst = reduce_to_secondary(comm, geometry, primary, fill)
            return src.global_sum(comm), dst.global_sum(comm)

        for src_total, dst_total in run_workers(size, run):
            assert dst_total == pytest.approx(src_total, rel=1e-12)

    def test_ghost_layers_contribute(self):
        """Values deposited in source ghost cells are summed into their owners."""
        geometry = Geometry.from_extent((8, 8), periodic=(True, True))
        primary = Decomposition.from_domain(geometry, 2)

        def ones_everywhere(field):
            for i in field.local_indices():
                field.array(i)[...] = 1.0

        def run(comm):
            _, _, src, dst = reduce_to_secondary(comm, geometry, primary, ones_everywhere, ngrow=1)
            return src.global_sum(comm, valid_only=False), dst.global_sum(comm)

        src_total, dst_total = run_workers(2, run)[0]
        # Each periodic node-domain face adds its image once more per axis
        assert src_total == 2 * 11 * 7
        assert dst_total == 208


class TestScatterCopy:
    """Overwriting copy back onto the primary nodes."""

    @pytest.mark.parametrize("size,strategy", [(1, "sliced"), (2, "sliced"), (4, "cubic")])
    def test_round_trip_recovers_field(self, size, strategy):
        geometry = Geometry.from_extent((6, 8, 10))
        primary = Decomposition.from_domain(geometry, size, strategy=strategy)

        def linear(x, y, z):
            return 1.0 + x + 10.0 * y + 100.0 * z

        def run(comm):
            ctx, nodal, _, dst = reduce_to_secondary(
                comm, geometry, primary, lambda f: fill_density(f, linear)
            )
            back = Field(nodal, ctx, name="back")
            ScatterCopyEngine(comm).copy(back, dst, ctx)
            return max(
                float(np.max(np.abs(back.valid_view(i) - linear(*geometry.meshgrid(back.valid_region(i))))))
                for i in back.local_indices()
            )

        assert max(run_workers(size, run)) < 1e-12

    def test_halo_filled_from_neighbours(self):
        geometry = Geometry.from_extent((4, 8))
        primary = Decomposition.from_domain(geometry, 2)

        def index_value(x, y):
            return x + 100.0 * y

        def run(comm):
            ctx, nodal, _, dst = reduce_to_secondary(
                comm, geometry, primary, lambda f: fill_density(f, index_value)
            )
            phi = Field(nodal, ctx, ngrow=1, name="phi")
            ScatterCopyEngine(comm).copy(phi, dst, ctx)
            (i,) = phi.local_indices()
            valid = phi.valid_region(i)
            # Interior face of the halo along the split axis
            if ctx.worker_id == 0:
                face = Region((0, valid.hi[1] + 1), (4, valid.hi[1] + 1), valid.index_type)
            else:
                face = Region((0, valid.lo[1] - 1), (4, valid.lo[1] - 1), valid.index_type)
            return np.allclose(phi.view(i, face), index_value(*geometry.meshgrid(face)))

        assert run_workers(2, run) == [True, True]

    def test_periodic_halo_overwritten_from_images(self):
        """Halo x=-1 reads node L-1, halo x=L+1 reads node 1, shared nodes 0 and L are not summed."""
        geometry, primary = x_split_primary(True)

        def wrapped(x, y):
            return np.mod(x, 8.0) + 100.0 * y

        def run(comm):
            ctx, nodal, _, dst = reduce_to_secondary(
                comm, geometry, primary, lambda f: fill_density(f, wrapped)
            )
            phi = Field(nodal, ctx, ngrow=1, name="phi")
            phi.set_val(-5.0)
            ScatterCopyEngine(comm).copy(phi, dst, ctx)
            (i,) = phi.local_indices()
            faces = {}
            for x in (-1, 0, 8, 9):
                face = Region((x, 0), (x, 8), phi.box(i).index_type)
                if phi.box(i).contains(face):
                    faces[x] = (phi.view(i, face).ravel(), wrapped(*geometry.meshgrid(face)).ravel())
            return faces

        merged = {x: v for faces in run_workers(2, run) for x, v in faces.items()}
        assert sorted(merged) == [-1, 0, 8, 9]
        for got, expected in merged.values():
            assert np.allclose(got, expected)
        y = np.arange(9.0)
        assert np.allclose(merged[-1][0], 7.0 + 100.0 * y)
        assert np.allclose(merged[9][0], 1.0 + 100.0 * y)
        assert np.allclose(merged[0][0], merged[8][0])

class TestCopyErrors:
    def test_periodicity_mismatch(self):
        periodic = Geometry.from_extent((8, 8), periodic=(True, False))
        closed = Geometry.from_extent((8, 8))
        a = Decomposition.from_domain(periodic, 1).surrounding_nodes()
        b = Decomposition.from_domain(closed, 1).surrounding_nodes()

        with pytest.raises(ConfigurationError, match="Periodicity"):
            build_copy_plan(a, b)

    def test_dimension_mismatch(self):
        a = Decomposition.from_domain(Geometry.from_extent((8, 8)), 1)
        b = Decomposition.from_domain(Geometry.from_extent((8, 8, 8)), 1)

        with pytest.raises(ConfigurationError):
            build_copy_plan(a, b)

    def test_second_periodic_image_is_fatal(self):
        geometry = Geometry.from_extent((2, 8), periodic=(True, False))
        nodes = Decomposition.from_domain(geometry, 1).surrounding_nodes()

        with pytest.raises(ConfigurationError, match="more than one periodic image"):
            build_copy_plan(nodes, nodes, src_ngrow=2)

    def test_context_mismatch(self):
        geometry = Geometry.from_extent((4, 4))
        nodes = Decomposition.from_domain(geometry, 1).surrounding_nodes()
        ctx = WorkerContext(1, 0, geometry.periodicity)
        other = WorkerContext(1, 0, (True, True))
        src = Field(nodes, ctx)
        dst = Field(nodes, other)

        with pytest.raises(ConfigurationError):
            ScatterCopyEngine(SerialCommunicator()).copy(dst, src, ctx)

    def test_view_outside_buffer(self):
        geometry = Geometry.from_extent((4, 4))
        nodes = Decomposition.from_domain(geometry, 1).surrounding_nodes()
        field = Field(nodes, WorkerContext(1, 0, geometry.periodicity), ngrow=1)

        with pytest.raises(ContractViolation):
            field.view(0, field.box(0).grow(1))
