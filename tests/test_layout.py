"""Tests for the secondary layout and its ownership map."""

import numpy as np
import pytest

from OpenBC import ConfigurationError, Geometry, GlobalLayoutBuilder, OwnershipMap, WorkerContext
from OpenBC.decomposition import slab_region
from OpenBC.helpers.test_components_helper import run_workers
from OpenBC.layout import GATHER_SENTINEL
from OpenBC.mpi import SerialCommunicator


class MockComm:
    """Communicator whose all-gather returns a canned table."""

    def __init__(self, size, table):
        self.rank = 0
        self.size = size
        self.table = np.asarray(table, dtype=np.int64)

    def allgather_array(self, local, fill):
        return self.table


class TestOwnershipMap:
    @pytest.mark.parametrize("n_workers", [1, 2, 3, 4, 5])
    def test_one_entry_per_worker_plus_caller(self, n_workers):
        for worker_id in range(n_workers):
            ownership = OwnershipMap.for_secondary(WorkerContext(n_workers, worker_id, (False, False)))

            assert len(ownership) == n_workers + 1
            assert list(ownership)[:n_workers] == list(range(n_workers))
            assert ownership[n_workers] == worker_id
            assert ownership.is_placeholder(n_workers)
            assert not ownership.is_placeholder(0)


class TestGlobalLayoutBuilder:
    def test_single_worker_layout(self):
        """One real region plus a placeholder, both owned by worker 0."""
        geometry = Geometry.from_extent((8, 8))
        ctx = WorkerContext(1, 0, geometry.periodicity)
        local = slab_region(geometry.node_domain(), ctx)

        secondary = GlobalLayoutBuilder(SerialCommunicator()).build(local, ctx, geometry)

        assert len(secondary) == 2
        assert secondary.owners() == (0, 0)
        assert secondary[0].region == geometry.node_domain()
        assert secondary[1].is_placeholder

    @pytest.mark.parametrize("size", [2, 3, 4])
    def test_gathered_layout_identical_on_every_worker(self, size):
        geometry = Geometry.from_extent((4, 12, 6))

        def build(comm):
            ctx = WorkerContext.from_comm(comm, geometry.periodicity)
            local = slab_region(geometry.node_domain(), ctx)
            secondary = GlobalLayoutBuilder(comm).build(local, ctx, geometry)
            regions = [entry.region for entry in secondary.entries[:size]]
            return regions, secondary.owners()

        results = run_workers(size, build)

        expected_regions = results[0][0]
        for worker_id, (regions, owners) in enumerate(results):
            assert regions == expected_regions
            assert owners == tuple(range(size)) + (worker_id,)
        assert expected_regions[1] == slab_region(geometry.node_domain(), WorkerContext(size, 1, (False,) * 3))

    def test_missing_worker_bounds(self):
        geometry = Geometry.from_extent((8, 8))
        ctx = WorkerContext(2, 0, geometry.periodicity)
        table = [[0, 0, 8, 4], [GATHER_SENTINEL] * 4]

        with pytest.raises(ConfigurationError, match="workers \\[1\\]"):
            GlobalLayoutBuilder(MockComm(2, table)).build(
                slab_region(geometry.node_domain(), ctx), ctx, geometry
            )

    def test_result_count_mismatch(self):
        geometry = Geometry.from_extent((8, 8))
        ctx = WorkerContext(2, 0, geometry.periodicity)
        table = [[0, 0, 8, 4]]

        with pytest.raises(ConfigurationError):
            GlobalLayoutBuilder(MockComm(2, table)).build(
                slab_region(geometry.node_domain(), ctx), ctx, geometry
            )

    def test_communicator_size_mismatch(self):
        geometry = Geometry.from_extent((8, 8))
        ctx = WorkerContext(2, 0, geometry.periodicity)

        with pytest.raises(ConfigurationError):
            GlobalLayoutBuilder(SerialCommunicator()).build(
                slab_region(geometry.node_domain(), ctx), ctx, geometry
            )

    def test_dimension_mismatch(self):
        geometry = Geometry.from_extent((8, 8, 8))
        ctx = WorkerContext(1, 0, geometry.periodicity)
        local = Geometry.from_extent((8, 8)).node_domain()

        with pytest.raises(ConfigurationError):
            GlobalLayoutBuilder(SerialCommunicator()).build(local, ctx, geometry)
