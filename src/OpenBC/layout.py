"""Secondary layout: one region per worker plus a placeholder slot.

The dense solver wants each worker to own exactly one region of the nodal
domain. ``GlobalLayoutBuilder`` learns every worker's region through an
all-gather and ``OwnershipMap`` assigns the entries back to workers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Tuple

import numpy as np

from .datastructures import Region, WorkerContext
from .decomposition import Decomposition, Placeholder, RealRegion
from .errors import ConfigurationError
from .geometry import Geometry

log = logging.getLogger(__name__)

# Value left in gather slots that no worker wrote
GATHER_SENTINEL = 100000


@dataclass(frozen=True)
class OwnershipMap:
    """Owner of every secondary entry: identity, then the caller for the placeholder."""

    owners: Tuple[int, ...]
    n_workers: int

    @classmethod
    def for_secondary(cls, ctx: WorkerContext) -> "OwnershipMap":
        owners = tuple(range(ctx.n_workers)) + (ctx.worker_id,)
        return cls(owners, ctx.n_workers)

    def __len__(self) -> int:
        return len(self.owners)

    def __getitem__(self, index: int) -> int:
        return self.owners[index]

    def __iter__(self) -> Iterator[int]:
        return iter(self.owners)

    def is_placeholder(self, index: int) -> bool:
        return index == self.n_workers


class GlobalLayoutBuilder:
    """Build the secondary decomposition from every worker's local region.

    Parameters
    ----------
    comm : MPICommunicator | SerialCommunicator
        Collective communicator; ``build`` is collective.
    """

    def __init__(self, comm):
        self.comm = comm

    def gather_regions(self, local: Region, ctx: WorkerContext) -> Tuple[Region, ...]:
        """All-gather the (lo, hi) bounds of every worker's region, ordered by worker id."""
        if self.comm.size != ctx.n_workers:
            raise ConfigurationError(
                f"Communicator has {self.comm.size} workers, context expects {ctx.n_workers}"
            )

        ndim = local.ndim
        count = 2 * ndim
        gathered = self.comm.allgather_array(np.array(local.bounds(), dtype=np.int64), GATHER_SENTINEL)

        if gathered.shape != (ctx.n_workers, count):
            raise ConfigurationError(
                f"Layout gather returned shape {gathered.shape}, "
                f"expected ({ctx.n_workers}, {count})"
            )
        if np.any(gathered == GATHER_SENTINEL):
            missing = sorted(set(np.nonzero(gathered == GATHER_SENTINEL)[0].tolist()))
            raise ConfigurationError(f"Layout gather incomplete, no bounds from workers {missing}")

        return tuple(
            Region(tuple(row[:ndim]), tuple(row[ndim:]), local.index_type) for row in gathered
        )

    def build(self, local: Region, ctx: WorkerContext, geometry: Geometry) -> Decomposition:
        """Secondary decomposition: n_workers real entries, then one placeholder."""
        if local.ndim != geometry.ndim:
            raise ConfigurationError(
                f"Local region is {local.ndim}-D, geometry is {geometry.ndim}-D"
            )
        regions = self.gather_regions(local, ctx)
        ownership = OwnershipMap.for_secondary(ctx)

        entries = [RealRegion(region, ownership[i]) for i, region in enumerate(regions)]
        entries.append(Placeholder(ownership[ctx.n_workers]))

        if ctx.is_root:
            log.info(f"Secondary layout: {ctx.n_workers} regions + placeholder")
        log.debug(f"Worker {ctx.worker_id} secondary region {regions[ctx.worker_id]}")
        return Decomposition(geometry, entries, ctx.n_workers)

