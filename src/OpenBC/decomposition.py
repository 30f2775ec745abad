"""Decompositions: ordered regions with owning workers.

A decomposition is an ordered sequence of tagged entries. Real entries carry
a region and an owner; the placeholder entry carries only an owner and exists
to give the secondary layout its ``n_workers + 1`` ownership slots.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from mpi4py import MPI

from .datastructures import Region, WorkerContext
from .errors import ConfigurationError
from .geometry import Geometry

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealRegion:
    """A region of physical index space owned by one worker."""

    region: Region
    owner: int

    is_placeholder = False


@dataclass(frozen=True)
class Placeholder:
    """Ownership slot with no region and no data."""

    owner: int

    is_placeholder = True
    region = None


Entry = Union[RealRegion, Placeholder]


def split_extent(n: int, n_parts: int) -> Tuple[List[int], List[int]]:
    """Split n points among n_parts workers, remainder going to the first ones."""
    if n_parts > n:
        raise ConfigurationError(f"Cannot split {n} points among {n_parts} parts")
    base = n // n_parts
    rem = n % n_parts
    counts = [base + (1 if i < rem else 0) for i in range(n_parts)]
    starts = [sum(counts[:i]) for i in range(n_parts)]
    return counts, starts


class Decomposition:
    """Ordered (entry, owner) table over a geometry.

    Parameters
    ----------
    geometry : Geometry
        Domain and periodicity the regions live in.
    entries : sequence of RealRegion | Placeholder
        Ordered entries; the index of an entry is its region index.
    n_workers : int
        Number of workers; every owner must lie in ``[0, n_workers)``.
    """

    def __init__(self, geometry: Geometry, entries: Sequence[Entry], n_workers: int):
        self.geometry = geometry
        self.entries: Tuple[Entry, ...] = tuple(entries)
        self.n_workers = n_workers

        for i, entry in enumerate(self.entries):
            if not 0 <= entry.owner < n_workers:
                raise ConfigurationError(
                    f"Entry {i} owned by worker {entry.owner}, outside [0, {n_workers})"
                )

        real = [e.region for e in self.entries if not e.is_placeholder]
        if not real:
            raise ConfigurationError("Decomposition has no real regions")
        self.index_type = real[0].index_type
        for region in real:
            if region.ndim != geometry.ndim:
                raise ConfigurationError(
                    f"{region.ndim}-D region {region} in a {geometry.ndim}-D geometry"
                )
            if region.index_type != self.index_type:
                raise ConfigurationError(
                    f"Mixed index types in one decomposition: {self.index_type} and {region.index_type}"
                )

    @classmethod
    def from_domain(
        cls,
        geometry: Geometry,
        n_workers: int,
        strategy: str = "sliced",
        max_grid_size: Optional[int] = None,
    ) -> "Decomposition":
        """Primary decomposition of the cell domain.

        'sliced' splits the last axis across workers; 'cubic' uses a balanced
        processor grid. ``max_grid_size`` chops each worker's block further.
        """
        ndim = geometry.ndim
        dims = cls._compute_dims(strategy, n_workers, ndim)
        domain = geometry.domain

        splits = [split_extent(domain.shape[a], dims[a]) for a in range(ndim)]

        entries = []
        for owner, coords in enumerate(itertools.product(*(range(p) for p in dims))):
            lo = tuple(domain.lo[a] + splits[a][1][c] for a, c in enumerate(coords))
            hi = tuple(lo[a] + splits[a][0][c] - 1 for a, c in enumerate(coords))
            block = Region(lo, hi, domain.index_type)
            for region in chop(block, max_grid_size):
                entries.append(RealRegion(region, owner))

        log.debug(f"Primary decomposition: {strategy} dims={dims}, {len(entries)} regions")
        return cls(geometry, entries, n_workers)

    @staticmethod
    def _compute_dims(strategy: str, n_workers: int, ndim: int) -> List[int]:
        """Processor grid per axis, ordered (x, y[, z])."""
        if strategy == "sliced":
            return [1] * (ndim - 1) + [n_workers]
        elif strategy == "cubic":
            return list(reversed(MPI.Compute_dims(n_workers, ndim)))
        else:
            raise ConfigurationError(f"Unknown strategy: {strategy}. Use 'sliced' or 'cubic'.")

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> Entry:
        return self.entries[index]

    @property
    def ndim(self) -> int:
        return self.geometry.ndim

    def regions(self) -> Iterator[Tuple[int, Region, int]]:
        """(index, region, owner) for every real entry."""
        for i, entry in enumerate(self.entries):
            if not entry.is_placeholder:
                yield i, entry.region, entry.owner

    def owner(self, index: int) -> int:
        return self.entries[index].owner

    def owners(self) -> Tuple[int, ...]:
        return tuple(e.owner for e in self.entries)

    def local_indices(self, ctx: WorkerContext) -> List[int]:
        """Indices of real entries owned by the calling worker."""
        return [i for i, _, owner in self.regions() if owner == ctx.worker_id]

    def surrounding_nodes(self) -> "Decomposition":
        """Same ownership, every real region converted to its node-centered hull."""
        entries = [
            e if e.is_placeholder else RealRegion(e.region.surrounding_nodes(), e.owner)
            for e in self.entries
        ]
        return Decomposition(self.geometry, entries, self.n_workers)

    def covers_domain_once(self) -> bool:
        """True when the real regions tile the (cell or node) domain with no gap or overlap."""
        domain = self.geometry.domain
        if self.index_type.is_node():
            domain = domain.surrounding_nodes()
        elif not self.index_type.is_cell():
            return False

        count = np.zeros(domain.shape, dtype=np.int32)
        for _, region, _ in self.regions():
            if not domain.contains(region):
                return False
            count[region.slices(domain)] += 1
        return bool(np.all(count == 1))


def chop(region: Region, max_grid_size: Optional[int]) -> List[Region]:
    """Split a region into pieces no longer than max_grid_size along any axis."""
    if not max_grid_size:
        return [region]
    if max_grid_size < 1:
        raise ConfigurationError(f"max_grid_size must be positive, got {max_grid_size}")

    per_axis = []
    for a in range(region.ndim):
        n = region.shape[a]
        counts, starts = split_extent(n, -(-n // max_grid_size))
        per_axis.append([(region.lo[a] + s, region.lo[a] + s + c - 1) for c, s in zip(counts, starts)])

    return [
        Region(tuple(p[0] for p in pieces), tuple(p[1] for p in pieces), region.index_type)
        for pieces in itertools.product(*per_axis)
    ]


def slab_region(node_domain: Region, ctx: WorkerContext) -> Region:
    """The calling worker's slab of the nodal domain, split along the last axis.

    This is the layout the dense solver expects: one contiguous,
    non-overlapping slab per worker.
    """
    axis = node_domain.ndim - 1
    counts, starts = split_extent(node_domain.shape[axis], ctx.n_workers)
    lo = list(node_domain.lo)
    hi = list(node_domain.hi)
    lo[axis] = node_domain.lo[axis] + starts[ctx.worker_id]
    hi[axis] = lo[axis] + counts[ctx.worker_id] - 1
    return Region(tuple(lo), tuple(hi), node_domain.index_type)
