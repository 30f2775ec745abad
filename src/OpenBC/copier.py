"""Copy engines between two decompositions of the same geometry.

Every worker computes the same copy plan from the two (globally known)
decompositions. Executing a plan is one collective all-to-all: each worker
packs the chunks whose source it owns, sends them to the destination owners
and applies what it receives in plan order.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from .datastructures import Region, WorkerContext
from .decomposition import Decomposition
from .errors import ConfigurationError, ContractViolation
from .field import Field

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CopyChunk:
    """One source-to-destination overlap.

    ``region`` is in destination index space; the source data sits at
    ``region`` translated by ``-shift``.
    """

    src_index: int
    dst_index: int
    src_owner: int
    dst_owner: int
    region: Region
    shift: Tuple[int, ...]

    def src_region(self) -> Region:
        return self.region.shift(tuple(-s for s in self.shift))


def check_compatible(dst: Decomposition, src: Decomposition):
    """Fatal unless both decompositions describe the same periodic domain."""
    gd, gs = dst.geometry, src.geometry
    if gd.ndim != gs.ndim:
        raise ConfigurationError(f"Dimensionality mismatch: {gs.ndim}-D source, {gd.ndim}-D destination")
    if gd.periodicity != gs.periodicity:
        raise ConfigurationError(
            f"Periodicity mismatch: source {gs.periodicity}, destination {gd.periodicity}"
        )
    if gd.domain != gs.domain:
        raise ConfigurationError(f"Domain mismatch: source {gs.domain}, destination {gd.domain}")
    if dst.index_type != src.index_type:
        raise ConfigurationError(
            f"Index type mismatch: source {src.index_type}, destination {dst.index_type}"
        )
    if dst.n_workers != src.n_workers:
        raise ConfigurationError(
            f"Worker count mismatch: source {src.n_workers}, destination {dst.n_workers}"
        )


def build_copy_plan(
    dst: Decomposition, src: Decomposition, src_ngrow: int = 0, dst_ngrow: int = 0
) -> List[CopyChunk]:
    """All overlaps of grown source regions with grown destination regions.

    Overlaps are searched directly and through one periodic image per
    periodic axis. An overlap that would need a second image is rejected.
    """
    check_compatible(dst, src)
    geometry = dst.geometry
    shifts = geometry.periodic_shifts()
    far_shifts = geometry.far_periodic_shifts()

    src_boxes = [(i, region.grow(src_ngrow), owner) for i, region, owner in src.regions()]

    plan = []
    for di, dregion, downer in dst.regions():
        dbox = dregion.grow(dst_ngrow)
        for si, sbox, sowner in src_boxes:
            for shift in shifts:
                overlap = dbox.intersect(sbox.shift(shift))
                if overlap is not None:
                    plan.append(CopyChunk(si, di, sowner, downer, overlap, shift))
            for shift in far_shifts:
                if dbox.intersect(sbox.shift(shift)) is not None:
                    raise ConfigurationError(
                        f"Source region {si} reaches destination region {di} through more "
                        f"than one periodic image (shift {shift}); domain too small for "
                        f"{src_ngrow} source / {dst_ngrow} destination ghost layers"
                    )
    return plan


class CopyEngine(ABC):
    """Abstract base for plan-driven copies between decompositions.

    Parameters
    ----------
    comm : MPICommunicator | SerialCommunicator
        Collective communicator; ``copy`` is collective.
    """

    name = "copy"

    def __init__(self, comm):
        self.comm = comm

    @abstractmethod
    def ghost_layers(self, dst: Field, src: Field) -> Tuple[int, int]:
        """(source, destination) ghost layers that take part in the copy."""
        pass

    @abstractmethod
    def apply(self, target: np.ndarray, data: np.ndarray):
        """Combine received data into the destination view."""
        pass

    def plan(self, dst: Field, src: Field) -> List[CopyChunk]:
        src_ngrow, dst_ngrow = self.ghost_layers(dst, src)
        return build_copy_plan(dst.decomposition, src.decomposition, src_ngrow, dst_ngrow)

    def copy(self, dst: Field, src: Field, ctx: WorkerContext) -> int:
        """Run the copy; returns the number of chunks in the global plan."""
        if dst.ctx != ctx or src.ctx != ctx:
            raise ConfigurationError(
                f"{self.name}: fields {src.name}/{dst.name} were built for another worker context"
            )
        plan = self.plan(dst, src)
        me = ctx.worker_id

        outgoing = [[] for _ in range(ctx.n_workers)]
        for n, chunk in enumerate(plan):
            if chunk.src_owner == me:
                data = src.view(chunk.src_index, chunk.src_region()).copy()
                outgoing[chunk.dst_owner].append((n, data))

        incoming = self.comm.alltoall(outgoing)
        received = sorted(
            (item for items in incoming for item in items), key=lambda item: item[0]
        )

        expected = sum(1 for chunk in plan if chunk.dst_owner == me)
        if len(received) != expected:
            raise ContractViolation(
                f"{self.name}: worker {me} received {len(received)} chunks, expected {expected}"
            )

        # Sequential in plan order: overlapping writes never race
        for n, data in received:
            chunk = plan[n]
            if chunk.dst_owner != me:
                raise ContractViolation(f"{self.name}: chunk {n} delivered to wrong worker {me}")
            self.apply(dst.view(chunk.dst_index, chunk.region), data)

        log.debug(
            f"{self.name} {src.name}->{dst.name}: worker {me} sent "
            f"{sum(len(o) for o in outgoing)}, applied {len(received)} of {len(plan)} chunks"
        )
        return len(plan)


class ReductionCopyEngine(CopyEngine):
    """Sum source values (ghost layers included) into destination valid regions.

    The destination must be zeroed first; periodic images and overlaps
    between source regions all add up.
    """

    name = "reduction-copy"

    def ghost_layers(self, dst: Field, src: Field) -> Tuple[int, int]:
        return src.ngrow, 0

    def apply(self, target: np.ndarray, data: np.ndarray):
        target += data


class ScatterCopyEngine(CopyEngine):
    """Overwrite destination values, halo included, from source valid regions."""

    name = "scatter-copy"

    def ghost_layers(self, dst: Field, src: Field) -> Tuple[int, int]:
        return 0, dst.ngrow

    def apply(self, target: np.ndarray, data: np.ndarray):
        target[...] = data
