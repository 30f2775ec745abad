"""Vector field from a scalar potential by finite differences."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .datastructures import Region, WorkerContext
from .errors import ConfigurationError, ContractViolation
from .field import Field, VectorField
from .kernels import NumPyGradientKernel

log = logging.getLogger(__name__)


def _face(region: Region, axis: int, upper: bool) -> Region:
    """One-node-thick slice of ``region`` on its lower or upper side along ``axis``."""
    lo, hi = list(region.lo), list(region.hi)
    if upper:
        lo[axis] = hi[axis]
    else:
        hi[axis] = lo[axis]
    return Region(tuple(lo), tuple(hi), region.index_type)


class StencilDerivator:
    """Second-order gradient, evaluated per worker with no communication.

    For every locally owned region of each output component the potential is
    read over the region grown by exactly one layer, so ``phi`` must carry a
    populated halo of at least one layer. Interior nodes use the centered
    difference. Nodes on a non-periodic domain face have no outer neighbour,
    so they use the one-sided second-order difference
    ``(-3 phi[0] + 4 phi[1] - phi[2]) / (2 dx)`` pointing into the domain.

    Parameters
    ----------
    kernel : NumPyGradientKernel | NumbaGradientKernel
        Array kernel doing the arithmetic (default NumPy).
    negate : bool
        Produce ``-grad(phi)`` (the electric field) instead of ``grad(phi)``.
    """

    def __init__(self, kernel=None, negate: bool = False):
        self.kernel = kernel or NumPyGradientKernel()
        self.negate = negate

    def apply(
        self,
        phi: Field,
        out: VectorField,
        ctx: WorkerContext,
        dx: Optional[Sequence[float]] = None,
    ):
        ndim = phi.geometry.ndim
        if len(out) != ndim:
            raise ConfigurationError(f"{len(out)} output components for a {ndim}-D potential")
        if phi.ngrow < 1:
            raise ContractViolation(f"{phi.name} needs a one-layer halo, has ngrow={phi.ngrow}")
        if phi.ctx != ctx:
            raise ConfigurationError(f"{phi.name} was built for another worker context")

        dx = tuple(dx) if dx is not None else phi.geometry.cell_size
        factor = -1.0 if self.negate else 1.0
        nodes = phi.geometry.node_domain()

        for axis, component in enumerate(out):
            if component.decomposition.owners() != phi.decomposition.owners():
                raise ConfigurationError(
                    f"{component.name} and {phi.name} use different decompositions"
                )
            for i in component.local_indices():
                region = component.valid_region(i)
                # Raises ContractViolation if the stencil leaves phi's halo
                phi_view = phi.view(i, region.grow(1))
                self.kernel.gradient(phi_view, component.valid_view(i), axis, dx[axis], factor)

                if ctx.periodicity[axis]:
                    continue
                if region.lo[axis] == nodes.lo[axis]:
                    self._one_sided(phi, component, i, _face(region, axis, False), axis, dx[axis], factor)
                if region.hi[axis] == nodes.hi[axis]:
                    self._one_sided(phi, component, i, _face(region, axis, True), axis, -dx[axis], factor)

        log.debug(f"Worker {ctx.worker_id}: derived {len(out)} components from {phi.name}")

    @staticmethod
    def _one_sided(phi: Field, component: Field, i: int, face: Region, axis: int, step: float, factor: float):
        """Overwrite ``face`` with the one-sided difference; negative ``step`` looks downward."""
        direction = 1 if step > 0 else -1
        offset = [0] * face.ndim
        p = []
        for k in range(3):
            offset[axis] = direction * k
            p.append(phi.view(i, face.shift(tuple(offset))))
        component.view(i, face)[...] = factor * (-3.0 * p[0] + 4.0 * p[1] - p[2]) / (2.0 * step)
