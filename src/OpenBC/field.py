"""Distributed scalar fields stored per owned region."""

from __future__ import annotations

from typing import Callable, Dict, List, Tuple

import numpy as np

from .datastructures import Region, WorkerContext
from .decomposition import Decomposition
from .errors import ContractViolation


class Field:
    """Scalar field over a decomposition, stored only for locally owned regions.

    Each owned region gets one dense buffer covering the region grown by
    ``ngrow`` ghost layers, indexed ``buf[i, j, k]`` in region axis order.

    Parameters
    ----------
    decomposition : Decomposition
        Storage partition of the field.
    ctx : WorkerContext
        Identity of the calling worker.
    ngrow : int
        Ghost layers around every region.
    dtype : numpy dtype
        Scalar type (default float64).
    name : str
        Label used in log and error messages.

    Example
    -------
    >>> rho = Field(primary.surrounding_nodes(), ctx, ngrow=1, name="rho")
    >>> rho.set_val(0.0)
    >>> for i in rho.local_indices():
    ...     rho.array(i)[...] = 1.0
    """

    def __init__(
        self,
        decomposition: Decomposition,
        ctx: WorkerContext,
        ngrow: int = 0,
        dtype=np.float64,
        name: str = "field",
    ):
        if ctx.n_workers != decomposition.n_workers:
            raise ContractViolation(
                f"{name}: context has {ctx.n_workers} workers, decomposition {decomposition.n_workers}"
            )
        self.decomposition = decomposition
        self.ctx = ctx
        self.ngrow = ngrow
        self.dtype = np.dtype(dtype)
        self.name = name

        self._boxes: Dict[int, Region] = {}
        self._fabs: Dict[int, np.ndarray] = {}
        for i in decomposition.local_indices(ctx):
            box = decomposition[i].region.grow(ngrow)
            self._boxes[i] = box
            self._fabs[i] = np.zeros(box.shape, dtype=self.dtype)

    @property
    def geometry(self):
        return self.decomposition.geometry

    def local_indices(self) -> List[int]:
        return list(self._fabs)

    def valid_region(self, index: int) -> Region:
        return self.decomposition[index].region

    def box(self, index: int) -> Region:
        """Stored region (valid region plus ghost layers)."""
        self._check_local(index)
        return self._boxes[index]

    def array(self, index: int) -> np.ndarray:
        self._check_local(index)
        return self._fabs[index]

    def view(self, index: int, region: Region) -> np.ndarray:
        """Writable view of ``region`` inside the buffer of entry ``index``."""
        self._check_local(index)
        return self._fabs[index][region.slices(self._boxes[index])]

    def valid_view(self, index: int) -> np.ndarray:
        return self.view(index, self.valid_region(index))

    def _check_local(self, index: int):
        if index not in self._fabs:
            raise ContractViolation(
                f"{self.name}: entry {index} is not stored on worker {self.ctx.worker_id}"
            )

    def set_val(self, value: float):
        for fab in self._fabs.values():
            fab.fill(value)

    def fill(self, fn: Callable[..., np.ndarray], include_ghosts: bool = False):
        """Fill from a function of physical coordinates, ``fn(X, Y[, Z])``."""
        for i in self._fabs:
            region = self._boxes[i] if include_ghosts else self.valid_region(i)
            self.view(i, region)[...] = fn(*self.geometry.meshgrid(region))

    def local_sum(self, valid_only: bool = True) -> float:
        if valid_only:
            return float(sum(np.sum(self.valid_view(i)) for i in self._fabs))
        return float(sum(np.sum(fab) for fab in self._fabs.values()))

    def global_sum(self, comm, valid_only: bool = True) -> float:
        return comm.allreduce_sum(self.local_sum(valid_only))

    def local_extrema(self) -> Tuple[float, float]:
        """(min, max) over valid regions; (inf, -inf) when nothing is stored locally."""
        lo, hi = np.inf, -np.inf
        for i in self._fabs:
            valid = self.valid_view(i)
            lo = min(lo, float(valid.min()))
            hi = max(hi, float(valid.max()))
        return lo, hi


VectorField = Tuple[Field, ...]


def make_vector_field(
    decomposition: Decomposition,
    ctx: WorkerContext,
    ngrow: int = 0,
    dtype=np.float64,
    name: str = "E",
) -> VectorField:
    """One Field per axis on the same decomposition."""
    axis_names = "xyz"
    return tuple(
        Field(decomposition, ctx, ngrow=ngrow, dtype=dtype, name=f"{name}{axis_names[d]}")
        for d in range(decomposition.ndim)
    )
