"""Dense boundary-value solvers for one worker's secondary buffer.

The pipeline only relies on the narrow ``BoundarySolver`` interface:
charge density buffer and cell spacing in, potential buffer of the same
shape out. ``FreeSpaceGreenSolver`` is the reference implementation for one
worker; ``GatheredGreenSolver`` is its collective variant.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np
from scipy import fft
from scipy.constants import epsilon_0

from .errors import ConfigurationError, SolverError

log = logging.getLogger(__name__)

# Mean of 1/r over a unit cube centred on the origin
CUBE_MEAN_INV_R = 2.3800772
# Mean of ln(r) over a unit square centred on the origin
SQUARE_MEAN_LOG_R = -np.log(2.0) / 2.0 - 1.5 + np.pi / 4.0


class BoundarySolver(ABC):
    """Abstract base for open-boundary potential solvers.

    A solver with ``distributed = False`` only sees the calling worker's
    buffer, so its potential is correct only when that buffer holds the whole
    domain. Distributed solvers are called once per worker, collectively.
    """

    distributed = False

    @abstractmethod
    def solve(self, rho: np.ndarray, dx: Sequence[float]) -> np.ndarray:
        """Return the potential of ``rho`` on the same nodes, same shape and dtype."""
        pass


class FreeSpaceGreenSolver(BoundarySolver):
    """Free-space Poisson solve by zero-padded FFT convolution (Hockney).

    The buffer is treated as an isolated charge distribution: the potential
    is the discrete sum of ``q_j G(|r_i - r_j|)`` with ``q_j = rho_j dV``,
    computed on a doubled grid so the circular convolution does not alias.
    The self term uses the Green's function averaged over one cell.

    3D: ``G(r) = 1 / (4 pi eps0 r)``; 2D: ``G(r) = -ln(r) / (2 pi eps0)``.
    """

    def __init__(self, epsilon: float = epsilon_0):
        self.epsilon = epsilon

    def green_function(self, shape: Sequence[int], dx: Sequence[float]) -> np.ndarray:
        """Green's function sampled on the doubled grid, wrapped to negative offsets."""
        ndim = len(shape)
        padded = tuple(2 * n for n in shape)
        axes = []
        for m, h in zip(padded, dx):
            idx = np.arange(m)
            axes.append(np.minimum(idx, m - idx) * h)
        r = np.sqrt(sum(a**2 for a in np.meshgrid(*axes, indexing="ij")))

        with np.errstate(divide="ignore"):
            if ndim == 3:
                green = 1.0 / (4.0 * np.pi * self.epsilon * r)
                h = float(np.prod(dx)) ** (1.0 / 3.0)
                green[(0,) * ndim] = CUBE_MEAN_INV_R / (4.0 * np.pi * self.epsilon * h)
            else:
                green = -np.log(r) / (2.0 * np.pi * self.epsilon)
                h = float(np.prod(dx)) ** 0.5
                green[(0,) * ndim] = -(np.log(h) + SQUARE_MEAN_LOG_R) / (2.0 * np.pi * self.epsilon)
        return green

    def solve(self, rho: np.ndarray, dx: Sequence[float]) -> np.ndarray:
        if rho.ndim not in (2, 3) or len(dx) != rho.ndim:
            raise ConfigurationError(f"Buffer of shape {rho.shape} with spacing {tuple(dx)}")

        shape = rho.shape
        padded = tuple(2 * n for n in shape)
        cell_volume = float(np.prod(dx))
        log.debug(f"Free-space solve on {shape} buffer, padded to {padded}")

        green_hat = fft.rfftn(self.green_function(shape, dx), s=padded)
        rho_hat = fft.rfftn(rho, s=padded)
        phi = fft.irfftn(rho_hat * green_hat, s=padded)

        inner = tuple(slice(0, n) for n in shape)
        return (phi[inner] * cell_volume).astype(rho.dtype, copy=False)


class GatheredGreenSolver(FreeSpaceGreenSolver):
    """Collective free-space solve over every worker's slab.

    Each worker holds one slab of the nodal domain, split along the last axis
    in worker order. The slabs are exchanged so every worker convolves the
    full density, then each keeps the potential on its own slab.
    """

    distributed = True

    def __init__(self, comm, epsilon: float = epsilon_0):
        super().__init__(epsilon)
        self.comm = comm

    def solve(self, rho: np.ndarray, dx: Sequence[float]) -> np.ndarray:
        slabs = self.comm.alltoall([rho] * self.comm.size)
        axis = rho.ndim - 1
        if any(s.shape[:axis] != rho.shape[:axis] for s in slabs):
            raise ConfigurationError(
                f"Slab shapes {[s.shape for s in slabs]} do not stack along axis {axis}"
            )

        phi = super().solve(np.concatenate(slabs, axis=axis), dx)

        start = sum(s.shape[axis] for s in slabs[: self.comm.rank])
        own = [slice(None)] * rho.ndim
        own[axis] = slice(start, start + rho.shape[axis])
        return np.ascontiguousarray(phi[tuple(own)])


def validate_solution(rho: np.ndarray, phi: np.ndarray):
    """Fatal unless the solver returned a finite buffer of the right shape."""
    if not isinstance(phi, np.ndarray):
        raise SolverError(f"Solver returned {type(phi).__name__}, expected ndarray")
    if phi.shape != rho.shape:
        raise SolverError(f"Solver returned shape {phi.shape}, expected {rho.shape}")
    if phi.dtype.kind != rho.dtype.kind:
        raise SolverError(f"Solver returned dtype {phi.dtype}, expected {rho.dtype}")
    if not np.all(np.isfinite(phi)):
        n_bad = int(np.count_nonzero(~np.isfinite(phi)))
        raise SolverError(f"Solver returned {n_bad} non-finite values")


def create_solver(name: str, comm=None) -> BoundarySolver:
    """Factory: 'hockney' for the free-space FFT solver, collective on more than one worker."""
    if name == "hockney":
        if comm is not None and comm.size > 1:
            return GatheredGreenSolver(comm)
        return FreeSpaceGreenSolver()
    else:
        raise ConfigurationError(f"Unknown boundary solver: {name}")
