"""Centered-difference gradient kernels.

Simple kernel implementations - region bookkeeping is handled by the
stencil derivator. Every kernel receives ``phi`` covering the output region
plus exactly one layer on each side and writes
``out = c * (phi[+1] - phi[-1])`` along one axis.
"""

import numpy as np
import numba
from numba import njit, prange

from .errors import ConfigurationError, ContractViolation


@njit(parallel=True)
def _gradient_3d_numba(phi: np.ndarray, out: np.ndarray, axis: int, c: float):
    """Numba JIT implementation of the 3D centered difference."""
    nx, ny, nz = out.shape
    for i in prange(nx):
        for j in range(ny):
            for k in range(nz):
                if axis == 0:
                    out[i, j, k] = c * (phi[i + 2, j + 1, k + 1] - phi[i, j + 1, k + 1])
                elif axis == 1:
                    out[i, j, k] = c * (phi[i + 1, j + 2, k + 1] - phi[i + 1, j, k + 1])
                else:
                    out[i, j, k] = c * (phi[i + 1, j + 1, k + 2] - phi[i + 1, j + 1, k])


@njit(parallel=True)
def _gradient_2d_numba(phi: np.ndarray, out: np.ndarray, axis: int, c: float):
    """Numba JIT implementation of the 2D centered difference."""
    nx, ny = out.shape
    for i in prange(nx):
        for j in range(ny):
            if axis == 0:
                out[i, j] = c * (phi[i + 2, j + 1] - phi[i, j + 1])
            else:
                out[i, j] = c * (phi[i + 1, j + 2] - phi[i + 1, j])


def _check_shapes(phi: np.ndarray, out: np.ndarray):
    if phi.ndim != out.ndim or any(p != o + 2 for p, o in zip(phi.shape, out.shape)):
        raise ContractViolation(f"phi shape {phi.shape} must exceed out shape {out.shape} by 2 per axis")


class NumPyGradientKernel:
    """NumPy-based centered-difference kernel."""

    def __init__(self, specified_numba_threads: int = 1):
        self.observed_numba_threads = None  # Not applicable for NumPy

    def gradient(self, phi: np.ndarray, out: np.ndarray, axis: int, dx: float, factor: float = 1.0):
        """Write ``factor * dphi/dx_axis`` into ``out``."""
        _check_shapes(phi, out)
        c = factor / (2.0 * dx)

        upper = [slice(1, -1)] * phi.ndim
        lower = [slice(1, -1)] * phi.ndim
        upper[axis] = slice(2, None)
        lower[axis] = slice(0, -2)

        out[...] = c * (phi[tuple(upper)] - phi[tuple(lower)])

    def warmup(self, warmup_size: int = 10):
        """No-op for NumPy kernel."""
        pass


class NumbaGradientKernel:
    """Numba JIT-compiled centered-difference kernel."""

    def __init__(self, specified_numba_threads: int = 1):
        # Set requested threads (may be clamped by NUMBA_NUM_THREADS env var)
        if specified_numba_threads is not None:
            numba.set_num_threads(specified_numba_threads)

        # Record what Numba actually reports
        self.observed_numba_threads = numba.get_num_threads()

    def gradient(self, phi: np.ndarray, out: np.ndarray, axis: int, dx: float, factor: float = 1.0):
        """Write ``factor * dphi/dx_axis`` into ``out``."""
        _check_shapes(phi, out)
        c = factor / (2.0 * dx)
        # Views from the halo buffers are non-contiguous; work on contiguous copies
        phi_c = np.ascontiguousarray(phi, dtype=np.float64)
        out_c = np.empty(out.shape, dtype=np.float64)
        if phi.ndim == 3:
            _gradient_3d_numba(phi_c, out_c, axis, c)
        else:
            _gradient_2d_numba(phi_c, out_c, axis, c)
        out[...] = out_c

    def warmup(self, warmup_size: int = 10):
        """Trigger JIT compilation with a small problem."""
        phi3 = np.random.randn(warmup_size + 2, warmup_size + 2, warmup_size + 2)
        out3 = np.zeros((warmup_size, warmup_size, warmup_size))
        phi2 = np.random.randn(warmup_size + 2, warmup_size + 2)
        out2 = np.zeros((warmup_size, warmup_size))
        for axis in range(3):
            _gradient_3d_numba(phi3, out3, axis, 1.0)
        for axis in range(2):
            _gradient_2d_numba(phi2, out2, axis, 1.0)


def create_kernel(kind: str, numba_threads: int = 1):
    """Factory: 'numpy' for vectorized slices, 'numba' for JIT loops."""
    if kind == "numpy":
        return NumPyGradientKernel(numba_threads)
    elif kind == "numba":
        return NumbaGradientKernel(numba_threads)
    else:
        raise ConfigurationError(f"Unknown kernel type: {kind}")
