"""Distributed open-boundary Poisson solve.

Given a charge density stored on a distributed primary decomposition, the
package reduces it onto a solver-preferred secondary layout, solves for the
potential with free-space boundary conditions, scatters the potential back
with a one-cell halo and differentiates it into a node-centered vector field.

Components
----------
Layout:
- Decomposition: ordered (region, owner) table, with placeholder slots
- GlobalLayoutBuilder: gathers every worker's solver region into a secondary layout

Communication:
- ReductionCopyEngine: additive copy, primary -> secondary
- ScatterCopyEngine: overwriting copy with halo fill, secondary -> primary

Numerics:
- FreeSpaceGreenSolver: Hockney FFT convolution with the free-space Green's function
- GatheredGreenSolver: the same solve over every worker's slab (collective)
- StencilDerivator: second-order gradient, one-sided on open faces (NumPy or Numba kernels)

Pipeline:
- OpenBoundaryPoisson: the full collective solve
"""

from .boundary import BoundarySolver, FreeSpaceGreenSolver, GatheredGreenSolver, create_solver
from .copier import ReductionCopyEngine, ScatterCopyEngine
from .datastructures import (
    IndexType,
    LocalParams,
    Region,
    SolveMetrics,
    SolveParams,
    WorkerContext,
)
from .decomposition import Decomposition, Placeholder, RealRegion
from .errors import ConfigurationError, ContractViolation, OpenBCError, SolverError
from .field import Field, make_vector_field
from .geometry import Geometry
from .kernels import NumbaGradientKernel, NumPyGradientKernel, create_kernel
from .layout import GlobalLayoutBuilder, OwnershipMap
from .solver import OpenBoundaryPoisson
from .stencil import StencilDerivator

__all__ = [
    # Data structures
    "IndexType",
    "Region",
    "WorkerContext",
    "SolveParams",
    "SolveMetrics",
    "LocalParams",
    "Geometry",
    # Layout
    "Decomposition",
    "RealRegion",
    "Placeholder",
    "GlobalLayoutBuilder",
    "OwnershipMap",
    "Field",
    "make_vector_field",
    # Copy engines
    "ReductionCopyEngine",
    "ScatterCopyEngine",
    # Numerics
    "BoundarySolver",
    "FreeSpaceGreenSolver",
    "GatheredGreenSolver",
    "create_solver",
    "NumPyGradientKernel",
    "NumbaGradientKernel",
    "create_kernel",
    "StencilDerivator",
    # Pipeline
    "OpenBoundaryPoisson",
    # Errors
    "OpenBCError",
    "ConfigurationError",
    "ContractViolation",
    "SolverError",
]
