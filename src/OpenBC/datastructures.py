"""Data structures for regions, run configuration and results.

Architecture: index-space types at the bottom, run-level Params vs Metrics
on top.

                 Params (input/config)         Metrics (output/results)
                 ─────────────────────         ────────────────────────
Global           SolveParams                   SolveMetrics
(same across     n_cells, periodic,            phase times, total_charge,
workers / agg)   strategy, kernel...           e_max...

Local            LocalParams
(per-worker)     worker_id, hostname,
                 regions, secondary region
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import ConfigurationError, ContractViolation


# ============================================================================
# Index space
# ============================================================================


@dataclass(frozen=True)
class IndexType:
    """Per-axis centering tag: True for node-centered, False for cell-centered."""

    nodal: Tuple[bool, ...]

    def __post_init__(self):
        object.__setattr__(self, "nodal", tuple(bool(n) for n in self.nodal))

    @classmethod
    def cell(cls, ndim: int) -> "IndexType":
        return cls((False,) * ndim)

    @classmethod
    def node(cls, ndim: int) -> "IndexType":
        return cls((True,) * ndim)

    @property
    def ndim(self) -> int:
        return len(self.nodal)

    def is_cell(self) -> bool:
        return not any(self.nodal)

    def is_node(self) -> bool:
        return all(self.nodal)

    def __str__(self) -> str:
        if self.is_cell():
            return "cell"
        if self.is_node():
            return "node"
        return "(" + ",".join("N" if n else "C" for n in self.nodal) + ")"


@dataclass(frozen=True)
class Region:
    """Closed, axis-aligned integer box: every index i with lo <= i <= hi.

    Axes are ordered (x, y[, z]) and numpy buffers holding a region are
    indexed the same way, ``buf[i, j, k]``.
    """

    lo: Tuple[int, ...]
    hi: Tuple[int, ...]
    index_type: Optional[IndexType] = None

    def __post_init__(self):
        lo = tuple(int(v) for v in self.lo)
        hi = tuple(int(v) for v in self.hi)
        if len(lo) != len(hi) or len(lo) not in (2, 3):
            raise ConfigurationError(
                f"Region needs 2 or 3 axes with matching lo/hi, got lo={lo}, hi={hi}"
            )
        index_type = self.index_type or IndexType.cell(len(lo))
        if index_type.ndim != len(lo):
            raise ConfigurationError(
                f"Index type {index_type} does not match a {len(lo)}-D region"
            )
        if any(l > h for l, h in zip(lo, hi)):
            raise ConfigurationError(f"Region has lo > hi: lo={lo}, hi={hi}")
        object.__setattr__(self, "lo", lo)
        object.__setattr__(self, "hi", hi)
        object.__setattr__(self, "index_type", index_type)

    @property
    def ndim(self) -> int:
        return len(self.lo)

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(h - l + 1 for l, h in zip(self.lo, self.hi))

    @property
    def size(self) -> int:
        n = 1
        for s in self.shape:
            n *= s
        return n

    def _check_same_type(self, other: "Region"):
        if other.index_type != self.index_type:
            raise ConfigurationError(
                f"Index type mismatch: {self.index_type} vs {other.index_type}"
            )

    def contains(self, other: "Region") -> bool:
        self._check_same_type(other)
        return all(
            sl <= ol and oh <= sh
            for sl, sh, ol, oh in zip(self.lo, self.hi, other.lo, other.hi)
        )

    def intersect(self, other: "Region") -> Optional["Region"]:
        """Overlap of two regions, or None when they are disjoint."""
        self._check_same_type(other)
        lo = tuple(max(a, b) for a, b in zip(self.lo, other.lo))
        hi = tuple(min(a, b) for a, b in zip(self.hi, other.hi))
        if any(l > h for l, h in zip(lo, hi)):
            return None
        return Region(lo, hi, self.index_type)

    def shift(self, offset) -> "Region":
        return Region(
            tuple(l + o for l, o in zip(self.lo, offset)),
            tuple(h + o for h, o in zip(self.hi, offset)),
            self.index_type,
        )

    def grow(self, n) -> "Region":
        if isinstance(n, int):
            n = (n,) * self.ndim
        return Region(
            tuple(l - g for l, g in zip(self.lo, n)),
            tuple(h + g for h, g in zip(self.hi, n)),
            self.index_type,
        )

    def surrounding_nodes(self) -> "Region":
        """Node-centered region enclosing this one (cell axes gain one node)."""
        hi = tuple(h if nodal else h + 1 for h, nodal in zip(self.hi, self.index_type.nodal))
        return Region(self.lo, hi, IndexType.node(self.ndim))

    def enclosed_cells(self) -> "Region":
        hi = tuple(h - 1 if nodal else h for h, nodal in zip(self.hi, self.index_type.nodal))
        return Region(self.lo, hi, IndexType.cell(self.ndim))

    def slices(self, relative_to: "Region") -> Tuple[slice, ...]:
        """Numpy slices selecting this region inside a buffer that stores ``relative_to``."""
        if not relative_to.contains(self):
            raise ContractViolation(f"{self} lies outside buffer region {relative_to}")
        return tuple(
            slice(l - rl, h - rl + 1) for l, h, rl in zip(self.lo, self.hi, relative_to.lo)
        )

    def bounds(self) -> Tuple[int, ...]:
        """Flat (lo..., hi...) tuple, the wire format of the layout gather."""
        return self.lo + self.hi

    def __str__(self) -> str:
        return f"[{self.lo}..{self.hi} {self.index_type}]"


# ============================================================================
# Communicator context
# ============================================================================


@dataclass(frozen=True)
class WorkerContext:
    """Identity of the calling worker for one solve invocation.

    Passed explicitly into every component instead of read from globals.
    """

    n_workers: int
    worker_id: int
    periodicity: Tuple[bool, ...]

    def __post_init__(self):
        object.__setattr__(self, "periodicity", tuple(bool(p) for p in self.periodicity))
        if self.n_workers < 1:
            raise ConfigurationError(f"n_workers must be >= 1, got {self.n_workers}")
        if not 0 <= self.worker_id < self.n_workers:
            raise ConfigurationError(
                f"worker_id {self.worker_id} outside [0, {self.n_workers})"
            )

    @classmethod
    def from_comm(cls, comm, periodicity) -> "WorkerContext":
        return cls(n_workers=comm.size, worker_id=comm.rank, periodicity=tuple(periodicity))

    @property
    def is_root(self) -> bool:
        return self.worker_id == 0


# ============================================================================
# Global (identical across workers, or aggregated on worker 0)
# ============================================================================


@dataclass
class SolveParams:
    """Run configuration - built from the Hydra config, logged to MLflow as params.

    Identical across all MPI ranks.
    """

    # Required
    n_cells: Tuple[int, ...]

    # Geometry
    prob_lo: Optional[Tuple[float, ...]] = None
    prob_hi: Optional[Tuple[float, ...]] = None
    periodic: Optional[Tuple[bool, ...]] = None

    # Parallelization
    n_ranks: int = 1
    strategy: str = "sliced"  # "sliced" | "cubic"
    max_grid_size: Optional[int] = None
    ngrow: int = 0

    # Numerics
    solver: str = "hockney"
    kernel: str = "numpy"  # "numpy" | "numba"
    numba_threads: int = 1
    negate_gradient: bool = True

    # Source term (Gaussian charge)
    charge: float = 1e-9
    sigma: float = 0.1
    center: Optional[Tuple[float, ...]] = None

    experiment_name: str = "openbc"

    # Derived at runtime (not from config)
    ndim: int = field(init=False)
    environment: str = field(init=False)

    def __post_init__(self):
        self.n_cells = tuple(int(n) for n in self.n_cells)
        self.ndim = len(self.n_cells)
        if self.ndim not in (2, 3):
            raise ConfigurationError(f"n_cells must have 2 or 3 entries, got {self.n_cells}")
        if any(n < 1 for n in self.n_cells):
            raise ConfigurationError(f"n_cells must be positive, got {self.n_cells}")

        self.prob_lo = tuple(float(v) for v in (self.prob_lo or [-1.0] * self.ndim))
        self.prob_hi = tuple(float(v) for v in (self.prob_hi or [1.0] * self.ndim))
        self.periodic = tuple(bool(v) for v in (self.periodic or [False] * self.ndim))
        if self.center is None:
            self.center = tuple(0.5 * (l + h) for l, h in zip(self.prob_lo, self.prob_hi))
        self.center = tuple(float(v) for v in self.center)

        for name in ("prob_lo", "prob_hi", "periodic", "center"):
            if len(getattr(self, name)) != self.ndim:
                raise ConfigurationError(
                    f"{name} has {len(getattr(self, name))} entries, expected {self.ndim}"
                )

        self.environment = (
            "hpc"
            if os.environ.get("LSB_JOBID") or os.environ.get("SLURM_JOB_ID")
            else "local"
        )

    @classmethod
    def from_config(cls, cfg: Mapping) -> "SolveParams":
        """Build from a plain mapping (``OmegaConf.to_container`` output)."""
        source = dict(cfg.get("source") or {})
        return cls(
            n_cells=tuple(cfg["n_cells"]),
            prob_lo=cfg.get("prob_lo"),
            prob_hi=cfg.get("prob_hi"),
            periodic=cfg.get("periodic"),
            n_ranks=int(cfg.get("n_ranks", 1)),
            strategy=cfg.get("strategy", "sliced"),
            max_grid_size=cfg.get("max_grid_size"),
            ngrow=int(cfg.get("ngrow", 0)),
            solver=cfg.get("solver", "hockney"),
            kernel=cfg.get("kernel", "numpy"),
            numba_threads=int(cfg.get("numba_threads", 1)),
            negate_gradient=bool(cfg.get("negate_gradient", True)),
            charge=float(source.get("charge", 1e-9)),
            sigma=float(source.get("sigma", 0.1)),
            center=source.get("center"),
            experiment_name=cfg.get("experiment_name", "openbc"),
        )

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible params dict (bools as int, tuples as str)."""
        out = {}
        for k, v in self.__dict__.items():
            if isinstance(v, bool):
                v = int(v)
            elif isinstance(v, tuple):
                v = "x".join(str(int(e) if isinstance(e, bool) else e) for e in v)
            out[k] = v
        return out


@dataclass
class SolveMetrics:
    """Aggregated results - logged to MLflow as metrics.

    Times are the maximum over workers; field statistics are global.
    """

    total_charge: Optional[float] = None
    secondary_charge: Optional[float] = None
    phi_min: Optional[float] = None
    phi_max: Optional[float] = None
    e_max: Optional[float] = None

    # Phase timing
    gather_time: Optional[float] = None
    reduce_time: Optional[float] = None
    solve_time: Optional[float] = None
    scatter_time: Optional[float] = None
    stencil_time: Optional[float] = None
    wall_time: Optional[float] = None

    # Copy plan sizes
    reduce_chunks: Optional[int] = None
    scatter_chunks: Optional[int] = None

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible dict (no None)."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


# ============================================================================
# Local (per-worker)
# ============================================================================


@dataclass
class LocalParams:
    """Per-worker layout - gathered to worker 0, stored with the results."""

    worker_id: int
    hostname: str = ""
    n_regions: int = 0
    local_cells: int = 0
    secondary_lo: Optional[Tuple[int, ...]] = None
    secondary_hi: Optional[Tuple[int, ...]] = None
    phase_times: Dict[str, float] = field(default_factory=dict)
    cpu_ids: Optional[List[int]] = None
