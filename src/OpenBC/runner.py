"""Run the open-boundary solve in-process or via an mpiexec subprocess."""

import json
import logging
import os
import socket
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

from .boundary import create_solver
from .datastructures import LocalParams, SolveMetrics, SolveParams
from .decomposition import Decomposition
from .geometry import Geometry
from .io import load_results
from .kernels import create_kernel
from .problems import fill_density, gaussian_charge
from .solver import OpenBoundaryPoisson

log = logging.getLogger(__name__)


def _cpu_ids() -> Optional[List[int]]:
    if hasattr(os, "sched_getaffinity"):
        return sorted(os.sched_getaffinity(0))
    return None


def execute(params: SolveParams, comm) -> Tuple[SolveMetrics, Optional[List[LocalParams]]]:
    """Solve the Gaussian-charge problem described by ``params`` (collective).

    Returns the global metrics on every worker and the gathered per-worker
    layout on worker 0 (None elsewhere).
    """
    geometry = Geometry.from_extent(params.n_cells, params.prob_lo, params.prob_hi, params.periodic)
    primary = Decomposition.from_domain(
        geometry, comm.size, strategy=params.strategy, max_grid_size=params.max_grid_size
    )

    kernel = create_kernel(params.kernel, params.numba_threads)
    kernel.warmup()

    poisson = OpenBoundaryPoisson(
        geometry,
        primary,
        comm,
        solver=create_solver(params.solver, comm),
        kernel=kernel,
        negate_gradient=params.negate_gradient,
    )
    rho = poisson.allocate_rho(ngrow=params.ngrow)
    fill_density(rho, gaussian_charge(params.charge, params.sigma, params.center))
    efield = poisson.allocate_field()

    metrics = poisson.solve(rho, efield)

    local_ids = primary.local_indices(poisson.ctx)
    secondary = poisson.secondary[comm.rank].region
    local = LocalParams(
        worker_id=comm.rank,
        hostname=socket.gethostname(),
        n_regions=len(local_ids),
        local_cells=int(sum(primary[i].region.size for i in local_ids)),
        secondary_lo=secondary.lo,
        secondary_hi=secondary.hi,
        phase_times=poisson.local_times,
        cpu_ids=_cpu_ids(),
    )
    workers = comm.gather(local, root=0)
    return metrics, workers


def run_solver(n_cells, n_ranks: int = 1, output: str = None, **kwargs) -> dict:
    """Run the solve on n_ranks MPI processes.

    Parameters
    ----------
    n_cells : sequence of int
        Cells per axis (2 or 3 entries).
    n_ranks : int
        Number of MPI ranks.
    output : str, optional
        Path to save HDF5 results (uses temp file if not provided).
    **kwargs
        Extra config keys: prob_lo, prob_hi, periodic, strategy,
        max_grid_size, ngrow, kernel, numba_threads, solver, source.

    Returns
    -------
    dict
        Params, metrics and a 'workers' list (or 'error' key on failure).
    """
    use_temp = output is None
    if use_temp:
        tmp = tempfile.NamedTemporaryFile(suffix=".h5", delete=False)
        output = tmp.name
        tmp.close()

    config = {"n_cells": list(n_cells), "n_ranks": n_ranks, "output": output, **kwargs}
    cmd = [
        "mpiexec", "-n", str(n_ranks),
        sys.executable, "-m", "OpenBC.helpers.runner_helper", json.dumps(config),
    ]
    log.debug(f"Spawning: {' '.join(cmd)}")

    proc = subprocess.run(cmd, capture_output=True, text=True)

    if proc.returncode != 0:
        return {"error": proc.stderr}

    if not Path(output).exists():
        return {"error": "No output file created", "stderr": proc.stderr}

    result = load_results(output)

    if use_temp:
        Path(output).unlink(missing_ok=True)

    return result


def summarize(workers: List[LocalParams]) -> dict:
    """Spread of per-worker layout sizes, for tracking."""
    cells = np.array([w.local_cells for w in workers])
    return {
        "nodes": len({w.hostname for w in workers}),
        "local_cells_min": int(cells.min()),
        "local_cells_max": int(cells.max()),
    }
