"""
Open-boundary solve runner - runs in-process or under MPI based on n_ranks.

Usage:
    python run_solver.py
    python run_solver.py n_cells=[64,64,64] n_ranks=4 strategy=cubic
    python run_solver.py n_ranks=2,4,8 --multirun
"""

import logging
import os
import subprocess
import sys

import hydra
from omegaconf import DictConfig, OmegaConf

log = logging.getLogger(__name__)


def _log_results(params, metrics, workers, output):
    """Log solve results to MLflow (worker 0 only)."""
    from OpenBC.runner import summarize
    from utils.mlflow.io import (
        log_artifact_file,
        log_metrics_dict,
        log_parameters,
        start_mlflow_run_context,
    )

    size = "x".join(str(n) for n in params.n_cells)
    run_name = f"{params.solver}_N{size}_p{params.n_ranks}_{params.strategy}"

    with start_mlflow_run_context(
        experiment_name=params.experiment_name, parent_run_name=f"N{size}", child_run_name=run_name
    ):
        log_parameters(params.to_mlflow())
        log_parameters(summarize(workers))
        log_metrics_dict(metrics.to_mlflow())
        if output:
            log_artifact_file(output)


def _run(cfg: DictConfig, comm):
    """Solve on ``comm`` and record the results (collective)."""
    from OpenBC.datastructures import SolveParams
    from OpenBC.io import save_results
    from OpenBC.runner import execute
    from utils.mlflow.io import setup_mlflow_tracking

    params = SolveParams.from_config(OmegaConf.to_container(cfg, resolve=True))
    if comm.rank == 0:
        log.info(f"n_cells={params.n_cells}, ranks={comm.size}, {params.strategy}/{params.kernel}")

    metrics, workers = execute(params, comm)

    if comm.rank == 0:
        output = cfg.get("output")
        if output:
            save_results(output, params, metrics, workers)
        if setup_mlflow_tracking(mode=cfg.mlflow.mode):
            _log_results(params, metrics, workers, output)
        log.info(
            f"Done: total charge {metrics.total_charge:.3e}, |E|max={metrics.e_max:.3e}, "
            f"time={metrics.wall_time:.3f}s"
        )


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    """Entry point - runs in-process or spawns MPI based on n_ranks."""
    n_ranks = cfg.get("n_ranks", 1)
    log.info(f"{cfg.solver}, n_cells={list(cfg.n_cells)}, n_ranks={n_ranks}")

    if n_ranks == 1:
        from OpenBC.mpi import SerialCommunicator

        _run(cfg, SerialCommunicator())
    else:
        _spawn_mpi(cfg, n_ranks)


def _spawn_mpi(cfg: DictConfig, n_ranks: int):
    """Spawn MPI subprocess."""
    mpi = cfg.get("mpi") or {}
    env = os.environ.copy()
    env["MPI_SUBPROCESS"] = "1"

    cmd = ["mpiexec", "-n", str(n_ranks)]
    if mpi.get("bind_to"):
        cmd.extend(["--report-bindings", "--bind-to", str(mpi.bind_to)])

    cmd.extend([sys.executable, os.path.abspath(__file__)])

    # Pass config as key=value args
    for key, val in OmegaConf.to_container(cfg, resolve=True).items():
        if key in ("mlflow", "mpi", "hydra") or val is None:
            continue
        if isinstance(val, dict):
            cmd.extend(f"{key}.{k}={_format(v)}" for k, v in val.items() if v is not None)
        else:
            cmd.append(f"{key}={_format(val)}")
    cmd.append(f"mlflow.mode={cfg.mlflow.mode}")

    result = subprocess.run(cmd, capture_output=True, text=True, env=env, timeout=600)
    for line in (result.stdout or "").strip().split("\n"):
        if line:
            log.info(line)
    for line in (result.stderr or "").strip().split("\n"):
        if line:
            log.warning(line) if "error" in line.lower() else log.info(line)
    if result.returncode != 0:
        log.error(f"MPI run failed with exit code {result.returncode}")
        sys.exit(result.returncode)


def _format(val) -> str:
    if isinstance(val, (list, tuple)):
        return "[" + ",".join(_format(v) for v in val) + "]"
    if isinstance(val, bool):
        return str(val).lower()
    return str(val)


def _parse(val: str):
    """Inverse of ``_format`` for the values this runner passes."""
    if val.startswith("[") and val.endswith("]"):
        return [_parse(v) for v in val[1:-1].split(",") if v]
    if val.lower() in ("true", "false"):
        return val.lower() == "true"
    try:
        return float(val) if ("." in val or "e" in val.lower()) else int(val)
    except ValueError:
        return val


if __name__ == "__main__":
    if os.environ.get("MPI_SUBPROCESS"):
        from OpenBC.errors import OpenBCError
        from OpenBC.mpi import MPICommunicator

        comm = MPICommunicator()
        logging.basicConfig(
            level=logging.INFO if comm.rank == 0 else logging.WARNING,
            format=f"[%(levelname)s] [rank {comm.rank}] %(message)s",
        )

        # Parse key=value args
        cfg_dict = {}
        for arg in sys.argv[1:]:
            if "=" in arg and not arg.startswith("-"):
                key, val = arg.split("=", 1)
                d = cfg_dict
                for k in key.split(".")[:-1]:
                    d = d.setdefault(k, {})
                d[key.split(".")[-1]] = _parse(val)

        try:
            _run(OmegaConf.create(cfg_dict), comm)
        except OpenBCError as e:
            log.error(f"{type(e).__name__}: {e}")
            comm.abort(1)
    else:
        main()
