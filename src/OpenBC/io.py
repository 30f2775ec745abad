"""HDF5 result files written by the MPI worker and read by the runner."""

from __future__ import annotations

from pathlib import Path
from typing import List

import h5py
import numpy as np

from .datastructures import LocalParams, SolveMetrics, SolveParams


def save_results(
    path: str | Path,
    params: SolveParams,
    metrics: SolveMetrics,
    workers: List[LocalParams],
):
    """Write params and metrics as attributes, per-worker layout as datasets."""
    with h5py.File(path, "w") as f:
        for name, values in (("params", params.to_mlflow()), ("metrics", metrics.to_mlflow())):
            group = f.create_group(name)
            for key, value in values.items():
                if value is not None:
                    group.attrs[key] = value

        group = f.create_group("workers")
        group.create_dataset("worker_id", data=np.array([w.worker_id for w in workers]))
        group.create_dataset("n_regions", data=np.array([w.n_regions for w in workers]))
        group.create_dataset("local_cells", data=np.array([w.local_cells for w in workers]))
        group.create_dataset("secondary_lo", data=np.array([w.secondary_lo for w in workers]))
        group.create_dataset("secondary_hi", data=np.array([w.secondary_hi for w in workers]))
        group.create_dataset(
            "hostname", data=np.array([w.hostname for w in workers], dtype=h5py.string_dtype())
        )
        # Affinity lists differ in length per worker, so store them as "0,1,2"
        group.create_dataset(
            "cpu_ids",
            data=np.array(
                [",".join(map(str, w.cpu_ids or [])) for w in workers], dtype=h5py.string_dtype()
            ),
        )
        for key in workers[0].phase_times:
            group.create_dataset(key, data=np.array([w.phase_times[key] for w in workers]))


def _to_python(value):
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, bytes):
        return value.decode()
    return value


def load_results(path: str | Path) -> dict:
    """Flat dict of params and metrics, plus a 'workers' list of per-worker dicts."""
    with h5py.File(path, "r") as f:
        result = {}
        for name in ("params", "metrics"):
            result.update({k: _to_python(v) for k, v in f[name].attrs.items()})

        group = f["workers"]
        columns = {key: group[key][()] for key in group}
        n_workers = len(columns["worker_id"])
        result["workers"] = [
            {key: _to_python(col[i]) if col.ndim == 1 else col[i].tolist() for key, col in columns.items()}
            for i in range(n_workers)
        ]
    return result

