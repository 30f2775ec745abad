"""MPI worker - invoked via: mpiexec -n X python -m OpenBC.helpers.runner_helper '{config}'"""

import json
import logging
import sys

from OpenBC.datastructures import SolveParams
from OpenBC.errors import OpenBCError
from OpenBC.io import save_results
from OpenBC.mpi import MPICommunicator
from OpenBC.runner import execute

log = logging.getLogger("OpenBC.helpers.runner_helper")


def main(argv):
    config = json.loads(argv[1])
    comm = MPICommunicator()

    logging.basicConfig(
        level=logging.INFO if comm.rank == 0 else logging.WARNING,
        format=f"[%(levelname)s] [rank {comm.rank}] %(message)s",
    )

    try:
        params = SolveParams.from_config(config)
        metrics, workers = execute(params, comm)
    except OpenBCError as e:
        # A failed collective leaves peers blocked; take the whole job down
        log.error(f"{type(e).__name__}: {e}")
        comm.abort(1)
        return

    output_path = config.get("output")
    if comm.rank == 0:
        if output_path:
            save_results(output_path, params, metrics, workers)
        # Just print the path - runner.py will load the HDF5
        print(f"RESULT:{output_path}")


if __name__ == "__main__":
    main(sys.argv)
