"""Collective communication used by the layout builder and the copy engines.

Components never touch ``MPI.COMM_WORLD`` directly; they receive one of
these wrappers. All methods are collective except ``wtime`` and ``abort``:
every worker must call them in the same order, and a call blocks until all
workers have arrived.
"""

from __future__ import annotations

import time

import numpy as np
from mpi4py import MPI


class MPICommunicator:
    """Collectives over an mpi4py communicator.

    Parameters
    ----------
    comm : MPI.Comm
        MPI communicator (default ``MPI.COMM_WORLD``).
    """

    def __init__(self, comm: MPI.Comm = MPI.COMM_WORLD):
        self.comm = comm
        self.rank = comm.Get_rank()
        self.size = comm.Get_size()

    def allgather_array(self, local: np.ndarray, fill: int) -> np.ndarray:
        """Gather a fixed-size int64 vector from every rank, ordered by rank.

        Returns an array of shape ``(size, len(local))``; slots no rank wrote
        keep ``fill``.
        """
        send = np.ascontiguousarray(local, dtype=np.int64)
        recv = np.full(self.size * send.size, fill, dtype=np.int64)
        self.comm.Allgather([send, MPI.INT64_T], [recv, MPI.INT64_T])
        return recv.reshape(self.size, send.size)

    def alltoall(self, outgoing: list) -> list:
        """Personalized exchange: ``outgoing[j]`` goes to rank j; returns one item per sender."""
        return self.comm.alltoall(outgoing)

    def allreduce_sum(self, value: float) -> float:
        result = np.zeros(1)
        self.comm.Allreduce(np.array([value], dtype=np.float64), result, op=MPI.SUM)
        return float(result[0])

    def allreduce_max(self, value: float) -> float:
        result = np.zeros(1)
        self.comm.Allreduce(np.array([value], dtype=np.float64), result, op=MPI.MAX)
        return float(result[0])

    def allreduce_min(self, value: float) -> float:
        result = np.zeros(1)
        self.comm.Allreduce(np.array([value], dtype=np.float64), result, op=MPI.MIN)
        return float(result[0])

    def gather(self, obj, root: int = 0):
        return self.comm.gather(obj, root=root)

    def barrier(self):
        self.comm.Barrier()

    def wtime(self) -> float:
        return MPI.Wtime()

    def abort(self, code: int = 1):
        self.comm.Abort(code)


class SerialCommunicator:
    """Single-worker communicator with the same interface (no MPI calls)."""

    rank = 0
    size = 1

    def allgather_array(self, local: np.ndarray, fill: int) -> np.ndarray:
        return np.asarray(local, dtype=np.int64).reshape(1, -1).copy()

    def alltoall(self, outgoing: list) -> list:
        return list(outgoing)

    def allreduce_sum(self, value: float) -> float:
        return float(value)

    def allreduce_max(self, value: float) -> float:
        return float(value)

    def allreduce_min(self, value: float) -> float:
        return float(value)

    def gather(self, obj, root: int = 0):
        return [obj]

    def barrier(self):
        pass

    def wtime(self) -> float:
        return time.perf_counter()

    def abort(self, code: int = 1):
        raise SystemExit(code)
