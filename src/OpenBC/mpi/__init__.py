"""MPI communication for the open-boundary solve.

This package provides:
- MPICommunicator: collectives over an mpi4py communicator
- SerialCommunicator: the same interface for a single worker
"""

from .comm import MPICommunicator, SerialCommunicator

__all__ = [
    "MPICommunicator",
    "SerialCommunicator",
]
