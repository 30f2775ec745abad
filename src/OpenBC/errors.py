"""Exception types for the open-boundary solve.

Every error here is fatal for the run: nothing in the package catches them.
The MPI worker entry point logs the error and aborts the communicator.
"""


class OpenBCError(RuntimeError):
    """Base class for all open-boundary solve failures."""


class ConfigurationError(OpenBCError, ValueError):
    """Inconsistent setup: dimensionality, periodicity, worker counts."""


class ContractViolation(OpenBCError):
    """A read or write outside a region or its declared halo."""


class SolverError(OpenBCError):
    """The boundary-value solver returned an invalid result."""
