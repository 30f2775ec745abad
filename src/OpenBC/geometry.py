"""Problem geometry: index domain, physical extent and periodicity."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from .datastructures import Region
from .errors import ConfigurationError


@dataclass(frozen=True)
class Geometry:
    """Cell-centered index domain mapped onto ``[prob_lo, prob_hi]``.

    Parameters
    ----------
    domain : Region
        Cell-centered index domain, usually starting at zero.
    prob_lo, prob_hi : tuple of float
        Physical corners of the domain.
    periodicity : tuple of bool
        Per-axis periodic flag.
    """

    domain: Region
    prob_lo: Tuple[float, ...]
    prob_hi: Tuple[float, ...]
    periodicity: Tuple[bool, ...]

    def __post_init__(self):
        ndim = self.domain.ndim
        if not self.domain.index_type.is_cell():
            raise ConfigurationError(f"Geometry domain must be cell-centered, got {self.domain}")
        for name in ("prob_lo", "prob_hi", "periodicity"):
            if len(getattr(self, name)) != ndim:
                raise ConfigurationError(
                    f"{name} has {len(getattr(self, name))} entries for a {ndim}-D domain"
                )
        object.__setattr__(self, "prob_lo", tuple(float(v) for v in self.prob_lo))
        object.__setattr__(self, "prob_hi", tuple(float(v) for v in self.prob_hi))
        object.__setattr__(self, "periodicity", tuple(bool(p) for p in self.periodicity))
        if any(h <= l for l, h in zip(self.prob_lo, self.prob_hi)):
            raise ConfigurationError(f"prob_hi must exceed prob_lo: {self.prob_lo}, {self.prob_hi}")

    @classmethod
    def from_extent(
        cls,
        n_cells: Sequence[int],
        prob_lo: Sequence[float] = None,
        prob_hi: Sequence[float] = None,
        periodic: Sequence[bool] = None,
    ) -> "Geometry":
        """Domain ``[0, n_cells)`` on ``[prob_lo, prob_hi]`` (defaults: unit-spaced cells)."""
        ndim = len(n_cells)
        domain = Region((0,) * ndim, tuple(n - 1 for n in n_cells))
        return cls(
            domain,
            tuple(prob_lo) if prob_lo is not None else (0.0,) * ndim,
            tuple(prob_hi) if prob_hi is not None else tuple(float(n) for n in n_cells),
            tuple(periodic) if periodic is not None else (False,) * ndim,
        )

    @property
    def ndim(self) -> int:
        return self.domain.ndim

    @property
    def period(self) -> Tuple[int, ...]:
        """Domain length in cells per axis (the periodic translation)."""
        return self.domain.shape

    @property
    def cell_size(self) -> Tuple[float, ...]:
        return tuple(
            (h - l) / n for l, h, n in zip(self.prob_lo, self.prob_hi, self.domain.shape)
        )

    def node_domain(self) -> Region:
        return self.domain.surrounding_nodes()

    def _shifts(self, images: Sequence[int]) -> List[Tuple[int, ...]]:
        per_axis = [
            tuple(k * length for k in images) if periodic else (0,)
            for periodic, length in zip(self.periodicity, self.period)
        ]
        return list(itertools.product(*per_axis))

    def periodic_shifts(self) -> List[Tuple[int, ...]]:
        """Translations by one period on each periodic axis, zero shift first."""
        return self._shifts((0, -1, 1))

    def far_periodic_shifts(self) -> List[Tuple[int, ...]]:
        """Shifts that reach a second image on at least one periodic axis."""
        return [
            s
            for s in self._shifts((0, -1, 1, -2, 2))
            if any(abs(v) == 2 * length for v, length in zip(s, self.period))
        ]

    def coordinates(self, region: Region) -> List[np.ndarray]:
        """Physical coordinate of every index along each axis of ``region``."""
        dx = self.cell_size
        coords = []
        for axis in range(region.ndim):
            offset = 0.0 if region.index_type.nodal[axis] else 0.5
            idx = np.arange(region.lo[axis], region.hi[axis] + 1)
            coords.append(self.prob_lo[axis] + (idx + offset) * dx[axis])
        return coords

    def meshgrid(self, region: Region) -> List[np.ndarray]:
        return np.meshgrid(*self.coordinates(region), indexing="ij")

