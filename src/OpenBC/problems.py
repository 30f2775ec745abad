"""Source terms and reference solutions for open-boundary problems."""

from typing import Sequence

import numpy as np
from scipy.constants import epsilon_0

from .datastructures import Region


def gaussian_charge(charge: float, sigma: float, center: Sequence[float]):
    """Charge density of a normalized Gaussian blob, as a function of coordinates.

    Integrates to ``charge`` over free space.
    """
    center = tuple(center)
    ndim = len(center)
    norm = charge / ((2.0 * np.pi * sigma**2) ** (ndim / 2.0))

    def density(*coords):
        r2 = sum((c - c0) ** 2 for c, c0 in zip(coords, center))
        return norm * np.exp(-r2 / (2.0 * sigma**2))

    return density


def coulomb_potential(charge: float, center: Sequence[float], epsilon: float = epsilon_0):
    """Potential of a point charge in 3D free space (far-field reference)."""
    center = tuple(center)

    def potential(*coords):
        r = np.sqrt(sum((c - c0) ** 2 for c, c0 in zip(coords, center)))
        with np.errstate(divide="ignore"):
            return charge / (4.0 * np.pi * epsilon * r)

    return potential


def owned_nodes(region: Region, node_domain: Region, periodicity: Sequence[bool]) -> Region:
    """Nodes of a node-centered region that no neighbouring region also stores.

    Neighbouring nodal regions share their faces; the upper face belongs to
    the next region, except on the last node of a non-periodic domain.
    """
    hi = tuple(
        h if (h == dh and not periodic) else h - 1
        for h, dh, periodic in zip(region.hi, node_domain.hi, periodicity)
    )
    return Region(region.lo, hi, region.index_type)


def fill_density(field, fn):
    """Fill a nodal field from ``fn(X, Y[, Z])`` so each physical node is set once."""
    geometry = field.geometry
    node_domain = geometry.node_domain()
    for i in field.local_indices():
        region = owned_nodes(field.valid_region(i), node_domain, geometry.periodicity)
        field.view(i, region)[...] = fn(*geometry.meshgrid(region))
