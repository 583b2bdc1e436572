"""Proportional redistribution of exogenous flows across compartments."""

from __future__ import annotations

import numpy as np

from .states import ForcingSpec


def _l1_normalise(v: np.ndarray) -> np.ndarray:
    norm = np.sum(np.abs(v))
    if norm == 0.0:
        return np.zeros_like(v)
    return v / norm


def apply_forcings(
    volumes: np.ndarray,  # (n_comps,) mutated in place
    forcing: ForcingSpec,
    params_row: np.ndarray,  # row of the parameter row-table at this time
) -> np.ndarray:
    """Apply every forcing source in turn; returns ``volumes``.

    Each source moves ``flow * normalise(weights * volumes)`` through its
    transfer matrix, so the outflow is split in proportion to current occupancy.
    """

    for s in range(forcing.n_forcings):
        flow = params_row[forcing.tcovar_cols[s]]
        distvec = flow * _l1_normalise(forcing.distributions[:, s] * volumes)
        volumes += forcing.transfers[s] @ distvec
    return volumes


__all__ = ["apply_forcings"]
