"""Resample a dense LNA path onto observation times."""

from __future__ import annotations

from typing import Optional

import numpy as np

from .forcing import apply_forcings
from .states import CensusPath, LNAPath, LNAStructure


def census_indices_for(lna_times: np.ndarray, obs_times: np.ndarray) -> np.ndarray:
    """Indices of ``obs_times`` within ``lna_times`` (which must contain them)."""

    lna_times = np.asarray(lna_times, dtype=np.float64)
    obs_times = np.asarray(obs_times, dtype=np.float64)
    idx = np.searchsorted(lna_times, obs_times)
    idx = np.clip(idx, 0, lna_times.size - 1)
    if not np.allclose(lna_times[idx], obs_times):
        raise ValueError("every observation time must be an LNA evaluation time")
    return idx


def census_lna(
    path: LNAPath,
    census_indices: np.ndarray,
    structure: LNAStructure,
    row_table: np.ndarray,
    *,
    do_prevalence: bool = True,
    out: Optional[CensusPath] = None,
) -> CensusPath:
    """Incidence summed between census times, and optionally prevalence.

    Prevalence is rebuilt from the initial volumes and the incidence path,
    with forcings applied after each flagged time is censused.
    """

    census_indices = np.asarray(census_indices)
    cum = np.cumsum(path.incidence, axis=0)
    at = cum[census_indices]
    incidence = np.diff(at, axis=0, prepend=np.zeros((1, at.shape[1])))

    if out is None:
        out = CensusPath(times=path.times[census_indices].copy(), incidence=incidence)
    else:
        out.times[:] = path.times[census_indices]
        out.incidence[:] = incidence

    if not do_prevalence:
        out.prevalence = None
        return out

    forcing = structure.forcing
    prevalence = np.zeros((structure.n_times, structure.n_comps))

    volumes = np.array(row_table[0, structure.layout.init_cols], dtype=np.float64, copy=True)
    prevalence[0] = volumes
    if forcing.flags[0]:
        apply_forcings(volumes, forcing, row_table[0])

    last = int(census_indices.max()) if census_indices.size else 0
    for j in range(1, last + 1):
        volumes += path.incidence[j] @ structure.stoich
        prevalence[j] = volumes
        if forcing.flags[j]:
            apply_forcings(volumes, forcing, row_table[j])

    out.prevalence = prevalence[census_indices]
    return out


__all__ = ["census_indices_for", "census_lna"]
