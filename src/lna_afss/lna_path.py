"""Map standard-normal perturbations to an LNA incidence and prevalence path."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .forcing import apply_forcings
from .interfaces import OdeIntegrator
from .states import LNAPath, LNAStructure, PathFailure, PathResult

logger = logging.getLogger(__name__)


def insert_params(row_table: np.ndarray, params_nat: np.ndarray, param_cols: np.ndarray) -> np.ndarray:
    """Broadcast a natural-scale parameter vector into every row, in place."""

    row_table[:, param_cols] = np.asarray(params_nat)[None, :]
    return row_table


def lna_sqrt_diffusion(diffusion: np.ndarray) -> np.ndarray:
    """Symmetric square root of a diffusion matrix via SVD.

    Negative singular values are clipped to zero and entries that are exactly
    zero in ``diffusion`` stay zero in the result. Raises
    ``np.linalg.LinAlgError`` if the SVD does not converge.
    """

    U, s, Vh = np.linalg.svd(diffusion)
    s = np.where(s < 0.0, 0.0, s)
    root = U @ (np.sqrt(s)[:, None] * Vh)
    root[diffusion == 0.0] = 0.0
    return root


def _fail(kind: PathFailure, j: int) -> PathResult:
    logger.debug("LNA path mapping failed on interval %d: %s", j, kind.value)
    return PathResult(path=None, failure=kind, interval=j)


def map_draws_to_lna(
    draws: np.ndarray,  # (n_events, n_times - 1)
    structure: LNAStructure,
    row_table: np.ndarray,  # (n_times, n_cols)
    integrator: OdeIntegrator,
    *,
    step_size: float = 1e-4,
    out: Optional[LNAPath] = None,
) -> PathResult:
    """Non-centered LNA path for the given perturbations and parameters.

    ``out``, when given, is overwritten in full and returned in the result;
    the row-table is only read. Failures come back as a tagged ``PathResult``.
    """

    n_events = structure.n_events
    n_times = structure.n_times
    layout = structure.layout
    forcing = structure.forcing
    times = structure.times

    draws = np.asarray(draws, dtype=np.float64)
    if draws.shape != (n_events, n_times - 1):
        raise ValueError(
            f"draws must have shape {(n_events, n_times - 1)}, got {draws.shape}"
        )

    path = LNAPath.empty(structure) if out is None else out
    path.times[:] = times
    path.incidence[:] = 0.0
    path.prevalence[:] = 0.0

    current_params = np.array(row_table[0], dtype=np.float64, copy=True)
    token = integrator.set_params(current_params)

    volumes = current_params[layout.init_cols].copy()
    path.prevalence[0] = volumes

    # forcings at the first time act after the initial volumes are recorded
    if forcing.flags[0]:
        apply_forcings(volumes, forcing, row_table[0])
        if np.any(volumes < 0.0):
            return _fail(PathFailure.NEGATIVE_VOLUME, 0)
        current_params[layout.init_cols] = volumes
        token = integrator.set_params(current_params)

    state = np.zeros(n_events + n_events * n_events)

    for j in range(n_times - 1):
        t_L, t_R = times[j], times[j + 1]

        state[:] = 0.0
        state = integrator.integrate(state, t_L, t_R, step_size, token)
        drift = state[:n_events]
        diffusion = state[n_events:].reshape(n_events, n_events)

        if not (np.all(np.isfinite(drift)) and np.all(np.isfinite(diffusion))):
            return _fail(PathFailure.INTEGRATION_FAILURE, j)

        try:
            root = lna_sqrt_diffusion(diffusion)
        except np.linalg.LinAlgError:
            return _fail(PathFailure.SVD_FAILURE, j)

        log_inc = drift + root @ draws[:, j]
        nat_inc = np.expm1(log_inc)
        if np.any(nat_inc < 0.0):
            return _fail(PathFailure.NEGATIVE_INCREMENT, j)

        volumes += nat_inc @ structure.stoich
        if np.any(volumes < 0.0):
            return _fail(PathFailure.NEGATIVE_VOLUME, j)

        path.incidence[j + 1] = nat_inc
        path.prevalence[j + 1] = volumes

        if forcing.flags[j + 1]:
            apply_forcings(volumes, forcing, row_table[j + 1])
            if np.any(volumes < 0.0):
                return _fail(PathFailure.NEGATIVE_VOLUME, j)

        if structure.param_update_flags[j + 1]:
            current_params[layout.tcovar_cols] = row_table[j + 1, layout.tcovar_cols]

        current_params[layout.init_cols] = volumes
        token = integrator.set_params(current_params)

    return PathResult(path=path, failure=None)


__all__ = ["insert_params", "lna_sqrt_diffusion", "map_draws_to_lna"]
