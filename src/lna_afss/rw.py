"""Componentwise adaptive random-walk Metropolis kernel."""

from __future__ import annotations

from typing import Optional

import numpy as np

from .interfaces import LogPosterior
from .states import SliceState


def propose_rw_componentwise(
    rng: np.random.Generator,
    params_cur: np.ndarray,  # (d,)
    ind: int,
    kernel_sd: np.ndarray,  # (d,)
    nugget: np.ndarray,  # (d,) weight of a unit-scale component
) -> np.ndarray:
    out = params_cur.copy()
    out[ind] = (
        params_cur[ind]
        + nugget[ind] * rng.standard_normal()
        + (1.0 - nugget[ind]) * rng.standard_normal() * kernel_sd[ind]
    )
    return out


def rw_componentwise_sweep(
    rng: np.random.Generator,
    *,
    state: SliceState,
    posterior: LogPosterior,
    kernel_sd: np.ndarray,
    nugget: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Metropolis update of each component in random order; returns acceptances."""

    d = state.params_est.size
    kernel_sd = np.broadcast_to(np.asarray(kernel_sd, dtype=np.float64), (d,))
    nugget = np.zeros(d) if nugget is None else np.broadcast_to(np.asarray(nugget, dtype=np.float64), (d,))

    accepted = np.zeros(d, dtype=bool)
    buffers_current = True
    for ind in rng.permutation(d):
        prop = propose_rw_componentwise(rng, state.params_est, ind, kernel_sd, nugget)
        ev = posterior.evaluate(prop)
        delta = ev.log_post - (state.log_lik + state.log_prior)
        if np.log(rng.random()) < delta:
            state.accept(ev)
            accepted[ind] = True
            buffers_current = True
        else:
            buffers_current = False

    # last proposal rejected: recompute at the current point so the scratch
    # buffers hold the current parameters again
    if not buffers_current:
        ev = posterior.evaluate(state.params_est)
        if ev.failure is None:
            state.accept(ev)
    return accepted


__all__ = ["propose_rw_componentwise", "rw_componentwise_sweep"]
