from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np
from tqdm.auto import tqdm

from .afss import factor_slice_sweep, update_interval_widths, update_slice_factors
from .interfaces import LogPosterior
from .rw import rw_componentwise_sweep
from .states import AFSSConfig, ChainTrace, SliceState

logger = logging.getLogger(__name__)


def run_afss_chain(
    *,
    seed: int,
    state: SliceState,
    posterior: LogPosterior,
    n_iterations: int,
    config: Optional[AFSSConfig] = None,
    thin: int = 1,
    # optional componentwise random walk after each AFSS sweep
    rw_kernel_sd: Optional[np.ndarray] = None,
    rw_nugget: Optional[np.ndarray] = None,
    progress: bool = True,
) -> Tuple[SliceState, ChainTrace]:
    """
    Single chain:
     - AFSS sweep over ``config.n_updates`` directions each iteration.
     - Interval widths adapted every ``config.adapt_every`` iterations until
       ``config.adapt_until``.
     - Factors re-estimated from the recorded samples at
       ``config.factor_update_iterations``.
    ``state`` is mutated in place and returned with the in-memory trace.
    """

    config = AFSSConfig() if config is None else config
    rng = np.random.default_rng(seed)
    trace = ChainTrace()
    factor_iters = set(int(i) for i in config.factor_update_iterations)
    n_rw_acc = 0

    with tqdm(total=n_iterations, desc="AFSS chain", unit="iter", disable=not progress) as pbar:
        for it in range(n_iterations):
            factor_slice_sweep(
                rng,
                state=state,
                posterior=posterior,
                n_updates=config.n_updates,
                max_steps_out=config.max_steps_out,
            )

            if rw_kernel_sd is not None:
                acc = rw_componentwise_sweep(
                    rng, state=state, posterior=posterior, kernel_sd=rw_kernel_sd, nugget=rw_nugget
                )
                n_rw_acc += int(acc.sum())

            adapting = config.adapt_until is None or it < config.adapt_until
            if adapting and (it + 1) % config.adapt_every == 0:
                update_interval_widths(state, config.adaptation_factor(it), config.target_ratio)

            if it % thin == 0:
                trace.record(state)

            if (it + 1) in factor_iters:
                if len(trace.params_est) > state.params_est.size:
                    update_slice_factors(state, np.asarray(trace.params_est))
                else:
                    logger.debug("skipping factor update at %d: too few samples", it + 1)

            pbar.update(1)

    logger.info(
        "AFSS chain finished: %d iterations, %d expansions, %d contractions, %d RW acceptances",
        n_iterations,
        int(state.c_expansions.sum()),
        int(state.c_contractions.sum()),
        n_rw_acc,
    )
    return state, trace


__all__ = ["run_afss_chain"]
