"""Adaptive factor slice sampling (AFSS) kernel and its adaptation routines."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

import numpy as np

from .interfaces import LogPosterior
from .states import PosteriorEval, SliceState

logger = logging.getLogger(__name__)

# brackets narrower than this end the shrink phase without a move
SHRINK_TOL = float(np.sqrt(np.finfo(np.float64).eps))


def slice_bracket(rng: np.random.Generator, width: float) -> Tuple[float, float]:
    """Bracket of length ``width`` placed uniformly around offset 0."""

    lower = -width * rng.random()
    upper = lower + width
    return lower, upper


def slice_step_out(
    rng: np.random.Generator,
    logpost_at: Callable[[float], float],
    threshold: float,
    width: float,
    lower: float,
    upper: float,
    max_steps_out: Optional[int] = None,
) -> Tuple[float, float, int]:
    """Expand ``[lower, upper]`` until both ends fall below ``threshold``.

    The lower end is stepped out first, then the upper end. With
    ``max_steps_out`` the budget is split at random between the two ends
    (Neal 2003, fig. 3); otherwise step-out is unbounded.
    Returns the new bracket and the number of expansions.
    """

    if max_steps_out is None:
        steps_lower = steps_upper = np.inf
    else:
        steps_lower = int(np.floor(max_steps_out * rng.random()))
        steps_upper = max_steps_out - 1 - steps_lower

    n_exp = 0
    while steps_lower > 0 and threshold < logpost_at(lower):
        lower -= width
        steps_lower -= 1
        n_exp += 1

    while steps_upper > 0 and threshold < logpost_at(upper):
        upper += width
        steps_upper -= 1
        n_exp += 1

    return lower, upper, n_exp


def slice_shrink(
    rng: np.random.Generator,
    evaluate_at: Callable[[float], PosteriorEval],
    threshold: float,
    lower: float,
    upper: float,
) -> Tuple[Optional[PosteriorEval], float, float, int]:
    """Sample uniformly in the bracket, shrinking towards offset 0 on rejection.

    The shrink rule assumes ``lower <= 0 <= upper``. Returns the accepted
    evaluation (or ``None`` once the bracket is narrower than ``SHRINK_TOL``),
    the final bracket and the number of contractions.
    """

    n_con = 0
    while (upper - lower) > SHRINK_TOL:
        prop = rng.uniform(lower, upper)
        ev = evaluate_at(prop)
        if ev.log_post > threshold:
            return ev, lower, upper, n_con
        if prop < 0.0:
            lower = prop
        else:
            upper = prop
        n_con += 1
    return None, lower, upper, n_con


def factor_slice_sweep(
    rng: np.random.Generator,
    *,
    state: SliceState,
    posterior: LogPosterior,
    n_updates: Optional[int] = None,
    max_steps_out: Optional[int] = None,
) -> SliceState:
    """One AFSS sweep over ``n_updates`` directions, mutating ``state`` in place.

    Directions are drawn without replacement with probabilities
    ``state.slice_probs``. Each direction is a univariate slice sampling update
    of the estimation-scale parameters along ``state.factors[:, f]``.
    """

    n_dirs = state.n_dirs
    if n_updates is None:
        n_updates = n_dirs
    directions = rng.choice(n_dirs, size=n_updates, replace=False, p=state.slice_probs)

    for f in directions:
        direction = state.factors[:, f]
        width = float(state.interval_widths[f])
        x_cur = state.params_est.copy()

        threshold = state.log_lik + state.log_prior - rng.exponential(1.0)

        def evaluate_at(offset: float) -> PosteriorEval:
            return posterior.evaluate(x_cur + offset * direction)

        def logpost_at(offset: float) -> float:
            return evaluate_at(offset).log_post

        lower, upper = slice_bracket(rng, width)
        lower, upper, n_exp = slice_step_out(
            rng, logpost_at, threshold, width, lower, upper, max_steps_out
        )
        state.n_expansions[f] += n_exp
        state.c_expansions[f] += n_exp

        assert lower <= 0.0 <= upper, "slice bracket must contain the current point"

        ev, lower, upper, n_con = slice_shrink(rng, evaluate_at, threshold, lower, upper)
        state.n_contractions[f] += n_con
        state.c_contractions[f] += n_con

        if ev is not None:
            state.accept(ev)
            continue

        # no move: recompute at the current point so the shared scratch buffers
        # hold the current parameters again
        logger.debug("AFSS direction %d: bracket collapsed, keeping current point", f)
        ev = posterior.evaluate(state.params_est)
        if ev.failure is not None:
            logger.warning(
                "AFSS direction %d: re-evaluation at current point failed (%s)",
                f,
                ev.failure.value,
            )
        else:
            state.accept(ev)

    return state


def update_interval_widths(
    state: SliceState,
    adaptation_factor: float,
    target_ratio: float = 0.5,
) -> np.ndarray:
    """Robbins-Monro update of the interval widths, in place.

    ``log w += adaptation_factor * (n_exp / (n_exp + n_con) - target_ratio)``
    using the counts since the previous call; a zero count is replaced by the
    cumulative expansion ratio of that direction. Latest-window counts are
    reset, cumulative counts are kept.
    """

    with np.errstate(invalid="ignore", divide="ignore"):
        ratios = state.c_expansions / (state.c_expansions + state.c_contractions)
        n_exp = np.where(state.n_expansions == 0, ratios, state.n_expansions)
        n_con = np.where(state.n_contractions == 0, ratios, state.n_contractions)
        frac = n_exp / (n_exp + n_con)

    # directions with no information at all keep their width
    step = np.where(np.isfinite(frac), adaptation_factor * (frac - target_ratio), 0.0)
    state.interval_widths[:] = np.exp(np.log(state.interval_widths) + step)

    state.n_expansions[:] = 0.0
    state.n_contractions[:] = 0.0
    logger.debug("AFSS interval widths: %s", state.interval_widths)
    return state.interval_widths


def update_slice_factors(state: SliceState, samples: np.ndarray) -> SliceState:
    """Replace the slice directions by the eigenvectors of the sample covariance.

    Sampling probabilities become uniform and all expansion/contraction
    counters restart, since they refer to the old directions.
    """

    samples = np.asarray(samples, dtype=np.float64)
    if samples.ndim != 2 or samples.shape[1] != state.params_est.size:
        raise ValueError("samples must have shape (n, d) matching the parameter dimension")
    cov = np.atleast_2d(np.cov(samples, rowvar=False))
    evals, evecs = np.linalg.eigh(cov)
    order = np.argsort(evals)[::-1]

    state.factors = evecs[:, order]
    n_dirs = state.factors.shape[1]
    state.slice_probs = np.full(n_dirs, 1.0 / n_dirs)
    if state.interval_widths.size != n_dirs:
        state.interval_widths = np.ones(n_dirs)
    for counts in ("n_expansions", "n_contractions", "c_expansions", "c_contractions"):
        setattr(state, counts, np.zeros(n_dirs))

    logger.debug("AFSS factors refreshed from %d samples", samples.shape[0])
    return state


__all__ = [
    "SHRINK_TOL",
    "factor_slice_sweep",
    "slice_bracket",
    "slice_shrink",
    "slice_step_out",
    "update_interval_widths",
    "update_slice_factors",
]
