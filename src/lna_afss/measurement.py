"""Emission densities of observed data given a censused LNA path."""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import jax
import jax.numpy as jnp
from jax.scipy.special import gammaln, xlogy

from .states import CensusPath


def poisson_incidence_density(rho_col: int):
    """Poisson counts with mean ``rho * latent``; ``rho`` read from ``rho_col``."""

    def log_density(obs_row: jnp.ndarray, latent_row: jnp.ndarray, params_row: jnp.ndarray) -> jnp.ndarray:
        mean = params_row[rho_col] * latent_row
        return xlogy(obs_row, mean) - mean - gammaln(obs_row + 1.0)

    return log_density


class EmissionEvaluator:
    """Row-batched, JAX-compiled emission densities.

    ``log_density_jax(obs_row, latent_row, params_row) -> (M,)`` is vmapped over
    observation rows. ``latent_inds`` pick the measured columns of the census
    incidence (or prevalence when ``use_prevalence``), in observation order.
    """

    def __init__(
        self,
        log_density_jax: Callable[[jnp.ndarray, jnp.ndarray, jnp.ndarray], jnp.ndarray],
        latent_inds: np.ndarray,
        *,
        use_prevalence: bool = False,
    ):
        self.latent_inds = np.asarray(latent_inds)
        self.use_prevalence = use_prevalence
        self._f = jax.jit(jax.vmap(log_density_jax, in_axes=(0, 0, 0)))

    def log_emission(
        self,
        census: CensusPath,
        observations: np.ndarray,  # (n_obs, M), NaN for missing
        row_table: np.ndarray,
        census_indices: np.ndarray,
    ) -> np.ndarray:
        latent = census.prevalence if self.use_prevalence else census.incidence
        if latent is None:
            raise ValueError("prevalence was not censused")
        return np.array(
            self._f(
                jnp.asarray(observations, dtype=jnp.float64),
                jnp.asarray(latent[:, self.latent_inds]),
                jnp.asarray(row_table[np.asarray(census_indices)]),
            )
        )


def make_emission_evaluator(log_density_jax, latent_inds, *, use_prevalence: bool = False) -> EmissionEvaluator:
    return EmissionEvaluator(log_density_jax, latent_inds, use_prevalence=use_prevalence)


def observation_mask(observations: np.ndarray) -> np.ndarray:
    """True where a cell was observed."""

    return ~np.isnan(np.asarray(observations, dtype=np.float64))


def data_log_lik(emit: np.ndarray, mask: Optional[np.ndarray] = None) -> float:
    """Sum of log emission densities over masked cells; NaN becomes -inf."""

    vals = emit if mask is None else emit[mask]
    ll = float(np.sum(vals))
    if np.isnan(ll):
        return -np.inf
    return ll


__all__ = [
    "EmissionEvaluator",
    "data_log_lik",
    "make_emission_evaluator",
    "observation_mask",
    "poisson_incidence_density",
]
