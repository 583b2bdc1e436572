"""Full log-posterior evaluation for the LNA model."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from .census import census_lna
from .interfaces import MeasurementModel, OdeIntegrator, PriorTransform, TParamInjector
from .lna_path import insert_params, map_draws_to_lna
from .measurement import data_log_lik, observation_mask
from .states import LNAPath, LNAStructure, PathFailure, PosteriorEval

logger = logging.getLogger(__name__)


def _is_zero_prior(log_prior: float) -> bool:
    return bool(np.isnan(log_prior) or log_prior == -np.inf)


class LNAPosterior:
    """Owns the scratch buffers of one chain and evaluates its posterior.

    The row-table, path buffer and census buffer are overwritten in full by
    every call to :meth:`evaluate`. The ``path`` of a returned evaluation
    borrows the path buffer and is only valid until the next call; the sampler
    copies it on acceptance. Instances must not be shared between chains.
    """

    def __init__(
        self,
        *,
        structure: LNAStructure,
        integrator: OdeIntegrator,
        prior: PriorTransform,
        measurement: MeasurementModel,
        observations: np.ndarray,
        census_indices: np.ndarray,
        draws: np.ndarray,
        row_table: np.ndarray,
        tparams: Sequence[TParamInjector] = (),
        obs_mask: Optional[np.ndarray] = None,
        do_prevalence: bool = False,
        step_size: float = 1e-4,
    ):
        if row_table.shape != (structure.n_times, structure.layout.n_cols):
            raise ValueError(
                f"row_table must have shape {(structure.n_times, structure.layout.n_cols)}"
            )
        self.structure = structure
        self.integrator = integrator
        self.prior = prior
        self.measurement = measurement
        self.observations = np.asarray(observations, dtype=np.float64)
        self.census_indices = np.asarray(census_indices)
        self.draws = np.asarray(draws, dtype=np.float64)
        self.tparams = list(tparams)
        self.obs_mask = observation_mask(self.observations) if obs_mask is None else np.asarray(obs_mask, bool)
        self.do_prevalence = do_prevalence
        self.step_size = step_size

        self.row_table = np.array(row_table, dtype=np.float64, copy=True)
        self._path_buf = LNAPath.empty(structure)
        self._census_buf = None

    def load_params(self, params_nat: np.ndarray):
        """Write natural-scale parameters and time-varying parameters into the row-table."""

        insert_params(self.row_table, params_nat, self.structure.layout.param_cols)
        for tp in self.tparams:
            tp.inject(self.row_table)

    def evaluate(self, params_est: np.ndarray) -> PosteriorEval:
        params_est = np.array(params_est, dtype=np.float64, copy=True)
        params_nat = np.asarray(self.prior.to_natural_scale(params_est), dtype=np.float64)
        log_prior = float(self.prior.log_prior_density(params_nat, params_est))

        if _is_zero_prior(log_prior):
            return PosteriorEval(
                params_est, params_nat, -np.inf, -np.inf, failure=PathFailure.ZERO_PRIOR
            )

        self.load_params(params_nat)
        res = map_draws_to_lna(
            self.draws,
            self.structure,
            self.row_table,
            self.integrator,
            step_size=self.step_size,
            out=self._path_buf,
        )
        if not res.ok:
            return PosteriorEval(params_est, params_nat, log_prior, -np.inf, failure=res.failure)

        self._census_buf = census_lna(
            res.path,
            self.census_indices,
            self.structure,
            self.row_table,
            do_prevalence=self.do_prevalence,
            out=self._census_buf,
        )
        emit = self.measurement.log_emission(
            self._census_buf, self.observations, self.row_table, self.census_indices
        )
        log_lik = data_log_lik(emit, self.obs_mask)
        return PosteriorEval(params_est, params_nat, log_prior, log_lik, path=res.path)


class DensityPosterior:
    """Closed-form target with no latent path, for checking the sampler itself."""

    def __init__(self, log_density, to_natural_scale=None):
        self.log_density = log_density
        self.to_natural_scale = to_natural_scale

    def evaluate(self, params_est: np.ndarray) -> PosteriorEval:
        params_est = np.array(params_est, dtype=np.float64, copy=True)
        params_nat = params_est if self.to_natural_scale is None else np.asarray(self.to_natural_scale(params_est))
        lp = float(self.log_density(params_est))
        if _is_zero_prior(lp):
            return PosteriorEval(params_est, params_nat, -np.inf, -np.inf, failure=PathFailure.ZERO_PRIOR)
        return PosteriorEval(params_est, params_nat, lp, 0.0)


__all__ = ["DensityPosterior", "LNAPosterior"]
