"""Strategy interfaces for the collaborators of the path mapper and sampler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np

from .states import CensusPath, PosteriorEval


class StaleParametersError(RuntimeError):
    """Raised when an integrator is called with a token older than its parameters."""


@dataclass(frozen=True)
class ParamsToken:
    """Proof that parameters were pushed into an integrator before integrating."""

    owner: int  # id() of the issuing integrator
    version: int


@runtime_checkable
class OdeIntegrator(Protocol):
    """Integrates LNA drift and diffusion over one interval."""

    n_events: int

    def set_params(self, params: np.ndarray) -> ParamsToken:
        ...

    def integrate(
        self,
        state: np.ndarray,
        t_lo: float,
        t_hi: float,
        step_size: float,
        token: ParamsToken,
    ) -> np.ndarray:
        """Fill ``state`` with drift (first n) and flattened diffusion (next n*n)."""
        ...


@runtime_checkable
class PriorTransform(Protocol):
    def to_natural_scale(self, params_est: np.ndarray) -> np.ndarray:
        ...

    def log_prior_density(self, params_nat: np.ndarray, params_est: np.ndarray) -> float:
        ...


@runtime_checkable
class MeasurementModel(Protocol):
    def log_emission(
        self,
        census: CensusPath,
        observations: np.ndarray,
        row_table: np.ndarray,
        census_indices: np.ndarray,
    ) -> np.ndarray:
        """Per-cell log densities, same shape as ``observations``."""
        ...


@runtime_checkable
class TParamInjector(Protocol):
    def inject(self, row_table: np.ndarray) -> None:
        """Write time-varying parameter values into ``row_table`` in place."""
        ...


@runtime_checkable
class LogPosterior(Protocol):
    """Anything the slice sampler can evaluate along a direction."""

    def evaluate(self, params_est: np.ndarray) -> PosteriorEval:
        ...


class SimpleIntegratorMixin:
    """Token bookkeeping shared by integrators that hold their parameters."""

    def __init__(self):
        self._version = 0
        self._params = None

    def set_params(self, params: np.ndarray) -> ParamsToken:
        self._params = np.array(params, dtype=np.float64, copy=True)
        self._version += 1
        return ParamsToken(owner=id(self), version=self._version)

    def _check_token(self, token: ParamsToken):
        if token.owner != id(self) or token.version != self._version:
            raise StaleParametersError(
                f"integrate() called with token v{token.version}, "
                f"current parameters are v{self._version}"
            )


__all__ = [name for name in globals() if not name.startswith("_")]
