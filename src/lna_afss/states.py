"""Shared dataclasses and constants for LNA paths and slice-sampler state."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np


class PathFailure(enum.Enum):
    """Recoverable reasons a posterior evaluation yields log-posterior -inf."""

    INTEGRATION_FAILURE = "integration_failure"
    SVD_FAILURE = "svd_failure"
    NEGATIVE_INCREMENT = "negative_increment"
    NEGATIVE_VOLUME = "negative_volume"
    ZERO_PRIOR = "zero_prior"


# Compact integer identifiers for failure tags, used in traces.
FAILURE_IDS = {
    None: 0,
    PathFailure.INTEGRATION_FAILURE: 1,
    PathFailure.SVD_FAILURE: 2,
    PathFailure.NEGATIVE_INCREMENT: 3,
    PathFailure.NEGATIVE_VOLUME: 4,
    PathFailure.ZERO_PRIOR: 5,
}


@dataclass
class ParameterLayout:
    """Column blocks of the parameter row-table."""

    param_cols: np.ndarray  # (P,)  model parameters, broadcast to every row
    const_cols: np.ndarray  # (K,)
    tcovar_cols: np.ndarray  # (T,) time-varying covariates, refreshed per row
    init_cols: np.ndarray  # (n_comps,) initial compartment volumes

    @staticmethod
    def contiguous(n_params: int, n_consts: int, n_tcovar: int, n_comps: int) -> "ParameterLayout":
        # params | constants | tcovars | initial volumes
        edges = np.cumsum([0, n_params, n_consts, n_tcovar, n_comps])
        return ParameterLayout(
            param_cols=np.arange(edges[0], edges[1]),
            const_cols=np.arange(edges[1], edges[2]),
            tcovar_cols=np.arange(edges[2], edges[3]),
            init_cols=np.arange(edges[3], edges[4]),
        )

    @property
    def n_cols(self) -> int:
        return int(
            self.param_cols.size
            + self.const_cols.size
            + self.tcovar_cols.size
            + self.init_cols.size
        )


@dataclass
class ForcingSpec:
    """Exogenous flows redistributed across compartments at flagged times."""

    flags: np.ndarray  # (n_times,) bool
    tcovar_cols: np.ndarray  # (F,) row-table column holding each forcing's flow
    distributions: np.ndarray  # (n_comps, F) proportional weights
    transfers: np.ndarray  # (F, n_comps, n_comps)

    @property
    def n_forcings(self) -> int:
        return int(np.asarray(self.tcovar_cols).size)

    @staticmethod
    def none(n_times: int, n_comps: int) -> "ForcingSpec":
        return ForcingSpec(
            flags=np.zeros(n_times, dtype=bool),
            tcovar_cols=np.zeros(0, dtype=np.int64),
            distributions=np.zeros((n_comps, 0)),
            transfers=np.zeros((0, n_comps, n_comps)),
        )


@dataclass
class LNAStructure:
    """Fixed (per model) inputs of the path mapper."""

    times: np.ndarray  # (n_times,) interval endpoints
    stoich: np.ndarray  # (n_events, n_comps)
    layout: ParameterLayout
    forcing: ForcingSpec
    param_update_flags: np.ndarray  # (n_times,) bool

    def __post_init__(self):
        self.times = np.asarray(self.times, dtype=np.float64)
        self.stoich = np.asarray(self.stoich, dtype=np.float64)
        self.param_update_flags = np.asarray(self.param_update_flags, dtype=bool)
        n_times = self.times.shape[0]
        if self.param_update_flags.shape != (n_times,):
            raise ValueError("param_update_flags must have one entry per time")
        if np.asarray(self.forcing.flags).shape != (n_times,):
            raise ValueError("forcing flags must have one entry per time")
        if self.layout.init_cols.size != self.n_comps:
            raise ValueError("init_cols must hold one column per compartment")

    @property
    def n_events(self) -> int:
        return int(self.stoich.shape[0])

    @property
    def n_comps(self) -> int:
        return int(self.stoich.shape[1])

    @property
    def n_times(self) -> int:
        return int(self.times.shape[0])


@dataclass
class LNAPath:
    """Incidence and prevalence of one LNA trajectory."""

    times: np.ndarray  # (n_times,)
    incidence: np.ndarray  # (n_times, n_events), row 0 is zero
    prevalence: np.ndarray  # (n_times, n_comps)

    @staticmethod
    def empty(structure: LNAStructure) -> "LNAPath":
        return LNAPath(
            times=structure.times.copy(),
            incidence=np.zeros((structure.n_times, structure.n_events)),
            prevalence=np.zeros((structure.n_times, structure.n_comps)),
        )

    def copy(self) -> "LNAPath":
        return LNAPath(self.times.copy(), self.incidence.copy(), self.prevalence.copy())


@dataclass
class CensusPath:
    """LNA path resampled at observation times."""

    times: np.ndarray  # (n_obs,)
    incidence: np.ndarray  # (n_obs, n_events) counts since previous census time
    prevalence: Optional[np.ndarray] = None  # (n_obs, n_comps)


@dataclass
class PathResult:
    """Tagged outcome of the path mapper: a path or a failure, never both."""

    path: Optional[LNAPath] = None
    failure: Optional[PathFailure] = None
    interval: int = -1  # interval index at which the failure occurred

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class PosteriorEval:
    """One full posterior evaluation at an estimation-scale parameter vector."""

    params_est: np.ndarray
    params_nat: np.ndarray
    log_prior: float
    log_lik: float
    path: Optional[LNAPath] = None
    failure: Optional[PathFailure] = None

    @property
    def log_post(self) -> float:
        if self.failure is not None:
            return -np.inf
        return float(self.log_lik + self.log_prior)


@dataclass
class SliceState:
    """Mutable state of the adaptive factor slice sampler."""

    params_est: np.ndarray  # (d,)
    params_nat: np.ndarray  # (d,)
    log_prior: float
    log_lik: float
    path: Optional[LNAPath]
    factors: np.ndarray  # (d, n_dirs) columns are slice directions
    slice_probs: np.ndarray  # (n_dirs,)
    interval_widths: np.ndarray  # (n_dirs,)
    n_expansions: np.ndarray  # (n_dirs,) since last adaptation
    n_contractions: np.ndarray
    c_expansions: np.ndarray  # (n_dirs,) cumulative
    c_contractions: np.ndarray

    @staticmethod
    def init(
        ev: PosteriorEval,
        *,
        factors: Optional[np.ndarray] = None,
        interval_widths=1.0,
    ) -> "SliceState":
        d = int(np.asarray(ev.params_est).size)
        if factors is None:
            factors = np.eye(d)
        n_dirs = factors.shape[1]
        widths = np.broadcast_to(np.asarray(interval_widths, dtype=np.float64), (n_dirs,))
        return SliceState(
            params_est=np.array(ev.params_est, dtype=np.float64, copy=True),
            params_nat=np.array(ev.params_nat, dtype=np.float64, copy=True),
            log_prior=float(ev.log_prior),
            log_lik=float(ev.log_lik),
            path=None if ev.path is None else ev.path.copy(),
            factors=np.array(factors, dtype=np.float64, copy=True),
            slice_probs=np.full(n_dirs, 1.0 / n_dirs),
            interval_widths=widths.copy(),
            n_expansions=np.zeros(n_dirs),
            n_contractions=np.zeros(n_dirs),
            c_expansions=np.zeros(n_dirs),
            c_contractions=np.zeros(n_dirs),
        )

    @property
    def n_dirs(self) -> int:
        return int(self.factors.shape[1])

    def accept(self, ev: PosteriorEval):
        """Overwrite the current point with an accepted evaluation."""

        self.params_est[:] = ev.params_est
        self.params_nat[:] = ev.params_nat
        self.log_prior = float(ev.log_prior)
        self.log_lik = float(ev.log_lik)
        if ev.path is not None:
            if self.path is None:
                self.path = ev.path.copy()
            else:
                self.path.incidence[:] = ev.path.incidence
                self.path.prevalence[:] = ev.path.prevalence


@dataclass
class AFSSConfig:
    """Tuning knobs for adaptive factor slice sampling."""

    target_ratio: float = 0.5
    # adaptation_factor(i) = scale * (1 + i / shift) ** -decay
    scale: float = 1.0
    shift: float = 100.0
    decay: float = 0.5
    adapt_every: int = 1
    adapt_until: Optional[int] = None
    n_updates: Optional[int] = None  # directions per sweep; None => all
    max_steps_out: Optional[int] = None  # None => unbounded step-out
    factor_update_iterations: Sequence[int] = ()

    def adaptation_factor(self, iteration: int) -> float:
        return float(self.scale * (1.0 + iteration / self.shift) ** (-self.decay))


@dataclass
class ChainTrace:
    """In-memory record of a chain run."""

    params_est: List[np.ndarray] = field(default_factory=list)
    params_nat: List[np.ndarray] = field(default_factory=list)
    log_lik: List[float] = field(default_factory=list)
    log_prior: List[float] = field(default_factory=list)
    interval_widths: List[np.ndarray] = field(default_factory=list)

    def record(self, state: SliceState):
        self.params_est.append(state.params_est.copy())
        self.params_nat.append(state.params_nat.copy())
        self.log_lik.append(float(state.log_lik))
        self.log_prior.append(float(state.log_prior))
        self.interval_widths.append(state.interval_widths.copy())

    def as_arrays(self):
        return (
            np.asarray(self.params_est),
            np.asarray(self.params_nat),
            np.asarray(self.log_lik),
            np.asarray(self.log_prior),
        )


__all__ = [name for name in globals() if not name.startswith("_")]
