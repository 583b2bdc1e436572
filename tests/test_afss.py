import numpy as np
from scipy import stats

from lna_afss import (
    AFSSConfig,
    DensityPosterior,
    PathFailure,
    SHRINK_TOL,
    SliceState,
    factor_slice_sweep,
    propose_rw_componentwise,
    run_afss_chain,
    rw_componentwise_sweep,
    slice_bracket,
    slice_shrink,
    slice_step_out,
    update_interval_widths,
    update_slice_factors,
)


def std_normal_logpdf(x):
    return -0.5 * float(np.sum(x**2))


def _state_for(posterior, x0, widths=1.0, factors=None):
    return SliceState.init(posterior.evaluate(np.asarray(x0, dtype=float)), factors=factors, interval_widths=widths)


def test_bracket_contains_current_point_after_step_out():
    rng = np.random.default_rng(0)
    for _ in range(500):
        width = float(np.exp(rng.uniform(-4.0, 3.0)))
        centre = rng.normal()
        threshold = -0.5 * centre**2 - rng.exponential()

        def logpost_at(offset):
            return -0.5 * (centre + offset) ** 2

        lower, upper = slice_bracket(rng, width)
        assert lower <= 0.0 <= upper
        assert np.isclose(upper - lower, width)

        for m in (None, 5):
            lo, up, n_exp = slice_step_out(rng, logpost_at, threshold, width, lower, upper, m)
            assert lo <= 0.0 <= up
            assert n_exp >= 0
            if m is None:
                assert logpost_at(lo) <= threshold
                assert logpost_at(up) <= threshold
            else:
                assert n_exp <= m


def test_shrink_collapses_when_nothing_is_above_threshold():
    rng = np.random.default_rng(1)
    post = DensityPosterior(lambda x: -np.inf if abs(x[0]) > 0 else 0.0)

    ev, lower, upper, n_con = slice_shrink(
        rng, lambda o: post.evaluate(np.array([o])), threshold=-1.0, lower=-0.3, upper=0.7
    )

    assert ev is None
    assert upper - lower <= SHRINK_TOL
    assert lower <= 0.0 <= upper
    assert n_con > 0


def test_collapsed_bracket_keeps_and_reevaluates_current_point():
    rng = np.random.default_rng(10)
    calls = []

    class Recording(DensityPosterior):
        def evaluate(self, params_est):
            calls.append(np.array(params_est))
            return super().evaluate(params_est)

    # all mass on a single point: every proposal off it is rejected
    post = Recording(lambda x: 0.0 if x[0] == 1.0 else -np.inf)
    state = _state_for(post, [1.0], widths=1.0)
    calls.clear()

    factor_slice_sweep(rng, state=state, posterior=post)

    np.testing.assert_array_equal(calls[-1], [1.0])
    np.testing.assert_array_equal(state.params_est, [1.0])
    assert state.log_prior == 0.0
    assert state.c_contractions[0] > 0
    assert state.c_expansions[0] == 0


def test_sweep_samples_standard_normal():
    rng = np.random.default_rng(2024)
    post = DensityPosterior(std_normal_logpdf)
    state = _state_for(post, [3.0], widths=2.0)

    draws = []
    for it in range(6000):
        factor_slice_sweep(rng, state=state, posterior=post)
        if it >= 500 and it % 10 == 0:
            draws.append(state.params_est[0])

    draws = np.asarray(draws)
    assert stats.kstest(draws, "norm").pvalue > 0.001
    assert abs(draws.mean()) < 0.2
    assert abs(draws.std() - 1.0) < 0.15


def test_sweep_samples_correlated_gaussian_along_factors():
    rng = np.random.default_rng(11)
    cov = np.array([[1.0, 0.8], [0.8, 1.0]])
    prec = np.linalg.inv(cov)
    post = DensityPosterior(lambda x: -0.5 * float(x @ prec @ x))
    _, evecs = np.linalg.eigh(cov)
    state = _state_for(post, [0.0, 0.0], widths=1.0, factors=evecs)

    draws = []
    for it in range(4000):
        factor_slice_sweep(rng, state=state, posterior=post)
        if it >= 200 and it % 5 == 0:
            draws.append(state.params_est.copy())
    draws = np.asarray(draws)

    # projections onto the first coordinate are N(0, 1)
    assert stats.kstest(draws[:, 0], "norm").pvalue > 0.001
    assert abs(np.corrcoef(draws.T)[0, 1] - 0.8) < 0.1


def test_sweep_never_moves_into_zero_prior_region():
    rng = np.random.default_rng(3)
    # exponential(1) target on x > 0
    post = DensityPosterior(lambda x: -x[0] if x[0] > 0 else -np.inf)
    state = _state_for(post, [1.0], widths=1.0)

    draws = []
    for _ in range(3000):
        factor_slice_sweep(rng, state=state, posterior=post)
        assert state.params_est[0] > 0.0
        assert np.isfinite(state.log_prior)
        draws.append(state.params_est[0])

    assert stats.kstest(np.asarray(draws[200::5]), "expon").pvalue > 0.001


def test_sweep_updates_subset_of_directions_without_replacement():
    rng = np.random.default_rng(4)
    calls = []

    class Recording(DensityPosterior):
        def evaluate(self, params_est):
            calls.append(np.array(params_est))
            return super().evaluate(params_est)

    post = Recording(std_normal_logpdf)
    state = _state_for(post, np.zeros(4), widths=1.0)
    state.slice_probs = np.array([0.0, 0.0, 0.5, 0.5])
    x0 = state.params_est.copy()
    calls.clear()

    factor_slice_sweep(rng, state=state, posterior=post, n_updates=2)

    # directions 0 and 1 have zero probability and must never be perturbed
    moved = np.abs(np.asarray(calls) - x0) > 0
    assert not moved[:, 0].any()
    assert not moved[:, 1].any()
    assert state.c_expansions[:2].sum() == 0 and state.c_contractions[:2].sum() == 0


def test_update_interval_widths_robbins_monro_step():
    post = DensityPosterior(std_normal_logpdf)
    state = _state_for(post, np.zeros(3), widths=[1.0, 2.0, 3.0])
    state.n_expansions[:] = [2.0, 0.0, 0.0]
    state.n_contractions[:] = [2.0, 3.0, 0.0]
    state.c_expansions[:] = [4.0, 1.0, 0.0]
    state.c_contractions[:] = [4.0, 3.0, 0.0]

    update_interval_widths(state, adaptation_factor=1.0, target_ratio=0.5)

    frac = 0.25 / (0.25 + 3.0)
    np.testing.assert_allclose(state.interval_widths, [1.0, 2.0 * np.exp(frac - 0.5), 3.0])
    np.testing.assert_array_equal(state.n_expansions, 0.0)
    np.testing.assert_array_equal(state.n_contractions, 0.0)
    np.testing.assert_array_equal(state.c_expansions, [4.0, 1.0, 0.0])
    np.testing.assert_array_equal(state.c_contractions, [4.0, 3.0, 0.0])


def test_interval_widths_converge_from_both_sides():
    post = DensityPosterior(std_normal_logpdf)
    config = AFSSConfig(target_ratio=0.5, scale=1.0, shift=50.0, decay=0.5)

    finals = []
    for start in (0.01, 100.0):
        rng = np.random.default_rng(5)
        state = _state_for(post, [0.0], widths=start)
        for it in range(2000):
            factor_slice_sweep(rng, state=state, posterior=post)
            update_interval_widths(state, config.adaptation_factor(it), config.target_ratio)
        finals.append(state.interval_widths[0])

    small, large = finals
    assert small > 0.01 and large < 100.0
    assert 0.3 < small < 30.0
    assert 0.3 < large < 30.0
    assert max(small, large) / min(small, large) < 4.0


def test_update_slice_factors_aligns_with_covariance():
    rng = np.random.default_rng(6)
    post = DensityPosterior(std_normal_logpdf)
    state = _state_for(post, np.zeros(2), widths=1.0)
    state.c_expansions[:] = 5.0
    samples = rng.multivariate_normal([0.0, 0.0], [[4.0, 1.9], [1.9, 1.0]], size=5000)

    update_slice_factors(state, samples)

    lead = state.factors[:, 0]
    np.testing.assert_allclose(np.abs(lead @ np.array([0.89, 0.45]) / np.linalg.norm([0.89, 0.45])), 1.0, atol=0.02)
    np.testing.assert_allclose(state.factors.T @ state.factors, np.eye(2), atol=1e-10)
    np.testing.assert_allclose(state.slice_probs, [0.5, 0.5])
    np.testing.assert_array_equal(state.c_expansions, 0.0)


def test_zero_prior_evaluation_is_tagged():
    post = DensityPosterior(lambda x: -np.inf)
    ev = post.evaluate(np.array([1.0]))
    assert ev.failure is PathFailure.ZERO_PRIOR
    assert ev.log_post == -np.inf


def test_componentwise_rw_proposal_moves_one_coordinate():
    rng = np.random.default_rng(7)
    x = np.array([1.0, 2.0, 3.0])
    prop = propose_rw_componentwise(rng, x, 1, kernel_sd=np.ones(3), nugget=np.zeros(3))
    assert prop[0] == 1.0 and prop[2] == 3.0
    assert prop[1] != 2.0


def test_componentwise_rw_targets_normal():
    rng = np.random.default_rng(8)
    post = DensityPosterior(std_normal_logpdf)
    state = _state_for(post, [0.0], widths=1.0)

    draws = []
    n_acc = 0
    for _ in range(8000):
        acc = rw_componentwise_sweep(rng, state=state, posterior=post, kernel_sd=2.4)
        n_acc += int(acc.sum())
        draws.append(state.params_est[0])

    assert 0.2 < n_acc / 8000 < 0.7
    assert stats.kstest(np.asarray(draws[500::20]), "norm").pvalue > 0.001


def test_run_afss_chain_records_and_adapts():
    post = DensityPosterior(std_normal_logpdf)
    state = _state_for(post, np.zeros(2), widths=0.05)
    config = AFSSConfig(adapt_every=5, adapt_until=200, factor_update_iterations=(150,))

    state, trace = run_afss_chain(
        seed=9, state=state, posterior=post, n_iterations=300, config=config, thin=2, progress=False
    )

    params_est, params_nat, log_lik, log_prior = trace.as_arrays()
    assert params_est.shape == (150, 2)
    assert np.all(np.isfinite(log_prior))
    assert np.all(state.interval_widths > 0.05)
    np.testing.assert_allclose(state.factors.T @ state.factors, np.eye(2), atol=1e-10)
