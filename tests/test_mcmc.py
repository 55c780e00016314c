"""
Tests for the MCMC machinery: adaptive proposals, the chain runner, elliptical
slice sampling and convergence diagnostics.
"""

import os

import numpy as np
import pytest

from pollen_recon.mcmc import (
    AdaptiveProposal,
    MCMCSampler,
    metropolis_accept,
    elliptical_slice,
    elliptical_slice_vector,
    gelman_rubin,
    effective_sample_size,
    convergence_table
)


class NormalSampler(MCMCSampler):
    """Random-walk sampler for a N(3, 1) target."""

    sampled_params = ('theta',)

    def init_state(self, rng):
        return {'theta': 0.0, 'proposals': {'theta': AdaptiveProposal(1, batch_size=25, initial_scale=1.0)}}

    def update(self, state, rng, adapt):
        proposal = state['proposals']['theta']
        current = state['theta']
        candidate = float(proposal.propose(np.array([current]), rng)[0])
        log_ratio = -0.5 * (candidate - 3.0) ** 2 + 0.5 * (current - 3.0) ** 2
        accepted = metropolis_accept(log_ratio, rng)
        if accepted:
            state['theta'] = candidate
        proposal.update(accepted, np.array([state['theta']]), adapt)
        return state


# -- adaptive proposals ------------------------------------------------------


def test_target_acceptance_defaults():
    assert AdaptiveProposal(1).target_acceptance == 0.44
    assert AdaptiveProposal(4).target_acceptance == 0.234


def test_scale_grows_when_acceptance_is_high():
    proposal = AdaptiveProposal(1, batch_size=10, initial_scale=0.1)
    for _ in range(10):
        proposal.update(True, np.zeros(1), adapt=True)
    assert proposal.n_batches == 1
    assert np.isclose(proposal.log_scale, np.log(0.1) + 0.1)


def test_scale_shrinks_when_acceptance_is_low():
    proposal = AdaptiveProposal(1, batch_size=10, initial_scale=0.1)
    for _ in range(30):
        proposal.update(False, np.zeros(1), adapt=True)
    assert proposal.n_batches == 3
    assert np.isclose(proposal.log_scale, np.log(0.1) - 0.3)


def test_covariance_adapts_to_correlated_batch():
    rng = np.random.default_rng(0)
    proposal = AdaptiveProposal(2, batch_size=50)
    for _ in range(50):
        z = rng.standard_normal()
        proposal.update(True, np.array([z, z + 0.1 * rng.standard_normal()]), adapt=True)
    assert proposal.covariance[0, 1] > 0
    np.testing.assert_allclose(proposal.chol @ proposal.chol.T, proposal.covariance)


def test_acceptance_is_counted_after_adaptation():
    proposal = AdaptiveProposal(1)
    assert np.isnan(proposal.acceptance_rate)
    for accepted in (True, False, True, True):
        proposal.update(accepted, np.zeros(1), adapt=False)
    assert proposal.acceptance_rate == 0.75


def test_metropolis_accept_rejects_non_finite():
    rng = np.random.default_rng(0)
    assert not metropolis_accept(np.nan, rng)
    assert not metropolis_accept(-np.inf, rng)
    assert metropolis_accept(0.0, rng)


# -- chain runner ------------------------------------------------------------


def test_sampler_recovers_normal_target(tmp_path):
    sampler = NormalSampler(
        n_adapt=1000, n_mcmc=2000, n_thin=2, n_chains=2,
        progress_every=500, progress_directory=str(tmp_path), random_state=1, name='normal'
    )
    sampler.run_chains(verbose=False)

    assert sampler.samples['theta'].shape == (2, 1000)
    assert sampler.n_draws == 2000
    assert abs(sampler.get_posterior_mean()['theta'] - 3.0) < 0.2
    assert 0.15 < sampler.acceptance['theta'].mean() < 0.75

    assert os.path.exists(tmp_path / "normal-chain-1.txt")
    with open(tmp_path / "normal-chain-2.txt") as f:
        lines = f.read().splitlines()
    assert lines[0] == "Starting MCMC adaptation for chain 2"
    assert lines[-1] == "Finished chain 2"


def test_chains_are_reproducible_and_distinct():
    kwargs = dict(n_adapt=10, n_mcmc=20, n_chains=2, progress_directory=None, random_state=5)
    first = NormalSampler(**kwargs).run_chains(verbose=False).samples['theta']
    second = NormalSampler(**kwargs).run_chains(verbose=False).samples['theta']
    np.testing.assert_array_equal(first, second)
    assert not np.array_equal(first[0], first[1])


def test_draw_access_is_chain_major():
    sampler = NormalSampler(n_adapt=5, n_mcmc=4, n_chains=3, progress_directory=None)
    sampler.run_chains(verbose=False)
    flat = sampler.get_posterior_samples()['theta']
    assert flat.shape == (12,)
    assert sampler.get_draw(5)['theta'] == sampler.samples['theta'][1, 1]
    assert flat[5] == sampler.samples['theta'][1, 1]


def test_missing_samples_raise():
    sampler = NormalSampler(progress_directory=None)
    with pytest.raises(RuntimeError, match="No samples available"):
        sampler.get_posterior_samples()


def test_plot_diagnostics(tmp_path):
    sampler = NormalSampler(n_adapt=5, n_mcmc=20, n_chains=2, progress_directory=None)
    sampler.run_chains(verbose=False)
    fig = sampler.plot_diagnostics(figure_path=str(tmp_path / "diagnostics.png"))
    assert os.path.exists(tmp_path / "diagnostics.png")
    assert len(fig.axes) == 2


# -- elliptical slice sampling -----------------------------------------------


def test_elliptical_slice_samples_conjugate_posterior():
    # Prior N(0, 1) and likelihood N(1 | x, 1) give the posterior N(0.5, 0.5)
    rng = np.random.default_rng(0)
    n = 200

    def log_likelihood(values, index):
        return -0.5 * (values - 1.0) ** 2

    x = np.zeros(n)
    draws = []
    for i in range(1500):
        x, log_lik = elliptical_slice(x, 0.0, 1.0, log_likelihood, rng)
        if i >= 100:
            draws.append(x.copy())
    draws = np.array(draws)

    np.testing.assert_allclose(log_lik, log_likelihood(x, None))
    assert abs(draws.mean() - 0.5) < 0.05
    assert abs(draws.var() - 0.5) < 0.05


def test_elliptical_slice_only_evaluates_active_latents():
    rng = np.random.default_rng(1)
    seen = []

    def log_likelihood(values, index):
        seen.append(np.asarray(index).copy())
        assert values.shape == index.shape
        return -0.5 * values ** 2

    elliptical_slice(np.zeros(10), 0.0, 1.0, log_likelihood, rng)
    assert len(seen[0]) == 10
    assert all(len(later) <= len(earlier) for earlier, later in zip(seen[:-1], seen[1:]))


def test_elliptical_slice_warns_when_bracket_collapses():
    rng = np.random.default_rng(2)

    def log_likelihood(values, index):
        # Only the current point itself satisfies the slice
        return np.where(values == 0.25, 0.0, -np.inf)

    with pytest.warns(RuntimeWarning):
        x, _ = elliptical_slice(np.full(3, 0.25), 0.0, 1.0, log_likelihood, rng, max_iterations=5)
    np.testing.assert_array_equal(x, 0.25)


def test_elliptical_slice_vector_samples_conjugate_posterior():
    rng = np.random.default_rng(3)
    L = np.linalg.cholesky(np.array([[1.0, 0.5], [0.5, 1.0]]))

    def log_likelihood(f):
        return -0.5 * np.sum((f - 1.0) ** 2)

    f = np.zeros(2)
    draws = []
    for i in range(6000):
        f, _ = elliptical_slice_vector(f, L, log_likelihood, rng)
        if i >= 500:
            draws.append(f)

    # Posterior precision is inv(S) + I with S the prior covariance
    S = L @ L.T
    post_cov = np.linalg.inv(np.linalg.inv(S) + np.eye(2))
    post_mean = post_cov @ np.ones(2)
    np.testing.assert_allclose(np.mean(draws, axis=0), post_mean, atol=0.07)


# -- diagnostics -------------------------------------------------------------


def test_gelman_rubin_near_one_for_iid_chains():
    samples = np.random.default_rng(0).standard_normal((4, 1000, 3))
    rhat = gelman_rubin(samples)
    assert rhat.shape == (3,)
    assert np.all(np.abs(rhat - 1.0) < 0.02)


def test_gelman_rubin_detects_separated_chains():
    rng = np.random.default_rng(1)
    samples = rng.standard_normal((2, 500)) + np.array([[0.0], [5.0]])
    assert gelman_rubin(samples) > 1.5


def test_gelman_rubin_degenerate_cases():
    assert np.isnan(gelman_rubin(np.zeros((1, 10))))
    assert np.isnan(gelman_rubin(np.ones((3, 10))))


def test_effective_sample_size():
    rng = np.random.default_rng(2)
    iid = rng.standard_normal((2, 2000))
    assert effective_sample_size(iid) > 0.7 * 4000

    ar = np.zeros((2, 2000))
    for t in range(1, 2000):
        ar[:, t] = 0.9 * ar[:, t - 1] + rng.standard_normal(2)
    assert effective_sample_size(ar) < 0.15 * 4000


def test_convergence_table():
    sampler = NormalSampler(n_adapt=20, n_mcmc=50, n_chains=2, progress_directory=None)
    sampler.run_chains(verbose=False)
    table = convergence_table(sampler)
    assert list(table.columns) == ['parameter', 'index', 'mean', 'sd', 'rhat', 'ess']
    assert len(table) == 1
    assert table.loc[0, 'parameter'] == 'theta'
