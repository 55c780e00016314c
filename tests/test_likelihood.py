"""
Tests for the compositional count likelihoods.
"""

import numpy as np
import pytest
from scipy.stats import dirichlet_multinomial, multinomial

from pollen_recon.models.likelihood import (
    dirichlet_multinomial_log_likelihood,
    multinomial_log_likelihood,
    observation_log_likelihood,
    LOG_ALPHA_BOUND
)


@pytest.fixture
def counts_and_log_alpha():
    rng = np.random.default_rng(0)
    y = rng.integers(0, 20, size=(6, 4))
    y[:, 0] += 1
    log_alpha = rng.normal(0.0, 1.0, size=(6, 4))
    return y, log_alpha


def test_dirichlet_multinomial_matches_scipy(counts_and_log_alpha):
    y, log_alpha = counts_and_log_alpha
    result = dirichlet_multinomial_log_likelihood(y, log_alpha)
    expected = [
        dirichlet_multinomial.logpmf(y[i], np.exp(log_alpha[i]), y[i].sum())
        for i in range(y.shape[0])
    ]
    np.testing.assert_allclose(result, expected, rtol=1e-10)


def test_multinomial_matches_scipy(counts_and_log_alpha):
    y, log_alpha = counts_and_log_alpha
    result = multinomial_log_likelihood(y, log_alpha)
    p = np.exp(log_alpha) / np.exp(log_alpha).sum(axis=1, keepdims=True)
    expected = [multinomial.logpmf(y[i], y[i].sum(), p[i]) for i in range(y.shape[0])]
    np.testing.assert_allclose(result, expected, rtol=1e-10)


def test_multinomial_is_invariant_to_row_shifts(counts_and_log_alpha):
    y, log_alpha = counts_and_log_alpha
    shifted = log_alpha + np.arange(y.shape[0])[:, None]
    np.testing.assert_allclose(
        multinomial_log_likelihood(y, log_alpha), multinomial_log_likelihood(y, shifted)
    )


def test_extreme_log_alpha_stays_finite(counts_and_log_alpha):
    y, log_alpha = counts_and_log_alpha
    extreme = log_alpha.copy()
    extreme[:, 0] = 10 * LOG_ALPHA_BOUND
    extreme[:, 1] = -10 * LOG_ALPHA_BOUND
    assert np.all(np.isfinite(dirichlet_multinomial_log_likelihood(y, extreme)))


def test_shape_mismatch_raises(counts_and_log_alpha):
    y, log_alpha = counts_and_log_alpha
    with pytest.raises(ValueError, match="Shape mismatch"):
        dirichlet_multinomial_log_likelihood(y, log_alpha[:, :3])


def test_observation_log_likelihood_dispatch(counts_and_log_alpha):
    y, log_alpha = counts_and_log_alpha
    np.testing.assert_allclose(
        observation_log_likelihood(y, log_alpha, 'multinomial'),
        multinomial_log_likelihood(y, log_alpha)
    )
    with pytest.raises(ValueError, match="Unknown likelihood"):
        observation_log_likelihood(y, log_alpha, 'poisson')
