"""
BUMMER: Bayesian unimodal multivariate ecological response model.

Every species has a Gaussian-shaped (unimodal) response to the covariate,

    log alpha_j(x) = a_j - (x - mu_j)^2 / (2 sigma_j^2),

with a_j the log peak height, mu_j the optimum and sigma_j the tolerance.
"""

import numpy as np
from scipy.stats import norm
from typing import Dict, Any

from ..mcmc.sampler import AdaptiveProposal, metropolis_accept
from .base import FunctionalResponseModel


class BummerModel(FunctionalResponseModel):
    """
    Parametric unimodal response model.

    Each species' (a_j, mu_j, log sigma_j) block is updated jointly with an
    adaptive random-walk Metropolis-Hastings proposal.
    """

    function = 'bummer'
    sampled_params = ('a', 'mu', 'sigma')

    def _setup(self):
        self.prior = {
            'a_mean': 0.0,
            'a_sd': 2.0,
            'mu_mean': self.X_mean,
            'mu_sd': 2.0 * self.X_sd,
            'log_sigma_mean': np.log(self.X_sd),
            'log_sigma_sd': 1.0
        }

    @staticmethod
    def _response(a, mu, sigma, X: np.ndarray) -> np.ndarray:
        return a - (X[:, None] - mu) ** 2 / (2.0 * sigma ** 2)

    def log_alpha(self, X: np.ndarray, draw: Dict[str, np.ndarray]) -> np.ndarray:
        X = np.atleast_1d(np.asarray(X, dtype=float))
        return self._response(draw['a'], draw['mu'], draw['sigma'], X)

    def _log_prior_block(self, block: np.ndarray) -> float:
        a, mu, log_sigma = block
        return (
            norm.logpdf(a, self.prior['a_mean'], self.prior['a_sd'])
            + norm.logpdf(mu, self.prior['mu_mean'], self.prior['mu_sd'])
            + norm.logpdf(log_sigma, self.prior['log_sigma_mean'], self.prior['log_sigma_sd'])
        )

    def init_state(self, rng: np.random.Generator) -> Dict[str, Any]:
        d = self.n_species
        weights = self.proportions

        # Start the optima at the weighted-averaging estimates
        mu = (weights * self.X[:, None]).sum(axis=0) / weights.sum(axis=0)
        mu = mu + 0.1 * self.X_sd * rng.standard_normal(d)
        log_sigma = np.log(self.X_sd) + 0.1 * rng.standard_normal(d)
        a = np.log(weights.mean(axis=0) + 1e-3) + np.log(10.0) + 0.1 * rng.standard_normal(d)

        sigma = np.exp(log_sigma)
        log_alpha = self._response(a, mu, sigma, self.X)

        return {
            'a': a,
            'mu': mu,
            'log_sigma': log_sigma,
            'sigma': sigma,
            'log_alpha': log_alpha,
            'log_lik': self._log_likelihood(log_alpha),
            'proposals': {
                'species': [
                    AdaptiveProposal(3, batch_size=self.params['batch_size'], initial_scale=0.05)
                    for _ in range(d)
                ]
            }
        }

    def update(self, state: Dict[str, Any], rng: np.random.Generator, adapt: bool) -> Dict[str, Any]:
        for j, proposal in enumerate(state['proposals']['species']):
            current = np.array([state['a'][j], state['mu'][j], state['log_sigma'][j]])
            candidate = proposal.propose(current, rng)

            log_alpha = state['log_alpha'].copy()
            log_alpha[:, j] = self._response(candidate[0], candidate[1], np.exp(candidate[2]), self.X)[:, 0]
            log_lik = self._log_likelihood(log_alpha)

            log_ratio = (
                log_lik - state['log_lik']
                + self._log_prior_block(candidate) - self._log_prior_block(current)
            )
            accepted = metropolis_accept(log_ratio, rng)

            if accepted:
                state['a'][j], state['mu'][j], state['log_sigma'][j] = candidate
                state['log_alpha'] = log_alpha
                state['log_lik'] = log_lik

            proposal.update(accepted, candidate if accepted else current, adapt)

        state['sigma'] = np.exp(state['log_sigma'])
        return state
