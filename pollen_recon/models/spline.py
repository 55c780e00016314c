"""
Spline (GAM) functional response: log alpha = B(x) beta, with B a B-spline basis.
"""

import numpy as np
from typing import Dict, Any

from ..kernels.basis import BSplineBasis
from ..mcmc.sampler import AdaptiveProposal, metropolis_accept
from .base import FunctionalResponseModel


class SplineModel(FunctionalResponseModel):
    """
    B-spline basis model with a hierarchical Gaussian prior on the coefficients.

    beta_j ~ N(mu_beta 1, s2_beta I), mu_beta ~ N(0, 5^2), s2_beta ~ IG(1, 1).
    The coefficient vector of each species is updated with a block adaptive
    Metropolis-Hastings step; mu_beta and s2_beta are Gibbs updates.
    """

    function = 'basis'
    sampled_params = ('beta', 'mu_beta', 's2_beta')

    mu_beta_sd = 5.0
    s2_beta_shape = 1.0
    s2_beta_rate = 1.0

    def _setup(self):
        # Interior knots at covariate quantiles; params['knots'] belongs to the predictive process
        self.basis = BSplineBasis(df=self.params['df'], degree=self.params['degree']).fit(self.X)
        self.design = self.basis.transform(self.X)

    def log_alpha(self, X: np.ndarray, draw: Dict[str, np.ndarray]) -> np.ndarray:
        return self.basis.transform(X) @ draw['beta']

    def init_state(self, rng: np.random.Generator) -> Dict[str, Any]:
        p, d = self.design.shape[1], self.n_species

        # Least-squares fit to log proportions as a starting point
        target = np.log(self.proportions + 0.01) + np.log(10.0)
        beta, *_ = np.linalg.lstsq(self.design, target, rcond=None)
        beta = beta + 0.1 * rng.standard_normal((p, d))

        log_alpha = self.design @ beta
        return {
            'beta': beta,
            'mu_beta': float(np.mean(beta)),
            's2_beta': float(np.var(beta) + 0.1),
            'log_alpha': log_alpha,
            'log_lik': self._log_likelihood(log_alpha),
            'proposals': {
                'beta': [
                    AdaptiveProposal(p, batch_size=self.params['batch_size'], initial_scale=0.05)
                    for _ in range(d)
                ]
            }
        }

    def update(self, state: Dict[str, Any], rng: np.random.Generator, adapt: bool) -> Dict[str, Any]:
        beta = state['beta']
        mu_beta, s2_beta = state['mu_beta'], state['s2_beta']

        for j, proposal in enumerate(state['proposals']['beta']):
            current = beta[:, j].copy()
            candidate = proposal.propose(current, rng)

            log_alpha = state['log_alpha'].copy()
            log_alpha[:, j] = self.design @ candidate
            log_lik = self._log_likelihood(log_alpha)

            log_ratio = (
                log_lik - state['log_lik']
                - 0.5 * np.sum((candidate - mu_beta) ** 2) / s2_beta
                + 0.5 * np.sum((current - mu_beta) ** 2) / s2_beta
            )
            accepted = metropolis_accept(log_ratio, rng)

            if accepted:
                beta[:, j] = candidate
                state['log_alpha'] = log_alpha
                state['log_lik'] = log_lik

            proposal.update(accepted, candidate if accepted else current, adapt)

        # Gibbs update for the coefficient mean
        n_coef = beta.size
        post_var = 1.0 / (n_coef / s2_beta + 1.0 / self.mu_beta_sd ** 2)
        post_mean = post_var * beta.sum() / s2_beta
        mu_beta = post_mean + np.sqrt(post_var) * rng.standard_normal()

        # Gibbs update for the coefficient variance
        shape = self.s2_beta_shape + 0.5 * n_coef
        rate = self.s2_beta_rate + 0.5 * np.sum((beta - mu_beta) ** 2)
        s2_beta = 1.0 / rng.gamma(shape, 1.0 / rate)

        state['mu_beta'] = float(mu_beta)
        state['s2_beta'] = float(s2_beta)
        return state
