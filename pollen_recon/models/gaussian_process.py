"""
Multivariate Gaussian process functional response using a predictive process.

    log alpha_ij = beta0_j + Z(x_i) eta*_j,    eta*_j ~ N(0, tau2_j C*(phi)),

where eta*_j are the species' GP values at the knots, C*(phi) is the knot
correlation matrix and Z(x) = c(x, x*) C*^{-1} projects the knot values onto
arbitrary covariate values. All species share the range parameter phi.
"""

import numpy as np
from scipy.linalg import LinAlgError
from scipy.stats import norm
from typing import Dict, Any

from ..kernels.predictive_process import PredictiveProcess, default_knots
from ..mcmc.sampler import AdaptiveProposal, metropolis_accept
from ..mcmc.elliptical_slice import elliptical_slice_vector
from .base import FunctionalResponseModel


class GaussianProcessModel(FunctionalResponseModel):
    """
    Predictive-process multivariate GP model.

    Updates per iteration:
    - beta0_j: adaptive Metropolis-Hastings
    - eta*_j: elliptical slice sampling under its Gaussian prior
    - tau2_j: inverse-gamma Gibbs update
    - phi: adaptive Metropolis-Hastings on log phi
    """

    function = 'gaussian-process'
    sampled_params = ('beta0', 'eta_star', 'tau2', 'phi')

    beta0_sd = 5.0
    tau2_shape = 1.0
    tau2_rate = 1.0

    def _setup(self):
        if self.params['knots'] is not None:
            self.knots = np.asarray(self.params['knots'], dtype=float)
        else:
            self.knots = default_knots(self.X, self.params['n_knots'])

        self.jitter = 1e-6 if self.params['correlation_function'] == 'exponential' else 1e-4
        knot_range = self.knots[-1] - self.knots[0]
        self.log_phi_mean = np.log(knot_range / 4.0)
        self.log_phi_sd = 1.0
        self._cached_process = None

    def _process(self, phi: float) -> PredictiveProcess:
        cached = self._cached_process
        if cached is not None and cached.phi == float(phi):
            return cached
        process = PredictiveProcess(self.knots, phi, self.params['correlation_function'], self.jitter)
        self._cached_process = process
        return process

    def log_alpha(self, X: np.ndarray, draw: Dict[str, np.ndarray]) -> np.ndarray:
        X = np.atleast_1d(np.asarray(X, dtype=float))
        Z = self._process(float(draw['phi'])).projection(X)
        return draw['beta0'] + Z @ draw['eta_star']

    def _log_prior_eta(self, process: PredictiveProcess, eta: np.ndarray, tau2: np.ndarray) -> float:
        m, d = eta.shape
        q = process.quadratic_form(eta)
        return float(-0.5 * d * process.log_det() - 0.5 * m * np.sum(np.log(tau2)) - 0.5 * np.sum(q / tau2))

    def init_state(self, rng: np.random.Generator) -> Dict[str, Any]:
        d = self.n_species
        m = len(self.knots)

        phi = float(np.exp(self.log_phi_mean))
        process = PredictiveProcess(self.knots, phi, self.params['correlation_function'], self.jitter)
        Z = process.projection(self.X)

        beta0 = np.log(self.proportions.mean(axis=0) + 1e-3) + np.log(10.0) + 0.1 * rng.standard_normal(d)
        eta_star = 0.1 * process.sample_prior(rng, d)
        tau2 = np.ones(d)

        log_alpha = beta0 + Z @ eta_star
        return {
            'beta0': beta0,
            'eta_star': eta_star.reshape(m, d),
            'tau2': tau2,
            'phi': phi,
            'process': process,
            'Z': Z,
            'log_alpha': log_alpha,
            'log_lik': self._log_likelihood(log_alpha),
            'proposals': {
                'beta0': [
                    AdaptiveProposal(1, batch_size=self.params['batch_size'], initial_scale=0.1)
                    for _ in range(d)
                ],
                'phi': AdaptiveProposal(1, batch_size=self.params['batch_size'], initial_scale=0.1)
            }
        }

    def _update_beta0(self, state: Dict[str, Any], rng: np.random.Generator, adapt: bool):
        for j, proposal in enumerate(state['proposals']['beta0']):
            current = state['beta0'][j]
            candidate = float(proposal.propose(np.array([current]), rng)[0])

            log_alpha = state['log_alpha'].copy()
            log_alpha[:, j] += candidate - current
            log_lik = self._log_likelihood(log_alpha)

            log_ratio = (
                log_lik - state['log_lik']
                + norm.logpdf(candidate, 0.0, self.beta0_sd) - norm.logpdf(current, 0.0, self.beta0_sd)
            )
            accepted = metropolis_accept(log_ratio, rng)

            if accepted:
                state['beta0'][j] = candidate
                state['log_alpha'] = log_alpha
                state['log_lik'] = log_lik

            proposal.update(accepted, np.array([candidate if accepted else current]), adapt)

    def _update_eta(self, state: Dict[str, Any], rng: np.random.Generator):
        Z = state['Z']
        chol = state['process'].chol

        for j in range(self.n_species):
            base = state['log_alpha'].copy()
            offset = state['beta0'][j]

            def column_log_lik(eta_j):
                base[:, j] = offset + Z @ eta_j
                return self._log_likelihood(base)

            eta_j, log_lik = elliptical_slice_vector(
                state['eta_star'][:, j],
                np.sqrt(state['tau2'][j]) * chol,
                column_log_lik,
                rng,
                current_log_likelihood=state['log_lik']
            )
            state['eta_star'][:, j] = eta_j
            state['log_alpha'][:, j] = offset + Z @ eta_j
            state['log_lik'] = log_lik

    def _update_tau2(self, state: Dict[str, Any], rng: np.random.Generator):
        m = state['eta_star'].shape[0]
        q = state['process'].quadratic_form(state['eta_star'])
        shape = self.tau2_shape + 0.5 * m
        rate = self.tau2_rate + 0.5 * q
        state['tau2'] = 1.0 / rng.gamma(shape, 1.0 / rate)

    def _update_phi(self, state: Dict[str, Any], rng: np.random.Generator, adapt: bool):
        proposal = state['proposals']['phi']
        current = np.log(state['phi'])
        candidate = float(proposal.propose(np.array([current]), rng)[0])

        accepted = False
        try:
            process = PredictiveProcess(
                self.knots, np.exp(candidate), self.params['correlation_function'], self.jitter
            )
        except (LinAlgError, ValueError):
            process = None

        if process is not None:
            Z = process.projection(self.X)
            log_alpha = state['beta0'] + Z @ state['eta_star']
            log_lik = self._log_likelihood(log_alpha)

            log_ratio = (
                log_lik - state['log_lik']
                + self._log_prior_eta(process, state['eta_star'], state['tau2'])
                - self._log_prior_eta(state['process'], state['eta_star'], state['tau2'])
                + norm.logpdf(candidate, self.log_phi_mean, self.log_phi_sd)
                - norm.logpdf(current, self.log_phi_mean, self.log_phi_sd)
            )
            accepted = metropolis_accept(log_ratio, rng)

            if accepted:
                state['phi'] = float(np.exp(candidate))
                state['process'] = process
                state['Z'] = Z
                state['log_alpha'] = log_alpha
                state['log_lik'] = log_lik

        proposal.update(accepted, np.array([candidate if accepted else current]), adapt)

    def update(self, state: Dict[str, Any], rng: np.random.Generator, adapt: bool) -> Dict[str, Any]:
        self._update_beta0(state, rng, adapt)
        self._update_eta(state, rng)
        self._update_tau2(state, rng)
        self._update_phi(state, rng, adapt)
        return state
