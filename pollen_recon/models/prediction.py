"""
Two-stage inverse prediction of the covariate for held-out compositional samples.

Stage 1 is the calibration fit of a functional-response model. In stage 2 the
latent covariate of every held-out sample is sampled by MCMC: each iteration
draws one stage-1 posterior draw at random and then updates all latent covariates
with a vectorized elliptical slice sampler under the prior
X ~ N(mean(X_train), var(X_train)).
"""

import time
import warnings
import numpy as np
from typing import Dict, Optional, Any

from ..config import make_params, model_tag
from ..mcmc.sampler import MCMCSampler
from ..mcmc.elliptical_slice import elliptical_slice
from ..mcmc.diagnostics import gelman_rubin
from .base import FunctionalResponseModel, check_compositional_data


class InversePredictor(MCMCSampler):
    """
    MCMC sampler for the latent covariates of held-out samples given a fitted model.
    """

    sampled_params = ('X',)

    def __init__(
        self,
        model: FunctionalResponseModel,
        params: Optional[Dict[str, Any]] = None,
        ignore_warnings: bool = False
    ):
        """
        Initialize the predictor.

        Args:
            model: Fitted functional-response model
            params: Optional parameter overrides (defaults to the model's parameters)
            ignore_warnings: Silence elliptical-slice RuntimeWarnings in every chain,
                including chains run in worker processes
        """
        model._check_fitted()
        self.model = model
        merged = dict(model.params)
        merged.update(params or {})
        self.params = make_params(merged)
        self.ignore_warnings = ignore_warnings

        # Stage 2 draws from a stream distinct from the calibration fit
        seed = self.params['random_state']

        super().__init__(
            n_adapt=self.params['n_adapt_pred'],
            n_mcmc=self.params['n_mcmc_pred'],
            n_thin=self.params['n_thin_pred'],
            n_chains=self.params['n_chains'],
            parallel_chains=self.params['parallel_chains'],
            progress_every=self.params['progress_every'],
            progress_directory=self.params['progress_directory'],
            random_state=None if seed is None else seed + 1,
            name=f"predict-{model_tag(self.params)}"
        )

        self.prior_mean = model.X_mean
        self.prior_sd = model.X_sd
        self.y_new = None

    def init_state(self, rng: np.random.Generator) -> Dict[str, Any]:
        n = self.y_new.shape[0]
        return {'X': self.prior_mean + self.prior_sd * rng.standard_normal(n)}

    def update(self, state: Dict[str, Any], rng: np.random.Generator, adapt: bool) -> Dict[str, Any]:
        draw = self.model.get_draw(rng.integers(self.model.n_draws))

        def log_likelihood(values, index):
            return self.model.obs_log_likelihood(self.y_new[index], values, draw)

        state['X'], _ = elliptical_slice(
            state['X'], self.prior_mean, self.prior_sd, log_likelihood, rng
        )
        return state

    def _run_chain(self, chain: int, seed: np.random.SeedSequence, verbose: bool) -> Dict[str, Any]:
        if not self.ignore_warnings:
            return super()._run_chain(chain, seed, verbose)
        with warnings.catch_warnings():
            # Bracket collapse during early slice-sampling iterations is expected
            warnings.simplefilter('ignore', RuntimeWarning)
            return super()._run_chain(chain, seed, verbose)

    def predict(self, y_new: np.ndarray, verbose: bool = True) -> Dict[str, np.ndarray]:
        """
        Sample the latent covariates of held-out samples.

        Args:
            y_new: Count matrix of held-out samples (n x d)
            verbose: Print progress and show progress bars

        Returns:
            Dictionary with ``samples`` (S x n), ``chains`` (n_chains x n_keep x n),
            posterior ``mean``, ``sd``, 95% ``lower``/``upper`` bounds and ``rhat``
        """
        y_new, _ = check_compositional_data(y_new)
        if y_new.shape[1] != self.model.n_species:
            raise ValueError(
                f"Held-out counts have {y_new.shape[1]} species but the model was fit to {self.model.n_species}"
            )
        self.y_new = y_new

        if verbose:
            print(f"Predicting covariates for {y_new.shape[0]} held-out samples...")
        start_time = time.time()
        self.run_chains(verbose=verbose)
        if verbose:
            print(f"Prediction completed in {time.time() - start_time:.2f} seconds")

        return summarize_prediction(self.samples['X'])


def summarize_prediction(chains: np.ndarray) -> Dict[str, np.ndarray]:
    """Summaries of covariate samples of shape (n_chains, n_keep, n)."""
    samples = chains.reshape(-1, chains.shape[-1])
    return {
        'samples': samples,
        'chains': chains,
        'mean': samples.mean(axis=0),
        'sd': samples.std(axis=0, ddof=1) if samples.shape[0] > 1 else np.zeros(samples.shape[1]),
        'lower': np.quantile(samples, 0.025, axis=0),
        'upper': np.quantile(samples, 0.975, axis=0),
        'rhat': gelman_rubin(chains)
    }


def predict_covariate(
    model: FunctionalResponseModel,
    y_new: np.ndarray,
    params: Optional[Dict[str, Any]] = None,
    verbose: bool = True,
    ignore_warnings: bool = False
) -> Dict[str, np.ndarray]:
    """Run two-stage inverse prediction for ``y_new`` with a fitted model."""
    return InversePredictor(model, params, ignore_warnings).predict(y_new, verbose=verbose)
