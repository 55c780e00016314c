"""
Base class for Bayesian functional-response models of compositional count data.

A functional-response model links the log Dirichlet-multinomial parameters of
every species to the environmental covariate, log alpha_j(x) = f_j(x). Subclasses
define f_j and its MCMC updates; this class handles data validation, chain
execution, posterior prediction of the response curves and persistence.
"""

import time
import numpy as np
from typing import Dict, Optional, Tuple, Any

from ..config import make_params, model_tag
from ..mcmc.sampler import MCMCSampler
from .likelihood import observation_log_likelihood


def check_compositional_data(y: np.ndarray, X: Optional[np.ndarray] = None) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Validate a count matrix and (optionally) its covariate.

    Args:
        y: Count matrix (n x d)
        X: Covariate values (n,)

    Returns:
        Counts as a float array and the covariate as a float array
    """
    y = np.asarray(y, dtype=float)
    if y.ndim != 2:
        raise ValueError(f"Counts must be a 2-D array (samples x species), got shape {y.shape}")
    if y.shape[1] < 2:
        raise ValueError("At least two species are required for compositional data")
    if not np.all(np.isfinite(y)):
        raise ValueError("Counts contain missing or infinite values")
    if np.any(y < 0):
        raise ValueError("Counts must be non-negative")
    if not np.allclose(y, np.round(y)):
        raise ValueError("Counts must be integer-valued")
    if np.any(y.sum(axis=1) == 0):
        raise ValueError("Every sample must have at least one count")

    if X is not None:
        X = np.asarray(X, dtype=float)
        if X.ndim != 1:
            raise ValueError(f"Covariate must be a 1-D array, got shape {X.shape}")
        if X.shape[0] != y.shape[0]:
            raise ValueError(f"Covariate length ({X.shape[0]}) does not match the number of samples ({y.shape[0]})")
        if not np.all(np.isfinite(X)):
            raise ValueError("Covariate contains missing or infinite values")

    return np.round(y), X


class FunctionalResponseModel(MCMCSampler):
    """
    Bayesian functional-response model fit by MCMC.

    Subclasses set ``function`` and ``sampled_params`` and implement ``_setup``,
    ``init_state``, ``update`` and ``log_alpha``.
    """

    function: str = None

    def __init__(self, params: Optional[Dict[str, Any]] = None, **overrides):
        """
        Initialize the model.

        Args:
            params: Parameter dictionary (see ``config.DEFAULT_PARAMS``)
            **overrides: Individual parameter overrides
        """
        merged = dict(params or {})
        merged.update(overrides)
        merged['function'] = self.function
        self.params = make_params(merged)

        super().__init__(
            n_adapt=self.params['n_adapt'],
            n_mcmc=self.params['n_mcmc'],
            n_thin=self.params['n_thin'],
            n_chains=self.params['n_chains'],
            parallel_chains=self.params['parallel_chains'],
            progress_every=self.params['progress_every'],
            progress_directory=self.params['progress_directory'],
            random_state=self.params['random_state'],
            name=model_tag(self.params)
        )

        self.y = None
        self.X = None
        self.is_fitted = False

    @property
    def likelihood(self) -> str:
        return self.params['likelihood']

    @property
    def n_species(self) -> int:
        return self.y.shape[1]

    def _set_data(self, y: np.ndarray, X: np.ndarray):
        self.y, self.X = check_compositional_data(y, X)
        self.X_mean = float(np.mean(self.X))
        self.X_sd = float(np.std(self.X, ddof=1)) if len(self.X) > 1 else 1.0
        if self.X_sd == 0:
            raise ValueError("Covariate has no variation; the functional response is not identifiable")
        self.proportions = self.y / self.y.sum(axis=1, keepdims=True)
        self._setup()

    def _setup(self):
        """Build covariate-dependent structures (basis, knots, priors) after the data are set."""

    def fit(self, y: np.ndarray, X: np.ndarray, verbose: bool = True) -> 'FunctionalResponseModel':
        """
        Fit the model to calibration data.

        Args:
            y: Count matrix (n x d)
            X: Covariate values (n,)
            verbose: Print progress and show progress bars

        Returns:
            self: The fitted model
        """
        self._set_data(y, X)

        if verbose:
            print(f"Fitting {self.__class__.__name__} ({self.params['likelihood']}) to "
                  f"{self.y.shape[0]} samples of {self.n_species} species...")

        start_time = time.time()
        self.run_chains(verbose=verbose)
        self.is_fitted = True

        if verbose:
            print(f"Model fitting completed in {time.time() - start_time:.2f} seconds")
            for name, rates in self.acceptance.items():
                print(f"  acceptance rate for {name}: {np.nanmean(rates):.3f}")

        return self

    def log_alpha(self, X: np.ndarray, draw: Dict[str, np.ndarray]) -> np.ndarray:
        """Log Dirichlet-multinomial parameters (n x d) at covariate values ``X`` for one draw."""
        raise NotImplementedError

    def _log_likelihood(self, log_alpha: np.ndarray) -> float:
        """Total calibration-data log-likelihood for a candidate log-alpha matrix."""
        return float(np.sum(observation_log_likelihood(self.y, log_alpha, self.likelihood)))

    def obs_log_likelihood(self, y: np.ndarray, X: np.ndarray, draw: Dict[str, np.ndarray]) -> np.ndarray:
        """Per-observation log-likelihood of counts ``y`` at covariates ``X`` for one draw."""
        return observation_log_likelihood(y, self.log_alpha(X, draw), self.likelihood)

    def _check_fitted(self):
        if not self.is_fitted:
            raise RuntimeError("Model must be fitted before making predictions")

    def _draw_indices(self, n_draws: Optional[int]) -> np.ndarray:
        total = self.n_draws
        if n_draws is None or n_draws >= total:
            return np.arange(total)
        return np.linspace(0, total - 1, n_draws).astype(int)

    def predict_alpha(self, X_new: np.ndarray, n_draws: Optional[int] = None) -> np.ndarray:
        """
        Posterior draws of the Dirichlet-multinomial parameters.

        Args:
            X_new: Covariate values (n,)
            n_draws: Number of evenly spaced posterior draws to use (default: all)

        Returns:
            Array of shape (S, n, d)
        """
        self._check_fitted()
        X_new = np.atleast_1d(np.asarray(X_new, dtype=float))
        return np.stack([
            np.exp(self.log_alpha(X_new, self.get_draw(k)))
            for k in self._draw_indices(n_draws)
        ], axis=0)

    def predict_proportions(self, X_new: np.ndarray, n_draws: Optional[int] = None) -> np.ndarray:
        """Posterior draws of expected relative abundances, shape (S, n, d)."""
        alpha = self.predict_alpha(X_new, n_draws)
        return alpha / alpha.sum(axis=-1, keepdims=True)

    def to_results(self) -> Tuple[Dict[str, np.ndarray], Dict[str, Any]]:
        """Arrays and metadata describing the fitted model, for the disk cache."""
        self._check_fitted()
        arrays = {'y': self.y, 'X': self.X}
        for name, samples in self.samples.items():
            arrays[f"samples/{name}"] = samples
        for name, rates in self.acceptance.items():
            arrays[f"acceptance/{name}"] = rates
        metadata = {'class': self.__class__.__name__, 'params': self.params}
        return arrays, metadata

    @classmethod
    def from_results(cls, arrays: Dict[str, np.ndarray], metadata: Dict[str, Any]) -> 'FunctionalResponseModel':
        """Rebuild a fitted model from ``to_results`` output."""
        model = cls(metadata['params'])
        model._set_data(arrays['y'], arrays['X'])
        model.samples = {
            key.split('/', 1)[1]: value for key, value in arrays.items() if key.startswith('samples/')
        }
        model.acceptance = {
            key.split('/', 1)[1]: value for key, value in arrays.items() if key.startswith('acceptance/')
        }
        model.is_fitted = True
        return model
