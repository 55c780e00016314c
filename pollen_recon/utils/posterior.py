"""
Reshaping of posterior samples into long-format pandas DataFrames for plotting
and tabulation.
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Sequence


def samples_to_frame(samples: Dict[str, np.ndarray], names: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Long-format table of MCMC samples.

    Args:
        samples: Dictionary of arrays with shape (n_chains, n_draws, ...)
        names: Parameters to include (default: all)

    Returns:
        DataFrame with columns chain, iteration, parameter, index, value
    """
    frames = []
    for name in names or list(samples.keys()):
        arr = np.asarray(samples[name])
        n_chains, n_draws = arr.shape[:2]
        trailing = arr.shape[2:]
        flat = arr.reshape(n_chains, n_draws, -1)
        n_elements = flat.shape[2]

        if trailing:
            labels = [",".join(str(i) for i in np.unravel_index(k, trailing)) for k in range(n_elements)]
        else:
            labels = [""]

        chain, iteration, element = np.meshgrid(
            np.arange(n_chains), np.arange(n_draws), np.arange(n_elements), indexing='ij'
        )
        frames.append(pd.DataFrame({
            'chain': chain.ravel() + 1,
            'iteration': iteration.ravel() + 1,
            'parameter': name,
            'index': np.asarray(labels)[element.ravel()],
            'value': flat.ravel()
        }))

    if not frames:
        return pd.DataFrame(columns=['chain', 'iteration', 'parameter', 'index', 'value'])
    return pd.concat(frames, ignore_index=True)


def functional_response_frame(
    model,
    x_grid: np.ndarray,
    species: Optional[Sequence[str]] = None,
    probs: Sequence[float] = (0.025, 0.975),
    n_draws: Optional[int] = 200
) -> pd.DataFrame:
    """
    Posterior summaries of the expected relative abundance of every species.

    Args:
        model: Fitted functional-response model
        x_grid: Covariate values at which to evaluate the responses
        species: Species names (default: species_1, ...)
        probs: Lower and upper quantiles of the credible band
        n_draws: Number of posterior draws to use

    Returns:
        DataFrame with columns x, species, mean, lower, upper
    """
    x_grid = np.asarray(x_grid, dtype=float)
    proportions = model.predict_proportions(x_grid, n_draws=n_draws)
    d = proportions.shape[-1]
    species = list(species) if species is not None else [f"species_{j + 1}" for j in range(d)]
    if len(species) != d:
        raise ValueError(f"Expected {d} species names, got {len(species)}")

    mean = proportions.mean(axis=0)
    lower = np.quantile(proportions, probs[0], axis=0)
    upper = np.quantile(proportions, probs[1], axis=0)

    return pd.DataFrame({
        'x': np.repeat(x_grid, d),
        'species': np.tile(species, len(x_grid)),
        'mean': mean.ravel(),
        'lower': lower.ravel(),
        'upper': upper.ravel()
    })


def prediction_frame(
    X_samples: np.ndarray,
    X_true: Optional[np.ndarray] = None,
    probs: Sequence[float] = (0.025, 0.975)
) -> pd.DataFrame:
    """
    Posterior summaries of predicted covariates.

    Args:
        X_samples: Covariate samples (S x n)
        X_true: Optional true covariate values (n,)
        probs: Lower and upper quantiles of the credible interval

    Returns:
        DataFrame with columns observation, mean, sd, lower, upper, truth
    """
    X_samples = np.asarray(X_samples, dtype=float)
    n = X_samples.shape[1]
    return pd.DataFrame({
        'observation': np.arange(1, n + 1),
        'mean': X_samples.mean(axis=0),
        'sd': X_samples.std(axis=0, ddof=1) if X_samples.shape[0] > 1 else np.zeros(n),
        'lower': np.quantile(X_samples, probs[0], axis=0),
        'upper': np.quantile(X_samples, probs[1], axis=0),
        'truth': np.full(n, np.nan) if X_true is None else np.asarray(X_true, dtype=float)
    })
