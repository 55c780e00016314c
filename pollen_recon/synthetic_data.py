"""
Synthetic compositional data for testing the reconstruction models.

Samples have a single environmental covariate X ~ N(0, 1). Every species has a
functional response log alpha_j(x); counts are then drawn as

    p_i ~ Dirichlet(alpha(x_i)),    y_i ~ Multinomial(N_i, p_i).
"""

import numpy as np
import pandas as pd
from scipy.linalg import cholesky
from sklearn.model_selection import train_test_split
from typing import Dict, Optional, Tuple

from .kernels.predictive_process import correlation_matrix
from .kernels.basis import BSplineBasis


RESPONSE_TYPES = ('gaussian-process', 'bummer', 'basis')


def _gaussian_process_response(X, d, rng, phi, tau2, n_grid):
    grid = np.linspace(X.min() - 0.5, X.max() + 0.5, n_grid)
    C = correlation_matrix(grid, grid, phi, 'exponential') + 1e-8 * np.eye(n_grid)
    L = cholesky(C, lower=True)
    f = np.sqrt(tau2) * (L @ rng.standard_normal((n_grid, d)))
    beta0 = rng.normal(0.0, 1.0, size=d)
    return beta0 + np.column_stack([np.interp(X, grid, f[:, j]) for j in range(d)])


def _bummer_response(X, d, rng):
    a = rng.normal(2.0, 0.5, size=d)
    mu = rng.uniform(np.quantile(X, 0.05), np.quantile(X, 0.95), size=d)
    sigma = rng.uniform(0.5, 1.5, size=d)
    return a - (X[:, None] - mu) ** 2 / (2.0 * sigma ** 2)


def _basis_response(X, d, rng, df=6):
    design = BSplineBasis(df=df).fit_transform(X)
    beta = rng.normal(0.0, 1.0, size=(design.shape[1], d))
    return design @ beta


def simulate_compositional_data(
    n: int = 250,
    d: int = 8,
    response: str = 'gaussian-process',
    total_count: int = 300,
    vary_total: bool = False,
    phi: float = 1.0,
    tau2: float = 1.0,
    n_grid: int = 200,
    random_state: Optional[int] = None
) -> Dict:
    """
    Simulate compositional count data with a known covariate.

    Args:
        n: Number of samples
        d: Number of species
        response: Functional response type ('gaussian-process', 'bummer', 'basis')
        total_count: Counts per sample (mean count if ``vary_total``)
        vary_total: Draw per-sample totals from a Poisson distribution
        phi: Range of the exponential correlation (GP responses)
        tau2: Variance of the GP responses
        n_grid: Grid size used to draw GP responses
        random_state: Random seed for reproducibility

    Returns:
        Dictionary with counts ``y`` (n x d), covariate ``X``, true ``alpha``,
        ``species`` names and the ``response`` type
    """
    if response not in RESPONSE_TYPES:
        raise ValueError(f"Unknown response type: {response}. Expected one of: {list(RESPONSE_TYPES)}")
    if n < 2 or d < 2:
        raise ValueError("At least two samples and two species are required")
    if total_count < 1:
        raise ValueError("total_count must be positive")

    rng = np.random.default_rng(random_state)
    X = rng.standard_normal(n)

    if response == 'gaussian-process':
        log_alpha = _gaussian_process_response(X, d, rng, phi, tau2, n_grid)
    elif response == 'bummer':
        log_alpha = _bummer_response(X, d, rng)
    else:
        log_alpha = _basis_response(X, d, rng)

    alpha = np.exp(np.clip(log_alpha, -8.0, 8.0))

    if vary_total:
        totals = np.maximum(rng.poisson(total_count, size=n), 1)
    else:
        totals = np.full(n, total_count)

    y = np.empty((n, d), dtype=int)
    for i in range(n):
        p = rng.dirichlet(alpha[i])
        p = np.nan_to_num(p)
        if p.sum() <= 0:
            p = alpha[i] / alpha[i].sum()
        y[i] = rng.multinomial(totals[i], p / p.sum())

    return {
        'y': y,
        'X': X,
        'alpha': alpha,
        'species': [f"species_{j + 1}" for j in range(d)],
        'response': response
    }


def train_test_split_data(
    data: Dict,
    test_size: float = 0.2,
    random_state: Optional[int] = None
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Split a dataset into calibration and held-out parts.

    Returns:
        y_train, y_test, X_train, X_test
    """
    return train_test_split(data['y'], data['X'], test_size=test_size, random_state=random_state)


def data_to_frame(data: Dict, covariate_column: str = 'X') -> pd.DataFrame:
    """Counts and covariate as a DataFrame, one column per species."""
    df = pd.DataFrame(data['y'], columns=data['species'])
    df.insert(0, covariate_column, data['X'])
    return df
