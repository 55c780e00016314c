"""
Likelihoods for compositional count data.

Each row of ``y`` is a vector of species counts for one sample; ``log_alpha``
holds the (log) Dirichlet-multinomial parameters for the same rows.
"""

import numpy as np
from scipy.special import gammaln, logsumexp


# log(alpha) is clipped to keep gammaln finite for extreme functional responses
LOG_ALPHA_BOUND = 30.0


def _check_shapes(y: np.ndarray, log_alpha: np.ndarray):
    if y.shape != log_alpha.shape:
        raise ValueError(f"Shape mismatch between counts {y.shape} and log_alpha {log_alpha.shape}")


def dirichlet_multinomial_log_likelihood(y: np.ndarray, log_alpha: np.ndarray) -> np.ndarray:
    """
    Per-observation Dirichlet-multinomial log pmf.

    Args:
        y: Count matrix (n x d)
        log_alpha: Log concentration parameters (n x d)

    Returns:
        Array of n log-likelihood values
    """
    y = np.asarray(y, dtype=float)
    log_alpha = np.asarray(log_alpha, dtype=float)
    _check_shapes(y, log_alpha)

    alpha = np.exp(np.clip(log_alpha, -LOG_ALPHA_BOUND, LOG_ALPHA_BOUND))
    M = y.sum(axis=-1)
    A = alpha.sum(axis=-1)

    return (
        gammaln(M + 1) - gammaln(y + 1).sum(axis=-1)
        + gammaln(A) - gammaln(M + A)
        + (gammaln(y + alpha) - gammaln(alpha)).sum(axis=-1)
    )


def multinomial_log_likelihood(y: np.ndarray, log_alpha: np.ndarray) -> np.ndarray:
    """Per-observation multinomial log pmf with probabilities softmax(log_alpha)."""
    y = np.asarray(y, dtype=float)
    log_alpha = np.clip(np.asarray(log_alpha, dtype=float), -LOG_ALPHA_BOUND, LOG_ALPHA_BOUND)
    _check_shapes(y, log_alpha)

    log_p = log_alpha - logsumexp(log_alpha, axis=-1, keepdims=True)
    M = y.sum(axis=-1)

    return gammaln(M + 1) - gammaln(y + 1).sum(axis=-1) + (y * log_p).sum(axis=-1)


LIKELIHOOD_FUNCTIONS = {
    'dirichlet-multinomial': dirichlet_multinomial_log_likelihood,
    'multinomial': multinomial_log_likelihood
}


def observation_log_likelihood(y: np.ndarray, log_alpha: np.ndarray,
                               kind: str = 'dirichlet-multinomial') -> np.ndarray:
    """Dispatch to the likelihood named by ``kind``."""
    if kind not in LIKELIHOOD_FUNCTIONS:
        raise ValueError(f"Unknown likelihood: {kind}. Expected one of: {list(LIKELIHOOD_FUNCTIONS)}")
    return LIKELIHOOD_FUNCTIONS[kind](y, log_alpha)
