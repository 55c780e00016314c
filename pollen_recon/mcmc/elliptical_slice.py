"""
Elliptical slice sampling (Murray, Adams & MacKay, 2010) for latent variables
with Gaussian priors.

``elliptical_slice`` updates many independent scalar latents at once (one per
held-out observation in inverse prediction): every latent has its own ellipse and
its own shrinking bracket, and the likelihood is only re-evaluated for the
latents that have not yet been accepted.
"""

import warnings
import numpy as np
from typing import Callable, Optional, Tuple


def elliptical_slice(
    x: np.ndarray,
    prior_mean: np.ndarray,
    prior_sd: np.ndarray,
    log_likelihood: Callable[[np.ndarray, np.ndarray], np.ndarray],
    rng: np.random.Generator,
    current_log_likelihood: Optional[np.ndarray] = None,
    max_iterations: int = 100
) -> Tuple[np.ndarray, np.ndarray]:
    """
    One elliptical slice sampling update for independent scalar latents.

    Args:
        x: Current latent values (n,)
        prior_mean: Prior means, broadcastable to (n,)
        prior_sd: Prior standard deviations, broadcastable to (n,)
        log_likelihood: Function ``(values, index) -> log-likelihoods`` evaluating the
            latents ``index`` at ``values``
        rng: Random number generator
        current_log_likelihood: Log-likelihood at ``x`` if already known
        max_iterations: Bracket shrinkage steps before giving up on a latent

    Returns:
        Updated latent values and their log-likelihoods
    """
    x = np.array(x, dtype=float, copy=True)
    n = x.shape[0]
    index = np.arange(n)
    prior_mean = np.broadcast_to(np.asarray(prior_mean, dtype=float), x.shape)
    prior_sd = np.broadcast_to(np.asarray(prior_sd, dtype=float), x.shape)

    if current_log_likelihood is None:
        current_log_likelihood = log_likelihood(x, index)
    log_lik = np.array(current_log_likelihood, dtype=float, copy=True)

    f = x - prior_mean
    nu = prior_sd * rng.standard_normal(n)
    log_threshold = log_lik + np.log(rng.uniform(size=n))

    theta = rng.uniform(0.0, 2.0 * np.pi, size=n)
    lower = theta - 2.0 * np.pi
    upper = theta.copy()

    active = index
    for _ in range(max_iterations):
        proposal = prior_mean[active] + f[active] * np.cos(theta[active]) + nu[active] * np.sin(theta[active])
        proposal_log_lik = log_likelihood(proposal, active)

        accepted = proposal_log_lik > log_threshold[active]
        accepted_index = active[accepted]
        x[accepted_index] = proposal[accepted]
        log_lik[accepted_index] = proposal_log_lik[accepted]

        active = active[~accepted]
        if active.size == 0:
            break

        # Shrink the bracket toward the current point
        negative = theta[active] < 0
        lower[active] = np.where(negative, theta[active], lower[active])
        upper[active] = np.where(negative, upper[active], theta[active])
        theta[active] = rng.uniform(lower[active], upper[active])

    if active.size > 0:
        warnings.warn(
            f"Elliptical slice sampler bracket shrank to zero for {active.size} latent value(s); "
            f"keeping current values",
            RuntimeWarning
        )

    return x, log_lik


def elliptical_slice_vector(
    f: np.ndarray,
    prior_chol: np.ndarray,
    log_likelihood: Callable[[np.ndarray], float],
    rng: np.random.Generator,
    current_log_likelihood: Optional[float] = None,
    max_iterations: int = 100
) -> Tuple[np.ndarray, float]:
    """
    One elliptical slice sampling update for a latent vector f ~ N(0, L L').

    Args:
        f: Current latent vector (m,)
        prior_chol: Lower Cholesky factor L of the prior covariance
        log_likelihood: Function of the latent vector
        rng: Random number generator
        current_log_likelihood: Log-likelihood at ``f`` if already known
        max_iterations: Bracket shrinkage steps before keeping ``f``

    Returns:
        Updated latent vector and its log-likelihood
    """
    f = np.asarray(f, dtype=float)
    if current_log_likelihood is None:
        current_log_likelihood = log_likelihood(f)

    nu = prior_chol @ rng.standard_normal(f.shape[0])
    log_threshold = current_log_likelihood + np.log(rng.uniform())

    theta = rng.uniform(0.0, 2.0 * np.pi)
    lower, upper = theta - 2.0 * np.pi, theta

    for _ in range(max_iterations):
        proposal = f * np.cos(theta) + nu * np.sin(theta)
        proposal_log_lik = log_likelihood(proposal)
        if proposal_log_lik > log_threshold:
            return proposal, proposal_log_lik

        if theta < 0:
            lower = theta
        else:
            upper = theta
        theta = rng.uniform(lower, upper)

    warnings.warn("Elliptical slice sampler bracket shrank to zero; keeping current value", RuntimeWarning)
    return f, current_log_likelihood
