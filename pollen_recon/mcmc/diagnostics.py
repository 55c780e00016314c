"""
MCMC convergence diagnostics: Gelman-Rubin potential scale reduction factor,
effective sample size and a per-parameter summary table.
"""

import numpy as np
import pandas as pd
from typing import List, Optional


def gelman_rubin(samples: np.ndarray) -> np.ndarray:
    """
    Gelman-Rubin R-hat for every parameter element.

    Args:
        samples: Array of shape (n_chains, n_draws, ...)

    Returns:
        Array of R-hat values with shape ``samples.shape[2:]``; NaN when fewer than
        two chains are available or a parameter has no within-chain variance
    """
    arr = np.asarray(samples, dtype=float)
    if arr.ndim < 2:
        raise ValueError("samples must have shape (n_chains, n_draws, ...)")

    m, n = arr.shape[:2]
    if m < 2 or n < 2:
        return np.full(arr.shape[2:], np.nan)

    chain_means = arr.mean(axis=1)
    overall_mean = arr.mean(axis=(0, 1))

    # Between-chain and within-chain variances
    B = n / (m - 1) * np.sum((chain_means - overall_mean) ** 2, axis=0)
    W = np.mean(np.var(arr, axis=1, ddof=1), axis=0)

    var_hat = (n - 1) / n * W + B / n

    with np.errstate(divide='ignore', invalid='ignore'):
        rhat = np.sqrt(np.where(W > 0, var_hat / W, np.nan))
    return rhat


def _autocorrelation(x: np.ndarray) -> np.ndarray:
    """Autocorrelation along axis 1 of an (n_chains, n_draws, k) array via FFT."""
    n = x.shape[1]
    centered = x - x.mean(axis=1, keepdims=True)
    size = 2 ** int(np.ceil(np.log2(2 * n)))
    spectrum = np.fft.rfft(centered, n=size, axis=1)
    acov = np.fft.irfft(spectrum * np.conj(spectrum), n=size, axis=1)[:, :n] / n
    with np.errstate(divide='ignore', invalid='ignore'):
        return acov / acov[:, :1]


def effective_sample_size(samples: np.ndarray) -> np.ndarray:
    """
    Effective sample size using chain-averaged autocorrelations and Geyer's
    initial positive sequence truncation.

    Args:
        samples: Array of shape (n_chains, n_draws, ...)

    Returns:
        Array of ESS values with shape ``samples.shape[2:]``
    """
    arr = np.asarray(samples, dtype=float)
    m, n = arr.shape[:2]
    trailing = arr.shape[2:]
    flat = arr.reshape(m, n, -1)

    rho = np.nanmean(_autocorrelation(flat), axis=0)
    ess = np.full(flat.shape[2], np.nan)

    for j in range(flat.shape[2]):
        if not np.all(np.isfinite(rho[:, j])):
            continue
        t = 1
        s = 0.0
        while t + 1 < n:
            pair = rho[t, j] + rho[t + 1, j]
            if pair < 0:
                break
            s += pair
            t += 2
        ess[j] = m * n / max(1.0 + 2.0 * s, 1e-10)

    return ess.reshape(trailing)


def convergence_table(sampler, names: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Per-element posterior summary with R-hat and ESS.

    Args:
        sampler: Fitted MCMCSampler
        names: Parameters to include (default: all sampled parameters)

    Returns:
        DataFrame with columns parameter, index, mean, sd, rhat, ess
    """
    samples = sampler.get_posterior_samples(flatten=False)
    names = list(names or samples.keys())

    rows = []
    for name in names:
        arr = samples[name]
        rhat = np.atleast_1d(gelman_rubin(arr)).ravel()
        ess = np.atleast_1d(effective_sample_size(arr)).ravel()
        flat = arr.reshape(arr.shape[0] * arr.shape[1], -1)
        trailing = arr.shape[2:]

        for k in range(flat.shape[1]):
            index = ",".join(str(i) for i in np.unravel_index(k, trailing)) if trailing else ""
            rows.append({
                'parameter': name,
                'index': index,
                'mean': flat[:, k].mean(),
                'sd': flat[:, k].std(ddof=1) if flat.shape[0] > 1 else np.nan,
                'rhat': rhat[k],
                'ess': ess[k]
            })

    return pd.DataFrame(rows, columns=['parameter', 'index', 'mean', 'sd', 'rhat', 'ess'])
