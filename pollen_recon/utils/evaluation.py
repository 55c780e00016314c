import numpy as np
import pandas as pd
from scipy.stats import norm
from sklearn.metrics import mean_squared_error, mean_absolute_error
from typing import Dict


def crps_samples(samples, truth):
    """
    Empirical continuous ranked probability score for each observation.

    Uses CRPS = E|X - y| - 0.5 E|X - X'| with the sorted-sample identity for the
    second expectation.

    Parameters:
    -----------
    samples : array-like, shape (S, n)
        Predictive samples
    truth : array-like, shape (n,)
        Observed values

    Returns:
    --------
    crps : ndarray, shape (n,)
        CRPS for each observation (lower is better)
    """
    samples = np.asarray(samples, dtype=float)
    truth = np.asarray(truth, dtype=float)
    if samples.ndim == 1:
        samples = samples[:, None]
    if samples.shape[1] != truth.shape[0]:
        raise ValueError(f"Samples for {samples.shape[1]} observations but {truth.shape[0]} true values")

    S = samples.shape[0]
    abs_error = np.mean(np.abs(samples - truth), axis=0)

    ordered = np.sort(samples, axis=0)
    weights = 2 * np.arange(1, S + 1) - S - 1
    spread = 2.0 / S ** 2 * (weights[:, None] * ordered).sum(axis=0)

    return abs_error - 0.5 * spread


def crps_gaussian(mean, sd, truth):
    """
    Closed-form CRPS of a normal predictive distribution.

    Parameters:
    -----------
    mean : array-like
        Predictive means
    sd : array-like
        Predictive standard deviations
    truth : array-like
        Observed values

    Returns:
    --------
    crps : ndarray
        CRPS for each observation
    """
    mean = np.asarray(mean, dtype=float)
    sd = np.asarray(sd, dtype=float)
    truth = np.asarray(truth, dtype=float)

    if np.any(sd < 0):
        raise ValueError("Standard deviations must be non-negative")

    safe_sd = np.where(sd > 0, sd, 1.0)
    z = (truth - mean) / safe_sd
    crps = safe_sd * (z * (2 * norm.cdf(z) - 1) + 2 * norm.pdf(z) - 1 / np.sqrt(np.pi))
    return np.where(sd > 0, crps, np.abs(truth - mean))


def coverage(lower, upper, truth):
    """Fraction of observations inside [lower, upper]."""
    truth = np.asarray(truth, dtype=float)
    return float(np.mean((truth >= np.asarray(lower)) & (truth <= np.asarray(upper))))


def summarize_bayesian_prediction(samples, truth) -> Dict[str, float]:
    """
    Accuracy metrics for sample-based predictions.

    Parameters:
    -----------
    samples : array-like, shape (S, n)
        Posterior predictive samples of the covariate
    truth : array-like, shape (n,)
        True covariate values

    Returns:
    --------
    metrics : dict
        CRPS, MSPE, MAE and 95% interval coverage
    """
    samples = np.asarray(samples, dtype=float)
    point = samples.mean(axis=0)
    return {
        'CRPS': float(np.mean(crps_samples(samples, truth))),
        'MSPE': float(mean_squared_error(truth, point)),
        'MAE': float(mean_absolute_error(truth, point)),
        'coverage': coverage(np.quantile(samples, 0.025, axis=0), np.quantile(samples, 0.975, axis=0), truth)
    }


def summarize_gaussian_prediction(mean, sd, truth) -> Dict[str, float]:
    """Accuracy metrics for predictions with normal predictive distributions."""
    mean = np.asarray(mean, dtype=float)
    sd = np.asarray(sd, dtype=float)
    return {
        'CRPS': float(np.mean(crps_gaussian(mean, sd, truth))),
        'MSPE': float(mean_squared_error(truth, mean)),
        'MAE': float(mean_absolute_error(truth, mean)),
        'coverage': coverage(mean - 1.96 * sd, mean + 1.96 * sd, truth)
    }


def comparison_table(results: Dict[str, Dict[str, float]]) -> pd.DataFrame:
    """
    Tabulate metrics for several methods.

    Parameters:
    -----------
    results : dict
        Mapping from method name to a metrics dictionary

    Returns:
    --------
    table : DataFrame
        One row per method, sorted by CRPS
    """
    table = pd.DataFrame.from_dict(results, orient='index')
    table.index.name = 'method'
    columns = [c for c in ['CRPS', 'MSPE', 'MAE', 'coverage'] if c in table.columns]
    table = table[columns]
    if 'CRPS' in table.columns:
        table = table.sort_values('CRPS')
    return table
