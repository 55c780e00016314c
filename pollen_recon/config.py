"""
Parameter configuration for the functional-response models.

Configuration is a plain dictionary. ``make_params`` merges user overrides onto
``DEFAULT_PARAMS`` and validates the result so that bad values fail before any
MCMC is started.
"""

import copy
from typing import Dict, Optional, Any

import numpy as np


FUNCTIONS = ('bummer', 'basis', 'gaussian-process')
LIKELIHOODS = ('dirichlet-multinomial', 'multinomial')
CORRELATION_FUNCTIONS = ('exponential', 'gaussian')

DEFAULT_PARAMS = {
    # MCMC settings for the calibration (stage 1) fit
    'n_adapt': 500,
    'n_mcmc': 1000,
    'n_thin': 1,
    'n_chains': 4,
    'parallel_chains': False,
    # Model family
    'function': 'basis',
    'likelihood': 'dirichlet-multinomial',
    # B-spline basis
    'df': 6,
    'degree': 3,
    # Predictive process
    'n_knots': 30,
    'knots': None,
    'correlation_function': 'exponential',
    # MCMC settings for the inverse prediction (stage 2)
    'n_adapt_pred': 500,
    'n_mcmc_pred': 500,
    'n_thin_pred': 1,
    # Adaptive tuning
    'batch_size': 50,
    # Output
    'progress_every': 100,
    'output_directory': 'results',
    'progress_directory': 'progress',
    'random_state': 42
}

_POSITIVE_INTS = (
    'n_mcmc', 'n_thin', 'n_chains', 'n_mcmc_pred', 'n_thin_pred',
    'batch_size', 'progress_every', 'df', 'n_knots'
)
_NON_NEGATIVE_INTS = ('n_adapt', 'n_adapt_pred', 'degree')


def _is_integer(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def make_params(params: Optional[Dict[str, Any]] = None, **overrides) -> Dict[str, Any]:
    """
    Build a validated parameter dictionary.

    Args:
        params: Optional dictionary of parameter overrides
        **overrides: Additional overrides (take precedence over ``params``)

    Returns:
        Complete parameter dictionary
    """
    merged = copy.deepcopy(DEFAULT_PARAMS)
    updates = dict(params or {})
    updates.update(overrides)

    unknown = sorted(set(updates) - set(DEFAULT_PARAMS))
    if unknown:
        raise ValueError(f"Unknown parameters: {unknown}. Expected a subset of: {sorted(DEFAULT_PARAMS)}")

    merged.update(updates)
    validate_params(merged)
    return merged


def validate_params(params: Dict[str, Any]) -> None:
    """Raise ValueError if the parameter dictionary is inconsistent."""
    for key in _POSITIVE_INTS:
        value = params[key]
        if not _is_integer(value) or value < 1:
            raise ValueError(f"Parameter '{key}' must be a positive integer, got {value!r}")

    for key in _NON_NEGATIVE_INTS:
        value = params[key]
        if not _is_integer(value) or value < 0:
            raise ValueError(f"Parameter '{key}' must be a non-negative integer, got {value!r}")

    seed = params['random_state']
    if seed is not None and (not _is_integer(seed) or seed < 0):
        raise ValueError(f"random_state must be None or a non-negative integer, got {seed!r}")

    if params['function'] not in FUNCTIONS:
        raise ValueError(f"Unknown function: {params['function']}. Expected one of: {list(FUNCTIONS)}")

    if params['likelihood'] not in LIKELIHOODS:
        raise ValueError(f"Unknown likelihood: {params['likelihood']}. Expected one of: {list(LIKELIHOODS)}")

    if params['correlation_function'] not in CORRELATION_FUNCTIONS:
        raise ValueError(
            f"Unknown correlation function: {params['correlation_function']}. "
            f"Expected one of: {list(CORRELATION_FUNCTIONS)}"
        )

    if params['df'] < params['degree'] + 1:
        raise ValueError(f"df ({params['df']}) must be at least degree + 1 ({params['degree'] + 1})")

    if params['n_mcmc'] < params['n_thin']:
        raise ValueError("n_mcmc must be at least n_thin so that at least one sample is kept")

    if params['n_mcmc_pred'] < params['n_thin_pred']:
        raise ValueError("n_mcmc_pred must be at least n_thin_pred so that at least one sample is kept")

    if params['knots'] is not None:
        knots = list(params['knots'])
        if len(knots) < 2:
            raise ValueError("At least two knots are required")
        if any(b <= a for a, b in zip(knots[:-1], knots[1:])):
            raise ValueError("Knots must be strictly increasing")


def model_tag(params: Dict[str, Any]) -> str:
    """File-name stem identifying a model configuration, e.g. ``basis-dirichlet-multinomial``."""
    return f"{params['function']}-{params['likelihood']}"
