"""
Shared fixtures: a small simulated dataset and short MCMC settings so that every
model can be fit in a few seconds.
"""

import matplotlib
matplotlib.use("Agg")

import pytest

from pollen_recon.synthetic_data import simulate_compositional_data, train_test_split_data
from pollen_recon.models import make_model


@pytest.fixture(scope="session")
def small_data():
    return simulate_compositional_data(n=50, d=4, response='bummer', total_count=150, random_state=1)


@pytest.fixture(scope="session")
def small_split(small_data):
    return train_test_split_data(small_data, test_size=0.2, random_state=1)


@pytest.fixture(scope="session")
def fast_params(tmp_path_factory):
    return {
        'n_adapt': 20,
        'n_mcmc': 10,
        'n_chains': 2,
        'batch_size': 5,
        'n_knots': 6,
        'n_adapt_pred': 5,
        'n_mcmc_pred': 10,
        'progress_every': 5,
        'progress_directory': str(tmp_path_factory.mktemp("progress")),
        'output_directory': str(tmp_path_factory.mktemp("results")),
        'random_state': 3
    }


@pytest.fixture(scope="session")
def fitted_models(small_split, fast_params):
    """One short fit per functional-response model."""
    y_train, _, X_train, _ = small_split
    return {
        function: make_model(fast_params, function=function).fit(y_train, X_train, verbose=False)
        for function in ('bummer', 'basis', 'gaussian-process')
    }
