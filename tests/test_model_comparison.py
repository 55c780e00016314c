"""
End-to-end test of the comparison report on a tiny dataset.
"""

import os

import numpy as np
import pytest

from pollen_recon.model_comparison import run_model_comparison


def test_run_model_comparison(small_data, tmp_path):
    params = {
        'n_adapt': 10,
        'n_mcmc': 10,
        'n_chains': 2,
        'batch_size': 5,
        'n_knots': 5,
        'n_adapt_pred': 5,
        'n_mcmc_pred': 10,
        'output_directory': str(tmp_path / "results"),
        'progress_directory': str(tmp_path / "progress"),
        'random_state': 0
    }

    results = run_model_comparison(params=params, data=small_data, n_boot=5, verbose=False)

    metrics = results['metrics']
    assert set(metrics.index) == {'BUMMER', 'GAM', 'MVGP', 'WA', 'MAT', 'MLRC'}
    assert list(metrics.columns) == ['CRPS', 'MSPE', 'MAE', 'coverage']
    assert np.all(np.diff(metrics['CRPS'].to_numpy()) >= 0)
    assert set(results['convergence']['model']) == {'BUMMER', 'GAM', 'MVGP'}
    assert set(results['fits']) == {'bummer', 'basis', 'gaussian-process'}

    output_dir = tmp_path / "results"
    for name in (
        "metrics.csv",
        "convergence.csv",
        "comparison.png",
        "transfer-functions.npz",
        "fit-bummer-dirichlet-multinomial.npz",
        "predict-gaussian-process-dirichlet-multinomial.npz",
        "responses-basis-dirichlet-multinomial.png",
        "trace-gaussian-process-dirichlet-multinomial.png",
    ):
        assert os.path.exists(output_dir / name), name

    # A second run loads every stage from the cache
    cached = run_model_comparison(params=params, data=small_data, n_boot=5, make_plots=False, verbose=False)
    np.testing.assert_allclose(cached['metrics'].loc[metrics.index], metrics)
    np.testing.assert_array_equal(
        cached['fits']['basis'].samples['beta'], results['fits']['basis'].samples['beta']
    )


def test_run_model_comparison_single_model(small_data, tmp_path):
    params = {
        'n_adapt': 5,
        'n_mcmc': 5,
        'n_chains': 2,
        'n_adapt_pred': 5,
        'n_mcmc_pred': 5,
        'output_directory': str(tmp_path),
        'progress_directory': str(tmp_path / "progress")
    }
    results = run_model_comparison(
        params=params, data=small_data, functions=('bummer',),
        transfer_functions=False, make_plots=False, verbose=False
    )
    assert list(results['metrics'].index) == ['BUMMER']
    assert results['transfer_functions'] == {}
    assert not os.path.exists(tmp_path / "comparison.png")

    # Reusing the output directory with different data flags the stale cache
    shifted = dict(small_data, X=small_data['X'] + 1.0)
    with pytest.warns(UserWarning, match="different data or settings"):
        run_model_comparison(
            params=params, data=shifted, functions=('bummer',),
            transfer_functions=False, make_plots=False, verbose=False
        )
