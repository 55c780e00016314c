"""
Tests for data simulation and loading, the disk cache, posterior reshaping,
accuracy metrics and plots.
"""

import os
import warnings

import numpy as np
import pandas as pd
import pytest
from scipy.stats import norm

from pollen_recon.synthetic_data import (
    simulate_compositional_data,
    train_test_split_data,
    data_to_frame,
    RESPONSE_TYPES
)
from pollen_recon.utils import (
    save_results,
    load_results,
    read_metadata,
    fit_or_load,
    load_count_data,
    combine_rare_species,
    samples_to_frame,
    functional_response_frame,
    prediction_frame,
    crps_samples,
    crps_gaussian,
    coverage,
    summarize_bayesian_prediction,
    summarize_gaussian_prediction,
    comparison_table
)
from pollen_recon.utils.visualization import (
    plot_functional_responses,
    plot_predictions,
    plot_trace,
    plot_comparison
)


# -- synthetic data ----------------------------------------------------------


@pytest.mark.parametrize("response", RESPONSE_TYPES)
def test_simulated_data(response):
    data = simulate_compositional_data(n=30, d=5, response=response, total_count=50, random_state=0)
    assert data['y'].shape == (30, 5)
    assert data['X'].shape == (30,)
    assert data['alpha'].shape == (30, 5)
    assert np.all(data['y'].sum(axis=1) == 50)
    assert data['species'] == ['species_1', 'species_2', 'species_3', 'species_4', 'species_5']
    assert data['response'] == response


def test_simulation_is_reproducible_and_varies_totals():
    first = simulate_compositional_data(n=20, d=3, vary_total=True, random_state=2)
    second = simulate_compositional_data(n=20, d=3, vary_total=True, random_state=2)
    np.testing.assert_array_equal(first['y'], second['y'])
    assert len(np.unique(first['y'].sum(axis=1))) > 1


@pytest.mark.parametrize("kwargs", [{'response': 'linear'}, {'n': 1}, {'d': 1}, {'total_count': 0}])
def test_simulation_rejects_bad_arguments(kwargs):
    with pytest.raises(ValueError):
        simulate_compositional_data(**kwargs)


def test_split_and_frame():
    data = simulate_compositional_data(n=40, d=3, random_state=0)
    y_train, y_test, X_train, X_test = train_test_split_data(data, test_size=0.25, random_state=0)
    assert y_train.shape == (30, 3) and y_test.shape == (10, 3)
    assert X_train.shape == (30,) and X_test.shape == (10,)

    df = data_to_frame(data, covariate_column='temperature')
    assert list(df.columns) == ['temperature', 'species_1', 'species_2', 'species_3']


# -- data loading ------------------------------------------------------------


def test_load_count_data_round_trip(tmp_path):
    data = simulate_compositional_data(n=25, d=4, random_state=3)
    data["y"] = data["y"] + 1
    path = tmp_path / "counts.csv"
    data_to_frame(data).to_csv(path, index=False)

    loaded = load_count_data(str(path), 'X')
    np.testing.assert_array_equal(loaded['y'], data['y'])
    np.testing.assert_allclose(loaded['X'], data['X'])
    assert loaded['species'] == data['species']


def test_load_count_data_cleans_rows_and_species(tmp_path):
    df = pd.DataFrame({
        'X': [0.1, 0.2, np.nan, 0.4, 0.5],
        'a': [1, 0, 3, 0, 2],
        'b': [0, 0, 1, 0, 4],
        'c': [0, 0, 0, 0, 0],
        'd': [3, 0, 1, 0, 1]
    })
    path = tmp_path / "counts.csv"
    df.to_csv(path, index=False)

    with pytest.warns(UserWarning):
        loaded = load_count_data(str(path), 'X')
    assert loaded['species'] == ['a', 'b', 'd']
    np.testing.assert_allclose(loaded['X'], [0.1, 0.5])


def test_load_count_data_errors(tmp_path):
    path = tmp_path / "counts.csv"
    pd.DataFrame({'X': [0.0, 1.0], 'a': [1, 2], 'b': [2, 1]}).to_csv(path, index=False)
    with pytest.raises(ValueError, match="not found"):
        load_count_data(str(path), 'temperature')
    with pytest.raises(ValueError, match="not found"):
        load_count_data(str(path), 'X', species_columns=['a', 'z'])
    with pytest.raises(ValueError, match="Unsupported"):
        load_count_data(str(tmp_path / "counts.json"), 'X')


def test_combine_rare_species():
    y = np.array([[50, 40, 1, 0], [60, 45, 0, 1]])
    combined = combine_rare_species(y, ['a', 'b', 'c', 'd'], min_total_fraction=0.05)
    assert combined['species'] == ['a', 'b', 'other']
    np.testing.assert_array_equal(combined['y'], [[50, 40, 1], [60, 45, 1]])
    np.testing.assert_array_equal(combined['y'].sum(axis=1), y.sum(axis=1))

    unchanged = combine_rare_species(y, ['a', 'b', 'c', 'd'], min_total_fraction=0.0)
    assert unchanged['species'] == ['a', 'b', 'c', 'd']


# -- cache -------------------------------------------------------------------


def test_save_and_load_results(tmp_path):
    path = str(tmp_path / "nested" / "result.npz")
    arrays = {'samples/beta': np.arange(6.0).reshape(2, 3), 'rmsep': np.array(0.5)}
    save_results(path, arrays, {'class': 'Example', 'params': {'knots': None, 'n': np.int64(3)}})

    loaded, metadata = load_results(path)
    np.testing.assert_array_equal(loaded['samples/beta'], arrays['samples/beta'])
    assert float(loaded['rmsep']) == 0.5
    assert metadata == {'class': 'Example', 'params': {'knots': None, 'n': 3}}


def test_save_results_validation(tmp_path):
    with pytest.raises(ValueError, match="npz"):
        save_results(str(tmp_path / "result.pkl"), {})
    with pytest.raises(ValueError, match="reserved"):
        save_results(str(tmp_path / "result.npz"), {'__metadata__': np.zeros(1)})


def test_fit_or_load_computes_once(tmp_path):
    path = str(tmp_path / "cached.npz")
    calls = []

    def fit_fn():
        calls.append(1)
        return {'value': np.array([1.0, 2.0])}

    def saver(p, result):
        save_results(p, result)

    def loader(p):
        return load_results(p)[0]

    first = fit_or_load(path, fit_fn, saver, loader, verbose=False)
    second = fit_or_load(path, fit_fn, saver, loader, verbose=False)
    assert len(calls) == 1
    np.testing.assert_array_equal(first['value'], second['value'])

    fit_or_load(path, fit_fn, saver, loader, overwrite=True, verbose=False)
    assert len(calls) == 2


def test_fit_or_load_records_inputs(tmp_path):
    path = str(tmp_path / "cached.npz")

    def saver(p, result):
        save_results(p, result, {'kind': 'example'})

    def loader(p):
        return load_results(p)[0]

    inputs = {'n_mcmc': np.int64(10), 'shapes': [(3, 2)], 'random_state': None}
    fit_or_load(path, lambda: {'value': np.ones(2)}, saver, loader, verbose=False, inputs=inputs)
    metadata = read_metadata(path)
    assert metadata == {'kind': 'example', 'inputs': {'n_mcmc': 10, 'shapes': [[3, 2]], 'random_state': None}}

    # Matching inputs load silently
    with warnings.catch_warnings():
        warnings.simplefilter('error')
        loaded = fit_or_load(path, None, saver, loader, verbose=False, inputs=inputs)
    np.testing.assert_array_equal(loaded['value'], np.ones(2))

    with pytest.warns(UserWarning, match="different data or settings"):
        fit_or_load(path, None, saver, loader, verbose=False, inputs=dict(inputs, n_mcmc=20))


# -- posterior reshaping -----------------------------------------------------


def test_samples_to_frame():
    samples = {
        'phi': np.arange(6.0).reshape(2, 3),
        'beta': np.arange(24.0).reshape(2, 3, 2, 2)
    }
    df = samples_to_frame(samples)
    assert list(df.columns) == ['chain', 'iteration', 'parameter', 'index', 'value']
    assert len(df) == 6 + 24

    phi = df[df['parameter'] == 'phi']
    assert set(phi['index']) == {""}
    assert phi[(phi['chain'] == 2) & (phi['iteration'] == 1)]['value'].item() == 3.0

    beta = df[(df['parameter'] == 'beta') & (df['index'] == "1,0")]
    np.testing.assert_array_equal(beta['value'], samples['beta'][:, :, 1, 0].ravel())

    assert samples_to_frame(samples, names=['phi']).shape == (6, 5)


def test_functional_response_frame(fitted_models):
    model = fitted_models['basis']
    df = functional_response_frame(model, np.linspace(-1, 1, 5), species=list('abcd'), n_draws=8)
    assert df.shape == (20, 5)
    assert list(df['species'][:4]) == list('abcd')
    assert np.all(df['lower'] <= df['upper'])
    np.testing.assert_allclose(df.groupby('x')['mean'].sum(), 1.0)

    with pytest.raises(ValueError):
        functional_response_frame(model, np.zeros(2), species=['a'])


def test_prediction_frame():
    X_samples = np.random.default_rng(0).normal(size=(100, 4))
    df = prediction_frame(X_samples, X_true=np.zeros(4))
    assert list(df.columns) == ['observation', 'mean', 'sd', 'lower', 'upper', 'truth']
    assert np.all(df['truth'] == 0)
    assert prediction_frame(X_samples)['truth'].isna().all()


# -- evaluation --------------------------------------------------------------


def test_crps_samples_matches_gaussian_closed_form():
    rng = np.random.default_rng(0)
    samples = rng.normal(1.0, 2.0, size=(100000, 3))
    truth = np.array([0.0, 1.0, 4.0])
    np.testing.assert_allclose(
        crps_samples(samples, truth), crps_gaussian(np.full(3, 1.0), np.full(3, 2.0), truth), rtol=0.03
    )


def test_crps_point_forecast_is_absolute_error():
    samples = np.full((10, 2), 3.0)
    np.testing.assert_allclose(crps_samples(samples, np.array([1.0, 4.0])), [2.0, 1.0])
    np.testing.assert_allclose(crps_gaussian(np.array([3.0]), np.array([0.0]), np.array([1.0])), [2.0])


def test_crps_gaussian_value():
    # CRPS of N(0, 1) at its mean is (sqrt(2) - 1) / sqrt(pi)
    value = crps_gaussian(0.0, 1.0, 0.0)
    assert np.isclose(value, 2 * norm.pdf(0) - 1 / np.sqrt(np.pi))
    with pytest.raises(ValueError):
        crps_gaussian(0.0, -1.0, 0.0)


def test_crps_shape_mismatch():
    with pytest.raises(ValueError):
        crps_samples(np.zeros((5, 2)), np.zeros(3))


def test_coverage_and_summaries():
    assert coverage([0, 0, 0], [1, 1, 1], [0.5, 2.0, 1.0]) == pytest.approx(2 / 3)

    rng = np.random.default_rng(1)
    truth = rng.normal(size=200)
    samples = truth + rng.normal(size=(500, 200))
    bayes = summarize_bayesian_prediction(samples, truth)
    assert set(bayes) == {'CRPS', 'MSPE', 'MAE', 'coverage'}
    assert 0.9 < bayes['coverage'] <= 1.0

    gaussian = summarize_gaussian_prediction(truth + 0.1, np.ones(200), truth)
    assert gaussian['MSPE'] == pytest.approx(0.01)
    assert gaussian['MAE'] == pytest.approx(0.1)
    assert gaussian['coverage'] == 1.0


def test_comparison_table_sorted_by_crps():
    table = comparison_table({
        'WA': {'CRPS': 0.5, 'MSPE': 1.0, 'MAE': 0.8, 'coverage': 0.9},
        'MVGP': {'CRPS': 0.3, 'MSPE': 0.6, 'MAE': 0.5, 'coverage': 0.95}
    })
    assert list(table.index) == ['MVGP', 'WA']
    assert table.index.name == 'method'
    assert list(table.columns) == ['CRPS', 'MSPE', 'MAE', 'coverage']


# -- plots -------------------------------------------------------------------


def test_plots_are_saved(fitted_models, small_split, tmp_path):
    y_train, _, X_train, _ = small_split
    model = fitted_models['bummer']

    response_df = functional_response_frame(model, np.linspace(-1, 1, 10), n_draws=5)
    plot_functional_responses(
        response_df, {'y': y_train, 'X': X_train}, n_cols=3, figure_path=str(tmp_path / "responses.png")
    )
    plot_predictions(
        prediction_frame(np.random.default_rng(0).normal(size=(20, 5)), np.zeros(5)),
        figure_path=str(tmp_path / "predictions.png")
    )
    plot_trace(samples_to_frame(model.samples), 'mu', max_elements=2, figure_path=str(tmp_path / "trace.png"))
    plot_comparison(
        comparison_table({'A': {'CRPS': 0.1, 'MSPE': 0.2, 'MAE': 0.3, 'coverage': 0.9}}),
        figure_path=str(tmp_path / "comparison.png")
    )

    for name in ("responses.png", "predictions.png", "trace.png", "comparison.png"):
        assert os.path.exists(tmp_path / name)


def test_plot_trace_unknown_parameter(fitted_models):
    with pytest.raises(ValueError, match="No samples"):
        plot_trace(samples_to_frame(fitted_models['bummer'].samples), 'phi')
