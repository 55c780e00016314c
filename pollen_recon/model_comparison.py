"""
Model Comparison for Paleoclimate Reconstruction from Compositional Data

This module runs the full comparison report:
1. Simulate (or accept) a compositional dataset and split it into calibration and test sets
2. Build the parameter configuration
3. Fit the BUMMER, spline (GAM) and multivariate GP models, or load them from the cache
4. Extract posterior samples and convergence diagnostics
5. Predict the held-out covariates with two-stage inverse prediction
6. Fit the WA, MAT and MLRC transfer functions
7. Compute accuracy metrics and tabulate them
"""

import os
from functools import partial
from typing import Dict, Optional, Sequence, Any

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from .config import make_params, model_tag
from .synthetic_data import simulate_compositional_data, train_test_split_data
from .mcmc.diagnostics import convergence_table
from .models import (
    make_model,
    save_model,
    load_model,
    predict_covariate,
    save_prediction,
    load_prediction,
    WeightedAveraging,
    ModernAnalogTechnique,
    MaximumLikelihoodResponseCurves,
    bootstrap_predict
)
from .utils.cache import fit_or_load, save_results, load_results
from .utils.posterior import samples_to_frame, functional_response_frame, prediction_frame
from .utils.evaluation import summarize_bayesian_prediction, summarize_gaussian_prediction, comparison_table
from .utils.visualization import plot_functional_responses, plot_predictions, plot_trace, plot_comparison


MODEL_LABELS = {
    'bummer': 'BUMMER',
    'basis': 'GAM',
    'gaussian-process': 'MVGP'
}

# Settings that change cached fits and predictions
_CACHE_SETTINGS = (
    'function', 'likelihood', 'n_adapt', 'n_mcmc', 'n_thin', 'n_chains',
    'n_adapt_pred', 'n_mcmc_pred', 'n_thin_pred', 'random_state'
)


def _cache_inputs(params, *arrays, **extra):
    """Summary of the data and settings a cached result is computed from."""
    inputs = {key: params[key] for key in _CACHE_SETTINGS}
    inputs['shapes'] = [list(np.shape(array)) for array in arrays]
    inputs['sums'] = [float(np.sum(array)) for array in arrays]
    inputs.update(extra)
    return inputs


def _fit_model(model_params, y, X, verbose):
    return make_model(model_params).fit(y, X, verbose=verbose)


def _fit_transfer_functions(y_train, X_train, y_test, n_boot, random_state, verbose):
    estimators = {
        'WA': WeightedAveraging(deshrinking='inverse'),
        'MAT': ModernAnalogTechnique(k=5),
        'MLRC': MaximumLikelihoodResponseCurves()
    }
    results = {}
    for name, estimator in estimators.items():
        if verbose:
            print(f"Fitting {name} transfer function with {n_boot} bootstrap samples...")
        prediction = bootstrap_predict(
            estimator, y_train, X_train, y_test,
            n_boot=n_boot, random_state=random_state, verbose=verbose
        )
        results[f"{name}/mean"] = prediction['mean']
        results[f"{name}/sd"] = prediction['sd']
    return results


def _save_transfer_functions(path, results):
    save_results(path, results, {'kind': 'transfer-functions'})


def _load_transfer_functions(path):
    arrays, _ = load_results(path)
    return arrays


def run_model_comparison(
    params: Optional[Dict[str, Any]] = None,
    data: Optional[Dict] = None,
    functions: Sequence[str] = ('bummer', 'basis', 'gaussian-process'),
    transfer_functions: bool = True,
    test_size: float = 0.2,
    n_boot: int = 100,
    make_plots: bool = True,
    overwrite: bool = False,
    verbose: bool = True
) -> Dict[str, Any]:
    """
    Run the complete comparison of reconstruction methods.

    Args:
        params: Parameter overrides (see ``config.DEFAULT_PARAMS``)
        data: Dataset with counts ``y``, covariate ``X`` and optional ``species``;
            simulated when omitted
        functions: Bayesian model families to fit
        transfer_functions: Whether to fit the WA, MAT and MLRC baselines
        test_size: Fraction of samples held out for prediction
        n_boot: Bootstrap resamples for the transfer-function errors
        make_plots: Whether to write figures
        overwrite: Refit even when cached results exist
        verbose: Print progress

    Returns:
        Dictionary with the ``metrics`` table, ``convergence`` table, fitted models
        (``fits``), ``predictions``, ``transfer_functions`` results and the data split
    """
    params = make_params(params)
    output_dir = params['output_directory']
    os.makedirs(output_dir, exist_ok=True)

    # Stage 1: data
    if data is None:
        if verbose:
            print("Simulating compositional data...")
        data = simulate_compositional_data(random_state=params['random_state'])
    y_train, y_test, X_train, X_test = train_test_split_data(
        data, test_size=test_size, random_state=params['random_state']
    )
    species = data.get('species')
    if species is None:
        species = [f"species_{j + 1}" for j in range(np.shape(data['y'])[1])]
    if verbose:
        print(f"Calibration samples: {len(X_train)}, held-out samples: {len(X_test)}, species: {len(species)}")

    fits = {}
    predictions = {}
    convergence = []
    metrics = {}
    x_grid = np.linspace(np.min(X_train), np.max(X_train), 100)

    for function in functions:
        # Stages 2-3: configuration and fit (or cache)
        model_params = make_params(params, function=function)
        tag = model_tag(model_params)
        label = MODEL_LABELS[function]

        model = fit_or_load(
            os.path.join(output_dir, f"fit-{tag}.npz"),
            partial(_fit_model, model_params, y_train, X_train, verbose),
            save_model,
            load_model,
            overwrite=overwrite,
            verbose=verbose,
            inputs=_cache_inputs(model_params, y_train, X_train)
        )
        fits[function] = model

        # Stage 4: posterior samples and diagnostics
        table = convergence_table(model)
        table.insert(0, 'model', label)
        convergence.append(table)

        # Stage 5: two-stage inverse prediction
        prediction = fit_or_load(
            os.path.join(output_dir, f"predict-{tag}.npz"),
            partial(predict_covariate, model, y_test, verbose=verbose, ignore_warnings=True),
            save_prediction,
            load_prediction,
            overwrite=overwrite,
            verbose=verbose,
            inputs=_cache_inputs(model_params, y_train, X_train, y_test, X_test)
        )
        predictions[function] = prediction
        metrics[label] = summarize_bayesian_prediction(prediction['samples'], X_test)

        if make_plots:
            response_df = functional_response_frame(model, x_grid, species)
            fig = plot_functional_responses(
                response_df, {'y': y_train, 'X': X_train},
                title=f"{label} functional responses",
                figure_path=os.path.join(output_dir, f"responses-{tag}.png")
            )
            plt.close(fig)

            fig = plot_predictions(
                prediction_frame(prediction['samples'], X_test),
                title=f"{label} predictions",
                figure_path=os.path.join(output_dir, f"predictions-{tag}.png")
            )
            plt.close(fig)

            samples_df = samples_to_frame(model.get_posterior_samples(flatten=False))
            fig = plot_trace(
                samples_df, model.sampled_params[0],
                figure_path=os.path.join(output_dir, f"trace-{tag}.png")
            )
            plt.close(fig)

    # Stage 6: classical transfer functions
    transfer_results = {}
    if transfer_functions:
        transfer_results = fit_or_load(
            os.path.join(output_dir, "transfer-functions.npz"),
            partial(_fit_transfer_functions, y_train, X_train, y_test, n_boot, params['random_state'], verbose),
            _save_transfer_functions,
            _load_transfer_functions,
            overwrite=overwrite,
            verbose=verbose,
            inputs=_cache_inputs(params, y_train, X_train, y_test, X_test, n_boot=n_boot)
        )
        for name in ('WA', 'MAT', 'MLRC'):
            metrics[name] = summarize_gaussian_prediction(
                transfer_results[f"{name}/mean"], transfer_results[f"{name}/sd"], X_test
            )

    # Stage 7: comparison table
    metrics_table = comparison_table(metrics)
    metrics_table.to_csv(os.path.join(output_dir, "metrics.csv"))

    convergence_df = pd.concat(convergence, ignore_index=True) if convergence else pd.DataFrame()
    if not convergence_df.empty:
        convergence_df.to_csv(os.path.join(output_dir, "convergence.csv"), index=False)

    if verbose:
        print("\nPredictive accuracy:")
        print(metrics_table.to_string(float_format=lambda value: f"{value:.4f}"))
        if not convergence_df.empty:
            worst = convergence_df.groupby('model')['rhat'].max()
            print("\nMaximum Gelman-Rubin statistic per model:")
            for model_label, rhat in worst.items():
                print(f"  {model_label}: {rhat:.3f}")

    if make_plots and len(metrics_table) > 0:
        fig = plot_comparison(metrics_table, figure_path=os.path.join(output_dir, "comparison.png"))
        plt.close(fig)

    return {
        'metrics': metrics_table,
        'convergence': convergence_df,
        'fits': fits,
        'predictions': predictions,
        'transfer_functions': transfer_results,
        'split': {'y_train': y_train, 'y_test': y_test, 'X_train': X_train, 'X_test': X_test}
    }
