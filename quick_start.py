#!/usr/bin/env python3
"""
Quick start demo: fit one functional-response model to simulated pollen counts
and reconstruct the covariate of held-out samples.
"""

import os
import time

import numpy as np
import matplotlib.pyplot as plt

from pollen_recon.synthetic_data import simulate_compositional_data, train_test_split_data
from pollen_recon.models import make_model, predict_covariate
from pollen_recon.mcmc.diagnostics import convergence_table
from pollen_recon.utils.posterior import functional_response_frame, prediction_frame
from pollen_recon.utils.evaluation import summarize_bayesian_prediction
from pollen_recon.utils.visualization import plot_functional_responses, plot_predictions


def run_quick_demo(function="basis", output_dir="outputs"):
    """
    Run the demonstration with a short MCMC run.

    Parameters:
    -----------
    function : str, optional
        Functional-response model ('bummer', 'basis' or 'gaussian-process')
    output_dir : str, optional
        Output directory
    """
    print("\nStarting quick demo...")
    print("=" * 60)
    print(f"FUNCTIONAL-RESPONSE MODEL: {function}")
    print("=" * 60)

    os.makedirs(output_dir, exist_ok=True)

    data = simulate_compositional_data(n=150, d=6, response='bummer', random_state=42)
    y_train, y_test, X_train, X_test = train_test_split_data(data, test_size=0.2, random_state=42)

    model = make_model(
        function=function,
        n_adapt=200,
        n_mcmc=200,
        n_chains=2,
        n_adapt_pred=100,
        n_mcmc_pred=100,
        n_knots=15,
        progress_directory=os.path.join(output_dir, "progress")
    )

    start_time = time.time()
    model.fit(y_train, X_train)
    print(f"\nModel fitting completed in {time.time() - start_time:.2f} seconds")

    print("\nConvergence summary:")
    print(convergence_table(model).groupby('parameter')[['rhat', 'ess']].median().to_string())

    prediction = predict_covariate(model, y_test, ignore_warnings=True)

    metrics = summarize_bayesian_prediction(prediction['samples'], X_test)
    print("\nPredictive accuracy on held-out samples:")
    for name, value in metrics.items():
        print(f"  {name}: {value:.4f}")

    print("\nCreating visualization plots...")
    x_grid = np.linspace(X_train.min(), X_train.max(), 100)
    fig = plot_functional_responses(
        functional_response_frame(model, x_grid, data['species']),
        {'y': y_train, 'X': X_train},
        n_cols=3,
        figure_path=os.path.join(output_dir, "responses.png")
    )
    plt.close(fig)
    fig = plot_predictions(
        prediction_frame(prediction['samples'], X_test),
        figure_path=os.path.join(output_dir, "predictions.png")
    )
    plt.close(fig)

    print("\nDemo completed successfully!")
    print(f"Results saved in {output_dir}/")
    print("=" * 60)
    return metrics


if __name__ == "__main__":
    run_quick_demo()
