"""
visualization.py - Plots for the reconstruction reports

This module provides the figures of the model-comparison report: fitted
functional responses with credible bands, predicted versus true covariates,
MCMC trace plots and a bar chart of accuracy metrics.
"""

import numpy as np
import matplotlib.pyplot as plt
import pandas as pd
from typing import Dict, Optional


def _save(fig, figure_path):
    if figure_path:
        fig.savefig(figure_path, dpi=300, bbox_inches='tight')


def plot_functional_responses(response_df: pd.DataFrame, data: Optional[Dict] = None,
                              title="Fitted functional responses", n_cols=4, figure_path=None):
    """
    Plot posterior functional responses, one panel per species.

    Parameters:
    -----------
    response_df : DataFrame
        Output of ``functional_response_frame`` (columns x, species, mean, lower, upper)
    data : dict, optional
        Calibration data with counts ``y`` and covariate ``X``; observed proportions
        are overlaid when given
    title : str
        Figure title
    n_cols : int, default=4
        Number of panel columns
    figure_path : str, optional
        Path to save the figure

    Returns:
    --------
    fig : matplotlib.figure.Figure
        Figure object
    """
    species = list(dict.fromkeys(response_df['species']))
    n_rows = int(np.ceil(len(species) / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(4 * n_cols, 3 * n_rows), squeeze=False, sharex=True)

    proportions = None
    if data is not None:
        y = np.asarray(data['y'], dtype=float)
        proportions = y / y.sum(axis=1, keepdims=True)

    for j, name in enumerate(species):
        ax = axes[j // n_cols, j % n_cols]
        subset = response_df[response_df['species'] == name]

        if proportions is not None:
            ax.scatter(data['X'], proportions[:, j], s=8, color='gray', alpha=0.5, label='Observed')
        ax.plot(subset['x'], subset['mean'], 'b-', linewidth=2, label='Posterior mean')
        ax.fill_between(subset['x'], subset['lower'], subset['upper'], color='b', alpha=0.2, label='95% CI')

        ax.set_title(name, fontsize=10)
        ax.grid(True, alpha=0.3)

    for k in range(len(species), n_rows * n_cols):
        axes[k // n_cols, k % n_cols].set_visible(False)

    axes[0, 0].legend(loc='best', fontsize=8)
    fig.supxlabel('Covariate')
    fig.supylabel('Relative abundance')
    fig.suptitle(title)
    fig.tight_layout()

    _save(fig, figure_path)
    return fig


def plot_predictions(prediction_df: pd.DataFrame, title="Predicted vs. true covariate", figure_path=None):
    """
    Plot posterior predictions of held-out covariates against their true values.

    Parameters:
    -----------
    prediction_df : DataFrame
        Output of ``prediction_frame`` (columns mean, lower, upper, truth)
    title : str
        Plot title
    figure_path : str, optional
        Path to save the figure

    Returns:
    --------
    fig : matplotlib.figure.Figure
        Figure object
    """
    fig, ax = plt.subplots(figsize=(7, 6))

    truth = prediction_df['truth'].to_numpy()
    mean = prediction_df['mean'].to_numpy()
    errors = np.vstack([mean - prediction_df['lower'].to_numpy(), prediction_df['upper'].to_numpy() - mean])

    ax.errorbar(truth, mean, yerr=errors, fmt='o', color='b', alpha=0.6, capsize=2, label='Posterior mean and 95% CI')

    finite = np.isfinite(truth)
    if finite.any():
        limits = [min(truth[finite].min(), mean.min()), max(truth[finite].max(), mean.max())]
        ax.plot(limits, limits, 'r--', label='1:1 line')

    ax.set_xlabel('True covariate')
    ax.set_ylabel('Predicted covariate')
    ax.set_title(title)
    ax.grid(True, alpha=0.3)
    ax.legend(loc='best')
    fig.tight_layout()

    _save(fig, figure_path)
    return fig


def plot_trace(samples_df: pd.DataFrame, parameter: str, max_elements=4, figure_path=None):
    """
    Trace plots for one parameter from the output of ``samples_to_frame``.

    Parameters:
    -----------
    samples_df : DataFrame
        Long-format samples (columns chain, iteration, parameter, index, value)
    parameter : str
        Parameter name
    max_elements : int, default=4
        Maximum number of parameter elements to show
    figure_path : str, optional
        Path to save the figure

    Returns:
    --------
    fig : matplotlib.figure.Figure
        Figure object
    """
    subset = samples_df[samples_df['parameter'] == parameter]
    if subset.empty:
        raise ValueError(f"No samples for parameter '{parameter}'")

    elements = list(dict.fromkeys(subset['index']))[:max_elements]
    fig, axes = plt.subplots(len(elements), 1, figsize=(10, 2.5 * len(elements)), squeeze=False)

    for ax, element in zip(axes[:, 0], elements):
        for chain, chain_df in subset[subset['index'] == element].groupby('chain'):
            ax.plot(chain_df['iteration'], chain_df['value'], alpha=0.7, label=f"chain {chain}")
        label = f"{parameter}[{element}]" if element != "" else parameter
        ax.set_title(f"Trace for {label}")
        ax.set_ylabel("Value")
        ax.grid(True, alpha=0.3)

    axes[-1, 0].set_xlabel("Iteration")
    axes[0, 0].legend(loc='best', fontsize=8)
    fig.tight_layout()

    _save(fig, figure_path)
    return fig


def plot_comparison(metrics: pd.DataFrame, title="Predictive accuracy", figure_path=None):
    """
    Bar charts of accuracy metrics for each method.

    Parameters:
    -----------
    metrics : DataFrame
        Output of ``comparison_table``
    title : str
        Figure title
    figure_path : str, optional
        Path to save the figure

    Returns:
    --------
    fig : matplotlib.figure.Figure
        Figure object
    """
    columns = list(metrics.columns)
    fig, axes = plt.subplots(1, len(columns), figsize=(4 * len(columns), 4), squeeze=False)

    colors = plt.cm.tab10(np.arange(len(metrics)) % 10)
    for ax, column in zip(axes[0], columns):
        ax.bar(metrics.index.astype(str), metrics[column], color=colors)
        if column == 'coverage':
            ax.axhline(0.95, color='r', linestyle='--', alpha=0.7)
        ax.set_title(column)
        ax.tick_params(axis='x', rotation=45)
        ax.grid(True, axis='y', alpha=0.3)

    fig.suptitle(title)
    fig.tight_layout()

    _save(fig, figure_path)
    return fig
