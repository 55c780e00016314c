"""
Utilities for data loading, caching, posterior reshaping, evaluation and plotting.
"""

from .cache import save_results, load_results, read_metadata, fit_or_load
from .data_loader import load_count_data, combine_rare_species
from .posterior import samples_to_frame, functional_response_frame, prediction_frame
from .evaluation import (
    crps_samples,
    crps_gaussian,
    coverage,
    summarize_bayesian_prediction,
    summarize_gaussian_prediction,
    comparison_table
)

__all__ = [
    'save_results',
    'load_results',
    'read_metadata',
    'fit_or_load',
    'load_count_data',
    'combine_rare_species',
    'samples_to_frame',
    'functional_response_frame',
    'prediction_frame',
    'crps_samples',
    'crps_gaussian',
    'coverage',
    'summarize_bayesian_prediction',
    'summarize_gaussian_prediction',
    'comparison_table'
]
