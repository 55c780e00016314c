"""
Bayesian reconstruction of an environmental covariate from compositional
species-count data (pollen counts, for example).

Subpackages:
- kernels: correlation functions, predictive process and B-spline basis
- mcmc: chain runner, elliptical slice sampling and convergence diagnostics
- models: BUMMER, spline (GAM) and multivariate GP models, inverse prediction,
  and the WA / MAT / MLRC transfer functions
- utils: data loading, caching, posterior reshaping, evaluation and plots
"""

from .config import DEFAULT_PARAMS, make_params, model_tag
from .synthetic_data import simulate_compositional_data, train_test_split_data
from .models import make_model, predict_covariate

__version__ = '0.1.0'

__all__ = [
    'DEFAULT_PARAMS',
    'make_params',
    'model_tag',
    'simulate_compositional_data',
    'train_test_split_data',
    'make_model',
    'predict_covariate'
]
