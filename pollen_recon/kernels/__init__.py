"""
Covariate kernels and basis expansions for the functional-response models:
- predictive_process.py: GPyTorch correlation functions and the knot-based predictive process
- basis.py: B-spline basis for the spline (GAM) model
"""

from .predictive_process import correlation_matrix, default_knots, PredictiveProcess
from .basis import BSplineBasis

__all__ = [
    'correlation_matrix',
    'default_knots',
    'PredictiveProcess',
    'BSplineBasis'
]
