"""
Models for Paleoclimate Reconstruction from Compositional Data

- bummer.py: parametric unimodal (BUMMER) functional response
- spline.py: B-spline (GAM) functional response
- gaussian_process.py: predictive-process multivariate GP functional response
- prediction.py: two-stage inverse prediction of the covariate
- transfer_functions.py: WA, MAT and MLRC baselines
"""

from typing import Any, Dict, Optional

import numpy as np

from ..config import make_params
from ..utils.cache import save_results, load_results
from .base import FunctionalResponseModel, check_compositional_data
from .bummer import BummerModel
from .spline import SplineModel
from .gaussian_process import GaussianProcessModel
from .prediction import InversePredictor, predict_covariate, summarize_prediction
from .transfer_functions import (
    WeightedAveraging,
    ModernAnalogTechnique,
    MaximumLikelihoodResponseCurves,
    TRANSFER_FUNCTIONS,
    bootstrap_predict
)

MODELS = {
    'bummer': BummerModel,
    'basis': SplineModel,
    'gaussian-process': GaussianProcessModel
}

_MODELS_BY_CLASS = {cls.__name__: cls for cls in MODELS.values()}


def make_model(params: Optional[Dict[str, Any]] = None, **overrides) -> FunctionalResponseModel:
    """Instantiate the model selected by the ``function`` parameter."""
    params = make_params(params, **overrides)
    return MODELS[params['function']](params)


def save_model(path: str, model: FunctionalResponseModel):
    arrays, metadata = model.to_results()
    save_results(path, arrays, metadata)


def load_model(path: str) -> FunctionalResponseModel:
    arrays, metadata = load_results(path)
    class_name = metadata.get('class')
    if class_name not in _MODELS_BY_CLASS:
        raise ValueError(f"{path} does not contain a fitted functional-response model")
    return _MODELS_BY_CLASS[class_name].from_results(arrays, metadata)


def save_prediction(path: str, prediction: Dict[str, np.ndarray]):
    save_results(path, prediction, {'kind': 'prediction'})


def load_prediction(path: str) -> Dict[str, np.ndarray]:
    arrays, _ = load_results(path)
    return arrays


__all__ = [
    'FunctionalResponseModel',
    'check_compositional_data',
    'BummerModel',
    'SplineModel',
    'GaussianProcessModel',
    'InversePredictor',
    'predict_covariate',
    'summarize_prediction',
    'WeightedAveraging',
    'ModernAnalogTechnique',
    'MaximumLikelihoodResponseCurves',
    'TRANSFER_FUNCTIONS',
    'bootstrap_predict',
    'MODELS',
    'make_model',
    'save_model',
    'load_model',
    'save_prediction',
    'load_prediction'
]
