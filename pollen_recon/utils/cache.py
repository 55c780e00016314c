"""
Disk memoization of model fits and predictions.

Results are stored as compressed ``.npz`` archives: every array under its own
key plus a JSON metadata string, so that loading never needs pickle.
"""

import os
import json
import warnings
import numpy as np
from typing import Any, Callable, Dict, Optional, Tuple


_METADATA_KEY = '__metadata__'


def _json_default(value):
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def save_results(path: str, arrays: Dict[str, np.ndarray], metadata: Optional[Dict[str, Any]] = None):
    """
    Save arrays and metadata to a compressed ``.npz`` file.

    Args:
        path: Output path; must end in '.npz'
        arrays: Dictionary of arrays
        metadata: JSON-serializable metadata
    """
    if not path.endswith('.npz'):
        raise ValueError(f"Cache files must use the '.npz' extension, got {path}")
    if _METADATA_KEY in arrays:
        raise ValueError(f"'{_METADATA_KEY}' is a reserved key")

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    payload = {key: np.asarray(value) for key, value in arrays.items()}
    payload[_METADATA_KEY] = np.array(json.dumps(metadata or {}, default=_json_default))
    np.savez_compressed(path, **payload)


def load_results(path: str) -> Tuple[Dict[str, np.ndarray], Dict[str, Any]]:
    """Load arrays and metadata written by ``save_results``."""
    with np.load(path, allow_pickle=False) as archive:
        arrays = {key: archive[key] for key in archive.files if key != _METADATA_KEY}
        metadata = json.loads(str(archive[_METADATA_KEY])) if _METADATA_KEY in archive.files else {}
    return arrays, metadata


def read_metadata(path: str) -> Dict[str, Any]:
    """Load only the metadata written by ``save_results``."""
    with np.load(path, allow_pickle=False) as archive:
        if _METADATA_KEY not in archive.files:
            return {}
        return json.loads(str(archive[_METADATA_KEY]))


def _record_inputs(path: str, inputs: Dict[str, Any]):
    arrays, metadata = load_results(path)
    metadata['inputs'] = inputs
    save_results(path, arrays, metadata)


def fit_or_load(
    path: str,
    fit_fn: Callable[[], Any],
    saver: Callable[[str, Any], None],
    loader: Callable[[str], Any],
    overwrite: bool = False,
    verbose: bool = True,
    inputs: Optional[Dict[str, Any]] = None
) -> Any:
    """
    Load a cached result if present, otherwise compute and cache it.

    Args:
        path: Cache file path
        fit_fn: Zero-argument function computing the result
        saver: Function ``(path, result)`` writing the result
        loader: Function ``(path) -> result`` reading the result
        overwrite: Recompute even if the cache file exists
        verbose: Print whether the result was loaded or computed
        inputs: JSON-serializable summary of what the result depends on. It is
            stored with the result, and a cached file recorded with different
            inputs triggers a warning when loaded

    Returns:
        The cached or freshly computed result
    """
    if os.path.exists(path) and not overwrite:
        if verbose:
            print(f"Loading cached results from {path}")
        if inputs is not None:
            recorded = read_metadata(path).get('inputs')
            # Compare through JSON so that tuples and numpy scalars match their stored form
            if recorded != json.loads(json.dumps(inputs, default=_json_default)):
                warnings.warn(
                    f"Cached results in {path} were computed from different data or settings; "
                    f"pass overwrite=True to recompute them"
                )
        return loader(path)

    result = fit_fn()
    saver(path, result)
    if inputs is not None:
        _record_inputs(path, inputs)
    if verbose:
        print(f"Saved results to {path}")
    return result
