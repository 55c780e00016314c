"""
Data Loading Utilities for Compositional Count Data

This module provides functions for loading species count tables (pollen counts,
for example) with an associated environmental covariate from CSV, text or Excel
files, and for pooling rare species.
"""

import os
import warnings
import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Union


def load_count_data(
    file_path: str,
    covariate_column: str,
    species_columns: Optional[List[str]] = None,
    sheet_name: Optional[Union[str, int]] = 0,
    delimiter: str = ',',
    na_values: List[str] = ['NA', 'NaN', '-999', '-999.9', 'n/a', 'null'],
    verbose: bool = False
) -> Dict:
    """
    Load a count table with one covariate column.

    Args:
        file_path: Path to the data file (CSV, TXT or Excel)
        covariate_column: Name of the covariate column
        species_columns: Species count columns (default: every numeric column except the covariate)
        sheet_name: Sheet name for Excel files
        delimiter: Delimiter for CSV/TXT files
        na_values: List of strings to interpret as NaN
        verbose: Whether to print verbose output

    Returns:
        Dictionary with counts ``y`` (n x d), covariate ``X`` and ``species`` names
    """
    file_ext = os.path.splitext(file_path)[1].lower()

    if verbose:
        print(f"Loading data from {file_path}")

    if file_ext in ['.xlsx', '.xls']:
        df = pd.read_excel(file_path, sheet_name=sheet_name, na_values=na_values)
    elif file_ext in ['.csv', '.txt']:
        df = pd.read_csv(file_path, delimiter=delimiter, na_values=na_values)
    else:
        raise ValueError(f"Unsupported file format: {file_ext}")

    if covariate_column not in df.columns:
        raise ValueError(f"Covariate column '{covariate_column}' not found in columns: {list(df.columns)}")

    if species_columns is None:
        numeric = df.select_dtypes(include=[np.number]).columns
        species_columns = [column for column in numeric if column != covariate_column]
    else:
        missing = [column for column in species_columns if column not in df.columns]
        if missing:
            raise ValueError(f"Species columns not found in data file: {missing}")

    if len(species_columns) < 2:
        raise ValueError("At least two species columns are required")

    # Keep only complete rows
    subset = df[[covariate_column] + list(species_columns)]
    complete = subset.notna().all(axis=1)
    if verbose and not complete.all():
        print(f"Dropping {int((~complete).sum())} rows with missing values")
    subset = subset[complete]

    y = subset[species_columns].to_numpy(dtype=float)
    X = subset[covariate_column].to_numpy(dtype=float)

    if np.any(y < 0):
        raise ValueError("Counts must be non-negative")
    y = np.round(y).astype(int)

    # Species never observed carry no information
    present = y.sum(axis=0) > 0
    if not present.all():
        dropped = [name for name, keep in zip(species_columns, present) if not keep]
        warnings.warn(f"Dropping species with no counts: {dropped}")
    y = y[:, present]
    species = [name for name, keep in zip(species_columns, present) if keep]

    # Samples without any counts cannot be used either
    nonempty = y.sum(axis=1) > 0
    if not nonempty.all():
        warnings.warn(f"Dropping {int((~nonempty).sum())} samples with no counts")
    y, X = y[nonempty], X[nonempty]

    if verbose:
        print(f"Loaded {y.shape[0]} samples of {y.shape[1]} species")

    return {'y': y, 'X': X, 'species': species}


def combine_rare_species(
    y: np.ndarray,
    species: List[str],
    min_total_fraction: float = 0.01,
    other_name: str = 'other'
) -> Dict:
    """
    Pool species whose share of all counts is below ``min_total_fraction``.

    Args:
        y: Count matrix (n x d)
        species: Species names
        min_total_fraction: Minimum share of the total count for a species to be kept
        other_name: Name of the pooled column

    Returns:
        Dictionary with the new counts ``y`` and ``species`` names
    """
    y = np.asarray(y)
    if y.shape[1] != len(species):
        raise ValueError("Number of species names does not match the count matrix")

    share = y.sum(axis=0) / y.sum()
    keep = share >= min_total_fraction

    if keep.all():
        return {'y': y.copy(), 'species': list(species)}

    kept_species = [name for name, k in zip(species, keep) if k]
    pooled = y[:, ~keep].sum(axis=1, keepdims=True)
    return {
        'y': np.hstack([y[:, keep], pooled]),
        'species': kept_species + [other_name]
    }
