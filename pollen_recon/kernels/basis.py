"""
B-spline basis expansion of the covariate for the spline (GAM) functional response.
"""

import numpy as np
from scipy.interpolate import BSpline
from typing import Optional, Sequence, Tuple


class BSplineBasis:
    """
    B-spline basis with intercept, in the manner of R's ``bs(..., intercept = TRUE)``.

    The number of basis functions is ``df``; the ``df - degree - 1`` interior knots
    are placed at quantiles of the training covariate unless given explicitly.
    Values outside the boundary knots are evaluated by polynomial extrapolation of
    the end segments.
    """

    def __init__(
        self,
        df: int = 6,
        degree: int = 3,
        knots: Optional[Sequence[float]] = None,
        boundary: Optional[Tuple[float, float]] = None
    ):
        """
        Args:
            df: Number of basis functions (ignored when ``knots`` is given)
            degree: Polynomial degree of the splines
            knots: Optional interior knot locations
            boundary: Optional (lower, upper) boundary knots; defaults to the data range
        """
        if knots is None and df < degree + 1:
            raise ValueError(f"df ({df}) must be at least degree + 1 ({degree + 1})")

        self.df = df
        self.degree = degree
        self.knots = None if knots is None else np.asarray(knots, dtype=float)
        self.boundary = boundary
        self.interior_knots_ = None
        self.t_ = None

    def fit(self, x: np.ndarray) -> 'BSplineBasis':
        x = np.asarray(x, dtype=float)
        if self.boundary is None:
            lower, upper = float(np.min(x)), float(np.max(x))
        else:
            lower, upper = self.boundary
        if upper <= lower:
            raise ValueError("Boundary knots must span a positive range")

        if self.knots is not None:
            interior = np.sort(self.knots)
        else:
            n_interior = self.df - self.degree - 1
            probs = np.linspace(0, 1, n_interior + 2)[1:-1]
            interior = np.quantile(x, probs) if n_interior > 0 else np.array([])

        if np.any(interior <= lower) or np.any(interior >= upper):
            raise ValueError("Interior knots must lie strictly inside the boundary knots")

        k = self.degree
        self.interior_knots_ = interior
        self.t_ = np.concatenate([np.repeat(lower, k + 1), interior, np.repeat(upper, k + 1)])
        return self

    @property
    def n_basis(self) -> int:
        if self.t_ is None:
            raise RuntimeError("Basis must be fitted before use")
        return len(self.t_) - self.degree - 1

    def transform(self, x: np.ndarray) -> np.ndarray:
        """Design matrix (n x n_basis) evaluated at ``x``."""
        if self.t_ is None:
            raise RuntimeError("Basis must be fitted before use")
        x = np.atleast_1d(np.asarray(x, dtype=float))
        design = BSpline.design_matrix(x, self.t_, self.degree, extrapolate=True)
        return design.toarray()

    def fit_transform(self, x: np.ndarray) -> np.ndarray:
        return self.fit(x).transform(x)

    def get_config(self) -> dict:
        """Serializable description sufficient to rebuild the fitted basis."""
        return {
            'df': self.df,
            'degree': self.degree,
            'knots': None if self.interior_knots_ is None else self.interior_knots_.tolist(),
            'boundary': None if self.t_ is None else [float(self.t_[0]), float(self.t_[-1])]
        }
