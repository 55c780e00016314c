"""
Correlation functions and the predictive-process approximation.

Correlation matrices are evaluated with GPyTorch kernels: the exponential
correlation is a Matérn kernel with nu = 1/2 and the Gaussian correlation is the
RBF kernel. The predictive process represents a Gaussian process over the
covariate by its values at a small set of knots, so that the process at any
covariate value x is Z(x) eta* with Z(x) = c(x, x*) C*^{-1}.
"""

import numpy as np
import torch
from gpytorch.kernels import MaternKernel, RBFKernel
from scipy.linalg import cholesky, cho_solve, solve_triangular
from typing import Optional


def _make_kernel(phi: float, correlation_function: str):
    if correlation_function == 'exponential':
        kernel = MaternKernel(nu=0.5)
    elif correlation_function == 'gaussian':
        kernel = RBFKernel()
    else:
        raise ValueError(f"Unknown correlation function: {correlation_function}. "
                         f"Expected one of: ['exponential', 'gaussian']")
    kernel = kernel.double()
    kernel.lengthscale = float(phi)
    return kernel


def correlation_matrix(x1: np.ndarray, x2: np.ndarray, phi: float,
                       correlation_function: str = 'exponential') -> np.ndarray:
    """
    Evaluate the correlation between two sets of scalar covariate values.

    Args:
        x1: First set of covariate values (n1,)
        x2: Second set of covariate values (n2,)
        phi: Range (lengthscale) parameter
        correlation_function: 'exponential' or 'gaussian'

    Returns:
        Correlation matrix (n1 x n2)
    """
    if phi <= 0:
        raise ValueError(f"Range parameter phi must be positive, got {phi}")

    kernel = _make_kernel(phi, correlation_function)
    x1_t = torch.as_tensor(np.asarray(x1, dtype=float).reshape(-1, 1))
    x2_t = torch.as_tensor(np.asarray(x2, dtype=float).reshape(-1, 1))

    with torch.no_grad():
        corr = kernel(x1_t, x2_t).to_dense()

    return corr.cpu().numpy()


def default_knots(X: np.ndarray, n_knots: int = 30, padding: float = 0.1) -> np.ndarray:
    """Evenly spaced knots spanning the covariate range, widened by ``padding`` of the range on each side."""
    X = np.asarray(X, dtype=float)
    x_min, x_max = np.min(X), np.max(X)
    pad = padding * (x_max - x_min)
    return np.linspace(x_min - pad, x_max + pad, n_knots)


class PredictiveProcess:
    """
    Knot-based predictive-process approximation to a Gaussian process.

    The knot correlation matrix and its Cholesky factor are computed once per
    range parameter value; projections and prior quadratic forms reuse them.
    """

    def __init__(
        self,
        knots: np.ndarray,
        phi: float,
        correlation_function: str = 'exponential',
        jitter: float = 1e-6
    ):
        """
        Initialize the predictive process.

        Args:
            knots: Knot locations (m,)
            phi: Range parameter
            correlation_function: 'exponential' or 'gaussian'
            jitter: Diagonal jitter added to the knot correlation matrix
        """
        self.knots = np.asarray(knots, dtype=float)
        self.phi = float(phi)
        self.correlation_function = correlation_function
        self.jitter = jitter

        m = len(self.knots)
        C_star = correlation_matrix(self.knots, self.knots, self.phi, correlation_function)
        C_star = C_star + jitter * np.eye(m)
        self.chol = cholesky(C_star, lower=True)

    @property
    def n_knots(self) -> int:
        return len(self.knots)

    def projection(self, x: np.ndarray) -> np.ndarray:
        """Return Z(x) = c(x, x*) C*^{-1} with shape (n, m)."""
        c = correlation_matrix(x, self.knots, self.phi, self.correlation_function)
        return cho_solve((self.chol, True), c.T).T

    def quadratic_form(self, eta: np.ndarray) -> np.ndarray:
        """eta' C*^{-1} eta for each column of ``eta`` (m,) or (m, d)."""
        w = solve_triangular(self.chol, eta, lower=True)
        return np.sum(w ** 2, axis=0)

    def log_det(self) -> float:
        """log |C*|."""
        return 2.0 * np.sum(np.log(np.diag(self.chol)))

    def sample_prior(self, rng: np.random.Generator, size: Optional[int] = None) -> np.ndarray:
        """Draw eta* ~ N(0, C*); one vector (m,) or ``size`` columns (m, size)."""
        if size is None:
            return self.chol @ rng.standard_normal(self.n_knots)
        return self.chol @ rng.standard_normal((self.n_knots, size))
