"""
Classical Transfer Functions for Paleoclimate Reconstruction

This module implements the classical (non-Bayesian) baselines the Bayesian
functional-response models are compared against:
1. Weighted averaging (WA) with inverse or classical deshrinking
2. Modern analog technique (MAT) with squared-chord distances
3. Maximum likelihood response curves (MLRC) with Gaussian logit responses

All three follow the scikit-learn estimator API with ``fit(counts, covariate)``
and ``predict(counts)``. Sample-specific prediction errors come from
``bootstrap_predict``.
"""

import numpy as np
from scipy.optimize import minimize_scalar
from sklearn.base import BaseEstimator, RegressorMixin, clone
from sklearn.linear_model import LinearRegression, LogisticRegression
from sklearn.utils.validation import check_is_fitted
from tqdm.auto import tqdm
from typing import Dict, Optional


def _to_proportions(counts: np.ndarray) -> np.ndarray:
    counts = np.asarray(counts, dtype=float)
    if counts.ndim != 2:
        raise ValueError(f"Counts must be a 2-D array (samples x species), got shape {counts.shape}")
    totals = counts.sum(axis=1, keepdims=True)
    if np.any(totals <= 0):
        raise ValueError("Every sample must have at least one count")
    return counts / totals


class WeightedAveraging(BaseEstimator, RegressorMixin):
    """
    Weighted-averaging transfer function.

    Species optima are abundance-weighted means of the covariate; a sample's
    initial estimate is the abundance-weighted mean of the optima of the species it
    contains. Averaging twice shrinks estimates toward the mean, which is undone by
    a linear deshrinking regression.
    """

    def __init__(self, deshrinking: str = 'inverse', tolerance_weighted: bool = False):
        """
        Args:
            deshrinking: 'inverse' (regress initial estimates on the covariate) or
                'classical' (regress the covariate on the initial estimates)
            tolerance_weighted: Down-weight species with broad tolerances (WA-Tol)
        """
        self.deshrinking = deshrinking
        self.tolerance_weighted = tolerance_weighted

    def fit(self, counts: np.ndarray, covariate: np.ndarray) -> 'WeightedAveraging':
        if self.deshrinking not in ('inverse', 'classical'):
            raise ValueError(f"Unknown deshrinking: {self.deshrinking}. Expected 'inverse' or 'classical'")

        P = _to_proportions(counts)
        x = np.asarray(covariate, dtype=float)
        self.n_features_in_ = P.shape[1]

        totals = P.sum(axis=0)
        self.species_mask_ = totals > 0
        P = P[:, self.species_mask_]
        totals = totals[self.species_mask_]

        self.optima_ = (P * x[:, None]).sum(axis=0) / totals

        if self.tolerance_weighted:
            tolerances = np.sqrt((P * (x[:, None] - self.optima_) ** 2).sum(axis=0) / totals)
            positive = tolerances[tolerances > 0]
            fallback = positive.mean() if positive.size else 1.0
            self.tolerances_ = np.where(tolerances > 0, tolerances, fallback)
        else:
            self.tolerances_ = np.ones_like(self.optima_)

        self.x_mean_ = float(np.mean(x))

        initial = self._initial_estimates(P)
        regression = LinearRegression()
        if self.deshrinking == 'inverse':
            regression.fit(x.reshape(-1, 1), initial)
        else:
            regression.fit(initial.reshape(-1, 1), x)
        self.deshrink_intercept_ = float(regression.intercept_)
        self.deshrink_slope_ = float(regression.coef_[0])
        return self

    def _initial_estimates(self, P: np.ndarray) -> np.ndarray:
        weights = P / self.tolerances_ ** 2
        totals = weights.sum(axis=1)
        estimates = np.full(P.shape[0], self.x_mean_)
        present = totals > 0
        estimates[present] = (weights[present] * self.optima_).sum(axis=1) / totals[present]
        return estimates

    def predict(self, counts: np.ndarray) -> np.ndarray:
        check_is_fitted(self, 'optima_')
        P = _to_proportions(counts)[:, self.species_mask_]
        initial = self._initial_estimates(P)
        if self.deshrinking == 'inverse':
            return (initial - self.deshrink_intercept_) / self.deshrink_slope_
        return self.deshrink_intercept_ + self.deshrink_slope_ * initial


class ModernAnalogTechnique(BaseEstimator, RegressorMixin):
    """
    Modern analog technique.

    The prediction for a sample is the (optionally inverse-distance weighted) mean
    covariate of its ``k`` closest training samples under squared-chord distance.
    """

    def __init__(self, k: int = 5, weighted: bool = False):
        self.k = k
        self.weighted = weighted

    def fit(self, counts: np.ndarray, covariate: np.ndarray) -> 'ModernAnalogTechnique':
        if self.k < 1:
            raise ValueError(f"k must be at least 1, got {self.k}")
        self.root_proportions_ = np.sqrt(_to_proportions(counts))
        self.covariate_ = np.asarray(covariate, dtype=float)
        self.n_features_in_ = self.root_proportions_.shape[1]
        return self

    def distances(self, counts: np.ndarray) -> np.ndarray:
        """Squared-chord distances between ``counts`` and the training samples."""
        check_is_fitted(self, 'root_proportions_')
        root = np.sqrt(_to_proportions(counts))
        # Rows of square-root proportions have unit norm
        return np.clip(2.0 - 2.0 * root @ self.root_proportions_.T, 0.0, None)

    def predict(self, counts: np.ndarray) -> np.ndarray:
        D = self.distances(counts)
        k = min(self.k, D.shape[1])
        nearest = np.argsort(D, axis=1)[:, :k]
        analogs = self.covariate_[nearest]

        if not self.weighted:
            return analogs.mean(axis=1)

        weights = 1.0 / (np.take_along_axis(D, nearest, axis=1) + 1e-8)
        return (weights * analogs).sum(axis=1) / weights.sum(axis=1)


class MaximumLikelihoodResponseCurves(BaseEstimator, RegressorMixin):
    """
    Maximum likelihood response curves.

    Each species' proportion is modeled with a Gaussian logit response,
    logit p_j(x) = b0_j + b1_j z + b2_j z^2 with z the standardized covariate, fit
    as a (nearly unpenalized) weighted logistic regression on the 0/1 expansion of
    the proportions. A sample is reconstructed by maximizing the summed binomial
    log-likelihood over the padded training range.
    """

    def __init__(self, C: float = 1e4, max_iter: int = 1000, range_padding: float = 0.1, n_grid: int = 200):
        self.C = C
        self.max_iter = max_iter
        self.range_padding = range_padding
        self.n_grid = n_grid

    def fit(self, counts: np.ndarray, covariate: np.ndarray) -> 'MaximumLikelihoodResponseCurves':
        P = _to_proportions(counts)
        x = np.asarray(covariate, dtype=float)
        n, d = P.shape

        self.x_mean_ = float(np.mean(x))
        self.x_scale_ = float(np.std(x)) or 1.0
        z = (x - self.x_mean_) / self.x_scale_
        features = np.column_stack([z, z ** 2])
        stacked = np.vstack([features, features])
        labels = np.concatenate([np.ones(n), np.zeros(n)])

        self.species_mask_ = P.sum(axis=0) > 0
        self.coef_ = np.zeros((d, 3))
        for j in np.flatnonzero(self.species_mask_):
            weights = np.concatenate([P[:, j], 1.0 - P[:, j]])
            regression = LogisticRegression(C=self.C, max_iter=self.max_iter)
            regression.fit(stacked, labels, sample_weight=weights)
            self.coef_[j] = [regression.intercept_[0], regression.coef_[0, 0], regression.coef_[0, 1]]

        pad = self.range_padding * (x.max() - x.min())
        self.bounds_ = (float(x.min() - pad), float(x.max() + pad))
        self.n_features_in_ = d
        return self

    def response(self, x: np.ndarray) -> np.ndarray:
        """Fitted species proportions at covariate values ``x``, shape (n, d)."""
        check_is_fitted(self, 'coef_')
        z = (np.atleast_1d(np.asarray(x, dtype=float)) - self.x_mean_) / self.x_scale_
        logits = self.coef_[:, 0] + self.coef_[:, 1] * z[:, None] + self.coef_[:, 2] * z[:, None] ** 2
        return 1.0 / (1.0 + np.exp(-logits))

    def _log_likelihood(self, x: np.ndarray, p: np.ndarray) -> np.ndarray:
        z = (np.atleast_1d(x) - self.x_mean_) / self.x_scale_
        coef = self.coef_[self.species_mask_]
        logits = coef[:, 0] + coef[:, 1] * z[:, None] + coef[:, 2] * z[:, None] ** 2
        p = p[self.species_mask_]
        return (-p * np.logaddexp(0.0, -logits) - (1.0 - p) * np.logaddexp(0.0, logits)).sum(axis=1)

    def predict(self, counts: np.ndarray) -> np.ndarray:
        check_is_fitted(self, 'coef_')
        P = _to_proportions(counts)
        grid = np.linspace(self.bounds_[0], self.bounds_[1], self.n_grid)
        step = grid[1] - grid[0]

        predictions = np.empty(P.shape[0])
        for i, p in enumerate(P):
            # Coarse grid search, then refine within the neighbouring grid cells
            best = grid[np.argmax(self._log_likelihood(grid, p))]
            lower = max(self.bounds_[0], best - step)
            upper = min(self.bounds_[1], best + step)
            result = minimize_scalar(
                lambda value: -self._log_likelihood(np.array([value]), p)[0],
                bounds=(lower, upper),
                method='bounded'
            )
            predictions[i] = result.x
        return predictions


TRANSFER_FUNCTIONS = {
    'WA': WeightedAveraging,
    'MAT': ModernAnalogTechnique,
    'MLRC': MaximumLikelihoodResponseCurves
}


def bootstrap_predict(
    estimator: BaseEstimator,
    counts_train: np.ndarray,
    X_train: np.ndarray,
    counts_test: np.ndarray,
    n_boot: int = 100,
    random_state: Optional[int] = None,
    verbose: bool = False
) -> Dict[str, np.ndarray]:
    """
    Predictions with bootstrap sample-specific standard errors.

    The standard error of prediction combines the spread of the bootstrap
    predictions for each test sample (s1) with the out-of-bag root mean squared
    error of prediction over the training set (s2): sqrt(s1^2 + s2^2).

    Args:
        estimator: Unfitted transfer-function estimator
        counts_train: Training counts (n x d)
        X_train: Training covariate (n,)
        counts_test: Test counts (m x d)
        n_boot: Number of bootstrap resamples
        random_state: Seed for the resampling
        verbose: Show a progress bar

    Returns:
        Dictionary with ``mean`` (full-data prediction), ``boot_mean``, ``sd`` and ``rmsep``
    """
    counts_train = np.asarray(counts_train, dtype=float)
    counts_test = np.asarray(counts_test, dtype=float)
    X_train = np.asarray(X_train, dtype=float)
    if n_boot < 2:
        raise ValueError("n_boot must be at least 2")

    rng = np.random.default_rng(random_state)
    n = len(X_train)

    boot_predictions = np.empty((n_boot, counts_test.shape[0]))
    oob_sum = np.zeros(n)
    oob_count = np.zeros(n)

    iterations = range(n_boot)
    if verbose:
        iterations = tqdm(iterations, desc=f"Bootstrap {estimator.__class__.__name__}")

    for b in iterations:
        index = rng.integers(0, n, n)
        out_of_bag = np.setdiff1d(np.arange(n), index)

        fitted = clone(estimator).fit(counts_train[index], X_train[index])
        boot_predictions[b] = fitted.predict(counts_test)

        if out_of_bag.size > 0:
            oob_sum[out_of_bag] += fitted.predict(counts_train[out_of_bag])
            oob_count[out_of_bag] += 1

    full = clone(estimator).fit(counts_train, X_train)

    has_oob = oob_count > 0
    oob_mean = oob_sum[has_oob] / oob_count[has_oob]
    rmsep = float(np.sqrt(np.mean((oob_mean - X_train[has_oob]) ** 2))) if has_oob.any() else 0.0
    s1 = boot_predictions.std(axis=0, ddof=1)

    return {
        'mean': full.predict(counts_test),
        'boot_mean': boot_predictions.mean(axis=0),
        'sd': np.sqrt(s1 ** 2 + rmsep ** 2),
        'rmsep': np.array(rmsep)
    }
