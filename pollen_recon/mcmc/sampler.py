"""
MCMC Chain Runner with Adaptive Metropolis-Hastings Proposals

This module implements the generic machinery shared by the functional-response
models and the inverse predictor:
- AdaptiveProposal: random-walk Metropolis-Hastings proposal with batch-adaptive
  scale and covariance tuning
- MCMCSampler: runs several independent chains (sequentially or in a process pool),
  applies adaptation, thinning and progress reporting, and stores the samples
"""

import os
import numpy as np
import matplotlib.pyplot as plt
from concurrent.futures import ProcessPoolExecutor
from scipy.linalg import cholesky, LinAlgError
from tqdm.auto import tqdm
from typing import Dict, List, Optional, Tuple, Any


class AdaptiveProposal:
    """
    Random-walk proposal with batch-adaptive tuning.

    During adaptation the log scale is moved by +/- min(0.1, 1/sqrt(k)) after every
    batch of ``batch_size`` iterations, depending on whether the batch acceptance
    rate is above or below the target. For multivariate blocks, the proposal
    covariance is blended toward the empirical covariance of the batch.
    """

    def __init__(
        self,
        dim: int,
        batch_size: int = 50,
        target_acceptance: Optional[float] = None,
        initial_scale: float = 0.1
    ):
        """
        Initialize the proposal.

        Args:
            dim: Dimension of the parameter block
            batch_size: Number of iterations between tuning updates
            target_acceptance: Target acceptance rate (0.44 for scalars, 0.234 otherwise)
            initial_scale: Initial proposal standard deviation
        """
        self.dim = dim
        self.batch_size = batch_size
        if target_acceptance is None:
            target_acceptance = 0.44 if dim == 1 else 0.234
        self.target_acceptance = target_acceptance

        self.log_scale = np.log(initial_scale)
        self.covariance = np.eye(dim)
        self.chol = np.eye(dim)

        self._batch = np.zeros((batch_size, dim))
        self._batch_position = 0
        self._batch_accepted = 0
        self.n_batches = 0

        # Acceptance bookkeeping for the post-adaptation phase
        self.n_proposed = 0
        self.n_accepted = 0

    def propose(self, current: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        current = np.asarray(current, dtype=float)
        step = np.exp(self.log_scale) * (self.chol @ rng.standard_normal(self.dim))
        return current + step.reshape(current.shape)

    def update(self, accepted: bool, value: np.ndarray, adapt: bool):
        """
        Record the outcome of a Metropolis-Hastings step.

        Args:
            accepted: Whether the proposal was accepted
            value: Value of the block after the accept/reject decision
            adapt: Whether the sampler is still in the adaptation phase
        """
        if not adapt:
            self.n_proposed += 1
            self.n_accepted += int(accepted)
            return

        self._batch[self._batch_position] = np.ravel(value)
        self._batch_position += 1
        self._batch_accepted += int(accepted)

        if self._batch_position == self.batch_size:
            self._tune()

    def _tune(self):
        self.n_batches += 1
        delta = min(0.1, 1.0 / np.sqrt(self.n_batches))
        rate = self._batch_accepted / self.batch_size

        if rate > self.target_acceptance:
            self.log_scale += delta
        else:
            self.log_scale -= delta

        # Need a few moves in the batch for a usable covariance estimate
        if self.dim > 1 and self._batch_accepted > self.dim:
            batch_cov = np.cov(self._batch, rowvar=False)
            scale = np.mean(np.diag(batch_cov))
            if scale > 0:
                # Covariance is kept at unit average variance; overall size lives in log_scale
                batch_cov = batch_cov / scale + 1e-6 * np.eye(self.dim)
                covariance = (1 - delta) * self.covariance + delta * batch_cov
                try:
                    self.chol = cholesky(covariance, lower=True)
                    self.covariance = covariance
                except LinAlgError:
                    pass

        self._batch_position = 0
        self._batch_accepted = 0

    @property
    def acceptance_rate(self) -> float:
        if self.n_proposed == 0:
            return np.nan
        return self.n_accepted / self.n_proposed


def metropolis_accept(log_ratio: float, rng: np.random.Generator) -> bool:
    """Metropolis-Hastings accept/reject; non-finite ratios are rejected."""
    if not np.isfinite(log_ratio):
        return False
    return bool(np.log(rng.uniform()) < log_ratio)


class MCMCSampler:
    """
    Base class for MCMC samplers run as several independent chains.

    Subclasses implement ``init_state`` and ``update`` and list the names of the
    state entries to store in ``sampled_params``. Adaptive proposals that should
    report acceptance rates are kept in ``state['proposals']`` as a dictionary
    mapping a parameter name to an AdaptiveProposal or a list of them.
    """

    sampled_params: Tuple[str, ...] = ()

    def __init__(
        self,
        n_adapt: int = 500,
        n_mcmc: int = 1000,
        n_thin: int = 1,
        n_chains: int = 4,
        parallel_chains: bool = False,
        progress_every: int = 100,
        progress_directory: Optional[str] = None,
        random_state: int = 42,
        name: str = 'mcmc'
    ):
        self.n_adapt = n_adapt
        self.n_mcmc = n_mcmc
        self.n_thin = n_thin
        self.n_chains = n_chains
        self.parallel_chains = parallel_chains
        self.progress_every = progress_every
        self.progress_directory = progress_directory
        self.random_state = random_state
        self.name = name

        # Storage for samples and diagnostics
        self.samples = {}
        self.acceptance = {}

    def init_state(self, rng: np.random.Generator) -> Dict[str, Any]:
        raise NotImplementedError

    def update(self, state: Dict[str, Any], rng: np.random.Generator, adapt: bool) -> Dict[str, Any]:
        raise NotImplementedError

    def record(self, state: Dict[str, Any]) -> Dict[str, np.ndarray]:
        return {name: np.array(state[name], dtype=float, copy=True) for name in self.sampled_params}

    @property
    def n_keep(self) -> int:
        return self.n_mcmc // self.n_thin

    def run_chains(self, verbose: bool = True):
        """Run all chains and store the samples as arrays of shape (n_chains, n_keep, ...)."""
        seeds = np.random.SeedSequence(self.random_state).spawn(self.n_chains)

        if self.parallel_chains and self.n_chains > 1:
            if verbose:
                print(f"Running {self.n_chains} {self.name} chains in parallel...")
            with ProcessPoolExecutor(max_workers=self.n_chains) as executor:
                futures = [
                    executor.submit(self._run_chain, chain, seed, False)
                    for chain, seed in enumerate(seeds)
                ]
                results = [future.result() for future in futures]
        else:
            results = [self._run_chain(chain, seed, verbose) for chain, seed in enumerate(seeds)]

        self.samples = {
            name: np.stack([result['samples'][name] for result in results], axis=0)
            for name in self.sampled_params
        }
        self.acceptance = {
            name: np.array([result['acceptance'][name] for result in results])
            for name in results[0]['acceptance']
        }
        return self

    def _progress_path(self, chain: int) -> Optional[str]:
        if self.progress_directory is None:
            return None
        os.makedirs(self.progress_directory, exist_ok=True)
        return os.path.join(self.progress_directory, f"{self.name}-chain-{chain + 1}.txt")

    def _write_progress(self, path: Optional[str], message: str):
        if path is None:
            return
        with open(path, 'a') as f:
            f.write(message + "\n")

    def _run_chain(self, chain: int, seed: np.random.SeedSequence, verbose: bool) -> Dict[str, Any]:
        rng = np.random.default_rng(seed)
        progress_path = self._progress_path(chain)
        if progress_path is not None and os.path.exists(progress_path):
            os.remove(progress_path)

        self._write_progress(progress_path, f"Starting MCMC adaptation for chain {chain + 1}")
        state = self.init_state(rng)

        total_iterations = self.n_adapt + self.n_mcmc
        kept = {name: [] for name in self.sampled_params}

        iterations = range(total_iterations)
        if verbose:
            iterations = tqdm(iterations, desc=f"{self.name} chain {chain + 1}/{self.n_chains}")

        for i in iterations:
            adapt = i < self.n_adapt
            state = self.update(state, rng, adapt)

            if i == self.n_adapt:
                self._write_progress(progress_path, f"Starting MCMC fit for chain {chain + 1}")

            # Store samples after adaptation, with thinning
            if not adapt and (i - self.n_adapt + 1) % self.n_thin == 0:
                for name, value in self.record(state).items():
                    kept[name].append(value)

            if (i + 1) % self.progress_every == 0:
                phase = "adaptation" if adapt else "fitting"
                self._write_progress(
                    progress_path,
                    f"MCMC {phase} iteration {i + 1} of {total_iterations} for chain {chain + 1}"
                )

        self._write_progress(progress_path, f"Finished chain {chain + 1}")

        return {
            'samples': {name: np.stack(values, axis=0) for name, values in kept.items()},
            'acceptance': self._chain_acceptance(state)
        }

    def _chain_acceptance(self, state: Dict[str, Any]) -> Dict[str, float]:
        rates = {}
        for name, proposals in state.get('proposals', {}).items():
            if isinstance(proposals, AdaptiveProposal):
                proposals = [proposals]
            rates[name] = float(np.nanmean([p.acceptance_rate for p in proposals]))
        return rates

    def _check_samples(self):
        if not self.samples:
            raise RuntimeError("No samples available. Run MCMC first.")

    def get_posterior_samples(self, flatten: bool = True) -> Dict[str, np.ndarray]:
        """
        Get posterior samples.

        Args:
            flatten: Merge the chain and iteration axes into a single draw axis

        Returns:
            Dictionary of parameter samples
        """
        self._check_samples()
        if not flatten:
            return self.samples
        return {
            name: samples.reshape((-1,) + samples.shape[2:])
            for name, samples in self.samples.items()
        }

    def get_posterior_mean(self) -> Dict[str, np.ndarray]:
        self._check_samples()
        return {name: samples.mean(axis=(0, 1)) for name, samples in self.samples.items()}

    @property
    def n_draws(self) -> int:
        self._check_samples()
        first = next(iter(self.samples.values()))
        return first.shape[0] * first.shape[1]

    def get_draw(self, k: int) -> Dict[str, np.ndarray]:
        """Posterior draw ``k`` of the flattened (chain-major) draw sequence."""
        self._check_samples()
        n_keep = next(iter(self.samples.values())).shape[1]
        chain, iteration = divmod(int(k), n_keep)
        return {name: samples[chain, iteration] for name, samples in self.samples.items()}

    def plot_diagnostics(self, names: Optional[List[str]] = None, figure_path: Optional[str] = None):
        """
        Plot trace plots (one line per chain) and pooled posterior histograms.

        For vector parameters the first element is shown.

        Args:
            names: Parameters to plot (default: all sampled parameters)
            figure_path: Optional path to save the figure
        """
        self._check_samples()
        names = list(names or self.sampled_params)

        fig, axes = plt.subplots(len(names), 2, figsize=(12, 3 * len(names)), squeeze=False)

        for i, name in enumerate(names):
            samples = self.samples[name].reshape(self.samples[name].shape[:2] + (-1,))[..., 0]

            for chain in range(samples.shape[0]):
                axes[i, 0].plot(samples[chain], alpha=0.7, label=f"chain {chain + 1}")
            axes[i, 0].set_title(f"Trace for {name}")
            axes[i, 0].set_xlabel("Iteration")
            axes[i, 0].set_ylabel("Value")
            axes[i, 0].grid(True, alpha=0.3)

            axes[i, 1].hist(samples.ravel(), bins=30, density=True)
            axes[i, 1].set_title(f"Posterior for {name}")
            axes[i, 1].set_xlabel("Value")
            axes[i, 1].set_ylabel("Density")
            axes[i, 1].grid(True, alpha=0.3)

        axes[0, 0].legend(loc='best', fontsize=8)
        fig.tight_layout()

        if figure_path:
            fig.savefig(figure_path, dpi=300, bbox_inches='tight')

        return fig
