"""
MCMC Package for the Compositional Functional-Response Models

This package provides the sampling machinery used by the models:
- sampler.py: chain runner with adaptive Metropolis-Hastings proposals
- elliptical_slice.py: elliptical slice samplers for Gaussian-prior latents
- diagnostics.py: Gelman-Rubin R-hat, effective sample size and summaries
"""

from .sampler import AdaptiveProposal, MCMCSampler, metropolis_accept
from .elliptical_slice import elliptical_slice, elliptical_slice_vector
from .diagnostics import gelman_rubin, effective_sample_size, convergence_table

__all__ = [
    'AdaptiveProposal',
    'MCMCSampler',
    'metropolis_accept',
    'elliptical_slice',
    'elliptical_slice_vector',
    'gelman_rubin',
    'effective_sample_size',
    'convergence_table'
]
