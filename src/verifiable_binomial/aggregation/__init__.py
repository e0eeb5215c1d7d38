"""Aggregation engines: the noisy sum y and the auxiliary randomness z."""

from .sums import NoisySum, compute_noisy_sum, compute_z

__all__ = [
    "NoisySum",
    "compute_noisy_sum",
    "compute_z",
]
