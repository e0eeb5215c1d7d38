"""Utility functions for dataset simulation and result reporting."""

from .utils import describe_noisy_sum, generate_client_inputs

__all__ = [
    "describe_noisy_sum",
    "generate_client_inputs",
]
