"""Differential privacy utilities for the verifiable binomial mechanism.

This module gathers the noise-length calibration and the bit-level noise
construction: private bit sampling, biased bit ranges, range painting and
XOR combination.
"""

from .differential_privacy import (
    binomial_noise_std,
    compute_nb,
)
from .noise import (
    BitVector,
    RangeMatrix,
    SamplingPolicy,
    as_bit_vector,
    as_range_matrix,
    combine_bits,
    paint_range,
    sample_bits,
    sample_ranges,
)

__all__ = [
    # Calibration
    "compute_nb",
    "binomial_noise_std",

    # Curator-side noise
    "BitVector",
    "RangeMatrix",
    "SamplingPolicy",
    "as_bit_vector",
    "as_range_matrix",
    "sample_bits",
    "sample_ranges",
    "paint_range",
    "combine_bits",
]
