"""Utility functions for simulating curator datasets and reporting sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from numpy.random import default_rng

from verifiable_binomial.exceptions import InvalidParameter

# Only import heavy types for type checking
if TYPE_CHECKING:
    from numpy.random import Generator
    from numpy.typing import NDArray

    from verifiable_binomial.aggregation import NoisySum

# Initialize a single random number generator for simulations
_rng = default_rng()


def generate_client_inputs(
    num_clients: int,
    ones: int | None = None,
    rng: Generator | None = None,
) -> NDArray[np.uint8]:
    """
    Simulate the curator's binary dataset.

    Draws a target count uniformly in [0, num_clients] (unless ``ones`` is
    given), then shuffles that many ones among zeros.

    Args
    -----
        num_clients (int): Number of clients, > 0.
        ones (int | None): Exact number of ones, or None for a uniform draw.
        rng (Generator | None): Random generator, defaults to the module one.

    Returns
    -------
        uint8 vector of length num_clients.
    """
    if num_clients <= 0:
        msg = f"num_clients must be > 0, got {num_clients}"
        raise InvalidParameter(msg)
    rng = rng or _rng
    if ones is None:
        ones = int(rng.integers(num_clients + 1))
    if not 0 <= ones <= num_clients:
        msg = f"ones must be in [0, {num_clients}], got {ones}"
        raise InvalidParameter(msg)

    values = np.zeros(num_clients, dtype=np.uint8)
    values[:ones] = 1
    rng.shuffle(values)
    return values


def describe_noisy_sum(result: NoisySum) -> str:
    """One-line audit trail of the binomial mechanism."""
    return (
        f"true={result.true_count} noise_sum={result.noise_sum} "
        f"offset={float(result.offset)} noise={float(result.noise):+} y={result.y}"
    )
