"""Noisy-sum and auxiliary-randomness computations."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from fractions import Fraction

import numpy as np
from numpy.typing import NDArray

from verifiable_binomial.exceptions import LengthMismatch, PreconditionNotMet


@dataclass(frozen=True)
class NoisySum:
    """Result of the binomial mechanism, with every intermediate kept for audit.

    Attributes
    ----------
        true_count: int
            Sum of the client inputs.
        noise_sum: int
            Number of ones in the noise vector.
        offset: float | Fraction
            Expected noise sum, nb / 2 for unbiased bits. Not rounded.
        noise: float
            noise_sum - offset.
        y: int
            ceil(true_count + noise), the published result.
    """

    true_count: int
    noise_sum: int
    offset: float | Fraction
    noise: float | Fraction
    y: int

    @property
    def committed_value(self) -> int:
        """Value opened by Com(y, z): y shifted back by floor(offset)."""
        return self.y + math.floor(self.offset)


def compute_noisy_sum(
    true_count: int,
    noise_bits: NDArray[np.uint8],
    nb: int,
    offset: float | Fraction | None = None,
) -> NoisySum:
    r"""Apply the binomial mechanism to the true count.

    Implements
        y = \lceil c + \sum_i v_i - n_b / 2 \rceil

    The ceiling is the only rounding and is applied last. Since c and the
    noise sum are integers, y + floor(offset) always equals c + sum(v).

    Args
    ------
        true_count (int): Sum of the client inputs.
        noise_bits (NDArray[np.uint8]): XOR of private and public bits.
        nb (int): Session noise length.
        offset (float | Fraction | None): Centre subtracted from the noise sum.
            Defaults to nb / 2. Biased noise passes nb * p as an exact Fraction.

    Returns
    -------
        NoisySum: y with its intermediate values.

    Raises
    ------
        PreconditionNotMet: If noise_bits is empty, nb is not positive or
            offset is outside [0, nb].
        LengthMismatch: If len(noise_bits) != nb.
    """
    if nb <= 0:
        msg = f"nb must be > 0, got {nb}"
        raise PreconditionNotMet(msg)
    if noise_bits is None or len(noise_bits) == 0:
        msg = "noise bits are empty"
        raise PreconditionNotMet(msg)
    if len(noise_bits) != nb:
        msg = f"expected {nb} noise bits, got {len(noise_bits)}"
        raise LengthMismatch(msg)
    if offset is None:
        offset = nb / 2
    elif not 0 <= offset <= nb:
        msg = f"offset must be in [0, {nb}], got {offset}"
        raise PreconditionNotMet(msg)

    noise_sum = int(np.sum(noise_bits, dtype=np.int64))
    noise = noise_sum - offset
    y = math.ceil(true_count + noise)
    return NoisySum(true_count=int(true_count), noise_sum=noise_sum, offset=offset, noise=noise, y=y)


def compute_z(input_randomness: Sequence[int], noise_randomness: Sequence[int]) -> int:
    """Sum of the randomness behind the input and noise-bit commitments.

    Together with y this opens the combined commitment Com(y, z).
    """
    return sum(int(r) for r in input_randomness) + sum(int(s) for s in noise_randomness)
