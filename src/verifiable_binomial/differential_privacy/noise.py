"""Curator-side bit sampling, biased bit ranges and XOR noise construction."""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

import numpy as np
from numpy.random import Generator, default_rng
from numpy.typing import NDArray

from verifiable_binomial.exceptions import InvalidParameter, LengthMismatch

BitVector = NDArray[np.uint8]
RangeMatrix = NDArray[np.uint8]


class SamplingPolicy(str, Enum):
    """How the curator's private bits are drawn."""

    UNIFORM = "uniform"
    MANUAL = "manual"
    WEIGHTED = "weighted"


def as_bit_vector(bits: Sequence[int] | NDArray, *, name: str = "bits") -> BitVector:
    """Copy ``bits`` into a uint8 vector, rejecting anything but 0 and 1.

    Raises
    ------
        InvalidParameter: If the input is not one-dimensional or holds values
            other than 0 and 1.
    """
    arr = np.asarray(bits)
    if arr.ndim != 1:
        msg = f"{name} must be one-dimensional, got shape {arr.shape}"
        raise InvalidParameter(msg)
    if arr.size and not np.isin(arr, (0, 1)).all():
        msg = f"{name} must only contain 0 and 1"
        raise InvalidParameter(msg)
    return arr.astype(np.uint8, copy=True)


def sample_bits(
    n: int,
    policy: SamplingPolicy | str = SamplingPolicy.UNIFORM,
    p: float | None = None,
    rng: Generator | None = None,
) -> BitVector:
    """Draw the curator's private bit vector.

    Args
    ------
        n (int): Number of bits, > 0.
        policy (SamplingPolicy | str): "uniform" draws Bernoulli(0.5) bits,
            "manual" returns zeros for hand editing, "weighted" draws
            Bernoulli(p) bits.
        p (float | None): Probability of a one, required by "weighted".
        rng (Generator | None): Source of randomness. Defaults to a fresh
            ``default_rng()``.

    Returns
    -------
        BitVector: uint8 vector of length n.
    """
    if n <= 0:
        msg = f"n must be > 0, got {n}"
        raise InvalidParameter(msg)
    try:
        policy = SamplingPolicy(policy)
    except ValueError as exc:
        msg = f"unknown sampling policy {policy!r}"
        raise InvalidParameter(msg) from exc

    if policy is SamplingPolicy.MANUAL:
        return np.zeros(n, dtype=np.uint8)

    if policy is SamplingPolicy.WEIGHTED:
        if p is None or not (0.0 <= p <= 1.0):
            msg = f"weighted sampling needs p in [0,1], got {p!r}"
            raise InvalidParameter(msg)
    else:
        p = 0.5

    rng = rng or default_rng()
    return (rng.random(n) < p).astype(np.uint8)


def paint_range(bits: BitVector, start: int, end: int, value: int) -> BitVector:
    """Set every bit in the closed range [start, end] to ``value``.

    The endpoints may be given in either order. A new vector is returned and
    the input is left untouched, so repeating the same paint is a no-op.

    Raises
    ------
        InvalidParameter: If an index falls outside the vector or value is
            not 0 or 1.
    """
    if value not in (0, 1):
        msg = f"value must be 0 or 1, got {value!r}"
        raise InvalidParameter(msg)
    lo, hi = sorted((start, end))
    if lo < 0 or hi >= len(bits):
        msg = f"range [{start}, {end}] outside vector of length {len(bits)}"
        raise InvalidParameter(msg)

    painted = np.array(bits, dtype=np.uint8, copy=True)
    painted[lo : hi + 1] = value
    return painted


def combine_bits(private_bits: BitVector, public_bits: BitVector) -> BitVector:
    """Element-wise XOR of the private and public bit vectors.

    Raises
    ------
        LengthMismatch: If the two vectors differ in length.
    """
    a = np.asarray(private_bits, dtype=np.uint8)
    b = np.asarray(public_bits, dtype=np.uint8)
    if a.shape != b.shape:
        msg = f"cannot XOR vectors of length {a.size} and {b.size}"
        raise LengthMismatch(msg)
    return np.bitwise_xor(a, b)


def as_range_matrix(ranges: Sequence[Sequence[int]] | NDArray, *, name: str = "ranges") -> RangeMatrix:
    """Copy ``ranges`` into a uint8 matrix with one range of bits per row.

    Raises
    ------
        InvalidParameter: If the input is not a non-empty two-dimensional
            array of 0s and 1s.
    """
    arr = np.asarray(ranges)
    if arr.ndim != 2 or 0 in arr.shape:
        msg = f"{name} must be a non-empty two-dimensional array, got shape {arr.shape}"
        raise InvalidParameter(msg)
    if not np.isin(arr, (0, 1)).all():
        msg = f"{name} must only contain 0 and 1"
        raise InvalidParameter(msg)
    return arr.astype(np.uint8, copy=True)


def sample_ranges(n: int, width: int, ones: int, rng: Generator | None = None) -> RangeMatrix:
    """Draw n ranges of ``width`` bits holding exactly ``ones`` ones each.

    Picking one bit uniformly from such a range yields a one with
    probability ones / width, which is how the biased mechanism gets a
    verifiable p other than 1/2.

    Args
    ------
        n (int): Number of ranges, > 0. One noise bit comes from each.
        width (int): Bits per range, > 0.
        ones (int): Ones per range, in [0, width].
        rng (Generator | None): Source of randomness.

    Returns
    -------
        RangeMatrix: uint8 matrix of shape (n, width).
    """
    if n <= 0 or width <= 0:
        msg = f"n and width must be > 0, got n={n}, width={width}"
        raise InvalidParameter(msg)
    if not 0 <= ones <= width:
        msg = f"ones must be in [0, {width}], got {ones}"
        raise InvalidParameter(msg)

    rng = rng or default_rng()
    ranges = np.zeros((n, width), dtype=np.uint8)
    ranges[:, :ones] = 1
    return rng.permuted(ranges, axis=1)
