"""Deterministic stand-ins for the cryptographic collaborators.

Commitments are tracked as exponents relative to two fixed generators, so
Com(m, r) = m * G + r * H mod Q and the homomorphic product becomes a sum.
The scheme is binding enough for exercising the protocol logic and nothing
else: do NOT use it to protect real data.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np
from numpy.random import default_rng
from numpy.typing import NDArray

from verifiable_binomial.commitments.base import CoinFlipCollaborator, CommitmentCollaborator, ScalarRNG

# 2^61 - 1
FAKE_MODULUS = (1 << 61) - 1


def _tag_to_scalar(tag: bytes) -> int:
    return int.from_bytes(hashlib.sha256(tag).digest(), "big") % FAKE_MODULUS or 1


@dataclass(frozen=True)
class FakeBitProof:
    """Opening of a bit commitment, standing in for a zero-knowledge proof."""

    bit: int
    randomness: int


class FakeCommitments(CommitmentCollaborator):
    """Exponent-tracking commitments with seeded randomness.

    Args
    ------
        seed (int): Seed for commitment randomness.
        fail_on (Iterable[str]): Method names that raise ``RuntimeError``,
            used to simulate collaborator outages.
    """

    G = _tag_to_scalar(b"fake-commitments/G")
    H = _tag_to_scalar(b"fake-commitments/H")

    def __init__(self, seed: int = 0, fail_on: Iterable[str] = ()) -> None:
        super().__init__(ScalarRNG(seed))
        self.fail_on = set(fail_on)

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            msg = f"simulated failure in {name}"
            raise RuntimeError(msg)

    @property
    def order(self) -> int:
        return FAKE_MODULUS

    def commit(self, value: int, randomness: int) -> int:
        self._maybe_fail("commit")
        return (value * self.G + randomness * self.H) % FAKE_MODULUS

    def combine(self, commitments: Sequence[int]) -> int:
        self._maybe_fail("combine")
        return sum(commitments) % FAKE_MODULUS

    def xor_update(self, commitment: int, randomness: int, public_bit: int) -> tuple[int, int]:
        self._maybe_fail("xor_update")
        if public_bit == 0:
            return commitment, randomness
        return (self.G - commitment) % FAKE_MODULUS, (-randomness) % FAKE_MODULUS

    def prove_bits(self, bits: Sequence[int], randomness: Sequence[int]) -> list[FakeBitProof]:
        self._maybe_fail("prove_bits")
        return [FakeBitProof(int(b), int(r)) for b, r in zip(bits, randomness)]

    def verify_bit_proofs(self, commitments: Sequence[int], proofs: Sequence[FakeBitProof]) -> bool:
        self._maybe_fail("verify_bit_proofs")
        if len(commitments) != len(proofs):
            return False
        return all(
            pi.bit in (0, 1) and self.commit(pi.bit, pi.randomness) == c
            for c, pi in zip(commitments, proofs)
        )


class SeededCoinFlip(CoinFlipCollaborator):
    """Reproducible public bits drawn from a seeded generator."""

    def __init__(self, seed: int = 0, fail: bool = False) -> None:
        self.rng = default_rng(seed)
        self.fail = fail

    def flip(self, n: int) -> NDArray[np.uint8]:
        if self.fail:
            msg = "simulated coin-flip failure"
            raise RuntimeError(msg)
        return self.rng.integers(0, 2, size=n, dtype=np.uint8)
