"""Collaborator interfaces consumed by the protocol state machine.

The state machine never touches group elements directly. It hands values to
a :class:`CommitmentCollaborator` and a :class:`CoinFlipCollaborator` and
works with the opaque integers they return.
"""

from __future__ import annotations

import random
import secrets
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray


class ScalarRNG:
    """Randomness source for commitment scalars.

    Uses ``secrets`` by default. With a seed it switches to
    ``random.Random(seed)``, which is reproducible but NOT secure.
    """

    def __init__(self, seed: int | None = None) -> None:
        self.seed = seed
        self._rnd = random.Random(seed) if seed is not None else None

    def randbelow(self, n: int) -> int:
        if self._rnd is None:
            return secrets.randbelow(n)
        return self._rnd.randrange(n)


@dataclass(frozen=True)
class CommitmentBatch:
    """Commitments to a vector of values and the randomness that opens them."""

    commitments: tuple[int, ...]
    randomness: tuple[int, ...]

    def __len__(self) -> int:
        return len(self.commitments)


class CommitmentCollaborator(ABC):
    """Additively homomorphic commitment scheme with binary proofs."""

    def __init__(self, rng: ScalarRNG | None = None) -> None:
        self.rng = rng or ScalarRNG()

    @property
    @abstractmethod
    def order(self) -> int:
        """Order of the randomness/message space."""

    @abstractmethod
    def commit(self, value: int, randomness: int) -> int:
        """Com(value, randomness)."""

    @abstractmethod
    def combine(self, commitments: Sequence[int]) -> int:
        """Homomorphic product: a commitment to the sum of the openings."""

    @abstractmethod
    def xor_update(self, commitment: int, randomness: int, public_bit: int) -> tuple[int, int]:
        """Turn Com(b, s) into a commitment to b XOR public_bit.

        Returns the new commitment and the randomness that opens it.
        """

    @abstractmethod
    def prove_bits(self, bits: Sequence[int], randomness: Sequence[int]) -> list[Any]:
        """One proof per commitment that it opens to 0 or 1."""

    @abstractmethod
    def verify_bit_proofs(self, commitments: Sequence[int], proofs: Sequence[Any]) -> bool:
        """True iff every proof is valid for its commitment."""

    def random_scalar(self) -> int:
        return self.rng.randbelow(self.order)

    def commit_values(self, values: Sequence[int] | NDArray[np.uint8]) -> CommitmentBatch:
        """Commit to each value under fresh randomness."""
        randomness = tuple(self.random_scalar() for _ in range(len(values)))
        commitments = tuple(self.commit(int(v), r) for v, r in zip(values, randomness))
        return CommitmentBatch(commitments=commitments, randomness=randomness)

    def verify_range(self, commitments: Sequence[int], ones: int, randomness_sum: int) -> bool:
        """Whether the committed bits of one range add up to ``ones``.

        The prover reveals only the sum of the range's randomness, so the
        check discloses the count and nothing about where the ones sit.
        """
        return self.combine(commitments) == self.commit(ones, randomness_sum)

    def select_from_ranges(self, batch: CommitmentBatch, width: int, indices: Sequence[int]) -> CommitmentBatch:
        """Keep the ``indices[i]``-th commitment of every consecutive range of ``width``."""
        picks = [i * width + int(j) for i, j in enumerate(indices)]
        return CommitmentBatch(
            commitments=tuple(batch.commitments[k] for k in picks),
            randomness=tuple(batch.randomness[k] for k in picks),
        )


class CoinFlipCollaborator(ABC):
    """Two-party exchange producing unbiased public bits."""

    @abstractmethod
    def flip(self, n: int) -> NDArray[np.uint8]:
        """Return n public bits."""

    def choose(self, n: int, width: int, max_rounds: int = 64) -> NDArray[np.int64]:
        """n uniform indices in [0, width), assembled from public bits.

        Each index reads ``ceil(log2(width))`` public bits as a big-endian
        number and is redrawn while it falls outside the range.
        """
        if width == 1:
            return np.zeros(n, dtype=np.int64)
        bits_per_index = (width - 1).bit_length()
        weights = 1 << np.arange(bits_per_index - 1, -1, -1, dtype=np.int64)
        chosen: list[int] = []
        for _ in range(max_rounds):
            missing = n - len(chosen)
            if missing == 0:
                break
            bits = np.asarray(self.flip(missing * bits_per_index), dtype=np.int64)
            values = bits.reshape(missing, bits_per_index) @ weights
            chosen.extend(int(v) for v in values if v < width)
        if len(chosen) < n:
            msg = f"could not draw {n} indices below {width} in {max_rounds} rounds"
            raise RuntimeError(msg)
        return np.asarray(chosen, dtype=np.int64)
