"""Morra coin flipping between the curator and the verifier.

For every public bit each party shows zero to five fingers, commits to the
count with a salted SHA-256 hash and sends the commitment. Once both commitments
are in, both parties open. The public bit is the parity of the total, which
is uniform as long as one party picks uniformly.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from verifiable_binomial.commitments.base import CoinFlipCollaborator, ScalarRNG
from verifiable_binomial.exceptions import CollaboratorFailure

logger = logging.getLogger(__name__)

MAX_FINGERS = 5
SALT_BYTES = 16


def hash_commit(fingers: int, salt: bytes) -> bytes:
    return hashlib.sha256(b"morra|" + salt + fingers.to_bytes(1, "big")).digest()


@dataclass(frozen=True)
class MorraOpening:
    fingers: int
    salt: bytes


class MorraParty:
    """One side of the Morra exchange."""

    def __init__(self, name: str, rng: ScalarRNG | None = None) -> None:
        self.name = name
        self.rng = rng or ScalarRNG()
        self._opening: MorraOpening | None = None

    def commit(self) -> bytes:
        fingers = self.rng.randbelow(MAX_FINGERS + 1)
        if self.rng.seed is None:
            salt = secrets.token_bytes(SALT_BYTES)
        else:
            salt = bytes(self.rng.randbelow(256) for _ in range(SALT_BYTES))
        self._opening = MorraOpening(fingers, salt)
        return hash_commit(fingers, salt)

    def open(self) -> MorraOpening:
        if self._opening is None:
            msg = f"{self.name} must commit before opening"
            raise CollaboratorFailure(msg)
        opening, self._opening = self._opening, None
        return opening


def check_opening(commitment: bytes, opening: MorraOpening) -> bool:
    if not 0 <= opening.fingers <= MAX_FINGERS:
        return False
    return hmac.compare_digest(commitment, hash_commit(opening.fingers, opening.salt))


class MorraCoinFlip(CoinFlipCollaborator):
    """Public bits from repeated Morra rounds between two parties."""

    def __init__(self, curator: MorraParty | None = None, verifier: MorraParty | None = None) -> None:
        self.curator = curator or MorraParty("curator")
        self.verifier = verifier or MorraParty("verifier")

    def flip_one(self) -> int:
        c_curator = self.curator.commit()
        c_verifier = self.verifier.commit()
        o_curator = self.curator.open()
        o_verifier = self.verifier.open()
        if not check_opening(c_curator, o_curator):
            msg = f"{self.curator.name} opened a Morra commitment incorrectly"
            raise CollaboratorFailure(msg)
        if not check_opening(c_verifier, o_verifier):
            msg = f"{self.verifier.name} opened a Morra commitment incorrectly"
            raise CollaboratorFailure(msg)
        return (o_curator.fingers + o_verifier.fingers) % 2

    def flip(self, n: int) -> NDArray[np.uint8]:
        logger.debug("Running %d Morra rounds", n)
        return np.fromiter((self.flip_one() for _ in range(n)), dtype=np.uint8, count=n)
