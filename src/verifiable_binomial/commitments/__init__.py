"""Commitment, proof and coin-flip collaborators.

Includes:
- Abstract interfaces used by the protocol state machine.
- Pedersen commitments with Sigma-OR bit proofs.
- Morra coin flipping.
- Deterministic fakes for testing the orchestration in isolation.
"""

from .base import CoinFlipCollaborator, CommitmentBatch, CommitmentCollaborator, ScalarRNG
from .coinflip import MorraCoinFlip, MorraParty
from .fake import FakeBitProof, FakeCommitments, SeededCoinFlip
from .pedersen import BitProof, GroupParameters, PedersenCommitments

__all__ = [
    "BitProof",
    "CoinFlipCollaborator",
    "CommitmentBatch",
    "CommitmentCollaborator",
    "FakeBitProof",
    "FakeCommitments",
    "GroupParameters",
    "MorraCoinFlip",
    "MorraParty",
    "PedersenCommitments",
    "ScalarRNG",
    "SeededCoinFlip",
]
