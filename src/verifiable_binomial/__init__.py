"""Verifiable Binomial Mechanism.

A curator publishes a differentially private count of binary inputs and a
verifier checks, through homomorphic commitments, that the count was computed
honestly from committed inputs and fairly generated noise.
"""

from verifiable_binomial.config import Config
from verifiable_binomial.protocol import (
    SessionStateMachine,
    Step,
    VbmService,
    VerificationOutcome,
)

__all__ = [
    "Config",
    "SessionStateMachine",
    "Step",
    "VbmService",
    "VerificationOutcome",
]

__version__ = "0.1.0"
