"""Session record and the pure queries derived from it."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from numpy.typing import NDArray

from verifiable_binomial.aggregation import NoisySum
from verifiable_binomial.differential_privacy import BitVector, RangeMatrix, as_bit_vector, as_range_matrix
from verifiable_binomial.exceptions import InvalidParameter
from verifiable_binomial.protocol.steps import Step, VerificationOutcome


def frozen_bits(bits: Sequence[int] | NDArray) -> BitVector:
    """Validated read-only copy of a bit vector."""
    arr = as_bit_vector(bits)
    arr.setflags(write=False)
    return arr


def frozen_ranges(ranges: Sequence[Sequence[int]] | NDArray) -> RangeMatrix:
    """Validated read-only copy of a matrix of bit ranges."""
    arr = as_range_matrix(ranges)
    arr.setflags(write=False)
    return arr


@dataclass
class Session:
    """All protocol state for one curator/verifier run.

    Fields are only ever assigned by :class:`SessionStateMachine`, one step at
    a time, and every bit vector is stored read-only.
    """

    session_id: str
    client_inputs: BitVector
    true_count: int

    epsilon: float | None = None
    delta: float | None = None
    nb: int | None = None

    input_commitments: tuple[int, ...] = ()
    input_randomness: tuple[int, ...] = ()

    private_bits: BitVector | None = None
    bit_commitments: tuple[int, ...] = ()
    bit_randomness: tuple[int, ...] = ()
    bit_proofs: tuple[Any, ...] = ()

    # Biased mode: one row of bits per noise bit, each holding range_ones ones.
    private_ranges: RangeMatrix | None = None
    range_ones: int | None = None
    selection: NDArray[np.int64] | None = None

    public_bits: BitVector | None = None
    noise_bits: BitVector | None = None
    noise_commitments: tuple[int, ...] = ()
    noise_randomness: tuple[int, ...] = ()
    noise_overwritten: bool = False

    noisy_sum: NoisySum | None = None
    z: int | None = None
    yz_commitment: int | None = None
    outcome: VerificationOutcome | None = None

    current_step: Step = Step.COMMIT_INPUTS
    completed_steps: set[Step] = field(default_factory=lambda: {Step.INPUT})

    @classmethod
    def create(cls, client_inputs: Sequence[int] | NDArray, session_id: str | None = None) -> Session:
        """Start a session from the curator's dataset. Completes the Input step."""
        inputs = frozen_bits(client_inputs)
        if inputs.size == 0:
            msg = "client inputs must not be empty"
            raise InvalidParameter(msg)
        return cls(
            session_id=session_id or str(uuid.uuid4()),
            client_inputs=inputs,
            true_count=int(np.sum(inputs, dtype=np.int64)),
        )


def inputs_committed(session: Session) -> bool:
    return Step.COMMIT_INPUTS in session.completed_steps


def bits_committed(session: Session) -> bool:
    return Step.COMMIT_BITS in session.completed_steps


def yz_committed(session: Session) -> bool:
    return Step.COMMIT_YZ in session.completed_steps


def privacy_params_set(session: Session) -> bool:
    return Step.SET_PRIVACY_PARAMS in session.completed_steps


def bits_editable(session: Session) -> bool:
    """Private bits can be resampled, painted or replaced."""
    return session.private_bits is not None and not bits_committed(session)


def tamper_available(session: Session) -> bool:
    """The one-shot noise overwrite is still open."""
    return (
        Step.XOR_BITS in session.completed_steps
        and Step.COMPUTE_SUM not in session.completed_steps
        and not session.noise_overwritten
    )


def is_terminal(session: Session) -> bool:
    return session.outcome is not None


def range_mode(session: Session) -> bool:
    """Noise bits are drawn from committed ranges instead of XORed coin flips."""
    return session.private_ranges is not None


def noise_bias(session: Session) -> float:
    """Probability that a single noise bit is one."""
    if range_mode(session):
        return session.range_ones / session.private_ranges.shape[1]
    return 0.5
