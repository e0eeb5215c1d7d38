"""Protocol steps, their ordering and the single transition predicate."""

from __future__ import annotations

from collections.abc import Set
from enum import Enum, IntEnum


class Step(IntEnum):
    """Protocol steps in the only order they may first be completed."""

    INPUT = 0
    COMMIT_INPUTS = 1
    SET_PRIVACY_PARAMS = 2
    SAMPLE_BITS = 3
    COMMIT_BITS = 4
    PROVE_BINARY = 5
    COIN_FLIP = 6
    XOR_BITS = 7
    COMPUTE_SUM = 8
    COMPUTE_Z = 9
    COMMIT_YZ = 10
    VERIFY = 11


class VerificationOutcome(str, Enum):
    """Terminal result of the Verify step."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"


TRANSITIONS: dict[Step, Step | None] = {
    Step.INPUT: Step.COMMIT_INPUTS,
    Step.COMMIT_INPUTS: Step.SET_PRIVACY_PARAMS,
    Step.SET_PRIVACY_PARAMS: Step.SAMPLE_BITS,
    Step.SAMPLE_BITS: Step.COMMIT_BITS,
    Step.COMMIT_BITS: Step.PROVE_BINARY,
    Step.PROVE_BINARY: Step.COIN_FLIP,
    Step.COIN_FLIP: Step.XOR_BITS,
    Step.XOR_BITS: Step.COMPUTE_SUM,
    Step.COMPUTE_SUM: Step.COMPUTE_Z,
    Step.COMPUTE_Z: Step.COMMIT_YZ,
    Step.COMMIT_YZ: Step.VERIFY,
    Step.VERIFY: None,
}

PREDECESSORS: dict[Step, Step] = {nxt: cur for cur, nxt in TRANSITIONS.items() if nxt is not None}

# Completed steps that may be run again, and the step whose completion closes them.
# None means the step stays open for the rest of the session.
REENTRY_CLOSED_BY: dict[Step, Step | None] = {
    Step.SET_PRIVACY_PARAMS: Step.COMMIT_BITS,
    Step.SAMPLE_BITS: Step.COMMIT_BITS,
    Step.VERIFY: None,
}


def advance(current: Step, target: Step, completed: Set[Step]) -> bool:
    """Whether a machine positioned at ``current`` may enter ``target``.

    Steps can be revisited but never skipped: the machine must have reached
    at least the predecessor of ``target`` and that predecessor must be
    completed. Re-running an already completed step is additionally allowed
    only for the steps listed in ``REENTRY_CLOSED_BY``, until their closing
    step completes.
    """
    prev = PREDECESSORS.get(target)
    if prev is None:
        return target not in completed
    if current < prev or prev not in completed:
        return False
    if target not in completed:
        return True
    if target not in REENTRY_CLOSED_BY:
        return False
    closer = REENTRY_CLOSED_BY[target]
    return closer is None or closer not in completed


def next_step(step: Step) -> Step:
    """Step the machine points at once ``step`` completes."""
    return TRANSITIONS[step] or step
