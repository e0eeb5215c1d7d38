"""Protocol orchestration: step ordering, session state, verification and the session service."""

from .service import VbmService, commitments_factory_for
from .session import (
    Session,
    bits_committed,
    bits_editable,
    inputs_committed,
    is_terminal,
    noise_bias,
    privacy_params_set,
    range_mode,
    tamper_available,
    yz_committed,
)
from .state_machine import SessionStateMachine
from .steps import REENTRY_CLOSED_BY, TRANSITIONS, Step, VerificationOutcome, advance
from .verifier import ConsistencyVerifier

__all__ = [
    "REENTRY_CLOSED_BY",
    "TRANSITIONS",
    "ConsistencyVerifier",
    "Session",
    "SessionStateMachine",
    "Step",
    "VbmService",
    "VerificationOutcome",
    "advance",
    "bits_committed",
    "bits_editable",
    "commitments_factory_for",
    "inputs_committed",
    "is_terminal",
    "noise_bias",
    "privacy_params_set",
    "range_mode",
    "tamper_available",
    "yz_committed",
]
