"""Homomorphic consistency check closing the protocol."""

from __future__ import annotations

import logging

from verifiable_binomial.commitments import CommitmentCollaborator
from verifiable_binomial.exceptions import ProtocolViolation
from verifiable_binomial.protocol.session import Session, yz_committed
from verifiable_binomial.protocol.steps import VerificationOutcome

logger = logging.getLogger(__name__)


class ConsistencyVerifier:
    """Accepts a session iff the committed pieces add up to Com(y, z).

    LHS is the homomorphic product of every input commitment and every
    (XOR-updated) noise commitment, which opens to true_count + sum(noise).
    RHS is the combined commitment Com(y + floor(offset), z), where offset is
    the expected noise sum (nb / 2 for coin-flip noise).
    """

    def __init__(self, commitments: CommitmentCollaborator) -> None:
        self.commitments = commitments

    @staticmethod
    def _require_committed(session: Session) -> None:
        if not yz_committed(session) or session.noisy_sum is None or session.z is None:
            msg = f"session {session.session_id}: y and z are not committed yet"
            raise ProtocolViolation(msg)

    def lhs(self, session: Session) -> int:
        self._require_committed(session)
        return self.commitments.combine([*session.input_commitments, *session.noise_commitments])

    def rhs(self, session: Session) -> int:
        self._require_committed(session)
        return self.commitments.commit(session.noisy_sum.committed_value, session.z)

    def verify(self, session: Session) -> VerificationOutcome:
        lhs = self.lhs(session)
        rhs = self.rhs(session)
        if lhs == rhs and rhs == session.yz_commitment:
            return VerificationOutcome.ACCEPTED
        logger.warning("Session %s: consistency check failed, tampering detected", session.session_id)
        return VerificationOutcome.REJECTED
