"""Session-keyed service exposing the protocol operations.

The service owns the session store. Each session carries its own lock so at
most one operation mutates it at a time; the store lock only protects the id
map and is never held while a protocol step runs.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field

from numpy.typing import NDArray

from verifiable_binomial.aggregation import NoisySum
from verifiable_binomial.commitments import (
    CoinFlipCollaborator,
    CommitmentCollaborator,
    FakeCommitments,
    GroupParameters,
    MorraCoinFlip,
    PedersenCommitments,
)
from verifiable_binomial.config import CommitmentConfig, Config
from verifiable_binomial.differential_privacy import BitVector, RangeMatrix, SamplingPolicy
from verifiable_binomial.exceptions import SessionNotFound
from verifiable_binomial.protocol.state_machine import SessionStateMachine
from verifiable_binomial.protocol.steps import VerificationOutcome

logger = logging.getLogger(__name__)


def commitments_factory_for(cfg: CommitmentConfig) -> Callable[[], CommitmentCollaborator]:
    """Factory building a fresh commitment collaborator per session.

    The Pedersen group is derived once and shared, since it is immutable.
    """
    if cfg.scheme == "fake":
        return FakeCommitments
    group = GroupParameters.named(cfg.group, cfg.generator_seed)
    return lambda: PedersenCommitments(group)


@dataclass
class _Entry:
    machine: SessionStateMachine
    last_used: float
    lock: threading.Lock = field(default_factory=threading.Lock)


class VbmService:
    """In-process session store for verifiable binomial sessions.

    Args
    ------
        config (Config | None): Service configuration.
        commitments_factory (Callable | None): Builds the commitment
            collaborator for a new session. Defaults to the configured scheme.
        coin_flip_factory (Callable | None): Builds the coin-flip
            collaborator for a new session. Defaults to Morra.
        clock (Callable[[], float]): Monotonic clock used for expiry.
    """

    def __init__(
        self,
        config: Config | None = None,
        commitments_factory: Callable[[], CommitmentCollaborator] | None = None,
        coin_flip_factory: Callable[[], CoinFlipCollaborator] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or Config()
        self.commitments_factory = commitments_factory or commitments_factory_for(self.config.commitment)
        self.coin_flip_factory = coin_flip_factory or MorraCoinFlip
        self.clock = clock
        self._sessions: dict[str, _Entry] = {}
        self._store_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Store management
    # ------------------------------------------------------------------

    def _new_machine(self, inputs: Sequence[int] | NDArray, session_id: str | None = None) -> SessionStateMachine:
        return SessionStateMachine.start(
            inputs,
            self.commitments_factory(),
            self.coin_flip_factory(),
            session_id=session_id,
            sampling=self.config.sampling,
        )

    def _expired(self, entry: _Entry, now: float) -> bool:
        return now - entry.last_used > self.config.session.ttl_seconds

    def _entry(self, session_id: str) -> _Entry:
        now = self.clock()
        with self._store_lock:
            entry = self._sessions.get(session_id)
            if entry is not None and self._expired(entry, now):
                del self._sessions[session_id]
                logger.info("Session %s: expired", session_id)
                entry = None
        if entry is None:
            msg = f"unknown or expired session {session_id!r}"
            raise SessionNotFound(msg)
        return entry

    @contextmanager
    def _session(self, session_id: str) -> Iterator[SessionStateMachine]:
        entry = self._entry(session_id)
        with entry.lock:
            # A reset or close may have replaced the entry while we waited.
            with self._store_lock:
                current = self._sessions.get(session_id)
            if current is not entry:
                msg = f"session {session_id!r} was reset or closed while waiting"
                raise SessionNotFound(msg)
            try:
                yield entry.machine
            finally:
                entry.last_used = self.clock()

    def new_session(self, inputs: Sequence[int] | NDArray) -> str:
        """Create a session for the curator's inputs and return its id."""
        machine = self._new_machine(inputs)
        with self._store_lock:
            self._sessions[machine.session_id] = _Entry(machine, self.clock())
        return machine.session_id

    def reset_session(self, session_id: str) -> None:
        """Start over with the same inputs under the same id."""
        with self._session(session_id) as machine:
            fresh = self._new_machine(machine.session.client_inputs, session_id=session_id)
            with self._store_lock:
                self._sessions[session_id] = _Entry(fresh, self.clock())
        logger.info("Session %s: reset", session_id)

    def close_session(self, session_id: str) -> None:
        with self._session(session_id), self._store_lock:
            self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        """Drop every expired session, returning how many were removed."""
        now = self.clock()
        with self._store_lock:
            stale = [sid for sid, entry in self._sessions.items() if self._expired(entry, now)]
            for sid in stale:
                del self._sessions[sid]
        return len(stale)

    def __len__(self) -> int:
        with self._store_lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._store_lock:
            return session_id in self._sessions

    # ------------------------------------------------------------------
    # Protocol operations
    # ------------------------------------------------------------------

    def commit_inputs(self, session_id: str) -> tuple[int, ...]:
        with self._session(session_id) as machine:
            return machine.commit_inputs()

    def set_privacy_params(self, session_id: str, epsilon: float, delta: float) -> int:
        with self._session(session_id) as machine:
            return machine.set_privacy_params(epsilon, delta)

    def sample_private_bits(
        self, session_id: str, policy: SamplingPolicy | str | None = None, p: float | None = None
    ) -> BitVector:
        with self._session(session_id) as machine:
            return machine.sample_private_bits(policy, p)

    def paint_private_bits(self, session_id: str, start: int, end: int, value: int) -> BitVector:
        with self._session(session_id) as machine:
            return machine.paint_private_bits(start, end, value)

    def submit_private_bits(self, session_id: str, bits: Sequence[int] | NDArray) -> None:
        with self._session(session_id) as machine:
            machine.submit_private_bits(bits)

    def sample_private_ranges(self, session_id: str, ones: int, width: int) -> RangeMatrix:
        with self._session(session_id) as machine:
            return machine.sample_private_ranges(ones, width)

    def submit_private_ranges(self, session_id: str, ranges: Sequence[Sequence[int]] | NDArray, ones: int) -> None:
        with self._session(session_id) as machine:
            machine.submit_private_ranges(ranges, ones)

    def commit_private_bits(self, session_id: str) -> tuple[int, ...]:
        with self._session(session_id) as machine:
            return machine.commit_private_bits()

    def prove_binary(self, session_id: str) -> bool:
        with self._session(session_id) as machine:
            return machine.prove_binary()

    def run_coin_flip(self, session_id: str) -> NDArray:
        """Public bits, or the chosen index of every range in range mode."""
        with self._session(session_id) as machine:
            return machine.run_coin_flip()

    def xor_bits(self, session_id: str) -> BitVector:
        with self._session(session_id) as machine:
            return machine.xor_bits()

    def xor_commitments(self, session_id: str) -> tuple[int, ...]:
        with self._session(session_id) as machine:
            return machine.noise_commitments()

    def overwrite_noise_bits(self, session_id: str, bits: Sequence[int] | NDArray) -> None:
        with self._session(session_id) as machine:
            machine.overwrite_noise_bits(bits)

    def compute_sum(self, session_id: str) -> NoisySum:
        with self._session(session_id) as machine:
            return machine.compute_sum()

    def compute_z(self, session_id: str) -> int:
        with self._session(session_id) as machine:
            return machine.compute_z()

    def commit_yz(self, session_id: str) -> int:
        with self._session(session_id) as machine:
            return machine.commit_yz()

    # ------------------------------------------------------------------
    # Read-only getters
    # ------------------------------------------------------------------

    def get_input_commitments(self, session_id: str) -> tuple[int, ...]:
        with self._session(session_id) as machine:
            return machine.input_commitments()

    def get_bit_commitments(self, session_id: str) -> tuple[int, ...]:
        with self._session(session_id) as machine:
            return machine.bit_commitments()

    def get_private_bits(self, session_id: str) -> BitVector:
        """The curator's private bits. Only the curator side should call this."""
        with self._session(session_id) as machine:
            return machine.private_bits()

    def get_private_ranges(self, session_id: str) -> RangeMatrix:
        """The curator's private ranges. Only the curator side should call this."""
        with self._session(session_id) as machine:
            return machine.private_ranges()

    def get_public_bits(self, session_id: str) -> BitVector:
        with self._session(session_id) as machine:
            return machine.public_bits()

    def get_selection(self, session_id: str) -> NDArray:
        with self._session(session_id) as machine:
            return machine.selection()

    def get_noise_bits(self, session_id: str) -> BitVector:
        with self._session(session_id) as machine:
            return machine.noise_bits()

    def get_z(self, session_id: str) -> int:
        with self._session(session_id) as machine:
            return machine.z()

    def get_lhs(self, session_id: str) -> int:
        with self._session(session_id) as machine:
            return machine.lhs()

    def get_rhs(self, session_id: str) -> int:
        with self._session(session_id) as machine:
            return machine.rhs()

    def verify(self, session_id: str) -> VerificationOutcome:
        with self._session(session_id) as machine:
            return machine.verify()

    def summary(self, session_id: str) -> dict:
        with self._session(session_id) as machine:
            return machine.summary()
