"""Session state machine driving the verifiable binomial mechanism.

Every public method corresponds to one protocol step. A step first checks it
may be entered, then computes its results into locals (calling the
collaborators where needed) and only assigns them to the session once nothing
can fail any more. A failed step therefore leaves the session exactly as it
was and can be retried.

Noise comes from one of two sources, picked at the SampleBits step:

- private bits XORed with jointly flipped public bits (unbiased, p = 1/2);
- committed ranges of bits holding a fixed number of ones, from each of
  which a jointly chosen bit is kept (biased, p = ones / width).

Both run through the same steps, so z, the combined commitment and the
consistency check do not care which one produced the noise.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from fractions import Fraction
from typing import Any, TypeVar

import numpy as np
from numpy.random import Generator, default_rng
from numpy.typing import NDArray

from verifiable_binomial.aggregation import NoisySum, compute_noisy_sum, compute_z
from verifiable_binomial.commitments import CoinFlipCollaborator, CommitmentBatch, CommitmentCollaborator
from verifiable_binomial.config import SamplingConfig
from verifiable_binomial.differential_privacy import (
    BitVector,
    RangeMatrix,
    SamplingPolicy,
    binomial_noise_std,
    combine_bits,
    compute_nb,
    paint_range,
    sample_bits,
    sample_ranges,
)
from verifiable_binomial.exceptions import (
    BinaryProofRejected,
    CollaboratorFailure,
    InvalidParameter,
    LengthMismatch,
    ProtocolViolation,
    RangeSumRejected,
    VbmError,
)
from verifiable_binomial.protocol.session import (
    Session,
    bits_editable,
    frozen_bits,
    frozen_ranges,
    is_terminal,
    noise_bias,
    privacy_params_set,
    range_mode,
    tamper_available,
)
from verifiable_binomial.protocol.steps import Step, VerificationOutcome, advance, next_step
from verifiable_binomial.protocol.verifier import ConsistencyVerifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionStateMachine:
    """Orchestrates one curator/verifier session.

    Args
    ------
        session (Session): State to drive, usually from :meth:`Session.create`.
        commitments (CommitmentCollaborator): Commitment and proof engine.
        coin_flip (CoinFlipCollaborator): Source of public bits.
        sampling (SamplingConfig | None): Default policy for private bits.
    """

    def __init__(
        self,
        session: Session,
        commitments: CommitmentCollaborator,
        coin_flip: CoinFlipCollaborator,
        sampling: SamplingConfig | None = None,
    ) -> None:
        self.session = session
        self.commitments = commitments
        self.coin_flip = coin_flip
        self.sampling = sampling or SamplingConfig()
        self.rng: Generator = default_rng(self.sampling.seed)
        self.verifier = ConsistencyVerifier(commitments)

    @classmethod
    def start(
        cls,
        client_inputs: Sequence[int] | NDArray,
        commitments: CommitmentCollaborator,
        coin_flip: CoinFlipCollaborator,
        *,
        session_id: str | None = None,
        sampling: SamplingConfig | None = None,
    ) -> SessionStateMachine:
        """Create a session from the curator's inputs and wrap it."""
        session = Session.create(client_inputs, session_id=session_id)
        logger.info(
            "Session %s: created with %d client inputs", session.session_id, session.client_inputs.size
        )
        return cls(session, commitments, coin_flip, sampling=sampling)

    # ------------------------------------------------------------------
    # Step bookkeeping
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def current_step(self) -> Step:
        return self.session.current_step

    @property
    def completed_steps(self) -> frozenset[Step]:
        return frozenset(self.session.completed_steps)

    def _enter(self, step: Step) -> None:
        """Fail fast with ProtocolViolation unless ``step`` may run now."""
        s = self.session
        if is_terminal(s) and step is not Step.VERIFY:
            msg = f"session {s.session_id} is {s.outcome.value}; {step.name} is no longer allowed"
            raise ProtocolViolation(msg)
        if not advance(s.current_step, step, s.completed_steps):
            if step in s.completed_steps:
                msg = f"session {s.session_id}: {step.name} has already been completed"
            else:
                msg = (
                    f"session {s.session_id}: cannot run {step.name} "
                    f"while at {s.current_step.name}"
                )
            raise ProtocolViolation(msg)

    def _complete(self, step: Step) -> None:
        s = self.session
        s.completed_steps.add(step)
        s.current_step = max(s.current_step, next_step(step))
        logger.info("Session %s: completed %s", s.session_id, step.name)

    def _call(self, what: str, fn: Callable[..., T], *args: Any) -> T:
        """Invoke a collaborator, turning its failures into CollaboratorFailure."""
        try:
            return fn(*args)
        except VbmError:
            raise
        except Exception as exc:
            logger.warning("Session %s: %s failed: %s", self.session_id, what, exc)
            msg = f"{what} failed: {exc}"
            raise CollaboratorFailure(msg) from exc

    def _require_nb(self) -> int:
        if not privacy_params_set(self.session):
            msg = f"session {self.session_id}: privacy parameters are not set"
            raise ProtocolViolation(msg)
        return self.session.nb

    def _store_private(
        self, bits: BitVector | None, ranges: RangeMatrix | None = None, ones: int | None = None
    ) -> None:
        """Replace whichever noise source was sampled before."""
        s = self.session
        s.private_bits = bits
        s.private_ranges = ranges
        s.range_ones = ones
        self._complete(Step.SAMPLE_BITS)

    def _committed_values(self) -> BitVector:
        """The bits CommitBits commits to, ranges flattened row by row."""
        s = self.session
        if range_mode(s):
            return s.private_ranges.ravel()
        return s.private_bits

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def commit_inputs(self) -> tuple[int, ...]:
        """Commit to every client input."""
        self._enter(Step.COMMIT_INPUTS)
        batch = self._call("input commitment", self.commitments.commit_values, self.session.client_inputs)
        if len(batch) != self.session.client_inputs.size:
            msg = f"expected {self.session.client_inputs.size} input commitments, got {len(batch)}"
            raise CollaboratorFailure(msg)

        self.session.input_commitments = batch.commitments
        self.session.input_randomness = batch.randomness
        self._complete(Step.COMMIT_INPUTS)
        return batch.commitments

    def set_privacy_params(self, epsilon: float, delta: float) -> int:
        """Fix epsilon and delta and derive nb.

        May be repeated until the private bits are committed. Any change to
        epsilon or delta discards the private bits or ranges sampled so far;
        confirming the same pair keeps them.
        """
        self._enter(Step.SET_PRIVACY_PARAMS)
        nb = compute_nb(epsilon, delta)

        s = self.session
        changed = (s.epsilon, s.delta) != (float(epsilon), float(delta))
        if changed and (s.private_bits is not None or s.private_ranges is not None):
            logger.info("Session %s: privacy parameters changed, dropping sampled bits", s.session_id)
            s.private_bits = None
            s.private_ranges = None
            s.range_ones = None
        s.epsilon, s.delta, s.nb = float(epsilon), float(delta), nb
        self._complete(Step.SET_PRIVACY_PARAMS)
        return nb

    def sample_private_bits(self, policy: SamplingPolicy | str | None = None, p: float | None = None) -> BitVector:
        """Draw nb private bits. Repeatable until the bits are committed."""
        self._enter(Step.SAMPLE_BITS)
        nb = self._require_nb()
        policy = policy or self.sampling.policy
        if p is None and policy == SamplingPolicy.WEIGHTED:
            p = self.sampling.p
        bits = frozen_bits(sample_bits(nb, policy, p=p, rng=self.rng))

        self._store_private(bits)
        return bits.copy()

    def paint_private_bits(self, start: int, end: int, value: int) -> BitVector:
        """Set the private bits in [start, end] to ``value`` before committing."""
        self._enter(Step.SAMPLE_BITS)
        if not bits_editable(self.session):
            msg = f"session {self.session_id}: no editable private bits"
            raise ProtocolViolation(msg)
        bits = frozen_bits(paint_range(self.session.private_bits, start, end, value))

        self._store_private(bits)
        return bits.copy()

    def submit_private_bits(self, bits: Sequence[int] | NDArray) -> None:
        """Replace the private bits with a caller-supplied vector of length nb."""
        self._enter(Step.SAMPLE_BITS)
        nb = self._require_nb()
        bits = frozen_bits(bits)
        if bits.size != nb:
            msg = f"expected {nb} private bits, got {bits.size}"
            raise LengthMismatch(msg)

        self._store_private(bits)

    def sample_private_ranges(self, ones: int, width: int) -> RangeMatrix:
        """Draw nb ranges of ``width`` bits with exactly ``ones`` ones each.

        Switches the session to biased noise with p = ones / width.
        Repeatable until the bits are committed.
        """
        self._enter(Step.SAMPLE_BITS)
        nb = self._require_nb()
        ranges = frozen_ranges(sample_ranges(nb, width, ones, rng=self.rng))

        self._store_private(None, ranges, ones)
        return ranges.copy()

    def submit_private_ranges(self, ranges: Sequence[Sequence[int]] | NDArray, ones: int) -> None:
        """Replace the private ranges with caller-supplied rows of bits.

        The number of ones in each row is not checked here: the verifier
        checks it against the commitments in the ProveBinary step.
        """
        self._enter(Step.SAMPLE_BITS)
        nb = self._require_nb()
        ranges = frozen_ranges(ranges)
        if ranges.shape[0] != nb:
            msg = f"expected {nb} ranges, got {ranges.shape[0]}"
            raise LengthMismatch(msg)
        if not 0 <= ones <= ranges.shape[1]:
            msg = f"ones must be in [0, {ranges.shape[1]}], got {ones}"
            raise InvalidParameter(msg)

        self._store_private(None, ranges, int(ones))

    def commit_private_bits(self) -> tuple[int, ...]:
        """Commit to each private bit. Freezes the bits and privacy parameters.

        In range mode every bit of every range is committed, row after row.
        """
        self._enter(Step.COMMIT_BITS)
        s = self.session
        nb = self._require_nb()
        if range_mode(s):
            ready = s.private_ranges.shape[0] == nb
        else:
            ready = s.private_bits is not None and s.private_bits.size == nb
        if not ready:
            msg = f"session {s.session_id}: {nb} private bits must be sampled before committing"
            raise ProtocolViolation(msg)
        values = self._committed_values()
        batch = self._call("private bit commitment", self.commitments.commit_values, values)
        if len(batch) != values.size:
            msg = f"expected {values.size} bit commitments, got {len(batch)}"
            raise CollaboratorFailure(msg)

        s.bit_commitments = batch.commitments
        s.bit_randomness = batch.randomness
        self._complete(Step.COMMIT_BITS)
        return batch.commitments

    def _check_ranges(self) -> None:
        s = self.session
        width = s.private_ranges.shape[1]
        for i in range(s.private_ranges.shape[0]):
            lo, hi = i * width, (i + 1) * width
            ok = self._call(
                "range check",
                self.commitments.verify_range,
                s.bit_commitments[lo:hi],
                s.range_ones,
                sum(s.bit_randomness[lo:hi]),
            )
            if not ok:
                logger.warning("Session %s: range %d rejected", s.session_id, i)
                msg = f"session {s.session_id}: range {i} does not hold {s.range_ones} ones"
                raise RangeSumRejected(msg)

    def prove_binary(self) -> bool:
        """Prove, and have the verifier check, that every committed bit is 0 or 1.

        In range mode the verifier also checks that each committed range adds
        up to the declared number of ones.
        """
        self._enter(Step.PROVE_BINARY)
        s = self.session
        values = self._committed_values()
        proofs = self._call("binary proof generation", self.commitments.prove_bits, values, s.bit_randomness)
        valid = self._call("binary proof verification", self.commitments.verify_bit_proofs, s.bit_commitments, proofs)
        if not valid:
            logger.warning("Session %s: binary proofs rejected", s.session_id)
            msg = f"session {s.session_id}: a private bit commitment failed its binary proof"
            raise BinaryProofRejected(msg)
        if range_mode(s):
            self._check_ranges()

        s.bit_proofs = tuple(proofs)
        self._complete(Step.PROVE_BINARY)
        return True

    def run_coin_flip(self) -> NDArray:
        """Obtain nb public bits from the coin-flip collaborator.

        In range mode the exchange picks one index per range instead, and
        those indices are returned.
        """
        self._enter(Step.COIN_FLIP)
        nb = self._require_nb()
        if range_mode(self.session):
            return self._choose_from_ranges(nb)
        raw = self._call("coin flip", self.coin_flip.flip, nb)
        try:
            public = frozen_bits(raw)
        except VbmError as exc:
            msg = f"coin flip returned invalid bits: {exc}"
            raise CollaboratorFailure(msg) from exc
        if public.size != nb:
            msg = f"coin flip returned {public.size} bits, expected {nb}"
            raise CollaboratorFailure(msg)

        self.session.public_bits = public
        self._complete(Step.COIN_FLIP)
        return public.copy()

    def _choose_from_ranges(self, nb: int) -> NDArray[np.int64]:
        width = self.session.private_ranges.shape[1]
        selection = np.asarray(self._call("index draw", self.coin_flip.choose, nb, width))
        if selection.shape != (nb,) or ((selection < 0) | (selection >= width)).any():
            msg = f"index draw returned {selection.tolist()!r}, expected {nb} indices below {width}"
            raise CollaboratorFailure(msg)
        selection = selection.astype(np.int64)
        selection.setflags(write=False)

        self.session.selection = selection
        self._complete(Step.COIN_FLIP)
        return selection.copy()

    def xor_bits(self) -> BitVector:
        """Derive the noise bits and the commitments that go with them.

        Combines private and public bits and updates their commitments to
        match, or in range mode keeps the chosen bit of every range together
        with its commitment.
        """
        self._enter(Step.XOR_BITS)
        s = self.session
        if range_mode(s):
            width = s.private_ranges.shape[1]
            noise = frozen_bits(s.private_ranges[np.arange(s.nb), s.selection])
            batch = CommitmentBatch(s.bit_commitments, s.bit_randomness)
            picked = self._call("range selection", self.commitments.select_from_ranges, batch, width, s.selection)
            commitments, randomness = picked.commitments, picked.randomness
        else:
            noise = frozen_bits(combine_bits(s.private_bits, s.public_bits))
            updated = [
                self._call("commitment update", self.commitments.xor_update, c, r, int(v))
                for c, r, v in zip(s.bit_commitments, s.bit_randomness, s.public_bits)
            ]
            commitments = tuple(c for c, _ in updated)
            randomness = tuple(r for _, r in updated)

        s.noise_bits = noise
        s.noise_commitments = commitments
        s.noise_randomness = randomness
        self._complete(Step.XOR_BITS)
        return noise.copy()

    def overwrite_noise_bits(self, bits: Sequence[int] | NDArray) -> None:
        """Replace the noise bits without touching their commitments.

        This is the tamper path used to demonstrate that verification catches
        a dishonest curator. It opens once XorBits completes, can be used a
        single time, and closes when ComputeSum runs.
        """
        s = self.session
        if is_terminal(s) or not tamper_available(s):
            msg = f"session {s.session_id}: noise bits can no longer be overwritten"
            raise ProtocolViolation(msg)
        bits = frozen_bits(bits)
        if bits.size != s.nb:
            msg = f"expected {s.nb} noise bits, got {bits.size}"
            raise LengthMismatch(msg)

        s.noise_bits = bits
        s.noise_overwritten = True
        logger.warning("Session %s: noise bits overwritten through the tamper path", s.session_id)

    def compute_sum(self) -> NoisySum:
        """Compute the noisy sum y, centred on the expected noise sum."""
        self._enter(Step.COMPUTE_SUM)
        s = self.session
        nb = self._require_nb()
        offset = None
        if range_mode(s):
            offset = Fraction(nb * s.range_ones, s.private_ranges.shape[1])
        result = compute_noisy_sum(s.true_count, s.noise_bits, nb, offset=offset)

        s.noisy_sum = result
        self._complete(Step.COMPUTE_SUM)
        return result

    def compute_z(self) -> int:
        """Compute z, the randomness opening the product of all commitments."""
        self._enter(Step.COMPUTE_Z)
        s = self.session
        z = compute_z(s.input_randomness, s.noise_randomness)

        s.z = z
        self._complete(Step.COMPUTE_Z)
        return z

    def commit_yz(self) -> int:
        """Publish the combined commitment Com(y, z)."""
        self._enter(Step.COMMIT_YZ)
        s = self.session
        commitment = self._call("combined commitment", self.commitments.commit, s.noisy_sum.committed_value, s.z)

        s.yz_commitment = commitment
        self._complete(Step.COMMIT_YZ)
        return commitment

    def verify(self) -> VerificationOutcome:
        """Run the consistency check. Repeatable; the first outcome is final."""
        self._enter(Step.VERIFY)
        s = self.session
        outcome = self._call("consistency check", self.verifier.verify, s)

        if s.outcome is None:
            s.outcome = outcome
            self._complete(Step.VERIFY)
            logger.info("Session %s: verification %s", s.session_id, outcome.value)
        return outcome

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def lhs(self) -> int:
        return self._call("LHS computation", self.verifier.lhs, self.session)

    def rhs(self) -> int:
        return self._call("RHS computation", self.verifier.rhs, self.session)

    def _view(self, values: NDArray | None, what: str) -> NDArray:
        if values is None:
            msg = f"session {self.session_id}: {what} are not available yet"
            raise ProtocolViolation(msg)
        return values.copy()

    def private_bits(self) -> BitVector:
        return self._view(self.session.private_bits, "private bits")

    def private_ranges(self) -> RangeMatrix:
        return self._view(self.session.private_ranges, "private ranges")

    def public_bits(self) -> BitVector:
        return self._view(self.session.public_bits, "public bits")

    def selection(self) -> NDArray[np.int64]:
        return self._view(self.session.selection, "range selections")

    def noise_bits(self) -> BitVector:
        return self._view(self.session.noise_bits, "noise bits")

    def _commitments_view(self, values: tuple[int, ...], after: Step, what: str) -> tuple[int, ...]:
        if after not in self.session.completed_steps:
            msg = f"session {self.session_id}: {what} are not available yet"
            raise ProtocolViolation(msg)
        return values

    def input_commitments(self) -> tuple[int, ...]:
        return self._commitments_view(self.session.input_commitments, Step.COMMIT_INPUTS, "input commitments")

    def bit_commitments(self) -> tuple[int, ...]:
        return self._commitments_view(self.session.bit_commitments, Step.COMMIT_BITS, "bit commitments")

    def noise_commitments(self) -> tuple[int, ...]:
        return self._commitments_view(self.session.noise_commitments, Step.XOR_BITS, "noise commitments")

    def z(self) -> int:
        if self.session.z is None:
            msg = f"session {self.session_id}: z is not available yet"
            raise ProtocolViolation(msg)
        return self.session.z

    def summary(self) -> dict[str, Any]:
        """Public, non-secret facts about the session."""
        s = self.session
        p = noise_bias(s)
        return {
            "session_id": s.session_id,
            "num_inputs": int(s.client_inputs.size),
            "epsilon": s.epsilon,
            "delta": s.delta,
            "nb": s.nb,
            "noise_source": "ranges" if range_mode(s) else "coin_flip",
            "noise_p": p,
            "noise_std": None if s.nb is None else binomial_noise_std(s.nb, p),
            "y": None if s.noisy_sum is None else s.noisy_sum.y,
            "noise_overwritten": s.noise_overwritten,
            "current_step": s.current_step.name,
            "completed_steps": sorted(step.name for step in s.completed_steps),
            "outcome": None if s.outcome is None else s.outcome.value,
        }
