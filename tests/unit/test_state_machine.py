"""Unit tests for the session state machine, driven by deterministic collaborators."""

from __future__ import annotations

import numpy as np
import pytest

from verifiable_binomial.commitments import (
    CoinFlipCollaborator,
    FakeCommitments,
    GroupParameters,
    PedersenCommitments,
    ScalarRNG,
    SeededCoinFlip,
)
from verifiable_binomial.config import SamplingConfig
from verifiable_binomial.exceptions import (
    BinaryProofRejected,
    CollaboratorFailure,
    InvalidParameter,
    LengthMismatch,
    ProtocolViolation,
    RangeSumRejected,
)
from verifiable_binomial.protocol import (
    SessionStateMachine,
    Step,
    VerificationOutcome,
    bits_committed,
    inputs_committed,
    range_mode,
    tamper_available,
)

INPUTS = [1, 0, 1, 1, 0, 1, 0, 0, 1, 1]
EPSILON, DELTA = 5.0, 0.1  # nb = ceil(4 * ln 20) = 12


class RejectingCommitments(FakeCommitments):
    """Fake whose verifier refuses every binary proof."""

    def verify_bit_proofs(self, commitments, proofs) -> bool:
        return False


class ShortCoinFlip(CoinFlipCollaborator):
    """Returns one bit too few."""

    def flip(self, n: int) -> np.ndarray:
        return np.zeros(n - 1, dtype=np.uint8)


@pytest.fixture
def machine() -> SessionStateMachine:
    """Fresh session over the fake collaborators."""
    return SessionStateMachine.start(
        INPUTS,
        FakeCommitments(seed=1),
        SeededCoinFlip(seed=2),
        sampling=SamplingConfig(seed=3),
    )


def run_through(machine: SessionStateMachine, last: Step) -> None:
    """Complete every step up to and including ``last``."""
    actions = {
        Step.COMMIT_INPUTS: machine.commit_inputs,
        Step.SET_PRIVACY_PARAMS: lambda: machine.set_privacy_params(EPSILON, DELTA),
        Step.SAMPLE_BITS: machine.sample_private_bits,
        Step.COMMIT_BITS: machine.commit_private_bits,
        Step.PROVE_BINARY: machine.prove_binary,
        Step.COIN_FLIP: machine.run_coin_flip,
        Step.XOR_BITS: machine.xor_bits,
        Step.COMPUTE_SUM: machine.compute_sum,
        Step.COMPUTE_Z: machine.compute_z,
        Step.COMMIT_YZ: machine.commit_yz,
        Step.VERIFY: machine.verify,
    }
    for step in Step:
        if step is Step.INPUT:
            continue
        actions[step]()
        if step is last:
            return


def test_new_session_completes_input(machine: SessionStateMachine) -> None:
    """Creating a session records the inputs and their count."""
    s = machine.session
    assert s.true_count == sum(INPUTS)
    assert machine.completed_steps == {Step.INPUT}
    assert machine.current_step is Step.COMMIT_INPUTS
    with pytest.raises(ValueError):
        s.client_inputs[0] = 0


def test_empty_inputs_rejected() -> None:
    """A session needs at least one client input."""
    with pytest.raises(InvalidParameter):
        SessionStateMachine.start([], FakeCommitments(), SeededCoinFlip())


def test_honest_session_is_accepted(machine: SessionStateMachine) -> None:
    """Completing every step in order ends in Accepted with LHS == RHS."""
    run_through(machine, Step.COMMIT_YZ)
    assert machine.lhs() == machine.rhs()
    assert machine.verify() is VerificationOutcome.ACCEPTED
    assert machine.completed_steps == set(Step)


def test_noisy_sum_uses_noise_bits(machine: SessionStateMachine) -> None:
    """y = ceil(true_count + sum(noise) - nb/2)."""
    run_through(machine, Step.XOR_BITS)
    noise = machine.noise_bits()
    assert np.array_equal(noise, machine.private_bits() ^ machine.public_bits())
    result = machine.compute_sum()
    nb = machine.session.nb
    assert nb == 12
    assert result.y == int(np.ceil(sum(INPUTS) + noise.sum() - nb / 2))


def test_verify_is_idempotent(machine: SessionStateMachine) -> None:
    """Verifying twice gives the same answer and keeps the first outcome."""
    run_through(machine, Step.VERIFY)
    assert machine.verify() is VerificationOutcome.ACCEPTED
    assert machine.verify() is VerificationOutcome.ACCEPTED
    assert machine.session.outcome is VerificationOutcome.ACCEPTED


def test_compute_sum_before_xor_is_a_violation(machine: SessionStateMachine) -> None:
    """Skipping ahead fails fast and leaves the session untouched."""
    run_through(machine, Step.COIN_FLIP)
    before = set(machine.completed_steps)
    with pytest.raises(ProtocolViolation):
        machine.compute_sum()
    assert machine.session.noisy_sum is None
    assert machine.completed_steps == before


def test_cannot_skip_commit_inputs(machine: SessionStateMachine) -> None:
    """Privacy parameters wait for the input commitments."""
    with pytest.raises(ProtocolViolation):
        machine.set_privacy_params(EPSILON, DELTA)
    assert machine.session.nb is None


def test_one_shot_steps_cannot_repeat(machine: SessionStateMachine) -> None:
    """Commitments, y and z are produced once."""
    run_through(machine, Step.COMPUTE_Z)
    for step in (machine.commit_inputs, machine.commit_private_bits, machine.compute_sum, machine.compute_z):
        with pytest.raises(ProtocolViolation):
            step()


def test_query_helpers_track_latches(machine: SessionStateMachine) -> None:
    """Latches are derived from completed steps."""
    assert not inputs_committed(machine.session)
    run_through(machine, Step.COMMIT_BITS)
    assert inputs_committed(machine.session)
    assert bits_committed(machine.session)


def test_changing_nb_drops_sampled_bits(machine: SessionStateMachine) -> None:
    """New privacy parameters invalidate bits of the old length."""
    run_through(machine, Step.SAMPLE_BITS)
    assert machine.set_privacy_params(10.0, 0.5) == 2
    assert machine.session.private_bits is None
    with pytest.raises(ProtocolViolation):
        machine.commit_private_bits()
    assert machine.sample_private_bits().shape == (2,)
    assert len(machine.commit_private_bits()) == 2


def test_same_nb_keeps_sampled_bits(machine: SessionStateMachine) -> None:
    """Re-confirming the same parameters keeps the bits."""
    run_through(machine, Step.SAMPLE_BITS)
    bits = machine.private_bits()
    machine.set_privacy_params(EPSILON, DELTA)
    assert np.array_equal(machine.private_bits(), bits)


@pytest.mark.parametrize("epsilon,delta", [(5.001, DELTA), (EPSILON, 0.1001)])
def test_changed_params_drop_bits_even_with_same_nb(
    machine: SessionStateMachine, epsilon: float, delta: float
) -> None:
    """Bits sampled under old parameters never survive a change, whatever nb is."""
    run_through(machine, Step.SAMPLE_BITS)
    assert machine.set_privacy_params(epsilon, delta) == 12
    assert machine.session.private_bits is None
    with pytest.raises(ProtocolViolation):
        machine.commit_private_bits()
    assert (machine.session.epsilon, machine.session.delta) == (epsilon, delta)


def test_privacy_params_frozen_after_commit(machine: SessionStateMachine) -> None:
    """Once bits are committed neither epsilon nor the bits change."""
    run_through(machine, Step.COMMIT_BITS)
    with pytest.raises(ProtocolViolation):
        machine.set_privacy_params(1.0, 0.001)
    with pytest.raises(ProtocolViolation):
        machine.sample_private_bits()
    with pytest.raises(ProtocolViolation):
        machine.paint_private_bits(0, 1, 1)


def test_invalid_privacy_params_leave_state(machine: SessionStateMachine) -> None:
    """Rejected parameters do not complete the step."""
    machine.commit_inputs()
    with pytest.raises(InvalidParameter):
        machine.set_privacy_params(0.0, 0.1)
    assert machine.session.nb is None
    assert Step.SET_PRIVACY_PARAMS not in machine.completed_steps


def test_manual_policy_and_painting(machine: SessionStateMachine) -> None:
    """Manual bits start at zero and are painted before committing."""
    run_through(machine, Step.SET_PRIVACY_PARAMS)
    assert machine.sample_private_bits("manual").sum() == 0
    painted = machine.paint_private_bits(0, 3, 1)
    assert painted.tolist()[:5] == [1, 1, 1, 1, 0]
    assert np.array_equal(machine.paint_private_bits(0, 3, 1), painted)


def test_paint_needs_sampled_bits(machine: SessionStateMachine) -> None:
    """There is nothing to paint before sampling."""
    run_through(machine, Step.SET_PRIVACY_PARAMS)
    with pytest.raises(ProtocolViolation):
        machine.paint_private_bits(0, 1, 1)


def test_weighted_policy_uses_configured_p() -> None:
    """Without an explicit p the sampling config supplies it."""
    m = SessionStateMachine.start(INPUTS, FakeCommitments(), SeededCoinFlip(), sampling=SamplingConfig(p=1.0))
    m.commit_inputs()
    m.set_privacy_params(EPSILON, DELTA)
    assert m.sample_private_bits("weighted").tolist() == [1] * 12


def test_submit_private_bits(machine: SessionStateMachine) -> None:
    """Submitted bits must have length nb."""
    run_through(machine, Step.SET_PRIVACY_PARAMS)
    with pytest.raises(LengthMismatch):
        machine.submit_private_bits([1, 0, 1])
    machine.submit_private_bits([1, 0] * 6)
    assert machine.private_bits().tolist() == [1, 0] * 6


def test_tamper_detected(machine: SessionStateMachine) -> None:
    """Flipping one noise bit without updating its commitment is rejected."""
    run_through(machine, Step.XOR_BITS)
    assert tamper_available(machine.session)
    forged = machine.noise_bits()
    forged[0] ^= 1
    machine.overwrite_noise_bits(forged)
    run_through_rest(machine)
    assert machine.lhs() != machine.rhs()
    assert machine.verify() is VerificationOutcome.REJECTED
    assert machine.verify() is VerificationOutcome.REJECTED


def run_through_rest(machine: SessionStateMachine) -> None:
    machine.compute_sum()
    machine.compute_z()
    machine.commit_yz()


def test_tamper_path_is_one_shot(machine: SessionStateMachine) -> None:
    """The overwrite is available once, between XorBits and ComputeSum."""
    run_through(machine, Step.COIN_FLIP)
    with pytest.raises(ProtocolViolation):
        machine.overwrite_noise_bits([0] * 12)
    machine.xor_bits()
    with pytest.raises(LengthMismatch):
        machine.overwrite_noise_bits([0] * 11)
    machine.overwrite_noise_bits([0] * 12)
    with pytest.raises(ProtocolViolation):
        machine.overwrite_noise_bits([1] * 12)


def test_tamper_path_closes_after_sum(machine: SessionStateMachine) -> None:
    """ComputeSum consumes the noise bits for good."""
    run_through(machine, Step.COMPUTE_SUM)
    assert not tamper_available(machine.session)
    with pytest.raises(ProtocolViolation):
        machine.overwrite_noise_bits([0] * 12)


def test_terminal_session_is_frozen(machine: SessionStateMachine) -> None:
    """After verification only Verify may run."""
    run_through(machine, Step.VERIFY)
    with pytest.raises(ProtocolViolation):
        machine.sample_private_bits()
    with pytest.raises(ProtocolViolation):
        machine.commit_yz()


def test_collaborator_failure_is_retryable() -> None:
    """A failing commitment call leaves the step open for a retry."""
    commitments = FakeCommitments(seed=1, fail_on={"commit"})
    m = SessionStateMachine.start(INPUTS, commitments, SeededCoinFlip(seed=2))
    with pytest.raises(CollaboratorFailure) as excinfo:
        m.commit_inputs()
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert m.session.input_commitments == ()
    assert Step.COMMIT_INPUTS not in m.completed_steps

    commitments.fail_on.clear()
    assert len(m.commit_inputs()) == len(INPUTS)


def test_coin_flip_failure_is_retryable(machine: SessionStateMachine) -> None:
    """A failed exchange stores no public bits."""
    run_through(machine, Step.PROVE_BINARY)
    machine.coin_flip = SeededCoinFlip(fail=True)
    with pytest.raises(CollaboratorFailure):
        machine.run_coin_flip()
    assert machine.session.public_bits is None

    machine.coin_flip = ShortCoinFlip()
    with pytest.raises(CollaboratorFailure):
        machine.run_coin_flip()

    machine.coin_flip = SeededCoinFlip(seed=2)
    assert machine.run_coin_flip().shape == (12,)


def test_xor_update_failure_leaves_noise_unset(machine: SessionStateMachine) -> None:
    """A failure halfway through the commitment updates changes nothing."""
    run_through(machine, Step.COIN_FLIP)
    machine.commitments.fail_on.add("xor_update")
    with pytest.raises(CollaboratorFailure):
        machine.xor_bits()
    assert machine.session.noise_bits is None
    assert machine.session.noise_commitments == ()


def test_rejected_binary_proof() -> None:
    """An unproven bit commitment blocks the coin flip."""
    m = SessionStateMachine.start(INPUTS, RejectingCommitments(), SeededCoinFlip())
    run_through(m, Step.COMMIT_BITS)
    with pytest.raises(BinaryProofRejected):
        m.prove_binary()
    assert Step.PROVE_BINARY not in m.completed_steps
    with pytest.raises(ProtocolViolation):
        m.run_coin_flip()


def test_lhs_rhs_need_committed_yz(machine: SessionStateMachine) -> None:
    """The check's inputs exist only after CommitYZ."""
    run_through(machine, Step.COMPUTE_Z)
    with pytest.raises(ProtocolViolation):
        machine.lhs()


@pytest.mark.parametrize("tamper", [False, True])
def test_pedersen_end_to_end(tamper: bool) -> None:
    """The real scheme accepts honest sessions and catches a flipped bit."""
    commitments = PedersenCommitments(GroupParameters.named("toy"), ScalarRNG(5))
    m = SessionStateMachine.start(INPUTS, commitments, SeededCoinFlip(seed=6), sampling=SamplingConfig(seed=7))
    run_through(m, Step.XOR_BITS)
    if tamper:
        forged = m.noise_bits()
        forged[-1] ^= 1
        m.overwrite_noise_bits(forged)
    run_through_rest(m)
    expected = VerificationOutcome.REJECTED if tamper else VerificationOutcome.ACCEPTED
    assert m.verify() is expected


def test_summary_hides_secrets(machine: SessionStateMachine) -> None:
    """The summary reports progress, not bits or randomness."""
    run_through(machine, Step.VERIFY)
    summary = machine.summary()
    assert summary["outcome"] == "accepted"
    assert summary["nb"] == 12
    assert "private_bits" not in summary
    assert "true_count" not in summary


# ----------------------------------------------------------------------
# Biased noise from committed ranges
# ----------------------------------------------------------------------


class OutOfRangeChoice(SeededCoinFlip):
    """Picks an index one past the end of every range."""

    def choose(self, n: int, width: int, max_rounds: int = 64) -> np.ndarray:
        return np.full(n, width, dtype=np.int64)


def ranges_with_ones(counts: list[int], width: int) -> np.ndarray:
    """One row per count, ones packed to the left."""
    ranges = np.zeros((len(counts), width), dtype=np.uint8)
    for row, ones in zip(ranges, counts):
        row[:ones] = 1
    return ranges


def run_ranges(machine: SessionStateMachine) -> None:
    """Everything after SampleBits, ending with CommitYZ."""
    machine.commit_private_bits()
    machine.prove_binary()
    machine.run_coin_flip()
    machine.xor_bits()
    run_through_rest(machine)


def test_honest_range_session_is_accepted(machine: SessionStateMachine) -> None:
    """Each noise bit is the chosen bit of its range and the check still holds."""
    run_through(machine, Step.SET_PRIVACY_PARAMS)
    ranges = machine.sample_private_ranges(ones=2, width=5)
    assert ranges.shape == (12, 5)
    assert ranges.sum(axis=1).tolist() == [2] * 12
    assert range_mode(machine.session)

    assert len(machine.commit_private_bits()) == 60
    machine.prove_binary()
    selection = machine.run_coin_flip()
    assert selection.shape == (12,)
    assert ((selection >= 0) & (selection < 5)).all()

    noise = machine.xor_bits()
    assert np.array_equal(noise, ranges[np.arange(12), selection])
    assert len(machine.noise_commitments()) == 12

    result = machine.compute_sum()
    # Expected noise sum is 12 * 2 / 5 = 4.8
    assert result.y == sum(INPUTS) + int(noise.sum()) - 4
    machine.compute_z()
    machine.commit_yz()
    assert machine.lhs() == machine.rhs()
    assert machine.verify() is VerificationOutcome.ACCEPTED


@pytest.mark.parametrize("ones,width", [(1, 2), (3, 7), (0, 4), (4, 4)])
def test_pedersen_range_session(ones: int, width: int) -> None:
    """The real scheme accepts honest ranges for any bias."""
    commitments = PedersenCommitments(GroupParameters.named("toy"), ScalarRNG(8))
    m = SessionStateMachine.start(INPUTS, commitments, SeededCoinFlip(seed=9), sampling=SamplingConfig(seed=10))
    run_through(m, Step.SET_PRIVACY_PARAMS)
    m.sample_private_ranges(ones, width)
    run_ranges(m)
    assert m.verify() is VerificationOutcome.ACCEPTED
    if ones in (0, width):
        assert m.noise_bits().tolist() == [ones // width] * 12


def test_range_with_wrong_count_is_rejected(machine: SessionStateMachine) -> None:
    """A range holding more ones than declared never reaches the coin flip."""
    run_through(machine, Step.SET_PRIVACY_PARAMS)
    counts = [2] * 12
    counts[3] = 3
    machine.submit_private_ranges(ranges_with_ones(counts, 5), ones=2)
    machine.commit_private_bits()
    with pytest.raises(RangeSumRejected, match="range 3"):
        machine.prove_binary()
    assert Step.PROVE_BINARY not in machine.completed_steps
    assert machine.session.bit_proofs == ()
    with pytest.raises(ProtocolViolation):
        machine.run_coin_flip()


@pytest.mark.parametrize("ones,width", [(1, 2), (3, 7)])
def test_pedersen_rejects_short_range(ones: int, width: int) -> None:
    """The group check spots a range with one 1 too few."""
    commitments = PedersenCommitments(GroupParameters.named("toy"), ScalarRNG(8))
    m = SessionStateMachine.start(INPUTS, commitments, SeededCoinFlip(seed=9))
    run_through(m, Step.SET_PRIVACY_PARAMS)
    counts = [ones] * 12
    counts[-1] = ones - 1
    m.submit_private_ranges(ranges_with_ones(counts, width), ones=ones)
    m.commit_private_bits()
    with pytest.raises(RangeSumRejected):
        m.prove_binary()


def test_submit_private_ranges_validation(machine: SessionStateMachine) -> None:
    """Submitted ranges need nb rows of bits and a count that fits a row."""
    run_through(machine, Step.SET_PRIVACY_PARAMS)
    with pytest.raises(LengthMismatch):
        machine.submit_private_ranges(ranges_with_ones([1] * 11, 3), ones=1)
    with pytest.raises(InvalidParameter):
        machine.submit_private_ranges(ranges_with_ones([1] * 12, 3), ones=4)
    with pytest.raises(InvalidParameter):
        machine.submit_private_ranges([[0, 2, 1]] * 12, ones=1)
    with pytest.raises(InvalidParameter):
        machine.sample_private_ranges(ones=6, width=5)
    assert not range_mode(machine.session)
    assert Step.SAMPLE_BITS not in machine.completed_steps


def test_changed_params_drop_ranges(machine: SessionStateMachine) -> None:
    """Ranges follow the same rule as plain private bits."""
    run_through(machine, Step.SET_PRIVACY_PARAMS)
    machine.sample_private_ranges(ones=1, width=3)
    machine.set_privacy_params(EPSILON, DELTA)
    assert range_mode(machine.session)
    machine.set_privacy_params(10.0, 0.5)
    assert not range_mode(machine.session)
    assert machine.session.range_ones is None
    with pytest.raises(ProtocolViolation):
        machine.commit_private_bits()


def test_resampling_switches_noise_source(machine: SessionStateMachine) -> None:
    """The last SampleBits call decides where the noise comes from."""
    run_through(machine, Step.SAMPLE_BITS)
    machine.sample_private_ranges(ones=1, width=3)
    assert machine.session.private_bits is None
    with pytest.raises(ProtocolViolation):
        machine.paint_private_bits(0, 1, 1)
    machine.sample_private_bits()
    assert not range_mode(machine.session)
    assert machine.summary()["noise_source"] == "coin_flip"


def test_invalid_range_choice_is_a_collaborator_failure(machine: SessionStateMachine) -> None:
    """Indices outside a range are refused and the step stays open."""
    run_through(machine, Step.SET_PRIVACY_PARAMS)
    machine.sample_private_ranges(ones=2, width=5)
    machine.commit_private_bits()
    machine.prove_binary()
    machine.coin_flip = OutOfRangeChoice()
    with pytest.raises(CollaboratorFailure):
        machine.run_coin_flip()
    assert machine.session.selection is None
    machine.coin_flip = SeededCoinFlip(seed=2)
    assert machine.run_coin_flip().shape == (12,)
    with pytest.raises(ValueError):
        machine.session.selection[0] = 0


def test_range_tamper_detected(machine: SessionStateMachine) -> None:
    """Flipping a chosen bit is caught in range mode too."""
    run_through(machine, Step.SET_PRIVACY_PARAMS)
    machine.sample_private_ranges(ones=2, width=5)
    machine.commit_private_bits()
    machine.prove_binary()
    machine.run_coin_flip()
    forged = machine.xor_bits()
    forged[0] ^= 1
    machine.overwrite_noise_bits(forged)
    run_through_rest(machine)
    assert machine.verify() is VerificationOutcome.REJECTED


def test_summary_reports_noise_source(machine: SessionStateMachine) -> None:
    """The summary gives the bias and spread of the noise, not the bits."""
    assert machine.summary()["noise_std"] is None
    run_through(machine, Step.SET_PRIVACY_PARAMS)
    summary = machine.summary()
    assert summary["noise_source"] == "coin_flip"
    assert summary["noise_std"] == pytest.approx(np.sqrt(12 * 0.25))
    machine.sample_private_ranges(ones=1, width=4)
    summary = machine.summary()
    assert summary["noise_source"] == "ranges"
    assert summary["noise_p"] == 0.25
    assert summary["noise_std"] == pytest.approx(np.sqrt(12 * 0.25 * 0.75))
    assert "private_ranges" not in summary
