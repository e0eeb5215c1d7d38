"""Verifiable Binomial Mechanism demo.

Runs one honest session and one where the curator tampers with the noise
bits, and reports whether the verifier accepts each of them.
"""

import argparse
import logging

import numpy as np

from verifiable_binomial.config import Config
from verifiable_binomial.protocol import VbmService, VerificationOutcome
from verifiable_binomial.utils import describe_noisy_sum, generate_client_inputs

logger = logging.getLogger("verifiable_binomial.main")


def run_session(service: VbmService, inputs: np.ndarray, *, tamper: bool = False) -> VerificationOutcome:
    """Drive one session through every step and return the verdict."""
    cfg = service.config
    sid = service.new_session(inputs)

    service.commit_inputs(sid)
    nb = service.set_privacy_params(sid, cfg.privacy.epsilon, cfg.privacy.delta)
    logger.info("epsilon=%s delta=%s -> nb=%d", cfg.privacy.epsilon, cfg.privacy.delta, nb)

    service.sample_private_bits(sid)
    service.commit_private_bits(sid)
    service.prove_binary(sid)
    service.run_coin_flip(sid)
    noise = service.xor_bits(sid)

    if tamper:
        # Cancel the noise so y lands on the true count. The forged sum must
        # differ from the real one, otherwise there is nothing to detect.
        ones = nb // 2 if int(noise.sum()) != nb // 2 else nb // 2 + 1
        forged = np.zeros_like(noise)
        forged[:ones] = 1
        service.overwrite_noise_bits(sid, forged)

    result = service.compute_sum(sid)
    logger.info(describe_noisy_sum(result))
    service.compute_z(sid)
    service.commit_yz(sid)

    outcome = service.verify(sid)
    logger.info("LHS == RHS: %s", service.get_lhs(sid) == service.get_rhs(sid))
    return outcome


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", default=None, help="YAML configuration file")
    parser.add_argument("--clients", type=int, default=1000, help="number of simulated clients")
    args = parser.parse_args(argv)

    cfg = Config.from_yaml(args.config) if args.config else Config()
    logging.basicConfig(
        level=logging.DEBUG if cfg.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    service = VbmService(cfg)
    inputs = generate_client_inputs(args.clients)
    logger.info("Simulated %d clients, true count %d", inputs.size, int(inputs.sum()))

    honest = run_session(service, inputs)
    print(f"Honest curator:   {honest.value}")
    tampered = run_session(service, inputs, tamper=True)
    note = " (tampering detected)" if tampered is VerificationOutcome.REJECTED else ""
    print(f"Tampering curator: {tampered.value}{note}")


if __name__ == "__main__":
    main()
