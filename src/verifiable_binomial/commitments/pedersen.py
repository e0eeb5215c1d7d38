"""Pedersen commitments with Sigma-OR bit proofs over a safe-prime group.

Commitments live in the subgroup of quadratic residues of Z_p^*, which has
prime order q = (p - 1) / 2 when p is a safe prime. g = 4 generates it; h is
obtained by hashing a public seed into the subgroup, so nobody knows log_g(h).

Bit proofs are the Cramer-Damgard-Schoenmakers OR composition of two Schnorr
proofs, made non-interactive with a SHA-256 Fiat-Shamir challenge.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass

from verifiable_binomial.commitments.base import CommitmentCollaborator, ScalarRNG
from verifiable_binomial.exceptions import InvalidParameter

DST_BIT_PROOF = b"verifiable-binomial/sigma-or/v1"

# RFC 2409 section 6.2 (Oakley group 2)
MODP_1024 = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE65381"
    "FFFFFFFFFFFFFFFF",
    16,
)

# RFC 3526 section 3 (group 14)
MODP_2048 = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3D"
    "C2007CB8A163BF0598DA48361C55D39A69163FA8FD24CF5F"
    "83655D23DCA3AD961C62F356208552BB9ED529077096966D"
    "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9"
    "DE2BCBF6955817183995497CEA956AE515D2261898FA0510"
    "15728E5A8AACAA68FFFFFFFFFFFFFFFF",
    16,
)

# 2039 = 2 * 1019 + 1. Tests only.
TOY_PRIME = 2039

SAFE_PRIMES = {
    "toy": TOY_PRIME,
    "modp1024": MODP_1024,
    "modp2048": MODP_2048,
}


def _int_to_bytes(x: int, length: int) -> bytes:
    return x.to_bytes(length, "big")


def hash_to_subgroup(seed: bytes, p: int, avoid: tuple[int, ...] = ()) -> int:
    """Map ``seed`` to a quadratic residue mod p other than 1 and ``avoid``."""
    n_bytes = (p.bit_length() + 7) // 8 + 16
    ctr = 0
    while True:
        stream = bytearray()
        block = 0
        while len(stream) < n_bytes:
            h = hashlib.sha256()
            h.update(seed)
            h.update(_int_to_bytes(ctr, 4))
            h.update(_int_to_bytes(block, 4))
            stream.extend(h.digest())
            block += 1
        x = int.from_bytes(bytes(stream[:n_bytes]), "big") % p
        candidate = pow(x, 2, p)
        if candidate not in (0, 1) and candidate not in avoid:
            return candidate
        ctr += 1


@dataclass(frozen=True)
class GroupParameters:
    """Public parameters (p, q, g, h) of a Pedersen commitment group."""

    p: int
    q: int
    g: int
    h: int

    @property
    def element_size(self) -> int:
        return (self.p.bit_length() + 7) // 8

    def encode(self, x: int) -> bytes:
        return _int_to_bytes(x, self.element_size)

    def contains(self, x: int) -> bool:
        """Membership in the order-q subgroup."""
        return 0 < x < self.p and pow(x, self.q, self.p) == 1

    @classmethod
    def from_safe_prime(cls, p: int, generator_seed: str) -> GroupParameters:
        q = (p - 1) // 2
        g = 4
        h = hash_to_subgroup(generator_seed.encode("utf-8"), p, avoid=(g,))
        return cls(p=p, q=q, g=g, h=h)

    @classmethod
    def named(cls, name: str, generator_seed: str = "verifiable-binomial/h") -> GroupParameters:
        if name not in SAFE_PRIMES:
            msg = f"unknown group {name!r}, expected one of {tuple(SAFE_PRIMES)}"
            raise InvalidParameter(msg)
        return cls.from_safe_prime(SAFE_PRIMES[name], generator_seed)


@dataclass(frozen=True)
class BitProof:
    """Non-interactive Sigma-OR proof that a commitment opens to 0 or 1."""

    a0: int
    a1: int
    e0: int
    e1: int
    z0: int
    z1: int


class PedersenCommitments(CommitmentCollaborator):
    """Pedersen commitments Com(m, r) = g^m h^r mod p."""

    def __init__(self, group: GroupParameters, rng: ScalarRNG | None = None) -> None:
        super().__init__(rng)
        self.group = group

    @property
    def order(self) -> int:
        return self.group.q

    def commit(self, value: int, randomness: int) -> int:
        grp = self.group
        return pow(grp.g, value % grp.q, grp.p) * pow(grp.h, randomness % grp.q, grp.p) % grp.p

    def combine(self, commitments: Sequence[int]) -> int:
        product = 1
        for c in commitments:
            product = product * c % self.group.p
        return product

    def xor_update(self, commitment: int, randomness: int, public_bit: int) -> tuple[int, int]:
        if public_bit == 0:
            return commitment, randomness
        # Com(1, 0) / Com(b, s) = Com(1 - b, -s)
        grp = self.group
        return grp.g * pow(commitment, -1, grp.p) % grp.p, (-randomness) % grp.q

    def _challenge(self, commitment: int, a0: int, a1: int) -> int:
        grp = self.group
        h = hashlib.sha256()
        h.update(DST_BIT_PROOF)
        for part in (grp.p, grp.g, grp.h, commitment, a0, a1):
            encoded = grp.encode(part)
            h.update(_int_to_bytes(len(encoded), 4))
            h.update(encoded)
        return int.from_bytes(h.digest(), "big") % grp.q

    def _statements(self, commitment: int) -> tuple[int, int]:
        """Y0 = C and Y1 = C / g; the prover knows log_h of exactly one."""
        grp = self.group
        return commitment, commitment * pow(grp.g, -1, grp.p) % grp.p

    def prove_bit(self, bit: int, randomness: int) -> BitProof:
        if bit not in (0, 1):
            msg = f"can only prove bits, got {bit!r}"
            raise InvalidParameter(msg)
        grp = self.group
        commitment = self.commit(bit, randomness)
        statements = self._statements(commitment)

        # Simulate the branch we cannot prove.
        fake = 1 - bit
        e_fake = self.random_scalar()
        z_fake = self.random_scalar()
        a_fake = pow(grp.h, z_fake, grp.p) * pow(statements[fake], grp.q - e_fake, grp.p) % grp.p

        k = self.random_scalar()
        a_real = pow(grp.h, k, grp.p)

        a = [0, 0]
        a[bit], a[fake] = a_real, a_fake
        e = self._challenge(commitment, a[0], a[1])
        e_real = (e - e_fake) % grp.q
        z_real = (k + e_real * randomness) % grp.q

        es = [0, 0]
        zs = [0, 0]
        es[bit], es[fake] = e_real, e_fake
        zs[bit], zs[fake] = z_real, z_fake
        return BitProof(a0=a[0], a1=a[1], e0=es[0], e1=es[1], z0=zs[0], z1=zs[1])

    def verify_bit(self, commitment: int, proof: BitProof) -> bool:
        grp = self.group
        if not (grp.contains(commitment) and grp.contains(proof.a0) and grp.contains(proof.a1)):
            return False
        if (proof.e0 + proof.e1) % grp.q != self._challenge(commitment, proof.a0, proof.a1):
            return False
        y0, y1 = self._statements(commitment)
        ok0 = pow(grp.h, proof.z0, grp.p) == proof.a0 * pow(y0, proof.e0, grp.p) % grp.p
        ok1 = pow(grp.h, proof.z1, grp.p) == proof.a1 * pow(y1, proof.e1, grp.p) % grp.p
        return ok0 and ok1

    def prove_bits(self, bits: Sequence[int], randomness: Sequence[int]) -> list[BitProof]:
        return [self.prove_bit(int(b), r) for b, r in zip(bits, randomness)]

    def verify_bit_proofs(self, commitments: Sequence[int], proofs: Sequence[BitProof]) -> bool:
        if len(commitments) != len(proofs):
            return False
        return all(self.verify_bit(c, pi) for c, pi in zip(commitments, proofs))
