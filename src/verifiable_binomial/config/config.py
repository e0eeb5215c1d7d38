"""Configuration module for the verifiable binomial mechanism."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, ClassVar

import yaml

from verifiable_binomial.exceptions import InvalidParameter

NOISE_SCALE = 10.0

SAMPLING_POLICIES = ("uniform", "manual", "weighted")
COMMITMENT_SCHEMES = ("pedersen", "fake")
PEDERSEN_GROUPS = ("toy", "modp1024", "modp2048")


@dataclass(frozen=True)
class PrivacyConfig:
    """Privacy parameters of the binomial mechanism.

    Attributes
    ----------
        epsilon: float
            Privacy loss bound, strictly positive.
        delta: float
            Failure probability, in (0, 1).

    Raises
    ------
        InvalidParameter: If epsilon <= 0 or delta is not in (0, 1).
    """

    epsilon: float = 1.0
    delta: float = 0.001

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if not self.epsilon > 0:
            msg = f"epsilon must be > 0, got {self.epsilon}"
            raise InvalidParameter(msg)
        if not (0.0 < self.delta < 1.0):
            msg = f"delta must be in (0,1), got {self.delta}"
            raise InvalidParameter(msg)


@dataclass(frozen=True)
class SamplingConfig:
    """Default policy used to draw the curator's private bits.

    Attributes
    ----------
        policy: str
            One of "uniform", "manual" or "weighted".
        p: float
            Probability of a one under the "weighted" policy.
        seed: int | None
            Seed for reproducible sampling, None for fresh entropy.

    Raises
    ------
        InvalidParameter: If the policy is unknown or p is not in [0, 1].
    """

    policy: str = "uniform"
    p: float = 0.5
    seed: int | None = None

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if self.policy not in SAMPLING_POLICIES:
            msg = f"policy must be one of {SAMPLING_POLICIES}, got {self.policy!r}"
            raise InvalidParameter(msg)
        if not (0.0 <= self.p <= 1.0):
            msg = f"p must be in [0,1], got {self.p}"
            raise InvalidParameter(msg)


@dataclass(frozen=True)
class CommitmentConfig:
    """Commitment collaborator selection.

    Attributes
    ----------
        scheme: str
            "pedersen" for the real scheme, "fake" for the deterministic stand-in.
        group: str
            Pedersen group: "toy", "modp1024" or "modp2048".
        generator_seed: str
            Seed hashed into the group to derive the second generator h.
    """

    scheme: str = "pedersen"
    group: str = "modp2048"
    generator_seed: str = "verifiable-binomial/h"

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if self.scheme not in COMMITMENT_SCHEMES:
            msg = f"scheme must be one of {COMMITMENT_SCHEMES}, got {self.scheme!r}"
            raise InvalidParameter(msg)
        if self.group not in PEDERSEN_GROUPS:
            msg = f"group must be one of {PEDERSEN_GROUPS}, got {self.group!r}"
            raise InvalidParameter(msg)
        if not self.generator_seed:
            msg = "generator_seed must be a non-empty string"
            raise InvalidParameter(msg)


@dataclass(frozen=True)
class SessionConfig:
    """Session store parameters.

    Attributes
    ----------
        ttl_seconds: float
            Idle time after which a session id is treated as expired.
    """

    ttl_seconds: float = 3600.0

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if self.ttl_seconds <= 0:
            msg = f"ttl_seconds must be > 0, got {self.ttl_seconds}"
            raise InvalidParameter(msg)


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration for the verifiable binomial mechanism.

    Groups
    ----------
        privacy: PrivacyConfig
            Default epsilon and delta.
        sampling: SamplingConfig
            Default private-bit sampling policy.
        commitment: CommitmentConfig
            Commitment scheme and group.
        session: SessionConfig
            Session store behaviour.
        verbose: bool
            Flag to enable debug logging in the demo runner.

    Raises
    ------
        InvalidParameter: If any of the sub-configs contain invalid values.
    """

    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    commitment: CommitmentConfig = field(default_factory=CommitmentConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    verbose: bool = False

    NOISE_SCALE: ClassVar[float] = NOISE_SCALE

    def to_dict(self) -> dict[str, Any]:
        """Recursively convert to plain dict (for logging, serialization)."""
        return asdict(self)

    def to_yaml(self) -> str:
        """Dump entire config as a YAML string."""
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Build Config by unpacking each sub-dict into its sub-config."""
        return cls(
            privacy=PrivacyConfig(**data.get("privacy", {})),
            sampling=SamplingConfig(**data.get("sampling", {})),
            commitment=CommitmentConfig(**data.get("commitment", {})),
            session=SessionConfig(**data.get("session", {})),
            verbose=data.get("verbose", False),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """Load a YAML file and return a Config."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)
