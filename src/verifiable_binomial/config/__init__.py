from .config import (
    NOISE_SCALE,
    CommitmentConfig,
    Config,
    PrivacyConfig,
    SamplingConfig,
    SessionConfig,
)

__all__ = [
    "NOISE_SCALE",
    "CommitmentConfig",
    "Config",
    "PrivacyConfig",
    "SamplingConfig",
    "SessionConfig",
]
