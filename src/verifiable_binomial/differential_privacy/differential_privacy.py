"""Privacy calibration for the binomial mechanism."""

import math

from verifiable_binomial.config import NOISE_SCALE
from verifiable_binomial.exceptions import InvalidParameter


def compute_nb(epsilon: float, delta: float) -> int:
    r"""Number of noise bits needed for (epsilon, delta)-DP.

    Implements
        n_b = \lceil (10 / \epsilon)^2 \cdot \ln(2 / \delta) \rceil

    Args
    ------
        epsilon (float): Privacy loss bound, > 0.
        delta (float): Failure probability, in (0, 1).

    Returns
    -------
        int: Length of every private, public and noise bit vector.

    Raises
    ------
        InvalidParameter: If epsilon or delta is outside its domain.
    """
    if not (isinstance(epsilon, (int, float)) and math.isfinite(epsilon) and epsilon > 0):
        msg = f"epsilon must be a finite number > 0, got {epsilon!r}"
        raise InvalidParameter(msg)
    if not (isinstance(delta, (int, float)) and 0.0 < delta < 1.0):
        msg = f"delta must be in (0,1), got {delta!r}"
        raise InvalidParameter(msg)

    return math.ceil((NOISE_SCALE / epsilon) ** 2 * math.log(2.0 / delta))


def binomial_noise_std(nb: int, p: float = 0.5) -> float:
    """Standard deviation of the centred noise sum(bits) - nb * p."""
    if nb <= 0:
        msg = f"nb must be > 0, got {nb}"
        raise InvalidParameter(msg)
    if not 0.0 <= p <= 1.0:
        msg = f"p must be in [0,1], got {p}"
        raise InvalidParameter(msg)
    return math.sqrt(nb * p * (1.0 - p))
