"""Error taxonomy for the verifiable binomial mechanism.

A rejected verification is not an error: it is reported through
:class:`verifiable_binomial.protocol.VerificationOutcome`.
"""


class VbmError(Exception):
    """Base class for every error raised by this package."""


class InvalidParameter(VbmError, ValueError):
    """epsilon, delta, a probability or an index is outside its domain."""


class LengthMismatch(VbmError, ValueError):
    """Bit vectors of unequal length were combined."""


class ProtocolViolation(VbmError):
    """A step was invoked out of order or on a session in the wrong state."""


class SessionNotFound(VbmError, LookupError):
    """The session id is unknown or has expired."""


class CollaboratorFailure(VbmError):
    """A commitment, proof or coin-flip collaborator call failed."""


class BinaryProofRejected(VbmError):
    """A committed private bit could not be proven to be 0 or 1."""


class PreconditionNotMet(ProtocolViolation):
    """An engine was handed inputs its step should never produce, such as an empty noise vector."""


class RangeSumRejected(VbmError):
    """A committed range of private bits does not hold the declared number of ones."""
