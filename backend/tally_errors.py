"""
Error taxonomy for the encrypted tally core.

Arithmetic and key errors are programmer/configuration errors and abort the
operation. Validation errors come from untrusted ballot input and are always
recoverable: they carry a machine-readable code and the offending field so
the caller can render a precise message.
"""


class TallyError(Exception):
    """Base class for every error raised by the tally core."""


# ---------------------------------------------------------------------------
# Parameters and key material
# ---------------------------------------------------------------------------

class ParameterError(TallyError, ValueError):
    """Malformed modulus, bit length or other numeric parameter."""


class InsecureParameterError(ParameterError):
    """Requested key size is below the safety floor."""


class NoInverseError(TallyError, ArithmeticError):
    """Modular inverse undefined; key material is malformed."""


class KeyGenerationError(TallyError):
    """Prime draws exhausted their retry budget."""


class KeyDestroyedError(TallyError):
    """Private key used after it was retired."""


# ---------------------------------------------------------------------------
# Plaintext / ciphertext domains
# ---------------------------------------------------------------------------

class RangeError(TallyError, ValueError):
    pass


class PlaintextRangeError(RangeError):
    pass


class CiphertextRangeError(RangeError):
    pass


# ---------------------------------------------------------------------------
# Untrusted ballot input
# ---------------------------------------------------------------------------

class ValidationError(TallyError, ValueError):
    code = "invalid"

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        data = {"error": self.code, "message": self.message}
        if self.field is not None:
            data["field"] = self.field
        return data


class NotAnObject(ValidationError):
    code = "not_an_object"


class NonIntegerValue(ValidationError):
    code = "non_integer_value"


class NegativeValue(ValidationError):
    code = "negative_value"


class CapExceeded(ValidationError):
    code = "cap_exceeded"


class EmptyBallot(ValidationError):
    code = "empty_ballot"


class DuplicateCandidate(ValidationError):
    code = "duplicate_candidate"


class MalformedCiphertext(ValidationError):
    code = "malformed_ciphertext"


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class ElectionStateError(TallyError):
    """Operation not allowed in the current election or tally state."""


class DuplicateSubmissionError(ElectionStateError):
    pass
