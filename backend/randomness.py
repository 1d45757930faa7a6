"""
Random sources for key material and encryption nonces.

Everything that needs randomness takes a ``RandomSource`` argument instead of
reaching for a global generator. Production code uses ``SystemRandomSource``
(the operating system CSPRNG via pycryptodome); tests can pass a
``SeededRandomSource`` to get reproducible keys.
"""

from abc import ABC, abstractmethod

from Crypto.Hash import SHAKE256
from Crypto.Random import get_random_bytes
from Crypto.Util.number import bytes_to_long

from tally_errors import ParameterError


class RandomSource(ABC):
    """Byte-oriented random source with integer helpers.

    Subclasses only implement ``read``. Its signature matches pycryptodome's
    ``randfunc`` so a source can be handed straight to ``Crypto`` routines.
    """

    @abstractmethod
    def read(self, n_bytes: int) -> bytes:
        """Return n_bytes random bytes."""

    def randbits(self, k: int) -> int:
        """Uniform integer in [0, 2**k)."""
        if k < 0:
            raise ParameterError("bit count must be non-negative")
        if k == 0:
            return 0
        n_bytes = (k + 7) // 8
        value = bytes_to_long(self.read(n_bytes))
        return value >> (n_bytes * 8 - k)

    def randbelow(self, upper: int) -> int:
        """Uniform integer in [0, upper), by rejection sampling."""
        if upper <= 0:
            raise ParameterError("upper bound must be positive")
        k = upper.bit_length()
        while True:
            value = self.randbits(k)
            if value < upper:
                return value

    def randrange(self, lower: int, upper: int) -> int:
        """Uniform integer in [lower, upper)."""
        if upper <= lower:
            raise ParameterError("empty range")
        return lower + self.randbelow(upper - lower)


class SystemRandomSource(RandomSource):
    def read(self, n_bytes: int) -> bytes:
        return get_random_bytes(n_bytes)


class SeededRandomSource(RandomSource):
    """Deterministic stream from a SHAKE256 XOF keyed by ``seed``.

    Only meant for tests and reproducible demos: anyone who knows the seed
    can regenerate every key and nonce.
    """

    def __init__(self, seed):
        if isinstance(seed, str):
            seed = seed.encode("utf-8")
        elif isinstance(seed, int):
            seed = seed.to_bytes((seed.bit_length() + 8) // 8, "big", signed=True)
        self._xof = SHAKE256.new(data=b"election-tally-seed:" + bytes(seed))

    def read(self, n_bytes: int) -> bytes:
        return self._xof.read(n_bytes)


_default_source = SystemRandomSource()


def default_source() -> RandomSource:
    return _default_source
