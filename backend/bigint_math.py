"""
Arbitrary-precision arithmetic primitives for the Paillier tally.

Python integers are unbounded, so everything here is exact. All functions are
deterministic in their inputs except ``random_prime`` and
``is_probable_prime``, which draw from an injected ``RandomSource``.
"""

from Crypto.Math.Primality import miller_rabin_test, COMPOSITE
from Crypto.Util.number import sieve_base

from randomness import RandomSource, default_source
from tally_config import MILLER_RABIN_ROUNDS, TRIAL_DIVISION_PRIMES
from tally_errors import NoInverseError, ParameterError

_SMALL_PRIMES = tuple(sieve_base[:TRIAL_DIVISION_PRIMES])
_SMALL_PRIME_SET = frozenset(_SMALL_PRIMES)
_LARGEST_SMALL_PRIME = _SMALL_PRIMES[-1]


def mod_pow(base: int, exponent: int, modulus: int) -> int:
    """base**exponent mod modulus by right-to-left binary exponentiation."""
    if modulus < 1:
        raise ParameterError("modulus must be >= 1")
    if exponent < 0:
        raise ParameterError("exponent must be non-negative; use mod_inverse first")
    if modulus == 1:
        return 0

    result = 1
    base %= modulus
    while exponent:
        if exponent & 1:
            result = (result * base) % modulus
        base = (base * base) % modulus
        exponent >>= 1
    return result


def gcd(a: int, b: int) -> int:
    """Euclidean gcd of two non-negative integers. gcd(0, 0) is defined as 0."""
    if a < 0 or b < 0:
        raise ParameterError("gcd is defined for non-negative integers only")
    while b:
        a, b = b, a % b
    return a


def lcm(a: int, b: int) -> int:
    if a < 0 or b < 0:
        raise ParameterError("lcm is defined for non-negative integers only")
    if a == 0 or b == 0:
        return 0
    return a // gcd(a, b) * b


def mod_inverse(a: int, modulus: int) -> int:
    """
    Return x in [0, modulus) with a*x = 1 (mod modulus).

    Raises NoInverseError when gcd(a, modulus) != 1.
    """
    if modulus < 1:
        raise ParameterError("modulus must be >= 1")

    # Extended Euclid on (a mod m, m), tracking only the coefficient of a
    old_r, r = a % modulus, modulus
    old_s, s = 1, 0
    while r:
        q = old_r // r
        old_r, r = r, old_r - q * r
        old_s, s = s, old_s - q * s

    if old_r != 1:
        raise NoInverseError(f"{a} has no inverse modulo the given modulus (gcd={old_r})")
    return old_s % modulus


# ---------------------------------------------------------------------------
# Primes
# ---------------------------------------------------------------------------

def is_probable_prime(
    candidate: int,
    rounds: int = MILLER_RABIN_ROUNDS,
    rng: RandomSource = None,
) -> bool:
    """
    Trial division by small primes, then Miller-Rabin with ``rounds`` random
    bases drawn from ``rng``.
    """
    if candidate < 2:
        return False
    if candidate in _SMALL_PRIME_SET:
        return True
    for p in _SMALL_PRIMES:
        if candidate % p == 0:
            return False
    if candidate < _LARGEST_SMALL_PRIME * _LARGEST_SMALL_PRIME:
        return True

    rng = rng or default_source()
    return miller_rabin_test(candidate, rounds, randfunc=rng.read) != COMPOSITE


def random_prime(
    bit_length: int,
    rng: RandomSource = None,
    rounds: int = MILLER_RABIN_ROUNDS,
) -> int:
    """
    Draw a probable prime of exactly ``bit_length`` bits.

    The two most significant bits are forced on so that the product of two
    such primes has exactly ``2 * bit_length`` bits.
    """
    if bit_length < 2:
        raise ParameterError("a prime needs at least 2 bits")
    rng = rng or default_source()

    top_bits = (1 << (bit_length - 1)) | (1 << (bit_length - 2))
    while True:
        candidate = rng.randbits(bit_length) | top_bits | 1
        if is_probable_prime(candidate, rounds=rounds, rng=rng):
            return candidate
