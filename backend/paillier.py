"""
Paillier Cryptosystem for Encrypted Tallies

Additively homomorphic public-key encryption:
  1. The tally authority generates a keypair (n = p*q, g = n+1)
  2. Voters encrypt each per-candidate allocation m as g^m * r^n mod n^2
  3. Anyone holding only the public key multiplies ciphertexts together;
     the product decrypts to the SUM of the plaintexts
  4. The authority decrypts only the aggregate, never individual ballots

The public key is safe to publish. The private key never leaves the
process that generated it and has no serialised form.
"""

import logging
import re
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from bigint_math import gcd, lcm, mod_inverse, mod_pow, random_prime
from randomness import RandomSource, default_source
from tally_config import KEY_SIZE, KEYGEN_MAX_ATTEMPTS, MIN_KEY_SIZE
from tally_errors import (
    CiphertextRangeError,
    InsecureParameterError,
    KeyDestroyedError,
    KeyGenerationError,
    MalformedCiphertext,
    ParameterError,
    PlaintextRangeError,
)

logger = logging.getLogger(__name__)

_DECIMAL = re.compile(r"0|[1-9][0-9]*")


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PublicKey:
    n: int
    g: int
    n_square: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not _is_int(self.n) or self.n < 3:
            raise ParameterError("modulus n must be an integer >= 3")
        n_square = self.n * self.n
        if not _is_int(self.g) or not 0 < self.g < n_square:
            raise ParameterError("generator g must lie in (0, n^2)")
        object.__setattr__(self, "n_square", n_square)

    def to_dict(self) -> dict:
        return {"n": str(self.n), "g": str(self.g)}

    @classmethod
    def from_dict(cls, data: dict) -> "PublicKey":
        try:
            n, g = data["n"], data["g"]
        except (KeyError, TypeError):
            raise ParameterError("public key must be an object with 'n' and 'g'") from None
        return cls(n=_decode_decimal(n, "n"), g=_decode_decimal(g, "g"))


class PrivateKey:
    """
    Decryption exponent ``lambda`` and its companion ``mu``.

    ``destroy()`` drops the values; any later use raises KeyDestroyedError.
    """

    def __init__(self, lambda_: int, mu: int, n: int):
        self._lambda = lambda_
        self._mu = mu
        self._n = n

    @property
    def destroyed(self) -> bool:
        return self._lambda is None

    @property
    def lambda_(self) -> int:
        self._check_alive()
        return self._lambda

    @property
    def mu(self) -> int:
        self._check_alive()
        return self._mu

    @property
    def n(self) -> int:
        self._check_alive()
        return self._n

    def destroy(self):
        self._lambda = None
        self._mu = None
        self._n = None

    def _check_alive(self):
        if self._lambda is None:
            raise KeyDestroyedError("private key has been destroyed")

    def __repr__(self):
        state = "destroyed" if self.destroyed else "live"
        return f"<PrivateKey {state}>"


class KeyPair:
    def __init__(self, public_key: PublicKey, private_key: PrivateKey):
        self.public_key = public_key
        self.private_key = private_key
        self.created_at = time.time()

    @property
    def bit_length(self) -> int:
        return self.public_key.n.bit_length()

    def destroy(self):
        self.private_key.destroy()

    def created_label(self) -> str:
        return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.created_at))

    def __repr__(self):
        return f"<KeyPair {self.bit_length}-bit created {self.created_label()} {self.private_key!r}>"


def _L(x: int, n: int) -> int:
    return (x - 1) // n


def generate_keypair(
    bit_length: int = KEY_SIZE,
    rng: RandomSource = None,
    max_attempts: int = KEYGEN_MAX_ATTEMPTS,
) -> KeyPair:
    """
    Generate a Paillier keypair whose modulus has exactly ``bit_length`` bits.

    Raises InsecureParameterError below MIN_KEY_SIZE and KeyGenerationError
    when ``max_attempts`` prime pairs all fail the distinctness/coprimality
    checks.
    """
    if not _is_int(bit_length) or bit_length < MIN_KEY_SIZE:
        raise InsecureParameterError(
            f"key size {bit_length} is below the {MIN_KEY_SIZE}-bit minimum"
        )
    if bit_length % 2:
        raise ParameterError("key size must be even")
    if max_attempts < 1:
        raise ParameterError("max_attempts must be at least 1")
    rng = rng or default_source()

    half = bit_length // 2
    logger.info("Generating %d-bit Paillier keypair...", bit_length)
    started = time.monotonic()

    for attempt in range(1, max_attempts + 1):
        p = random_prime(half, rng)
        q = random_prime(half, rng)
        if p == q:
            continue
        n = p * q
        if gcd(n, (p - 1) * (q - 1)) != 1:
            continue

        n_square = n * n
        g = n + 1
        lambda_ = lcm(p - 1, q - 1)
        mu = mod_inverse(_L(mod_pow(g, lambda_, n_square), n), n)

        logger.info(
            "Paillier keypair ready after %d attempt(s) in %.2fs",
            attempt, time.monotonic() - started,
        )
        return KeyPair(PublicKey(n=n, g=g), PrivateKey(lambda_, mu, n))

    raise KeyGenerationError(
        f"could not find a suitable prime pair in {max_attempts} attempts"
    )


_keygen_executor = None
_keygen_executor_lock = threading.Lock()


def generate_keypair_async(
    bit_length: int = KEY_SIZE,
    rng: RandomSource = None,
    max_attempts: int = KEYGEN_MAX_ATTEMPTS,
) -> Future:
    """Run generate_keypair on a dedicated worker thread."""
    global _keygen_executor
    if _keygen_executor is None:
        with _keygen_executor_lock:
            if _keygen_executor is None:
                _keygen_executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="paillier-keygen"
                )
    return _keygen_executor.submit(generate_keypair, bit_length, rng, max_attempts)


# ---------------------------------------------------------------------------
# Encrypt / decrypt / combine
# ---------------------------------------------------------------------------

def encrypt(public_key: PublicKey, plaintext: int, rng: RandomSource = None) -> int:
    """
    Encrypt ``plaintext`` in [0, n) with a fresh nonce r, gcd(r, n) = 1.

    c = g^m * r^n mod n^2
    """
    n = public_key.n
    if not _is_int(plaintext) or not 0 <= plaintext < n:
        raise PlaintextRangeError("plaintext must be an integer in [0, n)")
    rng = rng or default_source()

    while True:
        r = rng.randrange(1, n)
        if gcd(r, n) == 1:
            break

    n_square = public_key.n_square
    return (mod_pow(public_key.g, plaintext, n_square) * mod_pow(r, n, n_square)) % n_square


def decrypt(private_key: PrivateKey, n: int, ciphertext: int) -> int:
    """
    Recover the plaintext of ``ciphertext`` under the modulus ``n``.

    m = L(c^lambda mod n^2) * mu mod n
    """
    if n != private_key.n:
        raise ParameterError("private key does not belong to this modulus")
    n_square = n * n
    _check_ciphertext(ciphertext, n, n_square)

    x = mod_pow(ciphertext, private_key.lambda_, n_square)
    return (_L(x, n) * private_key.mu) % n


def combine(public_key: PublicKey, ciphertexts) -> int:
    """
    Homomorphic sum: the product of ``ciphertexts`` mod n^2.

    An empty sequence yields 1, the encryption of zero with r = 1.
    """
    n, n_square = public_key.n, public_key.n_square
    result = 1
    for ciphertext in ciphertexts:
        _check_ciphertext(ciphertext, n, n_square)
        result = (result * ciphertext) % n_square
    return result


def check_ciphertext(public_key: PublicKey, ciphertext: int) -> int:
    """Raise CiphertextRangeError unless ``ciphertext`` is usable under ``public_key``."""
    _check_ciphertext(ciphertext, public_key.n, public_key.n_square)
    return ciphertext


def _check_ciphertext(ciphertext: int, n: int, n_square: int):
    if not _is_int(ciphertext) or not 0 <= ciphertext < n_square:
        raise CiphertextRangeError("ciphertext must be an integer in [0, n^2)")
    # Non-units mod n^2 are never produced by encrypt and decrypt to garbage
    if gcd(ciphertext, n) != 1:
        raise CiphertextRangeError("ciphertext is not invertible modulo n^2")


# ---------------------------------------------------------------------------
# Serialization helpers (for wire transport)
# ---------------------------------------------------------------------------

def ciphertext_to_str(ciphertext: int) -> str:
    return str(ciphertext)


def ciphertext_from_str(value, public_key: PublicKey = None, field_name: str = None) -> int:
    """
    Parse a canonical decimal ciphertext. With ``public_key`` the value is
    also checked against [0, n^2).
    """
    if not isinstance(value, str) or not _DECIMAL.fullmatch(value):
        raise MalformedCiphertext("expected a canonical decimal string", field=field_name)
    ciphertext = int(value)
    if public_key is not None:
        _check_ciphertext(ciphertext, public_key.n, public_key.n_square)
    return ciphertext


def _decode_decimal(value, field_name: str) -> int:
    if not isinstance(value, str) or not _DECIMAL.fullmatch(value):
        raise ParameterError(f"{field_name} must be a decimal string")
    return int(value)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
