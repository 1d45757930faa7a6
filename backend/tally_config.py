"""
Configuration defaults for the encrypted tally.

Every value can be overridden through the environment at import time; every
operation also accepts an explicit argument, so these are defaults only.
"""

import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


MIN_KEY_SIZE = 2048  # bits, safety floor
# Values below MIN_KEY_SIZE are rejected by generate_keypair, not clamped
KEY_SIZE = _env_int("TALLY_KEY_SIZE", 3072)  # bits

# 4^-64 = 2^-128 error bound per candidate
MILLER_RABIN_ROUNDS = 64
TRIAL_DIVISION_PRIMES = 1000

KEYGEN_MAX_ATTEMPTS = _env_int("TALLY_KEYGEN_MAX_ATTEMPTS", 32)

BALLOT_CAP = _env_int("TALLY_BALLOT_CAP", 100)
REQUIRE_ALLOCATION = _env_bool("TALLY_REQUIRE_ALLOCATION", False)

DB_PATH = Path(os.environ.get("TALLY_DB_PATH", Path(__file__).parent / "election_tally.db"))
