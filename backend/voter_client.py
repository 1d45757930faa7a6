"""
Voter-side ballot preparation.

Validate the raw ballot, encrypt one ciphertext per candidate under the
election public key, and encode the result for transport. The plaintext
ballot is not kept once its ciphertexts exist.
"""

import json

from ballot_validator import validate
from paillier import PublicKey, ciphertext_to_str, encrypt
from randomness import RandomSource
from tally_config import BALLOT_CAP, REQUIRE_ALLOCATION


def encrypt_ballot(public_key: PublicKey, ballot: dict, rng: RandomSource = None) -> dict:
    """Encrypt every allocation of an already-validated ballot."""
    return {
        candidate: encrypt(public_key, allocation, rng)
        for candidate, allocation in ballot.items()
    }


def prepare_submission(
    raw,
    public_key: PublicKey,
    cap: int = BALLOT_CAP,
    require_allocation: bool = REQUIRE_ALLOCATION,
    rng: RandomSource = None,
) -> dict:
    """
    Turn an untrusted ballot into a wire submission.

    Returns {candidate: "<decimal ciphertext>"}. Raises ValidationError for
    a malformed ballot.
    """
    ballot = validate(raw, cap=cap, require_allocation=require_allocation)
    encrypted = encrypt_ballot(public_key, ballot, rng)
    return {candidate: ciphertext_to_str(c) for candidate, c in encrypted.items()}


def submission_to_json(submission: dict) -> str:
    return json.dumps(submission, ensure_ascii=False)
