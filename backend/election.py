"""
Election Lifecycle — Submission and Tally Logic

Orchestrates one election from key generation to published result:
  1. Generate a per-election Paillier keypair and publish the public key
  2. Accept one encrypted submission per eligible voter while in progress
  3. On close, homomorphically merge every submission per candidate
  4. Have the tally authority decrypt the aggregate once and record it

The store only ever sees the public key and ciphertexts. The private key
lives inside the TallyAuthority returned by open_election().
"""

import logging

from ballot_store import (
    STATUS_IN_PROGRESS,
    count_submissions,
    create_election,
    get_election,
    has_submitted,
    init_db,
    is_eligible,
    load_submissions,
    mark_election_closed,
    seed_eligible_voters,
    store_result,
    store_submission,
)
from ballot_store import get_result as _stored_result
from paillier import PublicKey, ciphertext_to_str, generate_keypair
from randomness import RandomSource
from tally import Aggregator, TallyAuthority, parse_submission
from tally_config import KEY_SIZE
from tally_errors import (
    ElectionStateError,
    KeyDestroyedError,
    ParameterError,
    RangeError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_NO_ELECTION = "no_election"


def bootstrap(demo_voter_ids: list = None):
    """Initialize the database and optionally seed eligible voter IDs."""
    init_db()
    if demo_voter_ids:
        seed_eligible_voters(demo_voter_ids)
        logger.info("Seeded %d eligible voters", len(demo_voter_ids))


def open_election(
    election_id: str,
    bit_length: int = KEY_SIZE,
    rng: RandomSource = None,
    authority: TallyAuthority = None,
) -> TallyAuthority:
    """
    Start an election and return the authority that will decrypt its tally.

    By default a fresh keypair is generated. Passing an existing
    ``authority`` reuses its key, which is only allowed when that authority
    was created with ``reusable=True``.
    """
    init_db()
    if get_election(election_id) is not None:
        raise ElectionStateError(f"election {election_id!r} already exists")

    if authority is None:
        authority = TallyAuthority(generate_keypair(bit_length, rng))
    elif not authority.reusable:
        raise ParameterError("authority key is single-use; create a new election key")
    elif authority.retired:
        raise ElectionStateError("authority key has been retired")
    else:
        logger.warning(
            "Reusing election key created %s for %r",
            authority.key_created, election_id,
        )

    create_election(election_id, authority.public_key.to_dict())
    logger.info("Election %r opened", election_id)
    return authority


def get_public_key(election_id: str) -> PublicKey:
    """Return the published public key of an election."""
    election = get_election(election_id)
    if election is None:
        raise ElectionStateError(f"unknown election {election_id!r}")
    return PublicKey.from_dict(election["public_key"])


def submit_ballot(election_id: str, voter_id: str, submission) -> dict:
    """
    Accept one voter's encrypted ballot.

    Parameters
    ----------
    election_id : str
    voter_id : str
        The voting university / voter identity.
    submission : str | dict
        {candidate: "<decimal ciphertext>"}, produced by
        voter_client.prepare_submission().

    Returns
    -------
    dict with keys:
        success    : bool
        candidates : int (only on success)
        error      : str (only on failure)
        code/field : str (only on malformed submissions)
    """
    election = get_election(election_id)
    if election is None:
        return {"success": False, "error": "Unknown election"}
    if election["status"] != STATUS_IN_PROGRESS:
        return {"success": False, "error": "Election is not in progress"}

    # --- Eligibility and one-vote-per-voter checks ---
    if not is_eligible(voter_id):
        return {"success": False, "error": "Voter ID not found in eligible voters list"}
    if has_submitted(election_id, voter_id):
        return {"success": False, "error": "Voter has already submitted a ballot"}

    # --- Ciphertext format and range ---
    public_key = PublicKey.from_dict(election["public_key"])
    try:
        encrypted = parse_submission(submission, public_key)
    except ValidationError as e:
        logger.warning("Rejected malformed submission from %s: %s", voter_id, e.code)
        return {"success": False, "error": e.message, "code": e.code, "field": e.field}
    except RangeError as e:
        logger.warning("Rejected out-of-range submission from %s", voter_id)
        return {"success": False, "error": str(e), "code": "ciphertext_range"}

    canonical = {c: ciphertext_to_str(ct) for c, ct in encrypted.items()}
    try:
        store_submission(election_id, voter_id, canonical)
    except ElectionStateError as e:
        return {"success": False, "error": str(e)}

    logger.info("Accepted ballot from %s for %r", voter_id, election_id)
    return {"success": True, "candidates": len(canonical)}


def close_election(election_id: str, authority: TallyAuthority) -> dict:
    """
    Close voting, aggregate all submissions and decrypt the totals.

    Returns
    -------
    dict with keys:
        success : bool
        results : {candidate: int} (only on success)
        winner  : str | None       (None on a tie or no votes)
        votes   : int
        ballots : int
        error   : str (only on failure)
    """
    election = get_election(election_id)
    if election is None:
        return {"success": False, "error": "Unknown election"}
    if authority.public_key.to_dict() != election["public_key"]:
        raise ParameterError("authority key does not match the election public key")
    # Checked before the status flip so the election stays open for a retry
    if authority.retired:
        raise KeyDestroyedError("authority key has been retired; election left open")
    if not mark_election_closed(election_id):
        return {"success": False, "error": "Election is not in progress"}

    aggregator = Aggregator(authority.public_key)
    aggregator.merge_submissions(load_submissions(election_id))
    result = authority.decrypt_tally(aggregator.close())

    winner = result.winner()
    store_result(election_id, result.to_dict(), winner, result.ballot_count)
    logger.info("Election %r closed with %d ballot(s)", election_id, result.ballot_count)

    return {
        "success": True,
        "results": result.to_dict(),
        "winner": winner["winner"],
        "votes": winner["votes"],
        "ballots": result.ballot_count,
    }


def election_status(election_id: str) -> dict:
    election = get_election(election_id)
    if election is None:
        return {"election_id": election_id, "status": STATUS_NO_ELECTION, "submissions": 0}
    return {
        "election_id": election_id,
        "status": election["status"],
        "submissions": count_submissions(election_id),
        "opened_at": election["opened_at"],
        "closed_at": election["closed_at"],
    }


def get_result(election_id: str):
    """Return the recorded result of a closed election, or None."""
    return _stored_result(election_id)
