"""
Ballot Schema Validation

Untrusted vote payloads are checked here before anything is encrypted. A
valid ballot is a flat JSON object mapping candidate name to a non-negative
integer allocation, with the allocations summing to at most the cap:

    {"Alice": 50, "Bob": 30, "blank": 0}

Rules are applied in order and the first failure is raised as a specific
ValidationError subclass carrying the offending field.
"""

import json

from tally_config import BALLOT_CAP, REQUIRE_ALLOCATION
from tally_errors import (
    CapExceeded,
    DuplicateCandidate,
    EmptyBallot,
    NegativeValue,
    NonIntegerValue,
    NotAnObject,
    ParameterError,
    ValidationError,
)


def _reject_duplicate_keys(pairs):
    obj = {}
    for key, value in pairs:
        if key in obj:
            raise DuplicateCandidate(f"candidate {key!r} appears more than once", field=key)
        obj[key] = value
    return obj


class _OversizedInteger:
    """JSON integer literal too long for int(); kept so validate() can name the field."""

    def __init__(self, text: str):
        self.negative = text.startswith("-")


def _parse_int(text: str):
    try:
        return int(text)
    except ValueError:
        return _OversizedInteger(text)


def parse_payload(raw):
    """Decode JSON text/bytes; already-decoded objects pass through."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise NotAnObject("payload is not valid UTF-8") from None
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw, object_pairs_hook=_reject_duplicate_keys, parse_int=_parse_int)
    except ValidationError:
        raise
    except ValueError as e:
        raise NotAnObject(f"payload is not valid JSON ({e})") from None


def validate(raw, cap: int = BALLOT_CAP, require_allocation: bool = REQUIRE_ALLOCATION) -> dict:
    """
    Validate and normalise an untrusted ballot.

    Parameters
    ----------
    raw : str | bytes | dict
        JSON text or an already-decoded object.
    cap : int
        Maximum sum of all allocations.
    require_allocation : bool
        Reject an empty object when True.

    Returns
    -------
    dict mapping candidate name (verbatim, key order preserved) to int.
    """
    if isinstance(cap, bool) or not isinstance(cap, int) or cap < 0:
        raise ParameterError("cap must be a non-negative integer")

    ballot = parse_payload(raw)

    # --- Shape: flat object with string keys ---
    if not isinstance(ballot, dict):
        raise NotAnObject(f"ballot must be a JSON object, got {type(ballot).__name__}")
    for candidate, value in ballot.items():
        if not isinstance(candidate, str):
            raise NotAnObject("candidate names must be strings", field=str(candidate))
        if isinstance(value, (dict, list, tuple)):
            raise NotAnObject("nested values are not allowed", field=candidate)

    # --- Values: non-negative integers ---
    for candidate, value in ballot.items():
        if isinstance(value, _OversizedInteger):
            if value.negative:
                raise NegativeValue("allocation must not be negative", field=candidate)
            raise CapExceeded(f"allocation exceeds the cap of {cap}", field=candidate)
        if isinstance(value, bool) or not isinstance(value, int):
            raise NonIntegerValue(
                f"allocation must be an integer, got {type(value).__name__}",
                field=candidate,
            )
        if value < 0:
            raise NegativeValue("allocation must not be negative", field=candidate)

    # --- Total ---
    total = sum(ballot.values())
    if total > cap:
        raise CapExceeded(f"allocations sum to {total}, above the cap of {cap}")

    if require_allocation and not ballot:
        raise EmptyBallot("ballot must allocate to at least one candidate")

    return dict(ballot)
