"""
Encrypted Tally — Aggregation and Decryption Roles

Two capabilities that only ever exchange ciphertext values:

  Aggregator (public key only):
    Multiplies each voter's per-candidate ciphertexts into one running
    ciphertext per candidate (the tally bucket). It can never read a vote.

  TallyAuthority (private key holder):
    Decrypts a frozen AggregatedTally exactly once and produces the
    ElectionResult. There is deliberately no entry point that decrypts
    individual ballots.
"""

import json
import logging
import threading
import uuid
from collections.abc import Mapping
from types import MappingProxyType

from ballot_validator import parse_payload
from paillier import (
    KeyPair,
    PublicKey,
    check_ciphertext,
    ciphertext_from_str,
    ciphertext_to_str,
    combine,
    decrypt,
)
from tally_errors import ElectionStateError, KeyDestroyedError, NotAnObject, ParameterError

logger = logging.getLogger(__name__)


def parse_submission(submission, public_key: PublicKey) -> dict:
    """
    Decode one voter's wire submission {candidate: "<decimal>"} into
    {candidate: int}, checking every ciphertext against ``public_key``.
    """
    data = parse_payload(submission)
    if not isinstance(data, dict):
        raise NotAnObject("submission must be a JSON object")
    parsed = {}
    for candidate, value in data.items():
        if not isinstance(candidate, str):
            raise NotAnObject("candidate names must be strings", field=str(candidate))
        parsed[candidate] = ciphertext_from_str(value, public_key, field_name=candidate)
    return parsed


class AggregatedTally:
    """
    One ciphertext per candidate, each the homomorphic sum of every
    contribution so far. Append-only until ``freeze()``.
    """

    def __init__(self, public_key: PublicKey):
        self.public_key = public_key
        self.tally_id = uuid.uuid4().hex
        self._lock = threading.Lock()
        self._buckets: dict = {}
        self._ballot_count = 0
        self._frozen = False

    def add(self, encrypted_ballot: dict):
        """Fold one voter's {candidate: ciphertext} into the buckets."""
        for candidate, ciphertext in encrypted_ballot.items():
            if not isinstance(candidate, str):
                raise NotAnObject("candidate names must be strings", field=str(candidate))
            check_ciphertext(self.public_key, ciphertext)

        with self._lock:
            if self._frozen:
                raise ElectionStateError("tally is frozen; no more ballots accepted")
            for candidate, ciphertext in encrypted_ballot.items():
                current = self._buckets.get(candidate, 1)
                self._buckets[candidate] = combine(self.public_key, (current, ciphertext))
            self._ballot_count += 1

    def freeze(self):
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        with self._lock:
            return self._frozen

    @property
    def ballot_count(self) -> int:
        with self._lock:
            return self._ballot_count

    def candidates(self) -> list:
        with self._lock:
            return list(self._buckets)

    def snapshot(self) -> dict:
        with self._lock:
            return dict(self._buckets)

    def to_wire(self) -> dict:
        return {c: ciphertext_to_str(ct) for c, ct in self.snapshot().items()}


class Aggregator:
    def __init__(self, public_key: PublicKey):
        self.public_key = public_key
        self.tally = AggregatedTally(public_key)

    def accumulate(self, encrypted_ballot: dict):
        self.tally.add(encrypted_ballot)

    def merge_submission(self, submission):
        self.tally.add(parse_submission(submission, self.public_key))

    def merge_submissions(self, submissions) -> int:
        """Merge an iterable of wire submissions; returns how many were merged."""
        merged = 0
        for submission in submissions:
            self.merge_submission(submission)
            merged += 1
        return merged

    def close(self) -> AggregatedTally:
        self.tally.freeze()
        logger.info(
            "Tally %s frozen with %d ballot(s) across %d candidate(s)",
            self.tally.tally_id, self.tally.ballot_count, len(self.tally.candidates()),
        )
        return self.tally


class ElectionResult(Mapping):
    """Read-only {candidate: total} decrypted from a frozen tally."""

    def __init__(self, totals: dict, ballot_count: int = 0):
        self._totals = MappingProxyType(dict(totals))
        self._ballot_count = ballot_count

    @property
    def ballot_count(self) -> int:
        return self._ballot_count

    def __getitem__(self, candidate):
        return self._totals[candidate]

    def __iter__(self):
        return iter(self._totals)

    def __len__(self):
        return len(self._totals)

    def __repr__(self):
        return f"ElectionResult({dict(self._totals)!r})"

    def winner(self) -> dict:
        """{"winner": name, "votes": total}; winner is None on a tie or no votes."""
        if not self._totals:
            return {"winner": None, "votes": 0}
        top = max(self._totals.values())
        leaders = [c for c, v in self._totals.items() if v == top]
        name = leaders[0] if len(leaders) == 1 and top > 0 else None
        return {"winner": name, "votes": top}

    def to_dict(self) -> dict:
        return dict(self._totals)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class TallyAuthority:
    """
    Holds the election keypair. Unless ``reusable`` is set the private key is
    destroyed right after the first successful tally decryption.
    """

    def __init__(self, keypair: KeyPair, reusable: bool = False):
        self._keypair = keypair
        self.reusable = reusable
        self._decrypted = set()
        self._lock = threading.Lock()

    @property
    def public_key(self) -> PublicKey:
        return self._keypair.public_key

    @property
    def key_created(self) -> str:
        return self._keypair.created_label()

    @property
    def retired(self) -> bool:
        return self._keypair.private_key.destroyed

    def new_aggregator(self) -> Aggregator:
        return Aggregator(self.public_key)

    def decrypt_tally(self, tally: AggregatedTally) -> ElectionResult:
        if self.retired:
            raise KeyDestroyedError("authority key has been retired")
        if not tally.frozen:
            raise ElectionStateError("tally is still open; close voting first")
        if tally.public_key != self.public_key:
            raise ParameterError("tally was aggregated under a different public key")

        with self._lock:
            if tally.tally_id in self._decrypted:
                raise ElectionStateError("tally has already been decrypted")
            private_key = self._keypair.private_key
            n = self.public_key.n
            totals = {
                candidate: decrypt(private_key, n, ciphertext)
                for candidate, ciphertext in tally.snapshot().items()
            }
            self._decrypted.add(tally.tally_id)

        logger.info("Tally %s decrypted", tally.tally_id)
        if not self.reusable:
            self.retire()
        return ElectionResult(totals, ballot_count=tally.ballot_count)

    def retire(self):
        if not self.retired:
            self._keypair.destroy()
            logger.info("Election private key destroyed")
