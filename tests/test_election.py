"""
Unit tests for the election lifecycle module.
"""

import sys
import os
import threading
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

import ballot_store
from paillier import KeyPair, PrivateKey, generate_keypair
from tally import TallyAuthority
from tally_errors import ElectionStateError, KeyDestroyedError, ParameterError
from voter_client import prepare_submission

UNIVERSITIES = ["UNI_001", "UNI_002", "UNI_003"]


@pytest.fixture(autouse=True)
def isolated_db(tmp_path):
    """Each test gets its own SQLite database."""
    ballot_store.DB_PATH = tmp_path / "test_tally.db"
    # Reset thread-local connection
    ballot_store._local = threading.local()
    ballot_store.init_db()
    yield
    ballot_store.close_connection()


@pytest.fixture(scope="module")
def keypair():
    return generate_keypair(2048)


@pytest.fixture
def authority(keypair):
    return TallyAuthority(keypair, reusable=True)


@pytest.fixture
def election(isolated_db, authority):
    from election import bootstrap, open_election
    bootstrap(demo_voter_ids=UNIVERSITIES)
    open_election("E1", authority=authority)
    return "E1"


def vote(election_id, voter_id, ballot):
    from election import get_public_key, submit_ballot
    submission = prepare_submission(ballot, get_public_key(election_id))
    return submit_ballot(election_id, voter_id, submission)


class TestBootstrap:
    def test_eligible_voters_seeded(self):
        from election import bootstrap
        bootstrap(demo_voter_ids=["V1", "V2", "V3"])
        assert ballot_store.is_eligible("V1")
        assert ballot_store.is_eligible("V3")
        assert not ballot_store.is_eligible("V4")

    def test_eligible_voter_management(self):
        ballot_store.add_eligible_voter("UNI_X", "Politecnico")
        assert ballot_store.list_eligible_voters() == [{"voter_id": "UNI_X", "name": "Politecnico"}]
        assert ballot_store.remove_eligible_voter("UNI_X")
        assert not ballot_store.is_eligible("UNI_X")


class TestOpenElection:
    def test_fresh_key_published(self):
        from election import election_status, get_public_key, open_election
        authority = open_election("fresh", bit_length=2048)
        assert get_public_key("fresh") == authority.public_key
        assert not authority.reusable
        assert election_status("fresh")["status"] == "in_progress"

    def test_duplicate_election_id(self, election, authority):
        from election import open_election
        with pytest.raises(ElectionStateError):
            open_election(election, authority=authority)

    def test_single_use_key_not_reused(self, election, keypair):
        from election import open_election
        with pytest.raises(ParameterError):
            open_election("E2", authority=TallyAuthority(keypair))

    def test_status_without_election(self):
        from election import election_status
        assert election_status("nope")["status"] == "no_election"

    def test_unknown_public_key(self):
        from election import get_public_key
        with pytest.raises(ElectionStateError):
            get_public_key("nope")

    def test_private_key_never_stored(self, election, keypair):
        vote(election, "UNI_001", {"A": 1})
        secret = str(keypair.private_key.lambda_)
        conn = ballot_store.get_connection()
        for table in ("eligible_voters", "elections", "submissions", "results"):
            for row in conn.execute(f"SELECT * FROM {table}").fetchall():
                assert all(secret not in str(value) for value in tuple(row))


class TestSubmitBallot:
    def test_accepted(self, election):
        from election import election_status
        result = vote(election, "UNI_001", {"Alice": 50, "Bob": 30, "blank": 0})
        assert result == {"success": True, "candidates": 3}
        assert election_status(election)["submissions"] == 1

    def test_ineligible_voter(self, election):
        result = vote(election, "NOT_A_UNIVERSITY", {"A": 1})
        assert not result["success"]
        assert "eligible" in result["error"].lower()

    def test_one_ballot_per_voter(self, election):
        assert vote(election, "UNI_002", {"A": 1})["success"]
        second = vote(election, "UNI_002", {"A": 2})
        assert not second["success"]
        assert "already" in second["error"].lower()

    def test_unknown_election(self, election):
        from election import submit_ballot
        result = submit_ballot("missing", "UNI_001", {"A": "1"})
        assert not result["success"]

    def test_malformed_ciphertext(self, election):
        from election import submit_ballot
        result = submit_ballot(election, "UNI_001", '{"A": "12abc"}')
        assert not result["success"]
        assert result["code"] == "malformed_ciphertext"
        assert result["field"] == "A"
        assert not ballot_store.has_submitted(election, "UNI_001")

    def test_out_of_range_ciphertext(self, election, keypair):
        from election import submit_ballot
        too_big = str(keypair.public_key.n_square)
        result = submit_ballot(election, "UNI_001", {"A": too_big})
        assert not result["success"]
        assert result["code"] == "ciphertext_range"

    def test_closed_election_rejects_votes(self, election, authority):
        from election import close_election
        close_election(election, authority)
        result = vote(election, "UNI_003", {"A": 1})
        assert not result["success"]
        assert "not in progress" in result["error"].lower()

    def test_store_refuses_late_insert(self, election):
        ballot_store.mark_election_closed(election)
        with pytest.raises(ElectionStateError):
            ballot_store.store_submission(election, "UNI_001", {"A": "1"})


class TestCloseElection:
    def test_full_election(self, election, authority):
        from election import close_election, election_status, get_result
        assert vote(election, "UNI_001", {"A": 10, "B": 5})["success"]
        assert vote(election, "UNI_002", {"A": 20, "B": 0})["success"]
        assert vote(election, "UNI_003", {"A": 0, "B": 15})["success"]

        outcome = close_election(election, authority)
        assert outcome["success"]
        assert outcome["results"] == {"A": 30, "B": 20}
        assert outcome["winner"] == "A"
        assert outcome["votes"] == 30
        assert outcome["ballots"] == 3

        stored = get_result(election)
        assert stored["results"] == {"A": 30, "B": 20}
        assert stored["winner"] == "A"
        assert election_status(election)["status"] == "closed"

    def test_close_twice(self, election, authority):
        from election import close_election
        assert close_election(election, authority)["success"]
        second = close_election(election, authority)
        assert not second["success"]

    def test_empty_election(self, election, authority):
        from election import close_election
        outcome = close_election(election, authority)
        assert outcome["results"] == {}
        assert outcome["winner"] is None
        assert outcome["ballots"] == 0

    def test_wrong_authority(self, election):
        from election import close_election, open_election
        other = open_election("other", bit_length=2048)
        with pytest.raises(ParameterError):
            close_election(election, other)

    def test_single_use_key_retired_on_close(self):
        from election import bootstrap, close_election, open_election
        bootstrap(demo_voter_ids=UNIVERSITIES)
        authority = open_election("single", bit_length=2048)
        vote("single", "UNI_001", {"Alice": 7})
        outcome = close_election("single", authority)
        assert outcome["results"] == {"Alice": 7}
        assert authority.retired

    def test_result_absent_while_open(self, election):
        from election import get_result
        assert get_result(election) is None

    def test_retired_authority_leaves_election_open(self, keypair):
        from election import bootstrap, close_election, election_status, get_result, open_election
        sk = keypair.private_key
        retired = TallyAuthority(
            KeyPair(keypair.public_key, PrivateKey(sk.lambda_, sk.mu, sk.n)), reusable=True
        )
        bootstrap(demo_voter_ids=UNIVERSITIES)
        open_election("retired", authority=retired)
        vote("retired", "UNI_001", {"A": 3})
        retired.retire()

        with pytest.raises(KeyDestroyedError):
            close_election("retired", retired)
        assert election_status("retired")["status"] == "in_progress"
        assert get_result("retired") is None

        outcome = close_election("retired", TallyAuthority(keypair, reusable=True))
        assert outcome["results"] == {"A": 3}
