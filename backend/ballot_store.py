"""
Election Ballot Store

Uses SQLite to keep what the tally needs between submission and close:
eligible voters, each election's public key and status, every voter's
encrypted submission, and the final decrypted result.
The private key is never stored here.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager

from tally_config import DB_PATH
from tally_errors import DuplicateSubmissionError, ElectionStateError

STATUS_IN_PROGRESS = "in_progress"
STATUS_CLOSED = "closed"

# Thread-local connection cache
_local = threading.local()


def get_connection() -> sqlite3.Connection:
    if not hasattr(_local, "conn") or _local.conn is None:
        _local.conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
        _local.conn.row_factory = sqlite3.Row
        _local.conn.execute("PRAGMA journal_mode=WAL")
        _local.conn.execute("PRAGMA foreign_keys=ON")
    return _local.conn


def close_connection():
    conn = getattr(_local, "conn", None)
    if conn is not None:
        conn.close()
        _local.conn = None


@contextmanager
def get_db():
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db():
    """Create tables if they do not exist."""
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS eligible_voters (
                voter_id    TEXT PRIMARY KEY,
                name        TEXT
            );

            CREATE TABLE IF NOT EXISTS elections (
                election_id TEXT PRIMARY KEY,
                public_n    TEXT NOT NULL,
                public_g    TEXT NOT NULL,
                status      TEXT NOT NULL,
                opened_at   TEXT NOT NULL DEFAULT (datetime('now')),
                closed_at   TEXT
            );

            CREATE TABLE IF NOT EXISTS submissions (
                election_id  TEXT NOT NULL REFERENCES elections(election_id),
                voter_id     TEXT NOT NULL,
                payload      TEXT NOT NULL,
                submitted_at TEXT NOT NULL DEFAULT (datetime('now')),
                PRIMARY KEY (election_id, voter_id)
            );

            CREATE TABLE IF NOT EXISTS results (
                election_id TEXT PRIMARY KEY REFERENCES elections(election_id),
                totals      TEXT NOT NULL,
                winner      TEXT,
                votes       INTEGER NOT NULL,
                ballots     INTEGER NOT NULL,
                created_at  TEXT NOT NULL DEFAULT (datetime('now'))
            );
        """)


# ---------------------------------------------------------------------------
# Eligible voters
# ---------------------------------------------------------------------------

def seed_eligible_voters(voter_ids: list):
    """Pre-populate the eligible voters list (admin operation)."""
    with get_db() as conn:
        conn.executemany(
            "INSERT OR IGNORE INTO eligible_voters (voter_id) VALUES (?)",
            [(vid,) for vid in voter_ids],
        )


def add_eligible_voter(voter_id: str, name: str = None):
    with get_db() as conn:
        conn.execute(
            """INSERT INTO eligible_voters (voter_id, name) VALUES (?, ?)
               ON CONFLICT(voter_id) DO UPDATE SET name=excluded.name""",
            (voter_id, name),
        )


def remove_eligible_voter(voter_id: str) -> bool:
    with get_db() as conn:
        cur = conn.execute("DELETE FROM eligible_voters WHERE voter_id = ?", (voter_id,))
        return cur.rowcount > 0


def is_eligible(voter_id: str) -> bool:
    with get_db() as conn:
        row = conn.execute(
            "SELECT voter_id FROM eligible_voters WHERE voter_id = ?", (voter_id,)
        ).fetchone()
        return row is not None


def list_eligible_voters() -> list:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT voter_id, name FROM eligible_voters ORDER BY voter_id"
        ).fetchall()
        return [{"voter_id": r["voter_id"], "name": r["name"]} for r in rows]


# ---------------------------------------------------------------------------
# Elections
# ---------------------------------------------------------------------------

def create_election(election_id: str, public_key: dict):
    """Record a new election with its public key {"n": str, "g": str}."""
    try:
        with get_db() as conn:
            conn.execute(
                "INSERT INTO elections (election_id, public_n, public_g, status) "
                "VALUES (?, ?, ?, ?)",
                (election_id, public_key["n"], public_key["g"], STATUS_IN_PROGRESS),
            )
    except sqlite3.IntegrityError:
        raise ElectionStateError(f"election {election_id!r} already exists") from None


def get_election(election_id: str):
    """Return the election row as a dict, or None."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT election_id, public_n, public_g, status, opened_at, closed_at "
            "FROM elections WHERE election_id = ?",
            (election_id,),
        ).fetchone()
        if row is None:
            return None
        return {
            "election_id": row["election_id"],
            "public_key": {"n": row["public_n"], "g": row["public_g"]},
            "status": row["status"],
            "opened_at": row["opened_at"],
            "closed_at": row["closed_at"],
        }


def mark_election_closed(election_id: str) -> bool:
    """Flip in_progress -> closed. Returns False if it was not in progress."""
    with get_db() as conn:
        cur = conn.execute(
            """UPDATE elections SET status = ?, closed_at = datetime('now')
               WHERE election_id = ? AND status = ?""",
            (STATUS_CLOSED, election_id, STATUS_IN_PROGRESS),
        )
        return cur.rowcount == 1


# ---------------------------------------------------------------------------
# Encrypted submissions
# ---------------------------------------------------------------------------

def store_submission(election_id: str, voter_id: str, submission: dict):
    """
    Persist one voter's {candidate: "<decimal ciphertext>"} object.

    The insert only happens while the election is in progress, so nothing
    can land after close_election has started reading submissions.
    """
    try:
        with get_db() as conn:
            cur = conn.execute(
                """INSERT INTO submissions (election_id, voter_id, payload)
                   SELECT ?, ?, ?
                   WHERE EXISTS (SELECT 1 FROM elections
                                 WHERE election_id = ? AND status = ?)""",
                (
                    election_id,
                    voter_id,
                    json.dumps(submission, ensure_ascii=False),
                    election_id,
                    STATUS_IN_PROGRESS,
                ),
            )
    except sqlite3.IntegrityError:
        raise DuplicateSubmissionError(
            f"voter {voter_id!r} has already voted in {election_id!r}"
        ) from None
    if cur.rowcount != 1:
        raise ElectionStateError(f"election {election_id!r} is not in progress")


def has_submitted(election_id: str, voter_id: str) -> bool:
    with get_db() as conn:
        row = conn.execute(
            "SELECT 1 FROM submissions WHERE election_id = ? AND voter_id = ?",
            (election_id, voter_id),
        ).fetchone()
        return row is not None


def count_submissions(election_id: str) -> int:
    with get_db() as conn:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM submissions WHERE election_id = ?", (election_id,)
        ).fetchone()
        return row["n"]


def load_submissions(election_id: str) -> list:
    """All submissions for an election as decoded dicts, oldest first."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT payload FROM submissions WHERE election_id = ? "
            "ORDER BY submitted_at, rowid",
            (election_id,),
        ).fetchall()
        return [json.loads(r["payload"]) for r in rows]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

def store_result(election_id: str, totals: dict, winner: dict, ballots: int):
    try:
        with get_db() as conn:
            conn.execute(
                "INSERT INTO results (election_id, totals, winner, votes, ballots) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    election_id,
                    json.dumps(totals, ensure_ascii=False),
                    winner["winner"],
                    winner["votes"],
                    ballots,
                ),
            )
    except sqlite3.IntegrityError:
        raise ElectionStateError(f"result for {election_id!r} already recorded") from None


def get_result(election_id: str):
    with get_db() as conn:
        row = conn.execute(
            "SELECT totals, winner, votes, ballots, created_at FROM results "
            "WHERE election_id = ?",
            (election_id,),
        ).fetchone()
        if row is None:
            return None
        return {
            "results": json.loads(row["totals"]),
            "winner": row["winner"],
            "votes": row["votes"],
            "ballots": row["ballots"],
            "created_at": row["created_at"],
        }
