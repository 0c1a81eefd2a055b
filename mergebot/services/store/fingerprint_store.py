"""SQLite-backed fingerprint store: pinned head SHA -> MergeRequest.

One row per pipeline entry. The key is ``owner/repo@sha`` so two
repositories sharing a head SHA never collide; the ``sha`` column allows
lookups from status deliveries that only carry the commit.
"""

import logging
import sqlite3
from pathlib import Path

from pydantic import ValidationError

from mergebot.services.store.schemas import MergeRequest

LOG = logging.getLogger("mergebot.services.store.fingerprint_store")


class StoreError(Exception):
    """Raised when the database can't be read or written."""

    pass


def make_key(owner: str, repo: str, sha: str) -> str:
    """Store key for a PR head."""
    return f"{owner}/{repo}@{sha.strip()}"


def key_for(mr: MergeRequest) -> str:
    return make_key(mr.owner, mr.repo, mr.sha)


class FingerprintStore:
    """Durable key/value map of pipeline entries.

    Writes are serialized by the delivery lock held in the webhook server;
    the store itself does no locking.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS merge_requests (
                    key TEXT PRIMARY KEY,
                    sha TEXT NOT NULL,
                    owner TEXT NOT NULL,
                    repo TEXT NOT NULL,
                    number INTEGER NOT NULL,
                    payload TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS merge_requests_sha ON merge_requests(sha)")
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to initialize {self.db_path}: {e}") from e
        finally:
            conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
            conn.commit()
            return rows
        except sqlite3.Error as e:
            raise StoreError(f"Database error: {e}") from e
        finally:
            conn.close()

    def _decode(self, row: sqlite3.Row) -> MergeRequest | None:
        """Decode a row; undecodable rows are dropped from the database."""
        try:
            return MergeRequest.model_validate_json(row["payload"])
        except ValidationError as e:
            LOG.error("Failed to deserialize key %s from the database: %s", row["key"], e)
            self.delete(row["key"])
            return None

    def get(self, key: str) -> MergeRequest | None:
        """Load the entry stored under ``key``. Returns None if missing."""
        rows = self._execute("SELECT key, payload FROM merge_requests WHERE key = ?", (key,))
        if not rows:
            return None
        try:
            return MergeRequest.model_validate_json(rows[0]["payload"])
        except ValidationError as e:
            raise StoreError(f"Failed to deserialize key {key}: {e}") from e

    def put(self, mr: MergeRequest) -> str:
        """Write ``mr`` under its own key (insert or replace). Returns the key."""
        key = key_for(mr)
        self._execute(
            """
            INSERT INTO merge_requests(key, sha, owner, repo, number, payload)
            VALUES(?, ?, ?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET payload = excluded.payload
            """,
            (key, mr.sha.strip(), mr.owner, mr.repo, mr.number, mr.model_dump_json()),
        )
        LOG.debug("Stored %s under %s", mr.html_url, key)
        return key

    def delete(self, key: str) -> None:
        self._execute("DELETE FROM merge_requests WHERE key = ?", (key,))
        LOG.debug("Deleted %s", key)

    def iterate(self) -> list[tuple[str, MergeRequest]]:
        """Snapshot of all entries in key order.

        A list rather than a live cursor: callers modify the store while
        walking it.
        """
        rows = self._execute("SELECT key, payload FROM merge_requests ORDER BY key ASC")
        entries = []
        for row in rows:
            mr = self._decode(row)
            if mr is not None:
                entries.append((row["key"], mr))
        return entries

    def find_by_sha(self, sha: str) -> list[tuple[str, MergeRequest]]:
        """Entries pinned to ``sha`` in any repository."""
        rows = self._execute(
            "SELECT key, payload FROM merge_requests WHERE sha = ? ORDER BY key ASC",
            (sha.strip(),),
        )
        entries = []
        for row in rows:
            mr = self._decode(row)
            if mr is not None:
                entries.append((row["key"], mr))
        return entries

    def find_by_identity(self, owner: str, repo: str, number: int) -> list[tuple[str, MergeRequest]]:
        rows = self._execute(
            "SELECT key, payload FROM merge_requests WHERE owner = ? AND repo = ? AND number = ? ORDER BY key ASC",
            (owner, repo, number),
        )
        entries = []
        for row in rows:
            mr = self._decode(row)
            if mr is not None:
                entries.append((row["key"], mr))
        return entries
