# msgbox/network/sqlite.py
import base64
import logging
import os
import sqlite3
import time
from pathlib import Path
from typing import List, Optional, Union

from msgbox.core.errors import AccountNotFound, LedgerError
from msgbox.core.types import KEY_TYPES, AccountKey, ChunkInfo, RawEntry
from . import PAGE_LIMIT, LedgerClient, MirrorClient

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024          # bytes per physical entry, as on the public ledger
MAX_CHUNKS = 20
SHARD_REALM = "0.0"
FIRST_ENTITY_NUM = 1001


class SQLiteLedger(LedgerClient, MirrorClient):
    """
    Local append-only ledger on SQLite.

    Accounts carry a memo and a native public key, topics are ordered logs with
    1-based sequence numbers, and submissions larger than CHUNK_SIZE are split
    into chunk entries sharing one initial transaction id.
    """

    def __init__(self, db_path: str | Path | None = None, operator_id: Optional[str] = None):
        if db_path is None:
            env_path = os.environ.get("MSGBOX_DB_PATH")
            db_path = env_path if env_path else Path.cwd() / "msgbox-ledger.db"

        if str(db_path) == ":memory:":
            self.db_path = Path(":memory:")
            conn_str = ":memory:"
        else:
            self.db_path = Path(db_path)
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = self.db_path.resolve()
            conn_str = str(self.db_path)

        self.operator_id = operator_id
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(conn_str, isolation_level=None)
        if conn_str != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                account_id      TEXT    PRIMARY KEY,
                memo            TEXT    NOT NULL DEFAULT '',
                public_key      TEXT    NOT NULL,
                key_type        TEXT    NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS topics (
                topic_id        TEXT    PRIMARY KEY,
                memo            TEXT    NOT NULL,
                created_at      TEXT    NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                topic_id            TEXT    NOT NULL,
                sequence            INTEGER NOT NULL,
                message             TEXT    NOT NULL,
                consensus_timestamp TEXT    NOT NULL,
                payer_account_id    TEXT    NOT NULL,
                chunk_tx            TEXT,
                chunk_number        INTEGER,
                chunk_total         INTEGER,
                PRIMARY KEY (topic_id, sequence)
            )
        """)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Ledger connection is closed")
        return self._conn

    # ── Accounts ────────────────────────────────────────────────────────

    def register_account(self, account_id: str, public_key: bytes, key_type: str, memo: str = "") -> None:
        """Create (or re-key) an account with its ledger-native public key."""
        if key_type not in KEY_TYPES:
            raise ValueError(f"Unsupported key type: {key_type}")
        self.conn.execute("""
            INSERT INTO accounts (account_id, memo, public_key, key_type) VALUES (?, ?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET public_key = excluded.public_key, key_type = excluded.key_type
        """, (account_id, memo, public_key.hex(), key_type))

    def _account_row(self, account_id: str):
        row = self.conn.execute(
            "SELECT memo, public_key, key_type FROM accounts WHERE account_id = ?", (account_id,)
        ).fetchone()
        if row is None:
            raise AccountNotFound(f"Account {account_id} does not exist")
        return row

    async def account_exists(self, account_id: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM accounts WHERE account_id = ?", (account_id,)).fetchone()
        return row is not None

    async def get_account_memo(self, account_id: str) -> str:
        return self._account_row(account_id)[0]

    async def update_account_memo(self, account_id: str, memo: str) -> None:
        self._account_row(account_id)
        self.conn.execute("UPDATE accounts SET memo = ? WHERE account_id = ?", (memo, account_id))

    async def get_account_key(self, account_id: str) -> AccountKey:
        _, public_hex, key_type = self._account_row(account_id)
        return AccountKey(public_key=bytes.fromhex(public_hex), key_type=key_type)

    # ── Topics ──────────────────────────────────────────────────────────

    async def create_topic(self, memo: str) -> str:
        count = self.conn.execute("SELECT COUNT(*) FROM topics").fetchone()[0]
        topic_id = f"{SHARD_REALM}.{FIRST_ENTITY_NUM + count}"
        self.conn.execute(
            "INSERT INTO topics (topic_id, memo, created_at) VALUES (?, ?, ?)",
            (topic_id, memo, _timestamp()),
        )
        logger.debug("Topic %s created", topic_id)
        return topic_id

    def _require_topic(self, topic_id: str) -> None:
        row = self.conn.execute("SELECT 1 FROM topics WHERE topic_id = ?", (topic_id,)).fetchone()
        if row is None:
            raise LedgerError(f"Topic {topic_id} does not exist")

    async def submit_message(self, topic_id: str, data: Union[bytes, str]) -> int:
        self._require_topic(topic_id)
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        chunks = [payload[i:i + CHUNK_SIZE] for i in range(0, len(payload), CHUNK_SIZE)] or [b""]
        if len(chunks) > MAX_CHUNKS:
            raise LedgerError(f"Message of {len(payload)} bytes exceeds {MAX_CHUNKS} chunks")

        payer = self.operator_id or "0.0.0"
        valid_start = _timestamp()
        chunk_tx = f"{payer}-{valid_start}-0" if len(chunks) > 1 else None
        next_seq = self.conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) + 1 FROM messages WHERE topic_id = ?", (topic_id,)
        ).fetchone()[0]

        self.conn.execute("BEGIN")
        try:
            for i, chunk in enumerate(chunks):
                self.conn.execute("""
                    INSERT INTO messages
                    (topic_id, sequence, message, consensus_timestamp, payer_account_id,
                     chunk_tx, chunk_number, chunk_total)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    topic_id, next_seq + i, base64.b64encode(chunk).decode("ascii"), _timestamp(), payer,
                    chunk_tx, i + 1 if chunk_tx else None, len(chunks) if chunk_tx else None,
                ))
            self.conn.execute("COMMIT")
        except sqlite3.Error as e:
            self.conn.execute("ROLLBACK")
            raise LedgerError(f"Failed to submit message to {topic_id}: {e}") from e

        if chunk_tx:
            logger.debug("Message split into %d chunks on %s", len(chunks), topic_id)
        return next_seq

    async def query_messages(
        self,
        topic_id: str,
        after: Optional[int] = None,
        order: str = "asc",
        limit: int = PAGE_LIMIT,
    ) -> List[RawEntry]:
        direction = "DESC" if order == "desc" else "ASC"
        cursor = self.conn.execute(f"""
            SELECT sequence, message, consensus_timestamp, payer_account_id,
                   chunk_tx, chunk_number, chunk_total
            FROM messages
            WHERE topic_id = ? AND sequence > ?
            ORDER BY sequence {direction}
            LIMIT ?
        """, (topic_id, after or 0, limit))

        entries = []
        for seq, message, ts, payer, chunk_tx, number, total in cursor:
            chunk_info = ChunkInfo(chunk_tx, number, total) if chunk_tx else None
            entries.append(RawEntry(seq, message, ts, payer, chunk_info))
        return entries

    def get_message_count(self, topic_id: str) -> int:
        cursor = self.conn.execute("SELECT COUNT(*) FROM messages WHERE topic_id = ?", (topic_id,))
        return cursor.fetchone()[0]

    async def close(self) -> None:
        self.close_sync()

    def close_sync(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_sync()


def _timestamp() -> str:
    """Consensus-style timestamp: '<seconds>.<nanoseconds>'."""
    ns = time.time_ns()
    return f"{ns // 1_000_000_000}.{ns % 1_000_000_000:09d}"
