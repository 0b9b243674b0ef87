"""
arena/db.py - SQLite storage for the escrow ledger.

Implements the escrow Store interface: tournaments, entries and account
balances live in one SQLite file (or :memory: for tests), so a funds
movement and the tournament update it pays for commit in the same
transaction.

One connection per EscrowDB, shared across threads behind a lock. Writers
in other processes are kept out by BEGIN IMMEDIATE; if the write lock
can't be taken within ``timeout`` seconds the unit fails with Conflict.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator

from escrow.errors import (
    AlreadyExists,
    Conflict,
    InsufficientFunds,
    InvalidAmount,
    TournamentNotFound,
)
from escrow.models import MAX_AMOUNT, Entry, Tournament, validate_amount

logger = logging.getLogger(__name__)


class EscrowDB:
    """Thin wrapper around SQLite for tournament + balance storage."""

    def __init__(self, path: str = "escrow.db", timeout: float = 5.0):
        self.path = path
        self._lock = threading.RLock()
        # isolation_level=None: transactions are opened explicitly below
        self._conn = sqlite3.connect(
            path, timeout=timeout, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS tournaments (
                key TEXT PRIMARY KEY,
                authority TEXT NOT NULL,
                entry_fee INTEGER NOT NULL CHECK (entry_fee > 0),
                total_pool INTEGER NOT NULL DEFAULT 0 CHECK (total_pool >= 0),
                is_active INTEGER NOT NULL DEFAULT 1,
                entrants INTEGER NOT NULL DEFAULT 0,
                deposit INTEGER NOT NULL DEFAULT 0,
                version INTEGER NOT NULL DEFAULT 1,
                winner TEXT,
                created_at TEXT,
                closed_at TEXT
            );

            CREATE TABLE IF NOT EXISTS entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tournament_key TEXT NOT NULL REFERENCES tournaments(key),
                participant TEXT NOT NULL,
                amount INTEGER NOT NULL,
                joined_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_entries_key
                ON entries (tournament_key, participant);

            CREATE TABLE IF NOT EXISTS accounts (
                account TEXT PRIMARY KEY,
                balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0)
            );
            """
        )

    @contextmanager
    def transaction(self) -> Iterator["_SqliteUnit"]:
        """Open a write transaction. Commits on clean exit, rolls back on error."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if _is_lock_error(e):
                    logger.warning(f"Could not lock {self.path}: {e}")
                    raise Conflict(f"Database busy: {e}") from e
                raise
            try:
                yield _SqliteUnit(self._conn)
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            try:
                self._conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                self._conn.execute("ROLLBACK")
                if _is_lock_error(e):
                    raise Conflict(f"Commit failed: {e}") from e
                raise

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def tournament_count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM tournaments").fetchone()[0]

    def active_tournaments(self) -> int:
        """Number of tournaments still accepting entries."""
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM tournaments WHERE is_active = 1"
            ).fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class _SqliteUnit:
    """Repository + funds view over one open SQLite transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self.tournaments = self
        self.funds = self

    # ------------------------------------------------------------------
    # Tournaments
    # ------------------------------------------------------------------

    def get(self, key: str) -> Tournament | None:
        row = self._conn.execute("SELECT * FROM tournaments WHERE key = ?", (key,)).fetchone()
        return _row_to_tournament(row) if row else None

    def insert(self, tournament: Tournament) -> None:
        try:
            self._conn.execute(
                "INSERT INTO tournaments (key, authority, entry_fee, total_pool, is_active, "
                "entrants, deposit, version, winner, created_at, closed_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _tournament_params(tournament),
            )
        except sqlite3.IntegrityError as e:
            raise AlreadyExists(f"Tournament {tournament.key} already exists") from e

    def update(self, tournament: Tournament, expected_version: int) -> None:
        params = _tournament_params(tournament)
        cursor = self._conn.execute(
            "UPDATE tournaments SET authority = ?, entry_fee = ?, total_pool = ?, "
            "is_active = ?, entrants = ?, deposit = ?, version = ?, winner = ?, "
            "created_at = ?, closed_at = ? WHERE key = ? AND version = ?",
            (*params[1:], tournament.key, expected_version),
        )
        if cursor.rowcount == 1:
            return
        if self.get(tournament.key) is None:
            raise TournamentNotFound(f"Tournament {tournament.key} not found")
        raise Conflict(f"Tournament {tournament.key} was modified concurrently")

    def add_entry(self, entry: Entry) -> None:
        self._conn.execute(
            "INSERT INTO entries (tournament_key, participant, amount, joined_at) "
            "VALUES (?, ?, ?, ?)",
            (entry.key, entry.participant, entry.amount, entry.joined_at),
        )

    def entries(self, key: str) -> list[Entry]:
        rows = self._conn.execute(
            "SELECT * FROM entries WHERE tournament_key = ? ORDER BY id ASC", (key,)
        ).fetchall()
        return [
            Entry(
                key=row["tournament_key"],
                participant=row["participant"],
                amount=row["amount"],
                joined_at=row["joined_at"],
            )
            for row in rows
        ]

    def has_entry(self, key: str, participant: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM entries WHERE tournament_key = ? AND participant = ? LIMIT 1",
            (key, participant),
        ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Funds
    # ------------------------------------------------------------------

    def balance(self, account: str) -> int:
        row = self._conn.execute(
            "SELECT balance FROM accounts WHERE account = ?", (account,)
        ).fetchone()
        return row["balance"] if row else 0

    def credit(self, account: str, amount: int) -> None:
        validate_amount(amount)
        self._check_room(account, amount)
        self._conn.execute(
            "INSERT INTO accounts (account, balance) VALUES (?, ?) "
            "ON CONFLICT(account) DO UPDATE SET balance = balance + excluded.balance",
            (account, amount),
        )

    def transfer(self, source: str, dest: str, amount: int) -> None:
        validate_amount(amount)
        available = self.balance(source)
        if available < amount:
            raise InsufficientFunds(f"{source} has {available}, needs {amount}")
        if dest != source:
            self._check_room(dest, amount)
        self._conn.execute(
            "UPDATE accounts SET balance = balance - ? WHERE account = ?",
            (amount, source),
        )
        self.credit(dest, amount)

    def _check_room(self, account: str, amount: int) -> None:
        # SQLite silently turns an overflowing INTEGER sum into REAL
        balance = self.balance(account)
        if balance + amount > MAX_AMOUNT:
            raise InvalidAmount(f"Crediting {amount} would push {account} past {MAX_AMOUNT}")


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def _tournament_params(t: Tournament) -> tuple:
    return (
        t.key,
        t.authority,
        t.entry_fee,
        t.total_pool,
        int(t.is_active),
        t.entrants,
        t.deposit,
        t.version,
        t.winner,
        t.created_at,
        t.closed_at,
    )


def _row_to_tournament(row: sqlite3.Row) -> Tournament:
    return Tournament(
        key=row["key"],
        authority=row["authority"],
        entry_fee=row["entry_fee"],
        total_pool=row["total_pool"],
        is_active=bool(row["is_active"]),
        entrants=row["entrants"],
        deposit=row["deposit"],
        version=row["version"],
        winner=row["winner"],
        created_at=row["created_at"],
        closed_at=row["closed_at"],
    )


def _is_lock_error(e: sqlite3.OperationalError) -> bool:
    msg = str(e).lower()
    return "locked" in msg or "busy" in msg
