"""
escrow/store.py - Storage and funds interfaces the ledger runs against.

The ledger never touches a database or a payment rail directly. It opens a
unit of work from a Store, reads and writes tournaments through
``uow.tournaments`` and moves money through ``uow.funds``, and the store
commits all of it at once or none of it.

Implementations:
  - MemoryStore (here): optimistic, in-process. Used by tests and embedding.
  - EscrowDB (arena/db.py): SQLite, one file per deployment.
"""

import logging
import threading
from contextlib import contextmanager
from typing import ContextManager, Iterator, Protocol

from .errors import AlreadyExists, Conflict, InsufficientFunds, InvalidAmount, TournamentNotFound
from .models import MAX_AMOUNT, Entry, Tournament, validate_amount

logger = logging.getLogger(__name__)


# ============================================================================
# Interfaces
# ============================================================================


class TournamentRepository(Protocol):
    def get(self, key: str) -> Tournament | None: ...

    def insert(self, tournament: Tournament) -> None:
        """Store a new tournament. Raises AlreadyExists if the key is taken."""
        ...

    def update(self, tournament: Tournament, expected_version: int) -> None:
        """Replace a tournament. Raises Conflict if the stored version moved."""
        ...

    def add_entry(self, entry: Entry) -> None: ...

    def entries(self, key: str) -> list[Entry]: ...

    def has_entry(self, key: str, participant: str) -> bool: ...


class FundsLedger(Protocol):
    def balance(self, account: str) -> int: ...

    def credit(self, account: str, amount: int) -> None:
        """Add externally sourced funds. Raises InvalidAmount past MAX_AMOUNT."""
        ...

    def transfer(self, source: str, dest: str, amount: int) -> None:
        """Move funds. Raises InsufficientFunds if ``source`` can't cover it."""
        ...


class UnitOfWork(Protocol):
    tournaments: TournamentRepository
    funds: FundsLedger


class Store(Protocol):
    def transaction(self) -> ContextManager[UnitOfWork]:
        """Open a unit of work. Commits on clean exit, discards on exception."""
        ...


# ============================================================================
# In-memory implementation
# ============================================================================


class MemoryStore:
    """Dict-backed store with optimistic, versioned commits.

    Units read committed state without holding the lock and buffer their
    writes. Commit validates that every tournament the unit rewrote is still
    at the version it read, and that no account it touched went negative or
    past MAX_AMOUNT in the meantime, then applies the buffer under the lock. A failed
    validation raises Conflict and applies nothing.
    """

    def __init__(self, balances: dict[str, int] | None = None):
        self._lock = threading.Lock()
        self._tournaments: dict[str, Tournament] = {}
        self._entries: dict[str, list[Entry]] = {}
        self._balances: dict[str, int] = dict(balances or {})

    @contextmanager
    def transaction(self) -> Iterator["_MemoryUnit"]:
        unit = _MemoryUnit(self)
        yield unit
        self._commit(unit)

    def _commit(self, unit: "_MemoryUnit") -> None:
        with self._lock:
            for key in unit._inserts:
                if key in self._tournaments:
                    raise AlreadyExists(f"Tournament {key} already exists")
            for key, (_, expected) in unit._updates.items():
                current = self._tournaments.get(key)
                if current is None or current.version != expected:
                    logger.warning(f"Version conflict on {key}: expected {expected}")
                    raise Conflict(f"Tournament {key} was modified concurrently")
            for account, delta in unit._deltas.items():
                balance = self._balances.get(account, 0) + delta
                if balance < 0 or balance > MAX_AMOUNT:
                    logger.warning(f"Balance conflict on {account}")
                    raise Conflict(f"Balance of {account} changed concurrently")

            for key, tournament in unit._inserts.items():
                self._tournaments[key] = tournament
            for key, (tournament, _) in unit._updates.items():
                self._tournaments[key] = tournament
            for entry in unit._new_entries:
                self._entries.setdefault(entry.key, []).append(entry)
            for account, delta in unit._deltas.items():
                self._balances[account] = self._balances.get(account, 0) + delta


class _MemoryUnit:
    """One pending unit of work against a MemoryStore."""

    def __init__(self, store: MemoryStore):
        self._store = store
        self._inserts: dict[str, Tournament] = {}
        self._updates: dict[str, tuple[Tournament, int]] = {}
        self._new_entries: list[Entry] = []
        self._deltas: dict[str, int] = {}
        self.tournaments = self
        self.funds = self

    # --- TournamentRepository ---

    def get(self, key: str) -> Tournament | None:
        if key in self._updates:
            return self._updates[key][0]
        if key in self._inserts:
            return self._inserts[key]
        return self._store._tournaments.get(key)

    def insert(self, tournament: Tournament) -> None:
        if self.get(tournament.key) is not None:
            raise AlreadyExists(f"Tournament {tournament.key} already exists")
        self._inserts[tournament.key] = tournament

    def update(self, tournament: Tournament, expected_version: int) -> None:
        key = tournament.key
        if key in self._inserts:
            self._inserts[key] = tournament
            return
        current = self.get(key)
        if current is None:
            raise TournamentNotFound(f"Tournament {key} not found")
        if current.version != expected_version:
            raise Conflict(f"Tournament {key} was modified concurrently")
        # Keep the version first read in this unit; that is what commit checks
        base = self._updates[key][1] if key in self._updates else expected_version
        self._updates[key] = (tournament, base)

    def add_entry(self, entry: Entry) -> None:
        self._new_entries.append(entry)

    def entries(self, key: str) -> list[Entry]:
        committed = list(self._store._entries.get(key, []))
        return committed + [e for e in self._new_entries if e.key == key]

    def has_entry(self, key: str, participant: str) -> bool:
        return any(e.participant == participant for e in self.entries(key))

    # --- FundsLedger ---

    def balance(self, account: str) -> int:
        return self._store._balances.get(account, 0) + self._deltas.get(account, 0)

    def credit(self, account: str, amount: int) -> None:
        validate_amount(amount)
        self._check_room(account, amount)
        self._deltas[account] = self._deltas.get(account, 0) + amount

    def transfer(self, source: str, dest: str, amount: int) -> None:
        validate_amount(amount)
        available = self.balance(source)
        if available < amount:
            raise InsufficientFunds(f"{source} has {available}, needs {amount}")
        if dest != source:
            self._check_room(dest, amount)
        self._deltas[source] = self._deltas.get(source, 0) - amount
        self._deltas[dest] = self._deltas.get(dest, 0) + amount

    def _check_room(self, account: str, amount: int) -> None:
        if self.balance(account) + amount > MAX_AMOUNT:
            raise InvalidAmount(f"Crediting {amount} would push {account} past {MAX_AMOUNT}")
