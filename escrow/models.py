"""
escrow/models.py - Value types for the tournament escrow.

Tournament snapshots are frozen; every mutation produces a new snapshot with
a bumped version, which the store compares-and-swaps on commit.
"""

import hashlib
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from .errors import InvalidAmount, InvalidRequest

# Amounts are integers in the smallest currency unit (lamports, wei, cents).
# Capped at signed 64-bit so SQLite stores them natively.
MAX_AMOUNT = 2**63 - 1

# 0.1 SOL in lamports, the fee the original game charged per entry.
DEFAULT_ENTRY_FEE = 100_000_000

KEY_NAMESPACE = b"tournament"


# ============================================================================
# Data Types
# ============================================================================


@dataclass(frozen=True)
class Tournament:
    """Snapshot of one escrow instance."""

    key: str
    authority: str
    entry_fee: int
    total_pool: int = 0
    is_active: bool = True
    entrants: int = 0
    deposit: int = 0  # reservation deposit, refunded to authority on claim
    version: int = 1
    winner: str | None = None
    created_at: str | None = None
    closed_at: str | None = None

    @property
    def custody_account(self) -> str:
        return custody_account(self.key)

    @property
    def custody_balance(self) -> int:
        """What the custody account must hold for this snapshot."""
        return self.total_pool + self.deposit

    def with_entry(self) -> "Tournament":
        """Snapshot after one more successful join."""
        pool = self.total_pool + self.entry_fee
        if pool > MAX_AMOUNT:
            raise InvalidAmount(f"Pool would exceed {MAX_AMOUNT}")
        return replace(
            self,
            total_pool=pool,
            entrants=self.entrants + 1,
            version=self.version + 1,
        )

    def closed(self, winner: str) -> "Tournament":
        """Terminal snapshot after the pool has been paid out."""
        return replace(
            self,
            total_pool=0,
            is_active=False,
            deposit=0,
            winner=winner,
            closed_at=now(),
            version=self.version + 1,
        )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "authority": self.authority,
            "entry_fee": self.entry_fee,
            "total_pool": self.total_pool,
            "is_active": self.is_active,
            "entrants": self.entrants,
            "deposit": self.deposit,
            "version": self.version,
            "winner": self.winner,
            "created_at": self.created_at,
            "closed_at": self.closed_at,
        }


@dataclass(frozen=True)
class Entry:
    """One successful join."""

    key: str
    participant: str
    amount: int
    joined_at: str | None = None


@dataclass(frozen=True)
class Payout:
    """Result of a successful claim."""

    key: str
    winner: str
    prize: int
    refund: int  # deposit returned to the authority
    tournament: Tournament


# ============================================================================
# Helpers
# ============================================================================


def now() -> str:
    """ISO timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()


def custody_account(key: str) -> str:
    """Funds account that holds a tournament's pool and deposit."""
    return f"custody:{key}"


def derive_tournament_key(authority: str, seed: str = "") -> str:
    """Deterministic storage key for a tournament created by ``authority``.

    Same (authority, seed) always maps to the same slot, so a creator cannot
    accidentally open two tournaments under one seed.
    """
    require_identity(authority, "authority")
    h = hashlib.sha256()
    for part in (KEY_NAMESPACE, authority.encode(), seed.encode()):
        h.update(len(part).to_bytes(4, "big"))
        h.update(part)
    return h.hexdigest()[:32]


def validate_amount(amount, what: str = "amount") -> int:
    """Return ``amount`` if it is a positive int within range, else raise InvalidAmount."""
    # bool is an int subclass; True is not a fee
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{what} must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount(f"{what} must be positive, got {amount}")
    if amount > MAX_AMOUNT:
        raise InvalidAmount(f"{what} exceeds {MAX_AMOUNT}")
    return amount


def require_identity(value, what: str = "caller") -> str:
    """Return ``value`` if it is a non-empty string, else raise InvalidRequest."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(f"{what} must be a non-empty string")
    return value
