"""
escrow - Single-winner tournament escrow

Collects entry fees into a pooled balance and releases the pool to one
winner on the tournament authority's say-so.
"""

__version__ = "0.1.0"

from .errors import (
    EscrowError,
    InvalidAmount,
    InvalidRequest,
    AlreadyExists,
    TournamentNotFound,
    TournamentClosed,
    InsufficientFunds,
    Unauthorized,
    DuplicateEntry,
    Conflict,
)

from .models import (
    Tournament,
    Entry,
    Payout,
    MAX_AMOUNT,
    custody_account,
    derive_tournament_key,
)

from .policy import ClaimPolicy, AuthorityPolicy

from .store import (
    Store,
    UnitOfWork,
    TournamentRepository,
    FundsLedger,
    MemoryStore,
)

from .ledger import EscrowLedger

__all__ = [
    # Version
    "__version__",
    # Errors
    "EscrowError",
    "InvalidAmount",
    "InvalidRequest",
    "AlreadyExists",
    "TournamentNotFound",
    "TournamentClosed",
    "InsufficientFunds",
    "Unauthorized",
    "DuplicateEntry",
    "Conflict",
    # Data types
    "Tournament",
    "Entry",
    "Payout",
    "MAX_AMOUNT",
    "custody_account",
    "derive_tournament_key",
    # Policy
    "ClaimPolicy",
    "AuthorityPolicy",
    # Storage
    "Store",
    "UnitOfWork",
    "TournamentRepository",
    "FundsLedger",
    "MemoryStore",
    # Ledger
    "EscrowLedger",
]
