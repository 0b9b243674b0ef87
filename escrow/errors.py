"""
escrow/errors.py - Typed errors raised by the escrow ledger and its stores.

Every error carries a stable ``kind`` string (what adapters put on the wire)
and a ``retriable`` flag. Only Conflict is worth retrying with the same
arguments; everything else is a violated precondition.
"""


class EscrowError(Exception):
    """Base class for all escrow failures."""

    kind = "EscrowError"
    retriable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidAmount(EscrowError, ValueError):
    """Amount is zero, negative, not an integer, or out of range."""

    kind = "InvalidAmount"


class InvalidRequest(EscrowError, ValueError):
    """Malformed identity, key, or winner argument."""

    kind = "InvalidRequest"


class AlreadyExists(EscrowError):
    """The storage slot for a new tournament is already occupied."""

    kind = "AlreadyExists"


class TournamentNotFound(EscrowError, KeyError):
    """No tournament lives at the given key."""

    kind = "TournamentNotFound"

    def __str__(self) -> str:
        # KeyError would repr() the message otherwise
        return self.message


class TournamentClosed(EscrowError):
    """The tournament has been claimed and is terminal."""

    kind = "TournamentClosed"


class InsufficientFunds(EscrowError):
    """The paying account cannot cover the amount."""

    kind = "InsufficientFunds"


class Unauthorized(EscrowError):
    """Caller is not allowed to perform this operation."""

    kind = "Unauthorized"


class DuplicateEntry(EscrowError):
    """Participant already joined and duplicate entries are disabled."""

    kind = "DuplicateEntry"


class Conflict(EscrowError):
    """A concurrent update won the race. Safe to retry."""

    kind = "Conflict"
    retriable = True
