"""
escrow/ledger.py - The escrow state machine.

    Uninitialized --initialize--> Active --claim--> Closed
                                   |  ^
                                   +--+ join

Each operation runs in exactly one store transaction. Checks are made
against state read inside that transaction, and the funds movement and the
tournament update commit together or not at all. Nothing is retried here:
a Conflict from the store goes straight back to the caller.
"""

import logging

from .errors import DuplicateEntry, InvalidRequest, TournamentClosed, TournamentNotFound
from .models import (
    Entry,
    Payout,
    Tournament,
    custody_account,
    now,
    require_identity,
    validate_amount,
)
from .policy import AuthorityPolicy, ClaimPolicy
from .store import Store, UnitOfWork

logger = logging.getLogger(__name__)


class EscrowLedger:
    """Initialize, join and claim single-winner tournament escrows.

    Args:
        store: Transactional store holding tournaments and balances.
        policy: Decides who may claim. Defaults to the tournament authority.
        allow_duplicate_joins: When False, a participant may join a given
            tournament only once.
        deposit: Reservation deposit charged to the authority on initialize
            and refunded on claim. 0 disables it.
    """

    def __init__(
        self,
        store: Store,
        policy: ClaimPolicy | None = None,
        allow_duplicate_joins: bool = True,
        deposit: int = 0,
    ):
        self.store = store
        self.policy = policy or AuthorityPolicy()
        self.allow_duplicate_joins = allow_duplicate_joins
        if deposit:
            validate_amount(deposit, "deposit")
        self.deposit = deposit

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def initialize(self, caller: str, key: str, entry_fee: int) -> Tournament:
        """Create a tournament at ``key`` with ``caller`` as its authority."""
        _require_participant(caller)
        require_identity(key, "key")
        validate_amount(entry_fee, "entry_fee")

        tournament = Tournament(
            key=key,
            authority=caller,
            entry_fee=entry_fee,
            deposit=self.deposit,
            created_at=now(),
        )
        with self.store.transaction() as uow:
            uow.tournaments.insert(tournament)
            if self.deposit:
                uow.funds.transfer(caller, tournament.custody_account, self.deposit)

        logger.info(f"Tournament {key} initialized by {caller} (entry fee {entry_fee})")
        return tournament

    def join(self, caller: str, key: str) -> Tournament:
        """Pay the entry fee from ``caller`` into the tournament pool."""
        _require_participant(caller)

        with self.store.transaction() as uow:
            tournament = self._load(uow, key)
            if not tournament.is_active:
                logger.debug(f"Join on closed tournament {key} by {caller}")
                raise TournamentClosed(f"Tournament {key} is closed")
            if not self.allow_duplicate_joins and uow.tournaments.has_entry(key, caller):
                raise DuplicateEntry(f"{caller} already joined tournament {key}")

            updated = tournament.with_entry()
            uow.funds.transfer(caller, tournament.custody_account, tournament.entry_fee)
            uow.tournaments.update(updated, expected_version=tournament.version)
            uow.tournaments.add_entry(
                Entry(key=key, participant=caller, amount=tournament.entry_fee, joined_at=now())
            )

        logger.info(f"{caller} joined tournament {key} (pool {updated.total_pool})")
        return updated

    def claim(self, caller: str, key: str, winner: str) -> Payout:
        """Pay the whole pool to ``winner`` and close the tournament."""
        _require_participant(caller)
        _require_participant(winner, "winner")

        with self.store.transaction() as uow:
            tournament = self._load(uow, key)
            self.policy.check(caller, tournament)
            if not tournament.is_active:
                logger.debug(f"Claim on closed tournament {key} by {caller}")
                raise TournamentClosed(f"Tournament {key} is closed")

            prize = tournament.total_pool
            refund = tournament.deposit
            closed = tournament.closed(winner)
            uow.tournaments.update(closed, expected_version=tournament.version)
            if prize:
                uow.funds.transfer(tournament.custody_account, winner, prize)
            if refund:
                uow.funds.transfer(tournament.custody_account, tournament.authority, refund)

        logger.info(f"Tournament {key} claimed: {prize} paid to {winner}")
        return Payout(key=key, winner=winner, prize=prize, refund=refund, tournament=closed)

    # ------------------------------------------------------------------
    # Queries and funding
    # ------------------------------------------------------------------

    def get(self, key: str) -> Tournament:
        with self.store.transaction() as uow:
            return self._load(uow, key)

    def entries(self, key: str) -> list[Entry]:
        with self.store.transaction() as uow:
            self._load(uow, key)
            return uow.tournaments.entries(key)

    def balance(self, account: str) -> int:
        with self.store.transaction() as uow:
            return uow.funds.balance(account)

    def deposit_funds(self, account: str, amount: int) -> int:
        """Credit external funds to ``account``. Returns the new balance."""
        _require_participant(account, "account")
        validate_amount(amount)
        with self.store.transaction() as uow:
            uow.funds.credit(account, amount)
            balance = uow.funds.balance(account)
        logger.info(f"Deposited {amount} to {account} (balance {balance})")
        return balance

    @staticmethod
    def _load(uow: UnitOfWork, key: str) -> Tournament:
        tournament = uow.tournaments.get(key)
        if tournament is None:
            raise TournamentNotFound(f"Tournament {key} not found")
        return tournament


def _require_participant(value, what: str = "caller") -> str:
    """Identities that can hold funds. Custody accounts belong to tournaments."""
    require_identity(value, what)
    if value.startswith(custody_account("")):
        raise InvalidRequest(f"{what} cannot be a custody account")
    return value
