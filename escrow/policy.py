"""
escrow/policy.py - Who may claim a tournament's pool.

The ledger asks a ClaimPolicy before releasing funds. The default policy is
a plain identity comparison against the tournament's authority; stronger
schemes (multi-signature, role-based) implement the same protocol.
"""

import logging
from typing import Protocol

from .errors import Unauthorized
from .models import Tournament

logger = logging.getLogger(__name__)


class ClaimPolicy(Protocol):
    def check(self, caller: str, tournament: Tournament) -> None:
        """Return if ``caller`` may claim ``tournament``, raise Unauthorized otherwise."""
        ...


class AuthorityPolicy:
    """Only the creator of the tournament may claim."""

    def check(self, caller: str, tournament: Tournament) -> None:
        if caller != tournament.authority:
            logger.debug(f"Claim on {tournament.key} rejected: {caller} is not the authority")
            raise Unauthorized(f"{caller} is not the authority of tournament {tournament.key}")
