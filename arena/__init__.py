"""
arena - HTTP adapter and SQLite storage for the tournament escrow.

Translates HTTP requests into escrow ledger operations. The arena never
decides who may move money; the ledger does.
"""

from .server import app
from .db import EscrowDB

__all__ = ["app", "EscrowDB"]
