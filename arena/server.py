"""
arena/server.py - FastAPI adapter for the tournament escrow.

Endpoints:
    POST   /tournaments                   Create a tournament (caller = authority)
    GET    /tournaments/{key}             Tournament snapshot
    POST   /tournaments/{key}/join        Pay the entry fee into the pool
    POST   /tournaments/{key}/claim       Pay the pool to a winner, close it
    GET    /tournaments/{key}/entries     Who joined
    GET    /accounts/{account}            Available balance
    POST   /accounts/{account}/deposit    Fund an account (operator only)
    GET    /health                        Server health check

The caller identity comes from the X-Caller header. This server does not
authenticate: it is meant to sit behind a gateway that verifies the
caller and sets the header. Deposits create money, so only the
configured [server] operator may make them; with no operator set the route
is closed.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from escrow.config import load_config
from escrow.errors import EscrowError, Unauthorized
from escrow.ledger import EscrowLedger
from escrow.models import Entry, Tournament, derive_tournament_key

from .db import EscrowDB

logger = logging.getLogger(__name__)

# Status code per error kind. Anything unlisted is a 400.
ERROR_STATUS = {
    "InvalidAmount": 400,
    "InvalidRequest": 400,
    "InsufficientFunds": 402,
    "Unauthorized": 403,
    "TournamentNotFound": 404,
    "AlreadyExists": 409,
    "TournamentClosed": 409,
    "DuplicateEntry": 409,
    "Conflict": 409,
}


# Global ledger instance and deposit operator, set during lifespan
_ledger: EscrowLedger | None = None
_operator: str | None = None


def get_ledger() -> EscrowLedger:
    assert _ledger is not None, "Ledger not initialized"
    return _ledger


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _ledger, _operator
    config = load_config()
    db_path = (
        getattr(app.state, "db_path", None)
        or os.environ.get("ESCROW_DB")
        or config.server.db
    )
    db = EscrowDB(db_path)
    _ledger = EscrowLedger(
        db,
        allow_duplicate_joins=config.ledger.allow_duplicate_joins,
        deposit=config.ledger.deposit,
    )
    _operator = config.server.operator
    logger.info(f"Escrow DB initialized: {db_path}")
    logger.info(
        f"  Duplicate joins: {'allowed' if config.ledger.allow_duplicate_joins else 'rejected'}"
        f" | Deposit: {config.ledger.deposit}"
        f" | Operator: {_operator or 'none (deposits disabled)'}"
    )

    yield
    _ledger = None
    _operator = None
    db.close()


app = FastAPI(title="Tournament Escrow", lifespan=lifespan)


@app.exception_handler(EscrowError)
async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    status = ERROR_STATUS.get(exc.kind, 400)
    logger.debug(f"{request.method} {request.url.path} -> {status} {exc.kind}: {exc.message}")
    return JSONResponse(
        status_code=status,
        content={"detail": exc.message, "error": exc.kind, "retriable": exc.retriable},
    )


def get_caller(x_caller: str | None = Header(default=None)) -> str:
    """Identity of the (already authenticated) caller."""
    if not x_caller:
        raise HTTPException(status_code=401, detail="X-Caller header required")
    return x_caller


# ======================================================================
# Request/Response Models
# ======================================================================


class CreateRequest(BaseModel):
    entry_fee: int
    key: str | None = None
    seed: str = ""  # used to derive the key when none is given


class ClaimRequest(BaseModel):
    winner: str


class DepositRequest(BaseModel):
    amount: int


class TournamentResponse(BaseModel):
    key: str
    authority: str
    entry_fee: int
    total_pool: int
    is_active: bool
    entrants: int
    deposit: int
    version: int
    winner: str | None = None
    created_at: str | None = None
    closed_at: str | None = None


class PayoutResponse(BaseModel):
    key: str
    winner: str
    prize: int
    refund: int
    tournament: TournamentResponse


class EntryResponse(BaseModel):
    participant: str
    amount: int
    joined_at: str | None = None


class EntriesResponse(BaseModel):
    key: str
    entries: list[EntryResponse] = Field(default_factory=list)


class BalanceResponse(BaseModel):
    account: str
    balance: int


class HealthResponse(BaseModel):
    status: str
    tournaments: int | None = None
    active_tournaments: int | None = None


def _entry_dict(entry: Entry) -> dict[str, Any]:
    return {"participant": entry.participant, "amount": entry.amount, "joined_at": entry.joined_at}


def _tournament_dict(tournament: Tournament) -> dict[str, Any]:
    return tournament.to_dict()


# ======================================================================
# Endpoints
# ======================================================================


@app.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(req: CreateRequest, caller: str = Depends(get_caller)) -> dict[str, Any]:
    """Initialize a tournament with the caller as authority."""
    ledger = get_ledger()
    key = req.key if req.key is not None else derive_tournament_key(caller, req.seed)
    tournament = ledger.initialize(caller, key, req.entry_fee)
    return _tournament_dict(tournament)


@app.get("/tournaments/{key}", response_model=TournamentResponse)
def get_tournament(key: str) -> dict[str, Any]:
    return _tournament_dict(get_ledger().get(key))


@app.post("/tournaments/{key}/join", response_model=TournamentResponse)
def join_tournament(key: str, caller: str = Depends(get_caller)) -> dict[str, Any]:
    """Pay the entry fee from the caller's balance into the pool."""
    return _tournament_dict(get_ledger().join(caller, key))


@app.post("/tournaments/{key}/claim", response_model=PayoutResponse)
def claim_tournament(
    key: str, req: ClaimRequest, caller: str = Depends(get_caller)
) -> dict[str, Any]:
    """Release the pool to the winner. Authority only."""
    payout = get_ledger().claim(caller, key, req.winner)
    return {
        "key": payout.key,
        "winner": payout.winner,
        "prize": payout.prize,
        "refund": payout.refund,
        "tournament": _tournament_dict(payout.tournament),
    }


@app.get("/tournaments/{key}/entries", response_model=EntriesResponse)
def list_entries(key: str) -> dict[str, Any]:
    entries = get_ledger().entries(key)
    return {"key": key, "entries": [_entry_dict(e) for e in entries]}


@app.get("/accounts/{account}", response_model=BalanceResponse)
def get_balance(account: str) -> dict[str, Any]:
    return {"account": account, "balance": get_ledger().balance(account)}


@app.post("/accounts/{account}/deposit", response_model=BalanceResponse)
def deposit(
    account: str, req: DepositRequest, caller: str = Depends(get_caller)
) -> dict[str, Any]:
    """Credit funds to an account. Operator only."""
    if _operator is None:
        raise Unauthorized("Deposits are disabled: no operator configured")
    if caller != _operator:
        raise Unauthorized(f"{caller} may not deposit funds")
    balance = get_ledger().deposit_funds(account, req.amount)
    return {"account": account, "balance": balance}


@app.get("/health", response_model=HealthResponse)
def health() -> dict[str, Any]:
    ledger = get_ledger()
    store = ledger.store
    if isinstance(store, EscrowDB):
        return {
            "status": "ok",
            "tournaments": store.tournament_count(),
            "active_tournaments": store.active_tournaments(),
        }
    return {"status": "ok"}
