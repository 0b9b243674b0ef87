#!/usr/bin/env python3
"""
escrow/cli.py - Command line interface for the tournament escrow

Usage:
    escrow init --as <authority> [--fee N] [--key K | --seed S]
    escrow join <key> --as <participant>
    escrow claim <key> --as <authority> --winner <identity>
    escrow show <key>
    escrow entries <key>
    escrow balance <account>
    escrow deposit <account> <amount>
    escrow key <authority> [--seed S]
    escrow serve [--port N]

Every command runs against a local SQLite file (--db, or [server] db in
config). The identity given with --as is trusted as-is.
"""

import argparse
import json
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .config import EscrowConfig, load_config
from .errors import EscrowError
from .ledger import EscrowLedger
from .models import derive_tournament_key

logger = logging.getLogger(__name__)


def _config(args) -> EscrowConfig:
    return load_config(Path(args.config) if args.config else None)


@contextmanager
def _open_ledger(args, config: EscrowConfig | None = None) -> Iterator[EscrowLedger]:
    """Ledger over the command's DB. The DB is closed when the command ends."""
    from arena.db import EscrowDB

    config = config or _config(args)
    db_path = args.db or config.server.db
    logger.debug(f"Using escrow DB {db_path}")
    db = EscrowDB(db_path)
    try:
        yield EscrowLedger(
            db,
            allow_duplicate_joins=config.ledger.allow_duplicate_joins,
            deposit=config.ledger.deposit,
        )
    finally:
        db.close()


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


# ============================================================================
# Commands
# ============================================================================


def cmd_init(args):
    """Create a tournament with the caller as authority."""
    config = _config(args)
    fee = args.fee if args.fee is not None else config.ledger.default_entry_fee
    key = args.key if args.key is not None else derive_tournament_key(args.caller, args.seed)
    with _open_ledger(args, config) as ledger:
        tournament = ledger.initialize(args.caller, key, fee)
    _print_json(tournament.to_dict())
    return 0


def cmd_join(args):
    with _open_ledger(args) as ledger:
        tournament = ledger.join(args.caller, args.key)
    _print_json(tournament.to_dict())
    return 0


def cmd_claim(args):
    """Pay the pool to the winner and close the tournament."""
    with _open_ledger(args) as ledger:
        payout = ledger.claim(args.caller, args.key, args.winner)
    logger.info(f"🏆 {payout.winner} receives {payout.prize}")
    _print_json(
        {
            "key": payout.key,
            "winner": payout.winner,
            "prize": payout.prize,
            "refund": payout.refund,
            "tournament": payout.tournament.to_dict(),
        }
    )
    return 0


def cmd_show(args):
    with _open_ledger(args) as ledger:
        _print_json(ledger.get(args.key).to_dict())
    return 0


def cmd_entries(args):
    with _open_ledger(args) as ledger:
        entries = ledger.entries(args.key)
    if not entries:
        print("No entries yet.")
        return 0
    for i, entry in enumerate(entries, 1):
        print(f"  {i:>3}. {entry.participant:<42} {entry.amount:>20}  {entry.joined_at or ''}")
    return 0


def cmd_balance(args):
    with _open_ledger(args) as ledger:
        print(ledger.balance(args.account))
    return 0


def cmd_deposit(args):
    with _open_ledger(args) as ledger:
        print(ledger.deposit_funds(args.account, args.amount))
    return 0


def cmd_key(args):
    """Print the derived storage key for an authority + seed."""
    print(derive_tournament_key(args.authority, args.seed))
    return 0


def cmd_serve(args):
    """Start the escrow HTTP server."""
    try:
        import uvicorn
    except ImportError:
        logger.error("Serving requires extra dependencies: pip install escrow[arena]")
        return 1

    from arena.server import app

    config = _config(args)
    # Set DB path on app state so lifespan picks it up
    app.state.db_path = args.db or config.server.db
    port = args.port or config.server.port
    logger.info(f"Starting escrow server on port {port} (db: {app.state.db_path})")
    uvicorn.run(app, host=config.server.host, port=port, log_level="info")
    return 0


# ============================================================================
# Entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="escrow",
        description="Single-winner tournament escrow",
    )
    parser.add_argument("--db", default=None, help="SQLite database path (default: from config)")
    parser.add_argument("--config", default=None, help="Config file (default: ~/.escrow/config.toml)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create a tournament")
    init_parser.add_argument("--as", dest="caller", required=True, help="Authority identity")
    init_parser.add_argument("--fee", type=int, default=None, help="Entry fee (default: from config)")
    key_group = init_parser.add_mutually_exclusive_group()
    key_group.add_argument("--key", default=None, help="Explicit storage key")
    key_group.add_argument("--seed", default="", help="Seed for the derived key (default: empty)")
    init_parser.set_defaults(func=cmd_init)

    join_parser = subparsers.add_parser("join", help="Pay the entry fee into a tournament")
    join_parser.add_argument("key", help="Tournament key")
    join_parser.add_argument("--as", dest="caller", required=True, help="Participant identity")
    join_parser.set_defaults(func=cmd_join)

    claim_parser = subparsers.add_parser("claim", help="Pay the pool to a winner")
    claim_parser.add_argument("key", help="Tournament key")
    claim_parser.add_argument("--as", dest="caller", required=True, help="Authority identity")
    claim_parser.add_argument("--winner", "-w", required=True, help="Winner identity")
    claim_parser.set_defaults(func=cmd_claim)

    show_parser = subparsers.add_parser("show", help="Show a tournament")
    show_parser.add_argument("key", help="Tournament key")
    show_parser.set_defaults(func=cmd_show)

    entries_parser = subparsers.add_parser("entries", help="List a tournament's entries")
    entries_parser.add_argument("key", help="Tournament key")
    entries_parser.set_defaults(func=cmd_entries)

    balance_parser = subparsers.add_parser("balance", help="Show an account balance")
    balance_parser.add_argument("account", help="Account identity")
    balance_parser.set_defaults(func=cmd_balance)

    deposit_parser = subparsers.add_parser("deposit", help="Credit funds to an account")
    deposit_parser.add_argument("account", help="Account identity")
    deposit_parser.add_argument("amount", type=int, help="Amount in smallest units")
    deposit_parser.set_defaults(func=cmd_deposit)

    key_parser = subparsers.add_parser("key", help="Derive a tournament key")
    key_parser.add_argument("authority", help="Authority identity")
    key_parser.add_argument("--seed", default="", help="Seed (default: empty)")
    key_parser.set_defaults(func=cmd_key)

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Server port (default: 8000)")
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def run(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        return args.func(args)
    except EscrowError as e:
        logger.error(f"{e.kind}: {e.message}")
        return 1
    except KeyboardInterrupt:
        logger.info("\nCancelled.")
        return 130


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()
