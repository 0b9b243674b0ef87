"""Tests for escrow.cli - commands against a temporary SQLite file."""

import json

import pytest

import escrow.cli as cli
from arena.db import EscrowDB
from escrow.cli import build_parser, run
from escrow.models import derive_tournament_key


@pytest.fixture
def escrow(tmp_path):
    """Run the CLI against a throwaway DB and no config file."""
    db = str(tmp_path / "escrow.db")
    config = str(tmp_path / "missing.toml")

    def _run(*argv: str) -> int:
        return run(["--db", db, "--config", config, *argv])

    return _run


def _last_json(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_key_and_seed_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["init", "--as", "a", "--key", "k", "--seed", "s"])


class TestCommands:
    def test_init_with_key(self, escrow, capsys):
        assert escrow("init", "--as", "alice", "--fee", "100", "--key", "t1") == 0
        data = _last_json(capsys)
        assert data["key"] == "t1"
        assert data["authority"] == "alice"
        assert data["is_active"] is True

    def test_init_derives_key_and_default_fee(self, escrow, capsys):
        assert escrow("init", "--as", "alice", "--seed", "cup") == 0
        data = _last_json(capsys)
        assert data["key"] == derive_tournament_key("alice", "cup")
        assert data["entry_fee"] == 100_000_000

    def test_key_command(self, escrow, capsys):
        assert escrow("key", "alice", "--seed", "cup") == 0
        assert capsys.readouterr().out.strip() == derive_tournament_key("alice", "cup")

    def test_full_flow(self, escrow, capsys):
        escrow("deposit", "alice", "1000")
        escrow("deposit", "bob", "1000")
        escrow("init", "--as", "alice", "--fee", "100", "--key", "t1")
        escrow("join", "t1", "--as", "alice")
        escrow("join", "t1", "--as", "bob")
        capsys.readouterr()

        assert escrow("show", "t1") == 0
        assert _last_json(capsys)["total_pool"] == 200

        assert escrow("entries", "t1") == 0
        out = capsys.readouterr().out
        assert "alice" in out and "bob" in out

        assert escrow("claim", "t1", "--as", "alice", "--winner", "alice") == 0
        payout = _last_json(capsys)
        assert payout["prize"] == 200
        assert payout["tournament"]["is_active"] is False

        assert escrow("balance", "alice") == 0
        assert capsys.readouterr().out.strip() == "1100"

        escrow("deposit", "carol", "1000")
        assert escrow("join", "t1", "--as", "carol") == 1

    def test_unauthorized_claim_exit_code(self, escrow):
        escrow("init", "--as", "alice", "--fee", "100", "--key", "t1")
        assert escrow("claim", "t1", "--as", "bob", "--winner", "bob") == 1

    def test_insufficient_funds_exit_code(self, escrow):
        escrow("init", "--as", "alice", "--fee", "100", "--key", "t1")
        assert escrow("join", "t1", "--as", "bob") == 1

    def test_unknown_tournament(self, escrow):
        assert escrow("show", "nope") == 1

    def test_zero_fee(self, escrow):
        assert escrow("init", "--as", "alice", "--fee", "0", "--key", "t1") == 1

    def test_entries_empty(self, escrow, capsys):
        escrow("init", "--as", "alice", "--fee", "100", "--key", "t1")
        capsys.readouterr()
        assert escrow("entries", "t1") == 0
        assert "No entries" in capsys.readouterr().out

    def test_config_applies_ledger_rules(self, tmp_path, capsys):
        config = tmp_path / "config.toml"
        config.write_text("[ledger]\nallow_duplicate_joins = false\ndeposit = 5\n")
        base = ["--db", str(tmp_path / "e.db"), "--config", str(config)]

        run([*base, "deposit", "alice", "100"])
        run([*base, "deposit", "bob", "100"])
        assert run([*base, "init", "--as", "alice", "--fee", "10", "--key", "t1"]) == 0
        assert run([*base, "join", "t1", "--as", "bob"]) == 0
        assert run([*base, "join", "t1", "--as", "bob"]) == 1
        capsys.readouterr()

        run([*base, "balance", "alice"])
        assert capsys.readouterr().out.strip() == "95"

    def test_empty_key_rejected(self, escrow):
        assert escrow("init", "--as", "alice", "--fee", "100", "--key", "") == 1


class TestResources:
    @pytest.fixture
    def closed(self, monkeypatch):
        """Paths of every EscrowDB closed during the test."""
        closed = []
        original = EscrowDB.close

        def close(db):
            closed.append(db.path)
            original(db)

        monkeypatch.setattr(EscrowDB, "close", close)
        return closed

    def test_db_closed_after_command(self, escrow, closed):
        assert escrow("deposit", "alice", "10") == 0
        assert escrow("balance", "alice") == 0
        assert len(closed) == 2

    def test_db_closed_after_error(self, escrow, closed):
        assert escrow("show", "nope") == 1
        assert len(closed) == 1

    def test_init_reads_config_once(self, escrow, monkeypatch):
        calls = []
        original = cli.load_config

        def load_config(path=None):
            calls.append(path)
            return original(path)

        monkeypatch.setattr(cli, "load_config", load_config)
        assert escrow("init", "--as", "alice", "--key", "t1") == 0
        assert len(calls) == 1
