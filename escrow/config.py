"""
escrow/config.py - Local configuration management

Reads config from a platform-appropriate config directory:
  - macOS/Linux: ~/.escrow/config.toml
  - Windows: %APPDATA%\\escrow\\config.toml

Example:
    [ledger]
    allow_duplicate_joins = true
    deposit = 0
    default_entry_fee = 100000000   # 0.1 SOL in lamports

    [server]
    db = "~/escrow/escrow.db"
    host = "0.0.0.0"
    port = 8000
    operator = "treasury"
"""

import logging
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .models import DEFAULT_ENTRY_FEE

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================


def _get_config_dir() -> Path:
    """Get platform-appropriate config directory."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "escrow"
    return Path.home() / ".escrow"


CONFIG_DIR = _get_config_dir()
CONFIG_PATH = CONFIG_DIR / "config.toml"

DEFAULT_DB_PATH = "escrow.db"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000


# ============================================================================
# Data Types
# ============================================================================


@dataclass
class LedgerConfig:
    """Escrow rules applied by the ledger."""

    allow_duplicate_joins: bool = True
    deposit: int = 0  # reservation deposit charged to the authority
    default_entry_fee: int = DEFAULT_ENTRY_FEE


@dataclass
class ServerConfig:
    """Where the HTTP adapter listens and stores data."""

    db: str = DEFAULT_DB_PATH
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    operator: str | None = None  # only identity allowed to deposit over HTTP


@dataclass
class EscrowConfig:
    """Top-level configuration."""

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


# ============================================================================
# Parsing
# ============================================================================


def _expand(path: str | None) -> str | None:
    """Expand ~ in a path string. ':memory:' passes through."""
    if path is None or path == ":memory:":
        return path
    return str(Path(path).expanduser())


def _parse_ledger_config(data: dict) -> LedgerConfig:
    defaults = LedgerConfig()
    return LedgerConfig(
        allow_duplicate_joins=bool(data.get("allow_duplicate_joins", defaults.allow_duplicate_joins)),
        deposit=data.get("deposit", defaults.deposit),
        default_entry_fee=data.get("default_entry_fee", defaults.default_entry_fee),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    defaults = ServerConfig()
    return ServerConfig(
        db=_expand(data.get("db", defaults.db)),
        host=data.get("host", defaults.host),
        port=data.get("port", defaults.port),
        operator=data.get("operator", defaults.operator),
    )


def load_config(path: Path | None = None) -> EscrowConfig:
    """
    Read config from TOML file.

    Args:
        path: Override config file path (default: ~/.escrow/config.toml)

    Returns:
        EscrowConfig. Missing file or bad TOML returns defaults.
    """
    config_path = path or CONFIG_PATH

    if not config_path.exists():
        return EscrowConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return EscrowConfig()

    ledger = LedgerConfig()
    if isinstance(raw.get("ledger"), dict):
        ledger = _parse_ledger_config(raw["ledger"])

    server = ServerConfig()
    if isinstance(raw.get("server"), dict):
        server = _parse_server_config(raw["server"])

    return EscrowConfig(ledger=ledger, server=server)
