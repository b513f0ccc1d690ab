"""
fambudget - Configuration

Settings are read from environment variables. A `.env` file in the working
directory is loaded first (python-dotenv), so local development can keep
secrets out of the shell profile.

Example .env:
    FAMBUDGET_DB_PATH=data/fambudget.db
    SECRET_KEY=change-me
    FAMBUDGET_POOL_SIZE=10
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_DB_PATH = Path("data") / "fambudget.db"
DEFAULT_SECRET_KEY = "dev-secret-key-change-in-production"


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value!r} is not an integer")


@dataclass
class Config:
    """Runtime settings for the API server, CLI and services."""

    db_path: Path = DEFAULT_DB_PATH
    pool_size: int = 10
    pool_timeout: float = 5.0
    secret_key: str = DEFAULT_SECRET_KEY
    session_cookie_secure: bool = False
    lock_transfer_edits: bool = True
    log_level: str = "INFO"
    log_json: bool = True
    server_host: str = "127.0.0.1"
    server_port: int = 5001
    testing: bool = False

    def __post_init__(self):
        self.db_path = Path(self.db_path)
        if self.pool_size < 1:
            raise ValueError("pool_size must be at least 1")

    @classmethod
    def from_env(cls, dotenv=True):
        """Build a Config from the process environment (and `.env` if present)."""
        if dotenv:
            load_dotenv()

        return cls(
            db_path=Path(os.getenv("FAMBUDGET_DB_PATH", str(DEFAULT_DB_PATH))),
            pool_size=_env_int("FAMBUDGET_POOL_SIZE", 10),
            pool_timeout=float(os.getenv("FAMBUDGET_POOL_TIMEOUT", "5")),
            secret_key=os.getenv("SECRET_KEY", DEFAULT_SECRET_KEY),
            session_cookie_secure=_env_bool("SESSION_COOKIE_SECURE", False),
            lock_transfer_edits=_env_bool("LEDGER_LOCK_TRANSFERS", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON", True),
            server_host=os.getenv("SERVER_HOST", "127.0.0.1"),
            server_port=_env_int("SERVER_PORT", 5001),
        )
