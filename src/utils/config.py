"""TOML configuration loader for the checkout core."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class DatabaseConfig:
    path: str = "data/scango.sqlite"


@dataclass
class RemoteConfig:
    url: str = ""
    api_key: str = ""
    timeout: float = 2.0

    @property
    def enabled(self) -> bool:
        """True when the remote data service is configured."""
        return bool(self.url and self.api_key)


@dataclass
class OtpConfig:
    base_url: str = "http://localhost:3000/api"
    timeout: float = 3.0


@dataclass
class CheckoutConfig:
    receipt_attempts: int = 5
    allow_history_lookup: bool = False
    scan_debounce: float = 2.5


@dataclass
class AppConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    otp: OtpConfig = field(default_factory=OtpConfig)
    checkout: CheckoutConfig = field(default_factory=CheckoutConfig)


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from a TOML file.

    Falls back to defaults if no path is given or the file doesn't exist.
    The database path and remote credentials can be overridden via
    environment variables.
    """
    raw: dict = {}

    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    dbs = raw.get("database", {})
    rem = raw.get("remote", {})
    otp = raw.get("otp", {})
    chk = raw.get("checkout", {})

    # env wins over the file for anything secret or machine specific
    db_path = os.environ.get("SCANGO_DB_PATH", "") or dbs.get(
        "path", "data/scango.sqlite"
    )
    remote_url = os.environ.get("SCANGO_REMOTE_URL", "") or rem.get("url", "")
    remote_key = os.environ.get("SCANGO_REMOTE_KEY", "") or rem.get("api_key", "")

    return AppConfig(
        database=DatabaseConfig(path=db_path),
        remote=RemoteConfig(
            url=remote_url.rstrip("/"),
            api_key=remote_key,
            timeout=float(rem.get("timeout", 2.0)),
        ),
        otp=OtpConfig(
            base_url=otp.get("base_url", "http://localhost:3000/api").rstrip("/"),
            timeout=float(otp.get("timeout", 3.0)),
        ),
        checkout=CheckoutConfig(
            receipt_attempts=int(chk.get("receipt_attempts", 5)),
            allow_history_lookup=bool(chk.get("allow_history_lookup", False)),
            scan_debounce=float(chk.get("scan_debounce", 2.5)),
        ),
    )
