"""
TOML-based configuration for QCC wallet tooling.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from qcc_core.config import load_config
    cfg = load_config("qcc.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from qcc_core.keyfile import LEGACY_KEYFILE_SECRET

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class ChainConfig:
    """Chain backend (timestamp oracle, broadcast, balances)."""
    base_url: str = "https://qcc-backend.com"
    timeout_seconds: float = 10.0


@dataclass
class StakingConfig:
    """Staking REST backend and interest-rate caching."""
    api_url: str = "http://localhost:3001/api"
    rates_cache_seconds: float = 300.0


@dataclass
class WalletConfig:
    """Wallet creation and key-file settings.

    ``keyfile_secret`` defaults to the shared secret used by the browser
    wallet so existing ``.qcc`` files can be read.
    """
    symbol: str = "QTC"
    mnemonic_length: int = 12
    keyfile_secret: str = LEGACY_KEYFILE_SECRET


@dataclass
class SigningConfig:
    """Signer behaviour.

    ``legacy_sentinel`` returns an empty-signature envelope for malformed
    keys instead of raising.  Only for consumers not yet migrated.
    """
    legacy_sentinel: bool = False


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class QCCConfig:
    """Top-level configuration container."""
    chain: ChainConfig = field(default_factory=ChainConfig)
    staking: StakingConfig = field(default_factory=StakingConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    signing: SigningConfig = field(default_factory=SigningConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: str | None = None) -> QCCConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        QCC_BASE_URL         -> chain.base_url
        QCC_TIMEOUT          -> chain.timeout_seconds
        QCC_STAKING_API_URL  -> staking.api_url
        QCC_KEYFILE_SECRET   -> wallet.keyfile_secret
        QCC_LEGACY_SENTINEL  -> signing.legacy_sentinel
        QCC_LOG_LEVEL        -> logging.level
        QCC_LOG_FMT          -> logging.format
    """
    cfg = QCCConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("chain", cfg.chain),
                ("staking", cfg.staking),
                ("wallet", cfg.wallet),
                ("signing", cfg.signing),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("QCC_BASE_URL"):
        cfg.chain.base_url = v.rstrip("/")
    if v := os.environ.get("QCC_TIMEOUT"):
        cfg.chain.timeout_seconds = float(v)
    if v := os.environ.get("QCC_STAKING_API_URL"):
        cfg.staking.api_url = v.rstrip("/")
    if v := os.environ.get("QCC_KEYFILE_SECRET"):
        cfg.wallet.keyfile_secret = v
    if v := os.environ.get("QCC_LEGACY_SENTINEL"):
        cfg.signing.legacy_sentinel = _env_bool(v)
    if v := os.environ.get("QCC_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("QCC_LOG_FMT"):
        cfg.logging.format = v

    return cfg
