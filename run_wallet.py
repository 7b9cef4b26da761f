#!/usr/bin/env python3
"""
QCC wallet command line.

Creates and restores wallets, signs Send / Transfer requests offline, and
optionally broadcasts them to the chain backend.

Usage:
    python run_wallet.py create --words 24
    python run_wallet.py restore --mnemonic "abandon ... about"
    python run_wallet.py sign-send --to <address> --amount 1.5 --timestamp 1718000000000000
    python run_wallet.py send --to <address> --amount 1.5
    python run_wallet.py stake --amount 100 --period 90
    python run_wallet.py rates
    python run_wallet.py keyfile-export --out my.qcc
    python run_wallet.py keyfile-import my.qcc

Environment variables (alternative to flags):
    QCC_PRIVATE_KEY, QCC_BASE_URL, QCC_STAKING_API_URL, QCC_KEYFILE_SECRET, QCC_LOG_LEVEL
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from qcc_core.client import QCCClient, StakingClient  # noqa: E402
from qcc_core.config import QCCConfig, load_config  # noqa: E402
from qcc_core.errors import QCCError  # noqa: E402
from qcc_core.keyfile import read_keyfile, write_keyfile  # noqa: E402
from qcc_core.logging_config import setup_logging_from_config  # noqa: E402
from qcc_core.precision import to_base_units  # noqa: E402
from qcc_core.staking import RateCache, get_staking_periods, stake  # noqa: E402
from qcc_core.transaction import (  # noqa: E402
    build_send_request_data,
    build_transfer_token_request_data,
)
from qcc_core.wallet import Wallet  # noqa: E402

logger = logging.getLogger("qcc_cli")


def _emit(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _wallet_from_args(args, cfg: QCCConfig) -> Wallet:
    if getattr(args, "mnemonic", None):
        return Wallet.from_mnemonic(args.mnemonic, symbol=cfg.wallet.symbol)
    if not args.private_key:
        raise QCCError("A private key is required (--private-key or QCC_PRIVATE_KEY)")
    return Wallet.from_private_key(args.private_key, symbol=cfg.wallet.symbol)


# ===================================================================
#  Commands
# ===================================================================

def cmd_create(args, cfg: QCCConfig) -> int:
    wallet = Wallet.create(args.words or cfg.wallet.mnemonic_length, symbol=cfg.wallet.symbol)
    _emit(wallet.to_dict())
    return 0


def cmd_restore(args, cfg: QCCConfig) -> int:
    phrase = args.mnemonic
    if phrase == "-":
        phrase = sys.stdin.readline()
    _emit(Wallet.from_mnemonic(phrase, symbol=cfg.wallet.symbol).to_dict())
    return 0


def cmd_address(args, cfg: QCCConfig) -> int:
    wallet = _wallet_from_args(args, cfg)
    _emit({"public_key": wallet.public_key, "address": wallet.address})
    return 0


def cmd_sign_send(args, cfg: QCCConfig) -> int:
    print(build_send_request_data(
        args.private_key or "", args.to, to_base_units(args.amount), args.timestamp,
        legacy_sentinel=cfg.signing.legacy_sentinel,
    ))
    return 0


def cmd_sign_transfer(args, cfg: QCCConfig) -> int:
    print(build_transfer_token_request_data(
        args.private_key or "", args.to, to_base_units(args.amount),
        args.token_address, args.timestamp,
        legacy_sentinel=cfg.signing.legacy_sentinel,
    ))
    return 0


async def _send(args, cfg: QCCConfig) -> int:
    async with QCCClient.from_config(cfg) as client:
        if args.token_address:
            result = await client.transfer_token(
                args.private_key or "", args.to, args.amount, args.token_address,
            )
        else:
            result = await client.send(args.private_key or "", args.to, args.amount)
    _emit({"tx_hash": result.tx_hash, "output": result.output})
    return 0


async def _balance(args, cfg: QCCConfig) -> int:
    async with QCCClient.from_config(cfg) as client:
        balance = await client.get_balance(args.address)
    _emit({"address": args.address, "balance": balance, "symbol": cfg.wallet.symbol})
    return 0


async def _rates(args, cfg: QCCConfig) -> int:
    cache = RateCache.from_config(cfg)
    async with StakingClient.from_config(cfg) as client:
        periods = await get_staking_periods(client, cache)
    _emit([
        {"id": p.id, "name": p.name, "days": p.days, "apy": p.apy} for p in periods
    ])
    return 0


async def _stake(args, cfg: QCCConfig) -> int:
    async with QCCClient.from_config(cfg) as chain, StakingClient.from_config(cfg) as staking:
        result = await stake(
            chain, staking, args.private_key or "", args.amount, args.period,
            staking_address=args.staking_address,
        )
    _emit({
        "tx_hash": result.tx_hash,
        "staking_address": result.staking_address,
        "staking": result.staking,
    })
    return 0


async def _stakings(args, cfg: QCCConfig) -> int:
    async with StakingClient.from_config(cfg) as client:
        records = await client.get_stakings_by_wallet(args.address)
    _emit(records)
    return 0


def cmd_keyfile_export(args, cfg: QCCConfig) -> int:
    wallet = _wallet_from_args(args, cfg)
    path = write_keyfile(args.out, wallet, cfg.wallet.keyfile_secret)
    _emit({"path": str(path), "address": wallet.address})
    return 0


def cmd_keyfile_import(args, cfg: QCCConfig) -> int:
    info = read_keyfile(args.path, cfg.wallet.keyfile_secret)
    _emit(info.to_dict())
    return 0


# ===================================================================
#  Main entry point
# ===================================================================

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="QCC wallet and transaction signer")
    p.add_argument("--config", default=None, help="Path to qcc.toml config file")
    sub = p.add_subparsers(dest="command", required=True)

    key_opts = argparse.ArgumentParser(add_help=False)
    key_opts.add_argument("--private-key", default=os.environ.get("QCC_PRIVATE_KEY"),
                          help="64-hex private key (default: $QCC_PRIVATE_KEY)")

    tx_opts = argparse.ArgumentParser(add_help=False, parents=[key_opts])
    tx_opts.add_argument("--to", required=True, help="Recipient address")
    tx_opts.add_argument("--amount", required=True, help="Amount in display units")

    c = sub.add_parser("create", help="Generate a new wallet")
    c.add_argument("--words", type=int, choices=(12, 15, 18, 21, 24), default=None)

    r = sub.add_parser("restore", help="Restore a wallet from its mnemonic")
    r.add_argument("--mnemonic", required=True, help="Phrase, or '-' to read stdin")

    a = sub.add_parser("address", parents=[key_opts], help="Show public key and address")
    a.add_argument("--mnemonic", default=None)

    s = sub.add_parser("sign-send", parents=[tx_opts], help="Sign a Send offline")
    s.add_argument("--timestamp", type=int, default=None, help="Microseconds; default now")

    t = sub.add_parser("sign-transfer", parents=[tx_opts], help="Sign a token Transfer offline")
    t.add_argument("--token-address", required=True)
    t.add_argument("--timestamp", type=int, default=None, help="Microseconds; default now")

    b = sub.add_parser("send", parents=[tx_opts], help="Sign and broadcast")
    b.add_argument("--token-address", default=None, help="Send a token Transfer instead")

    bal = sub.add_parser("balance", help="Query an address balance")
    bal.add_argument("address")

    sub.add_parser("rates", help="Show staking periods and interest rates")

    st = sub.add_parser("stake", parents=[key_opts],
                        help="Send coins to the staking wallet and register the stake")
    st.add_argument("--amount", required=True, help="Amount in display units")
    st.add_argument("--period", type=int, required=True, help="Staking period in days")
    st.add_argument("--staking-address", default=None,
                    help="Override the staking wallet address from the backend")

    sl = sub.add_parser("stakings", help="List the stakes held by an address")
    sl.add_argument("address")

    ke = sub.add_parser("keyfile-export", parents=[key_opts], help="Write a .qcc key file")
    ke.add_argument("--mnemonic", default=None)
    ke.add_argument("--out", required=True)

    ki = sub.add_parser("keyfile-import", help="Read a .qcc key file")
    ki.add_argument("path")
    return p


_COMMANDS = {
    "create": cmd_create,
    "restore": cmd_restore,
    "address": cmd_address,
    "sign-send": cmd_sign_send,
    "sign-transfer": cmd_sign_transfer,
    "keyfile-export": cmd_keyfile_export,
    "keyfile-import": cmd_keyfile_import,
}

_ASYNC_COMMANDS = {
    "send": _send,
    "balance": _balance,
    "rates": _rates,
    "stake": _stake,
    "stakings": _stakings,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Load config (TOML + env overrides)
    cfg = load_config(args.config)
    setup_logging_from_config(cfg.logging)

    try:
        if args.command in _ASYNC_COMMANDS:
            return asyncio.run(_ASYNC_COMMANDS[args.command](args, cfg))
        return _COMMANDS[args.command](args, cfg)
    except QCCError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        raise SystemExit(main())


if __name__ == "__main__":
    main_sync()
