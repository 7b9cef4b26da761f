"""
Shared pytest fixtures for the QCC test suite.
"""

import pytest

from qcc_core.wallet import Wallet

# Ed25519 test vector 1 (RFC 8032 section 7.1).
RFC8032_SECRET = "9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60"

ABANDON_PHRASE = "abandon " * 11 + "about"


@pytest.fixture
def wallet():
    """Deterministic wallet restored from the all-'abandon' phrase."""
    return Wallet.from_mnemonic(ABANDON_PHRASE)


@pytest.fixture
def rfc_wallet():
    """Wallet built from the RFC 8032 test key."""
    return Wallet.from_private_key(RFC8032_SECRET)


@pytest.fixture
def recipient():
    """A valid recipient address."""
    return Wallet.from_private_key("22" * 32).address
