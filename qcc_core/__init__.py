"""
QCC - transaction signing and address derivation for the QCC staking wallet.

Key features:
- Order-preserving canonical encoding shared with the browser wallet
- SHA-256 / RIPEMD-160 addresses with a 4-hex-digit checksum
- BIP-39 mnemonics and Ed25519 signing keys
- Signed "Send" / "Transfer" envelopes ready for broadcast
- Exact 18-decimal amount scaling
- Async client for the chain backend and CryptoJS-compatible .qcc key files
"""

__version__ = "1.0.0"
__all__ = [
    "canonical",
    "crypto_utils",
    "wallet",
    "transaction",
    "precision",
    "keyfile",
    "client",
    "staking",
    "config",
    "errors",
]
