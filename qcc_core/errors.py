"""
Exception types raised by the QCC signing core.

Every error derives from :class:`QCCError`.  Validation failures also
derive from ``ValueError`` so callers that only catch built-ins keep
working.  Messages never contain key material or mnemonic words.
"""

from __future__ import annotations


class QCCError(Exception):
    """Base class for all qcc_core errors."""


class SigningError(QCCError, ValueError):
    """A payload could not be signed."""


class InvalidKeyError(SigningError):
    """Private key is not 64 hex characters."""


class InvalidMnemonicError(QCCError, ValueError):
    """Mnemonic failed word-count or checksum validation."""


class InvalidAmountError(QCCError, ValueError):
    """Amount is not a finite, non-negative decimal."""


class KeyFileError(QCCError, ValueError):
    """Key file could not be decrypted or has an unexpected layout."""


class ChainAPIError(QCCError, RuntimeError):
    """A request to the chain or staking backend failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class BroadcastError(ChainAPIError):
    """The chain backend rejected or failed to accept a transaction."""

    def __init__(self, message: str, output: str = "", status: int | None = None):
        super().__init__(message, status)
        self.output = output
