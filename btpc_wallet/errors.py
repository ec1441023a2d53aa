"""
Error taxonomy for the BTPC wallet core.

Every failure the core surfaces derives from :class:`WalletError` so that
callers (CLI, interactive menu, tests) can catch one base type.  Messages
must never include key material, passphrases or decrypted payloads.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all wallet-core failures."""


# ── input validation ─────────────────────────────────────────────

class InvalidInput(WalletError, ValueError):
    """Caller supplied malformed data (mnemonic, address, amount, tx bytes)."""


class InvalidWordCount(InvalidInput):
    """Mnemonic does not contain exactly 24 words."""


class InvalidMnemonicWord(InvalidInput):
    """Mnemonic contains a word outside the wordlist."""


class InvalidChecksum(InvalidInput):
    """Mnemonic checksum bits do not match its entropy."""


class InvalidAddress(InvalidInput):
    """Address string is malformed or belongs to another network."""


class InvalidTransaction(InvalidInput):
    """Transaction bytes are not a well-formed canonical encoding."""


# ── cryptography / storage ───────────────────────────────────────

class AuthenticationFailed(WalletError):
    """Wrong passphrase or tampered vault; no plaintext is exposed."""


class WeakKdfParams(WalletError):
    """KDF cost parameters are below the configured minimum."""


class NonceReuse(WalletError):
    """A seal would reuse a (salt, nonce) pair already issued."""


class CorruptStore(WalletError):
    """Envelope or decrypted payload does not match the expected format."""


class WalletLocked(WalletError):
    """Another process holds the wallet file lock."""


# ── transactions / node ──────────────────────────────────────────

class InsufficientFunds(WalletError):
    """No input selection covers amount + fee."""

    def __init__(self, available: int, required: int):
        super().__init__(
            f"insufficient funds: available {available} units, required {required} units"
        )
        self.available = available
        self.required = required


class TransportError(WalletError):
    """Node unreachable or timed out; retried at the node boundary."""


class NodeRejected(WalletError):
    """Node answered and refused the request; never retried."""
