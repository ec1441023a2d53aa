"""
24-word recovery phrase codec (BIP-39, English wordlist).

A :class:`Mnemonic` always holds exactly 24 words whose checksum has been
verified, so code that receives one can trust the entropy it encodes.
The wordlist and the PBKDF2 seed stretching come from ``python-mnemonic``.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass

from mnemonic import Mnemonic as _Bip39

from btpc_wallet.errors import InvalidChecksum, InvalidInput, InvalidMnemonicWord, InvalidWordCount

WORD_COUNT = 24
ENTROPY_BYTES = 32  # 256 bits -> 24 words (8 checksum bits)

_CODEC = _Bip39("english")
_WORDS = frozenset(_CODEC.wordlist)


@dataclass(frozen=True)
class Mnemonic:
    """A validated 24-word phrase."""

    words: tuple[str, ...]

    @property
    def phrase(self) -> str:
        return " ".join(self.words)

    def __str__(self) -> str:
        return self.phrase

    def __repr__(self) -> str:
        # never echo the words themselves
        return f"Mnemonic(<{len(self.words)} words>)"


def generate() -> Mnemonic:
    """Create a new mnemonic from 256 bits of OS entropy."""
    return from_entropy(os.urandom(ENTROPY_BYTES))


def from_entropy(entropy: bytes) -> Mnemonic:
    """Encode 32 bytes of entropy as a 24-word mnemonic."""
    if len(entropy) != ENTROPY_BYTES:
        raise InvalidInput(f"entropy must be {ENTROPY_BYTES} bytes, got {len(entropy)}")
    return Mnemonic(tuple(_CODEC.to_mnemonic(bytes(entropy)).split()))


def parse(words: str | Sequence[str]) -> Mnemonic:
    """Validate a phrase (string or word list) and return a :class:`Mnemonic`.

    Raises InvalidWordCount, InvalidMnemonicWord or InvalidChecksum.
    """
    if isinstance(words, str):
        tokens = words.split()
    else:
        tokens = [w for item in words for w in str(item).split()]
    tokens = [t.strip().lower() for t in tokens]

    if len(tokens) != WORD_COUNT:
        raise InvalidWordCount(f"expected {WORD_COUNT} words, got {len(tokens)}")
    for position, word in enumerate(tokens, start=1):
        if word not in _WORDS:
            raise InvalidMnemonicWord(f"word #{position} is not in the wordlist")
    if not _CODEC.check(" ".join(tokens)):
        raise InvalidChecksum("mnemonic checksum mismatch")
    return Mnemonic(tuple(tokens))


def to_entropy(mnemonic: Mnemonic) -> bytes:
    """Decode the entropy carried by *mnemonic*."""
    return bytes(_CODEC.to_entropy(mnemonic.phrase))


def to_seed(mnemonic: Mnemonic) -> bytes:
    """Standard 64-byte BIP-39 seed with an empty passphrase."""
    return _CODEC.to_seed(mnemonic.phrase, passphrase="")


def is_valid(words: str | Sequence[str]) -> bool:
    """True when *words* parses as a checksum-valid 24-word mnemonic."""
    try:
        parse(words)
    except InvalidInput:
        return False
    return True
