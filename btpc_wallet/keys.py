"""
Dilithium5 signing keys.

Deterministic derivation (used by init-from-mnemonic and every restore):

    entropy (32 B)
      -> BIP-39 seed of the matching 24-word mnemonic (PBKDF2-HMAC-SHA512)
      -> HKDF-SHA512, info ``BTPC-DILITHIUM5-KEYGEN-v1`` -> 48 bytes
      -> AES-256-CTR DRBG seed of a private Dilithium5 instance
      -> Dilithium5 keygen

The same entropy therefore always reproduces the same keypair.  The DRBG is
seeded on a copy of the library's Dilithium5 object so the shared default
instance keeps drawing from the OS.
"""

from __future__ import annotations

import copy
import hashlib
import logging
from dataclasses import dataclass, field

from Crypto.Hash import SHA512
from Crypto.Protocol.KDF import HKDF
from dilithium_py.dilithium import Dilithium5

from btpc_wallet import mnemonic
from btpc_wallet.errors import WalletError

logger = logging.getLogger("btpc_wallet.keys")

KEYGEN_INFO = b"BTPC-DILITHIUM5-KEYGEN-v1"
DRBG_SEED_LEN = 48

PUBLIC_KEY_SIZE = 2592
SIGNATURE_SIZE = 4595


@dataclass
class KeyPair:
    """Dilithium5 keypair; the private half lives in a wipeable buffer."""
    public_key: bytes
    private_key: bytearray = field(repr=False)

    def __post_init__(self) -> None:
        self.public_key = bytes(self.public_key)
        self.private_key = bytearray(self.private_key)

    @property
    def wiped(self) -> bool:
        return not any(self.private_key)

    @property
    def fingerprint(self) -> str:
        """Short public identifier (first 8 bytes of SHA3-256(pk), hex)."""
        return hashlib.sha3_256(self.public_key).hexdigest()[:16]

    def private_bytes(self) -> bytes:
        """Transient immutable copy of the private key for one signing call."""
        if self.wiped:
            raise WalletError("keypair has been wiped; unlock the wallet again")
        return bytes(self.private_key)

    def wipe(self) -> None:
        for i in range(len(self.private_key)):
            self.private_key[i] = 0


def generate_keypair() -> KeyPair:
    """Random keypair for wallets created without a recovery phrase."""
    pk, sk = Dilithium5.keygen()
    return KeyPair(pk, sk)


def derive_keypair(entropy: bytes) -> KeyPair:
    """Deterministically derive the wallet keypair from mnemonic entropy."""
    seed = mnemonic.to_seed(mnemonic.from_entropy(entropy))
    drbg_seed = HKDF(seed, DRBG_SEED_LEN, None, SHA512, context=KEYGEN_INFO)
    engine = copy.copy(Dilithium5)
    engine.set_drbg_seed(drbg_seed)
    pk, sk = engine.keygen()
    kp = KeyPair(pk, sk)
    logger.debug(f"Derived Dilithium5 keypair {kp.fingerprint}")
    return kp


def sign_message(keypair: KeyPair, message: bytes) -> bytes:
    """Detached Dilithium5 signature over *message*."""
    return Dilithium5.sign(keypair.private_bytes(), message)


def verify_message(public_key: bytes, message: bytes, signature: bytes) -> bool:
    if len(public_key) != PUBLIC_KEY_SIZE or len(signature) != SIGNATURE_SIZE:
        return False
    try:
        return bool(Dilithium5.verify(public_key, message, signature))
    except (ValueError, IndexError):
        # malformed hint encoding
        return False
