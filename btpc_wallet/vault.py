"""
Authenticated-encryption container for the wallet file and backups.

v1 envelope — AES-256-GCM (96-bit nonce, 128-bit tag) under a key derived
with Argon2id from the passphrase and a per-seal random salt.  The header
(version, cipher, KDF parameters, salt) and a context label are bound as
associated data, so editing any of them fails authentication just like a
flipped ciphertext bit.

On-disk JSON:

    {
      "version": 1,
      "cipher": "aes-256-gcm",
      "kdf": {"name": "argon2id", "time_cost": 3, "memory_cost": 65536, "parallelism": 1},
      "salt": "<b64>", "nonce": "<b64>", "ciphertext": "<b64>", "tag": "<b64>"
    }

Nonce discipline: every seal draws a fresh salt *and* a fresh nonce, and a
:class:`Vault` refuses to issue any (salt, nonce) pair twice.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes

from btpc_wallet.errors import AuthenticationFailed, CorruptStore, NonceReuse
from btpc_wallet.kdf import (
    DEFAULT_KDF_PARAMS,
    MINIMUM_KDF_PARAMS,
    SALT_LEN,
    KdfParams,
    derive_key,
)

logger = logging.getLogger("btpc_wallet.vault")

VAULT_VERSION = 1
CIPHER_NAME = "aes-256-gcm"
NONCE_LEN = 12
TAG_LEN = 16
ISSUED_HISTORY = 4096

# Context labels bound into the associated data.
WALLET_CONTEXT = "btpc-wallet"
BACKUP_VAULT_CONTEXT = "btpc-backup:vault"
BACKUP_MNEMONIC_CONTEXT = "btpc-backup:mnemonic"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: Any, name: str) -> bytes:
    if not isinstance(value, str):
        raise CorruptStore(f"vault field {name!r} missing or not a string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CorruptStore(f"vault field {name!r} is not valid base64") from exc


@dataclass(frozen=True)
class WalletFile:
    """The only on-disk representation of secret material."""
    kdf_params: KdfParams
    salt: bytes
    nonce: bytes
    ciphertext: bytes
    tag: bytes
    version: int = VAULT_VERSION
    cipher: str = CIPHER_NAME

    def associated_data(self, context: str) -> bytes:
        header = {
            "context": context,
            "version": self.version,
            "cipher": self.cipher,
            "kdf": self.kdf_params.to_dict(),
            "salt": _b64(self.salt),
        }
        return json.dumps(header, sort_keys=True, separators=(",", ":")).encode("utf-8")

    # ---- serialisation ----

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "cipher": self.cipher,
            "kdf": self.kdf_params.to_dict(),
            "salt": _b64(self.salt),
            "nonce": _b64(self.nonce),
            "ciphertext": _b64(self.ciphertext),
            "tag": _b64(self.tag),
        }

    @classmethod
    def from_dict(cls, data: Any) -> WalletFile:
        if not isinstance(data, dict):
            raise CorruptStore("vault envelope is not an object")
        version = data.get("version")
        if version != VAULT_VERSION:
            raise CorruptStore(f"unsupported vault version: {version!r}")
        if data.get("cipher") != CIPHER_NAME:
            raise CorruptStore(f"unsupported cipher: {data.get('cipher')!r}")
        kdf = data.get("kdf")
        if not isinstance(kdf, dict):
            raise CorruptStore("vault envelope has no KDF parameters")
        wf = cls(
            kdf_params=KdfParams.from_dict(kdf),
            salt=_unb64(data.get("salt"), "salt"),
            nonce=_unb64(data.get("nonce"), "nonce"),
            ciphertext=_unb64(data.get("ciphertext"), "ciphertext"),
            tag=_unb64(data.get("tag"), "tag"),
        )
        if len(wf.salt) != SALT_LEN or len(wf.nonce) != NONCE_LEN or len(wf.tag) != TAG_LEN:
            raise CorruptStore("vault salt/nonce/tag have wrong lengths")
        return wf

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str | bytes) -> WalletFile:
        try:
            data = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptStore("vault envelope is not valid JSON") from exc
        return cls.from_dict(data)


class Vault:
    """Seals and opens :class:`WalletFile` envelopes.

    The most recent ``history`` (salt, nonce) pairs this instance issued are
    remembered and never handed out again.  Older pairs are forgotten, so a
    long-lived vault holds bounded state.
    """

    def __init__(
        self,
        kdf_params: KdfParams = DEFAULT_KDF_PARAMS,
        minimum: KdfParams = MINIMUM_KDF_PARAMS,
        random_bytes: Callable[[int], bytes] = get_random_bytes,
        history: int = ISSUED_HISTORY,
    ):
        kdf_params.check(minimum)
        if history < 1:
            raise ValueError("history must be >= 1")
        self.kdf_params = kdf_params
        self.minimum = minimum
        self._random_bytes = random_bytes
        self._history = history
        self._issued: OrderedDict[tuple[bytes, bytes], None] = OrderedDict()

    def _remember(self, salt: bytes, nonce: bytes) -> None:
        if (salt, nonce) in self._issued:
            raise NonceReuse("random source repeated a salt/nonce pair; refusing to seal")
        self._issued[(salt, nonce)] = None
        while len(self._issued) > self._history:
            self._issued.popitem(last=False)

    @property
    def issued_count(self) -> int:
        return len(self._issued)

    def seal(self, plaintext: bytes, passphrase: str, context: str = WALLET_CONTEXT) -> WalletFile:
        """Encrypt *plaintext* under a fresh salt and nonce."""
        salt = self._random_bytes(SALT_LEN)
        nonce = self._random_bytes(NONCE_LEN)
        self._remember(salt, nonce)

        # header first: the AAD covers it
        draft = WalletFile(self.kdf_params, salt, nonce, b"", b"")
        with derive_key(passphrase, salt, self.kdf_params) as key:
            cipher = AES.new(key.buffer, AES.MODE_GCM, nonce=nonce, mac_len=TAG_LEN)
            cipher.update(draft.associated_data(context))
            ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        logger.debug(f"Sealed {len(plaintext)} bytes ({context})")
        return WalletFile(self.kdf_params, salt, nonce, ciphertext, tag)

    def reseal(
        self,
        previous: WalletFile,
        plaintext: bytes,
        passphrase: str,
        context: str = WALLET_CONTEXT,
    ) -> WalletFile:
        """Seal a replacement for *previous*, never reusing its salt or nonce."""
        sealed = self.seal(plaintext, passphrase, context)
        if sealed.nonce == previous.nonce or sealed.salt == previous.salt:
            raise NonceReuse("replacement vault would reuse the previous salt or nonce")
        return sealed

    def open(self, wallet_file: WalletFile, passphrase: str, context: str = WALLET_CONTEXT) -> bytes:
        """Decrypt and verify; raises AuthenticationFailed on any mismatch."""
        wallet_file.kdf_params.check(self.minimum)
        with derive_key(passphrase, wallet_file.salt, wallet_file.kdf_params) as key:
            cipher = AES.new(key.buffer, AES.MODE_GCM, nonce=wallet_file.nonce, mac_len=TAG_LEN)
            cipher.update(wallet_file.associated_data(context))
            try:
                plaintext = cipher.decrypt_and_verify(wallet_file.ciphertext, wallet_file.tag)
            except ValueError:
                logger.warning(f"Vault authentication failed ({context})")
                raise AuthenticationFailed(
                    "wrong passphrase or tampered vault"
                ) from None
        return plaintext

    def verify(self, wallet_file: WalletFile, passphrase: str, context: str = WALLET_CONTEXT) -> bool:
        """Open without returning the plaintext."""
        try:
            self.open(wallet_file, passphrase, context)
        except AuthenticationFailed:
            return False
        return True
