"""
Passphrase key derivation (Argon2id) and scoped secret buffers.

The vault never sees a passphrase-derived key outside a
:class:`SecretBytes` ``with`` block; leaving the block (normally or through
an exception) overwrites the buffer with zeros.

Usage:
    params = KdfParams(time_cost=3, memory_cost=65536, parallelism=1)
    with derive_key("hunter2", salt, params) as key:
        cipher = AES.new(key.buffer, AES.MODE_GCM, nonce=nonce)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from argon2.low_level import Type, hash_secret_raw

from btpc_wallet.errors import CorruptStore, WalletError, WeakKdfParams

logger = logging.getLogger("btpc_wallet.kdf")

KEY_LEN = 32   # AES-256
SALT_LEN = 16
KDF_NAME = "argon2id"


@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters; ``memory_cost`` is in KiB."""
    time_cost: int = 3
    memory_cost: int = 65536
    parallelism: int = 1

    def check(self, minimum: KdfParams) -> None:
        """Raise WeakKdfParams if any cost is below *minimum*."""
        weak = [
            name
            for name in ("time_cost", "memory_cost", "parallelism")
            if getattr(self, name) < getattr(minimum, name)
        ]
        if weak:
            raise WeakKdfParams(
                f"KDF parameters below minimum: {', '.join(weak)} "
                f"(got {self.as_dict()}, minimum {minimum.as_dict()})"
            )

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

    def to_dict(self) -> dict[str, Any]:
        return {"name": KDF_NAME, **self.as_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KdfParams:
        if data.get("name", KDF_NAME) != KDF_NAME:
            raise CorruptStore(f"unsupported KDF: {data.get('name')!r}")
        try:
            return cls(
                time_cost=int(data["time_cost"]),
                memory_cost=int(data["memory_cost"]),
                parallelism=int(data["parallelism"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptStore("malformed KDF parameters") from exc


DEFAULT_KDF_PARAMS = KdfParams()
MINIMUM_KDF_PARAMS = KdfParams(time_cost=1, memory_cost=8192, parallelism=1)


class SecretBytes:
    """Mutable secret buffer that is zeroed when its scope ends."""

    __slots__ = ("_buf",)

    def __init__(self, data: bytes | bytearray):
        self._buf = bytearray(data)

    @property
    def buffer(self) -> bytearray:
        if self._buf is None:
            raise WalletError("secret buffer already wiped")
        return self._buf

    @property
    def wiped(self) -> bool:
        return self._buf is None

    def wipe(self) -> None:
        if self._buf is not None:
            for i in range(len(self._buf)):
                self._buf[i] = 0
            self._buf = None

    def __len__(self) -> int:
        return 0 if self._buf is None else len(self._buf)

    def __enter__(self) -> SecretBytes:
        return self

    def __exit__(self, *exc: object) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return "SecretBytes(<wiped>)" if self._buf is None else f"SecretBytes(<{len(self._buf)} bytes>)"


def derive_key(passphrase: str, salt: bytes, params: KdfParams) -> SecretBytes:
    """Derive a 32-byte AEAD key from *passphrase* with Argon2id."""
    if len(salt) < SALT_LEN:
        raise WalletError(f"salt must be at least {SALT_LEN} bytes")
    raw = hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=bytes(salt),
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        hash_len=KEY_LEN,
        type=Type.ID,
    )
    logger.debug(
        f"Derived vault key (t={params.time_cost}, m={params.memory_cost}KiB, "
        f"p={params.parallelism})"
    )
    return SecretBytes(raw)
