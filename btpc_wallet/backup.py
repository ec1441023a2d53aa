"""
Encrypted backups and restore paths.

A backup file is a small JSON envelope around a sealed vault::

    {
      "format_version": 1,
      "payload_type": "vault" | "mnemonic",
      "created_at": "2026-01-01T00:00:00+00:00",
      "vault": { ...WalletFile... }
    }

``vault`` backups carry the full wallet payload.  ``mnemonic`` backups carry
only the phrase, the network and the address count, and are rebuilt via
:func:`restore_from_mnemonic`.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from btpc_wallet import mnemonic as mn
from btpc_wallet.address import Network
from btpc_wallet.errors import (
    CorruptStore,
    InvalidInput,
    WalletError,
)
from btpc_wallet.store import WalletStore, atomic_write
from btpc_wallet.vault import (
    BACKUP_MNEMONIC_CONTEXT,
    BACKUP_VAULT_CONTEXT,
    Vault,
    WalletFile,
)

logger = logging.getLogger("btpc_wallet.backup")

BACKUP_FORMAT_VERSION = 1
PAYLOAD_VAULT = "vault"
PAYLOAD_MNEMONIC = "mnemonic"

_CONTEXTS = {
    PAYLOAD_VAULT: BACKUP_VAULT_CONTEXT,
    PAYLOAD_MNEMONIC: BACKUP_MNEMONIC_CONTEXT,
}


@dataclass(frozen=True)
class Backup:
    payload_type: str
    vault: WalletFile
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    format_version: int = BACKUP_FORMAT_VERSION

    @property
    def context(self) -> str:
        return _CONTEXTS[self.payload_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "format_version": self.format_version,
            "payload_type": self.payload_type,
            "created_at": self.created_at,
            "vault": self.vault.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> Backup:
        if not isinstance(data, dict):
            raise CorruptStore("backup must be a JSON object")
        version = data.get("format_version")
        if version != BACKUP_FORMAT_VERSION:
            raise CorruptStore(f"unsupported backup format_version {version!r}")
        payload_type = data.get("payload_type")
        if payload_type not in _CONTEXTS:
            raise CorruptStore(f"unknown backup payload_type {payload_type!r}")
        created_at = data.get("created_at")
        if not isinstance(created_at, str):
            raise CorruptStore("backup created_at missing")
        return cls(payload_type, WalletFile.from_dict(data.get("vault")), created_at, version)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str | bytes) -> Backup:
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise CorruptStore("backup is not valid JSON") from exc
        return cls.from_dict(data)


# ------------------------------------------------------------------
#  Export
# ------------------------------------------------------------------

def _mnemonic_payload(store: WalletStore) -> bytes:
    if store.entropy is None:
        raise InvalidInput("wallet was not created from a mnemonic; use a full backup")
    phrase = mn.from_entropy(bytes(store.entropy)).phrase
    doc = {
        "mnemonic": phrase,
        "network": store.network.name,
        "next_index": store.next_index,
    }
    return json.dumps(doc, separators=(",", ":")).encode("utf-8")


def export_backup(store: WalletStore, passphrase: str, vault: Vault,
                  mnemonic_only: bool = False) -> Backup:
    """Seal the wallet (or just its mnemonic) under *passphrase*."""
    if store.locked:
        raise WalletError("wallet is locked")
    if mnemonic_only:
        payload_type, plaintext = PAYLOAD_MNEMONIC, _mnemonic_payload(store)
    else:
        payload_type, plaintext = PAYLOAD_VAULT, store.to_payload()
    sealed = vault.seal(plaintext, passphrase, _CONTEXTS[payload_type])
    logger.info(f"Exported {payload_type} backup ({store.next_index} address(es))")
    return Backup(payload_type, sealed)


def write_backup(path: str | os.PathLike[str], backup: Backup) -> None:
    atomic_write(path, backup.to_json().encode("utf-8"))


def read_backup(path: str | os.PathLike[str]) -> Backup:
    p = Path(path)
    if not p.is_file():
        raise WalletError(f"backup file not found: {p}")
    return Backup.from_json(p.read_bytes())


# ------------------------------------------------------------------
#  Restore
# ------------------------------------------------------------------

def restore_from_mnemonic(
    mnemonic: mn.Mnemonic | str,
    passphrase: str,
    network: Network | str,
    next_index: int | None = None,
    path: str | os.PathLike[str] | None = None,
    vault: Vault | None = None,
) -> WalletStore:
    """Rebuild a wallet from its 24 words.

    Addresses ``0..next_index-1`` are replayed when the count is known,
    otherwise only address 0.  With *path* the result is persisted there
    under *passphrase*.
    """
    if not isinstance(mnemonic, mn.Mnemonic):
        mnemonic = mn.parse(mnemonic)
    if next_index is not None and next_index < 1:
        raise InvalidInput(f"next_index must be >= 1, got {next_index}")
    store = WalletStore.create(Network.parse(network), entropy=mn.to_entropy(mnemonic))
    while store.next_index < (next_index or 1):
        store.generate_address()
    if path is not None:
        store.persist(path, passphrase, vault or Vault())
    logger.info(f"Restored wallet from mnemonic ({store.next_index} address(es))")
    return store


def restore_from_backup(backup: Backup, passphrase: str, vault: Vault) -> WalletStore:
    """Open *backup*; raises AuthenticationFailed on tamper or wrong passphrase."""
    plaintext = vault.open(backup.vault, passphrase, backup.context)
    if backup.payload_type == PAYLOAD_VAULT:
        return WalletStore.from_payload(plaintext)
    try:
        doc = json.loads(plaintext)
        phrase = doc["mnemonic"]
        network = doc["network"]
        next_index = int(doc["next_index"])
    except (ValueError, KeyError, TypeError) as exc:
        raise CorruptStore("mnemonic backup payload is malformed") from exc
    if not isinstance(phrase, str) or not isinstance(network, str):
        raise CorruptStore("mnemonic backup payload is malformed")
    return restore_from_mnemonic(phrase, passphrase, network, next_index=next_index)


def verify_backup(backup: Backup, passphrase: str, vault: Vault) -> bool:
    """Open and parse *backup* without committing anything; never raises."""
    try:
        store = restore_from_backup(backup, passphrase, vault)
    except WalletError as exc:
        logger.warning(f"Backup verification failed: {type(exc).__name__}")
        return False
    store.lock()
    return True
