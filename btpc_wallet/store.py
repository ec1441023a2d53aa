"""
In-memory wallet model and its persistence through the vault.

The plaintext payload (only ever held in memory or inside a sealed vault):

    {
      "format": 1,
      "network": {"kind": "testnet", "name": "testnet"},
      "keypairs": [{"public_key": "<b64>", "private_key": "<b64>"}],
      "addresses": [{"index": 0, "address": "tbtpc1..."}],
      "next_index": 1,
      "entropy": "<hex>" | null,
      "metadata": {...}
    }

Writes go through :func:`atomic_write` (temp file in the same directory,
fsync, ``os.replace``) so an interrupted persist leaves the previous file
intact.  Cross-process exclusion uses an advisory lock on ``<wallet>.lock``.
"""

from __future__ import annotations

import base64
import binascii
import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from btpc_wallet import address as addr
from btpc_wallet.address import Network, NetworkKind
from btpc_wallet.errors import CorruptStore, InvalidInput, WalletError, WalletLocked
from btpc_wallet.keys import KeyPair, derive_keypair, generate_keypair
from btpc_wallet.vault import WALLET_CONTEXT, Vault, WalletFile

try:
    import fcntl
except ImportError:  # Windows
    fcntl = None  # type: ignore[assignment]
    import msvcrt

logger = logging.getLogger("btpc_wallet.store")

PAYLOAD_FORMAT = 1


# ===================================================================
#  Filesystem helpers
# ===================================================================

def atomic_write(path: str | os.PathLike[str], data: bytes) -> None:
    """Write *data* to *path* via temp file + fsync + rename."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise
    if fcntl is not None:
        dir_fd = os.open(target.parent, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)


def read_wallet_file(path: str | os.PathLike[str]) -> WalletFile:
    """Read and parse the sealed envelope without decrypting it."""
    p = Path(path)
    if not p.is_file():
        raise WalletError(f"wallet file not found: {p}")
    return WalletFile.from_json(p.read_bytes())


class WalletFileLock:
    """Advisory exclusive lock held for a load-mutate-persist cycle."""

    def __init__(self, wallet_path: str | os.PathLike[str]):
        self.lock_path = Path(f"{os.fspath(wallet_path)}.lock")
        self._fh = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        if self._fh is not None:
            return
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.lock_path, "a+b")
        try:
            if fcntl is not None:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            else:
                fh.seek(0)
                msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            fh.close()
            raise WalletLocked(f"wallet is in use by another process: {self.lock_path}") from None
        self._fh = fh
        logger.debug(f"Acquired {self.lock_path}")

    def release(self) -> None:
        fh, self._fh = self._fh, None
        if fh is None:
            return
        try:
            if fcntl is not None:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
            else:
                fh.seek(0)
                msvcrt.locking(fh.fileno(), msvcrt.LK_UNLCK, 1)
        finally:
            fh.close()

    def __enter__(self) -> WalletFileLock:
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


# ===================================================================
#  Wallet model
# ===================================================================

@dataclass(frozen=True)
class AddressEntry:
    index: int
    address: str

    def __str__(self) -> str:
        return self.address


@dataclass
class WalletStore:
    """Single source of truth for one wallet during a process lifetime."""
    network: Network
    keypairs: list[KeyPair]
    addresses: list[AddressEntry] = field(default_factory=list)
    next_index: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    entropy: bytearray | None = field(default=None, repr=False)
    locked: bool = False

    # ---- factory ----

    @classmethod
    def create(cls, network: Network, entropy: bytes | None = None,
               label: str | None = None) -> WalletStore:
        """New wallet: keypair from *entropy* (or random) plus address 0."""
        keypair = derive_keypair(entropy) if entropy is not None else generate_keypair()
        store = cls(
            network=network,
            keypairs=[keypair],
            metadata={"created_at": datetime.now(timezone.utc).isoformat()},
            entropy=bytearray(entropy) if entropy is not None else None,
        )
        if label:
            store.metadata["label"] = label
        store.generate_address()
        logger.info(f"Created {network} wallet {keypair.fingerprint}")
        return store

    # ---- accessors ----

    @property
    def keypair(self) -> KeyPair:
        self._require_unlocked()
        return self.keypairs[0]

    @property
    def primary_address(self) -> str:
        return self.addresses[0].address

    @property
    def has_mnemonic(self) -> bool:
        return self.entropy is not None

    def owns(self, address: str) -> bool:
        return any(e.address == address for e in self.addresses)

    def _require_unlocked(self) -> None:
        if self.locked:
            raise WalletError("wallet is locked")

    # ---- mutation ----

    def generate_address(self) -> AddressEntry:
        """Derive the address at ``next_index`` and append it."""
        self._require_unlocked()
        index = self.next_index
        entry = AddressEntry(index, addr.derive(self.keypairs[0].public_key, index, self.network))
        self.next_index = index + 1
        self.addresses.append(entry)
        return entry

    def _forget_last_address(self) -> None:
        self.addresses.pop()
        self.next_index -= 1

    def lock(self) -> None:
        """Zeroize private keys and entropy; the store is unusable afterwards."""
        for kp in self.keypairs:
            kp.wipe()
        if self.entropy is not None:
            for i in range(len(self.entropy)):
                self.entropy[i] = 0
        self.locked = True

    # ---- payload codec ----

    def to_payload(self) -> bytes:
        self._require_unlocked()
        doc = {
            "format": PAYLOAD_FORMAT,
            "network": {"kind": self.network.kind.value, "name": self.network.name},
            "keypairs": [
                {
                    "public_key": base64.b64encode(kp.public_key).decode("ascii"),
                    "private_key": base64.b64encode(kp.private_key).decode("ascii"),
                }
                for kp in self.keypairs
            ],
            "addresses": [{"index": e.index, "address": e.address} for e in self.addresses],
            "next_index": self.next_index,
            "entropy": self.entropy.hex() if self.entropy is not None else None,
            "metadata": self.metadata,
        }
        return json.dumps(doc, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_payload(cls, raw: bytes) -> WalletStore:
        """Rebuild a store from decrypted bytes; raises CorruptStore."""
        try:
            doc = json.loads(raw)
            if doc["format"] != PAYLOAD_FORMAT:
                raise CorruptStore(f"unsupported payload format {doc['format']!r}")
            kind = NetworkKind(doc["network"]["kind"])
            name = doc["network"]["name"]
            network = Network.custom(name) if kind is NetworkKind.CUSTOM else Network.parse(kind.value)
            keypairs = [
                KeyPair(
                    base64.b64decode(k["public_key"], validate=True),
                    base64.b64decode(k["private_key"], validate=True),
                )
                for k in doc["keypairs"]
            ]
            addresses = [AddressEntry(int(a["index"]), str(a["address"])) for a in doc["addresses"]]
            next_index = int(doc["next_index"])
            entropy = bytearray.fromhex(doc["entropy"]) if doc.get("entropy") else None
            metadata = dict(doc.get("metadata") or {})
        except CorruptStore:
            raise
        except (ValueError, KeyError, TypeError, binascii.Error, InvalidInput) as exc:
            raise CorruptStore("wallet payload does not match the expected format") from exc

        if not keypairs:
            raise CorruptStore("wallet payload has no keypairs")
        previous = -1
        for entry in addresses:
            if entry.index <= previous or entry.index >= next_index:
                raise CorruptStore("address indices are not strictly increasing")
            if entry.address != addr.derive(keypairs[0].public_key, entry.index, network):
                raise CorruptStore(f"address #{entry.index} does not match the wallet key")
            previous = entry.index
        return cls(network, keypairs, addresses, next_index, metadata, entropy)

    # ---- disk ----

    @classmethod
    def load(cls, path: str | os.PathLike[str], passphrase: str, vault: Vault) -> WalletStore:
        """Read the wallet file, open the vault and deserialize."""
        wallet_file = read_wallet_file(path)
        store = cls.from_payload(vault.open(wallet_file, passphrase, WALLET_CONTEXT))
        logger.info(f"Loaded wallet {path} ({len(store.addresses)} address(es))")
        return store

    def persist(self, path: str | os.PathLike[str], passphrase: str, vault: Vault) -> WalletFile:
        """Seal the current state and atomically replace the wallet file."""
        sealed = vault.seal(self.to_payload(), passphrase, WALLET_CONTEXT)
        atomic_write(path, sealed.to_json().encode("utf-8"))
        logger.info(f"Persisted wallet {path} (next_index={self.next_index})")
        return sealed


class WalletSession:
    """Lock + load on enter; zeroize + unlock on exit.

    Usage:
        with WalletSession(path, passphrase, vault) as session:
            entry = session.generate_address()   # persisted before returned
    """

    def __init__(self, path: str | os.PathLike[str], passphrase: str, vault: Vault):
        self.path = Path(path)
        self._passphrase = passphrase
        self._vault = vault
        self._lock = WalletFileLock(self.path)
        self.store: WalletStore | None = None

    def __enter__(self) -> WalletSession:
        self._lock.acquire()
        try:
            self.store = WalletStore.load(self.path, self._passphrase, self._vault)
        except BaseException:
            self._lock.release()
            raise
        return self

    def __exit__(self, *exc: object) -> None:
        try:
            if self.store is not None:
                self.store.lock()
        finally:
            self._passphrase = ""
            self._lock.release()

    def persist(self) -> None:
        self.store.persist(self.path, self._passphrase, self._vault)

    def generate_address(self) -> AddressEntry:
        """Append a new address and return it only after it is on disk."""
        entry = self.store.generate_address()
        try:
            self.persist()
        except BaseException:
            self.store._forget_last_address()
            raise
        return entry
