"""
Wallet operations and the command dispatcher.

Every operation takes an explicit :class:`WalletContext` (configuration,
wallet path, node client) and returns a plain ``dict`` that a CLI, an
interactive menu or a test can render however it likes.  Operations that
mutate the wallet file hold its advisory lock for the whole
load-mutate-persist cycle.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from btpc_wallet import backup as bk
from btpc_wallet import builder, signer
from btpc_wallet import mnemonic as mn
from btpc_wallet import transaction as txm
from btpc_wallet.address import Network
from btpc_wallet.config import BtpcConfig, default_config_path, load_config
from btpc_wallet.errors import CorruptStore, InvalidInput, InvalidTransaction, WalletError
from btpc_wallet.fee_model import FixedFee
from btpc_wallet.kdf import KdfParams
from btpc_wallet.logging_config import setup_logging
from btpc_wallet.node import NodeClient, RetryingNodeClient
from btpc_wallet.precision import format_amount, parse_amount
from btpc_wallet.store import (
    WalletFileLock,
    WalletSession,
    WalletStore,
    atomic_write,
    read_wallet_file,
)
from btpc_wallet.vault import Vault

logger = logging.getLogger("btpc_wallet.commands")


@dataclass
class WalletContext:
    """The "current wallet" handed to every operation."""
    config: BtpcConfig
    wallet_path: Path
    node: NodeClient | None = None
    config_path: Path | None = None
    _vault: Vault | None = field(default=None, repr=False)

    @classmethod
    def from_config(
        cls,
        config: BtpcConfig,
        node: NodeClient | None = None,
        wallet: str | None = None,
        config_path: Path | None = None,
    ) -> WalletContext:
        """Resolve the wallet path and wrap *node* in the configured retry policy."""
        if node is not None and not isinstance(node, RetryingNodeClient):
            node = RetryingNodeClient(
                node,
                max_retries=config.node.max_retries,
                backoff_seconds=config.node.backoff_seconds,
                timeout_seconds=config.node.timeout_seconds,
            )
        return cls(config, config.wallet.wallet_path(wallet), node, config_path)

    @property
    def vault(self) -> Vault:
        if self._vault is None:
            self._vault = Vault(self.config.kdf.params(), self.config.kdf.minimum())
        return self._vault

    @property
    def network(self) -> Network:
        return Network.parse(self.config.wallet.network)

    def require_node(self) -> NodeClient:
        if self.node is None:
            raise WalletError("no node client configured")
        return self.node

    def session(self, passphrase: str) -> WalletSession:
        return WalletSession(self.wallet_path, passphrase, self.vault)


def open_context(
    config_path: str | os.PathLike[str] | None = None,
    node: NodeClient | None = None,
    wallet: str | None = None,
    verbosity: int = 0,
) -> WalletContext:
    """Load configuration, install logging and build the context a frontend runs with."""
    path = Path(config_path) if config_path is not None else default_config_path()
    config = load_config(path)
    setup_logging(config.logging, verbosity)
    logger.debug(f"Loaded config from {path} (network {config.wallet.network})")
    return WalletContext.from_config(config, node=node, wallet=wallet, config_path=path)


def _require_confirmation(confirm: bool, what: str) -> None:
    if not confirm:
        raise InvalidInput(f"{what} reveals the recovery phrase; pass confirm=True")


def _write_new_wallet(ctx: WalletContext, store: WalletStore, passphrase: str,
                      force: bool) -> None:
    with WalletFileLock(ctx.wallet_path):
        if ctx.wallet_path.exists() and not force:
            raise WalletError(f"wallet already exists: {ctx.wallet_path}")
        store.persist(ctx.wallet_path, passphrase, ctx.vault)


# ===================================================================
#  Operations
# ===================================================================

def init(ctx: WalletContext, passphrase: str, network: str | None = None,
         label: str | None = None, force: bool = False) -> dict[str, Any]:
    """Create a new wallet from a fresh 24-word mnemonic."""
    if not passphrase:
        raise InvalidInput("passphrase must not be empty")
    phrase = mn.generate()
    store = WalletStore.create(
        Network.parse(network or ctx.config.wallet.network),
        entropy=mn.to_entropy(phrase),
        label=label,
    )
    try:
        _write_new_wallet(ctx, store, passphrase, force)
        return {
            "path": str(ctx.wallet_path),
            "network": store.network.name,
            "address": store.primary_address,
            "fingerprint": store.keypair.fingerprint,
            "mnemonic": phrase.phrase,
        }
    finally:
        store.lock()


def address(ctx: WalletContext, passphrase: str) -> dict[str, Any]:
    with ctx.session(passphrase) as s:
        return {
            "address": s.store.primary_address,
            "network": s.store.network.name,
            "addresses": [{"index": e.index, "address": e.address} for e in s.store.addresses],
            "next_index": s.store.next_index,
        }


def generate_address(ctx: WalletContext, passphrase: str) -> dict[str, Any]:
    with ctx.session(passphrase) as s:
        entry = s.generate_address()
        return {"index": entry.index, "address": entry.address}


def balance(ctx: WalletContext, passphrase: str) -> dict[str, Any]:
    """Sum confirmed and pending balances over every wallet address."""
    node = ctx.require_node()
    with ctx.session(passphrase) as s:
        addresses = [e.address for e in s.store.addresses]
    confirmed = pending = 0
    for a in addresses:
        b = node.get_balance(a)
        confirmed += b.confirmed
        pending += b.pending
    return {
        "confirmed": confirmed,
        "pending": pending,
        "total": confirmed + pending,
        "display": format_amount(confirmed + pending),
    }


def history(ctx: WalletContext, passphrase: str, limit: int = 10) -> dict[str, Any]:
    """Most recent transactions across all addresses, newest first."""
    if limit <= 0:
        raise InvalidInput("limit must be positive")
    node = ctx.require_node()
    with ctx.session(passphrase) as s:
        addresses = [e.address for e in s.store.addresses]
    rows: dict[str, Any] = {}
    for a in addresses:
        for item in node.get_history(a, limit):
            rows.setdefault(item.txid, item)
    ordered = sorted(rows.values(), key=lambda t: (-t.timestamp, t.txid))[:limit]
    return {"transactions": [t.to_dict() for t in ordered]}


def show_seed(ctx: WalletContext, passphrase: str, confirm: bool = False) -> dict[str, Any]:
    _require_confirmation(confirm, "show-seed")
    with ctx.session(passphrase) as s:
        if s.store.entropy is None:
            raise InvalidInput("wallet has no recovery phrase")
        phrase = mn.from_entropy(bytes(s.store.entropy))
    return {"mnemonic": phrase.phrase, "words": list(phrase.words)}


def export_mnemonic(ctx: WalletContext, passphrase: str, output: str,
                    backup_passphrase: str | None = None,
                    confirm: bool = False) -> dict[str, Any]:
    """Write an encrypted mnemonic-only backup."""
    _require_confirmation(confirm, "export-mnemonic")
    with ctx.session(passphrase) as s:
        result = bk.export_backup(s.store, backup_passphrase or passphrase, ctx.vault,
                                  mnemonic_only=True)
    bk.write_backup(output, result)
    return {"path": str(output), "payload_type": result.payload_type}


def send(ctx: WalletContext, passphrase: str, recipient: str, amount: str,
         fee: str | None = None, change_to: str | None = None,
         broadcast: bool = True) -> dict[str, Any]:
    """Build, sign and (optionally) broadcast a payment of *amount* BTP."""
    node = ctx.require_node()
    units = parse_amount(amount)
    fee_units = parse_amount(fee if fee is not None else ctx.config.tx.default_fee)
    with ctx.session(passphrase) as s:
        store = s.store
        if change_to is not None and not store.owns(change_to.strip().lower()):
            raise InvalidInput(f"change address {change_to!r} does not belong to this wallet")
        utxos = []
        for e in store.addresses:
            utxos.extend(node.get_utxos(e.address))
        tx = builder.build(
            utxos,
            recipient,
            units,
            FixedFee(fee_units),
            change_to or store.primary_address,
            store.network,
            dust_threshold=ctx.config.tx.dust_threshold,
        )
        signed = signer.sign(tx, store.keypair)
    raw = txm.serialize(signed)
    result = {
        "tx_id": signed.tx_id,
        "raw": raw.hex(),
        "amount": units,
        "fee": tx.fee,
        "broadcast": False,
    }
    if broadcast:
        result["tx_id"] = node.broadcast(raw)
        result["broadcast"] = True
    return result


def broadcast(ctx: WalletContext, raw_tx: str | bytes) -> dict[str, Any]:
    """Validate a signed transaction locally, then hand it to the node."""
    node = ctx.require_node()
    if isinstance(raw_tx, str):
        try:
            raw = bytes.fromhex(raw_tx.strip())
        except ValueError:
            raise InvalidTransaction("raw transaction must be hex") from None
    else:
        raw = bytes(raw_tx)
    signed = txm.deserialize(raw)
    if not signer.verify(signed):
        raise InvalidTransaction("transaction signature does not verify")
    return {"tx_id": node.broadcast(raw)}


def backup(ctx: WalletContext, passphrase: str, output: str,
           backup_passphrase: str | None = None,
           mnemonic_only: bool = False) -> dict[str, Any]:
    with ctx.session(passphrase) as s:
        result = bk.export_backup(s.store, backup_passphrase or passphrase, ctx.vault,
                                  mnemonic_only=mnemonic_only)
    bk.write_backup(output, result)
    return {"path": str(output), "payload_type": result.payload_type,
            "created_at": result.created_at}


def restore(ctx: WalletContext, passphrase: str, mnemonic: str | None = None,
            backup_file: str | None = None, backup_passphrase: str | None = None,
            network: str | None = None, next_index: int | None = None,
            force: bool = False) -> dict[str, Any]:
    """Recreate the wallet file from a mnemonic or a backup file."""
    if (mnemonic is None) == (backup_file is None):
        raise InvalidInput("provide exactly one of mnemonic or backup_file")
    if mnemonic is not None:
        store = bk.restore_from_mnemonic(
            mnemonic, passphrase, network or ctx.config.wallet.network, next_index=next_index
        )
    else:
        store = bk.restore_from_backup(bk.read_backup(backup_file), backup_passphrase or passphrase,
                                       ctx.vault)
    try:
        _write_new_wallet(ctx, store, passphrase, force)
        return {
            "path": str(ctx.wallet_path),
            "network": store.network.name,
            "address": store.primary_address,
            "next_index": store.next_index,
        }
    finally:
        store.lock()


def backup_verify(ctx: WalletContext, file: str, passphrase: str) -> dict[str, Any]:
    result = bk.read_backup(file)
    return {
        "path": str(file),
        "payload_type": result.payload_type,
        "valid": bk.verify_backup(result, passphrase, ctx.vault),
    }


def passwd(ctx: WalletContext, passphrase: str, new_passphrase: str,
           time_cost: int | None = None, memory_cost: int | None = None,
           parallelism: int | None = None) -> dict[str, Any]:
    """Re-encrypt the wallet under a new passphrase and optionally new KDF cost."""
    if not new_passphrase:
        raise InvalidInput("new passphrase must not be empty")
    current = ctx.vault.kdf_params
    params = KdfParams(
        time_cost if time_cost is not None else current.time_cost,
        memory_cost if memory_cost is not None else current.memory_cost,
        parallelism if parallelism is not None else current.parallelism,
    )
    new_vault = Vault(params, ctx.vault.minimum)
    with ctx.session(passphrase) as s:
        previous = read_wallet_file(ctx.wallet_path)
        sealed = new_vault.reseal(previous, s.store.to_payload(), new_passphrase)
        atomic_write(ctx.wallet_path, sealed.to_json().encode("utf-8"))
    logger.info(f"Re-encrypted {ctx.wallet_path} with {params.as_dict()}")
    return {"path": str(ctx.wallet_path), "kdf": params.to_dict()}


def config(ctx: WalletContext) -> dict[str, Any]:
    """Effective configuration (file + environment)."""
    return {
        "config_file": str(ctx.config_path or default_config_path()),
        "wallet_path": str(ctx.wallet_path),
        "rpc_url": ctx.config.rpc_url,
        **ctx.config.as_dict(),
    }


def list_wallets(ctx: WalletContext, dir: str | None = None) -> dict[str, Any]:
    """Wallet files (sealed envelopes) found directly in *dir*."""
    root = Path(dir or ctx.config.wallet.wallet_dir).expanduser()
    if not root.is_dir():
        raise InvalidInput(f"not a directory: {root}")
    wallets = []
    for p in sorted(root.glob("*.json")):
        if not p.is_file():
            continue
        try:
            wf = read_wallet_file(p)
        except CorruptStore:
            logger.debug(f"Skipping {p}: not a wallet file")
            continue
        wallets.append({
            "name": p.name,
            "path": str(p),
            "size": os.path.getsize(p),
            "cipher": wf.cipher,
            "kdf": wf.kdf_params.to_dict(),
        })
    return {"dir": str(root), "wallets": wallets}


# ===================================================================
#  Dispatcher
# ===================================================================

COMMANDS: dict[str, Callable[..., dict[str, Any]]] = {
    "init": init,
    "address": address,
    "balance": balance,
    "generate-address": generate_address,
    "show-seed": show_seed,
    "send": send,
    "history": history,
    "broadcast": broadcast,
    "backup": backup,
    "restore": restore,
    "backup-verify": backup_verify,
    "export-mnemonic": export_mnemonic,
    "passwd": passwd,
    "config": config,
    "list-wallets": list_wallets,
}


class CommandDispatcher:
    """Maps command-surface names onto operations for one context."""

    def __init__(self, context: WalletContext):
        self.context = context

    @staticmethod
    def names() -> list[str]:
        return sorted(COMMANDS)

    def dispatch(self, name: str, **kwargs: Any) -> dict[str, Any]:
        op = COMMANDS.get(name) or COMMANDS.get(name.replace("_", "-"))
        if op is None:
            raise InvalidInput(f"unknown command {name!r}")
        logger.debug(f"Dispatching {name}")
        return op(self.context, **kwargs)
