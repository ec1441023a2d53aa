"""
TOML-based configuration for the BTPC wallet.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from btpc_wallet.config import load_config
    cfg = load_config(default_config_path())
"""

from __future__ import annotations

import dataclasses
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from btpc_wallet.kdf import DEFAULT_KDF_PARAMS, MINIMUM_KDF_PARAMS, KdfParams

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


_RPC_PORTS = {
    "mainnet": 8332,
    "testnet": 18332,
    "regtest": 18443,
}
_DEFAULT_RPC_PORT = 18432


def default_rpc_url(network: str) -> str:
    return f"http://127.0.0.1:{_RPC_PORTS.get(network, _DEFAULT_RPC_PORT)}"


def default_config_dir() -> Path:
    return Path.home() / ".config" / "btpc_wallet"


def default_config_path() -> Path:
    return default_config_dir() / "config.toml"


@dataclass
class WalletConfig:
    """Which wallet file to open and for which network.

    ``default_wallet`` is resolved against ``wallet_dir`` when relative.
    """
    network: str = "testnet"
    default_wallet: str = "wallet.json"
    wallet_dir: str = str(default_config_dir() / "wallets")

    def wallet_path(self, name: str | None = None) -> Path:
        p = Path(name or self.default_wallet).expanduser()
        return p if p.is_absolute() else Path(self.wallet_dir).expanduser() / p


@dataclass
class KdfConfig:
    """Argon2id cost for new vaults and the floor accepted when opening."""
    time_cost: int = DEFAULT_KDF_PARAMS.time_cost
    memory_cost: int = DEFAULT_KDF_PARAMS.memory_cost       # KiB
    parallelism: int = DEFAULT_KDF_PARAMS.parallelism
    min_time_cost: int = MINIMUM_KDF_PARAMS.time_cost
    min_memory_cost: int = MINIMUM_KDF_PARAMS.memory_cost
    min_parallelism: int = MINIMUM_KDF_PARAMS.parallelism

    def params(self) -> KdfParams:
        return KdfParams(self.time_cost, self.memory_cost, self.parallelism)

    def minimum(self) -> KdfParams:
        return KdfParams(self.min_time_cost, self.min_memory_cost, self.min_parallelism)


@dataclass
class NodeConfig:
    """Node RPC endpoint; an empty ``rpc_url`` means the network default."""
    rpc_url: str = ""
    timeout_seconds: float = 10.0
    max_retries: int = 3
    backoff_seconds: float = 0.5


@dataclass
class TxConfig:
    default_fee: str = "0.0001"     # BTP
    dust_threshold: int = 1_000     # base units


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "WARNING"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class BtpcConfig:
    """Top-level configuration container."""
    wallet: WalletConfig = field(default_factory=WalletConfig)
    kdf: KdfConfig = field(default_factory=KdfConfig)
    node: NodeConfig = field(default_factory=NodeConfig)
    tx: TxConfig = field(default_factory=TxConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def rpc_url(self) -> str:
        return self.node.rpc_url or default_rpc_url(self.wallet.network)

    def as_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | os.PathLike[str] | None = None) -> BtpcConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        BTPC_NETWORK     -> wallet.network
        BTPC_WALLET      -> wallet.default_wallet
        BTPC_WALLET_DIR  -> wallet.wallet_dir
        BTPC_RPC_URL     -> node.rpc_url
        BTPC_KDF_MEMORY  -> kdf.memory_cost
        BTPC_KDF_TIME    -> kdf.time_cost
        BTPC_LOG_LEVEL   -> logging.level
        BTPC_LOG_FMT     -> logging.format
    """
    cfg = BtpcConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("wallet", cfg.wallet),
                ("kdf", cfg.kdf),
                ("node", cfg.node),
                ("tx", cfg.tx),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("BTPC_NETWORK"):
        cfg.wallet.network = v.lower()
    if v := os.environ.get("BTPC_WALLET"):
        cfg.wallet.default_wallet = v
    if v := os.environ.get("BTPC_WALLET_DIR"):
        cfg.wallet.wallet_dir = v
    if v := os.environ.get("BTPC_RPC_URL"):
        cfg.node.rpc_url = v
    if v := os.environ.get("BTPC_KDF_MEMORY"):
        cfg.kdf.memory_cost = int(v)
    if v := os.environ.get("BTPC_KDF_TIME"):
        cfg.kdf.time_cost = int(v)
    if v := os.environ.get("BTPC_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("BTPC_LOG_FMT"):
        cfg.logging.format = v

    return cfg
