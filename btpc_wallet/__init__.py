"""
BTPC Wallet - local key custody for a Dilithium5 (post-quantum) chain.

Key features:
- 24-word BIP-39 recovery phrases with deterministic Dilithium5 keys
- Argon2id + AES-256-GCM encrypted wallet files, written atomically
- Network-tagged bech32m addresses
- Canonical transaction encoding, input selection and signing
- Encrypted backups with verify-without-restore
"""

__version__ = "0.3.0"
__all__ = [
    "errors",
    "mnemonic",
    "kdf",
    "keys",
    "vault",
    "address",
    "store",
    "transaction",
    "fee_model",
    "builder",
    "signer",
    "backup",
    "node",
    "config",
    "logging_config",
    "commands",
]
