"""
Shared pytest fixtures for the BTPC wallet test suite.
"""

import pytest

from btpc_wallet.address import TESTNET, derive
from btpc_wallet.errors import TransportError
from btpc_wallet.kdf import KdfParams
from btpc_wallet.keys import derive_keypair
from btpc_wallet.node import Balance
from btpc_wallet.store import WalletStore
from btpc_wallet.vault import Vault

# Smallest parameters the vault accepts; keeps Argon2id fast under test.
FAST_KDF = KdfParams(time_cost=1, memory_cost=8192, parallelism=1)

FIXED_ENTROPY = bytes(range(32))
PASSPHRASE = "correct horse battery staple"


@pytest.fixture
def passphrase():
    return PASSPHRASE


@pytest.fixture
def fixed_entropy():
    return FIXED_ENTROPY


@pytest.fixture
def fast_kdf():
    return FAST_KDF


@pytest.fixture
def vault():
    """Vault with fast-but-legal Argon2id parameters."""
    return Vault(kdf_params=FAST_KDF)


@pytest.fixture(scope="session")
def keypair():
    """Deterministic Dilithium5 keypair (derived once per session)."""
    return derive_keypair(FIXED_ENTROPY)


@pytest.fixture
def store():
    """Fresh testnet wallet derived from FIXED_ENTROPY."""
    s = WalletStore.create(TESTNET, entropy=FIXED_ENTROPY)
    yield s
    s.lock()


@pytest.fixture
def wallet_path(tmp_path, store, vault):
    """Sealed wallet file on disk for *store* under PASSPHRASE."""
    path = tmp_path / "wallet.json"
    store.persist(path, PASSPHRASE, vault)
    return path


@pytest.fixture
def recipient(keypair):
    """A valid testnet address that is not one of the fixture wallet's."""
    return derive(b"\x01" * len(keypair.public_key), 0, TESTNET)


class FakeNode:
    """In-memory node: canned answers plus a record of every call."""

    def __init__(self):
        self.balances = {}
        self.history = {}
        self.utxos = {}
        self.broadcasts = []
        self.calls = []
        self.timeouts = []   # timeout passed with each call
        self.failures = []   # exceptions raised (in order) before answering

    def _enter(self, name, timeout):
        self.calls.append(name)
        self.timeouts.append(timeout)
        if self.failures:
            raise self.failures.pop(0)

    def get_balance(self, address, *, timeout=None):
        self._enter("get_balance", timeout)
        return self.balances.get(address, Balance(0, 0))

    def get_history(self, address, limit, *, timeout=None):
        self._enter("get_history", timeout)
        return list(self.history.get(address, []))[:limit]

    def get_utxos(self, address, *, timeout=None):
        self._enter("get_utxos", timeout)
        return list(self.utxos.get(address, []))

    def broadcast(self, raw, *, timeout=None):
        self._enter("broadcast", timeout)
        self.broadcasts.append(bytes(raw))
        return "ab" * 32


@pytest.fixture
def fake_node():
    return FakeNode()


@pytest.fixture
def flaky_node():
    """FakeNode whose first two calls fail with TransportError."""
    node = FakeNode()
    node.failures = [TransportError("connection reset"), TransportError("timeout")]
    return node
