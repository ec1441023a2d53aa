"""
Tests for btpc_wallet.commands — wallet operations through the dispatcher.

Covers:
  - init / address / generate-address / show-seed / export-mnemonic
  - balance and history aggregation over every wallet address
  - send (build + sign + broadcast) and standalone broadcast validation
  - backup / backup-verify / restore (from backup and from mnemonic)
  - passwd re-encryption
  - config / list-wallets
  - dispatcher name mapping, locking and missing node
"""

from __future__ import annotations

import logging

import pytest

from btpc_wallet import mnemonic as mn
from btpc_wallet.commands import COMMANDS, CommandDispatcher, WalletContext, open_context
from btpc_wallet.config import BtpcConfig
from btpc_wallet.errors import (
    AuthenticationFailed,
    InsufficientFunds,
    InvalidInput,
    InvalidTransaction,
    WalletError,
    WalletLocked,
    WeakKdfParams,
)
from btpc_wallet.logging_config import JsonFormatter
from btpc_wallet.node import Balance, RetryingNodeClient, TxSummary
from btpc_wallet.signer import verify
from btpc_wallet.store import WalletFileLock, WalletStore, read_wallet_file
from btpc_wallet.transaction import Utxo, deserialize


@pytest.fixture
def cfg(tmp_path):
    c = BtpcConfig()
    c.wallet.wallet_dir = str(tmp_path / "wallets")
    c.kdf.time_cost, c.kdf.memory_cost, c.kdf.parallelism = 1, 8192, 1
    return c


@pytest.fixture
def ctx(cfg, fake_node):
    return WalletContext.from_config(cfg, node=fake_node)


@pytest.fixture
def dispatcher(ctx):
    return CommandDispatcher(ctx)


@pytest.fixture
def created(dispatcher, passphrase):
    return dispatcher.dispatch("init", passphrase=passphrase)


def _fund(fake_node, address, *values):
    fake_node.utxos[address] = [Utxo(f"{i + 1:064x}", 0, v, address) for i, v in enumerate(values)]


class TestDispatcher:
    def test_all_command_names(self):
        assert CommandDispatcher.names() == sorted([
            "address", "backup", "backup-verify", "balance", "broadcast", "config",
            "export-mnemonic", "generate-address", "history", "init", "list-wallets",
            "passwd", "restore", "send", "show-seed",
        ])
        assert set(COMMANDS) == set(CommandDispatcher.names())

    def test_unknown_command(self, dispatcher):
        with pytest.raises(InvalidInput):
            dispatcher.dispatch("mine")

    def test_underscore_alias(self, dispatcher, created, passphrase):
        out = dispatcher.dispatch("generate_address", passphrase=passphrase)
        assert out["index"] == 1

    def test_node_wrapped_in_retry_policy(self, ctx):
        assert isinstance(ctx.node, RetryingNodeClient)
        assert ctx.node.max_retries == ctx.config.node.max_retries

    def test_configured_timeout_reaches_node(self, cfg, fake_node, passphrase):
        cfg.node.timeout_seconds = 2.5
        d = CommandDispatcher(WalletContext.from_config(cfg, node=fake_node))
        d.dispatch("init", passphrase=passphrase)
        d.dispatch("balance", passphrase=passphrase)
        assert fake_node.timeouts == [2.5]


class TestInit:
    def test_creates_wallet(self, ctx, created):
        assert ctx.wallet_path.exists()
        assert created["network"] == "testnet"
        assert created["address"].startswith("tbtpc1")
        assert mn.is_valid(created["mnemonic"])

    def test_refuses_overwrite(self, dispatcher, created, passphrase):
        with pytest.raises(WalletError, match="already exists"):
            dispatcher.dispatch("init", passphrase=passphrase)

    def test_force_overwrite(self, dispatcher, created, passphrase):
        again = dispatcher.dispatch("init", passphrase=passphrase, force=True)
        assert again["address"] != created["address"]

    def test_empty_passphrase(self, dispatcher):
        with pytest.raises(InvalidInput):
            dispatcher.dispatch("init", passphrase="")

    def test_network_override(self, dispatcher, passphrase):
        out = dispatcher.dispatch("init", passphrase=passphrase, network="regtest")
        assert out["address"].startswith("rbtpc1")

    def test_mnemonic_restores_same_address(self, cfg, created, passphrase):
        cfg.wallet.default_wallet = "second.json"
        other = CommandDispatcher(WalletContext.from_config(cfg))
        out = other.dispatch("restore", passphrase=passphrase, mnemonic=created["mnemonic"])
        assert out["address"] == created["address"]


class TestAddresses:
    def test_address(self, dispatcher, created, passphrase):
        out = dispatcher.dispatch("address", passphrase=passphrase)
        assert out["address"] == created["address"]
        assert out["next_index"] == 1

    def test_generate_address_persists(self, dispatcher, created, passphrase):
        new = dispatcher.dispatch("generate-address", passphrase=passphrase)
        out = dispatcher.dispatch("address", passphrase=passphrase)
        assert out["addresses"][-1] == new
        assert out["next_index"] == 2

    def test_wrong_passphrase(self, dispatcher, created):
        with pytest.raises(AuthenticationFailed):
            dispatcher.dispatch("address", passphrase="nope")

    def test_locked_by_other_process(self, ctx, dispatcher, created, passphrase):
        with WalletFileLock(ctx.wallet_path):
            with pytest.raises(WalletLocked):
                dispatcher.dispatch("generate-address", passphrase=passphrase)


class TestSeed:
    def test_show_seed_requires_confirmation(self, dispatcher, created, passphrase):
        with pytest.raises(InvalidInput):
            dispatcher.dispatch("show-seed", passphrase=passphrase)

    def test_show_seed(self, dispatcher, created, passphrase):
        out = dispatcher.dispatch("show-seed", passphrase=passphrase, confirm=True)
        assert out["mnemonic"] == created["mnemonic"]
        assert len(out["words"]) == 24

    def test_export_mnemonic(self, tmp_path, dispatcher, created, passphrase):
        path = tmp_path / "seed.backup.json"
        out = dispatcher.dispatch("export-mnemonic", passphrase=passphrase,
                                  output=str(path), confirm=True)
        assert out["payload_type"] == "mnemonic"
        assert created["mnemonic"] not in path.read_text()
        verified = dispatcher.dispatch("backup-verify", file=str(path), passphrase=passphrase)
        assert verified["valid"] is True


class TestNodeOperations:
    def test_balance_sums_addresses(self, dispatcher, fake_node, created, passphrase):
        second = dispatcher.dispatch("generate-address", passphrase=passphrase)["address"]
        fake_node.balances[created["address"]] = Balance(100, 5)
        fake_node.balances[second] = Balance(50, 0)
        out = dispatcher.dispatch("balance", passphrase=passphrase)
        assert (out["confirmed"], out["pending"], out["total"]) == (150, 5, 155)
        assert out["display"] == "0.00000155 BTP"

    def test_history_newest_first(self, dispatcher, fake_node, created, passphrase):
        addr = created["address"]
        fake_node.history[addr] = [
            TxSummary("aa", 1, 100, 5),
            TxSummary("bb", 2, 300, -2, fee=1),
            TxSummary("cc", 3, 200, 7),
        ]
        out = dispatcher.dispatch("history", passphrase=passphrase, limit=3)
        assert [t["txid"] for t in out["transactions"]] == ["bb", "cc", "aa"]
        assert out["transactions"][0]["fee"] == 1

    def test_no_node(self, cfg, passphrase):
        d = CommandDispatcher(WalletContext.from_config(cfg))
        d.dispatch("init", passphrase=passphrase)
        with pytest.raises(WalletError, match="node"):
            d.dispatch("balance", passphrase=passphrase)


class TestSend:
    def test_send_and_broadcast(self, dispatcher, fake_node, created, recipient, passphrase):
        _fund(fake_node, created["address"], 100_000_000)
        out = dispatcher.dispatch("send", passphrase=passphrase, recipient=recipient, amount="0.5")
        assert out["broadcast"] is True
        assert out["amount"] == 50_000_000
        assert out["fee"] == 10_000
        assert len(fake_node.broadcasts) == 1
        signed = deserialize(fake_node.broadcasts[0])
        assert verify(signed)
        assert signed.tx.outputs[0].address == recipient
        assert signed.tx.outputs[1].address == created["address"]

    def test_insufficient_funds(self, dispatcher, fake_node, created, recipient, passphrase):
        _fund(fake_node, created["address"], 100_000_000)
        with pytest.raises(InsufficientFunds):
            dispatcher.dispatch("send", passphrase=passphrase, recipient=recipient,
                                amount="1.5", fee="0.0001")
        assert fake_node.broadcasts == []

    def test_build_only_then_broadcast(self, dispatcher, fake_node, created, recipient, passphrase):
        _fund(fake_node, created["address"], 100_000_000)
        out = dispatcher.dispatch("send", passphrase=passphrase, recipient=recipient,
                                  amount="0.25", broadcast=False)
        assert fake_node.broadcasts == []
        sent = dispatcher.dispatch("broadcast", raw_tx=out["raw"])
        assert sent["tx_id"] == "ab" * 32
        assert fake_node.broadcasts[0].hex() == out["raw"]

    def test_broadcast_rejects_forgery(self, dispatcher, fake_node, created, recipient, passphrase):
        _fund(fake_node, created["address"], 100_000_000)
        out = dispatcher.dispatch("send", passphrase=passphrase, recipient=recipient,
                                  amount="0.25", broadcast=False)
        raw = bytearray.fromhex(out["raw"])
        raw[-1] ^= 0x01   # last signature byte
        with pytest.raises(InvalidTransaction):
            dispatcher.dispatch("broadcast", raw_tx=raw.hex())
        with pytest.raises(InvalidTransaction):
            dispatcher.dispatch("broadcast", raw_tx="zz")

    def test_bad_amount(self, dispatcher, created, recipient, passphrase):
        with pytest.raises(InvalidInput):
            dispatcher.dispatch("send", passphrase=passphrase, recipient=recipient, amount="-1")

    def test_change_to_foreign_address_refused(self, dispatcher, fake_node, created,
                                               recipient, passphrase):
        _fund(fake_node, created["address"], 500_000_000)
        with pytest.raises(InvalidInput, match="change address"):
            dispatcher.dispatch("send", passphrase=passphrase, recipient=recipient,
                                amount="1", change_to=recipient, broadcast=False)
        assert fake_node.broadcasts == []

    def test_change_to_owned_address(self, dispatcher, fake_node, created, recipient, passphrase):
        second = dispatcher.dispatch("generate-address", passphrase=passphrase)["address"]
        _fund(fake_node, created["address"], 500_000_000)
        out = dispatcher.dispatch("send", passphrase=passphrase, recipient=recipient,
                                  amount="1", change_to=second, broadcast=False)
        outputs = deserialize(bytes.fromhex(out["raw"])).tx.outputs
        assert [(o.address, o.value) for o in outputs] == [
            (recipient, 100_000_000),
            (second, 399_990_000),
        ]


class TestBackupRestore:
    def test_backup_verify_restore(self, tmp_path, cfg, dispatcher, created, passphrase):
        dispatcher.dispatch("generate-address", passphrase=passphrase)
        path = tmp_path / "full.json"
        dispatcher.dispatch("backup", passphrase=passphrase, output=str(path))
        assert dispatcher.dispatch("backup-verify", file=str(path), passphrase=passphrase)["valid"]
        assert not dispatcher.dispatch("backup-verify", file=str(path), passphrase="x")["valid"]

        cfg.wallet.default_wallet = "restored.json"
        other = CommandDispatcher(WalletContext.from_config(cfg))
        out = other.dispatch("restore", passphrase=passphrase, backup_file=str(path))
        assert out["address"] == created["address"]
        assert out["next_index"] == 2

    def test_separate_backup_passphrase(self, tmp_path, dispatcher, created, passphrase):
        path = tmp_path / "b.json"
        dispatcher.dispatch("backup", passphrase=passphrase, output=str(path),
                            backup_passphrase="offline secret")
        assert dispatcher.dispatch("backup-verify", file=str(path),
                                   passphrase="offline secret")["valid"]

    def test_restore_needs_exactly_one_source(self, dispatcher, passphrase):
        with pytest.raises(InvalidInput):
            dispatcher.dispatch("restore", passphrase=passphrase)

    def test_restore_refuses_overwrite(self, dispatcher, created, passphrase):
        with pytest.raises(WalletError):
            dispatcher.dispatch("restore", passphrase=passphrase, mnemonic=created["mnemonic"])


class TestPasswd:
    def test_reencrypts(self, ctx, dispatcher, created, passphrase):
        before = read_wallet_file(ctx.wallet_path)
        out = dispatcher.dispatch("passwd", passphrase=passphrase, new_passphrase="new one",
                                  time_cost=2)
        assert out["kdf"]["time_cost"] == 2
        after = read_wallet_file(ctx.wallet_path)
        assert after.nonce != before.nonce
        assert after.kdf_params.time_cost == 2
        with pytest.raises(AuthenticationFailed):
            dispatcher.dispatch("address", passphrase=passphrase)
        assert dispatcher.dispatch("address", passphrase="new one")["address"] == created["address"]

    def test_weak_params_refused(self, ctx, dispatcher, created, passphrase):
        with pytest.raises(WeakKdfParams):
            dispatcher.dispatch("passwd", passphrase=passphrase, new_passphrase="n",
                                memory_cost=1024)
        assert WalletStore.load(ctx.wallet_path, passphrase, ctx.vault)


class TestInfo:
    def test_config(self, dispatcher):
        out = dispatcher.dispatch("config")
        assert out["rpc_url"] == "http://127.0.0.1:18332"
        assert out["wallet"]["network"] == "testnet"
        assert out["config_file"].endswith("config.toml")

    def test_list_wallets(self, ctx, dispatcher, created):
        (ctx.wallet_path.parent / "notes.json").write_text('{"hello": 1}')
        out = dispatcher.dispatch("list-wallets")
        assert [w["name"] for w in out["wallets"]] == ["wallet.json"]
        assert out["wallets"][0]["cipher"] == "aes-256-gcm"

    def test_list_wallets_skips_directories(self, ctx, dispatcher, created):
        (ctx.wallet_path.parent / "archive.json").mkdir()
        out = dispatcher.dispatch("list-wallets")
        assert [w["name"] for w in out["wallets"]] == ["wallet.json"]

    def test_list_wallets_bad_dir(self, tmp_path, dispatcher):
        with pytest.raises(InvalidInput):
            dispatcher.dispatch("list-wallets", dir=str(tmp_path / "missing"))


class TestOpenContext:
    @pytest.fixture
    def package_logger(self):
        log = logging.getLogger("btpc_wallet")
        handlers, level, propagate = list(log.handlers), log.level, log.propagate
        yield log
        for h in log.handlers:
            h.close()
        log.handlers[:] = handlers
        log.setLevel(level)
        log.propagate = propagate

    def test_loads_config_and_installs_logging(self, tmp_path, monkeypatch, fake_node,
                                               package_logger):
        for var in ("BTPC_NETWORK", "BTPC_WALLET", "BTPC_WALLET_DIR", "BTPC_LOG_LEVEL", "BTPC_LOG_FMT"):
            monkeypatch.delenv(var, raising=False)
        path = tmp_path / "config.toml"
        path.write_text(
            "[wallet]\n"
            "network = \"regtest\"\n"
            f"wallet_dir = \"{(tmp_path / 'w').as_posix()}\"\n"
            "[node]\n"
            "timeout_seconds = 3.0\n"
            "[logging]\n"
            "format = \"json\"\n"
        )
        ctx = open_context(path, node=fake_node, verbosity=1)
        assert ctx.config_path == path
        assert ctx.network.name == "regtest"
        assert ctx.wallet_path == tmp_path / "w" / "wallet.json"
        assert ctx.node.timeout_seconds == 3.0
        assert package_logger.level == logging.INFO
        assert isinstance(package_logger.handlers[0].formatter, JsonFormatter)
