"""
Tests for btpc_wallet.signer — Dilithium5 transaction signatures.
"""

from __future__ import annotations

import dataclasses

import pytest

from btpc_wallet.address import TESTNET, derive
from btpc_wallet.builder import build
from btpc_wallet.errors import InvalidTransaction, WalletError
from btpc_wallet.fee_model import FixedFee
from btpc_wallet.keys import derive_keypair
from btpc_wallet.signer import sign, verify
from btpc_wallet.transaction import Transaction, TxOut, Utxo, Witness, deserialize, serialize


@pytest.fixture(scope="module")
def signed_pair(keypair):
    ours = derive(keypair.public_key, 0, TESTNET)
    theirs = derive(b"\x09" * len(keypair.public_key), 0, TESTNET)
    utxos = [Utxo("11" * 32, 0, 60_000_000, ours), Utxo("22" * 32, 1, 60_000_000, ours)]
    tx = build(utxos, theirs, 100_000_000, FixedFee(10_000), ours, TESTNET)
    return tx, sign(tx, keypair)


class TestSign:
    def test_one_witness_per_input(self, signed_pair, keypair):
        tx, signed = signed_pair
        assert len(tx.inputs) == 2
        assert len(signed.witnesses) == 2
        assert all(w.public_key == keypair.public_key for w in signed.witnesses)

    def test_verifies(self, signed_pair):
        assert verify(signed_pair[1])

    def test_survives_wire_round_trip(self, signed_pair):
        _, signed = signed_pair
        parsed = deserialize(serialize(signed))
        assert verify(parsed)
        assert parsed.tx_id == signed.tx_id

    def test_keypair_untouched(self, signed_pair, keypair):
        assert not keypair.wiped

    def test_no_inputs(self, keypair):
        with pytest.raises(InvalidTransaction):
            sign(Transaction("testnet", (), ()), keypair)

    def test_wiped_keypair_cannot_sign(self, signed_pair):
        tx, _ = signed_pair
        kp = derive_keypair(bytes(32))
        kp.wipe()
        with pytest.raises(WalletError):
            sign(tx, kp)


class TestVerify:
    def test_changed_output_fails(self, signed_pair):
        tx, signed = signed_pair
        out0 = tx.outputs[0]
        forged_tx = dataclasses.replace(
            tx, outputs=(TxOut(out0.address, out0.value + 1),) + tx.outputs[1:]
        )
        assert not verify(dataclasses.replace(signed, tx=forged_tx))

    def test_changed_network_fails(self, signed_pair):
        tx, signed = signed_pair
        assert not verify(dataclasses.replace(signed, tx=dataclasses.replace(tx, network="regtest")))

    def test_swapped_witnesses_fail(self, signed_pair):
        _, signed = signed_pair
        swapped = tuple(reversed(signed.witnesses))
        assert not verify(dataclasses.replace(signed, witnesses=swapped))

    def test_foreign_key_fails(self, signed_pair):
        _, signed = signed_pair
        other = derive_keypair(bytes(32)).public_key
        wits = tuple(Witness(other, w.signature) for w in signed.witnesses)
        assert not verify(dataclasses.replace(signed, witnesses=wits))

    def test_missing_witness_fails(self, signed_pair):
        _, signed = signed_pair
        assert not verify(dataclasses.replace(signed, witnesses=signed.witnesses[:1]))
