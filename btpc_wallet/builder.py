"""
Input selection and transaction assembly.

Selection is largest-first over the UTXOs the node reported.  A change
output back to one of our own addresses is created only when it would be
worth more than the dust threshold; smaller remainders go to the fee.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from btpc_wallet import address as addr
from btpc_wallet.address import Network
from btpc_wallet.errors import InsufficientFunds, InvalidInput
from btpc_wallet.fee_model import FeePolicy
from btpc_wallet.precision import MAX_UNITS
from btpc_wallet.transaction import Transaction, TxIn, TxOut, Utxo

logger = logging.getLogger("btpc_wallet.builder")

DEFAULT_DUST_THRESHOLD: int = 1_000


def _spendable(utxos: Iterable[Utxo]) -> list[Utxo]:
    seen: set[tuple[str, int]] = set()
    result = []
    for u in utxos:
        if u.value <= 0:
            continue
        key = (u.outpoint.txid, u.vout)
        if key in seen:
            raise InvalidInput(f"duplicate UTXO {u.txid}:{u.vout}")
        seen.add(key)
        result.append(u)
    # deterministic order: largest first, ties by outpoint
    result.sort(key=lambda u: (-u.value, u.outpoint.txid, u.vout))
    return result


def build(
    utxos: Iterable[Utxo],
    recipient: str,
    amount: int,
    fee_policy: FeePolicy,
    change_address: str,
    network: Network,
    dust_threshold: int = DEFAULT_DUST_THRESHOLD,
    lock_time: int = 0,
) -> Transaction:
    """Select inputs covering *amount* + fee and assemble the transaction.

    Raises InvalidInput for a bad amount or address, InsufficientFunds when
    no selection covers amount + fee.
    """
    if not isinstance(amount, int) or amount <= 0 or amount > MAX_UNITS:
        raise InvalidInput(f"amount must be a positive number of units, got {amount!r}")
    if dust_threshold < 0:
        raise InvalidInput("dust threshold must not be negative")
    recipient = addr.require(recipient, network)
    change_address = addr.require(change_address, network)

    candidates = _spendable(utxos)
    selected: list[Utxo] = []
    total = 0
    for utxo in candidates:
        selected.append(utxo)
        total += utxo.value
        n = len(selected)
        fee_single = fee_policy.fee_for(n, 1)
        if total < amount + fee_single:
            continue

        inputs = tuple(TxIn(u.outpoint) for u in selected)
        fee_with_change = fee_policy.fee_for(n, 2)
        change = total - amount - fee_with_change
        if change > dust_threshold:
            outputs = (TxOut(recipient, amount), TxOut(change_address, change))
            fee = fee_with_change
        else:
            outputs = (TxOut(recipient, amount),)
            fee = total - amount
        logger.info(
            f"Built tx: {n} input(s), {len(outputs)} output(s), amount={amount}, fee={fee}"
        )
        return Transaction(
            network=network.name,
            inputs=inputs,
            outputs=outputs,
            lock_time=lock_time,
            fee=fee,
        )

    required = amount + fee_policy.fee_for(max(len(candidates), 1), 1)
    raise InsufficientFunds(available=total, required=required)
