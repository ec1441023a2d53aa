"""
Dilithium5 transaction signing.

Every input carries its own witness: the owning public key and a signature
over ``Transaction.sighash(index)``.  Signing is a pure function of
(transaction, keypair); the keypair is only read.
"""

from __future__ import annotations

import logging

from btpc_wallet.errors import InvalidTransaction
from btpc_wallet.keys import KeyPair, sign_message, verify_message
from btpc_wallet.transaction import SignedTransaction, Transaction, Witness

logger = logging.getLogger("btpc_wallet.signer")


def sign(tx: Transaction, keypair: KeyPair) -> SignedTransaction:
    """Sign every input of *tx* with *keypair*."""
    if not tx.inputs:
        raise InvalidTransaction("cannot sign a transaction without inputs")
    witnesses = tuple(
        Witness(keypair.public_key, sign_message(keypair, tx.sighash(i)))
        for i in range(len(tx.inputs))
    )
    signed = SignedTransaction(tx, witnesses)
    logger.info(f"Signed tx {signed.tx_id[:12]}... ({len(witnesses)} input(s))")
    return signed


def verify(signed: SignedTransaction) -> bool:
    """Check every witness against its input's sighash."""
    if len(signed.witnesses) != len(signed.tx.inputs) or not signed.witnesses:
        return False
    return all(
        verify_message(w.public_key, signed.tx.sighash(i), w.signature)
        for i, w in enumerate(signed.witnesses)
    )
