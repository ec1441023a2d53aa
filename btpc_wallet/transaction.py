"""
Transaction model and canonical wire encoding.

All integers are big-endian with fixed widths; variable-length fields carry
an explicit length prefix.  ``serialize`` and ``deserialize`` are exact
inverses: any byte string ``deserialize`` accepts re-serializes to itself.

    unsigned := version u32 | net_len u8 | network ascii | lock_time u32
                | n_in u16  | { txid 32B | vout u32 | sequence u32 } * n_in
                | n_out u16 | { addr_len u8 | address ascii | value u64 } * n_out
    signed   := unsigned | n_wit u16 | { pk_len u16 | pk | sig_len u16 | sig } * n_wit

The network name is part of the signed bytes, so a transaction signed for
one network cannot be replayed on another.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Any

from btpc_wallet.errors import InvalidTransaction

TX_VERSION = 1
DEFAULT_SEQUENCE = 0xFFFFFFFF
SIGHASH_DOMAIN = b"BTPC/sighash/v1"
MAX_U8 = 0xFF
MAX_U16 = 0xFFFF
MAX_U64 = 2 ** 64 - 1


@dataclass(frozen=True)
class OutPoint:
    txid: str   # 64 hex chars
    vout: int

    def __post_init__(self) -> None:
        try:
            raw = bytes.fromhex(self.txid)
        except ValueError:
            raise InvalidTransaction(f"txid is not hex: {self.txid!r}") from None
        if len(raw) != 32:
            raise InvalidTransaction("txid must be 32 bytes")
        if not 0 <= self.vout <= 0xFFFFFFFF:
            raise InvalidTransaction(f"vout out of range: {self.vout}")
        object.__setattr__(self, "txid", raw.hex())


@dataclass(frozen=True)
class Utxo:
    """Spendable output reported by the node for one of our addresses."""
    txid: str
    vout: int
    value: int
    address: str = ""

    @property
    def outpoint(self) -> OutPoint:
        return OutPoint(self.txid, self.vout)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Utxo:
        return cls(
            txid=str(data["txid"]),
            vout=int(data["vout"]),
            value=int(data["value"]),
            address=str(data.get("address", "")),
        )


@dataclass(frozen=True)
class TxIn:
    prevout: OutPoint
    sequence: int = DEFAULT_SEQUENCE


@dataclass(frozen=True)
class TxOut:
    address: str
    value: int


@dataclass(frozen=True)
class Witness:
    public_key: bytes
    signature: bytes


@dataclass(frozen=True)
class Transaction:
    network: str
    inputs: tuple[TxIn, ...]
    outputs: tuple[TxOut, ...]
    version: int = TX_VERSION
    lock_time: int = 0
    # Not on the wire: the builder records the absolute fee it chose.
    fee: int = field(default=0, compare=False)

    def serialize_unsigned(self) -> bytes:
        out = bytearray()
        out += struct.pack(">I", self.version)
        out += _pack_str(self.network, "network")
        out += struct.pack(">I", self.lock_time)
        if len(self.inputs) > MAX_U16 or len(self.outputs) > MAX_U16:
            raise InvalidTransaction("too many inputs or outputs")
        out += struct.pack(">H", len(self.inputs))
        for txin in self.inputs:
            out += bytes.fromhex(txin.prevout.txid)
            out += struct.pack(">II", txin.prevout.vout, txin.sequence)
        out += struct.pack(">H", len(self.outputs))
        for txout in self.outputs:
            if not 0 <= txout.value <= MAX_U64:
                raise InvalidTransaction(f"output value out of range: {txout.value}")
            out += _pack_str(txout.address, "address")
            out += struct.pack(">Q", txout.value)
        return bytes(out)

    def sighash(self, index: int) -> bytes:
        """Message signed for input *index*."""
        if not 0 <= index < len(self.inputs):
            raise InvalidTransaction(f"no input #{index}")
        h = hashlib.sha3_256()
        h.update(SIGHASH_DOMAIN)
        h.update(self.serialize_unsigned())
        h.update(struct.pack(">I", index))
        return h.digest()

    @property
    def output_total(self) -> int:
        return sum(o.value for o in self.outputs)


@dataclass(frozen=True)
class SignedTransaction:
    tx: Transaction
    witnesses: tuple[Witness, ...]

    @property
    def tx_id(self) -> str:
        return tx_id(serialize(self))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_id": self.tx_id,
            "version": self.tx.version,
            "network": self.tx.network,
            "lock_time": self.tx.lock_time,
            "inputs": [
                {"txid": i.prevout.txid, "vout": i.prevout.vout, "sequence": i.sequence}
                for i in self.tx.inputs
            ],
            "outputs": [{"address": o.address, "value": o.value} for o in self.tx.outputs],
            "fee": self.tx.fee,
            "size": len(serialize(self)),
        }


# ===================================================================
#  Codec
# ===================================================================

def _pack_str(value: str, name: str) -> bytes:
    try:
        raw = value.encode("ascii")
    except UnicodeEncodeError:
        raise InvalidTransaction(f"{name} must be ASCII") from None
    if len(raw) > MAX_U8:
        raise InvalidTransaction(f"{name} too long")
    return bytes([len(raw)]) + raw


def _pack_blob(value: bytes) -> bytes:
    if len(value) > MAX_U16:
        raise InvalidTransaction("witness field too long")
    return struct.pack(">H", len(value)) + value


def serialize(signed: SignedTransaction) -> bytes:
    """Exact wire form accepted by the node's ``broadcast``."""
    out = bytearray(signed.tx.serialize_unsigned())
    out += struct.pack(">H", len(signed.witnesses))
    for wit in signed.witnesses:
        out += _pack_blob(wit.public_key)
        out += _pack_blob(wit.signature)
    return bytes(out)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise InvalidTransaction("truncated transaction")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def unpack(self, fmt: str) -> tuple:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))

    def ascii(self, name: str) -> str:
        (length,) = self.unpack(">B")
        try:
            return self.take(length).decode("ascii")
        except UnicodeDecodeError:
            raise InvalidTransaction(f"{name} is not ASCII") from None

    def blob(self) -> bytes:
        (length,) = self.unpack(">H")
        return self.take(length)


def deserialize(raw: bytes) -> SignedTransaction:
    """Parse wire bytes; raises InvalidTransaction on any malformation."""
    r = _Reader(bytes(raw))
    (version,) = r.unpack(">I")
    network = r.ascii("network")
    (lock_time,) = r.unpack(">I")
    (n_in,) = r.unpack(">H")
    inputs = []
    for _ in range(n_in):
        txid = r.take(32).hex()
        vout, sequence = r.unpack(">II")
        inputs.append(TxIn(OutPoint(txid, vout), sequence))
    (n_out,) = r.unpack(">H")
    outputs = []
    for _ in range(n_out):
        address = r.ascii("address")
        (value,) = r.unpack(">Q")
        outputs.append(TxOut(address, value))
    (n_wit,) = r.unpack(">H")
    if n_wit != n_in:
        raise InvalidTransaction(f"{n_wit} witnesses for {n_in} inputs")
    witnesses = tuple(Witness(r.blob(), r.blob()) for _ in range(n_wit))
    if r.pos != len(r.data):
        raise InvalidTransaction(f"{len(r.data) - r.pos} trailing bytes")
    tx = Transaction(
        network=network,
        inputs=tuple(inputs),
        outputs=tuple(outputs),
        version=version,
        lock_time=lock_time,
    )
    return SignedTransaction(tx, witnesses)


def tx_id(raw: bytes) -> str:
    return hashlib.sha3_256(raw).hexdigest()
