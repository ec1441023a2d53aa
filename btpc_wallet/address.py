"""
Network-tagged address derivation.

Format
------
Address = bech32m( HRP = network prefix, data = convertbits(payload, 8->5) )
payload = version (1 byte, 0) || SHA3-256("BTPC/address/v1" || net_tag || pubkey || index_u32be)

- ``net_tag`` is the network discriminant byte followed by the network name,
  so the network enters the digest as well as the bech32m checksum (which
  covers the HRP).  Two networks can never produce the same string.
- Prefixes: mainnet ``btpc``, testnet ``tbtpc``, regtest ``rbtpc``; a custom
  network uses its own name.

Bech32m per BIP-350.
"""

from __future__ import annotations

import hashlib
import re
import struct
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from btpc_wallet.errors import InvalidAddress, InvalidInput

ADDRESS_DOMAIN = b"BTPC/address/v1"
ADDRESS_VERSION = 0
DIGEST_LEN = 32
MAX_INDEX = 0xFFFFFFFF


# ===================================================================
#  Networks
# ===================================================================

class NetworkKind(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    REGTEST = "regtest"
    CUSTOM = "custom"


_PREFIXES = {
    NetworkKind.MAINNET: "btpc",
    NetworkKind.TESTNET: "tbtpc",
    NetworkKind.REGTEST: "rbtpc",
}
_DISCRIMINANTS = {
    NetworkKind.MAINNET: 0x00,
    NetworkKind.TESTNET: 0x01,
    NetworkKind.REGTEST: 0x02,
    NetworkKind.CUSTOM: 0x7F,
}
_CUSTOM_NAME = re.compile(r"^[a-z][a-z0-9]{0,19}$")


@dataclass(frozen=True)
class Network:
    kind: NetworkKind
    name: str

    @classmethod
    def parse(cls, value: str | Network) -> Network:
        """``"mainnet"``, ``"testnet"``, ``"regtest"`` or a custom network name."""
        if isinstance(value, Network):
            return value
        text = value.strip().lower()
        for kind in (NetworkKind.MAINNET, NetworkKind.TESTNET, NetworkKind.REGTEST):
            if text == kind.value:
                return cls(kind, kind.value)
        return cls.custom(text)

    @classmethod
    def custom(cls, name: str) -> Network:
        if not _CUSTOM_NAME.match(name):
            raise InvalidInput(
                f"custom network name must be 1-20 lowercase letters/digits: {name!r}"
            )
        reserved = set(_PREFIXES.values()) | {k.value for k in NetworkKind}
        if name in reserved:
            raise InvalidInput(f"network name {name!r} is reserved")
        return cls(NetworkKind.CUSTOM, name)

    @property
    def prefix(self) -> str:
        return _PREFIXES.get(self.kind, self.name)

    @property
    def tag(self) -> bytes:
        name = self.name.encode("ascii")
        return bytes([_DISCRIMINANTS[self.kind], len(name)]) + name

    def __str__(self) -> str:
        return self.name


MAINNET = Network(NetworkKind.MAINNET, "mainnet")
TESTNET = Network(NetworkKind.TESTNET, "testnet")
REGTEST = Network(NetworkKind.REGTEST, "regtest")


# ===================================================================
#  Bech32m primitives
# ===================================================================

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_REV = {c: i for i, c in enumerate(CHARSET)}
_BECH32M_CONST = 0x2BC830A3
_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


def _polymod(values: Sequence[int]) -> int:
    chk = 1
    for v in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ v
        for i in range(5):
            if (top >> i) & 1:
                chk ^= _GENERATORS[i]
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def _convertbits(data: Sequence[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    out: list[int] = []
    maxv = (1 << to_bits) - 1
    for value in data:
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & maxv)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise InvalidAddress("invalid padding in address data")
    return out


def bech32m_encode(hrp: str, payload: bytes) -> str:
    data = _convertbits(payload, 8, 5, True)
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ _BECH32M_CONST
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(CHARSET[d] for d in data + checksum)


def bech32m_decode(text: str) -> tuple[str, bytes]:
    if text.lower() != text and text.upper() != text:
        raise InvalidAddress("mixed-case address")
    text = text.lower()
    pos = text.rfind("1")
    if pos < 1 or pos + 7 > len(text) or len(text) > 90:
        raise InvalidAddress("malformed address")
    hrp, body = text[:pos], text[pos + 1:]
    try:
        data = [_CHARSET_REV[c] for c in body]
    except KeyError:
        raise InvalidAddress("invalid character in address") from None
    if _polymod(_hrp_expand(hrp) + data) != _BECH32M_CONST:
        raise InvalidAddress("address checksum mismatch")
    return hrp, bytes(_convertbits(data[:-6], 5, 8, False))


# ===================================================================
#  Public API
# ===================================================================

def address_digest(public_key: bytes, index: int, network: Network) -> bytes:
    if not 0 <= index <= MAX_INDEX:
        raise InvalidInput(f"address index out of range: {index}")
    h = hashlib.sha3_256()
    h.update(ADDRESS_DOMAIN)
    h.update(network.tag)
    h.update(public_key)
    h.update(struct.pack(">I", index))
    return h.digest()


def derive(public_key: bytes, index: int, network: Network) -> str:
    """Deterministic address for (public_key, index, network)."""
    payload = bytes([ADDRESS_VERSION]) + address_digest(public_key, index, network)
    return bech32m_encode(network.prefix, payload)


def decode(address: str) -> tuple[str, int, bytes]:
    """Return ``(prefix, version, digest)``; raises InvalidAddress."""
    hrp, payload = bech32m_decode(address.strip())
    if len(payload) != 1 + DIGEST_LEN:
        raise InvalidAddress("address payload has wrong length")
    if payload[0] != ADDRESS_VERSION:
        raise InvalidAddress(f"unsupported address version {payload[0]}")
    return hrp, payload[0], payload[1:]


def validate(address: str, network: Network | None = None) -> bool:
    """True when *address* is well formed (and on *network*, if given)."""
    try:
        hrp, _version, _digest = decode(address)
    except InvalidAddress:
        return False
    return network is None or hrp == network.prefix


def require(address: str, network: Network) -> str:
    """Return the normalised address or raise InvalidAddress."""
    hrp, _version, _digest = decode(address)
    if hrp != network.prefix:
        raise InvalidAddress(f"address belongs to prefix {hrp!r}, expected {network.prefix!r}")
    return address.strip().lower()
