"""
Pluggable fee policies for the transaction builder.

The builder only asks a policy one question: *what absolute fee (in base
units) should a transaction with this many inputs and outputs pay?*
Estimation policy beyond that lives with whoever supplies the policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from btpc_wallet.errors import InvalidInput
from btpc_wallet.keys import PUBLIC_KEY_SIZE, SIGNATURE_SIZE

# ── Size model (bytes) ──────────────────────────────────────────

TX_OVERHEAD_BYTES: int = 4 + 1 + 16 + 4 + 2 + 2 + 2   # version, network, lock_time, counts
INPUT_BYTES: int = 32 + 4 + 4
WITNESS_BYTES: int = 2 + PUBLIC_KEY_SIZE + 2 + SIGNATURE_SIZE
OUTPUT_BYTES: int = 1 + 80 + 8                        # generous address length

DEFAULT_FEE_UNITS: int = 10_000                       # 0.0001 BTP


def estimate_size(n_inputs: int, n_outputs: int) -> int:
    """Upper bound of the signed wire size."""
    return (
        TX_OVERHEAD_BYTES
        + n_inputs * (INPUT_BYTES + WITNESS_BYTES)
        + n_outputs * OUTPUT_BYTES
    )


class FeePolicy(Protocol):
    def fee_for(self, n_inputs: int, n_outputs: int) -> int: ...


@dataclass(frozen=True)
class FixedFee:
    """Same absolute fee regardless of size."""
    units: int = DEFAULT_FEE_UNITS

    def __post_init__(self) -> None:
        if self.units < 0:
            raise InvalidInput("fee must not be negative")

    def fee_for(self, n_inputs: int, n_outputs: int) -> int:
        return self.units


@dataclass(frozen=True)
class SizeFee:
    """Fee proportional to the estimated signed size, with a floor."""
    units_per_byte: int = 1
    minimum: int = DEFAULT_FEE_UNITS

    def __post_init__(self) -> None:
        if self.units_per_byte < 0 or self.minimum < 0:
            raise InvalidInput("fee rate and minimum must not be negative")

    def fee_for(self, n_inputs: int, n_outputs: int) -> int:
        return max(self.minimum, estimate_size(n_inputs, n_outputs) * self.units_per_byte)
