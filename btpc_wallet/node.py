"""
Node collaborator boundary.

The wallet never talks to the network directly; commands receive any object
satisfying :class:`NodeClient`.  :class:`RetryingNodeClient` wraps such an
object and retries *transport* failures only (exponential backoff).  A node
rejection is a final answer and is surfaced on first occurrence.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol, TypeVar

from btpc_wallet.errors import TransportError
from btpc_wallet.transaction import Utxo

logger = logging.getLogger("btpc_wallet.node")

T = TypeVar("T")


@dataclass(frozen=True)
class Balance:
    confirmed: int
    pending: int = 0

    @property
    def total(self) -> int:
        return self.confirmed + self.pending

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Balance:
        return cls(int(data["confirmed"]), int(data.get("pending", 0)))


@dataclass(frozen=True)
class TxSummary:
    """One history row; ``delta`` is signed, in base units."""
    txid: str
    height: int | None
    timestamp: int
    delta: int
    fee: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TxSummary:
        height = data.get("height")
        return cls(
            txid=str(data["txid"]),
            height=int(height) if height is not None else None,
            timestamp=int(data.get("timestamp", 0)),
            delta=int(data["delta"]),
            fee=int(data.get("fee", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "txid": self.txid,
            "height": self.height,
            "timestamp": self.timestamp,
            "delta": self.delta,
            "fee": self.fee,
        }


class NodeClient(Protocol):
    """What the wallet needs from a node.

    Every call is synchronous and bounded by *timeout* seconds (``None``
    leaves the bound to the implementation).  Implementations raise
    :class:`TransportError` for connectivity problems, timeouts included,
    and :class:`NodeRejected` when the node answered with a refusal.
    """

    def get_balance(self, address: str, *, timeout: float | None = None) -> Balance: ...

    def get_history(self, address: str, limit: int, *,
                    timeout: float | None = None) -> list[TxSummary]: ...

    def get_utxos(self, address: str, *, timeout: float | None = None) -> list[Utxo]: ...

    def broadcast(self, raw: bytes, *, timeout: float | None = None) -> str: ...


class RetryingNodeClient:
    """Bounded retry on TransportError; everything else passes straight through.

    ``timeout_seconds`` is handed to the inner client on every attempt.
    """

    def __init__(
        self,
        inner: NodeClient,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        timeout_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.inner = inner
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep

    def _backoff(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** attempt)

    def _call(self, name: str, op: Callable[[], T]) -> T:
        for attempt in range(self.max_retries + 1):
            try:
                return op()
            except TransportError as exc:
                if attempt >= self.max_retries:
                    logger.error(f"{name}: giving up after {attempt + 1} attempt(s): {exc}")
                    raise
                delay = self._backoff(attempt)
                logger.warning(f"{name}: transport error ({exc}); retry {attempt + 1} in {delay:.2f}s")
                self._sleep(delay)
        raise AssertionError("unreachable")

    def get_balance(self, address: str, *, timeout: float | None = None) -> Balance:
        t = self.timeout_seconds if timeout is None else timeout
        return self._call("get_balance", lambda: self.inner.get_balance(address, timeout=t))

    def get_history(self, address: str, limit: int, *,
                    timeout: float | None = None) -> list[TxSummary]:
        t = self.timeout_seconds if timeout is None else timeout
        return self._call("get_history", lambda: self.inner.get_history(address, limit, timeout=t))

    def get_utxos(self, address: str, *, timeout: float | None = None) -> list[Utxo]:
        t = self.timeout_seconds if timeout is None else timeout
        return self._call("get_utxos", lambda: self.inner.get_utxos(address, timeout=t))

    def broadcast(self, raw: bytes, *, timeout: float | None = None) -> str:
        t = self.timeout_seconds if timeout is None else timeout
        return self._call("broadcast", lambda: self.inner.broadcast(raw, timeout=t))
