"""Durable, resumable representation of a planned transaction sequence.

A sequence file holds the ordered plan, a cursor (``index``) pointing at the
next unexecuted entry and one receipt per completed entry. The broadcaster
appends a receipt and saves after every transaction, so a crashed or aborted
run can always be resumed from the file alone.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence, Tuple

from .rpc_client import to_int, to_quantity

logger = logging.getLogger(__name__)


class SequenceError(RuntimeError):
    """Raised when a sequence file is missing, malformed or inconsistent."""


def _quantity(raw: Any, key: str) -> int:
    value = to_int(raw)
    if value < 0:
        raise ValueError(f"{key} cannot be negative: {raw!r}")
    return value


def _optional_int(payload: Dict[str, Any], key: str) -> int | None:
    raw = payload.get(key)
    if raw is None:
        return None
    return _quantity(raw, key)


def _calldata(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.lower().startswith("0x"):
        raise ValueError(f"data must be a 0x-prefixed hex string: {raw!r}")
    body = raw[2:]
    if len(body) % 2:
        raise ValueError(f"data has an odd number of hex digits: {raw!r}")
    try:
        bytes.fromhex(body)
    except ValueError as exc:
        raise ValueError(f"data is not valid hex: {raw!r}") from exc
    return raw


def _optional_quantity(value: int | None) -> str | None:
    return to_quantity(value) if value is not None else None


@dataclass(frozen=True)
class IntendedTransaction:
    """A planned, format-agnostic transaction.

    ``nonce`` is the nonce the planner expected the sender to have when this
    entry executes. Fee fields are optional; unset ones are filled from the
    network at submission time.
    """

    sender: str
    nonce: int
    to: str | None = None
    value: int = 0
    data: str = "0x"
    gas: int | None = None
    gas_price: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None

    @classmethod
    def from_jsonable(cls, payload: Dict[str, Any]) -> "IntendedTransaction":
        if not isinstance(payload, dict):
            raise ValueError("transaction entry must be an object")
        sender = payload.get("from")
        if not sender:
            raise ValueError("No sender for onchain transaction")
        if payload.get("nonce") is None:
            raise ValueError(f"Transaction from {sender} has no planned nonce")
        data = payload.get("data") or payload.get("input") or "0x"
        return cls(
            sender=str(sender),
            nonce=_quantity(payload["nonce"], "nonce"),
            to=payload.get("to") or None,
            value=_quantity(payload.get("value") or 0, "value"),
            data=_calldata(data),
            gas=_optional_int(payload, "gas"),
            gas_price=_optional_int(payload, "gasPrice"),
            max_fee_per_gas=_optional_int(payload, "maxFeePerGas"),
            max_priority_fee_per_gas=_optional_int(payload, "maxPriorityFeePerGas"),
        )

    def to_jsonable(self) -> Dict[str, Any]:
        return {
            "from": self.sender,
            "to": self.to,
            "value": to_quantity(self.value),
            "data": self.data,
            "nonce": to_quantity(self.nonce),
            "gas": _optional_quantity(self.gas),
            "gasPrice": _optional_quantity(self.gas_price),
            "maxFeePerGas": _optional_quantity(self.max_fee_per_gas),
            "maxPriorityFeePerGas": _optional_quantity(self.max_priority_fee_per_gas),
        }


@dataclass
class DeploymentSequence:
    """Ordered plan plus execution progress, backed by a JSON file.

    Invariants: ``0 <= index <= len(transactions)`` and
    ``len(receipts) == index``.
    """

    path: Path
    transactions: List[IntendedTransaction]
    receipts: List[Dict[str, Any]] = field(default_factory=list)
    index: int = 0
    timestamp: int | None = None

    @classmethod
    def create(
        cls, path: str | Path, transactions: Sequence[IntendedTransaction]
    ) -> "DeploymentSequence":
        """Start a fresh sequence for a newly planned list of transactions."""

        return cls(path=Path(path), transactions=list(transactions))

    @classmethod
    def load(cls, path: str | Path) -> "DeploymentSequence":
        path = Path(path)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise SequenceError(f"Sequence file does not exist: {path}") from exc
        except OSError as exc:
            raise SequenceError(f"Unable to read sequence file {path}: {exc}") from exc
        except ValueError as exc:
            raise SequenceError(f"Sequence file {path} is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise SequenceError(f"Sequence file {path} must contain a JSON object")

        raw_transactions = payload.get("transactions")
        if not isinstance(raw_transactions, list):
            raise SequenceError(f"Sequence file {path} has no transactions list")
        transactions = []
        for position, entry in enumerate(raw_transactions):
            try:
                transactions.append(IntendedTransaction.from_jsonable(entry))
            except ValueError as exc:
                raise SequenceError(f"Transaction #{position} in {path} is invalid: {exc}") from exc

        receipts = payload.get("receipts") or []
        if not isinstance(receipts, list):
            raise SequenceError(f"Sequence file {path} has a malformed receipts list")
        try:
            index = int(payload.get("index", 0))
        except (TypeError, ValueError) as exc:
            raise SequenceError(f"Sequence file {path} has a malformed index") from exc

        sequence = cls(
            path=path,
            transactions=transactions,
            receipts=list(receipts),
            index=index,
            timestamp=payload.get("timestamp"),
        )
        sequence.check_consistency()
        logger.debug(
            "Loaded sequence %s at index %d of %d", path, sequence.index, len(sequence.transactions)
        )
        return sequence

    def check_consistency(self) -> None:
        if not 0 <= self.index <= len(self.transactions):
            raise SequenceError(
                f"Sequence index {self.index} is outside the plan of {len(self.transactions)} transactions"
            )
        if len(self.receipts) != self.index:
            raise SequenceError(
                f"Sequence has {len(self.receipts)} receipts but its index is {self.index}"
            )

    def to_jsonable(self) -> Dict[str, Any]:
        return {
            "transactions": [tx.to_jsonable() for tx in self.transactions],
            "receipts": self.receipts,
            "index": self.index,
            "path": str(self.path),
            "timestamp": self.timestamp,
        }

    def save(self) -> Path:
        """Atomically write the sequence to its backing path."""

        self.check_consistency()
        self.timestamp = int(time.time())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        data = json.dumps(self.to_jsonable(), indent=2, sort_keys=True)
        with tmp_path.open("w", encoding="utf-8") as handle:
            handle.write(data + "\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, self.path)
        logger.debug("Saved sequence %s at index %d", self.path, self.index)
        return self.path

    def append_receipt(self, receipt: Dict[str, Any]) -> None:
        """Record the receipt of the entry at ``index`` and advance the cursor."""

        if self.index >= len(self.transactions):
            raise SequenceError("Cannot record a receipt past the end of the plan")
        self.receipts.append(receipt)
        self.index += 1

    @property
    def is_complete(self) -> bool:
        return self.index == len(self.transactions)

    def pending(self) -> Iterator[Tuple[int, IntendedTransaction]]:
        """Yield ``(position, transaction)`` for every entry from the cursor on."""

        for position in range(self.index, len(self.transactions)):
            yield position, self.transactions[position]
