"""Reconcile planned nonces with the nonces observed on chain.

Plans are built against the chain state before execution starts. When a run
is resumed after an interruption, the senders that already had transactions
mined are ahead of the plan by a fixed count. In resume mode that count is
discovered on the first transaction of each sender and applied to all of its
later transactions; any other disagreement between plan and chain is fatal.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from .rpc_client import RPCError, RPCTransportError

logger = logging.getLogger(__name__)


class NonceQueryError(RuntimeError):
    """Raised when the authoritative nonce of a sender cannot be read."""


class NonceConflictError(RuntimeError):
    """Raised when the planned nonce cannot be reconciled with the chain."""

    def __init__(self, sender: str, planned: int, offset: int, observed: int, reason: str) -> None:
        super().__init__(
            f"EOA nonce changed unexpectedly while sending transactions: {sender} "
            f"planned={planned} offset={offset} on-chain={observed} ({reason})"
        )
        self.sender = sender
        self.planned = planned
        self.offset = offset
        self.observed = observed


class NonceReconciler:
    """Per-run nonce reconciliation with an optional one-time offset per sender."""

    def __init__(
        self,
        rpc: Any,
        *,
        resume: bool = False,
        max_offset: int | None = None,
        block: str = "latest",
    ) -> None:
        self.rpc = rpc
        self.resume = resume
        self.max_offset = max_offset
        self.block = block
        self._offsets: Dict[str, int] = {}

    @property
    def offsets(self) -> Dict[str, int]:
        """Offsets discovered so far, keyed by lower-cased sender address."""

        return dict(self._offsets)

    def authoritative_nonce(self, sender: str) -> int:
        try:
            return int(self.rpc.get_transaction_count(sender, self.block))
        except (RPCError, RPCTransportError, TypeError, ValueError) as exc:
            raise NonceQueryError(f"Not able to query the EOA nonce of {sender}: {exc}") from exc

    def reconcile(self, sender: str, planned_nonce: int) -> int:
        """Return the nonce to stamp on the next transaction from ``sender``."""

        observed = self.authoritative_nonce(sender)
        key = sender.lower()

        if not self.resume:
            offset = 0
        elif key in self._offsets:
            offset = self._offsets[key]
        else:
            offset = self._discover_offset(sender, planned_nonce, observed)
            self._offsets[key] = offset

        if observed != planned_nonce + offset:
            reason = "offset already applied" if self.resume else "resume mode disabled"
            raise NonceConflictError(sender, planned_nonce, offset, observed, reason)

        if offset:
            logger.info(
                "Shifting nonce of %s from %d to %d (resume offset %d)",
                sender,
                planned_nonce,
                planned_nonce + offset,
                offset,
            )
        return planned_nonce + offset

    def _discover_offset(self, sender: str, planned_nonce: int, observed: int) -> int:
        offset = observed - planned_nonce
        if offset < 0:
            raise NonceConflictError(
                sender, planned_nonce, 0, observed, "chain nonce is behind the plan"
            )
        if self.max_offset is not None and offset > self.max_offset:
            raise NonceConflictError(
                sender,
                planned_nonce,
                offset,
                observed,
                f"offset exceeds the allowed maximum of {self.max_offset}",
            )
        if offset:
            logger.warning(
                "Forgiving nonce disparity of %d for %s (planned %d, on-chain %d)",
                offset,
                sender,
                planned_nonce,
                observed,
            )
        return offset
