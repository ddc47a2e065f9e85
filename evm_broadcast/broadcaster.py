"""Sequential execution of a deployment sequence against a live node.

For every entry from the sequence cursor on, the broadcaster picks the
sender's signing identity, reconciles the nonce, shapes the transaction for
the chain, signs and submits it, waits for the receipt, then records the
receipt and saves the sequence before touching the next entry. Every fatal
condition saves the sequence first and then raises, so the file on disk is
always a true lower bound of the work done.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List

from eth_utils import to_hex
from eth_utils.exceptions import ValidationError
from rlp.exceptions import RLPException

from .chain import ChainProfile
from .fees import fill_transaction_defaults
from .nonce import NonceConflictError, NonceQueryError, NonceReconciler
from .rpc_client import RPCError, RPCTransportError, format_rpc_hint, to_int
from .sequence import DeploymentSequence, IntendedTransaction, SequenceError
from .shaper import ShapedTransaction, shape_transaction, to_signable
from .wallets import IdentityPool, SigningIdentity

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
DEFAULT_POLL_INTERVAL = 1.0


class BroadcastAbort(RuntimeError):
    """Base class for failures that stop a run at a given plan entry."""

    def __init__(self, message: str, *, index: int) -> None:
        super().__init__(message)
        self.index = index


class UnresolvedSenderError(BroadcastAbort):
    """No unlocked signing identity matches the sender of a plan entry."""


class SubmissionError(BroadcastAbort):
    """The transaction was rejected or never left the process."""


class ReceiptUnavailableError(BroadcastAbort):
    """The transaction may have been broadcast but no receipt was obtained."""

    def __init__(self, message: str, *, index: int, tx_hash: str | None) -> None:
        super().__init__(message, index=index)
        self.tx_hash = tx_hash


FATAL_ERRORS = (BroadcastAbort, NonceConflictError, NonceQueryError)


@dataclass
class BroadcastResult:
    """Outcome of a successful run."""

    path: Path
    chain_id: int
    receipts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def tx_hashes(self) -> list[str]:
        return [str(receipt.get("transactionHash")) for receipt in self.receipts]


class Broadcaster:
    """Execute the remaining entries of a :class:`DeploymentSequence` in order."""

    def __init__(
        self,
        rpc: Any,
        identities: IdentityPool,
        profile: ChainProfile,
        *,
        resume: bool = False,
        max_nonce_offset: int | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        progress_callback: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if identities.chain_id != profile.chain_id:
            identities = identities.bind_chain(profile.chain_id)
        self.rpc = rpc
        self.identities = identities
        self.profile = profile
        self.reconciler = NonceReconciler(rpc, resume=resume, max_offset=max_nonce_offset)
        self.poll_interval = poll_interval
        self.progress_callback = progress_callback
        self._sleep = sleep

    def run(self, sequence: DeploymentSequence) -> BroadcastResult:
        result = BroadcastResult(path=sequence.path, chain_id=self.profile.chain_id)
        total = len(sequence.transactions)
        if sequence.index:
            self._progress(f"Resuming {sequence.path} at transaction {sequence.index + 1} of {total}")

        try:
            for position, intended in sequence.pending():
                receipt = self._execute(position, intended)
                sequence.append_receipt(receipt)
                sequence.save()
                result.receipts.append(receipt)
                self._progress(
                    f"Tx{position + 1}/{total}: confirmed {receipt.get('transactionHash')}"
                )
        except FATAL_ERRORS as exc:
            logger.error("Aborting at transaction %d of %d: %s", sequence.index + 1, total, exc)
            self._persist_before_abort(sequence)
            raise

        sequence.save()
        logger.info("Onchain execution complete; receipts written to %s", sequence.path)
        return result

    def _execute(self, position: int, intended: IntendedTransaction) -> Dict[str, Any]:
        identity = self._resolve_signer(position, intended.sender)
        nonce = self.reconciler.reconcile(identity.address, intended.nonce)
        shaped = shape_transaction(intended, self.profile, nonce=nonce)
        tx_hash = self._submit(position, identity, shaped)
        return self._await_receipt(position, tx_hash)

    def _resolve_signer(self, position: int, sender: str) -> SigningIdentity:
        identity = self.identities.find(sender)
        if identity is None:
            raise UnresolvedSenderError(
                f"No associated wallet for address: {sender}. Unlocked wallets: {self.identities.addresses}",
                index=position,
            )
        return identity

    def _submit(self, position: int, identity: SigningIdentity, shaped: ShapedTransaction) -> str:
        try:
            fill_transaction_defaults(self.rpc, shaped)
            signed = identity.sign_transaction(to_signable(shaped))
        except (RuntimeError, ValueError, TypeError, ValidationError, RLPException) as exc:
            raise SubmissionError(
                f"Aborting! Transaction {position + 1} could not be prepared: {exc}", index=position
            ) from exc

        raw_tx = to_hex(signed.raw_transaction)
        local_hash = to_hex(signed.hash)
        logger.debug("sending transaction %s: %s", local_hash, shaped)
        try:
            tx_hash = self.rpc.send_raw_transaction(raw_tx)
        except RPCError as exc:
            hint = format_rpc_hint(exc)
            message = f"Aborting! A transaction failed to send: {exc}"
            if hint:
                message = f"{message}\nHint: {hint}"
            raise SubmissionError(message, index=position) from exc
        except RPCTransportError as exc:
            raise ReceiptUnavailableError(
                f"Transport failure while sending {local_hash}; it may have reached the node: {exc}",
                index=position,
                tx_hash=local_hash,
            ) from exc

        tx_hash = tx_hash if isinstance(tx_hash, str) and tx_hash else local_hash
        logger.info(
            "Tx%d: sent %s from %s with nonce %d", position + 1, tx_hash, identity.address, shaped.nonce
        )
        self._progress(f"Tx{position + 1}: broadcast {tx_hash}")
        return tx_hash

    def _await_receipt(self, position: int, tx_hash: str) -> Dict[str, Any]:
        while True:
            try:
                receipt = self.rpc.get_transaction_receipt(tx_hash)
                if receipt is not None and receipt.get("blockNumber") is not None:
                    break
                if receipt is None and self.rpc.get_transaction_by_hash(tx_hash) is None:
                    raise ReceiptUnavailableError(
                        f"Failed to get transaction receipt for {tx_hash}; the node no longer knows the transaction",
                        index=position,
                        tx_hash=tx_hash,
                    )
            except (RPCError, RPCTransportError) as exc:
                raise ReceiptUnavailableError(
                    f"Failed to get transaction receipt for {tx_hash}: {exc}",
                    index=position,
                    tx_hash=tx_hash,
                ) from exc
            self._sleep(self.poll_interval)

        if _receipt_reverted(receipt):
            logger.warning("Tx%d: %s was mined but reverted", position + 1, tx_hash)
        return receipt

    def _persist_before_abort(self, sequence: DeploymentSequence) -> None:
        try:
            sequence.save()
        except (OSError, SequenceError) as exc:
            logger.error("Not able to save deployment sequence %s: %s", sequence.path, exc)

    def _progress(self, message: str) -> None:
        if self.progress_callback is not None:
            self.progress_callback(message)


def _receipt_reverted(receipt: Dict[str, Any]) -> bool:
    status = receipt.get("status")
    if status is None:
        return False
    try:
        return to_int(status) == 0
    except ValueError:
        return False


def broadcast_sequence(
    sequence: DeploymentSequence,
    rpc: Any,
    identities: IdentityPool,
    profile: ChainProfile,
    *,
    resume: bool = False,
    max_nonce_offset: int | None = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    progress_callback: ProgressCallback | None = None,
) -> BroadcastResult:
    """Run a :class:`Broadcaster` over ``sequence`` with one call."""

    broadcaster = Broadcaster(
        rpc,
        identities,
        profile,
        resume=resume,
        max_nonce_offset=max_nonce_offset,
        poll_interval=poll_interval,
        progress_callback=progress_callback,
    )
    return broadcaster.run(sequence)
