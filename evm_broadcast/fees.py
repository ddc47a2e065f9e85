"""Gas and fee defaulting for shaped transactions."""

from __future__ import annotations

import logging
import os
from typing import Any

from .rpc_client import RPCError, to_int
from .shaper import DynamicFeeTransaction, LegacyTransaction, ShapedTransaction, to_call_object

logger = logging.getLogger(__name__)

GWEI = 10**9
DEFAULT_PRIORITY_FEE_WEI = 1_500_000_000
BASE_FEE_MULTIPLIER = 2
ENV_PRIORITY_FEE_FALLBACK = "EVM_BROADCAST_FALLBACK_PRIORITY_FEE_WEI"


class FeeEstimationError(RuntimeError):
    """Raised when the node cannot supply the data needed to price a transaction."""


def _env_override(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer in %s=%s; ignoring", name, raw)
        return None


def suggest_priority_fee(rpc: Any) -> int:
    """Return the node's tip suggestion, or a fallback when unsupported."""

    try:
        return int(rpc.max_priority_fee_per_gas())
    except RPCError as exc:
        fallback = _env_override(ENV_PRIORITY_FEE_FALLBACK)
        if fallback is None:
            fallback = DEFAULT_PRIORITY_FEE_WEI
        logger.info(
            "eth_maxPriorityFeePerGas unavailable (%s); using %.2f gwei", exc, fallback / GWEI
        )
        return fallback


def latest_base_fee(rpc: Any) -> int:
    block = rpc.get_block_by_number("latest", False)
    if not isinstance(block, dict) or block.get("baseFeePerGas") is None:
        raise FeeEstimationError(
            "Latest block has no baseFeePerGas; the chain does not support dynamic-fee transactions. "
            "Rerun with --legacy."
        )
    return to_int(block["baseFeePerGas"])


def fill_transaction_defaults(rpc: Any, tx: ShapedTransaction) -> ShapedTransaction:
    """Fill gas limit and fee fields that were not set upstream.

    The transaction is updated in place and returned for convenience.
    """

    if isinstance(tx, LegacyTransaction):
        if tx.gas_price is None:
            tx.gas_price = int(rpc.gas_price())
            logger.debug("Using node gas price %d wei", tx.gas_price)
    elif isinstance(tx, DynamicFeeTransaction):
        if tx.max_priority_fee_per_gas is None:
            tx.max_priority_fee_per_gas = suggest_priority_fee(rpc)
        if tx.max_fee_per_gas is None:
            base_fee = latest_base_fee(rpc)
            tx.max_fee_per_gas = BASE_FEE_MULTIPLIER * base_fee + tx.max_priority_fee_per_gas
            logger.debug(
                "Using maxFeePerGas %d wei (base fee %d, tip %d)",
                tx.max_fee_per_gas,
                base_fee,
                tx.max_priority_fee_per_gas,
            )
        if tx.max_priority_fee_per_gas > tx.max_fee_per_gas:
            tx.max_priority_fee_per_gas = tx.max_fee_per_gas
    else:
        raise TypeError(f"Wrong transaction type for expected output: {type(tx).__name__}")

    if tx.gas is None:
        tx.gas = int(rpc.estimate_gas(to_call_object(tx)))
        logger.debug("Estimated gas limit %d", tx.gas)
    return tx
