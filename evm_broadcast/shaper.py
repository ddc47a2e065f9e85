"""Convert planned transactions into the wire format a chain accepts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Union

from eth_utils import to_checksum_address

from .chain import ChainProfile
from .rpc_client import to_quantity
from .sequence import IntendedTransaction


@dataclass
class LegacyTransaction:
    """Pre-EIP-1559 transaction priced with a single ``gasPrice``."""

    sender: str
    nonce: int
    to: str | None = None
    value: int = 0
    data: str = "0x"
    gas: int | None = None
    gas_price: int | None = None
    chain_id: int | None = None


@dataclass
class DynamicFeeTransaction:
    """EIP-1559 (type 2) transaction."""

    sender: str
    nonce: int
    to: str | None = None
    value: int = 0
    data: str = "0x"
    gas: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None
    chain_id: int | None = None


ShapedTransaction = Union[LegacyTransaction, DynamicFeeTransaction]


def set_chain_id(tx: ShapedTransaction, chain_id: int) -> None:
    if isinstance(tx, (LegacyTransaction, DynamicFeeTransaction)):
        tx.chain_id = chain_id
        return
    raise TypeError(f"Wrong transaction type for expected output: {type(tx).__name__}")


def shape_transaction(
    intended: IntendedTransaction, profile: ChainProfile, nonce: int | None = None
) -> ShapedTransaction:
    """Build the wire-format transaction for ``profile``.

    ``nonce`` overrides the planned nonce (the reconciled value). Upstream fee
    fields are carried over when they fit the target format; everything else
    is left for :func:`evm_broadcast.fees.fill_transaction_defaults`.
    """

    effective_nonce = intended.nonce if nonce is None else nonce
    shaped: ShapedTransaction
    if profile.legacy:
        shaped = LegacyTransaction(
            sender=intended.sender,
            nonce=effective_nonce,
            to=intended.to,
            value=intended.value,
            data=intended.data,
            gas=intended.gas,
            gas_price=intended.gas_price,
        )
    else:
        shaped = DynamicFeeTransaction(
            sender=intended.sender,
            nonce=effective_nonce,
            to=intended.to,
            value=intended.value,
            data=intended.data,
            gas=intended.gas,
            max_fee_per_gas=intended.max_fee_per_gas,
            max_priority_fee_per_gas=intended.max_priority_fee_per_gas,
        )
    set_chain_id(shaped, profile.chain_id)
    return shaped


def to_call_object(tx: ShapedTransaction) -> Dict[str, Any]:
    """JSON-RPC call object (hex quantities) suitable for ``eth_estimateGas``."""

    call: Dict[str, Any] = {
        "from": tx.sender,
        "value": to_quantity(tx.value),
        "data": tx.data,
    }
    if tx.to:
        call["to"] = tx.to
    if isinstance(tx, LegacyTransaction):
        if tx.gas_price is not None:
            call["gasPrice"] = to_quantity(tx.gas_price)
    else:
        if tx.max_fee_per_gas is not None:
            call["maxFeePerGas"] = to_quantity(tx.max_fee_per_gas)
        if tx.max_priority_fee_per_gas is not None:
            call["maxPriorityFeePerGas"] = to_quantity(tx.max_priority_fee_per_gas)
    return call


def to_signable(tx: ShapedTransaction) -> Dict[str, Any]:
    """Transaction dictionary in the shape ``eth_account`` signs."""

    if tx.gas is None:
        raise ValueError("Transaction gas limit must be set before signing")
    signable: Dict[str, Any] = {
        "nonce": tx.nonce,
        "gas": tx.gas,
        "to": to_checksum_address(tx.to) if tx.to else b"",
        "value": tx.value,
        "data": tx.data,
        "chainId": tx.chain_id,
    }
    if isinstance(tx, LegacyTransaction):
        if tx.gas_price is None:
            raise ValueError("Legacy transaction gasPrice must be set before signing")
        signable["gasPrice"] = tx.gas_price
    elif isinstance(tx, DynamicFeeTransaction):
        if tx.max_fee_per_gas is None or tx.max_priority_fee_per_gas is None:
            raise ValueError("Dynamic-fee transaction fee caps must be set before signing")
        signable["type"] = 2
        signable["maxFeePerGas"] = tx.max_fee_per_gas
        signable["maxPriorityFeePerGas"] = tx.max_priority_fee_per_gas
        signable["accessList"] = []
    else:
        raise TypeError(f"Wrong transaction type for expected output: {type(tx).__name__}")
    return signable
