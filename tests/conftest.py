from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from eth_account import Account
from eth_utils import keccak, to_hex

from evm_broadcast.rpc_client import RPCError, RPCTransportError
from evm_broadcast.sequence import DeploymentSequence, IntendedTransaction
from evm_broadcast.wallets import SigningIdentity

# Well-known development keys (anvil / hardhat accounts #0 and #1).
KEY_A = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ADDRESS_A = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
KEY_B = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
ADDRESS_B = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
DEV_MNEMONIC = "test test test test test test test test test test test junk"
RECIPIENT = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"


class RecordingSigner:
    """LocalAccount wrapper that remembers every transaction dict it signs."""

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(private_key)
        self.address = self._account.address
        self.signed: list[dict[str, Any]] = []

    def sign_transaction(self, transaction_dict: dict[str, Any]) -> Any:
        self.signed.append(dict(transaction_dict))
        return self._account.sign_transaction(transaction_dict)


class FakeNode:
    """In-memory stand-in for an Ethereum JSON-RPC node."""

    def __init__(self, chain_id: int = 31337, nonces: dict[str, int] | None = None) -> None:
        self.chain_id_value = chain_id
        self.nonces = {address.lower(): nonce for address, nonce in (nonces or {}).items()}
        self.base_fee: int | None = 10 * 10**9
        self.gas_price_value = 3 * 10**9
        self.priority_fee: int | None = 2 * 10**9
        self.estimated_gas = 21_000
        self.reject_send_with: str | None = None
        self.send_transport_failure = False
        self.attempted: list[str] = []
        self.fail_receipts_from: int | None = None
        self.drop_transactions = False
        self.pending_polls = 0
        self.receipt_status = "0x1"
        self.fail_nonce_query = False
        self.sent: list[str] = []
        self.senders: list[str] = []
        self.estimate_calls: list[dict[str, Any]] = []
        self._receipts: dict[str, dict[str, Any]] = {}
        self._polls: dict[str, int] = {}

    def chain_id(self) -> int:
        return self.chain_id_value

    def get_transaction_count(self, address: str, block: str = "latest") -> int:
        if self.fail_nonce_query:
            raise RPCError(-32000, "header not found")
        return self.nonces.get(address.lower(), 0)

    def gas_price(self) -> int:
        return self.gas_price_value

    def max_priority_fee_per_gas(self) -> int:
        if self.priority_fee is None:
            raise RPCError(-32601, "the method eth_maxPriorityFeePerGas does not exist")
        return self.priority_fee

    def get_block_by_number(self, block: str = "latest", full: bool = False) -> dict[str, Any]:
        block_obj: dict[str, Any] = {"number": "0x10"}
        if self.base_fee is not None:
            block_obj["baseFeePerGas"] = hex(self.base_fee)
        return block_obj

    def estimate_gas(self, transaction: dict[str, Any]) -> int:
        self.estimate_calls.append(transaction)
        return self.estimated_gas

    def send_raw_transaction(self, raw_tx: str) -> str:
        self.attempted.append(raw_tx)
        if self.send_transport_failure:
            raise RPCTransportError("read timed out")
        if self.reject_send_with is not None:
            raise RPCError(-32000, self.reject_send_with)
        sender = Account.recover_transaction(raw_tx)
        tx_hash = to_hex(keccak(hexstr=raw_tx))
        self.nonces[sender.lower()] = self.nonces.get(sender.lower(), 0) + 1
        self.sent.append(raw_tx)
        self.senders.append(sender)
        self._receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "from": sender,
            "blockNumber": hex(len(self.sent)),
            "status": self.receipt_status,
        }
        return tx_hash

    def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        if self.fail_receipts_from is not None and len(self.sent) >= self.fail_receipts_from:
            raise RPCError(-32603, "internal error")
        if self.drop_transactions:
            return None
        polls = self._polls.get(tx_hash, 0)
        self._polls[tx_hash] = polls + 1
        if polls < self.pending_polls:
            return None
        return self._receipts.get(tx_hash)

    def get_transaction_by_hash(self, tx_hash: str) -> dict[str, Any] | None:
        if self.drop_transactions:
            return None
        return {"hash": tx_hash} if tx_hash in self._receipts else None


def make_plan(sender: str, nonces: list[int], to: str = RECIPIENT) -> list[IntendedTransaction]:
    return [
        IntendedTransaction(sender=sender, nonce=nonce, to=to, value=position + 1)
        for position, nonce in enumerate(nonces)
    ]


def write_sequence(path: Path, transactions: list[IntendedTransaction]) -> DeploymentSequence:
    sequence = DeploymentSequence.create(path, transactions)
    sequence.save()
    return sequence


def read_sequence_file(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text())


@pytest.fixture()
def signer_a() -> RecordingSigner:
    return RecordingSigner(KEY_A)


@pytest.fixture()
def signer_b() -> RecordingSigner:
    return RecordingSigner(KEY_B)


@pytest.fixture()
def identity_a(signer_a: RecordingSigner) -> SigningIdentity:
    return SigningIdentity.from_signer(signer_a)


@pytest.fixture()
def identity_b(signer_b: RecordingSigner) -> SigningIdentity:
    return SigningIdentity.from_signer(signer_b)
