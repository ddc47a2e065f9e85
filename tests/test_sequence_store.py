from __future__ import annotations

import json
from pathlib import Path

import pytest

from evm_broadcast.sequence import DeploymentSequence, IntendedTransaction, SequenceError

SENDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def _plan() -> list[IntendedTransaction]:
    return [
        IntendedTransaction(sender=SENDER, nonce=0, to=None, data="0x6000", gas=120_000),
        IntendedTransaction(sender=SENDER, nonce=1, to=SENDER, value=5, max_fee_per_gas=100),
    ]


def test_save_and_load_preserve_progress(tmp_path: Path) -> None:
    path = tmp_path / "broadcast" / "run-latest.json"
    sequence = DeploymentSequence.create(path, _plan())
    sequence.append_receipt({"transactionHash": "0xaa", "status": "0x1"})
    sequence.save()

    loaded = DeploymentSequence.load(path)

    assert loaded.transactions == sequence.transactions
    assert loaded.receipts == [{"transactionHash": "0xaa", "status": "0x1"}]
    assert loaded.index == 1
    assert loaded.path == path
    assert loaded.timestamp is not None
    assert list(loaded.pending()) == [(1, sequence.transactions[1])]


def test_save_replaces_file_without_leaving_temp(tmp_path: Path) -> None:
    path = tmp_path / "run.json"
    sequence = DeploymentSequence.create(path, _plan())
    sequence.save()
    sequence.append_receipt({"transactionHash": "0xaa"})
    sequence.save()

    assert [item.name for item in tmp_path.iterdir()] == ["run.json"]
    payload = json.loads(path.read_text())
    assert payload["index"] == 1
    assert payload["path"] == str(path)
    assert payload["transactions"][0]["to"] is None
    assert payload["transactions"][1]["maxFeePerGas"] == "0x64"


def test_append_receipt_past_end_is_rejected(tmp_path: Path) -> None:
    sequence = DeploymentSequence.create(tmp_path / "run.json", _plan()[:1])
    sequence.append_receipt({"transactionHash": "0xaa"})
    assert sequence.is_complete
    with pytest.raises(SequenceError):
        sequence.append_receipt({"transactionHash": "0xbb"})


@pytest.mark.parametrize(
    "index, receipts",
    [
        (3, [{}, {}, {}]),
        (1, []),
        (-1, []),
    ],
)
def test_load_rejects_inconsistent_progress(tmp_path: Path, index: int, receipts: list) -> None:
    path = tmp_path / "run.json"
    payload = DeploymentSequence.create(path, _plan()).to_jsonable()
    payload["index"] = index
    payload["receipts"] = receipts
    path.write_text(json.dumps(payload))

    with pytest.raises(SequenceError):
        DeploymentSequence.load(path)


def test_load_reports_missing_and_malformed_files(tmp_path: Path) -> None:
    with pytest.raises(SequenceError, match="does not exist"):
        DeploymentSequence.load(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(SequenceError, match="not valid JSON"):
        DeploymentSequence.load(broken)


def test_transaction_without_sender_is_invalid(tmp_path: Path) -> None:
    path = tmp_path / "run.json"
    path.write_text(json.dumps({"transactions": [{"nonce": "0x0"}], "receipts": [], "index": 0}))
    with pytest.raises(SequenceError, match="No sender"):
        DeploymentSequence.load(path)


def test_intended_transaction_accepts_input_alias() -> None:
    tx = IntendedTransaction.from_jsonable(
        {"from": SENDER, "nonce": 3, "input": "0xabcd", "value": "0x10", "gas": "0x5208"}
    )
    assert tx.data == "0xabcd"
    assert tx.value == 16
    assert tx.gas == 21_000
    assert tx.to is None


@pytest.mark.parametrize(
    "field, raw, message",
    [
        ("value", "-1", "value cannot be negative"),
        ("nonce", -3, "nonce cannot be negative"),
        ("gas", "-21000", "gas cannot be negative"),
        ("maxFeePerGas", -1, "maxFeePerGas cannot be negative"),
        ("data", "0x123", "odd number of hex digits"),
        ("data", "0xzz", "not valid hex"),
        ("data", "6000", "0x-prefixed"),
    ],
)
def test_load_rejects_unsignable_fields(tmp_path: Path, field: str, raw, message: str) -> None:
    entry = {"from": SENDER, "nonce": "0x0", "to": SENDER, "value": "0x0", "data": "0x"}
    entry[field] = raw
    path = tmp_path / "run.json"
    path.write_text(json.dumps({"transactions": [entry], "receipts": [], "index": 0}))

    with pytest.raises(SequenceError, match=message):
        DeploymentSequence.load(path)
