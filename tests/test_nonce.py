from __future__ import annotations

import pytest

from evm_broadcast.nonce import NonceConflictError, NonceQueryError, NonceReconciler
from evm_broadcast.rpc_client import RPCTransportError

SENDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


class CountingRPC:
    def __init__(self, nonce: int) -> None:
        self.nonce = nonce
        self.queries: list[tuple[str, str]] = []

    def get_transaction_count(self, address: str, block: str = "latest") -> int:
        self.queries.append((address, block))
        return self.nonce


class BrokenRPC:
    def get_transaction_count(self, address: str, block: str = "latest") -> int:
        raise RPCTransportError("connection refused")


def test_matching_nonce_passes_without_resume() -> None:
    rpc = CountingRPC(5)
    reconciler = NonceReconciler(rpc)
    assert reconciler.reconcile(SENDER, 5) == 5
    assert rpc.queries == [(SENDER, "latest")]
    assert reconciler.offsets == {}


def test_mismatch_without_resume_is_conflict() -> None:
    reconciler = NonceReconciler(CountingRPC(7))
    with pytest.raises(NonceConflictError) as excinfo:
        reconciler.reconcile(SENDER, 5)
    assert excinfo.value.planned == 5
    assert excinfo.value.observed == 7
    assert "EOA nonce changed unexpectedly" in str(excinfo.value)


def test_resume_discovers_offset_once() -> None:
    rpc = CountingRPC(7)
    reconciler = NonceReconciler(rpc, resume=True)

    assert reconciler.reconcile(SENDER, 5) == 7
    rpc.nonce = 8
    assert reconciler.reconcile(SENDER, 6) == 8
    rpc.nonce = 9
    assert reconciler.reconcile(SENDER, 7) == 9
    assert reconciler.offsets == {SENDER.lower(): 2}


def test_resume_offset_is_fixed_on_first_transaction() -> None:
    rpc = CountingRPC(5)
    reconciler = NonceReconciler(rpc, resume=True)
    assert reconciler.reconcile(SENDER, 5) == 5

    # A gap appearing later is drift, not a resumed run.
    rpc.nonce = 8
    with pytest.raises(NonceConflictError):
        reconciler.reconcile(SENDER, 6)


def test_offset_lookup_ignores_address_case() -> None:
    rpc = CountingRPC(3)
    reconciler = NonceReconciler(rpc, resume=True)
    reconciler.reconcile(SENDER.lower(), 1)
    rpc.nonce = 4
    assert reconciler.reconcile(SENDER, 2) == 4


def test_negative_offset_is_rejected() -> None:
    reconciler = NonceReconciler(CountingRPC(2), resume=True)
    with pytest.raises(NonceConflictError, match="behind the plan"):
        reconciler.reconcile(SENDER, 5)


def test_max_offset_bounds_forgiveness() -> None:
    reconciler = NonceReconciler(CountingRPC(50), resume=True, max_offset=10)
    with pytest.raises(NonceConflictError, match="allowed maximum of 10"):
        reconciler.reconcile(SENDER, 5)

    assert NonceReconciler(CountingRPC(15), resume=True, max_offset=10).reconcile(SENDER, 5) == 15


def test_query_failure_is_wrapped() -> None:
    reconciler = NonceReconciler(BrokenRPC())
    with pytest.raises(NonceQueryError, match=SENDER):
        reconciler.reconcile(SENDER, 0)
