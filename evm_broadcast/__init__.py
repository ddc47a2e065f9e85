"""Resumable broadcasting of planned EVM transaction sequences."""

from .broadcaster import (
    BroadcastAbort,
    Broadcaster,
    BroadcastResult,
    ReceiptUnavailableError,
    SubmissionError,
    UnresolvedSenderError,
    broadcast_sequence,
)
from .chain import LEGACY_CHAINS, ChainProbeError, ChainProfile, is_legacy_chain, probe_chain_profile
from .config import BroadcastConfig, ConfigurationError, load_broadcast_config
from .nonce import NonceConflictError, NonceQueryError, NonceReconciler
from .rpc_client import EthereumRPCClient, RPCError, RPCTransportError
from .sequence import DeploymentSequence, IntendedTransaction, SequenceError
from .shaper import DynamicFeeTransaction, LegacyTransaction, shape_transaction
from .wallets import (
    IdentityPool,
    SigningIdentity,
    build_identity_pool,
    interactive_identities,
    keystore_identities,
    mnemonic_identities,
    private_key_identities,
)

__all__ = [
    "BroadcastAbort",
    "Broadcaster",
    "BroadcastResult",
    "ReceiptUnavailableError",
    "SubmissionError",
    "UnresolvedSenderError",
    "broadcast_sequence",
    "LEGACY_CHAINS",
    "ChainProbeError",
    "ChainProfile",
    "is_legacy_chain",
    "probe_chain_profile",
    "BroadcastConfig",
    "ConfigurationError",
    "load_broadcast_config",
    "NonceConflictError",
    "NonceQueryError",
    "NonceReconciler",
    "EthereumRPCClient",
    "RPCError",
    "RPCTransportError",
    "DeploymentSequence",
    "IntendedTransaction",
    "SequenceError",
    "DynamicFeeTransaction",
    "LegacyTransaction",
    "shape_transaction",
    "IdentityPool",
    "SigningIdentity",
    "build_identity_pool",
    "interactive_identities",
    "keystore_identities",
    "mnemonic_identities",
    "private_key_identities",
]
