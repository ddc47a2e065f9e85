"""Chain identity and fee-model classification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from .rpc_client import RPCError, RPCTransportError

logger = logging.getLogger(__name__)

# Chains without dynamic-fee (type 2) transaction support.
LEGACY_CHAINS: Dict[int, str] = {
    10: "optimism",
    69: "optimism-kovan",
    250: "fantom",
    4002: "fantom-testnet",
    56: "bsc",
    97: "bsc-testnet",
    42161: "arbitrum",
    421611: "arbitrum-testnet",
    30: "rsk",
    26863: "oasis",
    42262: "emerald",
    42261: "emerald-testnet",
}


class ChainProbeError(RuntimeError):
    """Raised when the target chain cannot be identified."""


@dataclass(frozen=True)
class ChainProfile:
    """Chain identifier plus the transaction format the chain accepts."""

    chain_id: int
    legacy: bool

    def to_jsonable(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "legacy": self.legacy,
            "name": LEGACY_CHAINS.get(self.chain_id),
        }


def is_legacy_chain(chain_id: int) -> bool:
    """Return ``True`` for chains known to reject dynamic-fee transactions."""

    return chain_id in LEGACY_CHAINS


def probe_chain_profile(rpc: Any, *, legacy_override: bool = False) -> ChainProfile:
    """Query the endpoint once for its chain id and classify its fee model."""

    try:
        chain_id = int(rpc.chain_id())
    except (RPCError, RPCTransportError) as exc:
        raise ChainProbeError(f"Unable to query the chain id: {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise ChainProbeError(f"Endpoint returned an invalid chain id: {exc}") from exc
    if chain_id <= 0:
        raise ChainProbeError(f"Endpoint returned an invalid chain id: {chain_id}")

    legacy = bool(legacy_override) or is_legacy_chain(chain_id)
    logger.info(
        "Target chain id %s uses %s transactions%s",
        chain_id,
        "legacy" if legacy else "dynamic-fee",
        " (forced)" if legacy_override else "",
    )
    return ChainProfile(chain_id=chain_id, legacy=legacy)
