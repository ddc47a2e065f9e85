"""Command line interface for evm-broadcast."""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from typing import Any, Sequence

from .broadcaster import BroadcastAbort, Broadcaster
from .chain import ChainProbeError, probe_chain_profile
from .config import BroadcastConfig, ConfigurationError, load_broadcast_config
from .nonce import NonceConflictError, NonceQueryError
from .rpc_client import EthereumRPCClient, RPCError, RPCTransportError
from .sequence import DeploymentSequence, SequenceError
from .wallets import (
    IdentityPool,
    build_identity_pool,
    interactive_identities,
    keystore_identities,
    mnemonic_identities,
    private_key_identities,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

COMPLETION_MESSAGE = "ONCHAIN EXECUTION COMPLETE & SUCCESSFUL. Transaction receipts written to {path}"


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--rpc-url",
        default=None,
        help="JSON-RPC endpoint of the target node (defaults to ETH_RPC_URL or the config file)",
    )
    parser.add_argument(
        "--legacy",
        action="store_true",
        default=None,
        help="Force legacy (gasPrice) transactions even on dynamic-fee chains",
    )
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Broadcast a planned EVM transaction sequence, resumably"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    broadcast_parser = subparsers.add_parser(
        "broadcast", help="sign and send every pending transaction of a sequence file"
    )
    broadcast_parser.add_argument("sequence", help="Path to the sequence JSON file")
    _add_common_options(broadcast_parser)
    broadcast_parser.add_argument(
        "--resume",
        action="store_true",
        default=None,
        help="Forgive a one-time nonce offset per sender left by an interrupted run",
    )
    broadcast_parser.add_argument(
        "--private-key",
        dest="private_keys",
        action="append",
        default=[],
        help="Hex private key of a sender (repeatable)",
    )
    broadcast_parser.add_argument(
        "--mnemonic",
        dest="mnemonics",
        action="append",
        default=[],
        help="BIP-39 mnemonic phrase (repeatable)",
    )
    broadcast_parser.add_argument(
        "--mnemonic-index",
        dest="mnemonic_indices",
        action="append",
        type=int,
        default=[],
        help="Derivation index used with every mnemonic (repeatable, default 0)",
    )
    broadcast_parser.add_argument(
        "--mnemonic-passphrase", default="", help="Optional BIP-39 passphrase"
    )
    broadcast_parser.add_argument(
        "--derivation-path",
        default=None,
        help="Derivation path template with an {index} placeholder",
    )
    broadcast_parser.add_argument(
        "--keystore",
        dest="keystores",
        action="append",
        default=[],
        help="Encrypted JSON keystore file (repeatable)",
    )
    broadcast_parser.add_argument(
        "--password",
        dest="passwords",
        action="append",
        default=[],
        help="Keystore password; one per keystore or a single shared one",
    )
    broadcast_parser.add_argument(
        "--interactive",
        type=int,
        default=0,
        metavar="N",
        help="Prompt for N private keys",
    )
    broadcast_parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between receipt polls",
    )
    broadcast_parser.add_argument(
        "--max-nonce-offset",
        type=int,
        default=None,
        help="Largest nonce offset --resume will forgive",
    )

    status_parser = subparsers.add_parser(
        "status", help="show the progress recorded in a sequence file"
    )
    status_parser.add_argument("sequence", help="Path to the sequence JSON file")
    status_parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    profile_parser = subparsers.add_parser(
        "chain-profile", help="probe the chain id and transaction format of an endpoint"
    )
    _add_common_options(profile_parser)

    return parser


def _load_config(args: argparse.Namespace) -> BroadcastConfig:
    overrides: dict[str, Any] = {
        "rpc_url": args.rpc_url,
        "legacy": args.legacy,
        "resume": getattr(args, "resume", None),
        "receipt_poll_interval": getattr(args, "poll_interval", None),
        "max_nonce_offset": getattr(args, "max_nonce_offset", None),
    }
    return load_broadcast_config(config_path=args.config, overrides=overrides)


def _keystore_passwords(args: argparse.Namespace) -> list[str]:
    if args.passwords or not args.keystores:
        return list(args.passwords)
    return [getpass.getpass(f"Enter keystore password for {path}: ") for path in args.keystores]


def _identity_pool_from_args(args: argparse.Namespace) -> IdentityPool:
    if args.interactive < 0:
        raise CLIError("--interactive expects a non-negative number of keys")
    return build_identity_pool(
        private_key_identities(args.private_keys),
        mnemonic_identities(
            args.mnemonics,
            indices=args.mnemonic_indices or [0],
            derivation_path=args.derivation_path,
            passphrase=args.mnemonic_passphrase,
        ),
        keystore_identities(args.keystores, _keystore_passwords(args)),
        interactive_identities(args.interactive) if args.interactive else [],
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _stdout_progress(message: str) -> None:
    print(message)


def cmd_broadcast(args: argparse.Namespace) -> None:
    config = _load_config(args)
    sequence = DeploymentSequence.load(args.sequence)
    identities = _identity_pool_from_args(args)

    rpc = EthereumRPCClient.from_config(config)
    profile = probe_chain_profile(rpc, legacy_override=config.legacy)
    broadcaster = Broadcaster(
        rpc,
        identities.bind_chain(profile.chain_id),
        profile,
        resume=config.resume,
        max_nonce_offset=config.max_nonce_offset,
        poll_interval=config.receipt_poll_interval,
        progress_callback=_stdout_progress,
    )
    result = broadcaster.run(sequence)
    for receipt in result.receipts:
        _print_json(receipt)
    print(COMPLETION_MESSAGE.format(path=result.path))


def cmd_status(args: argparse.Namespace) -> None:
    sequence = DeploymentSequence.load(args.sequence)
    _print_json(
        {
            "path": str(sequence.path),
            "index": sequence.index,
            "transactions": len(sequence.transactions),
            "complete": sequence.is_complete,
            "receipts": [receipt.get("transactionHash") for receipt in sequence.receipts],
            "timestamp": sequence.timestamp,
        }
    )


def cmd_chain_profile(args: argparse.Namespace) -> None:
    config = _load_config(args)
    rpc = EthereumRPCClient.from_config(config)
    profile = probe_chain_profile(rpc, legacy_override=config.legacy)
    _print_json(profile.to_jsonable())


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        if args.command == "broadcast":
            cmd_broadcast(args)
        elif args.command == "status":
            cmd_status(args)
        elif args.command == "chain-profile":
            cmd_chain_profile(args)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
        parser.exit(130)
    except (
        CLIError,
        ConfigurationError,
        SequenceError,
        ChainProbeError,
        NonceQueryError,
        NonceConflictError,
        BroadcastAbort,
        RPCError,
        RPCTransportError,
    ) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
