"""Signing identities and the key sources that produce them.

Every key source (raw private key, interactive prompt, mnemonic derivation,
encrypted keystore) yields plain :class:`SigningIdentity` values. The
broadcaster never cares where a key came from; it only looks identities up by
address in an :class:`IdentityPool` that has been bound to the target chain.
"""

from __future__ import annotations

import getpass
import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Protocol, Sequence

from eth_account import Account
from eth_utils import to_checksum_address
from eth_utils.exceptions import ValidationError

from .config import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0/{index}"

Account.enable_unaudited_hdwallet_features()


class TransactionSigner(Protocol):
    """Anything able to sign a transaction dictionary (e.g. ``LocalAccount``)."""

    address: str

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        ...


@dataclass(frozen=True)
class SigningIdentity:
    """An address plus the capability to sign for it on one chain."""

    address: str
    signer: TransactionSigner
    chain_id: int | None = None

    @classmethod
    def from_signer(cls, signer: TransactionSigner) -> "SigningIdentity":
        return cls(address=to_checksum_address(signer.address), signer=signer)

    def with_chain_id(self, chain_id: int) -> "SigningIdentity":
        """Return a copy whose signing context is bound to ``chain_id``."""

        return replace(self, chain_id=int(chain_id))

    def sign_transaction(self, transaction: Dict[str, Any]) -> Any:
        if self.chain_id is None:
            raise RuntimeError(
                f"Signing identity {self.address} is not bound to a chain id; bind the pool before signing"
            )
        tx_chain_id = transaction.get("chainId")
        if tx_chain_id != self.chain_id:
            raise RuntimeError(
                f"Transaction chain id {tx_chain_id} does not match identity binding {self.chain_id}"
            )
        return self.signer.sign_transaction(transaction)


class IdentityPool:
    """Address-indexed set of signing identities."""

    def __init__(self, identities: Iterable[SigningIdentity]) -> None:
        self._by_address: Dict[str, SigningIdentity] = {}
        for identity in identities:
            key = identity.address.lower()
            if key in self._by_address:
                logger.debug("Ignoring duplicate signing identity %s", identity.address)
                continue
            self._by_address[key] = identity

    def __len__(self) -> int:
        return len(self._by_address)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.lower() in self._by_address

    @property
    def addresses(self) -> list[str]:
        return [identity.address for identity in self._by_address.values()]

    @property
    def chain_id(self) -> int | None:
        chain_ids = {identity.chain_id for identity in self._by_address.values()}
        return chain_ids.pop() if len(chain_ids) == 1 else None

    def find(self, address: str) -> SigningIdentity | None:
        return self._by_address.get(address.lower())

    def bind_chain(self, chain_id: int) -> "IdentityPool":
        """Return a new pool whose identities sign for ``chain_id``."""

        return IdentityPool(identity.with_chain_id(chain_id) for identity in self._by_address.values())


def build_identity_pool(*sources: Iterable[SigningIdentity]) -> IdentityPool:
    """Union the identities yielded by every key source.

    Raises :class:`ConfigurationError` when no source produced an identity.
    """

    collected: list[SigningIdentity] = []
    for source in sources:
        collected.extend(source)
    pool = IdentityPool(collected)
    if len(pool) == 0:
        raise ConfigurationError(
            "No usable signer available for onchain transactions; did you set a private key, mnemonic or keystore?"
        )
    logger.info("Unlocked %d signing identities", len(pool))
    return pool


def _identity_from_key(private_key: str, *, origin: str) -> SigningIdentity:
    key = private_key.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    try:
        account = Account.from_key(key)
    except (ValueError, TypeError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid private key from {origin}") from exc
    return SigningIdentity.from_signer(account)


def private_key_identities(keys: Sequence[str] | None) -> list[SigningIdentity]:
    """Identities for hex-encoded private keys."""

    return [
        _identity_from_key(key, origin=f"--private-key #{position}")
        for position, key in enumerate(keys or [], start=1)
    ]


def interactive_identities(
    count: int, prompt: Callable[[str], str] = getpass.getpass
) -> list[SigningIdentity]:
    """Prompt for ``count`` private keys without echoing them."""

    identities = []
    for position in range(1, count + 1):
        secret = prompt(f"Enter private key #{position}: ")
        if not secret.strip():
            raise ConfigurationError(f"No private key entered for interactive wallet #{position}")
        identities.append(_identity_from_key(secret, origin=f"interactive wallet #{position}"))
    return identities


def mnemonic_identities(
    phrases: Sequence[str] | None,
    indices: Sequence[int] = (0,),
    derivation_path: str | None = None,
    passphrase: str = "",
) -> list[SigningIdentity]:
    """Derive identities from BIP-39 phrases.

    Each phrase is derived at every index in ``indices``. ``derivation_path``
    may contain an ``{index}`` placeholder; it defaults to the standard
    Ethereum path.
    """

    template = derivation_path or DEFAULT_DERIVATION_PATH
    identities = []
    for phrase_position, phrase in enumerate(phrases or [], start=1):
        for index in indices:
            account_path = template.format(index=index)
            try:
                account = Account.from_mnemonic(
                    phrase.strip(), passphrase=passphrase, account_path=account_path
                )
            except (ValueError, TypeError, ValidationError) as exc:
                raise ConfigurationError(
                    f"Unable to derive a key from mnemonic #{phrase_position} at {account_path}"
                ) from exc
            identities.append(SigningIdentity.from_signer(account))
    return identities


def keystore_identities(
    paths: Sequence[str | Path] | None, passwords: Sequence[str] | None
) -> list[SigningIdentity]:
    """Decrypt JSON keystore files.

    ``passwords`` pairs with ``paths`` positionally; a single password is
    reused for every file.
    """

    keystore_paths = [Path(path).expanduser() for path in paths or []]
    if not keystore_paths:
        return []
    secrets = list(passwords or [])
    if len(secrets) == 1:
        secrets = secrets * len(keystore_paths)
    if len(secrets) != len(keystore_paths):
        raise ConfigurationError(
            f"Got {len(secrets)} keystore passwords for {len(keystore_paths)} keystore files"
        )

    identities = []
    for path, password in zip(keystore_paths, secrets):
        try:
            keyfile = json.loads(path.read_text())
        except OSError as exc:
            raise ConfigurationError(f"Unable to read keystore {path}: {exc}") from exc
        except ValueError as exc:
            raise ConfigurationError(f"Keystore {path} is not valid JSON") from exc
        try:
            private_key = Account.decrypt(keyfile, password)
        except (ValueError, TypeError, KeyError) as exc:
            raise ConfigurationError(f"Unable to decrypt keystore {path}; check the password") from exc
        identities.append(SigningIdentity.from_signer(Account.from_key(private_key)))
    return identities
