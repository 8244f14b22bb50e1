"""
Transaction signing.

``Signer`` turns an InstructionSet plus a freshness token into signed wire
bytes. ``KeypairSigner`` holds a local ed25519 keypair (solders) loaded from
a base58 string or a JSON byte array.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Sequence

from base58 import b58decode
from solders.address_lookup_table_account import AddressLookupTable, AddressLookupTableAccount
from solders.errors import BincodeError
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from lp_rebalancer.core.errors import ConfigurationError, ParseError
from lp_rebalancer.core.models import FreshnessToken, InstructionSet


@dataclass(frozen=True)
class SignedTransaction:
    signature: str
    payload: bytes


class Signer(ABC):
    @property
    @abstractmethod
    def public_key(self) -> str:
        ...

    @abstractmethod
    def sign(
        self,
        instructions: InstructionSet,
        freshness: FreshnessToken,
        lookup_tables: Sequence[AddressLookupTableAccount] = (),
    ) -> SignedTransaction:
        ...


def load_keypair(raw: str) -> Keypair:
    """Accept either a base58 secret key or a JSON array of 64 bytes."""
    raw = (raw or "").strip()
    if not raw:
        raise ConfigurationError("empty private key")
    try:
        if raw.startswith("["):
            return Keypair.from_bytes(bytes(json.loads(raw)))
        return Keypair.from_bytes(b58decode(raw))
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(f"unreadable private key: {exc}") from None


class KeypairSigner(Signer):
    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @classmethod
    def from_secret(cls, raw: str) -> "KeypairSigner":
        return cls(load_keypair(raw))

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    def sign(
        self,
        instructions: InstructionSet,
        freshness: FreshnessToken,
        lookup_tables: Sequence[AddressLookupTableAccount] = (),
    ) -> SignedTransaction:
        if not instructions.instructions:
            raise ConfigurationError("refusing to sign an empty instruction set")
        message = MessageV0.try_compile(
            self._keypair.pubkey(),
            list(instructions.instructions),
            list(lookup_tables),
            Hash.from_string(freshness.value),
        )
        tx = VersionedTransaction(message, [self._keypair, *instructions.signers])
        return SignedTransaction(signature=str(tx.signatures[0]), payload=bytes(tx))


def decode_lookup_tables(raw_accounts: Dict[str, bytes], addresses: Sequence[str]) -> List[AddressLookupTableAccount]:
    tables: List[AddressLookupTableAccount] = []
    for address in addresses:
        data = raw_accounts.get(address)
        if data is None:
            raise ParseError("lookup_table", f"lookup table {address} not found")
        try:
            table = AddressLookupTable.deserialize(data)
        except (BincodeError, ValueError) as exc:
            raise ParseError("lookup_table", f"undecodable lookup table {address}: {exc}") from exc
        tables.append(AddressLookupTableAccount(key=Pubkey.from_string(address), addresses=list(table.addresses)))
    return tables
