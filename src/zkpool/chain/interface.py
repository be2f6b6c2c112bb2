"""Chain boundary: the contract surface the client consumes, and typed event decoding."""

import logging
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from pydantic import field_validator

from zkpool.core.account import Account
from zkpool.utils.encoding import hex_to_bytes, hex_to_int
from zkpool.utils.hash import FIELD_SIZE, FieldHasher
from zkpool.exceptions import DecryptionError, TreeSyncError

logger = logging.getLogger(__name__)


class ChainInterface(Protocol):
    """
    What the client needs from the pool contract.

    Gas, signing and transport are the implementer's business; the client
    only reads state and hands over payloads.
    """

    def account_count(self) -> int:
        """Number of account commitments inserted so far."""
        ...

    def get_new_account_events(self, from_index: int = 0) -> List[Mapping[str, Any]]:
        """Raw NewAccount logs with index >= from_index, in index order."""
        ...

    def last_account_root(self) -> int:
        """Root the contract accepts as the input root of the next proof."""
        ...

    def is_spent(self, nullifier_hash: int) -> bool:
        """Whether the contract has recorded this nullifier hash."""
        ...

    def unit_per_underlying(self) -> int:
        """Oracle conversion rate (debt units per underlying, scaled)."""
        ...

    def submit(self, proof: bytes, args: dict, tree_update: Optional[dict] = None) -> Any:
        """Submit an operation payload (and its tree update, if any)."""
        ...


class NewAccountEvent(BaseModel):
    """Decoded NewAccount log."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    index: int = Field(..., ge=0, description="Leaf index of the commitment")
    commitment: int = Field(..., description="Output account commitment")
    nullifier_hash: int = Field(..., alias="nullifier", description="Spent input nullifier hash")
    encrypted_account: bytes = Field(
        ..., alias="encryptedAccount", description="Packed encrypted output account"
    )

    @field_validator("index", mode="before")
    @classmethod
    def _decode_index(cls, value: Any) -> int:
        return hex_to_int(value) if isinstance(value, str) else value

    @field_validator("commitment", "nullifier_hash", mode="before")
    @classmethod
    def _decode_field_element(cls, value: Any) -> int:
        if isinstance(value, str):
            decoded = hex_to_int(value)
        elif isinstance(value, bytes):
            decoded = int.from_bytes(value, 'big')
        else:
            decoded = value
        if not isinstance(decoded, int) or decoded < 0 or decoded >= FIELD_SIZE:
            raise ValueError("not a field element")
        return decoded

    @field_validator("encrypted_account", mode="before")
    @classmethod
    def _decode_blob(cls, value: Any) -> bytes:
        if isinstance(value, str):
            return hex_to_bytes(value)
        return value


def decode_new_account_event(raw: Mapping[str, Any]) -> NewAccountEvent:
    """
    Convert a raw log into a NewAccountEvent.

    Accepts either a web3-style log (``{"event": ..., "args": {...}}``) or a
    flat mapping of the event arguments.

    Raises:
        TreeSyncError: If the log is malformed
    """
    args = raw.get("args", raw) if isinstance(raw, Mapping) else None
    if not isinstance(args, Mapping):
        raise TreeSyncError(f"Malformed NewAccount log: {raw!r}")

    event_name = raw.get("event")
    if event_name is not None and event_name != "NewAccount":
        raise TreeSyncError(f"Unexpected event {event_name!r} in account stream")

    try:
        return NewAccountEvent.model_validate(dict(args))
    except PydanticValidationError as e:
        raise TreeSyncError(f"Malformed NewAccount log: {e}")


def decode_events(raw_events: Iterable[Mapping[str, Any]]) -> List[NewAccountEvent]:
    """Decode a batch of raw logs, preserving order."""
    return [decode_new_account_event(raw) for raw in raw_events]


def scan_accounts(
    events: Iterable[NewAccountEvent],
    private_key: bytes,
    hasher: Optional[FieldHasher] = None,
) -> Iterator[Tuple[NewAccountEvent, Account]]:
    """
    Yield the (event, account) pairs that private_key can decrypt.

    Blobs for other owners fail authentication and are skipped; a decrypted
    account whose commitment does not match its event is skipped too.
    """
    for event in events:
        try:
            account = Account.decrypt(private_key, event.encrypted_account, hasher=hasher)
        except DecryptionError:
            continue
        if account.commitment != event.commitment:
            logger.warning("Decrypted account does not match commitment at index %d", event.index)
            continue
        yield event, account
