"""
Shared data models using Pydantic for validation and serialization.

Every network implementation exchanges these shapes with its callers, so the
field names here are the public contract of the package.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Mapping of address -> private key string, used by tx_sign
AddressKeyPair = dict[str, str]


class TxStatus(str, Enum):
    FINISHED = "finished"
    FAILED = "failed"
    UNKNOWN = "unknown"


class AdapterType(str, Enum):
    NODE = "Node"
    BBOOK = "BBook"


class AddressKeyMaterial(BaseModel):
    """Key material produced once by address creation."""

    model_config = ConfigDict(frozen=True)

    address: str
    private_key: str = Field(repr=False)
    public_key: str
    internal_address: str | None = None


class AddressCreateSkipped(BaseModel):
    """
    Address creation was deliberately not attempted.

    Returned instead of AddressKeyMaterial when the operator account cannot
    pay for the on-chain registration. This is not an error.
    """

    model_config = ConfigDict(frozen=True)

    reason: str
    operator_id: str


class TransferLeg(BaseModel):
    """One sender or receiver entry. ``value`` is in human-readable units."""

    address: str
    extra_id: str | None = None
    value: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            return str(v)
        return v


class FeeSpec(BaseModel):
    network_fee: float
    properties: dict[str, Any] = Field(default_factory=dict)


class TransactionParams(BaseModel):
    """
    Transaction parameters flowing through tx_build and tx_sign.

    ``from``/``to`` accept either a single leg or a list of legs. Use
    normalized_from()/normalized_to() before any processing.
    """

    model_config = ConfigDict(populate_by_name=True)

    from_: TransferLeg | list[TransferLeg] = Field(alias="from")
    to: TransferLeg | list[TransferLeg]
    fee: FeeSpec | None = None
    spent: dict[str, list[str]] | None = None
    utxo: dict[str, list[str]] | None = None
    unsigned_tx: str = ""

    def normalized_from(self) -> list[TransferLeg]:
        return _as_list(self.from_)

    def normalized_to(self) -> list[TransferLeg]:
        return _as_list(self.to)


def _as_list(legs: TransferLeg | list[TransferLeg]) -> list[TransferLeg]:
    if isinstance(legs, list):
        return list(legs)
    return [legs]


class SignedTransaction(BaseModel):
    signed_data: str
    tx_hash: str | None = None


class Transaction(BaseModel):
    """Transaction as reported by an indexer. Extra provider fields are kept."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    hash: str
    ticker: str
    from_: list[TransferLeg] = Field(default_factory=list, alias="from")
    to: list[TransferLeg] = Field(default_factory=list)
    status: TxStatus
    height: int | None = None


class Block(BaseModel):
    height: int
    timestamp: datetime
    transactions: list[Transaction] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)


class Balance(BaseModel):
    """Balances in atomic units, always as decimal strings."""

    balance: str
    total_balance: str


class BroadcastResult(BaseModel):
    """Outcome of a broadcast. Exactly one of hash/error is set."""

    hash: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.hash is not None


class NodeOptions(BaseModel):
    """Per-provider node configuration passed to init_nodes."""

    model_config = ConfigDict(extra="allow")

    rpc_url: str | None = None
    mirror_url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    confirmation_limit: int = Field(default=0, ge=0)
    timeout: float | None = Field(default=None, gt=0)
    # Consensus node for transaction submission, falls back to settings
    grpc_endpoint: str | None = None
    grpc_tls: bool = False
