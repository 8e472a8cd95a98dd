"""
coinservice - pluggable multi-network coin service

A uniform interface for creating and validating addresses, building and
signing transactions, and querying chain state across blockchain networks.
"""

__version__ = "0.1.0"

from coinservice.base import BaseCoinService, BaseNodeAdapter
from coinservice.errors import (
    CoinServiceError,
    ConfigurationError,
    NetworkError,
    NotFoundError,
    RpcError,
    ValidationError,
)
from coinservice.hbar import HbarCoinService, HbarNodeAdapter
from coinservice.models import (
    AdapterType,
    AddressCreateSkipped,
    AddressKeyMaterial,
    AddressKeyPair,
    Balance,
    Block,
    BroadcastResult,
    FeeSpec,
    NodeOptions,
    SignedTransaction,
    Transaction,
    TransactionParams,
    TransferLeg,
    TxStatus,
)

__all__ = [
    "AdapterType",
    "AddressCreateSkipped",
    "AddressKeyMaterial",
    "AddressKeyPair",
    "Balance",
    "BaseCoinService",
    "BaseNodeAdapter",
    "Block",
    "BroadcastResult",
    "CoinServiceError",
    "ConfigurationError",
    "FeeSpec",
    "HbarCoinService",
    "HbarNodeAdapter",
    "NetworkError",
    "NodeOptions",
    "NotFoundError",
    "RpcError",
    "SignedTransaction",
    "Transaction",
    "TransactionParams",
    "TransferLeg",
    "TxStatus",
    "ValidationError",
]
