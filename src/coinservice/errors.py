"""
Exception taxonomy shared by every coin service and node adapter.
"""

from __future__ import annotations


class CoinServiceError(Exception):
    """Base class for all coinservice errors."""


class ConfigurationError(CoinServiceError):
    """Operator credentials or node configuration are missing or unusable."""


class ValidationError(CoinServiceError):
    """Caller input is malformed or semantically invalid."""


class NetworkError(CoinServiceError):
    """Transport failure or upstream-reported error during an HTTP/RPC call."""


class NotFoundError(CoinServiceError):
    """The requested transaction, block, balance or account does not exist upstream."""


class RpcError(NetworkError):
    """JSON-RPC envelope carries an explicit error or lacks a result."""
