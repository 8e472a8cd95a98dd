"""
Hedera (HBAR) network implementation.

- HbarCoinService: address and transaction lifecycle
- HbarNodeAdapter: JSON-RPC relay + mirror node REST access
"""

from coinservice.hbar.adapter import HbarNodeAdapter
from coinservice.hbar.service import HbarCoinService

__all__ = [
    "HbarCoinService",
    "HbarNodeAdapter",
]
