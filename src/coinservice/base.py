"""
Base coin service and node adapter interfaces.

Every network plugs in by implementing both classes: the coin service owns
address and transaction logic, the node adapter owns network I/O.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from coinservice.models import (
    AdapterType,
    AddressCreateSkipped,
    AddressKeyMaterial,
    AddressKeyPair,
    Balance,
    Block,
    BroadcastResult,
    NodeOptions,
    SignedTransaction,
    Transaction,
    TransactionParams,
)


class BaseNodeAdapter(ABC):
    """
    Abstract node adapter.
    Translates abstract chain queries into calls against one provider.
    """

    type: AdapterType
    name: str
    network: str

    @abstractmethod
    async def tx_by_hash(self, ticker: str, hash: str) -> Transaction:
        """Get a formatted transaction by its identifier"""

    @abstractmethod
    async def get_height(self) -> int:
        """Get current chain height"""

    @abstractmethod
    async def get_block(self, height: int) -> Block:
        """Get block and its transactions by height"""

    @abstractmethod
    async def balance_by_address(self, ticker: str, address: str) -> Balance:
        """Get balance for ticker and native total balance for an address"""

    @abstractmethod
    async def tx_broadcast(
        self, ticker: str, params: SignedTransaction | Mapping[str, Any]
    ) -> BroadcastResult:
        """Submit a signed transaction. Failures are returned, never raised."""

    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        data: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Execute one HTTP request and return the decoded JSON payload"""

    async def close(self) -> None:
        """Release transport resources"""
        pass


class BaseCoinService(ABC):
    """
    Abstract coin service for one network.

    Network I/O is delegated to ``nodes``; the adapter at index 0 is the one
    currently selected.
    """

    network: str
    nodes: Sequence[BaseNodeAdapter]
    block_books: list[BaseNodeAdapter]

    @abstractmethod
    def init_nodes(self, nodes: Mapping[str, NodeOptions | Mapping[str, Any]]) -> None:
        """Build one adapter per provider entry, replacing the current list"""

    @abstractmethod
    async def address_create(self, ticker: str) -> AddressKeyMaterial | AddressCreateSkipped:
        """Create a new address with its key material"""

    @abstractmethod
    async def address_validate(
        self, ticker: str, address: str, private_key: str, public_key: str
    ) -> bool | str:
        """Return True, or a human-readable reason for the first failed check"""

    @abstractmethod
    async def tx_sign(
        self, ticker: str, private_keys: AddressKeyPair, params: TransactionParams
    ) -> SignedTransaction:
        """Sign the output of tx_build"""

    @abstractmethod
    async def tx_build(self, ticker: str, params: TransactionParams) -> TransactionParams:
        """Validate params and produce a network-native unsigned transaction"""

    async def close(self) -> None:
        for adapter in [*self.nodes, *self.block_books]:
            await adapter.close()
