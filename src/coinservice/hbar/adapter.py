"""
Hedera node adapter.

Talks to three endpoints of one provider:
- a JSON-RPC relay (chain height)
- a mirror node REST API (blocks, balances, transaction lookups)
- a consensus node gRPC endpoint (transaction submission)

The adapter is a stateless request executor: it keeps nothing between calls
besides its connection configuration and open channels.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import grpc
import httpx

from coinservice.base import BaseNodeAdapter
from coinservice.errors import (
    CoinServiceError,
    NetworkError,
    NotFoundError,
    RpcError,
    ValidationError,
)
from coinservice.hbar.codec import TransactionId, TransactionResponse, deserialize_transaction
from coinservice.models import (
    AdapterType,
    Balance,
    Block,
    BroadcastResult,
    SignedTransaction,
    Transaction,
    TransferLeg,
    TxStatus,
)
from coinservice.safe_logger import safe_log
from coinservice.sanitize import sanitize_url

DEFAULT_REQUEST_TIMEOUT = 30.0

CRYPTO_TRANSFER_METHOD = "/proto.CryptoService/cryptoTransfer"
CREATE_ACCOUNT_METHOD = "/proto.CryptoService/createAccount"

_HEX_RE = re.compile(r"^(?:0x)?[0-9a-fA-F]+$")


def map_status(result: str | None) -> TxStatus:
    """Map a mirror node result code to a TxStatus."""
    if result == "SUCCESS":
        return TxStatus.FINISHED
    if result == "PENDING":
        return TxStatus.UNKNOWN
    return TxStatus.FAILED


def parse_height(value: Any) -> int:
    """Parse a chain height given as int, hex string or decimal string."""
    if isinstance(value, bool):
        raise ValueError(f"Height is not a number: {value!r}")
    if isinstance(value, int):
        height = value
    elif isinstance(value, str) and value.lower().startswith("0x"):
        height = int(value, 16)
    elif isinstance(value, str):
        height = int(value.strip(), 10)
    else:
        raise ValueError(f"Height is not a number: {value!r}")

    if height < 0:
        raise ValueError(f"Height is negative: {height}")
    return height


def decode_signed_payload(data: str) -> bytes:
    """Decode signed transaction bytes given as hex (optionally 0x-prefixed) or base64."""
    text = data.strip()
    if not text:
        raise ValueError("signed transaction data is empty")
    if _HEX_RE.match(text) and len(text.removeprefix("0x")) % 2 == 0:
        return bytes.fromhex(text.removeprefix("0x"))
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise ValueError("signed transaction data is neither hex nor base64") from e


def _consensus_seconds(timestamp: str | None) -> int | None:
    if not timestamp:
        return None
    return int(timestamp.split(".")[0])


def _upstream_reason(response: httpx.Response) -> str | None:
    """Extract a structured error message from an upstream error body."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error

    # Mirror node style: {"_status": {"messages": [{"message": "..."}]}}
    messages = (payload.get("_status") or {}).get("messages") or []
    if messages and isinstance(messages[0], dict) and messages[0].get("message"):
        return str(messages[0]["message"])
    return None


class HbarNodeAdapter(BaseNodeAdapter):
    """
    Node adapter for Hedera providers.

    Args:
        network: Ticker of the native asset (e.g. "HBAR")
        name: Provider label (e.g. "QuickNode")
        rpc_url: JSON-RPC relay URL, optional when the mirror serves height
        mirror_url: Mirror node base URL (without /api/v1)
        confirmation_limit: Blocks after which callers treat a tx as final.
            Stored for callers, not consulted by the adapter itself.
        headers: Extra headers sent with every request (usually auth)
        timeout: Per-request timeout in seconds
        grpc_endpoint: host:port of the consensus node that transactions are
            submitted to. It must serve the node account set in the body.
        grpc_tls: Use a TLS channel for grpc_endpoint
        client: Optional pre-built httpx client (tests inject a mock transport)
        channel: Optional pre-built gRPC channel
    """

    def __init__(
        self,
        network: str,
        name: str,
        rpc_url: str | None,
        mirror_url: str | None,
        confirmation_limit: int = 0,
        headers: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        grpc_endpoint: str | None = None,
        grpc_tls: bool = False,
        client: httpx.AsyncClient | None = None,
        channel: grpc.aio.Channel | None = None,
    ):
        self.type = AdapterType.NODE
        self.network = network
        self.name = name
        self.rpc_url = rpc_url.rstrip("/") if rpc_url else None
        self.mirror_url = mirror_url.rstrip("/") if mirror_url else None
        self.confirmation_limit = confirmation_limit
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.grpc_endpoint = grpc_endpoint
        self.grpc_tls = grpc_tls
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._channel = channel

    def _mirror(self, path: str) -> str:
        if not self.mirror_url:
            raise NetworkError(f"Mirror URL is not configured for provider {self.name}")
        return f"{self.mirror_url}/api/v1/{path}"

    def _grpc_channel(self) -> grpc.aio.Channel:
        if self._channel is None:
            if not self.grpc_endpoint:
                raise NetworkError(f"gRPC endpoint is not configured for provider {self.name}")
            if self.grpc_tls:
                self._channel = grpc.aio.secure_channel(
                    self.grpc_endpoint, grpc.ssl_channel_credentials()
                )
            else:
                self._channel = grpc.aio.insecure_channel(self.grpc_endpoint)
        return self._channel

    # ============ Transport ============

    async def request(
        self,
        method: str,
        url: str,
        data: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        method = method.upper()
        safe_url = sanitize_url(url)
        merged_headers = {"Content-Type": "application/json", **self.headers, **(headers or {})}

        try:
            if method == "GET" or data is None:
                response = await self.client.request(method, url, headers=merged_headers)
            else:
                response = await self.client.request(
                    method, url, headers=merged_headers, json=data
                )
            response.raise_for_status()

            if not response.content:
                raise NetworkError("empty response")
            try:
                payload = response.json()
            except ValueError as e:
                raise NetworkError("invalid JSON response") from e
            if payload is None:
                raise NetworkError("empty response")

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            reason = _upstream_reason(e.response) or f"HTTP {status}"
            await safe_log(
                "error",
                "HTTP request failed",
                {"method": method, "url": safe_url, "reason": reason, "status": status},
            )
            raise NetworkError(f"Request failed [{method} {safe_url}]: {reason}") from e

        except httpx.HTTPError as e:
            reason = str(e) or type(e).__name__
            await safe_log(
                "error",
                "HTTP request failed",
                {"method": method, "url": safe_url, "reason": reason, "status": "unknown"},
            )
            raise NetworkError(f"Request failed [{method} {safe_url}]: {reason}") from e

        except NetworkError as e:
            await safe_log(
                "error",
                "HTTP request failed",
                {
                    "method": method,
                    "url": safe_url,
                    "reason": str(e),
                    "status": response.status_code,
                },
            )
            raise NetworkError(f"Request failed [{method} {safe_url}]: {e}") from e

        await safe_log(
            "info",
            "HTTP request successful",
            {"method": method, "url": safe_url, "status": response.status_code},
        )
        return payload

    async def rpc_request(
        self, method: str, rpc_method: str, params: list[Any] | None = None
    ) -> Any:
        """Make a JSON-RPC call against the relay endpoint."""
        if not self.rpc_url:
            raise NetworkError(f"RPC URL is not configured for provider {self.name}")

        envelope = {"jsonrpc": "2.0", "method": rpc_method, "params": params or [], "id": 1}
        response = await self.request(method, self.rpc_url, envelope)

        if not isinstance(response, dict):
            raise RpcError(f"RPC error: malformed response to {rpc_method}")
        if response.get("error"):
            error = response["error"]
            message = error.get("message", "Unknown") if isinstance(error, dict) else str(error)
            raise RpcError(f"RPC error: {message or 'Unknown'}")
        if "result" not in response:
            raise RpcError(f"RPC error: no result for {rpc_method}")

        return response["result"]

    async def submit(self, method: str, tx_bytes: bytes) -> TransactionResponse:
        """Send serialized Transaction bytes to a CryptoService gRPC method."""
        endpoint = self.grpc_endpoint or "injected channel"
        # No serializers: the request and response travel as raw protobuf bytes
        call = self._grpc_channel().unary_unary(method)
        try:
            raw_response = await call(tx_bytes, timeout=self.timeout)
        except grpc.RpcError as e:
            reason = f"{e.code().name}: {e.details()}"
            await safe_log(
                "error",
                "gRPC call failed",
                {"method": method, "endpoint": endpoint, "reason": reason},
            )
            raise NetworkError(f"gRPC call failed [{method} {endpoint}]: {reason}") from e

        response = TransactionResponse.decode(raw_response or b"")
        await safe_log(
            "info",
            "gRPC call successful",
            {"method": method, "endpoint": endpoint, "precheck": response.status},
        )
        return response

    # ============ Chain state ============

    async def get_height(self) -> int:
        url = self.rpc_url or self.mirror_url or ""
        try:
            if self.rpc_url:
                result = await self.rpc_request("POST", "eth_blockNumber", [])
            else:
                payload = await self.request("GET", self._mirror("blocks?order=desc&limit=1"))
                blocks = (payload.get("blocks") or []) if isinstance(payload, dict) else []
                if not blocks:
                    raise NetworkError("no blocks returned by mirror node")
                result = blocks[0].get("number")

            height = parse_height(result)

        except Exception as e:
            await safe_log(
                "error",
                "Failed to fetch chain height",
                {"network": self.network, "reason": str(e), "url": url},
            )
            raise NetworkError(f"failed to fetch chain height: {e}") from e

        await safe_log("info", "Fetched chain height", {"height": height, "url": url})
        return height

    async def get_block(self, height: int) -> Block:
        current_height = await self.get_height()
        if height > current_height:
            message = (
                f"requested block {height} not yet available, current height is {current_height}"
            )
            await safe_log(
                "warn", message, {"height": height, "current_height": current_height}
            )
            raise ValidationError(message)

        await safe_log("info", f"Requesting block {height}", {"height": height})

        payload = await self.request("GET", self._mirror(f"blocks?block.number=eq:{height}"))
        blocks = payload.get("blocks") if isinstance(payload, dict) else None
        if not blocks:
            message = f"block {height} not found"
            await safe_log("error", message, {"height": height})
            raise NotFoundError(message)

        raw_block = blocks[0]
        block_height = int(raw_block.get("number", height))

        # The blocks endpoint lists no transfer participants, so from/to stay empty
        transactions = [
            Transaction(
                hash=raw_tx.get("transaction_id") or raw_tx.get("hash") or "",
                ticker=self.network,
                status=map_status(raw_tx.get("result")),
                height=block_height,
            )
            for raw_tx in raw_block.get("transactions") or []
        ]

        timestamp_from = (raw_block.get("timestamp") or {}).get("from") or "0"
        try:
            seconds = Decimal(timestamp_from)
        except InvalidOperation as e:
            raise NetworkError(f"block {height} has an invalid timestamp: {timestamp_from}") from e

        block = Block(
            height=block_height,
            timestamp=datetime.fromtimestamp(float(seconds), UTC),
            transactions=transactions,
            raw=raw_block,
        )

        await safe_log(
            "info",
            f"Block {height} fetched",
            {"height": height, "tx_count": len(transactions)},
        )
        return block

    async def balance_by_address(self, ticker: str, address: str) -> Balance:
        await safe_log(
            "info",
            f"Requesting balance for address {address}",
            {"ticker": ticker, "address": address},
        )

        try:
            payload = await self.request("GET", self._mirror(f"accounts/{address}"))
        except Exception as e:
            await safe_log(
                "error",
                f"Error requesting balance for address {address}",
                {"ticker": ticker, "error": str(e)},
            )
            raise

        balance_info = payload.get("balance") if isinstance(payload, dict) else None
        if not balance_info:
            message = f"balance for address {address} not found"
            await safe_log("error", message, {"address": address})
            raise NotFoundError(message)

        native = int(balance_info.get("balance") or 0)

        if ticker == self.network:
            balance = native
        else:
            tokens = balance_info.get("tokens") or []
            token = next((t for t in tokens if t.get("token_id") == ticker), None)
            balance = int(token.get("balance") or 0) if token else 0

        result = Balance(balance=str(balance), total_balance=str(native))
        await safe_log(
            "info",
            f"Balance for address {address} fetched",
            {"ticker": ticker, "address": address, "balance": result.balance},
        )
        return result

    # ============ Transactions ============

    async def tx_by_hash(self, ticker: str, hash: str) -> Transaction:
        await safe_log(
            "info", "Fetching transaction from mirror node", {"ticker": ticker, "hash": hash}
        )

        try:
            lookup_id = TransactionId.from_string(hash).to_mirror_id()
        except ValueError:
            lookup_id = hash

        try:
            payload = await self.request("GET", self._mirror(f"transactions/{lookup_id}"))

            raw_transactions = payload.get("transactions") if isinstance(payload, dict) else None
            if not raw_transactions:
                raise NotFoundError(f"transaction {hash} not found")

            raw_tx = raw_transactions[0]
            from_legs: list[TransferLeg] = []
            to_legs: list[TransferLeg] = []
            try:
                for transfer in raw_tx.get("transfers") or []:
                    amount = int(transfer["amount"])
                    if amount < 0:
                        from_legs.append(TransferLeg(address=transfer["account"], value=-amount))
                    elif amount > 0:
                        to_legs.append(TransferLeg(address=transfer["account"], value=amount))
                height = _consensus_seconds(raw_tx.get("consensus_timestamp"))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise NetworkError(f"malformed transaction {hash} from mirror node: {e!r}") from e

        except Exception as e:
            await safe_log(
                "error", "tx_by_hash failed", {"ticker": ticker, "hash": hash, "reason": str(e)}
            )
            raise

        status = map_status(raw_tx.get("result"))
        transaction = Transaction(
            hash=hash,
            ticker=ticker,
            from_=from_legs,
            to=to_legs,
            status=status,
            height=height,
        )

        await safe_log(
            "info",
            "Transaction parsed successfully",
            {"ticker": ticker, "hash": hash, "status": status.value},
        )
        return transaction

    async def tx_broadcast(
        self, ticker: str, params: SignedTransaction | Mapping[str, Any]
    ) -> BroadcastResult:
        try:
            signed = (
                params
                if isinstance(params, SignedTransaction)
                else SignedTransaction.model_validate(params)
            )
            tx_bytes = decode_signed_payload(signed.signed_data)
        except Exception as e:
            reason = f"invalid signed transaction: {e}"
            await safe_log("error", "Broadcast rejected", {"ticker": ticker, "reason": reason})
            return BroadcastResult(error=reason)

        try:
            tx = deserialize_transaction(tx_bytes)
        except CoinServiceError as e:
            reason = f"invalid signed transaction: {e}"
            await safe_log("error", "Broadcast rejected", {"ticker": ticker, "reason": reason})
            return BroadcastResult(error=reason)

        tx_hash = str(tx.transaction_id)
        method = (
            CREATE_ACCOUNT_METHOD if tx.body.create_account is not None else CRYPTO_TRANSFER_METHOD
        )

        try:
            response = await self.submit(method, tx_bytes)
        except Exception as e:
            await safe_log(
                "error",
                "Broadcast failed",
                {"ticker": ticker, "hash": tx_hash, "reason": str(e)},
            )
            return BroadcastResult(error=str(e))

        if not response.ok:
            reason = f"precheck failed: {response.status}"
            await safe_log(
                "error", "Broadcast rejected", {"ticker": ticker, "hash": tx_hash, "reason": reason}
            )
            return BroadcastResult(error=reason)

        await safe_log("info", "Transaction broadcast", {"ticker": ticker, "hash": tx_hash})
        return BroadcastResult(hash=tx_hash)

    async def account_id_by_transaction(
        self, transaction_id: str, attempts: int = 10, interval: float = 2.0
    ) -> str:
        """
        Wait for an account-creation transaction to reach consensus and
        return the new account id reported by the mirror node.
        """
        lookup_id = TransactionId.from_string(transaction_id).to_mirror_id()
        url = self._mirror(f"transactions/{lookup_id}")

        for attempt in range(attempts):
            try:
                payload = await self.request("GET", url)
            except NetworkError as e:
                # Mirror nodes lag consensus by a few seconds and answer 404 meanwhile
                await safe_log(
                    "info",
                    "Receipt not available yet",
                    {"transaction_id": transaction_id, "attempt": attempt + 1, "reason": str(e)},
                )
            else:
                raw_transactions = (
                    payload.get("transactions") if isinstance(payload, dict) else None
                )
                if raw_transactions:
                    raw_tx = raw_transactions[0]
                    result = raw_tx.get("result")
                    if result == "SUCCESS" and raw_tx.get("entity_id"):
                        return str(raw_tx["entity_id"])
                    if result not in (None, "SUCCESS", "PENDING"):
                        raise NetworkError(
                            f"transaction {transaction_id} failed with status {result}"
                        )

            if attempt < attempts - 1:
                await asyncio.sleep(interval)

        message = f"no receipt for transaction {transaction_id} after {attempts} attempts"
        await safe_log("error", message, {"transaction_id": transaction_id})
        raise NotFoundError(message)

    async def close(self) -> None:
        await self.client.aclose()
        if self._channel is not None:
            await self._channel.close()
            self._channel = None

    def __repr__(self) -> str:
        return f"HbarNodeAdapter(name={self.name!r}, network={self.network!r})"
