"""
Hedera (HBAR) coin service.

Address lifecycle (create/validate) and transaction lifecycle (build/sign)
for the Hedera network. All network I/O goes through the adapter at index 0
of ``nodes``.
"""

from __future__ import annotations

import traceback
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from coinservice.base import BaseCoinService, BaseNodeAdapter
from coinservice.config import Settings, get_settings
from coinservice.errors import ConfigurationError, NetworkError, ValidationError
from coinservice.hbar.adapter import HbarNodeAdapter
from coinservice.hbar.codec import (
    AccountAmount,
    AccountId,
    CryptoCreateAccount,
    TransactionBody,
    TransactionId,
    deserialize_transaction,
    freeze,
    sign_transaction,
)
from coinservice.hbar.keys import (
    HederaPrivateKey,
    HederaPublicKey,
    KeyFormatError,
    generate_keypair,
)
from coinservice.models import (
    AddressCreateSkipped,
    AddressKeyMaterial,
    AddressKeyPair,
    NodeOptions,
    SignedTransaction,
    TransactionParams,
    TransferLeg,
)
from coinservice.safe_logger import safe_log

# Validation reasons, in check order
ADDRESS_MISSING = "address missing"
ADDRESS_INVALID = "invalid address format"
PRIVATE_KEY_MISSING = "private key missing"
PRIVATE_KEY_INVALID = "invalid private key format"
PUBLIC_KEY_MISSING = "public key missing"
PUBLIC_KEY_INVALID = "invalid public key format"
KEY_MISMATCH = "public key does not match private key"

# AccountAmount.amount is a sint64
MAX_TINYBARS = (1 << 63) - 1


class HbarCoinService(BaseCoinService):
    """
    Coin service for Hedera.

    Args:
        settings: Operator credentials, conversion factor and transaction
            defaults. Loaded from the environment when omitted.
    """

    network = "HBAR"
    node_adapter_cls: type[HbarNodeAdapter] = HbarNodeAdapter

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.nodes: list[HbarNodeAdapter] = []
        self.block_books: list[BaseNodeAdapter] = []
        self._retired: list[HbarNodeAdapter] = []

    # ============ Nodes ============

    def init_nodes(self, nodes: Mapping[str, NodeOptions | Mapping[str, Any]]) -> None:
        adapters: list[HbarNodeAdapter] = []
        for name, raw_options in nodes.items():
            options = (
                raw_options
                if isinstance(raw_options, NodeOptions)
                else NodeOptions.model_validate(raw_options)
            )
            adapters.append(
                self.node_adapter_cls(
                    network=self.network,
                    name=name,
                    rpc_url=options.rpc_url,
                    mirror_url=options.mirror_url,
                    confirmation_limit=options.confirmation_limit,
                    headers=options.headers,
                    timeout=options.timeout or self.settings.request_timeout,
                    grpc_endpoint=options.grpc_endpoint or self.settings.node_grpc_endpoint,
                    grpc_tls=options.grpc_tls,
                )
            )
        # Swap in the complete list; readers never observe a partial one.
        # Replaced adapters are closed by close()
        self._retired.extend(self.nodes)
        self.nodes = adapters

    async def close(self) -> None:
        retired, self._retired = self._retired, []
        for adapter in retired:
            await adapter.close()
        await super().close()

    def _node(self) -> HbarNodeAdapter:
        if not self.nodes:
            raise ConfigurationError("No nodes initialized, call init_nodes() first")
        return self.nodes[0]

    def _operator(self) -> tuple[AccountId, HederaPrivateKey]:
        operator_id = self.settings.operator_id
        operator_key = self.settings.operator_key
        if not operator_id or operator_key is None or not operator_key.get_secret_value():
            raise ConfigurationError("Operator account id and private key must be configured")
        try:
            return (
                AccountId.from_string(operator_id),
                HederaPrivateKey.from_string(operator_key.get_secret_value()),
            )
        except (ValueError, KeyFormatError) as e:
            raise ConfigurationError(f"Operator credentials are invalid: {e}") from e

    def _payer_account(self, senders: list[TransferLeg]) -> AccountId:
        """Operator pays when configured, otherwise the first sender."""
        operator_id = self.settings.operator_id
        if not operator_id:
            return AccountId.from_string(senders[0].address)
        try:
            return AccountId.from_string(operator_id)
        except ValueError as e:
            raise ConfigurationError(f"Operator account id is invalid: {e}") from e

    def _node_account(self) -> AccountId:
        try:
            return AccountId.from_string(self.settings.node_account_id)
        except ValueError as e:
            raise ConfigurationError(f"Node account id is invalid: {e}") from e

    def to_tinybars(self, value: str | Decimal | None) -> int | None:
        """
        Convert a human-readable HBAR amount into tinybars.

        Returns None when the value is not a finite number or is too large
        to be represented exactly.
        """
        if value is None:
            return None
        try:
            amount = Decimal(str(value).strip())
            if not amount.is_finite():
                return None
            scaled = amount * self.settings.tinybar_conversion_factor
            return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))
        except InvalidOperation:
            return None

    # ============ Addresses ============

    async def address_create(self, ticker: str) -> AddressKeyMaterial | AddressCreateSkipped:
        """
        Create a new Hedera account.

        Hedera accounts exist only once registered on-chain, so this submits
        an account-creation transaction paid by the configured operator.
        Returns AddressCreateSkipped when the operator has no funds.
        """
        try:
            operator_id, operator_key = self._operator()
            node = self._node()

            operator_balance = await node.balance_by_address(self.network, str(operator_id))
            if int(operator_balance.total_balance) <= 0:
                await safe_log(
                    "warn",
                    "Not enough HBAR to pay for account creation",
                    {"ticker": ticker, "operator_id": str(operator_id)},
                )
                return AddressCreateSkipped(
                    reason="insufficient operator balance", operator_id=str(operator_id)
                )

            key_bytes = generate_keypair()
            private_key = HederaPrivateKey(key_bytes.private_key_raw)
            public_key = HederaPublicKey(key_bytes.public_key_raw)

            initial_balance = self.to_tinybars(self.settings.initial_account_balance) or 0
            body = TransactionBody(
                transaction_id=TransactionId.generate(operator_id),
                node_account_id=self._node_account(),
                transaction_fee=self.settings.max_transaction_fee,
                valid_duration=self.settings.transaction_valid_duration,
                memo=self.settings.transaction_memo,
                create_account=CryptoCreateAccount(
                    key=public_key.raw,
                    initial_balance=initial_balance,
                    auto_renew_period=self.settings.auto_renew_period,
                ),
            )
            signed = sign_transaction(freeze(body), operator_key)
            transaction_id = str(signed.transaction_id)

            result = await node.tx_broadcast(
                ticker,
                SignedTransaction(signed_data=signed.to_bytes().hex(), tx_hash=transaction_id),
            )
            if result.error is not None:
                raise NetworkError(f"Account creation was not submitted: {result.error}")

            account_id = await node.account_id_by_transaction(
                transaction_id,
                attempts=self.settings.receipt_poll_attempts,
                interval=self.settings.receipt_poll_interval,
            )
            if not account_id:
                raise NetworkError("Network returned no account id")

        except Exception as e:
            await safe_log("error", "Account creation failed", {"ticker": ticker, "error": str(e)})
            raise

        await safe_log(
            "info",
            "Created Hedera account",
            {"ticker": ticker, "account_id": account_id, "public_key": public_key.to_string()},
        )
        return AddressKeyMaterial(
            address=account_id,
            private_key=private_key.to_string(),
            public_key=public_key.to_string(),
        )

    async def address_validate(
        self, ticker: str, address: str, private_key: str, public_key: str
    ) -> bool | str:
        reason = self._validation_failure(address, private_key, public_key)

        if reason is None:
            await safe_log(
                "info", "Address validation successful", {"ticker": ticker, "address": address}
            )
            return True

        await safe_log(
            "error",
            "Address validation failed",
            {"ticker": ticker, "address": address, "reason": reason},
        )
        return reason

    def _validation_failure(self, address: Any, private_key: Any, public_key: Any) -> str | None:
        if not address:
            return ADDRESS_MISSING
        try:
            AccountId.from_string(address)
        except (ValueError, TypeError, AttributeError):
            return ADDRESS_INVALID

        if not private_key:
            return PRIVATE_KEY_MISSING
        try:
            priv = HederaPrivateKey.from_string(private_key)
        except (KeyFormatError, ValueError, TypeError, AttributeError):
            return PRIVATE_KEY_INVALID

        if not public_key:
            return PUBLIC_KEY_MISSING
        try:
            pub = HederaPublicKey.from_string(public_key)
        except (KeyFormatError, ValueError, TypeError, AttributeError):
            return PUBLIC_KEY_INVALID

        if priv.public_key != pub:
            return KEY_MISMATCH
        return None

    # ============ Transactions ============

    async def _leg_amount(self, ticker: str, leg: TransferLeg, kind: str) -> int:
        amount = self.to_tinybars(leg.value)
        if amount is None or not 0 < amount <= MAX_TINYBARS:
            shown = amount if amount is not None else leg.value
            await safe_log(
                "error",
                f"Invalid {kind} amount",
                {"ticker": ticker, "address": leg.address, "amount": shown},
            )
            raise ValidationError(f"invalid {kind} amount for address {leg.address}: {shown}")
        return amount

    async def tx_build(self, ticker: str, params: TransactionParams) -> TransactionParams:
        await safe_log("info", "Building transaction", {"ticker": ticker})

        senders = params.normalized_from()
        recipients = params.normalized_to()

        if not senders:
            await safe_log("error", "Validation failed: empty sender list", {"ticker": ticker})
            raise ValidationError("missing sender list")
        if not recipients:
            await safe_log("error", "Validation failed: empty recipient list", {"ticker": ticker})
            raise ValidationError("missing recipient list")

        # Same account appearing twice is merged into one transfer entry
        totals: dict[AccountId, int] = {}
        for leg, sign, kind in [
            *((leg, -1, "debit") for leg in senders),
            *((leg, 1, "credit") for leg in recipients),
        ]:
            amount = await self._leg_amount(ticker, leg, kind)
            try:
                account_id = AccountId.from_string(leg.address)
            except ValueError as e:
                await safe_log(
                    "error",
                    "Invalid account id in transfer",
                    {"ticker": ticker, "address": leg.address},
                )
                raise ValidationError(f"invalid address {leg.address}") from e
            totals[account_id] = totals.get(account_id, 0) + sign * amount

        for account_id, total in totals.items():
            if abs(total) > MAX_TINYBARS:
                await safe_log(
                    "error",
                    "Transfer total out of range",
                    {"ticker": ticker, "address": str(account_id), "amount": total},
                )
                raise ValidationError(f"transfer total for address {account_id} is out of range")

        await safe_log(
            "info",
            "Transfers validated",
            {"ticker": ticker, "senders": len(senders), "recipients": len(recipients)},
        )

        body = TransactionBody(
            transaction_id=TransactionId.generate(self._payer_account(senders)),
            node_account_id=self._node_account(),
            transaction_fee=self.settings.max_transaction_fee,
            valid_duration=self.settings.transaction_valid_duration,
            memo=self.settings.transaction_memo,
            transfers=tuple(AccountAmount(acc, amount) for acc, amount in totals.items()),
        )
        frozen = freeze(body)

        await safe_log(
            "info",
            "Transaction built and frozen",
            {"ticker": ticker, "transaction_id": str(frozen.transaction_id)},
        )

        return params.model_copy(
            update={
                "from_": senders,
                "to": recipients,
                "spent": params.spent or {},
                "utxo": params.utxo or {},
                "unsigned_tx": frozen.to_bytes().hex(),
            }
        )

    async def tx_sign(
        self, ticker: str, private_keys: AddressKeyPair, params: TransactionParams
    ) -> SignedTransaction:
        try:
            await safe_log("info", "Signing transaction", {"ticker": ticker})

            if not params.unsigned_tx:
                if not self.settings.sign_rebuilds:
                    raise ValidationError("missing unsigned transaction data")
                params = await self.tx_build(ticker, params)

            senders = params.normalized_from()
            if not senders:
                raise ValidationError("missing sender list")

            signer = senders[0].address
            key_string = private_keys.get(signer)
            if not key_string:
                raise ValidationError(f"missing private key for signer {signer}")

            private_key = HederaPrivateKey.from_string(key_string)

            try:
                unsigned_bytes = bytes.fromhex(params.unsigned_tx)
            except ValueError as e:
                raise ValidationError("unsigned transaction data is not valid hex") from e

            tx = deserialize_transaction(unsigned_bytes)

            await safe_log("info", "Signing with sender key", {"ticker": ticker, "signer": signer})

            signed = sign_transaction(tx, private_key)
            signed_hex = signed.to_bytes().hex()

            await safe_log(
                "info",
                "Transaction signed",
                {"ticker": ticker, "signed_length": len(signed_hex)},
            )
            return SignedTransaction(signed_data=signed_hex, tx_hash=str(signed.transaction_id))

        except Exception as e:
            await safe_log(
                "error",
                "Transaction signing failed",
                {"ticker": ticker, "error": str(e), "stack": traceback.format_exc()},
            )
            raise
