"""
Tests for shared data models.
"""

import pydantic
import pytest

from coinservice.models import (
    AddressKeyMaterial,
    BroadcastResult,
    NodeOptions,
    SignedTransaction,
    Transaction,
    TransactionParams,
    TransferLeg,
    TxStatus,
)


class TestTransferLeg:
    def test_numeric_value_becomes_string(self):
        assert TransferLeg(address="0.0.1001", value=5).value == "5"
        assert TransferLeg(address="0.0.1001", value=0.5).value == "0.5"

    def test_value_optional(self):
        assert TransferLeg(address="0.0.1001").value is None


class TestTransactionParams:
    def test_from_alias(self):
        params = TransactionParams.model_validate(
            {
                "from": {"address": "0.0.1001", "value": "1"},
                "to": [{"address": "0.0.2002", "value": "1"}],
            }
        )
        assert params.normalized_from() == [TransferLeg(address="0.0.1001", value="1")]
        assert params.normalized_to() == [TransferLeg(address="0.0.2002", value="1")]

    def test_populate_by_name(self):
        params = TransactionParams(
            from_=[TransferLeg(address="0.0.1001", value="1")],
            to=TransferLeg(address="0.0.2002", value="1"),
        )
        assert len(params.normalized_from()) == 1
        assert params.unsigned_tx == ""
        assert params.spent is None
        assert params.utxo is None

    def test_dump_uses_from(self):
        params = TransactionParams(
            from_=TransferLeg(address="0.0.1001"), to=TransferLeg(address="0.0.2002")
        )
        assert "from" in params.model_dump(by_alias=True)

    def test_normalized_is_a_copy(self):
        legs = [TransferLeg(address="0.0.1001", value="1")]
        params = TransactionParams(from_=legs, to=TransferLeg(address="0.0.2002"))
        params.normalized_from().append(TransferLeg(address="0.0.3003"))
        assert len(params.from_) == 1


class TestAddressKeyMaterial:
    def test_repr_hides_private_key(self):
        material = AddressKeyMaterial(
            address="0.0.5005", private_key="302e-secret", public_key="302a-public"
        )
        assert "302e-secret" not in repr(material)
        assert "302a-public" in repr(material)

    def test_frozen(self):
        material = AddressKeyMaterial(address="0.0.5005", private_key="a", public_key="b")
        with pytest.raises(pydantic.ValidationError):
            material.address = "0.0.1"


class TestTransaction:
    def test_keeps_extra_fields(self):
        tx = Transaction(
            hash="0.0.1001@1731022000.000000001",
            ticker="HBAR",
            status=TxStatus.FINISHED,
            memo="payout",
        )
        assert tx.model_dump()["memo"] == "payout"

    def test_defaults(self):
        tx = Transaction(hash="h", ticker="HBAR", status=TxStatus.UNKNOWN)
        assert tx.from_ == []
        assert tx.to == []
        assert tx.height is None


class TestBroadcastResult:
    def test_ok(self):
        assert BroadcastResult(hash="0.0.1001@1.000000001").ok
        assert not BroadcastResult(error="rejected").ok
        assert not BroadcastResult().ok


class TestSignedTransaction:
    def test_hash_optional(self):
        assert SignedTransaction(signed_data="0a").tx_hash is None


class TestNodeOptions:
    def test_defaults(self):
        options = NodeOptions()
        assert options.headers == {}
        assert options.confirmation_limit == 0
        assert options.timeout is None

    def test_rejects_negative_confirmation_limit(self):
        with pytest.raises(pydantic.ValidationError):
            NodeOptions(confirmation_limit=-1)

    def test_allows_provider_specific_fields(self):
        options = NodeOptions.model_validate({"mirror_url": "https://m", "region": "eu"})
        assert options.model_extra == {"region": "eu"}
