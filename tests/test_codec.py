"""
Tests for the Hedera transaction wire format.
"""

from dataclasses import replace

import pytest

from coinservice.hbar.codec import (
    AccountAmount,
    AccountId,
    CryptoCreateAccount,
    SignaturePair,
    TransactionBody,
    TransactionCodecError,
    TransactionId,
    TransactionResponse,
    bytes_field,
    deserialize_transaction,
    encode_varint,
    freeze,
    read_varint,
    sign_transaction,
    to_signed64,
    varint_field,
    verify_signatures,
    zigzag_decode,
    zigzag_encode,
)
from coinservice.hbar.keys import HederaPrivateKey


def make_body(**overrides) -> TransactionBody:
    fields = {
        "transaction_id": TransactionId(AccountId(0, 0, 1001), 1731022000, 1),
        "node_account_id": AccountId(0, 0, 3),
        "transaction_fee": 200_000_000,
        "valid_duration": 120,
        "memo": "",
        "transfers": (
            AccountAmount(AccountId(0, 0, 1001), -5000),
            AccountAmount(AccountId(0, 0, 2002), 5000),
        ),
    }
    fields.update(overrides)
    return TransactionBody(**fields)


class TestVarint:
    def test_encode_single_byte(self):
        assert encode_varint(1) == b"\x01"
        assert encode_varint(0) == b"\x00"

    def test_encode_multi_byte(self):
        assert encode_varint(300) == b"\xac\x02"

    def test_encode_negative_uses_ten_bytes(self):
        result = encode_varint(-1)
        assert result == b"\xff" * 9 + b"\x01"

    def test_read_back(self):
        value, offset = read_varint(b"\xac\x02\x00", 0)
        assert value == 300
        assert offset == 2

    def test_read_truncated(self):
        with pytest.raises(TransactionCodecError, match="Truncated varint"):
            read_varint(b"\xac", 0)

    def test_to_signed64(self):
        assert to_signed64((1 << 64) - 1) == -1
        assert to_signed64(42) == 42

    @pytest.mark.parametrize("value", [1 << 64, -(1 << 63) - 1])
    def test_encode_rejects_wider_than_64_bits(self, value):
        with pytest.raises(TransactionCodecError, match="64 bits"):
            encode_varint(value)


class TestZigzag:
    @pytest.mark.parametrize(
        "value,encoded",
        [(0, 0), (-1, 1), (1, 2), (-2, 3), (2, 4), (-5000, 9999)],
    )
    def test_known_values(self, value, encoded):
        assert zigzag_encode(value) == encoded
        assert zigzag_decode(encoded) == value

    @pytest.mark.parametrize("value", [10**19, -(10**19), 1 << 63])
    def test_rejects_out_of_range(self, value):
        with pytest.raises(TransactionCodecError, match="sint64"):
            zigzag_encode(value)

    def test_amount_overflow_is_not_encoded(self):
        with pytest.raises(TransactionCodecError):
            AccountAmount(AccountId(0, 0, 1001), 10**19).encode()


class TestFieldEncoding:
    def test_zero_scalar_omitted(self):
        assert varint_field(3, 0) == b""

    def test_scalar_field(self):
        assert varint_field(3, 3) == b"\x18\x03"

    def test_empty_bytes_omitted_unless_forced(self):
        assert bytes_field(1, b"") == b""
        assert bytes_field(1, b"", always=True) == b"\x0a\x00"


class TestAccountId:
    def test_parse(self):
        assert AccountId.from_string("0.0.1001") == AccountId(0, 0, 1001)

    def test_parse_with_checksum(self):
        assert AccountId.from_string("0.0.1001-abcde") == AccountId(0, 0, 1001)

    def test_str(self):
        assert str(AccountId(1, 2, 3)) == "1.2.3"

    @pytest.mark.parametrize("value", ["", "1.2", "a.b.c", "0.0.1001-ABCDE", "0.0.-1", "0x123"])
    def test_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            AccountId.from_string(value)

    def test_rejects_non_string(self):
        with pytest.raises(ValueError):
            AccountId.from_string(1001)  # type: ignore[arg-type]

    def test_encoding(self):
        # shard and realm are zero and omitted
        assert AccountId(0, 0, 3).encode() == b"\x18\x03"
        assert AccountId.decode(b"\x18\x03") == AccountId(0, 0, 3)


class TestTransactionId:
    def test_str_pads_nanos(self):
        tx_id = TransactionId(AccountId(0, 0, 1001), 1731022000, 1)
        assert str(tx_id) == "0.0.1001@1731022000.000000001"

    def test_mirror_form(self):
        tx_id = TransactionId.from_string("0.0.1001@1731022000.000000001")
        assert tx_id.to_mirror_id() == "0.0.1001-1731022000-000000001"

    def test_parse_mirror_form(self):
        tx_id = TransactionId.from_string("0.0.1001-1699611111-000000001")
        assert tx_id == TransactionId(AccountId(0, 0, 1001), 1699611111, 1)

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            TransactionId.from_string("0xdeadbeef")

    def test_generate_backdates_valid_start(self):
        tx_id = TransactionId.generate(AccountId(0, 0, 1001), now_ns=1_700_000_010_000_000_123)
        assert tx_id.valid_start_seconds == 1_700_000_005
        assert tx_id.valid_start_nanos == 123

    def test_encode_decode(self):
        tx_id = TransactionId(AccountId(0, 0, 1001), 1731022000, 1)
        assert TransactionId.decode(tx_id.encode()) == tx_id

    def test_decode_without_payer(self):
        with pytest.raises(TransactionCodecError, match="no payer"):
            TransactionId.decode(b"")


class TestTransactionBody:
    def test_transfer_body_decodes_to_same_fields(self):
        body = make_body(memo="payout")
        decoded = TransactionBody.decode(body.encode())
        assert decoded == body

    def test_valid_duration_encoding(self):
        encoded = make_body(transfers=()).encode()
        assert b"\x22\x02\x08\x78" in encoded

    def test_create_account_body(self):
        key = HederaPrivateKey(bytes.fromhex("22" * 32)).public_key.raw
        body = make_body(
            transfers=(),
            create_account=CryptoCreateAccount(
                key=key, initial_balance=100_000_000, auto_renew_period=7_776_000
            ),
        )
        decoded = TransactionBody.decode(body.encode())
        assert decoded.create_account == body.create_account
        assert decoded.transfers == ()

    def test_missing_transaction_id(self):
        with pytest.raises(TransactionCodecError, match="no transaction id"):
            TransactionBody.decode(varint_field(3, 100))

    def test_invalid_memo(self):
        data = make_body().encode() + bytes_field(6, b"\xff\xfe")
        with pytest.raises(TransactionCodecError, match="UTF-8"):
            TransactionBody.decode(data)


class TestTransactionEnvelope:
    def test_frozen_transaction_is_unsigned(self):
        tx = freeze(make_body())
        decoded = deserialize_transaction(tx.to_bytes())
        assert decoded.body_bytes == tx.body_bytes
        assert decoded.signatures == ()
        assert str(decoded.transaction_id) == "0.0.1001@1731022000.000000001"

    def test_legacy_layout(self):
        """Deprecated top-level bodyBytes (4) and sigMap (3) are still read."""
        body_bytes = make_body().encode()
        pair = SignaturePair(b"\x01" * 32, b"\x02" * 64)
        sig_map = bytes_field(1, pair.encode(), always=True)
        data = bytes_field(4, body_bytes, always=True) + bytes_field(3, sig_map, always=True)

        tx = deserialize_transaction(data)
        assert tx.body_bytes == body_bytes
        assert tx.signatures == (pair,)

    def test_empty_input(self):
        with pytest.raises(TransactionCodecError, match="no body bytes"):
            deserialize_transaction(b"")

    def test_truncated_input(self):
        with pytest.raises(TransactionCodecError, match="Truncated"):
            deserialize_transaction(b"\x2a\x05ab")

    def test_unsupported_wire_type(self):
        with pytest.raises(TransactionCodecError, match="wire type"):
            deserialize_transaction(b"\x2b")


class TestSigning:
    def test_sign_and_verify(self):
        key = HederaPrivateKey(bytes.fromhex("11" * 32))
        signed = sign_transaction(freeze(make_body()), key)

        assert len(signed.signatures) == 1
        assert signed.signatures[0].pub_key_prefix == key.public_key.raw
        assert verify_signatures(signed)

        decoded = deserialize_transaction(signed.to_bytes())
        assert verify_signatures(decoded)

    def test_signing_twice_replaces_signature(self):
        key = HederaPrivateKey(bytes.fromhex("11" * 32))
        tx = sign_transaction(sign_transaction(freeze(make_body()), key), key)
        assert len(tx.signatures) == 1

    def test_multiple_signers(self):
        first = HederaPrivateKey(bytes.fromhex("11" * 32))
        second = HederaPrivateKey(bytes.fromhex("22" * 32))
        tx = sign_transaction(sign_transaction(freeze(make_body()), first), second)
        assert len(tx.signatures) == 2
        assert verify_signatures(tx)

    def test_signature_does_not_change_body(self):
        key = HederaPrivateKey(bytes.fromhex("11" * 32))
        unsigned = freeze(make_body())
        signed = sign_transaction(unsigned, key)
        assert signed.body_bytes == unsigned.body_bytes

    def test_tampered_signature_fails(self):
        key = HederaPrivateKey(bytes.fromhex("11" * 32))
        signed = sign_transaction(freeze(make_body()), key)
        pair = signed.signatures[0]
        tampered = replace(signed, signatures=(SignaturePair(pair.pub_key_prefix, bytes(64)),))
        assert not verify_signatures(tampered)

    def test_unsigned_does_not_verify(self):
        assert not verify_signatures(freeze(make_body()))


class TestTransactionResponse:
    def test_ok(self):
        response = TransactionResponse.decode(b"")
        assert response.ok
        assert response.status == "OK"

    def test_precheck_failure(self):
        response = TransactionResponse.decode(varint_field(1, 7) + varint_field(2, 84))
        assert not response.ok
        assert response.status == "INVALID_SIGNATURE"
        assert response.cost == 84

    def test_unknown_code(self):
        assert TransactionResponse(321).status == "PRECHECK_CODE_321"

    def test_encode(self):
        assert TransactionResponse.decode(TransactionResponse(10, 5).encode()) == (
            TransactionResponse(10, 5)
        )
