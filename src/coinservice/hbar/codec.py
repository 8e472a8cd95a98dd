"""
Hedera transaction wire format.

Encodes and decodes the subset of the Hedera protobuf messages needed to
build, sign and submit crypto transfers and account creations:

    Transaction        { 5: signedTransactionBytes }
    SignedTransaction  { 1: bodyBytes, 2: sigMap }
    SignatureMap       { 1: repeated SignaturePair }
    SignaturePair      { 1: pubKeyPrefix, 3: ed25519 }
    TransactionBody    { 1: transactionID, 2: nodeAccountID, 3: transactionFee,
                         4: transactionValidDuration, 6: memo,
                         11: cryptoCreateAccount, 14: cryptoTransfer }
    TransactionResponse { 1: nodeTransactionPrecheckCode, 2: cost }

Signatures cover ``bodyBytes`` exactly as received, so a decoded transaction
keeps its original body bytes and never re-encodes them.
"""

from __future__ import annotations

import re
import time
from collections.abc import Iterator
from dataclasses import dataclass, field, replace

from coinservice.errors import ValidationError
from coinservice.hbar.keys import HederaPrivateKey, HederaPublicKey, KeyFormatError

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LEN = 2
WIRE_FIXED32 = 5

UINT64_MASK = (1 << 64) - 1

# Valid start is backdated so that nodes with a slightly late clock accept it
VALID_START_BACKDATE_NS = 5_000_000_000

_ACCOUNT_ID_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)(?:-([a-z]{5}))?$")
_TX_ID_RE = re.compile(r"^(\d+\.\d+\.\d+)(?:@|-)(\d+)(?:\.|-)(\d+)$")


class TransactionCodecError(ValidationError):
    pass


# ============ Primitive encoding ============


def encode_varint(value: int) -> bytes:
    """Encode a 64-bit varint. Negative values use two's complement."""
    if value < -(1 << 63) or value > UINT64_MASK:
        raise TransactionCodecError(f"Value {value} does not fit in 64 bits")
    if value < 0:
        value &= UINT64_MASK
    out = bytearray()
    while value > 0x7F:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise TransactionCodecError("Truncated varint")
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, offset
        shift += 7
        if shift >= 70:
            raise TransactionCodecError("Varint too long")


def zigzag_encode(value: int) -> int:
    if not -(1 << 63) <= value < 1 << 63:
        raise TransactionCodecError(f"Value {value} does not fit in sint64")
    return value << 1 if value >= 0 else ((-value) << 1) - 1


def zigzag_decode(value: int) -> int:
    return (value >> 1) ^ -(value & 1)


def to_signed64(value: int) -> int:
    return value - (1 << 64) if value >= 1 << 63 else value


def encode_tag(field_number: int, wire_type: int) -> bytes:
    return encode_varint((field_number << 3) | wire_type)


def varint_field(field_number: int, value: int) -> bytes:
    """Encode a scalar field. Zero is the proto3 default and is omitted."""
    if value == 0:
        return b""
    return encode_tag(field_number, WIRE_VARINT) + encode_varint(value)


def bytes_field(field_number: int, value: bytes, always: bool = False) -> bytes:
    if not value and not always:
        return b""
    return encode_tag(field_number, WIRE_LEN) + encode_varint(len(value)) + value


def iter_fields(data: bytes) -> Iterator[tuple[int, int, int | bytes]]:
    """Yield (field_number, wire_type, value) for each field of a message."""
    offset = 0
    while offset < len(data):
        tag, offset = read_varint(data, offset)
        field_number, wire_type = tag >> 3, tag & 0x07
        if field_number == 0:
            raise TransactionCodecError("Invalid field number 0")

        if wire_type == WIRE_VARINT:
            value, offset = read_varint(data, offset)
            yield field_number, wire_type, value
        elif wire_type == WIRE_LEN:
            length, offset = read_varint(data, offset)
            if offset + length > len(data):
                raise TransactionCodecError("Truncated length-delimited field")
            yield field_number, wire_type, data[offset : offset + length]
            offset += length
        elif wire_type == WIRE_FIXED64:
            if offset + 8 > len(data):
                raise TransactionCodecError("Truncated fixed64 field")
            yield field_number, wire_type, int.from_bytes(data[offset : offset + 8], "little")
            offset += 8
        elif wire_type == WIRE_FIXED32:
            if offset + 4 > len(data):
                raise TransactionCodecError("Truncated fixed32 field")
            yield field_number, wire_type, int.from_bytes(data[offset : offset + 4], "little")
            offset += 4
        else:
            raise TransactionCodecError(f"Unsupported wire type {wire_type}")


def _expect_bytes(value: int | bytes, name: str) -> bytes:
    if not isinstance(value, bytes):
        raise TransactionCodecError(f"Field {name} must be length-delimited")
    return value


def _expect_int(value: int | bytes, name: str) -> int:
    if not isinstance(value, int):
        raise TransactionCodecError(f"Field {name} must be a varint")
    return value


# ============ Identifiers ============


@dataclass(frozen=True)
class AccountId:
    shard: int
    realm: int
    num: int

    @classmethod
    def from_string(cls, value: str) -> AccountId:
        """Parse ``shard.realm.num`` with an optional ``-checksum`` suffix."""
        match = _ACCOUNT_ID_RE.match(value.strip()) if isinstance(value, str) else None
        if not match:
            raise ValueError(f"Invalid account id: {value!r}")
        shard, realm, num = (int(part) for part in match.group(1, 2, 3))
        if max(shard, realm, num) >= 1 << 63:
            raise ValueError(f"Account id out of range: {value!r}")
        return cls(shard, realm, num)

    def encode(self) -> bytes:
        return varint_field(1, self.shard) + varint_field(2, self.realm) + varint_field(3, self.num)

    @classmethod
    def decode(cls, data: bytes) -> AccountId:
        values = {1: 0, 2: 0, 3: 0}
        for number, _, value in iter_fields(data):
            if number in values:
                values[number] = to_signed64(_expect_int(value, "AccountID"))
        return cls(values[1], values[2], values[3])

    def __str__(self) -> str:
        return f"{self.shard}.{self.realm}.{self.num}"


@dataclass(frozen=True)
class TransactionId:
    account_id: AccountId
    valid_start_seconds: int
    valid_start_nanos: int

    @classmethod
    def generate(cls, account_id: AccountId, now_ns: int | None = None) -> TransactionId:
        if now_ns is None:
            now_ns = time.time_ns()
        start = now_ns - VALID_START_BACKDATE_NS
        return cls(account_id, start // 1_000_000_000, start % 1_000_000_000)

    @classmethod
    def from_string(cls, value: str) -> TransactionId:
        """Parse ``0.0.1@seconds.nanos`` or the mirror form ``0.0.1-seconds-nanos``."""
        match = _TX_ID_RE.match(value.strip())
        if not match:
            raise ValueError(f"Invalid transaction id: {value!r}")
        return cls(AccountId.from_string(match.group(1)), int(match.group(2)), int(match.group(3)))

    def to_mirror_id(self) -> str:
        return f"{self.account_id}-{self.valid_start_seconds}-{self.valid_start_nanos:09d}"

    def encode(self) -> bytes:
        timestamp = varint_field(1, self.valid_start_seconds) + varint_field(
            2, self.valid_start_nanos
        )
        return bytes_field(1, timestamp, always=True) + bytes_field(
            2, self.account_id.encode(), always=True
        )

    @classmethod
    def decode(cls, data: bytes) -> TransactionId:
        seconds = nanos = 0
        account_id = None
        for number, _, value in iter_fields(data):
            if number == 1:
                for ts_number, _, ts_value in iter_fields(_expect_bytes(value, "validStart")):
                    if ts_number == 1:
                        seconds = to_signed64(_expect_int(ts_value, "seconds"))
                    elif ts_number == 2:
                        nanos = _expect_int(ts_value, "nanos")
            elif number == 2:
                account_id = AccountId.decode(_expect_bytes(value, "accountID"))
        if account_id is None:
            raise TransactionCodecError("TransactionID has no payer account")
        return cls(account_id, seconds, nanos)

    def __str__(self) -> str:
        return f"{self.account_id}@{self.valid_start_seconds}.{self.valid_start_nanos:09d}"


# ============ Transaction body ============


@dataclass(frozen=True)
class AccountAmount:
    account_id: AccountId
    amount: int

    def encode(self) -> bytes:
        return bytes_field(1, self.account_id.encode(), always=True) + varint_field(
            2, zigzag_encode(self.amount)
        )

    @classmethod
    def decode(cls, data: bytes) -> AccountAmount:
        account_id = AccountId(0, 0, 0)
        amount = 0
        for number, _, value in iter_fields(data):
            if number == 1:
                account_id = AccountId.decode(_expect_bytes(value, "accountID"))
            elif number == 2:
                amount = zigzag_decode(_expect_int(value, "amount"))
        return cls(account_id, amount)


@dataclass(frozen=True)
class CryptoCreateAccount:
    key: bytes
    initial_balance: int
    auto_renew_period: int

    def encode(self) -> bytes:
        key = bytes_field(2, self.key, always=True)
        duration = varint_field(1, self.auto_renew_period)
        return (
            bytes_field(1, key, always=True)
            + varint_field(2, self.initial_balance)
            + bytes_field(9, duration)
        )

    @classmethod
    def decode(cls, data: bytes) -> CryptoCreateAccount:
        key = b""
        initial_balance = auto_renew_period = 0
        for number, _, value in iter_fields(data):
            if number == 1:
                for key_number, _, key_value in iter_fields(_expect_bytes(value, "key")):
                    if key_number == 2:
                        key = _expect_bytes(key_value, "ed25519")
            elif number == 2:
                initial_balance = _expect_int(value, "initialBalance")
            elif number == 9:
                for d_number, _, d_value in iter_fields(_expect_bytes(value, "autoRenewPeriod")):
                    if d_number == 1:
                        auto_renew_period = to_signed64(_expect_int(d_value, "seconds"))
        return cls(key, initial_balance, auto_renew_period)


@dataclass(frozen=True)
class TransactionBody:
    transaction_id: TransactionId
    node_account_id: AccountId
    transaction_fee: int
    valid_duration: int
    memo: str = ""
    transfers: tuple[AccountAmount, ...] = ()
    create_account: CryptoCreateAccount | None = None

    def encode(self) -> bytes:
        out = bytes_field(1, self.transaction_id.encode(), always=True)
        out += bytes_field(2, self.node_account_id.encode(), always=True)
        out += varint_field(3, self.transaction_fee)
        out += bytes_field(4, varint_field(1, self.valid_duration), always=True)
        out += bytes_field(6, self.memo.encode("utf-8"))
        if self.create_account is not None:
            out += bytes_field(11, self.create_account.encode(), always=True)
        if self.transfers:
            transfer_list = b"".join(
                bytes_field(1, leg.encode(), always=True) for leg in self.transfers
            )
            crypto_transfer = bytes_field(1, transfer_list, always=True)
            out += bytes_field(14, crypto_transfer, always=True)
        return out

    @classmethod
    def decode(cls, data: bytes) -> TransactionBody:
        transaction_id = None
        node_account_id = AccountId(0, 0, 0)
        transaction_fee = valid_duration = 0
        memo = ""
        transfers: list[AccountAmount] = []
        create_account = None

        for number, _, value in iter_fields(data):
            if number == 1:
                transaction_id = TransactionId.decode(_expect_bytes(value, "transactionID"))
            elif number == 2:
                node_account_id = AccountId.decode(_expect_bytes(value, "nodeAccountID"))
            elif number == 3:
                transaction_fee = _expect_int(value, "transactionFee")
            elif number == 4:
                for d_number, _, d_value in iter_fields(_expect_bytes(value, "validDuration")):
                    if d_number == 1:
                        valid_duration = to_signed64(_expect_int(d_value, "seconds"))
            elif number == 6:
                try:
                    memo = _expect_bytes(value, "memo").decode("utf-8")
                except UnicodeDecodeError as e:
                    raise TransactionCodecError("Memo is not valid UTF-8") from e
            elif number == 11:
                create_account = CryptoCreateAccount.decode(_expect_bytes(value, "cryptoCreate"))
            elif number == 14:
                for t_number, _, t_value in iter_fields(_expect_bytes(value, "cryptoTransfer")):
                    if t_number != 1:
                        continue
                    for a_number, _, a_value in iter_fields(_expect_bytes(t_value, "transfers")):
                        if a_number == 1:
                            transfers.append(
                                AccountAmount.decode(_expect_bytes(a_value, "accountAmounts"))
                            )

        if transaction_id is None:
            raise TransactionCodecError("Transaction body has no transaction id")

        return cls(
            transaction_id=transaction_id,
            node_account_id=node_account_id,
            transaction_fee=transaction_fee,
            valid_duration=valid_duration,
            memo=memo,
            transfers=tuple(transfers),
            create_account=create_account,
        )


# ============ Signed envelope ============


@dataclass(frozen=True)
class SignaturePair:
    pub_key_prefix: bytes
    ed25519: bytes

    def encode(self) -> bytes:
        return bytes_field(1, self.pub_key_prefix) + bytes_field(3, self.ed25519, always=True)

    @classmethod
    def decode(cls, data: bytes) -> SignaturePair:
        prefix = signature = b""
        for number, _, value in iter_fields(data):
            if number == 1:
                prefix = _expect_bytes(value, "pubKeyPrefix")
            elif number == 3:
                signature = _expect_bytes(value, "ed25519")
        return cls(prefix, signature)


@dataclass(frozen=True)
class Transaction:
    body: TransactionBody
    body_bytes: bytes
    signatures: tuple[SignaturePair, ...] = field(default_factory=tuple)

    @property
    def transaction_id(self) -> TransactionId:
        return self.body.transaction_id

    def to_bytes(self) -> bytes:
        return serialize_transaction(self.body_bytes, self.signatures)


def freeze(body: TransactionBody) -> Transaction:
    """Serialize the body once; the result is ready to be signed."""
    return Transaction(body=body, body_bytes=body.encode())


def serialize_transaction(body_bytes: bytes, signatures: tuple[SignaturePair, ...] = ()) -> bytes:
    sig_map = b"".join(bytes_field(1, pair.encode(), always=True) for pair in signatures)
    signed = bytes_field(1, body_bytes, always=True) + bytes_field(2, sig_map, always=True)
    return bytes_field(5, signed, always=True)


def _decode_sig_map(data: bytes) -> list[SignaturePair]:
    return [
        SignaturePair.decode(_expect_bytes(value, "sigPair"))
        for number, _, value in iter_fields(data)
        if number == 1
    ]


def deserialize_transaction(data: bytes) -> Transaction:
    body_bytes = None
    signatures: list[SignaturePair] = []

    try:
        for number, _, value in iter_fields(data):
            if number == 5:
                for s_number, _, s_value in iter_fields(_expect_bytes(value, "signedTx")):
                    if s_number == 1:
                        body_bytes = _expect_bytes(s_value, "bodyBytes")
                    elif s_number == 2:
                        signatures = _decode_sig_map(_expect_bytes(s_value, "sigMap"))
            elif number == 4 and body_bytes is None:
                # Deprecated top-level bodyBytes/sigMap layout
                body_bytes = _expect_bytes(value, "bodyBytes")
            elif number == 3 and not signatures:
                signatures = _decode_sig_map(_expect_bytes(value, "sigMap"))
    except IndexError as e:
        raise TransactionCodecError(f"Malformed transaction: {e}") from e

    if body_bytes is None:
        raise TransactionCodecError("Transaction carries no body bytes")

    return Transaction(
        body=TransactionBody.decode(body_bytes),
        body_bytes=body_bytes,
        signatures=tuple(signatures),
    )


# ============ Signing ============


def sign_transaction(tx: Transaction, private_key: HederaPrivateKey) -> Transaction:
    """Add (or replace) the signature of ``private_key`` over the body bytes."""
    public_raw = private_key.public_key.raw
    pair = SignaturePair(pub_key_prefix=public_raw, ed25519=private_key.sign(tx.body_bytes))
    others = tuple(p for p in tx.signatures if p.pub_key_prefix != public_raw)
    return replace(tx, signatures=others + (pair,))


def verify_signatures(tx: Transaction) -> bool:
    """Check every signature pair whose prefix is a full ED25519 public key."""
    if not tx.signatures:
        return False
    for pair in tx.signatures:
        try:
            public_key = HederaPublicKey(pair.pub_key_prefix)
        except KeyFormatError:
            return False
        if not public_key.verify(tx.body_bytes, pair.ed25519):
            return False
    return True


# ============ Node responses ============

# ResponseCodeEnum values a node returns at precheck
PRECHECK_CODES = {
    0: "OK",
    1: "INVALID_TRANSACTION",
    2: "PAYER_ACCOUNT_NOT_FOUND",
    3: "INVALID_NODE_ACCOUNT",
    4: "TRANSACTION_EXPIRED",
    5: "INVALID_TRANSACTION_START",
    6: "INVALID_TRANSACTION_DURATION",
    7: "INVALID_SIGNATURE",
    8: "MEMO_TOO_LONG",
    9: "INSUFFICIENT_TX_FEE",
    10: "INSUFFICIENT_PAYER_BALANCE",
    11: "DUPLICATE_TRANSACTION",
    12: "BUSY",
    13: "NOT_SUPPORTED",
    15: "INVALID_ACCOUNT_ID",
}


@dataclass(frozen=True)
class TransactionResponse:
    """Precheck outcome returned by a node for a submitted transaction."""

    precheck_code: int
    cost: int = 0

    @property
    def ok(self) -> bool:
        return self.precheck_code == 0

    @property
    def status(self) -> str:
        return PRECHECK_CODES.get(self.precheck_code, f"PRECHECK_CODE_{self.precheck_code}")

    @classmethod
    def decode(cls, data: bytes) -> TransactionResponse:
        precheck_code = cost = 0
        for number, _, value in iter_fields(data):
            if number == 1:
                precheck_code = _expect_int(value, "nodeTransactionPrecheckCode")
            elif number == 2:
                cost = _expect_int(value, "cost")
        return cls(precheck_code, cost)

    def encode(self) -> bytes:
        return varint_field(1, self.precheck_code) + varint_field(2, self.cost)
