"""
ED25519 keys in Hedera's string encodings.

Hedera prints keys as hex of their DER encoding (PKCS#8 for private keys,
SubjectPublicKeyInfo for public keys). The raw 32-byte hex form is accepted
on input as well.
"""

from __future__ import annotations

from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from coinservice.errors import ValidationError

ED25519_PRIVATE_DER_PREFIX = bytes.fromhex("302e020100300506032b657004220420")
ED25519_PUBLIC_DER_PREFIX = bytes.fromhex("302a300506032b6570032100")
KEY_LENGTH = 32


class KeyFormatError(ValidationError):
    pass


@dataclass(frozen=True)
class Ed25519KeyBytes:
    private_key_raw: bytes
    public_key_raw: bytes


def generate_keypair() -> Ed25519KeyBytes:
    """Generate a fresh ED25519 key pair as raw 32-byte buffers."""
    private_key = Ed25519PrivateKey.generate()
    return Ed25519KeyBytes(
        private_key_raw=private_key.private_bytes(
            Encoding.Raw, PrivateFormat.Raw, NoEncryption()
        ),
        public_key_raw=private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw),
    )


def _decode_hex(value: str, what: str) -> bytes:
    text = value.strip()
    if text.startswith(("0x", "0X")):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError as e:
        raise KeyFormatError(f"{what} is not valid hex") from e


def _strip_der(data: bytes, prefix: bytes, what: str) -> bytes:
    if len(data) == KEY_LENGTH:
        return data
    if len(data) == len(prefix) + KEY_LENGTH and data.startswith(prefix):
        return data[len(prefix) :]
    raise KeyFormatError(f"{what} is not an ED25519 key")


class HederaPublicKey:
    def __init__(self, raw: bytes):
        if len(raw) != KEY_LENGTH:
            raise KeyFormatError(f"ED25519 public key must be {KEY_LENGTH} bytes, got {len(raw)}")
        try:
            self._key = Ed25519PublicKey.from_public_bytes(raw)
        except ValueError as e:
            raise KeyFormatError(f"Invalid ED25519 public key: {e}") from e
        self.raw = raw

    @classmethod
    def from_string(cls, value: str) -> HederaPublicKey:
        data = _decode_hex(value, "public key")
        return cls(_strip_der(data, ED25519_PUBLIC_DER_PREFIX, "public key"))

    def verify(self, message: bytes, signature: bytes) -> bool:
        try:
            self._key.verify(signature, message)
            return True
        except InvalidSignature:
            return False

    def to_bytes_der(self) -> bytes:
        return ED25519_PUBLIC_DER_PREFIX + self.raw

    def to_string(self) -> str:
        return self.to_bytes_der().hex()

    def to_string_raw(self) -> str:
        return self.raw.hex()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HederaPublicKey):
            return NotImplemented
        return self.raw == other.raw

    def __hash__(self) -> int:
        return hash(self.raw)

    def __str__(self) -> str:
        return self.to_string()


class HederaPrivateKey:
    def __init__(self, raw: bytes):
        if len(raw) != KEY_LENGTH:
            raise KeyFormatError(f"ED25519 private key must be {KEY_LENGTH} bytes, got {len(raw)}")
        self._key = Ed25519PrivateKey.from_private_bytes(raw)
        self.raw = raw

    @classmethod
    def from_string(cls, value: str) -> HederaPrivateKey:
        data = _decode_hex(value, "private key")
        return cls(_strip_der(data, ED25519_PRIVATE_DER_PREFIX, "private key"))

    @property
    def public_key(self) -> HederaPublicKey:
        return HederaPublicKey(self._key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw))

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message)

    def to_bytes_der(self) -> bytes:
        return ED25519_PRIVATE_DER_PREFIX + self.raw

    def to_string(self) -> str:
        return self.to_bytes_der().hex()

    def to_string_raw(self) -> str:
        return self.raw.hex()

    def __repr__(self) -> str:
        return f"HederaPrivateKey(public_key={self.public_key.to_string_raw()})"
