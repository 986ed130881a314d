"""
QR token codec: UserClaim <-> TokenEnvelope.

Byte-level protocol shared with the mobile and web clients:

1. Claim -> canonical JSON: keys in CLAIM_FIELDS order, absent optional
   fields omitted, compact separators, non-ASCII left as UTF-8.
2. AES-256-CBC, PKCS7 padding, 16-byte all-zero IV, key from
   ``KeyMaterial.cipher_key``. Ciphertext is standard base64 ("data").
3. hash = hex(SHA-256(data + raw_key)), computed over the base64 text.
4. Envelope -> compact JSON with keys data, hash, qrId, version, expiresAt.

The IV is fixed on purpose: both clients use it and each claim carries a
unique qrId and generatedAt, so no two plaintexts repeat. Changing it here
alone would break every scan across clients.
"""

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from shelfpass.common.exceptions import (
    DecryptError,
    IntegrityError,
    InvalidFormatError,
    MalformedClaimError,
)
from shelfpass.tokens.keys import KeyMaterial

ZERO_IV = b"\x00" * 16
BLOCK_BITS = 128
ROLES = frozenset({"student", "admin"})

# (wire name, attribute name, required)
CLAIM_FIELDS = (
    ("userId", "user_id", True),
    ("fullName", "full_name", True),
    ("email", "email", True),
    ("subscriptionValidUntil", "subscription_valid_until", True),
    ("role", "role", True),
    ("institutionId", "institution_id", False),
    ("profilePicUrl", "profile_pic_url", False),
    ("generatedAt", "generated_at", True),
    ("expiresAt", "expires_at", True),
    ("qrId", "qr_id", True),
    ("version", "version", True),
)

ENVELOPE_FIELDS = ("data", "hash", "qrId", "version", "expiresAt")


# ── Timestamps ──


def format_timestamp(dt: datetime) -> str:
    """UTC, millisecond precision, trailing Z (2025-01-01T09:30:00.000Z)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ── Data model ──


@dataclass(frozen=True)
class UserClaim:
    """Plaintext facts asserted by a QR code at issuance time."""

    user_id: str
    full_name: str
    email: str
    subscription_valid_until: str
    role: str
    generated_at: str
    expires_at: str
    qr_id: str
    version: int
    institution_id: Optional[str] = None
    profile_pic_url: Optional[str] = None

    @property
    def generated_at_dt(self) -> datetime:
        return parse_timestamp(self.generated_at)

    @property
    def expires_at_dt(self) -> datetime:
        return parse_timestamp(self.expires_at)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for wire, attr, required in CLAIM_FIELDS:
            value = getattr(self, attr)
            if value is None and not required:
                continue
            out[wire] = value
        return out

    @classmethod
    def from_dict(cls, raw: Any) -> "UserClaim":
        if not isinstance(raw, dict):
            raise MalformedClaimError("Claim is not a JSON object")

        values: dict[str, Any] = {}
        for wire, attr, required in CLAIM_FIELDS:
            value = raw.get(wire)
            if value is None:
                if required:
                    raise MalformedClaimError(f"Claim is missing '{wire}'")
                values[attr] = None
                continue
            if wire == "version":
                if isinstance(value, bool) or not isinstance(value, int):
                    raise MalformedClaimError("Claim 'version' must be an integer")
            elif not isinstance(value, str):
                raise MalformedClaimError(f"Claim '{wire}' must be a string")
            values[attr] = value

        for attr in ("user_id", "qr_id"):
            if not values[attr]:
                raise MalformedClaimError(f"Claim '{attr}' is empty")
        if values["role"] not in ROLES:
            raise MalformedClaimError(f"Unknown role '{values['role']}'")
        for attr in ("generated_at", "expires_at"):
            try:
                parse_timestamp(values[attr])
            except ValueError as exc:
                raise MalformedClaimError(f"Claim '{attr}' is not a timestamp") from exc

        return cls(**values)


@dataclass(frozen=True)
class TokenEnvelope:
    """What is actually embedded in the QR image."""

    data: str
    hash: str
    qr_id: str
    version: int
    expires_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "hash": self.hash,
            "qrId": self.qr_id,
            "version": self.version,
            "expiresAt": self.expires_at,
        }

    def to_payload(self) -> str:
        """The exact UTF-8 JSON text rendered into the QR code."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)


# ── Primitives ──


def canonical_json(claim: UserClaim) -> str:
    return json.dumps(claim.to_dict(), separators=(",", ":"), ensure_ascii=False)


def encrypt_bytes(plaintext: bytes, cipher_key: bytes) -> bytes:
    """AES-CBC with PKCS7 padding and the fixed zero IV."""
    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(ZERO_IV)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def decrypt_bytes(ciphertext: bytes, cipher_key: bytes) -> bytes:
    if not ciphertext or len(ciphertext) % 16:
        raise DecryptError("Ciphertext length is not a positive multiple of the block size")
    decryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(ZERO_IV)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise DecryptError("Invalid padding after decryption") from exc


def compute_hash(data: str, raw_key: str) -> str:
    """SHA-256 over ciphertext text followed by the raw (unpadded) key."""
    return hashlib.sha256((data + raw_key).encode("utf-8")).hexdigest()


def verify_hash(data: str, provided: str, raw_key: str) -> bool:
    if not provided.isascii():
        return False
    expected = compute_hash(data, raw_key)
    return hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii"))


# ── Codec ──


def encode_claim(claim: UserClaim, keys: KeyMaterial) -> TokenEnvelope:
    """Encrypt and hash a claim into a wire envelope."""
    plaintext = canonical_json(claim).encode("utf-8")
    data = base64.b64encode(encrypt_bytes(plaintext, keys.cipher_key)).decode("ascii")
    return TokenEnvelope(
        data=data,
        hash=compute_hash(data, keys.raw),
        qr_id=claim.qr_id,
        version=claim.version,
        expires_at=claim.expires_at,
    )


def decrypt_claim(data: str, keys: KeyMaterial) -> UserClaim:
    try:
        ciphertext = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptError("Ciphertext is not valid base64") from exc

    plaintext = decrypt_bytes(ciphertext, keys.cipher_key)
    try:
        text = plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptError("Decrypted data is not UTF-8, likely a key mismatch") from exc

    try:
        raw = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise MalformedClaimError("Decrypted data is not JSON") from exc
    return UserClaim.from_dict(raw)


def decode_envelope(envelope: TokenEnvelope, keys: KeyMaterial) -> UserClaim:
    """Verify, decrypt and parse an envelope.

    The hash is checked before any decryption is attempted. The envelope's
    plaintext metadata is not covered by the hash, so it must agree with the
    authenticated claim.
    """
    if not verify_hash(envelope.data, envelope.hash, keys.raw):
        raise IntegrityError("QR code hash does not match its data")

    claim = decrypt_claim(envelope.data, keys)

    if (
        claim.qr_id != envelope.qr_id
        or claim.version != envelope.version
        or parse_timestamp(claim.expires_at) != _envelope_expiry(envelope)
    ):
        raise IntegrityError("Envelope metadata does not match the encrypted claim")
    return claim


def _envelope_expiry(envelope: TokenEnvelope) -> Optional[datetime]:
    try:
        return parse_timestamp(envelope.expires_at)
    except ValueError:
        return None


def parse_payload(raw: Any) -> TokenEnvelope:
    """Interpret a scanned string as an envelope (structure only)."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidFormatError("QR payload is not UTF-8") from exc
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidFormatError("QR payload is empty")

    try:
        obj = json.loads(raw.strip())
    except (ValueError, RecursionError) as exc:
        raise InvalidFormatError("QR payload is not JSON") from exc
    if not isinstance(obj, dict):
        raise InvalidFormatError("QR payload is not a JSON object")

    missing = [name for name in ENVELOPE_FIELDS if name not in obj]
    if missing:
        raise InvalidFormatError(f"QR payload is missing {', '.join(missing)}")

    version = obj["version"]
    if isinstance(version, bool) or not isinstance(version, int):
        raise InvalidFormatError("Envelope 'version' must be an integer")
    for name in ("data", "hash", "qrId", "expiresAt"):
        if not isinstance(obj[name], str) or not obj[name]:
            raise InvalidFormatError(f"Envelope '{name}' must be a non-empty string")

    return TokenEnvelope(
        data=obj["data"],
        hash=obj["hash"],
        qr_id=obj["qrId"],
        version=version,
        expires_at=obj["expiresAt"],
    )
