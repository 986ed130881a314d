"""
Shared key material for QR token encryption and hashing.

Derivation rule (must be identical in every client build):
- raw key:    the configured passphrase with surrounding whitespace stripped
- cipher key: raw key right-padded with the character "0" to 32 characters,
              cut to 32 characters, UTF-8 encoded (AES-256 key)
- hash key:   the raw key, unpadded

A single differing byte between clients makes every cross-client scan fail
the hash check, so the rule is pinned by tests/vectors/qr_conformance.json.
"""

import hashlib
from dataclasses import dataclass

from shelfpass.common.exceptions import ConfigurationError

CIPHER_KEY_LEN = 32
PAD_CHAR = "0"


def derive_cipher_key(raw_key: str) -> bytes:
    """Pad/truncate the raw passphrase to a 32-byte AES-256 key."""
    padded = raw_key.ljust(CIPHER_KEY_LEN, PAD_CHAR)[:CIPHER_KEY_LEN]
    key = padded.encode("utf-8")
    if len(key) != CIPHER_KEY_LEN:
        # Multi-byte characters in the first 32 chars would change the key
        # length; the other clients cannot reproduce that.
        raise ConfigurationError(
            f"QR key must encode to {CIPHER_KEY_LEN} bytes after padding, got {len(key)}"
        )
    return key


@dataclass(frozen=True)
class KeyMaterial:
    """The raw passphrase and the AES key derived from it."""

    raw: str
    cipher_key: bytes

    @classmethod
    def from_passphrase(cls, passphrase: str) -> "KeyMaterial":
        raw = (passphrase or "").strip()
        if not raw:
            raise ConfigurationError("QR key is empty")
        return cls(raw=raw, cipher_key=derive_cipher_key(raw))

    @property
    def fingerprint(self) -> str:
        """Short identifier safe to log; lets operators compare builds."""
        return hashlib.sha256(self.cipher_key).hexdigest()[:8]

    def __repr__(self) -> str:
        return f"KeyMaterial(fingerprint={self.fingerprint!r})"
