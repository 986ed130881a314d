"""Shelfpass: rotating encrypted QR access tokens for library members."""

from shelfpass.client import AccessClient
from shelfpass.tokens.codec import decode_envelope, encode_claim, parse_payload
from shelfpass.tokens.issuer import TokenIssuer
from shelfpass.tokens.keys import KeyMaterial

__all__ = [
    "AccessClient",
    "KeyMaterial",
    "TokenIssuer",
    "encode_claim",
    "decode_envelope",
    "parse_payload",
]
__version__ = "0.1.0"
